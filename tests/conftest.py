import math
from datetime import date

import pytest
import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from global_parameters import GlobalParameters

NUMERIC = [
    "sich", "ib", "ibc", "spi", "at", "dvc", "act", "che", "lct", "dlc", "txp", "xrd", "dp", "ceq",
    "sale", "csho", "prcc_f", "ajex", "ni", "epsfi", "epsfx", "epspi", "epspx", "opeps", "cshfd",
    "cshpri", "oancf", "ivncf", "fincf", "lt",
]


def _floor(value):
    return None if value is None else float(math.floor(value))


def _define_tables(metadata):
    funda = sa.Table(
        "funda",
        metadata,
        sa.Column("gvkey", sa.String(6)),
        sa.Column("datadate", sa.Date),
        sa.Column("conm", sa.String),
        sa.Column("fyear", sa.Integer),
        sa.Column("fyr", sa.Integer),
        sa.Column("cusip", sa.String(9)),
        sa.Column("cik", sa.String(10)),
        sa.Column("tic", sa.String(8)),
        sa.Column("indfmt", sa.String(12)),
        sa.Column("datafmt", sa.String(12)),
        sa.Column("popsrc", sa.String(1)),
        sa.Column("consol", sa.String(1)),
        *[sa.Column(name, sa.Float) for name in NUMERIC],
        schema="comp",
    )
    company = sa.Table(
        "company",
        metadata,
        sa.Column("gvkey", sa.String(6)),
        sa.Column("conm", sa.String),
        sa.Column("sic", sa.String(4)),
        sa.Column("fic", sa.String(3)),
        sa.Column("gind", sa.String(6)),
        schema="comp",
    )
    return funda, company


def funda_row(gvkey, datadate, fyear, fyr, **overrides):
    row = {
        "gvkey": gvkey,
        "datadate": datadate,
        "conm": f"COMPANY {gvkey}",
        "fyear": fyear,
        "fyr": fyr,
        "cusip": f"{gvkey}109",
        "cik": f"0000{gvkey}",
        "tic": f"T{gvkey[-3:]}",
        "indfmt": "INDL",
        "datafmt": "STD",
        "popsrc": "D",
        "consol": "C",
    }
    row.update({name: 1.0 for name in NUMERIC})
    row.update(sich=2834.0, ib=10.0, spi=2.0, csho=5.0, prcc_f=20.0)
    row.update(overrides)
    return row


FUNDA_ROWS = [
    # April year end: belongs to the next calendar year
    funda_row("001000", date(2000, 4, 30), 1999, 4),
    funda_row("001000", date(2001, 4, 30), 2000, 4, ib=12.5, spi=-1.5),
    # February year end, no historical SIC, nothing reported for the zero-fill items
    funda_row(
        "001001", date(2000, 2, 29), 1999, 2,
        sich=None, spi=None, dvc=None, che=None, lct=None, dlc=None, txp=None, dp=None, xrd=None,
        ceq=None, csho=None,
    ),
    # Not the canonical reporting variant
    funda_row("001002", date(2000, 12, 31), 2000, 12, indfmt="FS"),
    funda_row("001001", date(2000, 2, 29), 1999, 2, datafmt="SUMM_STD"),
    # Before the cutoff
    funda_row("001003", date(1950, 12, 31), 1950, 12),
    # Incorporated outside the US
    funda_row("001004", date(2000, 12, 31), 2000, 12),
    # No company record
    funda_row("009999", date(2000, 12, 31), 2000, 12),
]

COMPANY_ROWS = [
    {"gvkey": "001000", "conm": "COMPANY 001000", "sic": "2834", "fic": "USA", "gind": "352020"},
    {"gvkey": "001001", "conm": "COMPANY 001001", "sic": "3711", "fic": "USA", "gind": "251020"},
    {"gvkey": "001002", "conm": "COMPANY 001002", "sic": "6020", "fic": "USA", "gind": "401010"},
    {"gvkey": "001003", "conm": "COMPANY 001003", "sic": "2000", "fic": "USA", "gind": "302020"},
    {"gvkey": "001004", "conm": "COMPANY 001004", "sic": "1311", "fic": "CAN", "gind": "101020"},
]


def make_engine():
    engine = sa.create_engine("sqlite://", poolclass=StaticPool)

    @sa.event.listens_for(engine, "connect")
    def _setup(dbapi_connection, connection_record):
        dbapi_connection.execute("ATTACH DATABASE ':memory:' AS comp")
        dbapi_connection.create_function("floor", 1, _floor)

    return engine


@pytest.fixture
def comp_engine():
    engine = make_engine()
    metadata = sa.MetaData()
    funda, company = _define_tables(metadata)
    with engine.begin() as conn:
        metadata.create_all(conn)
        conn.execute(funda.insert(), FUNDA_ROWS)
        conn.execute(company.insert(), COMPANY_ROWS)
    yield engine
    engine.dispose()


@pytest.fixture
def connection(comp_engine):
    with comp_engine.connect() as conn:
        yield conn


@pytest.fixture
def params(tmp_path):
    return GlobalParameters(data_path=tmp_path / "data")
