import pytest
from sqlalchemy.exc import OperationalError

from global_parameters import GlobalParameters, WrdsParameters
from wrds_connection import WrdsConnection, connect


def test_open_closes_previous_handle(comp_engine):
    db = WrdsConnection(comp_engine)
    first = db.open().connection
    second = db.open().connection
    assert first.closed
    assert not second.closed
    db.close()


def test_with_block_releases_on_error(comp_engine):
    db = WrdsConnection(comp_engine)
    with pytest.raises(ZeroDivisionError):
        with db:
            handle = db.connection
            1 / 0
    assert handle.closed
    assert not db.is_open


def test_connection_requires_open(comp_engine):
    db = WrdsConnection(comp_engine)
    with pytest.raises(RuntimeError):
        db.connection
    db.open()
    db.close()
    db.close()
    with pytest.raises(RuntimeError):
        db.connection


def test_list_and_describe_tables(comp_engine):
    with WrdsConnection(comp_engine) as db:
        assert db.list_tables("comp") == ["company", "funda"]
        columns = db.describe_table("comp", "company")
    assert columns["name"].to_list() == ["gvkey", "conm", "sic", "fic", "gind"]
    assert columns.columns == ["name", "type", "nullable"]


def test_from_parameters_prompts_for_missing_credentials(tmp_path):
    asked = []

    def prompt(label):
        asked.append(label)
        return "secret" if "pw" in label else "someone"

    params = GlobalParameters(data_path=tmp_path, wrds=WrdsParameters(host="db.example", port=9737))
    db = WrdsConnection.from_parameters(params, prompt=prompt)
    url = db.engine.url
    assert asked == ["WRDS user: ", "WRDS pw: "]
    assert (url.username, url.password, url.host, url.port, url.database) == ("someone", "secret", "db.example", 9737, "wrds")
    assert url.query["sslmode"] == "require"
    assert url.drivername == "postgresql+psycopg2"
    db.close()


def test_from_parameters_uses_configured_credentials(tmp_path):
    def prompt(label):
        raise AssertionError("should not prompt")

    params = GlobalParameters(data_path=tmp_path, wrds=WrdsParameters(user="someone", password="secret"))
    db = WrdsConnection.from_parameters(params, prompt=prompt)
    assert db.engine.url.username == "someone"
    db.close()


def test_connect_failure_is_fatal(tmp_path):
    params = GlobalParameters(
        data_path=tmp_path,
        wrds=WrdsParameters(host="127.0.0.1", port=1, user="someone", password="secret", sslmode="disable"),
    )
    with pytest.raises(OperationalError):
        with connect(params):
            pass
