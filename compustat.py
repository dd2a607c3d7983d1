"""
Compustat annual fundamentals (comp.funda) joined with the company header file.

Data format filters:
    - indfmt='INDL': industrial format
    - datafmt='STD': standardized format
    - popsrc='D': domestic population
    - consol='C': consolidated statements

Inspired by https://www.tidy-finance.org/r/wrds-crsp-and-compustat.html
"""

import logging
from time import time

from expressions import col, floordiv, if_else, to_numeric, when, year_of
from query_builder import Query

logger = logging.getLogger(__name__)

FUNDA_FILTERS = {
    "indfmt": "INDL",
    "datafmt": "STD",
    "popsrc": "D",
    "consol": "C",
}

# Define the variables of interest, (new_name, funda_name) where renamed
FUNDA_VARIABLES = [
    "gvkey",  # Global company key
    "datadate",  # Fiscal period end date
    "conm",  # Company name
    "fyear",  # Fiscal year
    "fyr",  # Fiscal year-end month
    ("cstat_cusip", "cusip"),  # CUSIP
    "cik",  # SEC central index key
    ("cstat_ticker", "tic"),  # Ticker
    "sich",  # Historical SIC code
    "ib",  # Income before extraordinary items
    "ibc",  # Income before extraordinary items (cash flow)
    "spi",  # Special items
    "at",  # Total assets
    "dvc",  # Common dividends
    "act",  # Current assets
    "che",  # Cash and equivalents
    "lct",  # Current liabilities
    "dlc",  # Current debt
    "txp",  # Income taxes payable
    "xrd",  # R&D expense
    "dp",  # Depreciation and amortization
    "ceq",  # Common equity
    "sale",  # Sales
    "csho",  # Common shares outstanding
    "prcc_f",  # Fiscal year-end close price
    "ajex",  # Adjustment factor
    "ni",  # Net income
    "epsfi",  # EPS diluted, incl. extraordinary items
    "epsfx",  # EPS diluted, excl. extraordinary items
    "epspi",  # EPS basic, incl. extraordinary items
    "epspx",  # EPS basic, excl. extraordinary items
    "opeps",  # Operating EPS
    "cshfd",  # Diluted shares for EPS
    "cshpri",  # Basic shares for EPS
    "oancf",  # Operating cash flow
    "ivncf",  # Investing cash flow
    "fincf",  # Financing cash flow
]

# Header SIC code, country of incorporation and GICS industry
COMPANY_VARIABLES = ["gvkey", "sic", "fic", "gind"]

# Not reported means zero for these
ZERO_FILL_VARIABLES = ["spi", "dvc", "che", "lct", "dlc", "txp", "dp", "xrd"]


def funda_query(fyear_cutoff=1955, country="USA", schema="comp") -> Query:
    """
    Build the funda extract. Nothing is sent to the server until the
    returned query is collected.
    """
    company = Query.table(schema, "company").select(*COMPANY_VARIABLES)

    return (
        Query.table(schema, "funda")
        # Apply standard Compustat filters
        .filter(*[col(name) == value for name, value in FUNDA_FILTERS.items()])
        .select(*FUNDA_VARIABLES)
        # Firms without a company record are dropped
        .inner_join(company, on="gvkey")
        # Use historical sic when available, otherwise the header sic
        .mutate(sic4=when(col("sich").is_null(), to_numeric(col("sic"))).otherwise(col("sich")))
        .mutate(sic2=floordiv(col("sic4"), 100))
        .fill_zero(*ZERO_FILL_VARIABLES)
        .mutate(
            # Align on June of each year assuming a 3 month reporting lag,
            # i.e. fiscal years ending after March belong to the next year.
            # See Hou, van Dijk and Zhang (2012 JAE), figure 1.
            # Unknown fiscal year end month, unknown calendar year.
            calyear=if_else(col("fyr") > 3, year_of(col("datadate")) + 1, year_of(col("datadate"))),
            # Market value of equity
            mve=col("csho") * col("prcc_f"),
            # Earnings before special items
            e=col("ib") - col("spi"),
        )
        .filter(col("fyear") > fyear_cutoff)
        .filter(col("fic") == country)
    )


def download_funda(connection, params):
    """Run the funda extract on the server and pull the result into memory."""
    query = funda_query(params.fyear_cutoff, params.country)

    if params.show_query:
        logger.info(f"Compiled funda query:\n{query.show_query(connection)}")

    start = time()
    logger.info("Fetching Compustat funda extract")
    df = query.collect(connection, batch_size=params.fetch_batch_size or None)
    logger.info(f"Fetched {df.height:,} rows x {df.width} columns in {time() - start:.2f} seconds")
    return df
