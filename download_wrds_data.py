"""
Download a Compustat funda extract from WRDS and save it as Stata and Parquet.

Usage (from the project root):
  python download_wrds_data.py

Set DATA_PATH (and optionally WRDS_USER / WRDS_PASSWORD) in .env;
anything missing is read from configs/global_parameters.yaml or prompted for.
"""

import logging
from time import time

from sqlalchemy.exc import OperationalError

from compustat import download_funda
from export_data import export_extract
from global_parameters import load_global_parameters
from wrds_connection import connect

logger = logging.getLogger(__name__)


def main() -> None:
    params = load_global_parameters()
    logging.basicConfig(
        level=params.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    start = time()

    try:
        with connect(params) as db:
            if params.list_tables:
                # List all of the tables in Compustat (comp)
                logger.info("Tables in comp: " + ", ".join(db.list_tables("comp")))

            # Everything is evaluated on the WRDS server; only the result is downloaded
            df = download_funda(db.connection, params)
    except OperationalError:
        logger.error(f"WRDS session at {params.wrds.host}:{params.wrds.port} failed")
        raise

    export_extract(df, params)
    logger.info(f"Done! Time elapsed: {time() - start:.2f} seconds")


if __name__ == "__main__":
    main()
