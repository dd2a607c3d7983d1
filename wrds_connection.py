"""
Scoped connection to the WRDS PostgreSQL server.

WRDS limits the number of simultaneous sessions per user, so a
``WrdsConnection`` holds at most one open connection: re-opening closes
the previous handle first, and leaving the ``with`` block always closes
the connection and disposes the engine.

Usage::

    with connect(params) as db:
        db.list_tables("comp")
        frame = query.collect(db.connection)
"""

import getpass
import logging
from contextlib import contextmanager

import polars as pl
from sqlalchemy import URL, create_engine, inspect

logger = logging.getLogger(__name__)


class WrdsConnection:
    """Owns one SQLAlchemy engine and at most one open connection."""

    def __init__(self, engine):
        self.engine = engine
        self._connection = None

    @classmethod
    def from_parameters(cls, params, prompt=getpass.getpass):
        """
        Build the psycopg2 engine for the configured WRDS endpoint.

        Username and password come from WRDS_USER / WRDS_PASSWORD when set;
        otherwise they are asked for interactively without echo.
        """
        wrds = params.wrds
        user = wrds.user or prompt("WRDS user: ")
        password = wrds.password or prompt("WRDS pw: ")

        url = URL.create(
            "postgresql+psycopg2",
            username=user,
            password=password,
            host=wrds.host,
            port=wrds.port,
            database=wrds.dbname,
            query={"sslmode": wrds.sslmode},
        )
        return cls(create_engine(url, pool_pre_ping=True))

    @property
    def is_open(self) -> bool:
        return self._connection is not None and not self._connection.closed

    @property
    def connection(self):
        if not self.is_open:
            raise RuntimeError("WRDS connection is not open")
        return self._connection

    def open(self):
        # Close a leftover handle first, otherwise WRDS might time out
        if self.is_open:
            logger.info("Closing existing WRDS connection before reconnecting")
            self._connection.close()
        self._connection = self.engine.connect()
        logger.info(f"Connected to {self.engine.url.render_as_string(hide_password=True)}")
        return self

    def close(self):
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.info("WRDS connection closed")
        self.engine.dispose()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def list_tables(self, schema: str) -> list[str]:
        """Sorted table (and view) names in a schema, e.g. ``comp``."""
        inspector = inspect(self.connection)
        names = inspector.get_table_names(schema=schema) + inspector.get_view_names(schema=schema)
        return sorted(set(names))

    def describe_table(self, schema: str, table: str) -> pl.DataFrame:
        """Column name, type and nullability of one table."""
        columns = inspect(self.connection).get_columns(table, schema=schema)
        return pl.DataFrame(
            {
                "name": [c["name"] for c in columns],
                "type": [str(c["type"]) for c in columns],
                "nullable": [bool(c.get("nullable", True)) for c in columns],
            },
            schema={"name": pl.String, "type": pl.String, "nullable": pl.Boolean},
        )


@contextmanager
def connect(params, prompt=getpass.getpass):
    """Open a WRDS connection for the duration of a ``with`` block."""
    db = WrdsConnection.from_parameters(params, prompt=prompt)
    try:
        yield db.open()
    finally:
        db.close()
