"""
Write the materialized extract to disk.

Stata is convenient for working with coauthors; Parquet is fast and small
for anyone staying in Python or R. Both writers overwrite in place.
"""

import logging
import os
from pathlib import Path

import pandas as pd
import polars as pl

logger = logging.getLogger(__name__)


def write_parquet(df: pl.DataFrame, path, compression="gzip", compression_level=9) -> Path:
    """Parquet with a high gzip level by default, trading write time for space."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.write_parquet(path, compression=compression, compression_level=compression_level)
    return path


def _stata_frame(df: pl.DataFrame):
    """pandas frame plus the Stata date formats for ``to_stata``."""
    date_cols = [name for name, dtype in df.schema.items() if dtype == pl.Date]
    casts = []
    for name, dtype in df.schema.items():
        if name in date_cols:
            casts.append(pl.col(name).cast(pl.Datetime("ns")))
        # Stata has no decimal or untyped columns
        elif isinstance(dtype, pl.Decimal) or dtype == pl.Null:
            casts.append(pl.col(name).cast(pl.Float64))
    if casts:
        df = df.with_columns(casts)
    return df.to_pandas(), {name: "td" for name in date_cols}


def write_dta(df: pl.DataFrame, path, version=118, time_stamp=None) -> Path:
    """
    Stata .dta file, dates as daily dates.

    Pass ``time_stamp`` to get byte-identical files from the same data;
    otherwise Stata's header records the time of writing.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame, convert_dates = _stata_frame(df)
    frame.to_stata(
        path,
        write_index=False,
        version=version,
        convert_dates=convert_dates,
        time_stamp=time_stamp,
    )
    return path


def read_parquet(path) -> pl.DataFrame:
    return pl.read_parquet(path)


def read_dta(path) -> pl.DataFrame:
    return pl.from_pandas(pd.read_stata(path))


def export_extract(df: pl.DataFrame, params, time_stamp=None) -> dict:
    """Write the extract to both configured files under DATA_PATH."""
    written = {
        "dta": write_dta(df, params.dta_path, version=params.dta_version, time_stamp=time_stamp),
        "parquet": write_parquet(
            df,
            params.parquet_path,
            compression=params.parquet_compression,
            compression_level=params.parquet_compression_level,
        ),
    }
    for path in written.values():
        logger.info(f"Wrote {path} ({os.path.getsize(path) / 1e6:.1f} MB)")
    return written
