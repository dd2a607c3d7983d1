"""Load global parameters from configs/global_parameters.yaml, with overrides from the environment (.env)."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

# Project root (this module lives there); relative data paths resolve against it.
PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_PARAMETERS_FILE = PROJECT_ROOT / "configs" / "global_parameters.yaml"


@dataclass(frozen=True)
class WrdsParameters:
    host: str = "wrds-pgdata.wharton.upenn.edu"
    port: int = 9737
    dbname: str = "wrds"
    sslmode: str = "require"
    user: str = ""
    password: str = field(default="", repr=False)


@dataclass(frozen=True)
class GlobalParameters:
    data_path: Path
    wrds: WrdsParameters = field(default_factory=WrdsParameters)
    fyear_cutoff: int = 1955
    country: str = "USA"
    parquet_file: str = "example-data1.parquet"
    dta_file: str = "example-data2.dta"
    parquet_compression: str = "gzip"
    parquet_compression_level: int = 9
    dta_version: int = 118
    list_tables: bool = False
    show_query: bool = False
    fetch_batch_size: int = 0
    log_level: str = "INFO"

    @property
    def parquet_path(self) -> Path:
        return self.data_path / self.parquet_file

    @property
    def dta_path(self) -> Path:
        return self.data_path / self.dta_file


def _resolve_data_path(raw: str) -> Path:
    path = Path(raw.strip()).expanduser()
    return path if path.is_absolute() else PROJECT_ROOT / path


def load_global_parameters(path=None) -> GlobalParameters:
    """
    Read the parameter file and apply environment overrides.

    The file defaults to GLOBAL_PARAMETERS from the environment, else
    configs/global_parameters.yaml. Each coauthor points DATA_PATH at their
    own local data folder.
    """
    if path is None:
        path = os.environ.get("GLOBAL_PARAMETERS", "").strip() or DEFAULT_PARAMETERS_FILE

    with open(path, "r") as file:
        config = yaml.safe_load(file) or {}

    wrds_config = config.get("wrds", {}) or {}
    sample = config.get("sample", {}) or {}
    export = config.get("export", {}) or {}
    run = config.get("run", {}) or {}

    wrds = WrdsParameters(
        host=wrds_config.get("host", WrdsParameters.host),
        port=int(wrds_config.get("port", WrdsParameters.port)),
        dbname=wrds_config.get("dbname", WrdsParameters.dbname),
        sslmode=wrds_config.get("sslmode", WrdsParameters.sslmode),
        user=os.environ.get("WRDS_USER", "").strip(),
        password=os.environ.get("WRDS_PASSWORD", ""),
    )

    data_path = os.environ.get("DATA_PATH", "").strip() or str(config.get("data_path", "data"))

    return GlobalParameters(
        data_path=_resolve_data_path(data_path),
        wrds=wrds,
        fyear_cutoff=int(sample.get("fyear_cutoff", 1955)),
        country=str(sample.get("country", "USA")),
        parquet_file=export.get("parquet_file", "example-data1.parquet"),
        dta_file=export.get("dta_file", "example-data2.dta"),
        parquet_compression=export.get("parquet_compression", "gzip"),
        parquet_compression_level=int(export.get("parquet_compression_level", 9)),
        dta_version=int(export.get("dta_version", 118)),
        list_tables=bool(run.get("list_tables", False)),
        show_query=bool(run.get("show_query", False)),
        fetch_batch_size=int(run.get("fetch_batch_size", 0) or 0),
        log_level=os.environ.get("LOG_LEVEL", "").strip() or str(run.get("log_level", "INFO")),
    )
