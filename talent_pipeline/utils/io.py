"""File I/O utilities for reading ATS exports and writing metric tables."""

import logging
import tomllib
from pathlib import Path

import pandas as pd

type FilePath = str | Path

logger = logging.getLogger(__name__)


def read_csv_files(directory: FilePath, pattern: str = "*.csv") -> pd.DataFrame:
    """Read all CSV files matching a pattern and concatenate them."""
    directory = Path(directory)
    frames = []

    for csv_file in sorted(directory.glob(pattern)):
        logger.info("Reading %s", csv_file.name)
        frames.append(_read_export_file(csv_file))

    match frames:
        case []:
            return pd.DataFrame()
        case [single]:
            return single
        case _:
            return pd.concat(frames, ignore_index=True)


def _read_export_file(path: Path) -> pd.DataFrame:
    """Read a single export, handling encoding quirks from ATS downloads."""
    for encoding in ("utf-8", "utf-8-sig", "latin-1"):
        try:
            return pd.read_csv(path, encoding=encoding, dtype=str, keep_default_na=True)
        except UnicodeDecodeError:
            continue
    raise ValueError(f"Could not decode {path}")


def write_output(df: pd.DataFrame, path: FilePath, fmt: str = "csv") -> None:
    """Write a DataFrame to the specified format."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    match fmt:
        case "csv":
            df.to_csv(path, index=False)
        case "parquet":
            df.to_parquet(path, index=False)
        case "json":
            df.to_json(path, orient="records", indent=2, date_format="iso")
        case other:
            raise ValueError(f"Unsupported output format: {other}")

    logger.info("Wrote %d rows to %s", len(df), path)


def load_toml_config(path: FilePath) -> dict:
    """Load a TOML configuration file."""
    with open(path, "rb") as f:
        return tomllib.load(f)
