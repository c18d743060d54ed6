"""
S02_join_metadata.py
====================
Stage 02 — Attach sample metadata to the unified insertion-site table.

Overview
--------
Left-joins insertion records to the metadata sheet on `file_id`. Every insertion
record is kept: records without a metadata row keep null metadata fields so
orphaned data stays visible in the outputs. Their count and file_ids are logged
as a warning, or raised as JoinMismatchError in strict mode.

Inputs
------
• Stage-01 table (file_id, ...)
• METADATA_FILE with at least file_id, sample_name; other columns are covariates
  (e.g. marking percentage).

Outputs
-------
• pl.DataFrame with the same rows as the input plus metadata columns.
"""

from __future__ import annotations
from pathlib import Path
import polars as pl

from config.config import METADATA_FILE, METADATA_COLUMNS
from qol.exceptions import ConfigError, JoinMismatchError
from qol.logger import get_logger
from qol.utilities import load_file, missing_columns

log = get_logger("S02")


def load_metadata(path: Path = METADATA_FILE) -> pl.DataFrame:
    """
    Load and validate the sample metadata sheet.

    Raises
    ------
    ConfigError
        Missing/unreadable file, missing file_id/sample_name columns, or duplicated file_id.
    """
    path = Path(path)
    try:
        meta = load_file(path)
    except FileNotFoundError as e:
        raise ConfigError(f"Metadata file not found: {path}") from e
    except pl.exceptions.PolarsError as e:
        raise ConfigError(f"Metadata file could not be parsed: {path}: {e}") from e

    missing = missing_columns(meta, METADATA_COLUMNS)
    if missing:
        raise ConfigError(
            f"Metadata file {path} is missing required columns: {', '.join(missing)}. "
            f"Available columns: {', '.join(meta.columns)}"
        )

    meta = meta.with_columns([
        pl.col("file_id").cast(pl.Utf8).str.strip_chars(),
        pl.col("sample_name").cast(pl.Utf8).str.strip_chars(),
    ]).filter(pl.col("file_id").is_not_null())

    dups = meta.filter(pl.col("file_id").is_duplicated())["file_id"].unique().sort().to_list()
    if dups:
        raise ConfigError(f"Metadata file {path} lists file_id more than once: {', '.join(dups)}")

    log.info(f"[S02] metadata: {meta.height} file_ids, {meta['sample_name'].n_unique()} samples")
    return meta


def join_metadata(sites: pl.DataFrame, metadata: pl.DataFrame, strict: bool = False) -> pl.DataFrame:
    """
    Left-join insertion records to metadata on file_id.

    Parameters
    ----------
    sites : pl.DataFrame
        Stage-01 table.
    metadata : pl.DataFrame
        Validated metadata (see load_metadata).
    strict : bool, default False
        Raise JoinMismatchError instead of warning when records lack metadata.

    Returns
    -------
    pl.DataFrame
        Same row count and order as `sites`.
    """
    # columns already present in sites (other than the key) are not overwritten
    meta_cols = ["file_id"] + [c for c in metadata.columns if c != "file_id" and c not in sites.columns]
    joined = (
        sites.with_row_index("_row")
             .join(metadata.select(meta_cols), on="file_id", how="left", coalesce=True)
             .sort("_row")
             .drop("_row")
    )

    matched = set(metadata["file_id"].to_list())
    orphans = sites.filter(~pl.col("file_id").is_in(list(matched)) | pl.col("file_id").is_null())
    if orphans.height:
        keys = sorted(str(k) for k in orphans["file_id"].unique().to_list())
        if strict:
            raise JoinMismatchError(keys, orphans.height)
        log.warning(
            f"[S02] {orphans.height:,} insertion records have no metadata "
            f"(file_id: {', '.join(keys)}); kept with null metadata"
        )

    log.info(f"[S02] joined table: {joined.height:,} rows")
    return joined
