"""
S01_load_sites.py
=================
Stage 01 — Load per-sample insertion-site tables into one unified table.

Overview
--------
The upstream mapping pipeline writes one tab-separated table per sequencing
sample. This stage reads every table matching SITES_PATTERN, stamps each row
with the originating `file_name`, derives `file_id` by stripping the
sequencing-run suffix from `sample_id`, and concatenates the result.

Inputs
------
• SITES_DIR/*_insertion_sites.tsv with at least:
  sample_id, seqnames, start, end, strand, score, annotation, tss_distance

Outputs
-------
• pl.DataFrame: unified insertion records (file_name, file_id first).

Notes
-----
• Files are read in sorted order so the unified table is deterministic.
• Extra upstream columns are carried through; files lacking a column get nulls.
• An empty or missing directory is an InputError, never an empty table.
"""

from __future__ import annotations
from pathlib import Path
import polars as pl

from config.config import SITES_DIR, SITES_PATTERN, REQUIRED_COLUMNS, RUN_SUFFIX_PATTERN
from qol.exceptions import InputError
from qol.logger import get_logger
from qol.utilities import load_file, missing_columns

log = get_logger("S01")

# dtypes enforced after load so files with different inference agree on concat
SITE_DTYPES = {
    "sample_id": pl.Utf8,
    "seqnames": pl.Utf8,
    "start": pl.Int64,
    "end": pl.Int64,
    "strand": pl.Utf8,
    "score": pl.Int64,
    "annotation": pl.Utf8,
    "tss_distance": pl.Int64,
}


def _read_site_table(path: Path, run_suffix: str) -> pl.DataFrame:
    """
    Read one insertion-site table and stamp file_name / file_id.

    Raises
    ------
    InputError
        If required columns are missing.
    """
    df = load_file(path)
    missing = missing_columns(df, REQUIRED_COLUMNS)
    if missing:
        raise InputError(f"Missing required columns {missing} in {path}")
    cast = df.with_columns([pl.col(c).cast(t, strict=False) for c, t in SITE_DTYPES.items()])
    nulled = {c: cast[c].null_count() - df[c].null_count() for c in SITE_DTYPES}
    nulled = {c: n for c, n in nulled.items() if n}
    if nulled:
        detail = ", ".join(f"{c}: {n}" for c, n in nulled.items())
        log.warning(f"[S01] {path.name}: unparseable values set to null ({detail})")
    df = cast.with_columns([
        pl.lit(path.name).alias("file_name"),
        pl.col("sample_id").str.strip_chars().str.replace(run_suffix, "").alias("file_id"),
    ])
    return df.select(["file_name", "file_id"] + [c for c in df.columns if c not in ("file_name", "file_id")])


def load_insertion_sites(
    sites_dir: Path = SITES_DIR,
    pattern: str = SITES_PATTERN,
    run_suffix: str = RUN_SUFFIX_PATTERN,
) -> pl.DataFrame:
    """
    Read and concatenate every per-sample table in sites_dir.

    Parameters
    ----------
    sites_dir : Path
        Directory holding the upstream tables.
    pattern : str
        Glob selecting the tables inside sites_dir.
    run_suffix : str
        Regex removed from the end of sample_id to form file_id.

    Returns
    -------
    pl.DataFrame
        Unified insertion records.

    Raises
    ------
    InputError
        Missing/empty directory, no matching files, or a file without the required columns.
    """
    sites_dir = Path(sites_dir)
    if not sites_dir.is_dir():
        raise InputError(f"Insertion-site directory not found: {sites_dir}")
    if not any(sites_dir.iterdir()):
        raise InputError(f"Insertion-site directory is empty: {sites_dir}")
    files = sorted(p for p in sites_dir.glob(pattern) if p.is_file())
    if not files:
        raise InputError(f"No files matching '{pattern}' in {sites_dir}")

    frames = []
    for path in files:
        df = _read_site_table(path, run_suffix)
        log.info(f"[S01] {path.name}: {df.height:,} sites")
        frames.append(df)

    sites = pl.concat(frames, how="diagonal_relaxed")
    n_ids = sites["file_id"].n_unique()
    log.info(f"[S01] {sites.height:,} insertion records from {len(files)} files ({n_ids} file_ids)")
    return sites


def run(sites_dir: Path = SITES_DIR, pattern: str = SITES_PATTERN) -> pl.DataFrame:
    """Stage 01 entry point."""
    return load_insertion_sites(sites_dir, pattern)


