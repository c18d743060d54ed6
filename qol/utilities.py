# trace-isa-analysis/qol/utilities.py
from __future__ import annotations
from pathlib import Path
from typing import Iterable, Iterator, Optional
import gzip
import io
import re
import polars as pl

from config.config import OUTPUT_EXT, OUTPUT_SEP, COLUMN_ALIASES, RUN_SUFFIX_PATTERN
from qol.logger import get_logger

log = get_logger("qol")


def cleanup_interim(interim_dir: Path) -> None:
    """
    Delete all files under INTERIM while keeping folders.
    Silent if folder missing. Does not remove directories.

    Parameters
    ----------
    interim_dir : Path
        Root 'output/interim' directory.
    """
    if not interim_dir.exists():
        log.info(f"[CLEANUP] No interim folder found at {interim_dir}")
        return
    log.info(f"[CLEANUP] Deleting all files inside {interim_dir} (keeping folders).")
    for p in interim_dir.rglob("*"):
        if p.is_file():
            p.unlink()
    log.info("[CLEANUP] All intermediate files deleted.")

def _as_path(p) -> Path:
    return p if isinstance(p, Path) else Path(p)

def _to_snake(name: str) -> str:
    name = name.strip().replace("-", "_").replace(" ", "_")
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()

def _normalize_headers(df: pl.DataFrame) -> pl.DataFrame:
    ren = {c: _to_snake(c) for c in df.columns}
    # aliases only apply when the canonical name is not already present
    taken = set(ren.values())
    for raw, snake in ren.items():
        canon = COLUMN_ALIASES.get(snake)
        if canon and canon not in taken:
            ren[raw] = canon
            taken.add(canon)
    return df.rename(ren)


def missing_columns(df: pl.DataFrame, required: Iterable[str]) -> list[str]:
    """Return the required columns absent from df, in the order given."""
    return [c for c in required if c not in df.columns]

def load_file(path, required: Optional[Iterable[str]] = None) -> pl.DataFrame:
    """
    Robust CSV/TSV loader.
    - Detects delimiter from first line.
    - Retries with the alternative delimiter if width==1.
    - Normalizes headers to snake_case (plus known aliases) before validation.
    """
    path = _as_path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    # --- detect delimiter from first line
    with open(path, "rb") as fb:
        head = fb.read(4096)
    lines = head.decode("utf-8", errors="ignore").splitlines()
    first_line = lines[0] if lines else ""
    detected = "\t" if ("\t" in first_line and first_line.count("\t") >= first_line.count(",")) else ","

    # parsed raw headers (before normalization)
    raw_headers = [h.strip() for h in first_line.split(detected)] if first_line else []

    # schema overrides to prevent int inference on chr-like columns ("1", "X", ...)
    chr_like_raw = {"chr", "chrom", "chromosome", "seqnames", "seqname", "file_id", "sample_id"}
    schema_overrides = {h: pl.Utf8 for h in raw_headers if _to_snake(h) in chr_like_raw}

    nulls = ["", "NA", "na", "null", "Null", "N/A", "None"]

    def _read_with(sep: str) -> pl.DataFrame:
        return pl.read_csv(
            path,
            separator=sep,
            null_values=nulls,
            infer_schema_length=10000,
            ignore_errors=False,
            skip_rows=0,
            quote_char='"',
            try_parse_dates=False,
            schema_overrides=schema_overrides,
        )

    df = _read_with(detected)
    # fallback: if only one column, try the other separator
    if df.width == 1 and ("," in first_line or "\t" in first_line):
        alt = "," if detected == "\t" else "\t"
        df = _read_with(alt)

    # normalize headers like 'SampleName' -> 'sample_name', 'distanceToTSS' -> 'tss_distance'
    df = _normalize_headers(df)

    if required is not None:
        missing = missing_columns(df, required)
        if missing:
            raise ValueError(f"Missing required columns {missing} in {path}")

    return df


def save_file(df: pl.DataFrame, path: Path) -> Path:
    path = _as_path(path)
    if path.suffix.lower() != ".tsv":
        path = path.with_suffix(OUTPUT_EXT)  # from config
    ensure_dir(path.parent)
    df.write_csv(path, separator=OUTPUT_SEP)
    return path


def ensure_dir(path: Path) -> Path:
    path = _as_path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_stem(name: str | Path) -> str:
    """
    Return a filesystem-safe token for a sample name or input path.

    Examples
    --------
    >>> safe_stem("Donor 1 / week 4")
    'Donor_1_week_4'
    >>> safe_stem("reads.fasta.gz")
    'reads'
    """
    stem = str(name)
    # strip double extensions like .fasta.gz, .tsv.gz, etc.
    for suf in (".csv.gz", ".tsv.gz", ".fa.gz", ".fasta.gz"):
        if stem.endswith(suf):
            stem = stem[: -len(suf)]
            break
    for suf in (".tsv", ".csv", ".fasta", ".fa", ".gtf"):
        if stem.lower().endswith(suf):
            stem = stem[: -len(suf)]
            break
    return re.sub(r"[^\w.-]+", "_", stem).strip("_")


def open_text(path: Path):
    path = _as_path(path)
    if str(path).endswith(".gz"):
        return io.TextIOWrapper(gzip.open(path, "rb"), encoding="utf-8")
    return open(path, "r", encoding="utf-8")

def fasta_iter(handle) -> Iterator[tuple[str, str]]:
    """Yield (header, sequence) pairs from an open FASTA text handle."""
    header, chunks = None, []
    for line in handle:
        if not line:
            continue
        if line.startswith(">"):
            if header is not None:
                yield header, "".join(chunks)
            header, chunks = line[1:].strip(), []
        else:
            chunks.append(line.strip())
    if header is not None:
        yield header, "".join(chunks)


def strip_run_suffix(sample_id: str, pattern: str = RUN_SUFFIX_PATTERN) -> str:
    """
    Remove the sequencing-run suffix from a sample identifier.

    >>> strip_run_suffix("P1_rep2_S7_L001")
    'P1_rep2'
    """
    return re.sub(pattern, "", sample_id.strip())
