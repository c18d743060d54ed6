#!/usr/bin/env python3
"""
fetch_reference.py
==================
One-time download of the pinned reference genome FASTA and gene annotation GTF.

Overview
--------
Each resource is fetched only when its destination file does not exist yet, so
re-running the pipeline never re-downloads. Downloads stream into a `.part` file
that is renamed on success; a failed or interrupted transfer therefore never
leaves a truncated file at the final path.

Failures are retried FETCH_RETRIES times with a fixed FETCH_BACKOFF pause, after
which ExternalFetchError is raised. The pipeline never continues with partial
reference data.
"""

from __future__ import annotations
from pathlib import Path
import sys
import time
import requests

from config.config import (
    GENOME_URL, GTF_URL, GENOME_FA, GTF_FILE,
    FETCH_RETRIES, FETCH_BACKOFF, FETCH_TIMEOUT, FETCH_CHUNK,
)
from qol.exceptions import ExternalFetchError
from qol.logger import configure_logger, get_logger

log = get_logger("fetch")


def _download(url: str, dest: Path, timeout: int, chunk_size: int) -> None:
    part = dest.with_name(dest.name + ".part")
    response = None
    try:
        response = requests.get(url, stream=True, timeout=timeout)
        response.raise_for_status()  # 4xx/5xx -> HTTPError
        with open(part, "wb") as fh:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    fh.write(chunk)
        part.replace(dest)
    finally:
        if response is not None:
            response.close()
        if part.exists():
            part.unlink()


def fetch_resource(
    url: str,
    dest: Path,
    *,
    retries: int = FETCH_RETRIES,
    backoff: float = FETCH_BACKOFF,
    timeout: int = FETCH_TIMEOUT,
    chunk_size: int = FETCH_CHUNK,
) -> Path:
    """
    Download url to dest unless dest already exists.

    Parameters
    ----------
    url : str
        Source URL.
    dest : Path
        Final location of the file.
    retries : int
        Total number of attempts (>= 1).
    backoff : float
        Seconds to wait between attempts.

    Returns
    -------
    Path
        dest

    Raises
    ------
    ExternalFetchError
        When every attempt failed.
    """
    if not url:
        raise ValueError("URL cannot be empty.")
    dest = Path(dest)
    if dest.is_file():
        log.info(f"[FETCH] Already present, skipping: {dest}")
        return dest
    dest.parent.mkdir(parents=True, exist_ok=True)

    attempts = max(1, int(retries))
    last_error = None
    for attempt in range(1, attempts + 1):
        log.info(f"[FETCH] Downloading {url} -> {dest} (attempt {attempt}/{attempts})")
        try:
            _download(url, dest, timeout, chunk_size)
            log.info(f"[FETCH] Downloaded: {dest}")
            return dest
        except requests.exceptions.RequestException as e:
            last_error = e
            log.warning(f"[FETCH] Attempt {attempt} failed for {url}: {e}")
            if attempt < attempts and backoff > 0:
                time.sleep(backoff)
    raise ExternalFetchError(url, last_error)


def fetch_reference(genome_dest: Path = GENOME_FA, gtf_dest: Path = GTF_FILE) -> tuple[Path, Path]:
    """Fetch the pinned genome FASTA and GTF; returns their local paths."""
    genome = fetch_resource(GENOME_URL, genome_dest)
    gtf = fetch_resource(GTF_URL, gtf_dest)
    return genome, gtf


def main():
    configure_logger()
    genome, gtf = fetch_reference()
    log.info(f"[FETCH] genome: {genome}")
    log.info(f"[FETCH] gtf:    {gtf}")
    return 0

if __name__ == "__main__":
    sys.exit(main())
