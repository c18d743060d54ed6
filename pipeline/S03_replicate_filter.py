"""
S03_replicate_filter.py
=======================
Stage 03 — Replicate-consensus filtering and replicate agreement statistics.

Overview
--------
A single-replicate detection is treated as a PCR/sequencing artifact. An
insertion site is kept for a biological sample only when it was observed at the
same location in at least MIN_REPLICATES technical replicates (`file_id`) of that
sample; the support `score` of the concordant rows is then summed.

Alongside the filter, two descriptive tables quantify how reproducible each
sample is. They are sensitivity analyses only and never change the filtered
dataset:
• overlap      : for each combination of k replicates, the sites present in all of them
• concordance  : sites observed in exactly k / at least k of the N replicates ("k of N")

Notes
-----
• Rows with score <= 0 carry no supporting fragment and count as non-detections.
• Rows without sample_name (no metadata) cannot be assigned to a biological
  sample and are left out of the consensus; they stay in the joined table.
"""

from __future__ import annotations
from itertools import combinations
from typing import Iterable
import polars as pl

from config.config import MIN_REPLICATES, REPLICATE_SUBSET_SIZES
from qol.logger import get_logger

log = get_logger("S03")

LOCATION = ["seqnames", "start", "end", "strand"]
GROUP_KEY = ["sample_name"] + LOCATION
ANNOTATED_KEY = GROUP_KEY + ["annotation", "tss_distance"]


def _detections(df: pl.DataFrame) -> pl.DataFrame:
    """Rows that count as an observation of a site for a known sample."""
    detected = df.filter(pl.col("score") > 0)
    orphans = detected.filter(pl.col("sample_name").is_null())
    if orphans.height:
        log.warning(f"[S03] {orphans.height:,} detections without sample_name excluded from replicate analysis")
    return detected.filter(pl.col("sample_name").is_not_null())


def consensus_filter(df: pl.DataFrame, min_replicates: int = MIN_REPLICATES) -> pl.DataFrame:
    """
    Keep sites observed in at least `min_replicates` technical replicates and sum their support.

    Parameters
    ----------
    df : pl.DataFrame
        Joined table (Stage 02) with sample_name, file_id, location, score,
        annotation and tss_distance.
    min_replicates : int
        Minimum number of distinct file_ids that must observe the location.

    Returns
    -------
    pl.DataFrame
        One row per (sample_name, seqnames, start, end, strand, annotation, tss_distance)
        with `score` summed over the surviving rows and `n_replicates`.
    """
    if min_replicates < 1:
        raise ValueError(f"min_replicates must be >= 1, got {min_replicates}")

    detected = _detections(df)
    support = (
        detected.group_by(GROUP_KEY)
                .agg(pl.col("file_id").n_unique().alias("n_replicates"))
                .filter(pl.col("n_replicates") >= min_replicates)
    )
    survivors = detected.join(support, on=GROUP_KEY, how="inner")
    out = (
        survivors.group_by(ANNOTATED_KEY)
                 .agg([
                     pl.col("score").sum().alias("score"),
                     pl.col("n_replicates").first(),
                 ])
                 .sort(GROUP_KEY)
    )
    log.info(
        f"[S03] consensus (>= {min_replicates} replicates): "
        f"{out.height:,} of {detected.select(GROUP_KEY).unique().height:,} sample sites kept"
    )
    return out


def _replicates_per_sample(df: pl.DataFrame) -> dict[str, list[str]]:
    """Sorted file_ids of every sample, including replicates without detections."""
    reps = (
        df.filter(pl.col("sample_name").is_not_null() & pl.col("file_id").is_not_null())
          .group_by("sample_name")
          .agg(pl.col("file_id").unique().sort())
          .sort("sample_name")
    )
    return {row["sample_name"]: list(row["file_id"]) for row in reps.iter_rows(named=True)}


def replicate_concordance(df: pl.DataFrame) -> pl.DataFrame:
    """
    Count sites by the number of replicates that observed them.

    Returns
    -------
    pl.DataFrame
        sample_name, k, n_total_replicates, comparison ("k of N"), n_exact, n_at_least
    """
    reps = _replicates_per_sample(df)
    observed = (
        _detections(df).group_by(GROUP_KEY)
                       .agg(pl.col("file_id").n_unique().alias("n_observed"))
    )
    rows = []
    for sample, file_ids in reps.items():
        n_total = len(file_ids)
        counts = observed.filter(pl.col("sample_name") == sample)["n_observed"]
        for k in range(1, n_total + 1):
            rows.append({
                "sample_name": sample,
                "k": k,
                "n_total_replicates": n_total,
                "comparison": f"{k} of {n_total}",
                "n_exact": int((counts == k).sum()),
                "n_at_least": int((counts >= k).sum()),
            })
    schema = {"sample_name": pl.Utf8, "k": pl.Int64, "n_total_replicates": pl.Int64,
              "comparison": pl.Utf8, "n_exact": pl.Int64, "n_at_least": pl.Int64}
    return pl.DataFrame(rows, schema=schema)


def replicate_overlap(df: pl.DataFrame, subset_sizes: Iterable[int] = REPLICATE_SUBSET_SIZES) -> pl.DataFrame:
    """
    For every combination of k replicates of a sample, count the sites present in all k.

    Returns
    -------
    pl.DataFrame
        sample_name, k, replicates ('a+b'), n_sites
    """
    reps = _replicates_per_sample(df)
    detected = _detections(df).select(GROUP_KEY + ["file_id"]).unique()
    rows = []
    for sample, file_ids in reps.items():
        sample_rows = detected.filter(pl.col("sample_name") == sample)
        for k in subset_sizes:
            if k < 1 or k > len(file_ids):
                continue
            for combo in combinations(file_ids, k):
                n_sites = (
                    sample_rows.filter(pl.col("file_id").is_in(list(combo)))
                               .group_by(LOCATION)
                               .agg(pl.col("file_id").n_unique().alias("n"))
                               .filter(pl.col("n") == k)
                               .height
                )
                rows.append({
                    "sample_name": sample,
                    "k": k,
                    "replicates": "+".join(combo),
                    "n_sites": n_sites,
                })
    schema = {"sample_name": pl.Utf8, "k": pl.Int64, "replicates": pl.Utf8, "n_sites": pl.Int64}
    return pl.DataFrame(rows, schema=schema)


def replicate_score_matrix(df: pl.DataFrame, sample: str) -> pl.DataFrame:
    """
    Wide table of one sample's scores: one row per location, one column per replicate (0 when absent).
    """
    sample_rows = _detections(df).filter(pl.col("sample_name") == sample)
    if sample_rows.is_empty():
        return pl.DataFrame(schema={c: pl.Utf8 if c in ("seqnames", "strand") else pl.Int64 for c in LOCATION})
    wide = sample_rows.pivot(on="file_id", index=LOCATION, values="score", aggregate_function="sum")
    rep_cols = sorted(c for c in wide.columns if c not in LOCATION)
    return wide.select(LOCATION + rep_cols).fill_null(0)


def run(joined: pl.DataFrame, min_replicates: int = MIN_REPLICATES) -> tuple[pl.DataFrame, pl.DataFrame, pl.DataFrame]:
    """
    Stage 03 entry point.

    Returns
    -------
    tuple
        (consensus table, overlap table, concordance table)
    """
    filtered = consensus_filter(joined, min_replicates=min_replicates)
    overlap = replicate_overlap(joined)
    concordance = replicate_concordance(joined)
    return filtered, overlap, concordance
