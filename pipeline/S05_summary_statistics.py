"""
S05_summary_statistics.py
=========================
Stage 05 — Per-sample descriptive statistics on the consensus table.

Overview
--------
Read-only consumer of the Stage-03 consensus table. Computes, per sample_name:
• n_sites, total_score, max_fraction (largest single-site share of support)
• per-site fraction of the sample's total support
• the empirical feature-class distribution, zero-filled over all classes and
  stacked with the genome reference distribution from Stage 04

Outputs
-------
• FINAL/annotated_insertion_sites.tsv    : consensus sites + fraction + sample covariates
• STATS/sample_summary.tsv
• STATS/feature_distribution.tsv
"""

from __future__ import annotations
from typing import Iterable, Optional
import polars as pl

from config.config import FEATURE_CLASSES, GENOME_LABEL
from pipeline.S04_genome_features import annotation_class
from qol.logger import get_logger

log = get_logger("S05")

LOCATION = ["seqnames", "start", "end", "strand"]


def sample_covariates(metadata: pl.DataFrame) -> pl.DataFrame:
    """
    Collapse the per-file_id metadata to one row per sample_name.

    Covariates take the first non-null value among the sample's replicates;
    `n_replicates_listed` counts its file_ids.
    """
    covs = [c for c in metadata.columns if c not in ("file_id", "sample_name")]
    return (
        metadata.filter(pl.col("sample_name").is_not_null())
                .group_by("sample_name", maintain_order=True)
                .agg([pl.col("file_id").n_unique().alias("n_replicates_listed")] +
                     [pl.col(c).drop_nulls().first().alias(c) for c in covs])
    )


def site_fractions(filtered: pl.DataFrame) -> pl.DataFrame:
    """Add `fraction`: each site's score over its sample's total score."""
    return filtered.with_columns(
        (pl.col("score") / pl.col("score").sum().over("sample_name")).fill_nan(0.0).alias("fraction")
    )


def consolidated_table(filtered: pl.DataFrame, metadata: Optional[pl.DataFrame] = None) -> pl.DataFrame:
    """Consensus sites with fractions and sample-level covariates, sorted for publication."""
    out = site_fractions(filtered)
    if metadata is not None:
        covs = sample_covariates(metadata)
        keep = ["sample_name"] + [c for c in covs.columns if c not in out.columns]
        out = out.join(covs.select(keep), on="sample_name", how="left")
    return out.sort(["sample_name", "score"], descending=[False, True])


def _sample_list(filtered: pl.DataFrame, samples: Optional[Iterable[str]]) -> list[str]:
    names = set(filtered["sample_name"].drop_nulls().to_list())
    if samples is not None:
        names.update(s for s in samples if s is not None)
    return sorted(names)


def sample_summary(
    filtered: pl.DataFrame,
    metadata: Optional[pl.DataFrame] = None,
    samples: Optional[Iterable[str]] = None,
) -> pl.DataFrame:
    """
    One row per sample: n_sites, total_score, max_fraction (+ covariates).

    Samples listed in `samples` or `metadata` but without consensus sites get zeros.
    """
    if metadata is not None:
        samples = list(samples or []) + metadata["sample_name"].drop_nulls().to_list()
    base = pl.DataFrame({"sample_name": _sample_list(filtered, samples)}, schema={"sample_name": pl.Utf8})

    stats = (
        site_fractions(filtered)
        .group_by("sample_name")
        .agg([
            pl.struct(LOCATION).n_unique().alias("n_sites"),
            pl.col("score").sum().alias("total_score"),
            pl.col("fraction").max().alias("max_fraction"),
        ])
    )
    out = (
        base.join(stats, on="sample_name", how="left")
            .with_columns([
                pl.col("n_sites").fill_null(0).cast(pl.Int64),
                pl.col("total_score").fill_null(0).cast(pl.Int64),
                pl.col("max_fraction").fill_null(0.0),
            ])
    )
    if metadata is not None:
        covs = sample_covariates(metadata)
        out = out.join(covs, on="sample_name", how="left")
    return out.sort("sample_name")


def feature_distribution(
    filtered: pl.DataFrame,
    genome_features: Optional[pl.DataFrame] = None,
    samples: Optional[Iterable[str]] = None,
) -> pl.DataFrame:
    """
    Empirical feature-class distribution per sample, zero-filled over FEATURE_CLASSES.

    Parameters
    ----------
    filtered : pl.DataFrame
        Consensus table with sample_name and annotation.
    genome_features : pl.DataFrame, optional
        Stage-04 output (feature, bases, fraction); appended as sample GENOME_LABEL.
    samples : iterable of str, optional
        Extra samples to report even without sites (all-zero rows).

    Returns
    -------
    pl.DataFrame
        sample_name, feature, n_sites, bases, fraction. For each sample with sites
        the fractions over the six classes sum to 1.
    """
    order = pl.DataFrame(
        {"feature": FEATURE_CLASSES, "_order": list(range(len(FEATURE_CLASSES)))},
        schema={"feature": pl.Utf8, "_order": pl.Int64},
    )
    names = pl.DataFrame({"sample_name": _sample_list(filtered, samples)}, schema={"sample_name": pl.Utf8})
    grid = names.join(order, how="cross")

    located = filtered.filter(pl.col("sample_name").is_not_null())
    if "score" in located.columns:
        located = located.sort("score", descending=True, nulls_last=True)
    # one class per location, taken from its best-supported annotation
    counts = (
        located.unique(subset=["sample_name"] + LOCATION, keep="first", maintain_order=True)
                .with_columns(annotation_class(pl.col("annotation")).alias("feature"))
                .group_by(["sample_name", "feature"])
                .agg(pl.len().cast(pl.Int64).alias("n_sites"))
    )
    dist = (
        grid.join(counts, on=["sample_name", "feature"], how="left")
            .with_columns(pl.col("n_sites").fill_null(0))
            .with_columns(
                (pl.col("n_sites") / pl.col("n_sites").sum().over("sample_name")).fill_nan(0.0).alias("fraction")
            )
            .with_columns(pl.lit(None, dtype=pl.Int64).alias("bases"))
            .sort(["sample_name", "_order"])
            .select(["sample_name", "feature", "n_sites", "bases", "fraction"])
    )

    if genome_features is not None:
        genome = (
            genome_features.join(order, on="feature", how="inner")
                           .sort("_order")
                           .select([
                               pl.lit(GENOME_LABEL).alias("sample_name"),
                               pl.col("feature"),
                               pl.lit(None, dtype=pl.Int64).alias("n_sites"),
                               pl.col("bases").cast(pl.Int64),
                               pl.col("fraction").cast(pl.Float64),
                           ])
        )
        dist = pl.concat([dist, genome], how="vertical")

    log.info(f"[S05] feature distribution for {names.height} samples")
    return dist


def run(
    filtered: pl.DataFrame,
    metadata: Optional[pl.DataFrame],
    genome_features: Optional[pl.DataFrame],
) -> tuple[pl.DataFrame, pl.DataFrame, pl.DataFrame]:
    """
    Stage 05 entry point.

    Returns
    -------
    tuple
        (consolidated table, sample summary, feature distribution)
    """
    samples = metadata["sample_name"].drop_nulls().to_list() if metadata is not None else None
    return (
        consolidated_table(filtered, metadata),
        sample_summary(filtered, metadata),
        feature_distribution(filtered, genome_features, samples=samples),
    )
