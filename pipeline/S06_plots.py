"""
S06_plots.py
============
Stage 06 — Publication plots for the consensus insertion sites.

Overview
--------
Renders a fixed set of vector figures under VISUALS, with file names derived
from the sample name so re-runs overwrite the same files:

Cohort-level
  • site_counts.svg              unique consensus sites per sample
  • feature_distribution.svg     feature-class fractions per sample vs. genome
  • relative_abundance.svg       top-N sites' share of support per sample
  • replicate_concordance.svg    sites observed in at least k of N replicates
Per sample
  • <sample>_replicate_correlation.svg   pairwise log10(score + 1) across replicates
  • <sample>_sequence_logo.svg           information content of flanking sequences
  • <sample>_karyogram.svg               site locations along the chromosomes

Notes
-----
• Figures are drawn on the non-interactive Agg backend.
• Per-sample plots that lack data (one replicate, no flanking sequences, no
  chromosome sizes) are skipped with a log message instead of an empty figure.
"""

from __future__ import annotations
from pathlib import Path
from typing import Optional
import re

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import polars as pl
import seaborn as sns
import logomaker

from config.config import (
    VISUALS, PLOTS_FILETYPE, PLOTS_DPI, FIG_SIZE, TOP_N_SITES, PALETTE,
    FEATURE_CLASSES, GENOME_LABEL,
)
from pipeline.S03_replicate_filter import LOCATION, replicate_score_matrix
from qol.logger import get_logger
from qol.utilities import ensure_dir, safe_stem

log = get_logger("S06")

NUCLEOTIDES = ["A", "C", "G", "T"]
_CANONICAL_CHROM = re.compile(r"^(?:chr)?(?:\d+|X|Y)$")


# ------------------------- helpers -------------------------
def _save(fig, out_dir: Path, stem: str) -> Path:
    ensure_dir(out_dir)
    path = Path(out_dir) / f"{stem}.{PLOTS_FILETYPE}"
    fig.savefig(path, format=PLOTS_FILETYPE, dpi=PLOTS_DPI, bbox_inches="tight")
    plt.close(fig)
    return path


def sample_colors(samples: list[str]) -> dict[str, tuple]:
    """Stable color per sample (sorted order), genome reference in grey."""
    names = sorted(s for s in set(samples) if s != GENOME_LABEL)
    colors = dict(zip(names, sns.color_palette(PALETTE, max(len(names), 1))))
    colors[GENOME_LABEL] = (0.6, 0.6, 0.6)
    return colors


def _bare_chrom(name: str) -> str:
    """Chromosome name without a UCSC "chr" prefix; chrM and MT compare equal."""
    core = name[3:] if name.lower().startswith("chr") else name
    return "MT" if core == "M" else core


def _chrom_key(name: str):
    core = _bare_chrom(name)
    if core.isdigit():
        return (0, int(core), "")
    return (1, 0, core)


# ------------------------- cohort plots -------------------------
def plot_site_counts(summary: pl.DataFrame, out_dir: Path = VISUALS) -> Path:
    """Bar chart of unique consensus sites per sample."""
    pdf = summary.select(["sample_name", "n_sites"]).to_pandas()
    colors = sample_colors(pdf["sample_name"].tolist())
    fig, ax = plt.subplots(figsize=FIG_SIZE)
    ax.bar(pdf["sample_name"], pdf["n_sites"], color=[colors[s] for s in pdf["sample_name"]])
    ax.set_ylabel("Unique insertion sites")
    ax.set_xlabel("")
    ax.tick_params(axis="x", labelrotation=45)
    sns.despine(fig)
    return _save(fig, out_dir, "site_counts")


def plot_feature_distribution(dist: pl.DataFrame, out_dir: Path = VISUALS) -> Path:
    """Grouped bars of feature-class fractions, genome reference included."""
    pdf = dist.select(["sample_name", "feature", "fraction"]).to_pandas()
    colors = sample_colors(pdf["sample_name"].tolist())
    hue_order = sorted(s for s in pdf["sample_name"].unique() if s != GENOME_LABEL)
    if GENOME_LABEL in set(pdf["sample_name"]):
        hue_order.append(GENOME_LABEL)
    fig, ax = plt.subplots(figsize=FIG_SIZE)
    sns.barplot(
        data=pdf, x="feature", y="fraction", hue="sample_name",
        order=FEATURE_CLASSES, hue_order=hue_order, palette=colors, ax=ax,
    )
    ax.set_xlabel("")
    ax.set_ylabel("Fraction of sites")
    ax.legend(title="", frameon=False, bbox_to_anchor=(1.01, 1), loc="upper left")
    sns.despine(fig)
    return _save(fig, out_dir, "feature_distribution")


def plot_relative_abundance(consolidated: pl.DataFrame, out_dir: Path = VISUALS, top_n: int = TOP_N_SITES) -> Path:
    """
    Stacked bars per sample: the top_n sites by support individually, the rest pooled as 'Other'.
    """
    fig, ax = plt.subplots(figsize=FIG_SIZE)
    samples = sorted(consolidated["sample_name"].drop_nulls().unique().to_list())
    palette = sns.color_palette("tab20", top_n)
    for i, sample in enumerate(samples):
        rows = (
            consolidated.filter(pl.col("sample_name") == sample)
                        .sort("fraction", descending=True)
        )
        top = rows.head(top_n)
        bottom = 0.0
        for j, row in enumerate(top.iter_rows(named=True)):
            ax.bar(i, row["fraction"], bottom=bottom, color=palette[j % len(palette)], edgecolor="white", linewidth=0.3)
            bottom += row["fraction"]
        other = max(0.0, 1.0 - bottom)
        if other > 0:
            ax.bar(i, other, bottom=bottom, color=(0.85, 0.85, 0.85), edgecolor="white", linewidth=0.3)
    ax.set_xticks(range(len(samples)))
    ax.set_xticklabels(samples, rotation=45, ha="right")
    ax.set_ylim(0, 1)
    ax.set_ylabel(f"Fraction of support (top {top_n} sites, grey = other)")
    sns.despine(fig)
    return _save(fig, out_dir, "relative_abundance")


def plot_replicate_concordance(concordance: pl.DataFrame, out_dir: Path = VISUALS) -> Path:
    """Bars of sites observed in at least k of N replicates, per sample."""
    pdf = concordance.select(["sample_name", "k", "n_at_least"]).to_pandas()
    pdf["k"] = pdf["k"].astype(str)
    fig, ax = plt.subplots(figsize=FIG_SIZE)
    sns.barplot(data=pdf, x="sample_name", y="n_at_least", hue="k", palette="Blues", ax=ax)
    ax.set_xlabel("")
    ax.set_ylabel("Sites observed in >= k replicates")
    ax.tick_params(axis="x", labelrotation=45)
    ax.legend(title="k", frameon=False)
    sns.despine(fig)
    return _save(fig, out_dir, "replicate_concordance")


# ------------------------- per-sample plots -------------------------
def _annotate_corr(x, y, **kws):
    r = np.corrcoef(x, y)[0, 1] if len(x) > 1 else float("nan")
    ax = plt.gca()
    ax.annotate(f"r = {r:.2f}", xy=(0.5, 0.5), xycoords=ax.transAxes, ha="center", va="center", fontsize=11)
    ax.set_axis_off()


def plot_replicate_correlation(joined: pl.DataFrame, sample: str, out_dir: Path = VISUALS) -> Optional[Path]:
    """
    Pairwise grid of log10(score + 1) between the technical replicates of one sample:
    scatter below the diagonal, distribution on it, Pearson r above it.
    """
    matrix = replicate_score_matrix(joined, sample)
    reps = [c for c in matrix.columns if c not in LOCATION]
    if len(reps) < 2 or matrix.height < 2:
        log.info(f"[S06] {sample}: fewer than 2 replicates or sites, no correlation grid")
        return None
    pdf = matrix.select([(pl.col(c) + 1).log10().alias(c) for c in reps]).to_pandas()
    grid = sns.PairGrid(pdf, height=2.0)
    grid.map_lower(sns.scatterplot, s=8, alpha=0.6, edgecolor=None)
    grid.map_diag(sns.histplot, bins=20)
    grid.map_upper(_annotate_corr)
    grid.figure.suptitle(f"{sample}: log10(score + 1)", y=1.02)
    return _save(grid.figure, out_dir, f"{safe_stem(sample)}_replicate_correlation")


def consensus_sequences(flanks: pl.DataFrame, joined: pl.DataFrame, filtered: pl.DataFrame) -> pl.DataFrame:
    """
    Flanking sequences of consensus sites, one per (sample_name, location).
    """
    file_samples = joined.select(["file_id", "sample_name"]).drop_nulls().unique()
    keys = filtered.select(["sample_name"] + LOCATION).unique()
    return (
        flanks.join(file_samples, on="file_id", how="inner")
              .join(keys, on=["sample_name"] + LOCATION, how="inner")
              .unique(subset=["sample_name"] + LOCATION, keep="first", maintain_order=True)
              .select(["sample_name"] + LOCATION + ["sequence"])
    )


def plot_sequence_logo(sequences: list[str], sample: str, out_dir: Path = VISUALS) -> Optional[Path]:
    """
    Information-content logo of equal-length flanking sequences.

    Sequences of a length other than the most common one are left out.
    """
    seqs = [s.upper() for s in sequences if s]
    if not seqs:
        log.info(f"[S06] {sample}: no flanking sequences, no logo")
        return None
    lengths = pd.Series([len(s) for s in seqs])
    width = int(lengths.mode().iloc[0])
    kept = [s for s in seqs if len(s) == width]
    if len(kept) < len(seqs):
        log.warning(f"[S06] {sample}: {len(seqs) - len(kept)} flanking sequences not {width} nt long, left out of logo")

    counts = logomaker.alignment_to_matrix(kept, to_type="counts", characters_to_ignore=".-NX")
    counts = counts.reindex(columns=NUCLEOTIDES, fill_value=0)
    info = logomaker.transform_matrix(counts, from_type="counts", to_type="information")

    fig, ax = plt.subplots(figsize=(max(4.0, 0.3 * width), 2.5))
    logomaker.Logo(info, ax=ax, color_scheme="classic")
    ax.set_ylabel("bits")
    ax.set_xlabel("position")
    ax.set_title(f"{sample} (n = {len(kept)})")
    sns.despine(fig)
    return _save(fig, out_dir, f"{safe_stem(sample)}_sequence_logo")


def plot_karyogram(
    sites: pl.DataFrame,
    chrom_sizes: pl.DataFrame,
    sample: str,
    out_dir: Path = VISUALS,
) -> Optional[Path]:
    """
    Chromosome ideogram with one tick per site: plus-strand ticks above the
    chromosome, minus-strand ticks below.
    """
    if chrom_sizes is None or chrom_sizes.is_empty():
        log.info(f"[S06] {sample}: no chromosome sizes, no karyogram")
        return None
    sizes = dict(zip(chrom_sizes["seqnames"].to_list(), chrom_sizes["length"].to_list()))

    # site names follow the sizes table (chr1 vs 1)
    by_core = {_bare_chrom(c): c for c in sizes}
    renamed = [by_core.get(_bare_chrom(c)) if c is not None else None for c in sites["seqnames"].to_list()]
    sites = sites.with_columns(pl.Series("seqnames", renamed, dtype=pl.Utf8))
    unplaced = sites["seqnames"].null_count()
    if unplaced:
        log.warning(f"[S06] {sample}: {unplaced} sites on sequences absent from the chromosome sizes, not drawn")
    present = set(sites["seqnames"].drop_nulls().to_list())
    chroms = sorted(
        (c for c in sizes if _CANONICAL_CHROM.match(c) or c in present),
        key=_chrom_key,
    )
    if not chroms:
        return None

    fig, ax = plt.subplots(figsize=(FIG_SIZE[0], max(3.0, 0.3 * len(chroms))))
    ymap = {c: len(chroms) - 1 - i for i, c in enumerate(chroms)}
    for c in chroms:
        ax.barh(ymap[c], sizes[c] / 1e6, height=0.35, color=(0.9, 0.9, 0.9), edgecolor=(0.5, 0.5, 0.5), linewidth=0.5)

    colors = {"+": "#c0392b", "-": "#2471a3"}
    placed = sites.filter(pl.col("seqnames").is_in(chroms))
    for strand, color in colors.items():
        sub = placed.filter(pl.col("strand") == strand)
        if sub.is_empty():
            continue
        x = ((sub["start"] + sub["end"]) / 2 / 1e6).to_numpy()
        y = np.array([ymap[c] for c in sub["seqnames"].to_list()], dtype=float)
        lo, hi = (y, y + 0.4) if strand == "+" else (y - 0.4, y)
        ax.vlines(x, lo, hi, color=color, linewidth=0.8, label=f"{strand} strand")

    ax.set_yticks([ymap[c] for c in chroms])
    ax.set_yticklabels(chroms)
    ax.set_xlabel("Position (Mb)")
    ax.set_title(f"{sample} (n = {sites.height})")
    if not placed.is_empty():
        ax.legend(frameon=False, loc="lower right")
    sns.despine(fig, left=True)
    return _save(fig, out_dir, f"{safe_stem(sample)}_karyogram")


# ------------------------- orchestration -------------------------
def make_plots(
    *,
    summary: pl.DataFrame,
    distribution: pl.DataFrame,
    consolidated: pl.DataFrame,
    concordance: pl.DataFrame,
    joined: pl.DataFrame,
    filtered: pl.DataFrame,
    flanks: Optional[pl.DataFrame] = None,
    chrom_sizes: Optional[pl.DataFrame] = None,
    out_dir: Path = VISUALS,
) -> dict[str, list[Path]]:
    """
    Render every figure.

    Returns
    -------
    dict
        'cohort' -> list of cohort-level figure paths, and one key per sample
        with that sample's figure paths (for the report).
    """
    figures: dict[str, list[Path]] = {"cohort": [
        plot_site_counts(summary, out_dir),
        plot_feature_distribution(distribution, out_dir),
        plot_relative_abundance(consolidated, out_dir),
        plot_replicate_concordance(concordance, out_dir),
    ]}

    logos = consensus_sequences(flanks, joined, filtered) if flanks is not None else None
    for sample in summary["sample_name"].to_list():
        paths = [plot_replicate_correlation(joined, sample, out_dir)]
        if logos is not None:
            seqs = logos.filter(pl.col("sample_name") == sample)["sequence"].to_list()
            paths.append(plot_sequence_logo(seqs, sample, out_dir))
        if chrom_sizes is not None:
            sites = filtered.filter(pl.col("sample_name") == sample)
            paths.append(plot_karyogram(sites, chrom_sizes, sample, out_dir))
        figures[sample] = [p for p in paths if p is not None]

    n = sum(len(v) for v in figures.values())
    log.info(f"[S06] {n} figures written to {out_dir}")
    return figures


def run(**tables) -> dict[str, list[Path]]:
    """Stage 06 entry point; see make_plots for the expected tables."""
    return make_plots(**tables)
