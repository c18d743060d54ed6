"""
S04_genome_features.py
======================
Stage 04 — Partition the reference genome into priority-ordered feature classes.

Overview
--------
Builds a fixed reference distribution of genomic features, independent of the
sample data, against which the empirical per-sample annotation distribution is
compared. Classes are claimed in priority order, each one losing whatever a
higher-priority class already covers:

  1. Promoter           [-PROMOTER_UPSTREAM, +PROMOTER_DOWNSTREAM) around every transcript TSS
  2. 3' UTR             per-transcript 3' UTRs
  3. Exon               all exons
  4. Intron             gaps between consecutive exons of each transcript
  5. Downstream         DOWNSTREAM_WINDOW bases past each gene's 3' end
  6. Distal Intergenic  genome length minus the five classes above

Inputs
------
• Gene model lookup (qol.build_gtf_lookups): transcript_id, gene_id, feature_type,
  strand, seqnames, start, end in GTF coordinates (1-based, closed).
• Chromosome sizes (qol.build_fasta_lookup): seqnames, length.

Outputs
-------
• pl.DataFrame: feature, bases, fraction, one row per class, in priority order.

Notes
-----
• Interval sets are 0-based half-open (seqnames, start, end) polars frames;
  merging and subtraction go through bioframe.
• Sets are reduced (overlapping and adjacent intervals merged) before measuring,
  and reduction ignores strand, so no base is ever counted twice.
• Windows are strand-aware: on the minus strand "upstream" lies at higher
  coordinates and "downstream" at lower ones.
• Intervals are clipped to chromosome bounds; sequences absent from the
  chromosome sizes table are dropped.
"""

from __future__ import annotations
import bioframe as bf
import polars as pl

from config.config import (
    FEATURE_CLASSES, PROMOTER_UPSTREAM, PROMOTER_DOWNSTREAM, DOWNSTREAM_WINDOW,
)
from qol.exceptions import ReferenceDataError
from qol.logger import get_logger

log = get_logger("S04")

INTERVAL_COLS = ["seqnames", "start", "end"]
INTERVAL_SCHEMA = {"seqnames": pl.Utf8, "start": pl.Int64, "end": pl.Int64}
BF_COLS = tuple(INTERVAL_COLS)

# Upstream annotation labels (text before any parenthesis, lower-cased) -> feature class.
ANNOTATION_CLASSES = {
    "promoter": "Promoter",
    "3' utr": "3' UTR",
    "3'utr": "3' UTR",
    "3 utr": "3' UTR",
    "5' utr": "Exon",
    "5'utr": "Exon",
    "5 utr": "Exon",
    "exon": "Exon",
    "intron": "Intron",
    "downstream": "Downstream",
    "distal intergenic": "Distal Intergenic",
    "intergenic": "Distal Intergenic",
}


# ------------------------- Interval primitives -------------------------
def empty_intervals() -> pl.DataFrame:
    return pl.DataFrame(schema=INTERVAL_SCHEMA)


def _as_intervals(df: pl.DataFrame) -> pl.DataFrame:
    return df.select([
        pl.col("seqnames").cast(pl.Utf8),
        pl.col("start").cast(pl.Int64),
        pl.col("end").cast(pl.Int64),
    ])


def _from_bioframe(pdf) -> pl.DataFrame:
    """Back from a bioframe (pandas) interval table to a sorted polars set."""
    if pdf.empty:
        return empty_intervals()
    return (
        _as_intervals(pl.from_pandas(pdf[INTERVAL_COLS]))
        .drop_nulls()
        .sort(["seqnames", "start"])
    )


def reduce_intervals(intervals: pl.DataFrame) -> pl.DataFrame:
    """
    Merge overlapping and adjacent intervals into a minimal sorted, non-overlapping set.

    Parameters
    ----------
    intervals : pl.DataFrame
        seqnames, start, end (0-based half-open). Extra columns are dropped,
        empty or inverted intervals are ignored.

    Returns
    -------
    pl.DataFrame
        seqnames, start, end sorted by seqnames then start.
    """
    iv = _as_intervals(intervals).filter(pl.col("end") > pl.col("start"))
    if iv.is_empty():
        return empty_intervals()
    # min_dist=0 also merges book-ended intervals ([0, 10) and [10, 20))
    merged = bf.merge(iv.to_pandas(), cols=BF_COLS, min_dist=0)
    return _from_bioframe(merged)


def union_intervals(*sets: pl.DataFrame) -> pl.DataFrame:
    """Reduced union of any number of interval sets."""
    frames = [_as_intervals(s) for s in sets if not s.is_empty()]
    if not frames:
        return empty_intervals()
    return reduce_intervals(pl.concat(frames, how="vertical"))


def subtract_intervals(a: pl.DataFrame, b: pl.DataFrame) -> pl.DataFrame:
    """Bases covered by `a` and not by `b`, as a reduced interval set."""
    a = reduce_intervals(a)
    if a.is_empty():
        return empty_intervals()
    b = reduce_intervals(b)
    if b.is_empty():
        return a
    remainder = bf.subtract(a.to_pandas(), b.to_pandas(), cols1=BF_COLS, cols2=BF_COLS)
    return reduce_intervals(_from_bioframe(remainder))


def total_width(intervals: pl.DataFrame) -> int:
    """Number of bases covered (after reduction)."""
    iv = reduce_intervals(intervals)
    if iv.is_empty():
        return 0
    return int((iv["end"] - iv["start"]).sum())


def clip_to_genome(intervals: pl.DataFrame, chrom_sizes: pl.DataFrame) -> pl.DataFrame:
    """
    Clip intervals to [0, length) of their sequence; drop sequences not in chrom_sizes.
    """
    if intervals.is_empty():
        return empty_intervals()
    sizes = chrom_sizes.select([pl.col("seqnames").cast(pl.Utf8), pl.col("length").cast(pl.Int64)]).unique("seqnames")
    return (
        _as_intervals(intervals)
        .join(sizes, on="seqnames", how="inner")
        .with_columns([
            pl.col("start").clip(lower_bound=0).alias("start"),
            pl.min_horizontal("end", "length").alias("end"),
        ])
        .filter(pl.col("end") > pl.col("start"))
        .select(INTERVAL_COLS)
    )


# ------------------------- Gene model regions -------------------------
def _features(model: pl.DataFrame, feature_type: str) -> pl.DataFrame:
    return model.filter(pl.col("feature_type") == feature_type)


def _transcripts(model: pl.DataFrame) -> pl.DataFrame:
    """
    Transcript extents (1-based, closed) with strand. GTFs without 'transcript'
    records fall back to the span of each transcript's exons.
    """
    tx = _features(model, "transcript")
    if not tx.is_empty():
        return tx.select(["transcript_id", "gene_id", "seqnames", "strand", "start", "end"])
    return (
        _features(model, "exon")
        .filter(pl.col("transcript_id").is_not_null())
        .group_by("transcript_id")
        .agg([
            pl.col("gene_id").first(),
            pl.col("seqnames").first(),
            pl.col("strand").first(),
            pl.col("start").min(),
            pl.col("end").max(),
        ])
    )


def _genes(model: pl.DataFrame) -> pl.DataFrame:
    """Gene extents; falls back to the span of each gene's transcripts."""
    genes = _features(model, "gene")
    if not genes.is_empty():
        return genes.select(["gene_id", "seqnames", "strand", "start", "end"])
    return (
        _transcripts(model)
        .filter(pl.col("gene_id").is_not_null())
        .group_by("gene_id")
        .agg([
            pl.col("seqnames").first(),
            pl.col("strand").first(),
            pl.col("start").min(),
            pl.col("end").max(),
        ])
    )


def promoter_regions(
    model: pl.DataFrame,
    upstream: int = PROMOTER_UPSTREAM,
    downstream: int = PROMOTER_DOWNSTREAM,
) -> pl.DataFrame:
    """
    Strand-aware windows around every transcript TSS.

    '+' strand: TSS = start, window [TSS0 - upstream, TSS0 + downstream)
    '-' strand: TSS = end,   window [end - downstream, end + upstream)
    (TSS0 is the 0-based TSS; coordinates below 0 are clipped later.)
    """
    tx = _transcripts(model)
    if tx.is_empty():
        return empty_intervals()
    plus = pl.col("strand") == "+"
    return reduce_intervals(
        tx.select([
            pl.col("seqnames"),
            pl.when(plus).then(pl.col("start") - 1 - upstream)
              .otherwise(pl.col("end") - downstream).alias("start"),
            pl.when(plus).then(pl.col("start") - 1 + downstream)
              .otherwise(pl.col("end") + upstream).alias("end"),
        ]).with_columns(pl.col("start").clip(lower_bound=0))
    )


def three_utr_regions(model: pl.DataFrame) -> pl.DataFrame:
    """
    3' UTR intervals. Uses 'three_prime_utr' records (Ensembl); generic 'UTR'
    records (GENCODE) count as 3' when they lie past the CDS of their transcript.
    """
    parts = [
        _features(model, "three_prime_utr").select([pl.col("seqnames"), (pl.col("start") - 1).alias("start"), pl.col("end")])
    ]
    utr = _features(model, "UTR")
    if not utr.is_empty():
        cds = (
            _features(model, "CDS")
            .group_by("transcript_id")
            .agg([pl.col("start").min().alias("cds_start"), pl.col("end").max().alias("cds_end")])
        )
        three = (
            utr.join(cds, on="transcript_id", how="inner")
               .filter(
                   ((pl.col("strand") == "+") & (pl.col("start") > pl.col("cds_end"))) |
                   ((pl.col("strand") == "-") & (pl.col("end") < pl.col("cds_start")))
               )
               .select([pl.col("seqnames"), (pl.col("start") - 1).alias("start"), pl.col("end")])
        )
        parts.append(three)
    return union_intervals(*parts)


def exon_regions(model: pl.DataFrame) -> pl.DataFrame:
    return reduce_intervals(
        _features(model, "exon").select([pl.col("seqnames"), (pl.col("start") - 1).alias("start"), pl.col("end")])
    )


def intron_regions(model: pl.DataFrame) -> pl.DataFrame:
    """Per-transcript gaps between consecutive exons."""
    exons = _features(model, "exon").filter(pl.col("transcript_id").is_not_null())
    if exons.is_empty():
        return empty_intervals()
    return reduce_intervals(
        exons.select([
                pl.col("transcript_id"),
                pl.col("seqnames"),
                (pl.col("start") - 1).alias("start"),
                pl.col("end"),
             ])
             .sort(["transcript_id", "start"])
             .with_columns(pl.col("end").cum_max().shift(1).over("transcript_id").alias("prev_end"))
             .filter(pl.col("prev_end").is_not_null() & (pl.col("start") > pl.col("prev_end")))
             .select([pl.col("seqnames"), pl.col("prev_end").alias("start"), pl.col("start").alias("end")])
    )


def downstream_regions(model: pl.DataFrame, window: int = DOWNSTREAM_WINDOW) -> pl.DataFrame:
    """
    Strand-aware windows immediately past each gene's 3' end.

    '+' strand: [end, end + window)              above the gene end
    '-' strand: [start - 1 - window, start - 1)  below the gene start
    """
    genes = _genes(model)
    if genes.is_empty() or window <= 0:
        return empty_intervals()
    plus = pl.col("strand") == "+"
    return reduce_intervals(
        genes.select([
            pl.col("seqnames"),
            pl.when(plus).then(pl.col("end")).otherwise(pl.col("start") - 1 - window).alias("start"),
            pl.when(plus).then(pl.col("end") + window).otherwise(pl.col("start") - 1).alias("end"),
        ]).with_columns(pl.col("start").clip(lower_bound=0))
    )


# ------------------------- Classification -------------------------
def feature_regions(
    model: pl.DataFrame,
    chrom_sizes: pl.DataFrame,
    *,
    upstream: int = PROMOTER_UPSTREAM,
    downstream: int = PROMOTER_DOWNSTREAM,
    downstream_window: int = DOWNSTREAM_WINDOW,
) -> dict[str, pl.DataFrame]:
    """
    Mutually exclusive interval sets for the five explicit classes, in priority order.
    """
    candidates = [
        ("Promoter", promoter_regions(model, upstream=upstream, downstream=downstream)),
        ("3' UTR", three_utr_regions(model)),
        ("Exon", exon_regions(model)),
        ("Intron", intron_regions(model)),
        ("Downstream", downstream_regions(model, window=downstream_window)),
    ]
    claimed = empty_intervals()
    regions = {}
    for name, intervals in candidates:
        own = subtract_intervals(clip_to_genome(intervals, chrom_sizes), claimed)
        regions[name] = own
        claimed = union_intervals(claimed, own)
    return regions


def classify_genome(
    model: pl.DataFrame,
    chrom_sizes: pl.DataFrame,
    *,
    upstream: int = PROMOTER_UPSTREAM,
    downstream: int = PROMOTER_DOWNSTREAM,
    downstream_window: int = DOWNSTREAM_WINDOW,
) -> pl.DataFrame:
    """
    Genome-wide bases and fraction per feature class.

    Parameters
    ----------
    model : pl.DataFrame
        Gene model lookup.
    chrom_sizes : pl.DataFrame
        seqnames, length; the genome length is the sum of lengths.
    upstream, downstream : int
        Promoter window around each TSS.
    downstream_window : int
        Length of the Downstream window past each gene.

    Returns
    -------
    pl.DataFrame
        feature, bases, fraction in FEATURE_CLASSES order; bases sum to the genome length.

    Raises
    ------
    ReferenceDataError
        Non-positive genome length, or classes exceeding it.
    """
    sizes = chrom_sizes.unique("seqnames")
    genome_length = int(sizes["length"].sum()) if not sizes.is_empty() else 0
    if genome_length <= 0:
        raise ReferenceDataError("Genome length must be positive; check the chromosome sizes table")

    regions = feature_regions(
        model, sizes,
        upstream=upstream, downstream=downstream, downstream_window=downstream_window,
    )
    bases = {name: total_width(iv) for name, iv in regions.items()}
    intergenic = genome_length - sum(bases.values())
    if intergenic < 0:
        raise ReferenceDataError(f"Feature classes cover {sum(bases.values()):,} bases, more than the genome ({genome_length:,})")
    bases["Distal Intergenic"] = intergenic

    out = pl.DataFrame(
        {
            "feature": FEATURE_CLASSES,
            "bases": [bases[name] for name in FEATURE_CLASSES],
        },
        schema={"feature": pl.Utf8, "bases": pl.Int64},
    ).with_columns((pl.col("bases") / genome_length).alias("fraction"))

    for row in out.iter_rows(named=True):
        log.info(f"[S04] {row['feature']:<18} {row['bases']:>14,} bp  {row['fraction']:.4f}")
    return out


def annotation_class(expr: pl.Expr) -> pl.Expr:
    """
    Map upstream annotation labels to the fixed feature classes.

    'Promoter (<=1kb)' -> Promoter, 'Intron (ENST..., intron 1 of 4)' -> Intron,
    "5' UTR" -> Exon; unknown or missing labels -> Distal Intergenic.
    """
    prefix = (
        expr.cast(pl.Utf8)
            .str.extract(r"^\s*([^(]*?)\s*(?:\(|$)", 1)
            .str.to_lowercase()
    )
    return (
        prefix.replace_strict(ANNOTATION_CLASSES, default="Distal Intergenic", return_dtype=pl.Utf8)
              .fill_null("Distal Intergenic")
    )


def run(
    model: pl.DataFrame,
    chrom_sizes: pl.DataFrame,
    downstream_window: int = DOWNSTREAM_WINDOW,
) -> pl.DataFrame:
    """Stage 04 entry point."""
    return classify_genome(model, chrom_sizes, downstream_window=downstream_window)
