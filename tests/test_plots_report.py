# File: tests/test_plots_report.py
# Smoke tests for pipeline/S06_plots.py and pipeline/S07_report.py.

from unittest.mock import patch

import pytest
import polars as pl
from matplotlib.axes import Axes

from pipeline.S03_replicate_filter import consensus_filter, replicate_concordance
from pipeline.S05_summary_statistics import consolidated_table, sample_summary, feature_distribution
from pipeline.S06_plots import (
    make_plots, plot_sequence_logo, plot_karyogram, consensus_sequences,
)
from pipeline.S07_report import render_report


@pytest.fixture
def flanks():
    return pl.DataFrame({
        "file_id": ["P1_r1", "P1_r2", "P1_r3"],
        "seqnames": ["1", "1", "2"],
        "start": [100, 100, 500],
        "end": [101, 101, 501],
        "strand": ["+", "+", "-"],
        "sequence": ["ACGTAC", "ACGTAC", "TTTTTT"],
    })


def test_consensus_sequences_one_per_site(joined, flanks):
    filtered = consensus_filter(joined, min_replicates=2)
    seqs = consensus_sequences(flanks, joined, filtered)
    assert seqs.rows() == [("P1", "1", 100, 101, "+", "ACGTAC")]


def test_sequence_logo_uses_modal_length(tmp_path):
    path = plot_sequence_logo(["ACGTA", "ACGTT", "ACGTN", "AC"], "P1 / d28", tmp_path)
    assert path == tmp_path / "P1_d28_sequence_logo.svg"
    assert path.read_text().lstrip().startswith("<?xml")


def test_sequence_logo_skipped_without_sequences(tmp_path):
    assert plot_sequence_logo([], "P1", tmp_path) is None
    assert list(tmp_path.iterdir()) == []


def test_karyogram(tmp_path, joined, chrom_sizes):
    sites = consensus_filter(joined, min_replicates=1)
    path = plot_karyogram(sites, chrom_sizes, "P1", tmp_path)
    assert path.name == "P1_karyogram.svg"
    assert plot_karyogram(sites, pl.DataFrame(schema={"seqnames": pl.Utf8, "length": pl.Int64}), "P1", tmp_path) is None


def test_karyogram_matches_prefixed_chromosome_names(tmp_path, joined, chrom_sizes, caplog):
    sites = consensus_filter(joined, min_replicates=1).with_columns(
        ("chr" + pl.col("seqnames")).alias("seqnames")
    )
    real_vlines = Axes.vlines
    with patch.object(Axes, "vlines", autospec=True, side_effect=real_vlines) as vlines:
        path = plot_karyogram(sites, chrom_sizes, "P1", tmp_path)
    assert path.name == "P1_karyogram.svg"
    # one call per strand, both sites placed
    assert vlines.call_count == 2
    assert "absent from the chromosome sizes" not in caplog.text


def test_karyogram_warns_on_unknown_sequences(tmp_path, joined, chrom_sizes, caplog):
    sites = consensus_filter(joined, min_replicates=1).with_columns(
        pl.when(pl.col("seqnames") == "2").then(pl.lit("chrUn_KI270302v1")).otherwise(pl.col("seqnames")).alias("seqnames")
    )
    with caplog.at_level("WARNING"):
        path = plot_karyogram(sites, chrom_sizes, "P1", tmp_path)
    assert path is not None
    assert "1 sites on sequences absent from the chromosome sizes" in caplog.text


def test_figures_and_report(tmp_path, joined, flanks, chrom_sizes):
    """
    All cohort figures and the per-sample figures with data are written,
    and the report inlines them.
    """
    filtered = consensus_filter(joined, min_replicates=1)
    summary = sample_summary(filtered, samples=["P2"])
    genome = pl.DataFrame({
        "feature": ["Promoter", "3' UTR", "Exon", "Intron", "Downstream", "Distal Intergenic"],
        "bases": [1, 1, 1, 1, 1, 5],
        "fraction": [0.1, 0.1, 0.1, 0.1, 0.1, 0.5],
    })
    distribution = feature_distribution(filtered, genome, samples=["P2"])

    figures = make_plots(
        summary=summary,
        distribution=distribution,
        consolidated=consolidated_table(filtered),
        concordance=replicate_concordance(joined),
        joined=joined,
        filtered=filtered,
        flanks=flanks,
        chrom_sizes=chrom_sizes,
        out_dir=tmp_path / "visuals",
    )

    assert sorted(p.name for p in figures["cohort"]) == [
        "feature_distribution.svg", "relative_abundance.svg",
        "replicate_concordance.svg", "site_counts.svg",
    ]
    assert sorted(p.name for p in figures["P1"]) == [
        "P1_karyogram.svg", "P1_replicate_correlation.svg", "P1_sequence_logo.svg",
    ]
    assert [p.name for p in figures["P2"]] == ["P2_karyogram.svg"]
    assert all(p.exists() for paths in figures.values() for p in paths)

    report = render_report(summary, figures, distribution=distribution, out_dir=tmp_path / "report",
                           params={"Minimum replicates": 1})
    html = report.read_text()
    assert report.name == "report.html"
    assert html.count("<svg") == sum(len(v) for v in figures.values())
    assert "<?xml" not in html
    assert "Minimum replicates" in html
    assert "P2" in html
