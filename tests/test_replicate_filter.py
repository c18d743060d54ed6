# File: tests/test_replicate_filter.py
# Test cases for pipeline/S03_replicate_filter.py using pytest.

import pytest
import polars as pl

from pipeline.S03_replicate_filter import (
    consensus_filter, replicate_concordance, replicate_overlap, replicate_score_matrix,
)


def test_consensus_keeps_sites_seen_in_two_replicates(joined):
    """
    Site A (5 + 7) survives with summed score; site B (one replicate) is dropped.
    """
    out = consensus_filter(joined, min_replicates=2)

    assert out.height == 1
    row = out.row(0, named=True)
    assert (row["sample_name"], row["seqnames"], row["start"], row["strand"]) == ("P1", "1", 100, "+")
    assert row["score"] == 12
    assert row["n_replicates"] == 2
    assert row["annotation"] == "Intron (T1, intron 1 of 1)"


def test_zero_score_is_not_a_detection(joined):
    """
    The score-0 row for site A in r3 does not make it a three-replicate site.
    """
    assert consensus_filter(joined, min_replicates=3).is_empty()


def test_single_replicate_threshold_keeps_everything_detected(joined):
    out = consensus_filter(joined, min_replicates=1)
    assert out.height == 2
    assert sorted(out["score"].to_list()) == [3, 12]


def test_kept_sites_never_fall_below_threshold(joined):
    """
    Raising the threshold can only remove sites.
    """
    sizes = [consensus_filter(joined, min_replicates=k).height for k in (1, 2, 3)]
    assert sizes == sorted(sizes, reverse=True)
    for k in (1, 2, 3):
        assert (consensus_filter(joined, min_replicates=k)["n_replicates"] >= k).all()


def test_rows_without_sample_are_excluded(joined):
    orphan = joined.head(2).with_columns([
        pl.lit("X_r1").alias("file_id"),
        pl.lit(None, dtype=pl.Utf8).alias("sample_name"),
    ])
    out = consensus_filter(pl.concat([joined, orphan]), min_replicates=1)
    assert out["sample_name"].null_count() == 0


def test_invalid_threshold_raises(joined):
    with pytest.raises(ValueError):
        consensus_filter(joined, min_replicates=0)


def test_concordance_counts_k_of_n(joined):
    conc = replicate_concordance(joined)

    assert conc["comparison"].to_list() == ["1 of 3", "2 of 3", "3 of 3"]
    assert conc["n_exact"].to_list() == [1, 1, 0]
    assert conc["n_at_least"].to_list() == [2, 1, 0]
    assert conc["n_total_replicates"].unique().to_list() == [3]


def test_overlap_per_combination(joined):
    ov = replicate_overlap(joined, subset_sizes=(1, 2, 3))
    pairs = dict(zip(ov.filter(pl.col("k") == 2)["replicates"], ov.filter(pl.col("k") == 2)["n_sites"]))

    assert pairs == {"P1_r1+P1_r2": 1, "P1_r1+P1_r3": 0, "P1_r2+P1_r3": 0}
    assert ov.filter(pl.col("k") == 1)["n_sites"].to_list() == [1, 1, 1]
    assert ov.filter(pl.col("k") == 3)["n_sites"].to_list() == [0]


def test_overlap_skips_sizes_larger_than_replicate_count(joined):
    ov = replicate_overlap(joined, subset_sizes=(4,))
    assert ov.is_empty()
    assert ov.columns == ["sample_name", "k", "replicates", "n_sites"]


def test_score_matrix_is_zero_filled(joined):
    mat = replicate_score_matrix(joined, "P1")

    assert mat.columns == ["seqnames", "start", "end", "strand", "P1_r1", "P1_r2", "P1_r3"]
    site_a = mat.filter(pl.col("seqnames") == "1").row(0, named=True)
    assert (site_a["P1_r1"], site_a["P1_r2"], site_a["P1_r3"]) == (5, 7, 0)


def test_score_matrix_unknown_sample_is_empty(joined):
    assert replicate_score_matrix(joined, "nobody").is_empty()
