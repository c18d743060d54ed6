# File: tests/test_load_sites.py
# Test cases for pipeline/S01_load_sites.py using pytest.

import pytest
import polars as pl

from conftest import write_sites
from pipeline.S01_load_sites import load_insertion_sites
from qol.exceptions import InputError


def test_tables_are_concatenated_with_provenance(tmp_path):
    """
    Every matching file contributes its rows, stamped with file_name and file_id.
    """
    write_sites(tmp_path / "P1_r1_insertion_sites.tsv", [
        ("P1_r1_S1_L001", "1", 100, 101, "+", 5, "Promoter (<=1kb)", -200),
        ("P1_r1_S1_L001", "X", 900, 901, "-", 2, "Distal Intergenic", 50000),
    ])
    write_sites(tmp_path / "P1_r2_insertion_sites.tsv", [
        ("P1_r2_S2", "1", 100, 101, "+", 7, "Promoter (<=1kb)", -200),
    ])
    (tmp_path / "notes.txt").write_text("not a site table")

    sites = load_insertion_sites(tmp_path)

    assert sites.height == 3
    assert sites.columns[:2] == ["file_name", "file_id"]
    assert sites["file_id"].to_list() == ["P1_r1", "P1_r1", "P1_r2"]
    assert sites["file_name"].unique().sort().to_list() == [
        "P1_r1_insertion_sites.tsv", "P1_r2_insertion_sites.tsv",
    ]
    assert sites.schema["seqnames"] == pl.Utf8
    assert sites.schema["score"] == pl.Int64


def test_header_aliases_are_normalized(tmp_path):
    """
    'chr' and 'distanceToTSS' headers map to seqnames and tss_distance.
    """
    header = ["sample_id", "chr", "start", "end", "strand", "score", "annotation", "distanceToTSS"]
    write_sites(tmp_path / "A_insertion_sites.tsv", [("A_S3", "2", 10, 11, "+", 1, "Exon", 5)], header=header)

    sites = load_insertion_sites(tmp_path)

    assert "seqnames" in sites.columns
    assert sites["tss_distance"].to_list() == [5]
    assert sites["seqnames"].to_list() == ["2"]


def test_missing_directory_raises(tmp_path):
    with pytest.raises(InputError):
        load_insertion_sites(tmp_path / "does_not_exist")


def test_empty_directory_raises(tmp_path):
    with pytest.raises(InputError, match="empty"):
        load_insertion_sites(tmp_path)


def test_no_matching_files_raises(tmp_path):
    (tmp_path / "readme.md").write_text("nothing here")
    with pytest.raises(InputError, match="No files matching"):
        load_insertion_sites(tmp_path)


def test_missing_required_column_raises(tmp_path):
    header = ["sample_id", "seqnames", "start", "end", "strand", "score", "annotation"]
    write_sites(tmp_path / "A_insertion_sites.tsv", [("A", "1", 1, 2, "+", 1, "Exon")], header=header)
    with pytest.raises(InputError, match="tss_distance"):
        load_insertion_sites(tmp_path)


def test_unparseable_numbers_are_reported(tmp_path, caplog):
    """
    A non-numeric score becomes null and the count is logged per file.
    """
    write_sites(tmp_path / "P1_r1_insertion_sites.tsv", [
        ("P1_r1_S1", "1", 100, 101, "+", 5, "Exon", 0),
        ("P1_r1_S1", "1", 300, 301, "+", "n/a-score", "Exon", 0),
    ])
    caplog.set_level("WARNING")

    sites = load_insertion_sites(tmp_path)

    assert sites["score"].to_list() == [5, None]
    assert "P1_r1_insertion_sites.tsv: unparseable values set to null (score: 1)" in caplog.text


def test_clean_tables_log_no_null_warning(tmp_path, caplog):
    write_sites(tmp_path / "P1_r1_insertion_sites.tsv", [("P1_r1_S1", "1", 100, 101, "+", 5, "Exon", 0)])
    caplog.set_level("WARNING")
    load_insertion_sites(tmp_path)
    assert "unparseable" not in caplog.text
