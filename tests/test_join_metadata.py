# File: tests/test_join_metadata.py
# Test cases for pipeline/S02_join_metadata.py using pytest.

import pytest
import polars as pl

from pipeline.S02_join_metadata import load_metadata, join_metadata
from qol.exceptions import ConfigError, JoinMismatchError


@pytest.fixture
def sites():
    return pl.DataFrame({
        "file_name": ["a.tsv", "a.tsv", "b.tsv", "c.tsv"],
        "file_id": ["P1_r1", "P1_r1", "P1_r2", "P9_r1"],
        "seqnames": ["1", "2", "1", "3"],
        "start": [100, 200, 100, 300],
        "score": [5, 1, 7, 4],
    })


@pytest.fixture
def metadata():
    return pl.DataFrame({
        "file_id": ["P1_r1", "P1_r2", "P2_r1"],
        "sample_name": ["P1", "P1", "P2"],
        "marking_pct": [12.5, 12.5, 30.0],
    })


def test_left_join_keeps_every_record_in_order(sites, metadata):
    """
    Row count and order are preserved; orphans keep null metadata.
    """
    joined = join_metadata(sites, metadata)

    assert joined.height == sites.height
    assert joined["file_id"].to_list() == sites["file_id"].to_list()
    assert joined["sample_name"].to_list() == ["P1", "P1", "P1", None]
    assert joined["marking_pct"].to_list() == [12.5, 12.5, 12.5, None]


def test_orphans_are_logged(sites, metadata, caplog):
    caplog.set_level("WARNING")
    join_metadata(sites, metadata)
    assert "P9_r1" in caplog.text


def test_strict_mode_raises_on_orphans(sites, metadata):
    with pytest.raises(JoinMismatchError) as exc:
        join_metadata(sites, metadata, strict=True)
    assert exc.value.missing_keys == ["P9_r1"]
    assert exc.value.n_rows == 1


def test_strict_mode_passes_when_all_match(sites, metadata):
    matched = sites.filter(pl.col("file_id") != "P9_r1")
    joined = join_metadata(matched, metadata, strict=True)
    assert joined["sample_name"].null_count() == 0


def test_load_metadata_strips_and_validates(tmp_path):
    path = tmp_path / "meta.tsv"
    path.write_text("file_id\tSampleName\tmarking_pct\n P1_r1 \tP1 \t12.5\nP1_r2\tP1\t12.5\n")

    meta = load_metadata(path)

    assert meta["file_id"].to_list() == ["P1_r1", "P1_r2"]
    assert meta["sample_name"].to_list() == ["P1", "P1"]


def test_load_metadata_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_metadata(tmp_path / "nope.tsv")


def test_load_metadata_missing_columns(tmp_path):
    path = tmp_path / "meta.tsv"
    path.write_text("file_id\tdonor\nP1_r1\tD1\n")
    with pytest.raises(ConfigError, match="sample_name"):
        load_metadata(path)


def test_load_metadata_duplicate_file_id(tmp_path):
    path = tmp_path / "meta.tsv"
    path.write_text("file_id\tsample_name\nP1_r1\tP1\nP1_r1\tP2\n")
    with pytest.raises(ConfigError, match="more than once"):
        load_metadata(path)
