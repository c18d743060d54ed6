# tests/conftest.py
import pytest
import sys
import os
import polars as pl

# Add the parent directory to the system path to ensure correct module import
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from qol.build_gtf_lookups import GENE_MODEL_SCHEMA

SITE_HEADER = ["sample_id", "seqnames", "start", "end", "strand", "score", "annotation", "tss_distance"]


def write_sites(path, rows, header=SITE_HEADER):
    """Write an upstream-style insertion-site TSV."""
    lines = ["\t".join(header)] + ["\t".join(str(v) for v in r) for r in rows]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def gene_model():
    """
    Two genes, GTF coordinates (1-based, closed):
    G1 on chr '1' (+): exons 5001-5500 and 7001-8000, 3' UTR 7501-8000.
    G2 on chr '2' (-): one exon 4001-5000.
    """
    rows = [
        ("", "G1", "gene", "+", "1", 5001, 8000),
        ("T1", "G1", "transcript", "+", "1", 5001, 8000),
        ("T1", "G1", "exon", "+", "1", 5001, 5500),
        ("T1", "G1", "exon", "+", "1", 7001, 8000),
        ("T1", "G1", "three_prime_utr", "+", "1", 7501, 8000),
        ("", "G2", "gene", "-", "2", 4001, 5000),
        ("T2", "G2", "transcript", "-", "2", 4001, 5000),
        ("T2", "G2", "exon", "-", "2", 4001, 5000),
    ]
    return pl.DataFrame(rows, schema=GENE_MODEL_SCHEMA, orient="row")


@pytest.fixture
def chrom_sizes():
    return pl.DataFrame({"seqnames": ["1", "2"], "length": [20000, 10000]},
                        schema={"seqnames": pl.Utf8, "length": pl.Int64})


@pytest.fixture
def joined():
    """
    Joined table for one sample with three technical replicates:
    site A (chr1:100-101 +) seen in r1 (score 5) and r2 (score 7), absent from r3;
    site B seen only in r3; r3 also lists site A with score 0 (no fragment).
    """
    rows = [
        ("P1_r1", "P1", "1", 100, 101, "+", 5, "Intron (T1, intron 1 of 1)", 1500),
        ("P1_r2", "P1", "1", 100, 101, "+", 7, "Intron (T1, intron 1 of 1)", 1500),
        ("P1_r3", "P1", "2", 500, 501, "-", 3, "Distal Intergenic", 90000),
        ("P1_r3", "P1", "1", 100, 101, "+", 0, "Intron (T1, intron 1 of 1)", 1500),
    ]
    schema = {
        "file_id": pl.Utf8, "sample_name": pl.Utf8, "seqnames": pl.Utf8,
        "start": pl.Int64, "end": pl.Int64, "strand": pl.Utf8, "score": pl.Int64,
        "annotation": pl.Utf8, "tss_distance": pl.Int64,
    }
    return pl.DataFrame(rows, schema=schema, orient="row")
