# qol/build_fasta_lookup.py
"""
build_fasta_lookup.py
=====================
FASTA-derived lookups.

Overview
--------
1) Chromosome sizes (CHROM_SIZES): seqnames -> length, computed once from the
   reference genome FASTA and cached. The sum of lengths is the genome length
   used by the feature classifier.
2) Flanking sequences: per-sample FASTA files produced upstream, one record per
   insertion site, header encoding the site as 'seqnames:start-end(strand)'.

Header conventions
------------------
Genome FASTA: the sequence name is the first whitespace-separated token of the
header ('1 dna:chromosome chromosome:GRCh38:1:1:248956422:1 REF' -> '1').
Flanking FASTA: 'chr1:100-150(+)'; anything after the closing parenthesis is
ignored.

Notes
-----
Reading supports both plain text and gzip-compressed FASTA files.
"""

from __future__ import annotations
from pathlib import Path
import argparse, re, sys
import polars as pl

from config.config import GENOME_FA, CHROM_SIZES, FLANK_PATTERN
from qol.exceptions import InputError
from qol.utilities import open_text, fasta_iter, save_file, load_file, strip_run_suffix, safe_stem
from qol.logger import configure_logger, get_logger

log = get_logger("fasta")

FLANK_HDR_RE = re.compile(r"^(?P<seqnames>[^\s:]+):(?P<start>\d+)-(?P<end>\d+)\((?P<strand>[+-])\)")

FLANK_SCHEMA = {
    "file_id": pl.Utf8,
    "seqnames": pl.Utf8,
    "start": pl.Int64,
    "end": pl.Int64,
    "strand": pl.Utf8,
    "sequence": pl.Utf8,
}

def _fail_if_exists(*paths: Path):
    clashes = [p for p in paths if p.exists()]
    if clashes:
        msg = "Refusing to overwrite existing files:\n" + "\n".join(str(p) for p in clashes)
        raise SystemExit(msg)

def build_chrom_sizes(in_fa: Path) -> pl.DataFrame:
    """
    Sequence lengths of a genome FASTA, without holding whole chromosomes in memory.
    """
    names, lengths = [], []
    with open_text(in_fa) as fin:
        for line in fin:
            if line.startswith(">"):
                names.append(line[1:].split()[0])
                lengths.append(0)
            elif names:
                lengths[-1] += len(line.strip())
    return pl.DataFrame({"seqnames": names, "length": lengths},
                        schema={"seqnames": pl.Utf8, "length": pl.Int64})

def load_chrom_sizes(path: Path) -> pl.DataFrame:
    df = load_file(path, required=["seqnames", "length"])
    return df.select([pl.col("seqnames").cast(pl.Utf8), pl.col("length").cast(pl.Int64)])

def ensure_chrom_sizes(in_fa: Path = GENOME_FA, out_path: Path = CHROM_SIZES) -> pl.DataFrame:
    """Load cached chromosome sizes, computing them from the genome FASTA on first use."""
    out_path = Path(out_path)
    if out_path.exists():
        log.info(f"[FASTA] Using cached chromosome sizes {out_path}")
        return load_chrom_sizes(out_path)
    in_fa = Path(in_fa)
    if not in_fa.exists():
        raise FileNotFoundError(f"Genome FASTA not found: {in_fa}")
    log.info(f"[FASTA] Measuring sequence lengths in {in_fa}")
    sizes = build_chrom_sizes(in_fa)
    save_file(sizes, out_path)
    log.info(f"[FASTA] {sizes.height:,} sequences, {sizes['length'].sum():,} bases -> {out_path}")
    return sizes

def parse_flank_header(header: str) -> tuple[str, int, int, str]:
    """
    Decode a flanking-sequence header.

    >>> parse_flank_header("chr1:100-150(+)")
    ('chr1', 100, 150, '+')
    """
    m = FLANK_HDR_RE.match(header.strip())
    if not m:
        raise InputError(f"Malformed flanking FASTA header: {header!r} (expected 'seqnames:start-end(strand)')")
    return m.group("seqnames"), int(m.group("start")), int(m.group("end")), m.group("strand")

def read_flanking_fasta(path: Path) -> pl.DataFrame:
    """One FASTA file -> table of sites and sequences, stamped with the file_id of its file name."""
    file_id = strip_run_suffix(safe_stem(Path(path).name))
    rows = []
    with open_text(path) as fin:
        for hdr, seq in fasta_iter(fin):
            seqnames, start, end, strand = parse_flank_header(hdr)
            rows.append({
                "file_id": file_id,
                "seqnames": seqnames,
                "start": start,
                "end": end,
                "strand": strand,
                "sequence": seq.upper(),
            })
    if not rows:
        return pl.DataFrame(schema=FLANK_SCHEMA)
    return pl.DataFrame(rows, schema=FLANK_SCHEMA)

def load_flanking_sequences(fasta_dir: Path, pattern: str = FLANK_PATTERN) -> pl.DataFrame:
    """
    Read every flanking FASTA in fasta_dir.

    Raises
    ------
    InputError
        If the directory is missing or holds no matching file.
    """
    fasta_dir = Path(fasta_dir)
    if not fasta_dir.is_dir():
        raise InputError(f"Flanking sequence directory not found: {fasta_dir}")
    files = sorted(fasta_dir.glob(pattern))
    if not files:
        raise InputError(f"No files matching '{pattern}' in {fasta_dir}")
    frames = [read_flanking_fasta(p) for p in files]
    out = pl.concat(frames, how="vertical")
    log.info(f"[FASTA] {out.height:,} flanking sequences from {len(files)} files")
    return out

def parse_args():
    ap = argparse.ArgumentParser(
        prog="qol.build_fasta_lookup",
        description="Build the chromosome sizes lookup from the genome FASTA, no overwrites."
    )
    ap.add_argument("--fasta", type=Path, default=GENOME_FA, help="Genome FASTA (.fa or .fa.gz)")
    ap.add_argument("--out", type=Path, default=CHROM_SIZES, help="Output TSV path")
    return ap.parse_args()

def main():
    configure_logger()
    a = parse_args()
    _fail_if_exists(a.out)
    if not a.fasta.exists():
        raise SystemExit(f"Input FASTA not found: {a.fasta}")
    sizes = build_chrom_sizes(a.fasta)
    save_file(sizes, a.out)
    log.info(f"Written: {a.out} ({sizes.height:,} sequences)")

if __name__ == "__main__":
    sys.exit(main())
