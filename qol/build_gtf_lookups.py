# qol/build_gtf_lookups.py
"""
Build the gene model lookup consumed by the genome feature classifier.

One row per GTF record of the feature types the classifier needs
(gene, transcript, exon, CDS, UTR, five_prime_utr, three_prime_utr).
Coordinates stay in GTF convention (1-based, closed).
"""
from __future__ import annotations
from pathlib import Path
import argparse, sys
import polars as pl

from config.config import GTF_FILE, GENE_MODEL
from qol.utilities import open_text, save_file, load_file
from qol.logger import configure_logger, get_logger

log = get_logger("gtf")

KEEP_FEATURES = {"gene", "transcript", "exon", "CDS", "UTR", "five_prime_utr", "three_prime_utr"}

GENE_MODEL_SCHEMA = {
    "transcript_id": pl.Utf8,
    "gene_id": pl.Utf8,
    "feature_type": pl.Utf8,
    "strand": pl.Utf8,
    "seqnames": pl.Utf8,
    "start": pl.Int64,
    "end": pl.Int64,
}

def _strip_ver(x: str) -> str: return x.split(".", 1)[0] if x else x

def _parse_attributes(attr_str: str):
    attrs = {}
    for raw in (x.strip() for x in attr_str.split(";")):
        if not raw: continue
        if " " in raw:
            k, v = raw.split(" ", 1)
            v = v.strip().strip('"')
            if k in ("transcript_id", "gene_id") and v:
                v = _strip_ver(v)
            attrs[k] = v
    return attrs

def _fail_if_exists(*paths: Path):
    clashes = [p for p in paths if p.exists()]
    if clashes:
        msg = "Refusing to overwrite existing files:\n" + "\n".join(str(p) for p in clashes)
        raise SystemExit(msg)

def build_gene_model(gtf_path: Path) -> pl.DataFrame:
    """
    Parse a (optionally gzipped) GTF into the gene model table.

    Records with unparsable coordinates or a strand other than +/- are skipped.
    """
    rows = []
    n_skipped = 0
    with open_text(gtf_path) as gtf:
        for line in gtf:
            if not line or line.startswith("#"): continue
            parts = line.rstrip("\n").split("\t")
            if len(parts) != 9: continue
            chr_, _, feature, start, end, _, strand, _, attributes = parts
            if feature not in KEEP_FEATURES:
                continue
            try:
                start_i, end_i = int(start), int(end)
            except ValueError:
                n_skipped += 1
                continue
            if strand not in ("+", "-"):
                n_skipped += 1
                continue
            attrs = _parse_attributes(attributes)
            rows.append({
                "transcript_id": attrs.get("transcript_id", ""),
                "gene_id": attrs.get("gene_id", ""),
                "feature_type": feature,
                "strand": strand,
                "seqnames": chr_,
                "start": start_i,
                "end": end_i,
            })
    if n_skipped:
        log.warning(f"[GTF] Skipped {n_skipped:,} records with invalid coordinates or strand")
    if not rows:
        return pl.DataFrame(schema=GENE_MODEL_SCHEMA)
    return pl.DataFrame(rows, schema=GENE_MODEL_SCHEMA)

def ensure_gene_model(gtf_path: Path = GTF_FILE, out_path: Path = GENE_MODEL) -> pl.DataFrame:
    """Load the cached gene model, building it from the GTF on first use."""
    out_path = Path(out_path)
    if out_path.exists():
        log.info(f"[GTF] Using cached gene model {out_path}")
        return load_gene_model(out_path)
    gtf_path = Path(gtf_path)
    if not gtf_path.exists():
        raise FileNotFoundError(f"GTF not found: {gtf_path}")
    log.info(f"[GTF] Building gene model from {gtf_path}")
    model = build_gene_model(gtf_path)
    save_file(model, out_path)
    log.info(f"[GTF] {model.height:,} feature rows written to {out_path}")
    return model

def load_gene_model(path: Path) -> pl.DataFrame:
    df = load_file(path, required=list(GENE_MODEL_SCHEMA))
    return df.with_columns([pl.col(c).cast(t) for c, t in GENE_MODEL_SCHEMA.items()])

def parse_args():
    ap = argparse.ArgumentParser(
        prog="qol.build_gtf_lookups",
        description="Build the GTF-derived gene model lookup, no overwrites."
    )
    ap.add_argument("--gtf", type=Path, default=GTF_FILE, help="GTF (.gtf or .gtf.gz)")
    ap.add_argument("--out", type=Path, default=GENE_MODEL, help="Output TSV path")
    return ap.parse_args()

def main():
    configure_logger()
    a = parse_args()
    _fail_if_exists(a.out)
    if not a.gtf.exists():
        raise SystemExit(f"GTF not found: {a.gtf}")
    model = build_gene_model(a.gtf)
    save_file(model, a.out)
    log.info(f"Written: {a.out}")

if __name__ == "__main__":
    sys.exit(main())
