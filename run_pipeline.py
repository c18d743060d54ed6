#!/usr/bin/env python3
from __future__ import annotations
import argparse, logging, sys
from pathlib import Path

from pipeline.S01_load_sites import run as run_load
from pipeline.S02_join_metadata import load_metadata, join_metadata
from pipeline.S03_replicate_filter import run as run_replicates
from pipeline.S04_genome_features import run as run_features
from pipeline.S05_summary_statistics import run as run_stats
from pipeline.S06_plots import run as run_plots
from pipeline.S07_report import run as run_report

from config.config import (
    SITES_DIR, SITES_PATTERN, METADATA_FILE, FLANK_DIR, FLANK_PATTERN,
    GENOME_URL, GTF_URL, GENOME_FA, GTF_FILE, GENE_MODEL, CHROM_SIZES,
    INTERIM, FINAL, STATS, VISUALS, REPORT_DIR,
    MIN_REPLICATES, DOWNSTREAM_WINDOW, ASSEMBLY, ENSEMBL_RELEASE,
)
from qol.build_fasta_lookup import ensure_chrom_sizes, load_flanking_sequences
from qol.build_gtf_lookups import ensure_gene_model
from qol.exceptions import PipelineError
from qol.fetch_reference import fetch_resource
from qol.logger import configure_logger
from qol.utilities import save_file, cleanup_interim

def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="run_pipeline", description="Vector insertion site analysis")
    p.add_argument("--sites-dir", type=Path, default=SITES_DIR, help="Folder of per-sample insertion site tables")
    p.add_argument("--pattern", default=SITES_PATTERN, help="Glob for insertion site tables inside --sites-dir")
    p.add_argument("--metadata", type=Path, default=METADATA_FILE, help="Sample metadata sheet (file_id, sample_name, ...)")
    p.add_argument("--flank-dir", type=Path, default=None,
                   help=f"Folder of flanking FASTA files for sequence logos (default: {FLANK_DIR} if present)")
    p.add_argument("--gtf", type=Path, default=GTF_FILE, help="Gene annotation GTF (.gtf or .gtf.gz)")
    p.add_argument("--genome", type=Path, default=GENOME_FA, help="Genome FASTA used for chromosome sizes")
    p.add_argument("--gene-model", type=Path, default=GENE_MODEL, help="Cached gene model TSV (built from --gtf if missing)")
    p.add_argument("--chrom-sizes", type=Path, default=CHROM_SIZES, help="Cached chromosome sizes TSV (built from --genome if missing)")
    p.add_argument("--min-replicates", type=int, default=MIN_REPLICATES,
                   help="Minimum technical replicates that must observe a site")
    p.add_argument("--downstream-window", type=int, default=DOWNSTREAM_WINDOW,
                   help="Downstream region length (bp) past the gene end")
    p.add_argument("--strict-join", action="store_true", help="Fail when insertion records have no metadata row")
    p.add_argument("--skip-fetch", action="store_true", help="Never download reference files")
    p.add_argument("--no-plots", action="store_true", help="Skip figures and the HTML report")
    p.add_argument("--no-report", action="store_true", help="Skip the HTML report")
    p.add_argument("--delinter", action="store_true", help="Delete all intermediate files under output/interim after the pipeline completes")
    args = p.parse_args(argv)
    if args.min_replicates < 1:
        p.error("--min-replicates must be >= 1")
    if args.downstream_window < 0:
        p.error("--downstream-window must be >= 0")
    return args

def prepare_reference(args, log: logging.Logger):
    """Gene model and chromosome sizes, downloading the raw reference only when a cache is missing."""
    if not args.gene_model.exists() and not args.gtf.exists() and not args.skip_fetch:
        fetch_resource(GTF_URL, args.gtf)
    model = ensure_gene_model(args.gtf, args.gene_model)

    if not args.chrom_sizes.exists() and not args.genome.exists() and not args.skip_fetch:
        fetch_resource(GENOME_URL, args.genome)
    sizes = ensure_chrom_sizes(args.genome, args.chrom_sizes)
    log.info(f"[REF] gene model: {model.height:,} rows, {sizes.height:,} chromosomes")
    return model, sizes

def main(argv=None):
    args = parse_args(argv)
    log = configure_logger()

    try:
        model, sizes = prepare_reference(args, log)

        # ---- S01
        sites = run_load(args.sites_dir, args.pattern)

        # ---- S02
        metadata = load_metadata(args.metadata)
        joined = join_metadata(sites, metadata, strict=args.strict_join)
        joined_path = save_file(joined, INTERIM / "joined_insertion_sites.tsv")
        log.info(f"[S02] joined: {joined_path}")

        # ---- S03
        filtered, overlap, concordance = run_replicates(joined, min_replicates=args.min_replicates)
        save_file(overlap, STATS / "replicate_overlap.tsv")
        save_file(concordance, STATS / "replicate_concordance.tsv")

        # ---- S04
        genome_features = run_features(model, sizes, downstream_window=args.downstream_window)
        save_file(genome_features, STATS / "genome_features.tsv")

        # ---- S05
        consolidated, summary, distribution = run_stats(filtered, metadata, genome_features)
        final_path = save_file(consolidated, FINAL / "annotated_insertion_sites.tsv")
        save_file(summary, STATS / "sample_summary.tsv")
        save_file(distribution, STATS / "feature_distribution.tsv")
        log.info(f"[S05] annotated sites: {final_path}")

        if not args.no_plots:
            # ---- S06
            flank_dir = args.flank_dir
            if flank_dir is None and FLANK_DIR.is_dir():
                flank_dir = FLANK_DIR
            flanks = load_flanking_sequences(flank_dir, FLANK_PATTERN) if flank_dir is not None else None
            if flanks is None:
                log.info("[S06] no flanking sequence folder, sequence logos skipped")
            figures = run_plots(
                summary=summary, distribution=distribution, consolidated=consolidated,
                concordance=concordance, joined=joined, filtered=filtered,
                flanks=flanks, chrom_sizes=sizes, out_dir=VISUALS,
            )

            # ---- S07
            if not args.no_report:
                run_report(
                    summary, figures, distribution=distribution, out_dir=REPORT_DIR,
                    params={
                        "Reference": f"{ASSEMBLY} (Ensembl {ENSEMBL_RELEASE})",
                        "Minimum replicates": args.min_replicates,
                        "Downstream window (bp)": args.downstream_window,
                        "Insertion site tables": args.sites_dir,
                        "Metadata": args.metadata,
                    },
                )
    except (PipelineError, FileNotFoundError) as e:
        log.error(f"[FAILED] {e}")
        return 1

    # ---- Optional deletion of intermediate files
    if args.delinter:
        cleanup_interim(INTERIM)

    log.info("Pipeline complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
