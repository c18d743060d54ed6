from pathlib import Path

# ---- roots ----
# Project root; all paths are derived from it.
ROOT = Path(__file__).resolve().parents[1]

### MAIN FOLDERS ###
INPUT_DIR            = ROOT / "input"            # Collaborator-provided inputs
OUTPUT_DIR           = ROOT / "output"           # Main output directory
RESOURCES            = ROOT / "resources"        # Reference genome, annotation, lookups
LOG_DIR              = ROOT / "logs"             # Rotating log files

### INPUTS ###
SITES_DIR     = INPUT_DIR / "insertion_sites"      # Per-sample insertion-site tables
SITES_PATTERN = "*_insertion_sites.tsv"            # Glob matched inside SITES_DIR
METADATA_FILE = INPUT_DIR / "sample_metadata.tsv"  # One row per file_id
FLANK_DIR     = INPUT_DIR / "flanking_sequences"   # Per-sample FASTA around each site
FLANK_PATTERN = "*.fasta"                          # Glob matched inside FLANK_DIR

# Minimum required columns in any insertion-site table from the upstream pipeline.
REQUIRED_COLUMNS = ["sample_id", "seqnames", "start", "end", "strand", "score", "annotation", "tss_distance"]
# Minimum required columns in the sample metadata sheet.
METADATA_COLUMNS = ["file_id", "sample_name"]

# Sequencing-run suffix stripped from sample_id to obtain file_id
# (Illumina sample number, optionally followed by the lane: "_S12", "_S12_L001").
RUN_SUFFIX_PATTERN = r"_S\d+(?:_L\d{3})?$"

# Header aliases emitted by common upstream annotators, applied after snake_case normalization.
COLUMN_ALIASES = {
    "distance_to_tss": "tss_distance",
    "chr": "seqnames",
    "chrom": "seqnames",
}

### REFERENCE (pinned Ensembl release) ###
ASSEMBLY        = "GRCh38"
ENSEMBL_RELEASE = 110
ENSEMBL_FTP     = f"https://ftp.ensembl.org/pub/release-{ENSEMBL_RELEASE}"
GENOME_URL      = f"{ENSEMBL_FTP}/fasta/homo_sapiens/dna/Homo_sapiens.{ASSEMBLY}.dna.primary_assembly.fa.gz"
GTF_URL         = f"{ENSEMBL_FTP}/gtf/homo_sapiens/Homo_sapiens.{ASSEMBLY}.{ENSEMBL_RELEASE}.gtf.gz"

REFERENCE  = RESOURCES / "reference"                                   # Downloaded reference files
LOOKUPS    = RESOURCES / "lookups"                                     # Derived lookup tables
GENOME_FA  = REFERENCE / Path(GENOME_URL).name                         # Genome FASTA (.fa.gz)
GTF_FILE   = REFERENCE / Path(GTF_URL).name                            # Gene annotation (.gtf.gz)
GENE_MODEL = LOOKUPS / f"{ASSEMBLY}_{ENSEMBL_RELEASE}_gene_model.tsv"  # GTF -> feature rows
CHROM_SIZES = LOOKUPS / f"{ASSEMBLY}_chrom_sizes.tsv"                  # FASTA -> chr, length

# ---- Output directories ----
INTERIM    = OUTPUT_DIR / "interim"       # Intermediate stage outputs
FINAL      = OUTPUT_DIR / "final"         # Consolidated annotated table
STATS      = OUTPUT_DIR / "statistics"    # Summary tables
VISUALS    = OUTPUT_DIR / "visuals"       # Plots and figures
REPORT_DIR = OUTPUT_DIR / "report"        # Rendered HTML report

# ---- I/O defaults ----
OUTPUT_EXT = ".tsv"                       # Default extension for saved files
OUTPUT_SEP = "\t"                         # Default column separator (TSV)

# ====================== Tunable Parameters ===============================

# ---- Replicate consensus (S03) ----
MIN_REPLICATES = 2                        # Technical replicates that must observe a site
REPLICATE_SUBSET_SIZES = (1, 2, 3)        # Combination sizes for the overlap table

# ---- Genome feature classes (S04) ----
FEATURE_CLASSES = [                       # Priority order, highest first
    "Promoter",
    "3' UTR",
    "Exon",
    "Intron",
    "Downstream",
    "Distal Intergenic",
]
PROMOTER_UPSTREAM   = 2000                # Bases upstream of each TSS
PROMOTER_DOWNSTREAM = 200                 # Bases downstream of each TSS
DOWNSTREAM_WINDOW   = 3000                # Bases past each gene's 3' end
GENOME_LABEL        = "Genome"            # Sample name of the reference distribution rows

# ---- Plotting (S06) ----
PLOTS_FILETYPE = "svg"
PLOTS_DPI      = 300
FIG_SIZE       = (8.0, 4.5)               # Inches
TOP_N_SITES    = 10                       # Sites shown individually in relative abundance bars
PALETTE        = "husl"                   # seaborn palette for per-sample colors

# ---- External fetch ----
FETCH_RETRIES   = 3                       # Attempts per resource
FETCH_BACKOFF   = 10                      # Seconds between attempts
FETCH_TIMEOUT   = 60                      # Seconds per request
FETCH_CHUNK     = 1 << 20                 # Streaming chunk size (bytes)
