"""
Core analysis modules for featuresignal.

Includes:
- Region preparation (flank tiling around features)
- Fragment reconstruction from BAM files or alignment collections
- Overlap counting and signal normalization
"""

# Signal extraction
from .signal import (
    SampleSpec,
    feature_aligned_extend_signal,
    run_signal_extraction,
    feature_aligned_distribution,
    save_signal_matrices,
)

# Alignments and fragments
from .alignments import PairingMode, SingleReads, ReadPairs, looks_paired
from .bam import read_alignments, is_paired_end_bam, estimate_library_size

# Features and tiles
from .features import TileLayout, prepare_regions, recenter_peaks, load_features

# Shared genomic utilities (interval algebra, NCLS overlap, peak parsing)
from .genomic_utils import (
    promoters,
    tile_intervals,
    reduce_intervals,
    recenter_intervals,
    count_overlaps,
    load_peak_file,
    sort_chromosomes,
)

__all__ = [
    # Signal extraction
    "SampleSpec",
    "feature_aligned_extend_signal",
    "run_signal_extraction",
    "feature_aligned_distribution",
    "save_signal_matrices",

    # Alignments
    "PairingMode",
    "SingleReads",
    "ReadPairs",
    "looks_paired",
    "read_alignments",
    "is_paired_end_bam",
    "estimate_library_size",

    # Features
    "TileLayout",
    "prepare_regions",
    "recenter_peaks",
    "load_features",

    # Genomic utilities
    "promoters",
    "tile_intervals",
    "reduce_intervals",
    "recenter_intervals",
    "count_overlaps",
    "load_peak_file",
    "sort_chromosomes",
]
