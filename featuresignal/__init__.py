"""
featuresignal - feature-aligned ChIP-seq/DNA-seq signal extraction

Reads alignments from BAM files (or pre-parsed collections), extends reads
to fragments and builds normalized feature x tile signal matrices around
peak summits and binding sites, ready for heatmaps and profiles.
"""

__version__ = "0.1.0"
__author__ = "featuresignal developers"
