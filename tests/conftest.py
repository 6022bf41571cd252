"""
Shared test fixtures for the featuresignal test suite.
"""

import tempfile
from pathlib import Path

import pandas as pd
import pysam
import pytest

from featuresignal.core.alignments import SingleReads, ReadPairs

# ============================================================================
# Features and alignments
# ============================================================================


@pytest.fixture
def plus_feature():
    """A single width-1 feature on the + strand at chr1:1000."""
    return pd.DataFrame({"chr": ["chr1"], "start": [1000], "end": [1001], "strand": ["+"]})


@pytest.fixture
def mixed_features():
    """Three features on both strands and two chromosomes."""
    return pd.DataFrame({
        "chr": ["chr1", "chr1", "chr2"],
        "start": [1000, 5000, 2000],
        "end": [1001, 5001, 2001],
        "strand": ["+", "-", "*"],
        "name": ["site_a", "site_b", "site_c"],
    })


@pytest.fixture
def single_reads():
    """Single-end reads around chr1:1000 with unique template names."""
    return SingleReads(pd.DataFrame({
        "chr": ["chr1", "chr1", "chr1"],
        "start": [990, 1020, 1040],
        "end": [995, 1025, 1050],
        "strand": ["+", "+", "-"],
        "qname": ["r1", "r2", "r3"],
    }))


@pytest.fixture
def read_pairs():
    """Two matched pairs around chr1:1000."""
    return ReadPairs(pd.DataFrame({
        "chr": ["chr1", "chr1"],
        "start": [980, 1060],
        "end": [990, 1070],
        "mate_start": [1000, 1020],
        "mate_end": [1010, 1030],
    }))


# ============================================================================
# Temporary files
# ============================================================================


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that gets cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_narrowpeak_file(temp_dir):
    """Create a temporary narrowPeak file for testing."""
    np_path = temp_dir / "test.narrowPeak"
    np_content = """chr1\t1000\t2000\tpeak_0\t100\t.\t5.5\t3.2\t2.1\t500
chr1\t5000\t6000\tpeak_1\t200\t.\t8.1\t5.4\t4.3\t-1
chr2\t2000\t3000\tpeak_2\t150\t.\t6.2\t4.1\t3.0\t450"""
    np_path.write_text(np_content)
    return np_path


@pytest.fixture
def empty_bed_file(temp_dir):
    """Create an empty BED file."""
    bed_path = temp_dir / "empty.bed"
    bed_path.write_text("")
    return bed_path


# ============================================================================
# BAM files
# ============================================================================

BAM_HEADER = {
    "HD": {"VN": "1.0", "SO": "coordinate"},
    "SQ": [{"SN": "chr1", "LN": 10000}, {"SN": "chr2", "LN": 10000}],
}


def write_bam(path: Path, reads: list) -> Path:
    """Write a coordinate-sorted, indexed BAM.

    Each read is a dict with ``qname``, ``flag``, ``start``, ``length`` and
    optionally ``chrom`` (default chr1), ``mate_start`` and ``tlen``.
    """
    chrom_ids = {sq["SN"]: i for i, sq in enumerate(BAM_HEADER["SQ"])}
    ordered = sorted(reads, key=lambda r: (chrom_ids[r.get("chrom", "chr1")], r["start"]))
    with pysam.AlignmentFile(str(path), "wb", header=BAM_HEADER) as out:
        for spec in ordered:
            length = spec["length"]
            seg = pysam.AlignedSegment(out.header)
            seg.query_name = spec["qname"]
            seg.query_sequence = "A" * length
            seg.flag = spec["flag"]
            seg.reference_id = chrom_ids[spec.get("chrom", "chr1")]
            seg.reference_start = spec["start"]
            seg.mapping_quality = 60
            seg.cigartuples = [(0, length)]
            if "mate_start" in spec:
                seg.next_reference_id = seg.reference_id
                seg.next_reference_start = spec["mate_start"]
                seg.template_length = spec.get("tlen", 0)
            else:
                seg.next_reference_id = -1
                seg.next_reference_start = -1
            seg.query_qualities = pysam.qualitystring_to_array("I" * length)
            out.write(seg)
    pysam.index(str(path))
    return path


@pytest.fixture
def single_end_bam(temp_dir):
    """Single-end BAM around chr1:1000.

    Counted: a forward read at 920 and a reverse read ending at 1080.
    Ignored: a secondary and a QC-failed alignment.
    """
    return write_bam(temp_dir / "single.bam", [
        {"qname": "fwd", "flag": 0, "start": 920, "length": 30},
        {"qname": "rev", "flag": 16, "start": 1050, "length": 30},
        {"qname": "secondary", "flag": 256, "start": 930, "length": 30},
        {"qname": "qcfail", "flag": 512, "start": 940, "length": 30},
    ])


@pytest.fixture
def paired_end_bam(temp_dir):
    """Paired-end BAM around chr1:1000.

    Pair ``a`` spans [910, 990), pair ``b`` spans [1010, 1180); read ``c``
    is paired but not a proper pair.
    """
    return write_bam(temp_dir / "paired.bam", [
        {"qname": "a", "flag": 99, "start": 910, "length": 30, "mate_start": 960, "tlen": 80},
        {"qname": "a", "flag": 147, "start": 960, "length": 30, "mate_start": 910, "tlen": -80},
        {"qname": "b", "flag": 99, "start": 1010, "length": 30, "mate_start": 1150, "tlen": 170},
        {"qname": "b", "flag": 147, "start": 1150, "length": 30, "mate_start": 1010, "tlen": -170},
        {"qname": "c", "flag": 65, "start": 950, "length": 30, "mate_start": 5000, "tlen": 0},
    ])
