"""
BAM access with pysam.

- paired-end detection for a library
- scoped, flag-filtered reading of alignments into
  :class:`~featuresignal.core.alignments.SingleReads` or
  :class:`~featuresignal.core.alignments.ReadPairs`
- library size estimation from the BAM index
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd
import pysam

from ..config import settings
from .alignments import ReadPairs, SingleReads
from .exceptions import BamReadError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _resolve_index(bam_file: PathLike, index_file: Optional[PathLike]) -> Optional[str]:
    """Map an index argument to a path pysam can open.

    ``None`` lets pysam look for ``<bam>.bai`` itself. An index given without
    its ``.bai`` extension (or the BAM path itself) is completed when the
    ``.bai`` file exists.
    """
    if index_file is None:
        return None
    index = str(index_file)
    if index.endswith((".bai", ".csi")):
        return index
    if Path(f"{index}.bai").exists():
        return f"{index}.bai"
    if index == str(bam_file):
        return None
    return index


def open_bam(bam_file: PathLike, index_file: Optional[PathLike] = None) -> pysam.AlignmentFile:
    """Open a BAM file with its index, raising :class:`BamReadError` on failure."""
    try:
        return pysam.AlignmentFile(
            str(bam_file), "rb", index_filename=_resolve_index(bam_file, index_file)
        )
    except (OSError, ValueError) as e:
        raise BamReadError(str(bam_file), str(e)) from e


def is_paired_end_bam(
    bam_file: PathLike,
    index_file: Optional[PathLike] = None,
    probe_reads: Optional[int] = None,
) -> bool:
    """True if any of the first ``probe_reads`` records is flagged as paired."""
    probe_reads = probe_reads or settings.pairing_probe_reads
    with open_bam(bam_file, index_file) as bam:
        for i, read in enumerate(bam.fetch(until_eof=True)):
            if i >= probe_reads:
                break
            if read.is_paired:
                return True
    return False


def estimate_library_size(bam_file: PathLike, index_file: Optional[PathLike] = None) -> int:
    """Number of mapped reads recorded in the BAM index."""
    with open_bam(bam_file, index_file) as bam:
        try:
            mapped = bam.mapped
        except ValueError as e:
            raise BamReadError(str(bam_file), f"index statistics unavailable: {e}") from e
    logger.info(f"Library size of {bam_file}: {mapped} mapped reads")
    return int(mapped)


def _keep_read(read: pysam.AlignedSegment, paired: bool) -> bool:
    if read.is_unmapped or read.is_secondary or read.is_qcfail:
        return False
    if paired:
        return read.is_proper_pair and not read.is_supplementary
    return True


def _fetch_scoped(
    bam: pysam.AlignmentFile,
    regions: pd.DataFrame,
    paired: bool,
):
    """Yield filtered reads overlapping ``regions``, each read at most once.

    ``regions`` must be reduced (disjoint); a read spanning two regions is
    reported only for the first of them.
    """
    contigs = set(bam.references)
    for chrom, grp in regions.groupby("chr", sort=False):
        if chrom not in contigs:
            logger.debug(f"{chrom} not in {bam.filename.decode()}; skipping {len(grp)} regions")
            continue
        chrom_len = bam.get_reference_length(chrom)
        spill = set()
        for start, end in zip(grp["start"].to_numpy(), grp["end"].to_numpy()):
            start, end = max(0, int(start)), min(chrom_len, int(end))
            if start >= end:
                continue
            for read in bam.fetch(chrom, start, end):
                if not _keep_read(read, paired):
                    continue
                key = (read.query_name, read.flag, read.reference_start)
                if read.reference_start < start and key in spill:
                    continue
                if read.reference_end > end:
                    spill.add(key)
                yield read


def read_alignments(
    bam_file: PathLike,
    index_file: Optional[PathLike],
    regions: pd.DataFrame,
    paired: bool,
) -> Union[SingleReads, ReadPairs]:
    """Read alignments overlapping ``regions`` from a BAM file.

    Single-end reading drops unmapped, secondary and QC-failed records.
    Paired-end reading additionally requires the proper-pair flag and
    matches mates by template name; mates whose partner lies outside
    ``regions`` are dropped.

    Returns
    -------
    SingleReads or ReadPairs
    """
    with open_bam(bam_file, index_file) as bam:
        try:
            if paired:
                collection = _read_pairs(bam, regions)
            else:
                collection = _read_singles(bam, regions)
        except (OSError, ValueError) as e:
            raise BamReadError(str(bam_file), str(e)) from e

    logger.info(
        f"Loaded {len(collection)} {'read pairs' if paired else 'reads'} from {bam_file}"
    )
    return collection


def _read_singles(bam: pysam.AlignmentFile, regions: pd.DataFrame) -> SingleReads:
    rows: List[Tuple[str, int, int, str, str]] = []
    for read in _fetch_scoped(bam, regions, paired=False):
        rows.append((
            read.reference_name,
            read.reference_start,
            read.reference_end,
            "-" if read.is_reverse else "+",
            read.query_name,
        ))
    return SingleReads(pd.DataFrame(rows, columns=["chr", "start", "end", "strand", "qname"]))


def _read_pairs(bam: pysam.AlignmentFile, regions: pd.DataFrame) -> ReadPairs:
    rows: List[Tuple[str, int, int, int, int]] = []
    pending: Dict[Tuple[str, str], pysam.AlignedSegment] = {}
    for read in _fetch_scoped(bam, regions, paired=True):
        key = (read.reference_name, read.query_name)
        mate = pending.pop(key, None)
        if mate is None or mate.is_read1 == read.is_read1:
            pending[key] = read
            continue
        rows.append((
            read.reference_name,
            mate.reference_start,
            mate.reference_end,
            read.reference_start,
            read.reference_end,
        ))
    if pending:
        logger.debug(f"{len(pending)} proper-pair reads without a loaded mate were dropped")
    return ReadPairs(pd.DataFrame(
        rows, columns=["chr", "start", "end", "mate_start", "mate_end"]
    ))
