"""
Feature-aligned signal extraction.

Extracts ChIP-seq / DNA-seq signal around single-base features:

1. Region preparation - tile the window flanking every feature
2. Fragment reconstruction - pair reads or extend them to the fragment length
3. Overlap counting - fragments per tile, strand ignored
4. Normalization - per-sample feature x tile matrices

Stages 2-4 are independent per sample and run on a thread pool when more
than one worker is allowed.
"""

import logging
import re
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..config import settings
from .alignments import (
    AlignmentCollection,
    PairingMode,
    ReadPairs,
    SingleReads,
    adjust_fragment_length,
)
from .bam import is_paired_end_bam, read_alignments
from .exceptions import (
    AlignmentTypeError,
    ExtractionCancelledError,
    FeatureSignalError,
    InvalidParameterError,
    SignalExtractionError,
    ValidationError,
    is_number,
    validate_numeric_param,
)
from .features import TileLayout, normalize_features, prepare_regions
from .genomic_utils import count_overlaps

logger = logging.getLogger(__name__)


@dataclass
class SampleSpec:
    """Per-sample input: one BAM file or one alignment collection."""
    sample_id: str
    fragment_length: int
    library_size: int
    bam_file: Optional[str] = None
    index_file: Optional[str] = None
    alignments: Optional[AlignmentCollection] = None

    def __post_init__(self):
        self.sample_id = str(self.sample_id)
        if (self.bam_file is None) == (self.alignments is None):
            raise ValidationError(
                f"Sample {self.sample_id} needs exactly one of bam_file or alignments"
            )
        if self.alignments is not None and not isinstance(self.alignments, (SingleReads, ReadPairs)):
            raise AlignmentTypeError(self.sample_id, type(self.alignments).__name__)
        validate_numeric_param(self.fragment_length, "fragment_length", min_val=1)
        validate_numeric_param(self.library_size, "library_size", min_val=1)
        self.fragment_length = int(self.fragment_length)
        self.library_size = int(self.library_size)


# ============================================================================
# Input validation
# ============================================================================


def _as_list(value) -> List[Any]:
    if isinstance(value, (str, Path)) or not isinstance(value, Sequence):
        return [value]
    return list(value)


def _per_sample(value, n_samples: int, name: str) -> List[int]:
    """Broadcast a scalar, or check a per-sample list, of numbers."""
    values = _as_list(value) if not isinstance(value, np.ndarray) else value.tolist()
    if len(values) == 1:
        values = values * n_samples
    if len(values) != n_samples:
        raise InvalidParameterError(
            name, value, f"a single number or one number per sample ({n_samples})"
        )
    for v in values:
        validate_numeric_param(v, name, min_val=1)
    return [int(v) for v in values]


def _sample_inputs(bam_files, index_files, alignments) -> List[Tuple[str, Dict[str, Any]]]:
    """Resolve the sample source arguments into (sample_id, source) pairs."""
    if bam_files is not None:
        if alignments is not None:
            raise ValidationError("Supply either bam_files or alignments, not both")
        if isinstance(bam_files, Mapping):
            ids, paths = list(bam_files.keys()), list(bam_files.values())
        else:
            paths = _as_list(bam_files)
            ids = [str(p) for p in paths]
        indexes = paths if index_files is None else _as_list(index_files)
        if len(indexes) != len(paths):
            raise ValidationError(
                f"Got {len(paths)} bam_files but {len(indexes)} index_files"
            )
        return [
            (str(sid), {"bam_file": str(path), "index_file": str(idx)})
            for sid, path, idx in zip(ids, paths, indexes)
        ]

    if alignments is None:
        raise ValidationError("alignments are required if bam_files is missing")
    if isinstance(alignments, Mapping):
        items = [(str(k), v) for k, v in alignments.items()]
    elif isinstance(alignments, AlignmentCollection):
        items = [("sample1", alignments)]
    else:
        items = [(f"sample{i + 1}", a) for i, a in enumerate(alignments)]
    for sid, collection in items:
        if not isinstance(collection, (SingleReads, ReadPairs)):
            raise AlignmentTypeError(sid, type(collection).__name__)
    return [(sid, {"alignments": collection}) for sid, collection in items]


def _validate_inputs(
    features,
    upstream,
    downstream,
    n_tile,
    fragment_length,
    library_size,
    pairing_mode,
    adjust,
    bam_files,
    index_files,
    alignments,
) -> Tuple[List[SampleSpec], int, int, int, PairingMode, Optional[int]]:
    if fragment_length is None:
        raise ValidationError("fragment_length is missing")
    if adjust is not None:
        if not is_number(adjust):
            raise InvalidParameterError("adjust_fragment_length", adjust, "a single number")
        validate_numeric_param(adjust, "adjust_fragment_length", min_val=1)
        adjust = int(adjust)

    sources = _sample_inputs(bam_files, index_files, alignments)
    ids = [sid for sid, _ in sources]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"Sample identifiers must be unique: {ids}")

    normalize_features(features)
    if upstream is None or downstream is None:
        raise ValidationError("upstream and downstream are required")
    validate_numeric_param(upstream, "upstream", min_val=0)
    validate_numeric_param(downstream, "downstream", min_val=0)
    validate_numeric_param(n_tile, "n_tile", min_val=1)
    if library_size is None:
        raise ValidationError("library_size is missing")
    mode = PairingMode.parse(pairing_mode)

    upstream, downstream, n_tile = int(upstream), int(downstream), int(n_tile)
    if n_tile > upstream + downstream:
        raise InvalidParameterError(
            "n_tile", n_tile, f"<= upstream + downstream ({upstream + downstream})"
        )

    frag_lens = _per_sample(fragment_length, len(sources), "fragment_length")
    lib_sizes = _per_sample(library_size, len(sources), "library_size")
    samples = [
        SampleSpec(sample_id=sid, fragment_length=fl, library_size=ls, **source)
        for (sid, source), fl, ls in zip(sources, frag_lens, lib_sizes)
    ]
    return samples, upstream, downstream, n_tile, mode, adjust


# ============================================================================
# Per-sample pipeline
# ============================================================================


def reconstruct_fragments(
    sample: SampleSpec,
    query_windows: pd.DataFrame,
    pairing_mode: PairingMode,
) -> Tuple[pd.DataFrame, bool]:
    """Build the fragments of one sample.

    Returns
    -------
    (pd.DataFrame, bool)
        Fragments (``chr``, ``start``, ``end``) and whether the sample was
        treated as paired-end.
    """
    if sample.alignments is not None:
        collection = sample.alignments
        resolved_paired = collection.is_paired(pairing_mode)
    else:
        if pairing_mode is PairingMode.AUTO:
            resolved_paired = is_paired_end_bam(sample.bam_file, sample.index_file)
        else:
            resolved_paired = pairing_mode is PairingMode.PAIRED
        collection = read_alignments(
            sample.bam_file, sample.index_file, query_windows, resolved_paired
        )

    resolved_mode = PairingMode.PAIRED if resolved_paired else PairingMode.SINGLE
    fragments = collection.to_fragments(resolved_mode, sample.fragment_length)
    logger.info(
        f"{sample.sample_id}: {len(fragments)} fragments "
        f"({'paired' if resolved_paired else 'single'}-end)"
    )
    return fragments, resolved_paired


def signal_matrix(
    counts: np.ndarray,
    layout: TileLayout,
    library_size: int,
    fragment_length: int,
) -> pd.DataFrame:
    """Arrange per-tile counts as a feature x tile matrix and normalize.

    ``signal = count * 1e8 / library_size * 100 / fragment_length / bin_width``
    (constants from settings): depth per hundred million reads, corrected
    for fragment length and expressed per base pair of bin.
    """
    values = np.zeros((layout.n_features, layout.n_tile), dtype=np.float64)
    rows = layout.tiles["oid"].to_numpy() - 1
    cols = layout.tiles["gpid"].to_numpy() - 1
    values[rows, cols] = counts

    values = (
        values * settings.count_scale / library_size
        * settings.fragment_scale / fragment_length / layout.bin_width
    )
    return pd.DataFrame(
        values,
        index=layout.feature_labels,
        columns=pd.RangeIndex(1, layout.n_tile + 1, name="tile"),
    )


def _check_cancelled(sample_id: str, *events: Optional[threading.Event]) -> None:
    if any(e is not None and e.is_set() for e in events):
        raise ExtractionCancelledError(f"Signal extraction cancelled at sample '{sample_id}'")


def extract_sample_signal(
    sample: SampleSpec,
    layout: TileLayout,
    pairing_mode: PairingMode,
    adjust: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    abort_event: Optional[threading.Event] = None,
) -> pd.DataFrame:
    """Run fragment reconstruction, counting and normalization for one sample."""
    try:
        _check_cancelled(sample.sample_id, cancel_event, abort_event)
        fragments, _ = reconstruct_fragments(sample, layout.query_windows, pairing_mode)

        fragment_length = sample.fragment_length
        if adjust is not None:
            fragments = adjust_fragment_length(fragments, adjust)
            fragment_length = adjust

        _check_cancelled(sample.sample_id, cancel_event, abort_event)
        counts = count_overlaps(layout.tiles, fragments)

        _check_cancelled(sample.sample_id, cancel_event, abort_event)
        return signal_matrix(counts, layout, sample.library_size, fragment_length)
    except ExtractionCancelledError:
        raise
    except (FeatureSignalError, OSError, ValueError) as e:
        raise SignalExtractionError(sample.sample_id, str(e)) from e


def run_signal_extraction(
    samples: List[SampleSpec],
    features: pd.DataFrame,
    upstream: int,
    downstream: int,
    n_tile: Optional[int] = None,
    pairing_mode: Union[PairingMode, str, None] = None,
    adjust_fragment_length: Optional[int] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, pd.DataFrame]:
    """Extract signal matrices for explicit per-sample records.

    A failure in any sample aborts the call with
    :class:`SignalExtractionError`; samples not yet started are skipped.

    Returns
    -------
    dict
        ``sample_id -> DataFrame`` (features x tiles), in sample order.
    """
    if not samples:
        raise ValidationError("At least one sample is required")
    n_tile = settings.default_n_tile if n_tile is None else n_tile
    validate_numeric_param(upstream, "upstream", min_val=0)
    validate_numeric_param(downstream, "downstream", min_val=0)
    validate_numeric_param(n_tile, "n_tile", min_val=1)
    upstream, downstream, n_tile = int(upstream), int(downstream), int(n_tile)
    mode = PairingMode.parse(settings.default_pairing_mode if pairing_mode is None else pairing_mode)
    workers = max_workers or settings.max_workers

    layout = prepare_regions(
        features, upstream, downstream, n_tile,
        max(s.fragment_length for s in samples),
    )
    logger.info(f"Extracting signal for {len(samples)} samples with {workers} worker(s)")

    abort_event = threading.Event()
    if workers <= 1 or len(samples) == 1:
        matrices = [
            extract_sample_signal(s, layout, mode, adjust_fragment_length, cancel_event, abort_event)
            for s in samples
        ]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(
                    extract_sample_signal, s, layout, mode,
                    adjust_fragment_length, cancel_event, abort_event,
                )
                for s in samples
            ]
            try:
                matrices = [f.result() for f in futures]
            except Exception:
                abort_event.set()
                raise

    return {s.sample_id: m for s, m in zip(samples, matrices)}


def feature_aligned_extend_signal(
    features: pd.DataFrame,
    upstream: Optional[int] = None,
    downstream: Optional[int] = None,
    fragment_length: Union[int, List[int], None] = None,
    library_size: Union[int, List[int], None] = None,
    bam_files=None,
    index_files=None,
    alignments=None,
    n_tile: Optional[int] = None,
    pairing_mode: Union[PairingMode, str, None] = None,
    adjust_fragment_length: Optional[int] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, pd.DataFrame]:
    """Extract fragment-extended signal around features from BAM files or alignments.

    Args:
        features: Width-1 features (``chr``, ``start``, ``end``, optional
            ``strand`` and ``name``); output rows follow this order.
        upstream, downstream: Flank sizes around each feature, in bp.
        fragment_length: Estimated fragment length, one value or one per sample.
        library_size: Library size, one value or one per sample.
        bam_files: BAM path(s), or a mapping ``sample_id -> path``.
        index_files: Index path(s) matching ``bam_files``; defaults to
            ``<bam>.bai``.
        alignments: ``SingleReads``/``ReadPairs`` collections (list or
            mapping), used when ``bam_files`` is not given.
        n_tile: Tiles per feature (default 100).
        pairing_mode: ``auto``, ``paired`` or ``single``.
        adjust_fragment_length: Re-center fragments to this width before
            counting; also replaces ``fragment_length`` in normalization.
        max_workers: Samples processed in parallel.
        cancel_event: Set to stop the extraction at the next stage boundary.

    Returns:
        Dict of sample id to feature x tile signal DataFrame.
    """
    n_tile = settings.default_n_tile if n_tile is None else n_tile
    pairing_mode = settings.default_pairing_mode if pairing_mode is None else pairing_mode

    samples, upstream, downstream, n_tile, mode, adjust = _validate_inputs(
        features, upstream, downstream, n_tile, fragment_length, library_size,
        pairing_mode, adjust_fragment_length, bam_files, index_files, alignments,
    )
    return run_signal_extraction(
        samples, features, upstream, downstream,
        n_tile=n_tile,
        pairing_mode=mode,
        adjust_fragment_length=adjust,
        max_workers=max_workers,
        cancel_event=cancel_event,
    )


# ============================================================================
# Summaries and output
# ============================================================================


def feature_aligned_distribution(
    signals: Dict[str, pd.DataFrame],
    zero_at: float = 0.5,
    window_bp: Optional[int] = None,
    statistic: str = "mean",
) -> pd.DataFrame:
    """Aggregate each signal matrix over features into one profile per sample.

    The index gives each tile centre relative to the feature, with the
    feature at fraction ``zero_at`` of the window; in tiles, or in bp when
    ``window_bp`` (upstream + downstream) is given.

    Returns
    -------
    pd.DataFrame
        Rows = tile positions, columns = samples.
    """
    if statistic not in ("mean", "median", "sum"):
        raise InvalidParameterError("statistic", statistic, "'mean', 'median' or 'sum'")
    if not signals:
        raise ValidationError("No signal matrices to summarize")

    n_tiles = {m.shape[1] for m in signals.values()}
    if len(n_tiles) != 1:
        raise ValidationError(f"Signal matrices have different tile counts: {sorted(n_tiles)}")
    n_tile = n_tiles.pop()

    scale = n_tile if window_bp is None else window_bp
    position = ((np.arange(n_tile) + 0.5) / n_tile - zero_at) * scale

    profile = pd.DataFrame(
        {sid: getattr(m, statistic)(axis=0).to_numpy() for sid, m in signals.items()},
        index=pd.Index(position, name="position"),
    )
    return profile


def save_signal_matrices(
    signals: Dict[str, pd.DataFrame],
    output_dir: Optional[Union[str, Path]] = None,
) -> Dict[str, Path]:
    """Write one tab-separated matrix per sample; returns the paths written."""
    if output_dir is None:
        settings.ensure_directories()
        output_path = settings.results_dir
    else:
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

    stems = [re.sub(r"[^\w.-]+", "_", Path(sid).name) or "sample" for sid in signals]
    # samples from different directories can share a file name
    clashing = {s for s in stems if stems.count(s) > 1}

    written = {}
    used = set()
    for i, (sample_id, matrix) in enumerate(signals.items(), start=1):
        stem = stems[i - 1]
        if stem in clashing or stem in used:
            stem = f"{stem}_{i}"
        while stem in used:
            stem = f"{stem}_{i}"
        used.add(stem)
        path = output_path / f"{stem}_signal.tsv"
        matrix.to_csv(path, sep="\t")
        written[sample_id] = path

    logger.info(f"Saved {len(written)} signal matrices to {output_path}")
    return written
