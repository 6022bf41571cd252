"""
Feature handling and region preparation.

Turns a set of single-base features (peak summits, binding sites) into the
tile geometry shared by every sample:

- the expanded query windows used to scope BAM reads
- the signal windows flanking each feature
- ``n_tile`` tiles per window, ordered 5'->3' relative to the feature strand
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from .exceptions import FeatureWidthError, InvalidParameterError, validate_dataframe
from .genomic_utils import (
    load_peak_file,
    promoters,
    recenter_intervals,
    reduce_intervals,
    tile_intervals,
)

logger = logging.getLogger(__name__)

VALID_STRANDS = {"+", "-", "*"}


@dataclass
class TileLayout:
    """Bin geometry for a feature set, independent of any sample."""
    features: pd.DataFrame  # input features with ``oid``
    tiles: pd.DataFrame  # one row per tile with ``oid`` and ``gpid``
    query_windows: pd.DataFrame  # reduced, unstranded read-scoping windows
    bin_width: int
    n_tile: int
    feature_labels: pd.Index = field(default_factory=lambda: pd.Index([]))

    @property
    def n_features(self) -> int:
        return len(self.features)


def normalize_features(features: pd.DataFrame) -> pd.DataFrame:
    """Validate a feature table and return a clean copy.

    Requires ``chr``, ``start`` and ``end``; fills a missing ``strand`` with
    ``*``. Every feature must be exactly one base wide.

    Raises
    ------
    MissingColumnError, EmptyDataError
        For structurally invalid tables.
    FeatureWidthError
        If any feature is not width 1.
    """
    validate_dataframe(features, "features", required_columns=["chr", "start", "end"], min_rows=1)

    out = features.reset_index(drop=True).copy()
    out["chr"] = out["chr"].astype(str)
    out["start"] = out["start"].astype(np.int64)
    out["end"] = out["end"].astype(np.int64)
    if "strand" in out.columns:
        # BED files write "." for unstranded
        out["strand"] = out["strand"].fillna("*").astype(str).replace(".", "*")
    else:
        out["strand"] = "*"

    bad_strand = ~out["strand"].isin(VALID_STRANDS)
    if bad_strand.any():
        raise InvalidParameterError(
            "strand", sorted(out.loc[bad_strand, "strand"].unique())[:5], "'+', '-' or '*'"
        )

    widths = out["end"] - out["start"]
    bad = widths != 1
    if bad.any():
        raise FeatureWidthError(int(bad.sum()), widths[bad].tolist())
    return out


def prepare_regions(
    features: pd.DataFrame,
    upstream: int,
    downstream: int,
    n_tile: int,
    max_fragment_length: int,
) -> TileLayout:
    """Compute tile geometry and strand-aware tile ordering.

    Parameters
    ----------
    features : pd.DataFrame
        Width-1 features (``chr``, ``start``, ``end``, optional ``strand``
        and ``name``), in the row order wanted for the output matrices.
    upstream, downstream : int
        Flank sizes of the signal window.
    n_tile : int
        Number of tiles per feature.
    max_fragment_length : int
        Largest fragment length of all samples; pads the query windows so
        that reads extended into the signal window are still fetched.

    Returns
    -------
    TileLayout
    """
    feats = normalize_features(features)
    feats["oid"] = np.arange(1, len(feats) + 1, dtype=np.int64)

    if n_tile <= 0 or n_tile > upstream + downstream:
        raise InvalidParameterError(
            "n_tile", n_tile, f"between 1 and upstream + downstream ({upstream + downstream})"
        )
    bin_width = (upstream + downstream) // n_tile

    expanded = promoters(
        feats, upstream + max_fragment_length, downstream + max_fragment_length
    )
    expanded["strand"] = "*"
    query_windows = reduce_intervals(expanded)

    windows = promoters(feats, upstream, downstream)
    tiles = tile_intervals(windows, n_tile)
    tiles["oid"] = feats["oid"].to_numpy()[tiles["source_idx"].to_numpy()]

    # Feature-relative order: gpid 1 is the 5'-most tile on either strand
    minus = (tiles["strand"] == "-").to_numpy()
    gpid = tiles["tile"].to_numpy().copy()
    gpid[minus] = n_tile + 1 - gpid[minus]
    tiles["gpid"] = gpid
    tiles = tiles.drop(columns=["source_idx", "tile"])
    tiles = tiles.sort_values(["oid", "gpid"], kind="stable").reset_index(drop=True)

    if "name" in feats.columns and feats["name"].notna().all() and feats["name"].is_unique:
        labels = pd.Index(feats["name"].astype(str), name="feature")
    else:
        labels = pd.Index(feats["oid"], name="feature")

    logger.info(
        f"Prepared {len(tiles)} tiles ({n_tile} per feature, {bin_width} bp per bin) "
        f"for {len(feats)} features in {len(query_windows)} query windows"
    )
    return TileLayout(
        features=feats,
        tiles=tiles,
        query_windows=query_windows,
        bin_width=bin_width,
        n_tile=n_tile,
        feature_labels=labels,
    )


def recenter_peaks(peaks: pd.DataFrame, width: int = 1, use_summit: bool = True) -> pd.DataFrame:
    """Re-center peaks to a fixed width.

    With ``width=1`` this produces the single-base features expected by
    :func:`prepare_regions`. When ``use_summit`` is set and the table has a
    narrowPeak ``peak`` column (summit offset from ``start``, -1 for none),
    the summit is used as the centre instead of the midpoint.
    """
    validate_dataframe(peaks, "peaks", required_columns=["chr", "start", "end"])
    if width < 1:
        raise InvalidParameterError("width", width, ">= 1")

    out = peaks.copy()
    if use_summit and "peak" in out.columns:
        offset = pd.to_numeric(out["peak"], errors="coerce").fillna(-1).astype(np.int64)
        has_summit = (offset >= 0).to_numpy()
        summit = out["start"].to_numpy(dtype=np.int64) + offset.to_numpy()
        anchored = out.copy()
        anchored.loc[has_summit, "start"] = summit[has_summit]
        anchored.loc[has_summit, "end"] = summit[has_summit] + 1
        out = anchored
    return recenter_intervals(out, width)


def load_features(path: Union[str, Path], width: int = 1, use_summit: bool = True) -> pd.DataFrame:
    """Load a BED/narrowPeak/CSV peak file as features re-centered to ``width``."""
    peaks = load_peak_file(path)
    features = recenter_peaks(peaks, width=width, use_summit=use_summit)
    logger.info(f"Loaded {len(features)} features from {path}")
    return features
