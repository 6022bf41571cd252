"""
Shared genomic utilities for featuresignal.

Interval algebra on ``chr``/``start``/``end``/``strand`` DataFrames using
0-based, half-open coordinates (BED / pysam convention):

- promoter-style flank expansion
- tiling into equal-width bins
- reduction of overlapping intervals
- re-centering to a fixed width
- overlap counting with NCLS (Nested Containment List)

Also contains the peak file parsing helpers and chromosome sorting.
"""

import io
import logging
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from ncls import NCLS

from .exceptions import PeakFileFormatError

logger = logging.getLogger(__name__)

INTERVAL_COLUMNS = ["chr", "start", "end", "strand"]


# ============================================================================
# Interval arithmetic
# ============================================================================


def _strand_of(df: pd.DataFrame) -> pd.Series:
    if "strand" in df.columns:
        return df["strand"].fillna("*").astype(str)
    return pd.Series("*", index=df.index)


def promoters(df: pd.DataFrame, upstream: int, downstream: int) -> pd.DataFrame:
    """Expand intervals around their 5' end, strand-aware.

    For ``+`` and ``*`` intervals the anchor is ``start``:
    ``[start - upstream, start + downstream)``. For ``-`` intervals the
    anchor is ``end``: ``[end - downstream, end + upstream)``. Every result
    has width ``upstream + downstream``. Coordinates are not clipped to
    chromosome bounds.
    """
    out = df.copy()
    strand = _strand_of(df)
    minus = (strand == "-").to_numpy()
    starts = df["start"].to_numpy(dtype=np.int64)
    ends = df["end"].to_numpy(dtype=np.int64)

    new_start = np.where(minus, ends - downstream, starts - upstream)
    out["start"] = new_start
    out["end"] = new_start + upstream + downstream
    out["strand"] = strand.to_numpy()
    return out


def tile_intervals(df: pd.DataFrame, n: int) -> pd.DataFrame:
    """Split every interval into ``n`` adjacent tiles.

    Tile ``k`` (1-based, genomic order) of ``[s, s + w)`` is
    ``[s + floor((k-1)*w/n), s + floor(k*w/n))``, so tiles of one interval
    differ in width by at most one base and always cover it exactly.

    Returns
    -------
    pd.DataFrame
        ``n * len(df)`` rows grouped by source interval, with columns
        ``chr``, ``start``, ``end``, ``strand``, ``source_idx`` (row position
        in ``df``) and ``tile`` (1..n in genomic order).
    """
    n_src = len(df)
    starts = df["start"].to_numpy(dtype=np.int64)
    widths = df["end"].to_numpy(dtype=np.int64) - starts

    k = np.arange(1, n + 1, dtype=np.int64)
    rel_end = (k[None, :] * widths[:, None]) // n
    rel_start = ((k[None, :] - 1) * widths[:, None]) // n

    return pd.DataFrame({
        "chr": np.repeat(df["chr"].to_numpy(), n),
        "start": (starts[:, None] + rel_start).ravel(),
        "end": (starts[:, None] + rel_end).ravel(),
        "strand": np.repeat(_strand_of(df).to_numpy(), n),
        "source_idx": np.repeat(np.arange(n_src, dtype=np.int64), n),
        "tile": np.tile(k, n_src),
    })


def reduce_intervals(df: pd.DataFrame, chrom_col: str = "chr") -> pd.DataFrame:
    """Merge overlapping or book-ended intervals, ignoring strand.

    Returns a DataFrame with columns ``chr``, ``start``, ``end`` sorted by
    chromosome (natural order) and start.
    """
    if df.empty:
        return pd.DataFrame({"chr": pd.Series(dtype=object),
                             "start": pd.Series(dtype=np.int64),
                             "end": pd.Series(dtype=np.int64)})

    merged = []
    for chrom in sort_chromosomes(list(df[chrom_col].unique())):
        grp = df[df[chrom_col] == chrom].sort_values("start")
        cur_start, cur_end = None, None
        for start, end in zip(grp["start"].to_numpy(), grp["end"].to_numpy()):
            if cur_end is not None and start <= cur_end:
                cur_end = max(cur_end, int(end))
                continue
            if cur_end is not None:
                merged.append((chrom, cur_start, cur_end))
            cur_start, cur_end = int(start), int(end)
        merged.append((chrom, cur_start, cur_end))

    return pd.DataFrame(merged, columns=["chr", "start", "end"])


def recenter_intervals(df: pd.DataFrame, width: int) -> pd.DataFrame:
    """Resize intervals to ``width`` around their midpoint.

    The midpoint base is ``start + (end - start) // 2``; the new interval
    starts ``width // 2`` bases before it. Strand is ignored.
    """
    out = df.copy()
    starts = df["start"].to_numpy(dtype=np.int64)
    ends = df["end"].to_numpy(dtype=np.int64)
    centre = starts + (ends - starts) // 2
    out["start"] = centre - width // 2
    out["end"] = out["start"] + width
    return out


# ============================================================================
# Overlap counting
# ============================================================================


def _build_ncls_index(
    starts: np.ndarray, ends: np.ndarray
) -> "NCLS":
    """Build an NCLS index from start/end arrays."""
    ids = np.arange(len(starts), dtype=np.int64)
    return NCLS(
        starts.astype(np.int64),
        ends.astype(np.int64),
        ids,
    )


def count_overlaps(
    query_df: pd.DataFrame,
    subject_df: pd.DataFrame,
    chrom_col: str = "chr",
    start_col: str = "start",
    end_col: str = "end",
) -> np.ndarray:
    """Count subject intervals overlapping each query interval.

    Strand is ignored. An overlap needs at least one shared base, and a
    subject overlapping several queries is counted for each of them.

    Returns
    -------
    np.ndarray
        Array of length ``len(query_df)`` with overlap counts, in query row
        order.
    """
    counts = np.zeros(len(query_df), dtype=np.int64)
    if query_df.empty or subject_df.empty:
        return counts

    query_pos = np.arange(len(query_df), dtype=np.int64)
    query_chroms = query_df[chrom_col].to_numpy()
    subject_groups = {name: grp for name, grp in subject_df.groupby(chrom_col)}

    for chrom in pd.unique(query_chroms):
        if chrom not in subject_groups:
            continue
        s_grp = subject_groups[chrom]
        mask = query_chroms == chrom

        ncls = _build_ncls_index(
            s_grp[start_col].to_numpy(), s_grp[end_col].to_numpy()
        )
        q_idx, _s_idx = ncls.all_overlaps_both(
            query_df[start_col].to_numpy(dtype=np.int64)[mask],
            query_df[end_col].to_numpy(dtype=np.int64)[mask],
            query_pos[mask],
        )
        counts += np.bincount(np.asarray(q_idx, dtype=np.int64), minlength=len(query_df))

    return counts


# ============================================================================
# Peak file parsing utilities
# ============================================================================

# Standard column name mappings
CHROM_COLS = ["chr", "chrom", "chromosome", "seqnames", "#chr"]
START_COLS = ["start", "chromStart", "peak_start"]
END_COLS = ["end", "chromEnd", "peak_end"]
STRAND_COLS = ["strand", "orientation"]
NAME_COLS = ["name", "peak_id", "id"]
SUMMIT_COLS = ["peak", "summit", "summit_offset"]


def detect_column(df: pd.DataFrame, candidates: List[str], required: bool = False) -> Optional[str]:
    """Find the first matching column name from a list of candidates.

    Parameters
    ----------
    df : pd.DataFrame
    candidates : list of str
        Column names to search for (case-insensitive).
    required : bool
        If True, raise ValueError when not found.

    Returns
    -------
    str or None
    """
    cols_lower = {c.lower(): c for c in df.columns}
    for cand in candidates:
        if cand.lower() in cols_lower:
            return cols_lower[cand.lower()]
    if required:
        raise ValueError(
            f"Could not find any of {candidates} in columns: {list(df.columns)}"
        )
    return None


def standardize_peak_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename common peak column variants to standardized names.

    Produces columns: chr, start, end (and optionally strand, name, peak).
    """
    mapping = {}
    for std_name, candidates in [
        ("chr", CHROM_COLS),
        ("start", START_COLS),
        ("end", END_COLS),
        ("strand", STRAND_COLS),
        ("name", NAME_COLS),
        ("peak", SUMMIT_COLS),
    ]:
        col = detect_column(df, candidates)
        if col and col != std_name:
            mapping[col] = std_name
    return df.rename(columns=mapping)


def load_peak_file(filepath_or_buffer, sep: str = "\t") -> pd.DataFrame:
    """Load a BED/narrowPeak/broadPeak/CSV file into a standardized DataFrame.

    Handles:
    - BED (3-6+ columns, no header)
    - narrowPeak / broadPeak (ENCODE format)
    - CSV/TSV with headers

    Returns a DataFrame with at least: chr, start, end

    Raises
    ------
    PeakFileFormatError
        If the file is empty or its coordinates are not integers.
    """
    if hasattr(filepath_or_buffer, "read"):
        content = filepath_or_buffer.read()
        if isinstance(content, bytes):
            content = content.decode("utf-8")
        buf = io.StringIO(content)
    else:
        buf = str(filepath_or_buffer)

    try:
        peek = pd.read_csv(buf, sep=sep, nrows=2, header=None, comment="#")
    except pd.errors.EmptyDataError as e:
        raise PeakFileFormatError(f"Peak file is empty: {filepath_or_buffer}") from e
    if hasattr(buf, "seek"):
        buf.seek(0)

    # Header if the second column of the first line is not a coordinate
    first_val = str(peek.iloc[0, 1]) if peek.shape[1] > 1 else ""
    has_header = not first_val.replace("-", "").isdigit()

    df = pd.read_csv(buf, sep=sep, header=0 if has_header else None,
                     comment=None if has_header else "#")

    if not has_header:
        # Assign BED-style column names
        bed_cols = ["chr", "start", "end", "name", "score", "strand",
                    "signalValue", "pValue", "qValue", "peak"]
        df.columns = bed_cols[: len(df.columns)]

    df = standardize_peak_columns(df)
    for col in ("chr", "start", "end"):
        if col not in df.columns:
            raise PeakFileFormatError(f"Peak file has no '{col}' column: {list(df.columns)}")
    try:
        df["start"] = df["start"].astype(np.int64)
        df["end"] = df["end"].astype(np.int64)
    except (TypeError, ValueError) as e:
        raise PeakFileFormatError(f"Non-integer coordinates in peak file: {e}") from e
    return df


# ============================================================================
# Chromosome utilities
# ============================================================================

_CHROM_ORDER = {f"chr{i}": i for i in range(1, 23)}
_CHROM_ORDER.update({"chrX": 23, "chrY": 24, "chrM": 25, "chrMT": 25})


def sort_chromosomes(chroms: List[str]) -> List[str]:
    """Sort chromosome names in natural order (1,2,...,22,X,Y,M)."""
    def _sort_key(c: str) -> Tuple[int, str]:
        c_stripped = c.replace("chr", "") if c.startswith("chr") else c
        if c in _CHROM_ORDER:
            return (_CHROM_ORDER[c], c)
        try:
            return (int(c_stripped), c)
        except ValueError:
            return (100, c)
    return sorted(chroms, key=_sort_key)
