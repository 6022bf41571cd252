"""
Alignment collections and fragment reconstruction.

Two collection types carry alignments into the signal pipeline:

- :class:`SingleReads` - one row per aligned read, optionally with its
  template name (``qname``). Depending on the pairing mode the reads are
  either grouped into read pairs or extended to the fragment length.
- :class:`ReadPairs` - one row per mate pair, already matched.

Both turn themselves into fragments (``chr``/``start``/``end`` intervals,
0-based half-open) through ``to_fragments``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Union

import numpy as np
import pandas as pd

from .exceptions import InvalidParameterError, validate_dataframe
from .genomic_utils import recenter_intervals

logger = logging.getLogger(__name__)

FRAGMENT_COLUMNS = ["chr", "start", "end"]


class PairingMode(Enum):
    """How reads of a sample should be turned into fragments."""

    AUTO = "auto"
    PAIRED = "paired"
    SINGLE = "single"

    @classmethod
    def parse(cls, value: Union["PairingMode", str]) -> "PairingMode":
        """Accept an enum member, its value, or the ``PE``/``SE`` shorthands."""
        if isinstance(value, cls):
            return value
        aliases = {"pe": cls.PAIRED, "se": cls.SINGLE}
        if isinstance(value, str):
            key = value.strip().lower()
            if key in aliases:
                return aliases[key]
            for member in cls:
                if member.value == key:
                    return member
        raise InvalidParameterError("pairing_mode", value, "'auto', 'paired' or 'single'")


def looks_paired(qnames: pd.Series) -> bool:
    """Guess whether reads are paired from template name multiplicities.

    No names, or every name seen exactly once, means single-end. Otherwise
    the reads are treated as paired when no name occurs three or more times
    (a mix of names seen once and twice counts as paired); any name seen
    three or more times falls back to single-end.
    """
    qnames = qnames.dropna()
    if qnames.empty:
        return False
    multiplicity = qnames.value_counts()
    if (multiplicity == 1).all():
        return False
    return bool((multiplicity < 3).all())


def empty_fragments() -> pd.DataFrame:
    return pd.DataFrame({
        "chr": pd.Series(dtype=object),
        "start": pd.Series(dtype=np.int64),
        "end": pd.Series(dtype=np.int64),
    })


def extend_reads(reads: pd.DataFrame, fragment_length: int) -> pd.DataFrame:
    """Extend single-end reads to ``fragment_length`` in their 3' direction.

    ``+`` (and unstranded) reads keep their start and become
    ``[start, start + L)``; ``-`` reads keep their end and become
    ``[end - L, end)``.
    """
    starts = reads["start"].to_numpy(dtype=np.int64)
    ends = reads["end"].to_numpy(dtype=np.int64)
    minus = (reads["strand"] == "-").to_numpy()

    new_start = np.where(minus, ends - fragment_length, starts)
    return pd.DataFrame({
        "chr": reads["chr"].to_numpy(),
        "start": new_start,
        "end": new_start + fragment_length,
    })


def adjust_fragment_length(fragments: pd.DataFrame, width: int) -> pd.DataFrame:
    """Re-center every fragment to ``width``, keeping its midpoint."""
    return recenter_intervals(fragments, width)


@dataclass
class AlignmentCollection(ABC):
    """Common base of the alignment collection variants."""
    records: pd.DataFrame

    required_columns = ["chr", "start", "end"]

    def __post_init__(self):
        validate_dataframe(self.records, type(self).__name__, required_columns=self.required_columns)
        records = self.records.reset_index(drop=True).copy()
        records["chr"] = records["chr"].astype(str)
        for col in self.required_columns[1:]:
            if col != "strand":
                records[col] = records[col].astype(np.int64)
        self.records = records

    def __len__(self) -> int:
        return len(self.records)

    @abstractmethod
    def is_paired(self, pairing_mode: PairingMode) -> bool:
        """Resolve the pairing mode to a yes/no for this collection."""

    @abstractmethod
    def to_fragments(self, pairing_mode: PairingMode, fragment_length: int) -> pd.DataFrame:
        """Fragments (``chr``, ``start``, ``end``) built from the records."""


@dataclass
class SingleReads(AlignmentCollection):
    """Individually aligned reads (``chr``, ``start``, ``end``, ``strand``, ``qname``)."""

    required_columns = ["chr", "start", "end", "strand"]

    def __post_init__(self):
        super().__post_init__()
        self.records["strand"] = self.records["strand"].fillna("*").astype(str).replace(".", "*")

    def is_paired(self, pairing_mode: PairingMode) -> bool:
        if pairing_mode is PairingMode.AUTO:
            if "qname" not in self.records.columns:
                return False
            return looks_paired(self.records["qname"])
        return pairing_mode is PairingMode.PAIRED

    def to_fragments(self, pairing_mode: PairingMode, fragment_length: int) -> pd.DataFrame:
        if self.records.empty:
            return empty_fragments()
        if self.is_paired(pairing_mode):
            return self._template_spans()
        return extend_reads(self.records, fragment_length)

    def _template_spans(self) -> pd.DataFrame:
        """One fragment per template name: the span of all its reads."""
        if "qname" not in self.records.columns:
            raise InvalidParameterError(
                "pairing_mode", "paired", "a 'qname' column to group reads into pairs"
            )
        named = self.records.dropna(subset=["qname"])
        if len(named) < len(self.records):
            logger.warning(f"Dropped {len(self.records) - len(named)} reads without a template name")
        spans = (
            named.groupby(["qname", "chr"], sort=False)
            .agg(start=("start", "min"), end=("end", "max"))
            .reset_index()
        )
        return spans[FRAGMENT_COLUMNS].astype({"start": np.int64, "end": np.int64})


@dataclass
class ReadPairs(AlignmentCollection):
    """Matched mate pairs (``chr``, ``start``, ``end``, ``mate_start``, ``mate_end``)."""

    required_columns = ["chr", "start", "end", "mate_start", "mate_end"]

    def is_paired(self, pairing_mode: PairingMode) -> bool:
        return True

    def to_fragments(self, pairing_mode: PairingMode, fragment_length: int) -> pd.DataFrame:
        """The outer span of both mates, strand ignored."""
        if self.records.empty:
            return empty_fragments()
        rec = self.records
        return pd.DataFrame({
            "chr": rec["chr"].to_numpy(),
            "start": np.minimum(rec["start"].to_numpy(), rec["mate_start"].to_numpy()),
            "end": np.maximum(rec["end"].to_numpy(), rec["mate_end"].to_numpy()),
        })
