"""
Custom exception classes for featuresignal.

Provides clear, module-specific error types so callers can tell a bad call
(validation) apart from a failed analysis or an unreadable BAM file.
"""


class FeatureSignalError(Exception):
    """Base exception for all featuresignal errors."""
    pass


# ============================================================================
# Input / File errors
# ============================================================================

class FileFormatError(FeatureSignalError):
    """Raised when an input file has an unexpected or invalid format."""
    pass


class PeakFileFormatError(FileFormatError):
    """Raised when a BED/narrowPeak/broadPeak file is malformed."""
    pass


# ============================================================================
# Data validation errors
# ============================================================================

class ValidationError(FeatureSignalError):
    """Raised when input data fails validation checks."""
    pass


class MissingColumnError(ValidationError):
    """Raised when a required column is missing from a DataFrame."""

    def __init__(self, column: str, dataframe_name: str = "DataFrame", available: list = None):
        available_str = f" Available columns: {available}" if available else ""
        super().__init__(
            f"Required column '{column}' not found in {dataframe_name}.{available_str}"
        )
        self.column = column
        self.available = available


class EmptyDataError(ValidationError):
    """Raised when data is empty where it should not be."""

    def __init__(self, data_name: str = "data"):
        super().__init__(f"Empty {data_name} provided where non-empty data is required")
        self.data_name = data_name


class InvalidParameterError(ValidationError):
    """Raised when a parameter value is out of valid range."""

    def __init__(self, param: str, value, valid_range: str = ""):
        msg = f"Invalid value for '{param}': {value}"
        if valid_range:
            msg += f". Expected: {valid_range}"
        super().__init__(msg)
        self.param = param
        self.value = value


class FeatureWidthError(ValidationError):
    """Raised when features are not single-base anchor points."""

    def __init__(self, n_bad: int, widths: list = None):
        shown = f" Observed widths: {sorted(set(widths))[:5]}" if widths else ""
        super().__init__(
            f"All features must have width 1; {n_bad} feature(s) do not.{shown}"
        )
        self.n_bad = n_bad


class AlignmentTypeError(ValidationError, TypeError):
    """Raised when an alignment collection is neither SingleReads nor ReadPairs."""

    def __init__(self, index, type_name: str):
        super().__init__(
            f"alignments[{index}] is a {type_name}; "
            "alignments must be SingleReads or ReadPairs collections"
        )
        self.index = index


# ============================================================================
# Analysis errors
# ============================================================================

class AnalysisError(FeatureSignalError):
    """Base class for analysis-specific errors."""
    pass


class SignalExtractionError(AnalysisError):
    """Raised when signal extraction fails for a sample."""

    def __init__(self, sample_id: str, reason: str):
        super().__init__(f"Signal extraction failed for sample '{sample_id}': {reason}")
        self.sample_id = sample_id


class ExtractionCancelledError(AnalysisError):
    """Raised when a running extraction is cancelled by its caller."""
    pass


# ============================================================================
# Pipeline errors
# ============================================================================

class PipelineError(FeatureSignalError):
    """Base class for pipeline execution errors."""
    pass


class BamReadError(PipelineError):
    """Raised when a BAM file or its index cannot be read."""

    def __init__(self, bam_file: str, reason: str):
        super().__init__(f"Could not read BAM file {bam_file}: {reason}")
        self.bam_file = bam_file


# ============================================================================
# Validation helpers
# ============================================================================

def validate_dataframe(
    df,
    name: str = "DataFrame",
    required_columns: list = None,
    min_rows: int = 0,
) -> None:
    """Validate a DataFrame has expected shape and columns.

    Parameters
    ----------
    df : pd.DataFrame
        The DataFrame to validate.
    name : str
        Human-readable name for error messages.
    required_columns : list, optional
        Columns that must be present.
    min_rows : int
        Minimum number of rows required.

    Raises
    ------
    EmptyDataError
        If df is None or empty and min_rows > 0.
    MissingColumnError
        If a required column is missing.
    """
    import pandas as pd

    if df is None:
        raise EmptyDataError(name)

    if not isinstance(df, pd.DataFrame):
        raise ValidationError(f"Expected DataFrame for {name}, got {type(df).__name__}")

    if min_rows > 0 and len(df) < min_rows:
        if len(df) == 0:
            raise EmptyDataError(name)
        raise ValidationError(
            f"{name} has {len(df)} rows but at least {min_rows} are required"
        )

    if required_columns:
        for col in required_columns:
            if col not in df.columns:
                raise MissingColumnError(col, name, available=list(df.columns))


def validate_numeric_param(value, name: str, min_val=None, max_val=None) -> None:
    """Validate a numeric parameter is within acceptable bounds.

    Raises
    ------
    InvalidParameterError
        If the value is not a number or is out of range.
    """
    if not is_number(value):
        raise InvalidParameterError(name, value, "a finite number")
    if min_val is not None and value < min_val:
        raise InvalidParameterError(name, value, f">= {min_val}")
    if max_val is not None and value > max_val:
        raise InvalidParameterError(name, value, f"<= {max_val}")


def is_number(value) -> bool:
    """True for finite int/float values (numpy included); bools, NaN and infinities are not numbers."""
    import math
    import numbers

    if not isinstance(value, numbers.Real) or isinstance(value, bool):
        return False
    return math.isfinite(value)
