"""
Bivariate classification.

Each of the two variables is binned independently into ``dim`` buckets and
the pair of bucket indices becomes the cell's class label, giving ``dim²``
classes for a single-legend choropleth map.

Bucket rule: for breakpoints ``b_1 <= ... <= b_{dim-1}`` a value ``v`` goes
to the smallest bucket ``i`` with ``v < b_i``, or to ``dim`` if there is
none. A value equal to a breakpoint therefore lands in the upper bucket.
"""

import logging
from dataclasses import dataclass
from itertools import product
from typing import Any, List, Optional, Tuple

import numpy as np
import pandas as pd

from .exceptions import InputValidationError, NoClassifiableDataError

logger = logging.getLogger(__name__)

DEFAULT_DIM = 4
STYLES = ('quantile', 'equal')
LABEL_SEPARATOR = '-'
LABEL_COLUMN = 'class_label'


@dataclass(frozen=True)
class ClassBreakpoints:
    """Ascending thresholds splitting one variable into ``dim`` buckets."""
    variable: Optional[str]
    dim: int
    style: str
    values: Tuple[float, ...]

    def bucket_of(self, values: Any) -> np.ndarray:
        return assign_buckets(values, self)

    @property
    def is_degenerate(self) -> bool:
        """True when two or more breakpoints coincide."""
        return len(set(self.values)) < len(self.values)

    def to_dict(self):
        return {
            'variable': self.variable,
            'dim': self.dim,
            'style': self.style,
            'breaks': [float(v) for v in self.values],
        }


@dataclass
class ClassificationResult:
    """Classified cell table plus the breakpoints that produced it."""
    table: pd.DataFrame
    x_breaks: ClassBreakpoints
    y_breaks: ClassBreakpoints
    x_column: str
    y_column: str
    dim: int

    @property
    def labels(self) -> pd.Series:
        return self.table[LABEL_COLUMN]


def validate_dim(dim: Any) -> int:
    """Check the class dimension (buckets per variable)."""
    if isinstance(dim, bool) or not isinstance(dim, (int, np.integer)):
        raise InputValidationError(f"Class dimension must be an integer, got {dim!r}")
    if dim < 2:
        raise InputValidationError(f"Class dimension must be at least 2, got {dim}")
    return int(dim)


def compute_breakpoints(values: Any, dim: int = DEFAULT_DIM, style: str = 'quantile',
                        variable: Optional[str] = None) -> ClassBreakpoints:
    """
    Compute the ``dim - 1`` breakpoints of one variable.

    Args:
        values: Observed values; non-finite values are ignored
        dim: Number of buckets
        style: 'quantile' for equal-frequency buckets (empirical quantiles at
            k/dim), 'equal' for equal-interval buckets between min and max
        variable: Variable name kept for reporting

    Returns:
        ClassBreakpoints

    Raises:
        NoClassifiableDataError: If there is no finite value
    """
    dim = validate_dim(dim)
    if style not in STYLES:
        raise InputValidationError(f"Unknown classification style '{style}'. Valid options: {STYLES}")

    data = np.asarray(values, dtype=float).ravel()
    data = data[np.isfinite(data)]
    if data.size == 0:
        raise NoClassifiableDataError(f"No finite values to classify for '{variable}'")

    if style == 'quantile':
        fractions = np.arange(1, dim) / dim
        breaks = np.quantile(np.sort(data), fractions)
    else:
        breaks = np.linspace(data.min(), data.max(), dim + 1)[1:-1]

    result = ClassBreakpoints(variable, dim, style, tuple(float(b) for b in breaks))
    if result.is_degenerate:
        logger.warning(f"Breakpoints of '{variable}' coincide ({np.unique(data).size} distinct "
                       f"values for {dim} buckets); some classes will be empty")
    logger.debug(f"Breakpoints for '{variable}' ({style}): {result.values}")
    return result


def assign_buckets(values: Any, breakpoints: Any) -> np.ndarray:
    """
    Assign 1-based bucket indices.

    Args:
        values: Values to bin
        breakpoints: ClassBreakpoints or an ascending sequence of thresholds

    Returns:
        Integer array of buckets in [1, len(breakpoints) + 1]
    """
    breaks = breakpoints.values if isinstance(breakpoints, ClassBreakpoints) else breakpoints
    breaks = np.asarray(breaks, dtype=float)
    # Number of breakpoints <= v, so ties go to the upper bucket
    return np.searchsorted(breaks, np.asarray(values, dtype=float), side='right') + 1


def encode_label(bucket_x: int, bucket_y: int) -> str:
    """Label a pair of buckets, e.g. (2, 3) -> '2-3'."""
    return f"{int(bucket_x)}{LABEL_SEPARATOR}{int(bucket_y)}"


def decode_label(label: str) -> Tuple[int, int]:
    """Recover the (bucket_x, bucket_y) pair from a class label."""
    parts = str(label).split(LABEL_SEPARATOR)
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise InputValidationError(f"Invalid class label '{label}'")
    return int(parts[0]), int(parts[1])


def class_labels(dim: int = DEFAULT_DIM) -> List[str]:
    """All ``dim²`` labels, x bucket first: '1-1', '1-2', ..., 'dim-dim'."""
    dim = validate_dim(dim)
    return [encode_label(bx, by) for bx, by in product(range(1, dim + 1), repeat=2)]


def classify_records(records: pd.DataFrame, x_column: str, y_column: str,
                     dim: int = DEFAULT_DIM, style: str = 'quantile') -> ClassificationResult:
    """
    Assign a bivariate class to every cell record.

    Records where either variable is not finite are left out. Breakpoints are
    computed independently for each variable from the remaining records.

    Args:
        records: Cell records with ``x``, ``y`` and both variable columns
        x_column: Column binned into the first label index
        y_column: Column binned into the second label index
        dim: Buckets per variable
        style: Breakpoint style ('quantile' or 'equal')

    Returns:
        ClassificationResult with columns ``x``, ``y``, both variables and
        ``class_label`` in the input order

    Raises:
        InputValidationError: If ``dim < 2`` or a column is missing
        NoClassifiableDataError: If no record has both values
    """
    dim = validate_dim(dim)
    missing = [c for c in ('x', 'y', x_column, y_column) if c not in records.columns]
    if missing:
        raise InputValidationError(f"Cell records lack columns {missing}")

    x_values = records[x_column].to_numpy(dtype=float)
    y_values = records[y_column].to_numpy(dtype=float)
    observed = np.isfinite(x_values) & np.isfinite(y_values)
    if not observed.any():
        raise NoClassifiableDataError(
            f"No cell has finite values for both '{x_column}' and '{y_column}'"
        )

    table = records.loc[observed, ['x', 'y', x_column, y_column]].reset_index(drop=True)
    x_breaks = compute_breakpoints(table[x_column], dim, style, variable=x_column)
    y_breaks = compute_breakpoints(table[y_column], dim, style, variable=y_column)

    x_buckets = assign_buckets(table[x_column], x_breaks)
    y_buckets = assign_buckets(table[y_column], y_breaks)
    table[LABEL_COLUMN] = [encode_label(bx, by) for bx, by in zip(x_buckets, y_buckets)]

    logger.info(f"Classified {len(table)} cells into {table[LABEL_COLUMN].nunique()} "
                f"of {dim * dim} classes")
    return ClassificationResult(table, x_breaks, y_breaks, x_column, y_column, dim)


def class_counts(result: ClassificationResult) -> pd.Series:
    """Number of cells per class, including empty classes, in label order."""
    counts = result.labels.value_counts()
    return counts.reindex(class_labels(result.dim), fill_value=0).astype(int)
