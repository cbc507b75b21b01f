"""Missing-value imputation with per-column replacement statistics."""

import logging
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin

from .errors import UnsupportedTypeError

logger = logging.getLogger(__name__)

MEAN = 'Mean'
MEDIAN = 'Median'
CUSTOM = 'Custom'
CLEANING_MODES = (MEAN, MEDIAN, CUSTOM)

BOOLEAN = 'boolean'
INTEGRAL = 'integral'
FRACTIONAL = 'fractional'
STRING = 'string'

_INFERRED_KINDS = {
    'boolean': BOOLEAN,
    'integer': INTEGRAL,
    'floating': FRACTIONAL,
    'mixed-integer-float': FRACTIONAL,
    'decimal': FRACTIONAL,
    'string': STRING,
    'empty': STRING,
}


def value_kind(series: pd.Series) -> str:
    """Classify a column as boolean, integral, fractional or string."""
    dtype = series.dtype
    if pd.api.types.is_bool_dtype(dtype):
        return BOOLEAN
    if pd.api.types.is_integer_dtype(dtype):
        return INTEGRAL
    if pd.api.types.is_float_dtype(dtype):
        return FRACTIONAL
    if pd.api.types.is_object_dtype(dtype) or pd.api.types.is_string_dtype(dtype):
        kind = _INFERRED_KINDS.get(pd.api.types.infer_dtype(series, skipna=True))
        if kind is not None:
            return kind
    raise UnsupportedTypeError(
        f"Column '{series.name}' has unsupported type {dtype}; "
        "expected boolean, numeric or string values"
    )


def _normalize_mode(mode: str) -> str:
    for option in CLEANING_MODES:
        if str(mode).lower() == option.lower():
            return option
    raise ValueError(f"Invalid cleaning mode '{mode}'. Must be one of {list(CLEANING_MODES)}")


def parse_custom_value(literal: Any, kind: str) -> Any:
    """Parse the custom literal as the native type of a column."""
    text = str(literal).strip()
    if kind == INTEGRAL:
        # Truncates toward zero: "-1.5" -> -1
        return int(float(text))
    if kind == FRACTIONAL:
        return float(text)
    if kind == BOOLEAN:
        lowered = text.lower()
        if lowered in ('true', '1'):
            return True
        if lowered in ('false', '0'):
            return False
        raise ValueError(f"Cannot parse '{literal}' as a boolean")
    return str(literal)


def _column_statistic(series: pd.Series, mode: str, kind: str) -> Optional[Any]:
    if kind not in (INTEGRAL, FRACTIONAL):
        raise UnsupportedTypeError(
            f"Cleaning mode {mode} requires a numeric column; '{series.name}' is {kind}"
        )
    present = series.dropna().astype('float64').to_numpy()
    if present.size == 0:
        return None

    if mode == MEAN:
        value = present.sum() / present.size
    else:
        value = np.median(present)

    if kind == INTEGRAL:
        return int(value)
    return float(value)


class CleanMissingData(BaseEstimator):
    """Compute replacement values for absent cells.

    Args:
        input_cols: columns to clean
        output_cols: destination columns, pairwise with ``input_cols``
        cleaning_mode: 'Mean', 'Median' or 'Custom'
        custom_value: literal used by the Custom mode
    """

    def __init__(self,
                 input_cols: Optional[List[str]] = None,
                 output_cols: Optional[List[str]] = None,
                 cleaning_mode: str = MEAN,
                 custom_value: Optional[str] = None):
        self.input_cols = input_cols
        self.output_cols = output_cols
        self.cleaning_mode = cleaning_mode
        self.custom_value = custom_value

    def _validate(self, df: pd.DataFrame) -> None:
        if not self.input_cols:
            raise ValueError("input_cols must name at least one column")
        if self.output_cols is None or len(self.output_cols) != len(self.input_cols):
            raise ValueError("output_cols must have the same length as input_cols")
        missing = [c for c in self.input_cols if c not in df.columns]
        if missing:
            raise ValueError(f"Columns not found in dataset: {missing}")

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'CleanMissingDataModel':
        self._validate(df)
        mode = _normalize_mode(self.cleaning_mode)
        if mode == CUSTOM and self.custom_value is None:
            raise ValueError("custom_value is required for the Custom cleaning mode")

        logger.info("Fitting CleanMissingData: mode=%s, columns=%s", mode, list(self.input_cols))

        replacement_values: Dict[str, Any] = {}
        for column in self.input_cols:
            kind = value_kind(df[column])
            if mode == CUSTOM:
                value = parse_custom_value(self.custom_value, kind)
            else:
                value = _column_statistic(df[column], mode, kind)
            logger.debug("Replacement for %s (%s): %r", column, kind, value)
            replacement_values[column] = value

        return CleanMissingDataModel(
            replacement_values=replacement_values,
            input_cols=list(self.input_cols),
            output_cols=list(self.output_cols),
        )

    def transform_schema(self, columns: List[str]) -> List[str]:
        return _output_columns(columns, self.output_cols or [])


def _output_columns(columns: List[str], output_cols: List[str]) -> List[str]:
    return list(columns) + [c for c in output_cols if c not in columns]


class CleanMissingDataModel(BaseEstimator, TransformerMixin):
    """Fills absent values with the replacement computed at fit time."""

    def __init__(self,
                 replacement_values: Optional[Dict[str, Any]] = None,
                 input_cols: Optional[List[str]] = None,
                 output_cols: Optional[List[str]] = None):
        self.replacement_values = replacement_values
        self.input_cols = input_cols
        self.output_cols = output_cols

    def __sklearn_is_fitted__(self) -> bool:
        return True

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'CleanMissingDataModel':
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in self.input_cols if c not in df.columns]
        if missing:
            raise ValueError(f"Columns not found in dataset: {missing}")

        out = df.copy()
        for input_col, output_col in zip(self.input_cols, self.output_cols):
            value = self.replacement_values.get(input_col)
            column = df[input_col]
            if value is None:
                out[output_col] = column.copy()
            elif pd.api.types.is_object_dtype(column.dtype):
                out[output_col] = column.where(column.notna(), value)
            else:
                out[output_col] = column.fillna(value)
        return out

    def transform_schema(self, columns: List[str]) -> List[str]:
        return _output_columns(columns, self.output_cols)
