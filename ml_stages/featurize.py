"""Feature vectorization.

Assembles every input column into a single feature-vector column using
sklearn ColumnTransformer pipelines: numerics are mean-imputed, categoricals
one-hot or ordinal encoded, strings hashed, datetimes expanded and vector
columns appended unchanged. Rows are dense arrays, or 1 x n CSR rows when a
hashed string block is present.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import sparse
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.compose import ColumnTransformer
from sklearn.feature_extraction import FeatureHasher
from sklearn.impute import SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import FunctionTransformer, OneHotEncoder, OrdinalEncoder

from .config import FeaturizeDefaults
from .errors import UnsupportedTypeError
from .schema import is_categorical

logger = logging.getLogger(__name__)

MISSING_LEVEL = '<missing>'

NUMERIC = 'numeric'
CATEGORICAL = 'categorical'
TEXT = 'text'
DATETIME = 'datetime'
VECTOR = 'vector'


def column_kind(df: pd.DataFrame, column: str) -> str:
    """Classify a column by how it is vectorized."""
    series = df[column]
    if is_categorical(df, column):
        return CATEGORICAL
    if pd.api.types.is_bool_dtype(series.dtype) or pd.api.types.is_numeric_dtype(series.dtype):
        return NUMERIC
    if pd.api.types.is_datetime64_any_dtype(series.dtype):
        return DATETIME

    inferred = pd.api.types.infer_dtype(series, skipna=True)
    if inferred in ('boolean', 'integer', 'floating', 'mixed-integer-float', 'decimal'):
        return NUMERIC
    if inferred in ('string', 'empty'):
        return TEXT
    if inferred in ('datetime', 'datetime64', 'date'):
        return DATETIME
    first = series.dropna().iloc[0] if series.notna().any() else None
    if isinstance(first, (np.ndarray, list, tuple)):
        return VECTOR
    raise UnsupportedTypeError(
        f"Column '{column}' of type {series.dtype} ({inferred}) cannot be featurized"
    )


def _as_float(frame: pd.DataFrame) -> np.ndarray:
    return frame.astype('float64').to_numpy(na_value=np.nan)


def _as_levels(frame: pd.DataFrame) -> np.ndarray:
    columns = []
    for name in frame.columns:
        values = frame[name].astype(object)
        columns.append(values.where(values.notna(), MISSING_LEVEL).astype(str).to_numpy())
    return np.column_stack(columns)


def _tokenize(series: pd.Series) -> List[List[str]]:
    return [str(text).lower().split() if pd.notna(text) else [] for text in series]


def _expand_datetimes(frame: pd.DataFrame) -> np.ndarray:
    parts = []
    for name in frame.columns:
        stamps = pd.to_datetime(frame[name])
        for attribute in ('year', 'month', 'day', 'weekday', 'hour', 'minute', 'second'):
            parts.append(getattr(stamps.dt, attribute).astype('float64').fillna(0.0).to_numpy())
    return np.column_stack(parts)


def _stack_vectors(frame: pd.DataFrame) -> np.ndarray:
    blocks = []
    for name in frame.columns:
        values = list(frame[name])
        width = next((len(np.ravel(v)) for v in values if v is not None and not _is_nan(v)), 0)
        rows = [np.zeros(width) if v is None or _is_nan(v) else np.asarray(v, dtype=float).ravel()
                for v in values]
        blocks.append(np.vstack(rows) if rows else np.empty((0, width)))
    return np.hstack(blocks)


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and np.isnan(value)


def _split_rows(matrix: Any, index: pd.Index) -> pd.Series:
    """One vector per row; hashed blocks stay as 1 x n CSR rows."""
    if sparse.issparse(matrix):
        matrix = sparse.csr_matrix(matrix, dtype=float)
        rows = [matrix[i] for i in range(matrix.shape[0])]
    else:
        rows = list(np.asarray(matrix, dtype=float))
    return pd.Series(rows, index=index, dtype=object)


def build_column_transformer(df: pd.DataFrame,
                             columns: List[str],
                             one_hot_encode_categoricals: bool,
                             number_of_features: int) -> ColumnTransformer:
    """Create the ColumnTransformer that vectorizes ``columns`` of ``df``."""
    by_kind: Dict[str, List[str]] = {}
    for column in columns:
        by_kind.setdefault(column_kind(df, column), []).append(column)

    transformers: List[Tuple[str, Any, Any]] = []

    if NUMERIC in by_kind:
        numeric_transformer = Pipeline(steps=[
            ('to_float', FunctionTransformer(_as_float)),
            ('imputer', SimpleImputer(strategy='mean', keep_empty_features=True)),
        ])
        transformers.append(('num', numeric_transformer, by_kind[NUMERIC]))

    if CATEGORICAL in by_kind:
        if one_hot_encode_categoricals:
            encoder = OneHotEncoder(handle_unknown='ignore', sparse_output=False)
        else:
            encoder = OrdinalEncoder(handle_unknown='use_encoded_value', unknown_value=-1)
        categorical_transformer = Pipeline(steps=[
            ('to_levels', FunctionTransformer(_as_levels)),
            ('encoder', encoder),
        ])
        transformers.append(('cat', categorical_transformer, by_kind[CATEGORICAL]))

    for column in by_kind.get(TEXT, []):
        text_transformer = Pipeline(steps=[
            ('tokenize', FunctionTransformer(_tokenize)),
            ('hash', FeatureHasher(n_features=number_of_features, input_type='string')),
        ])
        # A scalar column selector hands the transformer a 1-D Series
        transformers.append((f'text_{column}', text_transformer, column))

    if DATETIME in by_kind:
        transformers.append(('datetime', FunctionTransformer(_expand_datetimes), by_kind[DATETIME]))

    if VECTOR in by_kind:
        transformers.append(('vector', FunctionTransformer(_stack_vectors), by_kind[VECTOR]))

    if not transformers:
        raise ValueError("No valid columns found for featurization")

    logger.debug("Featurizing columns by kind: %s", by_kind)
    return ColumnTransformer(transformers=transformers, remainder='drop', sparse_threshold=1.0)


class Featurize(BaseEstimator):
    """Assemble input columns into feature-vector columns.

    Args:
        feature_columns: mapping of output vector column -> input columns
        one_hot_encode_categoricals: one-hot encode categoricals (else ordinal index)
        number_of_features: number of slots string columns are hashed into
    """

    def __init__(self,
                 feature_columns: Optional[Dict[str, List[str]]] = None,
                 one_hot_encode_categoricals: bool = True,
                 number_of_features: int = FeaturizeDefaults.NUM_FEATURES_DEFAULT):
        self.feature_columns = feature_columns
        self.one_hot_encode_categoricals = one_hot_encode_categoricals
        self.number_of_features = number_of_features

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'FeaturizeModel':
        if not self.feature_columns:
            raise ValueError("feature_columns must map at least one output column to input columns")

        transformers = {}
        for output_column, input_columns in self.feature_columns.items():
            missing = [c for c in input_columns if c not in df.columns]
            if missing:
                raise ValueError(f"Feature columns not found in dataset: {missing}")
            transformer = build_column_transformer(
                df, list(input_columns), self.one_hot_encode_categoricals, self.number_of_features
            )
            transformer.fit(df[list(input_columns)])
            transformers[output_column] = transformer

        return FeaturizeModel(feature_columns=dict(self.feature_columns), transformers=transformers)


class FeaturizeModel(BaseEstimator, TransformerMixin):
    """Fitted featurization; appends one vector column per output column."""

    def __init__(self,
                 feature_columns: Optional[Dict[str, List[str]]] = None,
                 transformers: Optional[Dict[str, ColumnTransformer]] = None):
        self.feature_columns = feature_columns
        self.transformers = transformers

    def __sklearn_is_fitted__(self) -> bool:
        return True

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'FeaturizeModel':
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df.copy()
        for output_column, transformer in self.transformers.items():
            if len(df) == 0:
                out[output_column] = pd.Series([], index=df.index, dtype=object)
                continue
            matrix = transformer.transform(df[list(self.feature_columns[output_column])])
            out[output_column] = _split_rows(matrix, df.index)
        return out
