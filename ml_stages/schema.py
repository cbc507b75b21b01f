"""Column metadata and categorical helpers for pandas frames.

Per-column metadata lives in ``DataFrame.attrs['column_metadata']`` as a
plain dict keyed by column name. Helpers here never mutate their input; they
return a copy carrying the updated metadata.
"""

import copy
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import sparse

from .config import SchemaConstants

METADATA_KEY = 'column_metadata'
LEVELS_KEY = 'levels'


def _metadata_map(df: pd.DataFrame) -> Dict[str, Dict[str, Any]]:
    return df.attrs.get(METADATA_KEY, {})


def _to_native(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    return value


def get_column_metadata(df: pd.DataFrame, column: str) -> Dict[str, Any]:
    """Return a copy of the metadata attached to ``column``."""
    return copy.deepcopy(_metadata_map(df).get(column, {}))


def set_column_metadata(df: pd.DataFrame, column: str, metadata: Dict[str, Any]) -> pd.DataFrame:
    """Return a copy of ``df`` whose ``column`` carries exactly ``metadata``."""
    out = df.copy()
    all_metadata = copy.deepcopy(_metadata_map(df))
    all_metadata[column] = dict(metadata)
    out.attrs[METADATA_KEY] = all_metadata
    return out


def update_column_metadata(df: pd.DataFrame, column: str, **values: Any) -> pd.DataFrame:
    metadata = get_column_metadata(df, column)
    metadata.update(values)
    return set_column_metadata(df, column, metadata)


def is_categorical(df: pd.DataFrame, column: str) -> bool:
    """True for pandas categorical columns and columns carrying levels."""
    if isinstance(df[column].dtype, pd.CategoricalDtype):
        return True
    return LEVELS_KEY in _metadata_map(df).get(column, {})


def get_levels(df: pd.DataFrame, column: str) -> Optional[List[Any]]:
    """Levels recorded for ``column``, or None if it has none."""
    levels = _metadata_map(df).get(column, {}).get(LEVELS_KEY)
    if levels is not None:
        return list(levels)
    dtype = df[column].dtype
    if isinstance(dtype, pd.CategoricalDtype):
        return [_to_native(level) for level in dtype.categories]
    return None


def set_levels(df: pd.DataFrame, column: str, levels: Sequence[Any]) -> pd.DataFrame:
    return update_column_metadata(df, column, **{LEVELS_KEY: [_to_native(v) for v in levels]})


def _sorted_levels(values: Sequence[Any]) -> List[Any]:
    natives = [_to_native(v) for v in values]
    try:
        return sorted(natives)
    except TypeError:
        # Mixed value types: fall back to a stable textual order
        return sorted(natives, key=str)


def make_categorical(df: pd.DataFrame, column: str, output_column: Optional[str] = None) -> pd.DataFrame:
    """Encode ``column`` as zero-based level indices.

    Levels are the distinct present values in sorted order (or the categories
    of a pandas categorical column). Absent values stay absent. The encoded
    column is written to ``output_column`` (defaults to ``column``) with the
    levels attached as metadata.
    """
    output_column = output_column or column
    values = df[column]

    if isinstance(values.dtype, pd.CategoricalDtype):
        levels = [_to_native(level) for level in values.dtype.categories]
        codes = pd.Series(values.cat.codes, index=values.index).astype('Int64')
        encoded = codes.where(codes >= 0, pd.NA)
    else:
        levels = _sorted_levels(values.dropna().unique())
        index = {level: i for i, level in enumerate(levels)}
        encoded = values.map(lambda v: index[_to_native(v)] if pd.notna(v) else pd.NA).astype('Int64')

    out = df.copy()
    out[output_column] = encoded
    return set_levels(out, output_column, levels)


def decode_levels(df: pd.DataFrame, column: str) -> pd.Series:
    """Map level indices in ``column`` back to their human-readable levels."""
    levels = get_levels(df, column)
    if levels is None or isinstance(df[column].dtype, pd.CategoricalDtype):
        return df[column].copy()

    def decode(value: Any) -> Any:
        if pd.isna(value):
            return None
        position = int(value)
        return levels[position] if 0 <= position < len(levels) else None

    return df[column].map(decode)


def set_score_column_metadata(df: pd.DataFrame,
                              module_name: str,
                              column: str,
                              column_kind: str,
                              value_kind: str = SchemaConstants.CLASSIFICATION_KIND) -> pd.DataFrame:
    """Attach scoring provenance (owning module, column kind, value kind)."""
    return update_column_metadata(
        df, column,
        score_model=module_name,
        score_column_kind=column_kind,
        score_value_kind=value_kind,
    )


def vectors_to_matrix(series: pd.Series) -> Union[np.ndarray, sparse.csr_matrix]:
    """Stack a feature-vector column into a 2-D float matrix.

    Any sparse row makes the result a CSR matrix; otherwise it is dense.
    """
    values = list(series)
    if not values:
        return np.empty((0, 0))
    if any(sparse.issparse(value) for value in values):
        return sparse.vstack([sparse.csr_matrix(value, dtype=float) for value in values], format='csr')
    return np.vstack([np.asarray(value, dtype=float).ravel() for value in values])
