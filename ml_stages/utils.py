"""Utility helpers for JSON safety and request parsing."""

from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd


JSONSafe = Union[int, float, bool, list, Dict[str, Any], str, None]


def safe_json_convert(obj: Any) -> JSONSafe:
    """Convert arbitrary Python/NumPy/pandas objects to JSON-safe values.

    Rules:
    - numpy scalars/arrays → native ints/floats/lists
    - NaN/NA/None → None
    - bytes → utf-8 string (lossy if needed)
    - mappings/iterables → recursively converted
    - anything else → str(obj)
    """
    if obj is None or obj is pd.NA or obj is pd.NaT:
        return None

    if isinstance(obj, (bool, np.bool_)):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        return None if np.isnan(obj) else float(obj)
    if isinstance(obj, (int, str)):
        return obj

    if isinstance(obj, np.ndarray):
        return [safe_json_convert(x) for x in obj.tolist()]

    if isinstance(obj, bytes):
        return obj.decode('utf-8', errors='ignore')

    if isinstance(obj, dict):
        return {str(k): safe_json_convert(v) for k, v in obj.items()}

    if isinstance(obj, Iterable):
        return [safe_json_convert(x) for x in obj]

    return str(obj)


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, JSONSafe]]:
    """Rows of ``df`` as JSON-safe dictionaries."""
    return [safe_json_convert(row) for row in df.to_dict('records')]


def parse_column_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated form field into column names."""
    if not value:
        return []
    return [part.strip() for part in value.split(',') if part.strip()]


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def validate_file_upload(file) -> Tuple[bool, str]:
    """Check that an uploaded dataset is present and is a CSV file."""
    if not file or not file.filename:
        return False, "No file selected"
    if not ('.' in file.filename and file.filename.rsplit('.', 1)[1].lower() == 'csv'):
        return False, "Invalid file type. Only CSV files are supported."
    return True, "File validation passed"
