# tests/conftest.py
import numpy as np
import pandas as pd
import pytest


def _ints(values):
    return pd.array(values, dtype="Int64")


@pytest.fixture
def mock_dataset() -> pd.DataFrame:
    """
    Two nullable integer columns, two float columns and a trailing integer
    column, with a fully absent row in the middle.
    """
    nan = np.nan
    return pd.DataFrame({
        "col1": _ints([0, 1, 0, 1, 0, None, 0, 1, 0, 1, 0, 1]),
        "col2": _ints([2, 3, 4, 5, 1, None, 3, 4, None, 2, 3, 4]),
        "col3": [0.50, 0.40, 0.78, 0.12, 0.50, nan, 0.78, 0.12, 0.50, 0.40, nan, 0.12],
        "col4": [0.60, nan, 0.99, 0.34, 0.60, nan, 0.99, 0.34, 0.60, 0.50, 0.99, 0.34],
        "col5": _ints([0, None, 2, 3, 0, None, 2, 3, 0, None, 2, 3]),
    })


@pytest.fixture
def string_dataset() -> pd.DataFrame:
    return pd.DataFrame({
        "col1": _ints([0, 1, 0, 1, 0, None, 0, 1]),
        "col2": ["hello", "world", None, "test111", "some words for test", "test2", None, "another test"],
    })


@pytest.fixture
def boolean_dataset() -> pd.DataFrame:
    return pd.DataFrame({
        "col1": _ints([0, 1, 0, 1, 0, None, 0, 1]),
        "col2": pd.Series([True, False, None, True, False, True, None, False], dtype=object),
    })


@pytest.fixture
def classification_dataset() -> pd.DataFrame:
    """
    30 rows, three well separated classes on two numeric features.
    """
    rng = np.random.default_rng(7)
    centers = {"a": (0.0, 0.0), "b": (5.0, 5.0), "c": (0.0, 10.0)}
    rows = []
    for label, (cx, cy) in centers.items():
        for _ in range(10):
            rows.append({
                "x1": cx + rng.normal(scale=0.3),
                "x2": cy + rng.normal(scale=0.3),
                "label": label,
            })
    return pd.DataFrame(rows)


@pytest.fixture
def binary_dataset(classification_dataset) -> pd.DataFrame:
    return classification_dataset[classification_dataset["label"] != "c"].reset_index(drop=True)
