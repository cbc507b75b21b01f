import numpy as np
import pandas as pd
import pytest

from ml_stages import CleanMissingData, CleanMissingDataModel, UnsupportedTypeError
from ml_stages.clean_missing import (
    BOOLEAN,
    FRACTIONAL,
    INTEGRAL,
    STRING,
    parse_custom_value,
    value_kind,
)


COLUMNS = ["col1", "col2", "col3", "col4", "col5"]


def fit_transform(df, mode, custom_value=None, input_cols=None, output_cols=None):
    input_cols = input_cols or list(df.columns)
    model = CleanMissingData(
        input_cols=input_cols,
        output_cols=output_cols or input_cols,
        cleaning_mode=mode,
        custom_value=custom_value,
    ).fit(df)
    return model, model.transform(df)


def assert_filled(original, result, expected):
    """Every absent cell of the original is replaced by the expected value."""
    for column, value in expected.items():
        absent = original[column].isna()
        assert absent.any()
        filled = result.loc[absent, column]
        for actual in filled:
            assert actual == pytest.approx(value, abs=0.01)
        pd.testing.assert_series_equal(
            result.loc[~absent, column], original.loc[~absent, column], check_dtype=False
        )


# =========================================================
# Replacement statistics
# =========================================================

def test_mean_replacement(mock_dataset):
    model, result = fit_transform(mock_dataset, "Mean")

    # integral means are truncated: col2 = 31 / 10
    assert model.replacement_values["col1"] == 0
    assert model.replacement_values["col2"] == 3
    assert model.replacement_values["col5"] == 1
    assert model.replacement_values["col3"] == pytest.approx(0.422)
    assert model.replacement_values["col4"] == pytest.approx(0.629)
    assert_filled(mock_dataset, result, model.replacement_values)


def test_median_replacement(mock_dataset):
    model, result = fit_transform(mock_dataset, "Median")

    expected = {"col1": 0, "col2": 3, "col3": 0.45, "col4": 0.6, "col5": 2}
    for column, value in expected.items():
        assert model.replacement_values[column] == pytest.approx(value)
    assert_filled(mock_dataset, result, expected)


def test_custom_value_is_truncated_for_integral_columns(mock_dataset):
    model, result = fit_transform(mock_dataset, "Custom", custom_value="-1.5")

    assert model.replacement_values == {
        "col1": -1, "col2": -1, "col3": -1.5, "col4": -1.5, "col5": -1,
    }
    assert_filled(mock_dataset, result, model.replacement_values)


def test_custom_string_value(string_dataset):
    _, result = fit_transform(string_dataset, "Custom", "myCustomValue", ["col2"])

    assert result["col2"].tolist() == [
        "hello", "world", "myCustomValue", "test111", "some words for test",
        "test2", "myCustomValue", "another test",
    ]
    # columns not listed are untouched
    assert result["col1"].isna().sum() == 1


def test_custom_boolean_value(boolean_dataset):
    _, result = fit_transform(boolean_dataset, "Custom", "true", ["col2"])

    assert result["col2"].tolist() == [True, False, True, True, False, True, True, False]


def test_mode_is_case_insensitive(mock_dataset):
    model, _ = fit_transform(mock_dataset, "median")
    assert model.replacement_values["col3"] == pytest.approx(0.45)


# =========================================================
# Columns
# =========================================================

def test_output_columns_keep_the_original(mock_dataset):
    model, result = fit_transform(
        mock_dataset, "Mean", input_cols=["col3"], output_cols=["col3_clean"]
    )

    assert list(result.columns) == COLUMNS + ["col3_clean"]
    assert result["col3"].isna().sum() == 2
    assert result["col3_clean"].isna().sum() == 0
    assert model.transform_schema(COLUMNS) == COLUMNS + ["col3_clean"]


def test_transform_does_not_mutate_input(mock_dataset):
    before = mock_dataset.copy()
    fit_transform(mock_dataset, "Mean")
    pd.testing.assert_frame_equal(mock_dataset, before)


def test_all_absent_column_is_left_unfilled():
    df = pd.DataFrame({"a": [np.nan, np.nan], "b": [1.0, np.nan]})
    model, result = fit_transform(df, "Mean")

    assert model.replacement_values["a"] is None
    assert result["a"].isna().all()
    assert result["b"].tolist() == [1.0, 1.0]


def test_model_is_reusable_on_new_data(mock_dataset):
    model, _ = fit_transform(mock_dataset, "Median", input_cols=["col3"])
    other = pd.DataFrame({"col3": [np.nan, 0.1]})

    assert model.transform(other)["col3"].tolist() == [pytest.approx(0.45), 0.1]


# =========================================================
# Errors
# =========================================================

@pytest.mark.parametrize("mode", ["Mean", "Median"])
def test_statistics_reject_string_columns(string_dataset, mode):
    with pytest.raises(UnsupportedTypeError):
        fit_transform(string_dataset, mode, input_cols=["col2"])


def test_statistics_reject_boolean_columns(boolean_dataset):
    with pytest.raises(UnsupportedTypeError):
        fit_transform(boolean_dataset, "Mean", input_cols=["col2"])


def test_unsupported_column_type_is_rejected():
    df = pd.DataFrame({"when": pd.to_datetime(["2020-01-01", None])})
    with pytest.raises(UnsupportedTypeError):
        fit_transform(df, "Custom", custom_value="0")


def test_invalid_mode(mock_dataset):
    with pytest.raises(ValueError, match="Invalid cleaning mode"):
        fit_transform(mock_dataset, "Mode")


def test_custom_mode_requires_a_value(mock_dataset):
    with pytest.raises(ValueError, match="custom_value"):
        fit_transform(mock_dataset, "Custom")


def test_mismatched_output_columns(mock_dataset):
    with pytest.raises(ValueError, match="same length"):
        CleanMissingData(input_cols=["col1", "col2"], output_cols=["col1"]).fit(mock_dataset)


def test_missing_input_column(mock_dataset):
    with pytest.raises(ValueError, match="not found"):
        CleanMissingData(input_cols=["nope"], output_cols=["nope"]).fit(mock_dataset)


# =========================================================
# Helpers
# =========================================================

def test_value_kind():
    assert value_kind(pd.Series([1, 2])) == INTEGRAL
    assert value_kind(pd.Series(pd.array([1, None], dtype="Int64"))) == INTEGRAL
    assert value_kind(pd.Series([1.5, np.nan])) == FRACTIONAL
    assert value_kind(pd.Series([True, False])) == BOOLEAN
    assert value_kind(pd.Series(["a", None])) == STRING


def test_parse_custom_value():
    assert parse_custom_value("-1.5", INTEGRAL) == -1
    assert parse_custom_value("2.9", INTEGRAL) == 2
    assert parse_custom_value("-1.5", FRACTIONAL) == -1.5
    assert parse_custom_value("False", BOOLEAN) is False
    assert parse_custom_value(" 1 ", BOOLEAN) is True
    assert parse_custom_value("x", STRING) == "x"
    with pytest.raises(ValueError):
        parse_custom_value("maybe", BOOLEAN)


def test_fitted_model_type(mock_dataset):
    model, _ = fit_transform(mock_dataset, "Mean")
    assert isinstance(model, CleanMissingDataModel)
    assert model.input_cols == COLUMNS
