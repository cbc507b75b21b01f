import os

import numpy as np
import pandas as pd
import pytest
from scipy import sparse
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.multiclass import OneVsRestClassifier
from sklearn.neighbors import KNeighborsClassifier
from sklearn.tree import DecisionTreeClassifier

from ml_stages import (
    MultilayerPerceptronClassifier,
    TrainClassifier,
    TrainedClassifierModel,
    UnrecognizedAlgorithmError,
    UnsupportedConfigurationError,
)
from ml_stages.schema import decode_levels, get_column_metadata, get_levels, make_categorical, vectors_to_matrix


INPUT_COLUMNS = ["x1", "x2", "label"]


def train(df, model, **kwargs):
    return TrainClassifier(model=model, label_col="label", **kwargs).fit(df)


# =========================================================
# Training
# =========================================================

def test_multiclass_logistic_regression_is_one_vs_rest(classification_dataset):
    trained = train(classification_dataset, LogisticRegression(max_iter=500))

    assert isinstance(trained, TrainedClassifierModel)
    assert isinstance(trained.classifier_stage.estimator, OneVsRestClassifier)
    assert trained.levels == ["a", "b", "c"]


def test_binary_logistic_regression_is_not_wrapped(binary_dataset):
    trained = train(binary_dataset, LogisticRegression(max_iter=500))

    assert isinstance(trained.classifier_stage.estimator, LogisticRegression)
    assert trained.levels == ["a", "b"]


def test_multiclass_gradient_boosting_is_rejected(classification_dataset):
    with pytest.raises(UnsupportedConfigurationError, match="multiclass gradient-boosted trees not supported"):
        train(classification_dataset, GradientBoostingClassifier(n_estimators=5))


def test_binary_gradient_boosting_has_no_score_columns(binary_dataset):
    trained = train(binary_dataset, GradientBoostingClassifier(n_estimators=5))
    scored = trained.transform(binary_dataset)

    assert not trained.has_score_columns()
    assert list(scored.columns) == INPUT_COLUMNS + ["scored_labels"]


@pytest.mark.parametrize("model", [
    DecisionTreeClassifier(random_state=0),
    RandomForestClassifier(n_estimators=10, random_state=0),
])
def test_trees_handle_multiclass_natively(classification_dataset, model):
    trained = train(classification_dataset, model)

    assert type(trained.classifier_stage.estimator) is type(model)
    scored = trained.transform(classification_dataset)
    assert (scored["scored_labels"] == [0.0] * 10 + [1.0] * 10 + [2.0] * 10).all()


def test_multilayer_perceptron_input_layer_follows_features(classification_dataset):
    model = MultilayerPerceptronClassifier(layers=(1, 8, 3), max_iter=300, random_state=0)

    trained = train(classification_dataset, model)

    assert trained.get_param_map()["layers"][0] == 2
    assert not trained.has_score_columns()
    # the caller's instance is left untouched
    assert model.layers == (1, 8, 3)


def test_generic_classifier_is_accepted(binary_dataset):
    trained = train(binary_dataset, KNeighborsClassifier(n_neighbors=3))

    scored = trained.transform(binary_dataset)
    assert "scored_labels" in scored.columns


def test_unrecognized_algorithm(classification_dataset):
    with pytest.raises(UnrecognizedAlgorithmError):
        train(classification_dataset, object())


def test_rows_without_label_are_dropped(binary_dataset):
    df = binary_dataset.copy()
    df.loc[0, "label"] = None

    trained = train(df, LogisticRegression())

    assert trained.levels == ["a", "b"]


def test_all_labels_absent(binary_dataset):
    df = binary_dataset.assign(label=None)
    with pytest.raises(ValueError, match="no present values"):
        train(df, LogisticRegression())


def test_missing_label_column(binary_dataset):
    with pytest.raises(ValueError, match="not found"):
        TrainClassifier(model=LogisticRegression(), label_col="target").fit(binary_dataset)


def test_unindexed_numeric_label(binary_dataset):
    df = binary_dataset.assign(label=(binary_dataset["label"] == "b").astype(float))

    trained = train(df, LogisticRegression(), index_label=False)
    scored = trained.transform(df)

    assert trained.levels is None
    assert set(scored["scored_labels"]) <= {0.0, 1.0}


def test_uid_and_features_column(binary_dataset):
    trained = train(binary_dataset, LogisticRegression(), uid="my_model")

    assert trained.uid == "my_model"
    assert trained.features_col == "my_model_features"


# =========================================================
# Scoring
# =========================================================

def test_scored_columns_and_metadata(classification_dataset):
    trained = train(classification_dataset, LogisticRegression(max_iter=500))

    scored = trained.transform(classification_dataset)

    assert list(scored.columns) == INPUT_COLUMNS + ["scores", "scored_probabilities", "scored_labels"]
    assert trained.transform_schema(INPUT_COLUMNS) == list(scored.columns)
    assert get_levels(scored, "scored_labels") == ["a", "b", "c"]
    assert get_levels(scored, "label") == ["a", "b", "c"]

    meta = get_column_metadata(scored, "scored_labels")
    assert meta["score_model"].startswith("score_model_")
    assert meta["score_column_kind"] == "ScoredLabels"
    assert meta["score_value_kind"] == "Classification"
    assert get_column_metadata(scored, "label")["score_column_kind"] == "TrueLabels"
    assert get_column_metadata(scored, "scores")["score_model"] == meta["score_model"]

    probabilities = np.vstack(scored["scored_probabilities"])
    assert probabilities.shape == (30, 3)


def test_scoring_without_label_column(classification_dataset):
    trained = train(classification_dataset, LogisticRegression(max_iter=500))

    scored = trained.transform(classification_dataset.drop(columns=["label"]))

    assert "label" not in scored.columns
    assert scored["scored_labels"].notna().all()


def test_predictions_match_training_labels(classification_dataset):
    trained = train(classification_dataset, LogisticRegression(max_iter=500))

    scored = trained.transform(classification_dataset)

    expected = classification_dataset["label"].map({"a": 0.0, "b": 1.0, "c": 2.0})
    assert (scored["scored_labels"] == expected).mean() == 1.0


def test_transform_schema_before_fit():
    trainer = TrainClassifier(model=GradientBoostingClassifier())
    assert trainer.transform_schema(["x"]) == ["x", "scored_labels"]


# =========================================================
# Persistence
# =========================================================

def test_save_and_load(classification_dataset, tmp_path):
    trained = train(classification_dataset, LogisticRegression(max_iter=500))
    path = str(tmp_path / "model")

    trained.save(path)
    loaded = TrainedClassifierModel.load(path)

    assert sorted(os.listdir(path)) == ["data.json", "levels.joblib", "metadata.json", "model"]
    assert loaded.uid == trained.uid
    assert loaded.levels == trained.levels
    assert loaded.features_col == trained.features_col
    reloaded = loaded.transform(classification_dataset)
    original = trained.transform(classification_dataset)
    assert list(reloaded.columns) == list(original.columns)
    pd.testing.assert_series_equal(reloaded["scored_labels"], original["scored_labels"])
    for column in ["scores", "scored_probabilities"]:
        np.testing.assert_allclose(np.vstack(reloaded[column]), np.vstack(original[column]))


def test_save_refuses_to_overwrite(binary_dataset, tmp_path):
    trained = train(binary_dataset, LogisticRegression())
    path = str(tmp_path / "model")
    trained.save(path)

    with pytest.raises(FileExistsError):
        trained.save(path)
    trained.save(path, overwrite=True)


# =========================================================
# Feature width and label layouts
# =========================================================

def feature_matrix(trained, df):
    featurized = trained.model.named_steps["featurize"].transform(df)
    return vectors_to_matrix(featurized[trained.features_col])


def with_colour(df):
    colours = ["red", "green", "blue"]
    return df.assign(colour=[colours[i % 3] for i in range(len(df))])


def test_string_column_at_default_width_is_trained_sparse(binary_dataset):
    df = with_colour(binary_dataset)

    trained = train(df, LogisticRegression(max_iter=500))

    matrix = feature_matrix(trained, df)
    assert sparse.issparse(matrix)
    assert matrix.shape == (20, 2 + 262144)
    scored = trained.transform(df)
    assert list(scored.columns) == ["x1", "x2", "label", "colour", "scores", "scored_probabilities", "scored_labels"]
    assert (scored["scored_labels"] == binary_dataset["label"].map({"a": 0.0, "b": 1.0})).all()


def test_explicit_num_features_overrides_family_default(classification_dataset):
    df = with_colour(classification_dataset)

    default = train(df, RandomForestClassifier(n_estimators=5, random_state=0))
    narrow = train(df, RandomForestClassifier(n_estimators=5, random_state=0), num_features=16)

    assert feature_matrix(default, df).shape[1] == 2 + 4096
    assert feature_matrix(narrow, df).shape[1] == 2 + 16


def test_pandas_categorical_label_keeps_category_order(classification_dataset):
    df = classification_dataset.assign(
        label=pd.Categorical(classification_dataset["label"], categories=["c", "b", "a"])
    )

    trained = train(df, LogisticRegression(max_iter=500))
    scored = trained.transform(df)

    assert trained.levels == ["c", "b", "a"]
    assert isinstance(trained.classifier_stage.estimator, OneVsRestClassifier)
    assert decode_levels(scored, "scored_labels").tolist() == classification_dataset["label"].tolist()


def test_label_with_levels_metadata_is_used_as_is(classification_dataset):
    df = make_categorical(classification_dataset, "label")

    trained = train(df, LogisticRegression(max_iter=500))
    scored = trained.transform(df)

    assert trained.levels == ["a", "b", "c"]
    assert isinstance(trained.classifier_stage.estimator, OneVsRestClassifier)
    assert (scored["scored_labels"] == df["label"].astype(float)).all()


def test_categorical_label_with_gradient_boosting_is_rejected(classification_dataset):
    df = classification_dataset.assign(label=pd.Categorical(classification_dataset["label"]))

    with pytest.raises(UnsupportedConfigurationError):
        train(df, GradientBoostingClassifier(n_estimators=5))


# =========================================================
# Empty input
# =========================================================

@pytest.mark.parametrize("model", [
    LogisticRegression(max_iter=500),
    DecisionTreeClassifier(random_state=0),
])
def test_scoring_an_empty_frame(classification_dataset, model):
    trained = train(classification_dataset, model)

    scored = trained.transform(classification_dataset.iloc[0:0])

    assert len(scored) == 0
    assert list(scored.columns) == trained.transform_schema(INPUT_COLUMNS)
    assert get_levels(scored, "scored_labels") == ["a", "b", "c"]


def test_scoring_an_empty_frame_without_score_columns(binary_dataset):
    trained = train(binary_dataset, GradientBoostingClassifier(n_estimators=5))

    scored = trained.transform(binary_dataset.iloc[0:0])

    assert list(scored.columns) == INPUT_COLUMNS + ["scored_labels"]
    assert scored["scored_labels"].dtype == np.float64
