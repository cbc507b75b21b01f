"""Classifier training orchestration.

``TrainClassifier`` indexes the label, vectorizes every other column, adapts
the chosen algorithm to its family and fits it. The result is a
``TrainedClassifierModel`` that re-featurizes, scores and renames the scored
columns to standardized names.
"""

import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import joblib
import pandas as pd
from scipy import sparse
import sklearn
from sklearn.base import BaseEstimator, TransformerMixin, clone
from sklearn.multiclass import OneVsRestClassifier
from sklearn.pipeline import Pipeline

from .algorithms import (
    FAMILY_TRAITS,
    AlgorithmFamily,
    ClassifierStage,
    FamilyTraits,
    MulticlassPolicy,
    adjust_input_layer,
    resolve_family,
    traits_for,
)
from .config import SchemaConstants
from .errors import UnsupportedConfigurationError
from .featurize import Featurize
from .schema import (
    get_levels,
    is_categorical,
    make_categorical,
    set_levels,
    set_score_column_metadata,
    vectors_to_matrix,
)

logger = logging.getLogger(__name__)

_METADATA_FILE = 'metadata.json'
_MODEL_PART = 'model'
_PIPELINE_FILE = 'pipeline.joblib'
_LEVELS_FILE = 'levels.joblib'
_DATA_FILE = 'data.json'


def random_uid(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class TrainClassifier(BaseEstimator):
    """Trains a classification model.

    Args:
        model: classifier to run (any sklearn-compatible classifier)
        label_col: name of the label column
        index_label: index the label column as categorical levels
        num_features: number of features to hash to; 0 picks the family default
        uid: identifier of the trained model; generated when omitted
    """

    def __init__(self,
                 model: Any = None,
                 label_col: str = 'label',
                 index_label: bool = True,
                 num_features: int = 0,
                 uid: Optional[str] = None):
        self.model = model
        self.label_col = label_col
        self.index_label = index_label
        self.num_features = num_features
        self.uid = uid

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'TrainedClassifierModel':
        """Fit the featurization and the classifier.

        Args:
            df: the labeled dataset to train on

        Returns:
            The trained classification model.
        """
        if self.model is None:
            raise ValueError("A classifier must be set before fitting")
        if self.label_col not in df.columns:
            raise ValueError(f"Label column '{self.label_col}' not found in dataset")

        uid = self.uid or random_uid('TrainClassifier')
        label_col = self.label_col
        features_col = f"{uid}_features"

        dataset, levels = self._convert_label(df)
        if dataset.empty:
            raise ValueError(f"Label column '{label_col}' has no present values to train on")

        family = resolve_family(self.model)
        traits = FAMILY_TRAITS[family]
        num_features = self.num_features or traits.default_num_features
        classifier = self._adapt_classifier(clone(self.model, safe=False), family, traits, levels)

        logger.info(
            "Training %s on %d rows: label=%s, levels=%s, num_features=%d, one_hot=%s",
            family.value, len(dataset), label_col,
            None if levels is None else len(levels), num_features, traits.one_hot_encode_categoricals,
        )

        feature_columns = [c for c in dataset.columns if c != label_col]
        featurize_model = Featurize(
            feature_columns={features_col: feature_columns},
            one_hot_encode_categoricals=traits.one_hot_encode_categoricals,
            number_of_features=num_features,
        ).fit(dataset)

        processed = featurize_model.transform(dataset)
        X = None
        try:
            X = vectors_to_matrix(processed[features_col])
            logger.debug("Featurized training matrix: shape=%s, sparse=%s", X.shape, sparse.issparse(X))
            if traits.adjust_input_layer:
                # The neural network needs its input layer to match the vector size
                adjust_input_layer(classifier, X.shape[1])
            classifier.fit(X, processed[label_col].to_numpy())
        finally:
            del processed, X
            logger.debug("Released featurized training data")

        stage = ClassifierStage(
            estimator=classifier,
            features_col=features_col,
            label_col=label_col,
            has_score_columns=traits_for(classifier).has_score_columns,
        )
        # Both stages are already fitted; composing them runs no extra computation
        pipeline = Pipeline(steps=[('featurize', featurize_model), ('classifier', stage)])

        logger.info("Trained classifier %s", uid)
        return TrainedClassifierModel(
            uid=uid,
            label_col=label_col,
            model=pipeline,
            levels=levels,
            features_col=features_col,
        )

    def _convert_label(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[List[Any]]]:
        """Drop rows without a label and, if requested, index the label."""
        label_col = self.label_col
        already_categorical = is_categorical(df, label_col)
        known_levels = get_levels(df, label_col)
        dataset = df.dropna(subset=[label_col])
        if not self.index_label:
            return dataset, None

        if not already_categorical or isinstance(dataset[label_col].dtype, pd.CategoricalDtype):
            dataset = make_categorical(dataset, label_col, label_col)
            levels = get_levels(dataset, label_col)
        else:
            levels = known_levels
            dataset = set_levels(dataset, label_col, levels) if levels is not None else dataset.copy()

        dataset[label_col] = dataset[label_col].astype('float64')
        return dataset, levels

    @staticmethod
    def _adapt_classifier(classifier: Any,
                          family: AlgorithmFamily,
                          traits: FamilyTraits,
                          levels: Optional[List[Any]]) -> Any:
        if levels is None or len(levels) <= 2:
            return classifier
        if traits.multiclass is MulticlassPolicy.ONE_VS_REST:
            return OneVsRestClassifier(classifier)
        if traits.multiclass is MulticlassPolicy.UNSUPPORTED:
            raise UnsupportedConfigurationError(f"multiclass {family.value} not supported")
        return classifier

    def transform_schema(self, columns: List[str]) -> List[str]:
        return self.validate_transform_schema(traits_for(self.model).has_score_columns, columns)

    @staticmethod
    def validate_transform_schema(has_score_cols: bool, columns: List[str]) -> List[str]:
        """Columns produced by scoring a frame with ``columns``."""
        scored = list(columns)
        if has_score_cols:
            scored += [SchemaConstants.SCORES_COLUMN, SchemaConstants.SCORED_PROBABILITIES_COLUMN]
        return scored + [SchemaConstants.SCORED_LABELS_COLUMN]


class TrainedClassifierModel(BaseEstimator, TransformerMixin):
    """Model produced by ``TrainClassifier``."""

    def __init__(self,
                 uid: Optional[str] = None,
                 label_col: Optional[str] = None,
                 model: Optional[Pipeline] = None,
                 levels: Optional[List[Any]] = None,
                 features_col: Optional[str] = None):
        self.uid = uid
        self.label_col = label_col
        self.model = model
        self.levels = levels
        self.features_col = features_col

    def __sklearn_is_fitted__(self) -> bool:
        return True

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'TrainedClassifierModel':
        return self

    @property
    def classifier_stage(self) -> ClassifierStage:
        return self.model.named_steps['classifier']

    def has_score_columns(self) -> bool:
        return self.classifier_stage.has_score_columns

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        has_score_cols = self.has_score_columns()

        # Re-featurize and score the data
        scored = self.model.transform(df)
        scored = scored.drop(columns=[self.features_col])

        module_name = SchemaConstants.SCORE_MODEL_PREFIX + uuid.uuid4().hex
        label_exists = self.label_col in scored.columns
        if label_exists:
            scored = set_score_column_metadata(
                scored, module_name, self.label_col, SchemaConstants.TRUE_LABELS_KIND
            )

        if has_score_cols:
            scored = _rename_scored_column(
                scored, SchemaConstants.RAW_PREDICTION_COLUMN, SchemaConstants.SCORES_COLUMN,
                SchemaConstants.SCORES_KIND, module_name,
            )
            scored = _rename_scored_column(
                scored, SchemaConstants.PROBABILITY_COLUMN, SchemaConstants.SCORED_PROBABILITIES_COLUMN,
                SchemaConstants.SCORED_PROBABILITIES_KIND, module_name,
            )
        scored = _rename_scored_column(
            scored, SchemaConstants.PREDICTION_COLUMN, SchemaConstants.SCORED_LABELS_COLUMN,
            SchemaConstants.SCORED_LABELS_KIND, module_name,
        )

        if self.levels is not None:
            scored = set_levels(scored, SchemaConstants.SCORED_LABELS_COLUMN, self.levels)
            if label_exists:
                scored = set_levels(scored, self.label_col, self.levels)
        return scored

    def transform_schema(self, columns: List[str]) -> List[str]:
        return TrainClassifier.validate_transform_schema(self.has_score_columns(), columns)

    def get_param_map(self) -> Dict[str, Any]:
        """Parameters of the fitted classifier."""
        return self.classifier_stage.estimator.get_params()

    def save(self, path: str, overwrite: bool = False) -> None:
        """Persist the model as a directory.

        Layout: ``metadata.json``, ``model/pipeline.joblib``,
        ``levels.joblib`` and ``data.json`` (uid, label and feature column).
        """
        from . import __version__

        if os.path.exists(path):
            if not overwrite:
                raise FileExistsError(f"Path '{path}' already exists; pass overwrite=True to replace it")
            shutil.rmtree(path)
        os.makedirs(os.path.join(path, _MODEL_PART))

        metadata = {
            'class': f"{type(self).__module__}.{type(self).__name__}",
            'uid': self.uid,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': __version__,
            'sklearn_version': sklearn.__version__,
        }
        with open(os.path.join(path, _METADATA_FILE), 'w') as f:
            json.dump(metadata, f, indent=2)

        joblib.dump(self.model, os.path.join(path, _MODEL_PART, _PIPELINE_FILE))
        joblib.dump(self.levels, os.path.join(path, _LEVELS_FILE))

        data = pd.DataFrame([{
            'uid': self.uid,
            'label_col': self.label_col,
            'features_col': self.features_col,
        }])
        data.to_json(os.path.join(path, _DATA_FILE), orient='records')
        logger.info("Saved trained classifier %s to %s", self.uid, path)

    @classmethod
    def load(cls, path: str) -> 'TrainedClassifierModel':
        """Reconstruct a model written by ``save``."""
        data = pd.read_json(os.path.join(path, _DATA_FILE), orient='records',
                            dtype=False, convert_dates=False)
        record = data.iloc[0]
        model = joblib.load(os.path.join(path, _MODEL_PART, _PIPELINE_FILE))
        levels = joblib.load(os.path.join(path, _LEVELS_FILE))
        return cls(
            uid=str(record['uid']),
            label_col=str(record['label_col']),
            model=model,
            levels=levels,
            features_col=str(record['features_col']),
        )


def _rename_scored_column(df: pd.DataFrame,
                          native_column: str,
                          scored_column: str,
                          column_kind: str,
                          module_name: str) -> pd.DataFrame:
    if native_column not in df.columns:
        return df
    renamed = df.rename(columns={native_column: scored_column})
    return set_score_column_metadata(renamed, module_name, scored_column, column_kind)
