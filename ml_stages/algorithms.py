"""Classifier algorithm families and the fitted-classifier pipeline stage.

Each supported family carries its featurization and wrapping rules as data
(``FAMILY_TRAITS``) so the trainer never branches on concrete estimator
types beyond ``resolve_family``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, ClassifierMixin, TransformerMixin
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.neural_network import MLPClassifier
from sklearn.tree import DecisionTreeClassifier

from .config import FeaturizeDefaults, SchemaConstants
from .errors import UnrecognizedAlgorithmError
from .schema import vectors_to_matrix

logger = logging.getLogger(__name__)


class AlgorithmFamily(Enum):
    LOGISTIC_REGRESSION = 'logistic regression'
    GRADIENT_BOOSTED_TREES = 'gradient-boosted trees'
    DECISION_TREE = 'decision tree'
    RANDOM_FOREST = 'random forest'
    MULTILAYER_PERCEPTRON = 'multilayer perceptron'
    GENERIC = 'generic'


class MulticlassPolicy(Enum):
    NATIVE = 'native'
    ONE_VS_REST = 'one_vs_rest'
    UNSUPPORTED = 'unsupported'


@dataclass(frozen=True)
class FamilyTraits:
    """Featurization and wrapping rules of an algorithm family."""
    default_num_features: int
    one_hot_encode_categoricals: bool
    adjust_input_layer: bool
    has_score_columns: bool
    multiclass: MulticlassPolicy


_DEFAULT = FeaturizeDefaults.NUM_FEATURES_DEFAULT
_TREE_OR_NN = FeaturizeDefaults.NUM_FEATURES_TREE_OR_NN

FAMILY_TRAITS: Dict[AlgorithmFamily, FamilyTraits] = {
    AlgorithmFamily.LOGISTIC_REGRESSION: FamilyTraits(_DEFAULT, True, False, True, MulticlassPolicy.ONE_VS_REST),
    AlgorithmFamily.GRADIENT_BOOSTED_TREES: FamilyTraits(_TREE_OR_NN, False, False, False, MulticlassPolicy.UNSUPPORTED),
    AlgorithmFamily.DECISION_TREE: FamilyTraits(_TREE_OR_NN, False, False, True, MulticlassPolicy.NATIVE),
    AlgorithmFamily.RANDOM_FOREST: FamilyTraits(_TREE_OR_NN, False, False, True, MulticlassPolicy.NATIVE),
    AlgorithmFamily.MULTILAYER_PERCEPTRON: FamilyTraits(_TREE_OR_NN, True, True, False, MulticlassPolicy.NATIVE),
    AlgorithmFamily.GENERIC: FamilyTraits(_DEFAULT, True, False, True, MulticlassPolicy.NATIVE),
}


class MultilayerPerceptronClassifier(BaseEstimator, ClassifierMixin):
    """Multilayer perceptron described by its full layer sizes.

    ``layers`` lists the input layer, the hidden layers and the output layer.
    The input layer must match the width of the feature vectors it is fitted
    on; the hidden layers are handed to sklearn's MLPClassifier. The output
    layer is not used: MLPClassifier sizes it from the classes seen in ``y``,
    so ``(n, 100, 2)`` also fits a three-class label.
    """

    def __init__(self,
                 layers: Sequence[int] = (1, 100, 2),
                 activation: str = 'relu',
                 solver: str = 'adam',
                 alpha: float = 0.0001,
                 learning_rate_init: float = 0.001,
                 max_iter: int = 200,
                 random_state: Optional[int] = None):
        self.layers = layers
        self.activation = activation
        self.solver = solver
        self.alpha = alpha
        self.learning_rate_init = learning_rate_init
        self.max_iter = max_iter
        self.random_state = random_state

    def fit(self, X: Any, y: Any) -> 'MultilayerPerceptronClassifier':
        layers = list(self.layers)
        if len(layers) < 2:
            raise ValueError("layers must list at least an input and an output layer")
        n_features = X.shape[1] if hasattr(X, 'shape') else np.asarray(X).shape[1]
        if layers[0] != n_features:
            raise ValueError(
                f"Input layer size {layers[0]} does not match the {n_features} input features"
            )

        self.network_ = MLPClassifier(
            hidden_layer_sizes=tuple(layers[1:-1]),
            activation=self.activation,
            solver=self.solver,
            alpha=self.alpha,
            learning_rate_init=self.learning_rate_init,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )
        self.network_.fit(X, y)
        self.classes_ = self.network_.classes_
        return self

    def predict(self, X: Any) -> np.ndarray:
        return self.network_.predict(X)

    def predict_proba(self, X: Any) -> np.ndarray:
        return self.network_.predict_proba(X)


_FAMILY_TYPES = (
    (LogisticRegression, AlgorithmFamily.LOGISTIC_REGRESSION),
    (GradientBoostingClassifier, AlgorithmFamily.GRADIENT_BOOSTED_TREES),
    (DecisionTreeClassifier, AlgorithmFamily.DECISION_TREE),
    (RandomForestClassifier, AlgorithmFamily.RANDOM_FOREST),
    (MLPClassifier, AlgorithmFamily.MULTILAYER_PERCEPTRON),
    (MultilayerPerceptronClassifier, AlgorithmFamily.MULTILAYER_PERCEPTRON),
)


def resolve_family(estimator: Any) -> AlgorithmFamily:
    """Map an algorithm instance onto its family.

    Unknown estimators are accepted as GENERIC when they can be fitted and
    predicted with; anything else is rejected.
    """
    for estimator_type, family in _FAMILY_TYPES:
        if isinstance(estimator, estimator_type):
            return family
    if callable(getattr(estimator, 'fit', None)) and callable(getattr(estimator, 'predict', None)):
        return AlgorithmFamily.GENERIC
    raise UnrecognizedAlgorithmError(f"Unsupported learner type {type(estimator).__name__}")


def traits_for(estimator: Any) -> FamilyTraits:
    return FAMILY_TRAITS[resolve_family(estimator)]


def adjust_input_layer(estimator: Any, input_size: int) -> bool:
    """Set the first layer of an estimator exposing ``layers``.

    Returns False when the estimator infers its input layer on its own.
    """
    params = estimator.get_params(deep=False) if hasattr(estimator, 'get_params') else {}
    if 'layers' not in params:
        logger.debug("%s infers its input layer; nothing to adjust", type(estimator).__name__)
        return False
    layers: List[int] = list(params['layers'])
    layers[0] = input_size
    estimator.set_params(layers=layers)
    logger.debug("Input layer set to %d: layers=%s", input_size, layers)
    return True


class ClassifierStage(BaseEstimator, TransformerMixin):
    """A fitted classifier applied to a feature-vector column.

    ``transform`` appends ``prediction`` and, when the family produces
    them, ``probability`` and ``rawPrediction`` columns.
    """

    def __init__(self,
                 estimator: Any = None,
                 features_col: Optional[str] = None,
                 label_col: Optional[str] = None,
                 has_score_columns: bool = True):
        self.estimator = estimator
        self.features_col = features_col
        self.label_col = label_col
        self.has_score_columns = has_score_columns

    def __sklearn_is_fitted__(self) -> bool:
        return True

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'ClassifierStage':
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df.copy()
        if len(df) == 0:
            if self.has_score_columns:
                out[SchemaConstants.RAW_PREDICTION_COLUMN] = pd.Series(index=df.index, dtype=object)
                out[SchemaConstants.PROBABILITY_COLUMN] = pd.Series(index=df.index, dtype=object)
            out[SchemaConstants.PREDICTION_COLUMN] = pd.Series(index=df.index, dtype='float64')
            return out

        X = vectors_to_matrix(df[self.features_col])
        if self.has_score_columns:
            probabilities = None
            if hasattr(self.estimator, 'predict_proba'):
                probabilities = np.asarray(self.estimator.predict_proba(X))
            if hasattr(self.estimator, 'decision_function'):
                raw = np.asarray(self.estimator.decision_function(X))
            else:
                # Tree ensembles and neighbors expose no margin; their class votes are the raw scores
                raw = probabilities
            if raw is not None:
                out[SchemaConstants.RAW_PREDICTION_COLUMN] = _per_row(raw, df.index)
            if probabilities is not None:
                out[SchemaConstants.PROBABILITY_COLUMN] = _per_row(probabilities, df.index)
        predictions = np.asarray(self.estimator.predict(X))
        if predictions.dtype.kind in 'biuf':
            predictions = predictions.astype(float)
        out[SchemaConstants.PREDICTION_COLUMN] = predictions
        return out


def _per_row(values: np.ndarray, index: pd.Index) -> pd.Series:
    if values.ndim == 1:
        return pd.Series(values.astype(float), index=index)
    return pd.Series(list(values.astype(float)), index=index, dtype=object)
