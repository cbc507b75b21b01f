"""Constants, configuration objects and the algorithm registry."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.tree import DecisionTreeClassifier

from .errors import UnrecognizedAlgorithmError


class FeaturizeDefaults:
    """Default widths of the hashed feature space."""
    NUM_FEATURES_DEFAULT = 262144
    NUM_FEATURES_TREE_OR_NN = 4096


class SchemaConstants:
    """Column names and metadata values shared by scoring stages."""
    # Standardized scored columns
    SCORES_COLUMN = 'scores'
    SCORED_PROBABILITIES_COLUMN = 'scored_probabilities'
    SCORED_LABELS_COLUMN = 'scored_labels'

    # Columns written by the fitted algorithm stage
    PREDICTION_COLUMN = 'prediction'
    PROBABILITY_COLUMN = 'probability'
    RAW_PREDICTION_COLUMN = 'rawPrediction'

    SCORE_MODEL_PREFIX = 'score_model_'
    CLASSIFICATION_KIND = 'Classification'

    TRUE_LABELS_KIND = 'TrueLabels'
    SCORES_KIND = 'Scores'
    SCORED_PROBABILITIES_KIND = 'ScoredProbabilities'
    SCORED_LABELS_KIND = 'ScoredLabels'


@dataclass
class TrainingConfig:
    """Configuration object for classifier training."""
    label_column: str
    algorithm: str = 'LogisticRegression'
    index_label: bool = True
    num_features: int = 0
    algorithm_params: Dict[str, Any] = field(default_factory=dict)


def _multilayer_perceptron(**params: Any):
    from .algorithms import MultilayerPerceptronClassifier
    return MultilayerPerceptronClassifier(**params)


ALGORITHMS: Dict[str, Callable[..., Any]] = {
    'LogisticRegression': lambda **p: LogisticRegression(**{'max_iter': 1000, 'random_state': 42, **p}),
    'GradientBoosting': lambda **p: GradientBoostingClassifier(**{'n_estimators': 100, 'random_state': 42, **p}),
    'DecisionTree': lambda **p: DecisionTreeClassifier(**{'random_state': 42, **p}),
    'RandomForest': lambda **p: RandomForestClassifier(**{'n_estimators': 100, 'random_state': 42, **p}),
    'MultilayerPerceptron': lambda **p: _multilayer_perceptron(**{'random_state': 42, **p}),
}


def make_algorithm(name: str, **params: Any):
    """Create a fresh classifier from the registry."""
    factory = ALGORITHMS.get(name)
    if factory is None:
        raise UnrecognizedAlgorithmError(
            f"Unknown algorithm '{name}'. Must be one of {sorted(ALGORITHMS)}"
        )
    return factory(**params)
