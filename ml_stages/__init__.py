"""
Pipeline stages for tabular and image machine learning.
Missing-value cleaning, classifier training orchestration and image featurization
built on sklearn's estimator contract.
"""

__version__ = '0.1.0'

from .errors import (
    MLStagesError,
    UnsupportedTypeError,
    UnsupportedConfigurationError,
    UnrecognizedAlgorithmError,
)
from .config import FeaturizeDefaults, SchemaConstants, TrainingConfig, ALGORITHMS, make_algorithm
from .clean_missing import CleanMissingData, CleanMissingDataModel
from .featurize import Featurize, FeaturizeModel
from .algorithms import AlgorithmFamily, MultilayerPerceptronClassifier, resolve_family
from .train_classifier import TrainClassifier, TrainedClassifierModel
from .image_featurizer import ImageFeaturizer, ModelDownloader, ModelSchema, schema_from_file
from .utils import safe_json_convert

__all__ = [
    'MLStagesError',
    'UnsupportedTypeError',
    'UnsupportedConfigurationError',
    'UnrecognizedAlgorithmError',
    'FeaturizeDefaults',
    'SchemaConstants',
    'TrainingConfig',
    'ALGORITHMS',
    'make_algorithm',
    'CleanMissingData',
    'CleanMissingDataModel',
    'Featurize',
    'FeaturizeModel',
    'AlgorithmFamily',
    'MultilayerPerceptronClassifier',
    'resolve_family',
    'TrainClassifier',
    'TrainedClassifierModel',
    'ImageFeaturizer',
    'ModelDownloader',
    'ModelSchema',
    'schema_from_file',
    'safe_json_convert',
]
