"""
Function facade over the ml_stages pipeline stages.
Used by the Flask layer and handy from notebooks and scripts.
"""

import pandas as pd
from typing import Any, Dict, List, Optional

from ml_stages import (
    CleanMissingData,
    CleanMissingDataModel,
    TrainClassifier,
    TrainedClassifierModel,
    TrainingConfig,
    make_algorithm,
    safe_json_convert,
)
from ml_stages.clean_missing import MEAN
from ml_stages.config import SchemaConstants
from ml_stages.schema import decode_levels


def clean_missing_data(df: pd.DataFrame,
                       input_cols: List[str],
                       output_cols: Optional[List[str]] = None,
                       mode: str = MEAN,
                       custom_value: Optional[str] = None) -> Dict[str, Any]:
    """Fit and apply missing-value cleaning in one call.

    Output columns default to the input columns, replacing them in place.
    """
    model: CleanMissingDataModel = CleanMissingData(
        input_cols=input_cols,
        output_cols=output_cols or list(input_cols),
        cleaning_mode=mode,
        custom_value=custom_value,
    ).fit(df)
    return {
        'model': model,
        'data': model.transform(df),
        'replacement_values': safe_json_convert(model.replacement_values),
    }


def train_classifier(df: pd.DataFrame, config: TrainingConfig) -> TrainedClassifierModel:
    """Train the configured algorithm on ``df``."""
    classifier = make_algorithm(config.algorithm, **config.algorithm_params)
    trainer = TrainClassifier(
        model=classifier,
        label_col=config.label_column,
        index_label=config.index_label,
        num_features=config.num_features,
    )
    return trainer.fit(df)


def score_dataset(model: TrainedClassifierModel, df: pd.DataFrame, decode: bool = True) -> pd.DataFrame:
    """Score ``df``; with ``decode`` the scored labels are mapped back to their levels."""
    scored = model.transform(df)
    if decode and model.levels is not None:
        scored[SchemaConstants.SCORED_LABELS_COLUMN] = decode_levels(
            scored, SchemaConstants.SCORED_LABELS_COLUMN
        )
    return scored


def describe_model(model: TrainedClassifierModel) -> Dict[str, Any]:
    """Summary of a trained model for API responses."""
    estimator = model.classifier_stage.estimator
    return {
        'model_id': model.uid,
        'label_column': model.label_col,
        'algorithm': type(estimator).__name__,
        'levels': safe_json_convert(model.levels),
        'has_score_columns': model.has_score_columns(),
        'output_columns': model.transform_schema([]),
    }


__all__ = [
    'clean_missing_data',
    'train_classifier',
    'score_dataset',
    'describe_model',
]
