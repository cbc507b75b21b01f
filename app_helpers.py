"""
Helper functions and decorators for the Flask app.
Request parsing, uploaded dataset loading and standardized JSON errors.
"""

import os
import uuid
import functools
import pandas as pd
from flask import jsonify, request, current_app
from werkzeug.utils import secure_filename
from typing import Callable, Dict, Any, List

from ml_stages import MLStagesError, TrainedClassifierModel, TrainingConfig
from ml_stages.utils import frame_to_records, parse_bool, parse_column_list, validate_file_upload


class RequestError(ValueError):
    """The request is missing data or carries malformed form fields."""


def api_response(func: Callable) -> Callable:
    """Decorator for standardized API responses with error handling"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
            if isinstance(result, dict):
                return jsonify(result)
            return result
        except FileNotFoundError as e:
            current_app.logger.warning(f"API Error in {func.__name__}: {str(e)}")
            return jsonify({'success': False, 'error': str(e)}), 404
        except (MLStagesError, ValueError) as e:
            current_app.logger.warning(f"API Error in {func.__name__}: {str(e)}")
            return jsonify({'success': False, 'error': str(e)}), 400
        except Exception as e:
            current_app.logger.exception(f"API Error in {func.__name__}: {str(e)}")
            return jsonify({'success': False, 'error': str(e)}), 500
    return wrapper


def load_uploaded_dataframe() -> pd.DataFrame:
    """Read the CSV dataset posted as the ``dataset`` file field."""
    if 'dataset' not in request.files:
        raise RequestError("No file uploaded.")

    file = request.files['dataset']
    is_valid, validation_message = validate_file_upload(file)
    if not is_valid:
        raise RequestError(validation_message)

    filename = f"{uuid.uuid4().hex}_{secure_filename(file.filename)}"
    filepath = os.path.join(current_app.config['UPLOAD_FOLDER'], filename)
    file.save(filepath)
    try:
        df = pd.read_csv(filepath)
    finally:
        os.remove(filepath)
    if df.empty:
        raise RequestError("File contains no data.")
    current_app.logger.info(f"Loaded {file.filename}: {df.shape}")
    return df


def form_columns(name: str, required: bool = True) -> List[str]:
    columns = parse_column_list(request.form.get(name))
    if required and not columns:
        raise RequestError(f"Form field '{name}' must list at least one column")
    return columns


def training_config_from_form() -> TrainingConfig:
    """Build a TrainingConfig from the /train form fields"""
    label = request.form.get('label')
    if not label:
        raise RequestError("Form field 'label' is required")
    try:
        num_features = int(request.form.get('num_features') or 0)
    except ValueError:
        raise RequestError("Form field 'num_features' must be an integer")
    return TrainingConfig(
        label_column=label,
        algorithm=request.form.get('algorithm') or 'LogisticRegression',
        index_label=parse_bool(request.form.get('index_label'), default=True),
        num_features=num_features,
    )


def model_path(model_id: str) -> str:
    """Location of a stored model; ids are confined to MODELS_FOLDER"""
    if not model_id or os.path.basename(model_id) != model_id or model_id.startswith('.'):
        raise RequestError(f"Invalid model id '{model_id}'")
    return os.path.join(current_app.config['MODELS_FOLDER'], model_id)


def load_stored_model(model_id: str) -> TrainedClassifierModel:
    path = model_path(model_id)
    if not os.path.isdir(path):
        raise FileNotFoundError(f"Model '{model_id}' not found")
    return TrainedClassifierModel.load(path)


def stored_model_ids() -> List[str]:
    folder = current_app.config['MODELS_FOLDER']
    if not os.path.isdir(folder):
        return []
    return sorted(name for name in os.listdir(folder) if os.path.isdir(os.path.join(folder, name)))


def records_response(df: pd.DataFrame, **extra: Any) -> Dict[str, Any]:
    """JSON payload with the columns and rows of ``df``"""
    return {
        'success': True,
        'columns': [str(c) for c in df.columns],
        'rows': frame_to_records(df),
        **extra,
    }
