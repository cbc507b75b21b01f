"""
Flask HTTP surface for the pipeline stages.
Clean missing values, train classifiers and score datasets with stored models.
"""

import os
from flask import Flask, request, current_app
from werkzeug.utils import secure_filename

from model_utils import clean_missing_data, train_classifier, score_dataset, describe_model
from app_helpers import (
    api_response, load_uploaded_dataframe, form_columns, training_config_from_form,
    model_path, load_stored_model, stored_model_ids, records_response
)


def create_app(config: dict = None) -> Flask:
    """Application factory; ``config`` overrides the environment defaults."""
    app = Flask(__name__)
    app.config['UPLOAD_FOLDER'] = os.environ.get('ML_STAGES_UPLOAD_FOLDER', 'uploads')
    app.config['MODELS_FOLDER'] = os.environ.get('ML_STAGES_MODELS_FOLDER', 'models')
    app.config['MAX_CONTENT_LENGTH'] = 50 * 1024 * 1024  # 50MB max file size
    if config:
        app.config.update(config)

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
    os.makedirs(app.config['MODELS_FOLDER'], exist_ok=True)

    @app.route('/clean_missing', methods=['POST'])
    @api_response
    def clean_missing():
        """Replace missing values in the uploaded dataset."""
        df = load_uploaded_dataframe()
        input_cols = form_columns('input_cols')
        output_cols = form_columns('output_cols', required=False) or None
        result = clean_missing_data(
            df,
            input_cols=input_cols,
            output_cols=output_cols,
            mode=request.form.get('mode', 'Mean'),
            custom_value=request.form.get('custom_value'),
        )
        return records_response(result['data'], replacement_values=result['replacement_values'])

    @app.route('/train', methods=['POST'])
    @api_response
    def train():
        """Train a classifier and store it under MODELS_FOLDER."""
        df = load_uploaded_dataframe()
        config = training_config_from_form()
        current_app.logger.info(
            f"Training {config.algorithm} on label '{config.label_column}' ({len(df)} rows)"
        )
        model = train_classifier(df, config)
        model.save(model_path(secure_filename(model.uid)))
        return {'success': True, 'message': f'Model {model.uid} trained', **describe_model(model)}

    @app.route('/score/<model_id>', methods=['POST'])
    @api_response
    def score(model_id):
        """Score the uploaded dataset with a stored model."""
        model = load_stored_model(model_id)
        df = load_uploaded_dataframe()
        scored = score_dataset(model, df, decode=True)
        return records_response(scored, model_id=model.uid)

    @app.route('/models', methods=['GET'])
    @api_response
    def models():
        """Ids of the stored models."""
        return {'success': True, 'models': stored_model_ids()}

    return app


if __name__ == "__main__":
    create_app().run(host='127.0.0.1', port=5002)
