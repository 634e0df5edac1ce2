"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for digit model training.

This module provides endpoints for:
- Creating and managing digit classification models
- Training models with real-time progress updates via WebSockets
- Predicting digits (with per-class confidence) from dataset or drawn images
- Exporting/importing model bundles and persisting them to SQLite

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for cooperative background training tasks
- SQLite for model persistence
"""

import os
import sys
import time
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
import numpy as np
from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

# Local imports
from digitnet import mnist_loader
from digitnet import network
from digitnet.preprocessing import canvas_to_input, preprocess_digit
from digitnet.trainer import Trainer
from digitnet.model_persistence import (
    save_model,
    load_model,
    list_saved_models,
    delete_model,
    delete_old_models,
    export_model,
    import_model
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    # Set up basic logging format
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('digitnet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__, static_folder='static')
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Models currently loaded in memory: {model_id: model_info}
# model_info holds the parameter context plus its metadata; the server owns
# the context and hands it to the engine for every call.
active_models: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# Dataset - loaded once at startup for efficiency, (images, labels) pairs
training_data: Any = None
validation_data: Any = None
test_data: Any = None


# ============================================================================
# DATA LOADING
# ============================================================================

def load_mnist_data() -> None:
    """
    Load the dataset into global variables.

    Called once at startup to avoid reloading data for each training run.
    """
    global training_data, validation_data, test_data

    logger.info("Loading MNIST data...")
    try:
        training_data, validation_data, test_data = (
            mnist_loader.load_data_wrapper()
        )
        logger.info(
            f"Data loaded: {len(training_data[1])} training, "
            f"{len(validation_data[1])} validation, {len(test_data[1])} test"
        )
    except Exception as e:
        logger.exception(f"Error loading MNIST data: {e}")
        raise


def reload_saved_models() -> None:
    """
    Reload all saved models from the database into memory.

    Called at startup to restore models that were saved before the
    application was restarted. This keeps active_models in sync with
    the database.
    """
    saved_models = list_saved_models()

    if not saved_models:
        logger.info("No saved models to reload")
        return

    loaded_count = 0
    for model_info in saved_models:
        model_id = model_info['model_id']
        loaded = load_model(model_id)
        if loaded is None:
            logger.warning(f"Failed to load model {model_id}")
            continue

        params, metadata = loaded
        active_models[model_id] = {
            'params': params,
            'metadata': metadata,
            'hidden_nodes': params.hidden_size,
            'trained': model_info['trained'],
            'accuracy': model_info['accuracy']
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} model(s) from database")


load_mnist_data()
reload_saved_models()

# Clear any stale training jobs from before restart
# (Training jobs can't continue after a restart, so start fresh)
training_jobs.clear()
logger.info("Cleared stale training jobs")


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def cleanup_old_models_task() -> None:
    """
    Background task that runs immediately on startup, then every 24 hours to:
    - Delete models older than 2 days from the database
    - Sync in-memory models with the database
    - Remove completed/failed training jobs from memory
    """
    logger.info("Cleanup task started")

    while True:
        try:
            logger.info("Starting automatic cleanup of old models...")
            deleted_count = delete_old_models(days=2)

            if deleted_count > 0:
                logger.info(f"Cleanup completed: deleted {deleted_count} model(s)")
                sync_models_with_database()
            elif deleted_count == 0:
                logger.info("Cleanup completed: no old models found to delete")
            else:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during model cleanup: {e}")
            # Wait a bit before retrying on error (don't spam)
            gevent.sleep(3600)


def sync_models_with_database() -> None:
    """Drop saved models from memory once they are gone from the database."""
    saved_ids = {model['model_id'] for model in list_saved_models()}
    stale = [
        mid for mid, info in active_models.items()
        if info['trained'] and mid not in saved_ids and not is_training(mid)
    ]
    for mid in stale:
        del active_models[mid]
        logger.info(f"Removed model {mid} from memory (deleted from database)")


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    This prevents the training_jobs dictionary from growing indefinitely.
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    Uses gevent.spawn() directly instead of socketio.start_background_task()
    to ensure it works both when running directly and under gunicorn.
    Calling it more than once has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_models_task)


# Start the cleanup task when module is loaded (works with gunicorn)
start_cleanup_task()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in np.asarray(array).flatten()]


def is_training(model_id: Optional[str] = None) -> bool:
    """True if any job (or the job for ``model_id``) is pending or training."""
    return any(
        job.get('status') in ('pending', 'training')
        and (model_id is None or job['model_id'] == model_id)
        for job in training_jobs.values()
    )


def model_summary(model_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'model_id': model_id,
        'hidden_nodes': info['hidden_nodes'],
        'trained': info['trained'],
        'accuracy': info['accuracy'],
        'metadata': info.get('metadata')
    }


def create_digit_image(image_data: np.ndarray, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image_data: 784-element array representing the 28x28 digit image
        predicted: The digit the model predicted (0-9)
        actual: The correct digit (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(np.asarray(image_data).reshape(28, 28), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Returns counts of active models and training jobs that are
    currently in progress (status='pending' or 'training').
    """
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ('pending', 'training')
    )

    return jsonify({
        'status': 'online',
        'active_models': len(active_models),
        'training_jobs': active_training,
        'dataset': {
            'training': len(training_data[1]) if training_data else 0,
            'test': len(test_data[1]) if test_data else 0
        }
    }), 200


@app.route('/api/models', methods=['POST'])
def create_model():
    """
    Create a new, freshly initialized model.

    Request body (optional):
        {'hidden_size': 128}  # defaults to 128

    Returns:
        JSON with model_id, hidden_nodes, and status
    """
    data = request.get_json(silent=True) or {}
    hidden_size = data.get('hidden_size', network.DEFAULT_HIDDEN_SIZE)

    if not isinstance(hidden_size, int) or isinstance(hidden_size, bool) \
            or not 1 <= hidden_size <= 1024:
        logger.warning(f"Invalid hidden size requested: {hidden_size}")
        return jsonify({
            'error': 'hidden_size must be an integer between 1 and 1024'
        }), 400

    model_id = str(uuid.uuid4())
    params = network.initialize_parameters(hidden_size)

    active_models[model_id] = {
        'params': params,
        'metadata': None,
        'hidden_nodes': hidden_size,
        'trained': False,
        'accuracy': None
    }

    logger.info(f"Created model {model_id} with hidden_size={hidden_size}")

    return jsonify({
        'model_id': model_id,
        'hidden_nodes': hidden_size,
        'status': 'created'
    }), 201


@app.route('/api/models/<model_id>/train', methods=['POST'])
def train_model(model_id: str):
    """
    Start training a model in the background.

    Only one training job runs at a time.

    Request body (all optional):
        {
            'epochs': 5,
            'batch_size': 32,
            'learning_rate': 0.1,
            'l2_lambda': 0.0001,
            'resume': false      # continue from current parameters
        }

    Returns:
        JSON with job_id, model_id, and status
    """
    if model_id not in active_models:
        logger.warning(f"Training requested for non-existent model: {model_id}")
        return jsonify({'error': 'Model not found'}), 404

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', 5)
    batch_size = data.get('batch_size', 32)
    learning_rate = data.get('learning_rate', 0.1)
    l2_lambda = data.get('l2_lambda', network.L2_LAMBDA)
    resume = bool(data.get('resume', False))

    # Validate training parameters
    if not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not isinstance(batch_size, int) or batch_size < 1:
        return jsonify({'error': 'batch_size must be a positive integer'}), 400
    if not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if not isinstance(l2_lambda, (int, float)) or l2_lambda < 0:
        return jsonify({'error': 'l2_lambda must be a non-negative number'}), 400

    if is_training():
        return jsonify({'error': 'A training job is already running'}), 409

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'model_id': model_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for model {model_id}: "
        f"epochs={epochs}, batch_size={batch_size}, lr={learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_model_task,
        model_id, job_id, epochs, batch_size, learning_rate, l2_lambda, resume
    )

    return jsonify({
        'job_id': job_id,
        'model_id': model_id,
        'status': 'training_started'
    }), 202


def train_model_task(
    model_id: str,
    job_id: str,
    epochs: int,
    batch_size: int,
    learning_rate: float,
    l2_lambda: float = network.L2_LAMBDA,
    resume: bool = False
) -> None:
    """
    Background task that trains a model.

    Sends progress updates via WebSocket as training progresses.
    """
    info = active_models[model_id]
    start_time = time.time()

    def on_progress(epoch: int, accuracy: float) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (epoch / epochs) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress
        training_jobs[job_id]['accuracy'] = accuracy

        # Send update to connected clients via WebSocket
        socketio.emit('training_update', {
            'job_id': job_id,
            'model_id': model_id,
            'epoch': epoch,
            'total_epochs': epochs,
            'accuracy': accuracy,
            'elapsed_time': time.time() - start_time,
            'progress': progress
        })

        # Let gevent send the message immediately
        gevent.sleep(0)

    # Cooperative multitasking: lets HTTP requests run between batches
    def yield_to_other_tasks() -> None:
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        training_jobs[job_id]['status'] = 'training'

        trainer = Trainer(
            training_data[0], training_data[1], test_data[0], test_data[1]
        )
        result = trainer.train_model(
            epochs,
            learning_rate,
            batch_size,
            hidden_size=info['hidden_nodes'],
            on_progress=on_progress,
            yield_func=yield_to_other_tasks,
            initial_params=info['params'] if resume else None,
            l2_lambda=l2_lambda
        )

        params = result['params']
        metadata = result['metadata']
        accuracy = metadata['accuracy']

        # The new session replaces the model's parameter context
        info['params'] = params
        info['metadata'] = metadata
        info['trained'] = True
        info['accuracy'] = accuracy

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100

        save_model(params, model_id, metadata, trained=True)

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        # Notify clients that training is complete
        socketio.emit('training_complete', {
            'job_id': job_id,
            'model_id': model_id,
            'status': 'completed',
            'accuracy': float(accuracy),
            'metadata': metadata,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'model_id': model_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/models', methods=['GET'])
def list_models():
    """List all available models (both in-memory and saved to disk)."""
    in_memory = [
        dict(model_summary(mid, info), status='in_memory')
        for mid, info in active_models.items()
    ]

    # Get saved models, excluding duplicates already in memory
    saved_only = []
    for model in list_saved_models():
        if model['model_id'] not in active_models:
            model['status'] = 'saved'
            saved_only.append(model)

    logger.debug(f"Listing models: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'models': in_memory + saved_only}), 200


@app.route('/api/models/<model_id>', methods=['DELETE'])
def delete_model_endpoint(model_id: str):
    """Delete a model from both memory and disk."""
    if is_training(model_id):
        return jsonify({'error': 'Model is being trained'}), 409

    deleted_from_memory = False
    if model_id in active_models:
        del active_models[model_id]
        deleted_from_memory = True

    deleted_from_disk = delete_model(model_id)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent model: {model_id}")
        return jsonify({'error': 'Model not found'}), 404

    logger.info(f"Deleted model {model_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'model_id': model_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/models', methods=['DELETE'])
def delete_all_models():
    """Delete all models from both memory and disk."""
    if is_training():
        return jsonify({'error': 'A training job is running'}), 409

    saved_ids = [model['model_id'] for model in list_saved_models()]
    all_model_ids = list(set(active_models) | set(saved_ids))

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for model_id in all_model_ids:
        if model_id in active_models:
            del active_models[model_id]
            deleted_from_memory_count += 1

        if delete_model(model_id):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all models: {len(all_model_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_model_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count,
        'message': f'Successfully deleted {len(all_model_ids)} model(s)'
    }), 200


@app.route('/api/models/cleanup', methods=['POST'])
def cleanup_old_models_endpoint():
    """
    Manually trigger cleanup of models older than specified days.

    Request body (optional):
        {'days': 2}  # defaults to 2

    Returns:
        JSON with deleted_count, days, and message
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    try:
        deleted_count = delete_old_models(days=int(days))

        if deleted_count == -1:
            return jsonify({'error': 'Error occurred during cleanup'}), 500

        sync_models_with_database()
        logger.info(f"Manual cleanup: deleted {deleted_count} model(s) older than {days} day(s)")

        return jsonify({
            'deleted_count': deleted_count,
            'days': days,
            'message': f'Successfully deleted {deleted_count} model(s) older than {days} day(s)'
        }), 200

    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception(f"Error during manual cleanup: {e}")
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# PREDICTION ENDPOINTS
# ============================================================================

@app.route('/api/models/<model_id>/predict', methods=['POST'])
def predict(model_id: str):
    """
    Predict the digit in an image.

    Request body, with either pixels or canvas:
        {
            'pixels': [...784 values in [0, 1]...],
            'canvas': [[...], ...],  # square drawing, side a multiple of 28
            'invert': true,          # canvas is dark ink on a light background
            'preprocess': false      # center/scale/blur a hand-drawn digit first
        }

    Returns:
        JSON with predicted_digit and the 10 confidence values
    """
    if model_id not in active_models:
        return jsonify({'error': 'Model not found'}), 404

    data = request.get_json(silent=True) or {}
    pixels = data.get('pixels')
    canvas = data.get('canvas')
    if pixels is None and canvas is None:
        return jsonify({'error': 'pixels or canvas is required'}), 400

    try:
        if canvas is not None:
            image = canvas_to_input(canvas, invert=bool(data.get('invert', True)))
        else:
            image = network.as_input_vector(pixels)
        if data.get('preprocess', False):
            image = preprocess_digit(image)
        digit, confidence = network.predict_with_confidence(
            image, active_models[model_id]['params']
        )
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'model_id': model_id,
        'predicted_digit': digit,
        'confidence': array_to_float_list(confidence)
    }), 200


@app.route('/api/models/<model_id>/confusion_matrix', methods=['GET'])
def get_confusion_matrix(model_id: str):
    """Confusion matrix of the model on the full test set."""
    if model_id not in active_models:
        return jsonify({'error': 'Model not found'}), 404

    matrix = network.confusion_matrix(
        test_data[0], test_data[1], active_models[model_id]['params']
    )
    correct = int(np.trace(matrix))
    total = int(matrix.sum())

    return jsonify({
        'model_id': model_id,
        'matrix': matrix.tolist(),
        'correct': correct,
        'total': total,
        'accuracy': correct / total
    }), 200


# ============================================================================
# EXPORT / IMPORT ENDPOINTS
# ============================================================================

@app.route('/api/models/<model_id>/export', methods=['GET'])
def export_model_endpoint(model_id: str):
    """Return the model's parameter/metadata bundle as JSON."""
    if model_id not in active_models:
        return jsonify({'error': 'Model not found'}), 404

    info = active_models[model_id]
    payload = export_model(info['params'], info['metadata'])
    return app.response_class(payload, status=200, mimetype='application/json')


@app.route('/api/models/import', methods=['POST'])
def import_model_endpoint():
    """
    Restore a model from an exported bundle without retraining.

    Request body: the JSON bundle returned by the export endpoint.
    """
    bundle = request.get_json(silent=True)
    if bundle is None:
        return jsonify({'error': 'Request body must be a JSON model bundle'}), 400

    try:
        params, metadata = import_model(bundle)
    except ValueError as e:
        logger.warning(f"Rejected model bundle: {e}")
        return jsonify({'error': str(e)}), 400

    model_id = str(uuid.uuid4())
    trained = metadata.get('accuracy') is not None
    active_models[model_id] = {
        'params': params,
        'metadata': metadata,
        'hidden_nodes': params.hidden_size,
        'trained': trained,
        'accuracy': metadata.get('accuracy')
    }
    save_model(params, model_id, metadata, trained=trained)

    logger.info(f"Imported model {model_id} with hidden_nodes={params.hidden_size}")

    return jsonify({
        'model_id': model_id,
        'hidden_nodes': params.hidden_size,
        'metadata': metadata,
        'status': 'imported'
    }), 201


# ============================================================================
# EXAMPLE ENDPOINTS
# ============================================================================

def find_example(model_id: str, want_correct: bool, max_attempts: int):
    """
    Find a random test example that the model gets right (or wrong).

    Returns a Flask response tuple.
    """
    kind = 'successful' if want_correct else 'unsuccessful'

    if model_id not in active_models:
        logger.warning(f"{kind.capitalize()} example requested for non-existent model: {model_id}")
        return jsonify({'error': 'Model not found'}), 404

    if test_data is None or len(test_data[1]) == 0:
        logger.error("Test data not loaded")
        return jsonify({'error': 'Test data not available'}), 500

    params = active_models[model_id]['params']
    images, labels = test_data

    for attempt in range(max_attempts):
        index = int(np.random.randint(0, len(labels)))
        x, y = images[index], int(labels[index])

        predicted_digit, confidence = network.predict_with_confidence(x, params)

        if (predicted_digit == y) == want_correct:
            logger.debug(f"Found {kind} example on attempt {attempt + 1}")

            return jsonify({
                'model_id': model_id,
                'example_index': index,
                'predicted_digit': predicted_digit,
                'actual_digit': y,
                'image_data': create_digit_image(x, predicted_digit, y),
                'output_weights': params.weights2.tolist(),
                'confidence': array_to_float_list(confidence)
            }), 200

    logger.warning(f"No {kind} example found after {max_attempts} attempts")
    return jsonify({
        'error': f'No {kind} example found after {max_attempts} attempts'
    }), 404


@app.route('/api/models/<model_id>/successful_example', methods=['GET'])
def get_successful_example(model_id: str):
    """Return a random example where the model predicted correctly."""
    return find_example(model_id, want_correct=True, max_attempts=100)


@app.route('/api/models/<model_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(model_id: str):
    """Return a random example where the model predicted incorrectly."""
    return find_example(model_id, want_correct=False, max_attempts=200)


# ============================================================================
# STATIC FILE SERVING
# ============================================================================

@app.route('/')
def index():
    """Serve the main frontend page."""
    return send_from_directory(app.static_folder, 'index.html')


@app.route('/<path:path>')
def serve_static(path: str):
    """Serve static files (CSS, JS, images, etc.)."""
    return send_from_directory(app.static_folder, path)

# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    # Create static directory if it doesn't exist
    static_dir = os.path.join(os.path.dirname(__file__), 'static')
    if not os.path.exists(static_dir):
        os.makedirs(static_dir)
        logger.info(f"Created static directory: {static_dir}")

    # Check if running in cloud environment (Railway, etc.)
    is_cloud = bool(os.environ.get('RAILWAY_STATIC_URL') or os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    # Start the server with WebSocket support
    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_cloud,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            logger.info("You can use: pkill -f 'python -m digitnet.api_server'")
            sys.exit(1)
        else:
            raise
