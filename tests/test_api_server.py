"""
test_api_server.py
~~~~~~~~~~~~~~~~~~

Tests for the REST endpoints. The server runs on synthetic digits and a
temporary model directory (see conftest.py).
"""

import gevent
import numpy as np
import pytest

from digitnet import api_server
from digitnet.model_persistence import load_model
from digitnet.preprocessing import canvas_to_input


@pytest.fixture
def client():
    api_server.app.config['TESTING'] = True
    # Let the startup cleanup greenlet run its first pass before any job exists
    gevent.sleep(0)
    with api_server.app.test_client() as client:
        yield client
    api_server.active_models.clear()
    api_server.training_jobs.clear()


@pytest.fixture
def background_tasks(monkeypatch):
    """Record background tasks instead of spawning them."""
    started = []
    monkeypatch.setattr(
        api_server.socketio,
        'start_background_task',
        lambda target, *args: started.append((target, args))
    )
    return started


def create_model(client, hidden_size=16):
    response = client.post('/api/models', json={'hidden_size': hidden_size})
    assert response.status_code == 201
    return response.get_json()['model_id']


def train_directly(model_id, job_id='job-1', epochs=1):
    """Run a training job synchronously, the way the background task would."""
    api_server.training_jobs[job_id] = {
        'model_id': model_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }
    api_server.train_model_task(model_id, job_id, epochs, 32, 0.1)
    return api_server.training_jobs[job_id]


@pytest.mark.unit
class TestStatusAndModels:
    """Test status and model management endpoints."""

    def test_status(self, client):
        response = client.get('/api/status')
        data = response.get_json()

        assert response.status_code == 200
        assert data['status'] == 'online'
        assert data['dataset']['training'] > 0
        assert data['dataset']['test'] > 0

    def test_create_model(self, client):
        response = client.post('/api/models', json={'hidden_size': 32})
        data = response.get_json()

        assert response.status_code == 201
        assert data['hidden_nodes'] == 32
        assert data['model_id'] in api_server.active_models

    def test_create_model_default_size(self, client):
        response = client.post('/api/models')
        assert response.status_code == 201
        assert response.get_json()['hidden_nodes'] == 128

    @pytest.mark.parametrize("hidden_size", [0, 2048, "64", 1.5, True])
    def test_create_model_invalid_size(self, client, hidden_size):
        response = client.post('/api/models', json={'hidden_size': hidden_size})
        assert response.status_code == 400

    def test_list_models(self, client):
        model_id = create_model(client)
        models = client.get('/api/models').get_json()['models']

        listed = next(m for m in models if m['model_id'] == model_id)
        assert listed['status'] == 'in_memory'
        assert listed['trained'] is False

    def test_delete_model(self, client):
        model_id = create_model(client)

        response = client.delete(f'/api/models/{model_id}')
        assert response.status_code == 200
        assert response.get_json()['deleted_from_memory'] is True
        assert client.delete(f'/api/models/{model_id}').status_code == 404

    def test_cleanup_rejects_negative_days(self, client):
        response = client.post('/api/models/cleanup', json={'days': -1})
        assert response.status_code == 400


@pytest.mark.unit
class TestPredictEndpoint:
    """Test prediction requests."""

    def test_predict(self, client):
        model_id = create_model(client)
        response = client.post(
            f'/api/models/{model_id}/predict',
            json={'pixels': [0.0] * 784}
        )
        data = response.get_json()

        assert response.status_code == 200
        assert 0 <= data['predicted_digit'] <= 9
        assert len(data['confidence']) == 10
        assert sum(data['confidence']) == pytest.approx(1.0)

    def test_predict_with_preprocessing(self, client):
        model_id = create_model(client)
        image = np.zeros((28, 28))
        image[4:20, 6] = 1.0
        response = client.post(
            f'/api/models/{model_id}/predict',
            json={'pixels': image.reshape(784).tolist(), 'preprocess': True}
        )
        assert response.status_code == 200

    def test_predict_from_canvas(self, client):
        """Test that a drawing is downsampled the same way as canvas_to_input."""
        model_id = create_model(client)
        canvas = np.full((56, 56), 255.0)
        canvas[8:40, 20:24] = 0.0

        from_canvas = client.post(
            f'/api/models/{model_id}/predict',
            json={'canvas': canvas.tolist()}
        )
        from_pixels = client.post(
            f'/api/models/{model_id}/predict',
            json={'pixels': canvas_to_input(canvas).tolist()}
        )

        assert from_canvas.status_code == 200
        assert from_canvas.get_json()['confidence'] == from_pixels.get_json()['confidence']

    def test_predict_from_canvas_with_preprocessing(self, client):
        model_id = create_model(client)
        canvas = np.full((280, 280), 255.0)
        canvas[40:200, 60:80] = 0.0
        response = client.post(
            f'/api/models/{model_id}/predict',
            json={'canvas': canvas.tolist(), 'preprocess': True}
        )
        assert response.status_code == 200
        assert len(response.get_json()['confidence']) == 10

    def test_predict_rejects_bad_canvas(self, client):
        model_id = create_model(client)
        response = client.post(
            f'/api/models/{model_id}/predict',
            json={'canvas': np.zeros((30, 30)).tolist()}
        )
        assert response.status_code == 400
        assert 'multiple of 28' in response.get_json()['error']

    def test_predict_wrong_length(self, client):
        model_id = create_model(client)
        response = client.post(
            f'/api/models/{model_id}/predict',
            json={'pixels': [0.0] * 100}
        )
        assert response.status_code == 400
        assert '784' in response.get_json()['error']

    def test_predict_missing_pixels(self, client):
        model_id = create_model(client)
        response = client.post(f'/api/models/{model_id}/predict', json={})
        assert response.status_code == 400

    def test_predict_unknown_model(self, client):
        response = client.post('/api/models/nope/predict', json={'pixels': [0.0] * 784})
        assert response.status_code == 404


@pytest.mark.unit
class TestTrainEndpoint:
    """Test starting training jobs."""

    def test_unknown_model(self, client, background_tasks):
        assert client.post('/api/models/nope/train', json={}).status_code == 404
        assert background_tasks == []

    @pytest.mark.parametrize("body", [
        {'epochs': 0},
        {'epochs': 'five'},
        {'batch_size': -1},
        {'learning_rate': 0},
        {'l2_lambda': -0.5},
    ])
    def test_invalid_parameters(self, client, background_tasks, body):
        model_id = create_model(client)
        response = client.post(f'/api/models/{model_id}/train', json=body)
        assert response.status_code == 400
        assert background_tasks == []

    def test_starts_job(self, client, background_tasks):
        model_id = create_model(client)
        response = client.post(f'/api/models/{model_id}/train', json={'epochs': 2})
        data = response.get_json()

        assert response.status_code == 202
        assert data['status'] == 'training_started'
        assert len(background_tasks) == 1
        assert background_tasks[0][1][:3] == (model_id, data['job_id'], 2)

        status = client.get(f"/api/training/{data['job_id']}").get_json()
        assert status['status'] == 'pending'

    def test_one_job_at_a_time(self, client, background_tasks):
        first = create_model(client)
        second = create_model(client)

        assert client.post(f'/api/models/{first}/train', json={}).status_code == 202
        assert client.post(f'/api/models/{second}/train', json={}).status_code == 409
        assert client.delete(f'/api/models/{first}').status_code == 409

    def test_unknown_job(self, client):
        assert client.get('/api/training/nope').status_code == 404


@pytest.mark.integration
class TestTrainedModel:
    """Train a model synchronously and use it through the API."""

    def test_training_task_completes_and_saves(self, client):
        model_id = create_model(client)
        job = train_directly(model_id)

        assert job['status'] == 'completed'
        assert job['progress'] == 100
        assert 0.0 <= job['accuracy'] <= 1.0

        info = api_server.active_models[model_id]
        assert info['trained'] is True
        assert info['metadata']['epochs'] == 1

        saved = load_model(model_id)
        assert saved is not None
        assert np.array_equal(saved[0].weights1, info['params'].weights1)

    def test_training_task_records_failure(self, client):
        model_id = create_model(client)
        api_server.training_jobs['bad'] = {'model_id': model_id, 'status': 'pending'}

        api_server.train_model_task(model_id, 'bad', 0, 32, 0.1)

        assert api_server.training_jobs['bad']['status'] == 'failed'
        assert 'epochs' in api_server.training_jobs['bad']['error']

    def test_confusion_matrix(self, client):
        model_id = create_model(client)
        train_directly(model_id)

        data = client.get(f'/api/models/{model_id}/confusion_matrix').get_json()

        assert len(data['matrix']) == 10
        assert all(len(row) == 10 for row in data['matrix'])
        assert data['total'] == len(api_server.test_data[1])
        assert data['accuracy'] == api_server.active_models[model_id]['accuracy']

    def test_export_then_import(self, client):
        """Test that an imported bundle predicts exactly like the original."""
        model_id = create_model(client)
        train_directly(model_id)

        exported = client.get(f'/api/models/{model_id}/export')
        assert exported.status_code == 200
        bundle = exported.get_json()
        assert bundle['metadata']['epochs'] == 1

        imported = client.post('/api/models/import', json=bundle)
        assert imported.status_code == 201
        new_id = imported.get_json()['model_id']
        assert new_id != model_id

        pixels = api_server.test_data[0][0].tolist()
        original = client.post(f'/api/models/{model_id}/predict', json={'pixels': pixels})
        restored = client.post(f'/api/models/{new_id}/predict', json={'pixels': pixels})
        assert original.get_json()['confidence'] == restored.get_json()['confidence']

    def test_import_rejects_bad_bundle(self, client):
        response = client.post('/api/models/import', json={'weights1': [[0.0]]})
        assert response.status_code == 400

    def test_successful_example(self, client):
        model_id = create_model(client)
        train_directly(model_id)

        response = client.get(f'/api/models/{model_id}/successful_example')
        data = response.get_json()

        assert response.status_code == 200
        assert data['predicted_digit'] == data['actual_digit']
        assert data['image_data']
        assert len(data['output_weights']) == 16
