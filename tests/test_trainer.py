"""
test_trainer.py
~~~~~~~~~~~~~~~

Tests for the training session state machine and its host callbacks.
"""

import numpy as np
import pytest

from digitnet.model_persistence import export_model, import_model
from digitnet.network import (
    ModelNotInitializedError,
    ShapeError,
    evaluate_accuracy,
    initialize_parameters
)
from digitnet.trainer import (
    COMPLETED,
    FAILED,
    IDLE,
    Trainer,
    build_metadata
)


@pytest.fixture
def two_class_trainer(two_class_data):
    images, labels = two_class_data
    return Trainer(images, labels, images, labels, rng=np.random.default_rng(0))


@pytest.mark.unit
class TestTrainerSessions:
    """Test one training session at a time."""

    def test_starts_idle(self, two_class_trainer):
        assert two_class_trainer.state == IDLE
        assert two_class_trainer.params is None

    def test_learns_separable_data(self, two_class_trainer):
        """Test that two clearly separated classes are learned."""
        result = two_class_trainer.train_model(10, 0.1, 8, hidden_size=16)

        assert two_class_trainer.state == COMPLETED
        assert result['metadata']['accuracy'] == 1.0
        assert result['params'] is two_class_trainer.params

    def test_progress_called_once_per_epoch(self, two_class_trainer):
        """Test that on_progress sees epochs 1..N with accuracies in [0, 1]."""
        calls = []
        two_class_trainer.train_model(
            3, 0.1, 8, hidden_size=16,
            on_progress=lambda epoch, accuracy: calls.append((epoch, accuracy))
        )

        assert [epoch for epoch, _ in calls] == [1, 2, 3]
        assert all(0.0 <= accuracy <= 1.0 for _, accuracy in calls)

    def test_yield_after_every_batch_and_epoch(self, two_class_trainer):
        """Test that 40 examples in batches of 16 yield 3 + 1 times per epoch."""
        yields = []
        two_class_trainer.train_model(
            2, 0.1, 16, hidden_size=8, yield_func=lambda: yields.append(1)
        )
        assert len(yields) == (3 + 1) * 2

    def test_should_stop_checked_between_epochs(self, two_class_trainer):
        """Test that should_stop is only asked before another epoch starts."""
        checks = []

        def should_stop():
            checks.append(1)
            return False

        two_class_trainer.train_model(3, 0.1, 8, hidden_size=8, should_stop=should_stop)
        assert len(checks) == 2

    def test_stop_early(self, two_class_trainer):
        """Test that stopping keeps the completed epochs and still evaluates."""
        calls = []
        result = two_class_trainer.train_model(
            5, 0.1, 8, hidden_size=8,
            on_progress=lambda epoch, accuracy: calls.append(epoch),
            should_stop=lambda: True
        )

        assert calls == [1]
        assert two_class_trainer.state == COMPLETED
        assert result['metadata']['epochs'] == 1
        assert 0.0 <= result['metadata']['accuracy'] <= 1.0

    def test_metadata_describes_session(self, two_class_trainer):
        result = two_class_trainer.train_model(2, 0.05, 4, hidden_size=12)
        metadata = result['metadata']

        assert metadata['epochs'] == 2
        assert metadata['learning_rate'] == 0.05
        assert metadata['batch_size'] == 4
        assert metadata['hidden_nodes'] == 12
        assert metadata['trained_at'].endswith('+00:00')
        assert two_class_trainer.metadata is metadata

    def test_seeded_runs_are_identical(self, two_class_data):
        """Test that the same seed gives the same parameters and accuracy."""
        images, labels = two_class_data
        results = []
        for _ in range(2):
            trainer = Trainer(images, labels, images, labels,
                              rng=np.random.default_rng(21))
            results.append(trainer.train_model(2, 0.1, 8, hidden_size=8))

        first, second = results
        for a, b in zip(first['params'].as_tuple(), second['params'].as_tuple()):
            assert np.array_equal(a, b)
        assert first['metadata']['accuracy'] == second['metadata']['accuracy']

    def test_resume_from_initial_params(self, two_class_trainer, rng):
        """Test that a session continues from supplied parameters in place."""
        params = initialize_parameters(8, rng)
        before = params.weights1.copy()

        result = two_class_trainer.train_model(1, 0.1, 8, initial_params=params)

        assert result['params'] is params
        assert not np.array_equal(params.weights1, before)

    def test_can_train_again_after_completion(self, two_class_trainer):
        two_class_trainer.train_model(1, 0.1, 8, hidden_size=8)
        two_class_trainer.train_model(1, 0.1, 8, hidden_size=8)
        assert two_class_trainer.state == COMPLETED

    def test_rejects_concurrent_session(self, two_class_trainer):
        """Test that a second session cannot start while one is running."""
        errors = []

        def on_progress(epoch, accuracy):
            try:
                two_class_trainer.train_model(1, 0.1, 8)
            except RuntimeError as e:
                errors.append(str(e))

        two_class_trainer.train_model(2, 0.1, 8, hidden_size=8, on_progress=on_progress)

        assert len(errors) == 2
        assert "already in progress" in errors[0]
        assert two_class_trainer.state == COMPLETED

    def test_evaluate_requires_parameters(self, two_class_trainer):
        with pytest.raises(ModelNotInitializedError):
            two_class_trainer.evaluate()

    def test_load_parameters_then_evaluate(self, two_class_trainer, rng):
        params = initialize_parameters(8, rng)
        two_class_trainer.load_parameters(params, {'epochs': 0})

        images, labels = two_class_trainer.test_images, two_class_trainer.test_labels
        assert two_class_trainer.evaluate() == evaluate_accuracy(images, labels, params)


@pytest.mark.unit
class TestTrainerFailures:
    """Test that failures leave the trainer in the failed state."""

    def test_empty_training_set(self):
        trainer = Trainer([], [], [], [])
        with pytest.raises(ShapeError):
            trainer.train_model(1, 0.1, 8)
        assert trainer.state == FAILED
        assert isinstance(trainer.error, ShapeError)

    @pytest.mark.parametrize("kwargs", [
        {'epochs': 0, 'learning_rate': 0.1, 'batch_size': 8},
        {'epochs': 1, 'learning_rate': 0.1, 'batch_size': 0},
        {'epochs': 1, 'learning_rate': -0.1, 'batch_size': 8},
        {'epochs': 1.5, 'learning_rate': 0.1, 'batch_size': 8},
    ])
    def test_invalid_hyperparameters(self, two_class_trainer, kwargs):
        with pytest.raises(ValueError):
            two_class_trainer.train_model(**kwargs)
        assert two_class_trainer.state == FAILED

    def test_reset_after_failure(self, two_class_trainer):
        with pytest.raises(ValueError):
            two_class_trainer.train_model(0, 0.1, 8)

        two_class_trainer.reset()
        assert two_class_trainer.state == IDLE
        assert two_class_trainer.error is None

    def test_mismatched_initial_params(self, two_class_trainer, rng):
        params = initialize_parameters(8, rng)
        params.biases1 = np.zeros(3)
        with pytest.raises(ShapeError):
            two_class_trainer.train_model(1, 0.1, 8, initial_params=params)


@pytest.mark.integration
class TestEndToEnd:
    """Train on synthetic digits, then export and re-import the model."""

    def test_train_export_import(self, synthetic_split):
        (train_images, train_labels), (test_images, test_labels) = synthetic_split
        trainer = Trainer(train_images, train_labels, test_images, test_labels,
                          rng=np.random.default_rng(42))

        epochs_seen = []
        result = trainer.train_model(
            3, 0.05, 16, hidden_size=32,
            on_progress=lambda epoch, accuracy: epochs_seen.append(epoch)
        )
        accuracy = result['metadata']['accuracy']

        assert epochs_seen == [1, 2, 3]
        assert isinstance(accuracy, float)
        assert 0.0 <= accuracy <= 1.0
        assert accuracy == evaluate_accuracy(test_images, test_labels, result['params'])

        params, metadata = import_model(export_model(result['params'], result['metadata']))

        assert evaluate_accuracy(test_images, test_labels, params) == accuracy
        assert metadata == result['metadata']


@pytest.mark.unit
def test_build_metadata_keeps_given_timestamp():
    metadata = build_metadata(1, 0.1, 32, 64, None, trained_at='2024-01-01T00:00:00+00:00')
    assert metadata == {
        'epochs': 1,
        'learning_rate': 0.1,
        'batch_size': 32,
        'hidden_nodes': 64,
        'trained_at': '2024-01-01T00:00:00+00:00',
        'accuracy': None
    }
