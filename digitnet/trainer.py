"""
trainer.py
~~~~~~~~~~

Mini-batch training loop for the digit network.

A ``Trainer`` owns one parameter context at a time and moves through the
states idle -> running -> completed/failed. Progress is reported through a
synchronous ``on_progress(epoch, accuracy)`` callback once per finished epoch,
and control is handed back to the host through ``yield_func`` after every batch
and every epoch so that a cooperative server (gevent) stays responsive.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from digitnet.network import (
    DEFAULT_HIDDEN_SIZE,
    DROPOUT_RATE,
    L2_LAMBDA,
    NetworkParameters,
    ModelNotInitializedError,
    check_dataset,
    evaluate_accuracy,
    evaluate_on_subset,
    initialize_parameters,
    train_batch,
)

logger = logging.getLogger(__name__)

IDLE = 'idle'
RUNNING = 'running'
COMPLETED = 'completed'
FAILED = 'failed'

EVAL_SAMPLE_SIZE = 500

ProgressCallback = Callable[[int, float], None]


def build_metadata(
    epochs: int,
    learning_rate: float,
    batch_size: int,
    hidden_nodes: int,
    accuracy: Optional[float],
    trained_at: Optional[str] = None
) -> Dict[str, Any]:
    """Descriptive metadata stored alongside trained parameters."""
    if trained_at is None:
        trained_at = datetime.now(timezone.utc).isoformat()
    return {
        'epochs': epochs,
        'learning_rate': learning_rate,
        'batch_size': batch_size,
        'hidden_nodes': hidden_nodes,
        'trained_at': trained_at,
        'accuracy': accuracy
    }


class Trainer:
    """
    Drives training sessions over a fixed train/test split.

    Only one session runs at a time; starting a second one while the first
    is running raises ``RuntimeError``.
    """

    def __init__(
        self,
        train_images: Sequence[Sequence[float]],
        train_labels: Sequence[int],
        test_images: Sequence[Sequence[float]],
        test_labels: Sequence[int],
        rng: Optional[np.random.Generator] = None
    ):
        self.train_images, self.train_labels = check_dataset(
            train_images, train_labels, allow_empty=True
        )
        self.test_images, self.test_labels = check_dataset(
            test_images, test_labels, allow_empty=True
        )
        self.rng = rng if rng is not None else np.random.default_rng()

        self.state = IDLE
        self.params: Optional[NetworkParameters] = None
        self.metadata: Optional[Dict[str, Any]] = None
        self.error: Optional[BaseException] = None

    def reset(self) -> None:
        """Return to idle after a completed or failed session."""
        if self.state == RUNNING:
            raise RuntimeError("cannot reset while training is running")
        self.state = IDLE
        self.error = None

    def load_parameters(
        self,
        params: NetworkParameters,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Replace the current parameters, e.g. with a previously saved model."""
        if self.state == RUNNING:
            raise RuntimeError("cannot replace parameters while training")
        params.validate()
        self.params = params
        self.metadata = metadata

    def evaluate(self) -> float:
        """Full test-set accuracy of the current parameters."""
        if self.params is None:
            raise ModelNotInitializedError()
        return evaluate_accuracy(self.test_images, self.test_labels, self.params)

    def train_model(
        self,
        epochs: int,
        learning_rate: float,
        batch_size: int,
        hidden_size: int = DEFAULT_HIDDEN_SIZE,
        on_progress: Optional[ProgressCallback] = None,
        yield_func: Optional[Callable[[], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        initial_params: Optional[NetworkParameters] = None,
        l2_lambda: float = L2_LAMBDA,
        dropout_rate: float = DROPOUT_RATE,
        eval_sample_size: int = EVAL_SAMPLE_SIZE
    ) -> Dict[str, Any]:
        """
        Run one training session.

        Args:
            epochs: Number of passes over the training set
            learning_rate: Gradient-descent step size
            batch_size: Mini-batch size (the last batch may be smaller)
            hidden_size: Hidden units for a fresh initialization
            on_progress: Called as ``on_progress(epoch, accuracy)`` after
                every completed epoch, epochs numbered from 1
            yield_func: Called after each batch and each epoch to give the
                host event loop a chance to run
            should_stop: Checked between epochs; returning True ends the
                session early with the epochs completed so far
            initial_params: Continue from these parameters instead of a
                fresh initialization
            l2_lambda: Weight decay coefficient
            dropout_rate: Hidden dropout rate while training
            eval_sample_size: Test examples sampled for per-epoch accuracy

        Returns:
            dict: ``{'params': NetworkParameters, 'metadata': dict}``

        Raises:
            RuntimeError: If a session is already running
            ShapeError: On empty datasets or mismatched parameter shapes
        """
        if self.state == RUNNING:
            raise RuntimeError("training is already in progress")
        if self.state != IDLE:
            self.reset()

        self.state = RUNNING
        self.error = None

        try:
            return self._run(
                epochs, learning_rate, batch_size, hidden_size, on_progress,
                yield_func, should_stop, initial_params, l2_lambda,
                dropout_rate, eval_sample_size
            )
        except Exception as e:
            self.state = FAILED
            self.error = e
            logger.exception(f"Training failed: {e}")
            raise

    def _run(
        self,
        epochs: int,
        learning_rate: float,
        batch_size: int,
        hidden_size: int,
        on_progress: Optional[ProgressCallback],
        yield_func: Optional[Callable[[], None]],
        should_stop: Optional[Callable[[], bool]],
        initial_params: Optional[NetworkParameters],
        l2_lambda: float,
        dropout_rate: float,
        eval_sample_size: int
    ) -> Dict[str, Any]:
        if not isinstance(epochs, (int, np.integer)) or epochs < 1:
            raise ValueError("epochs must be a positive integer")
        if not isinstance(batch_size, (int, np.integer)) or batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        if learning_rate <= 0:
            raise ValueError("learning_rate must be a positive number")

        # Re-validate so that an empty split fails here rather than mid-epoch
        check_dataset(self.train_images, self.train_labels)
        check_dataset(self.test_images, self.test_labels)

        if initial_params is not None:
            initial_params.validate()
            self.params = initial_params
        else:
            self.params = initialize_parameters(hidden_size, self.rng)
        self.metadata = None
        params = self.params

        n = len(self.train_labels)
        logger.info(
            f"Training {n} examples: epochs={epochs}, batch_size={batch_size}, "
            f"lr={learning_rate}, hidden={params.hidden_size}"
        )

        start_time = time.time()
        completed_epochs = 0

        for epoch in range(1, epochs + 1):
            # Generator.permutation is a Fisher-Yates shuffle
            order = self.rng.permutation(n)

            for start in range(0, n, batch_size):
                batch = order[start:start + batch_size]
                train_batch(
                    self.train_images[batch],
                    self.train_labels[batch],
                    params,
                    learning_rate,
                    l2_lambda=l2_lambda,
                    rng=self.rng,
                    dropout_rate=dropout_rate
                )
                if yield_func is not None:
                    yield_func()

            accuracy = evaluate_on_subset(
                self.test_images, self.test_labels, params,
                sample_size=eval_sample_size, rng=self.rng
            )
            completed_epochs = epoch

            logger.info(
                f"Epoch {epoch}/{epochs}: accuracy {accuracy:.2%} "
                f"({time.time() - start_time:.1f}s elapsed)"
            )
            if on_progress is not None:
                on_progress(epoch, accuracy)
            if yield_func is not None:
                yield_func()

            if should_stop is not None and epoch < epochs and should_stop():
                logger.info(f"Training stopped by caller after epoch {epoch}")
                break

        final_accuracy = evaluate_accuracy(
            self.test_images, self.test_labels, params
        )
        self.metadata = build_metadata(
            completed_epochs, learning_rate, batch_size,
            params.hidden_size, final_accuracy
        )
        self.state = COMPLETED

        logger.info(f"Training completed: final accuracy {final_accuracy:.2%}")
        return {'params': params, 'metadata': self.metadata}
