"""
network.py
~~~~~~~~~~

Two-layer feed-forward network for MNIST digit classification.

The network maps a 784-pixel image to 10 digit classes through one hidden
layer with a Leaky-ReLU activation. All parameters live in a
``NetworkParameters`` context that is passed explicitly into every call, so
the host (API server, CLI, tests) decides who owns it and when to snapshot it.

Randomness (initialization, dropout, evaluation sampling) always comes from an
injectable ``numpy.random.Generator`` so that runs can be reproduced exactly.
"""

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

INPUT_SIZE = 784
OUTPUT_SIZE = 10
DEFAULT_HIDDEN_SIZE = 128

BIAS_INIT = 0.01
LEAKY_SLOPE = 0.01
DROPOUT_RATE = 0.3
SOFTMAX_TEMPERATURE = 2.0
L2_LAMBDA = 0.0001

STD_EPSILON = 1e-6
LOG_EPSILON = 1e-10


class ShapeError(ValueError):
    """Raised when a vector, matrix or dataset has the wrong shape or range."""


class ModelNotInitializedError(RuntimeError):
    """Raised when predicting or training without parameters."""

    def __init__(self, message: str = "model not initialized"):
        super().__init__(message)


# ============================================================================
# PARAMETER STORE
# ============================================================================

class NetworkParameters:
    """
    Weights and biases of the 784 -> H -> 10 network.

    Attributes:
        weights1: (784, H) input-to-hidden weights
        weights2: (H, 10) hidden-to-output weights
        biases1: (H,) hidden biases
        biases2: (10,) output biases
    """

    def __init__(
        self,
        weights1: np.ndarray,
        weights2: np.ndarray,
        biases1: np.ndarray,
        biases2: np.ndarray
    ):
        self.weights1 = np.asarray(weights1, dtype=np.float64)
        self.weights2 = np.asarray(weights2, dtype=np.float64)
        self.biases1 = np.asarray(biases1, dtype=np.float64)
        self.biases2 = np.asarray(biases2, dtype=np.float64)
        self.validate()

    @property
    def hidden_size(self) -> int:
        return self.biases1.shape[0]

    def validate(self) -> None:
        """
        Check that all four containers agree on a single hidden size.

        Raises:
            ShapeError: If any shape differs from 784xH, Hx10, H or 10
        """
        if self.weights1.ndim != 2 or self.weights1.shape[0] != INPUT_SIZE:
            raise ShapeError(
                f"weights1 must have shape ({INPUT_SIZE}, H), "
                f"got {self.weights1.shape}"
            )

        hidden = self.weights1.shape[1]
        if hidden < 1:
            raise ShapeError("hidden layer must have at least one unit")

        expected = {
            'weights2': (self.weights2, (hidden, OUTPUT_SIZE)),
            'biases1': (self.biases1, (hidden,)),
            'biases2': (self.biases2, (OUTPUT_SIZE,)),
        }
        for name, (array, shape) in expected.items():
            if array.shape != shape:
                raise ShapeError(
                    f"{name} must have shape {shape}, got {array.shape}"
                )

    def as_tuple(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(weights1, weights2, biases1, biases2)``."""
        return self.weights1, self.weights2, self.biases1, self.biases2

    def copy(self) -> 'NetworkParameters':
        """Return a deep copy, e.g. for a display snapshot."""
        return NetworkParameters(
            self.weights1.copy(),
            self.weights2.copy(),
            self.biases1.copy(),
            self.biases2.copy()
        )

    def __repr__(self) -> str:
        return f"NetworkParameters(hidden_size={self.hidden_size})"


def initialize_parameters(
    hidden_size: int = DEFAULT_HIDDEN_SIZE,
    rng: Optional[np.random.Generator] = None
) -> NetworkParameters:
    """
    Create freshly initialized parameters.

    Weights are drawn uniformly from [-1, 1] and scaled by ``sqrt(2 / fan_in)``
    (He scaling). Biases start at a small positive constant so that no hidden
    unit begins dead.

    Args:
        hidden_size: Number of hidden units
        rng: Random generator; a fresh OS-seeded one if omitted

    Returns:
        NetworkParameters: New, independent containers
    """
    if not isinstance(hidden_size, (int, np.integer)) or hidden_size < 1:
        raise ShapeError(
            f"hidden_size must be a positive integer, got {hidden_size!r}"
        )
    rng = rng if rng is not None else np.random.default_rng()

    scale1 = np.sqrt(2.0 / INPUT_SIZE)
    scale2 = np.sqrt(2.0 / hidden_size)

    weights1 = rng.uniform(-1.0, 1.0, size=(INPUT_SIZE, hidden_size)) * scale1
    weights2 = rng.uniform(-1.0, 1.0, size=(hidden_size, OUTPUT_SIZE)) * scale2
    biases1 = np.full(hidden_size, BIAS_INIT)
    biases2 = np.full(OUTPUT_SIZE, BIAS_INIT)

    logger.debug(f"Initialized parameters with hidden_size={hidden_size}")
    return NetworkParameters(weights1, weights2, biases1, biases2)


def require_parameters(params: Optional[NetworkParameters]) -> NetworkParameters:
    """Return ``params`` or raise ``ModelNotInitializedError`` if it is None."""
    if params is None:
        raise ModelNotInitializedError()
    return params


# ============================================================================
# INPUT VALIDATION
# ============================================================================

def as_input_vector(image: Sequence[float]) -> np.ndarray:
    """Convert one image to a float vector of length 784 or raise ShapeError."""
    vector = np.asarray(image, dtype=np.float64)
    if vector.shape != (INPUT_SIZE,):
        raise ShapeError(
            f"input must be a vector of length {INPUT_SIZE}, "
            f"got shape {vector.shape}"
        )
    return vector


def check_dataset(
    images: Sequence[Sequence[float]],
    labels: Sequence[int],
    allow_empty: bool = False
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Validate a pair of parallel image/label collections.

    Args:
        images: N images of 784 pixels each
        labels: N integer labels in [0, 9]
        allow_empty: Accept N == 0

    Returns:
        tuple: (images as float64 (N, 784), labels as int64 (N,))

    Raises:
        ShapeError: On length mismatch, wrong image width, labels out of
            range, or an empty dataset when not allowed
    """
    images = np.asarray(images, dtype=np.float64)
    labels = np.asarray(labels)

    if images.size == 0 and labels.size == 0:
        if not allow_empty:
            raise ShapeError("dataset is empty")
        return images.reshape(0, INPUT_SIZE), labels.astype(np.int64).reshape(0)

    if images.ndim != 2 or images.shape[1] != INPUT_SIZE:
        raise ShapeError(
            f"images must have shape (N, {INPUT_SIZE}), got {images.shape}"
        )
    if labels.ndim != 1 or labels.shape[0] != images.shape[0]:
        raise ShapeError(
            f"got {images.shape[0]} images but labels of shape {labels.shape}"
        )
    if not np.issubdtype(labels.dtype, np.integer):
        if not np.all(np.equal(np.mod(labels, 1), 0)):
            raise ShapeError("labels must be integers")
    labels = labels.astype(np.int64)
    if labels.min() < 0 or labels.max() >= OUTPUT_SIZE:
        raise ShapeError(f"labels must be in [0, {OUTPUT_SIZE - 1}]")

    return images, labels


# ============================================================================
# FORWARD ENGINE
# ============================================================================

def leaky_relu(z: np.ndarray) -> np.ndarray:
    return np.where(z > 0, z, LEAKY_SLOPE * z)


def leaky_relu_derivative(z: np.ndarray) -> np.ndarray:
    return np.where(z > 0, 1.0, LEAKY_SLOPE)


def standardize(images: np.ndarray) -> np.ndarray:
    """
    Standardize each image (row) to zero mean and unit variance.

    This keeps dataset images and freshly drawn canvas images, which differ
    in ink density and contrast, on the same scale.
    """
    mean = images.mean(axis=-1, keepdims=True)
    std = np.sqrt(((images - mean) ** 2).mean(axis=-1, keepdims=True)) + STD_EPSILON
    return (images - mean) / std


def dropout_mask(
    shape: Tuple[int, ...],
    rate: float,
    rng: np.random.Generator
) -> np.ndarray:
    """Inverted-dropout multipliers: 0 with probability ``rate``, else 1/(1-rate)."""
    if rate == 0:
        return np.ones(shape)
    if not 0 <= rate < 1:
        raise ValueError(f"dropout rate must be in [0, 1), got {rate}")
    keep = rng.random(shape) > rate
    return keep / (1.0 - rate)


def _forward_batch(
    images: np.ndarray,
    params: NetworkParameters,
    training: bool,
    rng: Optional[np.random.Generator],
    dropout_rate: float
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Forward pass over a (B, 784) batch.

    Returns (standardized inputs, hidden pre-activations, dropout multipliers,
    hidden activations after dropout, output logits).
    """
    inputs = standardize(images)
    pre_hidden = params.biases1 + inputs @ params.weights1
    hidden = leaky_relu(pre_hidden)

    if training:
        rng = rng if rng is not None else np.random.default_rng()
        mask = dropout_mask(hidden.shape, dropout_rate, rng)
    else:
        mask = np.ones(hidden.shape)
    hidden = hidden * mask

    output = params.biases2 + hidden @ params.weights2
    return inputs, pre_hidden, mask, hidden, output


def forward(
    image: Sequence[float],
    params: NetworkParameters,
    training: bool = False,
    rng: Optional[np.random.Generator] = None,
    dropout_rate: float = DROPOUT_RATE
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute hidden activations and raw output logits for one image.

    Args:
        image: 784 pixel values in [0, 1]
        params: Network parameters
        training: Apply inverted dropout to the hidden layer
        rng: Random generator for the dropout mask
        dropout_rate: Probability of zeroing a hidden unit when training

    Returns:
        tuple: (hidden activations (H,), output logits (10,))

    Raises:
        ShapeError: If the image is not a 784-vector
        ModelNotInitializedError: If params is None
    """
    params = require_parameters(params)
    vector = as_input_vector(image)
    _, _, _, hidden, output = _forward_batch(
        vector[np.newaxis, :], params, training, rng, dropout_rate
    )
    return hidden[0], output[0]


# ============================================================================
# PREDICTION & CONFIDENCE
# ============================================================================

def softmax(logits: Sequence[float], temperature: float = 1.0) -> np.ndarray:
    """
    Numerically stable softmax along the last axis.

    A temperature above 1 softens the distribution; it is only used for
    displaying confidences, never during training.
    """
    scaled = np.asarray(logits, dtype=np.float64) / temperature
    shifted = scaled - scaled.max(axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / exp.sum(axis=-1, keepdims=True)


def predict_with_confidence(
    image: Sequence[float],
    params: NetworkParameters,
    temperature: float = SOFTMAX_TEMPERATURE
) -> Tuple[int, np.ndarray]:
    """
    Predict a digit and return the per-class confidence.

    Returns:
        tuple: (predicted digit, probabilities of length 10)
    """
    _, output = forward(image, params, training=False)
    probabilities = softmax(output, temperature)
    # np.argmax returns the first maximum, so ties go to the lowest digit
    return int(np.argmax(probabilities)), probabilities


def predict_class(
    image: Sequence[float],
    params: NetworkParameters,
    temperature: float = SOFTMAX_TEMPERATURE
) -> int:
    """Predict the digit for one image (inference mode, no dropout)."""
    digit, _ = predict_with_confidence(image, params, temperature)
    return digit


# ============================================================================
# LOSS & GRADIENT ENGINE
# ============================================================================

class Gradients:
    """Gradient accumulators shaped like a NetworkParameters instance."""

    def __init__(self, params: NetworkParameters):
        self.weights1 = np.zeros_like(params.weights1)
        self.weights2 = np.zeros_like(params.weights2)
        self.biases1 = np.zeros_like(params.biases1)
        self.biases2 = np.zeros_like(params.biases2)

    def as_tuple(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        return self.weights1, self.weights2, self.biases1, self.biases2


def compute_batch_gradients(
    images: np.ndarray,
    labels: np.ndarray,
    params: NetworkParameters,
    rng: Optional[np.random.Generator] = None,
    dropout_rate: float = DROPOUT_RATE,
    gradients: Optional[Gradients] = None
) -> Tuple[Gradients, float]:
    """
    Backpropagate softmax cross-entropy over a batch.

    Every example contributes its own gradient and the contributions are
    summed, not averaged; dividing by the batch size is the job of
    ``apply_gradients``.

    Args:
        images: (B, 784) float array
        labels: (B,) integer labels
        params: Network parameters (read only here)
        rng: Random generator for dropout
        dropout_rate: Hidden dropout rate for the training-mode forward pass
        gradients: Accumulators to add into; zeroed ones are created if None

    Returns:
        tuple: (gradients, summed cross-entropy loss of the batch)
    """
    if gradients is None:
        gradients = Gradients(params)

    inputs, pre_hidden, mask, hidden, output = _forward_batch(
        images, params, True, rng, dropout_rate
    )

    probabilities = softmax(output)
    rows = np.arange(labels.shape[0])
    loss = float(-np.log(probabilities[rows, labels] + LOG_EPSILON).sum())

    # Combined softmax + cross-entropy derivative
    output_error = probabilities.copy()
    output_error[rows, labels] -= 1.0

    hidden_error = (output_error @ params.weights2.T) * mask
    hidden_error *= leaky_relu_derivative(pre_hidden)

    gradients.weights2 += hidden.T @ output_error
    gradients.biases2 += output_error.sum(axis=0)
    gradients.weights1 += inputs.T @ hidden_error
    gradients.biases1 += hidden_error.sum(axis=0)

    return gradients, loss


def backprop(
    image: Sequence[float],
    label: int,
    params: NetworkParameters,
    rng: Optional[np.random.Generator] = None,
    dropout_rate: float = DROPOUT_RATE,
    gradients: Optional[Gradients] = None
) -> Tuple[Gradients, float]:
    """Gradient contribution and loss of a single (image, label) pair."""
    params = require_parameters(params)
    images, labels = check_dataset([as_input_vector(image)], [label])
    return compute_batch_gradients(
        images, labels, params, rng, dropout_rate, gradients
    )


# ============================================================================
# BATCH TRAINER
# ============================================================================

def apply_gradients(
    params: NetworkParameters,
    gradients: Gradients,
    learning_rate: float,
    batch_size: int,
    l2_lambda: float = L2_LAMBDA
) -> NetworkParameters:
    """
    L2-regularized gradient descent step, in place.

    Weights decay proportionally to their current value; biases do not.
    """
    if batch_size < 1:
        raise ShapeError("batch_size must be at least 1")

    scale = learning_rate / batch_size

    params.weights1 -= scale * (gradients.weights1 + l2_lambda * params.weights1)
    params.weights2 -= scale * (gradients.weights2 + l2_lambda * params.weights2)
    params.biases1 -= scale * gradients.biases1
    params.biases2 -= scale * gradients.biases2

    return params


def train_batch(
    images: Sequence[Sequence[float]],
    labels: Sequence[int],
    params: NetworkParameters,
    learning_rate: float,
    l2_lambda: float = L2_LAMBDA,
    rng: Optional[np.random.Generator] = None,
    dropout_rate: float = DROPOUT_RATE
) -> NetworkParameters:
    """
    Train on one mini-batch.

    Args:
        images: Batch images (B, 784)
        labels: Batch labels (B,)
        params: Parameters, mutated in place
        learning_rate: Step size
        l2_lambda: Weight decay coefficient
        rng: Random generator for dropout
        dropout_rate: Hidden dropout rate

    Returns:
        NetworkParameters: The same (mutated) params, for chaining

    Raises:
        ShapeError: On an empty or malformed batch
    """
    params = require_parameters(params)
    images, labels = check_dataset(images, labels)

    gradients, loss = compute_batch_gradients(
        images, labels, params, rng, dropout_rate
    )
    apply_gradients(params, gradients, learning_rate, len(labels), l2_lambda)

    logger.debug(
        f"Batch of {len(labels)}: avg loss {loss / len(labels):.4f}"
    )
    return params


# ============================================================================
# EVALUATOR
# ============================================================================

def count_correct(
    images: np.ndarray,
    labels: np.ndarray,
    params: NetworkParameters
) -> int:
    return sum(
        1 for image, label in zip(images, labels)
        if predict_class(image, params) == label
    )


def evaluate_accuracy(
    images: Sequence[Sequence[float]],
    labels: Sequence[int],
    params: NetworkParameters
) -> float:
    """Fraction of the whole set classified correctly, in [0, 1]."""
    params = require_parameters(params)
    images, labels = check_dataset(images, labels)
    return count_correct(images, labels, params) / len(labels)


def evaluate_on_subset(
    images: Sequence[Sequence[float]],
    labels: Sequence[int],
    params: NetworkParameters,
    sample_size: int = 500,
    rng: Optional[np.random.Generator] = None
) -> float:
    """
    Accuracy on a random sample of distinct examples.

    When the set holds fewer than ``sample_size`` examples every example is
    evaluated once.
    """
    params = require_parameters(params)
    images, labels = check_dataset(images, labels)
    if not isinstance(sample_size, (int, np.integer)) or sample_size < 1:
        raise ValueError(
            f"sample_size must be a positive integer, got {sample_size!r}"
        )

    rng = rng if rng is not None else np.random.default_rng()
    size = min(sample_size, len(labels))
    indices = rng.choice(len(labels), size=size, replace=False)

    return count_correct(images[indices], labels[indices], params) / size


def confusion_matrix(
    images: Sequence[Sequence[float]],
    labels: Sequence[int],
    params: NetworkParameters
) -> np.ndarray:
    """10x10 counts; rows are true labels, columns are predicted digits."""
    params = require_parameters(params)
    images, labels = check_dataset(images, labels)

    matrix = np.zeros((OUTPUT_SIZE, OUTPUT_SIZE), dtype=np.int64)
    for image, label in zip(images, labels):
        matrix[label, predict_class(image, params)] += 1
    return matrix
