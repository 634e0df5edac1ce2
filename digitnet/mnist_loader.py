"""
mnist_loader.py
~~~~~~~~~~~~~~~

Load MNIST data for training and testing.

Two sources are supported:

- A compressed NPZ file with arrays ``train_images``, ``train_labels``,
  ``val_images``, ``val_labels``, ``test_images`` and ``test_labels``
  (``scripts/convert_mnist_to_npz.py`` writes this layout).
- A synthetic generator that draws one simple, clearly distinguishable stroke
  pattern per digit. It needs no download and is used by the tests and as a
  fallback when no NPZ file is available.

Every loader returns ``(images, labels)`` pairs with images as float64
(N, 784) arrays in [0, 1] and labels as int64 (N,) arrays.
"""

import os
import logging
from typing import Optional, Tuple

import numpy as np

from digitnet.network import INPUT_SIZE, OUTPUT_SIZE, check_dataset

logger = logging.getLogger(__name__)

IMAGE_SIZE = 28
DEFAULT_MNIST_PATH = os.getenv('MNIST_PATH', os.path.join('data', 'mnist.npz'))

Dataset = Tuple[np.ndarray, np.ndarray]


# ============================================================================
# NPZ FILES
# ============================================================================

def _split(data, images_key: str, labels_key: str) -> Dataset:
    if images_key not in data or labels_key not in data:
        return check_dataset([], [], allow_empty=True)

    images = np.asarray(data[images_key], dtype=np.float64)
    images = images.reshape(images.shape[0], -1)
    # Raw MNIST encodes pixels as 0-255
    if images.size and images.max() > 1.0:
        images = images / 255.0
    return check_dataset(images, data[labels_key], allow_empty=True)


def load_data(path: str = DEFAULT_MNIST_PATH) -> Tuple[Dataset, Dataset, Dataset]:
    """
    Load MNIST from an NPZ file.

    Parameters:
    -----------
    path : str
        Path to the .npz file

    Returns:
    --------
    tuple
        (training_data, validation_data, test_data), each ``(images, labels)``.
        Validation data is empty when the file has none.

    Raises:
    -------
    FileNotFoundError
        If the file does not exist
    ShapeError
        If the arrays do not describe 784-pixel images with labels 0-9
    """
    with np.load(path) as data:
        training_data = _split(data, 'train_images', 'train_labels')
        validation_data = _split(data, 'val_images', 'val_labels')
        test_data = _split(data, 'test_images', 'test_labels')

    logger.info(
        f"Loaded {path}: {len(training_data[1])} training, "
        f"{len(validation_data[1])} validation, {len(test_data[1])} test"
    )
    return training_data, validation_data, test_data


def load_data_wrapper(
    path: Optional[str] = None,
    rng: Optional[np.random.Generator] = None
) -> Tuple[Dataset, Dataset, Dataset]:
    """
    Load the NPZ dataset if present, otherwise generate synthetic digits.

    Setting ``DIGITNET_DATASET=synthetic`` always uses the generator.
    """
    path = path or DEFAULT_MNIST_PATH
    if os.getenv('DIGITNET_DATASET', '').lower() == 'synthetic':
        logger.info("DIGITNET_DATASET=synthetic, generating synthetic digits")
    elif os.path.exists(path):
        return load_data(path)
    else:
        logger.warning(f"{path} not found, falling back to synthetic digits")

    training_data, test_data = generate_synthetic_data(rng=rng)
    validation_data = check_dataset([], [], allow_empty=True)
    return training_data, validation_data, test_data


# ============================================================================
# SYNTHETIC DIGITS
# ============================================================================

def _stroke(rng: np.random.Generator, count: int) -> np.ndarray:
    return 0.8 + rng.random(count) * 0.2


def _draw_digit(image: np.ndarray, digit: int, rng: np.random.Generator) -> None:
    size = IMAGE_SIZE
    half = size // 2
    rows, cols = np.mgrid[0:size, 0:size]

    if digit == 0:
        # Ring
        distance = np.hypot(rows - size / 2, cols - size / 2)
        mask = (distance > 5) & (distance < 10)
        image[mask] = _stroke(rng, mask.sum())
    elif digit == 1:
        # Vertical bar
        image[5:size - 5, half:half + 2] = _stroke(rng, (size - 10) * 2).reshape(-1, 2)
    elif digit in (2, 3, 5):
        # Top and middle bars plus a connector that tells them apart
        image[5, 5:size - 5] = _stroke(rng, size - 10)
        image[15, 5:size - 5] = _stroke(rng, size - 10)
        steps = np.arange(5, 15)
        if digit == 2:
            image[steps, size - 5 - steps] = _stroke(rng, len(steps))
        elif digit == 3:
            image[steps, size - 5] = _stroke(rng, len(steps))
        else:
            image[steps, 5] = _stroke(rng, len(steps))
    elif digit == 4:
        # Cross
        span = np.arange(5, size - 5)
        image[span, half] = _stroke(rng, len(span))
        image[half, span] = _stroke(rng, len(span))
    elif digit == 6:
        # Half sine curve
        span = np.arange(5, size - 5)
        curve = (np.sin((span - 5) / (size - 10) * np.pi) * 10 + size / 2).astype(int)
        image[span, np.clip(curve, 0, size - 1)] = _stroke(rng, len(span))
    elif digit == 7:
        # Diagonal
        span = np.arange(5, size - 5)
        image[span, span] = _stroke(rng, len(span))
    elif digit == 8:
        # Two discs
        first = np.hypot(rows - size / 3, cols - size / 3) < 5
        second = np.hypot(rows - 2 * size / 3, cols - 2 * size / 3) < 5
        mask = first | second
        image[mask] = _stroke(rng, mask.sum())
    elif digit == 9:
        # Loop in the upper half with a dot below it
        distance = np.hypot(cols - size / 2, rows - size / 4)
        mask = (distance > 5) & (distance < 8) & (rows >= 5) & (rows < half)
        mask &= (cols >= 5) & (cols < size - 5)
        image[mask] = _stroke(rng, mask.sum())
        image[half + 3:half + 6, half - 1:half + 2] = _stroke(rng, 9).reshape(3, 3)
    else:
        raise ValueError(f"digit must be in [0, {OUTPUT_SIZE - 1}], got {digit}")


def generate_synthetic_digit(
    digit: int,
    rng: Optional[np.random.Generator] = None
) -> np.ndarray:
    """
    Draw one synthetic 28x28 digit as a flat 784 vector in [0, 1].

    Stroke pixels get intensity 0.8-1.0 plus a little jitter; background
    pixels get noise below 0.1, so no two samples are identical.
    """
    rng = rng if rng is not None else np.random.default_rng()
    image = np.zeros((IMAGE_SIZE, IMAGE_SIZE))
    _draw_digit(image, digit, rng)

    ink = image > 0
    noisy = np.where(
        ink,
        np.minimum(1.0, image + (rng.random(image.shape) - 0.5) * 0.1),
        rng.random(image.shape) * 0.1
    )
    return noisy.reshape(INPUT_SIZE)


def generate_synthetic_set(
    per_digit: int,
    rng: Optional[np.random.Generator] = None
) -> Dataset:
    """``per_digit`` samples of every digit, labels cycling 0..9."""
    rng = rng if rng is not None else np.random.default_rng()
    labels = np.tile(np.arange(OUTPUT_SIZE), per_digit)
    images = np.array([generate_synthetic_digit(int(d), rng) for d in labels])
    return check_dataset(images, labels, allow_empty=True)


def generate_synthetic_data(
    train_per_digit: int = 180,
    test_per_digit: int = 20,
    rng: Optional[np.random.Generator] = None
) -> Tuple[Dataset, Dataset]:
    """
    Generate a synthetic train/test split.

    Returns:
        tuple: (training_data, test_data), each ``(images, labels)``
    """
    rng = rng if rng is not None else np.random.default_rng()
    training_data = generate_synthetic_set(train_per_digit, rng)
    test_data = generate_synthetic_set(test_per_digit, rng)

    logger.info(
        f"Generated synthetic digits: {len(training_data[1])} training, "
        f"{len(test_data[1])} test"
    )
    return training_data, test_data
