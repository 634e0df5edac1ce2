"""
preprocessing.py
~~~~~~~~~~~~~~~~

Turn a hand-drawn canvas into an MNIST-like 784 vector.

Drawings arrive as dark ink on a light background at an arbitrary resolution.
They are downsampled to 28x28, inverted so ink is bright, then blurred,
centered, rescaled and contrast-normalized so that the strokes resemble the
thick, centered digits the network was trained on.
"""

from typing import Sequence, Tuple

import numpy as np

from digitnet.network import INPUT_SIZE, ShapeError

IMAGE_SIZE = 28
INK_THRESHOLD = 0.1
CONTRAST_THRESHOLD = 0.2
TARGET_FILL = 0.8

# 7x7 kernel with a heavy center weight
GAUSSIAN_KERNEL = np.array([
    [1, 2, 4, 5, 4, 2, 1],
    [2, 4, 8, 10, 8, 4, 2],
    [4, 8, 16, 20, 16, 8, 4],
    [5, 10, 20, 25, 20, 10, 5],
    [4, 8, 16, 20, 16, 8, 4],
    [2, 4, 8, 10, 8, 4, 2],
    [1, 2, 4, 5, 4, 2, 1],
], dtype=np.float64)
GAUSSIAN_KERNEL /= GAUSSIAN_KERNEL.sum()


def _as_square(image: Sequence[float]) -> np.ndarray:
    array = np.asarray(image, dtype=np.float64)
    if array.shape == (INPUT_SIZE,):
        return array.reshape(IMAGE_SIZE, IMAGE_SIZE)
    if array.shape == (IMAGE_SIZE, IMAGE_SIZE):
        return array
    raise ShapeError(
        f"image must have shape ({INPUT_SIZE},) or "
        f"({IMAGE_SIZE}, {IMAGE_SIZE}), got {array.shape}"
    )


def canvas_to_input(pixels: Sequence[Sequence[float]], invert: bool = True) -> np.ndarray:
    """
    Downsample a square grayscale canvas to a flat 28x28 image in [0, 1].

    Args:
        pixels: 2D grayscale array, 0-255 or 0-1, side a multiple of 28
        invert: Treat the canvas as dark ink on white and flip it

    Returns:
        np.ndarray: 784-vector, ink bright
    """
    canvas = np.asarray(pixels, dtype=np.float64)
    if canvas.ndim != 2 or canvas.shape[0] != canvas.shape[1]:
        raise ShapeError(f"canvas must be a square 2D array, got {canvas.shape}")
    if canvas.shape[0] % IMAGE_SIZE:
        raise ShapeError(
            f"canvas side must be a multiple of {IMAGE_SIZE}, got {canvas.shape[0]}"
        )

    if canvas.max(initial=0.0) > 1.0:
        canvas = canvas / 255.0

    factor = canvas.shape[0] // IMAGE_SIZE
    small = canvas.reshape(IMAGE_SIZE, factor, IMAGE_SIZE, factor).mean(axis=(1, 3))
    if invert:
        small = 1.0 - small
    return small.reshape(INPUT_SIZE)


def gaussian_blur(image: np.ndarray) -> np.ndarray:
    """Blur a 28x28 image with edge-clamped borders."""
    pad = GAUSSIAN_KERNEL.shape[0] // 2
    padded = np.pad(image, pad, mode='edge')
    blurred = np.zeros_like(image)
    for dy in range(GAUSSIAN_KERNEL.shape[0]):
        for dx in range(GAUSSIAN_KERNEL.shape[1]):
            window = padded[dy:dy + image.shape[0], dx:dx + image.shape[1]]
            blurred += GAUSSIAN_KERNEL[dy, dx] * window
    return blurred


def bounding_box(image: np.ndarray) -> Tuple[int, int, int, int]:
    """(top, bottom, left, right) of pixels above the ink threshold, inclusive."""
    rows, cols = np.nonzero(image > INK_THRESHOLD)
    if rows.size == 0:
        return 0, image.shape[0] - 1, 0, image.shape[1] - 1
    return rows.min(), rows.max(), cols.min(), cols.max()


def center_digit(image: np.ndarray) -> np.ndarray:
    """Move the digit's bounding box to the middle of the frame."""
    top, bottom, left, right = bounding_box(image)
    height = bottom - top + 1
    width = right - left + 1
    target_top = (image.shape[0] - height) // 2
    target_left = (image.shape[1] - width) // 2

    centered = np.zeros_like(image)
    centered[target_top:target_top + height, target_left:target_left + width] = (
        image[top:bottom + 1, left:right + 1]
    )
    return centered


def scale_digit(image: np.ndarray) -> np.ndarray:
    """Stretch the digit to fill 80% of the frame, keeping its aspect ratio."""
    size = image.shape[0]
    top, bottom, left, right = bounding_box(image)
    target = int(size * TARGET_FILL)
    scale = min(target / (bottom - top + 1), target / (right - left + 1))

    ys, xs = np.mgrid[0:size, 0:size].astype(np.float64)
    src_x = left + (xs - left) / scale
    src_y = top + (ys - top) / scale

    x1 = np.floor(src_x).astype(int)
    y1 = np.floor(src_y).astype(int)
    x2 = np.minimum(x1 + 1, size - 1)
    y2 = np.minimum(y1 + 1, size - 1)
    fx = src_x - x1
    fy = src_y - y1

    def sample(y: np.ndarray, x: np.ndarray) -> np.ndarray:
        inside = (x >= 0) & (x < size) & (y >= 0) & (y < size)
        values = np.zeros_like(src_x)
        values[inside] = image[y[inside], x[inside]]
        return values

    return (
        sample(y1, x1) * (1 - fx) * (1 - fy)
        + sample(y1, x2) * fx * (1 - fy)
        + sample(y2, x1) * (1 - fx) * fy
        + sample(y2, x2) * fx * fy
    )


def normalize_pixels(image: np.ndarray) -> np.ndarray:
    peak = image.max()
    if peak == 0:
        return image
    return image / peak


def preprocess_digit(image: Sequence[float]) -> np.ndarray:
    """
    Make a drawn 28x28 digit look like an MNIST training digit.

    Args:
        image: 784-vector or 28x28 array, ink bright, values in [0, 1]

    Returns:
        np.ndarray: Processed 784-vector in [0, 1]; an all-zero image is
            returned unchanged
    """
    processed = _as_square(image)
    if not processed.any():
        return processed.reshape(INPUT_SIZE).copy()

    # Two passes thicken thin pen strokes
    processed = gaussian_blur(processed)
    processed = gaussian_blur(processed)

    processed = center_digit(processed)
    processed = scale_digit(processed)
    processed = gaussian_blur(processed)

    processed = np.where(
        processed > CONTRAST_THRESHOLD,
        np.minimum(processed * 1.2, 1.0),
        processed * 0.8
    )
    return normalize_pixels(processed).reshape(INPUT_SIZE)
