"""
test_preprocessing.py
~~~~~~~~~~~~~~~~~~~~~

Tests for turning canvas drawings into network inputs.
"""

import numpy as np
import pytest

from digitnet.network import ShapeError
from digitnet.preprocessing import (
    GAUSSIAN_KERNEL,
    bounding_box,
    canvas_to_input,
    center_digit,
    gaussian_blur,
    preprocess_digit
)


def corner_stroke():
    """A thin vertical stroke in the top-left corner of a 28x28 frame."""
    image = np.zeros((28, 28))
    image[2:10, 3] = 1.0
    return image


@pytest.mark.unit
class TestCanvasToInput:
    """Test canvas downsampling."""

    def test_downsamples_and_inverts(self):
        """Test that black ink on white becomes bright ink on black."""
        canvas = np.full((280, 280), 255.0)
        canvas[0:10, 0:10] = 0.0

        image = canvas_to_input(canvas)

        assert image.shape == (784,)
        assert image[0] == 1.0
        assert image[1] == 0.0

    def test_block_average(self):
        canvas = np.zeros((56, 56))
        canvas[0, 0] = 1.0
        image = canvas_to_input(canvas, invert=False)
        assert np.isclose(image[0], 0.25)

    def test_rejects_non_square(self):
        with pytest.raises(ShapeError):
            canvas_to_input(np.zeros((28, 56)))

    def test_rejects_odd_side(self):
        with pytest.raises(ShapeError):
            canvas_to_input(np.zeros((30, 30)))


@pytest.mark.unit
class TestFilters:
    """Test the individual image operations."""

    def test_kernel_is_normalized(self):
        assert np.isclose(GAUSSIAN_KERNEL.sum(), 1.0)

    def test_blur_keeps_constant_image(self):
        image = np.full((28, 28), 0.6)
        assert np.allclose(gaussian_blur(image), image)

    def test_blur_spreads_a_point(self):
        image = np.zeros((28, 28))
        image[14, 14] = 1.0
        blurred = gaussian_blur(image)
        assert blurred[14, 14] < 1.0
        assert blurred[14, 16] > 0.0
        assert np.isclose(blurred.sum(), 1.0)

    def test_bounding_box(self):
        assert bounding_box(corner_stroke()) == (2, 9, 3, 3)

    def test_bounding_box_of_blank_image(self):
        assert bounding_box(np.zeros((28, 28))) == (0, 27, 0, 27)

    def test_center_digit(self):
        """Test that the stroke moves to the middle of the frame."""
        top, bottom, left, right = bounding_box(center_digit(corner_stroke()))
        assert (top, bottom) == (10, 17)
        assert left == right == 13


@pytest.mark.unit
class TestPreprocessDigit:
    """Test the full preprocessing pipeline."""

    def test_output_range_and_shape(self):
        processed = preprocess_digit(corner_stroke().reshape(784))

        assert processed.shape == (784,)
        assert processed.min() >= 0.0
        assert processed.max() == pytest.approx(1.0)

    def test_digit_leaves_the_corner(self):
        """Test that a stroke drawn in a corner is moved into the frame."""
        processed = preprocess_digit(corner_stroke()).reshape(28, 28)
        rows, cols = np.nonzero(processed > 0.5)

        assert rows.mean() > 8
        assert cols.mean() > 8

    def test_digit_is_enlarged(self):
        """Test that a small stroke is scaled up."""
        processed = preprocess_digit(corner_stroke()).reshape(28, 28)
        rows, _ = np.nonzero(processed > 0.5)
        assert rows.max() - rows.min() + 1 > 8

    def test_empty_image_unchanged(self):
        blank = np.zeros(784)
        processed = preprocess_digit(blank)
        assert np.array_equal(processed, blank)
        assert processed is not blank

    def test_rejects_wrong_shape(self):
        with pytest.raises(ShapeError):
            preprocess_digit(np.zeros(100))
