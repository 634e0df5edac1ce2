"""
conftest.py
~~~~~~~~~~~

Shared fixtures. Environment variables are set before any digitnet module is
imported so that the API server uses synthetic data and a throwaway database.
"""

import os
import tempfile

os.environ.setdefault('DIGITNET_DATASET', 'synthetic')
os.environ.setdefault('MODEL_DIR', tempfile.mkdtemp(prefix='digitnet-models-'))
os.environ.setdefault('FLASK_ENV', 'production')

import numpy as np
import pytest

from digitnet import mnist_loader
from digitnet.network import initialize_parameters


@pytest.fixture
def rng():
    """Seeded generator so tests are reproducible."""
    return np.random.default_rng(1234)


@pytest.fixture
def small_params(rng):
    """Freshly initialized parameters with 16 hidden units."""
    return initialize_parameters(16, rng)


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture(scope='session')
def synthetic_split():
    """300 training (30 per digit) and 100 test (10 per digit) images."""
    return mnist_loader.generate_synthetic_data(
        train_per_digit=30,
        test_per_digit=10,
        rng=np.random.default_rng(7)
    )


@pytest.fixture
def two_class_data():
    """
    Perfectly separable toy set: digit 0 lights the left half of the frame,
    digit 1 the right half.
    """
    gen = np.random.default_rng(99)
    images = []
    labels = []
    for i in range(40):
        label = i % 2
        image = gen.random((28, 28)) * 0.1
        if label == 0:
            image[:, :14] += 0.8
        else:
            image[:, 14:] += 0.8
        images.append(np.clip(image, 0.0, 1.0).reshape(784))
        labels.append(label)
    return np.array(images), np.array(labels)
