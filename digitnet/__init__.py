"""
digitnet package
~~~~~~~~~~~~~~~~

Two-layer neural network for MNIST digit recognition.
Contains the network engine, the training loop, data loading and drawing
preprocessing utilities, model persistence, and the API server.
"""

__version__ = "1.0.0"
