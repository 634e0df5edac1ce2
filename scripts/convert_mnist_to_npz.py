#!/usr/bin/env python3
"""
Convert the raw MNIST IDX files to the NPZ layout read by digitnet.

The four files published on the MNIST site (optionally gzipped) are expected in
the data directory:

    train-images-idx3-ubyte(.gz)   train-labels-idx1-ubyte(.gz)
    t10k-images-idx3-ubyte(.gz)    t10k-labels-idx1-ubyte(.gz)

Usage:
    python scripts/convert_mnist_to_npz.py [--data-dir data] [--validation 10000]

The script will:
1. Parse the IDX files
2. Hold out the last N training images as a validation split
3. Save everything as data/mnist.npz with pixels scaled to [0, 1]
4. Verify the conversion by reloading it through digitnet.mnist_loader
"""

import os
import sys
import gzip
import struct
import argparse
from typing import Tuple

import numpy as np

from digitnet import mnist_loader

IDX_FILES = {
    'train_images': 'train-images-idx3-ubyte',
    'train_labels': 'train-labels-idx1-ubyte',
    'test_images': 't10k-images-idx3-ubyte',
    'test_labels': 't10k-labels-idx1-ubyte',
}

IMAGE_MAGIC = 2051
LABEL_MAGIC = 2049


def find_idx_file(data_dir: str, name: str) -> str:
    """Return the path of ``name`` or ``name.gz`` inside ``data_dir``."""
    for candidate in (name, name + '.gz'):
        path = os.path.join(data_dir, candidate)
        if os.path.exists(path):
            return path
    raise FileNotFoundError(f"{name}(.gz) not found in {data_dir}")


def read_idx(filepath: str) -> np.ndarray:
    """
    Parse one IDX file.

    Parameters:
    -----------
    filepath : str
        Path to an images (magic 2051) or labels (magic 2049) file

    Returns:
    --------
    np.ndarray
        uint8 array of shape (N, 784) for images or (N,) for labels
    """
    opener = gzip.open if filepath.endswith('.gz') else open
    with opener(filepath, 'rb') as f:
        magic, count = struct.unpack('>II', f.read(8))
        if magic == IMAGE_MAGIC:
            rows, cols = struct.unpack('>II', f.read(8))
            data = np.frombuffer(f.read(), dtype=np.uint8)
            return data.reshape(count, rows * cols)
        if magic == LABEL_MAGIC:
            return np.frombuffer(f.read(), dtype=np.uint8)
    raise ValueError(f"{filepath}: unknown IDX magic number {magic}")


def load_idx_dataset(data_dir: str) -> dict:
    print(f"📂 Loading IDX files from: {data_dir}")
    arrays = {
        key: read_idx(find_idx_file(data_dir, name))
        for key, name in IDX_FILES.items()
    }
    print(f"✅ Loaded successfully:")
    print(f"   - Training: {len(arrays['train_images'])} images")
    print(f"   - Test: {len(arrays['test_images'])} images")
    return arrays


def split_validation(
    images: np.ndarray,
    labels: np.ndarray,
    size: int
) -> Tuple[Tuple[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]:
    """Move the last ``size`` training examples into a validation split."""
    if not 0 <= size < len(labels):
        raise ValueError(
            f"validation size must be in [0, {len(labels)}), got {size}"
        )
    cut = len(labels) - size
    return (images[:cut], labels[:cut]), (images[cut:], labels[cut:])


def save_as_npz(arrays: dict, validation: int, filepath: str) -> None:
    """
    Save the dataset in the NPZ layout, pixels scaled to [0, 1].

    Parameters:
    -----------
    arrays : dict
        Output of ``load_idx_dataset``
    validation : int
        Number of training images to hold out
    filepath : str
        Output path for the .npz file
    """
    print(f"\n💾 Converting to NPZ format: {filepath}")

    (train_images, train_labels), (val_images, val_labels) = split_validation(
        arrays['train_images'], arrays['train_labels'], validation
    )

    np.savez_compressed(
        filepath,
        train_images=(train_images / 255.0).astype(np.float32),
        train_labels=train_labels.astype(np.int64),
        val_images=(val_images / 255.0).astype(np.float32),
        val_labels=val_labels.astype(np.int64),
        test_images=(arrays['test_images'] / 255.0).astype(np.float32),
        test_labels=arrays['test_labels'].astype(np.int64)
    )

    npz_size = os.path.getsize(filepath) / (1024 * 1024)  # MB
    print(f"✅ Saved successfully (size: {npz_size:.2f} MB)")


def verify_conversion(npz_filepath: str, arrays: dict, validation: int) -> bool:
    """
    Reload the NPZ file through the loader and compare labels and pixels.

    Returns:
    --------
    bool
        True if verification passes
    """
    print(f"\n🔍 Verifying conversion...")

    training, validation_data, test = mnist_loader.load_data(npz_filepath)
    train_count = len(arrays['train_labels']) - validation

    assert np.array_equal(training[1], arrays['train_labels'][:train_count]), \
        "Training labels don't match!"
    assert np.array_equal(validation_data[1], arrays['train_labels'][train_count:]), \
        "Validation labels don't match!"
    assert np.array_equal(test[1], arrays['test_labels']), \
        "Test labels don't match!"
    assert np.allclose(test[0], arrays['test_images'] / 255.0, atol=1e-6), \
        "Test images don't match!"

    print("✅ Verification passed! Data is identical.")
    return True


def main():
    """Main conversion function."""
    parser = argparse.ArgumentParser(description="Convert MNIST IDX files to NPZ")
    parser.add_argument('--data-dir', default='data',
                        help="directory holding the IDX files (default: data)")
    parser.add_argument('--output', default=None,
                        help="output file (default: <data-dir>/mnist.npz)")
    parser.add_argument('--validation', type=int, default=10000,
                        help="training images held out for validation")
    args = parser.parse_args()

    print("=" * 60)
    print("MNIST Data Format Converter")
    print("IDX → NPZ format")
    print("=" * 60)

    npz_path = args.output or os.path.join(args.data_dir, 'mnist.npz')

    if os.path.exists(npz_path):
        response = input(f"\n⚠️  {npz_path} already exists. Overwrite? (y/N): ")
        if response.lower() != 'y':
            print("❌ Conversion cancelled.")
            sys.exit(0)

    try:
        arrays = load_idx_dataset(args.data_dir)
        save_as_npz(arrays, args.validation, npz_path)
        verify_conversion(npz_path, arrays, args.validation)

        print("\n" + "=" * 60)
        print("✅ CONVERSION COMPLETE!")
        print("=" * 60)
        print(f"\n📁 NPZ file: {npz_path}")
        print(f"\n📝 Next steps:")
        print(f"   1. Train a model: python scripts/train_model.py --data {npz_path}")
        print(f"   2. Or start the server: MNIST_PATH={npz_path} python -m digitnet.api_server")

    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\n❌ Error during conversion: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
