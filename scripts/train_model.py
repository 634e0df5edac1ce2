#!/usr/bin/env python3
"""
Train a digit model from the command line.

Usage:
    python scripts/train_model.py [--epochs 5] [--learning-rate 0.1]
                                  [--batch-size 32] [--hidden-size 128]
                                  [--data data/mnist.npz | --synthetic]
                                  [--seed 42] [--model-id my_model]

The script will:
1. Load the NPZ dataset (or generate synthetic digits)
2. Train, printing the accuracy after every epoch
3. Check that the exported bundle re-imports to the same accuracy
4. Save the model to the SQLite model database
"""

import sys
import uuid
import logging
import argparse

import numpy as np

from digitnet import mnist_loader
from digitnet.network import DEFAULT_HIDDEN_SIZE, L2_LAMBDA, evaluate_accuracy
from digitnet.trainer import Trainer
from digitnet.model_persistence import (
    DEFAULT_MODEL_DIR,
    export_model,
    import_model,
    save_model
)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Train a digit classifier")
    parser.add_argument('--epochs', type=int, default=5)
    parser.add_argument('--learning-rate', type=float, default=0.1)
    parser.add_argument('--batch-size', type=int, default=32)
    parser.add_argument('--hidden-size', type=int, default=DEFAULT_HIDDEN_SIZE)
    parser.add_argument('--l2-lambda', type=float, default=L2_LAMBDA)
    parser.add_argument('--data', default=None,
                        help="NPZ dataset (default: $MNIST_PATH or data/mnist.npz)")
    parser.add_argument('--synthetic', action='store_true',
                        help="use generated digits instead of the NPZ file")
    parser.add_argument('--seed', type=int, default=None,
                        help="seed for initialization, shuffling and dropout")
    parser.add_argument('--model-id', default=None)
    parser.add_argument('--model-dir', default=DEFAULT_MODEL_DIR)
    parser.add_argument('--log-level', default='WARNING')
    return parser.parse_args(argv)


def load_dataset(args: argparse.Namespace, rng: np.random.Generator):
    if args.synthetic:
        return mnist_loader.generate_synthetic_data(rng=rng)
    training, _, test = mnist_loader.load_data_wrapper(args.data, rng=rng)
    return training, test


def verify_round_trip(result: dict, test_images, test_labels) -> bool:
    """Re-import the exported bundle and compare test accuracy."""
    print(f"\n🔍 Verifying export round trip...")
    params, _ = import_model(export_model(result['params'], result['metadata']))
    accuracy = evaluate_accuracy(test_images, test_labels, params)

    if accuracy != result['metadata']['accuracy']:
        print(f"❌ Re-imported accuracy {accuracy:.4f} differs from "
              f"{result['metadata']['accuracy']:.4f}")
        return False

    print("✅ Verification passed! Re-imported model is identical.")
    return True


def main(argv=None):
    """Main training function."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("=" * 60)
    print("Digit Classifier Training")
    print(f"784 → {args.hidden_size} → 10, {args.epochs} epoch(s)")
    print("=" * 60)

    rng = np.random.default_rng(args.seed)

    try:
        (train_images, train_labels), (test_images, test_labels) = load_dataset(args, rng)
        print(f"📂 {len(train_labels)} training / {len(test_labels)} test images")

        def on_progress(epoch: int, accuracy: float) -> None:
            print(f"   Epoch {epoch}/{args.epochs}: {accuracy:.2%} (test sample)")

        trainer = Trainer(train_images, train_labels, test_images, test_labels, rng=rng)
        print(f"\n🏋️  Training...")
        result = trainer.train_model(
            args.epochs,
            args.learning_rate,
            args.batch_size,
            hidden_size=args.hidden_size,
            on_progress=on_progress,
            l2_lambda=args.l2_lambda
        )
        print(f"✅ Final accuracy on full test set: {result['metadata']['accuracy']:.2%}")

        if not verify_round_trip(result, test_images, test_labels):
            sys.exit(1)

        model_id = args.model_id or str(uuid.uuid4())
        if not save_model(result['params'], model_id, result['metadata'],
                          model_dir=args.model_dir):
            print(f"❌ Could not save model '{model_id}'")
            sys.exit(1)

        print("\n" + "=" * 60)
        print("✅ TRAINING COMPLETE!")
        print("=" * 60)
        print(f"\n📁 Saved as '{model_id}' in {args.model_dir}/")

    except Exception as e:
        print(f"\n❌ Error during training: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
