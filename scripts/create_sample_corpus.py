#!/usr/bin/env python3
"""Create a small synthetic ImageNet-style corpus for trying out `vistra train`."""

import argparse
from pathlib import Path

import numpy as np
from PIL import Image

parser = argparse.ArgumentParser(description=__doc__)
parser.add_argument("--out", default="data/sample_corpus", help="Corpus folder to create.")
parser.add_argument("--classes", type=int, default=5)
parser.add_argument("--train-per-class", type=int, default=20)
parser.add_argument("--val-per-class", type=int, default=5)
parser.add_argument("--size", type=int, default=300, help="Short edge of generated images.")
args = parser.parse_args()

rng = np.random.default_rng(0)
root = Path(args.out)

for split, per_class in (("train", args.train_per_class), ("val", args.val_per_class)):
    for class_index in range(args.classes):
        class_dir = root / split / f"class_{class_index:03d}"
        class_dir.mkdir(parents=True, exist_ok=True)
        # Each class gets its own dominant colour so a network can actually learn it.
        base = rng.integers(0, 256, size=3)
        for i in range(per_class):
            width = args.size + int(rng.integers(0, args.size // 2))
            noise = rng.integers(-40, 40, size=(args.size, width, 3))
            pixels = np.clip(base + noise, 0, 255).astype(np.uint8)
            Image.fromarray(pixels).save(class_dir / f"img_{i:04d}.jpeg")

print(f"Created sample corpus at {root}")
print(f"  Classes: {args.classes}")
print(f"  Train images: {args.classes * args.train_per_class}")
print(f"  Val images: {args.classes * args.val_per_class}")
