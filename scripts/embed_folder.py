#!/usr/bin/env python3
"""
Embed every image in a folder with batched preprocessing + encoding.

Example
-------
    python scripts/embed_folder.py \
        --model models/clip-vit-base-patch32_ggml-model-q4_1.gguf \
        --folder data/images \
        --out experiments/results/images \
        --batch-size 16 --threads 8 --perf

Outputs
- <out>.npy        float32 matrix [N, projection_dim], row i = file i
- <out>.files.txt  the N file paths, one per line, same order

Notes
- Each chunk of --batch-size images is one preprocess call and one encode call.
"""

from __future__ import annotations
import argparse
import os
import sys
import numpy as np

# repo sys.path
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from clip_embed.core.config import load_config
from clip_embed.core.logging_utils import PerfAccumulator, logger, setup_logging, timer
from clip_embed.core.utils import chunked
from clip_embed.io.image_io import list_images, load_raw_image
from clip_embed.models.model import ClipModel


def parse_args():
    ap = argparse.ArgumentParser(description="Batch-embed a folder of images")
    ap.add_argument("--config", default=None, help="Optional YAML config")
    ap.add_argument("--model", default=None, help="Path to the model file (overrides config)")
    ap.add_argument("--folder", required=True, help="Folder with images (non-recursive)")
    ap.add_argument("--out", required=True, help="Output prefix (writes .npy and .files.txt)")
    ap.add_argument("--batch-size", type=int, default=16, help="Images per backend call")
    ap.add_argument("--threads", type=int, default=None, help="Backend threads")
    ap.add_argument("--preprocess", choices=("host", "backend"), default=None, help="Preprocessing strategy")
    ap.add_argument("--library", default=None, help="Path to the clip.cpp shared library")
    ap.add_argument("--no-normalize", action="store_true", help="Store raw projection output")
    ap.add_argument("--perf", action="store_true", help="Print a timing summary")
    return ap.parse_args()


def main():
    args = parse_args()
    overrides = {"model": {k: v for k, v in {
        "path": args.model, "threads": args.threads, "preprocess": args.preprocess, "library": args.library,
    }.items() if v is not None}}
    cfg = load_config(args.config, overrides=overrides)
    setup_logging(cfg.log_level)

    files = list_images(args.folder)
    if not files:
        logger.warning(f"No images found in {args.folder}")
        return

    perf = PerfAccumulator()
    vecs = []
    with ClipModel.load(cfg.model) as model:
        size = model.image_size if cfg.model.preprocess == "host" else None
        for chunk in chunked(files, args.batch_size):
            with timer("read", perf=perf):
                images = [load_raw_image(p, size=size, filter=cfg.io.resize_filter,
                                         correct_exif=cfg.io.correct_exif) for p in chunk]
            with timer("preprocess", perf=perf):
                blobs = model.preprocess_images(images)
            with timer("encode", perf=perf):
                vecs.extend(model.encode_images(blobs, normalize=not args.no_normalize))
        dim = model.projection_dim

    X = np.stack(vecs, axis=0).astype(np.float32) if vecs else np.zeros((0, dim), np.float32)
    os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)
    np.save(args.out + ".npy", X)
    with open(args.out + ".files.txt", "w", encoding="utf-8") as f:
        f.write("\n".join(files) + "\n")
    print(f"[OK] Wrote {X.shape[0]} x {X.shape[1]} embeddings → {args.out}.npy")

    if args.perf:
        print(perf.summary())


if __name__ == "__main__":
    main()
