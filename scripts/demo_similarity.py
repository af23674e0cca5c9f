#!/usr/bin/env python3
"""
Demo: score one image against one or more text prompts.

Examples
---------
1) Host preprocessing (image resized to the model input size on our side):
    python scripts/demo_similarity.py \
        --model models/clip-vit-base-patch32_ggml-model-q4_1.gguf \
        --image red_apple.jpg \
        --texts "an apple, a car, a dog"

2) Let the backend resize / crop / normalize, 4 threads, raw (unnormalized) vectors:
    python scripts/demo_similarity.py --model ... --image red_apple.jpg \
        --texts "an apple" --preprocess backend --threads 4 --no-normalize

Outputs
- One line per prompt with its dot-product score, best first.

Notes
- Settings come from --config (YAML) if given, then CLI flags, then CLIPEMB_* env vars.
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
from clip_embed.core.logging_utils import logger, setup_logging
from clip_embed.core.utils import score_matrix
from clip_embed.io.image_io import load_raw_image
from clip_embed.models.model import ClipModel


def parse_args():
    ap = argparse.ArgumentParser(description="Image vs. text similarity with a CLIP model")
    ap.add_argument("--config", default=None, help="Optional YAML config")
    ap.add_argument("--model", default=None, help="Path to the model file (overrides config)")
    ap.add_argument("--image", required=True, help="Image to score")
    ap.add_argument("--texts", required=True, help='Comma-separated prompts, e.g. "an apple, a car"')
    ap.add_argument("--threads", type=int, default=None, help="Backend threads")
    ap.add_argument("--preprocess", choices=("host", "backend"), default=None, help="Preprocessing strategy")
    ap.add_argument("--library", default=None, help="Path to the clip.cpp shared library")
    ap.add_argument("--no-normalize", action="store_true", help="Return raw projection output")
    ap.add_argument("--log-level", default=None, help="DEBUG / INFO / WARNING")
    return ap.parse_args()


def main():
    args = parse_args()
    overrides = {"model": {k: v for k, v in {
        "path": args.model, "threads": args.threads, "preprocess": args.preprocess, "library": args.library,
    }.items() if v is not None}}
    if args.log_level:
        overrides["log_level"] = args.log_level
    cfg = load_config(args.config, overrides=overrides)
    setup_logging(cfg.log_level)
    normalize = not args.no_normalize

    texts = [t.strip() for t in args.texts.split(",") if t.strip()]
    if not texts:
        logger.warning("No prompts given.")
        return

    with ClipModel.load(cfg.model) as model:
        # Host preprocessing needs the exact input size; the backend resizes on its own
        size = model.image_size if cfg.model.preprocess == "host" else None
        image = load_raw_image(args.image, size=size, filter=cfg.io.resize_filter, correct_exif=cfg.io.correct_exif)

        blob = model.preprocess_image(image)
        img_vec = model.encode_image(blob, normalize=normalize)

        text_vecs = [model.encode_tokens(model.tokenize(t), normalize=normalize) for t in texts]

    # [prompts, dim] x [1, dim] -> one score per prompt
    sims = score_matrix(np.stack(text_vecs), img_vec)[:, 0]
    scores = [(float(s), t) for s, t in zip(sims, texts)]

    print(f"\n[INFO] Image: {args.image} | Prompts: {len(texts)} | normalize={normalize}")
    for rank, (s, t) in enumerate(sorted(scores, reverse=True), start=1):
        print(f"  {rank:>2}. {t:<32}  score={s:.4f}")


if __name__ == "__main__":
    main()
