# clip_embed/backend/base.py
"""
Clip-Embed — Backend Interface
------------------------------

The contract the client pipeline consumes from an inference backend. It is a
one-to-one image of the clip.cpp C ABI, expressed with host types:

- `load(path, verbosity) -> ctx | None`     (None = backend refused the file)
- `free(ctx)`                                (call at most once per ctx)
- `text_hparams / vision_hparams(ctx)`       -> TextParams / VisionParams
- `image_mean / image_std(ctx)`              -> 3 floats (RGB)
- `tokenize(ctx, text) -> int32 ids | None`
- `preprocess(ctx, threads, RawImage) -> Blob | None`
- `preprocess_batch(ctx, threads, [RawImage]) -> [Blob] | None`
- `encode_text(ctx, threads, ids, out, normalize)`
- `encode_image(ctx, threads, Blob, out, normalize)`
- `encode_image_batch(ctx, threads, [Blob], out, normalize)`

Notes
- Output vectors are caller-allocated (`out` is a float32 array the backend
  writes into), mirroring the C signatures.
- Anything the backend allocates on its side must be copied to host memory
  and released before the method returns. Implementations return None to
  signal failure; the pipeline turns that into a typed error.
- A ctx is not assumed reentrant. `ClipModel` serializes calls per ctx.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from clip_embed.models.buffers import Blob, RawImage
from clip_embed.models.params import TextParams, VisionParams


class ClipBackend(ABC):
    """Abstract base class for inference backends driven by `ClipModel`."""

    name: str = "abstract"

    # -------------------------
    # Lifecycle
    # -------------------------

    @abstractmethod
    def load(self, path: bytes, verbosity: int) -> Optional[Any]:
        """Create a context for the model file at `path` (NUL-free bytes)."""

    @abstractmethod
    def free(self, ctx: Any) -> None:
        """Release a context returned by `load`."""

    # -------------------------
    # Introspection
    # -------------------------

    @abstractmethod
    def text_hparams(self, ctx: Any) -> TextParams:
        """Copy of the text tower hyperparameters."""

    @abstractmethod
    def vision_hparams(self, ctx: Any) -> VisionParams:
        """Copy of the vision tower hyperparameters."""

    @abstractmethod
    def image_mean(self, ctx: Any) -> Tuple[float, float, float]:
        """Per-channel normalization mean (RGB)."""

    @abstractmethod
    def image_std(self, ctx: Any) -> Tuple[float, float, float]:
        """Per-channel normalization std (RGB)."""

    # -------------------------
    # Pipeline
    # -------------------------

    @abstractmethod
    def tokenize(self, ctx: Any, text: bytes) -> Optional[np.ndarray]:
        """Token ids for NUL-free UTF-8 `text`, or None on failure."""

    @abstractmethod
    def preprocess(self, ctx: Any, threads: int, image: RawImage) -> Optional[Blob]:
        """Resize / crop / normalize one image on the backend side."""

    @abstractmethod
    def preprocess_batch(self, ctx: Any, threads: int, images: Sequence[RawImage]) -> Optional[List[Blob]]:
        """Batched `preprocess`; all-or-nothing, order preserving."""

    @abstractmethod
    def encode_text(self, ctx: Any, threads: int, ids: np.ndarray, out: np.ndarray, normalize: bool) -> None:
        """Write the text embedding into `out` (float32, projection_dim)."""

    @abstractmethod
    def encode_image(self, ctx: Any, threads: int, blob: Blob, out: np.ndarray, normalize: bool) -> None:
        """Write the image embedding into `out` (float32, projection_dim)."""

    @abstractmethod
    def encode_image_batch(self, ctx: Any, threads: int, blobs: Sequence[Blob], out: np.ndarray,
                           normalize: bool) -> None:
        """Write len(blobs) embeddings back to back into `out`."""
