# clip_embed/pipeline/encode.py
"""
Clip-Embed — Encoding
---------------------

Drives the backend encoders and returns float32 embeddings.

Functions
- encode_tokens(model, tokens, normalize)      -> np.ndarray [text.projection_dim]
- encode_text(model, text, normalize)          -> tokenize + encode_tokens
- encode_image(model, blob, normalize)         -> np.ndarray [vision.projection_dim]
- encode_image_batch(model, blobs, normalize)  -> list of np.ndarray, input order

Notes
- Text is always encoded one item at a time; batching is image-only.
- Every blob must be `image_size x image_size`. A mismatch raises
  `ImageSizeMismatchError` before the backend is called (for a batch, before
  any item is encoded). Nothing is resampled or truncated here.
- `normalize=True` asks the backend for unit-L2 output; the flag is passed
  through untouched.
- Output buffers are allocated here and filled by the backend.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Iterable, List, Optional
import numpy as np

from clip_embed.core.errors import ImageSizeMismatchError
from clip_embed.core.logging_utils import get_logger, timer
from clip_embed.models.buffers import Blob, Tokens
from clip_embed.pipeline.tokenize import tokenize

if TYPE_CHECKING:
    from clip_embed.models.model import ClipModel

log = get_logger("encode")


def check_blob_size(model: "ClipModel", blob: Blob, index: Optional[int] = None) -> None:
    """Raise ImageSizeMismatchError unless `blob` matches the vision tower's input size."""
    if not isinstance(blob, Blob):
        raise TypeError(f"Expected Blob, got {type(blob).__name__}")
    size = model.image_size
    if blob.width != size or blob.height != size:
        raise ImageSizeMismatchError(size, (blob.width, blob.height), index=index)


def encode_tokens(model: "ClipModel", tokens: Tokens, normalize: bool = True) -> np.ndarray:
    if not isinstance(tokens, Tokens):
        raise TypeError(f"Expected Tokens, got {type(tokens).__name__}")
    out = np.zeros((model.text_params.projection_dim,), dtype=np.float32)
    with timer(f"encode_text n_tokens={len(tokens)}", log=log):
        model.invoke("encode_text", model.threads, tokens.ids, out, bool(normalize))
    return out


def encode_text(model: "ClipModel", text: str, normalize: bool = True) -> np.ndarray:
    return encode_tokens(model, tokenize(model, text), normalize)


def encode_image(model: "ClipModel", blob: Blob, normalize: bool = True) -> np.ndarray:
    check_blob_size(model, blob)
    out = np.zeros((model.vision_params.projection_dim,), dtype=np.float32)
    with timer("encode_image", log=log):
        model.invoke("encode_image", model.threads, blob, out, bool(normalize))
    return out


def encode_image_batch(model: "ClipModel", blobs: Iterable[Blob], normalize: bool = True) -> List[np.ndarray]:
    """
    Encode several blobs in one backend call.

    Returns
    -------
    list of np.ndarray
        One float32 vector of length `projection_dim` per blob, in input order.
    """
    blobs = list(blobs)
    if not blobs:
        return []
    for i, b in enumerate(blobs):
        check_blob_size(model, b, index=i)

    dim = model.vision_params.projection_dim
    out = np.zeros((len(blobs) * dim,), dtype=np.float32)
    with timer(f"encode_image_batch n={len(blobs)}", log=log):
        model.invoke("encode_image_batch", model.threads, blobs, out, bool(normalize))
    return [row.copy() for row in out.reshape(len(blobs), dim)]
