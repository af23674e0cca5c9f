### ========================================================================================================================================
## Module       : clip_embed/core/utils.py
## Project      : Clip-Embed (CLIP embeddings over a native inference backend)
## Topics       : Computer Vision, NLP, Embeddings, Native Interop
## Purpose      : Small vector helpers shared by the encoder, the scripts and the tests.
## Role         : Typed Core Structures
### ========================================================================================================================================

## ======================================================================================================
## SPECIFICATIONS
## ======================================================================================================
"""
Clip-Embed — Core Utilities
---------------------------

- Dot-product similarity between embeddings (`score`, `score_matrix`).
- Chunked iteration for splitting folders into batches.
- Positive-int validation used for thread counts.
"""

## ======================================================================================================
## SETUP (ADJUSTABLE) (ADJUST IF NECESSARY)
## ======================================================================================================
from __future__ import annotations
from typing import Iterator, Sequence, TypeVar
import numpy as np

## ======================================================================================================
## IMPLEMENTATIONS
## ======================================================================================================
#
T = TypeVar("T")

#
def score(a: np.ndarray, b: np.ndarray) -> float:
    """
    Dot product of two embeddings. Equals cosine similarity when both are L2-normalized.
    """
    a = np.asarray(a, dtype=np.float32).ravel()
    b = np.asarray(b, dtype=np.float32).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Embedding length mismatch: {a.shape[0]} vs {b.shape[0]}")
    return float(np.dot(a, b))

#
def score_matrix(queries: np.ndarray, keys: np.ndarray) -> np.ndarray:
    """[Q, d] x [K, d] -> [Q, K] dot products."""
    q = np.atleast_2d(np.asarray(queries, dtype=np.float32))
    k = np.atleast_2d(np.asarray(keys, dtype=np.float32))
    return q @ k.T

#
def chunked(seq: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield fixed-size chunks from a sequence."""
    size = positive_int(size, "size")
    for i in range(0, len(seq), size):
        yield seq[i:i+size]

#
def positive_int(value, name: str = "value") -> int:
    """Return `value` as int, raising ValueError unless it is >= 1."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    try:
        iv = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a positive integer, got {value!r}") from None
    if iv != value and not isinstance(value, str):
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    if iv < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return iv

### ========================================================================================================================================
## END (ADD IMPLEMENTATIONS IF NECESSARY)
### ========================================================================================================================================
