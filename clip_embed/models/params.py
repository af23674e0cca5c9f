# clip_embed/models/params.py
"""
Clip-Embed — Hyperparameter Views
---------------------------------

Read-only copies of the text / vision tower configuration reported by the
backend when a model is loaded. The loader copies them out once, so a
`ClipModel` can answer shape questions (image size, projection width) without
touching the native context again.

- `TextParams`   : vocab, positions, hidden_size, intermediate, projection_dim, heads, layers, eps
- `VisionParams` : image_size, patch_size, hidden_size, intermediate, projection_dim, heads, layers, eps
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict


@dataclass(frozen=True)
class TextParams:
    """Text tower hyperparameters."""
    vocab: int
    positions: int
    hidden_size: int
    intermediate: int
    projection_dim: int
    heads: int
    layers: int
    eps: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VisionParams:
    """Vision tower hyperparameters. Blobs must be `image_size x image_size`."""
    image_size: int
    patch_size: int
    hidden_size: int
    intermediate: int
    projection_dim: int
    heads: int
    layers: int
    eps: float

    @property
    def num_patches(self) -> int:
        return (self.image_size // self.patch_size) ** 2 if self.patch_size > 0 else 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
