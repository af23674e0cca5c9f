# clip_embed/models/buffers.py
"""
Clip-Embed — Image & Token Buffers
----------------------------------

Value types that cross the backend boundary.

- `RawImage` : caller-owned RGB bytes, row-major interleaved (H, W, 3), uint8.
- `Blob`     : a normalized image (float32, same spatial layout) ready for encoding.
- `Tokens`   : int32 token ids produced by `ClipModel.tokenize`.

Ownership
- All three hold *host* memory (numpy arrays). Buffers the native backend
  allocates are copied into these objects and released inside the backend call
  that produced them, so dropping a Blob or Tokens never touches the backend.
- `RawImage` wraps the caller's buffer without copying when it is already a
  contiguous uint8 array; the pipeline never writes to it.

Invariants (checked at construction, `ValueError` otherwise)
- `len(data) == width * height * 3` for both RawImage and Blob.
- width, height >= 1.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Tuple, Union
import numpy as np
from PIL import Image

CHANNELS = 3

BytesLike = Union[bytes, bytearray, memoryview, np.ndarray]


def _check_dims(width: int, height: int, length: int, kind: str) -> Tuple[int, int]:
    w, h = int(width), int(height)
    if w < 1 or h < 1:
        raise ValueError(f"{kind} dimensions must be positive, got {w}x{h}")
    expected = w * h * CHANNELS
    if length != expected:
        raise ValueError(
            f"{kind} buffer length {length} does not match {w}x{h}x{CHANNELS} = {expected}"
        )
    return w, h


@dataclass(eq=False)
class RawImage:
    """RGB image, 8 bits per channel, interleaved."""
    width: int
    height: int
    data: BytesLike

    def __post_init__(self):
        if isinstance(self.data, np.ndarray):
            if self.data.dtype != np.uint8:
                raise ValueError(f"RawImage expects uint8 pixels, got {self.data.dtype}")
            buf = np.ascontiguousarray(self.data).reshape(-1)
        else:
            buf = np.frombuffer(self.data, dtype=np.uint8)
        self.width, self.height = _check_dims(self.width, self.height, buf.size, "RawImage")
        self.data = buf

    @property
    def size(self) -> int:
        return int(self.data.size)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.height, self.width, CHANNELS)

    def as_array(self) -> np.ndarray:
        """(H, W, 3) view over the pixel buffer."""
        return self.data.reshape(self.shape)

    @classmethod
    def from_array(cls, rgb: np.ndarray) -> "RawImage":
        """Wrap an (H, W, 3) uint8 RGB array."""
        arr = np.asarray(rgb)
        if arr.ndim != 3 or arr.shape[2] != CHANNELS:
            raise ValueError(f"Expected an (H, W, 3) array, got shape {arr.shape}")
        return cls(width=arr.shape[1], height=arr.shape[0], data=arr)

    @classmethod
    def from_pil(cls, img: Image.Image) -> "RawImage":
        """Convert a PIL image to RGB without resampling."""
        return cls.from_array(np.asarray(img.convert("RGB"), dtype=np.uint8))


@dataclass(eq=False)
class Blob:
    """Normalized image in the layout the vision tower consumes."""
    width: int
    height: int
    data: np.ndarray

    def __post_init__(self):
        buf = np.ascontiguousarray(self.data, dtype=np.float32).reshape(-1)
        self.width, self.height = _check_dims(self.width, self.height, buf.size, "Blob")
        self.data = buf

    @property
    def size(self) -> int:
        return int(self.data.size)

    def as_array(self) -> np.ndarray:
        return self.data.reshape(self.height, self.width, CHANNELS)

    def __repr__(self) -> str:
        return f"Blob({self.width}x{self.height}, size={self.size})"


class Tokens:
    """
    Token ids for one text. The id array is read-only; build new Tokens via
    `ClipModel.tokenize` instead of editing ids in place.
    """

    __slots__ = ("_ids",)

    def __init__(self, ids):
        arr = np.array(ids, dtype=np.int32).reshape(-1)
        arr.setflags(write=False)
        self._ids = arr

    @property
    def ids(self) -> np.ndarray:
        return self._ids

    def to_list(self) -> List[int]:
        return [int(i) for i in self._ids]

    def __len__(self) -> int:
        return int(self._ids.size)

    def __iter__(self) -> Iterator[int]:
        return iter(self.to_list())

    def __repr__(self) -> str:
        return f"Tokens(n={len(self)}, ids={self.to_list()[:8]}{'...' if len(self) > 8 else ''})"
