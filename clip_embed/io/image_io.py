# clip_embed/io/image_io.py
"""
Clip-Embed — Image I/O Utilities
--------------------------------

Responsibilities
- Decode images from disk into RGB uint8 arrays (OpenCV, or Pillow when EXIF
  orientation must be honored).
- Exact resize to the model's square input size (host preprocessing expects
  `image_size x image_size` pixels; nothing downstream resamples).
- Folder scanning for batch scripts.

Notes
- Unlike most OpenCV code, every public function here returns **RGB**, the
  channel order the backend and `RawImage` use.
"""

from __future__ import annotations
import os
from typing import List, Optional, Sequence

import cv2
import numpy as np
from PIL import Image, ImageOps

from clip_embed.models.buffers import RawImage


_CV2_FILTERS = {
    "nearest": cv2.INTER_NEAREST,
    "bilinear": cv2.INTER_LINEAR,
    "bicubic": cv2.INTER_CUBIC,
    "area": cv2.INTER_AREA,
    "lanczos": cv2.INTER_LANCZOS4,
}

IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".bmp", ".webp")


# -------------------------
# Core read
# -------------------------

def imread_rgb(path: str, correct_exif: bool = False) -> np.ndarray:
    """
    Read an image from disk as an (H, W, 3) RGB uint8 array. Raises on failure.
    """
    if correct_exif:
        try:
            with Image.open(path) as im:
                return np.asarray(ImageOps.exif_transpose(im).convert("RGB"), dtype=np.uint8)
        except (FileNotFoundError, OSError) as e:
            raise FileNotFoundError(f"Failed to read image: {path}") from e

    bgr = cv2.imread(path, cv2.IMREAD_COLOR)
    if bgr is None:
        raise FileNotFoundError(f"Failed to read image: {path}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


# -------------------------
# Resizing
# -------------------------

def resize_exact(rgb: np.ndarray, size: int, filter: str = "bilinear") -> np.ndarray:
    """
    Resize to exactly `size x size` (aspect ratio is not kept). No-op when already that size.
    """
    if filter not in _CV2_FILTERS:
        raise ValueError(f"Unknown resize filter {filter!r}; expected one of {sorted(_CV2_FILTERS)}")
    h, w = rgb.shape[:2]
    if (w, h) == (size, size):
        return rgb
    return cv2.resize(rgb, (int(size), int(size)), interpolation=_CV2_FILTERS[filter])


def load_raw_image(path: str, size: Optional[int] = None, filter: str = "bilinear",
                   correct_exif: bool = False) -> RawImage:
    """
    Read `path` into a RawImage, resized to `size x size` when `size` is given.
    """
    rgb = imread_rgb(path, correct_exif=correct_exif)
    if size is not None:
        rgb = resize_exact(rgb, size, filter=filter)
    return RawImage.from_array(np.ascontiguousarray(rgb))


# -------------------------
# Folder helpers
# -------------------------

def list_images(folder: str, exts: Sequence[str] = IMAGE_EXTS) -> List[str]:
    """
    List image file paths in a folder (non-recursive), sorted lexicographically.
    """
    entries = []
    for name in sorted(os.listdir(folder)):
        p = os.path.join(folder, name)
        if os.path.isfile(p) and name.lower().endswith(tuple(exts)):
            entries.append(p)
    return entries
