# clip_embed/pipeline/preprocess.py
"""
Clip-Embed — Preprocessing
--------------------------

Turns raw RGB pixels into `Blob`s the vision tower can encode.

Strategies (`ModelConf.preprocess`)
- "host" (default): the caller has already resized to `image_size x image_size`
  (see `clip_embed.io.image_io.resize_exact`). Every byte maps to one float:
      out[i] = (raw[i] / 255 - mean[c]) / std[c],   c = i % 3
  computed in float32 with numpy. Never calls the backend, never fails for a
  well-formed RawImage.
- "backend": hands the caller's pixel buffer to the backend's resize / crop /
  normalize entry point (no copy on the way in). The backend output is copied
  into a host Blob and the native buffer is released inside the backend call.

Both strategies yield host-owned Blobs, so dropping a Blob never involves the backend.

Batch semantics
- len(output) == len(input), blob i comes from image i.
- All or nothing: a backend failure fails the whole batch
  (`PreprocessRejectedError`); no partial list is returned.

Accepted inputs: `RawImage`, (H, W, 3) uint8 ndarray, or PIL Image (converted
without resampling).
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Union
import numpy as np
from PIL import Image

from clip_embed.core.errors import PreprocessRejectedError
from clip_embed.core.logging_utils import get_logger, timer
from clip_embed.models.buffers import CHANNELS, Blob, RawImage

if TYPE_CHECKING:
    from clip_embed.models.model import ClipModel

log = get_logger("preprocess")

ImageLike = Union[RawImage, np.ndarray, Image.Image]


# -------------------------
# Host math
# -------------------------

def normalize_pixels(pixels: np.ndarray, mean: Sequence[float], std: Sequence[float]) -> np.ndarray:
    """
    Per-channel `(p / 255 - mean[c]) / std[c]` over interleaved RGB bytes.

    Returns a new float32 array with the same shape as `pixels`.
    """
    px = np.asarray(pixels)
    if px.dtype != np.uint8:
        raise ValueError(f"Expected uint8 pixels, got {px.dtype}")
    if px.size % CHANNELS != 0:
        raise ValueError(f"Pixel buffer length {px.size} is not a multiple of {CHANNELS}")
    m = np.asarray(mean, dtype=np.float32).reshape(CHANNELS)
    s = np.asarray(std, dtype=np.float32).reshape(CHANNELS)
    x = px.reshape(-1, CHANNELS).astype(np.float32) / np.float32(255.0)
    out = (x - m) / s
    return out.reshape(px.shape)


def as_raw_image(image: ImageLike) -> RawImage:
    """Coerce supported inputs to RawImage (no copy for contiguous uint8 arrays)."""
    if isinstance(image, RawImage):
        return image
    if isinstance(image, Image.Image):
        return RawImage.from_pil(image)
    if isinstance(image, np.ndarray):
        return RawImage.from_array(image)
    raise TypeError(f"Unsupported image type: {type(image).__name__}")


def host_preprocess(image: ImageLike, mean: Sequence[float], std: Sequence[float]) -> Blob:
    raw = as_raw_image(image)
    return Blob(width=raw.width, height=raw.height, data=normalize_pixels(raw.data, mean, std))


# -------------------------
# Model-facing API
# -------------------------

def _strategy(model: "ClipModel", strategy: Optional[str]) -> str:
    s = strategy or model.conf.preprocess
    if s not in ("host", "backend"):
        raise ValueError(f"Unknown preprocess strategy {s!r}")
    return s


def preprocess(model: "ClipModel", image: ImageLike, strategy: Optional[str] = None) -> Blob:
    """Preprocess a single image with the model's normalization constants."""
    raw = as_raw_image(image)
    if _strategy(model, strategy) == "host":
        if raw.width != model.image_size or raw.height != model.image_size:
            log.debug(f"Host preprocessing {raw.width}x{raw.height} image; model expects {model.image_size}")
        return host_preprocess(raw, model.mean, model.std)

    with timer("preprocess[backend]", log=log):
        blob = model.invoke("preprocess", model.threads, raw)
    if blob is None:
        raise PreprocessRejectedError(f"Backend failed to preprocess a {raw.width}x{raw.height} image")
    return blob


def preprocess_batch(model: "ClipModel", images: Iterable[ImageLike], strategy: Optional[str] = None) -> List[Blob]:
    """Preprocess several images; order preserving, all-or-nothing."""
    raws = [as_raw_image(im) for im in images]
    if not raws:
        return []
    if _strategy(model, strategy) == "host":
        return [host_preprocess(r, model.mean, model.std) for r in raws]

    with timer(f"preprocess_batch[backend] n={len(raws)}", log=log):
        blobs = model.invoke("preprocess_batch", model.threads, raws)
    if blobs is None or len(blobs) != len(raws):
        raise PreprocessRejectedError(f"Backend failed to preprocess a batch of {len(raws)} images")
    return list(blobs)
