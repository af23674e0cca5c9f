# clip_embed/backend/native.py
"""
Clip-Embed — Native Backend (clip.cpp via ctypes)
-------------------------------------------------

Binds the clip.cpp shared library and implements `ClipBackend` on top of it.
This is the only module that sees raw pointers.

Descriptors (layouts follow clip.h)
- clip_text_hparams   {n_vocab, num_positions, hidden_size, n_intermediate, projection_dim, n_head, n_layer: int32; eps: float}
- clip_vision_hparams {image_size, patch_size, hidden_size, n_intermediate, projection_dim, n_head, n_layer: int32; eps: float}
- clip_tokens         {data: int32*, size: size_t}
- clip_image_u8       {nx, ny: int; data: uint8*; size: size_t}
- clip_image_f32      {nx, ny: int; data: float*; size: size_t}
- *_batch             {data: element*, size: size_t}

Ownership bridge
- Inputs (raw pixels, blobs, token ids) are passed as pointers into the
  caller's numpy buffers; nothing is copied on the way in.
- Outputs the library allocates (token ids, preprocessed pixels) are copied
  into numpy arrays and released in a `finally` block of the same call, through
  the library's own clean/free entry points.
- clip.cpp exports no free for `clip_tokens`. When `clip_tokens_free` is
  missing the allocation is left with the library and a warning is logged once.

Library lookup order: explicit path → $CLIP_CPP_LIB → ctypes.util.find_library("clip").
"""

from __future__ import annotations
from ctypes import (POINTER, Structure, byref, c_bool, c_char_p, c_float, c_int, c_int32, c_size_t, c_uint8,
                    c_void_p, cast)
from typing import Any, List, Optional, Sequence, Tuple
import ctypes
import ctypes.util
import os

import numpy as np

from clip_embed.backend.base import ClipBackend
from clip_embed.core.errors import BackendUnavailableError, ModelLoadError
from clip_embed.core.logging_utils import get_logger
from clip_embed.models.buffers import Blob, RawImage
from clip_embed.models.params import TextParams, VisionParams

log = get_logger("backend.native")

LIBRARY_ENV = "CLIP_CPP_LIB"


# -------------------------
# C structures
# -------------------------

class ClipTextHparams(Structure):
    _fields_ = [
        ("n_vocab", c_int32),
        ("num_positions", c_int32),
        ("hidden_size", c_int32),
        ("n_intermediate", c_int32),
        ("projection_dim", c_int32),
        ("n_head", c_int32),
        ("n_layer", c_int32),
        ("eps", c_float),
    ]


class ClipVisionHparams(Structure):
    _fields_ = [
        ("image_size", c_int32),
        ("patch_size", c_int32),
        ("hidden_size", c_int32),
        ("n_intermediate", c_int32),
        ("projection_dim", c_int32),
        ("n_head", c_int32),
        ("n_layer", c_int32),
        ("eps", c_float),
    ]


class ClipTokens(Structure):
    _fields_ = [("data", POINTER(c_int32)), ("size", c_size_t)]


class ClipImageU8(Structure):
    _fields_ = [("nx", c_int), ("ny", c_int), ("data", POINTER(c_uint8)), ("size", c_size_t)]


class ClipImageF32(Structure):
    _fields_ = [("nx", c_int), ("ny", c_int), ("data", POINTER(c_float)), ("size", c_size_t)]


class ClipImageU8Batch(Structure):
    _fields_ = [("data", POINTER(ClipImageU8)), ("size", c_size_t)]


class ClipImageF32Batch(Structure):
    _fields_ = [("data", POINTER(ClipImageF32)), ("size", c_size_t)]


# name -> (restype, argtypes)
_REQUIRED = {
    "clip_model_load": (c_void_p, [c_char_p, c_int]),
    "clip_free": (None, [c_void_p]),
    "clip_get_text_hparams": (POINTER(ClipTextHparams), [c_void_p]),
    "clip_get_vision_hparams": (POINTER(ClipVisionHparams), [c_void_p]),
    "clip_get_image_mean": (POINTER(c_float), [c_void_p]),
    "clip_get_image_std": (POINTER(c_float), [c_void_p]),
    "clip_tokenize": (c_bool, [c_void_p, c_char_p, POINTER(ClipTokens)]),
    "clip_image_preprocess": (c_bool, [c_void_p, POINTER(ClipImageU8), POINTER(ClipImageF32)]),
    "clip_image_batch_preprocess": (None, [c_void_p, c_int, POINTER(ClipImageU8Batch), POINTER(ClipImageF32Batch)]),
    "clip_text_encode": (None, [c_void_p, c_int, POINTER(ClipTokens), POINTER(c_float), c_bool]),
    "clip_image_encode": (None, [c_void_p, c_int, POINTER(ClipImageF32), POINTER(c_float), c_bool]),
    "clip_image_batch_encode": (None, [c_void_p, c_int, POINTER(ClipImageF32Batch), POINTER(c_float), c_bool]),
}

_OPTIONAL = {
    "clip_image_f32_clean": (None, [POINTER(ClipImageF32)]),
    "clip_tokens_free": (None, [POINTER(ClipTokens)]),
}


def find_library(path: Optional[str] = None) -> str:
    """Resolve the clip.cpp shared library path or raise BackendUnavailableError."""
    for cand in (path, os.environ.get(LIBRARY_ENV)):
        if cand:
            if not os.path.exists(cand):
                raise BackendUnavailableError(f"clip.cpp library not found at {cand!r}")
            return cand
    found = ctypes.util.find_library("clip")
    if not found:
        raise BackendUnavailableError(
            f"Could not locate the clip.cpp shared library; set ${LIBRARY_ENV} or model.library"
        )
    return found


# -------------------------
# Descriptor helpers
# -------------------------

def _u8_desc(image: RawImage) -> ClipImageU8:
    return ClipImageU8(image.width, image.height, image.data.ctypes.data_as(POINTER(c_uint8)), image.size)


def _f32_desc(blob: Blob) -> ClipImageF32:
    return ClipImageF32(blob.width, blob.height, blob.data.ctypes.data_as(POINTER(c_float)), blob.size)


def _out_ptr(out: np.ndarray):
    if out.dtype != np.float32 or not out.flags["C_CONTIGUOUS"] or not out.flags["WRITEABLE"]:
        raise ValueError("Output buffer must be a writable, contiguous float32 array")
    return out.ctypes.data_as(POINTER(c_float))


class NativeBackend(ClipBackend):
    """
    Parameters
    ----------
    library : str | None
        Path to libclip (.so / .dylib / .dll). Falls back to $CLIP_CPP_LIB, then the linker search path.
    """

    name = "native"

    def __init__(self, library: Optional[str] = None):
        self.library = find_library(library)
        try:
            self._lib = ctypes.CDLL(self.library)
        except OSError as e:
            raise BackendUnavailableError(f"Failed to open {self.library!r}: {e}") from e

        for sym, (restype, argtypes) in _REQUIRED.items():
            fn = getattr(self._lib, sym, None)
            if fn is None:
                raise BackendUnavailableError(f"{self.library!r} does not export {sym}")
            fn.restype = restype
            fn.argtypes = argtypes

        self._optional = {}
        for sym, (restype, argtypes) in _OPTIONAL.items():
            fn = getattr(self._lib, sym, None)
            if fn is not None:
                fn.restype = restype
                fn.argtypes = argtypes
            self._optional[sym] = fn

        self._warned = set()
        log.debug(f"Loaded clip.cpp from {self.library}")

    def _warn_once(self, key: str, msg: str) -> None:
        if key not in self._warned:
            self._warned.add(key)
            log.warning(msg)

    # -------------------------
    # Native buffer release
    # -------------------------

    def _release_tokens(self, tokens: ClipTokens) -> None:
        if not tokens.data:
            return
        fn = self._optional["clip_tokens_free"]
        if fn is None:
            self._warn_once(
                "tokens",
                "clip_tokens_free is not exported; token buffers allocated by clip_tokenize stay with the library",
            )
            return
        fn(byref(tokens))

    def _release_image(self, img: ClipImageF32) -> None:
        if not img.data:
            return
        fn = self._optional["clip_image_f32_clean"]
        if fn is None:
            self._warn_once(
                "image",
                "clip_image_f32_clean is not exported; preprocessed buffers stay with the library",
            )
            return
        fn(byref(img))

    @staticmethod
    def _copy_blob(img: ClipImageF32) -> Optional[Blob]:
        if not img.data or img.size == 0:
            return None
        arr = np.ctypeslib.as_array(img.data, shape=(int(img.size),)).copy()
        try:
            return Blob(width=img.nx, height=img.ny, data=arr)
        except ValueError as e:
            log.warning(f"Discarding malformed preprocess output ({img.nx}x{img.ny}, {img.size} floats): {e}")
            return None

    # -------------------------
    # Lifecycle
    # -------------------------

    def load(self, path: bytes, verbosity: int) -> Optional[Any]:
        ctx = self._lib.clip_model_load(path, int(verbosity))
        return ctx or None

    def free(self, ctx: Any) -> None:
        self._lib.clip_free(ctx)

    # -------------------------
    # Introspection
    # -------------------------

    def text_hparams(self, ctx: Any) -> TextParams:
        ptr = self._lib.clip_get_text_hparams(ctx)
        if not ptr:
            raise ModelLoadError("Backend returned no text hyperparameters")
        p = ptr.contents
        return TextParams(
            vocab=p.n_vocab, positions=p.num_positions, hidden_size=p.hidden_size,
            intermediate=p.n_intermediate, projection_dim=p.projection_dim,
            heads=p.n_head, layers=p.n_layer, eps=float(p.eps),
        )

    def vision_hparams(self, ctx: Any) -> VisionParams:
        ptr = self._lib.clip_get_vision_hparams(ctx)
        if not ptr:
            raise ModelLoadError("Backend returned no vision hyperparameters")
        p = ptr.contents
        return VisionParams(
            image_size=p.image_size, patch_size=p.patch_size, hidden_size=p.hidden_size,
            intermediate=p.n_intermediate, projection_dim=p.projection_dim,
            heads=p.n_head, layers=p.n_layer, eps=float(p.eps),
        )

    def _triple(self, fn, ctx: Any, what: str) -> Tuple[float, float, float]:
        ptr = fn(ctx)
        if not ptr:
            raise ModelLoadError(f"Backend returned no image {what}")
        return (float(ptr[0]), float(ptr[1]), float(ptr[2]))

    def image_mean(self, ctx: Any) -> Tuple[float, float, float]:
        return self._triple(self._lib.clip_get_image_mean, ctx, "mean")

    def image_std(self, ctx: Any) -> Tuple[float, float, float]:
        return self._triple(self._lib.clip_get_image_std, ctx, "std")

    # -------------------------
    # Pipeline
    # -------------------------

    def tokenize(self, ctx: Any, text: bytes) -> Optional[np.ndarray]:
        tokens = ClipTokens()
        ok = self._lib.clip_tokenize(ctx, text, byref(tokens))
        try:
            if not ok:
                return None
            if tokens.size == 0 or not tokens.data:
                return np.zeros((0,), dtype=np.int32)
            return np.ctypeslib.as_array(tokens.data, shape=(int(tokens.size),)).astype(np.int32, copy=True)
        finally:
            self._release_tokens(tokens)

    def preprocess(self, ctx: Any, threads: int, image: RawImage) -> Optional[Blob]:
        # clip_image_preprocess is single-threaded; `threads` only applies to the batch entry point
        src = _u8_desc(image)
        res = ClipImageF32()
        ok = self._lib.clip_image_preprocess(ctx, byref(src), byref(res))
        try:
            return self._copy_blob(res) if ok else None
        finally:
            self._release_image(res)

    def preprocess_batch(self, ctx: Any, threads: int, images: Sequence[RawImage]) -> Optional[List[Blob]]:
        n = len(images)
        if n == 0:
            return []
        in_arr = (ClipImageU8 * n)(*[_u8_desc(im) for im in images])
        in_batch = ClipImageU8Batch(cast(in_arr, POINTER(ClipImageU8)), n)
        out_arr = (ClipImageF32 * n)()
        out_batch = ClipImageF32Batch(cast(out_arr, POINTER(ClipImageF32)), 0)

        self._lib.clip_image_batch_preprocess(ctx, int(threads), byref(in_batch), byref(out_batch))
        try:
            if out_batch.size != n:
                return None
            blobs = [self._copy_blob(out_arr[i]) for i in range(n)]
            if any(b is None for b in blobs):
                return None
            return blobs
        finally:
            for i in range(n):
                self._release_image(out_arr[i])

    def encode_text(self, ctx: Any, threads: int, ids: np.ndarray, out: np.ndarray, normalize: bool) -> None:
        ids = np.ascontiguousarray(ids, dtype=np.int32)
        tokens = ClipTokens(ids.ctypes.data_as(POINTER(c_int32)), ids.size)
        self._lib.clip_text_encode(ctx, int(threads), byref(tokens), _out_ptr(out), bool(normalize))

    def encode_image(self, ctx: Any, threads: int, blob: Blob, out: np.ndarray, normalize: bool) -> None:
        img = _f32_desc(blob)
        self._lib.clip_image_encode(ctx, int(threads), byref(img), _out_ptr(out), bool(normalize))

    def encode_image_batch(self, ctx: Any, threads: int, blobs: Sequence[Blob], out: np.ndarray,
                           normalize: bool) -> None:
        n = len(blobs)
        arr = (ClipImageF32 * n)(*[_f32_desc(b) for b in blobs])
        batch = ClipImageF32Batch(cast(arr, POINTER(ClipImageF32)), n)
        self._lib.clip_image_batch_encode(ctx, int(threads), byref(batch), _out_ptr(out), bool(normalize))
