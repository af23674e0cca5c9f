# clip_embed/models/model.py
"""
Clip-Embed — Model Handle & Loader
----------------------------------

`ClipModel` owns one backend context for one model file.

Lifecycle
- `ClipModel.load(conf)` validates the path, asks the backend for a context,
  and copies hyperparameters and normalization constants out of it. If any of
  that fails the context is freed before the error propagates; callers never
  see a half-built handle.
- The context is released exactly once: by `close()`, by leaving a `with`
  block, or by garbage collection, whichever happens first (`weakref.finalize`
  guarantees the single call). Any use after that raises `ModelClosedError`.
- Tokens and Blobs are host copies, so they stay valid after the model is
  closed; they simply cannot be encoded by it anymore.

Concurrency
- The backend context is not assumed reentrant. Every backend call, and
  `close()`, runs under the model's `RLock`, so threads sharing one model
  serialize. Handing a model to another thread is fine.
- `threads` is read on every call; changing it applies to the next call.

Example
-------
    with ClipModel.load(ModelConf(path="clip-vit-b32.gguf", threads=4)) as model:
        v = model.encode_text("an apple", normalize=True)
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence, Tuple, Union
import os
import threading
import weakref

import numpy as np

from clip_embed.backend.base import ClipBackend
from clip_embed.backend.registry import build_backend
from clip_embed.core.config import ModelConf, Verbosity
from clip_embed.core.errors import ModelClosedError, ModelLoadError, PathNotFoundError, ProjectionDimMismatchError
from clip_embed.core.logging_utils import get_logger, timer
from clip_embed.core.utils import positive_int
from clip_embed.models.buffers import Blob, Tokens
from clip_embed.models.params import TextParams, VisionParams
from clip_embed.pipeline.encode import encode_image, encode_image_batch, encode_text, encode_tokens
from clip_embed.pipeline.preprocess import preprocess, preprocess_batch
from clip_embed.pipeline.tokenize import tokenize

log = get_logger("model")

PathLike = Union[str, bytes, os.PathLike]


def _native_path(path: PathLike) -> bytes:
    """Encode `path` for the C loader, raising PathNotFoundError for paths that cannot name a file."""
    raw = os.fsencode(path)
    if b"\x00" in raw:
        raise PathNotFoundError(path)
    if not os.path.isfile(raw):
        raise PathNotFoundError(path)
    return raw


def _release(backend: ClipBackend, ctx: Any, label: str) -> None:
    # Teardown errors are reported, never raised
    try:
        backend.free(ctx)
        log.debug(f"Released backend context for {label}")
    except Exception as e:
        log.warning(f"Backend free failed for {label}: {e}")


class ClipModel:
    """
    Handle to a loaded model. Build it with `ClipModel.load`.

    Parameters
    ----------
    backend : ClipBackend
        Backend that created `ctx`.
    ctx : Any
        Opaque context; owned by the new handle.
    conf : ModelConf
        Configuration used to load the model.
    text_params, vision_params : TextParams, VisionParams
        Hyperparameters copied out of the backend.
    mean, std : tuple of 3 floats
        Per-channel normalization constants (RGB).
    """

    def __init__(self, backend: ClipBackend, ctx: Any, conf: ModelConf,
                 text_params: TextParams, vision_params: VisionParams,
                 mean: Sequence[float], std: Sequence[float]):
        if ctx is None:
            raise ModelLoadError("ClipModel requires a live backend context")
        self._backend = backend
        self._ctx = ctx
        self._lock = threading.RLock()
        self._threads = positive_int(conf.threads, "threads")
        self.conf = conf
        self.path = conf.path
        self.text_params = text_params
        self.vision_params = vision_params
        self.mean: Tuple[float, float, float] = tuple(float(m) for m in mean)
        self.std: Tuple[float, float, float] = tuple(float(s) for s in std)
        self._finalizer = weakref.finalize(self, _release, backend, ctx, conf.path)

    # -------------------------
    # Loading
    # -------------------------

    @classmethod
    def load(cls, conf: Union[ModelConf, PathLike], backend: Optional[ClipBackend] = None) -> "ClipModel":
        """
        Load a model file.

        Raises
        ------
        PathNotFoundError
            `conf.path` does not exist. The backend is not called.
        ModelLoadError
            The backend returned no context, or reported unusable hyperparameters.
        ProjectionDimMismatchError
            Text / vision projection widths differ and `conf.strict_projection` is set.
        """
        if not isinstance(conf, ModelConf):
            conf = ModelConf(path=os.fsdecode(conf))
        threads = positive_int(conf.threads, "threads")
        path = _native_path(conf.path)

        if backend is None:
            backend = build_backend(conf.backend, library=conf.library)

        verbosity = conf.resolve_verbosity()
        with timer(f"load {os.path.basename(conf.path)}", log=log):
            ctx = backend.load(path, int(verbosity))
        if ctx is None:
            raise ModelLoadError(f"Backend failed to load model: {conf.path!r}")

        # Copy everything the handle needs out of the context and hand it over; any failure frees it
        try:
            text_params = backend.text_hparams(ctx)
            vision_params = backend.vision_hparams(ctx)
            mean = backend.image_mean(ctx)
            std = backend.image_std(ctx)
            if text_params.projection_dim != vision_params.projection_dim:
                err = ProjectionDimMismatchError(text_params.projection_dim, vision_params.projection_dim)
                if conf.strict_projection:
                    raise err
                log.warning(str(err))
            model = cls(backend, ctx, conf, text_params, vision_params, mean, std)
        except BaseException:
            _release(backend, ctx, conf.path)
            raise

        log.info(
            f"Loaded {conf.path} (image_size={vision_params.image_size}, "
            f"projection_dim={vision_params.projection_dim}, threads={threads}, "
            f"verbosity={Verbosity(verbosity).name.lower()})"
        )
        return model

    # -------------------------
    # Properties
    # -------------------------

    @property
    def threads(self) -> int:
        return self._threads

    @threads.setter
    def threads(self, value: int) -> None:
        self._threads = positive_int(value, "threads")

    @property
    def image_size(self) -> int:
        return self.vision_params.image_size

    @property
    def projection_dim(self) -> int:
        return self.vision_params.projection_dim

    @property
    def backend_name(self) -> str:
        return getattr(self._backend, "name", type(self._backend).__name__)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    # -------------------------
    # Backend access
    # -------------------------

    def invoke(self, method: str, *args):
        """
        Call `backend.<method>(ctx, *args)` under the model lock.
        The context itself never leaves this object.
        """
        with self._lock:
            if not self._finalizer.alive:
                raise ModelClosedError(f"Model {self.path!r} is closed")
            return getattr(self._backend, method)(self._ctx, *args)

    def close(self) -> None:
        """Release the backend context. Safe to call more than once."""
        with self._lock:
            self._finalizer()
            self._ctx = None

    def __enter__(self) -> "ClipModel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return (f"ClipModel(path={self.path!r}, backend={self.backend_name}, image_size={self.image_size}, "
                f"projection_dim={self.projection_dim}, threads={self.threads}, {state})")

    # -------------------------
    # Pipeline shortcuts
    # -------------------------

    def tokenize(self, text: str) -> Tokens:
        return tokenize(self, text)

    def preprocess_image(self, image) -> Blob:
        return preprocess(self, image)

    def preprocess_images(self, images) -> List[Blob]:
        return preprocess_batch(self, images)

    def encode_tokens(self, tokens: Tokens, normalize: bool = True) -> np.ndarray:
        return encode_tokens(self, tokens, normalize)

    def encode_text(self, text: str, normalize: bool = True) -> np.ndarray:
        return encode_text(self, text, normalize)

    def encode_image(self, blob: Blob, normalize: bool = True) -> np.ndarray:
        return encode_image(self, blob, normalize)

    def encode_images(self, blobs: Sequence[Blob], normalize: bool = True) -> List[np.ndarray]:
        return encode_image_batch(self, blobs, normalize)
