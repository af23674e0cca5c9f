import os, sys, threading, time
from collections import Counter
from pathlib import Path
import numpy as np
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from clip_embed.backend.base import ClipBackend
from clip_embed.core.config import ModelConf
from clip_embed.models.buffers import Blob
from clip_embed.models.model import ClipModel
from clip_embed.models.params import TextParams, VisionParams


CLIP_MEAN = (0.48145466, 0.4578275, 0.40821073)
CLIP_STD = (0.26862954, 0.26130258, 0.27577711)


class FakeBackend(ClipBackend):
    """
    In-process stand-in for clip.cpp. Counts every call, tracks live contexts,
    and produces deterministic vectors so encode results can be compared.
    """
    name = "fake"

    def __init__(self, image_size=32, projection_dim=16, text_projection_dim=None,
                 fail_load=False, fail_tokenize=False, fail_preprocess=False, encode_delay=0.0):
        self.image_size = image_size
        self.projection_dim = projection_dim
        self.text_projection_dim = text_projection_dim or projection_dim
        self.fail_load = fail_load
        self.fail_tokenize = fail_tokenize
        self.fail_preprocess = fail_preprocess
        self.encode_delay = encode_delay
        self.calls = Counter()
        self.live = set()
        self.created = 0
        self.freed = 0
        self.bad_frees = 0
        self.threads_seen = []
        self.normalize_seen = []
        self.verbosity_seen = []
        self._in_flight = 0
        self.max_in_flight = 0
        self._guard = threading.Lock()

    # -- helpers
    def _check(self, ctx):
        assert ctx in self.live, "call on a released context"

    def _enter(self):
        with self._guard:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)

    def _leave(self):
        with self._guard:
            self._in_flight -= 1

    def _finish(self, vec, normalize):
        vec = vec.astype(np.float32)
        if normalize:
            vec = vec / (np.linalg.norm(vec) + 1e-12)
        return vec

    def text_vec(self, ids, normalize):
        seed = int(np.sum(np.asarray(ids, dtype=np.int64))) % 997 + 1
        vec = np.cos(np.arange(self.text_projection_dim, dtype=np.float64) * seed / 7.0) + 0.5
        return self._finish(vec, normalize)

    def image_vec(self, blob, normalize):
        dim = self.projection_dim
        data = blob.data.astype(np.float64)
        vec = np.array([data[j::dim].mean() for j in range(dim)]) + 0.01 * np.arange(1, dim + 1)
        return self._finish(vec, normalize)

    # -- lifecycle
    def load(self, path, verbosity):
        self.calls["load"] += 1
        self.verbosity_seen.append(verbosity)
        if self.fail_load:
            return None
        self.created += 1
        ctx = ("ctx", self.created)
        self.live.add(ctx)
        return ctx

    def free(self, ctx):
        self.calls["free"] += 1
        if ctx not in self.live:
            self.bad_frees += 1
            raise RuntimeError("double free")
        self.live.discard(ctx)
        self.freed += 1

    # -- introspection
    def text_hparams(self, ctx):
        self.calls["text_hparams"] += 1
        self._check(ctx)
        return TextParams(vocab=49408, positions=77, hidden_size=64, intermediate=256,
                          projection_dim=self.text_projection_dim, heads=4, layers=2, eps=1e-5)

    def vision_hparams(self, ctx):
        self.calls["vision_hparams"] += 1
        self._check(ctx)
        return VisionParams(image_size=self.image_size, patch_size=8, hidden_size=64, intermediate=256,
                            projection_dim=self.projection_dim, heads=4, layers=2, eps=1e-5)

    def image_mean(self, ctx):
        self.calls["image_mean"] += 1
        self._check(ctx)
        return CLIP_MEAN

    def image_std(self, ctx):
        self.calls["image_std"] += 1
        self._check(ctx)
        return CLIP_STD

    # -- pipeline
    def tokenize(self, ctx, text):
        self.calls["tokenize"] += 1
        self._check(ctx)
        assert isinstance(text, bytes)
        if self.fail_tokenize:
            return None
        words = text.decode("utf-8").split()
        ids = [49406] + [sum(w.encode("utf-8")) % 49000 + 1 for w in words] + [49407]
        return np.asarray(ids, dtype=np.int32)

    def _resize_normalize(self, image):
        s = self.image_size
        arr = image.as_array()
        rows = np.arange(s) * image.height // s
        cols = np.arange(s) * image.width // s
        small = arr[rows][:, cols].reshape(-1, 3).astype(np.float32) / np.float32(255.0)
        out = (small - np.asarray(CLIP_MEAN, np.float32)) / np.asarray(CLIP_STD, np.float32)
        return Blob(width=s, height=s, data=out.reshape(-1))

    def preprocess(self, ctx, threads, image):
        self.calls["preprocess"] += 1
        self._check(ctx)
        self.threads_seen.append(threads)
        if self.fail_preprocess:
            return None
        return self._resize_normalize(image)

    def preprocess_batch(self, ctx, threads, images):
        self.calls["preprocess_batch"] += 1
        self._check(ctx)
        self.threads_seen.append(threads)
        if self.fail_preprocess:
            return None
        return [self._resize_normalize(im) for im in images]

    def encode_text(self, ctx, threads, ids, out, normalize):
        self.calls["encode_text"] += 1
        self._check(ctx)
        self.threads_seen.append(threads)
        self.normalize_seen.append(normalize)
        out[:] = self.text_vec(ids, normalize)

    def encode_image(self, ctx, threads, blob, out, normalize):
        self.calls["encode_image"] += 1
        self._check(ctx)
        self._enter()
        try:
            if self.encode_delay:
                time.sleep(self.encode_delay)
            self.threads_seen.append(threads)
            self.normalize_seen.append(normalize)
            out[:] = self.image_vec(blob, normalize)
        finally:
            self._leave()

    def encode_image_batch(self, ctx, threads, blobs, out, normalize):
        self.calls["encode_image_batch"] += 1
        self._check(ctx)
        self.threads_seen.append(threads)
        self.normalize_seen.append(normalize)
        dim = self.projection_dim
        for i, b in enumerate(blobs):
            out[i * dim:(i + 1) * dim] = self.image_vec(b, normalize)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def model_file(tmp_path):
    p = tmp_path / "tiny-clip.gguf"
    p.write_bytes(b"GGUF\x00fake-weights")
    return p


@pytest.fixture
def model(backend, model_file):
    m = ClipModel.load(ModelConf(path=str(model_file), threads=2), backend=backend)
    yield m
    m.close()


@pytest.fixture
def backend_model(backend, model_file):
    m = ClipModel.load(ModelConf(path=str(model_file), threads=3, preprocess="backend"), backend=backend)
    yield m
    m.close()


def red_image(size=32):
    arr = np.zeros((size, size, 3), dtype=np.uint8)
    arr[..., 0] = 255
    return arr


@pytest.fixture
def red_rgb():
    return red_image(32)
