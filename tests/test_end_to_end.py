import os, sys
from pathlib import Path
import cv2
import numpy as np
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from clip_embed.core.config import ModelConf
from clip_embed.core.utils import score
from clip_embed.io.image_io import list_images, load_raw_image
from clip_embed.models.model import ClipModel

from conftest import FakeBackend


def test_apple_text_vs_red_image(backend, model_file, red_rgb):
    with ClipModel.load(ModelConf(path=str(model_file), threads=2), backend=backend) as model:
        tokens = model.tokenize("an apple")
        assert len(tokens) > 0

        blob = model.preprocess_image(red_rgb)
        assert (blob.width, blob.height) == (model.image_size, model.image_size)

        v = model.encode_tokens(tokens, normalize=True)
        z = model.encode_image(blob, normalize=True)
        assert v.shape == z.shape == (model.text_params.projection_dim,)

        s = score(v, z)
        assert np.isfinite(s)
        assert -1.0 - 1e-5 <= s <= 1.0 + 1e-5

    assert backend.created == backend.freed == 1


def test_image_file_resized_to_model_input(backend, model_file, tmp_path):
    # a 50x40 red image on disk (OpenCV writes BGR)
    bgr = np.zeros((40, 50, 3), dtype=np.uint8)
    bgr[..., 2] = 255
    path = tmp_path / "red.png"
    assert cv2.imwrite(str(path), bgr)

    with ClipModel.load(ModelConf(path=str(model_file)), backend=backend) as model:
        raw = load_raw_image(str(path), size=model.image_size)
        assert (raw.width, raw.height) == (32, 32)
        # decoded as RGB
        assert raw.as_array()[0, 0].tolist() == [255, 0, 0]

        blobs = model.preprocess_images([raw, raw])
        vecs = model.encode_images(blobs)
        assert len(vecs) == 2
        np.testing.assert_array_equal(vecs[0], vecs[1])


def test_backend_preprocess_pipeline(model_file, tmp_path):
    be = FakeBackend()
    bgr = np.full((64, 80, 3), 128, dtype=np.uint8)
    cv2.imwrite(str(tmp_path / "b.png"), bgr)
    cv2.imwrite(str(tmp_path / "a.png"), bgr)
    (tmp_path / "notes.txt").write_text("skip me")

    files = list_images(str(tmp_path))
    assert [os.path.basename(f) for f in files] == ["a.png", "b.png"]

    conf = ModelConf(path=str(model_file), preprocess="backend", threads=4)
    with ClipModel.load(conf, backend=be) as model:
        raws = [load_raw_image(f) for f in files]
        vecs = model.encode_images(model.preprocess_images(raws))
        assert len(vecs) == 2
        assert all(v.shape == (model.projection_dim,) for v in vecs)
    assert be.threads_seen == [4, 4]


def test_missing_image_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_raw_image(str(tmp_path / "missing.jpg"))
