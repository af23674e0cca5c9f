import os, sys
from pathlib import Path
import logging
import numpy as np
import pytest
import yaml

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from clip_embed.core.config import (AppConf, IOConf, ModelConf, Verbosity, apply_overrides, load_config,
                                    save_config)
from clip_embed.core.logging_utils import PerfAccumulator, timer
from clip_embed.core.utils import chunked, positive_int, score, score_matrix


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for k in list(os.environ):
        if k.startswith("CLIPEMB_"):
            monkeypatch.delenv(k, raising=False)


def test_defaults():
    cfg = load_config()
    assert cfg.log_level == "INFO"
    assert cfg.model.threads == 1
    assert cfg.model.preprocess == "host"
    assert cfg.model.verbosity == "auto"
    assert cfg.model.strict_projection is True
    assert cfg.io.resize_filter == "bilinear"


def test_yaml_with_aliases_and_overrides(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text(yaml.safe_dump({
        "log_level": "debug",
        "model": {"model_path": "m.gguf", "n_threads": 4, "preprocess": "backend", "verbosity": 2},
        "io": {"resize_filter": "bicubic"},
    }))
    cfg = load_config(str(p), overrides={"model": {"threads": 8}})
    assert cfg.log_level == "DEBUG"
    assert cfg.model.path == "m.gguf"
    assert cfg.model.threads == 8
    assert cfg.model.preprocess == "backend"
    assert cfg.model.verbosity == "maximum"
    assert cfg.io.resize_filter == "bicubic"


def test_model_path_shorthand(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text("model: weights/clip.gguf\n")
    assert load_config(str(p)).model.path == "weights/clip.gguf"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CLIPEMB_MODEL__THREADS", "6")
    monkeypatch.setenv("CLIPEMB_MODEL__STRICT_PROJECTION", "no")
    monkeypatch.setenv("CLIPEMB_MODEL__LIBRARY", "/opt/libclip.so")
    monkeypatch.setenv("CLIPEMB_MODEL__NOPE", "1")
    cfg = load_config()
    assert cfg.model.threads == 6
    assert cfg.model.strict_projection is False
    assert cfg.model.library == "/opt/libclip.so"
    assert load_config(apply_env=False).model.threads == 1


def test_rejected_env_overrides_keep_previous_values(monkeypatch, tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text(yaml.safe_dump({"model": {"threads": 4}}))
    monkeypatch.setenv("CLIPEMB_MODEL__THREADS", "0")
    monkeypatch.setenv("CLIPEMB_MODEL__PREPROCESS", "gpu")
    monkeypatch.setenv("CLIPEMB_MODEL__VERBOSITY", "loud")
    monkeypatch.setenv("CLIPEMB_MODEL", "other.gguf")
    monkeypatch.setenv("CLIPEMB_IO__CORRECT_EXIF", "yes")
    cfg = load_config(str(p))
    assert cfg.model.threads == 4
    assert cfg.model.preprocess == "host"
    assert cfg.model.verbosity == "auto"
    assert isinstance(cfg.model, ModelConf)
    assert cfg.io.correct_exif is True


def test_invalid_values_raise():
    with pytest.raises(ValueError):
        ModelConf(threads=-1)
    with pytest.raises(ValueError):
        ModelConf(preprocess="gpu")
    with pytest.raises(ValueError):
        ModelConf(verbosity="loud")
    with pytest.raises(ValueError):
        ModelConf(verbosity=7)
    assert IOConf(resize_filter="weird").resize_filter == "bilinear"


def test_verbosity_resolution():
    assert ModelConf(verbosity="minimum").resolve_verbosity() == Verbosity.MINIMUM
    assert ModelConf(verbosity=Verbosity.DEFAULT).resolve_verbosity() == Verbosity.DEFAULT
    auto = ModelConf()
    assert auto.resolve_verbosity(logging.DEBUG) == Verbosity.MAXIMUM
    assert auto.resolve_verbosity(logging.INFO) == Verbosity.DEFAULT
    assert auto.resolve_verbosity(logging.ERROR) == Verbosity.MINIMUM


def test_save_and_reload(tmp_path):
    cfg = apply_overrides(AppConf(), log_level="warning", model={"threads": 3, "path": "x.gguf"})
    out = tmp_path / "nested" / "cfg.yaml"
    save_config(cfg, str(out))
    again = load_config(str(out), apply_env=False)
    assert again.to_dict() == cfg.to_dict()
    assert again.log_level == "WARNING"


def test_vector_utils():
    a = np.array([3.0, 4.0], np.float32)
    assert score(a, a) == pytest.approx(25.0)
    with pytest.raises(ValueError):
        score(a, np.ones(3))
    assert score_matrix(np.eye(2), np.eye(2)).tolist() == [[1.0, 0.0], [0.0, 1.0]]
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    assert positive_int("4") == 4
    for bad in (0, -2, 2.5, True, "x", None):
        with pytest.raises(ValueError):
            positive_int(bad)


def test_perf_accumulator():
    perf = PerfAccumulator()
    for _ in range(3):
        with timer("step", perf=perf):
            pass
    with perf.measure("other"):
        pass
    assert perf.counts == {"step": 3, "other": 1}
    text = perf.summary(reset=True)
    assert "step: n=3" in text
    assert perf.counts == {}
