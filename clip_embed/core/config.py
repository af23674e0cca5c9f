### ========================================================================================================================================
## Module       : clip_embed/core/config.py
## Project      : Clip-Embed (CLIP embeddings over a native inference backend)
## Topics       : Computer Vision, NLP, Embeddings, Native Interop
## Purpose      : Provide a typed, YAML-driven configuration system: nested dataclasses (app/model/io), load & validate
##                configs, layered overrides (YAML → Python dict → environment), and save/serialize helpers.
## Role         : Configuration System
### ========================================================================================================================================

## ======================================================================================================
## SPECIFICATIONS
## ======================================================================================================
"""
Clip-Embed — Configuration System
---------------------------------

Goals
- Strongly-typed configuration via dataclasses.
- YAML loader with layered overrides:
    1) YAML file (base)
    2) Python dict overrides (e.g., from CLI)
    3) Environment variables (optional; prefixed 'CLIPEMB_', nested with '__',
       e.g. CLIPEMB_MODEL__THREADS=8)
- Validation and normalization (thread count, preprocessing strategy, verbosity).
- Save/Load helpers for reproducibility.

Design
- AppConf -> (ModelConf, IOConf)
- `ModelConf` is the single object handed to `ClipModel.load`: it replaces a
  fluent builder with named, defaulted fields that are fixed before loading.

Notes
- This module must stay free of native / heavy imports.
"""

## ======================================================================================================
## SETUP (ADJUSTABLE) (ADJUST IF NECESSARY)
## ======================================================================================================
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import IntEnum
from typing import Optional, Literal, Any, Dict
import logging
import os
import yaml

from clip_embed.core.logging_utils import get_logger
from clip_embed.core.utils import positive_int

log = get_logger("config")

ENV_PREFIX = "CLIPEMB_"

## ======================================================================================================
## IMPLEMENTATIONS
## ======================================================================================================
# Declare the backend verbosity levels (values are passed to clip_model_load)
class Verbosity(IntEnum):
    MINIMUM = 0
    DEFAULT = 1
    MAXIMUM = 2

    # Map a logging level to the closest backend verbosity
    @classmethod
    def from_log_level(cls, level: int) -> "Verbosity":
        if level <= logging.DEBUG:
            return cls.MAXIMUM
        if level <= logging.INFO:
            return cls.DEFAULT
        return cls.MINIMUM

_VERBOSITY_NAMES = ("auto", "minimum", "default", "maximum")
_PREPROCESS = ("host", "backend")
_FILTERS = ("nearest", "bilinear", "bicubic", "area", "lanczos")

# Normalize a verbosity value into one of the names above
def _verbosity_name(v: Any) -> str:
    if isinstance(v, Verbosity):
        return v.name.lower()
    if isinstance(v, int) and not isinstance(v, bool):
        try:
            return Verbosity(v).name.lower()
        except ValueError:
            raise ValueError(f"Unknown verbosity {v!r}; expected 0, 1 or 2") from None
    name = str(v).strip().lower()
    if name.isdigit():
        return _verbosity_name(int(name))
    if name not in _VERBOSITY_NAMES:
        raise ValueError(f"Unknown verbosity {v!r}; expected one of {_VERBOSITY_NAMES}")
    return name

# Declare the dataclass for the model configuration
@dataclass
class ModelConf:
    """How to load one model file."""
    path: str = "models/clip-vit-base-patch32_ggml-model-q4_1.gguf"
    verbosity: str = "auto"
    threads: int = 1

    # Strategy used to turn raw pixels into blobs
    preprocess: Literal["host", "backend"] = "host"

    # Backend selection
    backend: str = "native"
    library: Optional[str] = None

    # Refuse models whose text and vision projection widths differ
    strict_projection: bool = True

    def __post_init__(self):
        self.path = os.fspath(self.path)
        self.threads = positive_int(self.threads, "threads")
        self.verbosity = _verbosity_name(self.verbosity)
        self.preprocess = str(self.preprocess).lower()
        if self.preprocess not in _PREPROCESS:
            raise ValueError(f"Unknown preprocess strategy {self.preprocess!r}; expected one of {_PREPROCESS}")
        self.strict_projection = bool(self.strict_projection)
        if self.library is not None:
            self.library = os.fspath(self.library)

    # Resolve "auto" against the current project logger level
    def resolve_verbosity(self, level: Optional[int] = None) -> Verbosity:
        if self.verbosity == "auto":
            if level is None:
                level = get_logger("model").getEffectiveLevel()
            return Verbosity.from_log_level(level)
        return Verbosity[self.verbosity.upper()]

# Declare the dataclass for the image I/O configuration
@dataclass
class IOConf:
    """Decoding and resizing of images read from disk."""
    resize_filter: Literal["nearest", "bilinear", "bicubic", "area", "lanczos"] = "bilinear"
    correct_exif: bool = False

    def __post_init__(self):
        if self.resize_filter not in _FILTERS:
            self.resize_filter = "bilinear"
        self.correct_exif = bool(self.correct_exif)

# Declare the dataclass for the app configuration
@dataclass
class AppConf:
    """Top-level configuration."""
    log_level: str = "INFO"
    model: ModelConf = field(default_factory=ModelConf)
    io: IOConf = field(default_factory=IOConf)

    # Serialize to a plain dictionary (YAML/JSON-friendly)
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    # Declare the basic validation and normalization pass
    def validate(self) -> "AppConf":
        self.log_level = str(self.log_level).upper()
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            self.log_level = "INFO"

        # Re-run the field normalization (fields may have been set directly)
        self.model.__post_init__()
        self.io.__post_init__()
        return self

# Recursively merge the dictionary `sup` into dictionary `base` due to priority
def _merge_dict(base: Dict[str, Any], sup: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in (sup or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out

# Construct a dataclass from a section of a dictionary
def _build_dc(dc, section: str, data: Dict[str, Any]):
    val = data.get(section, {})
    if isinstance(val, str) and section == "model":
        # `model: path/to/file.gguf` shorthand
        return dc(path=val)
    if not isinstance(val, dict):
        return dc()

    # Define shallow copy for edits
    val = {**val}

    # Set the aliases in the model section
    if section == "model":
        if "threads" not in val and "n_threads" in val:
            val["threads"] = val.pop("n_threads")
        if "path" not in val and "model_path" in val:
            val["path"] = val.pop("model_path")
        if "library" not in val and "lib" in val:
            val["library"] = val.pop("lib")

    # Filter to fields that the dataclass actually has
    allowed = set(getattr(dc, "__dataclass_fields__", {}).keys())
    unknown = sorted(k for k in val if k not in allowed)
    if unknown:
        log.warning(f"Ignoring unknown keys in '{section}': {unknown}")
    val = {k: v for k, v in val.items() if k in allowed}
    return dc(**val)

# Declare the environment variable overrider into the nested dataclasses
def _apply_env_overrides(cfg: AppConf, prefix: str = ENV_PREFIX) -> AppConf:
    # Collect the prefixed variables with the prefix stripped
    flat: Dict[str, str] = {k[len(prefix):]: v for k, v in os.environ.items() if k.startswith(prefix)}

    # Assign the navigation with the object and data path
    def assign(obj, path: str, raw: str):
        # Navigate the nested objects and cast based on existing field type
        parts = path.split("__")
        target = obj
        for p in parts[:-1]:
            target = getattr(target, p.lower())
        leaf = parts[-1].lower()
        old = getattr(target, leaf)
        if isinstance(old, (ModelConf, IOConf)):
            raise ValueError(f"'{leaf}' is a section, not a field")

        # Declare the inference type from the existing field
        if isinstance(old, bool):
            val = str(raw).lower() in ("1", "true", "yes", "on")
        elif isinstance(old, int):
            val = int(raw)
        elif isinstance(old, float):
            val = float(raw)
        else:
            val = raw
        setattr(target, leaf, val)

        # Re-run the section normalization; restore the previous value if it rejects the override
        post = getattr(target, "__post_init__", None)
        if post is not None:
            try:
                post()
            except ValueError:
                setattr(target, leaf, old)
                post()
                raise

    for key, raw in flat.items():
        try:
            assign(cfg, key, raw)
        except (AttributeError, ValueError) as e:
            log.warning(f"Ignoring malformed override {prefix}{key}={raw!r}: {e}")
    return cfg

# Load the app configurations with YAML and apply a Python dictionary overrides
def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None,
                apply_env: bool = True) -> AppConf:
    data: Dict[str, Any] = {}
    if path:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

    if overrides:
        data = _merge_dict(data, overrides)

    cfg = AppConf(
        log_level=data.get("log_level", "INFO"),
        model=_build_dc(ModelConf, "model", data),
        io=_build_dc(IOConf, "io", data),
    )
    if apply_env:
        cfg = _apply_env_overrides(cfg)

    return cfg.validate()

# Serialize the app configuration into the YAML file on disk
def save_config(cfg: AppConf, path: str) -> None:
    """Save the configuration to YAML."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(cfg.to_dict(), f, sort_keys=False)

# Declare a simple Python overrider (e.g., from argparse)
def apply_overrides(cfg: AppConf, **kwargs) -> AppConf:
    """
    Apply simple Python overrides (e.g., from an argparse namespace).
    Example:
        cfg = apply_overrides(cfg, log_level="DEBUG", model={'threads': 8})
    """
    for k, v in kwargs.items():
        if not hasattr(cfg, k) or v is None:
            continue
        cur = getattr(cfg, k)
        if isinstance(cur, (ModelConf, IOConf)) and isinstance(v, dict):
            for kk, vv in v.items():
                if hasattr(cur, kk) and vv is not None:
                    setattr(cur, kk, vv)
        else:
            setattr(cfg, k, v)
    return cfg.validate()

### ========================================================================================================================================
## END (ADD IMPLEMENTATIONS IF NECESSARY)
### ========================================================================================================================================
