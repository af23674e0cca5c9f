# clip_embed/backend/registry.py
"""
Clip-Embed — Backend Registry
-----------------------------

Factory for building inference backends that implement `ClipBackend`.

Available keys
- "native" : clip.cpp shared library through ctypes

Add new backends with `register_backend(name, builder)`; `ModelConf.backend`
selects one by key.
"""

from __future__ import annotations
from typing import Callable, Dict, Optional

from .base import ClipBackend
from .native import NativeBackend


BACKEND_BUILDERS: Dict[str, Callable[..., ClipBackend]] = {
    "native": lambda library=None, **kw: NativeBackend(library=library, **kw),
}


def list_backends() -> list[str]:
    """Return available registry keys (sorted)."""
    return sorted(BACKEND_BUILDERS.keys())


def register_backend(name: str, builder: Callable[..., ClipBackend], overwrite: bool = False) -> None:
    """Add a backend builder under `name`."""
    if name in BACKEND_BUILDERS and not overwrite:
        raise KeyError(f"Backend '{name}' is already registered")
    BACKEND_BUILDERS[name] = builder


def build_backend(name: str = "native", library: Optional[str] = None, **kwargs) -> ClipBackend:
    """
    Construct a backend by registry key.

    Example
    -------
        backend = build_backend("native", library="/opt/clip.cpp/libclip.so")
    """
    if name not in BACKEND_BUILDERS:
        raise KeyError(f"Unknown backend '{name}'. Available: {list_backends()}")
    return BACKEND_BUILDERS[name](library=library, **kwargs)
