### ========================================================================================================================================
## Module       : clip_embed/core/logging_utils.py
## Project      : Clip-Embed (CLIP embeddings over a native inference backend)
## Topics       : Computer Vision, NLP, Embeddings, Native Interop
## Purpose      : Centralize logging and timing: a configured project logger with child loggers per module, runtime level
##                switching, a debug-level context timer wrapped around backend calls, and an accumulator for timing
##                summaries printed by the scripts.
## Role         : Logging & Timing Utilities
### ========================================================================================================================================

## ======================================================================================================
## SPECIFICATIONS
## ======================================================================================================
"""
Clip-Embed — Logging & Timing Utilities
---------------------------------------

- Centralized `logger` ("clip-embed") configured on import (INFO by default).
- `get_logger(name)` — child logger, e.g. "clip-embed.model".
- `setup_logging(level)` — change level at runtime.
- `timer(name, perf=None)` — context timer (ms) logged at debug level, optionally
  recorded into a `PerfAccumulator`.
- `PerfAccumulator` — accumulate and summarize timing stats across steps.
"""

## ======================================================================================================
## SETUP (ADJUSTABLE) (ADJUST IF NECESSARY)
## ======================================================================================================
from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import sys
import time

## ======================================================================================================
## IMPLEMENTATIONS
## ======================================================================================================
# Configure a root log format and create a project-scoped logger
_LOG_FORMAT = "[%(levelname)s] %(asctime)s %(name)s:%(lineno)d - %(message)s"
logging.basicConfig(stream=sys.stdout, level=logging.INFO, format=_LOG_FORMAT)
logger = logging.getLogger("clip-embed")

# Return a child of the project logger so levels set on the parent propagate
def get_logger(name: str) -> logging.Logger:
    return logger.getChild(name)

# Setup the logger and adjust in a global level
def setup_logging(level: str = "INFO") -> None:
    # Map the string level to logging constant (fallback to INFO)
    level_val = getattr(logging, str(level).upper(), logging.INFO)

    # Update all the root handlers so third-party libraries accepts the new level
    for lh in logging.getLogger().handlers:
        lh.setLevel(level_val)

    # Update the root and project logger
    logging.getLogger().setLevel(level_val)
    logger.setLevel(level_val)

# Assign a dataclass that aggregates the timing samples and provides rolling statistics
@dataclass
class PerfAccumulator:
    # Assign the dictionary for the counter and total durations by name
    counts: Dict[str, int] = field(default_factory=dict)
    sums_ms: Dict[str, float] = field(default_factory=dict)

    # Assign the dictionary for the per-name extrema
    max_ms: Dict[str, float] = field(default_factory=dict)
    min_ms: Dict[str, float] = field(default_factory=dict)

    # Record one sample under a name
    def add(self, name: str, dt_ms: float) -> None:
        self.counts[name] = self.counts.get(name, 0) + 1
        self.sums_ms[name] = self.sums_ms.get(name, 0.0) + dt_ms
        self.max_ms[name] = max(self.max_ms.get(name, dt_ms), dt_ms)
        self.min_ms[name] = min(self.min_ms.get(name, dt_ms), dt_ms)

    # Measure the block under a given name and record stats with context manager
    @contextmanager
    def measure(self, name: str):
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.add(name, (time.perf_counter() - t0) * 1000.0)

    # Declare an interpretable summary
    def summary(self, reset: bool = False) -> str:
        # Construct a multi-line report with the metrics per key (Avg, min, max, sum)
        lines = ["Perf Summary (ms):"]
        for k in sorted(self.counts.keys()):
            n = self.counts[k]
            s = self.sums_ms[k]
            avg = s / max(n, 1)
            lines.append(f"  - {k}: n={n} avg={avg:.2f} min={self.min_ms[k]:.2f} max={self.max_ms[k]:.2f} sum={s:.2f}")
        out = "\n".join(lines)

        # Define the reset to start a fresh measurement window
        if reset:
            self.counts.clear(); self.sums_ms.clear(); self.max_ms.clear(); self.min_ms.clear()
        return out

# Declare a simple context timer that logs the duration at a debug level
@contextmanager
def timer(name: str, perf: Optional[PerfAccumulator] = None, log: Optional[logging.Logger] = None):
    t0 = time.perf_counter()
    try:
        yield
    finally:
        # Compute the elapsed milliseconds, log at a debug level, and record if asked
        dt = (time.perf_counter() - t0) * 1000.0
        (log or logger).debug(f"[timer] {name}: {dt:.2f} ms")
        if perf is not None:
            perf.add(name, dt)

### ========================================================================================================================================
## END (ADD IMPLEMENTATIONS IF NECESSARY)
### ========================================================================================================================================
