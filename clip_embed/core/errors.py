### ========================================================================================================================================
## Module       : clip_embed/core/errors.py
## Project      : Clip-Embed (CLIP embeddings over a native inference backend)
## Topics       : Computer Vision, NLP, Embeddings, Native Interop
## Purpose      : Define the typed exception hierarchy raised by the loader, tokenizer, preprocessor and encoder so that
##                callers can tell recoverable input problems apart from backend failures.
## Role         : Error Taxonomy
### ========================================================================================================================================

## ======================================================================================================
## SPECIFICATIONS
## ======================================================================================================
"""
Clip-Embed — Error Taxonomy
---------------------------

- Every error raised on purpose by this package derives from `ClipError`.
- Errors that describe a bad argument also derive from the matching builtin
  (`ValueError`, `FileNotFoundError`, ...) so generic handlers keep working.
- Nothing here is retried internally; a caller that wants retries re-invokes.
"""

## ======================================================================================================
## SETUP (ADJUSTABLE) (ADJUST IF NECESSARY)
## ======================================================================================================
from __future__ import annotations
from typing import Tuple

## ======================================================================================================
## IMPLEMENTATIONS
## ======================================================================================================
# Declare the package root error
class ClipError(Exception):
    """Base class for every error raised by clip_embed."""

# Declare the loader errors
class PathNotFoundError(ClipError, FileNotFoundError):
    """The model path does not exist (or cannot name a file at all)."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"Model file not found: {path!r}")

class ModelLoadError(ClipError):
    """The backend refused to create a context for the model file."""

class ProjectionDimMismatchError(ModelLoadError):
    """Text and vision towers project into spaces of different width."""

    def __init__(self, text_dim: int, vision_dim: int):
        self.text_dim = int(text_dim)
        self.vision_dim = int(vision_dim)
        super().__init__(
            f"Text projection_dim ({self.text_dim}) != vision projection_dim ({self.vision_dim}); "
            "text and image embeddings would not be comparable"
        )

class BackendUnavailableError(ClipError, OSError):
    """The native shared library could not be located or is missing symbols."""

class ModelClosedError(ClipError, RuntimeError):
    """The model context was already released."""

# Declare the tokenizer errors
class TokenizeError(ClipError):
    """Base class for tokenization failures."""

class InvalidTextError(TokenizeError, ValueError):
    """Text cannot be passed to the backend (embedded NUL byte)."""

class TokenizeRejectedError(TokenizeError):
    """The backend tokenizer reported failure."""

# Declare the preprocessing errors
class PreprocessError(ClipError):
    """Base class for preprocessing failures."""

class PreprocessRejectedError(PreprocessError):
    """The backend preprocessing entry point reported failure."""

# Declare the encoder errors
class EncodeError(ClipError):
    """Base class for encoding failures."""

class ImageSizeMismatchError(EncodeError, ValueError):
    """A blob does not have the square size the vision tower expects."""

    def __init__(self, expected: int, found: Tuple[int, int], index: int | None = None):
        self.expected = int(expected)
        self.found = (int(found[0]), int(found[1]))
        self.index = index
        where = f" (batch item {index})" if index is not None else ""
        super().__init__(
            f"Invalid image size{where}: expected ({self.expected}x{self.expected}) "
            f"found ({self.found[0]}x{self.found[1]})"
        )

### ========================================================================================================================================
## END (ADD IMPLEMENTATIONS IF NECESSARY)
### ========================================================================================================================================
