# clip_embed/pipeline/tokenize.py
"""
Clip-Embed — Tokenizer Binding
------------------------------

`tokenize(model, text) -> Tokens`

- Text containing a NUL byte cannot be handed to the C tokenizer; it is
  rejected with `InvalidTextError` before the backend is called.
- A backend failure surfaces as `TokenizeRejectedError`.
- The id count is not checked against `text_params.positions`. Over-long
  sequences go to the backend as-is and it decides whether to truncate.
"""

from __future__ import annotations
from typing import TYPE_CHECKING

from clip_embed.core.errors import InvalidTextError, TokenizeRejectedError
from clip_embed.core.logging_utils import get_logger
from clip_embed.models.buffers import Tokens

if TYPE_CHECKING:
    from clip_embed.models.model import ClipModel

log = get_logger("tokenize")


def encode_text_arg(text: str) -> bytes:
    """UTF-8 bytes for the backend; raises InvalidTextError on embedded NUL."""
    if not isinstance(text, str):
        raise InvalidTextError(f"Expected str, got {type(text).__name__}")
    if "\x00" in text:
        raise InvalidTextError("Text contains an embedded NUL byte")
    return text.encode("utf-8")


def tokenize(model: "ClipModel", text: str) -> Tokens:
    raw = encode_text_arg(text)
    ids = model.invoke("tokenize", raw)
    if ids is None:
        raise TokenizeRejectedError(f"Backend failed to tokenize {text[:40]!r}")
    tokens = Tokens(ids)
    if len(tokens) > model.text_params.positions:
        log.debug(f"{len(tokens)} tokens exceed positions={model.text_params.positions}; passing through")
    return tokens
