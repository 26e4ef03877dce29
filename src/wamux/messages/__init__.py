from __future__ import annotations

from .normalize import (
    CanonicalMessage,
    MessageNormalizer,
    ReplyContext,
    extract_body,
    format_timestamp,
    is_reaction,
)

__all__ = [
    "CanonicalMessage",
    "MessageNormalizer",
    "ReplyContext",
    "extract_body",
    "format_timestamp",
    "is_reaction",
]
