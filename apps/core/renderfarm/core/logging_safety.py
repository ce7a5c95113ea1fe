"""Utilities for safe structured logging fields."""

from __future__ import annotations

import hashlib
from typing import Any

_MAX_LOGGED_TEXT = 120


def safe_log_identifier(value: Any, *, prefix: str) -> str:
    """Return a deterministic non-reversible token for log correlation fields."""
    text = str(value or "").strip()
    if not text:
        return f"{prefix}-missing"

    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}-{digest}"


def safe_log_text(value: Any) -> str:
    """Collapse worker-supplied text to one bounded line for key=value log output."""
    text = " ".join(str(value).split())
    if len(text) > _MAX_LOGGED_TEXT:
        return text[: _MAX_LOGGED_TEXT - 3] + "..."
    return text
