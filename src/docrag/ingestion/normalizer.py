"""Text cleanup applied to extracted text before it is stored or embedded."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

# C0 controls and DEL, minus tab, LF and CR which the whitespace pass collapses.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


def normalize(raw_text: str | None) -> str:
    """Strip control characters, collapse whitespace runs, trim.

    Total and idempotent: ``normalize(normalize(x)) == normalize(x)``.
    ``None`` and empty input yield ``""``.
    """
    if not raw_text:
        return ""
    cleaned = _CONTROL_CHARS.sub("", raw_text)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    logger.debug("Normalized text from %d to %d characters", len(raw_text), len(cleaned))
    return cleaned
