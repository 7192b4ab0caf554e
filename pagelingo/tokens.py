"""Cheap, deterministic token estimation and truncation."""

from __future__ import annotations

import math

MIN_KEEP_CHARS = 50
SAFETY_FACTOR = 0.9


def is_cjk(char: str) -> bool:
    """Detect whether a character belongs to a CJK script."""

    code = ord(char)
    return (
        0x4E00 <= code <= 0x9FFF  # CJK Unified Ideographs
        or 0x3400 <= code <= 0x4DBF  # Extension A
        or 0x3040 <= code <= 0x30FF  # Hiragana/Katakana
        or 0xAC00 <= code <= 0xD7AF  # Hangul syllables
    )


def contains_cjk(text: str) -> bool:
    """Detect whether the text contains CJK characters."""

    return any(is_cjk(char) for char in text)


def count_cjk(text: str) -> int:
    return sum(1 for char in text if is_cjk(char))


def estimate(text: str) -> int:
    """Approximate the token cost of ``text``.

    Words plus CJK characters plus a tenth of the length for formatting.
    Never decreases when characters are appended.
    """

    if not text:
        return 0
    words = len(text.split())
    return words + count_cjk(text) + math.ceil(len(text) * 0.1)


def truncate(text: str, max_tokens: int) -> str:
    """Shorten ``text`` so that its estimate fits in ``max_tokens``."""

    if not text or max_tokens <= 0:
        return ""

    tokens = estimate(text)
    if tokens <= max_tokens:
        return text

    if max_tokens < 10:
        return text[:MIN_KEEP_CHARS]

    ratio = max_tokens / tokens
    cut_length = max(MIN_KEEP_CHARS, math.floor(len(text) * ratio * SAFETY_FACTOR))
    truncated = text[:cut_length]

    # Avoid cutting a word in half when a boundary is close to the cut.
    if len(truncated) < len(text) and cut_length > 100:
        boundary = max(truncated.rfind(" "), truncated.rfind("\n"))
        if boundary > cut_length * 0.8:
            truncated = truncated[:boundary]

    truncated_tokens = estimate(truncated)
    if truncated_tokens > max_tokens and len(truncated) > MIN_KEEP_CHARS:
        shrink = max_tokens / truncated_tokens
        truncated = truncated[: max(MIN_KEEP_CHARS, math.floor(len(truncated) * shrink))]

    return truncated
