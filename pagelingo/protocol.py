"""Numbered-list merge/split protocol for translating several units per call."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import ParseError

logger = logging.getLogger(__name__)

NUMBERED_LINE = re.compile(
    r"^\s*(?:\[(?P<bracket>\d+)\]|(?P<plain>\d+)\s*[.)、:：])\s*(?P<text>.*)$"
)
LINE_BREAKS = re.compile(r"\s*[\r\n]+\s*")


def strip_code_fence(text: str) -> str:
    """Remove leading/trailing markdown code fences if present."""

    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped

    # Drop opening fence and optional language hint.
    first_newline = stripped.find("\n")
    if first_newline == -1:
        return stripped
    body = stripped[first_newline + 1 :]
    closing_index = body.rfind("```")
    if closing_index != -1:
        body = body[:closing_index]
    return body.strip()


def merge(texts: Sequence[str]) -> str:
    """Enumerate ``texts`` as ``1. text`` lines, one unit per line."""

    return "\n".join(
        f"{index}. {LINE_BREAKS.sub(' ', text.strip())}"
        for index, text in enumerate(texts, start=1)
    )


def parse_numbered_line(line: str) -> Tuple[Optional[int], str]:
    """Split a response line into its leading number (if any) and text."""

    match = NUMBERED_LINE.match(line)
    if not match:
        return None, line.strip()
    number = match.group("bracket") or match.group("plain")
    return int(number), match.group("text").strip()


def split(raw: str, originals: Sequence[str]) -> List[str]:
    """Recover one translation per original from a merged response.

    Lines are matched by their number first, then by position; a unit with
    neither keeps its original text. Raises :class:`ParseError` when the
    response is empty, or carries no numbering at all and a line count that
    does not match the units.
    """

    expected = len(originals)
    if expected == 0:
        return []

    text = strip_code_fence(raw or "")
    if not text:
        raise ParseError("Translation response was empty.")

    if expected == 1:
        number, value = parse_numbered_line(text) if "\n" not in text else (None, text)
        return [value or originals[0]]

    lines = [line for line in text.splitlines() if line.strip()]
    parsed = [parse_numbered_line(line) for line in lines]

    numbered: Dict[int, str] = {}
    for number, value in parsed:
        if number is not None and 1 <= number <= expected and number not in numbered:
            numbered[number] = value

    if not numbered and len(lines) != expected:
        raise ParseError(
            f"Numbered response unusable: expected {expected} lines, got {len(lines)} "
            "without numbering."
        )

    translations: List[str] = []
    for position, original in enumerate(originals, start=1):
        value = numbered.get(position)
        if value is None and position <= len(parsed):
            number, candidate = parsed[position - 1]
            # A line numbered for another unit is never reused.
            if number is None or number not in numbered:
                value = candidate
                logger.debug("Line %d recovered by position", position)
        if not value:
            logger.debug("Line %d missing; keeping the original text", position)
            value = original
        translations.append(value)
    return translations
