"""
Pytest configuration and shared fixtures.

Provides scripted backends, paragraph-unit factories and sample pages.
"""

import asyncio
from typing import Callable, List, Optional, Union

import pytest

from pagelingo.configuration import TranslationOptions
from pagelingo.documents import HtmlDocument
from pagelingo.providers import TranslationBackend
from pagelingo.structures import ParagraphUnit, TextUnit

LONG_SENTENCE = (
    "The quick brown fox jumps over the lazy dog while the patient farmer "
    "watches from the porch and wonders whether the fence will hold tonight."
)

ARTICLE_PAGE = f"""<html><head><title>Sample</title></head><body>
<nav><a href="/">Home</a> <a href="/blog">Blog</a> <a href="/about">About</a></nav>
<article>
<p>{LONG_SENTENCE} {LONG_SENTENCE}</p>
<p>{LONG_SENTENCE} It keeps going with <em>emphasis</em> inside.</p>
</article>
</body></html>"""


Outcome = Union[str, BaseException]


class ScriptedBackend(TranslationBackend):
    """Backend double: ``handler(user_text)`` returns the reply or an exception."""

    name = "scripted"

    def __init__(
        self,
        handler: Optional[Callable[[str], Outcome]] = None,
        delay: float = 0.0,
    ) -> None:
        self.handler = handler or (lambda text: text.upper())
        self.delay = delay
        self.calls: List[str] = []
        self.active = 0
        self.peak = 0

    async def call(self, messages, *, model, temperature, max_tokens):
        text = messages[-1]["content"]
        self.calls.append(text)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.handler(text)
            if isinstance(outcome, BaseException):
                raise outcome
            return {"choices": [{"message": {"role": "assistant", "content": outcome}}]}
        finally:
            self.active -= 1


def build_unit(text: str, index: int = 0, unit_id: Optional[str] = None) -> ParagraphUnit:
    unit_id = unit_id or f"u{index}"
    return ParagraphUnit(
        unit_id=unit_id,
        container_anchor=None,
        text_units=[TextUnit(f"{unit_id}/t0", text, text, None)],
        combined_text=text,
        priority=10,
        document_order=index,
    )


@pytest.fixture
def scripted_backend():
    """Returns the ScriptedBackend class so tests can script replies."""
    return ScriptedBackend


@pytest.fixture
def make_unit():
    """Factory for detached paragraph units."""
    return build_unit


@pytest.fixture
def make_units():
    """Factory building one unit per text."""

    def factory(texts):
        return [build_unit(text, index) for index, text in enumerate(texts)]

    return factory


@pytest.fixture
def options():
    """Options with a short timeout suitable for tests."""
    return TranslationOptions(
        target_language="es",
        source_language="en",
        provider="echo",
        request_timeout=1.0,
    )


@pytest.fixture
def article_document():
    """A page with a navigation bar and an article of two paragraphs."""
    return HtmlDocument(ARTICLE_PAGE)
