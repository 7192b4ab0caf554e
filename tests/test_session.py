"""
Unit tests for the page session lifecycle.
"""

import asyncio
from dataclasses import replace

import pytest

from pagelingo.documents import TRANSLATED_CLASS, HtmlDocument
from pagelingo.errors import BackendError, TranslationProviderConfigurationError
from pagelingo.session import PageSession

from conftest import ARTICLE_PAGE, LONG_SENTENCE


class StatusRecorder:
    """Collects (status, data) pairs reported by a session."""

    def __init__(self):
        self.events = []

    def __call__(self, status, data):
        self.events.append((status, data))

    @property
    def statuses(self):
        return [status for status, _ in self.events]


@pytest.fixture
def recorder():
    return StatusRecorder()


def _article_texts(document):
    return [p.get_text() for p in document.soup.article.find_all("p")]


class TestTranslatePage:
    """Tests for PageSession.translate_page()."""

    @pytest.mark.asyncio
    async def test_replace_then_restore(self, article_document, scripted_backend, options, recorder):
        original = article_document.serialize()
        backend = scripted_backend()
        session = PageSession(article_document, backend, options, on_status=recorder)

        results = await session.translate_page()

        assert len(results) == 2 and all(result.success for result in results)
        assert all(text.isupper() for text in _article_texts(article_document))
        assert article_document.soup.nav.a.string == "Home"
        assert recorder.events[0] == ("translating", {"progress": 0, "completed": 0, "total": 2})
        assert recorder.events[-1] == ("translated", {"total_translated": 2, "mode": "replace"})
        assert recorder.statuses.count("translating") == 3
        status = session.get_status()
        assert status["is_translated"] and not status["is_translating"]
        assert status["stats"]["state"] == "replaced"

        session.restore()

        assert article_document.serialize() == original
        assert recorder.statuses[-1] == "restored"
        assert not session.get_status()["is_translated"]

    @pytest.mark.asyncio
    async def test_same_settings_are_not_translated_twice(
        self, article_document, scripted_backend, options
    ):
        backend = scripted_backend()
        session = PageSession(article_document, backend, options)

        first = await session.translate_page()
        second = await session.translate_page()

        assert second is first
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_changed_settings_restore_before_retranslating(
        self, article_document, scripted_backend, options, recorder
    ):
        backend = scripted_backend()
        session = PageSession(article_document, backend, options, on_status=recorder)
        await session.translate_page()

        await session.translate_page(replace(options, target_language="fr"))

        assert len(backend.calls) == 4
        assert backend.calls[2] == backend.calls[0]
        assert "restored" in recorder.statuses
        assert session.state.last_settings["target_language"] == "fr"

    @pytest.mark.asyncio
    async def test_bilingual_view_toggle(self, article_document, scripted_backend, options):
        session = PageSession(article_document, scripted_backend(), replace(options, mode="bilingual"))

        await session.translate_page()

        blocks = article_document.soup.find_all("div", class_=TRANSLATED_CLASS)
        assert len(blocks) == 2
        assert session.toggle_bilingual_view() == "original-only"
        assert all(block.has_attr("hidden") for block in blocks)
        assert session.toggle_bilingual_view() == "bilingual"
        assert not any(block.has_attr("hidden") for block in blocks)

    @pytest.mark.asyncio
    async def test_toggle_outside_bilingual_mode(self, article_document, scripted_backend, options):
        session = PageSession(article_document, scripted_backend(), options)
        await session.translate_page()
        assert session.toggle_bilingual_view() is None

    @pytest.mark.asyncio
    async def test_partial_failure_reports_warning(
        self, article_document, scripted_backend, options, recorder
    ):
        def handler(text):
            if "emphasis" in text:
                return BackendError.from_status(429)
            return text.upper()

        session = PageSession(article_document, scripted_backend(handler), options, on_status=recorder)

        results = await session.translate_page()

        assert [result.success for result in results] == [True, False]
        status, payload = recorder.events[-1]
        assert status == "translated"
        assert payload["total_translated"] == 1
        assert payload["warning"] == "1 of 2 paragraphs could not be translated."
        assert session.get_stats()["failed_count"] == 1

    @pytest.mark.asyncio
    async def test_configuration_error_is_reported_and_raised(
        self, article_document, scripted_backend, options, recorder
    ):
        backend = scripted_backend(lambda text: TranslationProviderConfigurationError("no key"))
        session = PageSession(article_document, backend, options, on_status=recorder)

        with pytest.raises(TranslationProviderConfigurationError):
            await session.translate_page()

        assert recorder.events[-1] == ("error", {"message": "no key"})

    @pytest.mark.asyncio
    async def test_residual_markers_are_cleaned_first(self, scripted_backend, options):
        page = ARTICLE_PAGE.replace(
            f"<p>{LONG_SENTENCE} {LONG_SENTENCE}</p>",
            f'<p>{LONG_SENTENCE} {LONG_SENTENCE}<div class="{TRANSLATED_CLASS}">Stale</div></p>',
        )
        document = HtmlDocument(page)
        backend = scripted_backend()

        await PageSession(document, backend, options).translate_page()

        assert document.soup.find(class_=TRANSLATED_CLASS) is None
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_page_without_text(self, scripted_backend, options, recorder):
        document = HtmlDocument("<html><body><div>   </div></body></html>")
        session = PageSession(document, scripted_backend(), options, on_status=recorder)

        assert await session.translate_page() == []
        assert recorder.events == [("translated", {"total_translated": 0, "mode": "replace"})]


class TestNavigation:
    """Tests for PageSession.notify_navigation()."""

    @pytest.mark.asyncio
    async def test_navigation_cancels_running_translation(
        self, article_document, scripted_backend, options, recorder
    ):
        backend = scripted_backend(delay=0.05)
        session = PageSession(
            article_document, backend, replace(options, max_concurrency=1), on_status=recorder
        )
        original_texts = _article_texts(article_document)

        task = asyncio.ensure_future(session.translate_page())
        await asyncio.sleep(0.01)
        session.notify_navigation()
        results = await task

        assert results == []
        assert len(backend.calls) == 1
        assert "translated" not in recorder.statuses
        assert _article_texts(article_document) == original_texts
        assert not session.state.navigating
        assert session.state.generation == 1

    @pytest.mark.asyncio
    async def test_navigation_resets_translated_state(
        self, article_document, scripted_backend, options
    ):
        backend = scripted_backend()
        session = PageSession(article_document, backend, options)
        await session.translate_page()

        session.notify_navigation()

        assert not session.state.is_translated
        assert session.state.last_settings is None
        assert session.units == []
