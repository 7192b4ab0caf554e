"""Page session: the public surface a host drives to translate one page."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from bs4 import Tag

from .configuration import TranslationOptions
from .documents import HtmlDocument
from .errors import PagelingoError
from .policy import FailurePolicy
from .providers import TranslationBackend
from .renderer import RenderEngine
from .segmenter import ContentSegmenter
from .structures import ParagraphUnit, RenderMode, SessionState, TranslationResult
from .translator import ProgressCallback, TranslationOrchestrator

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, Dict[str, Any]], None]


class PageSession:
    """Owns the per-page state and wires segmenter, orchestrator and renderer."""

    def __init__(
        self,
        document: HtmlDocument,
        backend: TranslationBackend,
        options: Optional[TranslationOptions] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> None:
        self.document = document
        self.backend = backend
        self.options = options or TranslationOptions()
        self.on_status = on_status
        self.state = SessionState()
        self.policy = FailurePolicy()
        self.segmenter = ContentSegmenter(document, max_group_size=self.options.max_group_size)
        self.renderer = RenderEngine(document)
        self.orchestrator: Optional[TranslationOrchestrator] = None
        self.units: List[ParagraphUnit] = []
        self.last_results: List[TranslationResult] = []

    def extract_and_group(self, root: Optional[Tag] = None) -> List[ParagraphUnit]:
        self.units = self.segmenter.segment(root, self.options.exclude_rules)
        logger.info("Extracted %d paragraph units", len(self.units))
        return self.units

    async def translate_all(
        self,
        units: Sequence[ParagraphUnit],
        options: Optional[TranslationOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TranslationResult]:
        options = options or self.options
        self.orchestrator = TranslationOrchestrator(
            self.backend, options, session_state=self.state, policy=self.policy
        )
        self.state.is_translating = True
        try:
            return await self.orchestrator.translate(
                units,
                options.target_language,
                options.source_language,
                on_progress,
            )
        finally:
            self.state.is_translating = False

    def render(
        self,
        results: Sequence[TranslationResult],
        mode: RenderMode | str | None = None,
    ) -> int:
        mode = RenderMode.parse(mode or self.options.mode)
        applied = self.renderer.render(
            results, self.units, mode, self.options.target_language
        )
        self.state.is_translated = bool(self.renderer.records)
        return applied

    def restore(self) -> int:
        restored = self.renderer.restore()
        self.state.is_translated = False
        self.state.last_settings = None
        self.last_results = []
        self._notify("restored", {"restored": restored})
        return restored

    def get_stats(self) -> Dict[str, Any]:
        return self.renderer.get_stats()

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_translated": self.state.is_translated,
            "is_translating": self.state.is_translating,
            "mode": self.renderer.mode.value if self.renderer.mode else self.options.mode.value,
            "stats": self.get_stats(),
        }

    def toggle_bilingual_view(self) -> Optional[str]:
        """Flip between bilingual and original-only; ``None`` outside bilingual mode."""

        if self.renderer.original_only:
            if self.renderer.show_bilingual():
                self._notify("bilingual-view", {})
                return "bilingual"
        elif self.renderer.show_original_only():
            self._notify("original-only-view", {})
            return "original-only"
        return None

    def notify_navigation(self) -> None:
        """The page is going away: cancel pending work and reset the session."""

        logger.info("Navigation detected; discarding pending translations")
        self.state.navigating = True
        self.renderer.sweep()
        self.segmenter.clear_cache()
        self.units = []
        self.last_results = []
        self.state.reset()

    async def translate_page(
        self,
        options: Optional[TranslationOptions] = None,
        *,
        force_refresh: bool = False,
        root: Optional[Tag] = None,
    ) -> List[TranslationResult]:
        """Extract, translate and progressively render the page."""

        options = options or self.options
        if self.state.is_translating:
            logger.warning("A translation is already running; ignoring request")
            return []

        settings = options.settings_key
        if self.state.is_translated:
            if not force_refresh and settings == self.state.last_settings:
                logger.info("Page already translated with the same settings")
                self._notify("translated", self._translated_payload(self.last_results, options))
                return self.last_results
            logger.info("Settings changed; restoring before translating again")
            self.restore()
        elif not self.renderer.records:
            self.renderer.cleanup_residual_markers()

        if options.max_group_size != self.options.max_group_size:
            self.segmenter = ContentSegmenter(self.document, max_group_size=options.max_group_size)
        self.options = options
        units = self.extract_and_group(root)
        if not units:
            self._notify("translated", self._translated_payload([], options))
            return []

        by_id = {unit.unit_id: unit for unit in units}
        total = len(units)
        self._notify("translating", {"progress": 0, "completed": 0, "total": total})
        self.renderer.begin(options.mode)

        def on_progress(result: TranslationResult, completed: int, total: int) -> None:
            self.renderer.render_result(
                result, by_id[result.unit_id], options.mode, options.target_language
            )
            self._notify(
                "translating",
                {
                    "progress": round(completed / total * 100),
                    "completed": completed,
                    "total": total,
                    "current_text": result.original_text[:50],
                },
            )

        try:
            results = await self.translate_all(units, options, on_progress)
        except PagelingoError as exc:
            self.renderer.finish()
            self._notify("error", {"message": str(exc)})
            raise
        self.renderer.finish()

        if self.orchestrator is not None and self.orchestrator.cancelled:
            logger.info("Translation of this page was cancelled")
            return results

        self.state.is_translated = bool(self.renderer.records)
        self.state.last_settings = settings
        self.last_results = results
        self._notify("translated", self._translated_payload(results, options))
        return results

    def _translated_payload(
        self,
        results: Sequence[TranslationResult],
        options: TranslationOptions,
    ) -> Dict[str, Any]:
        failed = sum(1 for result in results if not result.success)
        payload: Dict[str, Any] = {
            "total_translated": len(results) - failed,
            "mode": options.mode.value,
        }
        if failed:
            payload["warning"] = (
                f"{failed} of {len(results)} paragraphs could not be translated."
            )
        return payload

    def _notify(self, status: str, data: Dict[str, Any]) -> None:
        logger.debug("Status %s: %s", status, data)
        if self.on_status is None:
            return
        try:
            self.on_status(status, data)
        except Exception:
            logger.exception("Status callback failed for %s", status)

