"""Writes translations into the document and restores the original on demand."""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from bs4 import BeautifulSoup, NavigableString, Tag

from .documents import (
    BILINGUAL_CLASS,
    FAILED_ATTR,
    ORIGINAL_ONLY_CLASS,
    PARSER,
    TRANSLATED_CLASS,
    HtmlDocument,
    has_class,
)
from .errors import DOMStateError
from .segmenter import is_short_link_text
from .structures import (
    DocumentState,
    ParagraphUnit,
    RenderMode,
    RestorationRecord,
    TranslationResult,
)

logger = logging.getLogger(__name__)

FAILED_MODE = "failed"
BILINGUAL_ATTRS = ("data-original-lang", "data-translated-lang", "aria-label", "role")
DANGEROUS_TAGS = ("script", "style", "iframe", "object", "embed", "form", "input", "button")
DANGEROUS_SCHEMES = ("javascript:", "data:", "vbscript:")
HTML_TAG = re.compile(r"<[^>]+>")
WHITESPACE = re.compile(r"\s+")


def contains_html_tags(text: str) -> bool:
    return bool(text) and HTML_TAG.search(text) is not None


def sanitize_html(html: str) -> str:
    """Drop active content, event handlers and script URLs from a fragment."""

    if not html:
        return ""
    fragment = BeautifulSoup(html, PARSER)
    for element in fragment.find_all(DANGEROUS_TAGS):
        element.decompose()
    for element in fragment.find_all(True):
        for name in list(element.attrs):
            if name.lower().startswith("on"):
                del element[name]
            elif name.lower() in ("href", "src"):
                value = str(element.get(name, "")).strip().lower()
                if value.startswith(DANGEROUS_SCHEMES):
                    del element[name]
    return fragment.decode()


def detect_language(text: str) -> str:
    """Rough script-based guess used to tag original content."""

    if re.search(r"[\u4e00-\u9fff]", text):
        return "zh"
    if re.search(r"[\u3040-\u309f\u30a0-\u30ff]", text):
        return "ja"
    if re.search(r"[\uac00-\ud7af]", text):
        return "ko"
    if re.search(r"[а-яё]", text, re.IGNORECASE):
        return "ru"
    return "en"


def assign_to_first(translation: str, count: int) -> List[str]:
    """Give the whole translation to the first node and empty the rest."""

    if count <= 0:
        return []
    return [translation] + [""] * (count - 1)


def plain_text(translation: str) -> str:
    """Reduce a translation that came back with markup to its text."""

    if not contains_html_tags(translation):
        return translation
    text = BeautifulSoup(translation, PARSER).get_text()
    return WHITESPACE.sub(" ", text).strip()


def keep_surrounding_whitespace(original: str, replacement: str) -> str:
    if not original.strip():
        return original
    leading = original[: len(original) - len(original.lstrip())]
    trailing = original[len(original.rstrip()):]
    return f"{leading}{replacement.strip()}{trailing}"


def _copy_attrs(attrs: Mapping[str, object]) -> Dict[str, object]:
    return {
        name: list(value) if isinstance(value, list) else value
        for name, value in attrs.items()
    }


def _add_class(element: Tag, class_name: str) -> None:
    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    if class_name not in classes:
        element["class"] = list(classes) + [class_name]


def _remove_class(element: Tag, class_name: str) -> None:
    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    remaining = [name for name in classes if name != class_name]
    if remaining:
        element["class"] = remaining
    elif element.has_attr("class"):
        del element["class"]


def _is_link_container(container: Tag) -> bool:
    if container.name == "a":
        return True
    children = container.find_all(True, recursive=False)
    return len(children) == 1 and children[0].name == "a"


class RenderEngine:
    """The only writer to the document.

    Every anchor is snapshotted in a :class:`RestorationRecord` before its
    first mutation, so :meth:`restore` can always put the page back exactly.
    Text-node records are keyed by text unit id; container records by the
    container's identity.
    """

    def __init__(self, document: HtmlDocument) -> None:
        self.document = document
        self.state = DocumentState.CLEAN
        self.mode: Optional[RenderMode] = None
        self.original_only = False
        self.records: "OrderedDict[str, RestorationRecord]" = OrderedDict()
        self._blocks: "OrderedDict[str, Tag]" = OrderedDict()
        self._translated: Set[str] = set()
        self._failed: Set[str] = set()
        self.skipped_count = 0

    # -- lifecycle -----------------------------------------------------------

    def begin(self, mode: RenderMode | str = RenderMode.REPLACE) -> None:
        """Enter the translating state, restoring first when switching modes."""

        mode = RenderMode.parse(mode)
        if self.mode is not None and self.mode is not mode and self.records:
            logger.info("Switching render mode from %s to %s", self.mode.value, mode.value)
            self.restore()
        if self.state is DocumentState.CLEAN:
            self.state = DocumentState.TRANSLATING
        self.mode = mode

    def finish(self) -> DocumentState:
        """Settle the state once all results of a run have been rendered."""

        self.sweep()
        if not self.records:
            self.state = DocumentState.CLEAN
            self.mode = None
        elif self.mode is RenderMode.BILINGUAL:
            self.state = DocumentState.BILINGUAL
        else:
            self.state = DocumentState.REPLACED
        return self.state

    def render(
        self,
        results: Iterable[TranslationResult],
        units: Sequence[ParagraphUnit],
        mode: RenderMode | str = RenderMode.REPLACE,
        target_language: str = "zh-CN",
    ) -> int:
        """Render a list of results and return how many were applied."""

        mode = RenderMode.parse(mode)
        self.begin(mode)
        by_id = {unit.unit_id: unit for unit in units}
        applied = 0
        for result in results:
            unit = by_id.get(result.unit_id)
            if unit is None:
                logger.warning("No paragraph unit for result %s; skipping", result.unit_id)
                self.skipped_count += 1
                continue
            if self.render_result(result, unit, mode, target_language):
                applied += 1
        self.finish()
        return applied

    def render_result(
        self,
        result: TranslationResult,
        unit: ParagraphUnit,
        mode: RenderMode | str = RenderMode.REPLACE,
        target_language: str = "zh-CN",
    ) -> bool:
        """Render one result; returns True when a translation was written."""

        mode = RenderMode.parse(mode)
        self.begin(mode)
        try:
            self._check_attached(unit, mode)
        except DOMStateError as exc:
            logger.warning("Skipping %s: %s", unit.unit_id, exc)
            self.skipped_count += 1
            return False

        container = unit.container_anchor
        if _is_link_container(container) and is_short_link_text(result.original_text.strip()):
            logger.debug("Skipping short link text in %s", unit.unit_id)
            self.skipped_count += 1
            return False

        if not result.success:
            self._mark_failed(unit, result)
            self.document.mark_changed()
            return False

        if mode is RenderMode.BILINGUAL:
            written = self._render_bilingual(result, unit, target_language)
        else:
            written = self._render_replace(result, unit)
        if written:
            self._translated.add(unit.unit_id)
            self.document.mark_changed()
        return written

    # -- modes ---------------------------------------------------------------

    def _check_attached(self, unit: ParagraphUnit, mode: RenderMode) -> None:
        if not self.document.contains(unit.container_anchor):
            raise DOMStateError(f"container of {unit.unit_id} is no longer attached")
        if mode is RenderMode.REPLACE:
            for text_unit in unit.text_units:
                if not self.document.contains(self._current_anchor(text_unit.unit_id, text_unit.dom_anchor)):
                    raise DOMStateError(f"text node {text_unit.unit_id} is no longer attached")

    def _current_anchor(self, key: str, default):
        record = self.records.get(key)
        return record.anchor if record is not None else default

    def _render_replace(self, result: TranslationResult, unit: ParagraphUnit) -> bool:
        pieces = assign_to_first(plain_text(result.translated_text), len(unit.text_units))
        for text_unit, piece in zip(unit.text_units, pieces):
            record = self.records.get(text_unit.unit_id)
            if record is None:
                anchor = text_unit.dom_anchor
                record = RestorationRecord(
                    key=text_unit.unit_id,
                    anchor=anchor,
                    original_snapshot=str(anchor),
                    mode=RenderMode.REPLACE.value,
                )
                self.records[record.key] = record
            replacement = NavigableString(
                keep_surrounding_whitespace(record.original_snapshot, piece)
            )
            record.anchor.replace_with(replacement)
            record.anchor = replacement
        return True

    def _render_bilingual(
        self,
        result: TranslationResult,
        unit: ParagraphUnit,
        target_language: str,
    ) -> bool:
        container: Tag = unit.container_anchor
        key = f"container:{id(container)}"
        record = self.records.get(key)
        if record is None or record.mode != RenderMode.BILINGUAL.value:
            if has_class(container, BILINGUAL_CLASS) or container.find(
                class_=TRANSLATED_CLASS
            ) is not None:
                logger.debug("Container of %s already bilingual; skipping", unit.unit_id)
                self.skipped_count += 1
                return False
            record = RestorationRecord(
                key=key,
                anchor=container,
                original_snapshot=container.decode_contents(),
                mode=RenderMode.BILINGUAL.value,
                attrs=_copy_attrs(container.attrs),
            )
            self.records[key] = record

        block = self._blocks.get(unit.unit_id)
        if block is None or not self.document.contains(block):
            block = self.document.soup.new_tag(
                "div",
                attrs={
                    "class": TRANSLATED_CLASS,
                    "lang": target_language,
                    "data-bilingual-mode": "true",
                },
            )
            container.append(block)
            record.added.append(block)
            self._blocks[unit.unit_id] = block
        else:
            block.clear()

        translation = result.translated_text
        if contains_html_tags(translation):
            fragment = BeautifulSoup(sanitize_html(translation), PARSER)
            for child in list(fragment.contents):
                block.append(child.extract())
        else:
            block.string = translation
        if self.original_only:
            self._hide(block)

        _add_class(container, BILINGUAL_CLASS)
        container["data-original-lang"] = detect_language(result.original_text)
        container["data-translated-lang"] = target_language
        container["aria-label"] = (
            f"Original: {result.original_text}. Translation: {translation}"
        )
        container["role"] = "group"
        return True

    def _mark_failed(self, unit: ParagraphUnit, result: TranslationResult) -> None:
        container: Tag = unit.container_anchor
        key = f"failed:{id(container)}"
        if key not in self.records:
            self.records[key] = RestorationRecord(
                key=key,
                anchor=container,
                original_snapshot="",
                mode=FAILED_MODE,
                attrs=_copy_attrs(container.attrs),
            )
        container[FAILED_ATTR] = result.error or "translation failed"
        self._failed.add(unit.unit_id)
        logger.debug("Marked %s as failed", unit.unit_id)

    # -- bilingual view toggle -----------------------------------------------

    @staticmethod
    def _hide(block: Tag) -> None:
        _add_class(block, ORIGINAL_ONLY_CLASS)
        block["hidden"] = ""

    @staticmethod
    def _show(block: Tag) -> None:
        _remove_class(block, ORIGINAL_ONLY_CLASS)
        if block.has_attr("hidden"):
            del block["hidden"]

    def show_original_only(self) -> bool:
        if self.state is not DocumentState.BILINGUAL:
            return False
        for block in self._blocks.values():
            self._hide(block)
        self.original_only = True
        return True

    def show_bilingual(self) -> bool:
        if self.state is not DocumentState.BILINGUAL:
            return False
        for block in self._blocks.values():
            self._show(block)
        self.original_only = False
        return True

    # -- restore -------------------------------------------------------------

    def restore(self) -> int:
        """Undo every mutation, newest first; returns the number of records applied."""

        if self.state is DocumentState.CLEAN and not self.records:
            return 0

        restored = 0
        for record in reversed(list(self.records.values())):
            if not self.document.contains(record.anchor):
                logger.warning("Cannot restore %s: anchor detached", record.key)
                continue
            if record.mode == RenderMode.REPLACE.value:
                record.anchor.replace_with(NavigableString(record.original_snapshot))
            elif record.mode == RenderMode.BILINGUAL.value:
                self._restore_container(record)
            else:
                record.anchor.attrs = _copy_attrs(record.attrs)
            restored += 1

        self.records.clear()
        self._blocks.clear()
        self._translated.clear()
        self._failed.clear()
        self.skipped_count = 0
        self.original_only = False
        self.mode = None
        self.state = DocumentState.CLEAN
        self.document.mark_changed()
        logger.info("Restored %d records", restored)
        return restored

    @staticmethod
    def _restore_container(record: RestorationRecord) -> None:
        container: Tag = record.anchor
        for block in record.added:
            block.decompose()
        container.attrs = _copy_attrs(record.attrs)
        if container.decode_contents() != record.original_snapshot:
            container.clear()
            fragment = BeautifulSoup(record.original_snapshot, PARSER)
            for child in list(fragment.contents):
                container.append(child.extract())

    def sweep(self) -> int:
        """Forget records whose anchors left the document."""

        detached = [
            key
            for key, record in self.records.items()
            if not self.document.contains(record.anchor)
        ]
        for key in detached:
            del self.records[key]
        for unit_id in [
            unit_id for unit_id, block in self._blocks.items()
            if not self.document.contains(block)
        ]:
            del self._blocks[unit_id]
        if detached:
            logger.debug("Swept %d detached records", len(detached))
        return len(detached)

    def cleanup_residual_markers(self) -> int:
        """Remove bilingual leftovers not owned by any record."""

        soup = self.document.soup
        removed = 0
        owned = {id(block) for block in self._blocks.values()}
        for block in soup.find_all(class_=TRANSLATED_CLASS):
            if id(block) not in owned:
                block.decompose()
                removed += 1
        owned_containers = {id(record.anchor) for record in self.records.values()}
        for container in soup.find_all(class_=BILINGUAL_CLASS):
            if id(container) in owned_containers:
                continue
            _remove_class(container, BILINGUAL_CLASS)
            _remove_class(container, ORIGINAL_ONLY_CLASS)
            for name in BILINGUAL_ATTRS:
                if container.has_attr(name):
                    del container[name]
            removed += 1
        if removed:
            self.document.mark_changed()
            logger.info("Removed %d residual translation markers", removed)
        return removed

    def get_stats(self) -> Dict[str, object]:
        return {
            "translated_count": len(self._translated),
            "container_count": len(self.document.soup.find_all(class_=BILINGUAL_CLASS)),
            "failed_count": len(self._failed),
            "skipped_count": self.skipped_count,
            "mode": self.mode.value if self.mode else None,
            "state": self.state.value,
        }

