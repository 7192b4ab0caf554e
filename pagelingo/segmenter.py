"""Content segmentation: from an HTML tree to ordered paragraph units."""

from __future__ import annotations

import logging
import math
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import soupsieve as sv
from bs4 import NavigableString, Tag

from .documents import (
    BILINGUAL_CLASS,
    TRANSLATED_CLASS,
    HtmlDocument,
    element_path,
    has_class,
)
from .structures import ParagraphUnit, TextUnit
from .tokens import is_cjk

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_SELECTORS: Tuple[str, ...] = (
    "script", "style", "noscript", "iframe", "object", "embed", "canvas",
    "svg", "math", "pre code", "pre", "kbd", "samp", "var", "template",
    '[data-translate="no"]', ".notranslate", '[translate="no"]',
    "nav", "aside", "form", "button", "select", "textarea", "option",
    ".sidebar", ".side-bar", ".navigation", ".nav", ".navbar", ".nav-bar",
    ".menu", ".breadcrumb", ".breadcrumbs", ".topbar", ".top-bar", ".aside",
    ".widget", ".widgets", ".ad", ".ads", ".advertisement", ".banner",
    ".toolbar", ".tool-bar", ".statusbar", ".status-bar", ".pagination",
    ".pager", ".tags", ".tag-list", ".meta", ".metadata", ".author-info",
    ".share", ".social", ".social-share", ".related", ".recommended",
    ".comments-nav", ".comment-nav", ".tooltip", ".alt-text",
    '[role="tooltip"]',
)

BLOCK_TAGS = frozenset(
    ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "td", "th",
     "blockquote", "pre", "div", "article", "section"]
)
FORM_CONTROL_TAGS = frozenset(["input", "textarea", "select", "button"])

MAIN_CONTENT_SELECTORS: Tuple[str, ...] = (
    "main", "article", '[role="main"]', ".main-content", ".content",
    ".post-content", ".entry-content", ".article-content", "#content", "#main",
)
CANDIDATE_TAGS = ("div", "section", "article")
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")

SENTENCE_PUNCTUATION = re.compile(r"[.!?。！？]")
NUMBERS_AND_SYMBOLS = re.compile(r"^[\d\s\W_]*$")
WHITESPACE_RUN = re.compile(r"\s+")

SHORT_LINK_LENGTH = 20
MIN_TEXT_LENGTH = 2
DEFAULT_MAX_GROUP_SIZE = 8
DEFAULT_CACHE_SIZE = 16


def normalise_text(text: str) -> str:
    return WHITESPACE_RUN.sub(" ", text).strip()


def has_significant_text(text: str) -> bool:
    """Reject whitespace, bare numbers/symbols and lone non-CJK characters."""

    trimmed = text.strip()
    if not trimmed:
        return False
    if len(trimmed) < MIN_TEXT_LENGTH:
        return is_cjk(trimmed)
    return not NUMBERS_AND_SYMBOLS.match(trimmed)


def is_short_link_text(text: str) -> bool:
    """Short anchor text without sentence punctuation, e.g. menu entries."""

    trimmed = text.strip()
    return len(trimmed) < SHORT_LINK_LENGTH and not SENTENCE_PUNCTUATION.search(trimmed)


def heading_level(tag_name: str) -> Optional[int]:
    if len(tag_name) == 2 and tag_name[0] == "h" and tag_name[1] in "123456":
        return int(tag_name[1])
    return None


def paragraph_priority(element: Tag) -> int:
    """Lower sorts first: headings, then paragraphs, then lists and cells."""

    name = (element.name or "").lower()
    level = heading_level(name)
    if level is not None:
        return level
    if name in ("p", "blockquote"):
        return 10
    if name in ("li", "td", "th"):
        return 15
    return 20


def _ancestors(node) -> Iterable[Tag]:
    current = node.parent
    while isinstance(current, Tag) and current.name != "[document]":
        yield current
        current = current.parent


class SelectorExcluder:
    """Matches elements (and their ancestors) against exclusion selectors."""

    def __init__(self, extra_rules: Sequence[str] = ()) -> None:
        valid: List[str] = []
        for selector in list(DEFAULT_EXCLUDE_SELECTORS) + [
            rule.strip() for rule in extra_rules if rule and rule.strip()
        ]:
            try:
                sv.compile(selector)
            except sv.SelectorSyntaxError as exc:
                logger.warning("Ignoring invalid exclusion selector %r: %s", selector, exc)
                continue
            valid.append(selector)
        self._pattern = sv.compile(", ".join(valid))
        self._verdicts: Dict[int, bool] = {}

    def matches(self, element: Tag) -> bool:
        key = id(element)
        verdict = self._verdicts.get(key)
        if verdict is None:
            verdict = bool(self._pattern.match(element))
            if not verdict and element.get("contenteditable") == "true":
                verdict = True
            self._verdicts[key] = verdict
        return verdict

    def excludes(self, node) -> bool:
        return any(self.matches(ancestor) for ancestor in _ancestors(node))


def in_translated_container(node: NavigableString) -> bool:
    parent = node.parent
    if parent is None:
        return True
    for ancestor in _ancestors(node):
        if has_class(ancestor, BILINGUAL_CLASS) or has_class(ancestor, TRANSLATED_CLASS):
            return True
    return parent.find(class_=TRANSLATED_CLASS, recursive=False) is not None


def in_short_link(node: NavigableString) -> bool:
    for ancestor in _ancestors(node):
        if ancestor.name == "a" and ancestor.get("href") is not None:
            return is_short_link_text(str(node))
    return False


def _text_length(element: Tag) -> int:
    return len(element.get_text().strip())


def has_significant_content(element: Tag) -> bool:
    if _text_length(element) <= 100:
        return False
    return element.find(list(HEADING_TAGS) + ["p"]) is not None


def score_candidate(element: Tag) -> int:
    """Content-density score of a candidate container, floored at 0."""

    text_length = _text_length(element)
    if text_length > 1000:
        score = 5
    elif text_length > 500:
        score = 3
    elif text_length > 200:
        score = 2
    elif text_length > 50:
        score = 1
    else:
        score = 0

    paragraphs = len(element.find_all("p"))
    headings = len(element.find_all(list(HEADING_TAGS)))
    structure = paragraphs + headings
    if structure > 10:
        score += 3
    elif structure > 5:
        score += 2
    elif structure > 2:
        score += 1

    if headings:
        score += 1
    if element.find(["ul", "ol"]) is not None:
        score += 1

    images = len(element.find_all("img"))
    if 0 < images <= 5:
        score += 1
    if images > paragraphs + 10:
        score -= 2

    links = len(element.find_all("a"))
    allowed_links = text_length / 100
    if links > allowed_links:
        score -= min(3, math.ceil(links - allowed_links))

    buttons = len(element.find_all("button")) + len(element.select('[role="button"]'))
    if buttons > 3:
        score -= 1

    return max(0, score)


def find_main_content(root: Tag) -> Optional[Tag]:
    """Locate the element holding the page's main content, if any."""

    for selector in MAIN_CONTENT_SELECTORS:
        try:
            candidate = root.select_one(selector)
        except sv.SelectorSyntaxError:  # pragma: no cover - static selectors
            continue
        if candidate is not None and has_significant_content(candidate):
            logger.debug("Main content matched selector %r", selector)
            return candidate

    best: Optional[Tag] = None
    best_score = 0
    # find_all yields document order, so strict comparison keeps the earliest tie.
    for candidate in root.find_all(list(CANDIDATE_TAGS)):
        score = score_candidate(candidate)
        if score > best_score:
            best, best_score = candidate, score
    if best is not None:
        logger.debug("Main content scored %d at %s", best_score, element_path(best))
    return best


def find_container(node: NavigableString) -> Tag:
    """Nearest block-level ancestor, or the direct parent when there is none."""

    for ancestor in _ancestors(node):
        if ancestor.name in ("body", "html"):
            break
        if ancestor.name in BLOCK_TAGS:
            return ancestor
    return node.parent


class ContentSegmenter:
    """Turns a document into ordered, translation-ready paragraph units."""

    def __init__(
        self,
        document: HtmlDocument,
        *,
        max_group_size: int = DEFAULT_MAX_GROUP_SIZE,
        detect_main_content: bool = True,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self.document = document
        self.max_group_size = max(1, max_group_size)
        self.detect_main_content = detect_main_content
        self.cache_size = max(1, cache_size)
        self._cache: "OrderedDict[Tuple, List[ParagraphUnit]]" = OrderedDict()
        self._cache_generation = document.generation

    def clear_cache(self) -> None:
        self._cache.clear()
        self._cache_generation = self.document.generation

    def segment(
        self,
        root: Optional[Tag] = None,
        exclude_rules: Sequence[str] = (),
    ) -> List[ParagraphUnit]:
        root = root if root is not None else self.document.root
        if self._cache_generation != self.document.generation:
            self.clear_cache()

        key = (id(root), self.document.content_hash(root), tuple(exclude_rules))
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return list(cached)

        units = self._segment(root, exclude_rules)
        self._cache[key] = units
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return list(units)

    def _segment(self, root: Tag, exclude_rules: Sequence[str]) -> List[ParagraphUnit]:
        scope = root
        if self.detect_main_content:
            main = find_main_content(root)
            if main is not None:
                scope = main

        excluder = SelectorExcluder(exclude_rules)
        walker = (
            self.document.walker(scope)
            .filtered(lambda node: has_significant_text(str(node)))
            .filtered(lambda node: node.parent.name not in FORM_CONTROL_TAGS)
            .filtered(lambda node: not in_translated_container(node))
            .filtered(lambda node: not in_short_link(node))
            .filtered(lambda node: not excluder.excludes(node))
        )

        groups: "OrderedDict[int, Tuple[Tag, List[NavigableString]]]" = OrderedDict()
        for node in walker:
            container = find_container(node)
            entry = groups.get(id(container))
            if entry is None:
                groups[id(container)] = (container, [node])
            else:
                entry[1].append(node)

        units: List[ParagraphUnit] = []
        used_ids: Dict[str, int] = {}
        for container, nodes in groups.values():
            base_id = element_path(container)
            seen = used_ids.get(base_id, 0)
            used_ids[base_id] = seen + 1
            group_id = base_id if seen == 0 else f"{base_id}#{seen}"
            units.extend(self._build_units(group_id, container, nodes))

        units.sort(key=lambda unit: (unit.priority, unit.document_order))
        logger.debug("Segmented %d paragraph units from %d containers", len(units), len(groups))
        return units

    def _build_units(
        self,
        group_id: str,
        container: Tag,
        nodes: List[NavigableString],
    ) -> List[ParagraphUnit]:
        text_units = [
            TextUnit(
                unit_id=f"{group_id}/t{index}",
                raw_text=str(node),
                normalized_text=normalise_text(str(node)),
                dom_anchor=node,
            )
            for index, node in enumerate(nodes)
        ]
        priority = paragraph_priority(container)
        order = self.document.document_order(container)

        if len(text_units) <= self.max_group_size:
            chunks = [(group_id, text_units)]
        else:
            chunks = [
                (f"{group_id}-chunk-{index}", text_units[start:start + self.max_group_size])
                for index, start in enumerate(range(0, len(text_units), self.max_group_size))
            ]

        return [
            ParagraphUnit(
                unit_id=unit_id,
                container_anchor=container,
                text_units=chunk,
                combined_text=" ".join(unit.normalized_text for unit in chunk),
                priority=priority,
                document_order=order,
            )
            for unit_id, chunk in chunks
        ]
