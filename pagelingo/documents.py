"""HTML document loading, walking and serialisation."""

from __future__ import annotations

import hashlib
import pathlib
from typing import Callable, Dict, Iterator, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from .errors import UnsupportedFileTypeError

TextPredicate = Callable[[NavigableString], bool]

HTML_SUFFIXES = {".html", ".htm", ".xhtml"}
PARSER = "html.parser"


def is_attached(node, document: BeautifulSoup) -> bool:
    """Return True while ``node`` is still reachable from ``document``."""

    current = node
    while current is not None:
        if current is document:
            return True
        current = current.parent
    return False


def element_path(element: Tag) -> str:
    """Stable identifier for an element: its id, or a tag path from the root."""

    element_id = element.get("id")
    if isinstance(element_id, str) and element_id:
        return element_id

    parts = []
    current: Optional[Tag] = element
    while current is not None and current.name not in (None, "[document]", "body", "html"):
        parent = current.parent
        siblings = (
            [child for child in parent.find_all(current.name, recursive=False)]
            if parent is not None
            else [current]
        )
        if len(siblings) > 1:
            index = next(i for i, sibling in enumerate(siblings) if sibling is current)
            parts.append(f"{current.name}[{index}]")
        else:
            parts.append(current.name)
        current = parent
    return ">".join(reversed(parts)) or element.name or "root"


class TextNodeWalker:
    """Lazy, restartable walk over the text nodes below ``root``.

    Each iteration starts a fresh generator; nodes are yielded in document
    order when every predicate accepts them.
    """

    def __init__(self, root: Tag, predicates: Sequence[TextPredicate] = ()) -> None:
        self.root = root
        self.predicates = tuple(predicates)

    def __iter__(self) -> Iterator[NavigableString]:
        for node in self.root.descendants:
            if not isinstance(node, NavigableString) or isinstance(node, PreformattedString):
                continue
            if node.parent is None:
                continue
            if all(predicate(node) for predicate in self.predicates):
                yield node

    def filtered(self, predicate: TextPredicate) -> "TextNodeWalker":
        return TextNodeWalker(self.root, self.predicates + (predicate,))


class HtmlDocument:
    """A parsed HTML page plus the bookkeeping the pipeline needs.

    ``generation`` increases on every structural change reported through
    :meth:`mark_changed`; caches compare generations rather than timestamps.
    """

    def __init__(self, markup: str, source_path: Optional[pathlib.Path] = None) -> None:
        self.source_path = source_path
        self.soup = BeautifulSoup(markup, PARSER)
        self.generation = 0
        self._order: Optional[Tuple[int, Dict[int, int]]] = None

    @classmethod
    def from_path(cls, path: pathlib.Path) -> "HtmlDocument":
        return cls(path.read_text(encoding="utf-8"), source_path=path)

    @property
    def root(self) -> Tag:
        """The body when present, otherwise the whole document."""

        body = self.soup.body
        return body if body is not None else self.soup

    def mark_changed(self) -> int:
        self.generation += 1
        self._order = None
        return self.generation

    def contains(self, node) -> bool:
        return is_attached(node, self.soup)

    def document_order(self, element: Tag) -> int:
        """Position of ``element`` among all elements, in document order."""

        if self._order is None or self._order[0] != self.generation:
            positions = {
                id(tag): index
                for index, tag in enumerate(self.soup.find_all(True))
            }
            self._order = (self.generation, positions)
        return self._order[1].get(id(element), len(self._order[1]))

    def content_hash(self, root: Optional[Tag] = None) -> str:
        target = root if root is not None else self.soup
        return hashlib.sha1(str(target).encode("utf-8")).hexdigest()

    def walker(self, root: Optional[Tag] = None) -> TextNodeWalker:
        return TextNodeWalker(root if root is not None else self.root)

    def serialize(self) -> str:
        return str(self.soup)

    def save(self, destination: pathlib.Path) -> None:
        destination.write_text(self.serialize(), encoding="utf-8")


def detect_handler(path: pathlib.Path) -> Tuple[str, HtmlDocument]:
    """Load the provided file when it is an HTML page."""

    suffix = path.suffix.lower()
    if suffix in HTML_SUFFIXES:
        return "html", HtmlDocument.from_path(path)
    raise UnsupportedFileTypeError(
        "This file type isn't supported. Please use an .html or .htm file."
    )


# Markers written by the renderer and honoured by the segmenter.
BILINGUAL_CLASS = "pl-paragraph-bilingual"
TRANSLATED_CLASS = "pl-paragraph-translated"
ORIGINAL_ONLY_CLASS = "pl-original-only"
FAILED_ATTR = "data-pl-failed"


def has_class(element: Tag, class_name: str) -> bool:
    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return class_name in classes
