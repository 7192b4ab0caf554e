"""Core data structures for the pagelingo translator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class RenderMode(str, Enum):
    """How translations are written back into the document."""

    REPLACE = "replace"
    BILINGUAL = "paragraph-bilingual"

    @classmethod
    def parse(cls, value: "RenderMode | str") -> "RenderMode":
        if isinstance(value, RenderMode):
            return value
        normalized = str(value).strip().lower()
        if normalized in {"bilingual", "paragraph_bilingual"}:
            return cls.BILINGUAL
        return cls(normalized)


class DocumentState(str, Enum):
    """Lifecycle of a document as seen by the renderer."""

    CLEAN = "clean"
    TRANSLATING = "translating"
    REPLACED = "replaced"
    BILINGUAL = "bilingual"


class BatchState(str, Enum):
    """Dispatch state of a batch inside the orchestrator."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DECOMPOSED = "decomposed"


@dataclass(frozen=True)
class TextUnit:
    """A single text node captured during the document walk."""

    unit_id: str
    raw_text: str
    normalized_text: str
    dom_anchor: Any = field(compare=False, repr=False)


@dataclass
class ParagraphUnit:
    """Text nodes sharing one block container, translated as one block."""

    unit_id: str
    container_anchor: Any = field(compare=False, repr=False)
    text_units: List[TextUnit]
    combined_text: str
    priority: int
    document_order: int
    truncated_text: Optional[str] = None

    @property
    def source_text(self) -> str:
        """Text sent to the backend; shortened when the scheduler truncated it."""

        if self.truncated_text is not None:
            return self.truncated_text
        return self.combined_text


@dataclass
class Batch:
    """Units submitted to the backend in one call."""

    batch_id: int
    units: List[ParagraphUnit]
    estimated_tokens: int = 0
    truncated: bool = False


@dataclass
class TranslationResult:
    """Outcome of translating one unit."""

    unit_id: str
    original_text: str
    translated_text: str
    success: bool
    error: Optional[str] = None
    is_merged: bool = False
    index: int = 0


@dataclass
class RestorationRecord:
    """Pre-mutation snapshot of one anchor."""

    key: str
    anchor: Any = field(repr=False)
    original_snapshot: str
    mode: str
    attrs: Dict[str, Any] = field(default_factory=dict)
    added: List[Any] = field(default_factory=list, repr=False)


@dataclass
class SessionState:
    """Per-page mutable state, reset when the page navigates."""

    navigating: bool = False
    is_translating: bool = False
    is_translated: bool = False
    generation: int = 0
    last_settings: Optional[Dict[str, str]] = None

    def reset(self) -> None:
        self.navigating = False
        self.is_translating = False
        self.is_translated = False
        self.last_settings = None
        self.generation += 1
