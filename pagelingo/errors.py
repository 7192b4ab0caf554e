"""Error definitions and tracking helpers for the pagelingo translator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class ErrorCategory(Enum):
    """Categorises runtime failures to pick a recovery action."""

    TRANSPORT = auto()
    BACKEND = auto()
    PARSE = auto()
    BUDGET = auto()
    DOM_STATE = auto()
    OTHER = auto()


class PagelingoError(Exception):
    """Base exception for all custom errors."""


class ConfigurationError(PagelingoError):
    """Raised when translation options are out of range."""


class TranslationProviderConfigurationError(PagelingoError):
    """Raised when the translation provider is misconfigured."""


class TransportError(PagelingoError):
    """Raised when a backend call fails on the network or times out."""


class BackendError(PagelingoError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    @classmethod
    def from_status(cls, status: int, detail: str = "") -> "BackendError":
        if status == 401:
            message = "Invalid API key. Check the configured credentials."
        elif status == 402:
            message = "API quota exceeded. Check the account balance."
        elif status == 429:
            message = "Rate limit exceeded. Slow down or try again later."
        elif status >= 500:
            message = "Translation service is temporarily unavailable."
        else:
            message = f"API request failed with status {status}."
        if detail:
            message = f"{message} ({detail})"
        return cls(message, status=status)


class ParseError(PagelingoError):
    """Raised when a backend response cannot be interpreted."""


class BudgetError(PagelingoError):
    """A unit exceeds the token ceiling even after truncation."""


class UnsupportedFileTypeError(PagelingoError):
    """Raised when a given file extension is not supported."""


class OverwriteRefusedError(PagelingoError):
    """Raised when attempting to overwrite an output without consent."""


class DOMStateError(PagelingoError):
    """Raised when a render target is no longer attached to the document."""


def categorise(exc: BaseException) -> ErrorCategory:
    """Map an exception onto its error category."""

    if isinstance(exc, TransportError):
        return ErrorCategory.TRANSPORT
    if isinstance(exc, BackendError):
        return ErrorCategory.BACKEND
    if isinstance(exc, ParseError):
        return ErrorCategory.PARSE
    if isinstance(exc, BudgetError):
        return ErrorCategory.BUDGET
    if isinstance(exc, DOMStateError):
        return ErrorCategory.DOM_STATE
    return ErrorCategory.OTHER


@dataclass
class ErrorRecord:
    """Stores context for a handled error."""

    category: ErrorCategory
    message: str
    details: Optional[str] = None


class ErrorTracker:
    """Tracks consecutive and aggregate errors."""

    CONSECUTIVE_LIMIT = 3

    def __init__(self) -> None:
        self.last_category: Optional[ErrorCategory] = None
        self.consecutive: int = 0
        self.total: int = 0

    def register(self, category: ErrorCategory) -> tuple[int, int, bool]:
        """Register a new error and return counters."""

        if self.last_category == category:
            self.consecutive += 1
        else:
            self.last_category = category
            self.consecutive = 1

        self.total += 1

        return self.consecutive, self.total, self.consecutive >= self.CONSECUTIVE_LIMIT

    def reset_consecutive(self) -> None:
        """Reset the consecutive counter after successful work."""

        self.consecutive = 0
        self.last_category = None
