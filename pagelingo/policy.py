"""Failure policy: records handled errors and picks a recovery action."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, List, Optional

from .errors import (
    ErrorCategory,
    ErrorRecord,
    ErrorTracker,
    categorise,
)

logger = logging.getLogger(__name__)

DECOMPOSE = "decompose"
REPORT = "report"


class FailurePolicy:
    """Decides how the orchestrator recovers from a failed call.

    A failed merged batch is always decomposed into individual calls; a
    failed individual call is reported on its result. Nothing is retried
    beyond that and nothing is raised.
    """

    def __init__(self) -> None:
        self.records: List[ErrorRecord] = []
        self.tracker = ErrorTracker()

    def record_success(self) -> None:
        """Reset consecutive counters after successful work."""

        self.tracker.reset_consecutive()

    def handle_batch_failure(self, batch_id: int, exc: BaseException) -> str:
        category = self._register(
            categorise(exc),
            f"Batch {batch_id} failed; translating its units individually. {exc}",
        )
        logger.warning("Batch %s failed (%s): %s", batch_id, category.name, exc)
        return DECOMPOSE

    def handle_unit_failure(self, unit_id: str, exc: BaseException) -> str:
        category = self._register(
            categorise(exc),
            f"Unit {unit_id} could not be translated; original text kept. {exc}",
        )
        logger.warning("Unit %s failed (%s): %s", unit_id, category.name, exc)
        return REPORT

    def note_truncation(self, unit_id: str, original_length: int, kept_length: int) -> None:
        """Budget overflows are resolved by truncation and only recorded."""

        self.records.append(
            ErrorRecord(
                category=ErrorCategory.BUDGET,
                message=f"Unit {unit_id} exceeded the token ceiling and was truncated.",
                details=f"{original_length} -> {kept_length} characters",
            )
        )
        logger.info(
            "Unit %s truncated from %d to %d characters", unit_id, original_length, kept_length
        )

    def counts(self) -> Dict[str, int]:
        return dict(Counter(record.category.name.lower() for record in self.records))

    def messages(self) -> List[str]:
        return [record.message for record in self.records]

    def _register(
        self,
        category: ErrorCategory,
        message: str,
        details: Optional[str] = None,
    ) -> ErrorCategory:
        self.records.append(ErrorRecord(category=category, message=message, details=details))
        consecutive, total, streak = self.tracker.register(category)
        if streak:
            logger.warning(
                "Repeated %s errors (%d in a row, %d total); the backend may be unhealthy.",
                category.name.lower(),
                consecutive,
                total,
            )
        return category
