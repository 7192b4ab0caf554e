"""Greedy bin-packing of paragraph units into backend batches."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import List, Optional, Sequence

from .structures import Batch, ParagraphUnit
from .tokens import estimate, truncate

logger = logging.getLogger(__name__)

UNIT_OVERHEAD_TOKENS = 10
ALLOWED_RATIOS = (0.5, 0.6)


def input_ceiling(budget: int, ratio: float = 0.5) -> int:
    """Share of the budget reserved for input; the rest is left for output."""

    if ratio not in ALLOWED_RATIOS:
        raise ValueError(f"Ceiling ratio must be one of {ALLOWED_RATIOS}, got {ratio}.")
    return math.floor(budget * ratio)


def unit_cost(unit: ParagraphUnit) -> int:
    return estimate(unit.source_text) + UNIT_OVERHEAD_TOKENS


class TokenBatchBuilder:
    """Aggregates units into batches within a token ceiling."""

    def __init__(self, budget: int, system_prompt_tokens: int, ratio: float = 0.5) -> None:
        self.budget = max(1, budget)
        self.system_prompt_tokens = max(0, system_prompt_tokens)
        self.ceiling = input_ceiling(self.budget, ratio)

    def build(self, units: Sequence[ParagraphUnit]) -> List[Batch]:
        batches: List[Batch] = []
        batch_units: List[ParagraphUnit] = []
        running_total = self.system_prompt_tokens
        batch_id = 1

        for unit in units:
            cost = unit_cost(unit)
            if self.system_prompt_tokens + cost > self.ceiling:
                # Oversized units travel alone, shortened to fit.
                if batch_units:
                    batches.append(
                        Batch(batch_id=batch_id, units=batch_units, estimated_tokens=running_total)
                    )
                    batch_id += 1
                    batch_units = []
                    running_total = self.system_prompt_tokens
                batches.append(self._overflow_batch(batch_id, unit))
                batch_id += 1
                continue

            if running_total + cost > self.ceiling and batch_units:
                batches.append(
                    Batch(batch_id=batch_id, units=batch_units, estimated_tokens=running_total)
                )
                batch_id += 1
                batch_units = []
                running_total = self.system_prompt_tokens

            batch_units.append(unit)
            running_total += cost

        if batch_units:
            batches.append(
                Batch(batch_id=batch_id, units=batch_units, estimated_tokens=running_total)
            )

        return batches

    def _overflow_batch(self, batch_id: int, unit: ParagraphUnit) -> Batch:
        available = max(10, self.ceiling - self.system_prompt_tokens - UNIT_OVERHEAD_TOKENS)
        shortened = truncate(unit.combined_text, available)
        logger.warning(
            "Unit %s exceeds the %d-token ceiling; truncated from %d to %d characters.",
            unit.unit_id,
            self.ceiling,
            len(unit.combined_text),
            len(shortened),
        )
        truncated_unit = replace(unit, truncated_text=shortened)
        return Batch(
            batch_id=batch_id,
            units=[truncated_unit],
            estimated_tokens=self.system_prompt_tokens + unit_cost(truncated_unit),
            truncated=True,
        )


class LengthBatchBuilder:
    """Aggregates units into batches bounded by character length and count."""

    def __init__(self, max_count: int, max_length: int) -> None:
        self.max_count = max(1, max_count)
        self.max_length = max(1, max_length)

    def build(self, units: Sequence[ParagraphUnit]) -> List[Batch]:
        batches: List[Batch] = []
        batch_units: List[ParagraphUnit] = []
        running_total = 0
        batch_id = 1

        for unit in units:
            size = len(unit.source_text)
            if size > self.max_length:
                if batch_units:
                    batches.append(self._close(batch_id, batch_units))
                    batch_id += 1
                    batch_units = []
                    running_total = 0
                batches.append(self._close(batch_id, [unit]))
                batch_id += 1
                continue

            if batch_units and (
                running_total + size > self.max_length
                or len(batch_units) + 1 > self.max_count
            ):
                batches.append(self._close(batch_id, batch_units))
                batch_id += 1
                batch_units = []
                running_total = 0

            batch_units.append(unit)
            running_total += size

        if batch_units:
            batches.append(self._close(batch_id, batch_units))

        return batches

    @staticmethod
    def _close(batch_id: int, units: List[ParagraphUnit]) -> Batch:
        return Batch(
            batch_id=batch_id,
            units=units,
            estimated_tokens=sum(unit_cost(unit) for unit in units),
        )


def schedule(
    units: Sequence[ParagraphUnit],
    budget: int,
    system_prompt_tokens: int,
    ratio: float = 0.5,
) -> List[Batch]:
    """Token-aware first-fit packing of ``units`` in their original order."""

    return TokenBatchBuilder(budget, system_prompt_tokens, ratio).build(units)


def schedule_by_length(
    units: Sequence[ParagraphUnit],
    max_count: int,
    max_length: int,
) -> List[Batch]:
    """Character-length packing bounded by ``max_count`` and ``max_length``."""

    return LengthBatchBuilder(max_count, max_length).build(units)


def flatten(batches: Sequence[Batch]) -> List[ParagraphUnit]:
    return [unit for batch in batches for unit in batch.units]


def build_batches(
    units: Sequence[ParagraphUnit],
    *,
    token_aware: bool,
    budget: int,
    system_prompt_tokens: int,
    ratio: float,
    max_count: int,
    max_length: int,
) -> List[Batch]:
    """Pick the packing strategy; token-aware falls back to length packing."""

    if token_aware:
        try:
            return schedule(units, budget, system_prompt_tokens, ratio)
        except Exception as exc:
            logger.warning("Token-aware batching failed, using length batching: %s", exc)
    return schedule_by_length(units, max_count, max_length)


def describe(batches: Sequence[Batch]) -> Optional[str]:
    if not batches:
        return None
    sizes = ", ".join(str(len(batch.units)) for batch in batches)
    return f"{len(batches)} batches (sizes: {sizes})"
