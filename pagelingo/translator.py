"""Orchestration of backend calls for a set of paragraph units."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from . import protocol
from .batching import UNIT_OVERHEAD_TOKENS, build_batches, describe, input_ceiling
from .concurrency import CountingSemaphore
from .configuration import TranslationOptions
from .errors import ParseError, TranslationProviderConfigurationError, TransportError
from .policy import FailurePolicy
from .prompts import build_messages, build_system_prompt
from .providers import TranslationBackend, extract_content
from .structures import (
    Batch,
    BatchState,
    ParagraphUnit,
    SessionState,
    TranslationResult,
)
from .tokens import estimate, truncate

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TranslationResult, int, int], None]


def system_prompt_tokens(target: str, source: str, *, numbered: bool) -> int:
    """Estimate for the longer of the plain and technical prompt variants."""

    return max(
        estimate(build_system_prompt(target, source, numbered=numbered, technical=technical))
        for technical in (False, True)
    )


@dataclass
class BatchJob:
    """A batch together with its dispatch state history."""

    batch: Batch
    state: BatchState = BatchState.PENDING
    history: List[BatchState] = field(default_factory=lambda: [BatchState.PENDING])
    error: Optional[str] = None

    def transition(self, state: BatchState) -> None:
        logger.debug(
            "Batch %s: %s -> %s", self.batch.batch_id, self.state.value, state.value
        )
        self.state = state
        self.history.append(state)


@dataclass
class OrchestratorStats:
    """Counters for one ``translate`` run."""

    total_units: int = 0
    individual_units: int = 0
    batches: int = 0
    merged_batches: int = 0
    decomposed_batches: int = 0
    calls: int = 0
    succeeded: int = 0
    failed: int = 0
    truncated: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0


class TranslationOrchestrator:
    """Dispatches units to the backend with bounded concurrency.

    Long units go out one per call. Short units are packed into batches and
    sent as a numbered list; a batch that fails is decomposed into one call
    per unit. A unit whose own call fails comes back with ``success=False``
    and its original text. Setting ``SessionState.navigating`` stops further
    dispatches and discards anything that completes afterwards.
    """

    def __init__(
        self,
        backend: TranslationBackend,
        options: TranslationOptions,
        session_state: Optional[SessionState] = None,
        policy: Optional[FailurePolicy] = None,
    ) -> None:
        self.backend = backend
        self.options = options
        self.session_state = session_state or SessionState()
        self.policy = policy or FailurePolicy()
        self.semaphore = CountingSemaphore(options.max_concurrency)
        self.jobs: List[BatchJob] = []
        self.stats = OrchestratorStats()
        self._results: Dict[int, TranslationResult] = {}
        self._on_progress: Optional[ProgressCallback] = None
        self._generation = self.session_state.generation

    @property
    def cancelled(self) -> bool:
        state = self.session_state
        return state.navigating or state.generation != self._generation

    async def translate(
        self,
        units: Sequence[ParagraphUnit],
        target: Optional[str] = None,
        source: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TranslationResult]:
        """Translate ``units`` and return one result per unit in input order."""

        target = target or self.options.target_language
        source = source or self.options.source_language
        start_time = time.monotonic()

        self._results = {}
        self._on_progress = on_progress
        self._generation = self.session_state.generation
        self.jobs = []
        self.stats = OrchestratorStats(total_units=len(units))
        if not units:
            return []

        positions = {unit.unit_id: index for index, unit in enumerate(units)}
        threshold = self.options.short_text_threshold
        individual = [
            (index, unit)
            for index, unit in enumerate(units)
            if not self.options.enable_merge or len(unit.combined_text) > threshold
        ]
        short_units = [
            unit
            for unit in units
            if self.options.enable_merge and len(unit.combined_text) <= threshold
        ]
        self.stats.individual_units = len(individual)

        tasks = [
            self._translate_single(index, unit, target, source) for index, unit in individual
        ]
        if short_units:
            tasks.append(self._dispatch_batches(short_units, positions, target, source))

        await asyncio.gather(*tasks)

        self.stats.cancelled = self.cancelled
        self.stats.elapsed_seconds = time.monotonic() - start_time
        if self.stats.cancelled:
            logger.info("Translation cancelled; %d results kept", len(self._results))
        else:
            logger.info(
                "Translated %d units (%d failed) in %d calls",
                self.stats.succeeded,
                self.stats.failed,
                self.stats.calls,
            )
        return [self._results[index] for index in sorted(self._results)]

    async def _dispatch_batches(
        self,
        units: Sequence[ParagraphUnit],
        positions: Dict[str, int],
        target: str,
        source: str,
    ) -> None:
        batches = build_batches(
            units,
            token_aware=self.options.token_aware_batching,
            budget=self.options.token_budget,
            system_prompt_tokens=system_prompt_tokens(target, source, numbered=True),
            ratio=self.options.ceiling_ratio,
            max_count=self.options.max_merged_count,
            max_length=self.options.max_merged_length,
        )
        self.stats.batches = len(batches)
        logger.debug("Scheduled %d short units into %s", len(units), describe(batches))

        pending: List[asyncio.Task] = []
        for position, batch in enumerate(batches):
            if position and self.options.batch_delay > 0:
                await asyncio.sleep(self.options.batch_delay)
            if self.cancelled:
                break
            job = BatchJob(batch=batch)
            self.jobs.append(job)
            pending.append(
                asyncio.ensure_future(self._run_batch(job, positions, target, source))
            )
        if pending:
            await asyncio.gather(*pending)

    async def _run_batch(
        self,
        job: BatchJob,
        positions: Dict[str, int],
        target: str,
        source: str,
    ) -> None:
        units = job.batch.units
        if job.batch.truncated:
            for unit in units:
                self.stats.truncated += 1
                self.policy.note_truncation(
                    unit.unit_id, len(unit.combined_text), len(unit.source_text)
                )

        if len(units) == 1:
            job.transition(BatchState.DISPATCHED)
            unit = units[0]
            success = await self._translate_single(positions[unit.unit_id], unit, target, source)
            if success is not None:
                job.transition(BatchState.SUCCEEDED if success else BatchState.FAILED)
            return

        self.stats.merged_batches += 1
        originals = [unit.source_text for unit in units]
        job.transition(BatchState.DISPATCHED)
        try:
            raw = await self._call(protocol.merge(originals), target, source, numbered=True)
            if raw is None:
                return
            translations = protocol.split(raw, originals)
        except TranslationProviderConfigurationError:
            raise
        except Exception as exc:
            if self.cancelled:
                return
            job.error = str(exc)
            job.transition(BatchState.FAILED)
            self.policy.handle_batch_failure(job.batch.batch_id, exc)
            job.transition(BatchState.DECOMPOSED)
            self.stats.decomposed_batches += 1
            await asyncio.gather(
                *(
                    self._translate_single(positions[unit.unit_id], unit, target, source)
                    for unit in units
                )
            )
            return

        if self.cancelled:
            return
        job.transition(BatchState.SUCCEEDED)
        self.policy.record_success()
        for unit, translation in zip(units, translations):
            self._deliver(
                TranslationResult(
                    unit_id=unit.unit_id,
                    original_text=unit.combined_text,
                    translated_text=translation,
                    success=True,
                    is_merged=True,
                    index=positions[unit.unit_id],
                )
            )

    async def _translate_single(
        self,
        index: int,
        unit: ParagraphUnit,
        target: str,
        source: str,
    ) -> Optional[bool]:
        """Translate one unit; returns ``None`` when the run was cancelled."""

        text = self._fit_to_budget(unit, target, source)
        try:
            translated = await self._call(text, target, source, numbered=False)
        except TranslationProviderConfigurationError:
            raise
        except Exception as exc:
            if self.cancelled:
                return None
            self.policy.handle_unit_failure(unit.unit_id, exc)
            self._deliver(
                TranslationResult(
                    unit_id=unit.unit_id,
                    original_text=unit.combined_text,
                    translated_text=unit.combined_text,
                    success=False,
                    error=str(exc),
                    index=index,
                )
            )
            return False

        if translated is None or self.cancelled:
            return None
        self.policy.record_success()
        self._deliver(
            TranslationResult(
                unit_id=unit.unit_id,
                original_text=unit.combined_text,
                translated_text=translated,
                success=True,
                index=index,
            )
        )
        return True

    def _fit_to_budget(self, unit: ParagraphUnit, target: str, source: str) -> str:
        """Shorten a unit whose single call would exceed the input ceiling."""

        text = unit.source_text
        ceiling = input_ceiling(self.options.token_budget, self.options.ceiling_ratio)
        available = max(
            10,
            ceiling - system_prompt_tokens(target, source, numbered=False) - UNIT_OVERHEAD_TOKENS,
        )
        if estimate(text) <= available:
            return text

        shortened = truncate(text, available)
        logger.warning(
            "Unit %s exceeds the %d-token ceiling; truncated from %d to %d characters.",
            unit.unit_id,
            ceiling,
            len(text),
            len(shortened),
        )
        self.stats.truncated += 1
        self.policy.note_truncation(unit.unit_id, len(text), len(shortened))
        return shortened

    async def _call(
        self,
        text: str,
        target: str,
        source: str,
        *,
        numbered: bool,
    ) -> Optional[str]:
        """One backend call under the semaphore; ``None`` when cancelled first."""

        messages = build_messages(
            text,
            target,
            source,
            numbered=numbered,
            supports_system_role=self.backend.supports_system_role,
        )
        async with self.semaphore:
            if self.cancelled:
                return None
            self.stats.calls += 1
            try:
                response = await asyncio.wait_for(
                    self.backend.call(
                        messages,
                        model=self.options.model,
                        temperature=self.options.temperature,
                        max_tokens=self.options.max_tokens,
                    ),
                    timeout=self.options.request_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise TransportError(
                    f"Request timed out after {self.options.request_timeout} seconds."
                ) from exc

        if self.cancelled:
            return None
        content = protocol.strip_code_fence(extract_content(response))
        if not content:
            raise ParseError("Translation response was empty.")
        return content

    def _deliver(self, result: TranslationResult) -> None:
        if self.cancelled:
            return
        self._results[result.index] = result
        if result.success:
            self.stats.succeeded += 1
        else:
            self.stats.failed += 1
        if self._on_progress is None:
            return
        try:
            self._on_progress(result, len(self._results), self.stats.total_units)
        except Exception:
            logger.exception("Progress callback failed for unit %s", result.unit_id)
