from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from opentelemetry import trace

from license_resolver.core.config import PassPolicy
from license_resolver.jobs.fetcher import Sleeper
from license_resolver.schemas.reports import RunReport

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING_PASS = "running_pass"
    EVALUATING = "evaluating"
    SLEEPING = "sleeping"
    DONE = "done"


class StopReason(str, Enum):
    COMPLETED = "completed"
    STALLED = "stalled"
    MAX_PASSES = "max_passes"


@dataclass(slots=True)
class PassRecord:
    number: int
    mapped: int
    unresolved: int
    missing_before: int
    missing_after: int
    report: RunReport


@dataclass(slots=True)
class OrchestrationResult:
    stop_reason: StopReason
    passes: list[PassRecord] = field(default_factory=list)

    @property
    def missing_after(self) -> int | None:
        return self.passes[-1].missing_after if self.passes else None

    @property
    def total_mapped(self) -> int:
        return sum(item.mapped for item in self.passes)


class MultiPassOrchestrator:
    """Runs resolution passes back to back until done, stalled, or capped.

    Passes never overlap. After each pass the report decides the next state:
    nothing left to resolve, ``stop_after_no_progress_passes`` consecutive
    passes with zero mapped rows, or ``max_passes`` reached all end the loop;
    otherwise the loop sleeps ``sleep_seconds`` and runs again.
    """

    def __init__(
        self,
        run_pass: Callable[[int], Awaitable[RunReport]],
        policy: PassPolicy,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.run_pass = run_pass
        self.policy = policy
        self.sleep = sleep
        self.state = LoopState.IDLE
        self.consecutive_no_progress = 0

    async def run(self) -> OrchestrationResult:
        passes: list[PassRecord] = []
        logger.info(
            "Starting exhaustive license fix loop maxPasses=%s stopAfterNoProgressPasses=%s sleep=%ss",
            self.policy.max_passes or "unlimited",
            self.policy.stop_after_no_progress_passes,
            self.policy.sleep_seconds,
        )

        while True:
            number = len(passes) + 1
            self.state = LoopState.RUNNING_PASS
            with tracer.start_as_current_span("resolver.orchestrate") as span:
                span.set_attribute("pass.number", number)
                report = await self.run_pass(number)

            self.state = LoopState.EVALUATING
            record = PassRecord(
                number=number,
                mapped=report.summary.mapped,
                unresolved=report.summary.unresolved,
                missing_before=report.dataset.missing_before,
                missing_after=report.dataset.missing_after,
                report=report,
            )
            passes.append(record)
            logger.info(
                "[pass %s] mapped=%s, unresolved=%s, missing %s -> %s",
                number,
                record.mapped,
                record.unresolved,
                record.missing_before,
                record.missing_after,
            )

            stop_reason = self.evaluate(record)
            if stop_reason is not None:
                self.state = LoopState.DONE
                logger.info("Stopping after pass %s: %s", number, stop_reason.value)
                return OrchestrationResult(stop_reason=stop_reason, passes=passes)

            self.state = LoopState.SLEEPING
            logger.info("Sleeping %ss before next pass...", self.policy.sleep_seconds)
            if self.policy.sleep_seconds > 0:
                await self.sleep(self.policy.sleep_seconds)

    def evaluate(self, record: PassRecord) -> StopReason | None:
        if record.mapped == 0:
            self.consecutive_no_progress += 1
        else:
            self.consecutive_no_progress = 0

        if record.missing_after == 0:
            return StopReason.COMPLETED
        threshold = self.policy.stop_after_no_progress_passes
        if threshold > 0 and self.consecutive_no_progress >= threshold:
            return StopReason.STALLED
        if self.policy.max_passes > 0 and record.number >= self.policy.max_passes:
            return StopReason.MAX_PASSES
        return None
