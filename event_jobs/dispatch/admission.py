"""
Admission control for queue polling.

Decides per queue whether one more message may be dispatched, based on the
number of active jobs reported by the orchestration layer. When that number
cannot be fetched, a local estimate is used instead (degraded mode).
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional

from pydantic import BaseModel

from event_jobs.core.constants import AdmissionState
from event_jobs.core.exceptions import OrchestrationQueryError
from event_jobs.core.telemetry import get_logger
from event_jobs.execution.executors.base import JobExecutor
from event_jobs.execution.job_spec import JobSpec

logger = get_logger(__name__)


class ProcessingState(BaseModel):
    """Admission decision for one queue."""

    active: int
    busy: bool
    state: AdmissionState


@dataclass
class FallbackState:
    """Last known active job count of one queue."""

    estimated_active: int = 0
    last_seen_at: Optional[datetime] = None
    ever_observed_live: bool = False


class AdmissionController:
    """
    Answers "may this queue dispatch one more job right now?".

    Fallback state is keyed by alias and is never reset by a configuration
    reload. Checks of the same alias are serialized by a per-alias lock so
    concurrent timer ticks and eager re-polls do not lose increments.
    """

    def __init__(
        self,
        executor: JobExecutor,
        get_specs: Callable[[], Mapping[str, JobSpec]],
    ):
        self.executor = executor
        self.get_specs = get_specs
        self._fallback: Dict[str, FallbackState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def fallback_state(self, alias: str) -> Optional[FallbackState]:
        return self._fallback.get(alias)

    def _lock(self, alias: str) -> asyncio.Lock:
        lock = self._locks.get(alias)
        if lock is None:
            lock = self._locks[alias] = asyncio.Lock()
        return lock

    async def check_capacity(self, alias: str) -> ProcessingState:
        spec = self.get_specs().get(alias)
        if spec is None:
            return ProcessingState(active=-1, busy=True, state=AdmissionState.NOTFOUND)
        if spec.unlimited:
            return ProcessingState(active=0, busy=False, state=AdmissionState.UNLIMITED)

        async with self._lock(alias):
            fallback = self._fallback.get(alias)
            if fallback is None:
                fallback = self._fallback[alias] = FallbackState()

            try:
                active = await self.executor.count_active_jobs(spec)
            except OrchestrationQueryError as e:
                logger.warning(
                    f"Unknown processing state for queue {alias}, using local fallback: {e}"
                )
                return self._degraded(spec, fallback)

            fallback.estimated_active = active
            fallback.last_seen_at = datetime.now(timezone.utc)
            fallback.ever_observed_live = True

            return ProcessingState(
                active=active,
                busy=spec.parallelism < active,
                state=AdmissionState.FRESH,
            )

    def _degraded(self, spec: JobSpec, fallback: FallbackState) -> ProcessingState:
        last_active = fallback.estimated_active
        busy = spec.parallelism < (last_active + 1)

        # Presume every admitted call dispatches one job; only a fresh count
        # corrects the estimate downwards.
        if not busy:
            fallback.estimated_active += 1

        return ProcessingState(active=last_active, busy=busy, state=AdmissionState.OLD)
