"""
Notifications exchanged between dispatch components.

Components publish typed events on an EventBus owned by the composition root
instead of a process-wide emitter. Subscribers are awaited in subscription
order, so a publisher resumes only after every subscriber has handled the
event.
"""

import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type, Union

from event_jobs.core.telemetry import get_logger
from event_jobs.execution.job_spec import JobSpec

logger = get_logger(__name__)


@dataclass(frozen=True)
class Reloaded:
    """The active configuration set was replaced."""

    specs: Mapping[str, JobSpec]


@dataclass(frozen=True)
class Processed:
    """A pulled message was dispatched (success) or rejected (failure)."""

    alias: str
    success: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class FatalError:
    """A condition the process cannot recover from."""

    reason: str
    error: Optional[BaseException] = None


Event = Union[Reloaded, Processed, FatalError]
Handler = Callable[[Any], Union[Awaitable[None], None]]


class EventBus:
    """Explicit subscription interface for dispatch events."""

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for one event type.

        Returns:
            Callable removing the subscription again
        """
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

        return unsubscribe

    async def publish(self, event: Event) -> None:
        logger.debug(f"Publishing {type(event).__name__} event")
        for handler in list(self._handlers[type(event)]):
            result = handler(event)
            if inspect.isawaitable(result):
                await result
