import logging
from typing import Any, Callable, Dict, Mapping

from opentelemetry import trace

from event_jobs.core.exceptions import OrchestrationDispatchError
from event_jobs.core.telemetry import get_logger, get_tracer
from event_jobs.execution.executors.base import JobExecutor
from event_jobs.execution.job_spec import JobSpec

logger = get_logger(__name__)


class MessageDispatcher:
    """Turns one pulled message into one orchestration job."""

    def __init__(
        self,
        executor: JobExecutor,
        get_specs: Callable[[], Mapping[str, JobSpec]],
    ):
        self.executor = executor
        self.get_specs = get_specs

    async def dispatch(self, alias: str, message: Any) -> Dict[str, Any]:
        spec = self.get_specs().get(alias)

        with get_tracer().start_as_current_span("dispatch_message") as span:
            span.set_attribute("messaging.system", "rabbitmq")
            span.set_attribute("messaging.source", alias)
            span.set_attribute("messaging.redelivered", bool(getattr(message, "redelivered", False)))

            if spec is None:
                error = OrchestrationDispatchError(f"No job configuration for queue {alias}")
                span.record_exception(error)
                span.set_status(trace.Status(trace.StatusCode.ERROR))
                raise error

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Received new message from queue {alias}: {message.body!r}")

            try:
                return await self.executor.create_job(spec, message.body)
            except Exception as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR))
                raise
