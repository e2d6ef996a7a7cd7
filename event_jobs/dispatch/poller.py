import asyncio
import functools
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Set

from event_jobs.core.constants import AdmissionState
from event_jobs.core.exceptions import BrokerOperationError, QueueDeclareError
from event_jobs.core.telemetry import get_logger
from event_jobs.dispatch.admission import ProcessingState
from event_jobs.dispatch.events import EventBus, Processed
from event_jobs.dispatch.scheduling import RepeatingTask
from event_jobs.execution.job_spec import JobSpec
from event_jobs.providers.messaging.interface import BrokerChannelInterface
from event_jobs.providers.messaging.rabbitmq_async import RabbitMQConnectionManager

logger = get_logger(__name__)

DispatchFn = Callable[[str, Any], Awaitable[Dict[str, Any]]]
AdmissionFn = Callable[[str], Awaitable[ProcessingState]]


class ListenerRegistry:
    """
    Owns one polling timer per configured queue.

    Each tick asks admission control for capacity and pulls at most one
    message. Dispatches run in their own tasks so that a rebuild cancels the
    timers without dropping messages that are already being dispatched.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        events: EventBus,
        requeue: bool = False,
    ):
        self.connection = connection
        self.events = events
        self.requeue = requeue
        self._listeners: Dict[str, RepeatingTask] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def aliases(self) -> List[str]:
        return list(self._listeners)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def _cancel_listeners(self) -> None:
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for listener in listeners:
            await listener.wait_cancelled()

    async def rebuild(
        self,
        specs: Mapping[str, JobSpec],
        dispatch_fn: DispatchFn,
        admission_fn: AdmissionFn,
    ) -> None:
        """
        Replace all listeners with one per spec.

        Raises:
            QueueDeclareError: If any queue cannot be asserted; no listener
                is started in that case
        """
        await self._cancel_listeners()
        if not specs:
            logger.info("No queues configured, all listeners removed")
            return

        channel = self.connection.channel
        if channel is None:
            raise QueueDeclareError("No broker channel available to declare queues")

        logger.info(f"Ensuring queues exist: {list(specs)}")
        for alias in specs:
            await channel.assert_queue(alias, durable=True)

        for alias, spec in specs.items():
            poll = functools.partial(self.poll_once, alias, dispatch_fn, admission_fn)
            self._listeners[alias] = RepeatingTask(
                f"poll:{alias}", poll, spec.interval / 1000
            ).start()

    async def poll_once(
        self, alias: str, dispatch_fn: DispatchFn, admission_fn: AdmissionFn
    ) -> None:
        """Pull and dispatch at most one message if the queue has capacity."""
        if self._stopped:
            return

        logger.debug(f"Checking for new messages in queue {alias}")

        state = await admission_fn(alias)
        if state.busy:
            if state.state == AdmissionState.NOTFOUND:
                logger.debug(f"No configuration for queue {alias}")
            else:
                logger.info(
                    f"Max parallelism reached. Queue {alias} busy "
                    f"(active={state.active}, state={state.state})"
                )
            return

        channel = self.connection.channel
        if channel is None:
            logger.warning(f"Broker not connected, skipping poll of queue {alias}")
            return

        try:
            message = await channel.get_one_message(alias)
        except BrokerOperationError as e:
            logger.error(f"Could not get message from queue {alias}: {e}")
            return

        if message is None:
            logger.debug(f"No new messages in queue {alias}")
            return

        task = asyncio.create_task(
            self._consume_message(alias, channel, message, dispatch_fn, admission_fn)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _consume_message(
        self,
        alias: str,
        channel: BrokerChannelInterface,
        message: Any,
        dispatch_fn: DispatchFn,
        admission_fn: AdmissionFn,
    ) -> None:
        try:
            result = await dispatch_fn(alias, message)
        except Exception as e:
            logger.error(
                f"Error while trying to dispatch message from queue {alias}: {e}",
                exc_info=True,
            )
            try:
                await channel.nack(message, requeue=self.requeue)
            except BrokerOperationError as nack_error:
                logger.error(f"Could not reject message from queue {alias}: {nack_error}")
            await self.events.publish(Processed(alias=alias, success=False, error=e))
            return

        try:
            await channel.ack(message)
        except BrokerOperationError as e:
            logger.error(f"Job dispatched but message from queue {alias} not acknowledged: {e}")

        await self.events.publish(Processed(alias=alias, success=True, result=result))
        logger.info(f"Successfully dispatched message from queue {alias}: {result}")

        # Drain eagerly while the queue has capacity
        if alias in self._listeners:
            try:
                await self.poll_once(alias, dispatch_fn, admission_fn)
            except Exception as e:
                logger.error(f"Error while polling queue {alias} again: {e}", exc_info=True)

    async def stop(self) -> None:
        """Cancel every timer and wait for in-flight dispatches."""
        self._stopped = True
        await self._cancel_listeners()

        if self._inflight:
            logger.info(f"Waiting for {len(self._inflight)} in-flight dispatches to complete...")
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
