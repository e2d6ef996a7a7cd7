import asyncio
import math
import random
import ssl
from typing import Any, Awaitable, Callable, Dict, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractQueue

from event_jobs.core.exceptions import (
    BrokerOperationError,
    ConnectError,
    FatalDisconnect,
    QueueDeclareError,
)
from event_jobs.core.telemetry import get_logger
from .interface import BrokerChannelInterface

logger = get_logger(__name__)

FatalCallback = Callable[[str, BaseException], Awaitable[None]]


# Constants
class ConnectionConfig:
    DEFAULT_BACKOFF_SECONDS = 10
    DEFAULT_MAX_RETRIES = 5
    BACKOFF_JITTER_FACTOR = 2.5
    NORMAL_CLOSE_REPLY_CODE = 200


def is_fatal_close(exc: Optional[BaseException]) -> bool:
    """
    Classify a connection close.

    A close without an exception, or one cancelled by our own close() call,
    was requested by the application. A broker close with reply code 200 is a
    normal shutdown. Everything else (forced closure, missed heartbeats,
    socket errors) is fatal.
    """
    if exc is None:
        return False
    if isinstance(exc, type):
        return not issubclass(exc, asyncio.CancelledError)
    if isinstance(exc, asyncio.CancelledError):
        return False

    reply_code = getattr(exc, "reply_code", None)
    if reply_code is None and exc.args and isinstance(exc.args[0], int):
        reply_code = exc.args[0]
    return reply_code != ConnectionConfig.NORMAL_CLOSE_REPLY_CODE


def build_ssl_context(
    ca_file: Optional[str] = None,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
) -> ssl.SSLContext:
    """Create a client TLS context, optionally with a custom CA and client cert."""
    context = ssl.create_default_context(cafile=ca_file)
    if cert_file:
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    return context


class RabbitMQChannel(BrokerChannelInterface):
    """Polling channel on top of an aio-pika channel."""

    def __init__(self, channel: AbstractChannel):
        self.channel = channel
        self._queues: Dict[str, AbstractQueue] = {}

    async def assert_queue(self, queue: str, durable: bool = True) -> None:
        try:
            self._queues[queue] = await self.channel.declare_queue(
                queue, durable=durable
            )
        except Exception as e:
            raise QueueDeclareError(f"Failed to declare queue {queue}: {e}") from e

        logger.info(f"Declared queue: {queue}")

    async def get_one_message(self, queue: str) -> Optional[Any]:
        try:
            queue_obj = self._queues.get(queue)
            if queue_obj is None:
                queue_obj = await self.channel.get_queue(queue, ensure=False)
                self._queues[queue] = queue_obj

            return await queue_obj.get(no_ack=False, fail=False)
        except Exception as e:
            raise BrokerOperationError(
                f"Could not get message from queue {queue}: {e}"
            ) from e

    async def ack(self, message: Any) -> None:
        try:
            await message.ack()
        except Exception as e:
            raise BrokerOperationError(f"Failed to ack message: {e}") from e

    async def nack(self, message: Any, requeue: bool) -> None:
        try:
            await message.nack(requeue=requeue)
        except Exception as e:
            raise BrokerOperationError(f"Failed to nack message: {e}") from e


class RabbitMQConnectionManager:
    """
    Owns the broker connection and its single channel.

    A fatal close starts a reconnect loop with randomized exponential backoff.
    After ``max_retries`` failed attempts the manager gives up and reports
    through ``on_fatal``; it never exits the process itself.
    """

    def __init__(
        self,
        url: str,
        ssl_context: Optional[ssl.SSLContext] = None,
        backoff_seconds: int = ConnectionConfig.DEFAULT_BACKOFF_SECONDS,
        max_retries: int = ConnectionConfig.DEFAULT_MAX_RETRIES,
        on_fatal: Optional[FatalCallback] = None,
        random_source: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.url = url
        self.ssl_context = ssl_context
        self.backoff_seconds = backoff_seconds
        self.max_retries = max_retries
        self.on_fatal = on_fatal
        self._random = random_source
        self._sleep = sleep

        self.connection: Optional[AbstractConnection] = None
        self.channel: Optional[RabbitMQChannel] = None
        self.retry_failures = 0
        self.connection_backoff = backoff_seconds
        self._last_connection_error: Optional[BaseException] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and not self.connection.is_closed

    async def connect(self) -> RabbitMQChannel:
        """Open a connection and one channel, resetting the retry state."""
        connection = None
        try:
            connection = await aio_pika.connect(self.url, ssl_context=self.ssl_context)
            channel = await connection.channel()
        except Exception as e:
            if connection is not None and not connection.is_closed:
                await self._close_quietly(connection)
            raise ConnectError(f"Failed to connect to RabbitMQ: {e}") from e

        connection.close_callbacks.add(self._on_connection_close)
        self.connection = connection
        self.channel = RabbitMQChannel(channel)
        self.retry_failures = 0
        self.connection_backoff = self.backoff_seconds
        self._last_connection_error = None

        logger.info("Successfully connected to RabbitMQ")
        return self.channel

    def _on_connection_close(
        self, sender: Any, exc: Optional[BaseException] = None
    ) -> None:
        if sender is not self.connection or self._stopped:
            return

        self.connection = None
        self.channel = None

        if not is_fatal_close(exc):
            logger.info("Broker connection closed")
            return

        self._last_connection_error = FatalDisconnect(f"Broker connection lost: {exc!r}")
        logger.warning(f"Connection error with broker. Attempting reconnect: {exc!r}")
        self._reconnect_task = asyncio.create_task(self.reconnect())

    async def reconnect(self) -> bool:
        """
        Retry connecting until success or until the retry budget is exhausted.

        Returns:
            True once reconnected, False if recovery failed or was stopped
        """
        while not self._stopped:
            try:
                await self.connect()
            except ConnectError as e:
                self.retry_failures += 1

                if self.retry_failures >= self.max_retries:
                    logger.error(
                        f"Connection error not recovered after {self.retry_failures} retries. "
                        f"Last connection error: {self._last_connection_error}, last attempt: {e}"
                    )
                    if self.on_fatal:
                        await self.on_fatal("broker reconnect attempts exhausted", e)
                    return False

                delay = self.connection_backoff
                logger.warning(
                    f"Could not reconnect to broker. Retrying in {delay} seconds: {e}"
                )
                self.connection_backoff = math.ceil(
                    self.connection_backoff
                    * (self._random() * ConnectionConfig.BACKOFF_JITTER_FACTOR)
                )
                await self._sleep(delay)
            else:
                logger.info("Successfully reconnected to broker")
                return True

        return False

    async def _close_quietly(self, connection: AbstractConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"Error closing broker connection: {e}")

    async def stop(self) -> None:
        """Cancel pending reconnects and close the connection. Safe to repeat."""
        self._stopped = True

        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        connection = self.connection
        self.connection = None
        self.channel = None
        if connection is not None and not connection.is_closed:
            await self._close_quietly(connection)

        logger.info("Disconnected from RabbitMQ")
