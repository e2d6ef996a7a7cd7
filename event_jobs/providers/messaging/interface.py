from abc import ABC, abstractmethod
from typing import Any, Optional


class BrokerChannelInterface(ABC):
    """Channel operations the dispatch engine needs from a broker."""

    @abstractmethod
    async def assert_queue(self, queue: str, durable: bool = True) -> None:
        """Declare a queue, idempotently. Raises QueueDeclareError."""
        pass

    @abstractmethod
    async def get_one_message(self, queue: str) -> Optional[Any]:
        """Pull at most one message without auto-ack. None if the queue is empty."""
        pass

    @abstractmethod
    async def ack(self, message: Any) -> None:
        pass

    @abstractmethod
    async def nack(self, message: Any, requeue: bool) -> None:
        pass
