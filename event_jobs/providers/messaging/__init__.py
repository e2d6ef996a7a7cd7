from .interface import BrokerChannelInterface
from .rabbitmq_async import RabbitMQChannel, RabbitMQConnectionManager
from .factory import get_connection_manager

__all__ = [
    "BrokerChannelInterface",
    "RabbitMQChannel",
    "RabbitMQConnectionManager",
    "get_connection_manager",
]
