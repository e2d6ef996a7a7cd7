from typing import Optional

from event_jobs.core.config import settings
from .rabbitmq_async import FatalCallback, RabbitMQConnectionManager, build_ssl_context


def get_connection_manager(
    on_fatal: Optional[FatalCallback] = None,
) -> RabbitMQConnectionManager:
    """Get RabbitMQ connection manager configured from settings."""
    ssl_context = None
    if settings.amqp_use_tls:
        ssl_context = build_ssl_context(
            ca_file=settings.amqp_ca_file,
            cert_file=settings.amqp_cert_file,
            key_file=settings.amqp_key_file,
        )

    return RabbitMQConnectionManager(
        url=settings.amqp_url,
        ssl_context=ssl_context,
        backoff_seconds=settings.amqp_reconnect_backoff,
        max_retries=settings.amqp_reconnect_max_retries,
        on_fatal=on_fatal,
    )
