import asyncio
from typing import Optional

from event_jobs.core.config import settings
from event_jobs.core.exceptions import QueueDeclareError
from event_jobs.core.telemetry import get_logger
from event_jobs.dispatch.admission import AdmissionController
from event_jobs.dispatch.dispatcher import MessageDispatcher
from event_jobs.dispatch.events import EventBus, FatalError, Reloaded
from event_jobs.dispatch.poller import ListenerRegistry
from event_jobs.dispatch.reconciler import ConfigReconciler
from event_jobs.execution.executors.base import ConfigStore, JobExecutor
from event_jobs.execution.executors.k8s import K8sExecutor
from event_jobs.providers.messaging.factory import get_connection_manager
from event_jobs.providers.messaging.rabbitmq_async import RabbitMQConnectionManager

logger = get_logger(__name__)


class MessageController:
    """
    Composition root of the dispatch engine.

    Wires configuration reloads to listener rebuilds and collects fatal
    conditions reported by any component. The controller never terminates the
    process; callers wait on ``wait_fatal`` and decide.
    """

    def __init__(
        self,
        executor: JobExecutor,
        config_store: ConfigStore,
        connection: RabbitMQConnectionManager,
        events: EventBus,
        config_map_name: str,
        config_namespace: str,
        default_namespace: str,
        default_registry: Optional[str] = None,
        reload_enabled: bool = True,
        reload_interval: float = 60,
        requeue: bool = False,
    ):
        self.events = events
        self.connection = connection
        self.reconciler = ConfigReconciler(
            config_store=config_store,
            events=events,
            config_map_name=config_map_name,
            config_namespace=config_namespace,
            default_namespace=default_namespace,
            default_registry=default_registry,
            reload_enabled=reload_enabled,
            reload_interval=reload_interval,
        )
        self.admission = AdmissionController(executor, self.reconciler.get_specs)
        self.dispatcher = MessageDispatcher(executor, self.reconciler.get_specs)
        self.listeners = ListenerRegistry(connection, events, requeue=requeue)

        self.fatal_error: Optional[FatalError] = None
        self._fatal = asyncio.Event()

        events.subscribe(Reloaded, self._on_reload)
        events.subscribe(FatalError, self._on_fatal)

    @classmethod
    def from_settings(cls) -> "MessageController":
        """Build the controller with Kubernetes and RabbitMQ clients from settings."""
        events = EventBus()

        async def report_fatal(reason: str, error: BaseException) -> None:
            await events.publish(FatalError(reason=reason, error=error))

        executor = K8sExecutor(is_production=settings.is_production)
        return cls(
            executor=executor,
            config_store=executor,
            connection=get_connection_manager(on_fatal=report_fatal),
            events=events,
            config_map_name=settings.config_map_name,
            config_namespace=settings.pod_namespace,
            default_namespace=settings.kubernetes_job_scope,
            default_registry=settings.docker_registry,
            reload_enabled=settings.reload_enabled,
            reload_interval=settings.reload_interval,
            requeue=settings.amqp_requeue,
        )

    async def _on_reload(self, event: Reloaded) -> None:
        try:
            await self.listeners.rebuild(
                event.specs, self.dispatcher.dispatch, self.admission.check_capacity
            )
        except QueueDeclareError as e:
            logger.error(f"Error updating amqp listeners: {e}")
            await self.events.publish(
                FatalError(reason="listener topology rebuild failed", error=e)
            )

    def _on_fatal(self, event: FatalError) -> None:
        if self.fatal_error is None:
            self.fatal_error = event
        self._fatal.set()

    async def start(self) -> None:
        """Connect to the broker and load the configuration. Raises ConnectError."""
        await self.connection.connect()
        await self.reconciler.start()

    async def wait_fatal(self) -> FatalError:
        await self._fatal.wait()
        return self.fatal_error

    async def stop(self) -> None:
        await self.reconciler.stop()
        await self.listeners.stop()
        await self.connection.stop()
