from types import MappingProxyType
from typing import Dict, Mapping, Optional

from event_jobs.core.exceptions import ConfigError
from event_jobs.core.telemetry import get_logger, log_span_event, trace_span
from event_jobs.dispatch.events import EventBus, FatalError, Reloaded
from event_jobs.dispatch.scheduling import RepeatingTask
from event_jobs.execution.executors.base import ConfigStore
from event_jobs.execution.job_spec import JobSpec

logger = get_logger(__name__)

EMPTY_SPECS: Mapping[str, JobSpec] = MappingProxyType({})


class ConfigReconciler:
    """
    Keeps the active configuration set in sync with the config map.

    The active set is replaced as a whole read-only mapping and only when its
    content changed, followed by a Reloaded event.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        events: EventBus,
        config_map_name: str,
        config_namespace: str,
        default_namespace: str,
        default_registry: Optional[str] = None,
        reload_enabled: bool = True,
        reload_interval: float = 60,
    ):
        self.config_store = config_store
        self.events = events
        self.config_map_name = config_map_name
        self.config_namespace = config_namespace
        self.default_namespace = default_namespace
        self.default_registry = default_registry
        self.reload_enabled = reload_enabled
        self.reload_interval = reload_interval
        self.active: Mapping[str, JobSpec] = EMPTY_SPECS
        self._reloader: Optional[RepeatingTask] = None

    def get_specs(self) -> Mapping[str, JobSpec]:
        return self.active

    def parse(self, raw: Mapping[str, str]) -> Dict[str, JobSpec]:
        """Parse every entry; a single invalid entry fails the whole set."""
        return {
            alias: JobSpec.from_document(
                alias, document, self.default_namespace, self.default_registry
            )
            for alias, document in raw.items()
        }

    @trace_span
    async def reconcile(self) -> bool:
        """
        Fetch, parse and diff the configuration.

        Returns:
            True if the active set was replaced
        """
        logger.debug("Trying to reload configuration")

        try:
            raw = await self.config_store.get_config(
                self.config_map_name, self.config_namespace
            )
            new_specs = self.parse(raw)
        except ConfigError as e:
            if self.reload_enabled:
                logger.warning(f"Error reloading configuration: {e}")
            else:
                logger.error(
                    f"Could not load configuration and reload is not enabled: {e}"
                )
                await self.events.publish(
                    FatalError(reason="initial configuration load failed", error=e)
                )
            return False

        return await self.apply(new_specs)

    async def apply(self, new_specs: Mapping[str, JobSpec]) -> bool:
        current = self.active
        has_changed = any(spec != current.get(alias) for alias, spec in new_specs.items())

        logger.debug(
            f"Found {len(new_specs)} configurations, currently provided: {len(current)}, "
            f"contains changes: {has_changed}"
        )

        if not has_changed and not (not new_specs and current):
            logger.info("No configurations changed")
            return False

        self.active = MappingProxyType(dict(new_specs))
        log_span_event("Configuration reloaded", {"queues": ",".join(sorted(self.active))})
        await self.events.publish(Reloaded(specs=self.active))
        return True

    async def start(self) -> None:
        """Load the configuration once, then keep reloading it if enabled."""
        await self.reconcile()

        if self.reload_enabled:
            self._reloader = RepeatingTask(
                "config-reload",
                self.reconcile,
                self.reload_interval,
                run_immediately=False,
            ).start()

    async def stop(self) -> None:
        """Stop periodic reloads and clear the active set."""
        if self._reloader:
            await self._reloader.wait_cancelled()
            self._reloader = None

        if self.active:
            self.active = EMPTY_SPECS
            await self.events.publish(Reloaded(specs=self.active))
