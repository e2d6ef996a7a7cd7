"""
Orchestration collaborator interfaces.

Defines what the dispatch engine needs from the job orchestration layer and
from the configuration store.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from event_jobs.execution.job_spec import JobSpec


class JobExecutor(ABC):
    """Abstract base class for job orchestration clients."""

    @abstractmethod
    async def create_job(self, spec: JobSpec, payload: bytes) -> Dict[str, Any]:
        """
        Create a job processing one message.

        Args:
            spec: Job specification of the queue the message came from
            payload: Raw message body

        Returns:
            Dict with the generated job name, alias and job name of the spec

        Raises:
            OrchestrationDispatchError: If the secret or job cannot be created
        """
        pass

    @abstractmethod
    async def count_active_jobs(self, spec: JobSpec) -> int:
        """
        Count active jobs of a queue, bounded to spec.parallelism + 1.

        Raises:
            OrchestrationQueryError: If the orchestration layer cannot answer
        """
        pass

    @abstractmethod
    async def create_secret(
        self, namespace: str, name: str, job_name: str, payload: bytes
    ) -> None:
        """
        Create the secret carrying one message to its job.

        Raises:
            OrchestrationDispatchError: If the secret cannot be created
        """
        pass


class ConfigStore(ABC):
    """Abstract base class for configuration stores."""

    @abstractmethod
    async def get_config(self, name: str, namespace: str) -> Dict[str, str]:
        """
        Fetch the raw alias -> document mapping.

        Raises:
            ConfigFetchError: If the configuration cannot be read
        """
        pass
