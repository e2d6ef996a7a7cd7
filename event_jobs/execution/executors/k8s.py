"""
Kubernetes client for message job execution.

Creates one Job (plus a Secret carrying the message) per dispatched message,
counts active jobs for admission control and reads the job config map using:
- Kubernetes Python client for API interactions
- Jinja2 templates for Job manifests (see JobSpec.create_job_template)
"""

import asyncio
import base64
import hashlib
from typing import Any, Dict, Optional
from uuid import uuid4

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from event_jobs.core.config import settings
from event_jobs.core.constants import SECRET_ISSUER
from event_jobs.core.exceptions import (
    ConfigFetchError,
    OrchestrationDispatchError,
    OrchestrationQueryError,
)
from event_jobs.core.telemetry import get_logger, trace_span
from event_jobs.execution.executors.base import ConfigStore, JobExecutor
from event_jobs.execution.job_spec import JobSpec

logger = get_logger(__name__)

ACTIVE_JOBS_FILTER = "status.active=1"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def build_secret_data(
    namespace: str, name: str, job_name: str, payload: bytes
) -> Dict[str, str]:
    """Secret fields handed to the job container through envFrom."""
    message_text = payload.decode("utf-8", errors="replace")
    checksum = hashlib.sha1(
        f"{namespace}:{job_name}:{message_text}".encode("utf-8")
    ).digest()
    return {
        "ISSUER": _b64(SECRET_ISSUER.encode("utf-8")),
        "TARGET": _b64(name.encode("utf-8")),
        "MESSAGE": _b64(payload),
        "CHECKSUM": _b64(checksum),
    }


class K8sExecutor(JobExecutor, ConfigStore):
    """Executor and config store backed by the Kubernetes API."""

    def __init__(self, is_production: Optional[bool] = None):
        """Initialize K8s clients."""
        if is_production is None:
            is_production = settings.is_production

        # In-cluster service account in production, kubeconfig otherwise
        if is_production:
            config.load_incluster_config()
        else:
            config.load_kube_config()

        self.batch_v1 = client.BatchV1Api()
        self.core_v1 = client.CoreV1Api()

    @trace_span
    async def create_job(self, spec: JobSpec, payload: bytes) -> Dict[str, Any]:
        """Create the message secret and then the job consuming it."""
        job_name = f"{spec.job_name}-{uuid4()}"
        job_dict = spec.create_job_template(job_name)

        await self.create_secret(spec.namespace, job_name, spec.job_name, payload)

        try:
            await asyncio.to_thread(
                self.batch_v1.create_namespaced_job,
                namespace=spec.namespace,
                body=job_dict,
            )
        except ApiException as e:
            raise OrchestrationDispatchError(
                f"Failed to create K8s job {job_name}: {e}"
            ) from e

        logger.info(f"Created job {job_name} in namespace {spec.namespace}")
        return {"job": job_name, "alias": spec.alias, "job_name": spec.job_name}

    @trace_span
    async def count_active_jobs(self, spec: JobSpec) -> int:
        """Count active jobs matching the spec labels, limited to parallelism + 1."""
        limit = None if spec.unlimited else spec.parallelism + 1
        try:
            result = await asyncio.to_thread(
                self.batch_v1.list_namespaced_job,
                namespace=spec.namespace,
                field_selector=ACTIVE_JOBS_FILTER,
                label_selector=spec.label_selector,
                limit=limit,
            )
        except Exception as e:
            raise OrchestrationQueryError(
                f"Failed to count active jobs for {spec.alias}: {e}"
            ) from e

        return len(result.items)

    async def create_secret(
        self, namespace: str, name: str, job_name: str, payload: bytes
    ) -> None:
        body = {
            "metadata": {"name": name, "namespace": namespace},
            "data": build_secret_data(namespace, name, job_name, payload),
        }
        try:
            await asyncio.to_thread(
                self.core_v1.create_namespaced_secret, namespace=namespace, body=body
            )
        except ApiException as e:
            raise OrchestrationDispatchError(
                f"Failed to create K8s secret {name}: {e}"
            ) from e

    @trace_span
    async def get_config(self, name: str, namespace: str) -> Dict[str, str]:
        """Read the data section of a config map."""
        try:
            config_map = await asyncio.to_thread(
                self.core_v1.read_namespaced_config_map, name=name, namespace=namespace
            )
        except Exception as e:
            raise ConfigFetchError(
                f"Failed to read config map {namespace}/{name}: {e}"
            ) from e

        return dict(config_map.data or {})
