import base64
import hashlib

import pytest
from kubernetes.client.rest import ApiException
from unittest.mock import MagicMock, call, patch

from event_jobs.core.exceptions import (
    ConfigFetchError,
    OrchestrationDispatchError,
    OrchestrationQueryError,
)
from event_jobs.execution.executors.k8s import K8sExecutor, build_secret_data


class TestK8sExecutor:
    """Tests for K8sExecutor with mocked K8s clients."""

    @pytest.fixture
    def executor(self):
        """Create K8sExecutor instance with mocked K8s clients."""
        with patch("event_jobs.execution.executors.k8s.config") as mock_config:
            mock_config.load_kube_config.return_value = None

            with patch("event_jobs.execution.executors.k8s.client") as mock_client:
                mock_batch_v1 = MagicMock()
                mock_core_v1 = MagicMock()
                mock_client.BatchV1Api.return_value = mock_batch_v1
                mock_client.CoreV1Api.return_value = mock_core_v1

                executor = K8sExecutor(is_production=False)
                executor.batch_v1 = mock_batch_v1
                executor.core_v1 = mock_core_v1

                yield executor

    def test_loads_incluster_config_in_production(self):
        """Test that production mode uses the in-cluster service account."""
        with patch("event_jobs.execution.executors.k8s.config") as mock_config, patch(
            "event_jobs.execution.executors.k8s.client"
        ):
            K8sExecutor(is_production=True)

            mock_config.load_incluster_config.assert_called_once()
            mock_config.load_kube_config.assert_not_called()

    def test_loads_kube_config_outside_production(self):
        with patch("event_jobs.execution.executors.k8s.config") as mock_config, patch(
            "event_jobs.execution.executors.k8s.client"
        ):
            K8sExecutor(is_production=False)

            mock_config.load_kube_config.assert_called_once()
            mock_config.load_incluster_config.assert_not_called()

    async def test_create_job(self, executor, make_spec):
        """Test creating the message secret and the job."""
        spec = make_spec("queue", jobName="resize", namespace="jobs")
        order = MagicMock()
        order.attach_mock(executor.core_v1.create_namespaced_secret, "secret")
        order.attach_mock(executor.batch_v1.create_namespaced_job, "job")

        result = await executor.create_job(spec, b'{"id": 1}')

        assert result["alias"] == "queue"
        assert result["job_name"] == "resize"
        assert result["job"].startswith("resize-")
        assert [c[0] for c in order.mock_calls] == ["secret", "job"]

        job_kwargs = executor.batch_v1.create_namespaced_job.call_args[1]
        assert job_kwargs["namespace"] == "jobs"
        assert job_kwargs["body"]["metadata"]["name"] == result["job"]
        assert job_kwargs["body"]["metadata"]["labels"] == spec.labels

        secret_kwargs = executor.core_v1.create_namespaced_secret.call_args[1]
        assert secret_kwargs["namespace"] == "jobs"
        assert secret_kwargs["body"]["metadata"] == {
            "name": result["job"],
            "namespace": "jobs",
        }
        assert base64.b64decode(secret_kwargs["body"]["data"]["MESSAGE"]) == b'{"id": 1}'

    async def test_create_job_secret_failure(self, executor, make_spec):
        """Test that no job is created when the secret cannot be created."""
        executor.core_v1.create_namespaced_secret.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(OrchestrationDispatchError):
            await executor.create_job(make_spec(), b"payload")

        executor.batch_v1.create_namespaced_job.assert_not_called()

    async def test_create_job_failure(self, executor, make_spec):
        """Test launch failure when K8s API fails."""
        executor.batch_v1.create_namespaced_job.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(OrchestrationDispatchError):
            await executor.create_job(make_spec(), b"payload")

    async def test_count_active_jobs(self, executor, make_spec):
        """Test counting active jobs bounded to parallelism + 1."""
        spec = make_spec("queue", parallelism=3)
        executor.batch_v1.list_namespaced_job.return_value = MagicMock(
            items=[MagicMock(), MagicMock()]
        )

        active = await executor.count_active_jobs(spec)

        assert active == 2
        executor.batch_v1.list_namespaced_job.assert_called_once_with(
            namespace="default",
            field_selector="status.active=1",
            label_selector=spec.label_selector,
            limit=4,
        )
        assert "jobitem=job" in spec.label_selector.split(",")

    async def test_count_active_jobs_failure(self, executor, make_spec):
        """Test that any API failure becomes an OrchestrationQueryError."""
        executor.batch_v1.list_namespaced_job.side_effect = ApiException(
            status=503, reason="Unavailable"
        )

        with pytest.raises(OrchestrationQueryError):
            await executor.count_active_jobs(make_spec())

    async def test_create_secret(self, executor):
        await executor.create_secret("jobs", "resize-1", "resize", b"hello")

        executor.core_v1.create_namespaced_secret.assert_called_once_with(
            namespace="jobs",
            body={
                "metadata": {"name": "resize-1", "namespace": "jobs"},
                "data": build_secret_data("jobs", "resize-1", "resize", b"hello"),
            },
        )

    async def test_get_config(self, executor):
        """Test reading the config map data section."""
        executor.core_v1.read_namespaced_config_map.return_value = MagicMock(
            data={"queue1": "image: a"}
        )

        data = await executor.get_config("configs", "default")

        assert data == {"queue1": "image: a"}
        assert executor.core_v1.read_namespaced_config_map.call_args == call(
            name="configs", namespace="default"
        )

    async def test_get_config_empty(self, executor):
        executor.core_v1.read_namespaced_config_map.return_value = MagicMock(data=None)

        assert await executor.get_config("configs", "default") == {}

    async def test_get_config_not_found(self, executor):
        executor.core_v1.read_namespaced_config_map.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        with pytest.raises(ConfigFetchError):
            await executor.get_config("configs", "default")


class TestSecretData:
    """Tests for the secret payload fields."""

    def test_secret_fields(self):
        data = build_secret_data("jobs", "resize-1", "resize", "héllo".encode("utf-8"))

        assert base64.b64decode(data["ISSUER"]) == b"kubernetes-event-jobs/provisioner"
        assert base64.b64decode(data["TARGET"]) == b"resize-1"
        assert base64.b64decode(data["MESSAGE"]) == "héllo".encode("utf-8")
        assert base64.b64decode(data["CHECKSUM"]) == hashlib.sha1(
            "jobs:resize:héllo".encode("utf-8")
        ).digest()
