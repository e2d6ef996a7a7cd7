import pytest
from unittest.mock import AsyncMock, MagicMock

from event_jobs.dispatch.events import EventBus, FatalError, Processed, Reloaded
from event_jobs.execution.job_spec import JobSpec


@pytest.fixture
def make_spec():
    """Build a JobSpec from a config map document with test defaults."""

    def _make(alias: str = "queue", **document):
        document.setdefault("jobName", "job")
        document.setdefault("image", "image")
        return JobSpec.from_document(alias, document, "default", "registry")

    return _make


@pytest.fixture
def mock_executor():
    """Create a mock orchestration client for testing."""
    executor = AsyncMock()
    executor.create_job = AsyncMock(
        return_value={"job": "job-123", "alias": "queue", "job_name": "job"}
    )
    executor.count_active_jobs = AsyncMock(return_value=0)
    executor.create_secret = AsyncMock(return_value=None)
    executor.get_config = AsyncMock(return_value={})
    return executor


@pytest.fixture
def mock_channel():
    """Create a mock broker channel for testing."""
    channel = AsyncMock()
    channel.assert_queue = AsyncMock(return_value=None)
    channel.get_one_message = AsyncMock(return_value=None)
    channel.ack = AsyncMock(return_value=None)
    channel.nack = AsyncMock(return_value=None)
    return channel


@pytest.fixture
def mock_connection(mock_channel):
    """Create a mock connection manager exposing the mock channel."""
    connection = MagicMock()
    connection.channel = mock_channel
    connection.connect = AsyncMock(return_value=mock_channel)
    connection.stop = AsyncMock(return_value=None)
    return connection


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorded_events(events):
    """Record every published event per type."""
    recorded = {Reloaded: [], Processed: [], FatalError: []}
    for event_type, items in recorded.items():
        events.subscribe(event_type, items.append)
    return recorded
