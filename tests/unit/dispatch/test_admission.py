import asyncio

import pytest

from event_jobs.core.constants import AdmissionState
from event_jobs.core.exceptions import OrchestrationQueryError
from event_jobs.dispatch.admission import AdmissionController
from event_jobs.dispatch.reconciler import ConfigReconciler


@pytest.fixture
def specs():
    return {}


@pytest.fixture
def admission(mock_executor, specs):
    return AdmissionController(mock_executor, lambda: specs)


class TestAdmissionController:
    """Tests for per-queue admission decisions."""

    async def test_unknown_alias_is_busy(self, admission, mock_executor):
        state = await admission.check_capacity("missing")

        assert state.active == -1
        assert state.busy is True
        assert state.state == AdmissionState.NOTFOUND
        mock_executor.count_active_jobs.assert_not_called()

    async def test_unlimited_never_queries(self, admission, mock_executor, specs, make_spec):
        """Test that unlimited queues are admitted without asking the cluster."""
        specs["queue"] = make_spec("queue", parallelism="unlimited")

        states = await asyncio.gather(*(admission.check_capacity("queue") for _ in range(100)))

        for state in states:
            assert state.active == 0
            assert state.busy is False
            assert state.state == AdmissionState.UNLIMITED

        mock_executor.count_active_jobs.assert_not_called()
        assert admission.fallback_state("queue") is None

    @pytest.mark.parametrize(
        "active, busy",
        [(0, False), (2, False), (3, False), (4, True)],
    )
    async def test_fresh_count(self, admission, mock_executor, specs, make_spec, active, busy):
        specs["queue"] = make_spec("queue", parallelism=3)
        mock_executor.count_active_jobs.return_value = active

        state = await admission.check_capacity("queue")

        assert state.active == active
        assert state.busy is busy
        assert state.state == AdmissionState.FRESH
        mock_executor.count_active_jobs.assert_awaited_once_with(specs["queue"])

    async def test_fresh_count_updates_fallback(self, admission, mock_executor, specs, make_spec):
        specs["queue"] = make_spec("queue", parallelism=3)
        mock_executor.count_active_jobs.return_value = 2

        await admission.check_capacity("queue")

        fallback = admission.fallback_state("queue")
        assert fallback.estimated_active == 2
        assert fallback.ever_observed_live is True
        assert fallback.last_seen_at is not None

    async def test_degraded_estimate_grows(self, admission, mock_executor, specs, make_spec):
        """Test that each admitted degraded call presumes one more active job."""
        specs["queue"] = make_spec("queue", parallelism=3)
        mock_executor.count_active_jobs.side_effect = OrchestrationQueryError("unavailable")

        states = [await admission.check_capacity("queue") for _ in range(5)]

        assert [s.active for s in states] == [0, 1, 2, 3, 3]
        assert [s.busy for s in states] == [False, False, False, True, True]
        assert all(s.state == AdmissionState.OLD for s in states)
        assert admission.fallback_state("queue").estimated_active == 3
        assert admission.fallback_state("queue").ever_observed_live is False

    async def test_fresh_count_corrects_estimate(
        self, admission, mock_executor, specs, make_spec
    ):
        specs["queue"] = make_spec("queue", parallelism=3)
        mock_executor.count_active_jobs.side_effect = OrchestrationQueryError("unavailable")
        for _ in range(3):
            await admission.check_capacity("queue")

        mock_executor.count_active_jobs.side_effect = None
        mock_executor.count_active_jobs.return_value = 1
        state = await admission.check_capacity("queue")

        assert state.state == AdmissionState.FRESH
        assert state.busy is False
        assert admission.fallback_state("queue").estimated_active == 1

    async def test_concurrent_degraded_checks_do_not_lose_increments(
        self, admission, mock_executor, specs, make_spec
    ):
        specs["queue"] = make_spec("queue", parallelism=3)
        mock_executor.count_active_jobs.side_effect = OrchestrationQueryError("unavailable")

        states = await asyncio.gather(*(admission.check_capacity("queue") for _ in range(6)))

        assert sum(not s.busy for s in states) == 3
        assert admission.fallback_state("queue").estimated_active == 3

    async def test_slow_fresh_count_does_not_overwrite_degraded_increment(
        self, admission, mock_executor, specs, make_spec
    ):
        """Test that checks of one queue run one at a time."""
        specs["queue"] = make_spec("queue", parallelism=3)
        calls = []

        async def count_active_jobs(spec):
            calls.append(spec.alias)
            if len(calls) == 1:
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                return 0
            raise OrchestrationQueryError("unavailable")

        mock_executor.count_active_jobs.side_effect = count_active_jobs

        fresh, degraded = await asyncio.gather(
            admission.check_capacity("queue"), admission.check_capacity("queue")
        )

        assert fresh.state == AdmissionState.FRESH
        assert degraded.state == AdmissionState.OLD
        assert degraded.active == 0
        assert admission.fallback_state("queue").estimated_active == 1


class TestAdmissionAcrossReload:
    """Tests that fallback state survives configuration reloads."""

    async def test_fallback_persists_across_reload(self, mock_executor, events, make_spec):
        reconciler = ConfigReconciler(
            config_store=mock_executor,
            events=events,
            config_map_name="configs",
            config_namespace="default",
            default_namespace="default",
        )
        admission = AdmissionController(mock_executor, reconciler.get_specs)

        await reconciler.apply({"queue": make_spec("queue", parallelism=2)})
        mock_executor.count_active_jobs.return_value = 2
        assert (await admission.check_capacity("queue")).busy is False

        await reconciler.apply(
            {
                "queue": make_spec("queue", parallelism=2, imageVersion="2"),
                "other": make_spec("other", parallelism=2),
            }
        )
        mock_executor.count_active_jobs.side_effect = OrchestrationQueryError("unavailable")

        state = await admission.check_capacity("queue")
        assert state.state == AdmissionState.OLD
        assert state.active == 2
        assert state.busy is True

        other = await admission.check_capacity("other")
        assert other.active == 0
        assert other.busy is False
