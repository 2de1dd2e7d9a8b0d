"""
Tests for broadcast cancellation and status queries.
"""

import pytest

from broadcaster.calls.records import BroadcastStatus, CallStatus
from broadcaster.calls.service import BroadcastService, ChannelStatus
from broadcaster.shared.exceptions import NotFoundError
from broadcaster.telephony.interface import CallNotFoundError, TelephonyProviderError
from conftest import seed_call


@pytest.fixture
def service(store, telephony) -> BroadcastService:
    return BroadcastService(store, telephony, channel_limit=10)


class TestCancelBroadcast:
    @pytest.mark.asyncio
    async def test_cancel_leaves_terminal_records_untouched(self, service, store, telephony) -> None:
        await store.store_broadcast_session("broadcast_test", {"total_calls": 4, "status": "active"})
        await seed_call(store, "c-pending")
        await seed_call(store, "c-ringing", status="ringing")
        await seed_call(store, "c-done", status="completed")
        await seed_call(store, "c-busy", status="busy")
        await seed_call(store, "c-other", broadcast_id="broadcast_other")

        count = await service.cancel_calls("broadcast_test")

        assert count == 2
        assert (await store.get_call_data("c-pending")).status == CallStatus.CANCELED
        assert (await store.get_call_data("c-ringing")).status == CallStatus.CANCELED
        assert (await store.get_call_data("c-done")).status == CallStatus.COMPLETED
        assert (await store.get_call_data("c-busy")).status == CallStatus.BUSY
        assert (await store.get_call_data("c-other")).status == CallStatus.PENDING
        assert sorted(a.call_control_id for a in telephony.actions_of("hangup")) == ["c-pending", "c-ringing"]
        session = await store.get_broadcast_session("broadcast_test")
        assert session.status == BroadcastStatus.CANCELED

    @pytest.mark.asyncio
    async def test_synthetic_records_are_not_hung_up(self, service, store, telephony) -> None:
        await seed_call(store, "synthetic_1", is_synthetic=True)

        count = await service.cancel_calls("broadcast_test")

        assert count == 1
        assert telephony.actions_of("hangup") == []

    @pytest.mark.asyncio
    async def test_hangup_failures_do_not_block_cancellation(self, service, store, telephony) -> None:
        await seed_call(store, "c-1")
        await seed_call(store, "c-2")
        telephony.queue_failure(
            "hangup",
            CallNotFoundError("Call not found", status_code=404),
            TelephonyProviderError("Upstream timeout", status_code=504),
        )

        count = await service.cancel_calls("broadcast_test")

        assert count == 2
        assert (await store.get_call_data("c-2")).status == CallStatus.CANCELED

    @pytest.mark.asyncio
    async def test_cancel_without_broadcast_targets_active_calls(self, service, store) -> None:
        await seed_call(store, "c-1", broadcast_id=None)
        await seed_call(store, "c-2", status="ringing", broadcast_id="b-2")
        await seed_call(store, "c-3", status="answered")

        count = await service.cancel_calls()

        assert count == 2
        assert (await store.get_call_data("c-3")).status == CallStatus.ANSWERED


class TestQueries:
    @pytest.mark.asyncio
    async def test_call_status_not_found(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.get_call_status("missing")

    @pytest.mark.asyncio
    async def test_counts(self, service, store) -> None:
        await seed_call(store, "a", status="completed")
        await seed_call(store, "b", status="voicemail")
        await seed_call(store, "c", status="no-answer")
        await seed_call(store, "d", status="ringing")

        counts = (await service.get_call_counts("broadcast_test")).as_dict()

        assert counts["total"] == 4
        assert counts["totalCompleted"] == 2
        assert counts["totalFailed"] == 1
        assert counts["totalPending"] == 1

    @pytest.mark.asyncio
    async def test_channel_status(self, service, store) -> None:
        for i in range(5):
            await seed_call(store, f"p-{i}")
        await seed_call(store, "r-1", status="ringing")

        channel = await service.get_channel_status()

        assert channel.pending_calls == 5
        assert channel.ringing_calls == 1
        assert channel.utilization == 60
        assert channel.level == "medium"
        assert channel.recommendations == []


class TestChannelStatus:
    @pytest.mark.parametrize(
        ("active", "level"),
        [(0, "low"), (4, "low"), (5, "medium"), (7, "medium"), (8, "high"), (12, "high")],
    )
    def test_levels(self, active, level) -> None:
        assert ChannelStatus(pending_calls=active, ringing_calls=0, limit=10).level == level

    def test_high_utilization_recommendations(self) -> None:
        status = ChannelStatus(pending_calls=6, ringing_calls=3, limit=10)
        assert status.utilization == 90
        assert status.recommendations[0] == "High channel utilization detected"
