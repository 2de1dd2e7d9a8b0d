"""
Tests for the in-memory call record store.
"""

import pytest

from broadcaster.calls.memory_store import InMemoryCallStore
from broadcaster.calls.records import CallCounts, CallStatus


class TestCallRecords:
    @pytest.mark.asyncio
    async def test_store_and_get(self, store: InMemoryCallStore, clock) -> None:
        await store.store_call_data(
            "call-1",
            {"phone_number": "+15550001", "script": "hi", "status": CallStatus.PENDING, "contact_name": None},
        )

        record = await store.get_call_data("call-1")

        assert record.call_id == "call-1"
        assert record.status == CallStatus.PENDING
        assert record.contact_name is None
        assert record.created_at == clock.now

    @pytest.mark.asyncio
    async def test_update_status_upserts_unknown_call(self, store: InMemoryCallStore) -> None:
        await store.update_call_status("late-arrival", "ringing")

        record = await store.get_call_data("late-arrival")
        assert record.status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_update_merges_and_keeps_created_at(self, store: InMemoryCallStore, clock) -> None:
        await store.store_call_data("call-1", {"script": "hi", "status": "pending"})
        created = clock.now
        clock.advance(10)

        await store.update_call_status("call-1", CallStatus.ANSWERED, {"amd_result": "human", "created_at": clock.now})
        await store.update_call_fields("call-1", {"script_played": True})

        record = await store.get_call_data("call-1")
        assert record.status == CallStatus.ANSWERED
        assert record.amd_result == "human"
        assert record.script == "hi"
        assert record.script_played is True
        assert record.created_at == created
        assert record.updated_at == clock.now

    @pytest.mark.asyncio
    async def test_store_after_webhook_keeps_progress(self, store: InMemoryCallStore) -> None:
        await store.update_call_status("call-1", "ringing", {"direction": "outgoing", "script_played": True})

        await store.store_call_data(
            "call-1",
            {"broadcast_id": "b1", "phone_number": "+15550001", "script": "hi", "status": "pending"},
        )

        record = await store.get_call_data("call-1")
        assert record.status == CallStatus.RINGING
        assert record.script_played is True
        assert record.script == "hi"
        assert record.broadcast_id == "b1"

    @pytest.mark.asyncio
    async def test_invalid_status_is_rejected(self, store: InMemoryCallStore) -> None:
        with pytest.raises(ValueError):
            await store.update_call_status("call-1", "exploded")

    @pytest.mark.asyncio
    async def test_missing_call(self, store: InMemoryCallStore) -> None:
        assert await store.get_call_data("nope") is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_counts_and_active(self, store: InMemoryCallStore) -> None:
        for call_id, status, broadcast in [
            ("a", "pending", "b1"),
            ("b", "ringing", "b1"),
            ("c", "completed", "b1"),
            ("d", "failed", "b2"),
        ]:
            await store.store_call_data(call_id, {"status": status, "broadcast_id": broadcast})

        counts = await store.get_call_counts("b1")
        assert counts.total == 3
        assert counts.by_status["completed"] == 1
        assert counts.total_pending == 2

        all_counts = await store.get_call_counts()
        assert all_counts.total == 4
        assert all_counts.total_failed == 1

        assert sorted(r.call_id for r in await store.get_active_calls()) == ["a", "b"]
        assert sorted(r.call_id for r in await store.get_broadcast_calls("b1")) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_cancel_broadcast_skips_terminal(self, store: InMemoryCallStore) -> None:
        await store.store_call_data("a", {"status": "pending", "broadcast_id": "b1"})
        await store.store_call_data("b", {"status": "busy", "broadcast_id": "b1"})

        assert await store.cancel_broadcast_calls("b1") == 1
        assert (await store.get_call_data("b")).status == CallStatus.BUSY


class TestBroadcastSessions:
    @pytest.mark.asyncio
    async def test_store_update_get(self, store: InMemoryCallStore, clock) -> None:
        await store.store_broadcast_session("b1", {"total_calls": 3, "status": "active", "start_time": clock.now})
        await store.update_broadcast_session("b1", {"status": "canceled"})

        session = await store.get_broadcast_session("b1")
        assert session.total_calls == 3
        assert session.status.value == "canceled"
        assert session.start_time == clock.now


def test_counts_aggregates() -> None:
    counts = CallCounts.from_statuses(
        ["completed", "answered", "voicemail", "in-progress", "busy", "rejected", "initiated", None, "bogus"]
    )

    data = counts.as_dict()
    assert data["total"] == 9
    assert data["totalCompleted"] == 4
    assert data["totalFailed"] == 2
    assert data["totalPending"] == 2
    assert data["pending"] == 1
