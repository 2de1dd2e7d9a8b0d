"""
Tests for the batch dispatcher.
"""

import asyncio

import pytest

from broadcaster.calls.config import DispatcherConfig
from broadcaster.calls.dispatcher import (
    BatchDispatcher,
    Contact,
    prepare_targets,
    recommendations_for,
)
from broadcaster.calls.records import BroadcastStatus, CallStatus
from broadcaster.shared.exceptions import StorageError, ValidationError
from broadcaster.telephony.interface import (
    CallCreationRequest,
    CallLeg,
    ChannelLimitError,
    TelephonyProviderError,
)
from broadcaster.telephony.mock_adapter import MockTelephonyAdapter
from conftest import RecordingSleep


class CountingAdapter(MockTelephonyAdapter):
    """Mock provider that also counts failed create attempts."""

    def __init__(self) -> None:
        super().__init__()
        self.create_attempts: list[str] = []

    async def create_call(self, request: CallCreationRequest) -> list[CallLeg]:
        self.create_attempts.append(request.to)
        return await super().create_call(request)


class LegCountAdapter(MockTelephonyAdapter):
    """Returns a fixed number of legs per destination."""

    def __init__(self, legs_by_number: dict[str, int]) -> None:
        super().__init__()
        self._legs_by_number = legs_by_number

    async def create_call(self, request: CallCreationRequest) -> list[CallLeg]:
        self.configure_legs_per_call(self._legs_by_number.get(request.to, 1))
        return await super().create_call(request)


def capacity_error() -> ChannelLimitError:
    return ChannelLimitError("Channel limit exceeded", status_code=403)


@pytest.fixture
def counting() -> CountingAdapter:
    return CountingAdapter()


@pytest.fixture
def counting_dispatcher(store, counting, telephony_config, dispatch_sleep, clock) -> BatchDispatcher:
    return BatchDispatcher(
        store=store,
        client=counting,
        telephony_config=telephony_config,
        sleep=dispatch_sleep,
        clock=clock,
        broadcast_id_factory=lambda: "broadcast_test",
    )


class TestPrepareTargets:
    def test_blank_numbers_are_dropped_and_positions_kept(self) -> None:
        targets = prepare_targets(
            [" +15550001 ", "", "+15550003"],
            [Contact("c-a", "Ann"), Contact("c-b", "Bob"), Contact("c-c", "Cy")],
            ["first", "second", "third"],
        )

        assert [t.phone_number for t in targets] == ["+15550001", "+15550003"]
        assert [t.contact_id for t in targets] == ["c-a", "c-c"]
        assert [t.script for t in targets] == ["first", "third"]

    def test_defaults_for_missing_contacts_and_scripts(self) -> None:
        targets = prepare_targets(["+15550001", "+15550002"], [], ["only script"])

        assert targets[1].contact_id == "contact_1"
        assert targets[1].contact_name == "Contact 2"
        assert targets[1].script == "only script"

    def test_no_valid_numbers(self) -> None:
        with pytest.raises(ValidationError):
            prepare_targets(["", "  "], [], ["hi"])

    def test_no_script(self) -> None:
        with pytest.raises(ValidationError):
            prepare_targets(["+15550001"], [], ["", " "])


class TestDispatch:
    @pytest.mark.asyncio
    async def test_one_record_per_destination(self, dispatcher, store, telephony) -> None:
        result = await dispatcher.dispatch(
            ["+15550001", "+15550002", "+15550003"],
            [Contact("c-1", "Ann")],
            ["Storm warning tonight."],
        )

        assert result.broadcast_id == "broadcast_test"
        assert result.call_ids == ["MOCK_CALL_000001", "MOCK_CALL_000002", "MOCK_CALL_000003"]
        assert result.successful_calls == 3
        assert result.failed_calls == 0
        assert result.recommendations == []

        record = await store.get_call_data("MOCK_CALL_000001")
        assert record.status == CallStatus.PENDING
        assert record.broadcast_id == "broadcast_test"
        assert record.contact_name == "Ann"
        assert record.script == "Storm warning tonight."
        assert record.call_leg_id == "MOCK_CALL_000001_leg"

        session = await store.get_broadcast_session("broadcast_test")
        assert session.total_calls == 3
        assert session.status == BroadcastStatus.ACTIVE

        request = telephony.create_requests[0]
        assert request.from_number == "+18005550100"
        assert request.webhook_url == "https://hooks.example.com/call-control/webhook"

    @pytest.mark.asyncio
    async def test_capacity_error_retries_exactly_once(
        self, counting_dispatcher, counting, store, dispatch_sleep
    ) -> None:
        counting.queue_failure("create_call", capacity_error())

        result = await counting_dispatcher.dispatch(["+15550001"], scripts=["hi"])

        assert counting.create_attempts == ["+15550001", "+15550001"]
        assert result.channel_limit_hits == 1
        assert dispatch_sleep.delays == [40.0]
        assert result.call_ids == ["MOCK_CALL_000001"]
        assert result.successful_calls == 1
        assert result.recommendations == [
            "Channel capacity reached, system is automatically adjusting delays"
        ]

    @pytest.mark.asyncio
    async def test_capacity_error_twice_stores_synthetic(
        self, counting_dispatcher, counting, store
    ) -> None:
        counting.queue_failure("create_call", capacity_error(), capacity_error())

        result = await counting_dispatcher.dispatch(["+15550001"], scripts=["hi"])

        assert len(counting.create_attempts) == 2
        assert len(result.call_ids) == 1
        outcome = result.outcomes[0]
        assert outcome.is_synthetic is True
        assert outcome.error.startswith("Retry failed:")

        record = await store.get_call_data(result.call_ids[0])
        assert record.is_synthetic is True
        assert record.status == CallStatus.PENDING
        assert record.phone_number == "+15550001"
        assert record.error.startswith("Retry failed:")

    @pytest.mark.asyncio
    async def test_unexpected_error_on_retry_stores_synthetic(self, store, telephony_config) -> None:
        class FlakyAdapter(CountingAdapter):
            async def create_call(self, request: CallCreationRequest) -> list[CallLeg]:
                self.create_attempts.append(request.to)
                attempts = self.create_attempts.count(request.to)
                if request.to == "+15550001" and attempts == 1:
                    raise capacity_error()
                if request.to == "+15550001":
                    raise RuntimeError("connection pool closed")
                return await MockTelephonyAdapter.create_call(self, request)

        adapter = FlakyAdapter()
        dispatcher = BatchDispatcher(store, adapter, telephony_config, sleep=RecordingSleep())

        result = await dispatcher.dispatch(["+15550001", "+15550002", "+15550003"], scripts=["hi"])

        assert adapter.create_attempts.count("+15550001") == 2
        assert len(result.call_ids) == 3
        outcome = result.outcomes[0]
        assert outcome.is_synthetic is True
        assert outcome.error == "Retry failed: connection pool closed"
        assert result.successful_calls == 2
        assert result.failed_calls == 1
        assert [o.is_synthetic for o in result.outcomes[1:]] == [False, False]
        assert (await store.get_call_data(result.call_ids[0])).error == "Retry failed: connection pool closed"

    @pytest.mark.asyncio
    async def test_generic_error_is_not_retried(self, counting_dispatcher, counting, dispatch_sleep) -> None:
        counting.queue_failure("create_call", TelephonyProviderError("Invalid destination", status_code=400))

        result = await counting_dispatcher.dispatch(["+15550001", "+15550002"], scripts=["hi"])

        assert len(counting.create_attempts) == 2
        assert dispatch_sleep.delays == []
        assert result.failed_calls == 1
        assert result.successful_calls == 1
        assert result.channel_limit_hits == 0
        assert result.reported_errors == [{"phone": "+15550001", "error": "Invalid destination"}]

    @pytest.mark.asyncio
    async def test_backoff_grows_with_hits_and_is_capped(self, store, telephony_config) -> None:
        adapter = CountingAdapter()
        adapter.queue_failure("create_call", *[capacity_error() for _ in range(3)])
        sleep = RecordingSleep()
        dispatcher = BatchDispatcher(
            store,
            adapter,
            telephony_config,
            DispatcherConfig(max_concurrent_calls=1, channel_limit_max_delay_seconds=55.0),
            sleep=sleep,
        )

        result = await dispatcher.dispatch(["+15550001", "+15550002"], scripts=["hi"])

        assert result.channel_limit_hits == 2
        assert sleep.delays == [40.0, 50.0]
        assert len(result.call_ids) == 2
        assert len(result.recommendations) == 5

    @pytest.mark.asyncio
    async def test_output_aligned_when_provider_returns_odd_leg_counts(self, store, telephony_config) -> None:
        adapter = LegCountAdapter({"+15550001": 0, "+15550002": 3})
        dispatcher = BatchDispatcher(store, adapter, telephony_config, sleep=RecordingSleep())

        result = await dispatcher.dispatch(["+15550001", "+15550002", "+15550003"], scripts=["hi"])

        assert len(result.call_ids) == 3
        assert result.outcomes[0].is_synthetic is True
        assert result.outcomes[0].error == "Provider returned no call legs"
        assert result.outcomes[1].call_id == "MOCK_CALL_000001"
        assert result.outcomes[2].call_id == "MOCK_CALL_000004"
        assert await store.get_call_data("MOCK_CALL_000002") is None

    @pytest.mark.asyncio
    async def test_concurrency_window_is_respected(self, store, telephony_config) -> None:
        in_flight = 0
        peak = 0

        class SlowAdapter(MockTelephonyAdapter):
            async def create_call(self, request: CallCreationRequest) -> list[CallLeg]:
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0)
                in_flight -= 1
                return await super().create_call(request)

        dispatcher = BatchDispatcher(
            store,
            SlowAdapter(),
            telephony_config,
            DispatcherConfig(max_concurrent_calls=3),
        )

        result = await dispatcher.dispatch([f"+1555000{i:02d}" for i in range(10)], scripts=["hi"])

        assert len(result.call_ids) == 10
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_abort_dispatch(self, telephony, telephony_config) -> None:
        class BrokenStore:
            async def store_broadcast_session(self, broadcast_id, fields):
                raise StorageError(message="database down")

            async def store_call_data(self, call_id, fields):
                raise StorageError(message="database down")

        dispatcher = BatchDispatcher(BrokenStore(), telephony, telephony_config)

        result = await dispatcher.dispatch(["+15550001"], scripts=["hi"])

        assert result.call_ids == ["MOCK_CALL_000001"]

    @pytest.mark.asyncio
    async def test_empty_input_raises_validation_error(self, dispatcher) -> None:
        with pytest.raises(ValidationError):
            await dispatcher.dispatch([" "], scripts=["hi"])


class TestRecommendations:
    def test_levels(self) -> None:
        assert recommendations_for(0) == []
        assert len(recommendations_for(1)) == 1
        assert "current: 4 concurrent calls" in recommendations_for(3, window=4)[2]
