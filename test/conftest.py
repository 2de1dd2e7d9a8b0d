"""
Shared fixtures: in-memory store, mock provider, controllable clock and sleep.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from broadcaster.calls.config import CallFlowConfig, DispatcherConfig
from broadcaster.calls.dispatcher import BatchDispatcher
from broadcaster.calls.memory_store import InMemoryCallStore
from broadcaster.calls.state_machine import CallStateMachine
from broadcaster.calls.store import CallRecordStore
from broadcaster.calls.timers import DelayedActionScheduler
from broadcaster.telephony.config import ProviderType, TelephonyConfig
from broadcaster.telephony.events import CallEvent, CallEventType
from broadcaster.telephony.mock_adapter import MockTelephonyAdapter

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep replacement that returns at once and records the delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_event(
    event_type: CallEventType,
    call_id: str = "call-1",
    **fields: Any,
) -> CallEvent:
    return CallEvent(
        event_type=event_type,
        raw_event_type=event_type.value,
        call_control_id=call_id,
        occurred_at=fields.pop("occurred_at", T0),
        **fields,
    )


def telnyx_body(event_type: str, call_id: str | None = "call-1", **payload: Any) -> dict[str, Any]:
    """Build a Telnyx webhook envelope."""
    if call_id is not None:
        payload["call_control_id"] = call_id
    return {
        "data": {
            "event_type": event_type,
            "occurred_at": "2024-05-01T12:00:00.000000Z",
            "payload": payload,
        }
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCallStore:
    return InMemoryCallStore(clock=clock)


@pytest.fixture
def telephony() -> MockTelephonyAdapter:
    return MockTelephonyAdapter()


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type=ProviderType.MOCK,
        telnyx_api_key="KEY_TEST",
        telnyx_connection_id="conn-1",
        telnyx_from_number="+18005550100",
        webhook_base_url="https://hooks.example.com",
    )


@pytest.fixture
def flow_config() -> CallFlowConfig:
    return CallFlowConfig(
        operator_number="+18005550199",
        sms_from_number="+18005550100",
    )


@pytest.fixture
def timer_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def flow_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def scheduler(timer_sleep: RecordingSleep) -> DelayedActionScheduler:
    return DelayedActionScheduler(sleep=timer_sleep)


@pytest.fixture
def machine(
    store: InMemoryCallStore,
    telephony: MockTelephonyAdapter,
    flow_config: CallFlowConfig,
    scheduler: DelayedActionScheduler,
    clock: FakeClock,
    flow_sleep: RecordingSleep,
) -> CallStateMachine:
    return CallStateMachine(
        store=store,
        client=telephony,
        config=flow_config,
        scheduler=scheduler,
        clock=clock,
        sleep=flow_sleep,
    )


@pytest.fixture
def dispatch_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def dispatcher(
    store: InMemoryCallStore,
    telephony: MockTelephonyAdapter,
    telephony_config: TelephonyConfig,
    dispatch_sleep: RecordingSleep,
    clock: FakeClock,
) -> BatchDispatcher:
    return BatchDispatcher(
        store=store,
        client=telephony,
        telephony_config=telephony_config,
        config=DispatcherConfig(),
        sleep=dispatch_sleep,
        clock=clock,
        broadcast_id_factory=lambda: "broadcast_test",
    )


async def seed_call(
    store: CallRecordStore,
    call_id: str = "call-1",
    *,
    script: str = "Hello from the county office.",
    phone_number: str = "+15551230001",
    broadcast_id: str | None = "broadcast_test",
    **fields: Any,
) -> None:
    await store.store_call_data(
        call_id,
        {
            "broadcast_id": broadcast_id,
            "contact_id": "contact_0",
            "contact_name": "Contact 1",
            "phone_number": phone_number,
            "script": script,
            "status": "pending",
            **fields,
        },
    )
