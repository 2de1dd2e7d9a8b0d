"""
Mock telephony adapter for testing and local runs.

Records every action instead of calling the provider. Failures can be queued
per action to exercise retry and fallback paths.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from broadcaster.telephony.interface import (
    CallCreationRequest,
    CallLeg,
    GatherOptions,
    SmsResult,
    TelephonyClient,
    TelephonyProviderError,
    VoiceOptions,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedAction:
    """One action issued against the mock provider."""

    action: str
    call_control_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)


class MockTelephonyAdapter(TelephonyClient):
    """In-memory telephony client."""

    def __init__(self) -> None:
        self._actions: list[RecordedAction] = []
        self._create_requests: list[CallCreationRequest] = []
        self._failures: dict[str, deque[TelephonyProviderError]] = defaultdict(deque)
        self._next_call_id: int = 1
        self._next_message_id: int = 1
        self._legs_per_call: int = 1

    def reset(self) -> None:
        self._actions.clear()
        self._create_requests.clear()
        self._failures.clear()
        self._next_call_id = 1
        self._next_message_id = 1
        self._legs_per_call = 1

    def queue_failure(self, action: str, *errors: TelephonyProviderError) -> None:
        """Make the next calls of ``action`` raise ``errors`` in order."""
        self._failures[action].extend(errors)

    def configure_legs_per_call(self, legs: int) -> None:
        """Number of legs returned by create_call (provider cardinality quirks)."""
        self._legs_per_call = legs

    @property
    def actions(self) -> list[RecordedAction]:
        return self._actions.copy()

    @property
    def create_requests(self) -> list[CallCreationRequest]:
        return self._create_requests.copy()

    def actions_of(self, action: str, call_control_id: str | None = None) -> list[RecordedAction]:
        return [
            a
            for a in self._actions
            if a.action == action and (call_control_id is None or a.call_control_id == call_control_id)
        ]

    def _record(self, action: str, call_control_id: str | None, **payload: Any) -> None:
        pending = self._failures.get(action)
        if pending:
            raise pending.popleft()
        self._actions.append(RecordedAction(action, call_control_id, payload))

    async def create_call(self, request: CallCreationRequest) -> list[CallLeg]:
        logger.info("Mock: creating call", extra={"to": request.to})
        self._record("create_call", None, to=request.to, from_number=request.from_number)
        self._create_requests.append(request)

        legs = []
        for _ in range(self._legs_per_call):
            call_id = f"MOCK_CALL_{self._next_call_id:06d}"
            self._next_call_id += 1
            legs.append(
                CallLeg(
                    call_control_id=call_id,
                    call_leg_id=f"{call_id}_leg",
                    call_session_id=f"{call_id}_session",
                    raw_response={"mock": True, "to": request.to},
                )
            )
        return legs

    async def speak(
        self,
        call_control_id: str,
        text: str,
        voice: VoiceOptions | None = None,
    ) -> None:
        self._record("speak", call_control_id, text=text)

    async def gather_digits(
        self,
        call_control_id: str,
        options: GatherOptions | None = None,
    ) -> None:
        self._record("gather", call_control_id)

    async def gather_using_speak(
        self,
        call_control_id: str,
        text: str,
        options: GatherOptions | None = None,
        voice: VoiceOptions | None = None,
    ) -> None:
        self._record("gather_using_speak", call_control_id, text=text)

    async def transfer(self, call_control_id: str, to: str, from_number: str | None = None) -> None:
        self._record("transfer", call_control_id, to=to, from_number=from_number)

    async def hangup(self, call_control_id: str) -> None:
        self._record("hangup", call_control_id)

    async def send_sms(self, to: str, from_number: str, text: str) -> SmsResult:
        self._record("send_sms", None, to=to, from_number=from_number, text=text)
        message_id = f"MOCK_MSG_{self._next_message_id:06d}"
        self._next_message_id += 1
        return SmsResult(message_id=message_id, raw_response={"mock": True})
