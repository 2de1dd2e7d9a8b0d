"""
Domain event models for telephony call events.

Telnyx webhook envelopes are normalized into ``CallEvent`` so the state
machine never sees provider-specific field names.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from broadcaster.telephony.interface import WebhookParseError


class CallEventType(str, Enum):
    """Provider-neutral call event types."""

    INITIATED = "call.initiated"
    RINGING = "call.ringing"
    ANSWERED = "call.answered"
    BRIDGED = "call.bridged"
    HANGUP = "call.hangup"
    SPEAK_ENDED = "call.speak.ended"
    GATHER_ENDED = "call.gather.ended"
    MACHINE_DETECTION_ENDED = "call.machine.detection.ended"
    MACHINE_GREETING_ENDED = "call.machine.greeting.ended"
    UNKNOWN = "unknown"


# Telnyx emits premium and standard AMD variants; both map to the same event.
TELNYX_EVENT_MAP: dict[str, CallEventType] = {
    "call.initiated": CallEventType.INITIATED,
    "call.ringing": CallEventType.RINGING,
    "call.answered": CallEventType.ANSWERED,
    "call.bridged": CallEventType.BRIDGED,
    "call.hangup": CallEventType.HANGUP,
    "call.speak.ended": CallEventType.SPEAK_ENDED,
    "call.gather.ended": CallEventType.GATHER_ENDED,
    "call.machine.detection.ended": CallEventType.MACHINE_DETECTION_ENDED,
    "call.machine.premium.detection.ended": CallEventType.MACHINE_DETECTION_ENDED,
    "call.machine.greeting.ended": CallEventType.MACHINE_GREETING_ENDED,
    "call.machine.premium.greeting.ended": CallEventType.MACHINE_GREETING_ENDED,
}

MACHINE_RESULTS = {"machine", "fax_detected"}


class CallEvent(BaseModel):
    """Normalized telephony call event."""

    model_config = ConfigDict(frozen=True)

    event_type: CallEventType = Field(..., description="Type of call event")
    raw_event_type: str = Field(default="", description="Event type as sent by the provider")
    call_control_id: str = Field(..., description="Provider call-control identifier")
    direction: str | None = Field(default=None, description="incoming or outgoing")
    from_number: str | None = None
    to_number: str | None = None
    hangup_cause: str | None = None
    duration_seconds: int | None = None
    amd_result: str | None = Field(default=None, description="human or machine")
    raw_amd_result: str | None = None
    digits: str | None = None
    gather_status: str | None = None
    client_state: str | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_inbound(self) -> bool:
        return (self.direction or "").lower() in {"incoming", "inbound"}


def _parse_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _duration(payload: dict[str, Any]) -> int | None:
    for key in ("call_duration", "duration_secs", "duration"):
        value = payload.get(key)
        if value is not None:
            try:
                return int(float(value))
            except (TypeError, ValueError):
                pass
    start = _parse_datetime(payload.get("start_time"))
    end = _parse_datetime(payload.get("end_time"))
    if start and end and end >= start:
        return int((end - start).total_seconds())
    return None


def normalize_amd_result(result: str | None) -> str | None:
    if not result:
        return None
    return "machine" if result.lower() in MACHINE_RESULTS else "human"


def parse_telnyx_event(body: dict[str, Any]) -> CallEvent:
    """Parse a Telnyx webhook envelope.

    Raises:
        WebhookParseError: the envelope carries no call_control_id.
    """
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        raise WebhookParseError(
            message="Missing data envelope in webhook payload",
            error_code="MISSING_DATA",
            provider_response=body if isinstance(body, dict) else {},
        )

    raw_type = str(data.get("event_type") or "")
    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        payload = {}

    call_control_id = payload.get("call_control_id")
    if not call_control_id:
        raise WebhookParseError(
            message="Missing call_control_id in webhook payload",
            error_code="MISSING_CALL_CONTROL_ID",
            provider_response=body,
        )

    raw_amd = payload.get("result")
    event_type = TELNYX_EVENT_MAP.get(raw_type, CallEventType.UNKNOWN)

    return CallEvent(
        event_type=event_type,
        raw_event_type=raw_type,
        call_control_id=str(call_control_id),
        direction=payload.get("direction"),
        from_number=payload.get("from"),
        to_number=payload.get("to"),
        hangup_cause=payload.get("hangup_cause"),
        duration_seconds=_duration(payload),
        amd_result=normalize_amd_result(raw_amd) if event_type == CallEventType.MACHINE_DETECTION_ENDED else None,
        raw_amd_result=raw_amd if event_type == CallEventType.MACHINE_DETECTION_ENDED else None,
        digits=payload.get("digits"),
        gather_status=payload.get("status"),
        client_state=payload.get("client_state"),
        occurred_at=_parse_datetime(data.get("occurred_at")) or datetime.now(timezone.utc),
        raw_payload=body,
    )
