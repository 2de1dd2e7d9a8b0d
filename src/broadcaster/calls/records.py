"""
Call record and broadcast session domain models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CallStatus(str, Enum):
    """Lifecycle status of a broadcast call."""

    PENDING = "pending"
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    IN_PROGRESS = "in-progress"
    VOICEMAIL = "voicemail"
    COMPLETED = "completed"
    NO_ANSWER = "no-answer"
    BUSY = "busy"
    CANCELED = "canceled"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[CallStatus] = frozenset(
    {
        CallStatus.COMPLETED,
        CallStatus.NO_ANSWER,
        CallStatus.BUSY,
        CallStatus.CANCELED,
        CallStatus.REJECTED,
        CallStatus.FAILED,
    }
)

# Reported as "active" by the channel status endpoint.
ACTIVE_STATUSES: frozenset[CallStatus] = frozenset({CallStatus.PENDING, CallStatus.RINGING})

COMPLETED_AGGREGATE = (
    CallStatus.COMPLETED,
    CallStatus.ANSWERED,
    CallStatus.VOICEMAIL,
    CallStatus.IN_PROGRESS,
)
FAILED_AGGREGATE = (
    CallStatus.FAILED,
    CallStatus.NO_ANSWER,
    CallStatus.BUSY,
    CallStatus.CANCELED,
    CallStatus.REJECTED,
)
PENDING_AGGREGATE = (CallStatus.PENDING, CallStatus.INITIATED, CallStatus.RINGING)


def is_terminal(status: CallStatus | str | None) -> bool:
    if status is None:
        return False
    try:
        return CallStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False


class BroadcastStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    COMPLETED = "completed"


class CallRecord(BaseModel):
    """One outbound call attempt (or a synthetic placeholder)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=False,
    )

    call_id: str
    broadcast_id: str | None = None
    contact_id: str | None = None
    contact_name: str | None = None
    phone_number: str | None = None
    script: str | None = None
    status: CallStatus = CallStatus.PENDING

    script_played: bool = False
    amd_result: str | None = None
    consent_given: bool = False
    gather_attempts: int = 0
    gather_closed: bool = False
    hangup_scheduled: bool = False

    sms_attempted: bool = False
    sms_sent: bool = False
    sms_message_id: str | None = None
    sms_error: str | None = None

    hangup_cause: str | None = None
    duration: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    answered_at: datetime | None = None
    end_time: datetime | None = None

    is_synthetic: bool = False
    call_leg_id: str | None = None
    call_session_id: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BroadcastSession(BaseModel):
    """One batch dispatch invocation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    broadcast_id: str
    total_calls: int = 0
    status: BroadcastStatus = BroadcastStatus.ACTIVE
    start_time: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CallCounts(BaseModel):
    """Call counts by status plus aggregates."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)

    @property
    def total_completed(self) -> int:
        return sum(self.by_status.get(s.value, 0) for s in COMPLETED_AGGREGATE)

    @property
    def total_failed(self) -> int:
        return sum(self.by_status.get(s.value, 0) for s in FAILED_AGGREGATE)

    @property
    def total_pending(self) -> int:
        return sum(self.by_status.get(s.value, 0) for s in PENDING_AGGREGATE)

    @classmethod
    def from_statuses(cls, statuses: list[str | None]) -> "CallCounts":
        by_status = {s.value: 0 for s in CallStatus}
        for status in statuses:
            key = status or CallStatus.PENDING.value
            if key in by_status:
                by_status[key] += 1
        return cls(total=len(statuses), by_status=by_status)

    def as_dict(self) -> dict[str, int]:
        """Flat payload: one key per status plus camelCase aggregates."""
        data: dict[str, int] = {"total": self.total, **self.by_status}
        data["totalCompleted"] = self.total_completed
        data["totalFailed"] = self.total_failed
        data["totalPending"] = self.total_pending
        return data
