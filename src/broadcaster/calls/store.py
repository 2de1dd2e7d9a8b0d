"""
Call record store interface.

The store is the only shared mutable resource of the orchestrator. Status
updates are upserts: a webhook may arrive before the dispatcher persisted the
initial record.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from broadcaster.calls.records import BroadcastSession, CallCounts, CallRecord, CallStatus

IMMUTABLE_CALL_FIELDS = frozenset({"call_id", "created_at"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def keep_webhook_progress(existing_status: str | None, fields: dict[str, Any]) -> dict[str, Any]:
    """Fields for the dispatcher's first write of a record that may already exist.

    A webhook can create the record before the dispatcher saves it. Its
    status (past ``pending``) and flags survive; identity fields are set.
    """
    if existing_status and existing_status != CallStatus.PENDING.value:
        return {k: v for k, v in fields.items() if k != "status"}
    return fields


def clean_fields(fields: dict[str, Any] | None) -> dict[str, Any]:
    """Drop None values and unwrap enums so documents stay JSON friendly."""
    cleaned: dict[str, Any] = {}
    for key, value in (fields or {}).items():
        if value is None or key in IMMUTABLE_CALL_FIELDS:
            continue
        cleaned[key] = value.value if isinstance(value, Enum) else value
    return cleaned


class CallRecordStore(Protocol):
    """Protocol for call record persistence."""

    async def store_call_data(self, call_id: str, fields: dict[str, Any]) -> bool:
        """Create a call record, merging into one a webhook created first."""
        ...

    async def update_call_status(
        self,
        call_id: str,
        status: CallStatus | str,
        extra: dict[str, Any] | None = None,
    ) -> bool:
        """Upsert-merge the status and extra fields of a call record."""
        ...

    async def update_call_fields(self, call_id: str, fields: dict[str, Any]) -> bool:
        """Upsert-merge fields without touching the status."""
        ...

    async def get_call_data(self, call_id: str) -> CallRecord | None:
        """Get a call record by identifier."""
        ...

    async def store_broadcast_session(self, broadcast_id: str, fields: dict[str, Any]) -> bool:
        """Create or overwrite a broadcast session."""
        ...

    async def update_broadcast_session(self, broadcast_id: str, fields: dict[str, Any]) -> bool:
        """Merge fields into a broadcast session."""
        ...

    async def get_broadcast_session(self, broadcast_id: str) -> BroadcastSession | None:
        """Get a broadcast session by identifier."""
        ...

    async def get_call_counts(self, broadcast_id: str | None = None) -> CallCounts:
        """Count calls by status, optionally for one broadcast."""
        ...

    async def get_active_calls(self) -> list[CallRecord]:
        """Calls with status pending or ringing."""
        ...

    async def get_broadcast_calls(self, broadcast_id: str) -> list[CallRecord]:
        """All calls of a broadcast."""
        ...

    async def cancel_broadcast_calls(self, broadcast_id: str) -> int:
        """Mark every non-terminal call of a broadcast canceled; return the count."""
        ...
