"""
In-process call record store.

Used by tests and by local runs with STORE_BACKEND=memory. State is lost on
restart.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from broadcaster.calls.records import (
    ACTIVE_STATUSES,
    BroadcastSession,
    CallCounts,
    CallRecord,
    CallStatus,
    is_terminal,
)
from broadcaster.calls.store import clean_fields, keep_webhook_progress, utcnow
from broadcaster.shared.logging import get_logger

logger = get_logger(__name__)


class InMemoryCallStore:
    """Dictionary-backed implementation of ``CallRecordStore``."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._calls: dict[str, dict[str, Any]] = {}
        self._broadcasts: dict[str, dict[str, Any]] = {}
        self._clock = clock

    def _merge_call(self, call_id: str, fields: dict[str, Any]) -> None:
        now = self._clock()
        existing = self._calls.get(call_id)
        if existing is None:
            self._calls[call_id] = {**fields, "call_id": call_id, "created_at": now, "updated_at": now}
            logger.debug("Created call entry", extra={"call_id": call_id})
        else:
            existing.update(fields)
            existing["updated_at"] = now

    async def store_call_data(self, call_id: str, fields: dict[str, Any]) -> bool:
        existing = self._calls.get(call_id)
        cleaned = clean_fields(fields)
        if existing is not None:
            cleaned = keep_webhook_progress(existing.get("status"), cleaned)
        self._merge_call(call_id, cleaned)
        logger.debug("Stored call data", extra={"call_id": call_id})
        return True

    async def update_call_status(
        self,
        call_id: str,
        status: CallStatus | str,
        extra: dict[str, Any] | None = None,
    ) -> bool:
        fields = clean_fields(extra)
        fields["status"] = CallStatus(status).value
        self._merge_call(call_id, fields)
        logger.debug("Updated call status", extra={"call_id": call_id, "status": fields["status"]})
        return True

    async def update_call_fields(self, call_id: str, fields: dict[str, Any]) -> bool:
        self._merge_call(call_id, clean_fields(fields))
        return True

    async def get_call_data(self, call_id: str) -> CallRecord | None:
        data = self._calls.get(call_id)
        return CallRecord.model_validate(data) if data is not None else None

    async def store_broadcast_session(self, broadcast_id: str, fields: dict[str, Any]) -> bool:
        now = self._clock()
        self._broadcasts[broadcast_id] = {
            **clean_fields(fields),
            "broadcast_id": broadcast_id,
            "created_at": now,
            "updated_at": now,
        }
        return True

    async def update_broadcast_session(self, broadcast_id: str, fields: dict[str, Any]) -> bool:
        session = self._broadcasts.setdefault(
            broadcast_id,
            {"broadcast_id": broadcast_id, "created_at": self._clock()},
        )
        session.update(clean_fields(fields))
        session["updated_at"] = self._clock()
        return True

    async def get_broadcast_session(self, broadcast_id: str) -> BroadcastSession | None:
        data = self._broadcasts.get(broadcast_id)
        return BroadcastSession.model_validate(data) if data is not None else None

    async def get_call_counts(self, broadcast_id: str | None = None) -> CallCounts:
        statuses = [
            data.get("status")
            for data in self._calls.values()
            if broadcast_id is None or data.get("broadcast_id") == broadcast_id
        ]
        return CallCounts.from_statuses(statuses)

    async def get_active_calls(self) -> list[CallRecord]:
        active = {s.value for s in ACTIVE_STATUSES}
        return [
            CallRecord.model_validate(data)
            for data in self._calls.values()
            if data.get("status", CallStatus.PENDING.value) in active
        ]

    async def get_broadcast_calls(self, broadcast_id: str) -> list[CallRecord]:
        return [
            CallRecord.model_validate(data)
            for data in self._calls.values()
            if data.get("broadcast_id") == broadcast_id
        ]

    async def cancel_broadcast_calls(self, broadcast_id: str) -> int:
        count = 0
        now = self._clock()
        for data in self._calls.values():
            if data.get("broadcast_id") != broadcast_id or is_terminal(data.get("status")):
                continue
            data["status"] = CallStatus.CANCELED.value
            data["updated_at"] = now
            count += 1
        logger.info(
            "Canceled broadcast calls",
            extra={"broadcast_id": broadcast_id, "count": count},
        )
        return count

