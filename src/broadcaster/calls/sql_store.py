"""
SQLAlchemy-backed call record document store.

Field merges are read-modify-write on a JSON column. They are serialized per
call id inside the process and take a row lock (``SELECT ... FOR UPDATE``)
on databases that support it, so two writers of the same call never lose
each other's fields.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from broadcaster.calls.locks import KeyedLock
from broadcaster.calls.models import BroadcastDocument, CallDocument
from broadcaster.calls.records import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BroadcastSession,
    CallCounts,
    CallRecord,
    CallStatus,
)
from broadcaster.calls.store import clean_fields, keep_webhook_progress, utcnow
from broadcaster.shared.database import DatabaseManager
from broadcaster.shared.exceptions import StorageError
from broadcaster.shared.logging import get_logger

logger = get_logger(__name__)

_DOCUMENT = TypeAdapter(dict[str, Any])


def to_json_document(fields: dict[str, Any]) -> dict[str, Any]:
    """JSON-column friendly copy (datetimes as ISO strings)."""
    return _DOCUMENT.dump_python(fields, mode="json")


def _to_record(row: CallDocument) -> CallRecord:
    return CallRecord.model_validate(
        {
            **(row.data or {}),
            "call_id": row.call_id,
            "broadcast_id": row.broadcast_id,
            "status": row.status,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
    )


def _to_session(row: BroadcastDocument) -> BroadcastSession:
    return BroadcastSession.model_validate(
        {
            **(row.data or {}),
            "broadcast_id": row.broadcast_id,
            "status": row.status,
            "total_calls": row.total_calls,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
    )


class SqlCallStore:
    """``CallRecordStore`` over two JSON document tables."""

    def __init__(
        self,
        db: DatabaseManager,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._clock = clock
        self._locks = KeyedLock()

    async def _merge_call(
        self,
        session: AsyncSession,
        call_id: str,
        fields: dict[str, Any],
        *,
        initial: bool,
    ) -> None:
        now = self._clock()
        row = await session.get(CallDocument, call_id, with_for_update=True)
        if row is not None and initial:
            fields = keep_webhook_progress(row.status, fields)

        status = fields.pop("status", None)
        broadcast_id = fields.get("broadcast_id")
        data = to_json_document(fields)

        if row is None:
            session.add(
                CallDocument(
                    call_id=call_id,
                    broadcast_id=broadcast_id,
                    status=status or CallStatus.PENDING.value,
                    data=data,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.flush()
            return

        row.data = {**(row.data or {}), **data}
        if broadcast_id is not None:
            row.broadcast_id = broadcast_id
        if status is not None:
            row.status = status
        row.updated_at = now
        await session.flush()

    async def _upsert_call(self, call_id: str, fields: dict[str, Any], *, initial: bool = False) -> bool:
        try:
            async with self._locks.hold(call_id):
                try:
                    async with self._db.session() as session:
                        await self._merge_call(session, call_id, dict(fields), initial=initial)
                except IntegrityError:
                    # Another process inserted the same call id: retry as an update.
                    async with self._db.session() as session:
                        await self._merge_call(session, call_id, dict(fields), initial=initial)
        except SQLAlchemyError as e:
            logger.error("Call store write failed", extra={"call_id": call_id, "error": str(e)})
            raise StorageError(message=f"Failed to write call {call_id}") from e
        return True

    async def store_call_data(self, call_id: str, fields: dict[str, Any]) -> bool:
        return await self._upsert_call(call_id, clean_fields(fields), initial=True)

    async def update_call_status(
        self,
        call_id: str,
        status: CallStatus | str,
        extra: dict[str, Any] | None = None,
    ) -> bool:
        fields = clean_fields(extra)
        fields["status"] = CallStatus(status).value
        return await self._upsert_call(call_id, fields)

    async def update_call_fields(self, call_id: str, fields: dict[str, Any]) -> bool:
        return await self._upsert_call(call_id, clean_fields(fields))

    async def get_call_data(self, call_id: str) -> CallRecord | None:
        try:
            async with self._db.session() as session:
                row = await session.get(CallDocument, call_id)
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise StorageError(message=f"Failed to read call {call_id}") from e

    async def store_broadcast_session(self, broadcast_id: str, fields: dict[str, Any]) -> bool:
        now = self._clock()
        cleaned = clean_fields(fields)
        status = cleaned.pop("status", "active")
        total_calls = int(cleaned.pop("total_calls", 0))
        try:
            async with self._db.session() as session:
                row = await session.get(BroadcastDocument, broadcast_id)
                if row is None:
                    row = BroadcastDocument(broadcast_id=broadcast_id, created_at=now)
                    session.add(row)
                row.status = status
                row.total_calls = total_calls
                row.data = to_json_document(cleaned)
                row.updated_at = now
        except SQLAlchemyError as e:
            raise StorageError(message=f"Failed to store broadcast {broadcast_id}") from e
        return True

    async def update_broadcast_session(self, broadcast_id: str, fields: dict[str, Any]) -> bool:
        now = self._clock()
        cleaned = clean_fields(fields)
        try:
            async with self._db.session() as session:
                row = await session.get(BroadcastDocument, broadcast_id)
                if row is None:
                    row = BroadcastDocument(
                        broadcast_id=broadcast_id,
                        status="active",
                        total_calls=0,
                        data={},
                        created_at=now,
                    )
                    session.add(row)
                if "status" in cleaned:
                    row.status = cleaned.pop("status")
                if "total_calls" in cleaned:
                    row.total_calls = int(cleaned.pop("total_calls"))
                row.data = {**(row.data or {}), **to_json_document(cleaned)}
                row.updated_at = now
        except SQLAlchemyError as e:
            raise StorageError(message=f"Failed to update broadcast {broadcast_id}") from e
        return True

    async def get_broadcast_session(self, broadcast_id: str) -> BroadcastSession | None:
        try:
            async with self._db.session() as session:
                row = await session.get(BroadcastDocument, broadcast_id)
                return _to_session(row) if row is not None else None
        except SQLAlchemyError as e:
            raise StorageError(message=f"Failed to read broadcast {broadcast_id}") from e

    async def get_call_counts(self, broadcast_id: str | None = None) -> CallCounts:
        stmt = select(CallDocument.status, func.count()).group_by(CallDocument.status)
        if broadcast_id:
            stmt = stmt.where(CallDocument.broadcast_id == broadcast_id)
        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
                statuses: list[str | None] = []
                for status, count in result.all():
                    statuses.extend([status] * int(count))
        except SQLAlchemyError as e:
            raise StorageError(message="Failed to count calls") from e
        return CallCounts.from_statuses(statuses)

    async def _select_calls(self, *criteria: Any) -> list[CallRecord]:
        stmt = select(CallDocument).where(*criteria).order_by(CallDocument.created_at.asc())
        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StorageError(message="Failed to query calls") from e

    async def get_active_calls(self) -> list[CallRecord]:
        return await self._select_calls(CallDocument.status.in_([s.value for s in ACTIVE_STATUSES]))

    async def get_broadcast_calls(self, broadcast_id: str) -> list[CallRecord]:
        return await self._select_calls(CallDocument.broadcast_id == broadcast_id)

    async def cancel_broadcast_calls(self, broadcast_id: str) -> int:
        stmt = (
            update(CallDocument)
            .where(
                CallDocument.broadcast_id == broadcast_id,
                CallDocument.status.not_in([s.value for s in TERMINAL_STATUSES]),
            )
            .values(status=CallStatus.CANCELED.value, updated_at=self._clock())
        )
        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
                count = int(result.rowcount or 0)
        except SQLAlchemyError as e:
            raise StorageError(message=f"Failed to cancel broadcast {broadcast_id}") from e
        logger.info(
            "Canceled broadcast calls",
            extra={"broadcast_id": broadcast_id, "count": count},
        )
        return count
