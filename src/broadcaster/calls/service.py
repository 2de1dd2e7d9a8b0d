"""
Broadcast control operations: cancellation, status lookups, capacity view.
"""

import asyncio
from dataclasses import dataclass

from broadcaster.calls.records import (
    BroadcastStatus,
    CallCounts,
    CallRecord,
    CallStatus,
)
from broadcaster.calls.store import CallRecordStore
from broadcaster.shared.exceptions import NotFoundError
from broadcaster.shared.logging import get_logger
from broadcaster.telephony.interface import (
    BENIGN_ACTION_ERRORS,
    TelephonyClient,
    TelephonyProviderError,
)

logger = get_logger(__name__)

HIGH_UTILIZATION_THRESHOLD = 8
MEDIUM_UTILIZATION_THRESHOLD = 5


@dataclass(frozen=True)
class ChannelStatus:
    """Snapshot of in-flight calls against the account channel limit."""

    pending_calls: int
    ringing_calls: int
    limit: int

    @property
    def total_active(self) -> int:
        return self.pending_calls + self.ringing_calls

    @property
    def utilization(self) -> int:
        if self.limit <= 0:
            return 0
        return round(self.total_active / self.limit * 100)

    @property
    def level(self) -> str:
        if self.total_active >= HIGH_UTILIZATION_THRESHOLD:
            return "high"
        if self.total_active >= MEDIUM_UTILIZATION_THRESHOLD:
            return "medium"
        return "low"

    @property
    def recommendations(self) -> list[str]:
        if self.level == "high":
            return [
                "High channel utilization detected",
                "Consider reducing batch size or increasing delays",
            ]
        return []


class BroadcastService:
    def __init__(
        self,
        store: CallRecordStore,
        client: TelephonyClient,
        channel_limit: int = 10,
    ) -> None:
        self._store = store
        self._client = client
        self._channel_limit = channel_limit

    async def _hangup_quietly(self, call_id: str) -> None:
        try:
            await self._client.hangup(call_id)
        except BENIGN_ACTION_ERRORS:
            logger.debug("Call already ended", extra={"call_id": call_id})
        except TelephonyProviderError as e:
            logger.warning(
                "Hangup during cancellation failed",
                extra={"call_id": call_id, "error": str(e)},
            )

    async def _hangup_all(self, calls: list[CallRecord]) -> None:
        live = [c.call_id for c in calls if not c.is_synthetic and not c.is_terminal]
        await asyncio.gather(*(self._hangup_quietly(call_id) for call_id in live))

    async def cancel_calls(self, broadcast_id: str | None = None) -> int:
        """Cancel a broadcast, or every pending/ringing call when no id is given.

        Non-terminal records become ``canceled``; live calls are hung up on a
        best-effort basis first. Terminal records are left untouched.

        Returns:
            Number of records moved to ``canceled``.
        """
        if broadcast_id:
            calls = await self._store.get_broadcast_calls(broadcast_id)
            await self._hangup_all(calls)
            count = await self._store.cancel_broadcast_calls(broadcast_id)
            await self._store.update_broadcast_session(broadcast_id, {"status": BroadcastStatus.CANCELED})
        else:
            calls = await self._store.get_active_calls()
            await self._hangup_all(calls)
            count = 0
            for call in calls:
                if call.is_terminal:
                    continue
                await self._store.update_call_status(call.call_id, CallStatus.CANCELED)
                count += 1

        logger.info("Calls canceled", extra={"broadcast_id": broadcast_id, "count": count})
        return count

    async def get_call_status(self, call_id: str) -> CallRecord:
        record = await self._store.get_call_data(call_id)
        if record is None:
            raise NotFoundError(message=f"Call {call_id} not found")
        return record

    async def get_call_counts(self, broadcast_id: str | None = None) -> CallCounts:
        return await self._store.get_call_counts(broadcast_id)

    async def get_channel_status(self) -> ChannelStatus:
        calls = await self._store.get_active_calls()
        pending = sum(1 for c in calls if c.status == CallStatus.PENDING)
        ringing = sum(1 for c in calls if c.status == CallStatus.RINGING)
        return ChannelStatus(pending_calls=pending, ringing_calls=ringing, limit=self._channel_limit)
