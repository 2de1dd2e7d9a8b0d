"""
Per-call webhook state machine.

Each handler takes one normalized ``CallEvent``, updates the call record and
issues the provider actions that follow from it. Flag claims (script played,
gather attempts, hangup scheduled, SMS attempted) are read-modify-write
sequences under the call's lock, so duplicate or concurrent deliveries of
the same event never double-speak, double-gather or double-hangup.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from broadcaster.calls.config import CallFlowConfig
from broadcaster.calls.locks import KeyedLock
from broadcaster.calls.records import CallRecord, CallStatus
from broadcaster.calls.store import CallRecordStore, utcnow
from broadcaster.calls.timers import DelayedActionScheduler
from broadcaster.shared.exceptions import StorageError
from broadcaster.shared.logging import get_logger
from broadcaster.telephony.events import CallEvent
from broadcaster.telephony.interface import (
    BENIGN_ACTION_ERRORS,
    GatherOptions,
    TelephonyClient,
    TelephonyProviderError,
    VoiceOptions,
)

logger = get_logger(__name__)

HANGUP_CAUSE_STATUS: dict[str, CallStatus] = {
    "normal_clearing": CallStatus.COMPLETED,
    "user_busy": CallStatus.BUSY,
    "busy": CallStatus.BUSY,
    "no_answer": CallStatus.NO_ANSWER,
    "timeout": CallStatus.NO_ANSWER,
    "no_user_response": CallStatus.NO_ANSWER,
    "originator_cancel": CallStatus.CANCELED,
    "cancel": CallStatus.CANCELED,
    "call_rejected": CallStatus.REJECTED,
}

# Progress events never move a record backwards past these statuses.
_PAST_RINGING = frozenset(
    {
        CallStatus.ANSWERED,
        CallStatus.IN_PROGRESS,
        CallStatus.VOICEMAIL,
        CallStatus.COMPLETED,
        CallStatus.NO_ANSWER,
        CallStatus.BUSY,
        CallStatus.CANCELED,
        CallStatus.REJECTED,
        CallStatus.FAILED,
    }
)


def classify_hangup_cause(cause: str | None) -> CallStatus:
    """Map a provider hangup cause to a terminal call status."""
    if not cause:
        return CallStatus.FAILED
    return HANGUP_CAUSE_STATUS.get(cause.strip().lower(), CallStatus.FAILED)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class GatherDecision:
    """Outcome of one consent gather result."""

    kind: str  # accept | decline | reprompt | exhausted | ignore
    record: CallRecord | None = None
    schedule_hangup: bool = False


class CallStateMachine:
    """Drives one call from ``initiated`` to a terminal status.

    Provider action failures are logged and never abort processing of the
    event; ``CallNotFoundError`` and ``CallAlreadyEndedError`` are treated as
    no-ops since the call is already gone.
    """

    def __init__(
        self,
        store: CallRecordStore,
        client: TelephonyClient,
        config: CallFlowConfig | None = None,
        *,
        voice: VoiceOptions | None = None,
        scheduler: DelayedActionScheduler | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._client = client
        self._config = config or CallFlowConfig()
        self._voice = voice or VoiceOptions()
        self._scheduler = scheduler or DelayedActionScheduler()
        self._locks = locks or KeyedLock()
        self._clock = clock
        self._sleep = sleep

    @property
    def config(self) -> CallFlowConfig:
        return self._config

    @property
    def scheduler(self) -> DelayedActionScheduler:
        return self._scheduler

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    async def _load(self, call_id: str) -> CallRecord:
        record = await self._store.get_call_data(call_id)
        return record if record is not None else CallRecord(call_id=call_id)

    async def _write_status(
        self,
        call_id: str,
        status: CallStatus,
        extra: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._store.update_call_status(call_id, status, extra)
        except StorageError as e:
            logger.error(
                "Failed to update call status",
                extra={"call_id": call_id, "status": status.value, "error": e.message},
            )

    async def _write_fields(self, call_id: str, fields: dict[str, Any]) -> None:
        try:
            await self._store.update_call_fields(call_id, fields)
        except StorageError as e:
            logger.error(
                "Failed to update call fields",
                extra={"call_id": call_id, "fields": sorted(fields), "error": e.message},
            )

    async def _act(
        self,
        call_id: str,
        action: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> bool:
        """Run one provider action, logging instead of raising.

        Returns:
            True when the provider accepted the action.
        """
        try:
            await operation()
        except BENIGN_ACTION_ERRORS as e:
            logger.info(
                "Call already gone, action skipped",
                extra={"call_id": call_id, "action": action, "error_code": e.error_code},
            )
            return False
        except TelephonyProviderError as e:
            logger.error(
                "Telephony action failed",
                extra={
                    "call_id": call_id,
                    "action": action,
                    "error": str(e),
                    "error_code": e.error_code,
                    "status_code": e.status_code,
                },
            )
            return False
        logger.info("Telephony action issued", extra={"call_id": call_id, "action": action})
        return True

    def _gather_options(self) -> GatherOptions:
        return GatherOptions(
            minimum_digits=1,
            maximum_digits=1,
            timeout_millis=self._config.gather_timeout_millis,
        )

    def hangup_delay(self, answered_at: datetime | None) -> float:
        """Seconds to wait before hanging up so the call lasts at least the floor.

        Args:
            answered_at: When the call was answered, if known.

        Returns:
            ``max(0, floor - elapsed)``, or the default short delay when the
            answer time is unknown.
        """
        if answered_at is None:
            return self._config.default_hangup_delay_seconds
        elapsed = (self._clock() - _as_utc(answered_at)).total_seconds()
        return max(0.0, self._config.min_answered_duration_seconds - elapsed)

    def _schedule_hangup(self, call_id: str, delay: float, reason: str) -> None:
        logger.info(
            "Hangup scheduled",
            extra={"call_id": call_id, "delay_seconds": round(delay, 3), "reason": reason},
        )

        async def _hangup() -> None:
            await self._act(call_id, "hangup", lambda: self._client.hangup(call_id))

        self._scheduler.schedule(delay, _hangup, name=f"hangup:{call_id}")

    async def _claim_script(self, call_id: str) -> CallRecord | None:
        """Flip ``script_played`` if this caller may speak the script."""
        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            if record.script_played:
                logger.info("Script already played, skipping", extra={"call_id": call_id})
                return None
            if record.is_terminal:
                logger.info(
                    "Call already ended, not speaking",
                    extra={"call_id": call_id, "status": record.status.value},
                )
                return None
            if not record.script:
                logger.error("No script found for call", extra={"call_id": call_id})
                return None
            await self._write_fields(call_id, {"script_played": True})
            return record

    async def _speak_script(self, call_id: str, *, delay: float = 0.0) -> bool:
        record = await self._claim_script(call_id)
        if record is None:
            return False
        if delay > 0:
            await self._sleep(delay)
        script = record.script or ""
        return await self._act(call_id, "speak", lambda: self._client.speak(call_id, script, self._voice))

    async def _start_consent(self, call_id: str) -> bool:
        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            if record.gather_attempts > 0 or record.gather_closed or record.script_played or record.is_terminal:
                logger.info("Consent gather already started, skipping", extra={"call_id": call_id})
                return False
            await self._write_fields(call_id, {"gather_attempts": 1})
        return await self._act(
            call_id,
            "gather_using_speak",
            lambda: self._client.gather_using_speak(
                call_id, self._config.consent_prompt, self._gather_options(), self._voice
            ),
        )

    async def _deliver(self, call_id: str) -> bool:
        """Start the message: consent gather when enabled, otherwise the script."""
        if self._config.consent_flow_enabled:
            return await self._start_consent(call_id)
        return await self._speak_script(call_id)

    async def _claim_hangup(self, call_id: str) -> CallRecord | None:
        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            if record.hangup_scheduled:
                return None
            await self._write_fields(call_id, {"hangup_scheduled": True})
            return record

    async def _advance_progress(self, call_id: str, status: CallStatus, extra: dict[str, Any]) -> None:
        async with self._locks.hold(call_id):
            record = await self._store.get_call_data(call_id)
            if record is not None and record.status in _PAST_RINGING:
                logger.info(
                    "Late progress event ignored",
                    extra={"call_id": call_id, "status": record.status.value, "event_status": status.value},
                )
                return
            await self._write_status(call_id, status, extra)

    # ------------------------------------------------------------------ #
    # Event handlers
    # ------------------------------------------------------------------ #

    async def on_initiated(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        if event.is_inbound:
            await self._transfer_inbound(event)
            return
        await self._advance_progress(call_id, CallStatus.INITIATED, {"direction": event.direction})

    async def _transfer_inbound(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        operator = self._config.operator_number
        if not operator:
            logger.warning("Inbound call with no operator number configured", extra={"call_id": call_id})
            return
        logger.info(
            "Transferring inbound call to operator",
            extra={"call_id": call_id, "from_number": event.from_number},
        )
        await self._act(
            call_id,
            "transfer",
            lambda: self._client.transfer(call_id, operator, event.from_number),
        )

    async def on_ringing(self, event: CallEvent) -> None:
        await self._advance_progress(event.call_control_id, CallStatus.RINGING, {})

    async def on_answered(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            extra: dict[str, Any] = {}
            if record.answered_at is None:
                extra["answered_at"] = self._clock()
            await self._write_status(call_id, CallStatus.ANSWERED, extra)

        if self._config.speak_on_answer and not record.is_terminal:
            await self._deliver(call_id)

    async def on_machine_detection(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        result = event.amd_result or "human"

        if result == "machine":
            await self._write_status(call_id, CallStatus.VOICEMAIL, {"amd_result": "machine"})
            logger.info(
                "Voicemail detected, waiting for greeting to end",
                extra={"call_id": call_id, "raw_result": event.raw_amd_result},
            )
            return

        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            extra: dict[str, Any] = {"amd_result": "human"}
            if record.answered_at is None:
                extra["answered_at"] = self._clock()
            await self._write_status(call_id, CallStatus.ANSWERED, extra)

        logger.info("Human answered", extra={"call_id": call_id, "raw_result": event.raw_amd_result})
        if not record.is_terminal:
            await self._deliver(call_id)

    async def on_greeting_ended(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        # The beep follows the greeting; speaking immediately clips the message.
        await self._speak_script(call_id, delay=self._config.greeting_delay_seconds)

    async def on_gather_ended(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        if not self._config.consent_flow_enabled:
            logger.info("Gather result ignored, consent flow disabled", extra={"call_id": call_id})
            return

        decision = await self._decide_gather(call_id, event)
        logger.info(
            "Consent gather result",
            extra={
                "call_id": call_id,
                "digits": event.digits,
                "gather_status": event.gather_status,
                "decision": decision.kind,
            },
        )

        if decision.kind == "accept":
            await self._speak_script(call_id)
        elif decision.kind == "decline":
            await self._act(
                call_id,
                "speak",
                lambda: self._client.speak(call_id, self._config.goodbye_message, self._voice),
            )
            if decision.schedule_hangup:
                self._schedule_hangup(call_id, self._config.decline_hangup_delay_seconds, "consent_declined")
        elif decision.kind == "reprompt":
            await self._act(
                call_id,
                "gather_using_speak",
                lambda: self._client.gather_using_speak(
                    call_id, self._config.consent_reprompt, self._gather_options(), self._voice
                ),
            )
        elif decision.kind == "exhausted":
            await self._act(
                call_id,
                "speak",
                lambda: self._client.speak(call_id, self._config.final_message, self._voice),
            )
            if decision.schedule_hangup:
                record = decision.record
                delay = self.hangup_delay(record.answered_at if record else None)
                self._schedule_hangup(call_id, delay, "gather_attempts_exhausted")

    async def _decide_gather(self, call_id: str, event: CallEvent) -> GatherDecision:
        cfg = self._config
        digits = (event.digits or "").strip()
        status = (event.gather_status or "").lower()

        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            if record.gather_closed or record.is_terminal or status == "call_hangup":
                return GatherDecision("ignore", record)

            if digits == cfg.consent_accept_digit and status in ("valid", ""):
                await self._write_fields(call_id, {"consent_given": True, "gather_closed": True})
                return GatherDecision("accept", record)

            if digits == cfg.consent_decline_digit:
                fields: dict[str, Any] = {"consent_given": False, "gather_closed": True}
                if not record.hangup_scheduled:
                    fields["hangup_scheduled"] = True
                await self._write_fields(call_id, fields)
                return GatherDecision("decline", record, schedule_hangup=not record.hangup_scheduled)

            if record.gather_attempts < cfg.max_gather_attempts:
                await self._write_fields(call_id, {"gather_attempts": record.gather_attempts + 1})
                return GatherDecision("reprompt", record)

            fields = {"gather_closed": True}
            if not record.hangup_scheduled:
                fields["hangup_scheduled"] = True
            await self._write_fields(call_id, fields)
            return GatherDecision("exhausted", record, schedule_hangup=not record.hangup_scheduled)

    async def on_speak_ended(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            ended = record.is_terminal and record.status != CallStatus.COMPLETED
            claim = not record.hangup_scheduled and not ended
            extra: dict[str, Any] = {"hangup_scheduled": True} if claim else {}
            await self._write_status(call_id, CallStatus.COMPLETED, extra)

        if claim:
            self._schedule_hangup(call_id, self.hangup_delay(record.answered_at), "speak_ended")

    async def on_bridged(self, event: CallEvent) -> None:
        await self._write_status(event.call_control_id, CallStatus.IN_PROGRESS)

    async def on_hangup(self, event: CallEvent) -> None:
        call_id = event.call_control_id
        status = classify_hangup_cause(event.hangup_cause)
        await self._write_status(
            call_id,
            status,
            {
                "hangup_cause": event.hangup_cause,
                "duration": event.duration_seconds,
                "end_time": self._clock(),
            },
        )
        logger.info(
            "Call ended",
            extra={
                "call_id": call_id,
                "hangup_cause": event.hangup_cause,
                "status": status.value,
                "duration": event.duration_seconds,
            },
        )
        try:
            await self._send_fallback_sms(call_id, event.hangup_cause)
        finally:
            self._locks.discard(call_id)

    async def _send_fallback_sms(self, call_id: str, cause: str | None) -> None:
        cfg = self._config
        if not cfg.sms_enabled or not cause or cause.strip().lower() not in cfg.sms_trigger_causes:
            return

        async with self._locks.hold(call_id):
            record = await self._load(call_id)
            if record.sms_attempted:
                return
            if not record.phone_number or not record.script:
                logger.warning(
                    "Fallback SMS skipped, record has no phone number or script",
                    extra={"call_id": call_id},
                )
                return
            await self._write_fields(call_id, {"sms_attempted": True})

        if not cfg.sms_from_number:
            logger.warning("Fallback SMS skipped, no sender number configured", extra={"call_id": call_id})
            await self._write_fields(call_id, {"sms_error": "no sender number configured"})
            return

        phone = record.phone_number
        script = record.script
        try:
            result = await self._client.send_sms(phone, cfg.sms_from_number, script)
        except TelephonyProviderError as e:
            logger.error(
                "Fallback SMS failed",
                extra={"call_id": call_id, "error": str(e), "error_code": e.error_code},
            )
            await self._write_fields(call_id, {"sms_sent": False, "sms_error": str(e)})
            return

        logger.info(
            "Fallback SMS sent",
            extra={"call_id": call_id, "hangup_cause": cause, "message_id": result.message_id},
        )
        await self._write_fields(call_id, {"sms_sent": True, "sms_message_id": result.message_id})
