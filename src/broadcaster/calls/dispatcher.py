"""
Batch dispatcher for broadcast calls.

Places one outbound call per destination under a fixed concurrency window.
Capacity-limit errors are retried exactly once after a back-off that grows
with the number of capacity hits seen in the batch; every destination that
still fails gets a synthetic placeholder record so the returned call ids stay
aligned with the input phone numbers.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from broadcaster.calls.config import DispatcherConfig
from broadcaster.calls.records import BroadcastStatus, CallStatus
from broadcaster.calls.store import CallRecordStore, utcnow
from broadcaster.shared.exceptions import StorageError, ValidationError
from broadcaster.shared.logging import get_logger, log_with_context
from broadcaster.telephony.config import TelephonyConfig
from broadcaster.telephony.interface import (
    CallCreationRequest,
    CallLeg,
    ChannelLimitError,
    TelephonyClient,
    TelephonyProviderError,
)

logger = get_logger(__name__)

MAX_REPORTED_ERRORS = 5


@dataclass(frozen=True)
class Contact:
    """Optional per-destination contact identity."""

    contact_id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class DispatchTarget:
    index: int
    phone_number: str
    contact_id: str
    contact_name: str
    script: str


@dataclass(frozen=True)
class CallOutcome:
    """Result of placing one destination's call."""

    phone_number: str
    call_id: str
    contact_id: str
    contact_name: str
    success: bool
    is_synthetic: bool = False
    error: str | None = None


@dataclass
class DispatchResult:
    """Aggregate result of one broadcast."""

    broadcast_id: str
    outcomes: list[CallOutcome] = field(default_factory=list)
    channel_limit_hits: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    window: int = 8

    @property
    def call_ids(self) -> list[str]:
        return [o.call_id for o in self.outcomes]

    @property
    def total_calls(self) -> int:
        return len(self.outcomes)

    @property
    def successful_calls(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed_calls(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def synthetic_calls(self) -> int:
        return sum(1 for o in self.outcomes if o.is_synthetic)

    @property
    def reported_errors(self) -> list[dict[str, str]]:
        return self.errors[:MAX_REPORTED_ERRORS]

    @property
    def recommendations(self) -> list[str]:
        return recommendations_for(self.channel_limit_hits, window=self.window)


def recommendations_for(channel_limit_hits: int, *, window: int = 8) -> list[str]:
    if channel_limit_hits >= 2:
        return [
            "Channel capacity reached multiple times, consider:",
            "Upgrading the telephony account for higher channel limits",
            f"Using smaller batch sizes (current: {window} concurrent calls)",
            "Spreading campaigns over longer time periods",
            "Current wait times: 30s-120s between retries",
        ]
    if channel_limit_hits == 1:
        return ["Channel capacity reached, system is automatically adjusting delays"]
    return []


def new_broadcast_id() -> str:
    return f"broadcast_{int(time.time() * 1000)}_{uuid4().hex[:6]}"


def prepare_targets(
    phone_numbers: Sequence[str],
    contacts: Sequence[Contact | None],
    scripts: Sequence[str],
) -> list[DispatchTarget]:
    """Normalize dispatch input.

    Blank phone numbers are dropped. Contacts and scripts are matched by the
    phone number's original position; a missing script falls back to the
    first non-blank one.

    Raises:
        ValidationError: no usable phone number or no script.
    """
    usable_scripts = [s for s in scripts if s and s.strip()]
    if not usable_scripts:
        raise ValidationError(message="At least one script is required")
    default_script = usable_scripts[0]

    targets: list[DispatchTarget] = []
    for i, raw in enumerate(phone_numbers):
        phone = (raw or "").strip()
        if not phone:
            logger.info("Skipping empty phone number", extra={"index": i})
            continue
        contact = contacts[i] if i < len(contacts) else None
        contact_id = (contact.contact_id or "").strip() if contact else ""
        contact_name = (contact.name or "").strip() if contact else ""
        script = scripts[i] if i < len(scripts) and scripts[i] and scripts[i].strip() else default_script
        targets.append(
            DispatchTarget(
                index=i,
                phone_number=phone,
                contact_id=contact_id or f"contact_{i}",
                contact_name=contact_name or f"Contact {i + 1}",
                script=script,
            )
        )

    if not targets:
        raise ValidationError(message="No valid phone numbers provided")
    return targets


@dataclass
class _BatchState:
    broadcast_id: str
    window: asyncio.Semaphore
    channel_limit_hits: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


class BatchDispatcher:
    """Places a broadcast's calls and records one CallRecord per destination."""

    def __init__(
        self,
        store: CallRecordStore,
        client: TelephonyClient,
        telephony_config: TelephonyConfig,
        config: DispatcherConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        broadcast_id_factory: Callable[[], str] = new_broadcast_id,
    ) -> None:
        self._store = store
        self._client = client
        self._telephony_config = telephony_config
        self._config = config or DispatcherConfig()
        self._sleep = sleep
        self._clock = clock
        self._new_broadcast_id = broadcast_id_factory

    async def dispatch(
        self,
        phone_numbers: Sequence[str],
        contacts: Sequence[Contact | None] = (),
        scripts: Sequence[str] = (),
    ) -> DispatchResult:
        """Place one call per valid phone number.

        Args:
            phone_numbers: Destination numbers; blanks are skipped.
            contacts: Contact identities matched by position.
            scripts: Scripts matched by position; ``scripts[0]`` is the default.

        Returns:
            DispatchResult whose ``call_ids`` has exactly one entry per valid
            phone number, in input order.

        Raises:
            ValidationError: nothing to dispatch.
        """
        targets = prepare_targets(phone_numbers, contacts, scripts)
        broadcast_id = self._new_broadcast_id()
        logger.info(
            "Starting broadcast",
            extra={"broadcast_id": broadcast_id, "total_calls": len(targets)},
        )

        try:
            await self._store.store_broadcast_session(
                broadcast_id,
                {
                    "total_calls": len(targets),
                    "status": BroadcastStatus.ACTIVE,
                    "start_time": self._clock(),
                },
            )
        except StorageError as e:
            logger.error(
                "Failed to store broadcast session",
                extra={"broadcast_id": broadcast_id, "error": e.message},
            )

        state = _BatchState(
            broadcast_id=broadcast_id,
            window=asyncio.Semaphore(self._config.max_concurrent_calls),
        )
        outcomes = await asyncio.gather(*(self._place(state, t) for t in targets))

        result = DispatchResult(
            broadcast_id=broadcast_id,
            outcomes=list(outcomes),
            channel_limit_hits=state.channel_limit_hits,
            errors=state.errors,
            window=self._config.max_concurrent_calls,
        )
        log_with_context(
            logger,
            logging.INFO,
            "Broadcast dispatched",
            broadcast_id=broadcast_id,
            successful=result.successful_calls,
            failed=result.failed_calls,
            synthetic=result.synthetic_calls,
            channel_limit_hits=result.channel_limit_hits,
        )
        return result

    async def _create_leg(self, target: DispatchTarget) -> CallLeg:
        cfg = self._telephony_config
        request = CallCreationRequest(
            to=target.phone_number,
            from_number=cfg.telnyx_from_number,
            webhook_url=cfg.get_webhook_url(),
            answering_machine_detection=cfg.answering_machine_detection,
        )
        legs = await self._client.create_call(request)
        if not legs:
            raise TelephonyProviderError(
                message="Provider returned no call legs",
                error_code="NO_CALL_LEGS",
            )
        if len(legs) > 1:
            logger.warning(
                "Provider returned more legs than requested, keeping the first",
                extra={"phone_number": target.phone_number, "legs": len(legs)},
            )
        return legs[0]

    async def _place(self, state: _BatchState, target: DispatchTarget) -> CallOutcome:
        async with state.window:
            try:
                leg = await self._create_leg(target)
            except ChannelLimitError:
                state.channel_limit_hits += 1
                delay = self._config.channel_limit_delay(state.channel_limit_hits)
                logger.warning(
                    "Channel capacity reached, retrying once",
                    extra={
                        "phone_number": target.phone_number,
                        "hit": state.channel_limit_hits,
                        "delay_seconds": delay,
                    },
                )
                await self._sleep(delay)
                try:
                    leg = await self._create_leg(target)
                except TelephonyProviderError as e:
                    return await self._record_failure(state, target, f"Retry failed: {e}")
                except Exception as e:
                    logger.exception(
                        "Unexpected error retrying call",
                        extra={"phone_number": target.phone_number},
                    )
                    return await self._record_failure(
                        state, target, f"Retry failed: {str(e) or type(e).__name__}"
                    )
            except TelephonyProviderError as e:
                return await self._record_failure(state, target, str(e))
            except Exception as e:
                logger.exception(
                    "Unexpected error creating call",
                    extra={"phone_number": target.phone_number},
                )
                return await self._record_failure(state, target, str(e) or type(e).__name__)

        await self._save(
            leg.call_control_id,
            {
                **self._base_fields(state, target),
                "call_leg_id": leg.call_leg_id,
                "call_session_id": leg.call_session_id,
            },
        )
        logger.info(
            "Created call",
            extra={"phone_number": target.phone_number, "call_id": leg.call_control_id},
        )
        return CallOutcome(
            phone_number=target.phone_number,
            call_id=leg.call_control_id,
            contact_id=target.contact_id,
            contact_name=target.contact_name,
            success=True,
        )

    def _base_fields(self, state: _BatchState, target: DispatchTarget) -> dict[str, Any]:
        return {
            "broadcast_id": state.broadcast_id,
            "contact_id": target.contact_id,
            "contact_name": target.contact_name,
            "phone_number": target.phone_number,
            "script": target.script,
            "status": CallStatus.PENDING,
        }

    async def _record_failure(self, state: _BatchState, target: DispatchTarget, error: str) -> CallOutcome:
        state.errors.append({"phone": target.phone_number, "error": error})
        logger.error(
            "Failed to create call",
            extra={"phone_number": target.phone_number, "error": error},
        )
        # Placeholder keeps the output aligned; it never receives webhooks.
        call_id = f"synthetic_{state.broadcast_id}_{target.index}_{uuid4().hex[:8]}"
        await self._save(
            call_id,
            {**self._base_fields(state, target), "is_synthetic": True, "error": error},
        )
        return CallOutcome(
            phone_number=target.phone_number,
            call_id=call_id,
            contact_id=target.contact_id,
            contact_name=target.contact_name,
            success=False,
            is_synthetic=True,
            error=error,
        )

    async def _save(self, call_id: str, fields: dict[str, Any]) -> None:
        try:
            await self._store.store_call_data(call_id, fields)
        except StorageError as e:
            logger.error("Failed to store call data", extra={"call_id": call_id, "error": e.message})
