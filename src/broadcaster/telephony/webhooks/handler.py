"""
Webhook event handler: routes normalized call events to the state machine.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from broadcaster.calls.state_machine import CallStateMachine
from broadcaster.shared.logging import get_logger
from broadcaster.telephony.events import CallEvent, CallEventType, parse_telnyx_event
from broadcaster.telephony.interface import WebhookParseError

logger = get_logger(__name__)


class WebhookHandler:
    """Dispatches provider webhook bodies by event type.

    Never raises: malformed payloads are dropped and processing errors are
    logged, since the provider only needs an acknowledgement.
    """

    def __init__(self, state_machine: CallStateMachine) -> None:
        self._machine = state_machine
        self._routes: dict[CallEventType, Callable[[CallEvent], Awaitable[None]]] = {
            CallEventType.INITIATED: state_machine.on_initiated,
            CallEventType.RINGING: state_machine.on_ringing,
            CallEventType.ANSWERED: state_machine.on_answered,
            CallEventType.BRIDGED: state_machine.on_bridged,
            CallEventType.HANGUP: state_machine.on_hangup,
            CallEventType.SPEAK_ENDED: state_machine.on_speak_ended,
            CallEventType.GATHER_ENDED: state_machine.on_gather_ended,
            CallEventType.MACHINE_DETECTION_ENDED: state_machine.on_machine_detection,
            CallEventType.MACHINE_GREETING_ENDED: state_machine.on_greeting_ended,
        }

    async def handle_payload(self, body: dict[str, Any]) -> bool:
        """Parse and handle a raw Telnyx webhook body.

        Returns:
            True if the event was routed to a handler.
        """
        try:
            event = parse_telnyx_event(body)
        except WebhookParseError as e:
            logger.warning(
                "Dropping malformed webhook",
                extra={"error": str(e), "error_code": e.error_code},
            )
            return False
        return await self.handle_event(event)

    async def handle_event(self, event: CallEvent) -> bool:
        route = self._routes.get(event.event_type)
        if route is None:
            logger.info(
                "Unhandled webhook event",
                extra={"call_id": event.call_control_id, "event_type": event.raw_event_type},
            )
            return False

        logger.info(
            "Processing telephony event",
            extra={
                "call_id": event.call_control_id,
                "event_type": event.event_type.value,
                "direction": event.direction,
            },
        )
        try:
            await route(event)
        except Exception:
            logger.exception(
                "Failed to process webhook event",
                extra={"call_id": event.call_control_id, "event_type": event.event_type.value},
            )
            return False
        return True
