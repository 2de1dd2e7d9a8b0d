"""
Telnyx Call Control telephony adapter.

Wraps the Telnyx v2 REST API (call creation, call actions and messaging)
behind ``TelephonyClient``. Provider errors are classified into the typed
errors of ``broadcaster.telephony.interface``.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from broadcaster.shared.logging import get_logger
from broadcaster.telephony.config import TelephonyConfig, get_telephony_config
from broadcaster.telephony.interface import (
    CallAlreadyEndedError,
    CallCreationRequest,
    CallLeg,
    CallNotFoundError,
    ChannelLimitError,
    GatherOptions,
    SmsResult,
    TelephonyClient,
    TelephonyProviderError,
    VoiceOptions,
)

logger = get_logger(__name__)

CHANNEL_LIMIT_MARKERS = ("channel limit exceeded",)
# Telnyx error codes for actions on a call that is already gone.
CALL_ENDED_CODES = {"90018", "90053"}


def _error_detail(data: dict[str, Any]) -> tuple[str, str | None]:
    errors = data.get("errors") or []
    if errors and isinstance(errors, list) and isinstance(errors[0], dict):
        first = errors[0]
        detail = first.get("detail") or first.get("title") or "Telnyx API error"
        code = first.get("code")
        return str(detail), str(code) if code is not None else None
    return str(data.get("message") or "Telnyx API error"), None


def classify_error(
    status_code: int,
    data: dict[str, Any],
    *,
    call_action: bool,
) -> TelephonyProviderError:
    """Map a Telnyx error response to a typed provider error."""
    detail, code = _error_detail(data)
    kwargs = {
        "error_code": code,
        "status_code": status_code,
        "provider_response": data,
    }
    if status_code == 403 or any(m in detail.lower() for m in CHANNEL_LIMIT_MARKERS):
        return ChannelLimitError(detail, **kwargs)
    if status_code == 404:
        return CallNotFoundError(detail, **kwargs)
    if call_action and (status_code == 422 or code in CALL_ENDED_CODES):
        return CallAlreadyEndedError(detail, **kwargs)
    return TelephonyProviderError(detail, **kwargs)


class TelnyxAdapter(TelephonyClient):
    """Telnyx telephony adapter using httpx."""

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_telephony_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self._config.telnyx_api_base_url.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {self._config.telnyx_api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self._config.request_timeout_seconds),
            )
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        *,
        call_action: bool,
        log_context: dict[str, Any],
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.post(path, json=body)
        except httpx.HTTPError as e:
            logger.error(
                "Telnyx request failed",
                extra={**log_context, "path": path, "error": str(e)},
            )
            raise TelephonyProviderError(f"HTTP error: {e!s}", error_code="HTTP_ERROR") from e

        if response.status_code >= 400:
            try:
                data = response.json() if response.content else {}
            except ValueError:
                data = {"message": response.text}
            error = classify_error(response.status_code, data, call_action=call_action)
            logger.warning(
                "Telnyx API error",
                extra={
                    **log_context,
                    "path": path,
                    "status_code": response.status_code,
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
            )
            raise error

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def _action_path(self, call_control_id: str, action: str) -> str:
        return f"/calls/{quote(call_control_id, safe='')}/actions/{action}"

    def _voice(self, voice: VoiceOptions | None) -> VoiceOptions:
        return voice or self._config.voice_options()

    async def create_call(self, request: CallCreationRequest) -> list[CallLeg]:
        body: dict[str, Any] = {
            "connection_id": self._config.telnyx_connection_id,
            "to": request.to,
            "from": request.from_number,
            "webhook_url": request.webhook_url,
        }
        if request.answering_machine_detection and request.answering_machine_detection != "disabled":
            body["answering_machine_detection"] = request.answering_machine_detection
        if request.client_state:
            body["client_state"] = request.client_state

        logger.info("Creating Telnyx call", extra={"to": request.to})
        data = await self._post("/calls", body, call_action=False, log_context={"to": request.to})

        payload = data.get("data")
        items = payload if isinstance(payload, list) else [payload] if payload else []
        legs = [
            CallLeg(
                call_control_id=item["call_control_id"],
                call_leg_id=item.get("call_leg_id"),
                call_session_id=item.get("call_session_id"),
                raw_response=item,
            )
            for item in items
            if isinstance(item, dict) and item.get("call_control_id")
        ]
        return legs

    async def speak(
        self,
        call_control_id: str,
        text: str,
        voice: VoiceOptions | None = None,
    ) -> None:
        v = self._voice(voice)
        await self._post(
            self._action_path(call_control_id, "speak"),
            {
                "payload": text,
                "payload_type": "text",
                "service_level": v.service_level,
                "voice": v.voice,
                "language": v.language,
            },
            call_action=True,
            log_context={"call_control_id": call_control_id},
        )

    async def gather_digits(
        self,
        call_control_id: str,
        options: GatherOptions | None = None,
    ) -> None:
        o = options or GatherOptions()
        await self._post(
            self._action_path(call_control_id, "gather"),
            {
                "minimum_digits": o.minimum_digits,
                "maximum_digits": o.maximum_digits,
                "timeout_millis": o.timeout_millis,
                "valid_digits": o.valid_digits,
                "terminating_digit": o.terminating_digit,
            },
            call_action=True,
            log_context={"call_control_id": call_control_id},
        )

    async def gather_using_speak(
        self,
        call_control_id: str,
        text: str,
        options: GatherOptions | None = None,
        voice: VoiceOptions | None = None,
    ) -> None:
        o = options or GatherOptions()
        v = self._voice(voice)
        await self._post(
            self._action_path(call_control_id, "gather_using_speak"),
            {
                "payload": text,
                "payload_type": "text",
                "service_level": v.service_level,
                "voice": v.voice,
                "language": v.language,
                "minimum_digits": o.minimum_digits,
                "maximum_digits": o.maximum_digits,
                "timeout_millis": o.timeout_millis,
                "valid_digits": o.valid_digits,
                "terminating_digit": o.terminating_digit,
            },
            call_action=True,
            log_context={"call_control_id": call_control_id},
        )

    async def transfer(self, call_control_id: str, to: str, from_number: str | None = None) -> None:
        body: dict[str, Any] = {"to": to}
        if from_number:
            body["from"] = from_number
        await self._post(
            self._action_path(call_control_id, "transfer"),
            body,
            call_action=True,
            log_context={"call_control_id": call_control_id, "to": to},
        )

    async def hangup(self, call_control_id: str) -> None:
        await self._post(
            self._action_path(call_control_id, "hangup"),
            {},
            call_action=True,
            log_context={"call_control_id": call_control_id},
        )

    async def send_sms(self, to: str, from_number: str, text: str) -> SmsResult:
        body: dict[str, Any] = {"to": to, "from": from_number, "text": text, "type": "SMS"}
        if self._config.telnyx_messaging_profile_id:
            body["messaging_profile_id"] = self._config.telnyx_messaging_profile_id
        data = await self._post("/messages", body, call_action=False, log_context={"to": to})
        message = data.get("data") or {}
        return SmsResult(message_id=str(message.get("id", "")), raw_response=message)
