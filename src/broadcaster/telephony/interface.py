"""
Telephony action client interface definition.

The state machine and the batch dispatcher only talk to the provider through
``TelephonyClient``; concrete adapters translate these calls into provider
REST requests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class VoiceOptions:
    """Text-to-speech options for speak actions."""

    voice: str = "AWS.Polly.Danielle-Neural"
    language: str = "en-US"
    service_level: str = "premium"


@dataclass(frozen=True)
class GatherOptions:
    """DTMF gather options."""

    minimum_digits: int = 1
    maximum_digits: int = 1
    timeout_millis: int = 10_000
    valid_digits: str = "0123456789*#"
    terminating_digit: str = "#"


@dataclass(frozen=True)
class CallCreationRequest:
    """Request to create an outbound call."""

    to: str
    from_number: str
    webhook_url: str
    answering_machine_detection: str = "premium"
    client_state: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallLeg:
    """One call leg returned by the provider on call creation."""

    call_control_id: str
    call_leg_id: str | None = None
    call_session_id: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SmsResult:
    """Result of a send-SMS action."""

    message_id: str
    raw_response: dict[str, Any] = field(default_factory=dict)


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.provider_response = provider_response or {}


class ChannelLimitError(TelephonyProviderError):
    """The account's simultaneous channel limit was reached."""


class CallNotFoundError(TelephonyProviderError):
    """The call no longer exists on the provider side."""


class CallAlreadyEndedError(TelephonyProviderError):
    """The call has already been terminated (HTTP 422)."""


class WebhookParseError(TelephonyProviderError):
    """Error parsing webhook event."""


BENIGN_ACTION_ERRORS: tuple[type[TelephonyProviderError], ...] = (
    CallNotFoundError,
    CallAlreadyEndedError,
)


class TelephonyClient(ABC):
    """Abstract interface for the voice and messaging provider."""

    @abstractmethod
    async def create_call(self, request: CallCreationRequest) -> list[CallLeg]:
        """Create an outbound call. Providers may answer with several legs."""

    @abstractmethod
    async def speak(
        self,
        call_control_id: str,
        text: str,
        voice: VoiceOptions | None = None,
    ) -> None:
        """Speak text on an active call."""

    @abstractmethod
    async def gather_digits(
        self,
        call_control_id: str,
        options: GatherOptions | None = None,
    ) -> None:
        """Collect DTMF digits without a prompt."""

    @abstractmethod
    async def gather_using_speak(
        self,
        call_control_id: str,
        text: str,
        options: GatherOptions | None = None,
        voice: VoiceOptions | None = None,
    ) -> None:
        """Speak a prompt and collect DTMF digits."""

    @abstractmethod
    async def transfer(self, call_control_id: str, to: str, from_number: str | None = None) -> None:
        """Transfer the call to another number."""

    @abstractmethod
    async def hangup(self, call_control_id: str) -> None:
        """Hang up the call."""

    @abstractmethod
    async def send_sms(self, to: str, from_number: str, text: str) -> SmsResult:
        """Send an SMS through the messaging provider."""

    async def close(self) -> None:
        """Release underlying connections."""
        return None
