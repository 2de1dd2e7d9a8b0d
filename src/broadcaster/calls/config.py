"""
Call flow and dispatcher configuration.

``CallFlowSettings`` loads from the environment (prefix ``CALL_FLOW_``);
the state machine consumes the frozen ``CallFlowConfig`` built from it, so
tests can construct configurations without touching the environment.
"""

from dataclasses import dataclass, field

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SMS_TRIGGER_CAUSES = frozenset(
    {
        "not_found",
        "user_busy",
        "busy",
        "originator_cancel",
        "normal_clearing",
        "timeout",
    }
)


@dataclass(frozen=True)
class CallFlowConfig:
    """Policy knobs of the webhook-driven call state machine."""

    operator_number: str = ""
    min_answered_duration_seconds: float = 6.0
    default_hangup_delay_seconds: float = 2.0
    greeting_delay_seconds: float = 4.0
    decline_hangup_delay_seconds: float = 3.0

    sms_enabled: bool = True
    sms_from_number: str = ""
    sms_trigger_causes: frozenset[str] = field(default_factory=lambda: DEFAULT_SMS_TRIGGER_CAUSES)

    speak_on_answer: bool = False

    consent_flow_enabled: bool = False
    max_gather_attempts: int = 3
    consent_accept_digit: str = "1"
    consent_decline_digit: str = "2"
    gather_timeout_millis: int = 10_000
    consent_prompt: str = "Press 1 to hear this message, or press 2 to end the call."
    consent_reprompt: str = "Sorry, we did not get that. Press 1 to hear this message, or press 2 to end the call."
    goodbye_message: str = "Thank you. Goodbye."
    final_message: str = "We did not receive a valid response. Goodbye."

    def __post_init__(self) -> None:
        if self.max_gather_attempts < 1:
            raise ValueError("max_gather_attempts must be >= 1")
        if self.min_answered_duration_seconds < 0:
            raise ValueError("min_answered_duration_seconds must be >= 0")


@dataclass(frozen=True)
class DispatcherConfig:
    """Batch dispatch concurrency and capacity back-off."""

    max_concurrent_calls: int = 8
    channel_limit_base_delay_seconds: float = 30.0
    channel_limit_delay_increment_seconds: float = 10.0
    channel_limit_max_delay_seconds: float = 120.0

    def __post_init__(self) -> None:
        if self.max_concurrent_calls < 1:
            raise ValueError("max_concurrent_calls must be >= 1")

    def channel_limit_delay(self, hits: int) -> float:
        """Back-off before the retry that follows the ``hits``-th capacity error."""
        delay = self.channel_limit_base_delay_seconds + self.channel_limit_delay_increment_seconds * hits
        return min(delay, self.channel_limit_max_delay_seconds)


class CallFlowSettings(BaseSettings):
    """Environment-backed call flow settings."""

    model_config = SettingsConfigDict(
        env_prefix="CALL_FLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    operator_number: str = Field(default="", description="Inbound calls are transferred here")
    min_answered_duration_seconds: float = Field(default=6.0, ge=0, le=120)
    default_hangup_delay_seconds: float = Field(default=2.0, ge=0, le=60)
    greeting_delay_seconds: float = Field(default=4.0, ge=0, le=30)
    decline_hangup_delay_seconds: float = Field(default=3.0, ge=0, le=60)

    sms_enabled: bool = True
    sms_from_number: str = Field(default="", description="Defaults to the telephony from number")
    sms_trigger_causes: str = Field(
        default=",".join(sorted(DEFAULT_SMS_TRIGGER_CAUSES)),
        description="Comma-separated hangup causes that trigger the fallback SMS",
    )

    speak_on_answer: bool | None = Field(
        default=None,
        description="Speak on call.answered; defaults to true only when AMD is disabled",
    )

    consent_flow_enabled: bool = False
    max_gather_attempts: int = Field(default=3, ge=1, le=10)
    consent_accept_digit: str = Field(default="1", min_length=1, max_length=1)
    consent_decline_digit: str = Field(default="2", min_length=1, max_length=1)
    gather_timeout_millis: int = Field(default=10_000, ge=1000, le=120_000)

    max_concurrent_calls: int = Field(default=8, ge=1, le=100)
    channel_limit_base_delay_seconds: float = Field(default=30.0, ge=0)
    channel_limit_delay_increment_seconds: float = Field(default=10.0, ge=0)
    channel_limit_max_delay_seconds: float = Field(default=120.0, ge=0)

    def to_call_flow_config(self, *, from_number: str = "", amd_enabled: bool = True) -> CallFlowConfig:
        causes = frozenset(c.strip().lower() for c in self.sms_trigger_causes.split(",") if c.strip())
        speak_on_answer = (not amd_enabled) if self.speak_on_answer is None else self.speak_on_answer
        return CallFlowConfig(
            operator_number=self.operator_number,
            min_answered_duration_seconds=self.min_answered_duration_seconds,
            default_hangup_delay_seconds=self.default_hangup_delay_seconds,
            greeting_delay_seconds=self.greeting_delay_seconds,
            decline_hangup_delay_seconds=self.decline_hangup_delay_seconds,
            sms_enabled=self.sms_enabled,
            sms_from_number=self.sms_from_number or from_number,
            sms_trigger_causes=causes,
            speak_on_answer=speak_on_answer,
            consent_flow_enabled=self.consent_flow_enabled,
            max_gather_attempts=self.max_gather_attempts,
            consent_accept_digit=self.consent_accept_digit,
            consent_decline_digit=self.consent_decline_digit,
            gather_timeout_millis=self.gather_timeout_millis,
        )

    def to_dispatcher_config(self) -> DispatcherConfig:
        return DispatcherConfig(
            max_concurrent_calls=self.max_concurrent_calls,
            channel_limit_base_delay_seconds=self.channel_limit_base_delay_seconds,
            channel_limit_delay_increment_seconds=self.channel_limit_delay_increment_seconds,
            channel_limit_max_delay_seconds=self.channel_limit_max_delay_seconds,
        )


def get_call_flow_settings() -> CallFlowSettings:
    return CallFlowSettings()
