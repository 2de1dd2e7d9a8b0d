"""
Telephony provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from broadcaster.telephony.interface import VoiceOptions


class ProviderType(str, Enum):
    """Supported telephony provider types."""

    TELNYX = "telnyx"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider selection
    provider_type: ProviderType = Field(default=ProviderType.TELNYX)

    # Provider credentials
    telnyx_api_key: str = Field(default="")
    telnyx_api_base_url: str = Field(default="https://api.telnyx.com/v2")
    telnyx_connection_id: str = Field(default="")
    telnyx_from_number: str = Field(default="")
    telnyx_messaging_profile_id: str = Field(default="")

    # Webhook base URL the provider posts call events to
    webhook_base_url: str = Field(default="http://localhost:8000")
    webhook_path: str = Field(default="/call-control/webhook")

    # Call creation
    answering_machine_detection: str = Field(
        default="premium",
        description="premium|detect|detect_words|detect_beep|greeting_end|disabled",
    )

    # Speech
    voice: str = Field(default="AWS.Polly.Danielle-Neural")
    language: str = Field(default="en-US")
    service_level: str = Field(default="premium")

    request_timeout_seconds: float = Field(default=30.0, gt=0, le=120)

    def get_webhook_url(self, path: str | None = None) -> str:
        base = self.webhook_base_url.rstrip("/")
        return f"{base}{path or self.webhook_path}"

    def voice_options(self) -> VoiceOptions:
        return VoiceOptions(
            voice=self.voice,
            language=self.language,
            service_level=self.service_level,
        )


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
