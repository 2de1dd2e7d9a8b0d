"""
Telephony client factory.

Single source of truth for configuration: TelephonyConfig (pydantic settings,
OS env + .env). Never read raw os.getenv("TELNYX_*") here.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from broadcaster.telephony.config import ProviderType, TelephonyConfig
from broadcaster.telephony.config import get_telephony_config as _load_telephony_config
from broadcaster.telephony.interface import TelephonyClient
from broadcaster.telephony.mock_adapter import MockTelephonyAdapter
from broadcaster.telephony.telnyx_adapter import TelnyxAdapter

logger = logging.getLogger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    """Return the cached TelephonyConfig."""
    return _load_telephony_config()


def build_telephony_client(cfg: TelephonyConfig) -> TelephonyClient:
    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "telnyx_api_key": _mask(cfg.telnyx_api_key),
            "telnyx_from_number": cfg.telnyx_from_number,
            "webhook_url": cfg.get_webhook_url(),
            "answering_machine_detection": cfg.answering_machine_detection,
        },
    )

    if cfg.provider_type == ProviderType.TELNYX:
        return TelnyxAdapter(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockTelephonyAdapter()

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")


@lru_cache(maxsize=1)
def get_telephony_client() -> TelephonyClient:
    """Create and cache the telephony client."""
    return build_telephony_client(get_telephony_config())
