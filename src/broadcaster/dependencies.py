"""
Process-wide collaborators, built lazily and cached.

The state machine's lock table and delayed-action scheduler live for the
whole process, so every webhook request must share one instance.
"""

from functools import lru_cache

from broadcaster.calls.config import get_call_flow_settings
from broadcaster.calls.dispatcher import BatchDispatcher
from broadcaster.calls.memory_store import InMemoryCallStore
from broadcaster.calls.service import BroadcastService
from broadcaster.calls.sql_store import SqlCallStore
from broadcaster.calls.state_machine import CallStateMachine
from broadcaster.calls.store import CallRecordStore
from broadcaster.config import get_settings
from broadcaster.shared.database import get_database_manager
from broadcaster.shared.logging import get_logger
from broadcaster.telephony.factory import get_telephony_client, get_telephony_config
from broadcaster.telephony.webhooks.handler import WebhookHandler

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_call_store() -> CallRecordStore:
    backend = get_settings().store_backend
    logger.info("Call record store selected", extra={"backend": backend})
    if backend == "memory":
        return InMemoryCallStore()
    return SqlCallStore(get_database_manager())


@lru_cache(maxsize=1)
def get_state_machine() -> CallStateMachine:
    telephony_cfg = get_telephony_config()
    flow = get_call_flow_settings().to_call_flow_config(
        from_number=telephony_cfg.telnyx_from_number,
        amd_enabled=telephony_cfg.answering_machine_detection.lower() != "disabled",
    )
    return CallStateMachine(
        store=get_call_store(),
        client=get_telephony_client(),
        config=flow,
        voice=telephony_cfg.voice_options(),
    )


@lru_cache(maxsize=1)
def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(get_state_machine())


@lru_cache(maxsize=1)
def get_dispatcher() -> BatchDispatcher:
    return BatchDispatcher(
        store=get_call_store(),
        client=get_telephony_client(),
        telephony_config=get_telephony_config(),
        config=get_call_flow_settings().to_dispatcher_config(),
    )


@lru_cache(maxsize=1)
def get_broadcast_service() -> BroadcastService:
    return BroadcastService(
        store=get_call_store(),
        client=get_telephony_client(),
        channel_limit=get_settings().channel_limit,
    )


def reset_dependencies() -> None:
    """Drop every cached collaborator (tests, reconfiguration)."""
    for getter in (
        get_call_store,
        get_state_machine,
        get_webhook_handler,
        get_dispatcher,
        get_broadcast_service,
        get_telephony_client,
        get_telephony_config,
    ):
        getter.cache_clear()
