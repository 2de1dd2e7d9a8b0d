"""
FastAPI router for Telnyx call-control webhooks.

The provider only needs a fast 200; events are handled after the response
is sent, and processing failures never change the acknowledgement.
"""

from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from broadcaster.dependencies import get_webhook_handler
from broadcaster.shared.logging import get_logger
from broadcaster.telephony.webhooks.handler import WebhookHandler

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhook", status_code=status.HTTP_200_OK)
@router.post("/call-control/webhook", status_code=status.HTTP_200_OK)
async def receive_webhook_event(
    request: Request,
    background_tasks: BackgroundTasks,
    handler: Annotated[WebhookHandler, Depends(get_webhook_handler)],
) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON (ACKing 200)")
        return {"received": True}

    if not isinstance(body, dict):
        logger.warning("Webhook body is not an object (ACKing 200)")
        return {"received": True}

    background_tasks.add_task(handler.handle_payload, body)
    return {"received": True}
