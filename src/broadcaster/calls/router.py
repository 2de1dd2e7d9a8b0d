"""
FastAPI router for broadcast control endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, status

from broadcaster.calls.dispatcher import BatchDispatcher
from broadcaster.calls.schemas import (
    CallCountsResponse,
    CallStatusResponse,
    CancelCallsData,
    CancelCallsRequest,
    CancelCallsResponse,
    ChannelStatusData,
    ChannelStatusResponse,
    MakeCallData,
    MakeCallRequest,
    MakeCallResponse,
)
from broadcaster.calls.service import BroadcastService
from broadcaster.dependencies import get_broadcast_service, get_dispatcher

router = APIRouter(prefix="/api", tags=["calls"])


@router.post(
    "/make-call",
    response_model=MakeCallResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "No valid phone number or no content"}},
)
async def make_call(
    payload: MakeCallRequest,
    dispatcher: Annotated[BatchDispatcher, Depends(get_dispatcher)],
) -> MakeCallResponse:
    """Start a broadcast: one call per comma-separated phone number.

    ``callSids`` has exactly one entry per valid number, in input order;
    entries for calls the provider never confirmed are synthetic ids.
    """
    result = await dispatcher.dispatch(
        payload.phone_numbers(),
        payload.contacts(),
        payload.scripts(),
    )
    return MakeCallResponse(data=MakeCallData.from_result(result))


@router.post(
    "/call-status/{call_id}",
    response_model=CallStatusResponse,
    responses={404: {"description": "Call not found"}},
)
async def call_status(
    call_id: str,
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
) -> CallStatusResponse:
    record = await service.get_call_status(call_id)
    return CallStatusResponse(data=record)


@router.get("/call-counts", response_model=CallCountsResponse)
async def call_counts(
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
    broadcast_id: Annotated[str | None, Query(alias="broadcastId")] = None,
) -> CallCountsResponse:
    counts = await service.get_call_counts(broadcast_id)
    return CallCountsResponse(data=counts.as_dict())


@router.post("/cancel-all-calls", response_model=CancelCallsResponse)
async def cancel_all_calls(
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
    payload: Annotated[CancelCallsRequest | None, Body()] = None,
) -> CancelCallsResponse:
    broadcast_id = payload.broadcast_id if payload else None
    count = await service.cancel_calls(broadcast_id)
    return CancelCallsResponse(
        message=f"Canceled {count} calls",
        data=CancelCallsData(canceled_count=count, broadcast_id=broadcast_id),
    )


@router.get("/channel-status", response_model=ChannelStatusResponse)
async def channel_status(
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
) -> ChannelStatusResponse:
    channel = await service.get_channel_status()
    return ChannelStatusResponse(data=ChannelStatusData.from_status(channel))
