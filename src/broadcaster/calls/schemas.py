"""
Pydantic schemas for the broadcast API.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from broadcaster.calls.dispatcher import Contact, DispatchResult
from broadcaster.calls.records import CallRecord
from broadcaster.calls.service import ChannelStatus


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated field, keeping positions (blanks stay blank)."""
    if not value:
        return []
    return [part.strip() for part in value.split(",")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MakeCallRequest(BaseModel):
    """Broadcast request body.

    Field names follow the public form contract (lower-case, snake-case).
    """

    phonenumber: str = Field(default="", description="Comma-separated destination numbers")
    contact_id: str | None = Field(default=None, description="Comma-separated contact ids")
    contact_name: str | None = Field(default=None, description="Comma-separated contact names")
    content: str | list[str] | None = Field(default=None, description="One script or one per destination")

    @field_validator("phonenumber")
    @classmethod
    def _strip_phonenumber(cls, v: str) -> str:
        return v.strip()

    def phone_numbers(self) -> list[str]:
        return split_csv(self.phonenumber)

    def contacts(self) -> list[Contact]:
        ids = split_csv(self.contact_id)
        names = split_csv(self.contact_name)
        size = max(len(ids), len(names))
        return [
            Contact(
                contact_id=ids[i] if i < len(ids) else None,
                name=names[i] if i < len(names) else None,
            )
            for i in range(size)
        ]

    def scripts(self) -> list[str]:
        if self.content is None:
            return []
        if isinstance(self.content, str):
            return [self.content]
        return list(self.content)


class CallResultItem(CamelModel):
    phone: str
    call_sid: str
    contact_id: str
    contact_name: str
    success: bool
    is_synthetic: bool = False
    error: str | None = None


class MakeCallData(CamelModel):
    broadcast_id: str
    call_sids: list[str]
    total_calls: int
    successful_calls: int
    failed_calls: int
    synthetic_calls: int
    channel_limit_hits: int
    results: list[CallResultItem]
    errors: list[dict[str, str]]
    recommendations: list[str]

    @classmethod
    def from_result(cls, result: DispatchResult) -> "MakeCallData":
        return cls(
            broadcast_id=result.broadcast_id,
            call_sids=result.call_ids,
            total_calls=result.total_calls,
            successful_calls=result.successful_calls,
            failed_calls=result.failed_calls,
            synthetic_calls=result.synthetic_calls,
            channel_limit_hits=result.channel_limit_hits,
            results=[
                CallResultItem(
                    phone=o.phone_number,
                    call_sid=o.call_id,
                    contact_id=o.contact_id,
                    contact_name=o.contact_name,
                    success=o.success,
                    is_synthetic=o.is_synthetic,
                    error=o.error,
                )
                for o in result.outcomes
            ],
            errors=result.reported_errors,
            recommendations=result.recommendations,
        )


class MakeCallResponse(CamelModel):
    success: bool = True
    data: MakeCallData


class CallStatusResponse(CamelModel):
    success: bool = True
    data: CallRecord


class CallCountsResponse(CamelModel):
    success: bool = True
    data: dict[str, int]


class CancelCallsRequest(CamelModel):
    broadcast_id: str | None = None


class CancelCallsData(CamelModel):
    canceled_count: int
    broadcast_id: str | None = None


class CancelCallsResponse(CamelModel):
    success: bool = True
    message: str
    data: CancelCallsData


class ChannelCapacity(CamelModel):
    current: int
    limit: int
    utilization: int
    status: str


class ChannelStatusData(CamelModel):
    total_active_calls: int
    pending_calls: int
    ringing_calls: int
    channel_capacity: ChannelCapacity
    recommendations: list[str]

    @classmethod
    def from_status(cls, channel: ChannelStatus) -> "ChannelStatusData":
        return cls(
            total_active_calls=channel.total_active,
            pending_calls=channel.pending_calls,
            ringing_calls=channel.ringing_calls,
            channel_capacity=ChannelCapacity(
                current=channel.total_active,
                limit=channel.limit,
                utilization=channel.utilization,
                status=channel.level,
            ),
            recommendations=channel.recommendations,
        )


class ChannelStatusResponse(CamelModel):
    success: bool = True
    data: ChannelStatusData
