"""
SQLAlchemy models for the call record document store.

Each call and each broadcast is one JSON document keyed by its identifier.
Status and broadcast id are mirrored into indexed columns for queries.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from broadcaster.shared.database import Base


class CallDocument(Base):
    """Call record document."""

    __tablename__ = "call_records"

    call_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    broadcast_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
        default="pending",
    )
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<CallDocument(call_id={self.call_id}, status={self.status})>"


class BroadcastDocument(Base):
    """Broadcast session document."""

    __tablename__ = "broadcast_sessions"

    broadcast_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    total_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<BroadcastDocument(broadcast_id={self.broadcast_id}, status={self.status})>"
