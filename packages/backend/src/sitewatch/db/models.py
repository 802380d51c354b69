"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic generates migrations by comparing these
models to the actual DB.

Key concepts:
- Integer identity primary keys (ids travel in channel names: bridge-5)
- JSONB for the free-form bridge response body
- PostgreSQL ARRAY for snapshot URLs
- A CHECK constraint keeps read_at and is_read consistent
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════
# Sites, bridges, cameras
# ══════════════════════════════════════════════════════════════


class Site(Base):
    """A monitored location. Tenancy boundary for alarms."""

    __tablename__ = "site"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    arm_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="disarmed"
    )  # armed, disarmed
    arm_status_changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    bridges: Mapped[list["Bridge"]] = relationship(back_populates="site")


class Bridge(Base):
    """A network device that mediates a site's cameras.

    Learn: site_id is nullable — a bridge with no site is unclaimed and
    available for claiming. Bridges listen on channel bridge-{id}.
    """

    __tablename__ = "bridge"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bridge_name: Mapped[str] = mapped_column(String(200), nullable=False)
    bridge_uuid: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), unique=True, nullable=False
    )
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    site_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("site.id"), nullable=True
    )
    healthy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    site: Mapped[Optional["Site"]] = relationship(back_populates="bridges")
    cameras: Mapped[list["Camera"]] = relationship(back_populates="bridge")


class Camera(Base):
    """A camera owned by exactly one bridge."""

    __tablename__ = "camera"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bridge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bridge.id"), nullable=False
    )
    camera_name: Mapped[str] = mapped_column(String(200), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    is_registered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    healthy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    bridge: Mapped["Bridge"] = relationship(back_populates="cameras")


# ══════════════════════════════════════════════════════════════
# Alarms and bridge responses
# ══════════════════════════════════════════════════════════════


class Alarm(Base):
    """A security alarm raised by a camera.

    Learn: Alarms are created by the ingestion path (bridge SMTP/ONVIF
    handlers) and only ever mutated here by mark-read. read_at is set
    exactly when is_read is true — enforced by a CHECK constraint.
    """

    __tablename__ = "alarm"
    __table_args__ = (
        CheckConstraint(
            "(is_read AND read_at IS NOT NULL) OR (NOT is_read AND read_at IS NULL)",
            name="ck_alarm_read_state",
        ),
        Index("ix_alarm_site_unread", "site_id", "is_read"),
        Index("ix_alarm_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("site.id"), nullable=False
    )
    bridge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bridge.id"), nullable=False
    )
    camera_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("camera.id"), nullable=False
    )
    alarm_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # motion, door, system, ...
    alarm_name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_alarm_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    snapshot_urls: Mapped[Optional[list[str]]] = mapped_column(
        ARRAY(Text), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )


class Response(Base):
    """A bridge's reply to one command, keyed by request_id.

    Learn: Bridges INSERT here; the row_changes trigger turns the insert
    into a NOTIFY that the waiting correlator picks up. Rows persist, but
    the core only ever consumes the first one per request_id.
    """

    __tablename__ = "response"
    __table_args__ = (
        Index("ix_response_request_id", "request_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bridge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bridge.id"), nullable=False
    )
    request_id: Mapped[str] = mapped_column(String(36), nullable=False)
    requester_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    request_path: Mapped[str] = mapped_column(String(500), nullable=False)
    response_body: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default="{}"
    )  # {success, data?, error?}
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
