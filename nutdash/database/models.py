"""
SQLAlchemy database models for nutdash.

This module defines the tables the dashboard reads its NUT server
configuration and registered UPS devices from, plus the battery charge
history it appends to.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from nutdash.nut.models import DEFAULT_PORT, ServerEndpoint


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite does not keep tz info."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class NUTServer(Base):
    """
    A configured NUT server.

    Credentials are stored as given; how they are protected at rest is up
    to the deployment.
    """
    __tablename__ = "nut_servers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_PORT)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    ups_systems: Mapped[list["UPSSystem"]] = relationship(back_populates="nut_server")

    def to_endpoint(self) -> ServerEndpoint:
        return ServerEndpoint(
            id=self.id,
            host=self.host,
            port=self.port or DEFAULT_PORT,
            username=self.username or None,
            password=self.password or None,
        )


class UPSSystem(Base):
    """
    A UPS registered by a user, tied to a device name on one NUT server.
    """
    __tablename__ = "ups_systems"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ups_name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Device name on the NUT server")
    nut_server_id: Mapped[int] = mapped_column(ForeignKey("nut_servers.id"), nullable=False)

    nut_server: Mapped[NUTServer] = relationship(back_populates="ups_systems")

    __table_args__ = (
        UniqueConstraint("nut_server_id", "ups_name", name="uq_ups_systems_server_device"),
    )


class BatteryHistory(Base):
    """
    Battery charge history points, one per UPS per recording interval.
    """
    __tablename__ = "battery_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ups_id: Mapped[int] = mapped_column(ForeignKey("ups_systems.id"), nullable=False)
    charge_percent: Mapped[float] = mapped_column(Float, nullable=False, comment="Battery charge percentage (0-100)")
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_battery_history_ups_timestamp", "ups_id", "timestamp"),
    )
