from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .domain import MarketStatus, utcnow


class Event(Base):
    __tablename__ = "events"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    ticker: Mapped[str | None] = mapped_column(String, nullable=True)
    slug: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=MarketStatus.ACTIVE.value)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    creation_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    volume: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    liquidity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    active: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    closed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    archived: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    featured: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    restricted: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    new: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    market_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    url: Mapped[str | None] = mapped_column(String, nullable=True)
    last_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    markets: Mapped[list[Market]] = relationship("Market", back_populates="event")


class Market(Base):
    __tablename__ = "markets"

    market_id: Mapped[str] = mapped_column(String, primary_key=True)
    event_id: Mapped[str | None] = mapped_column(String, ForeignKey("events.event_id"), nullable=True)
    question: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False, default=MarketStatus.ACTIVE.value)
    slug: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    question_id: Mapped[str | None] = mapped_column(String, nullable=True)
    condition_id: Mapped[str | None] = mapped_column(String, nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    volume_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    liquidity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    winning_outcome: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_ambiguous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    url: Mapped[str | None] = mapped_column(String, nullable=True)

    event: Mapped[Event | None] = relationship("Event", back_populates="markets")
    outcomes: Mapped[list[Outcome]] = relationship(
        "Outcome",
        back_populates="market",
        cascade="all, delete-orphan",
        order_by="Outcome.position",
    )


class Outcome(Base):
    __tablename__ = "outcomes"
    __table_args__ = (UniqueConstraint("market_id", "position", name="uq_outcome_position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[str] = mapped_column(String, ForeignKey("markets.market_id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String, nullable=False)
    token_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    winner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    market: Mapped[Market] = relationship("Market", back_populates="outcomes")


class TrackerState(Base):
    __tablename__ = "tracker_state"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    last_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    saved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
