"""
SQLAlchemy ORM models for persistent storage.

Synced tables (owner scoped): collected_cards, binders, binder_entries.
Catalog tables (read-only here, filled by the catalog sync job): sets, cards.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CollectedCardDB(Base):
    """
    Owned count for one card of one owner.

    INVARIANT: count >= 1. A count of zero is represented by deleting the row.
    """

    __tablename__ = "collected_cards"
    __table_args__ = (UniqueConstraint("owner_id", "card_image_id", name="uq_owner_card"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    card_image_id: Mapped[str] = mapped_column(String(64), index=True)
    count: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<CollectedCardDB(card={self.card_image_id}, count={self.count})>"


class BinderDB(Base):
    """A user-created binder."""

    __tablename__ = "binders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(255))
    binder_size: Mapped[int] = mapped_column(Integer, default=3)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    entries: Mapped[list["BinderEntryDB"]] = relationship(
        back_populates="binder", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<BinderDB(id={self.id}, name={self.name})>"


class BinderEntryDB(Base):
    """
    One copy of a card filed in a binder.

    The card is stored as a denormalized snapshot in ``card_data`` so the
    binder keeps rendering even if the catalog later changes. ``id`` is the
    membership id; it is autoincrementing and so also records insertion order.
    """

    __tablename__ = "binder_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    binder_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("binders.id", ondelete="CASCADE"), index=True
    )
    # Duplicated from the binder so change notifications can be owner scoped
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    card_image_id: Mapped[str] = mapped_column(String(64), index=True)
    card_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    binder: Mapped["BinderDB"] = relationship(back_populates="entries")

    def __repr__(self) -> str:
        return f"<BinderEntryDB(binder={self.binder_id}, card={self.card_image_id})>"


class SetDB(Base):
    """A released card set in the catalog."""

    __tablename__ = "sets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)

    def __repr__(self) -> str:
        return f"<SetDB(id={self.id}, name={self.name})>"


class CardDB(Base):
    """
    A card in the catalog.

    Numeric-looking fields (cost, power, counter) are kept as text because
    the upstream source is inconsistent about their types.
    """

    __tablename__ = "cards"

    card_image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    card_set_id: Mapped[str] = mapped_column(String(64), index=True)
    set_code: Mapped[str] = mapped_column(String(32), index=True)
    set_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_name: Mapped[str] = mapped_column(String(255))
    rarity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    card_color: Mapped[str | None] = mapped_column(String(64), nullable=True)
    card_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cost: Mapped[str | None] = mapped_column(String(16), nullable=True)
    power: Mapped[str | None] = mapped_column(String(16), nullable=True)
    counter: Mapped[str | None] = mapped_column(String(16), nullable=True)
    attribute: Mapped[str | None] = mapped_column(String(64), nullable=True)
    card_effect: Mapped[str | None] = mapped_column(Text, nullable=True)
    card_trigger: Mapped[str | None] = mapped_column(Text, nullable=True)
    card_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    market_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<CardDB(id={self.card_image_id}, name={self.card_name})>"
