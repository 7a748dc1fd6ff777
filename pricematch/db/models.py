"""SQLAlchemy database models."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class PriceLookup(Base):
    """Canonical product with its national average price.

    One row per canonical key. ``avg_price_ils`` is the mean of every
    chain price sharing the key.
    """

    __tablename__ = "price_lookup"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    canonical_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    avg_price_ils: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class ChainPrice(Base):
    """Price of a canonical product at one supermarket chain."""

    __tablename__ = "chain_prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    canonical_key: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    chain_name: Mapped[str] = mapped_column(String(64), nullable=False)
    price_ils: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("canonical_key", "chain_name", name="uq_chain_price_key_chain"),
    )


class PriceCache(Base):
    """Normalized query -> resolved canonical key.

    A NULL ``canonical_key`` records a confident negative.
    """

    __tablename__ = "price_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    query: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    canonical_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avg_price_ils: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    confidence: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0"), nullable=False)
    sample_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: utcnow() + timedelta(days=30),
        nullable=False,
    )

