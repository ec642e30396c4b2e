from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import Date, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tracker.db import Base


def utc_now() -> datetime:
    """Return an aware UTC timestamp."""
    return datetime.now(timezone.utc)


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"


@dataclass(frozen=True)
class Transaction:
    """One ledger event for one asset. Never edited in place."""

    id: str
    type: TransactionType
    quantity: float
    price_per_unit: float
    date: datetime
    fee: float | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Asset:
    """A holding inside one wallet; ``id`` is the price-feed key."""

    id: str
    symbol: str
    name: str
    transactions: tuple[Transaction, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Wallet:
    id: str
    name: str
    assets: tuple[Asset, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PriceSnapshot:
    """Point-in-time market data for one asset id."""

    usd: float
    usd_24h_change: float | None = None
    usd_7d_change: float | None = None
    market_cap_rank: int | None = None


PriceMap = Mapping[str, PriceSnapshot]


class PriceCache(Base):
    __tablename__ = "price_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    asset_id: Mapped[str] = mapped_column(
        String(128), unique=True, nullable=False, index=True
    )
    usd: Mapped[float] = mapped_column(Float, nullable=False)
    usd_24h_change: Mapped[float | None] = mapped_column(Float, nullable=True)
    usd_7d_change: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_cap_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def to_snapshot(self) -> PriceSnapshot:
        return PriceSnapshot(
            usd=float(self.usd),
            usd_24h_change=self.usd_24h_change,
            usd_7d_change=self.usd_7d_change,
            market_cap_rank=self.market_cap_rank,
        )


class PortfolioSnapshotRecord(Base):
    __tablename__ = "portfolio_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    day: Mapped[date] = mapped_column(Date, unique=True, nullable=False, index=True)
    total_value: Mapped[float] = mapped_column(Float, nullable=False)
    total_unrealized_pl: Mapped[float] = mapped_column(
        Float, default=0.0, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
