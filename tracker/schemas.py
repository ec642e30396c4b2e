"""
Pydantic request schemas for the portfolio API.

These are the input validation layer in front of the valuation engine:
- quantities must be positive
- NaN and infinity are rejected everywhere
- prices and fees cannot be negative
- transaction types are restricted to the four ledger events
- dates must be ISO-8601

Wallet payloads use the same field names as exported wallet files
(``pricePerUnit``), so an export can be posted back unchanged.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from tracker.models import Asset, PriceSnapshot, Transaction, TransactionType, Wallet


class TransactionIn(BaseModel):
    """One ledger event as submitted by a client."""

    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: TransactionType
    quantity: float = Field(..., gt=0, description="Units of the asset")
    price_per_unit: float = Field(
        0.0,
        ge=0,
        alias="pricePerUnit",
        description="USD per unit; ignored for transfers",
    )
    fee: float | None = Field(None, ge=0, description="Fee in USD")
    date: datetime
    notes: str | None = None

    def to_domain(self) -> Transaction:
        return Transaction(
            id=self.id,
            type=self.type,
            quantity=self.quantity,
            price_per_unit=self.price_per_unit,
            date=self.date,
            fee=self.fee,
            notes=self.notes,
        )


class AssetIn(BaseModel):
    id: str = Field(..., min_length=1, description="Price-feed id, e.g. 'bitcoin'")
    symbol: str
    name: str
    transactions: list[TransactionIn] = Field(default_factory=list)

    def to_domain(self) -> Asset:
        return Asset(
            id=self.id,
            symbol=self.symbol,
            name=self.name,
            transactions=tuple(tx.to_domain() for tx in self.transactions),
        )


class WalletIn(BaseModel):
    id: str
    name: str
    assets: list[AssetIn] = Field(default_factory=list)

    def to_domain(self) -> Wallet:
        return Wallet(
            id=self.id,
            name=self.name,
            assets=tuple(asset.to_domain() for asset in self.assets),
        )


class PriceSnapshotIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    usd: float = Field(..., ge=0)
    usd_24h_change: float | None = None
    usd_7d_change: float | None = None
    market_cap_rank: int | None = None

    def to_domain(self) -> PriceSnapshot:
        return PriceSnapshot(
            usd=self.usd,
            usd_24h_change=self.usd_24h_change,
            usd_7d_change=self.usd_7d_change,
            market_cap_rank=self.market_cap_rank,
        )


class PortfolioRequest(BaseModel):
    """Wallets to value, with optional prices; omitted prices come from the price cache."""

    wallets: list[WalletIn] = Field(default_factory=list)
    prices: dict[str, PriceSnapshotIn] | None = None


class AssetMetricsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    transactions: list[TransactionIn] = Field(default_factory=list)
    current_price: float = Field(0.0, ge=0, alias="currentPrice")
