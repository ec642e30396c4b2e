from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from tracker.models import PriceMap, TransactionType, Wallet


@dataclass
class AssetMetrics:
    current_quantity: float
    avg_buy_price: float
    market_value: float
    unrealized_pl: float


@dataclass
class ChangeSummary:
    change_value: float
    change_percentage: float


@dataclass
class ProfitLoss:
    pl_value: float
    pl_percentage: float


@dataclass
class Performer:
    id: str
    name: str
    symbol: str
    change: float


@dataclass
class LedgerIssue:
    wallet_id: str
    wallet_name: str
    asset_id: str
    symbol: str
    current_quantity: float


def _tx_type(value: object) -> str:
    tx_type = getattr(value, "type")
    if isinstance(tx_type, TransactionType):
        return tx_type.value
    return str(tx_type)


def _tx_quantity(value: object):
    return getattr(value, "quantity")


def _tx_price(value: object):
    return getattr(value, "price_per_unit", 0.0) or 0.0


def _tx_fee(value: object):
    fee = getattr(value, "fee", None)
    return 0.0 if fee is None else fee


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _tx_date(value: object) -> datetime:
    raw = getattr(value, "date")
    if isinstance(raw, str):
        # fromisoformat only accepts the "Z" suffix from Python 3.11 on.
        raw = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return _as_utc(raw)


def _price_of(prices: PriceMap, asset_id: str) -> float:
    snapshot = prices.get(asset_id)
    if snapshot is None:
        return 0.0
    return snapshot.usd


def _change_of(prices: PriceMap, asset_id: str) -> float | None:
    snapshot = prices.get(asset_id)
    if snapshot is None:
        return None
    return snapshot.usd_24h_change


def sort_transactions(transactions: Iterable[object]) -> list[object]:
    """Sort transactions by date; equal timestamps keep insertion order."""
    return sorted(transactions, key=_tx_date)


def asset_metrics(transactions: Iterable[object], current_price: float) -> AssetMetrics:
    """Holding snapshot for one asset using the lifetime average buy cost.

    Sells and transfers change the quantity only. The average is never
    reduced by earlier sells, and the quantity is not clamped: an over-sold
    ledger yields a negative ``current_quantity``.
    """
    bought_qty = 0.0
    cost_basis = 0.0
    sold_qty = 0.0
    transfer_in_qty = 0.0
    transfer_out_qty = 0.0

    for tx in transactions:
        tx_type = _tx_type(tx)
        quantity = _tx_quantity(tx)
        if tx_type == TransactionType.BUY.value:
            bought_qty += quantity
            cost_basis += quantity * _tx_price(tx) + _tx_fee(tx)
        elif tx_type == TransactionType.SELL.value:
            sold_qty += quantity
        elif tx_type == TransactionType.TRANSFER_IN.value:
            transfer_in_qty += quantity
        elif tx_type == TransactionType.TRANSFER_OUT.value:
            transfer_out_qty += quantity

    current_quantity = bought_qty + transfer_in_qty - sold_qty - transfer_out_qty
    avg_buy_price = cost_basis / bought_qty if bought_qty > 0 else 0.0
    market_value = current_quantity * current_price
    unrealized_pl = (
        market_value - current_quantity * avg_buy_price if bought_qty > 0 else 0.0
    )
    return AssetMetrics(
        current_quantity=current_quantity,
        avg_buy_price=avg_buy_price,
        market_value=market_value,
        unrealized_pl=unrealized_pl,
    )


def total_value(wallets: Iterable[Wallet], prices: PriceMap) -> float:
    """Market value of every asset in every wallet; unpriced assets count as 0."""
    total = 0.0
    for wallet in wallets:
        for asset in wallet.assets:
            total += asset_metrics(asset.transactions, _price_of(prices, asset.id)).market_value
    return total


def total_unrealized_pl(wallets: Iterable[Wallet], prices: PriceMap) -> float:
    """Sum of per-asset unrealized P/L across all wallets."""
    total = 0.0
    for wallet in wallets:
        for asset in wallet.assets:
            total += asset_metrics(asset.transactions, _price_of(prices, asset.id)).unrealized_pl
    return total


def portfolio_24h_change(wallets: Iterable[Wallet], prices: PriceMap) -> ChangeSummary:
    """Estimate the 24h value change from each asset's reported percentage.

    Today's quantity is assumed to have been held for the whole window. An
    asset without a usable change figure is counted as unchanged.
    """
    value_now = 0.0
    value_24h_ago = 0.0

    for wallet in wallets:
        for asset in wallet.assets:
            price = _price_of(prices, asset.id)
            quantity = asset_metrics(asset.transactions, price).current_quantity
            if not quantity > 0:
                continue

            asset_value_now = quantity * price
            value_now += asset_value_now

            change = _change_of(prices, asset.id)
            growth = 1 + change / 100 if change is not None else None
            if growth is not None and growth > 0:
                value_24h_ago += quantity * (price / growth)
            else:
                value_24h_ago += asset_value_now

    if value_24h_ago == 0:
        return ChangeSummary(change_value=0.0, change_percentage=0.0)

    change_value = value_now - value_24h_ago
    return ChangeSummary(
        change_value=change_value,
        change_percentage=change_value / value_24h_ago * 100,
    )


def wallet_24h_change(wallet: Wallet, prices: PriceMap) -> ChangeSummary:
    """Single-wallet variant of :func:`portfolio_24h_change`."""
    return portfolio_24h_change([wallet], prices)


def total_pl(wallets: Iterable[Wallet], prices: PriceMap) -> ProfitLoss:
    """Lifetime P/L of the whole portfolio: holdings value plus net sell proceeds minus costs."""
    total_cost_basis = 0.0
    total_market_value = 0.0
    total_value_realized = 0.0

    for wallet in wallets:
        for asset in wallet.assets:
            for tx in asset.transactions:
                tx_type = _tx_type(tx)
                if tx_type == TransactionType.BUY.value:
                    total_cost_basis += _tx_quantity(tx) * _tx_price(tx) + _tx_fee(tx)
                elif tx_type == TransactionType.SELL.value:
                    total_value_realized += _tx_quantity(tx) * _tx_price(tx) - _tx_fee(tx)
                elif tx_type in (
                    TransactionType.TRANSFER_IN.value,
                    TransactionType.TRANSFER_OUT.value,
                ):
                    total_cost_basis += _tx_fee(tx)

            price = _price_of(prices, asset.id)
            quantity = asset_metrics(asset.transactions, price).current_quantity
            if quantity > 0:
                total_market_value += quantity * price

    if total_cost_basis == 0:
        return ProfitLoss(pl_value=0.0, pl_percentage=0.0)

    pl_value = total_market_value + total_value_realized - total_cost_basis
    return ProfitLoss(pl_value=pl_value, pl_percentage=pl_value / total_cost_basis * 100)


def realized_pl(transactions: Iterable[object]) -> float:
    """Realized P/L of one asset with running average-cost lot accounting.

    Transactions are sorted by date here, so callers may pass them in any
    order. Quantity and cost basis are clamped to zero once a sell or
    transfer-out takes the position to zero or below.
    """
    current_quantity = 0.0
    total_cost_basis = 0.0
    realized = 0.0

    for tx in sort_transactions(transactions):
        tx_type = _tx_type(tx)
        quantity = _tx_quantity(tx)
        fee = _tx_fee(tx)

        if tx_type == TransactionType.BUY.value:
            current_quantity += quantity
            total_cost_basis += quantity * _tx_price(tx) + fee
        elif tx_type == TransactionType.SELL.value:
            if current_quantity > 0:
                avg_cost = total_cost_basis / current_quantity
                realized += quantity * _tx_price(tx) - avg_cost * quantity - fee
                total_cost_basis -= avg_cost * quantity
            else:
                realized -= fee
            current_quantity -= quantity
        elif tx_type == TransactionType.TRANSFER_IN.value:
            current_quantity += quantity
            total_cost_basis += fee
            realized -= fee
        elif tx_type == TransactionType.TRANSFER_OUT.value:
            if current_quantity > 0:
                total_cost_basis -= total_cost_basis / current_quantity * quantity
            current_quantity -= quantity
            realized -= fee
        else:
            continue

        if current_quantity <= 0:
            current_quantity = 0.0
            total_cost_basis = 0.0

    return realized


def _ranked_assets(wallets: Iterable[Wallet], prices: PriceMap):
    for wallet in wallets:
        for asset in wallet.assets:
            change = _change_of(prices, asset.id)
            if change is None:
                continue
            quantity = asset_metrics(asset.transactions, _price_of(prices, asset.id)).current_quantity
            if quantity > 0:
                yield asset, change


def top_performer(wallets: Iterable[Wallet], prices: PriceMap) -> Performer | None:
    """Held asset with the largest 24h change; the first one wins ties."""
    best: Performer | None = None
    for asset, change in _ranked_assets(wallets, prices):
        if best is None or change > best.change:
            best = Performer(id=asset.id, name=asset.name, symbol=asset.symbol, change=change)
    return best


def top_loser(wallets: Iterable[Wallet], prices: PriceMap) -> Performer | None:
    """Held asset with the most negative 24h change, or None if nothing fell."""
    worst: Performer | None = None
    lowest = 0.0
    for asset, change in _ranked_assets(wallets, prices):
        if change < lowest:
            lowest = change
            worst = Performer(id=asset.id, name=asset.name, symbol=asset.symbol, change=change)
    return worst


def get_asset_ids(wallets: Iterable[Wallet]) -> list[str]:
    """Unique asset ids across all wallets, in first-seen order."""
    ids: dict[str, None] = {}
    for wallet in wallets:
        for asset in wallet.assets:
            ids.setdefault(asset.id, None)
    return list(ids)


def find_ledger_issues(wallets: Iterable[Wallet]) -> list[LedgerIssue]:
    """List holdings whose sells and transfers-out exceed what was acquired."""
    issues: list[LedgerIssue] = []
    for wallet in wallets:
        for asset in wallet.assets:
            quantity = asset_metrics(asset.transactions, 0.0).current_quantity
            if quantity < 0:
                issues.append(
                    LedgerIssue(
                        wallet_id=wallet.id,
                        wallet_name=wallet.name,
                        asset_id=asset.id,
                        symbol=asset.symbol,
                        current_quantity=quantity,
                    )
                )
    return issues
