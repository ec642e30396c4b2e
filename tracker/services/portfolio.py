from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable

from tracker.models import (
    Asset,
    PriceMap,
    Transaction,
    TransactionType,
    Wallet,
)
from tracker.services.valuation import (
    AssetMetrics,
    ChangeSummary,
    LedgerIssue,
    Performer,
    ProfitLoss,
    asset_metrics,
    find_ledger_issues,
    portfolio_24h_change,
    realized_pl,
    top_loser,
    top_performer,
    total_pl,
    total_unrealized_pl,
    total_value,
    wallet_24h_change,
)

IMPORTED_WALLET_NAME = "Imported Wallet"
OTHERS_LABEL = "Others"


@dataclass
class AllocationChartData:
    labels: list[str]
    values: list[float]
    percentages: list[float]


@dataclass
class PositionRow:
    asset_id: str
    symbol: str
    name: str
    current_price: float | None
    price_24h_change: float | None
    metrics: AssetMetrics
    realized_pl: float
    transaction_count: int


@dataclass
class WalletSummary:
    wallet_id: str
    name: str
    total_value: float
    change_24h: ChangeSummary
    positions: list[PositionRow]


@dataclass
class PortfolioSummary:
    total_value: float
    change_24h: ChangeSummary
    total_pl: ProfitLoss
    realized_pl: float
    unrealized_pl: float
    top_performer: Performer | None
    top_loser: Performer | None
    allocation: AllocationChartData
    wallets: list[WalletSummary]
    ledger_issues: list[LedgerIssue]


class InvalidPortfolioFile(ValueError):
    """Raised when an imported wallet file has neither known layout."""


def _replace_wallet(
    wallets: Iterable[Wallet], wallet_id: str, update
) -> list[Wallet]:
    return [update(wallet) if wallet.id == wallet_id else wallet for wallet in wallets]


def add_wallet(
    wallets: Iterable[Wallet], name: str, wallet_id: str | None = None
) -> list[Wallet]:
    """Append a new empty wallet; blank names are ignored."""
    current = list(wallets)
    clean_name = name.strip()
    if not clean_name:
        return current
    current.append(Wallet(id=wallet_id or str(uuid.uuid4()), name=clean_name))
    return current


def remove_wallet(wallets: Iterable[Wallet], wallet_id: str) -> list[Wallet]:
    return [wallet for wallet in wallets if wallet.id != wallet_id]


def add_asset_to_wallet(
    wallets: Iterable[Wallet], wallet_id: str, asset: Asset
) -> list[Wallet]:
    """Add an asset, merging its transactions into an existing entry with the same id."""

    def _update(wallet: Wallet) -> Wallet:
        if any(existing.id == asset.id for existing in wallet.assets):
            assets = tuple(
                replace(existing, transactions=existing.transactions + asset.transactions)
                if existing.id == asset.id
                else existing
                for existing in wallet.assets
            )
        else:
            assets = wallet.assets + (asset,)
        return replace(wallet, assets=assets)

    return _replace_wallet(wallets, wallet_id, _update)


def remove_asset_from_wallet(
    wallets: Iterable[Wallet], wallet_id: str, asset_id: str
) -> list[Wallet]:
    """Delete an asset and its whole transaction history from one wallet."""
    return _replace_wallet(
        wallets,
        wallet_id,
        lambda wallet: replace(
            wallet,
            assets=tuple(asset for asset in wallet.assets if asset.id != asset_id),
        ),
    )


def _replace_asset(wallet: Wallet, asset_id: str, update) -> Wallet:
    return replace(
        wallet,
        assets=tuple(
            update(asset) if asset.id == asset_id else asset for asset in wallet.assets
        ),
    )


def add_transaction(
    wallets: Iterable[Wallet],
    wallet_id: str,
    asset_id: str,
    transaction: Transaction,
) -> list[Wallet]:
    return _replace_wallet(
        wallets,
        wallet_id,
        lambda wallet: _replace_asset(
            wallet,
            asset_id,
            lambda asset: replace(asset, transactions=asset.transactions + (transaction,)),
        ),
    )


def remove_transaction(
    wallets: Iterable[Wallet],
    wallet_id: str,
    asset_id: str,
    transaction_id: str,
) -> list[Wallet]:
    return _replace_wallet(
        wallets,
        wallet_id,
        lambda wallet: _replace_asset(
            wallet,
            asset_id,
            lambda asset: replace(
                asset,
                transactions=tuple(
                    tx for tx in asset.transactions if tx.id != transaction_id
                ),
            ),
        ),
    )


def allocation_by_asset(
    wallets: Iterable[Wallet],
    prices: PriceMap,
    others_threshold_pct: float = 2.0,
) -> AllocationChartData:
    """Build chart slices per asset id across wallets, folding small slices into "Others".

    Over-sold assets get no slice but their negative value still counts in the
    total, so the remaining percentages can exceed 100, or go negative when
    the total itself is below zero.
    """
    transactions_by_id: dict[str, list[Transaction]] = {}
    symbols: dict[str, str] = {}
    for wallet in wallets:
        for asset in wallet.assets:
            transactions_by_id.setdefault(asset.id, []).extend(asset.transactions)
            symbols.setdefault(asset.id, asset.symbol)

    values_by_id = {
        asset_id: asset_metrics(
            txs, prices[asset_id].usd if asset_id in prices else 0.0
        ).market_value
        for asset_id, txs in transactions_by_id.items()
    }
    total = sum(values_by_id.values())
    if total == 0:
        return AllocationChartData(labels=[], values=[], percentages=[])

    slices: list[tuple[str, float, float]] = []
    others_value = 0.0
    others_pct = 0.0
    for asset_id, value in values_by_id.items():
        if value <= 0:
            continue
        pct = value / total * 100.0
        if pct > others_threshold_pct:
            slices.append((symbols[asset_id].upper(), value, pct))
        else:
            others_value += value
            others_pct += pct

    if others_value > 0:
        slices.append((OTHERS_LABEL, others_value, others_pct))

    slices.sort(key=lambda item: item[1], reverse=True)
    return AllocationChartData(
        labels=[label for label, _, _ in slices],
        values=[value for _, value, _ in slices],
        percentages=[pct for _, _, pct in slices],
    )


def build_position_row(asset: Asset, prices: PriceMap) -> PositionRow:
    """Compute one table row for a single asset in one wallet."""
    snapshot = prices.get(asset.id)
    current_price = snapshot.usd if snapshot is not None else None
    return PositionRow(
        asset_id=asset.id,
        symbol=asset.symbol,
        name=asset.name,
        current_price=current_price,
        price_24h_change=snapshot.usd_24h_change if snapshot is not None else None,
        metrics=asset_metrics(asset.transactions, current_price or 0.0),
        realized_pl=realized_pl(asset.transactions),
        transaction_count=len(asset.transactions),
    )


def build_summary(
    wallets: Iterable[Wallet],
    prices: PriceMap,
    others_threshold_pct: float = 2.0,
) -> PortfolioSummary:
    """Build dashboard data: headline stats, per-wallet rows and allocation."""
    wallet_list = list(wallets)

    wallet_rows: list[WalletSummary] = []
    for wallet in wallet_list:
        positions = [build_position_row(asset, prices) for asset in wallet.assets]
        wallet_rows.append(
            WalletSummary(
                wallet_id=wallet.id,
                name=wallet.name,
                total_value=sum(row.metrics.market_value for row in positions),
                change_24h=wallet_24h_change(wallet, prices),
                positions=positions,
            )
        )

    return PortfolioSummary(
        total_value=total_value(wallet_list, prices),
        change_24h=portfolio_24h_change(wallet_list, prices),
        total_pl=total_pl(wallet_list, prices),
        realized_pl=sum(row.realized_pl for wallet in wallet_rows for row in wallet.positions),
        unrealized_pl=total_unrealized_pl(wallet_list, prices),
        top_performer=top_performer(wallet_list, prices),
        top_loser=top_loser(wallet_list, prices),
        allocation=allocation_by_asset(wallet_list, prices, others_threshold_pct),
        wallets=wallet_rows,
        ledger_issues=find_ledger_issues(wallet_list),
    )


def _parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _finite_number(raw: Mapping[str, Any], key: str, default: float | None = None) -> float | None:
    value = raw.get(key)
    if value is None:
        return default
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{key} must be a finite number")
    return number


def _load_transaction(raw: Mapping[str, Any]) -> Transaction:
    quantity = _finite_number(raw, "quantity")
    if quantity is None or quantity <= 0:
        raise ValueError("quantity must be greater than zero")
    price = _finite_number(raw, "pricePerUnit", 0.0)
    fee = _finite_number(raw, "fee")
    if price < 0 or (fee is not None and fee < 0):
        raise ValueError("pricePerUnit and fee cannot be negative")
    return Transaction(
        id=str(raw.get("id") or uuid.uuid4()),
        type=TransactionType(raw["type"]),
        quantity=quantity,
        price_per_unit=price,
        date=_parse_date(raw["date"]),
        fee=fee,
        notes=raw.get("notes"),
    )


def _is_wallet_layout(data: list[Any]) -> bool:
    return all(
        isinstance(item, Mapping)
        and {"id", "name", "assets"} <= item.keys()
        and isinstance(item["assets"], list)
        for item in data
    )


def _is_legacy_layout(data: list[Any]) -> bool:
    return all(
        isinstance(item, Mapping) and {"id", "symbol", "name", "amount"} <= item.keys()
        for item in data
    )


def load_wallets(data: Any, imported_at: datetime | None = None) -> list[Wallet]:
    """Parse an exported wallet file.

    Accepts the wallet layout written by :func:`dump_wallets` and the older
    flat asset list (``id, symbol, name, amount``), which is wrapped into one
    wallet with each amount recorded as a transfer in.
    """
    if not isinstance(data, list):
        raise InvalidPortfolioFile("Wallet file must contain a JSON list")

    try:
        if _is_wallet_layout(data):
            return [
                Wallet(
                    id=str(item["id"]),
                    name=str(item["name"]),
                    assets=tuple(
                        Asset(
                            id=str(asset["id"]),
                            symbol=str(asset["symbol"]),
                            name=str(asset["name"]),
                            transactions=tuple(
                                _load_transaction(tx)
                                for tx in asset.get("transactions") or []
                            ),
                        )
                        for asset in item["assets"]
                    ),
                )
                for item in data
            ]

        if _is_legacy_layout(data):
            when = imported_at or datetime.now(timezone.utc)
            assets = tuple(
                Asset(
                    id=str(item["id"]),
                    symbol=str(item["symbol"]),
                    name=str(item["name"]),
                    transactions=(
                        Transaction(
                            id=str(uuid.uuid4()),
                            type=TransactionType.TRANSFER_IN,
                            quantity=float(item["amount"]),
                            price_per_unit=0.0,
                            date=when,
                        ),
                    ),
                )
                for item in data
                if 0 < float(item["amount"]) < math.inf
            )
            return [Wallet(id=str(uuid.uuid4()), name=IMPORTED_WALLET_NAME, assets=assets)]
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidPortfolioFile(f"Invalid portfolio file: {exc}") from exc

    raise InvalidPortfolioFile("Invalid portfolio file format")


def _dump_transaction(tx: Transaction) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": tx.id,
        "type": TransactionType(tx.type).value,
        "quantity": tx.quantity,
        "pricePerUnit": tx.price_per_unit,
        "date": tx.date.isoformat(),
    }
    if tx.fee is not None:
        out["fee"] = tx.fee
    if tx.notes:
        out["notes"] = tx.notes
    return out


def dump_wallets(wallets: Iterable[Wallet]) -> list[dict[str, Any]]:
    """Serialize wallets into the JSON layout accepted by :func:`load_wallets`."""
    return [
        {
            "id": wallet.id,
            "name": wallet.name,
            "assets": [
                {
                    "id": asset.id,
                    "symbol": asset.symbol,
                    "name": asset.name,
                    "transactions": [_dump_transaction(tx) for tx in asset.transactions],
                }
                for asset in wallet.assets
            ],
        }
        for wallet in wallets
    ]
