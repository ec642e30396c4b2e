from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tracker.db import get_db
from tracker.models import PriceMap, Wallet
from tracker.schemas import AssetMetricsRequest, PortfolioRequest
from tracker.services.history import get_history, record_snapshot
from tracker.services.portfolio import (
    InvalidPortfolioFile,
    build_summary,
    dump_wallets,
    load_wallets,
)
from tracker.services.valuation import asset_metrics, get_asset_ids, realized_pl

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["portfolio"])


def _commit_cache_updates(db: Session) -> None:
    """Best-effort commit for cache and history writes."""
    try:
        db.commit()
    except OperationalError:
        logger.warning("Could not commit price cache/history updates", exc_info=True)
        db.rollback()


def _resolve_prices(
    request: Request, db: Session, payload: PortfolioRequest, wallets: list[Wallet]
) -> PriceMap:
    if payload.prices is not None:
        return {asset_id: snapshot.to_domain() for asset_id, snapshot in payload.prices.items()}
    return request.app.state.pricing_service.get_prices(db, get_asset_ids(wallets))


@router.post("/portfolio/summary")
def portfolio_summary(
    payload: PortfolioRequest, request: Request, db: Session = Depends(get_db)
):
    """Value the submitted wallets and record today's history snapshot."""
    wallets = [wallet.to_domain() for wallet in payload.wallets]
    prices = _resolve_prices(request, db, payload, wallets)

    summary = build_summary(
        wallets,
        prices,
        others_threshold_pct=request.app.state.settings.allocation_others_threshold_pct,
    )
    for issue in summary.ledger_issues:
        logger.warning(
            "Over-sold holding in wallet %s: %s quantity %.8f",
            issue.wallet_name,
            issue.symbol,
            issue.current_quantity,
        )

    record_snapshot(db, summary.total_value, summary.unrealized_pl)
    _commit_cache_updates(db)
    return asdict(summary)


@router.post("/assets/metrics")
def single_asset_metrics(payload: AssetMetricsRequest):
    """Holding metrics and realized P/L for one transaction list."""
    transactions = [tx.to_domain() for tx in payload.transactions]
    metrics = asset_metrics(transactions, payload.current_price)
    return {**asdict(metrics), "realized_pl": realized_pl(transactions)}


@router.post("/wallets/import")
def import_wallets(data: Any = Body(...)):
    """Normalize an exported wallet file, converting the legacy flat layout."""
    try:
        wallets = load_wallets(data)
    except InvalidPortfolioFile as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"wallets": dump_wallets(wallets)}


@router.get("/prices")
def prices(
    request: Request,
    ids: str = Query(default="", description="Comma-separated asset ids"),
    db: Session = Depends(get_db),
):
    """Return cached or freshly fetched price snapshots."""
    requested = [asset_id.strip() for asset_id in ids.split(",") if asset_id.strip()]
    snapshots = request.app.state.pricing_service.get_prices(db, requested)
    _commit_cache_updates(db)
    return {
        "prices": {asset_id: asdict(snapshot) for asset_id, snapshot in snapshots.items()},
        "missing": [asset_id for asset_id in requested if asset_id not in snapshots],
    }


@router.get("/portfolio/history")
def portfolio_history(db: Session = Depends(get_db)):
    """Daily portfolio value snapshots, oldest first."""
    return {
        "history": [
            {
                "date": record.day.isoformat(),
                "total_value": record.total_value,
                "total_unrealized_pl": record.total_unrealized_pl,
            }
            for record in get_history(db)
        ]
    }
