from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tracker.models import PriceCache, PriceSnapshot

logger = logging.getLogger(__name__)


class PriceProvider(Protocol):
    """Market-data feed returning snapshots keyed by asset id."""

    def get_prices(self, asset_ids: list[str]) -> dict[str, PriceSnapshot]:
        ...


class UnavailableProvider:
    """Provider used when no market-data feed has been configured."""

    def get_prices(self, asset_ids: list[str]) -> dict[str, PriceSnapshot]:
        raise RuntimeError("Price provider is unavailable")


class PricingService:
    """Serves price snapshots from a SQLite-backed cache with provider fallback."""

    def __init__(self, provider: PriceProvider, ttl_seconds: int = 60) -> None:
        self.provider = provider
        self.ttl_seconds = ttl_seconds

    def get_prices(self, db: Session, asset_ids: Iterable[str]) -> dict[str, PriceSnapshot]:
        """Return snapshots for the requested ids; ids with no data are left out."""
        wanted = list(dict.fromkeys(asset_id.strip() for asset_id in asset_ids if asset_id.strip()))
        if not wanted:
            return {}

        now = datetime.now(timezone.utc)
        cached = {
            row.asset_id: row
            for row in db.scalars(select(PriceCache).where(PriceCache.asset_id.in_(wanted)))
        }

        result: dict[str, PriceSnapshot] = {}
        missing: list[str] = []
        for asset_id in wanted:
            row = cached.get(asset_id)
            if row is not None and self._is_fresh(row, now):
                result[asset_id] = row.to_snapshot()
            else:
                missing.append(asset_id)

        if not missing:
            return result

        try:
            fresh = self.provider.get_prices(missing)
        except Exception as exc:
            logger.warning("Price provider failed for %s: %s", ",".join(missing), exc)
            for asset_id in missing:
                row = cached.get(asset_id)
                if row is not None:
                    result[asset_id] = row.to_snapshot()
            return result

        for asset_id in missing:
            snapshot = fresh.get(asset_id)
            if snapshot is not None:
                result[asset_id] = snapshot
            elif asset_id in cached:
                result[asset_id] = cached[asset_id].to_snapshot()

        self._store(db, {key: fresh[key] for key in missing if key in fresh}, cached, now)
        return result

    def _store(
        self,
        db: Session,
        snapshots: dict[str, PriceSnapshot],
        cached: dict[str, PriceCache],
        fetched_at: datetime,
    ) -> None:
        try:
            for asset_id, snapshot in snapshots.items():
                row = cached.get(asset_id)
                if row is None:
                    row = PriceCache(asset_id=asset_id, usd=snapshot.usd, fetched_at=fetched_at)
                    db.add(row)
                row.usd = snapshot.usd
                row.usd_24h_change = snapshot.usd_24h_change
                row.usd_7d_change = snapshot.usd_7d_change
                row.market_cap_rank = snapshot.market_cap_rank
                row.fetched_at = fetched_at
            db.flush()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Price cache write failed, serving uncached prices: %s", exc)

    def _is_fresh(self, row: PriceCache, now: datetime) -> bool:
        age_seconds = (now - self._as_utc(row.fetched_at)).total_seconds()
        return age_seconds <= self.ttl_seconds

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def purge_price_cache(db: Session, older_than_days: int | None = None) -> int:
    """Delete cached snapshots, optionally only those fetched at least N days ago."""
    query = delete(PriceCache)
    if older_than_days is not None:
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        query = query.where(PriceCache.fetched_at <= cutoff)
    result = db.execute(query)
    return int(result.rowcount or 0)
