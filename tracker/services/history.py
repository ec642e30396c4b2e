from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from tracker.models import PortfolioSnapshotRecord, utc_now


def record_snapshot(
    db: Session,
    total_value: float,
    total_unrealized_pl: float,
    today: date | None = None,
) -> PortfolioSnapshotRecord | None:
    """Store today's portfolio value, replacing an earlier snapshot from the same day.

    Empty or negative portfolios are not recorded.
    """
    if not total_value > 0:
        return None

    day = today or datetime.now(timezone.utc).date()
    record = db.scalar(
        select(PortfolioSnapshotRecord).where(PortfolioSnapshotRecord.day == day)
    )
    if record is None:
        record = PortfolioSnapshotRecord(day=day, total_value=total_value)
        db.add(record)
    record.total_value = total_value
    record.total_unrealized_pl = total_unrealized_pl
    record.updated_at = utc_now()
    db.flush()
    return record


def get_history(db: Session) -> list[PortfolioSnapshotRecord]:
    """Return all daily snapshots, oldest first."""
    return list(
        db.scalars(select(PortfolioSnapshotRecord).order_by(PortfolioSnapshotRecord.day.asc()))
    )
