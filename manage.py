from __future__ import annotations

import argparse
import json
from pathlib import Path

from tracker.config import settings
from tracker.db import SessionLocal, init_db
from tracker.models import PriceSnapshot
from tracker.services.portfolio import PortfolioSummary, build_summary, load_wallets
from tracker.services.pricing import purge_price_cache


def load_prices(path: Path | None) -> dict[str, PriceSnapshot]:
    """Read a ``{asset_id: {usd, usd_24h_change, ...}}`` JSON price file."""
    if path is None:
        return {}
    raw = json.loads(path.read_text(encoding="utf-8"))
    return {
        asset_id: PriceSnapshot(
            usd=float(entry["usd"]),
            usd_24h_change=entry.get("usd_24h_change"),
            usd_7d_change=entry.get("usd_7d_change"),
            market_cap_rank=entry.get("market_cap_rank"),
        )
        for asset_id, entry in raw.items()
    }


def format_summary(summary: PortfolioSummary) -> str:
    lines = [
        f"Total value:     ${summary.total_value:,.2f}",
        f"24h change:      ${summary.change_24h.change_value:,.2f} "
        f"({summary.change_24h.change_percentage:.2f}%)",
        f"Total P/L:       ${summary.total_pl.pl_value:,.2f} "
        f"({summary.total_pl.pl_percentage:.2f}%)",
        f"Realized P/L:    ${summary.realized_pl:,.2f}",
        f"Unrealized P/L:  ${summary.unrealized_pl:,.2f}",
    ]
    if summary.top_performer:
        lines.append(
            f"Top performer:   {summary.top_performer.symbol.upper()} "
            f"{summary.top_performer.change:+.2f}%"
        )
    if summary.top_loser:
        lines.append(
            f"Top loser:       {summary.top_loser.symbol.upper()} "
            f"{summary.top_loser.change:+.2f}%"
        )
    for wallet in summary.wallets:
        lines.append(f"[{wallet.name}] ${wallet.total_value:,.2f}")
        for row in wallet.positions:
            lines.append(
                f"  {row.symbol.upper():<8} qty={row.metrics.current_quantity:.8f} "
                f"value=${row.metrics.market_value:,.2f} "
                f"unrealized=${row.metrics.unrealized_pl:,.2f}"
            )
    for issue in summary.ledger_issues:
        lines.append(
            f"WARNING: {issue.symbol.upper()} in '{issue.wallet_name}' is over-sold "
            f"(quantity {issue.current_quantity:.8f})"
        )
    return "\n".join(lines)


def summarize(wallets_path: Path, prices_path: Path | None = None) -> str:
    """Value a wallet export file offline against a JSON price file."""
    wallets = load_wallets(json.loads(wallets_path.read_text(encoding="utf-8")))
    summary = build_summary(
        wallets,
        load_prices(prices_path),
        others_threshold_pct=settings.allocation_others_threshold_pct,
    )
    return format_summary(summary)


def purge_cache(older_than_days: int | None = None) -> int:
    """Delete cached price snapshots."""
    with SessionLocal() as db:
        deleted = purge_price_cache(db, older_than_days)
        db.commit()
        return deleted


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Crypto Portfolio Tracker management commands"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    summary_parser = sub.add_parser("summary", help="Print a valuation summary")
    summary_parser.add_argument(
        "--wallets", required=True, type=Path, help="Exported wallet JSON file"
    )
    summary_parser.add_argument(
        "--prices", type=Path, default=None, help="JSON price file keyed by asset id"
    )
    purge_parser = sub.add_parser(
        "purge-price-cache",
        help="Delete cached price snapshots",
    )
    purge_parser.add_argument(
        "--older-than-days",
        type=int,
        default=None,
        help="Only delete snapshots fetched at least N days ago",
    )

    args = parser.parse_args()

    if args.command == "summary":
        print(summarize(args.wallets, args.prices))
    elif args.command == "purge-price-cache":
        if args.older_than_days is not None and args.older_than_days < 0:
            raise ValueError("--older-than-days must be zero or greater")
        init_db()
        deleted = purge_cache(args.older_than_days)
        print(f"Deleted {deleted} cached price snapshot(s)")


if __name__ == "__main__":
    main()
