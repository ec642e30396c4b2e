from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

import manage
from tracker.models import PriceCache


def test_purge_cache_respects_age_filter(db_session_factory, monkeypatch):
    now = datetime.now(timezone.utc)
    with db_session_factory() as db:
        db.add_all(
            [
                PriceCache(asset_id="bitcoin", usd=1.0, fetched_at=now - timedelta(days=45)),
                PriceCache(asset_id="ethereum", usd=1.0, fetched_at=now - timedelta(days=2)),
            ]
        )
        db.commit()

    monkeypatch.setattr(manage, "SessionLocal", db_session_factory)
    assert manage.purge_cache(older_than_days=30) == 1

    with db_session_factory() as db:
        assert db.scalar(select(PriceCache).where(PriceCache.asset_id == "bitcoin")) is None
        assert db.scalar(select(PriceCache).where(PriceCache.asset_id == "ethereum")) is not None

    assert manage.purge_cache() == 1


def test_summary_reads_wallet_and_price_files(tmp_path):
    wallets_path = tmp_path / "wallets.json"
    prices_path = tmp_path / "prices.json"
    wallets_path.write_text(
        json.dumps(
            [
                {
                    "id": "w1",
                    "name": "Ledger",
                    "assets": [
                        {
                            "id": "bitcoin",
                            "symbol": "btc",
                            "name": "Bitcoin",
                            "transactions": [
                                {"id": "t1", "type": "buy", "quantity": 1, "pricePerUnit": 10000, "date": "2024-01-01T00:00:00Z"},
                                {"id": "t2", "type": "sell", "quantity": 0.5, "pricePerUnit": 20000, "date": "2024-02-01T00:00:00Z"},
                            ],
                        },
                        {
                            "id": "ethereum",
                            "symbol": "eth",
                            "name": "Ethereum",
                            "transactions": [
                                {"id": "t3", "type": "transfer_out", "quantity": 1, "date": "2024-01-01T00:00:00Z"},
                            ],
                        },
                    ],
                }
            ]
        ),
        encoding="utf-8",
    )
    prices_path.write_text(
        json.dumps({"bitcoin": {"usd": 25000, "usd_24h_change": 10}}),
        encoding="utf-8",
    )

    output = manage.summarize(wallets_path, prices_path)

    assert "Total value:     $12,500.00" in output
    assert "Realized P/L:    $5,000.00" in output
    assert "Top performer:   BTC +10.00%" in output
    assert "[Ledger] $12,500.00" in output
    assert "WARNING: ETH in 'Ledger' is over-sold" in output


def test_summary_without_prices_values_everything_at_zero(tmp_path):
    wallets_path = tmp_path / "wallets.json"
    wallets_path.write_text(
        json.dumps([{"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "amount": 1.5}]),
        encoding="utf-8",
    )

    output = manage.summarize(wallets_path)

    assert "Total value:     $0.00" in output
    assert "[Imported Wallet] $0.00" in output
