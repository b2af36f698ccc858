"""Tests for the seeded synthetic market feed."""

from relay_trading_bot.bot.market_data import PricePoint, SyntheticMarketFeed

# pylint: disable=missing-function-docstring


def test_history_shape_and_base_prices(now):
    feed = SyntheticMarketFeed(["BTCUSDT", "ETHUSDT", "ADAUSDT"], seed=1)
    batch = feed.poll(now)
    assert {symbol: len(points) for symbol, points in batch.items()} == {
        "BTCUSDT": 100,
        "ETHUSDT": 100,
        "ADAUSDT": 100,
    }
    btc = batch["BTCUSDT"]
    assert btc[-1].timestamp == now
    assert all(30000 < p.close < 56000 for p in btc)
    assert all(p.low <= p.close <= p.high for p in btc)
    assert all(0.2 < p.close < 0.6 for p in batch["ADAUSDT"])


def test_subsequent_polls_add_one_point(now):
    feed = SyntheticMarketFeed(["ETHUSDT"], seed=3)
    feed.poll(now)
    batch = feed.poll(now)
    assert len(batch["ETHUSDT"]) == 1


def test_same_seed_same_prices(now):
    first = SyntheticMarketFeed(["BTCUSDT"], seed=42).poll(now)["BTCUSDT"]
    second = SyntheticMarketFeed(["BTCUSDT"], seed=42).poll(now)["BTCUSDT"]
    assert [p.close for p in first] == [p.close for p in second]


def test_point_dict_round_trip(now):
    point = PricePoint(timestamp=now, open=1.0, high=2.0, low=0.5, close=1.5, volume=10.0)
    assert PricePoint.from_dict(point.to_dict()) == point
