"""
Unit tests for the market-impact price model
"""

import threading
from decimal import Decimal

import pytest

from simcoin.core.price_model import PriceModel


@pytest.fixture
def model():
    return PriceModel(initial_price="1.00", floor="0.05", max_move_percent="0.10", volatility_factor="10000")


class TestApplyTrade:
    """Test apply_trade"""

    def test_large_buy_is_capped_at_ten_percent(self, model):
        assert model.apply_trade(5000, is_buy=True) == Decimal("1.10")

    def test_large_sell_is_capped_at_ten_percent(self, model):
        assert model.apply_trade(5000, is_buy=False) == Decimal("0.90")

    def test_small_trade_moves_proportionally(self):
        model = PriceModel(initial_price="2.00", volatility_factor="1")
        # delta = 0.1 * 1 / 2.00
        assert model.apply_trade(Decimal("0.1"), is_buy=True) == Decimal("2.05")

    def test_impact_is_inverse_to_price(self):
        cheap = PriceModel(initial_price="1.00", volatility_factor="1")
        dear = PriceModel(initial_price="4.00", volatility_factor="1")
        cheap_move = cheap.apply_trade(Decimal("0.01"), is_buy=True) - Decimal("1.00")
        dear_move = dear.apply_trade(Decimal("0.01"), is_buy=True) - Decimal("4.00")
        assert cheap_move == 4 * dear_move

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_is_noop(self, model, amount):
        assert model.apply_trade(amount, is_buy=True) == Decimal("1.00")
        assert model.snapshot().trades == 0

    @pytest.mark.parametrize("amount", [float("nan"), "Infinity", Decimal("-Infinity")])
    def test_non_finite_amount_rejected(self, model, amount):
        with pytest.raises(ValueError):
            model.apply_trade(amount, is_buy=True)
        assert model.current_price == Decimal("1.00")
        assert model.snapshot().trades == 0

    def test_price_never_below_floor(self, model):
        for _ in range(100):
            model.apply_trade(1_000_000, is_buy=False)
        assert model.current_price == Decimal("0.05")

    def test_initial_price_below_floor_is_raised(self):
        assert PriceModel(initial_price="0.01", floor="0.05").current_price == Decimal("0.05")

    def test_invalid_floor_rejected(self):
        with pytest.raises(ValueError):
            PriceModel(floor=0)


class TestHistoryAndSnapshot:
    """Test history() and snapshot()"""

    def test_history_is_bounded(self):
        model = PriceModel(history_size=3)
        for _ in range(5):
            model.apply_trade(1, is_buy=True)
        history = model.history()
        assert len(history) == 3
        assert history[-1][1] == model.current_price

    def test_snapshot_tracks_extremes(self, model):
        model.apply_trade(5000, is_buy=True)
        model.apply_trade(5000, is_buy=False)
        model.apply_trade(5000, is_buy=False)
        snapshot = model.snapshot()
        assert snapshot.trades == 3
        assert snapshot.high == Decimal("1.10")
        assert snapshot.low == snapshot.price

    def test_from_config(self, config):
        model = PriceModel.from_config(config)
        assert model.current_price == config.initial_price
        assert model.floor == config.price_floor


class TestThreadSafety:
    """Test concurrent trades"""

    def test_concurrent_trades_are_serialized(self, model):
        def worker(is_buy):
            for _ in range(50):
                model.apply_trade(1, is_buy=is_buy)

        threads = [threading.Thread(target=worker, args=(i % 2 == 0,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert model.snapshot().trades == 200
        assert model.current_price >= model.floor
