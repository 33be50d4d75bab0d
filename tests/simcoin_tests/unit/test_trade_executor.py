"""
Unit tests for TradeExecutor

Tests admission checks, sizing, commit and liquidation
"""

from decimal import Decimal

import pytest

from simcoin.core.transaction import TradeKind
from simcoin.core.trade_executor import usd_fraction
from simcoin.core.wallet import PositionState


class TestSizing:
    """Test SC sizing and minimums"""

    def test_sc_is_rounded_to_thousandths(self, executor, user_wallet):
        tx = executor.open_long(user_wallet, "100", price="3")
        assert tx.amount == Decimal("33.333")
        assert tx.usd_notional == Decimal("100.00")
        assert tx.price == Decimal("3")

    def test_below_minimum_notional_is_dropped(self, executor, user_wallet, chain):
        assert executor.open_long(user_wallet, "0.99", price="1") is None
        assert len(chain) == 1

    def test_below_minimum_quantity_is_dropped(self, executor, user_wallet, chain):
        assert executor.open_long(user_wallet, "2", price="5000") is None
        assert len(chain) == 1

    def test_usd_fraction(self):
        assert usd_fraction(Decimal("100"), 0.333) == Decimal("33.30")


class TestOpenLong:
    """Test open_long"""

    def test_open_long_updates_wallet(self, executor, user_wallet, chain, replay):
        tx = executor.open_long(user_wallet, 5000, price="1.00")
        assert tx.kind is TradeKind.OPEN_LONG
        assert tx.sender == executor.supply_wallet.address
        assert tx.recipient == user_wallet.address
        assert chain.tip.transactions == (tx,)
        assert replay.applied_height == chain.height
        assert user_wallet.usd_balance == Decimal("5000.00")
        assert user_wallet.long_position_usd == Decimal("5000.00")
        assert user_wallet.sc_balance == Decimal("5000.000")

    def test_insufficient_usd(self, executor, user_wallet):
        assert executor.open_long(user_wallet, 10000.01, price=1) is None

    def test_insufficient_supply(self, executor, user_wallet, registry):
        registry.supply_wallet.sc_balance = Decimal("10")
        assert executor.open_long(user_wallet, 10, price=1) is None

    def test_blocked_while_short(self, executor, user_wallet):
        assert executor.open_short(user_wallet, 100, price=1) is not None
        assert executor.open_long(user_wallet, 100, price=1) is None

    def test_buy_moves_price_up(self, executor, user_wallet, price_model):
        before = price_model.current_price
        executor.open_long(user_wallet, 100)
        assert price_model.current_price > before


class TestCloseLong:
    """Test close_long"""

    def test_requires_open_long(self, executor, user_wallet):
        assert executor.close_long(user_wallet, 100, price=1) is None

    def test_close_is_capped_at_notional(self, executor, user_wallet):
        executor.open_long(user_wallet, 100, price=1)
        tx = executor.close_long(user_wallet, 500, price=1)
        assert tx.usd_notional == Decimal("100.00")
        assert user_wallet.long_position_usd == 0

    def test_short_of_sc_sells_whole_holding(self, executor, user_wallet):
        executor.open_long(user_wallet, 100, price=1)
        # Closing 100 USD at 0.5 would need 200 SC; only 100 are held.
        tx = executor.close_long(user_wallet, 100, price="0.5")
        assert tx.amount == Decimal("100.000")
        assert tx.usd_notional == Decimal("50.00")
        assert user_wallet.sc_balance == 0
        assert user_wallet.long_position_usd == 0
        assert user_wallet.position_state is PositionState.NEUTRAL

    def test_dust_remainder_is_closed_with_the_trade(self, executor, user_wallet):
        executor.open_long(user_wallet, 100, price=1)
        tx = executor.close_long(user_wallet, "99.50", price=1)
        assert tx.usd_notional == Decimal("100.00")
        assert user_wallet.long_position_usd == 0
        assert user_wallet.position_state is PositionState.NEUTRAL

    def test_final_close_ignores_usd_minimum(self, executor, user_wallet):
        executor.open_long(user_wallet, 100, price=1)
        executor.close_long(user_wallet, "98.50", price=1)
        assert user_wallet.long_position_usd == Decimal("1.50")
        # The remaining notional is worth under 1 USD at this quote.
        tx = executor.close_long(user_wallet, "1.50", price="0.5")
        assert tx is not None
        assert tx.usd_notional < Decimal("1")
        assert user_wallet.long_position_usd == 0

    def test_open_long_rejected_while_sc_is_owed(self, executor, user_wallet):
        user_wallet.sc_balance = Decimal("-50")
        assert executor.open_long(user_wallet, 10, price=1) is None
        assert executor.open_long(user_wallet, 60, price=1) is not None
        assert user_wallet.sc_balance == Decimal("10.000")

    def test_sale_goes_to_exchange(self, executor, user_wallet, config, price_model):
        executor.open_long(user_wallet, 100, price=1)
        before = price_model.current_price
        tx = executor.close_long(user_wallet, 50, price=1)
        assert tx.recipient == config.exchange_address
        assert tx.verify(user_wallet.public_key)
        assert price_model.current_price < before


class TestShorts:
    """Test open_short and close_short"""

    def test_open_short_uses_margin(self, executor, user_wallet, config):
        tx = executor.open_short(user_wallet, 5000, price=1)
        assert tx.kind is TradeKind.OPEN_SHORT
        assert tx.recipient == config.exchange_address
        assert user_wallet.sc_balance == Decimal("-5000.000")
        assert user_wallet.usd_balance == Decimal("15000.00")
        assert user_wallet.short_position_usd == Decimal("5000.00")

    def test_open_short_beyond_margin_rejected(self, executor, user_wallet):
        assert executor.open_short(user_wallet, "5000.01", price=1) is None

    def test_open_short_blocked_while_long(self, executor, user_wallet):
        executor.open_long(user_wallet, 100, price=1)
        assert executor.open_short(user_wallet, 10, price=1) is None

    def test_close_short(self, executor, user_wallet):
        executor.open_short(user_wallet, 100, price=1)
        tx = executor.close_short(user_wallet, 100, price=1)
        assert tx.kind is TradeKind.CLOSE_SHORT
        assert tx.sender == executor.supply_wallet.address
        assert user_wallet.sc_balance == 0
        assert user_wallet.short_position_usd == 0
        assert user_wallet.usd_balance == Decimal("10000.00")

    def test_dust_remainder_is_covered_with_the_trade(self, executor, user_wallet):
        executor.open_short(user_wallet, 100, price=1)
        tx = executor.close_short(user_wallet, "99.50", price=1)
        assert tx.amount == Decimal("100.000")
        assert user_wallet.short_position_usd == 0
        assert user_wallet.position_state is PositionState.NEUTRAL

    def test_cover_buys_back_at_most_the_debt(self, executor, user_wallet):
        executor.open_short(user_wallet, 100, price=1)
        # At half the price 100 USD would buy 200 SC; only 100 are owed.
        tx = executor.close_short(user_wallet, 100, price="0.5")
        assert tx.amount == Decimal("100.000")
        assert tx.usd_notional == Decimal("50.00")
        assert user_wallet.sc_balance == 0
        assert user_wallet.short_position_usd == 0
        assert user_wallet.usd_balance == Decimal("10050.00")

    def test_close_short_requires_short(self, executor, user_wallet):
        assert executor.close_short(user_wallet, 100, price=1) is None

    def test_close_short_capped_at_wallet_usd(self, executor, registry, replay):
        wallet = registry.create_user_wallet(initial_usd=100)
        executor.open_short(wallet, 50, price=1)
        # Price tripled; covering the full 50 SC would cost 150 USD.
        tx = executor.close_short(wallet, 1000, price=3)
        assert tx.usd_notional <= Decimal("150.00")
        assert wallet.usd_balance >= 0
        assert replay.conflicts == []

    def test_close_short_capped_at_supply(self, executor, user_wallet, registry):
        executor.open_short(user_wallet, 100, price=1)
        registry.supply_wallet.sc_balance = Decimal("20.01")
        tx = executor.close_short(user_wallet, 100, price=1)
        assert tx.amount == Decimal("20.000")


class TestGrant:
    """Test grant"""

    def test_grant_moves_one_sc(self, executor, user_wallet, price_model):
        before = price_model.current_price
        tx = executor.grant(user_wallet)
        assert tx.kind is TradeKind.GRANT
        assert tx.usd_notional == 0
        assert user_wallet.sc_balance == Decimal("1")
        assert user_wallet.usd_balance == Decimal("10000.00")
        assert price_model.current_price == before

    def test_grant_fails_when_supply_empty(self, executor, user_wallet, registry):
        registry.supply_wallet.sc_balance = Decimal("0")
        assert executor.grant(user_wallet) is None


class TestLiquidation:
    """Test check_liquidation"""

    def test_no_liquidation_for_healthy_wallet(self, executor, user_wallet):
        assert executor.check_liquidation(user_wallet) is None

    def test_negative_sc_with_usd_left_is_not_liquidated(self, executor, user_wallet):
        executor.open_short(user_wallet, 100, price=1)
        assert executor.check_liquidation(user_wallet) is None

    def test_debt_is_rounded_up(self, executor, user_wallet):
        user_wallet.sc_balance = Decimal("-1.0001")
        user_wallet.usd_balance = Decimal("0")
        tx = executor.check_liquidation(user_wallet)
        assert tx.amount == Decimal("1.001")
        assert tx.kind is TradeKind.LIQUIDATION
        assert user_wallet.sc_balance >= 0


class TestCommit:
    """Test commit()"""

    def test_commit_appends_and_replays(self, executor, registry, chain, user_wallet):
        tx = registry.supply_wallet.create_transaction(
            user_wallet.address, 2, "grant", 1, kind=TradeKind.GRANT
        )
        block = executor.commit([tx])
        assert chain.tip is block
        assert user_wallet.sc_balance == Decimal("2")

    def test_reset_chain_rebuilds_wallets(self, executor, user_wallet, chain):
        executor.open_long(user_wallet, 100, price=1)
        executor.reset_chain()
        assert len(chain) == 1
        assert user_wallet.sc_balance == 0
        assert user_wallet.usd_balance == Decimal("10000.00")
        assert user_wallet.long_position_usd == 0
