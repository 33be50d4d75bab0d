"""
End-to-end trading scenarios on a difficulty-1 chain
"""

from decimal import Decimal

from simcoin.core.transaction import TradeKind


class TestLongRoundTrip:
    """Grant, open a long with half the USD, close it at the same price."""

    def test_grant_open_close(self, executor, registry, chain, replay, user_wallet, config):
        supply = registry.supply_wallet
        assert chain.difficulty == 1
        assert supply.sc_balance == Decimal("1000000000000")

        executor.grant(user_wallet)
        assert user_wallet.sc_balance == Decimal("1")
        assert supply.sc_balance == Decimal("999999999999")

        half = user_wallet.usd_balance / 2
        opened = executor.open_long(user_wallet, half, price="1.00")
        assert opened.usd_notional == Decimal("5000.00")
        assert user_wallet.usd_balance == Decimal("5000.00")
        assert user_wallet.long_position_usd == Decimal("5000.00")
        assert user_wallet.sc_balance == Decimal("5001.000")

        closed = executor.close_long(user_wallet, user_wallet.long_position_usd, price="1.00")
        assert closed.kind is TradeKind.CLOSE_LONG
        assert user_wallet.long_position_usd == 0
        assert user_wallet.usd_balance == Decimal("10000.00")
        assert user_wallet.sc_balance == Decimal("1.000")

        assert chain.validate()
        assert replay.conflicts == []
        assert replay.conservation_report().balanced

    def test_round_trip_at_market_price(self, executor, user_wallet, price_model):
        """Without a fixed quote the close happens after the open moved the price."""
        executor.grant(user_wallet)
        executor.open_long(user_wallet, 5000)
        assert price_model.current_price > Decimal("1.00")
        executor.close_long(user_wallet, user_wallet.long_position_usd)
        assert user_wallet.long_position_usd == 0
        # Closing at a higher quote sells fewer SC for the same USD.
        assert user_wallet.sc_balance > Decimal("1")
        assert user_wallet.usd_balance == Decimal("10000.00")


class TestForcedLiquidation:
    """A wallet with negative SC and no USD is liquidated exactly once."""

    def test_single_liquidation(self, executor, chain, user_wallet, registry):
        user_wallet.sc_balance = Decimal("-25")
        user_wallet.usd_balance = Decimal("0")
        height = chain.height

        tx = executor.check_liquidation(user_wallet)
        assert tx is not None
        assert tx.kind is TradeKind.LIQUIDATION
        assert tx.sender == registry.supply_wallet.address
        assert tx.amount == Decimal("25.000")
        assert user_wallet.sc_balance >= 0
        assert user_wallet.usd_balance == 0

        assert executor.check_liquidation(user_wallet) is None
        assert chain.height == height + 1
        liquidations = [
            t for block in chain.blocks() for t in block.transactions if t.kind is TradeKind.LIQUIDATION
        ]
        assert liquidations == [tx]

    def test_losing_cover_leaves_sc_debt(self, executor, registry, replay):
        wallet = registry.create_user_wallet(initial_usd=100)
        executor.open_short(wallet, 50, price="1.00")
        assert wallet.usd_balance == Decimal("150.00")
        # At 4x the price the 50 USD notional buys back only 12.5 SC.
        cover = executor.close_short(wallet, 1000, price="4.00")
        assert cover.amount == Decimal("12.500")
        assert wallet.short_position_usd == 0
        assert wallet.sc_balance == Decimal("-37.500")
        assert wallet.usd_balance == Decimal("100.00")
        # USD left over means no margin call yet.
        assert executor.check_liquidation(wallet) is None
        assert replay.conflicts == []

    def test_liquidation_replays_identically(self, executor, chain, registry, user_wallet):
        executor.open_short(user_wallet, 100, price="1.00")
        # Drain USD through the chain so the state is reproducible by replay.
        drain = registry.supply_wallet.create_transaction(
            user_wallet.address,
            "0.001",
            "drain",
            "1.00",
            kind=TradeKind.CLOSE_SHORT,
            usd_notional=user_wallet.usd_balance,
        )
        executor.commit([drain])
        assert user_wallet.usd_balance == 0
        assert user_wallet.sc_balance < 0

        tx = executor.check_liquidation(user_wallet)
        assert tx is not None
        before = (user_wallet.sc_balance, user_wallet.usd_balance, user_wallet.short_position_usd)
        executor.replay.full_replay()
        after = (user_wallet.sc_balance, user_wallet.usd_balance, user_wallet.short_position_usd)
        assert before == after
        assert user_wallet.short_position_usd == 0
        assert chain.validate()
