"""
Shared fixtures for SimCoin tests.

Chains are built at difficulty 0 or 1 so mining is immediate, and every
random source is a seeded ``random.Random``.
"""

import random
from decimal import Decimal

import pytest

from simcoin.core.blockchain import Blockchain
from simcoin.core.config import DEFAULT_CONFIG
from simcoin.core.ledger_replay import LedgerReplayEngine
from simcoin.core.network_simulator import NetworkSimulator
from simcoin.core.price_model import PriceModel
from simcoin.core.trade_executor import TradeExecutor
from simcoin.core.wallet_registry import WalletRegistry


@pytest.fixture
def config():
    """Fast configuration: difficulty 1 and millisecond-scale cadences."""
    return DEFAULT_CONFIG.with_overrides(
        difficulty=1,
        wallet_creation_period_ms=20,
        min_wallet_creation_period_ms=5,
        trade_delay_min_base_ms=2,
        trade_delay_max_base_ms=4,
        initial_trade_delay_ms=1,
        ui_refresh_period_ms=10,
        price_refresh_period_ms=5,
    )


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def registry(config, rng):
    return WalletRegistry(config, rng)


@pytest.fixture
def chain(config, registry):
    return Blockchain(
        config.chain_name,
        config.difficulty,
        registry.supply_wallet.address,
        genesis_supply=config.genesis_supply,
        genesis_price=config.genesis_price,
    )


@pytest.fixture
def replay(registry, chain):
    engine = LedgerReplayEngine(registry, chain)
    engine.full_replay()
    return engine


@pytest.fixture
def price_model(config):
    return PriceModel.from_config(config)


@pytest.fixture
def executor(chain, registry, replay, price_model, config):
    return TradeExecutor(chain, registry, replay, price_model, config)


@pytest.fixture
def simulator(executor, registry, price_model, config, rng):
    sim = NetworkSimulator(executor, registry, price_model, config=config, rng=rng)
    yield sim
    sim.stop()


@pytest.fixture
def user_wallet(registry):
    """A registered user wallet holding 10,000 USD and no SC."""
    return registry.create_user_wallet(initial_usd=Decimal("10000"))


@pytest.fixture
def market_factory():
    """
    Build an isolated difficulty-0 market with ``wallet_count`` funded user wallets.

    Stateless, so it is safe to call from hypothesis-driven tests.
    """

    def _build(seed=0, wallet_count=3, initial_usd=Decimal("10000")):
        cfg = DEFAULT_CONFIG.with_overrides(difficulty=0)
        rng = random.Random(seed)
        registry = WalletRegistry(cfg, rng)
        chain = Blockchain(
            cfg.chain_name,
            cfg.difficulty,
            registry.supply_wallet.address,
            genesis_supply=cfg.genesis_supply,
            genesis_price=cfg.genesis_price,
        )
        replay = LedgerReplayEngine(registry, chain)
        replay.full_replay()
        prices = PriceModel.from_config(cfg)
        executor = TradeExecutor(chain, registry, replay, prices, cfg)
        wallets = [registry.create_user_wallet(initial_usd=initial_usd) for _ in range(wallet_count)]
        return executor, wallets

    return _build
