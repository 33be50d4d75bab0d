"""
SimulationEngine - the boundary a presentation layer talks to.

Wires persistence, chain, registry, replay, price model, executor and
scheduler for one independent simulation. Read accessors return copies.
"""

from __future__ import annotations

import logging
import random
from decimal import Decimal
from typing import List, Optional

from simcoin.core.block import Block
from simcoin.core.blockchain_persistence import load_blockchain, save_blockchain
from simcoin.core.config import DEFAULT_CONFIG, SimulationConfig
from simcoin.core.ledger_replay import LedgerReplayEngine
from simcoin.core.network_simulator import Callback, Dispatcher, NetworkSimulator
from simcoin.core.price_model import PriceModel
from simcoin.core.trade_executor import TradeExecutor
from simcoin.core.wallet import Wallet, WalletSnapshot
from simcoin.core.wallet_registry import WalletRegistry

logger = logging.getLogger(__name__)

DEFAULT_PRICE = Decimal("1.00")


class SimulationEngine:
    """Facade over one chain and its simulated market."""

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        rng: Optional[random.Random] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.rng = rng or random.Random()
        self.price_model: Optional[PriceModel] = None

        self.registry = WalletRegistry(self.config, self.rng)
        self.chain = load_blockchain(
            self.config.chain_name,
            self.config.difficulty,
            self.registry.supply_wallet.address,
            config=self.config,
        )
        # First user wallet exists from the start and receives no grant.
        self.registry.create_user_wallet()

        self.replay = LedgerReplayEngine(self.registry, self.chain)
        self.replay.full_replay()

        self.price_model = PriceModel.from_config(self.config)
        self.executor = TradeExecutor(self.chain, self.registry, self.replay, self.price_model, self.config)
        self.simulator = NetworkSimulator(
            self.executor,
            self.registry,
            self.price_model,
            config=self.config,
            rng=self.rng,
            dispatcher=dispatcher,
        )
        logger.info(
            "Simulation engine ready",
            extra={
                "event": "engine.initialized",
                "chain": self.config.chain_name,
                "difficulty": self.config.difficulty,
                "wallets": len(self.registry),
            },
        )

    # Queries

    def current_price(self) -> Decimal:
        """Current quote, or 1.00 if the price model is not initialized yet."""
        if self.price_model is None:
            return DEFAULT_PRICE
        return self.price_model.current_price

    def blocks(self) -> List[Block]:
        return self.chain.blocks()

    def wallets(self) -> List[WalletSnapshot]:
        return self.registry.snapshots()

    def validate_chain(self) -> bool:
        return self.chain.validate()

    @property
    def is_running(self) -> bool:
        return self.simulator.is_running

    # Controls

    def start(self) -> bool:
        return self.simulator.start()

    def stop(self) -> None:
        self.simulator.stop()

    def start_wallet_generation(self) -> bool:
        return self.simulator.start_wallet_generation()

    def stop_wallet_generation(self) -> None:
        self.simulator.stop_wallet_generation()

    def set_buy_bias(self, bias: float) -> float:
        return self.simulator.set_buy_bias(bias)

    def create_wallet(self) -> Wallet:
        return self.simulator.create_wallet()

    def set_on_update(self, callback: Optional[Callback]) -> None:
        self.simulator.set_on_update(callback)

    def set_on_price_update(self, callback: Optional[Callback]) -> None:
        self.simulator.set_on_price_update(callback)

    def reset_chain(self) -> None:
        """Truncate to genesis and rebuild every wallet from it."""
        self.executor.reset_chain()

    def save(self) -> bool:
        return save_blockchain(self.chain)
