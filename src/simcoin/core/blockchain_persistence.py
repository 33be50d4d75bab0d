"""
SimCoin persistence boundary.

Chain and wallet data do not survive a restart: loading always produces a
fresh genesis chain and saving only records that it was asked to.
"""

import logging
from typing import Optional

from simcoin.core.blockchain import Blockchain
from simcoin.core.config import DEFAULT_CONFIG, SimulationConfig

logger = logging.getLogger(__name__)


def load_blockchain(
    name: str,
    difficulty: int,
    supply_address: str,
    config: Optional[SimulationConfig] = None,
) -> Blockchain:
    """Load the named chain, or create a new genesis chain (always the latter)."""
    config = config or DEFAULT_CONFIG
    logger.info(
        "Creating new blockchain (no stored chain is loaded)",
        extra={"event": "persistence.load_fresh", "chain": name, "difficulty": difficulty},
    )
    return Blockchain(
        name,
        difficulty,
        supply_address,
        genesis_supply=config.genesis_supply,
        genesis_price=config.genesis_price,
    )


def save_blockchain(blockchain: Blockchain) -> bool:
    """Accept a save request without writing anything. Returns False (nothing stored)."""
    logger.info(
        "Blockchain would be saved (%d blocks)",
        len(blockchain),
        extra={"event": "persistence.save_skipped", "chain": blockchain.name, "blocks": len(blockchain)},
    )
    return False
