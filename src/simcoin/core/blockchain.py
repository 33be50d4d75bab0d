"""
SimCoin Blockchain - ordered, hash-linked sequence of mined blocks.

Appending is the only mutation and the only critical section: the tip hash is
read, a new block is mined on top of it and pushed, all under one mutex.
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Iterable, List, Optional

from simcoin.core.block import Block
from simcoin.core.blockchain_exceptions import EmptyChainError
from simcoin.core.config import SYSTEM_ADDRESS
from simcoin.core.transaction import DecimalLike, TradeKind, Transaction

logger = logging.getLogger(__name__)

GENESIS_PREVIOUS_HASH = "0"


class Blockchain:
    """In-memory chain with proof-of-work sealing and structural validation."""

    def __init__(
        self,
        name: str,
        difficulty: int,
        supply_address: str,
        genesis_supply: DecimalLike = Decimal("1000000000000"),
        genesis_price: DecimalLike = Decimal("0.10"),
    ) -> None:
        """
        Create a chain containing only the genesis block.

        Args:
            name: Chain name, recorded in the genesis memo
            difficulty: Number of leading zero hex digits required per block hash
            supply_address: Wallet receiving the entire initial supply
            genesis_supply: SC minted by the founding transaction
            genesis_price: Quote recorded on the founding transaction
        """
        self.name = name
        self.difficulty = int(difficulty)
        self.supply_address = supply_address
        self._chain_lock = threading.Lock()
        self._chain: List[Block] = []
        self.reset_count = 0

        genesis_tx = Transaction.create(
            SYSTEM_ADDRESS,
            supply_address,
            genesis_supply,
            f"Genesis supply - origin of the {name} coins",
            genesis_price,
            kind=TradeKind.GENESIS,
        )
        genesis = Block([genesis_tx], GENESIS_PREVIOUS_HASH)
        genesis.mine(self.difficulty)
        self._chain.append(genesis)
        logger.info(
            "Genesis block created",
            extra={
                "event": "chain.genesis_created",
                "chain": name,
                "supply": str(genesis_tx.amount),
                "supply_address": supply_address[:16] + "...",
                "hash": genesis.hash[:16],
            },
        )

    @property
    def genesis(self) -> Block:
        with self._chain_lock:
            if not self._chain:
                raise EmptyChainError("Chain has no genesis block")
            return self._chain[0]

    @property
    def tip(self) -> Block:
        with self._chain_lock:
            if not self._chain:
                raise EmptyChainError("Chain has no genesis block")
            return self._chain[-1]

    @property
    def height(self) -> int:
        """Index of the tip block (genesis is height 0)."""
        with self._chain_lock:
            return len(self._chain) - 1

    def __len__(self) -> int:
        with self._chain_lock:
            return len(self._chain)

    def blocks(self) -> List[Block]:
        """Defensive copy of the block list."""
        with self._chain_lock:
            return list(self._chain)

    def append_block(self, transactions: Iterable[Transaction]) -> Block:
        """Build a block on the current tip, mine it and push it (serialized)."""
        transactions = list(transactions)
        with self._chain_lock:
            if not self._chain:
                raise EmptyChainError("Cannot append to a chain without genesis")
            block = Block(transactions, self._chain[-1].hash)
            block.mine(self.difficulty)
            self._chain.append(block)
            height = len(self._chain) - 1

        logger.debug(
            "Block appended",
            extra={
                "event": "chain.block_appended",
                "height": height,
                "hash": block.hash[:16],
                "tx_count": len(transactions),
            },
        )
        return block

    def validate(self) -> bool:
        """
        Check link, recomputed hash, difficulty and transaction integrity.

        Returns False on the first violation; the chain is left untouched.
        """
        chain = self.blocks()
        if not chain:
            return False

        genesis = chain[0]
        if (
            genesis.previous_hash != GENESIS_PREVIOUS_HASH
            or genesis.hash != genesis.calculate_hash()
            or not genesis.has_valid_transactions()
        ):
            self._log_violation(0, "genesis")
            return False

        for index in range(1, len(chain)):
            current = chain[index]
            previous = chain[index - 1]
            if current.hash != current.calculate_hash():
                self._log_violation(index, "hash_mismatch")
                return False
            if current.previous_hash != previous.hash:
                self._log_violation(index, "broken_link")
                return False
            if not current.meets_difficulty(self.difficulty):
                self._log_violation(index, "difficulty")
                return False
            if not current.has_valid_transactions():
                self._log_violation(index, "invalid_transaction")
                return False
        return True

    def _log_violation(self, index: int, reason: str) -> None:
        logger.warning(
            "Chain integrity violation at block %d: %s",
            index,
            reason,
            extra={"event": "chain.integrity_violation", "index": index, "reason": reason},
        )

    def reset(self) -> None:
        """
        Truncate the chain to the genesis block.

        Destructive: callers must recompute all derived wallet state afterwards.
        """
        with self._chain_lock:
            if not self._chain:
                raise EmptyChainError("Chain is empty; nothing to reset to")
            removed = len(self._chain) - 1
            if removed:
                del self._chain[1:]
                self.reset_count += 1

        if removed:
            logger.info(
                "Chain reset to genesis (%d blocks removed, reset #%d)",
                removed,
                self.reset_count,
                extra={"event": "chain.reset", "removed": removed, "resets": self.reset_count},
            )
        else:
            logger.info(
                "Chain only contains the genesis block; nothing to reset",
                extra={"event": "chain.reset_noop"},
            )

    def find_block_index_by_transaction(self, tx_id: str) -> int:
        """Return the index of the block holding ``tx_id``, or -1."""
        for index, block in enumerate(self.blocks()):
            if any(tx.tx_id == tx_id for tx in block.transactions):
                return index
        return -1

    def get_block(self, index: int) -> Optional[Block]:
        with self._chain_lock:
            if 0 <= index < len(self._chain):
                return self._chain[index]
        return None
