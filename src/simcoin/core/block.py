"""
Block class for the SimCoin chain.

A block is an ordered batch of transactions sealed by proof-of-work. Its hash
commits to the previous hash, the timestamp, the nonce and the transaction ids
(not the transaction bodies), so block integrity depends on transaction
integrity through the ids.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from simcoin.core.blockchain_exceptions import InvalidTransactionError
from simcoin.core.crypto_utils import sha256_hex
from simcoin.core.transaction import Transaction

logger = logging.getLogger(__name__)


class Block:
    """Blockchain block with real proof-of-work"""

    def __init__(
        self,
        transactions: Iterable[Transaction],
        previous_hash: str,
        timestamp: Optional[int] = None,
        nonce: int = 0,
    ) -> None:
        if previous_hash is None or previous_hash == "":
            raise ValueError("previous_hash is required")
        self._transactions: Tuple[Transaction, ...] = tuple(transactions)
        self._previous_hash = previous_hash
        self._timestamp = int(timestamp) if timestamp is not None else int(time.time() * 1000)
        self._nonce = int(nonce)
        self._hash = self.calculate_hash()

    @property
    def hash(self) -> str:
        return self._hash

    @property
    def previous_hash(self) -> str:
        return self._previous_hash

    @property
    def transactions(self) -> Tuple[Transaction, ...]:
        return self._transactions

    @property
    def timestamp(self) -> int:
        """Creation time in epoch milliseconds."""
        return self._timestamp

    @property
    def nonce(self) -> int:
        return self._nonce

    def calculate_hash(self) -> str:
        """Recompute the hash from the header fields and the transaction ids."""
        tx_data = "".join(tx.tx_id for tx in self._transactions)
        return sha256_hex(f"{self._previous_hash}{self._timestamp}{self._nonce}{tx_data}")

    def meets_difficulty(self, difficulty: int) -> bool:
        return self._hash.startswith("0" * difficulty)

    def mine(self, difficulty: int) -> str:
        """
        Increment the nonce until the hash has ``difficulty`` leading zeros.

        There is no timeout; difficulty 0 or 1 terminates almost immediately.
        """
        target = "0" * max(0, int(difficulty))
        while not self._hash.startswith(target):
            self._nonce += 1
            self._hash = self.calculate_hash()
        logger.debug(
            "Block mined",
            extra={
                "event": "block.mined",
                "hash": self._hash[:16],
                "nonce": self._nonce,
                "difficulty": difficulty,
            },
        )
        return self._hash

    def has_valid_transactions(self) -> bool:
        """Every transaction id must recompute and every signature must verify."""
        for tx in self._transactions:
            if not tx.verify():
                logger.warning(
                    "Block contains an invalid transaction",
                    extra={
                        "event": "block.invalid_transaction",
                        "block_hash": self._hash[:16],
                        "txid": tx.tx_id[:16],
                    },
                )
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self._hash,
            "previous_hash": self._previous_hash,
            "transactions": [tx.to_dict() for tx in self._transactions],
            "timestamp": self._timestamp,
            "nonce": self._nonce,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        """
        Reconstruct a serialized block.

        The stored hash is kept as-is rather than recomputed, so a tampered
        record is still detectable by chain validation.
        """
        try:
            transactions: List[Transaction] = [
                Transaction.from_dict(tx) for tx in data.get("transactions", [])
            ]
            block = cls(
                transactions,
                previous_hash=data["previous_hash"],
                timestamp=int(data["timestamp"]),
                nonce=int(data["nonce"]),
            )
            block._hash = data["hash"]
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTransactionError(f"Malformed block data: {exc}") from exc
        return block

    def __len__(self) -> int:
        return len(self._transactions)

    def __repr__(self) -> str:
        return (
            f"Block(hash='{self._hash[:16]}...', prev='{self._previous_hash[:16]}...', "
            f"tx={len(self._transactions)}, nonce={self._nonce})"
        )
