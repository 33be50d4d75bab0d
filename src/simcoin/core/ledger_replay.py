"""
Ledger replay: derive every wallet's balances and positions from the chain.

Wallet fields are a materialized view. ``full_replay`` rebuilds the view from
genesis; ``incremental_replay`` applies only the blocks appended since the last
call. Applying blocks one at a time yields exactly the same state as one full
pass over the same prefix.

USD debits never drive a balance negative. The trade behind such a debit is
already on the chain, so the balance is clamped to zero and the event is
recorded as a ``ReconciliationConflict`` instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from simcoin.core.block import Block
from simcoin.core.blockchain import Blockchain
from simcoin.core.transaction import TradeKind, Transaction
from simcoin.core.wallet import ZERO, Wallet
from simcoin.core.wallet_registry import WalletRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationConflict:
    """A USD debit that exceeded the available balance during replay."""

    tx_id: str
    address: str
    requested: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.available


@dataclass(frozen=True)
class ConservationReport:
    """SC supply bookkeeping over the replayed prefix."""

    minted: Decimal
    burned: Decimal
    circulating: Decimal

    @property
    def balanced(self) -> bool:
        return self.circulating == self.minted - self.burned


class LedgerReplayEngine:
    """Replays chain transactions into the wallets of one registry."""

    def __init__(self, registry: WalletRegistry, chain: Blockchain) -> None:
        self.registry = registry
        self.chain = chain
        self.conflicts: List[ReconciliationConflict] = []
        self._applied_height = -1
        self._seen_resets = chain.reset_count
        self._minted = ZERO
        self._burned = ZERO

    @property
    def applied_height(self) -> int:
        """Height of the last block folded into wallet state (-1 before any replay)."""
        return self._applied_height

    def reset_wallets(self) -> None:
        """Restore every wallet to its creation state."""
        with self.registry.write_locked():
            for wallet in self.registry.wallets():
                wallet.reset_derived_state()
            self.conflicts = []
            self._applied_height = -1
            self._minted = ZERO
            self._burned = ZERO

    def full_replay(self) -> int:
        """
        Reset all wallets and apply every block in chain order.

        Returns:
            Number of blocks applied
        """
        with self.registry.write_locked():
            self.reset_wallets()
            blocks = self.chain.blocks()
            for block in blocks:
                self.apply_block(block)
            self._applied_height = len(blocks) - 1
            self._seen_resets = self.chain.reset_count

        logger.info(
            "Full replay complete",
            extra={
                "event": "replay.full",
                "blocks": len(blocks),
                "conflicts": len(self.conflicts),
            },
        )
        return len(blocks)

    def incremental_replay(self) -> int:
        """
        Apply the blocks appended since the previous replay.

        Normally that is exactly the newest block. Falls back to a full replay
        when the chain was reset or truncated underneath the engine.

        Returns:
            Number of blocks applied
        """
        with self.registry.write_locked():
            blocks = self.chain.blocks()
            if self.chain.reset_count != self._seen_resets or len(blocks) - 1 < self._applied_height:
                logger.info(
                    "Chain was reset since the last replay; rebuilding from genesis",
                    extra={"event": "replay.fallback_full", "applied_height": self._applied_height},
                )
                return self.full_replay()

            pending = blocks[self._applied_height + 1:]
            for block in pending:
                self.apply_block(block)
            self._applied_height = len(blocks) - 1

        if len(pending) > 1:
            logger.debug(
                "Incremental replay caught up on %d blocks",
                len(pending),
                extra={"event": "replay.catch_up", "blocks": len(pending)},
            )
        return len(pending)

    def apply_block(self, block: Block) -> None:
        with self.registry.write_locked():
            for tx in block.transactions:
                self._apply_transaction(tx)

    def _apply_transaction(self, tx: Transaction) -> None:
        exchange = self.registry.exchange_address
        sender = None if tx.is_system else self.registry.find_by_address(tx.sender)
        recipient = None if tx.recipient == exchange else self.registry.find_by_address(tx.recipient)

        if tx.is_system:
            self._minted += tx.amount
        elif sender is not None:
            sender.debit(tx.amount)
        if tx.recipient == exchange:
            self._burned += tx.amount
        elif recipient is not None:
            recipient.credit(tx.amount)

        usd = tx.usd_notional
        kind = tx.kind
        if kind is TradeKind.OPEN_LONG and recipient is not None:
            self._debit_usd(recipient, usd, tx)
            recipient.add_long(usd)
        elif kind is TradeKind.CLOSE_LONG and sender is not None:
            sender.credit_usd(usd)
            sender.reduce_long(usd)
            if sender.sc_balance <= 0:
                # Nothing left to sell: the long is closed.
                sender.long_position_usd = ZERO
        elif kind is TradeKind.OPEN_SHORT and sender is not None:
            sender.credit_usd(usd)
            sender.add_short(usd)
        elif kind is TradeKind.CLOSE_SHORT and recipient is not None:
            self._debit_usd(recipient, usd, tx)
            recipient.reduce_short(usd)
            if recipient.sc_balance >= 0:
                # Nothing left to buy back: the short is closed.
                recipient.short_position_usd = ZERO
        elif kind is TradeKind.LIQUIDATION and recipient is not None:
            recipient.short_position_usd = ZERO
            recipient.usd_balance = max(ZERO, recipient.usd_balance)

        if sender is not None:
            sender.history.append(tx)
        if recipient is not None and recipient is not sender:
            recipient.history.append(tx)

    def _debit_usd(self, wallet: Wallet, amount: Decimal, tx: Transaction) -> None:
        available = wallet.usd_balance
        shortfall = wallet.debit_usd(amount)
        if shortfall > 0:
            conflict = ReconciliationConflict(
                tx_id=tx.tx_id,
                address=wallet.address,
                requested=amount,
                available=available,
            )
            self.conflicts.append(conflict)
            logger.warning(
                "USD debit exceeds balance; clamped to zero",
                extra={
                    "event": "replay.reconciliation_conflict",
                    "txid": tx.tx_id[:16],
                    "address": wallet.address[:16] + "...",
                    "requested": str(amount),
                    "available": str(available),
                },
            )

    def conservation_report(self) -> ConservationReport:
        """Minted and burned totals over the replayed prefix against wallet SC."""
        with self.registry.read_locked():
            circulating = sum((w.sc_balance for w in self.registry.wallets()), ZERO)
            return ConservationReport(minted=self._minted, burned=self._burned, circulating=circulating)

    def last_conflict(self) -> Optional[ReconciliationConflict]:
        with self.registry.read_locked():
            return self.conflicts[-1] if self.conflicts else None
