"""
SimCoin Wallet - secp256k1 key pair plus a materialized view of balances.

Balances, positions and history are derived state: the chain is the source of
truth and ``LedgerReplayEngine`` rebuilds these fields. Mutators here are
called by replay while it holds the registry write lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from simcoin.core.blockchain_exceptions import SimcoinError
from simcoin.core.crypto_utils import (
    address_from_public_key,
    derive_public_key_hex,
    deterministic_keypair_from_seed,
    generate_keypair_hex,
    sign_message_hex,
)
from simcoin.core.transaction import DecimalLike, TradeKind, Transaction, quantize_usd, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PositionState(str, Enum):
    NEUTRAL = "neutral"
    LONG = "long"
    SHORT = "short"


@dataclass(frozen=True)
class WalletSnapshot:
    """Read-only copy of a wallet handed to the presentation layer."""

    wallet_id: int
    address: str
    sc_balance: Decimal
    usd_balance: Decimal
    initial_usd: Decimal
    long_position_usd: Decimal
    short_position_usd: Decimal
    history: Tuple[Transaction, ...]

    @property
    def position_state(self) -> PositionState:
        return _position_state(self.long_position_usd, self.short_position_usd)


def _position_state(long_usd: Decimal, short_usd: Decimal) -> PositionState:
    if long_usd > 0:
        return PositionState.LONG
    if short_usd > 0:
        return PositionState.SHORT
    return PositionState.NEUTRAL


class Wallet:
    """Account with keys, cached SC/USD balances and a local transaction history."""

    def __init__(
        self,
        wallet_id: int,
        initial_usd: DecimalLike = ZERO,
        private_key: Optional[str] = None,
    ) -> None:
        self.wallet_id = int(wallet_id)
        if private_key:
            self.private_key = private_key
            self.public_key = derive_public_key_hex(private_key)
        else:
            self.private_key, self.public_key = generate_keypair_hex()
        self.address = address_from_public_key(self.public_key)

        initial = quantize_usd(initial_usd)
        if initial < 0:
            raise SimcoinError(f"initial_usd cannot be negative, got {initial_usd!r}")
        self._initial_usd = initial

        self.sc_balance = ZERO
        self.usd_balance = initial
        self.long_position_usd = ZERO
        self.short_position_usd = ZERO
        self.history: List[Transaction] = []

        logger.debug(
            "Wallet created",
            extra={"event": "wallet.created", "wallet_id": self.wallet_id, "address": self.address[:16] + "..."},
        )

    @property
    def initial_usd(self) -> Decimal:
        return self._initial_usd

    @property
    def position_state(self) -> PositionState:
        return _position_state(self.long_position_usd, self.short_position_usd)

    # ------------------------------------------------------------------
    # Derived-state mutators (replay only)
    # ------------------------------------------------------------------

    def reset_derived_state(self) -> None:
        self.sc_balance = ZERO
        self.usd_balance = self._initial_usd
        self.long_position_usd = ZERO
        self.short_position_usd = ZERO
        self.history = []

    def credit(self, amount: Decimal) -> None:
        self.sc_balance += amount

    def debit(self, amount: Decimal) -> None:
        # May go negative: a short sale sells SC the wallet does not hold.
        self.sc_balance -= amount

    def credit_usd(self, amount: Decimal) -> None:
        self.usd_balance += amount

    def debit_usd(self, amount: Decimal) -> Decimal:
        """
        Debit USD, clamping at zero.

        Returns:
            The shortfall that could not be debited (0 when fully covered).
        """
        if amount <= self.usd_balance:
            self.usd_balance -= amount
            return ZERO
        shortfall = amount - self.usd_balance
        self.usd_balance = ZERO
        return shortfall

    def add_long(self, usd: Decimal) -> None:
        self.long_position_usd += usd

    def reduce_long(self, usd: Decimal) -> None:
        self.long_position_usd = max(ZERO, self.long_position_usd - usd)

    def add_short(self, usd: Decimal) -> None:
        self.short_position_usd += usd

    def reduce_short(self, usd: Decimal) -> None:
        self.short_position_usd = max(ZERO, self.short_position_usd - usd)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign_message(self, message: str) -> str:
        return sign_message_hex(self.private_key, message.encode("utf-8"))

    def create_transaction(
        self,
        recipient: str,
        amount: DecimalLike,
        memo: str,
        price: DecimalLike,
        *,
        kind: TradeKind,
        usd_notional: DecimalLike = ZERO,
    ) -> Optional[Transaction]:
        """
        Create a transaction signed by this wallet.

        Returns None when the transaction cannot be produced (invalid amount or
        a cryptographic failure); the failure is logged.
        """
        try:
            return Transaction.create(
                self.address,
                recipient,
                amount,
                memo,
                price,
                kind=kind,
                usd_notional=usd_notional,
                private_key=self.private_key,
                public_key=self.public_key,
            )
        except SimcoinError as exc:
            logger.warning(
                "Transaction not created: %s",
                exc.message,
                extra={
                    "event": "wallet.tx_rejected",
                    "address": self.address[:16] + "...",
                    "error_type": type(exc).__name__,
                },
            )
            return None

    def snapshot(self) -> WalletSnapshot:
        return WalletSnapshot(
            wallet_id=self.wallet_id,
            address=self.address,
            sc_balance=self.sc_balance,
            usd_balance=self.usd_balance,
            initial_usd=self._initial_usd,
            long_position_usd=self.long_position_usd,
            short_position_usd=self.short_position_usd,
            history=tuple(self.history),
        )

    def __repr__(self) -> str:
        return (
            f"Wallet(id={self.wallet_id}, address='{self.address[:12]}...', "
            f"sc={self.sc_balance}, usd={self.usd_balance}, "
            f"long={self.long_position_usd}, short={self.short_position_usd})"
        )


def wallet_from_seed(wallet_id: int, seed: bytes, initial_usd: DecimalLike = ZERO) -> Wallet:
    """Build a wallet with a reproducible key pair."""
    private_key, _ = deterministic_keypair_from_seed(seed)
    return Wallet(wallet_id, to_decimal(initial_usd), private_key=private_key)
