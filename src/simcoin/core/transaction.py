"""
SimCoin Core - Transaction

An immutable signed transfer of SC between two addresses.

Every trade-relevant fact is part of the signed payload: the execution price,
the trade classification and the USD notional. Replay never has to parse the
human-readable memo.

Security Notes:
- The transaction id hashes every field plus a random salt, so two otherwise
  identical transfers never share an id
- The signature covers the id and every field, so tampering with any field
  (including the price) invalidates it
- The system identity mints without a key and is exempt from signing
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional, Union

from simcoin.core.blockchain_exceptions import (
    InvalidAmountError,
    InvalidTransactionError,
    TransactionSigningError,
)
from simcoin.core.config import SYSTEM_ADDRESS
from simcoin.core.crypto_utils import (
    address_from_public_key,
    derive_public_key_hex,
    sha256_hex,
    sign_message_hex,
    verify_signature_hex,
)

logger = logging.getLogger(__name__)

SC_QUANTUM = Decimal("0.001")
USD_QUANTUM = Decimal("0.01")
PRICE_QUANTUM = Decimal("0.00000001")

DecimalLike = Union[Decimal, int, float, str]


def to_decimal(value: DecimalLike) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def quantize_sc(value: DecimalLike) -> Decimal:
    return to_decimal(value).quantize(SC_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_usd(value: DecimalLike) -> Decimal:
    return to_decimal(value).quantize(USD_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_price(value: DecimalLike) -> Decimal:
    return to_decimal(value).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def canonical_json(data: Dict[str, Any]) -> str:
    """Deterministic JSON used for every hash and signature payload."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


class TradeKind(str, Enum):
    """How replay must net USD and positions for a transfer."""

    GENESIS = "genesis"
    GRANT = "grant"
    OPEN_LONG = "open_long"
    CLOSE_LONG = "close_long"
    OPEN_SHORT = "open_short"
    CLOSE_SHORT = "close_short"
    LIQUIDATION = "liquidation"


@dataclass(frozen=True)
class Transaction:
    """Signed transfer record.

    Attributes:
        sender: Source address, or the system identity for minting
        recipient: Destination address (may be the exchange sink)
        amount: SC transferred, always positive
        memo: Free-text description, informational only
        price: Quoted SC price in USD at execution
        kind: Trade classification used by replay
        usd_notional: USD settled against the SC (0 for grants and genesis)
        timestamp: Creation time (epoch seconds)
        salt: Random uniqueness salt
        public_key: Sender public key (empty for the system identity)
        tx_id: Content hash of every field above
        signature: ECDSA signature over the id and fields (empty for the system identity)
    """

    sender: str
    recipient: str
    amount: Decimal
    memo: str
    price: Decimal
    kind: TradeKind
    usd_notional: Decimal
    timestamp: float
    salt: str
    public_key: str
    tx_id: str
    signature: str

    @classmethod
    def create(
        cls,
        sender: str,
        recipient: str,
        amount: DecimalLike,
        memo: str,
        price: DecimalLike,
        *,
        kind: TradeKind,
        usd_notional: DecimalLike = Decimal("0"),
        private_key: Optional[str] = None,
        public_key: Optional[str] = None,
    ) -> "Transaction":
        """Build, hash and sign a new transaction.

        Raises:
            InvalidAmountError: amount is not a positive finite number
            InvalidTransactionError: an address, price or notional is malformed
            TransactionSigningError: a non-system sender cannot be signed for
        """
        if not sender:
            raise InvalidTransactionError("sender cannot be empty")
        if not recipient:
            raise InvalidTransactionError("recipient cannot be empty")

        try:
            amount_dec = quantize_sc(amount)
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise InvalidAmountError(f"amount is not a number: {amount!r}") from exc
        if not amount_dec.is_finite() or amount_dec <= 0:
            raise InvalidAmountError(
                f"amount must be positive, got {amount!r}",
                details={"sender": sender[:16], "recipient": recipient[:16]},
            )

        try:
            price_dec = quantize_price(price)
            notional_dec = quantize_usd(usd_notional)
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise InvalidTransactionError(f"price/notional must be numeric: {exc}") from exc
        if not price_dec.is_finite() or not notional_dec.is_finite():
            raise InvalidTransactionError(f"price/notional must be finite, got {price!r}/{usd_notional!r}")
        if price_dec <= 0:
            raise InvalidTransactionError(f"price must be positive, got {price!r}")
        if notional_dec < 0:
            raise InvalidTransactionError(f"usd_notional cannot be negative, got {usd_notional!r}")

        is_system = sender == SYSTEM_ADDRESS
        if not is_system:
            if not private_key:
                raise TransactionSigningError(
                    f"Sender {sender[:16]}... requires a private key",
                    details={"sender": sender},
                )
            try:
                public_key = public_key or derive_public_key_hex(private_key)
            except (ValueError, TypeError) as exc:
                raise TransactionSigningError(f"Invalid private key: {exc}") from exc

        unsigned = cls(
            sender=sender,
            recipient=recipient,
            amount=amount_dec,
            memo=memo or "",
            price=price_dec,
            kind=TradeKind(kind),
            usd_notional=notional_dec,
            timestamp=time.time(),
            salt=secrets.token_hex(8),
            public_key="" if is_system else public_key,
            tx_id="",
            signature="",
        )
        tx_id = unsigned.calculate_hash()

        signature = ""
        if not is_system:
            payload = unsigned._signing_payload_for(tx_id)
            try:
                signature = sign_message_hex(private_key, payload)
            except (ValueError, TypeError) as exc:
                raise TransactionSigningError(
                    f"Failed to sign transaction {tx_id[:10]}...: {exc}"
                ) from exc

        return replace(unsigned, tx_id=tx_id, signature=signature)

    @property
    def is_system(self) -> bool:
        return self.sender == SYSTEM_ADDRESS

    def _hash_fields(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "recipient": self.recipient,
            "amount": str(self.amount),
            "memo": self.memo,
            "price": str(self.price),
            "kind": self.kind.value,
            "usd_notional": str(self.usd_notional),
            "timestamp": repr(self.timestamp),
            "salt": self.salt,
            "public_key": self.public_key,
        }

    def calculate_hash(self) -> str:
        """Recompute the content hash from the current field values."""
        return sha256_hex(canonical_json(self._hash_fields()))

    def _signing_payload_for(self, tx_id: str) -> bytes:
        return canonical_json({**self._hash_fields(), "tx_id": tx_id}).encode("utf-8")

    def signing_payload(self) -> bytes:
        return self._signing_payload_for(self.tx_id)

    def verify(self, public_key: Optional[str] = None) -> bool:
        """Check integrity and authorship. Returns False on any mismatch, never raises.

        Args:
            public_key: Key to verify against; defaults to the embedded key.
        """
        try:
            if self.tx_id != self.calculate_hash():
                return False
            if self.is_system:
                return True

            key = public_key or self.public_key
            if not key or not self.signature:
                return False
            if key != self.public_key:
                return False
            if address_from_public_key(key) != self.sender:
                return False
            return verify_signature_hex(key, self.signing_payload(), self.signature)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.debug(
                "Transaction verification failed: %s",
                type(exc).__name__,
                extra={"event": "tx.verify_error", "txid": (self.tx_id or "")[:16]},
            )
            return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self._hash_fields(),
            "timestamp": self.timestamp,
            "tx_id": self.tx_id,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        """Rebuild a transaction exactly as serialized (no re-hashing or re-signing)."""
        try:
            return cls(
                sender=data["sender"],
                recipient=data["recipient"],
                amount=Decimal(str(data["amount"])),
                memo=data.get("memo", ""),
                price=Decimal(str(data["price"])),
                kind=TradeKind(data["kind"]),
                usd_notional=Decimal(str(data.get("usd_notional", "0"))),
                timestamp=float(data["timestamp"]),
                salt=data["salt"],
                public_key=data.get("public_key", ""),
                tx_id=data["tx_id"],
                signature=data.get("signature", ""),
            )
        except (KeyError, ValueError, InvalidOperation) as exc:
            raise InvalidTransactionError(f"Malformed transaction data: {exc}") from exc

    def __str__(self) -> str:
        return (
            f"{self.tx_id[:8]} | {self.sender[:10]}... -> {self.recipient[:10]}... | "
            f"{self.amount} SC (P: {self.price}) | {self.kind.value} | {self.memo or 'no memo'}"
        )
