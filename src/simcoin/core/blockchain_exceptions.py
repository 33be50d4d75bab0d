"""
SimCoin exception hierarchy.

Trading-path rejections never raise (they return ``None``); these types cover
construction-time validation, cryptographic failures and chain misuse.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from simcoin.core.config import ConfigurationError


class SimcoinError(Exception):
    """Base exception for all ledger-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ==================== Validation Errors ====================


class ValidationError(SimcoinError):
    """Raised when ledger data fails validation rules."""
    pass


class InvalidAmountError(ValidationError):
    """Raised when a transfer amount is not a positive finite number."""
    pass


class InvalidTransactionError(ValidationError):
    """Raised when a transaction field is malformed."""
    pass


# ==================== Cryptographic Errors ====================


class CryptographicError(SimcoinError):
    """Raised when a key or signature operation fails."""
    pass


class TransactionSigningError(CryptographicError):
    """Raised when a transaction cannot be signed; the transaction is not produced."""
    pass


# ==================== Chain Errors ====================


class ChainError(SimcoinError):
    """Raised when a chain operation is used incorrectly."""
    pass


class EmptyChainError(ChainError):
    """Raised when an operation requires a genesis block that is missing."""
    pass


__all__ = [
    "SimcoinError",
    "ValidationError",
    "InvalidAmountError",
    "InvalidTransactionError",
    "CryptographicError",
    "TransactionSigningError",
    "ChainError",
    "EmptyChainError",
    "ConfigurationError",
]
