"""Digest, secp256k1 key management, signatures and address derivation."""

from __future__ import annotations

import hashlib
from typing import Union

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

_CURVE = ec.SECP256K1()
_CURVE_ORDER = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

ADDRESS_PREFIX = "SC"


def sha256_hex(data: Union[str, bytes]) -> str:
    """Deterministic hex digest used for transaction ids and block hashes."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def _normalize_private_value(value: int) -> int:
    normalized = value % _CURVE_ORDER
    if normalized == 0:
        normalized = 1
    return normalized


def _private_key_to_hex(private_key: ec.EllipticCurvePrivateKey) -> str:
    return private_key.private_numbers().private_value.to_bytes(32, "big").hex()


def _public_key_to_hex(public_key: ec.EllipticCurvePublicKey) -> str:
    numbers = public_key.public_numbers()
    return (numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big")).hex()


def load_private_key_from_hex(private_hex: str) -> ec.EllipticCurvePrivateKey:
    return ec.derive_private_key(_normalize_private_value(int(private_hex, 16)), _CURVE)


def load_public_key_from_hex(public_hex: str) -> ec.EllipticCurvePublicKey:
    raw = bytes.fromhex(public_hex)
    if len(raw) != 64:
        raise ValueError("Public key hex must be 64 bytes (uncompressed without prefix).")
    return ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, b"\x04" + raw)


def generate_keypair_hex() -> tuple[str, str]:
    private_key = ec.generate_private_key(_CURVE)
    return _private_key_to_hex(private_key), _public_key_to_hex(private_key.public_key())


def derive_public_key_hex(private_hex: str) -> str:
    return _public_key_to_hex(load_private_key_from_hex(private_hex).public_key())


def deterministic_keypair_from_seed(seed: bytes) -> tuple[str, str]:
    """Derive a reproducible keypair; used for seeded simulations and tests."""
    digest = hashlib.sha256(seed).digest()
    private_key = ec.derive_private_key(
        _normalize_private_value(int.from_bytes(digest, "big")), _CURVE
    )
    return _private_key_to_hex(private_key), _public_key_to_hex(private_key.public_key())


def sign_message_hex(private_hex: str, message: bytes) -> str:
    """
    Sign ``message`` and return the 64-byte ``r || s`` signature as hex.

    The S component is normalized to the low half of the curve order so every
    message/key pair has exactly one accepted encoding.
    """
    private_key = load_private_key_from_hex(private_hex)
    der_signature = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der_signature)
    if s > _CURVE_ORDER // 2:
        s = _CURVE_ORDER - s
    return (r.to_bytes(32, "big") + s.to_bytes(32, "big")).hex()


def verify_signature_hex(public_hex: str, message: bytes, signature_hex: str) -> bool:
    """Return True only for a canonical, valid signature. Never raises."""
    try:
        public_key = load_public_key_from_hex(public_hex)
        raw_signature = bytes.fromhex(signature_hex)
    except (ValueError, TypeError):
        return False
    if len(raw_signature) != 64:
        return False
    r = int.from_bytes(raw_signature[:32], "big")
    s = int.from_bytes(raw_signature[32:], "big")
    if not (1 <= r < _CURVE_ORDER and 1 <= s <= _CURVE_ORDER // 2):
        return False
    try:
        public_key.verify(encode_dss_signature(r, s), message, ec.ECDSA(hashes.SHA256()))
        return True
    except InvalidSignature:
        return False


def address_from_public_key(public_hex: str) -> str:
    """
    Derive a wallet address: ``SC`` + base58check(first 20 bytes of SHA-256(pubkey)).

    The public key is hashed as raw bytes, not as its hex text.
    """
    digest = hashlib.sha256(bytes.fromhex(public_hex)).digest()
    return ADDRESS_PREFIX + base58.b58encode_check(digest[:20]).decode("ascii")
