"""
LookBridge Crypto Keys Module

secp256k1 keys used by oracle operators to attest to supply updates.
Operators sign the 32-byte update hash; the oracle recovers the signer
address and checks it against the ORACLE role.
"""

import secrets
from typing import Union

from eth_keys.datatypes import PrivateKey as EthPrivateKey, Signature as EthSignature
from eth_keys.exceptions import BadSignature, ValidationError as EthValidationError
from eth_utils import decode_hex

from ..exceptions import LookBridgeException


class InvalidKeyError(LookBridgeException):
    """Invalid cryptographic key."""
    pass


class InvalidSignatureError(LookBridgeException):
    """Signature is malformed or does not recover to a public key."""
    pass


def _hash_bytes(msg_hash: Union[bytes, str]) -> bytes:
    if isinstance(msg_hash, str):
        msg_hash = decode_hex(msg_hash)
    if len(msg_hash) != 32:
        raise ValueError(f"Message hash must be 32 bytes, got {len(msg_hash)}")
    return msg_hash


class PrivateKey:
    """
    secp256k1 private key for operator signing.

    Wraps eth-keys PrivateKey.
    """

    def __init__(self, key_bytes: bytes):
        if len(key_bytes) != 32:
            raise InvalidKeyError(f"Private key must be 32 bytes, got {len(key_bytes)}")
        try:
            self._key = EthPrivateKey(key_bytes)
        except EthValidationError as e:
            raise InvalidKeyError(f"Invalid private key: {e}") from e

    @classmethod
    def from_hex(cls, hex_str: str) -> "PrivateKey":
        """Create from hex string (with or without 0x prefix)."""
        return cls(decode_hex(hex_str))

    @classmethod
    def from_int(cls, key_int: int) -> "PrivateKey":
        return cls(key_int.to_bytes(32, byteorder='big'))

    @classmethod
    def generate(cls) -> "PrivateKey":
        return cls(secrets.token_bytes(32))

    @property
    def address(self) -> str:
        """EIP-55 checksummed address of this key."""
        return self._key.public_key.to_checksum_address()

    def sign_msg_hash(self, msg_hash: Union[bytes, str]) -> "Signature":
        """
        Sign a 32-byte message hash.

        Args:
            msg_hash: 32-byte hash, raw or 0x-hex

        Returns:
            Signature instance
        """
        return Signature(self._key.sign_msg_hash(_hash_bytes(msg_hash)))

    def to_hex(self) -> str:
        return "0x" + self._key.to_bytes().hex()

    def __repr__(self) -> str:
        return f"PrivateKey({self.address})"


class Signature:
    """
    ECDSA signature (v, r, s format).
    """

    def __init__(self, signature: EthSignature):
        self._signature = signature

    @classmethod
    def from_bytes(cls, sig_bytes: bytes) -> "Signature":
        """
        Create from a 65-byte signature (r[32] + s[32] + v[1]).

        Both v ∈ {0, 1} and the legacy v ∈ {27, 28} are accepted.
        """
        if len(sig_bytes) != 65:
            raise InvalidSignatureError(f"Signature must be 65 bytes, got {len(sig_bytes)}")
        v = sig_bytes[64]
        if v >= 27:
            v -= 27
        try:
            return cls(EthSignature(sig_bytes[:64] + bytes([v])))
        except (BadSignature, EthValidationError) as e:
            raise InvalidSignatureError(f"Malformed signature: {e}") from e

    @classmethod
    def from_hex(cls, hex_str: str) -> "Signature":
        return cls.from_bytes(decode_hex(hex_str))

    @classmethod
    def coerce(cls, value: Union["Signature", bytes, str]) -> "Signature":
        """Accept a Signature, raw 65 bytes or a hex string."""
        if isinstance(value, Signature):
            return value
        if isinstance(value, str):
            return cls.from_hex(value)
        return cls.from_bytes(bytes(value))

    def recover_address(self, msg_hash: Union[bytes, str]) -> str:
        """
        Recover the checksummed signer address for `msg_hash`.

        Raises:
            InvalidSignatureError: if no public key can be recovered
        """
        try:
            public_key = self._signature.recover_public_key_from_msg_hash(_hash_bytes(msg_hash))
        except (BadSignature, EthValidationError) as e:
            raise InvalidSignatureError(f"Signature recovery failed: {e}") from e
        return public_key.to_checksum_address()

    def to_bytes(self) -> bytes:
        return self._signature.to_bytes()

    def to_hex(self) -> str:
        return "0x" + self.to_bytes().hex()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Signature):
            return False
        return self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())

    def __repr__(self) -> str:
        return f"Signature(v={self._signature.v}, r={hex(self._signature.r)[:10]}...)"
