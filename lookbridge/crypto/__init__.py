"""
LookBridge Crypto Module

- secp256k1 operator keys and signatures (eth-keys)
- keccak256 and the ABI encodings that feed consensus keys and message ids
"""

from .keys import InvalidKeyError, InvalidSignatureError, PrivateKey, Signature
from .hashing import (
    compute_message_id,
    compute_update_hash,
    decode_transfer_payload,
    encode_transfer_payload,
    keccak256,
    keccak256_hex,
)

__all__ = [
    "InvalidKeyError",
    "InvalidSignatureError",
    "PrivateKey",
    "Signature",
    "compute_message_id",
    "compute_update_hash",
    "decode_transfer_payload",
    "encode_transfer_payload",
    "keccak256",
    "keccak256_hex",
]
