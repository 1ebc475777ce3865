"""
LookBridge Crypto Hashing Module

Provides the hashes that independent processes must agree on byte for byte:
- keccak256: EVM standard hash
- update hash: consensus key for a supply update (matches the on-chain
  ``solidityPackedKeccak256(["bytes", "uint256"], [abi.encode(updates), nonce])``)
- message id: identity of an outbound cross-chain message
"""

from typing import Iterable, Tuple, Union

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum standard).

    Args:
        data: Input bytes or hex string

    Returns:
        32-byte hash
    """
    if isinstance(data, str):
        return keccak(hexstr=data)
    return keccak(primitive=data)


def keccak256_hex(data: Union[bytes, str]) -> str:
    """Keccak-256 as a 0x-prefixed hex string."""
    return "0x" + keccak256(data).hex()


def compute_update_hash(
    chain_updates: Iterable[Tuple[int, int, int]],
    nonce: int,
) -> str:
    """
    Deterministic hash of an ordered batch of (chain_id, total, locked) and a nonce.

    Two operators proposing the same logical update always derive the same
    hash, which is what lets their signatures accumulate on one key.
    """
    batch = [(int(c), int(t), int(l)) for c, t, l in chain_updates]
    packed = encode(["(uint32,uint256,uint256)[]"], [batch]) + int(nonce).to_bytes(32, "big")
    return keccak256_hex(packed)


def compute_message_id(
    protocol_id: int,
    src_chain_id: int,
    dst_chain_id: int,
    sender: str,
    nonce: int,
    payload: bytes,
) -> str:
    """Identity of an outbound message; unique per (protocol, route, nonce)."""
    packed = encode(
        ["uint8", "uint256", "uint256", "address", "uint64", "bytes"],
        [protocol_id, src_chain_id, dst_chain_id, sender, nonce, payload],
    )
    return keccak256_hex(packed)


def encode_transfer_payload(recipient: str, amount: int, data: bytes = b"") -> bytes:
    """ABI-encode the transfer body carried inside every protocol message."""
    return encode(["address", "uint256", "bytes"], [recipient, amount, data])


def decode_transfer_payload(payload: bytes) -> Tuple[str, int, bytes]:
    """Inverse of :func:`encode_transfer_payload`; returns a checksummed recipient."""
    recipient, amount, data = decode(["address", "uint256", "bytes"], payload)
    return to_checksum_address(recipient), int(amount), bytes(data)
