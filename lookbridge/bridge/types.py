"""
LookBridge Cross-Chain Types

Core data structures shared by the router, protocol modules and supply
oracle.

Defines:
  - ProtocolId enum for the routed messaging protocols
  - ChainSupplyRecord / ChainSupplyUpdate for per-chain supply accounting
  - BridgeRegistration for the (chain, protocol) → endpoint table
  - PendingUpdate for threshold-signed supply updates awaiting quorum
  - CircuitBreakerState for the global health latch
  - RouteRequest / TransferReceipt for the caller-facing bridge call
  - RoutePreference / BridgeOption for route discovery
  - CrossChainMessage / SenderProof for the protocol wire envelope
"""

import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Set, Tuple

from eth_utils import is_address, to_checksum_address

from ..constants import (
    CHAIN_NAMES,
    MAX_UINT256,
    PROTOCOL_CELER,
    PROTOCOL_HYPERLANE,
    PROTOCOL_LAYERZERO,
)
from ..crypto.hashing import compute_update_hash
from ..exceptions import InvalidAmountError, ValidationError


def checksum(address: str, field_name: str = "address") -> str:
    """Validate and EIP-55 checksum an EVM address."""
    if not isinstance(address, str) or not is_address(address):
        raise ValidationError(f"Invalid {field_name}: {address!r}")
    return to_checksum_address(address)


def chain_label(chain_id: int) -> str:
    """`[chain 56]`-style tag used in log lines."""
    return f"[chain {chain_id}]"


def chain_name(chain_id: int) -> str:
    return CHAIN_NAMES.get(chain_id, f"Chain {chain_id}")


# ══════════════════════════════════════════════════════════════════════
#  PROTOCOL IDENTIFIERS
# ══════════════════════════════════════════════════════════════════════

class ProtocolId(IntEnum):
    """Messaging protocols the router can dispatch through."""
    LAYERZERO = PROTOCOL_LAYERZERO
    CELER     = PROTOCOL_CELER
    HYPERLANE = PROTOCOL_HYPERLANE

    @property
    def label(self) -> str:
        return PROTOCOL_NAMES[self]


PROTOCOL_NAMES: Dict[int, str] = {
    ProtocolId.LAYERZERO: "LayerZero",
    ProtocolId.CELER: "Celer",
    ProtocolId.HYPERLANE: "Hyperlane",
}


# ══════════════════════════════════════════════════════════════════════
#  SUPPLY RECORDS
# ══════════════════════════════════════════════════════════════════════

@dataclass
class ChainSupplyRecord:
    """
    Oracle view of one chain's token supply.

    Attributes:
        chain_id: EVM chain id of the deployment
        total_supply: Total supply on that chain (smallest units)
        locked_supply: Portion held by lock-and-mint bridges
        last_updated_at: Unix seconds of the applied update (0 = never)
        nonce: Nonce of the update that produced this record
    """
    chain_id: int
    total_supply: int = 0
    locked_supply: int = 0
    last_updated_at: int = 0
    nonce: int = 0

    def __post_init__(self):
        if self.total_supply < 0 or self.locked_supply < 0:
            raise ValueError("supply values must be non-negative")
        if self.locked_supply > self.total_supply:
            raise ValueError("locked_supply cannot exceed total_supply")

    @property
    def circulating_supply(self) -> int:
        return self.total_supply - self.locked_supply

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "total_supply": str(self.total_supply),
            "locked_supply": str(self.locked_supply),
            "circulating_supply": str(self.circulating_supply),
            "last_updated_at": self.last_updated_at,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ChainSupplyRecord':
        return cls(
            chain_id=int(d["chain_id"]),
            total_supply=int(d["total_supply"]),
            locked_supply=int(d["locked_supply"]),
            last_updated_at=int(d.get("last_updated_at", 0)),
            nonce=int(d.get("nonce", 0)),
        )


@dataclass(frozen=True)
class ChainSupplyUpdate:
    """One (chain_id, total_supply, locked_supply) entry of a batch update."""
    chain_id: int
    total_supply: int
    locked_supply: int = 0

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.chain_id, self.total_supply, self.locked_supply)

    @classmethod
    def coerce(cls, value: Any) -> 'ChainSupplyUpdate':
        """Accept an update, a 3-tuple or a mapping."""
        if isinstance(value, ChainSupplyUpdate):
            return value
        if isinstance(value, dict):
            return cls(
                chain_id=int(value["chain_id"]),
                total_supply=int(value["total_supply"]),
                locked_supply=int(value.get("locked_supply", 0)),
            )
        chain_id, total, locked = value
        return cls(int(chain_id), int(total), int(locked))


# ══════════════════════════════════════════════════════════════════════
#  BRIDGE REGISTRATION
# ══════════════════════════════════════════════════════════════════════

@dataclass
class BridgeRegistration:
    """
    Registered bridge endpoint for a (chain, protocol) pair.

    `bridge_address` is the protocol module deployed on `chain_id`;
    outbound messages to that chain are addressed to it.
    """
    chain_id: int
    protocol_id: ProtocolId
    bridge_address: str
    is_active: bool = True
    registered_at: int = 0

    def __post_init__(self):
        if self.registered_at == 0:
            self.registered_at = int(time.time())

    @property
    def key(self) -> Tuple[int, int]:
        return (self.chain_id, int(self.protocol_id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "protocol_id": int(self.protocol_id),
            "protocol": PROTOCOL_NAMES[self.protocol_id],
            "bridge_address": self.bridge_address,
            "is_active": self.is_active,
            "registered_at": self.registered_at,
        }


# ══════════════════════════════════════════════════════════════════════
#  PENDING UPDATE
# ══════════════════════════════════════════════════════════════════════

@dataclass
class PendingUpdate:
    """
    Supply update collecting operator signatures toward the k-of-n threshold.

    The update hash covers the ordered chain updates and the nonce, so
    every operator that observed the same state in the same window lands on
    the same pending entry.
    """
    chain_updates: List[ChainSupplyUpdate]
    nonce: int
    required_signatures: int
    signatures: Set[str] = field(default_factory=set)
    created_at: int = 0
    update_hash: str = ""

    def __post_init__(self):
        if self.created_at == 0:
            self.created_at = int(time.time())
        if not self.update_hash:
            self.update_hash = compute_update_hash(
                [u.as_tuple() for u in self.chain_updates], self.nonce
            )

    @property
    def signature_count(self) -> int:
        return len(self.signatures)

    @property
    def meets_threshold(self) -> bool:
        return self.signature_count >= self.required_signatures

    def add_signature(self, operator: str) -> bool:
        """Record an operator signature. Returns False if already present."""
        if operator in self.signatures:
            return False
        self.signatures.add(operator)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "update_hash": self.update_hash,
            "chain_updates": [
                {"chain_id": u.chain_id, "total_supply": str(u.total_supply),
                 "locked_supply": str(u.locked_supply)}
                for u in self.chain_updates
            ],
            "nonce": self.nonce,
            "signatures": sorted(self.signatures),
            "required_signatures": self.required_signatures,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of one operator's `submit_update` call."""
    update_hash: str
    operator: str
    signature_count: int
    required_signatures: int
    applied: bool = False
    duplicate: bool = False


# ══════════════════════════════════════════════════════════════════════
#  CIRCUIT BREAKER
# ══════════════════════════════════════════════════════════════════════

@dataclass
class CircuitBreakerState:
    """Global health latch; set automatically, cleared only by an admin."""
    enabled: bool = False
    triggered_at: int = 0
    reason: str = ""
    discrepancy: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "triggered_at": self.triggered_at,
            "reason": self.reason,
            "discrepancy": str(self.discrepancy),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CircuitBreakerState':
        return cls(
            enabled=bool(d.get("enabled", False)),
            triggered_at=int(d.get("triggered_at", 0)),
            reason=d.get("reason", ""),
            discrepancy=int(d.get("discrepancy", 0)),
        )


# ══════════════════════════════════════════════════════════════════════
#  ROUTING
# ══════════════════════════════════════════════════════════════════════

@dataclass
class RouteRequest:
    """
    A single bridge-out request.

    Not persisted; validated and consumed within one router call.
    """
    dst_chain_id: int
    recipient: str
    amount: int
    protocol_id: ProtocolId
    payload: bytes = b""

    def __post_init__(self):
        if self.amount <= 0:
            raise InvalidAmountError("Bridge amount must be positive")
        if self.amount > MAX_UINT256:
            raise InvalidAmountError("Bridge amount exceeds uint256")
        self.recipient = checksum(self.recipient, "recipient")
        self.protocol_id = ProtocolId(self.protocol_id)


class RoutePreference(IntEnum):
    """What `optimal_route` optimizes for."""
    CHEAPEST    = 0
    FASTEST     = 1
    MOST_SECURE = 2


@dataclass(frozen=True)
class BridgeOption:
    """
    One protocol's offer for a destination chain.

    Attributes:
        protocol_id: Protocol the option routes through
        available: Registered, active on the route and enabled on the router
        fee: Total native fee (messaging + router service fee); 0 if unavailable
        estimated_time: Typical delivery time in seconds
        security_level: Relative security score, higher is stronger
    """
    protocol_id: ProtocolId
    available: bool
    fee: int
    estimated_time: int
    security_level: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": PROTOCOL_NAMES[self.protocol_id],
            "protocol_id": int(self.protocol_id),
            "available": self.available,
            "fee": str(self.fee),
            "estimated_time": self.estimated_time,
            "security_level": self.security_level,
        }


@dataclass(frozen=True)
class TransferReceipt:
    """Returned to the caller after a successful dispatch."""
    message_id: str
    protocol_id: ProtocolId
    src_chain_id: int
    dst_chain_id: int
    sender: str
    recipient: str
    amount: int
    fee: int
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "protocol": PROTOCOL_NAMES[self.protocol_id],
            "src_chain_id": self.src_chain_id,
            "dst_chain_id": self.dst_chain_id,
            "sender": self.sender,
            "recipient": self.recipient,
            "amount": str(self.amount),
            "fee": str(self.fee),
            "created_at": self.created_at,
        }


# ══════════════════════════════════════════════════════════════════════
#  WIRE ENVELOPE
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CrossChainMessage:
    """
    Message handed to a transport by the sending protocol module.

    `src_chain_id` / `dst_chain_id` use the protocol's own numbering
    (LayerZero chain ids, Hyperlane domains, plain chain ids for Celer).
    """
    protocol_id: ProtocolId
    src_chain_id: int
    dst_chain_id: int
    sender: str
    destination: str
    nonce: int
    message_id: str
    payload: bytes
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SenderProof:
    """
    What the delivering transport vouches for on the receiving chain.

    Attributes:
        sender: Remote module address that sent the message
        transport: Address of the endpoint / message bus / mailbox that delivered it
        nonce: Per-route outbound nonce
        message_id: Message identity (hash)
        metadata: Protocol extras (e.g. ISM validator signers for Hyperlane)
    """
    sender: str
    transport: str
    nonce: int = 0
    message_id: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


def resolve_protocol(value: Any) -> Optional[ProtocolId]:
    """Map an int or protocol name to ProtocolId, or None if unknown."""
    if isinstance(value, ProtocolId):
        return value
    if isinstance(value, str):
        for pid, name in PROTOCOL_NAMES.items():
            if name.lower() == value.strip().lower():
                return ProtocolId(pid)
        return None
    try:
        return ProtocolId(int(value))
    except ValueError:
        return None
