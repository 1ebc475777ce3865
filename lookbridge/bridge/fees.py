"""
LookBridge Fee Manager

Router service fees charged on top of each protocol's messaging fee.

  service_fee = base_fee + amount * percentage_fee / 10_000

Fees are configured per protocol, optionally overridden per destination
chain, and accumulate per (protocol, chain) until an admin withdraws
them.  A protocol without configured fees (or with fees deactivated)
charges no service fee.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .events import FEES_WITHDRAWN, PROTOCOL_FEES_UPDATED, EventLog
from .types import PROTOCOL_NAMES, ProtocolId, checksum
from ..access import AccessControl, Role
from ..constants import FEE_BASIS_POINTS
from ..exceptions import ValidationError
from ..logger import get_logger

logger = get_logger(__name__)


@dataclass
class ProtocolFees:
    """Service fee schedule for one protocol (or one protocol on one chain)."""
    base_fee: int = 0
    percentage_fee: int = 0  # basis points
    is_active: bool = True

    def __post_init__(self):
        if self.base_fee < 0:
            raise ValidationError("Base fee cannot be negative")
        if not 0 <= self.percentage_fee <= FEE_BASIS_POINTS:
            raise ValidationError(f"Percentage fee too high: {self.percentage_fee} bps")

    def quote(self, amount: int) -> int:
        if not self.is_active:
            return 0
        return self.base_fee + amount * self.percentage_fee // FEE_BASIS_POINTS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_fee": str(self.base_fee),
            "percentage_fee": self.percentage_fee,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class FeeQuote:
    """Native fee breakdown for one bridge-out."""
    protocol_id: ProtocolId
    dst_chain_id: int
    messaging_fee: int
    service_fee: int = 0

    @property
    def total_fee(self) -> int:
        return self.messaging_fee + self.service_fee

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": PROTOCOL_NAMES[self.protocol_id],
            "dst_chain_id": self.dst_chain_id,
            "messaging_fee": str(self.messaging_fee),
            "service_fee": str(self.service_fee),
            "total_fee": str(self.total_fee),
        }


class FeeManager:
    """
    Service fee schedule and collected-fee ledger of one router.
    """

    def __init__(self, access: AccessControl, events: Optional[EventLog] = None):
        self._access = access
        self._events = events or EventLog("fees")
        self._protocol_fees: Dict[ProtocolId, ProtocolFees] = {}
        self._chain_fees: Dict[Tuple[ProtocolId, int], ProtocolFees] = {}
        self._collected: Dict[Tuple[ProtocolId, int], int] = {}
        self._withdrawn: Dict[str, int] = {}
        self._lock = threading.RLock()

    # ── Schedule (ADMIN) ────────────────────────────────────────────

    def set_protocol_fees(
        self,
        caller: str,
        protocol_id: ProtocolId,
        base_fee: int,
        percentage_fee: int,
        is_active: bool = True,
    ) -> ProtocolFees:
        self._access.require(Role.ADMIN, caller)
        protocol_id = ProtocolId(protocol_id)
        fees = ProtocolFees(base_fee, percentage_fee, is_active)
        with self._lock:
            self._protocol_fees[protocol_id] = fees
        logger.info(f"{protocol_id.label} service fees: {fees.to_dict()}")
        self._events.emit(
            PROTOCOL_FEES_UPDATED,
            protocol_id=int(protocol_id),
            chain_id=0,
            base_fee=base_fee,
            percentage_fee=percentage_fee,
            is_active=is_active,
        )
        return fees

    def set_chain_fees(
        self,
        caller: str,
        protocol_id: ProtocolId,
        chain_id: int,
        base_fee: int,
        percentage_fee: int,
        is_active: bool = True,
    ) -> ProtocolFees:
        """Override the protocol schedule for transfers to `chain_id`."""
        self._access.require(Role.ADMIN, caller)
        protocol_id = ProtocolId(protocol_id)
        fees = ProtocolFees(base_fee, percentage_fee, is_active)
        with self._lock:
            self._chain_fees[(protocol_id, chain_id)] = fees
        logger.info(f"{protocol_id.label} service fees for [chain {chain_id}]: {fees.to_dict()}")
        self._events.emit(
            PROTOCOL_FEES_UPDATED,
            protocol_id=int(protocol_id),
            chain_id=chain_id,
            base_fee=base_fee,
            percentage_fee=percentage_fee,
            is_active=is_active,
        )
        return fees

    def fees_for(self, protocol_id: ProtocolId, chain_id: int) -> Optional[ProtocolFees]:
        protocol_id = ProtocolId(protocol_id)
        return self._chain_fees.get((protocol_id, chain_id)) or self._protocol_fees.get(protocol_id)

    # ── Quotes ──────────────────────────────────────────────────────

    def service_fee(self, protocol_id: ProtocolId, chain_id: int, amount: int) -> int:
        fees = self.fees_for(protocol_id, chain_id)
        return fees.quote(amount) if fees is not None else 0

    def compare(self, chain_id: int, amount: int) -> Dict[ProtocolId, int]:
        """Service fee of every protocol with a schedule, for one transfer."""
        configured = set(self._protocol_fees) | {p for p, c in self._chain_fees if c == chain_id}
        return {p: self.service_fee(p, chain_id, amount) for p in sorted(configured)}

    # ── Collection ──────────────────────────────────────────────────

    def collect(self, protocol_id: ProtocolId, chain_id: int, amount: int) -> None:
        if amount <= 0:
            return
        key = (ProtocolId(protocol_id), chain_id)
        with self._lock:
            self._collected[key] = self._collected.get(key, 0) + amount

    def collected(self, protocol_id: Optional[ProtocolId] = None, chain_id: Optional[int] = None) -> int:
        """Collected, not yet withdrawn fees; filters are optional."""
        with self._lock:
            return sum(
                v for (p, c), v in self._collected.items()
                if (protocol_id is None or p == protocol_id)
                and (chain_id is None or c == chain_id)
            )

    def withdraw(self, caller: str, protocol_id: ProtocolId, chain_id: int, recipient: str) -> int:
        """
        Pay out the fees collected for (protocol, chain) to `recipient`.

        Returns:
            The amount withdrawn (0 if nothing was collected)
        """
        self._access.require(Role.ADMIN, caller)
        protocol_id = ProtocolId(protocol_id)
        recipient = checksum(recipient, "recipient")
        with self._lock:
            amount = self._collected.pop((protocol_id, chain_id), 0)
            if amount:
                self._withdrawn[recipient] = self._withdrawn.get(recipient, 0) + amount
        if not amount:
            return 0

        logger.info(
            f"Withdrew {amount} {protocol_id.label} service fees for [chain {chain_id}] → {recipient}"
        )
        self._events.emit(
            FEES_WITHDRAWN,
            protocol_id=int(protocol_id),
            chain_id=chain_id,
            recipient=recipient,
            amount=amount,
        )
        return amount

    def withdrawn_to(self, recipient: str) -> int:
        return self._withdrawn.get(checksum(recipient, "recipient"), 0)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "protocols": {p.label: f.to_dict() for p, f in sorted(self._protocol_fees.items())},
                "chain_overrides": [
                    {"protocol": p.label, "chain_id": c, **f.to_dict()}
                    for (p, c), f in sorted(self._chain_fees.items())
                ],
                "collected": [
                    {"protocol": p.label, "chain_id": c, "amount": str(v)}
                    for (p, c), v in sorted(self._collected.items())
                ],
            }
