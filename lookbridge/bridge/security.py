"""
LookBridge Security Manager

Rate limits applied by the router before any outbound transfer:
  - per protocol: daily volume, per-transaction cap, per-sender cooldown
  - per sender: transactions per rolling window, per-transaction cap
  - global: daily volume across every protocol
  - per protocol pause and per address block list

`check_transfer()` is a pure check; `record_transfer()` is called only
after the transfer was dispatched, so a rejected or reverted transfer
never consumes any allowance.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional, Set

from .types import ProtocolId, checksum
from ..access import AccessControl, Role
from ..constants import (
    DAY_SECONDS,
    GLOBAL_DAILY_LIMIT,
    PER_TRANSACTION_LIMIT,
    PROTOCOL_SECURITY_DEFAULTS,
    RATE_LIMIT_WINDOW,
    TRANSACTIONS_PER_WINDOW,
)
from ..exceptions import RateLimitExceededError, ValidationError
from ..logger import get_logger

logger = get_logger(__name__)


@dataclass
class ProtocolLimits:
    """
    Limits for one protocol.

    Attributes:
        daily_limit: Maximum volume per UTC day (0 = unlimited)
        transaction_limit: Maximum single transfer (0 = unlimited)
        cooldown_period: Seconds a sender must wait between transfers
        paused: Reject every transfer through this protocol
    """
    daily_limit: int
    transaction_limit: int
    cooldown_period: int = 0
    paused: bool = False

    def __post_init__(self):
        if self.daily_limit < 0 or self.transaction_limit < 0 or self.cooldown_period < 0:
            raise ValueError("protocol limits cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daily_limit": str(self.daily_limit),
            "transaction_limit": str(self.transaction_limit),
            "cooldown_period": self.cooldown_period,
            "paused": self.paused,
        }


def default_protocol_limits() -> Dict[ProtocolId, ProtocolLimits]:
    return {
        ProtocolId(pid): ProtocolLimits(daily, tx, cooldown)
        for pid, (daily, tx, cooldown) in PROTOCOL_SECURITY_DEFAULTS.items()
    }


@dataclass
class SecurityPolicy:
    """Limits enforced by a SecurityManager (0 disables a limit)."""
    global_daily_limit: int = GLOBAL_DAILY_LIMIT
    per_transaction_limit: int = PER_TRANSACTION_LIMIT
    window_duration: int = RATE_LIMIT_WINDOW
    transactions_per_window: int = TRANSACTIONS_PER_WINDOW
    protocols: Dict[ProtocolId, ProtocolLimits] = field(default_factory=default_protocol_limits)

    @classmethod
    def unlimited(cls) -> 'SecurityPolicy':
        """Policy with every limit disabled (local simulations and tests)."""
        return cls(
            global_daily_limit=0,
            per_transaction_limit=0,
            window_duration=RATE_LIMIT_WINDOW,
            transactions_per_window=0,
            protocols={pid: ProtocolLimits(0, 0, 0) for pid in ProtocolId},
        )

    def copy(self) -> 'SecurityPolicy':
        return SecurityPolicy(
            global_daily_limit=self.global_daily_limit,
            per_transaction_limit=self.per_transaction_limit,
            window_duration=self.window_duration,
            transactions_per_window=self.transactions_per_window,
            protocols={p: ProtocolLimits(**vars(limits)) for p, limits in self.protocols.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "global_daily_limit": str(self.global_daily_limit),
            "per_transaction_limit": str(self.per_transaction_limit),
            "window_duration": self.window_duration,
            "transactions_per_window": self.transactions_per_window,
            "protocols": {p.label: limits.to_dict() for p, limits in self.protocols.items()},
        }


class SecurityManager:
    """
    Transfer rate limiter for one chain's router.
    """

    def __init__(
        self,
        access: AccessControl,
        policy: Optional[SecurityPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._access = access
        self.policy = policy or SecurityPolicy()
        self._clock = clock
        self._lock = threading.RLock()

        self._current_day = 0
        self._global_volume = 0
        self._protocol_volume: Dict[ProtocolId, int] = {}
        self._last_transfer: Dict[tuple, float] = {}           # (protocol, sender) → ts
        self._sender_window: Dict[str, Deque[float]] = {}
        self._blocked: Set[str] = set()
        self._last_prune = 0.0

    # ── Checks ──────────────────────────────────────────────────────

    def _roll_day(self, now: float) -> None:
        day = int(now) // DAY_SECONDS
        if day > self._current_day:
            self._current_day = day
            self._global_volume = 0
            self._protocol_volume = {}

    def _window_count(self, sender: str, now: float) -> int:
        window = self._sender_window.get(sender)
        if window is None:
            return 0
        while window and now - window[0] >= self.policy.window_duration:
            window.popleft()
        if not window:
            del self._sender_window[sender]
        return len(window)

    def _prune(self, now: float) -> None:
        """Forget senders whose window and cooldowns have fully elapsed."""
        if now - self._last_prune < self.policy.window_duration:
            return
        self._last_prune = now
        for sender in list(self._sender_window):
            self._window_count(sender, now)
        expired = [
            key for key, ts in self._last_transfer.items()
            if now - ts >= self._cooldown(key[0])
        ]
        for key in expired:
            del self._last_transfer[key]

    def _cooldown(self, protocol_id: ProtocolId) -> int:
        limits = self.policy.protocols.get(protocol_id)
        return limits.cooldown_period if limits is not None else 0

    def check_transfer(self, protocol_id: ProtocolId, sender: str, amount: int) -> None:
        """
        Raise RateLimitExceededError if the transfer breaks any limit.

        Nothing is recorded; callers invoke `record_transfer` once the
        transfer has been dispatched.
        """
        protocol_id = ProtocolId(protocol_id)
        now = self._clock()
        with self._lock:
            self._roll_day(now)
            reason = self._rejection_reason(protocol_id, sender, amount, now)

        if reason:
            logger.warning(f"Transfer rejected ({protocol_id.label}, {sender}): {reason}")
            raise RateLimitExceededError(reason)

    def _rejection_reason(self, protocol_id: ProtocolId, sender: str, amount: int, now: float) -> str:
        policy = self.policy
        limits = policy.protocols.get(protocol_id)

        if sender in self._blocked:
            return "Transfer blocked"
        if limits is not None and limits.paused:
            return f"Protocol {protocol_id.label} paused"
        if policy.per_transaction_limit and amount > policy.per_transaction_limit:
            return (
                f"Per-transaction limit exceeded: {amount} > {policy.per_transaction_limit}"
            )
        if limits is not None and limits.transaction_limit and amount > limits.transaction_limit:
            return f"Transaction limit exceeded: {amount} > {limits.transaction_limit}"
        if policy.global_daily_limit and self._global_volume + amount > policy.global_daily_limit:
            return "Global daily limit exceeded"
        if limits is not None and limits.daily_limit:
            used = self._protocol_volume.get(protocol_id, 0)
            if used + amount > limits.daily_limit:
                return f"Protocol {protocol_id.label} daily limit exceeded"
        if limits is not None and limits.cooldown_period:
            last = self._last_transfer.get((protocol_id, sender))
            if last is not None and now - last < limits.cooldown_period:
                return f"Cooldown active for {protocol_id.label}"
        if policy.transactions_per_window:
            if self._window_count(sender, now) >= policy.transactions_per_window:
                return (
                    f"Rate limit exceeded: {policy.transactions_per_window} transfers "
                    f"per {policy.window_duration}s"
                )
        return ""

    def record_transfer(self, protocol_id: ProtocolId, sender: str, amount: int) -> None:
        protocol_id = ProtocolId(protocol_id)
        now = self._clock()
        with self._lock:
            self._roll_day(now)
            self._global_volume += amount
            self._protocol_volume[protocol_id] = self._protocol_volume.get(protocol_id, 0) + amount
            self._last_transfer[(protocol_id, sender)] = now
            self._sender_window.setdefault(sender, deque()).append(now)
            self._prune(now)

    # ── Administration ──────────────────────────────────────────────

    def update_protocol_limits(self, caller: str, protocol_id: ProtocolId, limits: ProtocolLimits) -> None:
        self._access.require(Role.ADMIN, caller)
        protocol_id = ProtocolId(protocol_id)
        with self._lock:
            self.policy.protocols[protocol_id] = limits
        logger.info(f"Security limits updated for {protocol_id.label}: {limits.to_dict()}")

    def update_global_daily_limit(self, caller: str, limit: int) -> None:
        self._access.require(Role.ADMIN, caller)
        if limit < 0:
            raise ValidationError("Global daily limit cannot be negative")
        self.policy.global_daily_limit = limit
        logger.info(f"Global daily limit updated: {limit}")

    def set_protocol_paused(self, caller: str, protocol_id: ProtocolId, paused: bool) -> None:
        self._access.require(Role.EMERGENCY, caller)
        protocol_id = ProtocolId(protocol_id)
        with self._lock:
            limits = self.policy.protocols.setdefault(protocol_id, ProtocolLimits(0, 0, 0))
            limits.paused = paused
        logger.warning(f"Protocol {protocol_id.label} {'PAUSED' if paused else 'unpaused'}")

    def block_address(self, caller: str, address: str, blocked: bool = True) -> None:
        self._access.require(Role.EMERGENCY, caller)
        address = checksum(address)
        with self._lock:
            if blocked:
                self._blocked.add(address)
            else:
                self._blocked.discard(address)
        logger.warning(f"Address {address} {'blocked' if blocked else 'unblocked'}")

    # ── Status ──────────────────────────────────────────────────────

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            self._roll_day(self._clock())
            return {
                "policy": self.policy.to_dict(),
                "global_volume_today": str(self._global_volume),
                "protocol_volume_today": {
                    p.label: str(v) for p, v in self._protocol_volume.items()
                },
                "blocked_addresses": sorted(self._blocked),
                "tracked_senders": len(
                    set(self._sender_window) | {sender for _, sender in self._last_transfer}
                ),
            }
