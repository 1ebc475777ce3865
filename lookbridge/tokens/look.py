"""
LookCoin Token Ledger

Per-chain LOOK token state as seen by the bridge stack:
  - balances and total supply
  - cumulative minted / burned counters (read by reconciliation)
  - bridge mint / burn hooks restricted to authorized operators
  - an atomic scope that restores the ledger exactly if the body raises

One LookToken instance models the deployment on a single chain.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List

from ..constants import GLOBAL_TOTAL_SUPPLY, TOKEN_DECIMALS, TOKEN_SYMBOL
from ..exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    UnauthorizedError,
    ValidationError,
)
from ..logger import get_logger

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LookMintEvent:
    """Emitted on every mint (bridge settlement or genesis allocation)."""
    chain_id: int
    recipient: str
    amount: int
    reference: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Mint",
            "chainId": self.chain_id,
            "to": self.recipient,
            "amount": str(self.amount),
            "reference": self.reference,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class LookBurnEvent:
    """Emitted on every bridge-out burn."""
    chain_id: int
    sender: str
    amount: int
    dst_chain_id: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Burn",
            "chainId": self.chain_id,
            "from": self.sender,
            "amount": str(self.amount),
            "dstChainId": self.dst_chain_id,
            "timestamp": self.timestamp,
        }


# ══════════════════════════════════════════════════════════════════════
#  LOOK TOKEN
# ══════════════════════════════════════════════════════════════════════

class LookToken:
    """
    LOOK ledger for one chain.

    Supply invariant on every chain:
        total_supply == total_minted - total_burned

    Only bridge operators (the chain's router) may mint or burn.  All
    mutations hold the token lock, and `atomic()` lets a caller group a
    burn with follow-up work that may fail.
    """

    def __init__(
        self,
        chain_id: int,
        *,
        symbol: str = TOKEN_SYMBOL,
        decimals: int = TOKEN_DECIMALS,
        max_supply: int = GLOBAL_TOTAL_SUPPLY,
    ):
        if decimals < 0 or decimals > 18:
            raise ValidationError(f"Decimals must be 0-18, got {decimals}")
        self.chain_id = chain_id
        self.symbol = symbol
        self.decimals = decimals
        self.max_supply = max_supply

        self._balances: Dict[str, int] = {}
        self._total_minted = 0
        self._total_burned = 0
        self._events: List[Any] = []
        self._bridge_operators: set = set()
        self._lock = threading.RLock()

    # ── Read-only views ───────────────────────────────────────────────

    @property
    def total_supply(self) -> int:
        return self._total_minted - self._total_burned

    @property
    def total_minted(self) -> int:
        return self._total_minted

    @property
    def total_burned(self) -> int:
        return self._total_burned

    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    @property
    def events(self) -> List[Any]:
        return list(self._events)

    # ── Bridge authorization ──────────────────────────────────────────

    def add_bridge_operator(self, operator_address: str):
        """Authorize an address to mint/burn via bridge."""
        self._bridge_operators.add(operator_address)
        logger.info(f"Bridge operator added: {operator_address} for {self.symbol} [chain {self.chain_id}]")

    def remove_bridge_operator(self, operator_address: str):
        self._bridge_operators.discard(operator_address)

    def is_bridge_operator(self, address: str) -> bool:
        return address in self._bridge_operators

    def _require_bridge_operator(self, address: str):
        if address not in self._bridge_operators:
            raise UnauthorizedError(f"{address} is not an authorized bridge operator")

    # ── Mint / burn ───────────────────────────────────────────────────

    def mint(self, operator: str, recipient: str, amount: int, reference: str = "") -> LookMintEvent:
        """
        Mint `amount` to `recipient`.

        Raises:
            UnauthorizedError: operator is not a bridge operator
            InvalidAmountError: amount is not positive
            ValidationError: the mint would exceed the hard cap
        """
        self._require_bridge_operator(operator)
        if amount <= 0:
            raise InvalidAmountError("Mint amount must be positive")

        with self._lock:
            if self.total_supply + amount > self.max_supply:
                raise ValidationError(f"Minting {amount} would exceed max supply")
            self._balances[recipient] = self.balance_of(recipient) + amount
            self._total_minted += amount

            event = LookMintEvent(
                chain_id=self.chain_id,
                recipient=recipient,
                amount=amount,
                reference=reference,
            )
            self._events.append(event)

        logger.debug(f"Mint: {amount} {self.symbol} → {recipient} [chain {self.chain_id}]")
        return event

    def burn(self, operator: str, sender: str, amount: int, dst_chain_id: int = 0) -> LookBurnEvent:
        """
        Burn `amount` from `sender` ahead of a bridge-out.

        Raises:
            UnauthorizedError: operator is not a bridge operator
            InvalidAmountError: amount is not positive
            InsufficientBalanceError: sender balance < amount
        """
        self._require_bridge_operator(operator)
        if amount <= 0:
            raise InvalidAmountError("Burn amount must be positive")

        with self._lock:
            bal = self.balance_of(sender)
            if bal < amount:
                raise InsufficientBalanceError(
                    f"{sender} balance {bal} < burn amount {amount}"
                )
            self._balances[sender] = bal - amount
            self._total_burned += amount

            event = LookBurnEvent(
                chain_id=self.chain_id,
                sender=sender,
                amount=amount,
                dst_chain_id=dst_chain_id,
            )
            self._events.append(event)

        logger.debug(f"Burn: {sender} burned {amount} {self.symbol} [chain {self.chain_id}]")
        return event

    # ── Atomic scope ──────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "balances": dict(self._balances),
                "total_minted": self._total_minted,
                "total_burned": self._total_burned,
                "events": len(self._events),
            }

    def restore(self, snap: Dict[str, Any]) -> None:
        with self._lock:
            self._balances = dict(snap["balances"])
            self._total_minted = snap["total_minted"]
            self._total_burned = snap["total_burned"]
            del self._events[snap["events"]:]

    @contextmanager
    def atomic(self) -> Iterator['LookToken']:
        """
        Run the body with the token lock held; on any exception the
        ledger is restored to its state at entry and the exception
        propagates.
        """
        with self._lock:
            snap = self.snapshot()
            try:
                yield self
            except BaseException:
                self.restore(snap)
                logger.warning(f"{self.symbol} ledger rolled back [chain {self.chain_id}]")
                raise

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "decimals": self.decimals,
            "chainId": self.chain_id,
            "totalSupply": str(self.total_supply),
            "totalMinted": str(self._total_minted),
            "totalBurned": str(self._total_burned),
            "holders": len([b for b in self._balances.values() if b > 0]),
        }

    def __repr__(self) -> str:
        return f"<LookToken {self.symbol} chain={self.chain_id} supply={self.total_supply}>"
