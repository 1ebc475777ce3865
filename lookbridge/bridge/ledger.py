"""
LookBridge Chain Supply Ledger

Keyed store of per-chain supply records owned by the SupplyOracle.

Records are created when a chain is registered and replaced only by
`apply()`, which validates a whole batch before touching any record.
The previous record of every chain is kept in a bounded history for
audit queries.
"""

import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence

from .types import ChainSupplyRecord, ChainSupplyUpdate
from ..constants import MAX_UINT256, SUPPLY_HISTORY_LIMIT
from ..exceptions import InvalidSupplyUpdateError, UnknownChainError


class ChainSupplyLedger:
    """
    Per-chain supply records with invariant checks.

    Invariants:
        - locked_supply <= total_supply for every record
        - a batch is applied entirely or not at all
        - records are never deleted
    """

    def __init__(self, history_limit: int = SUPPLY_HISTORY_LIMIT):
        self._records: Dict[int, ChainSupplyRecord] = {}
        self._history: Dict[int, Deque[ChainSupplyRecord]] = {}
        self._history_limit = history_limit

    # ── Registration ────────────────────────────────────────────────

    def register_chain(self, chain_id: int) -> bool:
        """Create an empty record for `chain_id`. Returns False if present."""
        if chain_id <= 0 or chain_id >= 2 ** 32:
            raise InvalidSupplyUpdateError(f"Chain id out of range: {chain_id}")
        if chain_id in self._records:
            return False
        self._records[chain_id] = ChainSupplyRecord(chain_id=chain_id)
        self._history[chain_id] = deque(maxlen=self._history_limit)
        return True

    def is_registered(self, chain_id: int) -> bool:
        return chain_id in self._records

    @property
    def chain_ids(self) -> List[int]:
        return sorted(self._records)

    # ── Queries ─────────────────────────────────────────────────────

    def get(self, chain_id: int) -> ChainSupplyRecord:
        record = self._records.get(chain_id)
        if record is None:
            raise UnknownChainError(f"Chain {chain_id} is not registered")
        return record

    def records(self) -> List[ChainSupplyRecord]:
        return [self._records[c] for c in sorted(self._records)]

    def history(self, chain_id: int) -> List[ChainSupplyRecord]:
        """Superseded records for `chain_id`, oldest first."""
        self.get(chain_id)
        return list(self._history[chain_id])

    def global_supply(self) -> int:
        return sum(r.total_supply for r in self._records.values())

    def global_locked(self) -> int:
        return sum(r.locked_supply for r in self._records.values())

    def global_circulating(self) -> int:
        return self.global_supply() - self.global_locked()

    # ── Validation / mutation ───────────────────────────────────────

    def validate(self, chain_updates: Sequence[ChainSupplyUpdate]) -> None:
        """
        Check a batch without mutating anything.

        Raises:
            InvalidSupplyUpdateError: empty batch, duplicate chain,
                values outside uint256 or locked > total
            UnknownChainError: a chain has not been registered
        """
        if not chain_updates:
            raise InvalidSupplyUpdateError("Supply update batch is empty")
        seen = set()
        for update in chain_updates:
            if update.chain_id in seen:
                raise InvalidSupplyUpdateError(
                    f"Duplicate chain {update.chain_id} in supply update"
                )
            seen.add(update.chain_id)
            if update.chain_id not in self._records:
                raise UnknownChainError(f"Chain {update.chain_id} is not registered")
            if update.total_supply < 0 or update.locked_supply < 0:
                raise InvalidSupplyUpdateError(
                    f"Negative supply for chain {update.chain_id}"
                )
            if update.total_supply > MAX_UINT256:
                raise InvalidSupplyUpdateError(
                    f"Supply for chain {update.chain_id} exceeds uint256"
                )
            if update.locked_supply > update.total_supply:
                raise InvalidSupplyUpdateError(
                    f"Locked supply exceeds total supply for chain {update.chain_id}"
                )

    def apply(
        self,
        chain_updates: Sequence[ChainSupplyUpdate],
        nonce: int,
        timestamp: Optional[int] = None,
    ) -> List[ChainSupplyRecord]:
        """Validate then replace the record of every chain in the batch."""
        self.validate(chain_updates)
        now = int(time.time()) if timestamp is None else timestamp

        new_records = [
            ChainSupplyRecord(
                chain_id=u.chain_id,
                total_supply=u.total_supply,
                locked_supply=u.locked_supply,
                last_updated_at=now,
                nonce=nonce,
            )
            for u in chain_updates
        ]
        for record in new_records:
            previous = self._records[record.chain_id]
            if previous.last_updated_at:
                self._history[record.chain_id].append(previous)
            self._records[record.chain_id] = record
        return new_records

    # ── Persistence ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {str(c): r.to_dict() for c, r in sorted(self._records.items())}

    def load(self, data: Dict[str, Any]) -> None:
        """Replace records from a `to_dict()` snapshot (history starts empty)."""
        self._records = {}
        self._history = {}
        for raw in data.values():
            record = ChainSupplyRecord.from_dict(raw)
            self._records[record.chain_id] = record
            self._history[record.chain_id] = deque(maxlen=self._history_limit)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, chain_id: int) -> bool:
        return chain_id in self._records
