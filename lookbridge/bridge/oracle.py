"""
LookBridge Supply Oracle

k-of-n signed cross-chain supply tracking with a circuit breaker.

Update flow:
  1. An operator signs keccak(abi.encode(updates) ‖ nonce) and submits
  2. The oracle validates the batch, rejects stale nonces and recovers the
     operator from the signature (must hold ORACLE)
  3. Signatures accumulate on the pending update keyed by its hash; the
     state store merges them so separate operator processes count together
  4. At `required_signatures` the whole batch is applied at once, older
     pending updates are discarded (locally and in the shared store) and
     SupplyUpdated is emitted
  5. The global discrepancy is checked immediately

Circuit breaker:
  - Trips when |Σ total_supply − expected_global_supply| > tolerance
  - Bridge-out is BLOCKED while tripped; inbound settlement is ALLOWED
  - Cleared only by an ADMIN (manual recovery)

  ┌──────────────────────────────┬─────────────┐
  │ Operation                    │ Tripped     │
  ├──────────────────────────────┼─────────────┤
  │ Router.bridge (bridge-out)   │ BLOCKED     │
  │ Inbound settlement           │ ALLOWED     │
  │ Supply updates               │ ALLOWED     │
  └──────────────────────────────┴─────────────┘
"""

import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .events import (
    CIRCUIT_BREAKER_RESET,
    CIRCUIT_BREAKER_TRIGGERED,
    SUPPLY_RECONCILED,
    SUPPLY_UPDATED,
    EventLog,
)
from .ledger import ChainSupplyLedger
from .store import InMemoryOracleStateStore, OracleStateStore
from .types import (
    ChainSupplyRecord,
    ChainSupplyUpdate,
    CircuitBreakerState,
    PendingUpdate,
    SubmissionResult,
)
from ..access import AccessControl, Role
from ..constants import (
    DEFAULT_RECONCILIATION_INTERVAL,
    DEFAULT_REQUIRED_SIGNATURES,
    DEFAULT_TOLERANCE_THRESHOLD,
    GLOBAL_TOTAL_SUPPLY,
    MAX_UINT256,
    PENDING_UPDATE_TTL_INTERVALS,
)
from ..crypto.hashing import compute_update_hash
from ..crypto.keys import InvalidSignatureError, PrivateKey, Signature
from ..exceptions import (
    ConfigurationError,
    StaleNonceError,
    UnauthorizedError,
    ValidationError,
)
from ..logger import get_logger

logger = get_logger(__name__)


UpdateLike = Union[ChainSupplyUpdate, Tuple[int, int, int], Dict[str, Any]]


def sign_update(
    key: PrivateKey,
    chain_updates: Iterable[UpdateLike],
    nonce: int,
) -> Tuple[str, Signature]:
    """Compute the update hash and sign it with an operator key."""
    updates = [ChainSupplyUpdate.coerce(u) for u in chain_updates]
    update_hash = compute_update_hash([u.as_tuple() for u in updates], nonce)
    return update_hash, key.sign_msg_hash(update_hash)


class SupplyOracle:
    """
    Threshold-signed supply oracle.

    All state transitions hold the oracle lock, so updates, reconciliation
    and breaker changes are totally ordered.
    """

    def __init__(
        self,
        access: AccessControl,
        *,
        events: Optional[EventLog] = None,
        state_store: Optional[OracleStateStore] = None,
        expected_global_supply: int = GLOBAL_TOTAL_SUPPLY,
        tolerance_threshold: int = DEFAULT_TOLERANCE_THRESHOLD,
        reconciliation_interval: int = DEFAULT_RECONCILIATION_INTERVAL,
        required_signatures: int = DEFAULT_REQUIRED_SIGNATURES,
        chain_ids: Iterable[int] = (),
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            access: Role table (ORACLE signers, ADMIN, EMERGENCY)
            events: Event log for oracle events
            state_store: Persistence backend; InMemoryOracleStateStore if None
            expected_global_supply: Supply every chain should sum to
            tolerance_threshold: Allowed absolute discrepancy
            reconciliation_interval: Seconds between reconciliations
            required_signatures: Operator signatures needed to apply an update
            chain_ids: Chains to register at construction
            clock: Time source (seconds)
        """
        if required_signatures < 1:
            raise ConfigurationError("required_signatures must be >= 1")
        if reconciliation_interval <= 0:
            raise ConfigurationError("reconciliation_interval must be positive")
        if tolerance_threshold < 0 or expected_global_supply < 0:
            raise ConfigurationError("supply parameters cannot be negative")

        self._access = access
        self._events = events or EventLog("oracle")
        self._clock = clock
        self._lock = threading.RLock()

        # ── parameters ──
        self.expected_global_supply = expected_global_supply
        self.tolerance_threshold = tolerance_threshold
        self.reconciliation_interval = reconciliation_interval
        self.required_signatures = required_signatures

        # ── state ──
        self._ledger = ChainSupplyLedger()
        self._pending: Dict[str, PendingUpdate] = {}
        self._breaker = CircuitBreakerState()
        self._last_applied_nonce = 0
        self._last_reconciliation_time = 0

        # ── persistence ──
        self._state_store: OracleStateStore = state_store or InMemoryOracleStateStore()
        self._load_state()

        for chain_id in chain_ids:
            self._ledger.register_chain(chain_id)

    # ── Properties ──────────────────────────────────────────────────

    @property
    def is_circuit_broken(self) -> bool:
        return self._breaker.enabled

    @property
    def circuit_breaker(self) -> CircuitBreakerState:
        return CircuitBreakerState(**vars(self._breaker))

    @property
    def last_applied_nonce(self) -> int:
        return self._last_applied_nonce

    @property
    def last_reconciliation_time(self) -> int:
        return self._last_reconciliation_time

    @property
    def chain_ids(self) -> List[int]:
        return self._ledger.chain_ids

    @property
    def events(self) -> EventLog:
        return self._events

    def _now(self) -> int:
        return int(self._clock())

    # ── Submission ──────────────────────────────────────────────────

    def submit_update(
        self,
        chain_updates: Sequence[UpdateLike],
        nonce: int,
        signature: Union[Signature, bytes, str],
    ) -> SubmissionResult:
        """
        Add an operator signature to a supply update.

        Returns:
            SubmissionResult; `applied` is True for the submission that
            completed the threshold, `duplicate` for a repeated signature

        Signatures are merged through the state store, so operators
        running as separate processes on one store reach the threshold
        together.

        Raises:
            ValidationError: nonce outside uint256 or unparsable batch
            InvalidSupplyUpdateError / UnknownChainError: malformed batch
            StaleNonceError: nonce not newer than the last applied update
            UnauthorizedError: signer lacks ORACLE or signature is invalid
        """
        if isinstance(nonce, bool) or not isinstance(nonce, int) or not 0 <= nonce <= MAX_UINT256:
            raise ValidationError(f"Nonce out of range: {nonce!r}")
        try:
            updates = [ChainSupplyUpdate.coerce(u) for u in chain_updates]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed supply update: {e}") from e

        with self._lock:
            self._sync_applied_state()
            self._ledger.validate(updates)
            if nonce <= self._last_applied_nonce:
                logger.warning(
                    f"Stale supply update nonce {nonce} (last applied {self._last_applied_nonce})"
                )
                raise StaleNonceError(
                    f"Nonce {nonce} is not newer than last applied {self._last_applied_nonce}"
                )

            update_hash = compute_update_hash([u.as_tuple() for u in updates], nonce)
            try:
                operator = Signature.coerce(signature).recover_address(update_hash)
            except (InvalidSignatureError, ValueError) as e:
                logger.warning(f"Supply update {update_hash[:18]}... rejected: bad signature")
                raise UnauthorizedError(f"Invalid operator signature: {e}") from e
            self._access.require(Role.ORACLE, operator)

            pending = self._pending.get(update_hash)
            if pending is None:
                pending = PendingUpdate(
                    chain_updates=updates,
                    nonce=nonce,
                    required_signatures=self.required_signatures,
                    created_at=self._now(),
                    update_hash=update_hash,
                )
                self._pending[update_hash] = pending

            if not self._add_signature(pending, operator):
                logger.debug(f"Operator {operator} already signed {update_hash[:18]}...")
                return SubmissionResult(
                    update_hash=update_hash,
                    operator=operator,
                    signature_count=pending.signature_count,
                    required_signatures=self.required_signatures,
                    duplicate=True,
                )

            logger.info(
                f"Supply update {update_hash[:18]}... nonce={nonce}: "
                f"{pending.signature_count}/{self.required_signatures} signatures"
            )

            applied = False
            if pending.signature_count >= self.required_signatures:
                self._apply(pending)
                applied = True

            return SubmissionResult(
                update_hash=update_hash,
                operator=operator,
                signature_count=pending.signature_count,
                required_signatures=self.required_signatures,
                applied=applied,
            )

    def _add_signature(self, pending: PendingUpdate, operator: str) -> bool:
        """
        Merge `operator` into `pending` locally and in the store (lock held).

        Returns False if the operator had already signed.  A failing store
        degrades to local-only accumulation.
        """
        entry = {
            "update_hash": pending.update_hash,
            "nonce": pending.nonce,
            "chain_updates": [
                [u.chain_id, str(u.total_supply), str(u.locked_supply)]
                for u in pending.chain_updates
            ],
            "created_at": pending.created_at,
        }
        try:
            signers, added = self._state_store.add_pending_signature(entry, operator)
        except Exception as exc:
            logger.error(f"Shared pending signatures unavailable: {exc}", exc_info=True)
            return pending.add_signature(operator)
        added = added and operator not in pending.signatures
        pending.signatures.update(signers)
        pending.signatures.add(operator)
        return added

    def _apply(self, pending: PendingUpdate) -> None:
        """Apply a quorate update (lock held)."""
        now = self._now()
        self._ledger.apply(pending.chain_updates, pending.nonce, now)
        self._last_applied_nonce = pending.nonce
        self._last_reconciliation_time = now
        self._pending = {
            h: p for h, p in self._pending.items() if p.nonce > pending.nonce
        }
        self._persist_state()
        self._discard_shared_pending(pending.nonce)
        try:
            self._state_store.record_applied_update({
                "update_hash": pending.update_hash,
                "nonce": pending.nonce,
                "signers": sorted(pending.signatures),
                "applied_at": now,
            })
        except Exception as exc:
            logger.error(f"Failed to record applied update: {exc}", exc_info=True)

        logger.info(
            f"Supply update {pending.update_hash[:18]}... APPLIED: "
            f"{len(pending.chain_updates)} chains, global supply {self._ledger.global_supply()}"
        )
        self._events.emit(
            SUPPLY_UPDATED,
            update_hash=pending.update_hash,
            nonce=pending.nonce,
            chain_ids=[u.chain_id for u in pending.chain_updates],
            global_supply=self._ledger.global_supply(),
            signers=sorted(pending.signatures),
        )
        self.check_discrepancy()

    # ── Discrepancy / circuit breaker ───────────────────────────────

    def global_supply(self) -> int:
        return self._ledger.global_supply()

    def discrepancy(self) -> int:
        return abs(self._ledger.global_supply() - self.expected_global_supply)

    @property
    def is_healthy(self) -> bool:
        return self.discrepancy() <= self.tolerance_threshold

    def check_discrepancy(self) -> int:
        """
        Compare global supply against the expected supply.

        Trips the circuit breaker when the discrepancy exceeds the
        tolerance.  Returns the discrepancy.
        """
        with self._lock:
            global_supply = self._ledger.global_supply()
            discrepancy = abs(global_supply - self.expected_global_supply)
            if discrepancy > self.tolerance_threshold:
                if self._breaker.enabled:
                    logger.warning(
                        f"Supply discrepancy {discrepancy} persists; circuit breaker already active"
                    )
                else:
                    self._trip(
                        f"Supply discrepancy {discrepancy} exceeds tolerance "
                        f"{self.tolerance_threshold}",
                        discrepancy,
                    )
            return discrepancy

    def _trip(self, reason: str, discrepancy: int) -> None:
        self._breaker = CircuitBreakerState(
            enabled=True,
            triggered_at=self._now(),
            reason=reason,
            discrepancy=discrepancy,
        )
        self._persist_state()

        logger.critical(
            "══════════════════════════════════════════════════════════\n"
            "  CIRCUIT BREAKER TRIGGERED\n"
            "  Bridge-out operations: BLOCKED\n"
            "  Inbound settlement: ALLOWED\n"
            f"  Reason: {reason}\n"
            f"  Global supply: {self._ledger.global_supply()}\n"
            f"  Expected supply: {self.expected_global_supply}\n"
            "══════════════════════════════════════════════════════════"
        )
        self._events.emit(
            CIRCUIT_BREAKER_TRIGGERED,
            reason=reason,
            discrepancy=discrepancy,
            triggered_at=self._breaker.triggered_at,
        )

    def activate_circuit_breaker(self, caller: str, reason: str) -> bool:
        """Manual trip by the EMERGENCY role. Returns False if already active."""
        self._access.require(Role.EMERGENCY, caller)
        with self._lock:
            if self._breaker.enabled:
                return False
            self._trip(f"Manual: {reason}", self.discrepancy())
            return True

    def reset_circuit_breaker(self, caller: str, note: str = "") -> bool:
        """Clear the breaker (ADMIN only). Returns False if it was not active."""
        self._access.require(Role.ADMIN, caller)
        with self._lock:
            if not self._breaker.enabled:
                return False
            previous = self._breaker
            self._breaker = CircuitBreakerState()
            self._persist_state()

        logger.warning(
            f"Circuit breaker RESET by {caller} (was: {previous.reason})"
            + (f" note: {note}" if note else "")
        )
        self._events.emit(
            CIRCUIT_BREAKER_RESET,
            reset_by=caller,
            previous_reason=previous.reason,
            note=note,
        )
        return True

    # ── Reconciliation ──────────────────────────────────────────────

    def reconcile(self, caller: str) -> bool:
        """
        Periodic reconciliation (ORACLE role).

        No-op returning False until `reconciliation_interval` has passed
        since the last reconciliation or applied update.
        """
        self._access.require(Role.ORACLE, caller)
        with self._lock:
            now = self._now()
            if now - self._last_reconciliation_time < self.reconciliation_interval:
                return False

            discrepancy = self.discrepancy()
            if self._last_applied_nonce:
                discrepancy = self.check_discrepancy()
            pruned = self.prune_stale_updates()
            self._last_reconciliation_time = now
            self._persist_state()

            logger.info(
                f"Reconciled: global supply {self._ledger.global_supply()}, "
                f"discrepancy {discrepancy}, pruned {pruned} pending"
            )
            self._events.emit(
                SUPPLY_RECONCILED,
                global_supply=self._ledger.global_supply(),
                expected_supply=self.expected_global_supply,
                discrepancy=discrepancy,
                healthy=discrepancy <= self.tolerance_threshold,
                reconciled_by=caller,
            )
            return True

    def prune_stale_updates(self, max_age: Optional[int] = None) -> int:
        """Drop pending updates past their TTL or superseded by an applied nonce."""
        ttl = max_age if max_age is not None else self.reconciliation_interval * PENDING_UPDATE_TTL_INTERVALS
        now = self._now()
        with self._lock:
            keep = {
                h: p for h, p in self._pending.items()
                if p.nonce > self._last_applied_nonce and now - p.created_at <= ttl
            }
            pruned = len(self._pending) - len(keep)
            self._pending = keep
            self._discard_shared_pending(self._last_applied_nonce, now - ttl)
        if pruned:
            logger.debug(f"Pruned {pruned} stale pending updates")
        return pruned

    # ── Administration (ADMIN) ──────────────────────────────────────

    def register_chain(self, caller: str, chain_id: int) -> bool:
        self._access.require(Role.ADMIN, caller)
        with self._lock:
            added = self._ledger.register_chain(chain_id)
            if added:
                self._persist_state()
        if added:
            logger.info(f"Oracle tracking [chain {chain_id}]")
        return added

    def update_reconciliation_params(self, caller: str, interval: int, tolerance: int) -> None:
        self._access.require(Role.ADMIN, caller)
        if interval <= 0:
            raise ValidationError("Reconciliation interval must be positive")
        if tolerance < 0:
            raise ValidationError("Tolerance threshold cannot be negative")
        with self._lock:
            self.reconciliation_interval = interval
            self.tolerance_threshold = tolerance
            self._persist_state()
        logger.info(f"Reconciliation params updated: interval={interval}s tolerance={tolerance}")

    def update_expected_supply(self, caller: str, value: int) -> None:
        self._access.require(Role.ADMIN, caller)
        if value < 0:
            raise ValidationError("Expected supply cannot be negative")
        with self._lock:
            self.expected_global_supply = value
            self._persist_state()
        logger.info(f"Expected global supply updated: {value}")

    def update_required_signatures(self, caller: str, required: int) -> None:
        self._access.require(Role.ADMIN, caller)
        if required < 1:
            raise ValidationError("required_signatures must be >= 1")
        signers = len(self._access.members(Role.ORACLE))
        if required > signers:
            logger.warning(
                f"required_signatures={required} exceeds current oracle count {signers}"
            )
        with self._lock:
            self.required_signatures = required
            self._persist_state()
        logger.info(f"Required signatures updated: {required}")

    # ── Queries ─────────────────────────────────────────────────────

    def get_record(self, chain_id: int) -> ChainSupplyRecord:
        return self._ledger.get(chain_id)

    def records(self) -> List[ChainSupplyRecord]:
        return self._ledger.records()

    def history(self, chain_id: int) -> List[ChainSupplyRecord]:
        return self._ledger.history(chain_id)

    def get_pending(self, update_hash: str) -> Optional[PendingUpdate]:
        return self._pending.get(update_hash)

    def pending_updates(self) -> List[PendingUpdate]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda p: (p.nonce, p.created_at))

    def signature_count(self, update_hash: str) -> int:
        pending = self._pending.get(update_hash)
        return pending.signature_count if pending else 0

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            discrepancy = self.discrepancy()
            return {
                "global_supply": str(self._ledger.global_supply()),
                "expected_global_supply": str(self.expected_global_supply),
                "discrepancy": str(discrepancy),
                "healthy": discrepancy <= self.tolerance_threshold,
                "tolerance_threshold": str(self.tolerance_threshold),
                "reconciliation_interval": self.reconciliation_interval,
                "required_signatures": self.required_signatures,
                "last_applied_nonce": self._last_applied_nonce,
                "last_reconciliation_time": self._last_reconciliation_time,
                "circuit_breaker": self._breaker.to_dict(),
                "pending_updates": len(self._pending),
                "chains": [r.to_dict() for r in self._ledger.records()],
            }

    # ── Persistence ─────────────────────────────────────────────────

    def _persist_state(self) -> None:
        state = {
            "records": self._ledger.to_dict(),
            "circuit_breaker": self._breaker.to_dict(),
            "last_applied_nonce": self._last_applied_nonce,
            "last_reconciliation_time": self._last_reconciliation_time,
            "expected_global_supply": str(self.expected_global_supply),
            "tolerance_threshold": str(self.tolerance_threshold),
            "reconciliation_interval": self.reconciliation_interval,
            "required_signatures": self.required_signatures,
        }
        try:
            if not self._state_store.save_oracle_state(state):
                logger.error("Failed to persist oracle state")
        except Exception as exc:
            logger.error(f"Oracle state store error: {exc}", exc_info=True)

    def _discard_shared_pending(self, max_nonce: int, created_before: int = 0) -> None:
        try:
            self._state_store.discard_pending(max_nonce, created_before)
        except Exception as exc:
            logger.error(f"Failed to discard shared pending updates: {exc}", exc_info=True)

    def refresh(self) -> bool:
        """
        Pull state written by other operators sharing the store.

        Adopts the stored snapshot when it carries a newer applied nonce,
        then merges the shared pending signatures.  Returns True if the
        applied state changed.
        """
        with self._lock:
            changed = self._sync_applied_state()
            try:
                rows = self._state_store.load_pending()
            except Exception as exc:
                logger.error(f"Failed to load shared pending updates: {exc}", exc_info=True)
                return changed
            for row in rows:
                if row["nonce"] <= self._last_applied_nonce:
                    continue
                pending = self._pending.get(row["update_hash"])
                if pending is None:
                    pending = PendingUpdate(
                        chain_updates=[ChainSupplyUpdate.coerce(u) for u in row["chain_updates"]],
                        nonce=row["nonce"],
                        required_signatures=self.required_signatures,
                        created_at=row["created_at"],
                        update_hash=row["update_hash"],
                    )
                    self._pending[row["update_hash"]] = pending
                pending.signatures.update(row["signers"])
            return changed

    def _sync_applied_state(self) -> bool:
        """Adopt a stored snapshot with a newer applied nonce (lock held)."""
        try:
            state = self._state_store.load_oracle_state()
        except Exception as exc:
            logger.error(f"Failed to load oracle state: {exc}", exc_info=True)
            return False
        if not state or int(state.get("last_applied_nonce", 0)) <= self._last_applied_nonce:
            return False
        self._restore(state)
        self._pending = {
            h: p for h, p in self._pending.items() if p.nonce > self._last_applied_nonce
        }
        logger.info(f"Adopted supply update applied elsewhere: nonce {self._last_applied_nonce}")
        return True

    def _load_state(self) -> None:
        try:
            state = self._state_store.load_oracle_state()
        except Exception as exc:
            logger.error(f"Failed to load oracle state: {exc}", exc_info=True)
            return

        if state is None:
            return

        self._restore(state)
        logger.info(
            f"Oracle state restored: {len(self._ledger)} chains, "
            f"last nonce {self._last_applied_nonce}"
        )
        if self._breaker.enabled:
            logger.warning(
                "Circuit breaker state RESTORED from store; bridge-out remains BLOCKED"
            )

    def _restore(self, state: Dict[str, Any]) -> None:
        known = self._ledger.chain_ids
        self._ledger.load(state.get("records", {}))
        for chain_id in known:
            self._ledger.register_chain(chain_id)
        self._breaker = CircuitBreakerState.from_dict(state.get("circuit_breaker", {}))
        self._last_applied_nonce = int(state.get("last_applied_nonce", 0))
        self._last_reconciliation_time = int(state.get("last_reconciliation_time", 0))
        self.expected_global_supply = int(state.get("expected_global_supply", self.expected_global_supply))
        self.tolerance_threshold = int(state.get("tolerance_threshold", self.tolerance_threshold))
        self.reconciliation_interval = int(state.get("reconciliation_interval", self.reconciliation_interval))
        self.required_signatures = int(state.get("required_signatures", self.required_signatures))
