"""
LookBridge Reconciliation Orchestrator

One instance runs per oracle operator.  Each run:

  1. Reads every chain concurrently (timeout + exponential backoff per chain;
     a failing chain is reported and skipped)
  2. Projects the global supply from the fresh reads and the oracle's
     records for chains that could not be read
  3. Derives the coarse nonce floor(now / window) * window, shared by every
     operator within the same window
  4. Signs and submits the update when no update has been applied for the
     current window (the interval elapsed), the projection is unhealthy,
     or submission is forced
  5. Calls reconcile() opportunistically

Operators never talk to each other directly: identical reads within one
window produce the same update hash, so their signatures accumulate on one
pending update in the state store they share.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .readers import SupplyReader, SupplySnapshot
from ..bridge.oracle import SupplyOracle, sign_update
from ..bridge.types import ChainSupplyUpdate, chain_label
from ..crypto.keys import PrivateKey
from ..exceptions import LookBridgeException, StaleNonceError, TransportError
from ..logger import get_logger

logger = get_logger(__name__)


@dataclass
class ReconciliationReport:
    """Outcome of one orchestrator run."""
    operator: str
    nonce: int
    started_at: float
    snapshots: List[SupplySnapshot] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    global_supply: int = 0
    expected_supply: int = 0
    discrepancy: int = 0
    healthy: bool = True
    submitted: bool = False
    applied: bool = False
    duplicate: bool = False
    stale: bool = False
    update_hash: Optional[str] = None
    signature_count: int = 0
    required_signatures: int = 0
    reconciled: bool = False
    skipped_reason: str = ""
    finished_at: float = 0.0

    @property
    def chains_read(self) -> List[int]:
        return [s.chain_id for s in self.snapshots]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operator": self.operator,
            "nonce": self.nonce,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "snapshots": [s.to_dict() for s in self.snapshots],
            "failed": {str(k): v for k, v in self.failed.items()},
            "global_supply": str(self.global_supply),
            "expected_supply": str(self.expected_supply),
            "discrepancy": str(self.discrepancy),
            "healthy": self.healthy,
            "submitted": self.submitted,
            "applied": self.applied,
            "duplicate": self.duplicate,
            "stale": self.stale,
            "update_hash": self.update_hash,
            "signature_count": self.signature_count,
            "required_signatures": self.required_signatures,
            "reconciled": self.reconciled,
            "skipped_reason": self.skipped_reason,
        }


class ReconciliationOrchestrator:
    """
    Periodic read-and-propose loop for one oracle operator.
    """

    def __init__(
        self,
        oracle: SupplyOracle,
        operator_key: PrivateKey,
        readers: Iterable[SupplyReader],
        *,
        nonce_window: Optional[int] = None,
        read_timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        force_submit: bool = False,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            oracle: SupplyOracle receiving the signed updates
            operator_key: This operator's signing key (must hold ORACLE)
            readers: One SupplyReader per chain
            nonce_window: Nonce granularity in seconds; defaults to the
                oracle's reconciliation interval
            read_timeout: Seconds allowed for one chain read attempt
            max_retries: Read attempts per chain
            retry_delay: Base backoff delay, doubled after every failure
            force_submit: Submit on every run regardless of interval/health
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.oracle = oracle
        self.operator_key = operator_key
        self.operator = operator_key.address
        self.readers: List[SupplyReader] = sorted(readers, key=lambda r: r.chain_id)
        self._nonce_window = nonce_window
        self.read_timeout = read_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.force_submit = force_submit
        self._clock = clock
        self._sleep = sleep
        self.runs = 0

    @property
    def nonce_window(self) -> int:
        return self._nonce_window or self.oracle.reconciliation_interval

    def current_nonce(self, now: Optional[float] = None) -> int:
        """Coarse wall-clock nonce shared by operators in the same window."""
        now = self._clock() if now is None else now
        window = self.nonce_window
        return int(now) // window * window

    # ── Chain reads ─────────────────────────────────────────────────

    async def _read_chain(self, reader: SupplyReader) -> SupplySnapshot:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await asyncio.wait_for(reader.read(), timeout=self.read_timeout)
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning(
                    f"{chain_label(reader.chain_id)} read timed out after {self.read_timeout}s "
                    f"(attempt {attempt}/{self.max_retries})"
                )
            except TransportError as exc:
                last_error = exc
                logger.warning(
                    f"{chain_label(reader.chain_id)} read failed (attempt {attempt}/{self.max_retries}): {exc}"
                )
            if attempt < self.max_retries:
                await self._sleep(self.retry_delay * 2 ** (attempt - 1))

        raise TransportError(
            f"{chain_label(reader.chain_id)} unreadable after {self.max_retries} attempts: "
            f"{str(last_error) or 'timeout'}"
        )

    async def read_all(self) -> Tuple[List[SupplySnapshot], Dict[int, str]]:
        """Read every chain concurrently. Returns (snapshots, failed)."""
        results = await asyncio.gather(
            *(self._read_chain(reader) for reader in self.readers),
            return_exceptions=True,
        )
        snapshots: List[SupplySnapshot] = []
        failed: Dict[int, str] = {}
        for reader, result in zip(self.readers, results):
            if isinstance(result, TransportError):
                failed[reader.chain_id] = str(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                if not result.is_consistent:
                    logger.warning(
                        f"{chain_label(result.chain_id)} total supply {result.total_supply} != "
                        f"minted {result.total_minted} - burned {result.total_burned}"
                    )
                snapshots.append(result)
        return snapshots, failed

    # ── Run ─────────────────────────────────────────────────────────

    async def run_once(self) -> ReconciliationReport:
        """Read, project, propose and reconcile once."""
        self.oracle.refresh()
        now = self._clock()
        report = ReconciliationReport(
            operator=self.operator,
            nonce=self.current_nonce(now),
            started_at=now,
            expected_supply=self.oracle.expected_global_supply,
            required_signatures=self.oracle.required_signatures,
        )

        snapshots, failed = await self.read_all()
        tracked = set(self.oracle.chain_ids)
        for snapshot in snapshots:
            if snapshot.chain_id in tracked:
                report.snapshots.append(snapshot)
            else:
                logger.warning(f"{chain_label(snapshot.chain_id)} is not tracked by the oracle; skipped")
                failed[snapshot.chain_id] = "not tracked by oracle"
        report.failed = failed

        fresh = {s.chain_id: s.total_supply for s in report.snapshots}
        report.global_supply = sum(
            fresh.get(chain_id, self.oracle.get_record(chain_id).total_supply)
            for chain_id in tracked
        )
        report.discrepancy = abs(report.global_supply - report.expected_supply)
        report.healthy = report.discrepancy <= self.oracle.tolerance_threshold

        logger.info(
            f"Reconciliation run nonce={report.nonce}: read {len(report.snapshots)} chains, "
            f"failed {len(failed)}, projected supply {report.global_supply}, "
            f"discrepancy {report.discrepancy}"
        )

        if not report.snapshots:
            report.skipped_reason = "no chain could be read"
            logger.error("Reconciliation skipped: no chain could be read")
        else:
            # A window whose nonce is already applied needs no new update
            window_open = report.nonce > self.oracle.last_applied_nonce
            if self.force_submit or not report.healthy or window_open:
                self._submit(report)
            else:
                report.skipped_reason = (
                    f"window {report.nonce} already applied; next in "
                    f"{int(report.nonce + self.nonce_window - now)}s"
                )
                logger.debug(f"Submission skipped: {report.skipped_reason}")

        try:
            report.reconciled = self.oracle.reconcile(self.operator)
        except LookBridgeException as exc:
            logger.error(f"reconcile() failed: {exc}")

        report.finished_at = self._clock()
        self.runs += 1
        return report

    def _submit(self, report: ReconciliationReport) -> None:
        updates = [
            ChainSupplyUpdate(s.chain_id, s.total_supply, s.locked_supply)
            for s in report.snapshots
        ]
        update_hash, signature = sign_update(self.operator_key, updates, report.nonce)
        report.update_hash = update_hash
        try:
            result = self.oracle.submit_update(updates, report.nonce, signature)
        except StaleNonceError:
            report.stale = True
            logger.info(
                f"Nonce {report.nonce} already superseded (last applied "
                f"{self.oracle.last_applied_nonce}); nothing to submit"
            )
            return

        report.submitted = True
        report.applied = result.applied
        report.duplicate = result.duplicate
        report.signature_count = result.signature_count
        report.required_signatures = result.required_signatures
        if result.duplicate:
            logger.debug(f"Update {update_hash[:18]}... already signed by {self.operator}")
        elif result.applied:
            logger.info(f"Update {update_hash[:18]}... reached threshold and was applied")
        else:
            logger.info(
                f"Signed update {update_hash[:18]}... "
                f"({result.signature_count}/{result.required_signatures})"
            )

    async def run_forever(self, interval: Optional[float] = None, max_runs: Optional[int] = None) -> None:
        """
        Repeat `run_once()` every `interval` seconds (default: the nonce
        window) until cancelled or `max_runs` runs have completed.
        """
        runs = 0
        while max_runs is None or runs < max_runs:
            try:
                await self.run_once()
            except LookBridgeException as exc:
                logger.error(f"Reconciliation run failed: {exc}", exc_info=True)
            runs += 1
            if max_runs is not None and runs >= max_runs:
                break
            await self._sleep(interval if interval is not None else self.nonce_window)
