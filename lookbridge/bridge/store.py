"""
LookBridge Oracle State Store

Persistence backends for SupplyOracle state (supply records, circuit
breaker, last applied nonce and parameters) so the oracle survives
restarts.

The store is also where operators meet: every operator process signing
against the same database merges its signature into one shared pending
row per update hash, so the k-of-n threshold is reached across
processes, not only inside one.

Schema (SQLite):
    oracle_state — single-row table holding the JSON state snapshot.
    oracle_updates — one row per applied update for auditability.
    oracle_pending — one row per update hash still collecting signatures.

Usage:
    store = SQLiteOracleStateStore("data/oracle.db")
    oracle = SupplyOracle(access, state_store=store)
"""

import asyncio
import json
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import aiosqlite

from ..logger import get_logger

logger = get_logger(__name__)

# ── SQL DDL ─────────────────────────────────────────────────────────

_CREATE_STATE_TABLE = """
CREATE TABLE IF NOT EXISTS oracle_state (
    id          INTEGER PRIMARY KEY CHECK (id = 1),
    state       TEXT    NOT NULL,
    updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

_CREATE_UPDATES_TABLE = """
CREATE TABLE IF NOT EXISTS oracle_updates (
    update_hash  TEXT    PRIMARY KEY,
    nonce        INTEGER NOT NULL,
    signers      TEXT    NOT NULL,
    applied_at   INTEGER NOT NULL
);
"""

_CREATE_PENDING_TABLE = """
CREATE TABLE IF NOT EXISTS oracle_pending (
    update_hash    TEXT    PRIMARY KEY,
    nonce          INTEGER NOT NULL,
    chain_updates  TEXT    NOT NULL,
    signers        TEXT    NOT NULL,
    created_at     INTEGER NOT NULL
);
"""

_UPSERT_STATE = """
INSERT INTO oracle_state (id, state, updated_at) VALUES (1, ?, CURRENT_TIMESTAMP)
ON CONFLICT (id) DO UPDATE SET state = excluded.state, updated_at = CURRENT_TIMESTAMP;
"""

_SELECT_STATE = "SELECT state FROM oracle_state WHERE id = 1;"

_INSERT_UPDATE = """
INSERT OR IGNORE INTO oracle_updates (update_hash, nonce, signers, applied_at)
VALUES (?, ?, ?, ?);
"""

_SELECT_UPDATES = """
SELECT update_hash, nonce, signers, applied_at FROM oracle_updates
ORDER BY nonce DESC
LIMIT ?;
"""

_SELECT_PENDING_SIGNERS = "SELECT signers FROM oracle_pending WHERE update_hash = ?;"

_UPSERT_PENDING = """
INSERT INTO oracle_pending (update_hash, nonce, chain_updates, signers, created_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT (update_hash) DO UPDATE SET signers = excluded.signers;
"""

_SELECT_PENDING = """
SELECT update_hash, nonce, chain_updates, signers, created_at FROM oracle_pending
ORDER BY nonce, created_at;
"""

_DELETE_PENDING = "DELETE FROM oracle_pending WHERE nonce <= ? OR created_at < ?;"


@runtime_checkable
class OracleStateStore(Protocol):
    """
    Persistence backend for oracle state.

    Pending entries are dicts with ``update_hash``, ``nonce``,
    ``chain_updates`` (list of [chain_id, total, locked] with the amounts
    as decimal strings), ``signers`` and ``created_at``.
    """

    def save_oracle_state(self, state: Dict[str, Any]) -> bool:
        """Persist the full oracle state snapshot."""
        ...

    def load_oracle_state(self) -> Optional[Dict[str, Any]]:
        """Load the last snapshot, or None on a fresh start."""
        ...

    def record_applied_update(self, entry: Dict[str, Any]) -> None:
        """Append an applied update to the audit log."""
        ...

    def add_pending_signature(self, entry: Dict[str, Any], signer: str) -> Tuple[List[str], bool]:
        """Merge `signer` into the pending entry. Returns (signers, newly_added)."""
        ...

    def load_pending(self) -> List[Dict[str, Any]]:
        """Every pending entry, oldest nonce first."""
        ...

    def discard_pending(self, max_nonce: int, created_before: int = 0) -> int:
        """Drop entries with nonce <= max_nonce or older than created_before."""
        ...


class InMemoryOracleStateStore:
    """
    In-memory store for tests and single-process simulations.

    Several oracles sharing one instance behave like operator processes
    sharing one database.
    """

    def __init__(self):
        self._state: Optional[Dict[str, Any]] = None
        self._pending: Dict[str, Dict[str, Any]] = {}
        self.applied: List[Dict[str, Any]] = []

    def save_oracle_state(self, state: Dict[str, Any]) -> bool:
        self._state = json.loads(json.dumps(state))
        return True

    def load_oracle_state(self) -> Optional[Dict[str, Any]]:
        return json.loads(json.dumps(self._state)) if self._state else None

    def record_applied_update(self, entry: Dict[str, Any]) -> None:
        self.applied.append(dict(entry))

    def add_pending_signature(self, entry: Dict[str, Any], signer: str) -> Tuple[List[str], bool]:
        row = self._pending.get(entry["update_hash"])
        if row is None:
            row = json.loads(json.dumps(entry))
            row["signers"] = []
            self._pending[entry["update_hash"]] = row
        added = signer not in row["signers"]
        if added:
            row["signers"] = sorted(set(row["signers"]) | {signer})
        return list(row["signers"]), added

    def load_pending(self) -> List[Dict[str, Any]]:
        rows = sorted(self._pending.values(), key=lambda r: (r["nonce"], r["created_at"]))
        return json.loads(json.dumps(rows))

    def discard_pending(self, max_nonce: int, created_before: int = 0) -> int:
        stale = [
            h for h, r in self._pending.items()
            if r["nonce"] <= max_nonce or r["created_at"] < created_before
        ]
        for update_hash in stale:
            del self._pending[update_hash]
        return len(stale)


class SQLiteOracleStateStore:
    """
    SQLite-backed OracleStateStore.

    The protocol methods are synchronous to match the oracle and always
    finish before returning.  Inside a running event loop the statement
    runs on a private worker thread with its own loop; async callers can
    use the ``async_*`` methods directly instead.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._executor: Optional[ThreadPoolExecutor] = None

    # ── Async API ───────────────────────────────────────────────────

    async def _connect(self) -> aiosqlite.Connection:
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = await aiosqlite.connect(self.db_path, timeout=self.timeout)
        await conn.execute(_CREATE_STATE_TABLE)
        await conn.execute(_CREATE_UPDATES_TABLE)
        await conn.execute(_CREATE_PENDING_TABLE)
        return conn

    async def async_save(self, state: Dict[str, Any]) -> None:
        conn = await self._connect()
        try:
            await conn.execute(_UPSERT_STATE, (json.dumps(state),))
            await conn.commit()
        finally:
            await conn.close()

    async def async_load(self) -> Optional[Dict[str, Any]]:
        conn = await self._connect()
        try:
            cursor = await conn.execute(_SELECT_STATE)
            row = await cursor.fetchone()
        finally:
            await conn.close()
        return json.loads(row[0]) if row else None

    async def async_record(self, entry: Dict[str, Any]) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                _INSERT_UPDATE,
                (entry["update_hash"], entry["nonce"], json.dumps(entry["signers"]), entry["applied_at"]),
            )
            await conn.commit()
        finally:
            await conn.close()

    async def applied_updates(self, limit: int = 100) -> List[Dict[str, Any]]:
        conn = await self._connect()
        try:
            cursor = await conn.execute(_SELECT_UPDATES, (limit,))
            rows = await cursor.fetchall()
        finally:
            await conn.close()
        return [
            {"update_hash": r[0], "nonce": r[1], "signers": json.loads(r[2]), "applied_at": r[3]}
            for r in rows
        ]

    async def async_add_pending_signature(
        self, entry: Dict[str, Any], signer: str
    ) -> Tuple[List[str], bool]:
        conn = await self._connect()
        try:
            # Read-merge-write under the database write lock
            await conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = await conn.execute(_SELECT_PENDING_SIGNERS, (entry["update_hash"],))
                row = await cursor.fetchone()
                signers = set(json.loads(row[0])) if row else set()
                added = signer not in signers
                signers.add(signer)
                merged = sorted(signers)
                await conn.execute(
                    _UPSERT_PENDING,
                    (
                        entry["update_hash"],
                        entry["nonce"],
                        json.dumps(entry["chain_updates"]),
                        json.dumps(merged),
                        entry["created_at"],
                    ),
                )
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
        finally:
            await conn.close()
        return merged, added

    async def async_load_pending(self) -> List[Dict[str, Any]]:
        conn = await self._connect()
        try:
            cursor = await conn.execute(_SELECT_PENDING)
            rows = await cursor.fetchall()
        finally:
            await conn.close()
        return [
            {
                "update_hash": r[0],
                "nonce": r[1],
                "chain_updates": json.loads(r[2]),
                "signers": json.loads(r[3]),
                "created_at": r[4],
            }
            for r in rows
        ]

    async def async_discard_pending(self, max_nonce: int, created_before: int = 0) -> int:
        conn = await self._connect()
        try:
            cursor = await conn.execute(_DELETE_PENDING, (max_nonce, created_before))
            await conn.commit()
            return cursor.rowcount
        finally:
            await conn.close()

    # ── Protocol methods (sync façade) ──────────────────────────────

    def _run(self, coro):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="oracle-store")
        return self._executor.submit(asyncio.run, coro).result()

    def close(self) -> None:
        """Stop the worker thread used for calls made inside an event loop."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def save_oracle_state(self, state: Dict[str, Any]) -> bool:
        try:
            self._run(self.async_save(state))
        except (aiosqlite.Error, OSError) as e:
            logger.error(f"SQLiteOracleStateStore: save to {self.db_path} failed: {e}")
            return False
        return True

    def load_oracle_state(self) -> Optional[Dict[str, Any]]:
        return self._run(self.async_load())

    def record_applied_update(self, entry: Dict[str, Any]) -> None:
        self._run(self.async_record(entry))

    def add_pending_signature(self, entry: Dict[str, Any], signer: str) -> Tuple[List[str], bool]:
        return self._run(self.async_add_pending_signature(entry, signer))

    def load_pending(self) -> List[Dict[str, Any]]:
        return self._run(self.async_load_pending())

    def discard_pending(self, max_nonce: int, created_before: int = 0) -> int:
        return self._run(self.async_discard_pending(max_nonce, created_before))
