"""
LookBridge Reconciliation

Off-chain process run by each oracle operator:
  - readers: per-chain supply readers (in-process token, JSON-RPC eth_call)
  - orchestrator: read → project → sign → submit loop
  - cli: `lookbridge-reconcile` command
"""

from .readers import (
    JsonRpcSupplyReader,
    LedgerSupplyReader,
    SupplyReader,
    SupplySnapshot,
)
from .orchestrator import ReconciliationOrchestrator, ReconciliationReport

__all__ = [
    "JsonRpcSupplyReader",
    "LedgerSupplyReader",
    "SupplyReader",
    "SupplySnapshot",
    "ReconciliationOrchestrator",
    "ReconciliationReport",
]
