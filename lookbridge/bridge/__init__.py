"""
LookBridge Cross-Chain Infrastructure

Provides:
  - types: Core data structures (ProtocolId, ChainSupplyRecord, PendingUpdate, etc.)
  - ledger: ChainSupplyLedger, the oracle's per-chain supply store
  - registry: BridgeRegistry, (chain, protocol) → bridge endpoint table
  - security: SecurityManager rate limits
  - router: CrossChainRouter, bridge-out entry point and inbound settlement
  - fees: FeeManager, router service fees and their withdrawal
  - oracle: SupplyOracle, k-of-n supply updates and circuit breaker
  - store: Oracle state persistence (in-memory, SQLite)
  - events: EventLog shared by a deployment
  - protocols: LayerZero / Celer / Hyperlane modules and the in-process transport
"""

from .types import (
    BridgeOption,
    BridgeRegistration,
    ChainSupplyRecord,
    ChainSupplyUpdate,
    CircuitBreakerState,
    CrossChainMessage,
    PendingUpdate,
    PROTOCOL_NAMES,
    ProtocolId,
    RoutePreference,
    RouteRequest,
    SenderProof,
    SubmissionResult,
    TransferReceipt,
    resolve_protocol,
)

from .events import (
    BridgeEvent,
    EventLog,
    BRIDGE_COMPLETED,
    BRIDGE_INITIATED,
    BRIDGE_REGISTERED,
    CIRCUIT_BREAKER_RESET,
    CIRCUIT_BREAKER_TRIGGERED,
    FEES_WITHDRAWN,
    PROTOCOL_FEES_UPDATED,
    PROTOCOL_STATUS_UPDATED,
    SUPPLY_RECONCILED,
    SUPPLY_UPDATED,
)

from .ledger import ChainSupplyLedger
from .registry import BridgeRegistry
from .security import ProtocolLimits, SecurityManager, SecurityPolicy

from .protocols import (
    CelerModule,
    HyperlaneModule,
    InMemoryTransport,
    LayerZeroModule,
    MultisigISM,
    ProtocolModule,
)

from .fees import FeeManager, FeeQuote, ProtocolFees
from .router import CrossChainRouter

from .store import (
    InMemoryOracleStateStore,
    OracleStateStore,
    SQLiteOracleStateStore,
)

from .oracle import SupplyOracle, sign_update

__all__ = [
    # Types
    "BridgeOption",
    "BridgeRegistration",
    "ChainSupplyRecord",
    "ChainSupplyUpdate",
    "CircuitBreakerState",
    "CrossChainMessage",
    "PendingUpdate",
    "PROTOCOL_NAMES",
    "ProtocolId",
    "RoutePreference",
    "RouteRequest",
    "SenderProof",
    "SubmissionResult",
    "TransferReceipt",
    "resolve_protocol",
    # Events
    "BridgeEvent",
    "EventLog",
    "BRIDGE_COMPLETED",
    "BRIDGE_INITIATED",
    "BRIDGE_REGISTERED",
    "CIRCUIT_BREAKER_RESET",
    "CIRCUIT_BREAKER_TRIGGERED",
    "FEES_WITHDRAWN",
    "PROTOCOL_FEES_UPDATED",
    "PROTOCOL_STATUS_UPDATED",
    "SUPPLY_RECONCILED",
    "SUPPLY_UPDATED",
    # Data layer
    "ChainSupplyLedger",
    "BridgeRegistry",
    # Security
    "ProtocolLimits",
    "SecurityManager",
    "SecurityPolicy",
    # Protocols
    "CelerModule",
    "HyperlaneModule",
    "InMemoryTransport",
    "LayerZeroModule",
    "MultisigISM",
    "ProtocolModule",
    # Router
    "CrossChainRouter",
    "FeeManager",
    "FeeQuote",
    "ProtocolFees",
    # Oracle
    "InMemoryOracleStateStore",
    "OracleStateStore",
    "SQLiteOracleStateStore",
    "SupplyOracle",
    "sign_update",
]
