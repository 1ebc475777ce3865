"""
LookBridge Deployment Wiring

Builds a set of in-process chains (token, registry, security manager,
router and protocol modules per chain) connected through one transport,
plus the shared SupplyOracle.  This is the admin/setup interface used by
simulations, the reconciliation CLI and the tests.

    network = BridgeNetwork.create([56, 8453], admin=ADMIN, operators=OPS)
    network.connect()
    network.allocate(56, alice, 1_000 * WEI)
    network.chain(56).router.bridge(request, alice, fee)
    network.flush()
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from eth_utils import to_checksum_address

from .access import AccessControl, Role
from .bridge.events import EventLog
from .bridge.fees import FeeManager
from .bridge.oracle import SupplyOracle
from .bridge.protocols import MODULE_CLASSES, InMemoryTransport, ProtocolModule
from .bridge.registry import BridgeRegistry
from .bridge.router import CrossChainRouter
from .bridge.security import SecurityManager, SecurityPolicy
from .bridge.store import OracleStateStore
from .bridge.types import ProtocolId
from .constants import (
    DEFAULT_RECONCILIATION_INTERVAL,
    DEFAULT_REQUIRED_SIGNATURES,
    DEFAULT_TOLERANCE_THRESHOLD,
    GLOBAL_TOTAL_SUPPLY,
)
from .crypto.hashing import keccak256
from .exceptions import ConfigurationError, UnknownChainError
from .logger import get_logger
from .tokens.look import LookToken

logger = get_logger(__name__)


def derive_address(*labels) -> str:
    """Deterministic checksummed address for an in-process contract."""
    seed = ":".join(str(label) for label in ("lookbridge",) + labels)
    return to_checksum_address(keccak256(seed.encode())[-20:])


@dataclass
class ChainDeployment:
    """Contracts of one simulated chain."""
    chain_id: int
    token: LookToken
    registry: BridgeRegistry
    security: SecurityManager
    router: CrossChainRouter
    fees: FeeManager
    modules: Dict[ProtocolId, ProtocolModule] = field(default_factory=dict)

    def module(self, protocol_id: ProtocolId) -> ProtocolModule:
        return self.modules[ProtocolId(protocol_id)]


class BridgeNetwork:
    """
    In-process multi-chain deployment.

    All chains share one role table, one event log, one transport and one
    SupplyOracle.
    """

    def __init__(
        self,
        access: AccessControl,
        admin: str,
        oracle: SupplyOracle,
        transport: InMemoryTransport,
        events: EventLog,
    ):
        self.access = access
        self.admin = admin
        self.oracle = oracle
        self.transport = transport
        self.events = events
        self._chains: Dict[int, ChainDeployment] = {}

    @classmethod
    def create(
        cls,
        chain_ids: Iterable[int],
        admin: str,
        *,
        operators: Iterable[str] = (),
        emergency: Iterable[str] = (),
        protocols: Iterable[ProtocolId] = tuple(ProtocolId),
        security_policy: Optional[SecurityPolicy] = None,
        expected_global_supply: int = GLOBAL_TOTAL_SUPPLY,
        tolerance_threshold: int = DEFAULT_TOLERANCE_THRESHOLD,
        reconciliation_interval: int = DEFAULT_RECONCILIATION_INTERVAL,
        required_signatures: int = DEFAULT_REQUIRED_SIGNATURES,
        state_store: Optional[OracleStateStore] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "BridgeNetwork":
        """
        Deploy every chain in `chain_ids` with the given protocols.

        Args:
            chain_ids: EVM chain ids to deploy
            admin: ADMIN address (also granted EMERGENCY)
            operators: Oracle operator addresses (granted ORACLE)
            emergency: Extra EMERGENCY role holders
            protocols: Protocol modules to deploy on every chain
            security_policy: Rate limits; defaults to production limits
            clock: Time source for the oracle and security managers
            sleep: Sleep function for module transport retries
        """
        access = AccessControl(admin)
        access.grant_role(admin, Role.EMERGENCY, admin)
        access.grant_many(admin, Role.ORACLE, operators)
        access.grant_many(admin, Role.EMERGENCY, emergency)

        events = EventLog("network")
        chain_ids = list(chain_ids)
        oracle = SupplyOracle(
            access,
            events=events,
            state_store=state_store,
            expected_global_supply=expected_global_supply,
            tolerance_threshold=tolerance_threshold,
            reconciliation_interval=reconciliation_interval,
            required_signatures=required_signatures,
            chain_ids=chain_ids,
            clock=clock,
        )
        network = cls(access, admin, oracle, InMemoryTransport(), events)
        for chain_id in chain_ids:
            network.deploy_chain(
                chain_id,
                protocols=protocols,
                security_policy=security_policy,
                clock=clock,
                sleep=sleep,
            )
        logger.info(f"Bridge network deployed: {len(chain_ids)} chains")
        return network

    def deploy_chain(
        self,
        chain_id: int,
        *,
        protocols: Iterable[ProtocolId] = tuple(ProtocolId),
        security_policy: Optional[SecurityPolicy] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ChainDeployment:
        if chain_id in self._chains:
            raise ConfigurationError(f"Chain {chain_id} already deployed")

        token = LookToken(chain_id)
        registry = BridgeRegistry(self.access, self.events)
        policy = security_policy if security_policy is not None else SecurityPolicy()
        security = SecurityManager(self.access, policy.copy(), clock=clock)
        fees = FeeManager(self.access, self.events)
        router = CrossChainRouter(
            chain_id,
            derive_address(chain_id, "router"),
            token,
            registry,
            security,
            self.access,
            breaker=self.oracle,
            events=self.events,
            fees=fees,
        )
        token.add_bridge_operator(router.address)

        deployment = ChainDeployment(chain_id, token, registry, security, router, fees)
        for protocol_id in protocols:
            protocol_id = ProtocolId(protocol_id)
            module_cls = MODULE_CLASSES[protocol_id]
            module = module_cls(
                chain_id,
                derive_address(chain_id, protocol_id.label),
                self.access,
                self.transport,
                derive_address(chain_id, protocol_id.label, "transport"),
                sleep=sleep,
            )
            router.register_protocol(self.admin, protocol_id, module)
            self.transport.attach(module)
            deployment.modules[protocol_id] = module

        if chain_id not in self.oracle.chain_ids:
            self.oracle.register_chain(self.admin, chain_id)
        self._chains[chain_id] = deployment
        logger.info(
            f"Chain deployed [chain {chain_id}]: router {router.address}, "
            f"protocols {[p.label for p in deployment.modules]}"
        )
        return deployment

    def connect(self, protocols: Optional[Iterable[ProtocolId]] = None) -> None:
        """Trust and register every module pair across all deployed chains."""
        wanted = None if protocols is None else {ProtocolId(p) for p in protocols}
        for src in self._chains.values():
            for dst in self._chains.values():
                if src.chain_id == dst.chain_id:
                    continue
                for protocol_id, module in src.modules.items():
                    if wanted is not None and protocol_id not in wanted:
                        continue
                    remote = dst.modules.get(protocol_id)
                    if remote is None:
                        continue
                    module.set_trusted_remote(
                        self.admin, module.to_remote_id(dst.chain_id), remote.address
                    )
                    src.router.register_bridge(self.admin, dst.chain_id, protocol_id, remote.address)

    # ── Accessors ───────────────────────────────────────────────────

    def chain(self, chain_id: int) -> ChainDeployment:
        deployment = self._chains.get(chain_id)
        if deployment is None:
            raise UnknownChainError(f"Chain {chain_id} is not deployed")
        return deployment

    @property
    def chains(self) -> List[ChainDeployment]:
        return [self._chains[c] for c in sorted(self._chains)]

    @property
    def chain_ids(self) -> List[int]:
        return sorted(self._chains)

    # ── Operations ──────────────────────────────────────────────────

    def allocate(self, chain_id: int, recipient: str, amount: int) -> None:
        """Genesis mint on one chain (setup only)."""
        deployment = self.chain(chain_id)
        deployment.token.mint(deployment.router.address, recipient, amount, reference="genesis")

    def flush(self) -> List[bool]:
        """Deliver every in-flight message."""
        return self.transport.flush()

    def total_supply(self) -> int:
        return sum(d.token.total_supply for d in self._chains.values())
