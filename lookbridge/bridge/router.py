"""
LookBridge Cross-Chain Router

Single entry point for bridge-out transfers on one chain, and the
settlement target of inbound messages.

Bridge-out flow:
  1. Validate (amount, circuit breaker, route, rate limits, fee, balance)
  2. Burn the amount and dispatch through the protocol module, as one unit
  3. Record the transfer with the security manager
  4. Emit BridgeInitiated

A failure in step 2 restores the token ledger exactly; no tokens are
ever burned without a dispatched message.

Inbound settlement mints to the recipient and emits BridgeCompleted.  It
stays allowed while the circuit breaker is enabled so transfers already
in flight can complete.
"""

import threading
from typing import Any, Dict, List, Optional

from .events import BRIDGE_COMPLETED, BRIDGE_INITIATED, PROTOCOL_STATUS_UPDATED, EventLog
from .fees import FeeManager, FeeQuote
from .protocols.base import ProtocolModule
from .registry import BridgeRegistry
from .security import SecurityManager
from .types import (
    BridgeOption,
    ProtocolId,
    RouteRequest,
    RoutePreference,
    TransferReceipt,
    checksum,
)
from ..access import AccessControl, Role
from ..constants import PROTOCOL_ESTIMATED_TIME, PROTOCOL_SECURITY_LEVEL
from ..exceptions import (
    CircuitBreakerActiveError,
    ConfigurationError,
    InsufficientBalanceError,
    InsufficientFeeError,
    InvalidAmountError,
    ProtocolDispatchFailedError,
    UnsupportedRouteError,
)
from ..logger import get_logger
from ..tokens.look import LookToken

logger = get_logger(__name__)


class CrossChainRouter:
    """
    Router for one chain.

    Args:
        chain_id: EVM chain id of this deployment
        address: Router address; must be a bridge operator on `token`
        token: Local LOOK ledger
        registry: Bridge registration table
        security: Rate limiter
        access: Role table
        breaker: Object exposing ``is_circuit_broken`` (the SupplyOracle)
        events: Event log for BridgeInitiated / BridgeCompleted
        fees: Service fee schedule; no service fee is charged if None
    """

    def __init__(
        self,
        chain_id: int,
        address: str,
        token: LookToken,
        registry: BridgeRegistry,
        security: SecurityManager,
        access: AccessControl,
        breaker: Optional[Any] = None,
        events: Optional[EventLog] = None,
        fees: Optional[FeeManager] = None,
    ):
        self.chain_id = chain_id
        self.address = checksum(address, "router address")
        self.token = token
        self.registry = registry
        self.security = security
        self.fees = fees
        self._access = access
        self._breaker = breaker
        self._events = events or EventLog(f"router-{chain_id}")
        self._modules: Dict[ProtocolId, ProtocolModule] = {}
        self._disabled: set = set()
        self._lock = threading.RLock()

    # ── Setup (ADMIN) ───────────────────────────────────────────────

    def set_breaker(self, breaker: Any) -> None:
        self._breaker = breaker

    def register_protocol(self, caller: str, protocol_id: ProtocolId, module: ProtocolModule) -> None:
        """Install the module for `protocol_id` and bind its settlement callback."""
        self._access.require(Role.ADMIN, caller)
        protocol_id = ProtocolId(protocol_id)
        if module.protocol_id != protocol_id:
            raise ConfigurationError(
                f"Module speaks {module.name}, not {protocol_id.label}"
            )
        if module.chain_id != self.chain_id:
            raise ConfigurationError(
                f"{module.name} module belongs to chain {module.chain_id}, router is {self.chain_id}"
            )
        with self._lock:
            module.bind(self._settle)
            self._modules[protocol_id] = module
        logger.info(f"{protocol_id.label} module registered: {module.address} [chain {self.chain_id}]")

    def register_bridge(self, caller: str, chain_id: int, protocol_id: ProtocolId, bridge_address: str):
        return self.registry.register(caller, chain_id, protocol_id, bridge_address)

    def set_chain_protocol_support(self, caller: str, chain_id: int, protocol_id: ProtocolId, supported: bool) -> bool:
        return self.registry.set_active(caller, chain_id, protocol_id, supported)

    def module(self, protocol_id: ProtocolId) -> Optional[ProtocolModule]:
        return self._modules.get(ProtocolId(protocol_id))

    def update_protocol_status(self, caller: str, protocol_id: ProtocolId, enabled: bool) -> bool:
        """
        Enable or disable a protocol for every destination (ADMIN).

        Returns False if the protocol was already in that state.
        """
        self._access.require(Role.ADMIN, caller)
        protocol_id = ProtocolId(protocol_id)
        if protocol_id not in self._modules:
            raise ConfigurationError(
                f"No {protocol_id.label} module on chain {self.chain_id}"
            )
        with self._lock:
            if enabled == (protocol_id not in self._disabled):
                return False
            if enabled:
                self._disabled.discard(protocol_id)
            else:
                self._disabled.add(protocol_id)

        logger.warning(
            f"{protocol_id.label} {'ENABLED' if enabled else 'DISABLED'} on router [chain {self.chain_id}]"
        )
        self._events.emit(
            PROTOCOL_STATUS_UPDATED,
            protocol_id=int(protocol_id),
            chain_id=self.chain_id,
            enabled=enabled,
        )
        return True

    def is_protocol_enabled(self, protocol_id: ProtocolId) -> bool:
        protocol_id = ProtocolId(protocol_id)
        return protocol_id in self._modules and protocol_id not in self._disabled

    # ── Queries ─────────────────────────────────────────────────────

    @property
    def is_circuit_broken(self) -> bool:
        return bool(self._breaker is not None and self._breaker.is_circuit_broken)

    def supported_protocols(self, dst_chain_id: int) -> List[ProtocolId]:
        return [
            pid for pid in sorted(self._modules)
            if pid not in self._disabled and self.registry.is_active(dst_chain_id, pid)
        ]

    def quote(self, request: RouteRequest) -> FeeQuote:
        """Messaging and service fee for `request`."""
        return self._quote(self._resolve(request)[1], request)

    def estimate_fee(self, request: RouteRequest) -> int:
        return self.quote(request).total_fee

    def _quote(self, module: ProtocolModule, request: RouteRequest) -> FeeQuote:
        body = module.build_payload(request.recipient, request.amount, request.payload)
        service_fee = 0
        if self.fees is not None:
            service_fee = self.fees.service_fee(request.protocol_id, request.dst_chain_id, request.amount)
        return FeeQuote(
            protocol_id=request.protocol_id,
            dst_chain_id=request.dst_chain_id,
            messaging_fee=module.estimate_fee(request.dst_chain_id, body),
            service_fee=service_fee,
        )

    def _resolve(self, request: RouteRequest):
        if request.dst_chain_id == self.chain_id:
            raise UnsupportedRouteError("Destination chain equals source chain")
        registration = self.registry.resolve(request.dst_chain_id, request.protocol_id)
        module = self._modules.get(request.protocol_id)
        if module is None:
            raise UnsupportedRouteError(
                f"No {request.protocol_id.label} module on chain {self.chain_id}"
            )
        if request.protocol_id in self._disabled:
            raise UnsupportedRouteError(
                f"{request.protocol_id.label} is disabled on chain {self.chain_id}"
            )
        return registration, module

    # ── Route discovery ─────────────────────────────────────────────

    def bridge_options(self, dst_chain_id: int, amount: int = 0) -> List[BridgeOption]:
        """
        One option per protocol registered for `dst_chain_id`.

        Unavailable options (inactive route, disabled protocol, no quote)
        are listed with ``available=False`` and a zero fee.  An unknown
        destination yields an empty list.
        """
        if dst_chain_id == self.chain_id:
            return []
        options = []
        for protocol_id, module in sorted(self._modules.items()):
            registration = self.registry.get(dst_chain_id, protocol_id)
            if registration is None:
                continue
            available = registration.is_active and protocol_id not in self._disabled
            fee = 0
            if available:
                request = RouteRequest(dst_chain_id, self.address, max(amount, 1), protocol_id)
                try:
                    fee = self._quote(module, request).total_fee
                except UnsupportedRouteError as e:
                    logger.debug(f"{module.name} cannot quote [chain {dst_chain_id}]: {e}")
                    available = False
            options.append(BridgeOption(
                protocol_id=protocol_id,
                available=available,
                fee=fee,
                estimated_time=PROTOCOL_ESTIMATED_TIME[protocol_id],
                security_level=PROTOCOL_SECURITY_LEVEL[protocol_id],
            ))
        return options

    def optimal_route(
        self,
        dst_chain_id: int,
        amount: int,
        preference: RoutePreference = RoutePreference.CHEAPEST,
    ) -> BridgeOption:
        """
        Best available option for `preference`.

        Ties break on fee, then on protocol id.

        Raises:
            UnsupportedRouteError: no protocol can reach `dst_chain_id`
        """
        candidates = [o for o in self.bridge_options(dst_chain_id, amount) if o.available]
        if not candidates:
            raise UnsupportedRouteError(f"No available route to chain {dst_chain_id}")

        preference = RoutePreference(preference)
        if preference == RoutePreference.FASTEST:
            key = lambda o: (o.estimated_time, o.fee, o.protocol_id)
        elif preference == RoutePreference.MOST_SECURE:
            key = lambda o: (-o.security_level, o.fee, o.protocol_id)
        else:
            key = lambda o: (o.fee, o.protocol_id)
        return min(candidates, key=key)

    # ── Bridge-out ──────────────────────────────────────────────────

    def bridge(self, request: RouteRequest, sender: str, fee: int = 0) -> TransferReceipt:
        """
        Burn `request.amount` from `sender` and send it to the destination chain.

        Raises:
            InvalidAmountError, CircuitBreakerActiveError, UnsupportedRouteError,
            RateLimitExceededError, InsufficientFeeError, InsufficientBalanceError:
                rejected before any state change
            ProtocolDispatchFailedError: dispatch failed; the burn was reverted
        """
        sender = checksum(sender, "sender")
        with self._lock:
            if request.amount <= 0:
                raise InvalidAmountError("Bridge amount must be positive")
            if self.is_circuit_broken:
                logger.warning(
                    f"Bridge-out BLOCKED by circuit breaker [chain {self.chain_id}]: "
                    f"{sender} → [chain {request.dst_chain_id}]"
                )
                raise CircuitBreakerActiveError("Circuit breaker is active; bridging halted")

            registration, module = self._resolve(request)
            self.security.check_transfer(request.protocol_id, sender, request.amount)

            quote = self._quote(module, request)
            if fee < quote.total_fee:
                raise InsufficientFeeError(
                    f"Fee {fee} below {module.name} quote {quote.total_fee} "
                    f"(service fee {quote.service_fee})"
                )

            balance = self.token.balance_of(sender)
            if balance < request.amount:
                raise InsufficientBalanceError(
                    f"{sender} balance {balance} < bridge amount {request.amount}"
                )

            try:
                with self.token.atomic():
                    self.token.burn(self.address, sender, request.amount, request.dst_chain_id)
                    message_id = module.dispatch(
                        request.dst_chain_id,
                        request.recipient,
                        request.amount,
                        request.payload,
                        sender=sender,
                        fee=fee - quote.service_fee,
                        destination=registration.bridge_address,
                    )
            except Exception as e:
                logger.error(
                    f"{module.name} dispatch failed [chain {self.chain_id}] → "
                    f"[chain {request.dst_chain_id}]: {e}"
                )
                raise ProtocolDispatchFailedError(f"{module.name} dispatch failed: {e}") from e

            self.security.record_transfer(request.protocol_id, sender, request.amount)
            if self.fees is not None:
                self.fees.collect(request.protocol_id, request.dst_chain_id, quote.service_fee)

        receipt = TransferReceipt(
            message_id=message_id,
            protocol_id=request.protocol_id,
            src_chain_id=self.chain_id,
            dst_chain_id=request.dst_chain_id,
            sender=sender,
            recipient=request.recipient,
            amount=request.amount,
            fee=fee,
        )
        self._events.emit(
            BRIDGE_INITIATED,
            protocol_id=int(request.protocol_id),
            dst_chain_id=request.dst_chain_id,
            amount=request.amount,
            recipient=request.recipient,
            sender=sender,
            message_id=message_id,
            src_chain_id=self.chain_id,
        )
        logger.info(
            f"{module.name} bridge {request.amount} {self.token.symbol} "
            f"[chain {self.chain_id}] → [chain {request.dst_chain_id}] {request.recipient}"
        )
        return receipt

    # ── Inbound settlement ──────────────────────────────────────────

    def _settle(
        self,
        src_chain_id: int,
        recipient: str,
        amount: int,
        data: bytes,
        message_id: str,
        protocol_id: ProtocolId,
    ) -> None:
        with self._lock:
            self.token.mint(self.address, recipient, amount, reference=message_id)
        self._events.emit(
            BRIDGE_COMPLETED,
            protocol_id=int(protocol_id),
            src_chain_id=src_chain_id,
            dst_chain_id=self.chain_id,
            amount=amount,
            recipient=recipient,
            message_id=message_id,
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "address": self.address,
            "circuit_broken": self.is_circuit_broken,
            "protocols": [pid.label for pid in sorted(self._modules)],
            "disabled_protocols": [pid.label for pid in sorted(self._disabled)],
            "fees": self.fees.get_status() if self.fees is not None else None,
            "routes": [r.to_dict() for r in self.registry.registrations()],
            "token": self.token.to_dict(),
        }
