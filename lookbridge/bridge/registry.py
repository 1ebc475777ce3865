"""
LookBridge Bridge Registry

Admin-owned table of bridge endpoints keyed by (chain_id, protocol_id).
The router reads it to resolve the destination module address of every
outbound transfer.
"""

import threading
from typing import Dict, List, Optional, Tuple

from .events import BRIDGE_REGISTERED, EventLog
from .types import BridgeRegistration, ProtocolId, checksum
from ..access import AccessControl, Role
from ..exceptions import DuplicateRegistrationError, UnsupportedRouteError
from ..logger import get_logger

logger = get_logger(__name__)


class BridgeRegistry:
    """
    Registry of (chain, protocol) → bridge address.

    Registration is idempotent: the same key and address is a no-op.
    An active registration is never silently overwritten; an inactive
    one may be superseded by a new address, which reactivates it.
    """

    def __init__(self, access: AccessControl, events: Optional[EventLog] = None):
        self._access = access
        self._events = events or EventLog("registry")
        self._registrations: Dict[Tuple[int, int], BridgeRegistration] = {}
        self._lock = threading.RLock()

    # ── Mutation (ADMIN) ────────────────────────────────────────────

    def register(
        self,
        caller: str,
        chain_id: int,
        protocol_id: ProtocolId,
        bridge_address: str,
    ) -> BridgeRegistration:
        """
        Register the bridge module for (chain_id, protocol_id).

        Raises:
            UnauthorizedError: caller is not ADMIN
            ValidationError: invalid address or chain id
            DuplicateRegistrationError: an active registration exists with
                a different address
        """
        self._access.require(Role.ADMIN, caller)
        protocol_id = ProtocolId(protocol_id)
        address = checksum(bridge_address, "bridge_address")
        if chain_id <= 0:
            raise UnsupportedRouteError(f"Invalid chain id: {chain_id}")

        key = (chain_id, int(protocol_id))
        with self._lock:
            existing = self._registrations.get(key)
            if existing is not None:
                if existing.bridge_address == address:
                    logger.debug(
                        f"{protocol_id.label} bridge already registered [chain {chain_id}]: {address}"
                    )
                    return existing
                if existing.is_active:
                    logger.warning(
                        f"Rejected re-registration of {protocol_id.label} [chain {chain_id}]: "
                        f"{existing.bridge_address} is active"
                    )
                    raise DuplicateRegistrationError(
                        f"Active {protocol_id.label} registration for chain {chain_id} "
                        f"already points to {existing.bridge_address}"
                    )

            registration = BridgeRegistration(
                chain_id=chain_id,
                protocol_id=protocol_id,
                bridge_address=address,
            )
            self._registrations[key] = registration

        superseded = existing.bridge_address if existing else None
        logger.info(
            f"{protocol_id.label} bridge registered [chain {chain_id}]: {address}"
            + (f" (supersedes {superseded})" if superseded else "")
        )
        self._events.emit(
            BRIDGE_REGISTERED,
            chain_id=chain_id,
            protocol_id=int(protocol_id),
            bridge_address=address,
        )
        return registration

    def set_active(self, caller: str, chain_id: int, protocol_id: ProtocolId, active: bool) -> bool:
        """
        Enable or disable a registration.

        Disabling blocks new dispatches immediately; messages already
        dispatched are unaffected.
        """
        self._access.require(Role.ADMIN, caller)
        key = (chain_id, int(ProtocolId(protocol_id)))
        with self._lock:
            registration = self._registrations.get(key)
            if registration is None:
                raise UnsupportedRouteError(
                    f"No {ProtocolId(protocol_id).label} registration for chain {chain_id}"
                )
            if registration.is_active == active:
                return False
            registration.is_active = active

        logger.info(
            f"{ProtocolId(protocol_id).label} route [chain {chain_id}] "
            f"{'enabled' if active else 'disabled'}"
        )
        return True

    # ── Queries ─────────────────────────────────────────────────────

    def is_registered(self, chain_id: int, protocol_id: ProtocolId) -> bool:
        return (chain_id, int(protocol_id)) in self._registrations

    def is_active(self, chain_id: int, protocol_id: ProtocolId) -> bool:
        registration = self._registrations.get((chain_id, int(protocol_id)))
        return registration is not None and registration.is_active

    def get(self, chain_id: int, protocol_id: ProtocolId) -> Optional[BridgeRegistration]:
        return self._registrations.get((chain_id, int(protocol_id)))

    def resolve(self, chain_id: int, protocol_id: ProtocolId) -> BridgeRegistration:
        """Active registration for the route, or UnsupportedRouteError."""
        registration = self.get(chain_id, protocol_id)
        if registration is None or not registration.is_active:
            raise UnsupportedRouteError(
                f"No active {ProtocolId(protocol_id).label} route to chain {chain_id}"
            )
        return registration

    def registrations(self) -> List[BridgeRegistration]:
        with self._lock:
            return [self._registrations[k] for k in sorted(self._registrations)]

    def chains_for(self, protocol_id: ProtocolId) -> List[int]:
        """Chain ids with an active registration for `protocol_id`."""
        return sorted(
            r.chain_id for r in self.registrations()
            if r.protocol_id == protocol_id and r.is_active
        )

    def __len__(self) -> int:
        return len(self._registrations)
