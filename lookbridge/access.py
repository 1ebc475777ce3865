"""
LookBridge Access Control

Role-based authorization shared by the registry, router, oracle and
protocol modules of a deployment.  Roles are granted to checksummed
addresses; every privileged entry point calls `require(role, caller)`.
"""

import threading
from enum import Enum
from typing import Dict, Iterable, Set

from eth_utils import is_address, to_checksum_address

from .exceptions import UnauthorizedError, ValidationError
from .logger import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """Privileged roles."""
    ADMIN = "ADMIN"            # registry, params, breaker reset, role grants
    ORACLE = "ORACLE"          # supply update signers, reconcile()
    EMERGENCY = "EMERGENCY"    # manual circuit breaker trip


def _normalize(address: str) -> str:
    if not isinstance(address, str) or not is_address(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return to_checksum_address(address)


class AccessControl:
    """
    Role table for one deployment.

    The address passed at construction receives ADMIN; admins grant and
    revoke every other role.
    """

    def __init__(self, admin: str):
        self._roles: Dict[Role, Set[str]] = {role: set() for role in Role}
        self._lock = threading.RLock()
        self._roles[Role.ADMIN].add(_normalize(admin))

    def has_role(self, role: Role, address: str) -> bool:
        try:
            account = _normalize(address)
        except ValidationError:
            return False
        with self._lock:
            return account in self._roles[Role(role)]

    def require(self, role: Role, caller: str) -> str:
        """
        Return the checksummed caller, or raise if it lacks `role`.

        Raises:
            UnauthorizedError: caller does not hold the role
        """
        if not self.has_role(role, caller):
            logger.warning(f"Unauthorized: {caller} lacks {Role(role).value}")
            raise UnauthorizedError(f"{caller} lacks role {Role(role).value}")
        return to_checksum_address(caller)

    def grant_role(self, caller: str, role: Role, account: str) -> bool:
        """Grant `role` to `account`. Returns False if already held."""
        self.require(Role.ADMIN, caller)
        account = _normalize(account)
        with self._lock:
            members = self._roles[Role(role)]
            if account in members:
                return False
            members.add(account)
        logger.info(f"Role {Role(role).value} granted to {account}")
        return True

    def revoke_role(self, caller: str, role: Role, account: str) -> bool:
        self.require(Role.ADMIN, caller)
        account = _normalize(account)
        with self._lock:
            members = self._roles[Role(role)]
            if account not in members:
                return False
            if role == Role.ADMIN and len(members) == 1:
                raise ValidationError("Cannot revoke the last admin")
            members.discard(account)
        logger.info(f"Role {Role(role).value} revoked from {account}")
        return True

    def members(self, role: Role) -> Set[str]:
        with self._lock:
            return set(self._roles[Role(role)])

    def grant_many(self, caller: str, role: Role, accounts: Iterable[str]) -> int:
        return sum(1 for account in accounts if self.grant_role(caller, role, account))
