"""
Celer IM Protocol Module

Celer addresses chains by their EVM chain id.  Only the local MessageBus
may deliver, and the sender must be the remote module registered for
the source chain.  Replay protection is per (source chain, message id).

Fee: MessageBus fee_base + len(message) × fee_per_byte.
"""

from typing import Any

from .base import ProtocolModule
from ..types import ProtocolId, SenderProof
from ...access import Role
from ...constants import CELER_DEFAULT_FEE_BASE, CELER_DEFAULT_FEE_PER_BYTE
from ...exceptions import ConfigurationError, UnsupportedRouteError


class CelerModule(ProtocolModule):
    """Celer MessageBus adapter."""

    protocol_id = ProtocolId.CELER

    def __init__(
        self,
        *args,
        fee_base: int = CELER_DEFAULT_FEE_BASE,
        fee_per_byte: int = CELER_DEFAULT_FEE_PER_BYTE,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.fee_base = fee_base
        self.fee_per_byte = fee_per_byte

    def to_remote_id(self, chain_id: int) -> int:
        if chain_id <= 0:
            raise UnsupportedRouteError(f"Invalid chain id {chain_id}")
        return chain_id

    def from_remote_id(self, remote_id: int) -> int:
        return self.to_remote_id(remote_id)

    def set_remote_module(self, caller: str, chain_id: int, address: str) -> bool:
        """Celer naming for `set_trusted_remote`."""
        return self.set_trusted_remote(caller, chain_id, address)

    def update_fee_params(self, caller: str, fee_base: int, fee_per_byte: int) -> None:
        self._access.require(Role.ADMIN, caller)
        if fee_base < 0 or fee_per_byte < 0:
            raise ConfigurationError("Celer fee parameters cannot be negative")
        self.fee_base = fee_base
        self.fee_per_byte = fee_per_byte

    def estimate_fee(self, dst_chain_id: int, payload: bytes) -> int:
        self.to_remote_id(dst_chain_id)
        return self.fee_base + len(payload) * self.fee_per_byte

    def replay_key(self, src_remote_id: int, proof: SenderProof) -> Any:
        return (src_remote_id, proof.message_id)
