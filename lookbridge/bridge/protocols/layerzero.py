"""
LayerZero Protocol Module

Trusted remotes are keyed by LayerZero chain id; only the local LayerZero
endpoint may deliver.  Replay protection is per (source chain, nonce),
matching the endpoint's ordered per-path nonces.

Fee: base_fee + dst_gas_limit × gas_price(dst).
"""

from typing import Any, Dict, Optional

from .base import ProtocolModule
from ..types import ProtocolId, SenderProof
from ...constants import (
    DEFAULT_GAS_PRICE,
    LAYERZERO_CHAIN_IDS,
    LAYERZERO_DEFAULT_BASE_FEE,
    LAYERZERO_DEFAULT_DST_GAS,
)
from ...access import Role
from ...exceptions import ConfigurationError, UnsupportedRouteError
from ...logger import get_logger

logger = get_logger(__name__)


class LayerZeroModule(ProtocolModule):
    """LayerZero endpoint adapter."""

    protocol_id = ProtocolId.LAYERZERO

    def __init__(
        self,
        *args,
        chain_ids: Optional[Dict[int, int]] = None,
        base_fee: int = LAYERZERO_DEFAULT_BASE_FEE,
        dst_gas_limit: int = LAYERZERO_DEFAULT_DST_GAS,
        **kwargs,
    ):
        self._lz_to_chain: Dict[int, int] = dict(LAYERZERO_CHAIN_IDS if chain_ids is None else chain_ids)
        self._chain_to_lz: Dict[int, int] = {c: lz for lz, c in self._lz_to_chain.items()}
        super().__init__(*args, **kwargs)
        self.base_fee = base_fee
        self._default_dst_gas = dst_gas_limit
        self._min_dst_gas: Dict[int, int] = {}
        self._gas_prices: Dict[int, int] = {}

    # ── Chain mapping ───────────────────────────────────────────────

    def set_chain_mapping(self, caller: str, lz_chain_id: int, chain_id: int) -> None:
        self._access.require(Role.ADMIN, caller)
        existing = self._lz_to_chain.get(lz_chain_id)
        if existing is not None and existing != chain_id:
            raise ConfigurationError(
                f"LayerZero chain {lz_chain_id} already maps to chain {existing}"
            )
        self._lz_to_chain[lz_chain_id] = chain_id
        self._chain_to_lz[chain_id] = lz_chain_id

    def to_remote_id(self, chain_id: int) -> int:
        lz_id = self._chain_to_lz.get(chain_id)
        if lz_id is None:
            raise UnsupportedRouteError(f"LayerZero has no chain id for chain {chain_id}")
        return lz_id

    def from_remote_id(self, remote_id: int) -> int:
        chain_id = self._lz_to_chain.get(remote_id)
        if chain_id is None:
            raise UnsupportedRouteError(f"Unknown LayerZero chain id {remote_id}")
        return chain_id

    # ── Fees ────────────────────────────────────────────────────────

    def set_min_dst_gas(self, caller: str, dst_chain_id: int, gas: int) -> None:
        self._access.require(Role.ADMIN, caller)
        if gas <= 0:
            raise ConfigurationError("Destination gas must be positive")
        self._min_dst_gas[self.to_remote_id(dst_chain_id)] = gas

    def set_gas_price(self, caller: str, dst_chain_id: int, price: int) -> None:
        self._access.require(Role.ADMIN, caller)
        self._gas_prices[self.to_remote_id(dst_chain_id)] = price

    def dst_gas_limit(self, dst_chain_id: int) -> int:
        return self._min_dst_gas.get(self.to_remote_id(dst_chain_id), self._default_dst_gas)

    def estimate_fee(self, dst_chain_id: int, payload: bytes) -> int:
        lz_id = self.to_remote_id(dst_chain_id)
        gas_price = self._gas_prices.get(lz_id, DEFAULT_GAS_PRICE)
        return self.base_fee + self.dst_gas_limit(dst_chain_id) * gas_price

    def _message_metadata(self, dst_chain_id: int) -> Dict[str, Any]:
        return {"dst_gas_limit": self.dst_gas_limit(dst_chain_id)}

    # ── Inbound ─────────────────────────────────────────────────────

    def replay_key(self, src_remote_id: int, proof: SenderProof) -> Any:
        return (src_remote_id, proof.nonce)
