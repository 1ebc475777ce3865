"""
Hyperlane Protocol Module

Origins are Hyperlane domains mapped to chain ids.  Only the local
Mailbox may deliver, the sender must be the trusted sender for the
origin domain, and when an interchain security module (ISM) is
configured, the delivery metadata must carry signatures over the message
id from at least `threshold` distinct ISM validators.
Replay protection is per (origin domain, message id).

Fee: IGP required_gas_amount × gas_price(domain).
"""

from typing import Any, Dict, Iterable, List, Optional, Set

from .base import ProtocolModule
from ..types import ProtocolId, SenderProof, checksum
from ...access import Role
from ...constants import DEFAULT_GAS_PRICE, HYPERLANE_DEFAULT_GAS_AMOUNT, HYPERLANE_DOMAINS
from ...crypto.keys import InvalidSignatureError, Signature
from ...exceptions import ConfigurationError, UnsupportedRouteError, UntrustedRemoteError
from ...logger import get_logger

logger = get_logger(__name__)


class MultisigISM:
    """m-of-n validator signature check over a message id."""

    def __init__(self, validators: Iterable[str], threshold: int):
        self.validators: Set[str] = {checksum(v, "ISM validator") for v in validators}
        if threshold < 1 or threshold > len(self.validators):
            raise ConfigurationError(
                f"ISM threshold {threshold} invalid for {len(self.validators)} validators"
            )
        self.threshold = threshold

    def verify(self, message_id: str, signatures: List[Any]) -> bool:
        signers = set()
        for raw in signatures:
            try:
                signer = Signature.coerce(raw).recover_address(message_id)
            except (InvalidSignatureError, ValueError):
                continue
            if signer in self.validators:
                signers.add(signer)
        return len(signers) >= self.threshold


class HyperlaneModule(ProtocolModule):
    """Hyperlane Mailbox adapter."""

    protocol_id = ProtocolId.HYPERLANE

    def __init__(
        self,
        *args,
        domains: Optional[Dict[int, int]] = None,
        required_gas_amount: int = HYPERLANE_DEFAULT_GAS_AMOUNT,
        **kwargs,
    ):
        self._domain_to_chain: Dict[int, int] = dict(HYPERLANE_DOMAINS if domains is None else domains)
        self._chain_to_domain: Dict[int, int] = {c: d for d, c in self._domain_to_chain.items()}
        super().__init__(*args, **kwargs)
        self.required_gas_amount = required_gas_amount
        self._gas_prices: Dict[int, int] = {}
        self._ism: Optional[MultisigISM] = None

    # ── Domain mapping ──────────────────────────────────────────────

    def set_domain_mapping(self, caller: str, domain: int, chain_id: int) -> None:
        self._access.require(Role.ADMIN, caller)
        existing = self._domain_to_chain.get(domain)
        if existing is not None and existing != chain_id:
            raise ConfigurationError(f"Hyperlane domain {domain} already maps to chain {existing}")
        self._domain_to_chain[domain] = chain_id
        self._chain_to_domain[chain_id] = domain

    def to_remote_id(self, chain_id: int) -> int:
        domain = self._chain_to_domain.get(chain_id)
        if domain is None:
            raise UnsupportedRouteError(f"Hyperlane has no domain for chain {chain_id}")
        return domain

    def from_remote_id(self, remote_id: int) -> int:
        chain_id = self._domain_to_chain.get(remote_id)
        if chain_id is None:
            raise UnsupportedRouteError(f"Unknown Hyperlane domain {remote_id}")
        return chain_id

    def set_trusted_sender(self, caller: str, domain: int, address: str) -> bool:
        """Hyperlane naming for `set_trusted_remote`."""
        return self.set_trusted_remote(caller, domain, address)

    # ── ISM ─────────────────────────────────────────────────────────

    def set_ism(self, caller: str, validators: Iterable[str], threshold: int) -> None:
        self._access.require(Role.ADMIN, caller)
        self._ism = MultisigISM(validators, threshold)
        logger.info(
            f"Hyperlane ISM set: {threshold}/{len(self._ism.validators)} signatures [chain {self.chain_id}]"
        )

    @property
    def ism(self) -> Optional[MultisigISM]:
        return self._ism

    def verify_proof(self, src_remote_id: int, proof: SenderProof) -> None:
        super().verify_proof(src_remote_id, proof)
        if self._ism is None:
            return
        signatures = proof.metadata.get("signatures", [])
        if not self._ism.verify(proof.message_id, signatures):
            logger.warning(
                f"Hyperlane ISM rejected {proof.message_id[:18]}... "
                f"(origin {src_remote_id}) [chain {self.chain_id}]"
            )
            raise UntrustedRemoteError("Hyperlane: ISM verification failed")

    # ── Fees ────────────────────────────────────────────────────────

    def set_gas_price(self, caller: str, dst_chain_id: int, price: int) -> None:
        self._access.require(Role.ADMIN, caller)
        self._gas_prices[self.to_remote_id(dst_chain_id)] = price

    def estimate_fee(self, dst_chain_id: int, payload: bytes) -> int:
        domain = self.to_remote_id(dst_chain_id)
        return self.required_gas_amount * self._gas_prices.get(domain, DEFAULT_GAS_PRICE)

    def replay_key(self, src_remote_id: int, proof: SenderProof) -> Any:
        return (src_remote_id, proof.message_id)
