"""
LookBridge Protocol Module Interface

A protocol module carries transfer messages between the routers of two
chains over one messaging protocol.  Every concrete module (LayerZero,
Celer, Hyperlane) enforces on its own:

  - trusted-remote binding: only the configured transport may deliver,
    and only from the configured remote module
  - replay protection: a message is settled at most once
  - fee accounting: the caller fee is checked against the quote before
    anything is sent
  - transport retry: transient send failures are retried with
    exponential backoff; the outbound nonce advances only on success

Chain-id numbering is protocol specific (LayerZero chain ids, Hyperlane
domains).  `dispatch` takes standard EVM chain ids; the module converts.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Set, Tuple

from ..types import (
    CrossChainMessage,
    ProtocolId,
    SenderProof,
    checksum,
)
from ...access import AccessControl, Role
from ...constants import DISPATCH_MAX_ATTEMPTS, DISPATCH_RETRY_DELAY
from ...crypto.hashing import (
    compute_message_id,
    decode_transfer_payload,
    encode_transfer_payload,
)
from ...exceptions import (
    ConfigurationError,
    InsufficientFeeError,
    TransportError,
    UnsupportedRouteError,
    UntrustedRemoteError,
    ValidationError,
)
from ...logger import get_logger

logger = get_logger(__name__)


# (src_chain_id, recipient, amount, data, message_id, protocol_id) → None
SettlementHandler = Callable[[int, str, int, bytes, str, ProtocolId], None]


class ProtocolModule(ABC):
    """
    Base class for protocol modules.

    Subclasses define the protocol id, chain-id mapping, fee quote and
    the replay key, and may add checks on the delivery proof.
    """

    protocol_id: ProtocolId

    def __init__(
        self,
        chain_id: int,
        address: str,
        access: AccessControl,
        transport: Any,
        transport_address: str,
        *,
        max_attempts: int = DISPATCH_MAX_ATTEMPTS,
        retry_delay: float = DISPATCH_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            chain_id: EVM chain id this module is deployed on
            address: Address of this module (the remote side trusts it)
            access: Role table of the local deployment
            transport: Object with ``send(CrossChainMessage)``
            transport_address: Local endpoint / message bus / mailbox address;
                only deliveries vouched for by it are accepted
            max_attempts: Send attempts before giving up
            retry_delay: First backoff delay in seconds (doubled per attempt)
            sleep: Sleep function used between attempts
        """
        if max_attempts < 1:
            raise ConfigurationError("max_attempts must be >= 1")
        self.chain_id = chain_id
        self.address = checksum(address, "module address")
        self.transport = transport
        self.transport_address = checksum(transport_address, "transport address")
        self._access = access
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep

        self._trusted_remotes: Dict[int, str] = {}
        self._outbound_nonce: Dict[int, int] = {}
        self._consumed: Set[Tuple[int, Any]] = set()
        self._handler: Optional[SettlementHandler] = None
        self._fees_collected = 0
        self._fees_withdrawn = 0
        self._lock = threading.RLock()

    # ── Identity ────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self.protocol_id.label

    @property
    def local_remote_id(self) -> int:
        """This chain's id in the protocol's own numbering."""
        return self.to_remote_id(self.chain_id)

    @abstractmethod
    def to_remote_id(self, chain_id: int) -> int:
        """EVM chain id → protocol chain id. Raises UnsupportedRouteError."""
        ...

    @abstractmethod
    def from_remote_id(self, remote_id: int) -> int:
        """Protocol chain id → EVM chain id. Raises UnsupportedRouteError."""
        ...

    # ── Configuration ───────────────────────────────────────────────

    def bind(self, handler: SettlementHandler) -> None:
        """Install the router callback that settles inbound transfers."""
        self._handler = handler

    def set_trusted_remote(self, caller: str, remote_id: int, address: str) -> bool:
        """
        Bind the remote module for `remote_id` (protocol numbering).

        Set once: the same value again is a no-op returning False; a
        different value raises ConfigurationError.
        """
        self._access.require(Role.ADMIN, caller)
        address = checksum(address, "trusted remote")
        self.from_remote_id(remote_id)
        with self._lock:
            current = self._trusted_remotes.get(remote_id)
            if current == address:
                return False
            if current is not None:
                raise ConfigurationError(
                    f"{self.name} trusted remote for {remote_id} already set to {current}"
                )
            self._trusted_remotes[remote_id] = address
        logger.info(f"{self.name} trusted remote {remote_id} → {address} [chain {self.chain_id}]")
        return True

    def trusted_remote(self, remote_id: int) -> Optional[str]:
        return self._trusted_remotes.get(remote_id)

    @property
    def fees_collected(self) -> int:
        return self._fees_collected

    def outbound_nonce(self, dst_chain_id: int) -> int:
        return self._outbound_nonce.get(self.to_remote_id(dst_chain_id), 0)

    # ── Fees ────────────────────────────────────────────────────────

    @abstractmethod
    def estimate_fee(self, dst_chain_id: int, payload: bytes) -> int:
        """Native fee required to send `payload` to `dst_chain_id` (EVM id)."""
        ...

    def withdraw_fees(self, caller: str, recipient: str, amount: Optional[int] = None) -> int:
        """Release collected messaging fees to `recipient` (ADMIN). Defaults to all of them."""
        self._access.require(Role.ADMIN, caller)
        recipient = checksum(recipient, "recipient")
        with self._lock:
            available = self._fees_collected - self._fees_withdrawn
            if amount is None:
                amount = available
            if amount < 0 or amount > available:
                raise ValidationError(f"{self.name}: cannot withdraw {amount}, {available} available")
            self._fees_withdrawn += amount
        if amount:
            logger.info(f"{self.name} withdrew {amount} in fees → {recipient} [chain {self.chain_id}]")
        return amount

    # ── Outbound ────────────────────────────────────────────────────

    def build_payload(self, recipient: str, amount: int, data: bytes = b"") -> bytes:
        return encode_transfer_payload(recipient, amount, data)

    def dispatch(
        self,
        dst_chain_id: int,
        recipient: str,
        amount: int,
        payload: bytes = b"",
        *,
        sender: str,
        fee: int,
        destination: Optional[str] = None,
    ) -> str:
        """
        Send a transfer message to the module on `dst_chain_id`.

        Args:
            dst_chain_id: Destination EVM chain id
            recipient: Recipient on the destination chain
            amount: Amount burned on this chain
            payload: Opaque extra data carried to the destination
            sender: Account that initiated the transfer
            fee: Native fee supplied by the caller
            destination: Remote module address; defaults to the trusted remote

        Returns:
            message id

        Raises:
            UnsupportedRouteError: destination unknown for this protocol
            InsufficientFeeError: fee below the quote
            TransportError: transport still failing after every retry
        """
        remote_id = self.to_remote_id(dst_chain_id)
        target = destination or self._trusted_remotes.get(remote_id)
        if not target:
            raise UnsupportedRouteError(
                f"{self.name} has no remote module for chain {dst_chain_id}"
            )
        target = checksum(target, "destination")

        body = self.build_payload(recipient, amount, payload)
        quote = self.estimate_fee(dst_chain_id, body)
        if fee < quote:
            raise InsufficientFeeError(f"{self.name} fee {fee} < required {quote}")

        with self._lock:
            nonce = self._outbound_nonce.get(remote_id, 0) + 1
            message_id = compute_message_id(
                int(self.protocol_id), self.local_remote_id, remote_id,
                self.address, nonce, body,
            )
            message = CrossChainMessage(
                protocol_id=self.protocol_id,
                src_chain_id=self.local_remote_id,
                dst_chain_id=remote_id,
                sender=self.address,
                destination=target,
                nonce=nonce,
                message_id=message_id,
                payload=body,
                metadata=self._message_metadata(dst_chain_id),
            )
            self._send_with_retry(message)
            self._outbound_nonce[remote_id] = nonce
            self._fees_collected += fee

        logger.info(
            f"{self.name} dispatched {message_id[:18]}... {sender} → {recipient} "
            f"amount={amount} [chain {dst_chain_id}]"
        )
        return message_id

    def _message_metadata(self, dst_chain_id: int) -> Dict[str, Any]:
        return {}

    def _send_with_retry(self, message: CrossChainMessage) -> None:
        delay = self._retry_delay
        for attempt in range(1, self._max_attempts + 1):
            try:
                self.transport.send(message)
                return
            except TransportError as e:
                if attempt == self._max_attempts:
                    logger.error(
                        f"{self.name} send failed after {attempt} attempts: {e}"
                    )
                    raise
                logger.warning(
                    f"{self.name} send attempt {attempt}/{self._max_attempts} failed: {e}; "
                    f"retrying in {delay:.2f}s"
                )
                self._sleep(delay)
                delay *= 2

    # ── Inbound ─────────────────────────────────────────────────────

    @abstractmethod
    def replay_key(self, src_remote_id: int, proof: SenderProof) -> Any:
        """Identity under which a delivered message is marked consumed."""
        ...

    def verify_proof(self, src_remote_id: int, proof: SenderProof) -> None:
        """
        Check transport and sender binding.

        Raises:
            UntrustedRemoteError: delivery not from the trusted transport
                or sender
        """
        if proof.transport != self.transport_address:
            logger.warning(
                f"{self.name} rejected delivery from untrusted transport {proof.transport} "
                f"[chain {self.chain_id}]"
            )
            raise UntrustedRemoteError(f"{self.name}: caller is not the trusted transport")
        trusted = self._trusted_remotes.get(src_remote_id)
        if trusted is None or proof.sender != trusted:
            logger.warning(
                f"{self.name} rejected message from untrusted sender {proof.sender} "
                f"(origin {src_remote_id}) [chain {self.chain_id}]"
            )
            raise UntrustedRemoteError(f"{self.name}: untrusted remote {proof.sender}")

    def verify_message_id(self, src_remote_id: int, proof: SenderProof, payload: bytes) -> None:
        """
        Recompute the message id from the delivered bytes.

        The id covers protocol, route, sender, nonce and payload, so a
        payload swapped after the proof was issued no longer matches.

        Raises:
            UntrustedRemoteError: payload does not match `proof.message_id`
        """
        expected = compute_message_id(
            int(self.protocol_id), src_remote_id, self.local_remote_id,
            proof.sender, proof.nonce, payload,
        )
        if expected != proof.message_id:
            logger.warning(
                f"{self.name} rejected payload not matching message id "
                f"{proof.message_id[:18]}... (origin {src_remote_id}) [chain {self.chain_id}]"
            )
            raise UntrustedRemoteError(f"{self.name}: payload does not match message id")

    def receive(self, src_remote_id: int, sender_proof: SenderProof, payload: bytes) -> bool:
        """
        Settle an inbound message.

        Returns:
            True if settled, False if it was already consumed

        Raises:
            UntrustedRemoteError: proof fails the binding checks, or the
                payload does not hash to the vouched message id
            ConfigurationError: no settlement handler bound
        """
        self.verify_proof(src_remote_id, sender_proof)
        self.verify_message_id(src_remote_id, sender_proof, payload)
        src_chain_id = self.from_remote_id(src_remote_id)
        key = self.replay_key(src_remote_id, sender_proof)

        with self._lock:
            if key in self._consumed:
                logger.warning(
                    f"{self.name} replayed message ignored {key} [chain {self.chain_id}]"
                )
                return False
            if self._handler is None:
                raise ConfigurationError(f"{self.name} module has no settlement handler")

            recipient, amount, data = decode_transfer_payload(payload)
            self._handler(
                src_chain_id, recipient, amount, data,
                sender_proof.message_id, self.protocol_id,
            )
            self._consumed.add(key)

        logger.info(
            f"{self.name} settled {amount} → {recipient} from [chain {src_chain_id}]"
        )
        return True

    def is_consumed(self, src_remote_id: int, proof: SenderProof) -> bool:
        return self.replay_key(src_remote_id, proof) in self._consumed

    def get_status(self) -> Dict[str, Any]:
        return {
            "protocol": self.name,
            "chain_id": self.chain_id,
            "address": self.address,
            "transport": self.transport_address,
            "trusted_remotes": {str(k): v for k, v in self._trusted_remotes.items()},
            "outbound_nonces": {str(k): v for k, v in self._outbound_nonce.items()},
            "consumed_messages": len(self._consumed),
            "fees_collected": str(self._fees_collected),
            "fees_available": str(self._fees_collected - self._fees_withdrawn),
        }
