"""
In-process message transport

Connects the protocol modules of every simulated chain.  `send` queues a
message on the sending side; `flush` delivers queued messages to the
destination module together with the SenderProof the destination's
endpoint / message bus / mailbox vouches for.

Failure injection (`fail_next`, `set_unreachable`) and `redeliver` let
callers exercise transport retry and replay protection.
"""

import threading
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from ..types import CrossChainMessage, ProtocolId, SenderProof
from ...crypto.keys import PrivateKey
from ...exceptions import LookBridgeException, TransportError
from ...logger import get_logger

logger = get_logger(__name__)


class InMemoryTransport:
    """Message network shared by all in-process chains."""

    def __init__(self):
        self._endpoints: Dict[Tuple[int, int], object] = {}
        self._queue: Deque[CrossChainMessage] = deque()
        self._sent: List[CrossChainMessage] = []
        self._dead_letters: List[Tuple[CrossChainMessage, str]] = []
        self._failures: Dict[Optional[int], int] = {}
        self._unreachable: Set[Tuple[int, int]] = set()
        self._validator_keys: Dict[int, List[PrivateKey]] = {}
        self._lock = threading.RLock()

    # ── Topology ────────────────────────────────────────────────────

    def attach(self, module) -> None:
        """Make `module` reachable at (protocol, its protocol chain id)."""
        key = (int(module.protocol_id), module.local_remote_id)
        with self._lock:
            self._endpoints[key] = module
        logger.debug(f"Transport: {module.name} endpoint attached [chain {module.chain_id}]")

    def endpoint(self, protocol_id: ProtocolId, remote_id: int):
        return self._endpoints.get((int(protocol_id), remote_id))

    def set_validator_keys(self, protocol_id: ProtocolId, keys: Iterable[PrivateKey]) -> None:
        """Keys whose signatures over the message id are attached on delivery."""
        self._validator_keys[int(protocol_id)] = list(keys)

    # ── Failure injection ───────────────────────────────────────────

    def fail_next(self, count: int = 1, protocol_id: Optional[ProtocolId] = None) -> None:
        """Make the next `count` sends (optionally of one protocol) fail."""
        key = None if protocol_id is None else int(protocol_id)
        with self._lock:
            self._failures[key] = self._failures.get(key, 0) + count

    def set_unreachable(self, protocol_id: ProtocolId, remote_id: int, unreachable: bool = True) -> None:
        key = (int(protocol_id), remote_id)
        with self._lock:
            if unreachable:
                self._unreachable.add(key)
            else:
                self._unreachable.discard(key)

    def _take_failure(self, protocol_id: int) -> bool:
        for key in (protocol_id, None):
            if self._failures.get(key, 0) > 0:
                self._failures[key] -= 1
                return True
        return False

    # ── Sending ─────────────────────────────────────────────────────

    def send(self, message: CrossChainMessage) -> None:
        """
        Accept `message` for delivery.

        Raises:
            TransportError: injected failure, unreachable destination or no
                module at the destination address
        """
        key = (int(message.protocol_id), message.dst_chain_id)
        with self._lock:
            if self._take_failure(int(message.protocol_id)):
                raise TransportError(f"{message.protocol_id.label} transport unavailable")
            if key in self._unreachable:
                raise TransportError(
                    f"{message.protocol_id.label} destination {message.dst_chain_id} unreachable"
                )
            target = self._endpoints.get(key)
            if target is None or target.address != message.destination:
                raise TransportError(
                    f"No {message.protocol_id.label} module at {message.destination} "
                    f"on {message.dst_chain_id}"
                )
            self._queue.append(message)
            self._sent.append(message)

    @property
    def pending(self) -> List[CrossChainMessage]:
        return list(self._queue)

    @property
    def sent(self) -> List[CrossChainMessage]:
        return list(self._sent)

    @property
    def dead_letters(self) -> List[Tuple[CrossChainMessage, str]]:
        return list(self._dead_letters)

    # ── Delivery ────────────────────────────────────────────────────

    def proof_for(self, message: CrossChainMessage) -> SenderProof:
        target = self._endpoints[(int(message.protocol_id), message.dst_chain_id)]
        metadata = dict(message.metadata)
        keys = self._validator_keys.get(int(message.protocol_id))
        if keys:
            metadata["signatures"] = [k.sign_msg_hash(message.message_id).to_hex() for k in keys]
        return SenderProof(
            sender=message.sender,
            transport=target.transport_address,
            nonce=message.nonce,
            message_id=message.message_id,
            metadata=metadata,
        )

    def deliver(self, message: CrossChainMessage) -> bool:
        """Deliver one message; returns the destination module's result."""
        target = self._endpoints.get((int(message.protocol_id), message.dst_chain_id))
        if target is None:
            raise TransportError(f"No endpoint for {message.protocol_id.label} {message.dst_chain_id}")
        return target.receive(message.src_chain_id, self.proof_for(message), message.payload)

    def flush(self) -> List[bool]:
        """
        Deliver every queued message in order.

        Messages the destination rejects are logged and kept in
        `dead_letters`; delivery of the rest continues.
        """
        results = []
        while True:
            with self._lock:
                if not self._queue:
                    break
                message = self._queue.popleft()
            try:
                results.append(self.deliver(message))
            except LookBridgeException as e:
                logger.error(
                    f"Delivery of {message.message_id[:18]}... failed: {e}"
                )
                self._dead_letters.append((message, str(e)))
                results.append(False)
        return results

    def redeliver(self, message: CrossChainMessage) -> bool:
        """Deliver an already-delivered message again."""
        return self.deliver(message)
