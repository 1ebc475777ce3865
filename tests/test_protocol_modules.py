"""
Tests for the protocol modules (LayerZero, Celer, Hyperlane)

Tests:
  - Chain id mapping per protocol
  - Fee quotes
  - Trusted remote binding and set-once semantics
  - Untrusted transport / sender rejection
  - Payload integrity against the delivered message id
  - Hyperlane multisig ISM
  - Replay protection
"""

import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from lookbridge.access import AccessControl
from lookbridge.bridge.protocols import (
    CelerModule,
    HyperlaneModule,
    InMemoryTransport,
    LayerZeroModule,
    MultisigISM,
)
from lookbridge.bridge.security import SecurityPolicy
from lookbridge.bridge.types import ProtocolId, RouteRequest, SenderProof
from lookbridge.constants import WEI
from lookbridge.crypto.hashing import compute_message_id, encode_transfer_payload
from lookbridge.crypto.keys import PrivateKey
from lookbridge.deployment import BridgeNetwork, derive_address
from lookbridge.exceptions import (
    ConfigurationError,
    InsufficientFeeError,
    UnauthorizedError,
    UnsupportedRouteError,
    UntrustedRemoteError,
)


# ═══════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════

ADMIN = PrivateKey.from_int(1).address
ALICE = PrivateKey.from_int(21).address
BOB = PrivateKey.from_int(22).address
VALIDATORS = [PrivateKey.from_int(n) for n in (31, 32, 33)]

BSC, BASE = 56, 8453
GWEI = 10 ** 9


def _module(cls, chain_id=BSC, **kwargs):
    access = AccessControl(ADMIN)
    return cls(
        chain_id,
        derive_address("test", chain_id, cls.__name__),
        access,
        InMemoryTransport(),
        derive_address("test", chain_id, cls.__name__, "transport"),
        sleep=lambda s: None,
        **kwargs,
    )


def _network():
    network = BridgeNetwork.create(
        [BSC, BASE],
        ADMIN,
        security_policy=SecurityPolicy.unlimited(),
        sleep=lambda s: None,
    )
    network.connect()
    network.allocate(BSC, ALICE, 1_000 * WEI)
    return network


def _celer_proof(sender, receiver, payload, nonce=1):
    message_id = compute_message_id(
        int(ProtocolId.CELER), sender.chain_id, receiver.chain_id,
        sender.address, nonce, payload,
    )
    return SenderProof(
        sender=sender.address,
        transport=receiver.transport_address,
        nonce=nonce,
        message_id=message_id,
    )


def _send(network, protocol, amount=10 * WEI):
    router = network.chain(BSC).router
    request = RouteRequest(BASE, BOB, amount, protocol)
    router.bridge(request, ALICE, fee=router.estimate_fee(request))
    return network.transport.pending[-1]


# ═══════════════════════════════════════════════════════════════════════
#  1. CHAIN ID MAPPING
# ═══════════════════════════════════════════════════════════════════════

class TestChainMapping:

    def test_layerzero_ids(self):
        module = _module(LayerZeroModule)
        assert module.to_remote_id(56) == 102
        assert module.to_remote_id(8453) == 184
        assert module.from_remote_id(102) == 56
        assert module.from_remote_id(184) == 8453
        assert module.local_remote_id == 102

    def test_layerzero_unknown_chain(self):
        module = _module(LayerZeroModule)
        with pytest.raises(UnsupportedRouteError):
            module.to_remote_id(9070)
        with pytest.raises(UnsupportedRouteError):
            module.from_remote_id(999)

    def test_layerzero_custom_mapping(self):
        module = _module(LayerZeroModule)
        module.set_chain_mapping(ADMIN, 40245, 84532)
        assert module.to_remote_id(84532) == 40245
        with pytest.raises(ConfigurationError):
            module.set_chain_mapping(ADMIN, 102, 97)

    def test_hyperlane_domains(self):
        module = _module(HyperlaneModule)
        for domain in (56, 97, 8453, 10, 9070):
            assert module.to_remote_id(domain) == domain
            assert module.from_remote_id(domain) == domain
        with pytest.raises(UnsupportedRouteError):
            module.to_remote_id(137)

    def test_celer_identity(self):
        module = _module(CelerModule)
        assert module.to_remote_id(137) == 137
        assert module.from_remote_id(8453) == 8453
        with pytest.raises(UnsupportedRouteError):
            module.to_remote_id(0)


# ═══════════════════════════════════════════════════════════════════════
#  2. FEES
# ═══════════════════════════════════════════════════════════════════════

class TestFees:

    def test_layerzero_quote(self):
        module = _module(LayerZeroModule)
        payload = encode_transfer_payload(BOB, WEI)
        assert module.estimate_fee(BASE, payload) == 10 ** 16 + 350_000 * 5 * GWEI

    def test_layerzero_min_dst_gas_and_gas_price(self):
        module = _module(LayerZeroModule)
        module.set_min_dst_gas(ADMIN, BASE, 500_000)
        module.set_gas_price(ADMIN, BASE, GWEI)
        assert module.estimate_fee(BASE, b"") == 10 ** 16 + 500_000 * GWEI
        assert module.dst_gas_limit(56) == 350_000
        with pytest.raises(ConfigurationError):
            module.set_min_dst_gas(ADMIN, BASE, 0)

    def test_celer_quote_grows_with_payload(self):
        module = _module(CelerModule)
        empty = encode_transfer_payload(BOB, WEI)
        assert len(empty) == 128
        assert module.estimate_fee(BASE, empty) == 10 ** 15 + 128 * 10 ** 10
        longer = encode_transfer_payload(BOB, WEI, b"x" * 40)
        assert module.estimate_fee(BASE, longer) > module.estimate_fee(BASE, empty)

    def test_celer_fee_params(self):
        module = _module(CelerModule)
        module.update_fee_params(ADMIN, 0, 1)
        assert module.estimate_fee(BASE, b"\x00" * 64) == 64
        with pytest.raises(ConfigurationError):
            module.update_fee_params(ADMIN, -1, 0)
        with pytest.raises(UnauthorizedError):
            module.update_fee_params(ALICE, 0, 0)

    def test_hyperlane_quote(self):
        module = _module(HyperlaneModule)
        assert module.estimate_fee(BASE, b"") == 200_000 * 5 * GWEI
        module.set_gas_price(ADMIN, BASE, 2 * GWEI)
        assert module.estimate_fee(BASE, b"") == 400_000 * GWEI

    def test_dispatch_rejects_low_fee(self):
        network = _network()
        module = network.chain(BSC).module(ProtocolId.CELER)
        with pytest.raises(InsufficientFeeError):
            module.dispatch(BASE, BOB, WEI, sender=ALICE, fee=0)
        assert module.outbound_nonce(BASE) == 0


# ═══════════════════════════════════════════════════════════════════════
#  3. TRUSTED REMOTES
# ═══════════════════════════════════════════════════════════════════════

class TestTrustedRemotes:

    def test_set_once(self):
        module = _module(LayerZeroModule)
        assert module.set_trusted_remote(ADMIN, 184, BOB) is True
        assert module.set_trusted_remote(ADMIN, 184, BOB) is False
        assert module.trusted_remote(184) == BOB
        with pytest.raises(ConfigurationError):
            module.set_trusted_remote(ADMIN, 184, ALICE)

    def test_requires_admin(self):
        module = _module(CelerModule)
        with pytest.raises(UnauthorizedError):
            module.set_remote_module(ALICE, BASE, BOB)

    def test_unknown_remote_id(self):
        module = _module(HyperlaneModule)
        with pytest.raises(UnsupportedRouteError):
            module.set_trusted_sender(ADMIN, 137, BOB)

    def test_dispatch_without_remote(self):
        module = _module(CelerModule)
        with pytest.raises(UnsupportedRouteError):
            module.dispatch(BASE, BOB, WEI, sender=ALICE, fee=10 ** 18)


# ═══════════════════════════════════════════════════════════════════════
#  4. INBOUND VERIFICATION
# ═══════════════════════════════════════════════════════════════════════

class TestInboundVerification:

    @pytest.mark.parametrize("protocol", list(ProtocolId))
    def test_untrusted_sender_rejected(self, protocol):
        network = _network()
        message = _send(network, protocol)
        target = network.transport.endpoint(protocol, message.dst_chain_id)
        proof = network.transport.proof_for(message)
        forged = SenderProof(
            sender=ALICE,
            transport=proof.transport,
            nonce=proof.nonce,
            message_id=proof.message_id,
            metadata=proof.metadata,
        )
        with pytest.raises(UntrustedRemoteError):
            target.receive(message.src_chain_id, forged, message.payload)
        assert network.chain(BASE).token.balance_of(BOB) == 0

    @pytest.mark.parametrize("protocol", list(ProtocolId))
    def test_untrusted_transport_rejected(self, protocol):
        network = _network()
        message = _send(network, protocol)
        target = network.transport.endpoint(protocol, message.dst_chain_id)
        proof = network.transport.proof_for(message)
        forged = SenderProof(
            sender=proof.sender,
            transport=ALICE,
            nonce=proof.nonce,
            message_id=proof.message_id,
        )
        with pytest.raises(UntrustedRemoteError):
            target.receive(message.src_chain_id, forged, message.payload)

    def test_no_settlement_handler(self):
        sender = _module(CelerModule, BSC)
        receiver = _module(CelerModule, BASE)
        receiver.set_remote_module(ADMIN, BSC, sender.address)
        payload = encode_transfer_payload(BOB, WEI)
        proof = _celer_proof(sender, receiver, payload)
        with pytest.raises(ConfigurationError):
            receiver.receive(BSC, proof, payload)
        assert not receiver.is_consumed(BSC, proof)

    def test_handler_receives_decoded_transfer(self):
        sender = _module(CelerModule, BSC)
        receiver = _module(CelerModule, BASE)
        receiver.set_remote_module(ADMIN, BSC, sender.address)
        settled = []
        receiver.bind(lambda *args: settled.append(args))
        payload = encode_transfer_payload(BOB, 7, b"hi")
        proof = _celer_proof(sender, receiver, payload)
        assert receiver.receive(BSC, proof, payload) is True
        assert settled == [(BSC, BOB, 7, b"hi", proof.message_id, ProtocolId.CELER)]
        assert receiver.receive(BSC, proof, payload) is False
        assert len(settled) == 1

    @pytest.mark.parametrize("protocol", list(ProtocolId))
    def test_tampered_payload_rejected(self, protocol):
        network = _network()
        message = _send(network, protocol, amount=10 * WEI)
        target = network.transport.endpoint(protocol, message.dst_chain_id)
        proof = network.transport.proof_for(message)
        inflated = encode_transfer_payload(ALICE, 1_000_000 * WEI)
        with pytest.raises(UntrustedRemoteError):
            target.receive(message.src_chain_id, proof, inflated)
        assert network.chain(BASE).token.balance_of(ALICE) == 0
        assert not target.is_consumed(message.src_chain_id, proof)

        assert target.receive(message.src_chain_id, proof, message.payload) is True
        assert network.chain(BASE).token.balance_of(BOB) == 10 * WEI
        assert network.chain(BASE).token.total_supply == 10 * WEI

    @pytest.mark.parametrize("protocol", list(ProtocolId))
    def test_mismatched_nonce_rejected(self, protocol):
        network = _network()
        message = _send(network, protocol)
        target = network.transport.endpoint(protocol, message.dst_chain_id)
        proof = network.transport.proof_for(message)
        shifted = SenderProof(
            sender=proof.sender,
            transport=proof.transport,
            nonce=proof.nonce + 1,
            message_id=proof.message_id,
            metadata=proof.metadata,
        )
        with pytest.raises(UntrustedRemoteError):
            target.receive(message.src_chain_id, shifted, message.payload)
        assert network.chain(BASE).token.balance_of(BOB) == 0

    def test_payload_for_other_message_rejected(self):
        sender = _module(CelerModule, BSC)
        receiver = _module(CelerModule, BASE)
        receiver.set_remote_module(ADMIN, BSC, sender.address)
        settled = []
        receiver.bind(lambda *args: settled.append(args))
        proof = _celer_proof(sender, receiver, encode_transfer_payload(BOB, 7))
        with pytest.raises(UntrustedRemoteError):
            receiver.receive(BSC, proof, encode_transfer_payload(BOB, 7_000))
        assert settled == []


# ═══════════════════════════════════════════════════════════════════════
#  5. HYPERLANE ISM
# ═══════════════════════════════════════════════════════════════════════

class TestHyperlaneISM:

    def test_threshold_validation(self):
        validators = [k.address for k in VALIDATORS]
        with pytest.raises(ConfigurationError):
            MultisigISM(validators, 0)
        with pytest.raises(ConfigurationError):
            MultisigISM(validators, 4)
        assert MultisigISM(validators + validators, 3).threshold == 3

    def test_quorum_settles(self):
        network = _network()
        receiver = network.chain(BASE).module(ProtocolId.HYPERLANE)
        receiver.set_ism(ADMIN, [k.address for k in VALIDATORS], 2)
        network.transport.set_validator_keys(ProtocolId.HYPERLANE, VALIDATORS[:2])

        _send(network, ProtocolId.HYPERLANE)
        assert network.flush() == [True]
        assert network.chain(BASE).token.balance_of(BOB) == 10 * WEI

    def test_below_quorum_rejected(self):
        network = _network()
        receiver = network.chain(BASE).module(ProtocolId.HYPERLANE)
        receiver.set_ism(ADMIN, [k.address for k in VALIDATORS], 2)
        network.transport.set_validator_keys(ProtocolId.HYPERLANE, VALIDATORS[:1])

        _send(network, ProtocolId.HYPERLANE)
        assert network.flush() == [False]
        assert len(network.transport.dead_letters) == 1
        assert network.chain(BASE).token.balance_of(BOB) == 0

    def test_outside_signers_ignored(self):
        network = _network()
        receiver = network.chain(BASE).module(ProtocolId.HYPERLANE)
        receiver.set_ism(ADMIN, [k.address for k in VALIDATORS], 2)
        outsiders = [PrivateKey.from_int(n) for n in (41, 42)]
        network.transport.set_validator_keys(ProtocolId.HYPERLANE, VALIDATORS[:1] + outsiders)

        _send(network, ProtocolId.HYPERLANE)
        assert network.flush() == [False]

    def test_duplicate_signatures_count_once(self):
        network = _network()
        receiver = network.chain(BASE).module(ProtocolId.HYPERLANE)
        receiver.set_ism(ADMIN, [k.address for k in VALIDATORS], 2)
        network.transport.set_validator_keys(ProtocolId.HYPERLANE, [VALIDATORS[0], VALIDATORS[0]])

        _send(network, ProtocolId.HYPERLANE)
        assert network.flush() == [False]

    def test_malformed_signatures_skipped(self):
        ism = MultisigISM([k.address for k in VALIDATORS], 1)
        message_id = "0x" + "33" * 32
        good = VALIDATORS[2].sign_msg_hash(message_id).to_hex()
        assert ism.verify(message_id, ["0x1234", b"\x00" * 3, good]) is True
        assert ism.verify(message_id, ["0x1234"]) is False


# ═══════════════════════════════════════════════════════════════════════
#  6. NONCES AND REPLAY
# ═══════════════════════════════════════════════════════════════════════

class TestNoncesAndReplay:

    def test_outbound_nonce_per_route(self):
        network = _network()
        module = network.chain(BSC).module(ProtocolId.LAYERZERO)
        first = _send(network, ProtocolId.LAYERZERO)
        second = _send(network, ProtocolId.LAYERZERO)
        assert (first.nonce, second.nonce) == (1, 2)
        assert first.message_id != second.message_id
        assert first.src_chain_id == 102 and first.dst_chain_id == 184
        assert module.outbound_nonce(BASE) == 2

    def test_layerzero_replay_keyed_by_nonce(self):
        network = _network()
        message = _send(network, ProtocolId.LAYERZERO)
        network.flush()
        target = network.transport.endpoint(ProtocolId.LAYERZERO, 184)
        assert target.is_consumed(102, network.transport.proof_for(message))
        assert network.transport.redeliver(message) is False

    def test_status(self):
        network = _network()
        _send(network, ProtocolId.CELER)
        status = network.chain(BSC).module(ProtocolId.CELER).get_status()
        assert status["protocol"] == "Celer"
        assert status["outbound_nonces"] == {"8453": 1}
        assert status["trusted_remotes"]["8453"] == network.chain(BASE).module(ProtocolId.CELER).address
