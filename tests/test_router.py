"""
Tests for the CrossChainRouter

Tests:
  - Bridge-out and settlement over every protocol
  - Atomicity of failed transfers (no burn without dispatch)
  - Validation order (amount, breaker, route, rate limit, fee, balance)
  - Circuit breaker blocks bridge-out but not inbound settlement
  - Replay of delivered messages
  - Route discovery: bridge options, optimal route per preference
  - Protocol enable / disable switch
  - Router service fees on quotes and bridge-outs
"""

import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from lookbridge.bridge.events import BRIDGE_COMPLETED, BRIDGE_INITIATED, PROTOCOL_STATUS_UPDATED
from lookbridge.bridge.security import ProtocolLimits, SecurityPolicy
from lookbridge.bridge.types import ProtocolId, RoutePreference, RouteRequest
from lookbridge.constants import WEI
from lookbridge.crypto.keys import PrivateKey
from lookbridge.deployment import BridgeNetwork
from lookbridge.exceptions import (
    CircuitBreakerActiveError,
    ConfigurationError,
    InsufficientBalanceError,
    InsufficientFeeError,
    InvalidAmountError,
    ProtocolDispatchFailedError,
    RateLimitExceededError,
    UnauthorizedError,
    UnsupportedRouteError,
)


# ═══════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════

ADMIN = PrivateKey.from_int(1).address
ALICE = PrivateKey.from_int(21).address
BOB = PrivateKey.from_int(22).address
CAROL = PrivateKey.from_int(23).address

BSC, BASE = 56, 8453
ALL_PROTOCOLS = [ProtocolId.LAYERZERO, ProtocolId.CELER, ProtocolId.HYPERLANE]


def _network(policy=None, sleeps=None) -> BridgeNetwork:
    sleeps = sleeps if sleeps is not None else []
    network = BridgeNetwork.create(
        [BSC, BASE],
        ADMIN,
        security_policy=policy or SecurityPolicy.unlimited(),
        expected_global_supply=1_000 * WEI,
        sleep=sleeps.append,
    )
    network.connect()
    network.allocate(BSC, ALICE, 1_000 * WEI)
    return network


def _request(amount=100 * WEI, protocol=ProtocolId.LAYERZERO, dst=BASE, recipient=BOB):
    return RouteRequest(dst_chain_id=dst, recipient=recipient, amount=amount, protocol_id=protocol)


def _bridge(network, request, sender=ALICE, src=BSC):
    router = network.chain(src).router
    return router.bridge(request, sender, fee=router.estimate_fee(request))


def _ledger_state(network, chain_id=BSC):
    token = network.chain(chain_id).token
    return (token.balance_of(ALICE), token.total_supply, token.total_burned, len(token.events))


# ═══════════════════════════════════════════════════════════════════════
#  1. HAPPY PATH
# ═══════════════════════════════════════════════════════════════════════

class TestBridgeOut:

    @pytest.mark.parametrize("protocol", ALL_PROTOCOLS)
    def test_round_trip_each_protocol(self, protocol):
        network = _network()
        receipt = _bridge(network, _request(protocol=protocol))

        assert receipt.protocol_id == protocol
        assert receipt.src_chain_id == BSC and receipt.dst_chain_id == BASE
        assert network.chain(BSC).token.balance_of(ALICE) == 900 * WEI
        assert network.chain(BASE).token.balance_of(BOB) == 0

        assert network.flush() == [True]
        assert network.chain(BASE).token.balance_of(BOB) == 100 * WEI
        assert network.total_supply() == 1_000 * WEI

    def test_events_emitted(self):
        network = _network()
        receipt = _bridge(network, _request())
        network.flush()

        initiated = network.events.filter(BRIDGE_INITIATED)
        assert len(initiated) == 1
        args = initiated[0].args
        assert args["protocol_id"] == int(ProtocolId.LAYERZERO)
        assert args["dst_chain_id"] == BASE
        assert args["amount"] == 100 * WEI
        assert args["recipient"] == BOB
        assert args["message_id"] == receipt.message_id

        completed = network.events.filter(BRIDGE_COMPLETED, message_id=receipt.message_id)
        assert len(completed) == 1
        assert completed[0]["src_chain_id"] == BSC

    def test_fee_collected_by_module(self):
        network = _network()
        request = _request()
        router = network.chain(BSC).router
        fee = router.estimate_fee(request)
        router.bridge(request, ALICE, fee=fee + 1)
        module = network.chain(BSC).module(ProtocolId.LAYERZERO)
        assert module.fees_collected == fee + 1
        assert module.outbound_nonce(BASE) == 1

    def test_payload_reaches_destination(self):
        network = _network()
        request = RouteRequest(BASE, BOB, 5 * WEI, ProtocolId.CELER, payload=b"memo")
        _bridge(network, request)
        message = network.transport.pending[0]
        assert message.payload.endswith(b"memo" + b"\x00" * 28)
        network.flush()
        assert network.chain(BASE).token.balance_of(BOB) == 5 * WEI

    def test_supported_protocols(self):
        network = _network()
        router = network.chain(BSC).router
        assert router.supported_protocols(BASE) == ALL_PROTOCOLS
        router.set_chain_protocol_support(ADMIN, BASE, ProtocolId.CELER, False)
        assert router.supported_protocols(BASE) == [ProtocolId.LAYERZERO, ProtocolId.HYPERLANE]


# ═══════════════════════════════════════════════════════════════════════
#  2. ATOMICITY
# ═══════════════════════════════════════════════════════════════════════

class TestAtomicity:

    def test_dispatch_failure_restores_ledger(self):
        network = _network()
        before = _ledger_state(network)
        network.transport.fail_next(3)

        with pytest.raises(ProtocolDispatchFailedError):
            _bridge(network, _request())

        assert _ledger_state(network) == before
        assert network.transport.pending == []
        assert network.events.count(BRIDGE_INITIATED) == 0
        assert network.chain(BSC).module(ProtocolId.LAYERZERO).outbound_nonce(BASE) == 0

    def test_unreachable_destination_restores_ledger(self):
        network = _network()
        before = _ledger_state(network)
        network.transport.set_unreachable(ProtocolId.CELER, BASE)

        with pytest.raises(ProtocolDispatchFailedError):
            _bridge(network, _request(protocol=ProtocolId.CELER))

        assert _ledger_state(network) == before

    def test_transient_failures_retried_with_backoff(self):
        sleeps = []
        network = _network(sleeps=sleeps)
        network.transport.fail_next(2)

        _bridge(network, _request())

        assert sleeps == [0.5, 1.0]
        assert len(network.transport.pending) == 1
        assert network.chain(BSC).token.balance_of(ALICE) == 900 * WEI

    def test_failed_transfer_does_not_consume_rate_limit(self):
        policy = SecurityPolicy.unlimited()
        policy.transactions_per_window = 1
        network = _network(policy=policy)
        network.transport.fail_next(3)
        with pytest.raises(ProtocolDispatchFailedError):
            _bridge(network, _request())
        _bridge(network, _request())


# ═══════════════════════════════════════════════════════════════════════
#  3. VALIDATION
# ═══════════════════════════════════════════════════════════════════════

class TestValidation:

    def test_non_positive_amount(self):
        with pytest.raises(InvalidAmountError):
            _request(amount=0)
        with pytest.raises(InvalidAmountError):
            _request(amount=-1)

    def test_amount_outside_uint256(self):
        with pytest.raises(InvalidAmountError):
            _request(amount=2 ** 256)
        assert _request(amount=2 ** 256 - 1).amount == 2 ** 256 - 1

    def test_inactive_route_rejected_with_balance_unchanged(self):
        network = _network()
        before = _ledger_state(network)
        network.chain(BSC).router.set_chain_protocol_support(ADMIN, BASE, ProtocolId.LAYERZERO, False)

        with pytest.raises(UnsupportedRouteError):
            network.chain(BSC).router.bridge(_request(), ALICE, fee=10 ** 18)

        assert _ledger_state(network) == before

    def test_reactivated_route_accepts_transfers(self):
        network = _network()
        router = network.chain(BSC).router
        router.set_chain_protocol_support(ADMIN, BASE, ProtocolId.LAYERZERO, False)
        router.set_chain_protocol_support(ADMIN, BASE, ProtocolId.LAYERZERO, True)
        _bridge(network, _request())

    def test_unregistered_destination(self):
        network = _network()
        with pytest.raises(UnsupportedRouteError):
            network.chain(BSC).router.bridge(_request(dst=137), ALICE, fee=10 ** 18)

    def test_same_chain_destination(self):
        network = _network()
        with pytest.raises(UnsupportedRouteError):
            network.chain(BSC).router.bridge(_request(dst=BSC), ALICE, fee=10 ** 18)

    def test_insufficient_fee(self):
        network = _network()
        before = _ledger_state(network)
        router = network.chain(BSC).router
        request = _request()
        with pytest.raises(InsufficientFeeError):
            router.bridge(request, ALICE, fee=router.estimate_fee(request) - 1)
        assert _ledger_state(network) == before

    def test_fee_checked_before_balance(self):
        network = _network()
        with pytest.raises(InsufficientFeeError):
            network.chain(BSC).router.bridge(_request(), CAROL, fee=0)

    def test_insufficient_balance(self):
        network = _network()
        with pytest.raises(InsufficientBalanceError):
            _bridge(network, _request(), sender=CAROL)
        assert network.transport.pending == []

    def test_rate_limit(self):
        policy = SecurityPolicy.unlimited()
        policy.transactions_per_window = 1
        network = _network(policy=policy)
        _bridge(network, _request())
        balance = network.chain(BSC).token.balance_of(ALICE)

        with pytest.raises(RateLimitExceededError):
            _bridge(network, _request())
        assert network.chain(BSC).token.balance_of(ALICE) == balance

    def test_protocol_transaction_limit(self):
        policy = SecurityPolicy.unlimited()
        policy.protocols[ProtocolId.HYPERLANE] = ProtocolLimits(0, 50 * WEI)
        network = _network(policy=policy)
        with pytest.raises(RateLimitExceededError):
            _bridge(network, _request(protocol=ProtocolId.HYPERLANE))
        _bridge(network, _request(protocol=ProtocolId.LAYERZERO))

    def test_register_protocol_requires_admin(self):
        network = _network()
        router = network.chain(BSC).router
        module = network.chain(BSC).module(ProtocolId.CELER)
        with pytest.raises(UnauthorizedError):
            router.register_protocol(ALICE, ProtocolId.CELER, module)

    def test_register_protocol_rejects_mismatched_module(self):
        network = _network()
        router = network.chain(BSC).router
        with pytest.raises(ConfigurationError):
            router.register_protocol(ADMIN, ProtocolId.CELER, network.chain(BSC).module(ProtocolId.LAYERZERO))
        with pytest.raises(ConfigurationError):
            router.register_protocol(ADMIN, ProtocolId.CELER, network.chain(BASE).module(ProtocolId.CELER))


# ═══════════════════════════════════════════════════════════════════════
#  4. CIRCUIT BREAKER
# ═══════════════════════════════════════════════════════════════════════

class TestCircuitBreakerGate:

    def test_breaker_blocks_bridge_out(self):
        network = _network()
        before = _ledger_state(network)
        network.oracle.activate_circuit_breaker(ADMIN, "drill")

        assert network.chain(BSC).router.is_circuit_broken
        with pytest.raises(CircuitBreakerActiveError):
            _bridge(network, _request())
        assert _ledger_state(network) == before

    def test_in_flight_transfer_settles_while_broken(self):
        network = _network()
        _bridge(network, _request())
        network.oracle.activate_circuit_breaker(ADMIN, "drill")

        assert network.flush() == [True]
        assert network.chain(BASE).token.balance_of(BOB) == 100 * WEI

    def test_bridge_resumes_after_admin_reset(self):
        network = _network()
        network.oracle.activate_circuit_breaker(ADMIN, "drill")
        network.oracle.reset_circuit_breaker(ADMIN)
        _bridge(network, _request())


# ═══════════════════════════════════════════════════════════════════════
#  5. REPLAY
# ═══════════════════════════════════════════════════════════════════════

class TestReplay:

    @pytest.mark.parametrize("protocol", ALL_PROTOCOLS)
    def test_duplicate_delivery_settles_once(self, protocol):
        network = _network()
        _bridge(network, _request(protocol=protocol))
        message = network.transport.pending[0]
        network.flush()

        assert network.transport.redeliver(message) is False
        assert network.chain(BASE).token.balance_of(BOB) == 100 * WEI
        assert network.events.count(BRIDGE_COMPLETED) == 1

    def test_return_trip(self):
        network = _network()
        _bridge(network, _request(amount=300 * WEI))
        network.flush()
        _bridge(network, _request(amount=100 * WEI, dst=BSC, recipient=ALICE), sender=BOB, src=BASE)
        network.flush()

        assert network.chain(BSC).token.balance_of(ALICE) == 800 * WEI
        assert network.chain(BASE).token.balance_of(BOB) == 200 * WEI
        assert network.total_supply() == 1_000 * WEI


# ═══════════════════════════════════════════════════════════════════════
#  6. ROUTE DISCOVERY
# ═══════════════════════════════════════════════════════════════════════

class TestRouteOptions:

    def test_option_per_protocol(self):
        network = _network()
        router = network.chain(BSC).router
        options = router.bridge_options(BASE, 100 * WEI)

        assert [o.protocol_id for o in options] == ALL_PROTOCOLS
        assert all(o.available for o in options)
        assert [o.estimated_time for o in options] == [10, 300, 600]
        assert [o.security_level for o in options] == [9, 7, 8]
        for option in options:
            assert option.fee == router.estimate_fee(_request(protocol=option.protocol_id))

    def test_unknown_or_same_chain_has_no_options(self):
        router = _network().chain(BSC).router
        assert router.bridge_options(137, 100 * WEI) == []
        assert router.bridge_options(BSC, 100 * WEI) == []

    def test_inactive_route_listed_unavailable(self):
        network = _network()
        router = network.chain(BSC).router
        router.set_chain_protocol_support(ADMIN, BASE, ProtocolId.CELER, False)

        celer = [o for o in router.bridge_options(BASE) if o.protocol_id == ProtocolId.CELER][0]
        assert celer.available is False
        assert celer.fee == 0
        assert celer.to_dict()["protocol"] == "Celer"

    @pytest.mark.parametrize("preference,expected", [
        (RoutePreference.FASTEST, ProtocolId.LAYERZERO),
        (RoutePreference.MOST_SECURE, ProtocolId.LAYERZERO),
    ])
    def test_optimal_route_by_preference(self, preference, expected):
        router = _network().chain(BSC).router
        assert router.optimal_route(BASE, 100 * WEI, preference).protocol_id == expected

    def test_optimal_route_cheapest(self):
        router = _network().chain(BSC).router
        options = router.bridge_options(BASE, 100 * WEI)
        best = router.optimal_route(BASE, 100 * WEI, RoutePreference.CHEAPEST)
        assert best.fee == min(o.fee for o in options)

    def test_optimal_route_skips_disabled_protocol(self):
        network = _network()
        router = network.chain(BSC).router
        router.update_protocol_status(ADMIN, ProtocolId.LAYERZERO, False)

        assert router.optimal_route(BASE, 100 * WEI, RoutePreference.FASTEST).protocol_id == ProtocolId.CELER
        assert router.optimal_route(BASE, 100 * WEI, RoutePreference.MOST_SECURE).protocol_id == ProtocolId.HYPERLANE

    def test_service_fee_changes_cheapest_route(self):
        network = _network()
        router = network.chain(BSC).router
        cheapest = router.optimal_route(BASE, 100 * WEI).protocol_id
        network.chain(BSC).fees.set_protocol_fees(ADMIN, cheapest, base_fee=10 ** 18, percentage_fee=0)

        assert router.optimal_route(BASE, 100 * WEI).protocol_id != cheapest

    def test_no_available_route(self):
        network = _network()
        router = network.chain(BSC).router
        for protocol in ALL_PROTOCOLS:
            router.update_protocol_status(ADMIN, protocol, False)
        with pytest.raises(UnsupportedRouteError):
            router.optimal_route(BASE, 100 * WEI)
        with pytest.raises(UnsupportedRouteError):
            router.optimal_route(137, 100 * WEI)


# ═══════════════════════════════════════════════════════════════════════
#  7. PROTOCOL STATUS
# ═══════════════════════════════════════════════════════════════════════

class TestProtocolStatus:

    def test_disabled_protocol_rejects_bridge_out(self):
        network = _network()
        before = _ledger_state(network)
        router = network.chain(BSC).router

        assert router.update_protocol_status(ADMIN, ProtocolId.HYPERLANE, False) is True
        assert router.is_protocol_enabled(ProtocolId.HYPERLANE) is False
        assert ProtocolId.HYPERLANE not in router.supported_protocols(BASE)
        with pytest.raises(UnsupportedRouteError):
            router.bridge(_request(protocol=ProtocolId.HYPERLANE), ALICE, fee=10 ** 18)
        assert _ledger_state(network) == before

        hyperlane = [o for o in router.bridge_options(BASE) if o.protocol_id == ProtocolId.HYPERLANE][0]
        assert hyperlane.available is False

    def test_reenabled_protocol_accepts_transfers(self):
        network = _network()
        router = network.chain(BSC).router
        router.update_protocol_status(ADMIN, ProtocolId.HYPERLANE, False)
        assert router.update_protocol_status(ADMIN, ProtocolId.HYPERLANE, True) is True
        _bridge(network, _request(protocol=ProtocolId.HYPERLANE))
        assert network.flush() == [True]

    def test_status_change_emits_event(self):
        network = _network()
        router = network.chain(BSC).router
        router.update_protocol_status(ADMIN, ProtocolId.CELER, False)
        assert router.update_protocol_status(ADMIN, ProtocolId.CELER, False) is False

        events = network.events.filter(PROTOCOL_STATUS_UPDATED)
        assert len(events) == 1
        assert events[0]["protocol_id"] == int(ProtocolId.CELER)
        assert events[0]["enabled"] is False
        assert router.get_status()["disabled_protocols"] == ["Celer"]

    def test_disabling_is_per_chain(self):
        network = _network()
        network.chain(BSC).router.update_protocol_status(ADMIN, ProtocolId.LAYERZERO, False)
        assert network.chain(BASE).router.is_protocol_enabled(ProtocolId.LAYERZERO)

    def test_requires_admin(self):
        router = _network().chain(BSC).router
        with pytest.raises(UnauthorizedError):
            router.update_protocol_status(ALICE, ProtocolId.CELER, False)
        assert router.is_protocol_enabled(ProtocolId.CELER)


# ═══════════════════════════════════════════════════════════════════════
#  8. SERVICE FEES
# ═══════════════════════════════════════════════════════════════════════

class TestServiceFees:

    def test_quote_includes_service_fee(self):
        network = _network()
        router = network.chain(BSC).router
        request = _request()
        messaging = router.quote(request).messaging_fee
        network.chain(BSC).fees.set_protocol_fees(ADMIN, ProtocolId.LAYERZERO, base_fee=1_000, percentage_fee=10)

        quote = router.quote(request)
        assert quote.messaging_fee == messaging
        assert quote.service_fee == 1_000 + 100 * WEI * 10 // 10_000
        assert router.estimate_fee(request) == quote.total_fee

    def test_service_fee_collected_on_bridge(self):
        network = _network()
        router = network.chain(BSC).router
        fees = network.chain(BSC).fees
        fees.set_protocol_fees(ADMIN, ProtocolId.CELER, base_fee=500, percentage_fee=0)
        request = _request(protocol=ProtocolId.CELER)
        quote = router.quote(request)

        router.bridge(request, ALICE, fee=quote.total_fee)

        assert fees.collected(ProtocolId.CELER, BASE) == 500
        assert network.chain(BSC).module(ProtocolId.CELER).fees_collected == quote.messaging_fee

    def test_fee_below_total_rejected(self):
        network = _network()
        router = network.chain(BSC).router
        network.chain(BSC).fees.set_protocol_fees(ADMIN, ProtocolId.LAYERZERO, base_fee=500, percentage_fee=0)
        request = _request()
        before = _ledger_state(network)

        with pytest.raises(InsufficientFeeError):
            router.bridge(request, ALICE, fee=router.quote(request).messaging_fee)
        assert _ledger_state(network) == before
        assert network.chain(BSC).fees.collected() == 0

    def test_failed_dispatch_collects_nothing(self):
        network = _network()
        router = network.chain(BSC).router
        network.chain(BSC).fees.set_protocol_fees(ADMIN, ProtocolId.LAYERZERO, base_fee=500, percentage_fee=0)
        network.transport.fail_next(3)

        with pytest.raises(ProtocolDispatchFailedError):
            _bridge(network, _request())
        assert network.chain(BSC).fees.collected() == 0
