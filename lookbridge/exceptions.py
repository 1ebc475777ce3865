"""
LookBridge Exceptions

Custom exception classes for the bridge router, protocol modules and
supply oracle.

Validation and authorization errors are raised synchronously before any
state change and are safe to retry once the input is fixed.  Circuit
breaker and transport errors signal conditions that need operator
attention.
"""


class LookBridgeException(Exception):
    """Base exception for LookBridge."""
    pass


# ── Validation ──────────────────────────────────────────────────────

class ValidationError(LookBridgeException):
    """Request or update failed validation; nothing was mutated."""
    pass


class InvalidAmountError(ValidationError):
    """Bridge amount is zero or negative."""
    pass


class UnsupportedRouteError(ValidationError):
    """No active registration for the (chain, protocol) pair."""
    pass


class DuplicateRegistrationError(ValidationError):
    """An active registration exists for the key with a different address."""
    pass


class InsufficientFeeError(ValidationError):
    """Caller-supplied fee is below the protocol quote."""
    pass


class InsufficientBalanceError(ValidationError):
    """Sender balance is too low for the requested burn."""
    pass


class InvalidSupplyUpdateError(ValidationError):
    """Supply update is malformed (empty, duplicate chain, locked > total)."""
    pass


class UnknownChainError(ValidationError):
    """Chain has not been registered with the oracle."""
    pass


class StaleNonceError(ValidationError):
    """Update nonce is not newer than the last applied update."""
    pass


# ── Authorization ───────────────────────────────────────────────────

class UnauthorizedError(LookBridgeException):
    """Caller lacks the required role."""
    pass


class UntrustedRemoteError(UnauthorizedError):
    """Inbound message did not come from the trusted remote or transport."""
    pass


# ── Safety stops ────────────────────────────────────────────────────

class CircuitBreakerActiveError(LookBridgeException):
    """Outbound bridging is halted until an admin clears the breaker."""
    pass


class RateLimitExceededError(LookBridgeException):
    """Transfer exceeds a security manager limit."""
    pass


# ── Transport ───────────────────────────────────────────────────────

class TransportError(LookBridgeException):
    """Remote chain or message transport unreachable (retryable)."""
    pass


class ProtocolDispatchFailedError(LookBridgeException):
    """Protocol module failed to dispatch; the transfer was reverted."""
    pass


class ConfigurationError(LookBridgeException):
    """Configuration error."""
    pass
