"""
LookBridge Package

LookCoin cross-chain bridge routing and supply reconciliation.

Core imports are lazily loaded so the CLI and the readers do not pull in
the whole bridge stack.  For direct module access, import from submodules:

    from lookbridge.bridge import CrossChainRouter, SupplyOracle
    from lookbridge.deployment import BridgeNetwork
    from lookbridge.reconciliation import ReconciliationOrchestrator
"""

# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'SupplyOracle':
        from .bridge.oracle import SupplyOracle
        return SupplyOracle
    elif name == 'CrossChainRouter':
        from .bridge.router import CrossChainRouter
        return CrossChainRouter
    elif name == 'BridgeNetwork':
        from .deployment import BridgeNetwork
        return BridgeNetwork
    elif name == 'ReconciliationOrchestrator':
        from .reconciliation.orchestrator import ReconciliationOrchestrator
        return ReconciliationOrchestrator
    elif name == 'LookBridgeException':
        from .exceptions import LookBridgeException
        return LookBridgeException
    raise AttributeError(f"module 'lookbridge' has no attribute {name!r}")

__all__ = [
    'SupplyOracle',
    'CrossChainRouter',
    'BridgeNetwork',
    'ReconciliationOrchestrator',
    'LookBridgeException',
]
