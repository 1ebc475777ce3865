"""
LookBridge Configuration

Loads all sections of lookbridge.toml.
Environment variables override TOML values.
"""

from .loader import (
    ChainConfig,
    LoggingConfig,
    LookBridgeConfig,
    OracleConfig,
    OrchestratorConfig,
    ProtocolLimitsConfig,
    SecurityConfig,
    load_config,
)

__all__ = [
    "ChainConfig",
    "LoggingConfig",
    "LookBridgeConfig",
    "OracleConfig",
    "OrchestratorConfig",
    "ProtocolLimitsConfig",
    "SecurityConfig",
    "load_config",
]
