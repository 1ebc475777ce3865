"""
LookBridge TOML Configuration Loader

Loads lookbridge.toml with environment variable overrides.
Follows the dataclass + from_dict + apply_env + validate pattern for every
section.

Environment variable mapping:
    [logging] level                  → LOOKBRIDGE_LOG_LEVEL
    [oracle] required_signatures     → LOOKBRIDGE_REQUIRED_SIGNATURES
    [oracle] reconciliation_interval → LOOKBRIDGE_RECONCILIATION_INTERVAL
    [oracle] state_path              → LOOKBRIDGE_STATE_PATH
    [orchestrator] nonce_window      → LOOKBRIDGE_NONCE_WINDOW
    [[chains]] rpc_url               → LOOKBRIDGE_RPC_<CHAIN_ID>

Amounts in TOML are whole LOOK; the `*_wei` properties convert.
Operator private keys MUST come from env (LOOKBRIDGE_ORACLE_PRIVATE_KEY or
ORACLE_PRIVATE_KEY in .env), never TOML.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from eth_utils import is_address

from ..bridge.security import ProtocolLimits, SecurityPolicy
from ..bridge.types import resolve_protocol
from ..constants import (
    DEFAULT_RECONCILIATION_INTERVAL,
    DEFAULT_REQUIRED_SIGNATURES,
    DEFAULT_TOLERANCE_THRESHOLD,
    GLOBAL_DAILY_LIMIT,
    GLOBAL_TOTAL_SUPPLY,
    PER_TRANSACTION_LIMIT,
    PROTOCOL_SECURITY_DEFAULTS,
    RATE_LIMIT_WINDOW,
    TRANSACTIONS_PER_WINDOW,
    WEI,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = "INFO"
    file_output: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            file_output=data.get("file_output", True),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("LOOKBRIDGE_LOG_LEVEL"):
            self.level = v.upper()


@dataclass
class OracleConfig:
    """[oracle] section."""
    expected_global_supply: int = GLOBAL_TOTAL_SUPPLY // WEI
    tolerance_threshold: int = DEFAULT_TOLERANCE_THRESHOLD // WEI
    reconciliation_interval: int = DEFAULT_RECONCILIATION_INTERVAL
    required_signatures: int = DEFAULT_REQUIRED_SIGNATURES
    admin: str = ""
    operators: List[str] = field(default_factory=list)
    state_path: str = "data/oracle.db"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OracleConfig":
        return cls(
            expected_global_supply=int(data.get("expected_global_supply", GLOBAL_TOTAL_SUPPLY // WEI)),
            tolerance_threshold=int(data.get("tolerance_threshold", DEFAULT_TOLERANCE_THRESHOLD // WEI)),
            reconciliation_interval=int(data.get("reconciliation_interval", DEFAULT_RECONCILIATION_INTERVAL)),
            required_signatures=int(data.get("required_signatures", DEFAULT_REQUIRED_SIGNATURES)),
            admin=data.get("admin", ""),
            operators=list(data.get("operators", [])),
            state_path=data.get("state_path", "data/oracle.db"),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("LOOKBRIDGE_REQUIRED_SIGNATURES"):
            self.required_signatures = int(v)
        if v := os.environ.get("LOOKBRIDGE_RECONCILIATION_INTERVAL"):
            self.reconciliation_interval = int(v)
        if v := os.environ.get("LOOKBRIDGE_STATE_PATH"):
            self.state_path = v

    @property
    def expected_global_supply_wei(self) -> int:
        return self.expected_global_supply * WEI

    @property
    def tolerance_threshold_wei(self) -> int:
        return self.tolerance_threshold * WEI

    def validate(self) -> None:
        if self.required_signatures < 1:
            raise ConfigurationError("oracle.required_signatures must be >= 1")
        if self.reconciliation_interval <= 0:
            raise ConfigurationError("oracle.reconciliation_interval must be positive")
        if self.tolerance_threshold < 0 or self.expected_global_supply < 0:
            raise ConfigurationError("oracle supply parameters cannot be negative")
        for address in [self.admin, *self.operators]:
            if address and not is_address(address):
                raise ConfigurationError(f"Invalid address in [oracle]: {address}")


@dataclass
class ProtocolLimitsConfig:
    """[security.protocols.<name>]."""
    daily_limit: int
    transaction_limit: int
    cooldown_period: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default: tuple) -> "ProtocolLimitsConfig":
        daily, tx, cooldown = default
        return cls(
            daily_limit=int(data.get("daily_limit", daily // WEI)),
            transaction_limit=int(data.get("transaction_limit", tx // WEI)),
            cooldown_period=int(data.get("cooldown_period", cooldown)),
        )


@dataclass
class SecurityConfig:
    """[security] section."""
    global_daily_limit: int = GLOBAL_DAILY_LIMIT // WEI
    per_transaction_limit: int = PER_TRANSACTION_LIMIT // WEI
    window_duration: int = RATE_LIMIT_WINDOW
    transactions_per_window: int = TRANSACTIONS_PER_WINDOW
    protocols: Dict[str, ProtocolLimitsConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityConfig":
        protocols: Dict[str, ProtocolLimitsConfig] = {}
        raw_protocols = data.get("protocols", {})
        for name, raw in raw_protocols.items():
            pid = resolve_protocol(name)
            if pid is None:
                raise ConfigurationError(f"Unknown protocol in [security.protocols]: {name}")
            protocols[pid.label] = ProtocolLimitsConfig.from_dict(raw, PROTOCOL_SECURITY_DEFAULTS[int(pid)])
        return cls(
            global_daily_limit=int(data.get("global_daily_limit", GLOBAL_DAILY_LIMIT // WEI)),
            per_transaction_limit=int(data.get("per_transaction_limit", PER_TRANSACTION_LIMIT // WEI)),
            window_duration=int(data.get("window_duration", RATE_LIMIT_WINDOW)),
            transactions_per_window=int(data.get("transactions_per_window", TRANSACTIONS_PER_WINDOW)),
            protocols=protocols,
        )

    def to_policy(self) -> SecurityPolicy:
        policy = SecurityPolicy(
            global_daily_limit=self.global_daily_limit * WEI,
            per_transaction_limit=self.per_transaction_limit * WEI,
            window_duration=self.window_duration,
            transactions_per_window=self.transactions_per_window,
        )
        for name, limits in self.protocols.items():
            policy.protocols[resolve_protocol(name)] = ProtocolLimits(
                daily_limit=limits.daily_limit * WEI,
                transaction_limit=limits.transaction_limit * WEI,
                cooldown_period=limits.cooldown_period,
            )
        return policy

    def validate(self) -> None:
        if self.window_duration <= 0:
            raise ConfigurationError("security.window_duration must be positive")
        if min(self.global_daily_limit, self.per_transaction_limit, self.transactions_per_window) < 0:
            raise ConfigurationError("security limits cannot be negative")


@dataclass
class OrchestratorConfig:
    """[orchestrator] section."""
    nonce_window: int = 0              # 0 = oracle reconciliation interval
    run_interval: int = 0              # 0 = oracle reconciliation interval
    read_timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 1.0
    force_submit: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        return cls(
            nonce_window=int(data.get("nonce_window", 0)),
            run_interval=int(data.get("run_interval", 0)),
            read_timeout=float(data.get("read_timeout", 10.0)),
            max_retries=int(data.get("max_retries", 3)),
            retry_delay=float(data.get("retry_delay", 1.0)),
            force_submit=data.get("force_submit", False),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("LOOKBRIDGE_NONCE_WINDOW"):
            self.nonce_window = int(v)

    def validate(self) -> None:
        if self.read_timeout <= 0:
            raise ConfigurationError("orchestrator.read_timeout must be positive")
        if self.max_retries < 1:
            raise ConfigurationError("orchestrator.max_retries must be >= 1")
        if self.nonce_window < 0 or self.run_interval < 0:
            raise ConfigurationError("orchestrator windows cannot be negative")


@dataclass
class ChainConfig:
    """One [[chains]] entry."""
    chain_id: int
    name: str = ""
    rpc_url: str = ""
    token_address: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainConfig":
        if "chain_id" not in data:
            raise ConfigurationError("[[chains]] entry is missing chain_id")
        return cls(
            chain_id=int(data["chain_id"]),
            name=data.get("name", ""),
            rpc_url=data.get("rpc_url", ""),
            token_address=data.get("token_address", ""),
        )

    def apply_env(self) -> None:
        if v := os.environ.get(f"LOOKBRIDGE_RPC_{self.chain_id}"):
            self.rpc_url = v

    def validate(self) -> None:
        if self.chain_id <= 0:
            raise ConfigurationError(f"Invalid chain_id: {self.chain_id}")
        if self.token_address and not is_address(self.token_address):
            raise ConfigurationError(f"Invalid token_address for chain {self.chain_id}")


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


@dataclass
class LookBridgeConfig:
    """Root configuration: all sections of lookbridge.toml."""
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    chains: List[ChainConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LookBridgeConfig":
        return cls(
            logging=LoggingConfig.from_dict(data.get("logging", {})),
            oracle=OracleConfig.from_dict(data.get("oracle", {})),
            security=SecurityConfig.from_dict(data.get("security", {})),
            orchestrator=OrchestratorConfig.from_dict(data.get("orchestrator", {})),
            chains=[ChainConfig.from_dict(c) for c in data.get("chains", [])],
        )

    @classmethod
    def from_file(cls, config_path: str) -> "LookBridgeConfig":
        """
        Load configuration from a TOML file.

        A missing file yields defaults (with env overrides).
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            try:
                raw = tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.logging.apply_env()
        self.oracle.apply_env()
        self.orchestrator.apply_env()
        for chain in self.chains:
            chain.apply_env()

    @staticmethod
    def operator_key() -> str:
        """Operator private key from the environment, or "" if unset."""
        from .. import constants
        return os.environ.get("LOOKBRIDGE_ORACLE_PRIVATE_KEY") or str(constants.ORACLE_PRIVATE_KEY)

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if self.logging.level not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.logging.level}")
        self.oracle.validate()
        self.security.validate()
        self.orchestrator.validate()
        seen = set()
        for chain in self.chains:
            chain.validate()
            if chain.chain_id in seen:
                raise ConfigurationError(f"Duplicate chain {chain.chain_id} in [[chains]]")
            seen.add(chain.chain_id)
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "logging": {"level": self.logging.level, "file_output": self.logging.file_output},
            "oracle": {
                "expected_global_supply": self.oracle.expected_global_supply,
                "tolerance_threshold": self.oracle.tolerance_threshold,
                "reconciliation_interval": self.oracle.reconciliation_interval,
                "required_signatures": self.oracle.required_signatures,
                "admin": self.oracle.admin,
                "operators": list(self.oracle.operators),
                "state_path": self.oracle.state_path,
            },
            "security": {
                "global_daily_limit": self.security.global_daily_limit,
                "per_transaction_limit": self.security.per_transaction_limit,
                "window_duration": self.security.window_duration,
                "transactions_per_window": self.security.transactions_per_window,
                "protocols": {
                    name: {
                        "daily_limit": p.daily_limit,
                        "transaction_limit": p.transaction_limit,
                        "cooldown_period": p.cooldown_period,
                    }
                    for name, p in self.security.protocols.items()
                },
            },
            "orchestrator": {
                "nonce_window": self.orchestrator.nonce_window,
                "run_interval": self.orchestrator.run_interval,
                "read_timeout": self.orchestrator.read_timeout,
                "max_retries": self.orchestrator.max_retries,
                "retry_delay": self.orchestrator.retry_delay,
                "force_submit": self.orchestrator.force_submit,
            },
            "chains": [
                {
                    "chain_id": c.chain_id,
                    "name": c.name,
                    "rpc_url": c.rpc_url,
                    "token_address": c.token_address,
                }
                for c in self.chains
            ],
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> LookBridgeConfig:
    """
    Load LookBridge configuration.

    Resolution order:
        1. Explicit *path* argument
        2. LOOKBRIDGE_CONFIG env var
        3. ./lookbridge.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("LOOKBRIDGE_CONFIG", "lookbridge.toml")

    return LookBridgeConfig.from_file(path)
