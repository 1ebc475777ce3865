"""
LookBridge Constants

This module consolidates all global constants and environment configuration
used throughout the codebase. Constants are organized by category for easy
reference and maintenance.
"""
import ast
from typing import Dict

from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'True',
}

ORACLE_DEFAULTS = {
    'ORACLE_PRIVATE_KEY':              '',
    'ORACLE_ID':                       '1',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# TOKEN PARAMETERS
# ==================================================================================
TOKEN_SYMBOL = 'LOOK'
TOKEN_DECIMALS = 18
WEI = 10 ** TOKEN_DECIMALS

# Hard cap shared by every deployment, in smallest units
GLOBAL_TOTAL_SUPPLY = 5_000_000_000 * WEI

# Largest value an on-chain uint256 field can carry
MAX_UINT256 = 2 ** 256 - 1


# ==================================================================================
# SUPPLY ORACLE PARAMETERS
# ==================================================================================
DEFAULT_REQUIRED_SIGNATURES = 3
DEFAULT_RECONCILIATION_INTERVAL = 15 * 60  # seconds
DEFAULT_TOLERANCE_THRESHOLD = 1_000 * WEI

# Pending updates older than this many reconciliation intervals are discarded
PENDING_UPDATE_TTL_INTERVALS = 2

# Applied supply records kept per chain for audit queries
SUPPLY_HISTORY_LIMIT = 100


# ==================================================================================
# PROTOCOL IDENTIFIERS & DEFAULTS
# ==================================================================================
# Numbering follows the router's on-chain Protocol enum (XERC20 = 2 is not routed here)
PROTOCOL_LAYERZERO = 0
PROTOCOL_CELER = 1
PROTOCOL_HYPERLANE = 3

LAYERZERO_DEFAULT_DST_GAS = 350_000
LAYERZERO_DEFAULT_BASE_FEE = 10 ** 16           # 0.01 native
CELER_DEFAULT_FEE_BASE = 10 ** 15               # 0.001 native
CELER_DEFAULT_FEE_PER_BYTE = 10 ** 10
HYPERLANE_DEFAULT_GAS_AMOUNT = 200_000
DEFAULT_GAS_PRICE = 5 * 10 ** 9                 # 5 gwei

# Transport retry policy for outbound dispatch
DISPATCH_MAX_ATTEMPTS = 3
DISPATCH_RETRY_DELAY = 0.5  # seconds, doubled per attempt

# Route selection metadata: typical delivery time (seconds) and a relative
# security score (higher is stronger)
PROTOCOL_ESTIMATED_TIME: Dict[int, int] = {
    PROTOCOL_LAYERZERO: 10,
    PROTOCOL_CELER:     300,
    PROTOCOL_HYPERLANE: 600,
}
PROTOCOL_SECURITY_LEVEL: Dict[int, int] = {
    PROTOCOL_LAYERZERO: 9,
    PROTOCOL_CELER:     7,
    PROTOCOL_HYPERLANE: 8,
}

# Router service fee, percentage part in basis points
FEE_BASIS_POINTS = 10_000


# ==================================================================================
# SECURITY MANAGER DEFAULTS
# ==================================================================================
GLOBAL_DAILY_LIMIT = 2_000_000_000 * WEI
PER_TRANSACTION_LIMIT = 500_000 * WEI
RATE_LIMIT_WINDOW = 3600  # seconds
TRANSACTIONS_PER_WINDOW = 3
DAY_SECONDS = 86_400

# protocol id → (daily limit, transaction limit, cooldown seconds)
PROTOCOL_SECURITY_DEFAULTS: Dict[int, tuple] = {
    PROTOCOL_LAYERZERO: (500_000_000 * WEI, 50_000_000 * WEI, 300),
    PROTOCOL_CELER:     (300_000_000 * WEI, 30_000_000 * WEI, 600),
    PROTOCOL_HYPERLANE: (100_000_000 * WEI, 10_000_000 * WEI, 900),
}


# ==================================================================================
# CHAIN TABLES
# ==================================================================================
CHAIN_NAMES: Dict[int, str] = {
    1: 'Ethereum',
    10: 'Optimism',
    56: 'BSC',
    97: 'BSC Testnet',
    137: 'Polygon',
    8453: 'Base',
    9070: 'Akashic',
    23295: 'Sapphire',
    42161: 'Arbitrum',
    84532: 'Base Sepolia',
    11155111: 'Sepolia',
    11155420: 'Optimism Sepolia',
}

# LayerZero endpoint chain id → standard EVM chain id
LAYERZERO_CHAIN_IDS: Dict[int, int] = {
    101: 1,
    102: 56,
    109: 10,
    110: 137,
    184: 8453,
    40161: 42161,
    40217: 97,
    40232: 11155111,
}

# Hyperlane domain → standard EVM chain id
HYPERLANE_DOMAINS: Dict[int, int] = {
    56: 56,
    97: 97,
    8453: 8453,
    10: 10,
    9070: 9070,
}


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default


class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    def __hash__(self):
        return hash(bool(self))


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = LOGGER_DEFAULTS | ORACLE_DEFAULTS
namespace = globals()


def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Leaves every other value untouched.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v


for key, default_raw in DEFAULTS.items():
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
