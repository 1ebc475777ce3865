"""
Chain supply readers.

A reader returns the current LOOK supply of one chain.  The orchestrator
runs every reader concurrently, so `read()` is async even for in-process
chains.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector

from ..bridge.types import ChainSupplyUpdate, chain_label, checksum
from ..exceptions import ConfigurationError, TransportError
from ..logger import get_logger
from ..tokens.look import LookToken

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  SNAPSHOT
# ══════════════════════════════════════════════════════════════════════

@dataclass
class SupplySnapshot:
    """Supply figures read from one chain."""
    chain_id: int
    total_supply: int
    total_minted: int
    total_burned: int
    locked_supply: int = 0
    read_at: float = field(default_factory=time.time)

    @property
    def circulating_supply(self) -> int:
        return self.total_supply - self.locked_supply

    @property
    def is_consistent(self) -> bool:
        """total_supply is explained by minted - burned."""
        return self.total_supply == self.total_minted - self.total_burned

    def to_update(self) -> ChainSupplyUpdate:
        return ChainSupplyUpdate(self.chain_id, self.total_supply, self.locked_supply)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "total_supply": str(self.total_supply),
            "total_minted": str(self.total_minted),
            "total_burned": str(self.total_burned),
            "locked_supply": str(self.locked_supply),
            "consistent": self.is_consistent,
            "read_at": self.read_at,
        }


# ══════════════════════════════════════════════════════════════════════
#  READERS
# ══════════════════════════════════════════════════════════════════════

class SupplyReader(ABC):
    """Reads the supply of one chain."""

    chain_id: int

    @abstractmethod
    async def read(self) -> SupplySnapshot:
        """
        Raises:
            TransportError: the chain could not be read
        """


class LedgerSupplyReader(SupplyReader):
    """Reads an in-process LookToken."""

    def __init__(self, token: LookToken):
        self.token = token
        self.chain_id = token.chain_id

    async def read(self) -> SupplySnapshot:
        return SupplySnapshot(
            chain_id=self.chain_id,
            total_supply=self.token.total_supply,
            total_minted=self.token.total_minted,
            total_burned=self.token.total_burned,
        )


TOTAL_SUPPLY_SELECTOR = function_signature_to_4byte_selector("totalSupply()")
TOTAL_MINTED_SELECTOR = function_signature_to_4byte_selector("totalMinted()")
TOTAL_BURNED_SELECTOR = function_signature_to_4byte_selector("totalBurned()")


class JsonRpcSupplyReader(SupplyReader):
    """
    Reads the LookCoin contract of an EVM chain over JSON-RPC `eth_call`.

    The client is owned by the caller, so one httpx.AsyncClient serves
    every chain of a reconciliation run.
    """

    _rpc_id_counter = 0

    def __init__(
        self,
        chain_id: int,
        rpc_url: str,
        token_address: str,
        client: httpx.AsyncClient,
        block: str = "latest",
    ):
        self.chain_id = chain_id
        self.rpc_url = rpc_url
        self.token_address = checksum(token_address, "token_address")
        self.client = client
        self.block = block

    @classmethod
    def _next_id(cls) -> int:
        cls._rpc_id_counter += 1
        return cls._rpc_id_counter

    async def _rpc_call(self, method: str, params=None) -> Any:
        """Send one JSON-RPC 2.0 request and return its `result`."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "id": self._next_id(),
        }
        if params is not None:
            payload["params"] = params

        start_time = time.time()
        try:
            response = await self.client.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            elapsed = time.time() - start_time
            logger.debug(
                f"RPC {method} → {self.rpc_url} [{response.status_code}] ({elapsed:.3f}s)"
            )
            response.raise_for_status()
            body = response.json()
        except httpx.RequestError as exc:
            elapsed = time.time() - start_time
            logger.warning(
                f"RPC {method} → {self.rpc_url} NETWORK_ERROR ({elapsed:.3f}s)"
            )
            raise TransportError(f"{chain_label(self.chain_id)} unreachable: {exc}") from exc
        except (json.JSONDecodeError, httpx.HTTPStatusError) as exc:
            elapsed = time.time() - start_time
            logger.warning(
                f"RPC {method} → {self.rpc_url} ERROR ({elapsed:.3f}s): {exc}"
            )
            raise TransportError(f"{chain_label(self.chain_id)} RPC error: {exc}") from exc

        if not isinstance(body, dict):
            raise TransportError(f"{chain_label(self.chain_id)} malformed RPC response")
        if body.get("error"):
            err = body["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            logger.warning(f"RPC {method} → {self.rpc_url} returned error: {message}")
            raise TransportError(f"{chain_label(self.chain_id)} RPC error: {message}")
        return body.get("result")

    async def _call_uint(self, selector: bytes) -> int:
        result = await self._rpc_call(
            "eth_call",
            [{"to": self.token_address, "data": "0x" + selector.hex()}, self.block],
        )
        if not isinstance(result, str) or not result.startswith("0x"):
            raise TransportError(f"{chain_label(self.chain_id)} unexpected eth_call result: {result!r}")
        try:
            (value,) = decode(["uint256"], bytes.fromhex(result[2:]))
        except Exception as exc:
            raise TransportError(
                f"{chain_label(self.chain_id)} cannot decode eth_call result: {exc}"
            ) from exc
        return value

    async def read(self) -> SupplySnapshot:
        total_supply = await self._call_uint(TOTAL_SUPPLY_SELECTOR)
        total_minted = await self._call_uint(TOTAL_MINTED_SELECTOR)
        total_burned = await self._call_uint(TOTAL_BURNED_SELECTOR)
        return SupplySnapshot(
            chain_id=self.chain_id,
            total_supply=total_supply,
            total_minted=total_minted,
            total_burned=total_burned,
        )

    def __repr__(self) -> str:
        return f"JsonRpcSupplyReader(chain_id={self.chain_id}, rpc_url={self.rpc_url!r})"


def reader_for(chain_id: int, rpc_url: Optional[str], token_address: Optional[str], client: httpx.AsyncClient) -> JsonRpcSupplyReader:
    """Build an RPC reader, rejecting incomplete chain config."""
    if not rpc_url or not token_address:
        raise ConfigurationError(f"{chain_label(chain_id)} has no rpc_url/token_address configured")
    return JsonRpcSupplyReader(chain_id, rpc_url, token_address, client)
