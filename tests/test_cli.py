"""
Tests for the lookbridge-reconcile CLI

Tests:
  - status / read / run command wiring
  - Config and operator key errors surfaced as CLI errors
  - run --once applies an update that a later status call sees
"""

import json
import logging
import os
import sys

import pytest
from click.testing import CliRunner

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from lookbridge.constants import WEI
from lookbridge.crypto.keys import PrivateKey
from lookbridge.logger import set_level
from lookbridge.reconciliation import SupplyReader, SupplySnapshot
from lookbridge.reconciliation import cli as cli_module


ADMIN = PrivateKey.from_int(1).address
OPERATOR_KEY = PrivateKey.from_int(11)
TOKEN_ADDRESS = PrivateKey.from_int(70).address

CONFIG_TOML = """
[logging]
level = "CRITICAL"
file_output = false

[oracle]
expected_global_supply = 1000
tolerance_threshold = 10
required_signatures = 1
admin = "{admin}"
state_path = "{state}"

[[chains]]
chain_id = 56
rpc_url = "https://bsc.example"
token_address = "{token}"

[[chains]]
chain_id = 8453
rpc_url = "https://base.example"
token_address = "{token}"
"""


class StaticReader(SupplyReader):
    def __init__(self, chain_id: int, supply: int):
        self.chain_id = chain_id
        self.supply = supply

    async def read(self) -> SupplySnapshot:
        return SupplySnapshot(self.chain_id, self.supply, self.supply, 0)


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    for key in ("LOOKBRIDGE_CONFIG", "LOOKBRIDGE_ORACLE_PRIVATE_KEY", "LOOKBRIDGE_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    path = tmp_path / "lookbridge.toml"
    path.write_text(CONFIG_TOML.format(
        admin=ADMIN, token=TOKEN_ADDRESS, state=(tmp_path / "oracle.db").as_posix(),
    ))
    level = logging.getLogger().level
    yield str(path)
    set_level(logging.getLevelName(level))


@pytest.fixture
def static_readers(monkeypatch):
    readers = [StaticReader(56, 600 * WEI), StaticReader(8453, 400 * WEI)]
    monkeypatch.setattr(cli_module, "build_readers", lambda config, client: readers)
    return readers


# ═══════════════════════════════════════════════════════════════════════
#  COMMANDS
# ═══════════════════════════════════════════════════════════════════════

class TestReconcileCli:

    def test_status_fresh_state(self, config_path):
        result = CliRunner().invoke(cli_module.cli, ["-c", config_path, "status"])
        assert result.exit_code == 0, result.output
        status = json.loads(result.output)
        assert status["required_signatures"] == 1
        assert status["last_applied_nonce"] == 0
        assert [c["chain_id"] for c in status["chains"]] == [56, 8453]

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[oracle]\nrequired_signatures = 0\n")
        result = CliRunner().invoke(cli_module.cli, ["-c", str(path), "status"])
        assert result.exit_code != 0
        assert "required_signatures" in result.output

    def test_run_requires_operator_key(self, config_path, monkeypatch):
        monkeypatch.setattr(cli_module.LookBridgeConfig, "operator_key", staticmethod(lambda: ""))
        result = CliRunner().invoke(cli_module.cli, ["-c", config_path, "run", "--once"])
        assert result.exit_code != 0
        assert "Operator key not set" in result.output

    def test_run_rejects_invalid_key(self, config_path, monkeypatch):
        monkeypatch.setenv("LOOKBRIDGE_ORACLE_PRIVATE_KEY", "0x1234")
        result = CliRunner().invoke(cli_module.cli, ["-c", config_path, "run", "--once"])
        assert result.exit_code != 0
        assert "Invalid operator key" in result.output

    def test_read_prints_snapshots(self, config_path, static_readers):
        result = CliRunner().invoke(cli_module.cli, ["-c", config_path, "read"])
        assert result.exit_code == 0, result.output
        lines = [json.loads(line) for line in result.output.strip().splitlines()]
        assert [line["chain_id"] for line in lines] == [56, 8453]
        assert lines[0]["total_supply"] == str(600 * WEI)

    def test_run_once_then_status(self, config_path, static_readers, monkeypatch):
        monkeypatch.setenv("LOOKBRIDGE_ORACLE_PRIVATE_KEY", OPERATOR_KEY.to_hex())
        runner = CliRunner()

        result = runner.invoke(cli_module.cli, ["-c", config_path, "run", "--once"])
        assert result.exit_code == 0, result.output
        report = json.loads(result.output)
        assert report["operator"] == OPERATOR_KEY.address
        assert report["applied"] is True
        assert report["healthy"] is True

        result = runner.invoke(cli_module.cli, ["-c", config_path, "status"])
        status = json.loads(result.output)
        assert status["last_applied_nonce"] == report["nonce"]
        assert status["global_supply"] == str(1_000 * WEI)
        assert status["circuit_breaker"]["enabled"] is False
