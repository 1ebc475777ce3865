"""
LookBridge Reconciliation CLI

Runs the reconciliation orchestrator for one oracle operator against the
chains configured in lookbridge.toml.  The operator key is read from
LOOKBRIDGE_ORACLE_PRIVATE_KEY (or ORACLE_PRIVATE_KEY in .env).

Usage:
    lookbridge-reconcile status
    lookbridge-reconcile read
    lookbridge-reconcile run [--once] [--force]
"""

import asyncio
import json
from typing import List, Optional

import click
import httpx

from .orchestrator import ReconciliationOrchestrator
from .readers import SupplyReader, reader_for
from ..access import AccessControl, Role
from ..bridge.oracle import SupplyOracle
from ..bridge.store import SQLiteOracleStateStore
from ..config import LookBridgeConfig, load_config
from ..crypto.keys import InvalidKeyError, PrivateKey
from ..exceptions import LookBridgeException
from ..logger import get_logger, set_level

logger = get_logger(__name__)


def build_oracle(
    config: LookBridgeConfig,
    operator: Optional[str] = None,
    store: Optional[SQLiteOracleStateStore] = None,
) -> SupplyOracle:
    """SupplyOracle with SQLite persistence and the configured role table."""
    admin = config.oracle.admin or operator
    if not admin:
        raise click.ClickException("oracle.admin is not configured")
    access = AccessControl(admin)
    operators = list(config.oracle.operators)
    if operator and operator not in operators:
        operators.append(operator)
    access.grant_many(admin, Role.ORACLE, operators)

    return SupplyOracle(
        access,
        state_store=store or SQLiteOracleStateStore(config.oracle.state_path),
        expected_global_supply=config.oracle.expected_global_supply_wei,
        tolerance_threshold=config.oracle.tolerance_threshold_wei,
        reconciliation_interval=config.oracle.reconciliation_interval,
        required_signatures=config.oracle.required_signatures,
        chain_ids=[c.chain_id for c in config.chains],
    )


def build_readers(config: LookBridgeConfig, client: httpx.AsyncClient) -> List[SupplyReader]:
    return [
        reader_for(c.chain_id, c.rpc_url, c.token_address, client)
        for c in config.chains
    ]


def load_operator_key(config: LookBridgeConfig) -> PrivateKey:
    raw = config.operator_key()
    if not raw:
        raise click.ClickException(
            "Operator key not set (LOOKBRIDGE_ORACLE_PRIVATE_KEY or ORACLE_PRIVATE_KEY)"
        )
    try:
        return PrivateKey.from_hex(raw)
    except InvalidKeyError as e:
        raise click.ClickException(f"Invalid operator key: {e}")


@click.group()
@click.version_option(version="1.0.0", prog_name="lookbridge-reconcile")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(),
    default=None,
    help="Path to lookbridge.toml (default: $LOOKBRIDGE_CONFIG or ./lookbridge.toml)"
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]):
    """LookCoin cross-chain supply reconciliation."""
    try:
        config = load_config(config_path)
        config.validate()
    except LookBridgeException as e:
        raise click.ClickException(str(e))
    set_level(config.logging.level)
    ctx.obj = config


@cli.command("status")
@click.pass_obj
def status_cmd(config: LookBridgeConfig):
    """Show the persisted oracle state."""
    oracle = build_oracle(config, config.oracle.admin or None)
    click.echo(json.dumps(oracle.get_status(), indent=2))


@cli.command("read")
@click.pass_obj
def read_cmd(config: LookBridgeConfig):
    """Read every configured chain once, without submitting."""
    if not config.chains:
        raise click.ClickException("No [[chains]] configured")

    async def _read():
        async with httpx.AsyncClient(timeout=config.orchestrator.read_timeout) as client:
            readers = build_readers(config, client)
            results = await asyncio.gather(*(r.read() for r in readers), return_exceptions=True)
        return readers, results

    try:
        readers, results = asyncio.run(_read())
    except LookBridgeException as e:
        raise click.ClickException(str(e))

    failed = False
    for reader, result in zip(readers, results):
        if isinstance(result, LookBridgeException):
            failed = True
            click.echo(f"[chain {reader.chain_id}] ERROR: {result}", err=True)
        elif isinstance(result, BaseException):
            raise result
        else:
            click.echo(json.dumps(result.to_dict()))
    if failed:
        raise SystemExit(1)


@cli.command("run")
@click.option("--once", is_flag=True, help="Run a single reconciliation and exit")
@click.option("--force", is_flag=True, help="Submit even if the interval has not elapsed")
@click.pass_obj
def run_cmd(config: LookBridgeConfig, once: bool, force: bool):
    """Read all chains, sign and submit supply updates."""
    if not config.chains:
        raise click.ClickException("No [[chains]] configured")

    key = load_operator_key(config)
    store = SQLiteOracleStateStore(config.oracle.state_path)
    oracle = build_oracle(config, key.address, store)
    settings = config.orchestrator

    async def _run():
        async with httpx.AsyncClient(timeout=settings.read_timeout) as client:
            orchestrator = ReconciliationOrchestrator(
                oracle,
                key,
                build_readers(config, client),
                nonce_window=settings.nonce_window or None,
                read_timeout=settings.read_timeout,
                max_retries=settings.max_retries,
                retry_delay=settings.retry_delay,
                force_submit=force or settings.force_submit,
            )
            if once:
                report = await orchestrator.run_once()
                click.echo(json.dumps(report.to_dict(), indent=2))
            else:
                click.echo(f"Reconciling as {key.address} (Ctrl+C to stop)")
                await orchestrator.run_forever(interval=settings.run_interval or None)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Reconciliation stopped by user")
    except LookBridgeException as e:
        raise click.ClickException(str(e))
    finally:
        store.close()


def main():
    cli()


if __name__ == "__main__":
    main()
