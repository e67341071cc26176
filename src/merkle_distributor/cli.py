"""
merkle_distributor/cli.py

Command line interface.

Off-ledger tooling:
    merkle-distributor generate-merkle-root -i balances.json -o distribution.json
    merkle-distributor verify-merkle-root -i distribution.json

Ledger operations (state kept in a JSON file, see --state):
    merkle-distributor deploy --deployer 0x.. --maintainer 0x..
    merkle-distributor fund --sender 0x.. --amount 750
    merkle-distributor claim --caller 0x.. --account 0x.. -d distribution.json
    merkle-distributor set-merkle-root --caller 0x.. -d distribution.json
    merkle-distributor serve -d distribution.json
"""

import json
import logging
import sys
from functools import wraps
from pathlib import Path

import click
import trio

from .config import DistributorConfig, VERSION, ZERO_BYTES32
from .protocol.balance_map import (
    BalanceMapError,
    parse_amount,
    parse_balance_map,
    verify_distribution_info,
)
from .protocol.distributor import DistributorError, MerkleDistributor
from .protocol.storage import (
    LedgerStore,
    StorageError,
    load_distribution_info,
    save_distribution_info,
)

logger = logging.getLogger("merkle_distributor.cli")


def _handle_errors(f):
    """Turn ledger, storage and input errors into clean CLI failures."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (DistributorError, StorageError, ValueError) as e:
            logger.debug(f"{f.__name__} failed: {type(e).__name__}: {e}")
            raise click.ClickException(str(e))
    return wrapper


def _load(ctx) -> MerkleDistributor:
    return ctx.obj["store"].load_distributor()


def _save(ctx, distributor: MerkleDistributor) -> None:
    ctx.obj["store"].save(distributor)


def _amount(ctx, param, value):
    if value is None:
        return None
    try:
        return parse_amount(value)
    except BalanceMapError as e:
        raise click.BadParameter(str(e))


@click.group()
@click.version_option(version=VERSION)
@click.option("--state", "state_path", type=click.Path(dir_okay=False, path_type=Path),
              default=None, help="Ledger state file (env: MERKLE_DISTRIBUTOR_STATE)")
@click.option("--log-level", default=None,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging level (env: MERKLE_DISTRIBUTOR_LOG_LEVEL)")
@click.pass_context
def cli(ctx, state_path, log_level):
    """Cumulative merkle distributor."""
    config = DistributorConfig.from_env()
    if state_path is not None:
        config.state_path = state_path
    if log_level is not None:
        config.log_level = log_level.upper()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["store"] = LedgerStore(config.state_path)


# ============================================================================
# OFF-LEDGER TOOLING
# ============================================================================

@cli.command("generate-merkle-root")
@click.option("-i", "--input", "input_path", required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="JSON balance map: {account: amount} or [{address, earnings, reasons}]")
@click.option("-o", "--output", "output_path", default=None,
              type=click.Path(dir_okay=False, path_type=Path),
              help="Write the distribution here instead of stdout")
@_handle_errors
def generate_merkle_root(input_path, output_path):
    """Build the merkle root and claim proofs for a balance map."""
    try:
        balances = json.loads(input_path.read_text())
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {input_path}: {e}")

    info = parse_balance_map(balances)

    if output_path:
        save_distribution_info(info, output_path)
        click.echo(f"Merkle root: {info.merkle_root}")
        click.echo(f"Token total: {info.token_total} ({info.token_total_int})")
        click.echo(f"Claims: {len(info.claims)} written to {output_path}")
    else:
        click.echo(json.dumps(info.to_dict(), indent=2))


@cli.command("verify-merkle-root")
@click.option("-i", "--input", "input_path", required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Distribution JSON produced by generate-merkle-root")
@_handle_errors
def verify_merkle_root(input_path):
    """Recompute a published distribution's root and check every proof."""
    info = load_distribution_info(input_path)
    if not verify_distribution_info(info):
        raise click.ClickException(f"Distribution {input_path} failed verification")
    click.echo(f"Root {info.merkle_root} matches {len(info.claims)} claims")


# ============================================================================
# LEDGER OPERATIONS
# ============================================================================

@cli.command()
@click.option("--deployer", required=True, help="Deploying identity (becomes owner)")
@click.option("--maintainer", required=True, help="Identity allowed to rotate the root")
@click.option("--merkle-root", default=ZERO_BYTES32, show_default=True)
@click.option("--force", is_flag=True, help="Overwrite an existing state file")
@click.pass_context
@_handle_errors
def deploy(ctx, deployer, maintainer, merkle_root, force):
    """Create and initialize a new ledger."""
    store = ctx.obj["store"]
    if store.exists() and not force:
        raise click.ClickException(f"Ledger state already exists at {store.path}")

    distributor = MerkleDistributor.deploy(deployer, maintainer, merkle_root)
    _save(ctx, distributor)
    click.echo(f"Deployed distributor to {store.path}")
    click.echo(f"owner={distributor.owner} maintainer={distributor.maintainer}")
    click.echo(f"merkle_root={distributor.merkle_root}")


@cli.command()
@click.option("--sender", required=True)
@click.option("--amount", required=True, callback=_amount)
@click.pass_context
@_handle_errors
def fund(ctx, sender, amount):
    """Deposit funds into the ledger."""
    distributor = _load(ctx)
    distributor.deposit(sender, amount)
    _save(ctx, distributor)
    click.echo(f"Balance: {distributor.balance}")


@cli.command()
@click.option("--caller", required=True, help="Identity submitting the claim")
@click.option("--account", required=True)
@click.option("-d", "--distribution", "distribution_path", default=None,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Take index, amount and proof from this distribution")
@click.option("--index", type=int, default=None)
@click.option("--amount", default=None, callback=_amount)
@click.option("--proof", multiple=True, help="Proof element (repeat, leaf to root)")
@click.pass_context
@_handle_errors
def claim(ctx, caller, account, distribution_path, index, amount, proof):
    """Claim an account's unpaid entitlement."""
    if distribution_path:
        info = load_distribution_info(distribution_path)
        package = info.get_claim(account)
        if package is None:
            raise click.ClickException(f"{account} has no claim in {distribution_path}")
        index, amount, proof = package.index, package.amount_int, package.proof
    elif index is None or amount is None:
        raise click.UsageError("Either --distribution or both --index and --amount are required")

    distributor = _load(ctx)
    event = distributor.claim(caller, index, account, amount, list(proof))
    _save(ctx, distributor)
    click.echo(
        f"Claimed: index={event.index} account={event.account} transferred={event.amount}"
    )
    click.echo(f"Claimed amount: {distributor.claimed_amount(account)}")


@cli.command("set-merkle-root")
@click.option("--caller", required=True)
@click.option("--root", "merkle_root", default=None)
@click.option("-d", "--distribution", "distribution_path", default=None,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Take the root from this distribution")
@click.pass_context
@_handle_errors
def set_merkle_root(ctx, caller, merkle_root, distribution_path):
    """Rotate the ledger to a new entitlement snapshot (maintainer only)."""
    if distribution_path:
        merkle_root = load_distribution_info(distribution_path).merkle_root
    if not merkle_root:
        raise click.UsageError("Either --root or --distribution is required")

    distributor = _load(ctx)
    distributor.set_merkle_root(caller, merkle_root)
    _save(ctx, distributor)
    click.echo(f"merkle_root={distributor.merkle_root}")


@cli.command("set-maintainer")
@click.option("--caller", required=True)
@click.option("--maintainer", required=True)
@click.pass_context
@_handle_errors
def set_maintainer(ctx, caller, maintainer):
    """Replace the maintainer (owner only)."""
    distributor = _load(ctx)
    distributor.set_maintainer(caller, maintainer)
    _save(ctx, distributor)
    click.echo(f"maintainer={distributor.maintainer}")


@cli.command("transfer-ownership")
@click.option("--caller", required=True)
@click.option("--new-owner", required=True)
@click.pass_context
@_handle_errors
def transfer_ownership(ctx, caller, new_owner):
    """Hand ownership to another identity (owner only)."""
    distributor = _load(ctx)
    distributor.transfer_ownership(caller, new_owner)
    _save(ctx, distributor)
    click.echo(f"owner={distributor.owner}")


@cli.command("emergency-withdraw")
@click.option("--caller", required=True)
@click.option("--destination", required=True)
@click.pass_context
@_handle_errors
def emergency_withdraw(ctx, caller, destination):
    """Move the whole balance to a destination (owner only)."""
    distributor = _load(ctx)
    amount = distributor.emergency_withdraw_new(caller, destination)
    _save(ctx, distributor)
    click.echo(f"Withdrew {amount} to {destination}")


@cli.command()
@click.option("--account", default=None, help="Also show this account's claimed amount")
@click.pass_context
@_handle_errors
def status(ctx, account):
    """Show ledger state."""
    distributor = _load(ctx)
    for key, value in distributor.get_stats().items():
        click.echo(f"{key}: {value}")
    if account:
        click.echo(f"claimed_amount[{account}]: {distributor.claimed_amount(account)}")


@cli.command()
@click.option("--host", default=None, help="Bind address (env: MERKLE_DISTRIBUTOR_API_HOST)")
@click.option("--port", type=int, default=None, help="Port (env: MERKLE_DISTRIBUTOR_API_PORT)")
@click.option("-d", "--distribution", "distribution_path", default=None,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Serve proofs from this distribution (env: MERKLE_DISTRIBUTOR_DISTRIBUTION)")
@click.pass_context
@_handle_errors
def serve(ctx, host, port, distribution_path):
    """Run the REST API over the stored ledger."""
    from .api import DistributorAPI

    config = ctx.obj["config"]
    distribution_path = distribution_path or config.distribution_path
    distribution = load_distribution_info(distribution_path) if distribution_path else None
    api = DistributorAPI(
        _load(ctx),
        host=host or config.api.host,
        port=port or config.api.port,
        store=ctx.obj["store"],
        distribution=distribution,
        enable_metrics=config.api.enable_metrics,
    )
    trio.run(api.start)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
