"""Click CLI: balance, portfolio, poll, alerts, rules."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click

from walletwatch.config import get_settings


def _open_db(ctx: click.Context):
    from walletwatch.storage.database import get_connection

    return get_connection(ctx.obj.get("db"))


def _echo_model(model) -> None:
    click.echo(model.model_dump_json(indent=2))


def _split_target(value: str, parts: int) -> list[str]:
    pieces = value.split(":", parts - 1)
    if len(pieces) != parts or not all(pieces):
        fmt = "ADDRESS_ID:CHAIN:ADDRESS" if parts == 3 else "CHAIN:ADDRESS"
        raise click.BadParameter(f"{value!r} is not {fmt}")
    return pieces


@click.group()
@click.version_option(version="1.0.0")
@click.option("--db", type=click.Path(path_type=Path), default=None, help="DuckDB file (defaults to settings)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, db: Path | None, verbose: bool):
    """Walletwatch - multi-chain balance monitoring and alerts."""
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["db"] = db


@cli.command()
@click.argument("chain")
@click.argument("address")
def balance(chain: str, address: str):
    """Priced token balances of ADDRESS on CHAIN (btc, eth, tron)."""
    from walletwatch.portfolio.aggregator import PortfolioAggregator

    aggregator = PortfolioAggregator.from_settings()
    try:
        result = asyncio.run(aggregator.get_single_chain_portfolio(address, chain))
    except ValueError as e:
        raise click.UsageError(str(e))
    _echo_model(result)


@cli.command()
@click.option("--btc", default=None, help="Bitcoin address")
@click.option("--eth", default=None, help="Ethereum address")
@click.option("--tron", default=None, help="TRON address")
def portfolio(btc: str | None, eth: str | None, tron: str | None):
    """Multi-chain portfolio, at most one address per chain."""
    from walletwatch.portfolio.aggregator import PortfolioAggregator

    aggregator = PortfolioAggregator.from_settings()
    try:
        result = asyncio.run(aggregator.get_multi_chain_portfolio(btc=btc, eth=eth, tron=tron))
    except ValueError as e:
        raise click.UsageError(str(e))
    _echo_model(result)


@cli.command()
@click.argument("targets", nargs=-1)
def batch(targets: tuple[str, ...]):
    """Portfolio over any number of CHAIN:ADDRESS entries."""
    from walletwatch.models.schema import AddressQuery
    from walletwatch.portfolio.aggregator import PortfolioAggregator

    queries = [AddressQuery(chain=c, address=a) for c, a in (_split_target(t, 2) for t in targets)]
    aggregator = PortfolioAggregator.from_settings()
    try:
        result = asyncio.run(aggregator.aggregate(queries))
    except ValueError as e:
        raise click.UsageError(str(e))
    _echo_model(result)


@cli.command()
@click.argument("case_id")
@click.argument("targets", nargs=-1)
@click.pass_context
def poll(ctx: click.Context, case_id: str, targets: tuple[str, ...]):
    """Snapshot every ADDRESS_ID:CHAIN:ADDRESS and run the case's alert rules."""
    from walletwatch.alerts.service import MonitorService
    from walletwatch.models.schema import MonitoredAddress

    monitored = [
        MonitoredAddress(address_id=i, chain=c, address=a)
        for i, c, a in (_split_target(t, 3) for t in targets)
    ]
    conn = _open_db(ctx)
    try:
        service = MonitorService.from_connection(conn)
        result = asyncio.run(service.poll_and_detect(case_id, monitored))
    except ValueError as e:
        raise click.UsageError(str(e))
    finally:
        conn.close()
    _echo_model(result)


@cli.command()
@click.argument("case_id")
@click.option("--limit", default=None, type=int, help="Max alerts (defaults to settings)")
@click.option("--unread", is_flag=True, help="Only unread alerts")
@click.pass_context
def alerts(ctx: click.Context, case_id: str, limit: int | None, unread: bool):
    """Most recent alerts of a case."""
    from walletwatch.storage.database import AlertRepository

    conn = _open_db(ctx)
    repo = AlertRepository(conn)
    items = repo.list_recent(case_id, limit=limit or get_settings().alert_list_limit, unread_only=unread)
    unread_count = repo.unread_count(case_id)
    conn.close()

    click.echo(json.dumps({
        "unread": unread_count,
        "alerts": [a.model_dump(mode="json") for a in items],
    }, indent=2))


@cli.command("mark-read")
@click.argument("alert_id")
@click.pass_context
def mark_read(ctx: click.Context, alert_id: str):
    """Mark one alert as read."""
    from walletwatch.storage.database import AlertRepository

    conn = _open_db(ctx)
    AlertRepository(conn).mark_read(alert_id)
    conn.close()
    click.echo(f"Marked {alert_id} as read.")


@cli.command("mark-all-read")
@click.argument("case_id")
@click.pass_context
def mark_all_read(ctx: click.Context, case_id: str):
    """Mark every alert of a case as read."""
    from walletwatch.storage.database import AlertRepository

    conn = _open_db(ctx)
    AlertRepository(conn).mark_all_read(case_id)
    conn.close()
    click.echo(f"Marked all alerts of case {case_id} as read.")


@cli.command()
@click.argument("case_id")
@click.argument("address_id")
@click.pass_context
def history(ctx: click.Context, case_id: str, address_id: str):
    """Snapshot totals of one address over time."""
    from walletwatch.storage.database import SnapshotRepository

    conn = _open_db(ctx)
    df = SnapshotRepository(conn).history(case_id, address_id)
    conn.close()

    if df.empty:
        click.echo("No snapshots recorded.")
        return
    click.echo(df.to_string(index=False))


@cli.group()
def rules():
    """Manage alert rules."""
    pass


@rules.command("add")
@click.argument("case_id")
@click.argument("rule_type", type=click.Choice([
    "large_outflow", "large_inflow", "balance_volatility", "asset_emptied", "address_risk",
]))
@click.argument("name")
@click.option("--config", "config_json", required=True, help='JSON payload, e.g. \'{"threshold": 1000}\'')
@click.option("--disabled", is_flag=True, help="Create the rule disabled")
@click.pass_context
def rules_add(ctx: click.Context, case_id: str, rule_type: str, name: str, config_json: str, disabled: bool):
    """Create a rule."""
    from walletwatch.storage.database import AlertRuleRepository

    try:
        config = json.loads(config_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"--config is not valid JSON: {e}")

    conn = _open_db(ctx)
    try:
        rule = AlertRuleRepository(conn).create(case_id, rule_type, name, config, enabled=not disabled)
    except ValueError as e:
        raise click.UsageError(f"Invalid {rule_type} config: {e}")
    finally:
        conn.close()
    _echo_model(rule)


@rules.command("list")
@click.argument("case_id")
@click.pass_context
def rules_list(ctx: click.Context, case_id: str):
    """Rules of a case, newest first."""
    from walletwatch.storage.database import AlertRuleRepository

    conn = _open_db(ctx)
    items = AlertRuleRepository(conn).list_for_case(case_id)
    conn.close()
    click.echo(json.dumps([r.model_dump(mode="json") for r in items], indent=2))


def _set_enabled(ctx: click.Context, rule_id: str, enabled: bool) -> None:
    from walletwatch.storage.database import AlertRuleRepository

    conn = _open_db(ctx)
    rule = AlertRuleRepository(conn).update(rule_id, enabled=enabled)
    conn.close()
    if rule is None:
        raise click.UsageError(f"No rule {rule_id}")
    click.echo(f"Rule {rule.name} {'enabled' if enabled else 'disabled'}.")


@rules.command("enable")
@click.argument("rule_id")
@click.pass_context
def rules_enable(ctx: click.Context, rule_id: str):
    """Enable a rule."""
    _set_enabled(ctx, rule_id, True)


@rules.command("disable")
@click.argument("rule_id")
@click.pass_context
def rules_disable(ctx: click.Context, rule_id: str):
    """Disable a rule without deleting it."""
    _set_enabled(ctx, rule_id, False)


@rules.command("delete")
@click.argument("rule_id")
@click.pass_context
def rules_delete(ctx: click.Context, rule_id: str):
    """Delete a rule."""
    from walletwatch.storage.database import AlertRuleRepository

    conn = _open_db(ctx)
    AlertRuleRepository(conn).delete(rule_id)
    conn.close()
    click.echo(f"Deleted rule {rule_id}.")


if __name__ == "__main__":
    cli()
