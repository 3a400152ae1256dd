"""
ERC-4337 Validation CLI commands

Validates a recorded UserOperation trace fixture (JSON or YAML) and prints the
verdict.

Exit codes:
- 0: operation accepted
- 1: a validation rule was violated
- 2: the fixture or trace could not be interpreted
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from erc4337_validation.core.config import ENVIRONMENT, LOG_LEVEL, ConfigurationError, ValidationConfig
from erc4337_validation.core.logging_config import setup_logging
from erc4337_validation.core.static_providers import load_validation_fixture
from erc4337_validation.core.validation_exceptions import (
    MalformedTraceError,
    RuleCode,
    RuleViolation,
)
from erc4337_validation.core.validator import UserOperationValidator, ValidationReport

logger = logging.getLogger(__name__)

console = Console()

EXIT_ACCEPTED = 0
EXIT_VIOLATION = 1
EXIT_MALFORMED = 2


def _cli_fail(exc: Exception, exit_code: int = EXIT_MALFORMED) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


@click.group()
@click.option('--json-output', is_flag=True, help='Output raw JSON')
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    default=LOG_LEVEL if LOG_LEVEL in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL') else 'WARNING',
    show_default=True,
    help='Log level for structured JSON logs written to stderr',
)
@click.pass_context
def cli(ctx: click.Context, json_output: bool, log_level: str):
    """
    ERC-4337 UserOperation validation rules engine

    Checks recorded validation traces against the bundler storage, opcode
    and call rules.
    """
    ctx.ensure_object(dict)
    setup_logging(name="erc4337_validation", level=log_level, environment=ENVIRONMENT)
    ctx.obj['json_output'] = json_output


def _report_table(report: ValidationReport) -> Table:
    table = Table(show_header=False, box=box.ROUNDED)
    entities = report.entities
    if entities is not None:
        table.add_row("[bold cyan]Account", entities.account)
        if entities.has_factory:
            staked = "staked" if entities.is_factory_staked else "unstaked"
            table.add_row("[bold cyan]Factory", f"{entities.factory} ({staked})")
        if entities.has_paymaster:
            staked = "staked" if entities.is_paymaster_staked else "unstaked"
            table.add_row("[bold cyan]Paymaster", f"{entities.paymaster} ({staked})")
    for name, count in report.step_counts.items():
        table.add_row(f"[bold cyan]{name.title()} steps", str(count))
    table.add_row("[bold cyan]Calls", str(len(report.calls)))
    return table


def _violation_table(data: Dict[str, Any]) -> Table:
    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold red]Rule", f"{data.get('rule', 'n/a')} {data.get('rule_description', '')}".strip())
    table.add_row("[bold red]Message", data["message"])
    for key, value in data.get("details", {}).items():
        if key == "rule":
            continue
        table.add_row(f"[bold]{key}", str(value))
    return table


@cli.command('check')
@click.argument('fixture', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    '--mapping-search-depth',
    type=click.IntRange(0, 4096),
    default=None,
    help='Override how many slots below a queried slot the mapping search visits.',
)
@click.pass_context
def check(ctx: click.Context, fixture: Path, mapping_search_depth: int | None):
    """Validate the trace recorded in FIXTURE"""
    try:
        loaded = load_validation_fixture(fixture)
        config = ValidationConfig.from_env()
        if mapping_search_depth is not None:
            config = ValidationConfig(
                min_stake_value=config.min_stake_value,
                min_unstake_delay=config.min_unstake_delay,
                mapping_search_depth=mapping_search_depth,
                metrics_enabled=config.metrics_enabled,
            )
    except (MalformedTraceError, ConfigurationError, OSError) as exc:
        _cli_fail(exc, EXIT_MALFORMED)
        return

    validator = UserOperationValidator(
        stake_registry=loaded.stake_registry,
        chain_state=loaded.chain_state,
        labeler=loaded.labeler,
        config=config,
    )
    report = validator.check(
        loaded.user_op,
        loaded.entry_point,
        loaded.trace,
        sender_creator=loaded.sender_creator,
        mapping_recorder=loaded.mapping_recorder,
    )

    if report.valid:
        exit_code = EXIT_ACCEPTED
    elif isinstance(report.violation, RuleViolation):
        exit_code = EXIT_VIOLATION
    else:
        exit_code = EXIT_MALFORMED

    if ctx.obj['json_output']:
        click.echo(json.dumps(report.to_dict(), indent=2))
        ctx.exit(exit_code)

    if report.valid:
        console.print(Panel(_report_table(report), title="[bold green]UserOperation accepted",
                            border_style="green"))
    else:
        title = "Rule violation" if exit_code == EXIT_VIOLATION else "Malformed trace"
        console.print(Panel(_violation_table(report.violation.to_dict()),
                            title=f"[bold red]{title}", border_style="red"))
    ctx.exit(exit_code)


@cli.command('rules')
@click.pass_context
def rules(ctx: click.Context):
    """List the validation rules this engine enforces"""
    if ctx.obj['json_output']:
        click.echo(json.dumps(
            [{"code": rule.code, "description": rule.description} for rule in RuleCode],
            indent=2,
        ))
        return

    table = Table(title="Validation Rules", box=box.ROUNDED)
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Description")
    for rule in RuleCode:
        table.add_row(rule.code, rule.description)
    console.print(table)
