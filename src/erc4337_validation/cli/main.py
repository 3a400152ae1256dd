"""
Main CLI entry point for ERC-4337 trace validation.

Installed as ``erc4337-validate``.
"""

import logging
import sys

import click

from erc4337_validation.cli.validate_commands import _cli_fail, cli, console

# Configure module logger
logger = logging.getLogger(__name__)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)
    except (click.ClickException, ValueError, KeyError, TypeError) as exc:
        _cli_fail(exc)


if __name__ == "__main__":
    main()
