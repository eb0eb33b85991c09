import asyncio
import sys
from typing import Tuple

import click
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console

from sitebind.config.logging_config import configure_logging
from sitebind.errors import BindError, MissingCommandError

console = Console(stderr=True)

BIND_EPILOG = """\b
Examples:
  sitebind bind "vitest run"          Bind your resources to your tests
  sitebind bind "tsx scripts/run.ts"  Bind your resources to a script
"""


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Print debug logs.")
def cli(verbose: bool):
    """Bind local commands to deployed site resources."""
    if verbose:
        configure_logging("DEBUG")


def _bind(command: Tuple[str, ...]) -> None:
    from sitebind.session import run_bind

    try:
        code = asyncio.run(run_bind(" ".join(command)))
    except MissingCommandError as e:
        raise click.UsageError(str(e))
    except (BindError, ClientError, BotoCoreError) as e:
        raise click.ClickException(str(e))
    sys.exit(code)


@cli.command(
    "bind",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
    epilog=BIND_EPILOG,
)
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def bind(command: Tuple[str, ...]):
    """Bind your app's resources to a command."""
    _bind(command)


@cli.command(
    "env",
    hidden=True,
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def env(command: Tuple[str, ...]):
    """Deprecated alias of `bind`."""
    console.print("[yellow]Warning: [bold]sitebind env[/bold] has been renamed to [bold]sitebind bind[/bold][/yellow]")
    _bind(command)


if __name__ == "__main__":
    cli()
