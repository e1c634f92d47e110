"""language-server-mcp CLI entry point."""

import asyncio
import os
import sys

import click
from dotenv import load_dotenv

from language_server_mcp import __version__
from language_server_mcp.utils.logger import configure_logging


@click.command()
@click.version_option(version=__version__, prog_name="language-server-mcp")
@click.option(
    "--log-level",
    "-l",
    default=None,
    type=click.Choice(
        ["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False
    ),
    help="Log level for stderr output (defaults to $LOG_LEVEL or INFO)",
)
def cli(log_level: str | None):
    """Serve hover, completion and diagnostics tools over MCP stdio.

    Language servers are configured per language through the environment,
    for example:

        TYPESCRIPT_SERVER='{"command": "typescript-language-server", "args": ["--stdio"]}'
    """
    load_dotenv()
    if log_level:
        os.environ["LOG_LEVEL"] = log_level.upper()
    configure_logging()

    from language_server_mcp.config import BridgeSettings
    from language_server_mcp.server import LanguageServerMcp

    app = LanguageServerMcp(settings=BridgeSettings())
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        click.echo(f"Server error: {e}", err=True)
        sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
