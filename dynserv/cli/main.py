"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

CLI entry point for Dynserv.

Provides commands to run the gateway and to inspect how a target URL or
hostname would be treated by the admission pipeline.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from dynserv._version import __version__
from dynserv.config.settings import get_default_config_path, load_config
from dynserv.exceptions import InvalidConfigurationError
from dynserv.logging_config import setup_logging
from dynserv.cli.context import CLIContext, pass_context


@click.group()
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    envvar='DYNSERV_CONFIG_PATH',
    help=f'Path to configuration file (default: {get_default_config_path()})',
)
@click.option(
    '--log-level',
    '-l',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    default=None,
    help='Set logging level (default: from configuration)',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose output',
)
@click.version_option(version=__version__, prog_name='dynserv')
@pass_context
def cli(ctx: CLIContext, config: Optional[Path], log_level: Optional[str], verbose: bool):
    """
    Dynserv - dynamic-upstream reverse-proxy gateway.
    
    Authenticates callers, refuses private/internal targets and relays
    requests to https origins chosen per request.
    """
    ctx.verbose = verbose
    ctx.config_path = str(config) if config else None
    
    try:
        ctx.config = load_config(ctx.config_path)
    except InvalidConfigurationError as e:
        click.echo(f"Error: Invalid configuration: {e}", err=True)
        sys.exit(1)
    
    effective_log_level = log_level.upper() if log_level else ctx.config.logging.level
    log_file = Path(ctx.config.logging.file) if ctx.config.logging.file else None
    try:
        setup_logging(
            level=effective_log_level,
            log_file=log_file,
            json_format=ctx.config.logging.format == "json",
        )
    except OSError as e:
        click.echo(f"Error: Failed to set up logging: {e}", err=True)
        sys.exit(1)
    
    if verbose:
        logger = logging.getLogger("dynserv")
        logger.info(f"Loaded configuration from: {ctx.config_path or 'defaults'}")
        logger.info(f"Log level: {effective_log_level}")


from dynserv.cli.gateway import check_host, resolve, serve
cli.add_command(serve)
cli.add_command(check_host)
cli.add_command(resolve)


def main():
    """Console script entry point."""
    cli()


if __name__ == '__main__':
    main()
