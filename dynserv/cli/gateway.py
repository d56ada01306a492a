"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

CLI commands for the gateway.

Provides commands to start the gateway and to dry-run admission decisions
without opening any connection.
"""

import asyncio
import json
import sys

import click

from dynserv.cli.context import CLIContext, pass_context
from dynserv.config.settings import validate_listen_address
from dynserv.exceptions import InvalidConfigurationError, ProxyError
from dynserv.gateway.admission import AdmissionController
from dynserv.gateway.classifier import classify_host
from dynserv.gateway.proxy import GatewayProxy
from dynserv.gateway.upstream import UPSTREAM_POLICY, derive_upstream_identity
from dynserv.logging_config import get_logger

logger = get_logger(__name__)


@click.command('serve')
@click.option(
    '--listen-address',
    '-a',
    default=None,
    envvar='DYNSERV_LISTEN_ADDRESS',
    help='Listen address host:port (default: from configuration)',
)
@pass_context
def serve(ctx: CLIContext, listen_address):
    """
    Start the gateway.
    
    Examples:
        dynserv serve
        
        dynserv --config /etc/dynserv/config.yaml serve -a 0.0.0.0:8443
    """
    config = ctx.gateway_config()
    if listen_address:
        try:
            validate_listen_address(listen_address)
        except InvalidConfigurationError as e:
            raise click.BadParameter(str(e), param_hint="--listen-address")
        config.server.listen_address = listen_address
    
    proxy = GatewayProxy(config)
    try:
        logger.info("Starting Dynserv gateway...")
        asyncio.run(proxy.start())
    except KeyboardInterrupt:
        logger.info("Gateway stopped by user")


@click.command('check-host')
@click.argument('hostname')
def check_host(hostname):
    """
    Show whether HOSTNAME would be refused as private/internal.
    
    Exits with status 1 when the host is blocked.
    """
    verdict = classify_host(hostname)
    if verdict.blocked:
        click.echo(f"blocked ({verdict.rule})")
        sys.exit(1)
    click.echo("allowed")


@click.command('resolve')
@click.argument('url')
def resolve(url):
    """
    Show how URL would be admitted, without contacting it.
    
    Prints the resolved target and dynamic backend, or the JSON error body
    the gateway would return (exit status 1).
    """
    try:
        target = AdmissionController.admit_target(url)
    except ProxyError as e:
        click.echo(json.dumps(e.to_dict()))
        sys.exit(1)
    
    identity = derive_upstream_identity(target.hostname, target.port)
    click.echo(f"Hostname: {target.hostname}")
    click.echo(f"Port:     {target.port}")
    click.echo(f"Path:     {target.path_and_query}")
    click.echo(f"Backend:  {identity.name}")
    click.echo(f"Target:   {identity.target}")
    click.echo(
        f"TLS:      {UPSTREAM_POLICY.tls_min_version.name}-{UPSTREAM_POLICY.tls_max_version.name}"
    )
