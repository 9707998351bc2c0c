#!/usr/bin/env python3
"""
CloudInv - Unified Entry Point

Usage:
    # Serve the HTTP API (sources from the config file, or connected later)
    python collect.py serve --config cloudinv.yaml

    # Collect every configured source once and print a summary
    python collect.py once --config cloudinv.yaml --output inventory.json

    # Probe configured credentials without collecting
    python collect.py check --config cloudinv.yaml

    # Write a sample config file
    python collect.py init-config > cloudinv.yaml
"""
import argparse
import logging
import sys
from typing import Any, Dict, Optional

from rich.console import Console

import aws_collect
import azure_collect
import docker_collect
import gcp_collect
import k8s_collect
import openshift_collect
import terraform_collect
import vault_collect
from cloudinv.config import add_common_args, generate_sample_config, load_config
from cloudinv.credentials import SourceRegistry
from cloudinv.models import Adapter
from cloudinv.query import QueryService
from cloudinv.scheduler import AggregationScheduler, run_once
from cloudinv.store import SnapshotStore, get_default_store
from cloudinv.utils import CollectionError, ConfigurationError, RefreshCancelledError, setup_logging

logger = logging.getLogger(__name__)

ADAPTERS: Dict[str, Adapter] = {
    adapter.provider: adapter
    for adapter in (
        aws_collect.ADAPTER,
        azure_collect.ADAPTER,
        gcp_collect.ADAPTER,
        k8s_collect.ADAPTER,
        openshift_collect.ADAPTER,
        docker_collect.ADAPTER,
        vault_collect.ADAPTER,
        terraform_collect.ADAPTER,
    )
}


def build_registry(config: Dict[str, Any]) -> SourceRegistry:
    """
    Register every source listed under `sources:` in the config.

    Raises:
        ConfigurationError: a provider is unknown or its descriptor is incomplete
    """
    registry = SourceRegistry()
    for provider, descriptor in (config.get('sources') or {}).items():
        if provider not in ADAPTERS:
            raise ConfigurationError(f"Unknown provider in config sources: {provider}")
        registry.register(provider, descriptor or {})
    return registry


def build_scheduler(config: Dict[str, Any], registry: SourceRegistry,
                    store: Optional[SnapshotStore] = None) -> AggregationScheduler:
    scheduler_config = config['scheduler']
    return AggregationScheduler(
        store or get_default_store(),
        registry,
        ADAPTERS,
        adapter_timeout=scheduler_config['adapter_timeout'],
        max_concurrency=scheduler_config['max_concurrency'],
    )


# =============================================================================
# Commands
# =============================================================================

def cmd_serve(config: Dict[str, Any]) -> int:
    import uvicorn

    from server import create_app, start_background_refresh

    registry = build_registry(config)
    scheduler = build_scheduler(config, registry)
    app = create_app(registry, scheduler, QueryService(scheduler.store), ADAPTERS, config)

    if registry.sources():
        start_background_refresh(scheduler)

    server_config = config['server']
    logger.info(f"Serving CloudInv API on http://{server_config['host']}:{server_config['port']}")
    uvicorn.run(app, host=server_config['host'], port=server_config['port'],
                log_level=str(config['log_level']).lower())
    return 0


def cmd_once(config: Dict[str, Any]) -> int:
    registry = build_registry(config)
    if not registry.sources():
        logger.error("No sources configured; add a `sources:` section (see: collect.py init-config)")
        return 2
    scheduler = build_scheduler(config, registry)
    try:
        snapshot = run_once(scheduler, config.get('output'))
    except RefreshCancelledError as e:
        logger.error(str(e))
        return 130
    return 1 if snapshot.partial else 0


def cmd_check(config: Dict[str, Any], console: Optional[Console] = None) -> int:
    console = console or Console()
    registry = build_registry(config)
    if not registry.sources():
        console.print("[yellow]No sources configured.[/yellow]")
        return 2

    failures = 0
    for source in registry.sources():
        adapter = ADAPTERS[source.provider]
        try:
            adapter.check_credentials(registry.credentials_for(source))
        except CollectionError as e:
            failures += 1
            console.print(f"  [red]✗[/red] {source.provider}: {e}")
            continue
        console.print(f"  [green]✓[/green] {source.provider}: {registry.describe(source)}")
    return 1 if failures else 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="CloudInv - multi-source infrastructure inventory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the HTTP API')
    add_common_args(serve)
    serve.add_argument('--host', help='Bind address (default: 127.0.0.1)')
    serve.add_argument('--port', type=int, help='Port (default: 8080)')
    serve.add_argument('--max-concurrency', type=int, help='Adapters collected at once')
    serve.add_argument('--no-refresh-on-connect', action='store_true',
                       help='Do not refresh after POST /api/{provider}/connect')

    once = subparsers.add_parser('once', help='Collect configured sources once')
    add_common_args(once)
    once.add_argument('--max-concurrency', type=int, help='Adapters collected at once')

    check = subparsers.add_parser('check', help='Verify configured credentials')
    add_common_args(check)

    subparsers.add_parser('init-config', help='Print a sample config file')

    args = parser.parse_args(argv)

    if args.command == 'init-config':
        print(generate_sample_config())
        return 0

    try:
        config = load_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    setup_logging(config['log_level'], config.get('log_dir'))

    commands = {
        'serve': cmd_serve,
        'once': cmd_once,
        'check': cmd_check,
    }
    try:
        return commands[args.command](config)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2


if __name__ == '__main__':
    sys.exit(main())
