#!/usr/bin/env python3
"""
CloudInv - Docker Adapter

Collects containers (running and stopped), images, volumes and networks
from one Docker Engine.

Usage:
    python3 docker_collect.py
    python3 docker_collect.py --host tcp://build-01:2375
"""
import argparse
import logging
import sys
import threading
from typing import Any, Dict, List, Optional

import docker

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import PROVIDER_DOCKER
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    normalize_all,
    normalize_docker_container,
    normalize_docker_image,
    normalize_docker_network,
    normalize_docker_volume,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import classify_error, parallel_collect, retry_with_backoff, setup_logging

logger = logging.getLogger(__name__)

DEFAULT_DOCKER_HOST = 'unix:///var/run/docker.sock'
DOCKER_API_TIMEOUT = 30


def get_client(credentials: Dict[str, Any]) -> docker.DockerClient:
    """Client for the descriptor's host, or DOCKER_HOST / the local socket."""
    try:
        if credentials.get('host'):
            return docker.DockerClient(base_url=credentials['host'], timeout=DOCKER_API_TIMEOUT)
        return docker.from_env(timeout=DOCKER_API_TIMEOUT)
    except Exception as e:
        raise classify_error(e, "connect to the Docker daemon", PROVIDER_DOCKER) from e


def host_label(credentials: Dict[str, Any]) -> str:
    return credentials.get('host') or DEFAULT_DOCKER_HOST


def test_connection(credentials: Dict[str, Any]) -> Dict[str, Any]:
    """
    Ping the daemon and report its version.

    Returns:
        {"host", "version", "apiVersion", "os", "arch"}
    """
    client = get_client(credentials)
    try:
        client.ping()
        version = client.version()
    except Exception as e:
        raise classify_error(e, "reach the Docker daemon", PROVIDER_DOCKER) from e
    finally:
        client.close()
    return {
        'host': host_label(credentials),
        'version': version.get('Version'),
        'apiVersion': version.get('ApiVersion'),
        'os': version.get('Os'),
        'arch': version.get('Arch'),
    }


def check_credentials(credentials: Dict[str, Any]) -> bool:
    info = test_connection(credentials)
    logger.info(f"Docker daemon {info['host']} is version {info['version']}")
    return True


# =============================================================================
# Collectors
# =============================================================================

@retry_with_backoff()
def collect_containers(client: docker.DockerClient, host: str) -> List[Resource]:
    """Collect containers, including stopped ones."""
    try:
        containers = [c.attrs for c in client.containers.list(all=True)]
    except Exception as e:
        raise classify_error(e, "collect containers", PROVIDER_DOCKER) from e

    resources = normalize_all(normalize_docker_container, containers, host)
    logger.info(f"[{host}] Found {len(resources)} containers")
    return resources


@retry_with_backoff()
def collect_images(client: docker.DockerClient, host: str) -> List[Resource]:
    """Collect images."""
    try:
        images = [i.attrs for i in client.images.list()]
    except Exception as e:
        raise classify_error(e, "collect images", PROVIDER_DOCKER) from e

    resources = normalize_all(normalize_docker_image, images, host)
    logger.info(f"[{host}] Found {len(resources)} images")
    return resources


@retry_with_backoff()
def collect_volumes(client: docker.DockerClient, host: str) -> List[Resource]:
    """Collect volumes."""
    try:
        volumes = [v.attrs for v in client.volumes.list()]
    except Exception as e:
        raise classify_error(e, "collect volumes", PROVIDER_DOCKER) from e

    resources = normalize_all(normalize_docker_volume, volumes, host)
    logger.info(f"[{host}] Found {len(resources)} volumes")
    return resources


@retry_with_backoff()
def collect_networks(client: docker.DockerClient, host: str) -> List[Resource]:
    """Collect networks with their attached containers."""
    try:
        networks = [n.attrs for n in client.networks.list(greedy=True)]
    except Exception as e:
        raise classify_error(e, "collect networks", PROVIDER_DOCKER) from e

    resources = normalize_all(normalize_docker_network, networks, host)
    logger.info(f"[{host}] Found {len(resources)} networks")
    return resources


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """Collect every object type from the daemon."""
    result = CollectionResult(provider=PROVIDER_DOCKER)
    host = host_label(credentials)
    client = get_client(credentials)
    try:
        tasks = [
            ("Containers", collect_containers, (client, host)),
            ("Images", collect_images, (client, host)),
            ("Volumes", collect_volumes, (client, host)),
            ("Networks", collect_networks, (client, host)),
        ]
        parallel_collect(tasks, result, parallel_workers=1, cancel=cancel)
    finally:
        client.close()
    logger.info(f"Collected {len(result.resources)} resources from {host}")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_DOCKER,
    collect=collect,
    check_credentials=check_credentials,
)


def main():
    parser = argparse.ArgumentParser(description='CloudInv - Docker Adapter')
    add_common_args(parser)
    parser.add_argument('--host', help=f'Docker host URL (default: $DOCKER_HOST or {DEFAULT_DOCKER_HOST})')
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))

    descriptor: Dict[str, Any] = {'type': 'host'}
    if args.host:
        descriptor['host'] = args.host

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
