#!/usr/bin/env python3
"""
CloudInv - HashiCorp Vault Adapter

Collects server status, auth methods, secret engines, ACL policies and
audit devices. A sealed server only reports its status.

Usage:
    export VAULT_TOKEN=...
    python3 vault_collect.py --server https://vault.example.com:8200

    export CLOUDINV_VAULT_PASSWORD=...
    python3 vault_collect.py --server https://vault:8200 --username ops
"""
import argparse
import logging
import os
import sys
import threading
from typing import Any, Dict, List, Optional

import hvac
from hvac.exceptions import InvalidRequest

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import PROVIDER_VAULT
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    normalize_vault_audit_device,
    normalize_vault_auth_method,
    normalize_vault_policy,
    normalize_vault_secret_engine,
    normalize_vault_server,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import AuthError, classify_error, parallel_collect, retry_with_backoff, setup_logging

logger = logging.getLogger(__name__)

VAULT_API_TIMEOUT = 30


def get_client(credentials: Dict[str, Any]) -> hvac.Client:
    """Authenticated client for a token or userpass descriptor."""
    client = hvac.Client(
        url=credentials['server'],
        token=credentials.get('token'),
        verify=not credentials.get('insecure', False),
        timeout=VAULT_API_TIMEOUT,
    )
    if credentials.get('type') == 'userpass':
        try:
            client.auth.userpass.login(
                username=credentials['username'],
                password=credentials['password'],
                mount_point=credentials.get('authPath') or 'userpass',
            )
        except InvalidRequest as e:
            # Vault answers a wrong username or password with 400
            raise AuthError(f"Vault userpass login failed: {e}", provider=PROVIDER_VAULT, original_error=e) from e
        except Exception as e:
            raise classify_error(e, "log in with userpass", PROVIDER_VAULT) from e
    return client


def _data(response: Any) -> Dict[str, Any]:
    """Unwrap the "data" envelope of a Vault API response."""
    if not isinstance(response, dict):
        return {}
    data = response.get('data')
    return data if isinstance(data, dict) else response


def read_server_status(client: hvac.Client) -> Dict[str, Any]:
    """
    Merge sys/seal-status, sys/health and (when unsealed) sys/leader.

    These endpoints are unauthenticated, so this works on a sealed server.
    """
    status: Dict[str, Any] = {}
    try:
        status.update(client.sys.read_seal_status())
        health = client.sys.read_health_status(method='GET')
    except Exception as e:
        raise classify_error(e, "read Vault server status", PROVIDER_VAULT) from e

    # read_health_status returns the raw response for bodiless status codes
    if isinstance(health, dict):
        status.update(health)
        status.setdefault('performance_mode', health.get('replication_performance_mode'))
        status.setdefault('dr_mode', health.get('replication_dr_mode'))
        license_info = health.get('license') or {}
        if license_info.get('expiry_time'):
            status['license_expiration_time'] = license_info['expiry_time']

    if not status.get('sealed'):
        try:
            status.update(client.sys.read_leader_status())
        except Exception as e:
            raise classify_error(e, "read Vault leader status", PROVIDER_VAULT) from e
    return status


def check_credentials(credentials: Dict[str, Any]) -> bool:
    """
    Verify the server is reachable and the token is valid.

    A sealed server passes; its token can't be checked until it is unsealed.

    Raises:
        AuthError, TransientError, ConfigurationError
    """
    client = get_client(credentials)
    status = read_server_status(client)
    if status.get('sealed'):
        logger.warning(f"Vault at {credentials['server']} is sealed")
        return True
    try:
        authenticated = client.is_authenticated()
    except Exception as e:
        raise classify_error(e, "validate the Vault token", PROVIDER_VAULT) from e
    if not authenticated:
        raise AuthError("Vault token is invalid or expired", provider=PROVIDER_VAULT)
    logger.info(f"Vault {status.get('version')} at {credentials['server']} accepted the token")
    return True


# =============================================================================
# Collectors
# =============================================================================

@retry_with_backoff()
def collect_auth_methods(client: hvac.Client, server: str) -> List[Resource]:
    """Collect enabled auth methods."""
    try:
        mounts = _data(client.sys.list_auth_methods())
    except Exception as e:
        raise classify_error(e, "collect auth methods", PROVIDER_VAULT) from e

    resources = []
    for path, mount in sorted(mounts.items()):
        resource = normalize_vault_auth_method(mount, path, server)
        if resource is not None:
            resources.append(resource)
    logger.info(f"[{server}] Found {len(resources)} auth methods")
    return resources


@retry_with_backoff()
def collect_secret_engines(client: hvac.Client, server: str) -> List[Resource]:
    """Collect mounted secret engines."""
    try:
        mounts = _data(client.sys.list_mounted_secrets_engines())
    except Exception as e:
        raise classify_error(e, "collect secret engines", PROVIDER_VAULT) from e

    resources = []
    for path, mount in sorted(mounts.items()):
        resource = normalize_vault_secret_engine(mount, path, server)
        if resource is not None:
            resources.append(resource)
    logger.info(f"[{server}] Found {len(resources)} secret engines")
    return resources


@retry_with_backoff()
def collect_policies(client: hvac.Client, server: str) -> List[Resource]:
    """Collect ACL policies with their rule counts."""
    resources = []
    try:
        names = _data(client.sys.list_acl_policies()).get('keys') or []
        for name in names:
            policy = _data(client.sys.read_acl_policy(name))
            resource = normalize_vault_policy(
                {'name': name, 'type': 'acl', 'rules': policy.get('policy', '')}, server)
            if resource is not None:
                resources.append(resource)
    except Exception as e:
        raise classify_error(e, "collect policies", PROVIDER_VAULT) from e

    logger.info(f"[{server}] Found {len(resources)} policies")
    return resources


@retry_with_backoff()
def collect_audit_devices(client: hvac.Client, server: str) -> List[Resource]:
    """Collect enabled audit devices."""
    try:
        devices = _data(client.sys.list_enabled_audit_devices())
    except Exception as e:
        error = classify_error(e, "collect audit devices", PROVIDER_VAULT)
        if isinstance(error, AuthError) and error.permission_denied:
            # sys/audit requires the sudo capability
            logger.warning(f"[{server}] Skipping audit devices: {error}")
            return []
        raise error from e

    resources = []
    for path, device in sorted(devices.items()):
        resource = normalize_vault_audit_device(device, path, server)
        if resource is not None:
            resources.append(resource)
    logger.info(f"[{server}] Found {len(resources)} audit devices")
    return resources


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """Collect server status and, when unsealed, its configuration objects."""
    result = CollectionResult(provider=PROVIDER_VAULT)
    server = credentials['server']
    client = get_client(credentials)

    status = read_server_status(client)
    server_resource = normalize_vault_server(status, server)
    if server_resource is not None:
        result.resources.append(server_resource)

    if status.get('sealed'):
        logger.warning(f"[{server}] Vault is sealed; only server status collected")
        return result

    tasks = [
        ("Auth methods", collect_auth_methods, (client, server)),
        ("Secret engines", collect_secret_engines, (client, server)),
        ("Policies", collect_policies, (client, server)),
        ("Audit devices", collect_audit_devices, (client, server)),
    ]
    parallel_collect(tasks, result, parallel_workers=1, cancel=cancel)
    logger.info(f"Collected {len(result.resources)} resources from {server}")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_VAULT,
    collect=collect,
    check_credentials=check_credentials,
)


def main():
    parser = argparse.ArgumentParser(description='CloudInv - HashiCorp Vault Adapter')
    add_common_args(parser)
    parser.add_argument('--server', default=os.environ.get('VAULT_ADDR'),
                        help='Vault URL (default: $VAULT_ADDR)')
    parser.add_argument('--username', help='userpass username (password from CLOUDINV_VAULT_PASSWORD)')
    parser.add_argument('--auth-path', help='userpass mount path (default: userpass)')
    parser.add_argument('--insecure', action='store_true', help='Skip TLS verification')
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))

    if args.username:
        descriptor: Dict[str, Any] = {
            'type': 'userpass',
            'server': args.server,
            'username': args.username,
            'password': os.environ.get('CLOUDINV_VAULT_PASSWORD'),
        }
        if args.auth_path:
            descriptor['authPath'] = args.auth_path
    else:
        descriptor = {'type': 'token', 'server': args.server, 'token': os.environ.get('VAULT_TOKEN')}
    descriptor['insecure'] = args.insecure

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
