#!/usr/bin/env python3
"""
CloudInv - Azure Adapter

Collects resource groups, VMs, scale sets, managed disks, disk snapshots,
storage accounts and blob containers, AKS clusters, virtual networks, SQL
databases and Cosmos DB accounts from one or all accessible subscriptions.

Usage:
    # Azure CLI / managed identity / environment credentials
    python3 azure_collect.py
    python3 azure_collect.py --subscription <subscription-id>

    # Service principal (secret from env to avoid shell history exposure)
    export CLOUDINV_AZURE_CLIENT_SECRET=...
    python3 azure_collect.py --tenant-id <tenant> --client-id <app-id>
"""
import argparse
import logging
import os
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.containerservice import ContainerServiceClient
from azure.mgmt.cosmosdb import CosmosDBManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.sql import SqlManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.subscription import SubscriptionClient

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import DEFAULT_PARALLEL_WORKERS, PROVIDER_AZURE
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    extract_resource_group,
    normalize_all,
    normalize_azure_aks_cluster,
    normalize_azure_blob_container,
    normalize_azure_cosmosdb,
    normalize_azure_disk,
    normalize_azure_disk_snapshot,
    normalize_azure_resource_group,
    normalize_azure_sql_database,
    normalize_azure_storage_account,
    normalize_azure_vm,
    normalize_azure_vmss,
    normalize_azure_vnet,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import (
    AuthError,
    classify_error,
    parallel_collect,
    retry_with_backoff,
    setup_logging,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Authentication & Subscriptions
# =============================================================================

def get_credential(credentials: Dict[str, Any]):
    """Service principal credential, or the default chain (CLI, managed identity, env)."""
    if credentials.get('type') == 'service_principal':
        return ClientSecretCredential(
            tenant_id=credentials['tenantId'],
            client_id=credentials['clientId'],
            client_secret=credentials['clientSecret'],
        )
    return DefaultAzureCredential()


def get_subscriptions(credential) -> List[Dict]:
    """Get all accessible subscriptions."""
    subscription_client = SubscriptionClient(credential)
    subscriptions = []

    for sub in subscription_client.subscriptions.list():
        subscriptions.append({
            'id': sub.subscription_id,
            'name': sub.display_name,
            'state': sub.state,
            'tenantId': getattr(sub, 'tenant_id', None),
        })

    return subscriptions


def resolve_subscriptions(credential, credentials: Dict[str, Any]) -> List[Dict]:
    """The descriptor's subscription, or every enabled one."""
    try:
        all_subscriptions = get_subscriptions(credential)
    except Exception as e:
        raise classify_error(e, "list Azure subscriptions", PROVIDER_AZURE) from e

    wanted = credentials.get('subscriptionId')
    if wanted:
        subscriptions = [s for s in all_subscriptions if s['id'] == wanted]
        if not subscriptions:
            raise AuthError(
                f"Subscription {wanted} not found or not accessible",
                provider=PROVIDER_AZURE, permission_denied=True,
            )
        return subscriptions

    subscriptions = [s for s in all_subscriptions if s['state'] == 'Enabled']
    if not subscriptions:
        raise AuthError("No enabled Azure subscriptions are accessible", provider=PROVIDER_AZURE,
                        permission_denied=True)
    return subscriptions


def check_credentials(credentials: Dict[str, Any]) -> bool:
    """
    Verify the descriptor can list at least one subscription.

    Raises:
        AuthError, TransientError, ConfigurationError
    """
    credential = get_credential(credentials)
    subscriptions = resolve_subscriptions(credential, credentials)
    logger.info(f"Azure credentials valid for {len(subscriptions)} subscription(s)")
    return True


def list_subscriptions(credentials: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Subscriptions visible to the descriptor (default chain when None)."""
    credential = get_credential(credentials or {})
    try:
        return get_subscriptions(credential)
    except Exception as e:
        raise classify_error(e, "list Azure subscriptions", PROVIDER_AZURE) from e


# =============================================================================
# Resource Group Collector
# =============================================================================

@retry_with_backoff()
def collect_resource_groups(credential, subscription_id: str) -> List[Resource]:
    """Collect resource groups."""
    try:
        client = ResourceManagementClient(credential, subscription_id)
        groups = [rg.as_dict() for rg in client.resource_groups.list()]
    except Exception as e:
        raise classify_error(e, "collect resource groups", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_resource_group, groups, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} resource groups")
    return resources


# =============================================================================
# Compute Collectors
# =============================================================================

@retry_with_backoff()
def collect_vms(credential, subscription_id: str) -> List[Resource]:
    """Collect Azure Virtual Machines."""
    try:
        compute_client = ComputeManagementClient(credential, subscription_id)
        vms = [vm.as_dict() for vm in compute_client.virtual_machines.list_all()]
    except Exception as e:
        raise classify_error(e, "collect VMs", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_vm, vms, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} VMs")
    return resources


@retry_with_backoff()
def collect_vm_scale_sets(credential, subscription_id: str) -> List[Resource]:
    """Collect VM scale sets."""
    try:
        compute_client = ComputeManagementClient(credential, subscription_id)
        scale_sets = [vmss.as_dict() for vmss in compute_client.virtual_machine_scale_sets.list_all()]
    except Exception as e:
        raise classify_error(e, "collect VM scale sets", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_vmss, scale_sets, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} VM scale sets")
    return resources


@retry_with_backoff()
def collect_disks(credential, subscription_id: str) -> List[Resource]:
    """Collect managed disks."""
    try:
        compute_client = ComputeManagementClient(credential, subscription_id)
        disks = [disk.as_dict() for disk in compute_client.disks.list()]
    except Exception as e:
        raise classify_error(e, "collect managed disks", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_disk, disks, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} managed disks")
    return resources


@retry_with_backoff()
def collect_disk_snapshots(credential, subscription_id: str) -> List[Resource]:
    """Collect managed disk snapshots."""
    try:
        compute_client = ComputeManagementClient(credential, subscription_id)
        snapshots = [snap.as_dict() for snap in compute_client.snapshots.list()]
    except Exception as e:
        raise classify_error(e, "collect disk snapshots", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_disk_snapshot, snapshots, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} disk snapshots")
    return resources


# =============================================================================
# Storage Collectors
# =============================================================================

@retry_with_backoff()
def collect_storage_accounts(credential, subscription_id: str) -> List[Resource]:
    """Collect storage accounts and their blob containers."""
    try:
        storage_client = StorageManagementClient(credential, subscription_id)
        accounts = [account.as_dict() for account in storage_client.storage_accounts.list()]
    except Exception as e:
        raise classify_error(e, "collect storage accounts", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_storage_account, accounts, subscription_id)

    container_count = 0
    for account in accounts:
        if not account.get('id'):
            continue
        rg = extract_resource_group(account['id'])
        try:
            containers = [
                c.as_dict() for c in storage_client.blob_containers.list(rg, account['name'])
            ]
        except Exception as e:
            error = classify_error(e, f"list containers in {account['name']}", PROVIDER_AZURE)
            if isinstance(error, AuthError) and not error.permission_denied:
                raise error from e
            # Data-plane listing is often blocked by network rules; the account itself is still reported
            logger.warning(f"[{subscription_id[:8]}] Skipping containers in {account['name']}: {error}")
            continue
        found = normalize_all(
            normalize_azure_blob_container, containers, subscription_id,
            storage_account=account['name'], location=account.get('location', ''),
        )
        container_count += len(found)
        resources.extend(found)

    logger.info(f"[{subscription_id[:8]}] Found {len(accounts)} storage accounts, {container_count} blob containers")
    return resources


# =============================================================================
# Containers & Networking
# =============================================================================

@retry_with_backoff()
def collect_aks_clusters(credential, subscription_id: str) -> List[Resource]:
    """Collect AKS clusters."""
    try:
        aks_client = ContainerServiceClient(credential, subscription_id)
        clusters = [cluster.as_dict() for cluster in aks_client.managed_clusters.list()]
    except Exception as e:
        raise classify_error(e, "collect AKS clusters", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_aks_cluster, clusters, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} AKS clusters")
    return resources


@retry_with_backoff()
def collect_virtual_networks(credential, subscription_id: str) -> List[Resource]:
    """Collect virtual networks."""
    try:
        network_client = NetworkManagementClient(credential, subscription_id)
        vnets = [vnet.as_dict() for vnet in network_client.virtual_networks.list_all()]
    except Exception as e:
        raise classify_error(e, "collect virtual networks", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_vnet, vnets, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} virtual networks")
    return resources


# =============================================================================
# Database Collectors
# =============================================================================

@retry_with_backoff()
def collect_sql_databases(credential, subscription_id: str) -> List[Resource]:
    """Collect Azure SQL databases across all servers."""
    databases = []
    try:
        sql_client = SqlManagementClient(credential, subscription_id)
        for server in sql_client.servers.list():
            if not server.id:
                continue
            rg = extract_resource_group(server.id)
            for db in sql_client.databases.list_by_server(rg, server.name):
                if db.name == 'master':
                    continue  # system database
                databases.append(db.as_dict())
    except Exception as e:
        raise classify_error(e, "collect SQL databases", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_sql_database, databases, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} SQL databases")
    return resources


@retry_with_backoff()
def collect_cosmosdb_accounts(credential, subscription_id: str) -> List[Resource]:
    """Collect Cosmos DB accounts."""
    try:
        cosmos_client = CosmosDBManagementClient(credential, subscription_id)
        accounts = [account.as_dict() for account in cosmos_client.database_accounts.list()]
    except Exception as e:
        raise classify_error(e, "collect Cosmos DB accounts", PROVIDER_AZURE) from e

    resources = normalize_all(normalize_azure_cosmosdb, accounts, subscription_id)
    logger.info(f"[{subscription_id[:8]}] Found {len(resources)} Cosmos DB accounts")
    return resources


# =============================================================================
# Adapter
# =============================================================================

SUBSCRIPTION_COLLECTORS: List[Tuple[str, Callable]] = [
    ("Resource groups", collect_resource_groups),
    ("VMs", collect_vms),
    ("VM scale sets", collect_vm_scale_sets),
    ("Disks", collect_disks),
    ("Disk snapshots", collect_disk_snapshots),
    ("Storage accounts", collect_storage_accounts),
    ("AKS clusters", collect_aks_clusters),
    ("Virtual networks", collect_virtual_networks),
    ("SQL databases", collect_sql_databases),
    ("CosmosDB accounts", collect_cosmosdb_accounts),
]


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """Collect every resource type in each selected subscription."""
    result = CollectionResult(provider=PROVIDER_AZURE)
    credential = get_credential(credentials)
    subscriptions = resolve_subscriptions(credential, credentials)
    logger.info(f"Found {len(subscriptions)} subscription(s) to scan")

    tasks = []
    for sub in subscriptions:
        for name, collect_fn in SUBSCRIPTION_COLLECTORS:
            tasks.append((f"{name} in {sub['name']}", collect_fn, (credential, sub['id'])))

    parallel_collect(
        tasks,
        result,
        parallel_workers=int(credentials.get('parallelWorkers') or DEFAULT_PARALLEL_WORKERS),
        cancel=cancel,
    )
    logger.info(f"Collected {len(result.resources)} Azure resources")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_AZURE,
    collect=collect,
    check_credentials=check_credentials,
    discover=list_subscriptions,
)


def main():
    parser = argparse.ArgumentParser(description='CloudInv - Azure Adapter')
    add_common_args(parser)
    parser.add_argument('--subscription', help='Specific subscription ID (default: all enabled)')
    parser.add_argument('--tenant-id', help='Service principal tenant ID')
    parser.add_argument('--client-id', help='Service principal application ID')
    parser.add_argument('--list-subscriptions', action='store_true', help='List subscriptions and exit')
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))

    if args.client_id:
        descriptor = {
            'type': 'service_principal',
            'tenantId': args.tenant_id,
            'clientId': args.client_id,
            'clientSecret': os.environ.get('CLOUDINV_AZURE_CLIENT_SECRET'),
        }
    else:
        descriptor = {'type': 'cli'}
    if args.subscription:
        descriptor['subscriptionId'] = args.subscription

    if args.list_subscriptions:
        for sub in list_subscriptions(descriptor):
            print(f"{sub['id']}  {sub['name']}  ({sub['state']})")
        sys.exit(0)

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
