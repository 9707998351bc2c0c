#!/usr/bin/env python3
"""
CloudInv - Google Cloud Adapter

Collects Compute Engine instances, persistent disks, disk snapshots, Cloud
Storage buckets, Cloud SQL instances, Cloud Run services and Cloud Functions
from one project or every active project the credentials can see.

Usage:
    python3 gcp_collect.py
    python3 gcp_collect.py --project my-project-id
    python3 gcp_collect.py --key-file sa.json --project my-project-id
"""
import argparse
import json
import logging
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import google.auth
from google.cloud import compute_v1
from google.cloud import functions_v2
from google.cloud import resourcemanager_v3
from google.cloud import run_v2
from google.cloud import storage
from google.oauth2 import service_account
from googleapiclient import discovery

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import DEFAULT_PARALLEL_WORKERS, PROVIDER_GCP
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    normalize_all,
    normalize_cloud_function,
    normalize_cloud_run_service,
    normalize_cloud_sql_instance,
    normalize_gcp_disk,
    normalize_gcp_instance,
    normalize_gcp_snapshot,
    normalize_gcs_bucket,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import (
    AuthError,
    ConfigurationError,
    classify_error,
    parallel_collect,
    retry_with_backoff,
    setup_logging,
)

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/cloud-platform']


# =============================================================================
# Authentication & Projects
# =============================================================================

def get_credentials(credentials: Dict[str, Any]):
    """
    Build google-auth credentials from a descriptor.

    Returns:
        (credentials, default_project_id)
    """
    if credentials.get('type') == 'service_account':
        try:
            if credentials.get('keyFile'):
                creds = service_account.Credentials.from_service_account_file(
                    credentials['keyFile'], scopes=SCOPES)
            else:
                info = credentials.get('keyJson')
                if isinstance(info, str):
                    info = json.loads(info)
                creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
        except (OSError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid service account key: {e}", provider=PROVIDER_GCP,
                                     original_error=e) from e
        return creds, creds.project_id

    try:
        return google.auth.default(scopes=SCOPES)
    except Exception as e:
        raise classify_error(e, "load application default credentials", PROVIDER_GCP) from e


def get_projects(creds) -> List[Dict]:
    """Get all accessible projects."""
    client = resourcemanager_v3.ProjectsClient(credentials=creds)
    projects = []

    for project in client.search_projects():
        projects.append({
            'id': project.project_id,
            'name': project.display_name,
            'number': project.name.split('/')[-1],
            'state': project.state.name,
        })

    return projects


def resolve_projects(creds, default_project: Optional[str], credentials: Dict[str, Any]) -> List[str]:
    """The descriptor's project, the credential's own project, or every active one."""
    if credentials.get('projectId'):
        return [credentials['projectId']]
    try:
        projects = [p['id'] for p in get_projects(creds) if p['state'] == 'ACTIVE']
    except Exception as e:
        error = classify_error(e, "list GCP projects", PROVIDER_GCP)
        if not default_project or not isinstance(error, AuthError):
            raise error from e
        # Project search needs resourcemanager.projects.list; fall back to the key's project
        logger.warning(f"Cannot search projects, using {default_project}: {error}")
        projects = []
    if not projects and default_project:
        projects = [default_project]
    if not projects:
        raise ConfigurationError("No GCP project given and none discoverable", provider=PROVIDER_GCP)
    return projects


def check_credentials(credentials: Dict[str, Any]) -> bool:
    """
    Verify credentials by refreshing a token and reading the project list.

    Raises:
        AuthError, TransientError, ConfigurationError
    """
    creds, default_project = get_credentials(credentials)
    projects = resolve_projects(creds, default_project, credentials)
    logger.info(f"GCP credentials valid for {len(projects)} project(s)")
    return True


def list_projects(credentials: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Projects visible to the descriptor (application default credentials when None)."""
    creds, _ = get_credentials(credentials or {})
    try:
        return get_projects(creds)
    except Exception as e:
        raise classify_error(e, "list GCP projects", PROVIDER_GCP) from e


def _message_dict(message) -> Dict[str, Any]:
    """proto-plus message to a snake_case dict with enum names."""
    return type(message).to_dict(message, use_integers_for_enums=False)


# =============================================================================
# Compute Engine Collectors
# =============================================================================

@retry_with_backoff()
def collect_compute_instances(creds, project_id: str) -> List[Resource]:
    """Collect Compute Engine instances across all zones."""
    instances = []
    try:
        client = compute_v1.InstancesClient(credentials=creds)
        request = compute_v1.AggregatedListInstancesRequest(project=project_id)
        for _zone, response in client.aggregated_list(request=request):
            for instance in response.instances:
                instances.append(_message_dict(instance))
    except Exception as e:
        raise classify_error(e, "collect Compute Engine instances", PROVIDER_GCP) from e

    resources = normalize_all(normalize_gcp_instance, instances, project_id)
    logger.info(f"[{project_id}] Found {len(resources)} Compute Engine instances")
    return resources


@retry_with_backoff()
def collect_persistent_disks(creds, project_id: str) -> List[Resource]:
    """Collect persistent disks across all zones."""
    disks = []
    try:
        client = compute_v1.DisksClient(credentials=creds)
        request = compute_v1.AggregatedListDisksRequest(project=project_id)
        for _zone, response in client.aggregated_list(request=request):
            for disk in response.disks:
                disks.append(_message_dict(disk))
    except Exception as e:
        raise classify_error(e, "collect persistent disks", PROVIDER_GCP) from e

    resources = normalize_all(normalize_gcp_disk, disks, project_id)
    logger.info(f"[{project_id}] Found {len(resources)} persistent disks")
    return resources


@retry_with_backoff()
def collect_disk_snapshots(creds, project_id: str) -> List[Resource]:
    """Collect disk snapshots."""
    try:
        client = compute_v1.SnapshotsClient(credentials=creds)
        snapshots = [_message_dict(s) for s in client.list(project=project_id)]
    except Exception as e:
        raise classify_error(e, "collect disk snapshots", PROVIDER_GCP) from e

    resources = normalize_all(normalize_gcp_snapshot, snapshots, project_id)
    logger.info(f"[{project_id}] Found {len(resources)} disk snapshots")
    return resources


# =============================================================================
# Cloud Storage Collector
# =============================================================================

@retry_with_backoff()
def collect_storage_buckets(creds, project_id: str) -> List[Resource]:
    """Collect Cloud Storage buckets."""
    buckets = []
    try:
        client = storage.Client(project=project_id, credentials=creds)
        for bucket in client.list_buckets():
            buckets.append({
                'name': bucket.name,
                'location': bucket.location,
                'location_type': bucket.location_type,
                'storage_class': bucket.storage_class,
                'versioning_enabled': bucket.versioning_enabled,
                'time_created': bucket.time_created,
                'labels': dict(bucket.labels or {}),
            })
    except Exception as e:
        raise classify_error(e, "collect Cloud Storage buckets", PROVIDER_GCP) from e

    resources = normalize_all(normalize_gcs_bucket, buckets, project_id)
    logger.info(f"[{project_id}] Found {len(resources)} Cloud Storage buckets")
    return resources


# =============================================================================
# Serverless and Cloud SQL Collectors
# =============================================================================

def _list_pages(collection, list_kwargs: Dict[str, Any], items_key: str) -> List[Dict[str, Any]]:
    """Page through a discovery-based list call."""
    items = []
    request = collection.list(**list_kwargs)
    while request is not None:
        response = request.execute()
        items.extend(response.get(items_key, []))
        request = collection.list_next(previous_request=request, previous_response=response)
    return items


@retry_with_backoff()
def collect_cloud_sql_instances(creds, project_id: str) -> List[Resource]:
    """Collect Cloud SQL instances."""
    try:
        service = discovery.build('sqladmin', 'v1beta4', credentials=creds, cache_discovery=False)
        instances = _list_pages(service.instances(), {'project': project_id}, 'items')
    except Exception as e:
        raise classify_error(e, "collect Cloud SQL instances", PROVIDER_GCP) from e

    resources = normalize_all(normalize_cloud_sql_instance, instances, project_id)
    logger.info(f"[{project_id}] Found {len(resources)} Cloud SQL instances")
    return resources


@retry_with_backoff()
def collect_cloud_run_services(creds, project_id: str) -> List[Resource]:
    """Collect Cloud Run services in every location."""
    try:
        client = run_v2.ServicesClient(credentials=creds)
        request = run_v2.ListServicesRequest(parent=f"projects/{project_id}/locations/-")
        services = [_message_dict(s) for s in client.list_services(request=request)]
    except Exception as e:
        raise classify_error(e, "collect Cloud Run services", PROVIDER_GCP) from e

    resources = normalize_all(normalize_cloud_run_service, services, project_id)
    logger.info(f"[{project_id}] Found {len(resources)} Cloud Run services")
    return resources


@retry_with_backoff()
def collect_cloud_functions(creds, project_id: str) -> List[Resource]:
    """Collect Cloud Functions (1st and 2nd gen) in every location."""
    try:
        client = functions_v2.FunctionServiceClient(credentials=creds)
        request = functions_v2.ListFunctionsRequest(parent=f"projects/{project_id}/locations/-")
        functions = [_message_dict(f) for f in client.list_functions(request=request)]
    except Exception as e:
        raise classify_error(e, "collect Cloud Functions", PROVIDER_GCP) from e

    resources = normalize_all(normalize_cloud_function, functions, project_id)
    logger.info(f"[{project_id}] Found {len(resources)} Cloud Functions")
    return resources


# =============================================================================
# Adapter
# =============================================================================

PROJECT_COLLECTORS: List[Tuple[str, Callable]] = [
    ("Compute instances", collect_compute_instances),
    ("Persistent disks", collect_persistent_disks),
    ("Disk snapshots", collect_disk_snapshots),
    ("Storage buckets", collect_storage_buckets),
    ("Cloud SQL instances", collect_cloud_sql_instances),
    ("Cloud Run services", collect_cloud_run_services),
    ("Cloud Functions", collect_cloud_functions),
]


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """Collect every resource type in each selected project."""
    result = CollectionResult(provider=PROVIDER_GCP)
    creds, default_project = get_credentials(credentials)
    projects = resolve_projects(creds, default_project, credentials)
    logger.info(f"Found {len(projects)} project(s) to scan")

    tasks = []
    for project_id in projects:
        for name, collect_fn in PROJECT_COLLECTORS:
            tasks.append((f"{name} in {project_id}", collect_fn, (creds, project_id)))

    parallel_collect(
        tasks,
        result,
        parallel_workers=int(credentials.get('parallelWorkers') or DEFAULT_PARALLEL_WORKERS),
        cancel=cancel,
    )
    logger.info(f"Collected {len(result.resources)} GCP resources")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_GCP,
    collect=collect,
    check_credentials=check_credentials,
    discover=list_projects,
)


def main():
    parser = argparse.ArgumentParser(description='CloudInv - Google Cloud Adapter')
    add_common_args(parser)
    parser.add_argument('--project', help='Specific project ID (default: all active)')
    parser.add_argument('--key-file', help='Service account JSON key file')
    parser.add_argument('--list-projects', action='store_true', help='List projects and exit')
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))

    if args.key_file:
        descriptor: Dict[str, Any] = {'type': 'service_account', 'keyFile': args.key_file}
    else:
        descriptor = {'type': 'gcloud'}
    if args.project:
        descriptor['projectId'] = args.project

    if args.list_projects:
        for project in list_projects(descriptor):
            print(f"{project['id']}  {project['name']}  ({project['state']})")
        sys.exit(0)

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
