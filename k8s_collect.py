#!/usr/bin/env python3
"""
CloudInv - Kubernetes Adapter

Collects nodes, namespaces, pods, deployments, statefulsets, services,
persistent volumes and claims, storage classes, and CSI volume snapshots
from one kubeconfig context. The OpenShift adapter reuses these collectors.

Usage:
    python3 k8s_collect.py
    python3 k8s_collect.py --kubeconfig ~/.kube/config --context prod
    python3 k8s_collect.py --list-contexts
"""
import argparse
import logging
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client as k8s_client

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import PROVIDER_KUBERNETES
from cloudinv.k8s import current_context, get_api_client, list_all, list_contexts, list_custom_objects
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    normalize_all,
    normalize_k8s_deployment,
    normalize_k8s_namespace,
    normalize_k8s_node,
    normalize_k8s_pod,
    normalize_k8s_pv,
    normalize_k8s_pvc,
    normalize_k8s_service,
    normalize_k8s_statefulset,
    normalize_k8s_storage_class,
    normalize_k8s_volume_snapshot,
    normalize_k8s_volume_snapshot_class,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import classify_error, parallel_collect, retry_with_backoff, setup_logging

logger = logging.getLogger(__name__)

SNAPSHOT_GROUP = 'snapshot.storage.k8s.io'
SNAPSHOT_VERSION = 'v1'


def check_credentials(credentials: Dict[str, Any], provider: str = PROVIDER_KUBERNETES) -> bool:
    """
    Verify the context reaches an API server.

    Raises:
        AuthError, TransientError, ConfigurationError
    """
    api_client = get_api_client(credentials)
    try:
        version = k8s_client.VersionApi(api_client).get_code()
    except Exception as e:
        raise classify_error(e, "reach the Kubernetes API server", provider) from e
    logger.info(f"Connected to {current_context(credentials)} (server {version.git_version})")
    return True


# =============================================================================
# Collectors
# =============================================================================

def _collect_typed(label: str, list_fn: Callable, normalize_fn: Callable, api_client,
                   context: str, provider: str, cancel: Optional[threading.Event]) -> List[Resource]:
    try:
        items = list_all(api_client, list_fn, cancel=cancel)
    except Exception as e:
        raise classify_error(e, f"collect {label}", provider) from e
    resources = normalize_all(normalize_fn, items, context, provider)
    logger.info(f"[{context}] Found {len(resources)} {label}")
    return resources


@retry_with_backoff()
def collect_nodes(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                  cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect cluster nodes."""
    core = k8s_client.CoreV1Api(api_client)
    return _collect_typed("nodes", core.list_node, normalize_k8s_node, api_client, context, provider, cancel)


@retry_with_backoff()
def collect_namespaces(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                       cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect namespaces."""
    core = k8s_client.CoreV1Api(api_client)
    return _collect_typed("namespaces", core.list_namespace, normalize_k8s_namespace,
                          api_client, context, provider, cancel)


@retry_with_backoff()
def collect_pods(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                 cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect pods in all namespaces."""
    core = k8s_client.CoreV1Api(api_client)
    return _collect_typed("pods", core.list_pod_for_all_namespaces, normalize_k8s_pod,
                          api_client, context, provider, cancel)


@retry_with_backoff()
def collect_deployments(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                        cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect deployments in all namespaces."""
    apps = k8s_client.AppsV1Api(api_client)
    return _collect_typed("deployments", apps.list_deployment_for_all_namespaces, normalize_k8s_deployment,
                          api_client, context, provider, cancel)


@retry_with_backoff()
def collect_statefulsets(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                         cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect statefulsets in all namespaces."""
    apps = k8s_client.AppsV1Api(api_client)
    return _collect_typed("statefulsets", apps.list_stateful_set_for_all_namespaces, normalize_k8s_statefulset,
                          api_client, context, provider, cancel)


@retry_with_backoff()
def collect_services(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                     cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect services in all namespaces."""
    core = k8s_client.CoreV1Api(api_client)
    return _collect_typed("services", core.list_service_for_all_namespaces, normalize_k8s_service,
                          api_client, context, provider, cancel)


@retry_with_backoff()
def collect_persistent_volumes(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                               cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect persistent volumes."""
    core = k8s_client.CoreV1Api(api_client)
    return _collect_typed("persistent volumes", core.list_persistent_volume, normalize_k8s_pv,
                          api_client, context, provider, cancel)


@retry_with_backoff()
def collect_persistent_volume_claims(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                                     cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect persistent volume claims in all namespaces."""
    core = k8s_client.CoreV1Api(api_client)
    return _collect_typed("persistent volume claims", core.list_persistent_volume_claim_for_all_namespaces,
                          normalize_k8s_pvc, api_client, context, provider, cancel)


@retry_with_backoff()
def collect_storage_classes(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                            cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect storage classes."""
    storage = k8s_client.StorageV1Api(api_client)
    return _collect_typed("storage classes", storage.list_storage_class, normalize_k8s_storage_class,
                          api_client, context, provider, cancel)


@retry_with_backoff()
def collect_volume_snapshot_classes(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                                    cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect CSI volume snapshot classes (empty if the CRD is absent)."""
    try:
        items = list_custom_objects(api_client, SNAPSHOT_GROUP, SNAPSHOT_VERSION, 'volumesnapshotclasses', cancel)
    except Exception as e:
        raise classify_error(e, "collect volume snapshot classes", provider) from e
    resources = normalize_all(normalize_k8s_volume_snapshot_class, items, context, provider)
    logger.info(f"[{context}] Found {len(resources)} volume snapshot classes")
    return resources


@retry_with_backoff()
def collect_volume_snapshots(api_client, context: str, provider: str = PROVIDER_KUBERNETES,
                             cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect CSI volume snapshots in all namespaces (empty if the CRD is absent)."""
    try:
        items = list_custom_objects(api_client, SNAPSHOT_GROUP, SNAPSHOT_VERSION, 'volumesnapshots', cancel)
    except Exception as e:
        raise classify_error(e, "collect volume snapshots", provider) from e
    resources = normalize_all(normalize_k8s_volume_snapshot, items, context, provider)
    logger.info(f"[{context}] Found {len(resources)} volume snapshots")
    return resources


CLUSTER_COLLECTORS: List[Tuple[str, Callable]] = [
    ("Nodes", collect_nodes),
    ("Namespaces", collect_namespaces),
    ("Pods", collect_pods),
    ("Deployments", collect_deployments),
    ("StatefulSets", collect_statefulsets),
    ("Services", collect_services),
    ("PersistentVolumes", collect_persistent_volumes),
    ("PersistentVolumeClaims", collect_persistent_volume_claims),
    ("StorageClasses", collect_storage_classes),
    ("VolumeSnapshotClasses", collect_volume_snapshot_classes),
    ("VolumeSnapshots", collect_volume_snapshots),
]


def build_tasks(collectors: List[Tuple[str, Callable]], api_client, context: str, provider: str,
                cancel: Optional[threading.Event]) -> List[Tuple[str, Callable, tuple]]:
    return [(name, fn, (api_client, context, provider, cancel)) for name, fn in collectors]


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """Collect every workload and storage kind from the descriptor's context."""
    result = CollectionResult(provider=PROVIDER_KUBERNETES)
    api_client = get_api_client(credentials)
    context = current_context(credentials)

    parallel_collect(
        build_tasks(CLUSTER_COLLECTORS, api_client, context, PROVIDER_KUBERNETES, cancel),
        result,
        parallel_workers=int(credentials.get('parallelWorkers') or 1),
        cancel=cancel,
    )
    logger.info(f"Collected {len(result.resources)} resources from {context}")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_KUBERNETES,
    collect=collect,
    check_credentials=check_credentials,
    discover=list_contexts,
)


def kubeconfig_descriptor(args) -> Dict[str, Any]:
    descriptor: Dict[str, Any] = {'type': 'kubeconfig'}
    if args.kubeconfig:
        descriptor['kubeconfigPath'] = args.kubeconfig
    if args.context:
        descriptor['context'] = args.context
    return descriptor


def add_kubeconfig_args(parser) -> None:
    parser.add_argument('--kubeconfig', help='Path to kubeconfig (default: $KUBECONFIG or ~/.kube/config)')
    parser.add_argument('--context', help='Kubeconfig context (default: current context)')
    parser.add_argument('--list-contexts', action='store_true', help='List kubeconfig contexts and exit')


def main():
    parser = argparse.ArgumentParser(description='CloudInv - Kubernetes Adapter')
    add_common_args(parser)
    add_kubeconfig_args(parser)
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))
    descriptor = kubeconfig_descriptor(args)

    if args.list_contexts:
        for ctx in list_contexts(descriptor):
            marker = '*' if ctx['current'] else ' '
            print(f"{marker} {ctx['name']}  (cluster {ctx['cluster']})")
        sys.exit(0)

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
