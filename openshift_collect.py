#!/usr/bin/env python3
"""
CloudInv - OpenShift Adapter

Collects everything the Kubernetes adapter does plus the OpenShift kinds:
projects and routes, cluster operators, version and infrastructure, builds
and image streams, security context constraints, ingress controllers,
machine config pools and OLM operator subscriptions. Everything is tagged
with provider "openshift".

Usage:
    python3 openshift_collect.py --context admin/api-ocp-example-com:6443
"""
import argparse
import logging
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import PROVIDER_OPENSHIFT
from cloudinv.k8s import current_context, get_api_client, list_contexts, list_custom_objects
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    normalize_all,
    normalize_olm_install_plan,
    normalize_olm_operator_group,
    normalize_olm_subscription,
    normalize_openshift_build_config,
    normalize_openshift_cluster_operator,
    normalize_openshift_cluster_version,
    normalize_openshift_image_stream,
    normalize_openshift_infrastructure,
    normalize_openshift_ingress_controller,
    normalize_openshift_machine_config_pool,
    normalize_openshift_project,
    normalize_openshift_route,
    normalize_openshift_scc,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import ConfigurationError, classify_error, parallel_collect, retry_with_backoff, setup_logging
from k8s_collect import CLUSTER_COLLECTORS, add_kubeconfig_args, build_tasks, kubeconfig_descriptor

logger = logging.getLogger(__name__)


def check_credentials(credentials: Dict[str, Any]) -> bool:
    """
    Verify the context reaches an OpenShift API server.

    Raises:
        AuthError, TransientError, ConfigurationError (plain Kubernetes cluster)
    """
    api_client = get_api_client(credentials)
    api = k8s_client.CustomObjectsApi(api_client)
    try:
        api.list_cluster_custom_object('config.openshift.io', 'v1', 'clusterversions', limit=1)
    except ApiException as e:
        if e.status == 404:
            raise ConfigurationError(
                f"{current_context(credentials)} is not an OpenShift cluster (no config.openshift.io API)",
                provider=PROVIDER_OPENSHIFT, original_error=e,
            ) from e
        raise classify_error(e, "reach the OpenShift API server", PROVIDER_OPENSHIFT) from e
    except Exception as e:
        raise classify_error(e, "reach the OpenShift API server", PROVIDER_OPENSHIFT) from e
    logger.info(f"Connected to OpenShift context {current_context(credentials)}")
    return True


def _collect_custom(label: str, group: str, plural: str, normalize_fn: Callable, api_client,
                    context: str, cancel: Optional[threading.Event], version: str = 'v1') -> List[Resource]:
    try:
        items = list_custom_objects(api_client, group, version, plural, cancel)
    except Exception as e:
        raise classify_error(e, f"collect {label}", PROVIDER_OPENSHIFT) from e
    resources = normalize_all(normalize_fn, items, context)
    logger.info(f"[{context}] Found {len(resources)} {label}")
    return resources


@retry_with_backoff()
def collect_projects(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                     cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect projects visible to the user."""
    return _collect_custom("projects", 'project.openshift.io', 'projects',
                           normalize_openshift_project, api_client, context, cancel)


@retry_with_backoff()
def collect_routes(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                   cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect routes in all namespaces."""
    return _collect_custom("routes", 'route.openshift.io', 'routes',
                           normalize_openshift_route, api_client, context, cancel)


@retry_with_backoff()
def collect_cluster_operators(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                              cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect cluster operators."""
    return _collect_custom("cluster operators", 'config.openshift.io', 'clusteroperators',
                           normalize_openshift_cluster_operator, api_client, context, cancel)


@retry_with_backoff()
def collect_cluster_versions(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                             cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect the cluster version object."""
    return _collect_custom("cluster versions", 'config.openshift.io', 'clusterversions',
                           normalize_openshift_cluster_version, api_client, context, cancel)


@retry_with_backoff()
def collect_infrastructures(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                            cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect the platform and topology of the cluster."""
    return _collect_custom("infrastructures", 'config.openshift.io', 'infrastructures',
                           normalize_openshift_infrastructure, api_client, context, cancel)


@retry_with_backoff()
def collect_build_configs(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                          cancel: Optional[threading.Event] = None) -> List[Resource]:
    return _collect_custom("build configs", 'build.openshift.io', 'buildconfigs',
                           normalize_openshift_build_config, api_client, context, cancel)


@retry_with_backoff()
def collect_image_streams(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                          cancel: Optional[threading.Event] = None) -> List[Resource]:
    return _collect_custom("image streams", 'image.openshift.io', 'imagestreams',
                           normalize_openshift_image_stream, api_client, context, cancel)


@retry_with_backoff()
def collect_security_context_constraints(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                                         cancel: Optional[threading.Event] = None) -> List[Resource]:
    return _collect_custom("security context constraints", 'security.openshift.io',
                           'securitycontextconstraints', normalize_openshift_scc, api_client, context, cancel)


@retry_with_backoff()
def collect_ingress_controllers(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                                cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect ingress controllers (normally in openshift-ingress-operator)."""
    return _collect_custom("ingress controllers", 'operator.openshift.io', 'ingresscontrollers',
                           normalize_openshift_ingress_controller, api_client, context, cancel)


@retry_with_backoff()
def collect_machine_config_pools(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                                 cancel: Optional[threading.Event] = None) -> List[Resource]:
    return _collect_custom("machine config pools", 'machineconfiguration.openshift.io', 'machineconfigpools',
                           normalize_openshift_machine_config_pool, api_client, context, cancel)


# OLM kinds; absent on clusters without the Operator Lifecycle Manager

@retry_with_backoff()
def collect_subscriptions(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                          cancel: Optional[threading.Event] = None) -> List[Resource]:
    """Collect operator subscriptions in all namespaces."""
    return _collect_custom("operator subscriptions", 'operators.coreos.com', 'subscriptions',
                           normalize_olm_subscription, api_client, context, cancel, version='v1alpha1')


@retry_with_backoff()
def collect_install_plans(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                          cancel: Optional[threading.Event] = None) -> List[Resource]:
    return _collect_custom("install plans", 'operators.coreos.com', 'installplans',
                           normalize_olm_install_plan, api_client, context, cancel, version='v1alpha1')


@retry_with_backoff()
def collect_operator_groups(api_client, context: str, provider: str = PROVIDER_OPENSHIFT,
                            cancel: Optional[threading.Event] = None) -> List[Resource]:
    return _collect_custom("operator groups", 'operators.coreos.com', 'operatorgroups',
                           normalize_olm_operator_group, api_client, context, cancel)


OPENSHIFT_COLLECTORS: List[Tuple[str, Callable]] = CLUSTER_COLLECTORS + [
    ("Projects", collect_projects),
    ("Routes", collect_routes),
    ("ClusterOperators", collect_cluster_operators),
    ("ClusterVersions", collect_cluster_versions),
    ("Infrastructures", collect_infrastructures),
    ("BuildConfigs", collect_build_configs),
    ("ImageStreams", collect_image_streams),
    ("SecurityContextConstraints", collect_security_context_constraints),
    ("IngressControllers", collect_ingress_controllers),
    ("MachineConfigPools", collect_machine_config_pools),
    ("Subscriptions", collect_subscriptions),
    ("InstallPlans", collect_install_plans),
    ("OperatorGroups", collect_operator_groups),
]


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """Collect Kubernetes and OpenShift kinds from the descriptor's context."""
    result = CollectionResult(provider=PROVIDER_OPENSHIFT)
    api_client = get_api_client(credentials)
    context = current_context(credentials)

    parallel_collect(
        build_tasks(OPENSHIFT_COLLECTORS, api_client, context, PROVIDER_OPENSHIFT, cancel),
        result,
        parallel_workers=int(credentials.get('parallelWorkers') or 1),
        cancel=cancel,
    )
    logger.info(f"Collected {len(result.resources)} resources from {context}")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_OPENSHIFT,
    collect=collect,
    check_credentials=check_credentials,
    discover=list_contexts,
)


def main():
    parser = argparse.ArgumentParser(description='CloudInv - OpenShift Adapter')
    add_common_args(parser)
    add_kubeconfig_args(parser)
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))
    descriptor = kubeconfig_descriptor(args)

    if args.list_contexts:
        for ctx in list_contexts(descriptor):
            print(f"{'*' if ctx['current'] else ' '} {ctx['name']}")
        sys.exit(0)

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
