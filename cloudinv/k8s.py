"""
Kubernetes client utilities shared by the Kubernetes and OpenShift adapters.

This module provides functions to:
1. Build an API client from a kubeconfig file and context
2. List kubeconfig contexts for the connection-setup endpoints
3. Page through list calls and return plain API JSON dicts
"""
import logging
import os
import stat
import tempfile
import threading
from typing import Any, Callable, Dict, List, Optional

import yaml
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .constants import DEFAULT_K8S_PAGE_SIZE
from .utils import ConfigurationError

logger = logging.getLogger(__name__)

_SIZE_MULTIPLIERS = {
    'Pi': 1024.0 ** 2,   # Pebibyte
    'Ti': 1024.0,        # Tebibyte
    'Gi': 1.0,           # Gibibyte
    'Mi': 1 / 1024,      # Mebibyte
    'Ki': 1 / 1024 ** 2,  # Kibibyte
    'P': 1000.0 ** 5 / 1024 ** 3,
    'T': 1000.0 ** 4 / 1024 ** 3,
    'G': 1000.0 ** 3 / 1024 ** 3,
    'M': 1000.0 ** 2 / 1024 ** 3,
    'k': 1000.0 / 1024 ** 3,
    'K': 1000.0 / 1024 ** 3,
}


def parse_k8s_storage_size(size_str: str) -> Optional[float]:
    """
    Parse a Kubernetes quantity string to GB (GiB).

    Examples: "10Gi" -> 10.0, "512Mi" -> 0.5, "1Ti" -> 1024.0

    Returns None if the quantity can't be parsed.
    """
    if size_str is None or size_str == '':
        return None

    size_str = str(size_str).strip()
    unit = ''
    for suffix in _SIZE_MULTIPLIERS:
        if size_str.endswith(suffix):
            unit = suffix
            break
    num_str = size_str[:-len(unit)] if unit else size_str

    try:
        value = float(num_str)
    except ValueError:
        logger.warning(f"Could not parse storage size: {size_str}")
        return None

    if not unit:
        return value / 1024 ** 3
    return value * _SIZE_MULTIPLIERS[unit]


# =============================================================================
# Kubeconfig
# =============================================================================

def _kubeconfig_path(credentials: Dict[str, Any]) -> Optional[str]:
    path = credentials.get('kubeconfigPath')
    if path:
        return os.path.expanduser(path)
    return None


def list_contexts(credentials: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """
    List the contexts in a kubeconfig.

    Returns:
        [{"name", "cluster", "user", "namespace", "current"}, ...]

    Raises:
        ConfigurationError: kubeconfig missing or unreadable
    """
    credentials = credentials or {}
    try:
        contexts, active = k8s_config.list_kube_config_contexts(config_file=_kubeconfig_path(credentials))
    except (ConfigException, OSError) as e:
        raise ConfigurationError(f"Could not read kubeconfig: {e}", provider="kubernetes", original_error=e)

    active_name = (active or {}).get('name')
    result = []
    for ctx in contexts or []:
        details = ctx.get('context') or {}
        result.append({
            'name': ctx.get('name'),
            'cluster': details.get('cluster'),
            'user': details.get('user'),
            'namespace': details.get('namespace') or 'default',
            'current': ctx.get('name') == active_name,
        })
    return result


def write_private_kubeconfig(content: str) -> str:
    """
    Store an uploaded kubeconfig in a temp file readable only by this user.

    Returns:
        Path to the written file

    Raises:
        ConfigurationError: content is not a kubeconfig
    """
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Uploaded kubeconfig is not valid YAML: {e}", original_error=e)
    if not isinstance(parsed, dict) or not parsed.get('contexts') or not parsed.get('clusters'):
        raise ConfigurationError("Uploaded file is not a kubeconfig (no contexts/clusters)")

    fd, path = tempfile.mkstemp(prefix='cloudinv-kubeconfig-', suffix='.yaml')
    os.fchmod(fd, stat.S_IRUSR | stat.S_IWUSR)
    with os.fdopen(fd, 'w') as f:
        f.write(content)
    logger.info(f"Stored uploaded kubeconfig with {len(parsed['contexts'])} contexts")
    return path


def get_api_client(credentials: Dict[str, Any]) -> k8s_client.ApiClient:
    """
    Create an API client for the descriptor's kubeconfig and context.

    Raises:
        ConfigurationError: kubeconfig missing, unreadable or context unknown
    """
    path = _kubeconfig_path(credentials)
    context = credentials.get('context') or None
    try:
        return k8s_config.new_client_from_config(config_file=path, context=context)
    except (ConfigException, OSError) as e:
        where = path or 'default kubeconfig'
        raise ConfigurationError(
            f"Could not load {where}" + (f" context {context}" if context else "") + f": {e}",
            provider="kubernetes", original_error=e,
        )


def current_context(credentials: Dict[str, Any]) -> str:
    """Name of the context a descriptor resolves to."""
    if credentials.get('context'):
        return credentials['context']
    for ctx in list_contexts(credentials):
        if ctx['current']:
            return ctx['name']
    return 'default'


# =============================================================================
# Listing
# =============================================================================

def list_all(
    api_client: k8s_client.ApiClient,
    list_fn: Callable,
    *args,
    page_size: int = DEFAULT_K8S_PAGE_SIZE,
    cancel: Optional[threading.Event] = None,
    **kwargs,
) -> List[Dict[str, Any]]:
    """
    Call a list endpoint page by page and return every item as API JSON.

    Works with both typed list calls (returning V1*List models) and
    CustomObjectsApi calls (returning plain dicts).
    """
    items: List[Dict[str, Any]] = []
    token = None
    while True:
        if cancel is not None and cancel.is_set():
            break
        if token:
            kwargs['_continue'] = token
        response = list_fn(*args, limit=page_size, **kwargs)

        if isinstance(response, dict):
            page = response.get('items') or []
            token = (response.get('metadata') or {}).get('continue')
        else:
            page = [api_client.sanitize_for_serialization(item) for item in response.items or []]
            token = response.metadata._continue if response.metadata else None

        items.extend(page)
        if not token:
            break
    return items


def list_custom_objects(
    api_client: k8s_client.ApiClient,
    group: str,
    version: str,
    plural: str,
    cancel: Optional[threading.Event] = None,
) -> List[Dict[str, Any]]:
    """
    List a cluster-wide custom resource.

    Returns an empty list when the CRD isn't installed (404).
    """
    api = k8s_client.CustomObjectsApi(api_client)
    try:
        return list_all(api_client, api.list_cluster_custom_object, group, version, plural, cancel=cancel)
    except ApiException as e:
        if e.status == 404:
            logger.info(f"{plural}.{group} not available on this cluster")
            return []
        raise
