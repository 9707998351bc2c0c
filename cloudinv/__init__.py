"""
CloudInv shared library.
"""
from . import constants
from .constants import (
    ALL_PROVIDERS,
    BYTES_PER_GB,
    DEFAULT_ADAPTER_TIMEOUT,
    DEFAULT_MAX_CONCURRENCY,
    PROVIDER_AWS,
    PROVIDER_AZURE,
    PROVIDER_DOCKER,
    PROVIDER_GCP,
    PROVIDER_KUBERNETES,
    PROVIDER_OPENSHIFT,
    PROVIDER_TERRAFORM,
    PROVIDER_VAULT,
    SNAPSHOT_KINDS,
    bytes_to_gb,
)
from .cost import build_cost_report, estimate_costs, mock_resources
from .credentials import CredentialStore, SourceRegistry, describe_credentials, validate_credentials
from .models import (
    Adapter,
    CollectionResult,
    CostEstimate,
    Resource,
    SizingSummary,
    Snapshot,
    Source,
    aggregate_sizing,
)
from .query import QueryFilter, QueryService
from .scheduler import AggregationScheduler
from .store import SnapshotStore, get_default_store
from .utils import (
    AuthError,
    CollectionError,
    ConfigurationError,
    EmptySnapshotError,
    PartialCollectionError,
    RefreshCancelledError,
    TransientError,
    classify_error,
    get_timestamp,
    setup_logging,
    write_json,
)

__all__ = [
    # Constants
    'constants',
    'ALL_PROVIDERS',
    'BYTES_PER_GB',
    'DEFAULT_ADAPTER_TIMEOUT',
    'DEFAULT_MAX_CONCURRENCY',
    'PROVIDER_AWS',
    'PROVIDER_AZURE',
    'PROVIDER_DOCKER',
    'PROVIDER_GCP',
    'PROVIDER_KUBERNETES',
    'PROVIDER_OPENSHIFT',
    'PROVIDER_TERRAFORM',
    'PROVIDER_VAULT',
    'SNAPSHOT_KINDS',
    'bytes_to_gb',
    # Models
    'Adapter',
    'CollectionResult',
    'CostEstimate',
    'Resource',
    'SizingSummary',
    'Snapshot',
    'Source',
    'aggregate_sizing',
    # Errors
    'AuthError',
    'CollectionError',
    'ConfigurationError',
    'EmptySnapshotError',
    'PartialCollectionError',
    'RefreshCancelledError',
    'TransientError',
    'classify_error',
    # Core services
    'AggregationScheduler',
    'CredentialStore',
    'QueryFilter',
    'QueryService',
    'SnapshotStore',
    'SourceRegistry',
    'build_cost_report',
    'describe_credentials',
    'estimate_costs',
    'get_default_store',
    'mock_resources',
    'validate_credentials',
    # Utils
    'get_timestamp',
    'setup_logging',
    'write_json',
]
