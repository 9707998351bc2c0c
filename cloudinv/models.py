"""
Data models for CloudInv.
"""
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .constants import STATUS_DISCONNECTED, STATUS_ERROR

ResourceKey = Tuple[str, str, str]


@dataclass
class Resource:
    """
    Normalized inventory resource.

    (provider, kind, id) identifies a resource within a snapshot.
    """
    provider: str  # "aws", "azure", "gcp", "kubernetes", ...
    kind: str  # e.g., "EC2Instance", "AzureVM", "K8sPod"
    id: str
    name: str = ""
    location: str = ""  # region, zone, namespace or host

    # Owning account, subscription, project, cluster context or docker host
    account_id: Optional[str] = None

    # Capacity; None when the provider does not report one
    size_gb: Optional[float] = None

    # Relationships (e.g., source volume of a snapshot)
    parent_id: Optional[str] = None

    # Normalized scalar fields used for rendering and costing
    attributes: Dict[str, Any] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)

    # Full provider object for detail views
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> ResourceKey:
        return (self.provider, self.kind, self.id)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class Source:
    """A configured connection to one provider."""
    provider: str
    credentials_ref: str  # opaque handle into the CredentialStore
    status: str = STATUS_DISCONNECTED
    last_success: Optional[str] = None
    last_collected: Optional[str] = None  # set even when some resource types failed
    last_error: Optional[str] = None
    resource_count: int = 0

    def status_dict(self) -> Dict[str, Any]:
        """Point-in-time copy of this source's status for a snapshot."""
        return {
            'provider': self.provider,
            'status': self.status,
            'lastSuccess': self.last_success,
            'lastCollected': self.last_collected,
            'lastError': self.last_error,
            'resourceCount': self.resource_count,
        }


@dataclass
class CollectionResult:
    """
    Output of one adapter run: the resources it could collect plus non-fatal
    diagnostics for the resource types that failed.
    """
    provider: str
    resources: List[Resource] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.diagnostics)

    def extend(self, resources: List[Resource]) -> None:
        self.resources.extend(resources)

    def add_diagnostic(self, message: str) -> None:
        self.diagnostics.append(message)


@dataclass(frozen=True)
class Adapter:
    """
    Provider adapter entry in the provider-to-adapter registry.

    collect(credentials, cancel) returns a CollectionResult and should stop
    starting new API calls once cancel is set. check_credentials(credentials)
    probes connectivity and raises AuthError/TransientError on failure.
    discover(credentials) lists connection-setup choices (profiles,
    subscriptions, projects, contexts).
    """
    provider: str
    collect: Callable[[Dict[str, Any], threading.Event], CollectionResult]
    check_credentials: Callable[[Dict[str, Any]], bool]
    discover: Optional[Callable[[Dict[str, Any]], List[Dict[str, Any]]]] = None


@dataclass(frozen=True)
class Snapshot:
    """
    Point-in-time merged inventory. Never mutated after it is published.
    """
    resources: Dict[ResourceKey, Resource]
    per_source_status: Dict[str, Dict[str, Any]]
    generated_at: str

    def resource_list(self) -> List[Resource]:
        return list(self.resources.values())

    @property
    def failed_providers(self) -> List[str]:
        return sorted(
            provider for provider, status in self.per_source_status.items()
            if status.get('status') == STATUS_ERROR
        )

    @property
    def partial(self) -> bool:
        return bool(self.failed_providers)

    def raise_for_partial(self) -> None:
        """Raise PartialCollectionError if any source failed in this refresh."""
        if self.partial:
            from .utils import PartialCollectionError
            raise PartialCollectionError(
                self.failed_providers,
                {p: self.per_source_status[p].get('lastError') for p in self.failed_providers},
            )


@dataclass
class CostEstimate:
    """Derived cost of one priced resource. Never stored with a snapshot."""
    resource_id: str
    provider: str
    kind: str
    name: str
    location: str
    size_gb: Optional[float]
    unit_price: float
    pricing_basis: str
    hourly_cost: Optional[float] = None
    monthly_cost: Optional[float] = None  # None when size is unknown
    mock: bool = False

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'resourceId': self.resource_id,
            'name': self.name,
            'kind': self.kind,
            'location': self.location,
            'sizeGB': self.size_gb,
            'unitPrice': self.unit_price,
            'pricingBasis': self.pricing_basis,
            'hourlyCost': self.hourly_cost,
            'monthlyCost': self.monthly_cost,
            'mock': self.mock,
        }


@dataclass
class SizingSummary:
    """Aggregated sizing summary."""
    provider: str
    kind: str
    resource_count: int = 0
    total_gb: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return asdict(self)


def aggregate_sizing(resources: List[Resource]) -> List[SizingSummary]:
    """
    Aggregate resources into sizing summaries.
    """
    summaries: Dict[str, SizingSummary] = {}

    for resource in resources:
        key = f"{resource.provider}:{resource.kind}"

        if key not in summaries:
            summaries[key] = SizingSummary(
                provider=resource.provider,
                kind=resource.kind,
            )

        summaries[key].resource_count += 1
        summaries[key].total_gb += resource.size_gb or 0.0

    return list(summaries.values())
