"""
Cost estimation engine.

Estimates are derived from a snapshot's resources and the static price
tables on every request; they are never stored with the snapshot. Kinds
without a price table are left out entirely so "no data" is never shown
as $0.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .constants import (
    COST_STATUS_ERROR,
    COST_STATUS_NO_DATA,
    COST_STATUS_OK,
    CURRENCY_USD,
    HOURS_PER_MONTH,
    KIND_AZURE_DISK_SNAPSHOT,
    KIND_EBS_SNAPSHOT,
    KIND_GCP_DISK_SNAPSHOT,
    KIND_RDS_SNAPSHOT,
    PRICED_PROVIDERS,
    PRICING_BASIS_HOUR,
    PROVIDER_AWS,
    PROVIDER_AZURE,
    PROVIDER_GCP,
    SNAPSHOT_KINDS,
    STATUS_ERROR,
    VIEW_KEYS,
)
from .models import CostEstimate, Resource
from .pricing import PRICE_TABLES, PriceTable, get_price_table, get_pricing_disclaimer, get_pricing_metadata
from .query import QueryService
from .utils import ConfigurationError

logger = logging.getLogger(__name__)

PROVIDER_LABELS = {
    PROVIDER_AWS: "AWS",
    PROVIDER_AZURE: "Azure",
    PROVIDER_GCP: "GCP",
}

COST_TYPE_ALL = "all"
COST_TYPE_SNAPSHOTS = "snapshots"
COST_TYPE_COMPUTE = "compute"
COST_TYPE_STORAGE = "storage"
COST_TYPES = (COST_TYPE_ALL, COST_TYPE_SNAPSHOTS, COST_TYPE_COMPUTE, COST_TYPE_STORAGE)


# =============================================================================
# Estimation
# =============================================================================

def estimate_cost(resource: Resource, table: PriceTable, mock: bool = False) -> CostEstimate:
    """
    Price one resource.

    Hourly tables give a monthly cost regardless of size (plus any per-GB
    storage charge when the size is known). GB-month tables need a size;
    without one the monthly cost is None.
    """
    unit_price = table.unit_price(resource)
    size = resource.size_gb

    if table.basis == PRICING_BASIS_HOUR:
        hourly = unit_price
        monthly = hourly * HOURS_PER_MONTH
        if table.extra_gb_month and size:
            monthly += size * table.extra_gb_month
    else:
        hourly = None
        monthly = size * unit_price if size is not None else None

    return CostEstimate(
        resource_id=resource.id,
        provider=resource.provider,
        kind=resource.kind,
        name=resource.name,
        location=resource.location,
        size_gb=size,
        unit_price=unit_price,
        pricing_basis=table.basis,
        hourly_cost=round(hourly, 4) if hourly is not None else None,
        monthly_cost=round(monthly, 2) if monthly is not None else None,
        mock=mock,
    )


def summarize(estimates: List[CostEstimate]) -> Dict[str, Any]:
    """Per-platform totals. Estimates without a monthly cost add nothing."""
    snapshot_storage = 0.0
    snapshot_cost = 0.0
    compute_cost = 0.0
    storage_cost = 0.0
    total = 0.0
    unpriced = 0

    for estimate in estimates:
        if estimate.monthly_cost is None:
            unpriced += 1
            continue
        total += estimate.monthly_cost
        if estimate.kind in SNAPSHOT_KINDS:
            snapshot_storage += estimate.size_gb or 0.0
            snapshot_cost += estimate.monthly_cost
        elif estimate.pricing_basis == PRICING_BASIS_HOUR:
            compute_cost += estimate.monthly_cost
        else:
            storage_cost += estimate.monthly_cost

    return {
        'TotalSnapshotStorage': round(snapshot_storage, 2),
        'TotalSnapshotCost': round(snapshot_cost, 2),
        'TotalComputeCost': round(compute_cost, 2),
        'TotalStorageCost': round(storage_cost, 2),
        'TotalMonthlyCost': round(total, 2),
        'PricedResources': len(estimates) - unpriced,
        'UnknownSizeResources': unpriced,
        'Currency': CURRENCY_USD,
    }


def estimate_costs(
    resources: List[Resource],
    price_tables: Optional[Dict[Tuple[str, str], PriceTable]] = None,
    mock: bool = False,
) -> Tuple[List[CostEstimate], Dict[str, Dict[str, Any]]]:
    """
    Price every resource whose kind has a price table.

    Returns:
        (per-resource estimates, per-platform summary)
    """
    price_tables = PRICE_TABLES if price_tables is None else price_tables
    estimates = []
    by_provider: Dict[str, List[CostEstimate]] = {}

    for resource in resources:
        table = get_price_table(resource.provider, resource.kind, price_tables)
        if table is None:
            continue
        estimate = estimate_cost(resource, table, mock=mock)
        estimates.append(estimate)
        by_provider.setdefault(resource.provider, []).append(estimate)

    summaries = {provider: summarize(items) for provider, items in by_provider.items()}
    logger.debug(f"Priced {len(estimates)} of {len(resources)} resources")
    return estimates, summaries


def _matches_type(estimate: CostEstimate, cost_type: str) -> bool:
    if cost_type == COST_TYPE_ALL:
        return True
    if cost_type == COST_TYPE_SNAPSHOTS:
        return estimate.kind in SNAPSHOT_KINDS
    if cost_type == COST_TYPE_COMPUTE:
        return estimate.pricing_basis == PRICING_BASIS_HOUR
    return estimate.kind not in SNAPSHOT_KINDS and estimate.pricing_basis != PRICING_BASIS_HOUR


# =============================================================================
# Sample data
# =============================================================================

def mock_resources(platform: str) -> List[Resource]:
    """Deterministic sample resources used when mock mode is requested."""
    if platform == PROVIDER_AWS:
        return [
            Resource(
                provider=PROVIDER_AWS, kind=KIND_EBS_SNAPSHOT, id="snap-0abc123456789def0",
                name="snap-0abc123456789def0", location="us-east-1", account_id="123456789012",
                size_gb=100.0, parent_id="vol-0abc123456789def0",
                attributes={'state': 'completed', 'start_time': '2023-05-15T10:30:00Z'},
            ),
            Resource(
                provider=PROVIDER_AWS, kind=KIND_EBS_SNAPSHOT, id="snap-0def987654321abc0",
                name="snap-0def987654321abc0", location="us-east-1", account_id="123456789012",
                size_gb=250.0, parent_id="vol-0def987654321abc0",
                attributes={'state': 'completed', 'start_time': '2023-05-10T08:15:00Z'},
            ),
            Resource(
                provider=PROVIDER_AWS, kind=KIND_RDS_SNAPSHOT, id="rds:database-1-snapshot-2023-05-01",
                name="rds:database-1-snapshot-2023-05-01", location="us-east-1", account_id="123456789012",
                size_gb=500.0, parent_id="database-1",
                attributes={'engine': 'postgres', 'status': 'available', 'snapshot_type': 'automated'},
            ),
        ]
    if platform == PROVIDER_AZURE:
        return [
            Resource(
                provider=PROVIDER_AZURE, kind=KIND_AZURE_DISK_SNAPSHOT,
                id="/subscriptions/00000000-0000-0000-0000-000000000000/resourceGroups/rg-prod"
                   "/providers/Microsoft.Compute/snapshots/snapshot-vm1-osdisk-20230501",
                name="snapshot-vm1-osdisk-20230501", location="eastus",
                size_gb=128.0, attributes={'resource_group': 'rg-prod', 'time_created': '2023-05-01T02:00:00Z'},
            ),
            Resource(
                provider=PROVIDER_AZURE, kind=KIND_AZURE_DISK_SNAPSHOT,
                id="/subscriptions/00000000-0000-0000-0000-000000000000/resourceGroups/rg-prod"
                   "/providers/Microsoft.Compute/snapshots/snapshot-vm2-datadisk-20230515",
                name="snapshot-vm2-datadisk-20230515", location="westeurope",
                size_gb=256.0, attributes={'resource_group': 'rg-prod', 'time_created': '2023-05-15T02:00:00Z'},
            ),
        ]
    if platform == PROVIDER_GCP:
        return [
            Resource(
                provider=PROVIDER_GCP, kind=KIND_GCP_DISK_SNAPSHOT,
                id="projects/sample-project/global/snapshots/snapshot-instance1-boot-disk",
                name="snapshot-instance1-boot-disk", location="us-central1", account_id="sample-project",
                size_gb=50.0, attributes={'status': 'READY', 'source_disk': 'instance1-boot-disk'},
            ),
            Resource(
                provider=PROVIDER_GCP, kind=KIND_GCP_DISK_SNAPSHOT,
                id="projects/sample-project/global/snapshots/snapshot-instance2-data-disk",
                name="snapshot-instance2-data-disk", location="europe-west1", account_id="sample-project",
                size_gb=200.0, attributes={'status': 'READY', 'source_disk': 'instance2-data-disk'},
            ),
        ]
    return []


# =============================================================================
# Response
# =============================================================================

@dataclass
class PlatformCosts:
    """Cost breakdown for one platform in a cost response."""
    provider: str
    estimates: List[CostEstimate] = field(default_factory=list)
    status: str = COST_STATUS_OK
    message: Optional[str] = None
    mock: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        for estimate in self.estimates:
            key = VIEW_KEYS.get(estimate.kind, estimate.kind)
            body.setdefault(key, []).append(estimate.to_dict())
        body['Summary'] = summarize(self.estimates)
        body['Status'] = self.status
        body['PricingSource'] = get_pricing_metadata(self.provider)
        body['Mock'] = self.mock
        if self.message:
            body['Message'] = self.message
        return body


def _parse_platforms(platform: Optional[str]) -> List[str]:
    if not platform or platform == 'all':
        return list(PRICED_PROVIDERS)
    if platform not in PRICED_PROVIDERS:
        raise ConfigurationError(
            f"Cost estimates are not available for platform '{platform}' "
            f"(expected one of: all, {', '.join(PRICED_PROVIDERS)})"
        )
    return [platform]


def build_cost_report(
    query: Optional[QueryService],
    platform: Optional[str] = None,
    cost_type: str = COST_TYPE_ALL,
    mock: bool = False,
) -> Dict[str, Any]:
    """
    Build the /api/costs response body.

    Raises:
        ConfigurationError: unknown platform or cost type
        EmptySnapshotError: real data requested but nothing collected yet
    """
    platforms = _parse_platforms(platform)
    if cost_type not in COST_TYPES:
        raise ConfigurationError(f"Unknown cost type '{cost_type}' (expected one of: {', '.join(COST_TYPES)})")

    per_source_status: Dict[str, Dict[str, Any]] = {}
    if not mock:
        snapshot = query.current()
        per_source_status = snapshot.per_source_status

    costs: Dict[str, Any] = {}
    all_estimates: List[CostEstimate] = []
    for provider in platforms:
        label = PROVIDER_LABELS[provider]
        if mock:
            resources = mock_resources(provider)
        else:
            resources = [r for r in snapshot.resource_list() if r.provider == provider]
        estimates, _ = estimate_costs(resources, mock=mock)
        estimates = sorted(
            (e for e in estimates if _matches_type(e, cost_type)),
            key=lambda e: (e.kind, e.resource_id),
        )
        all_estimates.extend(estimates)

        entry = PlatformCosts(provider=provider, estimates=estimates, mock=mock)
        source_status = per_source_status.get(provider)
        if mock:
            entry.message = f"Sample {label} data shown; these are not real resources or billing figures."
        elif source_status is None:
            entry.status = COST_STATUS_NO_DATA
            entry.message = f"{label} is not connected."
        elif source_status.get('status') == STATUS_ERROR and not estimates:
            entry.status = COST_STATUS_ERROR
            entry.message = f"Error collecting from {label}: {source_status.get('lastError')}"
        elif not estimates:
            entry.status = COST_STATUS_NO_DATA
            entry.message = f"No priced {label} resources found. Real data is being shown."
        costs[provider] = entry.to_dict()

    if len(platforms) > 1:
        costs['GlobalSummary'] = summarize(all_estimates)

    return {
        'costs': costs,
        'disclaimer': get_pricing_disclaimer(),
        'mock': mock,
    }
