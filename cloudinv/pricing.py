"""
Static price tables for the cost engine.

Prices are public list prices in USD. A table maps (provider, kind) to a set
of rates keyed by region or by a class attribute (instance type, storage
class, tier), always with a default row.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .constants import (
    KIND_AZURE_DISK_SNAPSHOT,
    KIND_AZURE_VM,
    KIND_CLOUD_SQL_INSTANCE,
    KIND_EBS_SNAPSHOT,
    KIND_EC2_INSTANCE,
    KIND_GCP_COMPUTE_INSTANCE,
    KIND_GCP_DISK_SNAPSHOT,
    KIND_GCS_BUCKET,
    KIND_RDS_CLUSTER_SNAPSHOT,
    KIND_RDS_SNAPSHOT,
    KIND_S3_BUCKET,
    PRICING_BASIS_GB_MONTH,
    PRICING_BASIS_HOUR,
    PROVIDER_AWS,
    PROVIDER_AZURE,
    PROVIDER_GCP,
)
from .models import Resource

logger = logging.getLogger(__name__)

# Month the tables below were last checked against the providers' price pages
PRICES_VERIFIED = "October 2026"

MATCH_EXACT = "exact"
MATCH_PREFIX = "prefix"
MATCH_CONTAINS = "contains"


@dataclass(frozen=True)
class PriceTable:
    """
    Rates for one (provider, kind).

    key: "location" to price by the resource's region, otherwise the
    attribute holding the class (e.g. "instance_type").
    rates: ordered (match value, unit price) pairs; first match wins.
    """
    basis: str
    default: float
    source: str
    key: str = "location"
    match: str = MATCH_EXACT
    rates: Tuple[Tuple[str, float], ...] = ()
    # (location prefix, multiplier) applied to hourly rates
    region_multipliers: Tuple[Tuple[str, float], ...] = ()
    # Storage charged on top of an hourly rate, per GB-month
    extra_gb_month: float = 0.0
    currency: str = "USD"

    def lookup_value(self, resource: Resource) -> str:
        if self.key == "location":
            return resource.location or ""
        value = resource.attributes.get(self.key)
        return "" if value is None else str(value)

    def unit_price(self, resource: Resource) -> float:
        value = self.lookup_value(resource).lower()
        price = self.default
        for candidate, rate in self.rates:
            candidate = candidate.lower()
            if self.match == MATCH_EXACT and value == candidate:
                price = rate
                break
            if self.match == MATCH_PREFIX and value.startswith(candidate):
                price = rate
                break
            if self.match == MATCH_CONTAINS and candidate in value:
                price = rate
                break

        location = (resource.location or "").lower()
        for prefix, multiplier in self.region_multipliers:
            if location.startswith(prefix):
                price *= multiplier
                break
        return price


# =============================================================================
# AWS
# =============================================================================

_AWS_SOURCE = "AWS Pricing API (Fallback Values)"

# https://aws.amazon.com/ebs/pricing/
AWS_EBS_SNAPSHOT = PriceTable(
    basis=PRICING_BASIS_GB_MONTH,
    default=0.05,
    source=_AWS_SOURCE,
    rates=(
        ("sa-east-1", 0.065),
        ("ap-south-1", 0.055),
        ("ca-central-1", 0.055),
    ),
)

# https://aws.amazon.com/rds/pricing/
AWS_RDS_SNAPSHOT = PriceTable(
    basis=PRICING_BASIS_GB_MONTH,
    default=0.095,
    source=_AWS_SOURCE,
    rates=(
        ("eu-central-1", 0.105),
        ("ap-northeast-1", 0.10),
        ("ap-southeast-1", 0.10),
        ("ap-southeast-2", 0.105),
        ("sa-east-1", 0.115),
        ("ap-south-1", 0.105),
        ("ca-central-1", 0.105),
    ),
)

AWS_EC2_INSTANCE = PriceTable(
    basis=PRICING_BASIS_HOUR,
    default=0.05,
    source=_AWS_SOURCE,
    key="instance_type",
    match=MATCH_PREFIX,
    rates=(
        ("t2.", 0.02),
        ("t3.", 0.03),
        ("m5.", 0.10),
        ("c5.", 0.08),
    ),
)

AWS_S3_BUCKET = PriceTable(
    basis=PRICING_BASIS_GB_MONTH,
    default=0.023,
    source=_AWS_SOURCE,
    key="storage_class",
    rates=(
        ("STANDARD", 0.023),
        ("STANDARD_IA", 0.0125),
        ("ONEZONE_IA", 0.01),
        ("GLACIER", 0.004),
        ("DEEP_ARCHIVE", 0.00099),
    ),
)

# =============================================================================
# Azure
# =============================================================================

_AZURE_SOURCE = "Azure Retail Prices API (Fallback Values)"

# https://azure.microsoft.com/en-us/pricing/details/managed-disks/
AZURE_DISK_SNAPSHOT = PriceTable(
    basis=PRICING_BASIS_GB_MONTH,
    default=0.05,
    source=_AZURE_SOURCE,
    rates=(
        ("australiaeast", 0.07),
        ("australiasoutheast", 0.07),
    ),
)

AZURE_VM = PriceTable(
    basis=PRICING_BASIS_HOUR,
    default=0.05,
    source=_AZURE_SOURCE,
    key="vm_size",
    match=MATCH_CONTAINS,
    rates=(
        ("Standard_B", 0.03),
        ("Standard_D", 0.10),
        ("Standard_E", 0.15),
    ),
)

# =============================================================================
# GCP
# =============================================================================

_GCP_SOURCE = "GCP Cloud Billing API (Fallback Values)"

# https://cloud.google.com/compute/disks-image-pricing
GCP_DISK_SNAPSHOT = PriceTable(
    basis=PRICING_BASIS_GB_MONTH,
    default=0.03,
    source=_GCP_SOURCE,
    rates=(
        ("us-central1", 0.026),
        ("us-east1", 0.026),
        ("us-west1", 0.026),
        ("europe-west1", 0.026),
        ("europe-west2", 0.031),
        ("europe-west3", 0.031),
        ("asia-east1", 0.031),
        ("asia-southeast1", 0.031),
        ("australia-southeast1", 0.036),
    ),
)

GCP_COMPUTE_INSTANCE = PriceTable(
    basis=PRICING_BASIS_HOUR,
    default=0.05,
    source=_GCP_SOURCE,
    key="machine_type",
    match=MATCH_CONTAINS,
    rates=(
        ("f1-micro", 0.01),
        ("g1-small", 0.02),
        ("e2-", 0.03),
        ("n1-standard", 0.05),
        ("n2-standard", 0.06),
        ("c2-", 0.09),
    ),
    region_multipliers=(
        ("australia-", 1.2),
        ("europe-", 1.2),
        ("asia-", 1.2),
    ),
)

GCP_CLOUD_SQL = PriceTable(
    basis=PRICING_BASIS_HOUR,
    default=0.10,
    source=_GCP_SOURCE,
    key="tier",
    match=MATCH_CONTAINS,
    rates=(
        ("db-f1-micro", 0.025),
        ("db-g1-small", 0.05),
        ("standard", 0.10),
        ("highmem", 0.15),
        ("highcpu", 0.12),
    ),
    extra_gb_month=0.17,
)

GCP_GCS_BUCKET = PriceTable(
    basis=PRICING_BASIS_GB_MONTH,
    default=0.02,
    source=_GCP_SOURCE,
    key="storage_class",
    rates=(
        ("STANDARD", 0.02),
        ("NEARLINE", 0.01),
        ("COLDLINE", 0.007),
        ("ARCHIVE", 0.004),
    ),
)


PRICE_TABLES: Dict[Tuple[str, str], PriceTable] = {
    (PROVIDER_AWS, KIND_EBS_SNAPSHOT): AWS_EBS_SNAPSHOT,
    (PROVIDER_AWS, KIND_RDS_SNAPSHOT): AWS_RDS_SNAPSHOT,
    (PROVIDER_AWS, KIND_RDS_CLUSTER_SNAPSHOT): AWS_RDS_SNAPSHOT,
    (PROVIDER_AWS, KIND_EC2_INSTANCE): AWS_EC2_INSTANCE,
    (PROVIDER_AWS, KIND_S3_BUCKET): AWS_S3_BUCKET,
    (PROVIDER_AZURE, KIND_AZURE_DISK_SNAPSHOT): AZURE_DISK_SNAPSHOT,
    (PROVIDER_AZURE, KIND_AZURE_VM): AZURE_VM,
    (PROVIDER_GCP, KIND_GCP_DISK_SNAPSHOT): GCP_DISK_SNAPSHOT,
    (PROVIDER_GCP, KIND_GCP_COMPUTE_INSTANCE): GCP_COMPUTE_INSTANCE,
    (PROVIDER_GCP, KIND_CLOUD_SQL_INSTANCE): GCP_CLOUD_SQL,
    (PROVIDER_GCP, KIND_GCS_BUCKET): GCP_GCS_BUCKET,
}


def get_price_table(provider: str, kind: str,
                    price_tables: Optional[Dict[Tuple[str, str], PriceTable]] = None) -> Optional[PriceTable]:
    """Price table for a kind, or None when the kind isn't priced."""
    return (price_tables if price_tables is not None else PRICE_TABLES).get((provider, kind))


def get_pricing_metadata(provider: str) -> Dict[str, str]:
    """Where a provider's prices come from and when they were last checked."""
    sources = sorted({
        table.source for (table_provider, _), table in PRICE_TABLES.items()
        if table_provider == provider
    })
    return {
        'source': ', '.join(sources) if sources else 'Default values',
        'lastVerified': PRICES_VERIFIED,
    }


def get_pricing_disclaimer() -> str:
    return (
        f"Cost estimates are approximations based on publicly available pricing information as of "
        f"{PRICES_VERIFIED}. Actual costs may vary based on your specific agreements, reserved capacity, "
        f"and other factors."
    )
