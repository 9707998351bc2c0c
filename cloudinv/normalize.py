"""
Normalization layer.

One pure function per provider object type, each mapping a provider-native
payload (a plain dict: boto3 responses, Azure ``as_dict()``, proto-plus
``to_dict()``, Kubernetes ``sanitize_for_serialization()``, Docker API
JSON, Vault API JSON, Terraform state JSON) to a Resource, or to None when
the payload can't identify a resource. Malformed payloads are logged at
DEBUG and skipped, never raised.
"""
import logging
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from .constants import (
    KIND_AZURE_AKS_CLUSTER,
    KIND_AZURE_BLOB_CONTAINER,
    KIND_AZURE_COSMOSDB,
    KIND_AZURE_DISK,
    KIND_AZURE_DISK_SNAPSHOT,
    KIND_AZURE_RESOURCE_GROUP,
    KIND_AZURE_SQL_DATABASE,
    KIND_AZURE_STORAGE_ACCOUNT,
    KIND_AZURE_VM,
    KIND_AZURE_VMSS,
    KIND_AZURE_VNET,
    KIND_CLOUD_FUNCTION,
    KIND_CLOUD_RUN_SERVICE,
    KIND_CLOUD_SQL_INSTANCE,
    KIND_DOCKER_CONTAINER,
    KIND_DOCKER_IMAGE,
    KIND_DOCKER_NETWORK,
    KIND_DOCKER_VOLUME,
    KIND_DYNAMODB_TABLE,
    KIND_EBS_SNAPSHOT,
    KIND_EBS_VOLUME,
    KIND_EC2_INSTANCE,
    KIND_EFS_FILESYSTEM,
    KIND_GCP_COMPUTE_INSTANCE,
    KIND_GCP_DISK,
    KIND_GCP_DISK_SNAPSHOT,
    KIND_GCS_BUCKET,
    KIND_K8S_DEPLOYMENT,
    KIND_K8S_NAMESPACE,
    KIND_K8S_NODE,
    KIND_K8S_POD,
    KIND_K8S_PV,
    KIND_K8S_PVC,
    KIND_K8S_SERVICE,
    KIND_K8S_STATEFULSET,
    KIND_K8S_STORAGE_CLASS,
    KIND_K8S_VOLUME_SNAPSHOT,
    KIND_K8S_VOLUME_SNAPSHOT_CLASS,
    KIND_LAMBDA_FUNCTION,
    KIND_OLM_INSTALL_PLAN,
    KIND_OLM_OPERATOR_GROUP,
    KIND_OLM_SUBSCRIPTION,
    KIND_OPENSHIFT_BUILD_CONFIG,
    KIND_OPENSHIFT_CLUSTER_OPERATOR,
    KIND_OPENSHIFT_CLUSTER_VERSION,
    KIND_OPENSHIFT_IMAGE_STREAM,
    KIND_OPENSHIFT_INFRASTRUCTURE,
    KIND_OPENSHIFT_INGRESS_CONTROLLER,
    KIND_OPENSHIFT_MACHINE_CONFIG_POOL,
    KIND_OPENSHIFT_PROJECT,
    KIND_OPENSHIFT_ROUTE,
    KIND_OPENSHIFT_SCC,
    KIND_RDS_CLUSTER_SNAPSHOT,
    KIND_RDS_INSTANCE,
    KIND_RDS_SNAPSHOT,
    KIND_S3_BUCKET,
    KIND_TERRAFORM_OUTPUT,
    KIND_TERRAFORM_PROVIDER,
    KIND_TERRAFORM_RESOURCE,
    KIND_VAULT_AUDIT_DEVICE,
    KIND_VAULT_AUTH_METHOD,
    KIND_VAULT_POLICY,
    KIND_VAULT_SECRET_ENGINE,
    KIND_VAULT_SERVER,
    KIND_VPC,
    PROVIDER_AWS,
    PROVIDER_AZURE,
    PROVIDER_DOCKER,
    PROVIDER_GCP,
    PROVIDER_KUBERNETES,
    PROVIDER_OPENSHIFT,
    PROVIDER_TERRAFORM,
    PROVIDER_VAULT,
    bytes_to_gb,
)
from .k8s import parse_k8s_storage_size
from .models import Resource
from .utils import get_name_from_tags, tags_to_dict, to_iso

logger = logging.getLogger(__name__)

Normalizer = Callable[..., Optional[Resource]]


def normalizer(kind: str) -> Callable[[Normalizer], Normalizer]:
    """Turn malformed-payload errors into a logged skip."""
    def decorator(func: Normalizer) -> Normalizer:
        @wraps(func)
        def wrapper(raw: Any, *args, **kwargs) -> Optional[Resource]:
            if not isinstance(raw, dict):
                logger.debug(f"Skipping {kind}: expected a mapping, got {type(raw).__name__}")
                return None
            try:
                return func(raw, *args, **kwargs)
            except (KeyError, TypeError, ValueError, AttributeError, IndexError) as e:
                logger.debug(f"Skipping malformed {kind}: {e}")
                return None
        return wrapper
    return decorator


def normalize_all(func: Normalizer, items: List[Any], *args, **kwargs) -> List[Resource]:
    """Apply a normalizer to each item, dropping skipped ones."""
    resources = []
    for item in items:
        resource = func(item, *args, **kwargs)
        if resource is not None:
            resources.append(resource)
    return resources


def _scalar(value: Any) -> Any:
    """Reduce a value to something an attribute may hold (str, int, float, bool)."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(v) for v in value)
    return to_iso(value)


def _attrs(**fields: Any) -> Dict[str, Any]:
    """Build an attributes mapping, dropping unset fields."""
    return {k: _scalar(v) for k, v in fields.items() if v is not None and v != ''}


def _float(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    return float(value)


def _last_segment(value: Optional[str]) -> str:
    """Last path segment of an ARM id or GCP URL."""
    if not value:
        return ''
    return str(value).rstrip('/').split('/')[-1]


def _region_from_zone(zone: str) -> str:
    """us-central1-a -> us-central1"""
    zone = _last_segment(zone)
    parts = zone.split('-')
    return '-'.join(parts[:-1]) if len(parts) > 2 else zone


def _missing(kind: str, field_name: str) -> None:
    logger.debug(f"Skipping {kind} without {field_name}")


# =============================================================================
# AWS (boto3 response dicts)
# =============================================================================

@normalizer(KIND_EC2_INSTANCE)
def normalize_ec2_instance(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    instance_id = raw.get('InstanceId')
    if not instance_id:
        _missing(KIND_EC2_INSTANCE, 'InstanceId')
        return None
    tags = tags_to_dict(raw.get('Tags'))
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_EC2_INSTANCE,
        id=instance_id,
        name=get_name_from_tags(tags, instance_id),
        location=region,
        account_id=account_id,
        attributes=_attrs(
            instance_type=raw.get('InstanceType'),
            state=(raw.get('State') or {}).get('Name'),
            availability_zone=(raw.get('Placement') or {}).get('AvailabilityZone'),
            platform=raw.get('PlatformDetails') or raw.get('Platform'),
            vpc_id=raw.get('VpcId'),
            private_ip=raw.get('PrivateIpAddress'),
            launch_time=raw.get('LaunchTime'),
            volume_count=len(raw.get('BlockDeviceMappings') or []),
        ),
        tags=tags,
        raw=raw,
    )


@normalizer(KIND_EBS_VOLUME)
def normalize_ebs_volume(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    volume_id = raw.get('VolumeId')
    if not volume_id:
        _missing(KIND_EBS_VOLUME, 'VolumeId')
        return None
    tags = tags_to_dict(raw.get('Tags'))
    attachments = raw.get('Attachments') or []
    attached_instance = attachments[0].get('InstanceId') if attachments else None
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_EBS_VOLUME,
        id=volume_id,
        name=get_name_from_tags(tags, volume_id),
        location=region,
        account_id=account_id,
        size_gb=_float(raw.get('Size')),
        parent_id=attached_instance,
        attributes=_attrs(
            volume_type=raw.get('VolumeType'),
            state=raw.get('State'),
            encrypted=raw.get('Encrypted'),
            iops=raw.get('Iops'),
            availability_zone=raw.get('AvailabilityZone'),
            create_time=raw.get('CreateTime'),
        ),
        tags=tags,
        raw=raw,
    )


@normalizer(KIND_EBS_SNAPSHOT)
def normalize_ebs_snapshot(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    snapshot_id = raw.get('SnapshotId')
    if not snapshot_id:
        _missing(KIND_EBS_SNAPSHOT, 'SnapshotId')
        return None
    tags = tags_to_dict(raw.get('Tags'))
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_EBS_SNAPSHOT,
        id=snapshot_id,
        name=get_name_from_tags(tags, snapshot_id),
        location=region,
        account_id=account_id or raw.get('OwnerId'),
        size_gb=_float(raw.get('VolumeSize')),
        parent_id=raw.get('VolumeId'),
        attributes=_attrs(
            state=raw.get('State'),
            start_time=raw.get('StartTime'),
            encrypted=raw.get('Encrypted'),
            storage_tier=raw.get('StorageTier'),
            description=raw.get('Description'),
        ),
        tags=tags,
        raw=raw,
    )


@normalizer(KIND_RDS_INSTANCE)
def normalize_rds_instance(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    identifier = raw.get('DBInstanceIdentifier')
    if not identifier:
        _missing(KIND_RDS_INSTANCE, 'DBInstanceIdentifier')
        return None
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_RDS_INSTANCE,
        id=raw.get('DBInstanceArn') or identifier,
        name=identifier,
        location=region,
        account_id=account_id,
        size_gb=_float(raw.get('AllocatedStorage')),
        parent_id=raw.get('DBClusterIdentifier'),
        attributes=_attrs(
            engine=raw.get('Engine'),
            engine_version=raw.get('EngineVersion'),
            instance_class=raw.get('DBInstanceClass'),
            status=raw.get('DBInstanceStatus'),
            storage_type=raw.get('StorageType'),
            multi_az=raw.get('MultiAZ'),
            encrypted=raw.get('StorageEncrypted'),
        ),
        tags=tags_to_dict(raw.get('TagList')),
        raw=raw,
    )


@normalizer(KIND_RDS_SNAPSHOT)
def normalize_rds_snapshot(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    identifier = raw.get('DBSnapshotIdentifier')
    if not identifier:
        _missing(KIND_RDS_SNAPSHOT, 'DBSnapshotIdentifier')
        return None
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_RDS_SNAPSHOT,
        id=raw.get('DBSnapshotArn') or identifier,
        name=identifier,
        location=region,
        account_id=account_id,
        size_gb=_float(raw.get('AllocatedStorage')),
        parent_id=raw.get('DBInstanceIdentifier'),
        attributes=_attrs(
            engine=raw.get('Engine'),
            status=raw.get('Status'),
            snapshot_type=raw.get('SnapshotType'),
            snapshot_create_time=raw.get('SnapshotCreateTime'),
            encrypted=raw.get('Encrypted'),
        ),
        tags=tags_to_dict(raw.get('TagList')),
        raw=raw,
    )


@normalizer(KIND_RDS_CLUSTER_SNAPSHOT)
def normalize_rds_cluster_snapshot(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    identifier = raw.get('DBClusterSnapshotIdentifier')
    if not identifier:
        _missing(KIND_RDS_CLUSTER_SNAPSHOT, 'DBClusterSnapshotIdentifier')
        return None
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_RDS_CLUSTER_SNAPSHOT,
        id=raw.get('DBClusterSnapshotArn') or identifier,
        name=identifier,
        location=region,
        account_id=account_id,
        size_gb=_float(raw.get('AllocatedStorage')),
        parent_id=raw.get('DBClusterIdentifier'),
        attributes=_attrs(
            engine=raw.get('Engine'),
            status=raw.get('Status'),
            snapshot_type=raw.get('SnapshotType'),
            snapshot_create_time=raw.get('SnapshotCreateTime'),
            encrypted=raw.get('StorageEncrypted'),
        ),
        tags=tags_to_dict(raw.get('TagList')),
        raw=raw,
    )


@normalizer(KIND_S3_BUCKET)
def normalize_s3_bucket(raw: Dict, account_id: Optional[str] = None) -> Optional[Resource]:
    """raw is a list_buckets entry enriched with Region, Tags and optional StorageClass/SizeBytes."""
    name = raw.get('Name')
    if not name:
        _missing(KIND_S3_BUCKET, 'Name')
        return None
    size_bytes = raw.get('SizeBytes')
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_S3_BUCKET,
        id=name,
        name=name,
        location=raw.get('Region') or 'us-east-1',
        account_id=account_id,
        size_gb=bytes_to_gb(size_bytes) if size_bytes is not None else None,
        attributes=_attrs(
            creation_date=raw.get('CreationDate'),
            storage_class=raw.get('StorageClass') or 'STANDARD',
            versioning=raw.get('Versioning'),
        ),
        tags=tags_to_dict(raw.get('Tags')),
        raw=raw,
    )


@normalizer(KIND_DYNAMODB_TABLE)
def normalize_dynamodb_table(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    table_name = raw.get('TableName')
    if not table_name:
        _missing(KIND_DYNAMODB_TABLE, 'TableName')
        return None
    size_bytes = raw.get('TableSizeBytes')
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_DYNAMODB_TABLE,
        id=raw.get('TableArn') or table_name,
        name=table_name,
        location=region,
        account_id=account_id,
        size_gb=bytes_to_gb(size_bytes) if size_bytes is not None else None,
        attributes=_attrs(
            status=raw.get('TableStatus'),
            item_count=raw.get('ItemCount'),
            billing_mode=(raw.get('BillingModeSummary') or {}).get('BillingMode', 'PROVISIONED'),
            creation_date=raw.get('CreationDateTime'),
        ),
        raw=raw,
    )


@normalizer(KIND_VPC)
def normalize_vpc(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    vpc_id = raw.get('VpcId')
    if not vpc_id:
        _missing(KIND_VPC, 'VpcId')
        return None
    tags = tags_to_dict(raw.get('Tags'))
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_VPC,
        id=vpc_id,
        name=get_name_from_tags(tags, vpc_id),
        location=region,
        account_id=account_id or raw.get('OwnerId'),
        attributes=_attrs(
            state=raw.get('State'),
            cidr_block=raw.get('CidrBlock'),
            is_default=raw.get('IsDefault'),
        ),
        tags=tags,
        raw=raw,
    )


@normalizer(KIND_LAMBDA_FUNCTION)
def normalize_lambda_function(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    function_name = raw.get('FunctionName')
    if not function_name:
        _missing(KIND_LAMBDA_FUNCTION, 'FunctionName')
        return None
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_LAMBDA_FUNCTION,
        id=raw.get('FunctionArn') or function_name,
        name=function_name,
        location=region,
        account_id=account_id,
        size_gb=bytes_to_gb(raw['CodeSize']) if raw.get('CodeSize') is not None else None,
        attributes=_attrs(
            runtime=raw.get('Runtime'),
            memory_mb=raw.get('MemorySize'),
            timeout=raw.get('Timeout'),
            last_modified=raw.get('LastModified'),
        ),
        raw=raw,
    )


@normalizer(KIND_EFS_FILESYSTEM)
def normalize_efs_filesystem(raw: Dict, region: str, account_id: Optional[str] = None) -> Optional[Resource]:
    fs_id = raw.get('FileSystemId')
    if not fs_id:
        _missing(KIND_EFS_FILESYSTEM, 'FileSystemId')
        return None
    tags = tags_to_dict(raw.get('Tags'))
    size_bytes = (raw.get('SizeInBytes') or {}).get('Value')
    return Resource(
        provider=PROVIDER_AWS,
        kind=KIND_EFS_FILESYSTEM,
        id=raw.get('FileSystemArn') or fs_id,
        name=raw.get('Name') or get_name_from_tags(tags, fs_id),
        location=region,
        account_id=account_id or raw.get('OwnerId'),
        size_gb=bytes_to_gb(size_bytes) if size_bytes is not None else None,
        attributes=_attrs(
            state=raw.get('LifeCycleState'),
            performance_mode=raw.get('PerformanceMode'),
            throughput_mode=raw.get('ThroughputMode'),
            encrypted=raw.get('Encrypted'),
            mount_targets=raw.get('NumberOfMountTargets'),
        ),
        tags=tags,
        raw=raw,
    )


# =============================================================================
# Azure (msrest/azure-core model as_dict() output)
# =============================================================================

def extract_resource_group(resource_id: str) -> str:
    """Extract resource group from an Azure resource ID."""
    parts = (resource_id or '').split('/')
    lowered = [p.lower() for p in parts]
    try:
        return parts[lowered.index('resourcegroups') + 1]
    except (ValueError, IndexError):
        return 'unknown'


def _azure_resource(kind: str, raw: Dict, subscription_id: Optional[str], **kwargs) -> Optional[Resource]:
    resource_id = raw.get('id')
    if not resource_id:
        _missing(kind, 'id')
        return None
    attributes = _attrs(resource_group=extract_resource_group(resource_id))
    attributes.update(kwargs.pop('attributes', {}))
    return Resource(
        provider=PROVIDER_AZURE,
        kind=kind,
        id=resource_id,
        name=raw.get('name') or _last_segment(resource_id),
        location=raw.get('location') or '',
        account_id=subscription_id,
        tags=tags_to_dict(raw.get('tags')),
        attributes=attributes,
        raw=raw,
        **kwargs,
    )


@normalizer(KIND_AZURE_RESOURCE_GROUP)
def normalize_azure_resource_group(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    return _azure_resource(
        KIND_AZURE_RESOURCE_GROUP, raw, subscription_id,
        attributes=_attrs(provisioning_state=(raw.get('properties') or {}).get('provisioning_state')),
    )


@normalizer(KIND_AZURE_VM)
def normalize_azure_vm(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    storage = raw.get('storage_profile') or {}
    os_disk = storage.get('os_disk') or {}
    return _azure_resource(
        KIND_AZURE_VM, raw, subscription_id,
        size_gb=_float(os_disk.get('disk_size_gb')),
        attributes=_attrs(
            vm_size=(raw.get('hardware_profile') or {}).get('vm_size'),
            os_type=os_disk.get('os_type'),
            provisioning_state=raw.get('provisioning_state'),
            data_disk_count=len(storage.get('data_disks') or []),
            zones=raw.get('zones'),
        ),
    )


@normalizer(KIND_AZURE_VMSS)
def normalize_azure_vmss(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    sku = raw.get('sku') or {}
    return _azure_resource(
        KIND_AZURE_VMSS, raw, subscription_id,
        attributes=_attrs(
            vm_size=sku.get('name'),
            capacity=sku.get('capacity'),
            provisioning_state=raw.get('provisioning_state'),
        ),
    )


@normalizer(KIND_AZURE_DISK)
def normalize_azure_disk(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    return _azure_resource(
        KIND_AZURE_DISK, raw, subscription_id,
        size_gb=_float(raw.get('disk_size_gb')),
        parent_id=raw.get('managed_by'),
        attributes=_attrs(
            disk_state=raw.get('disk_state'),
            sku=(raw.get('sku') or {}).get('name'),
            os_type=raw.get('os_type'),
            attached_vm=_last_segment(raw.get('managed_by')) or None,
        ),
    )


@normalizer(KIND_AZURE_DISK_SNAPSHOT)
def normalize_azure_disk_snapshot(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    creation = raw.get('creation_data') or {}
    source = creation.get('source_resource_id') or creation.get('source_uri')
    return _azure_resource(
        KIND_AZURE_DISK_SNAPSHOT, raw, subscription_id,
        size_gb=_float(raw.get('disk_size_gb')),
        parent_id=source,
        attributes=_attrs(
            source_disk=_last_segment(source) or None,
            time_created=raw.get('time_created'),
            incremental=raw.get('incremental'),
            provisioning_state=raw.get('provisioning_state'),
            sku=(raw.get('sku') or {}).get('name'),
        ),
    )


@normalizer(KIND_AZURE_STORAGE_ACCOUNT)
def normalize_azure_storage_account(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    return _azure_resource(
        KIND_AZURE_STORAGE_ACCOUNT, raw, subscription_id,
        attributes=_attrs(
            kind=raw.get('kind'),
            sku=(raw.get('sku') or {}).get('name'),
            access_tier=raw.get('access_tier'),
            provisioning_state=raw.get('provisioning_state'),
            https_only=raw.get('enable_https_traffic_only'),
        ),
    )


@normalizer(KIND_AZURE_BLOB_CONTAINER)
def normalize_azure_blob_container(raw: Dict, subscription_id: Optional[str] = None,
                                   storage_account: str = '', location: str = '') -> Optional[Resource]:
    resource = _azure_resource(
        KIND_AZURE_BLOB_CONTAINER, raw, subscription_id,
        parent_id=storage_account or None,
        attributes=_attrs(
            storage_account=storage_account,
            public_access=raw.get('public_access'),
            lease_state=raw.get('lease_state'),
            last_modified=raw.get('last_modified_time'),
        ),
    )
    if resource is not None and not resource.location:
        resource.location = location
    return resource


@normalizer(KIND_AZURE_AKS_CLUSTER)
def normalize_azure_aks_cluster(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    pools = raw.get('agent_pool_profiles') or []
    return _azure_resource(
        KIND_AZURE_AKS_CLUSTER, raw, subscription_id,
        attributes=_attrs(
            kubernetes_version=raw.get('kubernetes_version'),
            provisioning_state=raw.get('provisioning_state'),
            fqdn=raw.get('fqdn'),
            node_pool_count=len(pools),
            node_count=sum(p.get('count') or 0 for p in pools),
        ),
    )


@normalizer(KIND_AZURE_VNET)
def normalize_azure_vnet(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    return _azure_resource(
        KIND_AZURE_VNET, raw, subscription_id,
        attributes=_attrs(
            address_prefixes=(raw.get('address_space') or {}).get('address_prefixes'),
            subnet_count=len(raw.get('subnets') or []),
            provisioning_state=raw.get('provisioning_state'),
        ),
    )


@normalizer(KIND_AZURE_SQL_DATABASE)
def normalize_azure_sql_database(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    resource_id = raw.get('id') or ''
    server = ''
    parts = resource_id.split('/')
    if 'servers' in parts:
        server = parts[parts.index('servers') + 1]
    max_size = raw.get('max_size_bytes')
    return _azure_resource(
        KIND_AZURE_SQL_DATABASE, raw, subscription_id,
        size_gb=bytes_to_gb(max_size) if max_size is not None else None,
        parent_id=server or None,
        attributes=_attrs(
            server=server,
            sku=(raw.get('sku') or {}).get('name'),
            status=raw.get('status'),
            collation=raw.get('collation'),
        ),
    )


@normalizer(KIND_AZURE_COSMOSDB)
def normalize_azure_cosmosdb(raw: Dict, subscription_id: Optional[str] = None) -> Optional[Resource]:
    return _azure_resource(
        KIND_AZURE_COSMOSDB, raw, subscription_id,
        attributes=_attrs(
            kind=raw.get('kind'),
            offer_type=raw.get('database_account_offer_type'),
            endpoint=raw.get('document_endpoint'),
            provisioning_state=raw.get('provisioning_state'),
        ),
    )


# =============================================================================
# GCP (proto-plus to_dict() and REST discovery dicts)
# =============================================================================

@normalizer(KIND_GCP_COMPUTE_INSTANCE)
def normalize_gcp_instance(raw: Dict, project_id: str) -> Optional[Resource]:
    name = raw.get('name')
    if not name:
        _missing(KIND_GCP_COMPUTE_INSTANCE, 'name')
        return None
    zone = _last_segment(raw.get('zone'))
    disks = raw.get('disks') or []
    disk_gb = sum(float(d.get('disk_size_gb') or 0) for d in disks)
    return Resource(
        provider=PROVIDER_GCP,
        kind=KIND_GCP_COMPUTE_INSTANCE,
        id=raw.get('self_link') or f"projects/{project_id}/zones/{zone}/instances/{name}",
        name=name,
        location=zone,
        account_id=project_id,
        size_gb=disk_gb if disks else None,
        attributes=_attrs(
            machine_type=_last_segment(raw.get('machine_type')),
            status=raw.get('status'),
            zone=zone,
            region=_region_from_zone(zone),
            disk_count=len(disks),
            creation_timestamp=raw.get('creation_timestamp'),
        ),
        tags=tags_to_dict(raw.get('labels')),
        raw=raw,
    )


@normalizer(KIND_GCP_DISK)
def normalize_gcp_disk(raw: Dict, project_id: str) -> Optional[Resource]:
    name = raw.get('name')
    if not name:
        _missing(KIND_GCP_DISK, 'name')
        return None
    zone = _last_segment(raw.get('zone'))
    users = raw.get('users') or []
    return Resource(
        provider=PROVIDER_GCP,
        kind=KIND_GCP_DISK,
        id=raw.get('self_link') or f"projects/{project_id}/zones/{zone}/disks/{name}",
        name=name,
        location=zone,
        account_id=project_id,
        size_gb=_float(raw.get('size_gb')),
        parent_id=users[0] if users else None,
        attributes=_attrs(
            disk_type=_last_segment(raw.get('type_') or raw.get('type')),
            status=raw.get('status'),
            region=_region_from_zone(zone),
            attached_to=[_last_segment(u) for u in users],
        ),
        tags=tags_to_dict(raw.get('labels')),
        raw=raw,
    )


@normalizer(KIND_GCP_DISK_SNAPSHOT)
def normalize_gcp_snapshot(raw: Dict, project_id: str) -> Optional[Resource]:
    name = raw.get('name')
    if not name:
        _missing(KIND_GCP_DISK_SNAPSHOT, 'name')
        return None
    source_disk = raw.get('source_disk') or ''
    # Price by the source disk's region; fall back to the storage location
    location = ''
    if '/zones/' in source_disk:
        location = _region_from_zone(source_disk.split('/zones/')[1].split('/')[0])
    elif '/regions/' in source_disk:
        location = source_disk.split('/regions/')[1].split('/')[0]
    if not location:
        locations = raw.get('storage_locations') or []
        location = locations[0] if locations else 'global'
    storage_bytes = raw.get('storage_bytes')
    return Resource(
        provider=PROVIDER_GCP,
        kind=KIND_GCP_DISK_SNAPSHOT,
        id=raw.get('self_link') or f"projects/{project_id}/global/snapshots/{name}",
        name=name,
        location=location,
        account_id=project_id,
        size_gb=_float(raw.get('disk_size_gb')),
        parent_id=source_disk or None,
        attributes=_attrs(
            status=raw.get('status'),
            source_disk=_last_segment(source_disk) or None,
            storage_gb=round(bytes_to_gb(int(storage_bytes)), 2) if storage_bytes else None,
            storage_locations=raw.get('storage_locations'),
            creation_timestamp=raw.get('creation_timestamp'),
            auto_created=raw.get('auto_created'),
        ),
        tags=tags_to_dict(raw.get('labels')),
        raw=raw,
    )


@normalizer(KIND_GCS_BUCKET)
def normalize_gcs_bucket(raw: Dict, project_id: str) -> Optional[Resource]:
    name = raw.get('name')
    if not name:
        _missing(KIND_GCS_BUCKET, 'name')
        return None
    return Resource(
        provider=PROVIDER_GCP,
        kind=KIND_GCS_BUCKET,
        id=f"projects/{project_id}/buckets/{name}",
        name=name,
        location=(raw.get('location') or 'unknown').lower(),
        account_id=project_id,
        attributes=_attrs(
            storage_class=raw.get('storage_class') or raw.get('storageClass'),
            location_type=raw.get('location_type') or raw.get('locationType'),
            versioning_enabled=raw.get('versioning_enabled'),
            created=raw.get('time_created') or raw.get('timeCreated'),
        ),
        tags=tags_to_dict(raw.get('labels')),
        raw=raw,
    )


@normalizer(KIND_CLOUD_SQL_INSTANCE)
def normalize_cloud_sql_instance(raw: Dict, project_id: str) -> Optional[Resource]:
    name = raw.get('name')
    if not name:
        _missing(KIND_CLOUD_SQL_INSTANCE, 'name')
        return None
    settings = raw.get('settings') or {}
    return Resource(
        provider=PROVIDER_GCP,
        kind=KIND_CLOUD_SQL_INSTANCE,
        id=f"projects/{project_id}/instances/{name}",
        name=name,
        location=raw.get('region') or '',
        account_id=project_id,
        size_gb=_float(settings.get('dataDiskSizeGb')),
        attributes=_attrs(
            database_version=raw.get('databaseVersion'),
            tier=settings.get('tier'),
            state=raw.get('state'),
            availability_type=settings.get('availabilityType'),
            backup_enabled=(settings.get('backupConfiguration') or {}).get('enabled'),
        ),
        tags=tags_to_dict(settings.get('userLabels')),
        raw=raw,
    )


@normalizer(KIND_CLOUD_RUN_SERVICE)
def normalize_cloud_run_service(raw: Dict, project_id: str) -> Optional[Resource]:
    full_name = raw.get('name')
    if not full_name:
        _missing(KIND_CLOUD_RUN_SERVICE, 'name')
        return None
    parts = full_name.split('/')
    location = parts[3] if len(parts) > 3 and parts[2] == 'locations' else ''
    return Resource(
        provider=PROVIDER_GCP,
        kind=KIND_CLOUD_RUN_SERVICE,
        id=full_name,
        name=parts[-1],
        location=location,
        account_id=project_id,
        attributes=_attrs(
            url=raw.get('uri'),
            latest_revision=_last_segment(raw.get('latest_ready_revision')) or None,
            ingress=raw.get('ingress'),
            update_time=raw.get('update_time'),
        ),
        tags=tags_to_dict(raw.get('labels')),
        raw=raw,
    )


@normalizer(KIND_CLOUD_FUNCTION)
def normalize_cloud_function(raw: Dict, project_id: str) -> Optional[Resource]:
    full_name = raw.get('name')
    if not full_name:
        _missing(KIND_CLOUD_FUNCTION, 'name')
        return None
    parts = full_name.split('/')
    location = parts[3] if len(parts) > 3 and parts[2] == 'locations' else ''
    build = raw.get('build_config') or {}
    service = raw.get('service_config') or {}
    return Resource(
        provider=PROVIDER_GCP,
        kind=KIND_CLOUD_FUNCTION,
        id=full_name,
        name=parts[-1],
        location=location,
        account_id=project_id,
        attributes=_attrs(
            runtime=build.get('runtime'),
            entry_point=build.get('entry_point'),
            state=raw.get('state'),
            environment=raw.get('environment'),
            available_memory=service.get('available_memory'),
            update_time=raw.get('update_time'),
        ),
        tags=tags_to_dict(raw.get('labels')),
        raw=raw,
    )


# =============================================================================
# Kubernetes / OpenShift (camelCase API JSON)
# =============================================================================

def _k8s_resource(kind: str, raw: Dict, context: str, provider: str, **kwargs) -> Optional[Resource]:
    metadata = raw.get('metadata') or {}
    name = metadata.get('name')
    if not name:
        _missing(kind, 'metadata.name')
        return None
    namespace = metadata.get('namespace')
    attributes = _attrs(created=metadata.get('creationTimestamp'), namespace=namespace)
    attributes.update(kwargs.pop('attributes', {}))
    return Resource(
        provider=provider,
        kind=kind,
        id=metadata.get('uid') or (f"{namespace}/{name}" if namespace else name),
        name=name,
        location=namespace or 'cluster',
        account_id=context,
        tags=tags_to_dict(metadata.get('labels')),
        attributes=attributes,
        raw=raw,
        **kwargs,
    )


def _condition_status(conditions: Optional[List[Dict]], condition_type: str) -> Optional[str]:
    for condition in conditions or []:
        if condition.get('type') == condition_type:
            return condition.get('status')
    return None


@normalizer(KIND_K8S_NODE)
def normalize_k8s_node(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    labels = (raw.get('metadata') or {}).get('labels') or {}
    roles = sorted(
        key.split('/', 1)[1] for key in labels
        if key.startswith('node-role.kubernetes.io/') and key.split('/', 1)[1]
    )
    status = raw.get('status') or {}
    node_info = status.get('nodeInfo') or {}
    capacity = status.get('capacity') or {}
    ready = _condition_status(status.get('conditions'), 'Ready')
    return _k8s_resource(
        KIND_K8S_NODE, raw, context, provider,
        attributes=_attrs(
            roles=roles or ['worker'],
            status='Ready' if ready == 'True' else 'NotReady',
            kubelet_version=node_info.get('kubeletVersion'),
            os_image=node_info.get('osImage'),
            container_runtime=node_info.get('containerRuntimeVersion'),
            cpu=capacity.get('cpu'),
            memory=capacity.get('memory'),
        ),
    )


@normalizer(KIND_K8S_NAMESPACE)
def normalize_k8s_namespace(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    return _k8s_resource(
        KIND_K8S_NAMESPACE, raw, context, provider,
        attributes=_attrs(status=(raw.get('status') or {}).get('phase')),
    )


@normalizer(KIND_K8S_POD)
def normalize_k8s_pod(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    container_statuses = status.get('containerStatuses') or []
    return _k8s_resource(
        KIND_K8S_POD, raw, context, provider,
        attributes=_attrs(
            status=status.get('phase'),
            node=spec.get('nodeName'),
            pod_ip=status.get('podIP'),
            containers=len(spec.get('containers') or []),
            ready_containers=sum(1 for c in container_statuses if c.get('ready')),
            restarts=sum(c.get('restartCount') or 0 for c in container_statuses),
        ),
    )


@normalizer(KIND_K8S_DEPLOYMENT)
def normalize_k8s_deployment(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_K8S_DEPLOYMENT, raw, context, provider,
        attributes=_attrs(
            replicas=spec.get('replicas', 0),
            ready_replicas=status.get('readyReplicas', 0),
            available_replicas=status.get('availableReplicas', 0),
            strategy=(spec.get('strategy') or {}).get('type'),
        ),
    )


@normalizer(KIND_K8S_STATEFULSET)
def normalize_k8s_statefulset(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_K8S_STATEFULSET, raw, context, provider,
        attributes=_attrs(
            replicas=spec.get('replicas', 0),
            ready_replicas=status.get('readyReplicas', 0),
            service_name=spec.get('serviceName'),
            volume_claim_templates=len(spec.get('volumeClaimTemplates') or []),
        ),
    )


@normalizer(KIND_K8S_SERVICE)
def normalize_k8s_service(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    ports = [f"{p.get('port')}/{p.get('protocol') or 'TCP'}" for p in spec.get('ports') or []]
    return _k8s_resource(
        KIND_K8S_SERVICE, raw, context, provider,
        attributes=_attrs(
            type=spec.get('type'),
            cluster_ip=spec.get('clusterIP'),
            ports=ports,
        ),
    )


@normalizer(KIND_K8S_PV)
def normalize_k8s_pv(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    claim = spec.get('claimRef') or {}
    capacity = (spec.get('capacity') or {}).get('storage')
    return _k8s_resource(
        KIND_K8S_PV, raw, context, provider,
        size_gb=parse_k8s_storage_size(capacity) if capacity else None,
        parent_id=f"{claim['namespace']}/{claim['name']}" if claim.get('name') else None,
        attributes=_attrs(
            capacity=capacity,
            storage_class=spec.get('storageClassName'),
            status=(raw.get('status') or {}).get('phase'),
            reclaim_policy=spec.get('persistentVolumeReclaimPolicy'),
            access_modes=spec.get('accessModes'),
            csi_driver=(spec.get('csi') or {}).get('driver'),
        ),
    )


@normalizer(KIND_K8S_PVC)
def normalize_k8s_pvc(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    requested = ((spec.get('resources') or {}).get('requests') or {}).get('storage')
    actual = (status.get('capacity') or {}).get('storage')
    size = actual or requested
    return _k8s_resource(
        KIND_K8S_PVC, raw, context, provider,
        size_gb=parse_k8s_storage_size(size) if size else None,
        parent_id=spec.get('volumeName'),
        attributes=_attrs(
            requested=requested,
            capacity=actual,
            storage_class=spec.get('storageClassName'),
            status=status.get('phase'),
            volume=spec.get('volumeName'),
            access_modes=spec.get('accessModes'),
            volume_mode=spec.get('volumeMode'),
        ),
    )


@normalizer(KIND_K8S_STORAGE_CLASS)
def normalize_k8s_storage_class(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    annotations = (raw.get('metadata') or {}).get('annotations') or {}
    return _k8s_resource(
        KIND_K8S_STORAGE_CLASS, raw, context, provider,
        attributes=_attrs(
            provisioner=raw.get('provisioner'),
            reclaim_policy=raw.get('reclaimPolicy'),
            volume_binding_mode=raw.get('volumeBindingMode'),
            allow_volume_expansion=raw.get('allowVolumeExpansion'),
            is_default=annotations.get('storageclass.kubernetes.io/is-default-class') == 'true',
        ),
    )


@normalizer(KIND_K8S_VOLUME_SNAPSHOT_CLASS)
def normalize_k8s_volume_snapshot_class(raw: Dict, context: str,
                                        provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    return _k8s_resource(
        KIND_K8S_VOLUME_SNAPSHOT_CLASS, raw, context, provider,
        attributes=_attrs(
            driver=raw.get('driver'),
            deletion_policy=raw.get('deletionPolicy'),
        ),
    )


@normalizer(KIND_K8S_VOLUME_SNAPSHOT)
def normalize_k8s_volume_snapshot(raw: Dict, context: str, provider: str = PROVIDER_KUBERNETES) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    source_pvc = (spec.get('source') or {}).get('persistentVolumeClaimName')
    restore_size = status.get('restoreSize')
    namespace = (raw.get('metadata') or {}).get('namespace')
    return _k8s_resource(
        KIND_K8S_VOLUME_SNAPSHOT, raw, context, provider,
        size_gb=parse_k8s_storage_size(restore_size) if restore_size else None,
        parent_id=f"{namespace}/{source_pvc}" if source_pvc and namespace else source_pvc,
        attributes=_attrs(
            source_pvc=source_pvc,
            snapshot_class=spec.get('volumeSnapshotClassName'),
            ready_to_use=status.get('readyToUse'),
            restore_size=restore_size,
            creation_time=status.get('creationTime'),
            snapshot_content=status.get('boundVolumeSnapshotContentName'),
        ),
    )


@normalizer(KIND_OPENSHIFT_PROJECT)
def normalize_openshift_project(raw: Dict, context: str) -> Optional[Resource]:
    annotations = (raw.get('metadata') or {}).get('annotations') or {}
    return _k8s_resource(
        KIND_OPENSHIFT_PROJECT, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            status=(raw.get('status') or {}).get('phase'),
            display_name=annotations.get('openshift.io/display-name'),
            requester=annotations.get('openshift.io/requester'),
        ),
    )


@normalizer(KIND_OPENSHIFT_ROUTE)
def normalize_openshift_route(raw: Dict, context: str) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    return _k8s_resource(
        KIND_OPENSHIFT_ROUTE, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            host=spec.get('host'),
            path=spec.get('path'),
            service=(spec.get('to') or {}).get('name'),
            tls_termination=(spec.get('tls') or {}).get('termination'),
        ),
    )


@normalizer(KIND_OPENSHIFT_CLUSTER_OPERATOR)
def normalize_openshift_cluster_operator(raw: Dict, context: str) -> Optional[Resource]:
    status = raw.get('status') or {}
    name = (raw.get('metadata') or {}).get('name')
    version = next(
        (v.get('version') for v in status.get('versions') or [] if v.get('name') == 'operator'),
        None,
    )
    conditions = status.get('conditions')
    return _k8s_resource(
        KIND_OPENSHIFT_CLUSTER_OPERATOR, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            version=version,
            available=_condition_status(conditions, 'Available'),
            progressing=_condition_status(conditions, 'Progressing'),
            degraded=_condition_status(conditions, 'Degraded'),
            operator=name,
        ),
    )


@normalizer(KIND_OPENSHIFT_CLUSTER_VERSION)
def normalize_openshift_cluster_version(raw: Dict, context: str) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    history = status.get('history') or []
    return _k8s_resource(
        KIND_OPENSHIFT_CLUSTER_VERSION, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            version=(status.get('desired') or {}).get('version'),
            channel=spec.get('channel'),
            cluster_id=spec.get('clusterID'),
            update_state=history[0].get('state') if history else None,
        ),
    )


@normalizer(KIND_OPENSHIFT_INFRASTRUCTURE)
def normalize_openshift_infrastructure(raw: Dict, context: str) -> Optional[Resource]:
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_OPENSHIFT_INFRASTRUCTURE, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            infrastructure_name=status.get('infrastructureName'),
            platform=(status.get('platformStatus') or {}).get('type') or status.get('platform'),
            api_server_url=status.get('apiServerURL'),
            control_plane_topology=status.get('controlPlaneTopology'),
            infrastructure_topology=status.get('infrastructureTopology'),
        ),
    )


@normalizer(KIND_OPENSHIFT_BUILD_CONFIG)
def normalize_openshift_build_config(raw: Dict, context: str) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    source = spec.get('source') or {}
    return _k8s_resource(
        KIND_OPENSHIFT_BUILD_CONFIG, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            strategy=(spec.get('strategy') or {}).get('type'),
            source_type=source.get('type'),
            git_uri=(source.get('git') or {}).get('uri'),
            output=((spec.get('output') or {}).get('to') or {}).get('name'),
            last_version=(raw.get('status') or {}).get('lastVersion'),
        ),
    )


@normalizer(KIND_OPENSHIFT_IMAGE_STREAM)
def normalize_openshift_image_stream(raw: Dict, context: str) -> Optional[Resource]:
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_OPENSHIFT_IMAGE_STREAM, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            repository=status.get('publicDockerImageRepository') or status.get('dockerImageRepository'),
            tags=sorted(tag.get('tag') for tag in status.get('tags') or [] if tag.get('tag')),
        ),
    )


@normalizer(KIND_OPENSHIFT_SCC)
def normalize_openshift_scc(raw: Dict, context: str) -> Optional[Resource]:
    return _k8s_resource(
        KIND_OPENSHIFT_SCC, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            privileged=raw.get('allowPrivilegedContainer'),
            host_network=raw.get('allowHostNetwork'),
            run_as_user=(raw.get('runAsUser') or {}).get('type'),
            priority=raw.get('priority'),
            users=len(raw.get('users') or []),
            groups=len(raw.get('groups') or []),
        ),
    )


@normalizer(KIND_OPENSHIFT_INGRESS_CONTROLLER)
def normalize_openshift_ingress_controller(raw: Dict, context: str) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_OPENSHIFT_INGRESS_CONTROLLER, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            domain=status.get('domain') or spec.get('domain'),
            replicas=spec.get('replicas'),
            available_replicas=status.get('availableReplicas'),
            endpoint_strategy=(status.get('endpointPublishingStrategy') or {}).get('type'),
            available=_condition_status(status.get('conditions'), 'Available'),
        ),
    )


@normalizer(KIND_OPENSHIFT_MACHINE_CONFIG_POOL)
def normalize_openshift_machine_config_pool(raw: Dict, context: str) -> Optional[Resource]:
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_OPENSHIFT_MACHINE_CONFIG_POOL, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            rendered_config=(status.get('configuration') or {}).get('name'),
            machines=status.get('machineCount'),
            ready_machines=status.get('readyMachineCount'),
            degraded_machines=status.get('degradedMachineCount'),
            updated=_condition_status(status.get('conditions'), 'Updated'),
            paused=(raw.get('spec') or {}).get('paused'),
        ),
    )


@normalizer(KIND_OLM_SUBSCRIPTION)
def normalize_olm_subscription(raw: Dict, context: str) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_OLM_SUBSCRIPTION, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            package=spec.get('name'),
            channel=spec.get('channel'),
            catalog_source=spec.get('source'),
            approval=spec.get('installPlanApproval'),
            installed_csv=status.get('installedCSV'),
            state=status.get('state'),
        ),
    )


@normalizer(KIND_OLM_INSTALL_PLAN)
def normalize_olm_install_plan(raw: Dict, context: str) -> Optional[Resource]:
    spec = raw.get('spec') or {}
    return _k8s_resource(
        KIND_OLM_INSTALL_PLAN, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            phase=(raw.get('status') or {}).get('phase'),
            approval=spec.get('approval'),
            approved=spec.get('approved'),
            csv_names=sorted(spec.get('clusterServiceVersionNames') or []),
        ),
    )


@normalizer(KIND_OLM_OPERATOR_GROUP)
def normalize_olm_operator_group(raw: Dict, context: str) -> Optional[Resource]:
    status = raw.get('status') or {}
    return _k8s_resource(
        KIND_OLM_OPERATOR_GROUP, raw, context, PROVIDER_OPENSHIFT,
        attributes=_attrs(
            target_namespaces=sorted(
                (raw.get('spec') or {}).get('targetNamespaces') or status.get('namespaces') or []
            ),
            last_updated=status.get('lastUpdated'),
        ),
    )


# =============================================================================
# Docker (Engine API JSON, i.e. docker SDK ``.attrs``)
# =============================================================================

@normalizer(KIND_DOCKER_CONTAINER)
def normalize_docker_container(raw: Dict, host: str) -> Optional[Resource]:
    container_id = raw.get('Id')
    if not container_id:
        _missing(KIND_DOCKER_CONTAINER, 'Id')
        return None
    config = raw.get('Config') or {}
    state = raw.get('State') or {}
    host_config = raw.get('HostConfig') or {}
    ports = []
    for container_port, bindings in ((raw.get('NetworkSettings') or {}).get('Ports') or {}).items():
        for binding in bindings or []:
            ports.append(f"{binding.get('HostPort')}->{container_port}")
    return Resource(
        provider=PROVIDER_DOCKER,
        kind=KIND_DOCKER_CONTAINER,
        id=container_id,
        name=(raw.get('Name') or container_id[:12]).lstrip('/'),
        location=host,
        account_id=host,
        parent_id=raw.get('Image'),
        attributes=_attrs(
            image=config.get('Image'),
            state=state.get('Status'),
            created=raw.get('Created'),
            network_mode=host_config.get('NetworkMode'),
            privileged=host_config.get('Privileged'),
            restart_policy=(host_config.get('RestartPolicy') or {}).get('Name'),
            mounts=len(raw.get('Mounts') or []),
            ports=ports,
        ),
        tags=tags_to_dict(config.get('Labels')),
        raw=raw,
    )


@normalizer(KIND_DOCKER_IMAGE)
def normalize_docker_image(raw: Dict, host: str) -> Optional[Resource]:
    image_id = raw.get('Id')
    if not image_id:
        _missing(KIND_DOCKER_IMAGE, 'Id')
        return None
    repo_tags = raw.get('RepoTags') or []
    size = raw.get('Size')
    return Resource(
        provider=PROVIDER_DOCKER,
        kind=KIND_DOCKER_IMAGE,
        id=image_id,
        name=repo_tags[0] if repo_tags else image_id.split(':')[-1][:12],
        location=host,
        account_id=host,
        size_gb=round(bytes_to_gb(size), 3) if size is not None else None,
        attributes=_attrs(
            repo_tags=repo_tags,
            created=raw.get('Created'),
            architecture=raw.get('Architecture'),
            os=raw.get('Os'),
        ),
        tags=tags_to_dict((raw.get('Config') or {}).get('Labels')),
        raw=raw,
    )


@normalizer(KIND_DOCKER_VOLUME)
def normalize_docker_volume(raw: Dict, host: str) -> Optional[Resource]:
    name = raw.get('Name')
    if not name:
        _missing(KIND_DOCKER_VOLUME, 'Name')
        return None
    return Resource(
        provider=PROVIDER_DOCKER,
        kind=KIND_DOCKER_VOLUME,
        id=name,
        name=name,
        location=host,
        account_id=host,
        attributes=_attrs(
            driver=raw.get('Driver'),
            mountpoint=raw.get('Mountpoint'),
            scope=raw.get('Scope'),
            created=raw.get('CreatedAt'),
        ),
        tags=tags_to_dict(raw.get('Labels')),
        raw=raw,
    )


@normalizer(KIND_DOCKER_NETWORK)
def normalize_docker_network(raw: Dict, host: str) -> Optional[Resource]:
    network_id = raw.get('Id')
    if not network_id:
        _missing(KIND_DOCKER_NETWORK, 'Id')
        return None
    ipam_config = (raw.get('IPAM') or {}).get('Config') or []
    return Resource(
        provider=PROVIDER_DOCKER,
        kind=KIND_DOCKER_NETWORK,
        id=network_id,
        name=raw.get('Name') or network_id[:12],
        location=host,
        account_id=host,
        attributes=_attrs(
            driver=raw.get('Driver'),
            scope=raw.get('Scope'),
            internal=raw.get('Internal'),
            attachable=raw.get('Attachable'),
            subnets=[c.get('Subnet') for c in ipam_config if c.get('Subnet')],
            containers=len(raw.get('Containers') or {}),
        ),
        tags=tags_to_dict(raw.get('Labels')),
        raw=raw,
    )


# =============================================================================
# Vault (HTTP API JSON)
# =============================================================================

@normalizer(KIND_VAULT_SERVER)
def normalize_vault_server(raw: Dict, server: str) -> Optional[Resource]:
    """raw merges sys/health, sys/seal-status, sys/leader and replication status."""
    return Resource(
        provider=PROVIDER_VAULT,
        kind=KIND_VAULT_SERVER,
        id=raw.get('cluster_id') or server,
        name=raw.get('cluster_name') or server,
        location=server,
        account_id=server,
        attributes=_attrs(
            version=raw.get('version'),
            initialized=raw.get('initialized'),
            sealed=raw.get('sealed'),
            standby=raw.get('standby'),
            ha_enabled=raw.get('ha_enabled'),
            leader_address=raw.get('leader_address'),
            performance_replication=raw.get('performance_mode'),
            dr_replication=raw.get('dr_mode'),
            license_expiry=raw.get('license_expiration_time'),
            entity_count=raw.get('entity_count'),
            group_count=raw.get('group_count'),
        ),
        raw=raw,
    )


@normalizer(KIND_VAULT_AUTH_METHOD)
def normalize_vault_auth_method(raw: Dict, path: str, server: str) -> Optional[Resource]:
    if not path:
        _missing(KIND_VAULT_AUTH_METHOD, 'path')
        return None
    config = raw.get('config') or {}
    return Resource(
        provider=PROVIDER_VAULT,
        kind=KIND_VAULT_AUTH_METHOD,
        id=raw.get('accessor') or path,
        name=path,
        location=server,
        account_id=server,
        attributes=_attrs(
            type=raw.get('type'),
            description=raw.get('description'),
            local=raw.get('local'),
            seal_wrap=raw.get('seal_wrap'),
            default_lease_ttl=config.get('default_lease_ttl'),
            max_lease_ttl=config.get('max_lease_ttl'),
        ),
        raw=raw,
    )


@normalizer(KIND_VAULT_SECRET_ENGINE)
def normalize_vault_secret_engine(raw: Dict, path: str, server: str) -> Optional[Resource]:
    if not path:
        _missing(KIND_VAULT_SECRET_ENGINE, 'path')
        return None
    options = raw.get('options') or {}
    return Resource(
        provider=PROVIDER_VAULT,
        kind=KIND_VAULT_SECRET_ENGINE,
        id=raw.get('accessor') or path,
        name=path,
        location=server,
        account_id=server,
        attributes=_attrs(
            type=raw.get('type'),
            description=raw.get('description'),
            kv_version=options.get('version') if raw.get('type') in ('kv', 'generic') else None,
            local=raw.get('local'),
            seal_wrap=raw.get('seal_wrap'),
        ),
        raw=raw,
    )


@normalizer(KIND_VAULT_POLICY)
def normalize_vault_policy(raw: Dict, server: str) -> Optional[Resource]:
    name = raw.get('name')
    if not name:
        _missing(KIND_VAULT_POLICY, 'name')
        return None
    rules = raw.get('rules') or ''
    return Resource(
        provider=PROVIDER_VAULT,
        kind=KIND_VAULT_POLICY,
        id=f"{raw.get('type') or 'acl'}/{name}",
        name=name,
        location=server,
        account_id=server,
        attributes=_attrs(
            type=raw.get('type') or 'acl',
            path_rules=rules.count('path "') if rules else 0,
            built_in=name in ('default', 'root'),
        ),
        raw=raw,
    )


@normalizer(KIND_VAULT_AUDIT_DEVICE)
def normalize_vault_audit_device(raw: Dict, path: str, server: str) -> Optional[Resource]:
    if not path:
        _missing(KIND_VAULT_AUDIT_DEVICE, 'path')
        return None
    return Resource(
        provider=PROVIDER_VAULT,
        kind=KIND_VAULT_AUDIT_DEVICE,
        id=path,
        name=path,
        location=server,
        account_id=server,
        attributes=_attrs(
            type=raw.get('type'),
            description=raw.get('description'),
            local=raw.get('local'),
        ),
        raw=raw,
    )


# =============================================================================
# Terraform (state file JSON, version >= 3)
# =============================================================================

def flatten_terraform_value(value: Any) -> str:
    """Render a state value as a string; nested values become their type name."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if value is None:
        return ''
    if isinstance(value, dict):
        return '[map]'
    if isinstance(value, (list, tuple)):
        return '[list]'
    return f"[{type(value).__name__}]"


def clean_terraform_provider(provider: str) -> str:
    """
    provider.aws -> aws
    provider["registry.terraform.io/hashicorp/aws"] -> registry.terraform.io/hashicorp/aws
    module.vpc.provider["registry.terraform.io/hashicorp/aws"].east -> registry.terraform.io/hashicorp/aws
    """
    name = provider or ''
    if 'provider[' in name:
        name = name.split('provider[', 1)[1]
        name = name.split(']', 1)[0]
        return name.strip('"')
    if name.startswith('provider.'):
        name = name[len('provider.'):]
    return name


@normalizer(KIND_TERRAFORM_RESOURCE)
def normalize_terraform_resource(raw: Dict, instance: Dict, state_source: str,
                                 index: int = 0) -> Optional[Resource]:
    """raw is a state ``resources[]`` block, instance one of its ``instances[]``."""
    rtype = raw.get('type')
    name = raw.get('name')
    if not rtype or not name:
        _missing(KIND_TERRAFORM_RESOURCE, 'type/name')
        return None
    if not isinstance(instance, dict):
        raise TypeError("resource instance must be a mapping")

    mode = raw.get('mode') or 'managed'
    module = raw.get('module') or ''
    address = f"{rtype}.{name}"
    if mode == 'data':
        address = f"data.{address}"
    if module:
        address = f"{module}.{address}"
    if 'index_key' in instance:
        key = instance['index_key']
        address += f'["{key}"]' if isinstance(key, str) else f"[{key}]"
    elif index:
        address += f"[{index}]"

    raw_attributes = instance.get('attributes') or {}
    attributes = {k: flatten_terraform_value(v) for k, v in raw_attributes.items()}
    # v4 keeps tags as a map; v3 flatmap uses tags.<key> with a tags.% count
    tags = tags_to_dict(raw_attributes.get('tags')) or {
        k[len('tags.'):]: v for k, v in attributes.items() if k.startswith('tags.') and k != 'tags.%'
    }
    dependencies = [d for d in instance.get('dependencies') or raw.get('depends_on') or [] if isinstance(d, str)]
    provider = clean_terraform_provider(raw.get('provider') or '')
    return Resource(
        provider=PROVIDER_TERRAFORM,
        kind=KIND_TERRAFORM_RESOURCE,
        id=address,
        name=name,
        location=attributes.get('region') or attributes.get('location') or attributes.get('zone') or '',
        account_id=state_source,
        attributes=_attrs(
            type=rtype,
            mode=mode,
            module=module,
            provider=provider,
            status='Pending Changes' if 'changes' in instance else 'Created',
            dependencies=dependencies,
            resource_id=attributes.get('id'),
        ),
        tags=tags,
        raw={'attributes': attributes, 'dependencies': dependencies, 'address': address},
    )


@normalizer(KIND_TERRAFORM_OUTPUT)
def normalize_terraform_output(raw: Dict, name: str, state_source: str) -> Optional[Resource]:
    if not name:
        _missing(KIND_TERRAFORM_OUTPUT, 'name')
        return None
    sensitive = bool(raw.get('sensitive'))
    if sensitive:
        value = '(sensitive)'
    elif 'value' in raw:
        value = flatten_terraform_value(raw['value'])
    else:
        value = 'complex value'
    output_type = raw.get('type')
    return Resource(
        provider=PROVIDER_TERRAFORM,
        kind=KIND_TERRAFORM_OUTPUT,
        id=name,
        name=name,
        account_id=state_source,
        attributes=_attrs(
            value=value,
            type=output_type if isinstance(output_type, str) else flatten_terraform_value(output_type) if output_type else 'string',
            sensitive=sensitive,
        ),
        raw={'value': value, 'sensitive': sensitive},
    )


@normalizer(KIND_TERRAFORM_PROVIDER)
def normalize_terraform_provider(raw: Dict, state_source: str) -> Optional[Resource]:
    """raw is {"name": <provider address>, "version": <version or None>}."""
    source = clean_terraform_provider(raw.get('name') or '')
    if not source:
        _missing(KIND_TERRAFORM_PROVIDER, 'name')
        return None
    return Resource(
        provider=PROVIDER_TERRAFORM,
        kind=KIND_TERRAFORM_PROVIDER,
        id=source,
        name=source.split('/')[-1],
        account_id=state_source,
        attributes=_attrs(
            source=source,
            version=raw.get('version') or 'unknown',
        ),
        raw=raw,
    )
