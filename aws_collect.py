#!/usr/bin/env python3
"""
CloudInv - AWS Adapter

Collects EC2, EBS, RDS, S3, DynamoDB, VPC, Lambda and EFS inventory from one
AWS account across its configured (or all enabled) regions.

Usage:
    # Default credential chain / named profile
    python3 aws_collect.py
    python3 aws_collect.py --profile production --regions us-east-1,us-west-2

    # Static keys (prefer env vars to avoid shell history exposure)
    python3 aws_collect.py --access-key-id "$AWS_ACCESS_KEY_ID" --secret-access-key "$AWS_SECRET_ACCESS_KEY"

    # Write the snapshot to a file or S3
    python3 aws_collect.py -o ./aws_inventory.json
    python3 aws_collect.py -o s3://my-bucket/inventory/aws.json
"""
import argparse
import configparser
import logging
import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import DEFAULT_PARALLEL_WORKERS, PROVIDER_AWS
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    normalize_all,
    normalize_dynamodb_table,
    normalize_ebs_snapshot,
    normalize_ebs_volume,
    normalize_ec2_instance,
    normalize_efs_filesystem,
    normalize_lambda_function,
    normalize_rds_cluster_snapshot,
    normalize_rds_instance,
    normalize_rds_snapshot,
    normalize_s3_bucket,
    normalize_vpc,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import (
    classify_error,
    parallel_collect,
    retry_with_backoff,
    setup_logging,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Session Management
# =============================================================================

def get_session(credentials: Dict[str, Any]) -> boto3.Session:
    """Create a boto3 session from a credential descriptor."""
    region = credentials.get('region')
    if credentials.get('type') == 'credentials':
        return boto3.Session(
            aws_access_key_id=credentials['accessKeyId'],
            aws_secret_access_key=credentials['secretAccessKey'],
            aws_session_token=credentials.get('sessionToken') or None,
            region_name=region,
        )
    return boto3.Session(profile_name=credentials.get('profile') or None, region_name=region)


def get_account_id(session: boto3.Session) -> str:
    """Get AWS account ID."""
    sts = session.client('sts')
    return sts.get_caller_identity()['Account']


def get_enabled_regions(session: boto3.Session) -> List[str]:
    """Get list of enabled regions."""
    ec2 = session.client('ec2', region_name=session.region_name or 'us-east-1')
    response = ec2.describe_regions(AllRegions=False)
    return sorted([r.get('RegionName', '') for r in response.get('Regions', []) if r.get('RegionName')])


def resolve_regions(session: boto3.Session, credentials: Dict[str, Any]) -> List[str]:
    """Regions from the descriptor, or every enabled region."""
    if credentials.get('regions'):
        return list(credentials['regions'])
    try:
        return get_enabled_regions(session)
    except Exception as e:
        raise classify_error(e, "list enabled regions", PROVIDER_AWS) from e


def check_credentials(credentials: Dict[str, Any]) -> bool:
    """
    Verify the descriptor can call STS.

    Raises:
        AuthError, TransientError, ConfigurationError
    """
    try:
        session = get_session(credentials)
        account_id = get_account_id(session)
    except Exception as e:
        raise classify_error(e, "verify AWS credentials", PROVIDER_AWS) from e
    logger.info(f"AWS credentials valid for account {account_id[-4:].rjust(12, '*')}")
    return True


def list_profiles(credentials: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """
    Named profiles from ~/.aws/config and ~/.aws/credentials.

    Returns:
        [{"name", "region", "default"}, ...]
    """
    session = boto3.Session()
    config_file = os.path.expanduser(os.environ.get('AWS_CONFIG_FILE', '~/.aws/config'))
    regions: Dict[str, str] = {}
    parser = configparser.ConfigParser()
    try:
        parser.read(config_file)
    except configparser.Error as e:
        logger.warning(f"Could not parse {config_file}: {e}")
    for section in parser.sections():
        name = section[len('profile '):] if section.startswith('profile ') else section
        if parser.has_option(section, 'region'):
            regions[name] = parser.get(section, 'region')

    return [
        {'name': name, 'region': regions.get(name), 'default': name == 'default'}
        for name in sorted(session.available_profiles)
    ]


# =============================================================================
# EC2 Collectors
# =============================================================================

@retry_with_backoff()
def collect_ec2_instances(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect EC2 instances."""
    instances = []
    try:
        ec2 = session.client('ec2', region_name=region)
        paginator = ec2.get_paginator('describe_instances')
        for page in paginator.paginate():
            for reservation in page.get('Reservations', []):
                instances.extend(reservation.get('Instances', []))
    except Exception as e:
        raise classify_error(e, "collect EC2 instances", PROVIDER_AWS) from e

    resources = normalize_all(normalize_ec2_instance, instances, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} EC2 instances")
    return resources


@retry_with_backoff()
def collect_ebs_volumes(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect EBS volumes."""
    volumes = []
    try:
        ec2 = session.client('ec2', region_name=region)
        paginator = ec2.get_paginator('describe_volumes')
        for page in paginator.paginate():
            volumes.extend(page.get('Volumes', []))
    except Exception as e:
        raise classify_error(e, "collect EBS volumes", PROVIDER_AWS) from e

    resources = normalize_all(normalize_ebs_volume, volumes, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} EBS volumes")
    return resources


@retry_with_backoff()
def collect_ebs_snapshots(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect EBS snapshots owned by this account."""
    snapshots = []
    try:
        ec2 = session.client('ec2', region_name=region)
        paginator = ec2.get_paginator('describe_snapshots')
        # 'self' works for both real AWS and moto
        for page in paginator.paginate(OwnerIds=['self']):
            snapshots.extend(page.get('Snapshots', []))
    except Exception as e:
        raise classify_error(e, "collect EBS snapshots", PROVIDER_AWS) from e

    resources = normalize_all(normalize_ebs_snapshot, snapshots, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} EBS snapshots")
    return resources


@retry_with_backoff()
def collect_vpcs(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect VPCs."""
    vpcs = []
    try:
        ec2 = session.client('ec2', region_name=region)
        paginator = ec2.get_paginator('describe_vpcs')
        for page in paginator.paginate():
            vpcs.extend(page.get('Vpcs', []))
    except Exception as e:
        raise classify_error(e, "collect VPCs", PROVIDER_AWS) from e

    resources = normalize_all(normalize_vpc, vpcs, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} VPCs")
    return resources


# =============================================================================
# RDS Collectors
# =============================================================================

@retry_with_backoff()
def collect_rds_instances(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect RDS DB instances."""
    instances = []
    try:
        rds = session.client('rds', region_name=region)
        paginator = rds.get_paginator('describe_db_instances')
        for page in paginator.paginate():
            instances.extend(page.get('DBInstances', []))
    except Exception as e:
        raise classify_error(e, "collect RDS instances", PROVIDER_AWS) from e

    resources = normalize_all(normalize_rds_instance, instances, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} RDS instances")
    return resources


@retry_with_backoff()
def collect_rds_snapshots(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect RDS DB snapshots."""
    snapshots = []
    try:
        rds = session.client('rds', region_name=region)
        paginator = rds.get_paginator('describe_db_snapshots')
        for page in paginator.paginate():
            snapshots.extend(page.get('DBSnapshots', []))
    except Exception as e:
        raise classify_error(e, "collect RDS snapshots", PROVIDER_AWS) from e

    resources = normalize_all(normalize_rds_snapshot, snapshots, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} RDS snapshots")
    return resources


@retry_with_backoff()
def collect_rds_cluster_snapshots(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect RDS Aurora cluster snapshots."""
    snapshots = []
    try:
        rds = session.client('rds', region_name=region)
        paginator = rds.get_paginator('describe_db_cluster_snapshots')
        for page in paginator.paginate():
            snapshots.extend(page.get('DBClusterSnapshots', []))
    except Exception as e:
        raise classify_error(e, "collect RDS cluster snapshots", PROVIDER_AWS) from e

    resources = normalize_all(normalize_rds_cluster_snapshot, snapshots, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} RDS cluster snapshots")
    return resources


# =============================================================================
# S3 Collector
# =============================================================================

def get_s3_bucket_size_from_cloudwatch(session: boto3.Session, bucket_name: str, region: str) -> Optional[int]:
    """
    Get S3 bucket size in bytes from CloudWatch BucketSizeBytes.

    Returns None if no datapoint is available.
    """
    cloudwatch = session.client('cloudwatch', region_name=region)
    end_time = datetime.now(timezone.utc)
    # S3 publishes the metric daily; look back far enough to catch the latest one
    start_time = end_time - timedelta(days=3)

    response = cloudwatch.get_metric_statistics(
        Namespace='AWS/S3',
        MetricName='BucketSizeBytes',
        Dimensions=[
            {'Name': 'BucketName', 'Value': bucket_name},
            {'Name': 'StorageType', 'Value': 'StandardStorage'}
        ],
        StartTime=start_time,
        EndTime=end_time,
        Period=86400,
        Statistics=['Average']
    )
    datapoints = response.get('Datapoints', [])
    if not datapoints:
        return None
    latest = max(datapoints, key=lambda x: x['Timestamp'])
    return int(latest.get('Average', 0))


def _describe_bucket(session: boto3.Session, s3_client, bucket: Dict[str, Any],
                     include_sizes: bool) -> Dict[str, Any]:
    """Add Region, Tags and (optionally) SizeBytes to a list_buckets entry."""
    info = dict(bucket)
    name = bucket['Name']

    try:
        location = s3_client.get_bucket_location(Bucket=name)
        info['Region'] = location.get('LocationConstraint') or 'us-east-1'
    except ClientError as e:
        logger.debug(f"Could not get location for bucket {name}: {e}")

    try:
        info['Tags'] = s3_client.get_bucket_tagging(Bucket=name).get('TagSet', [])
    except ClientError:
        # NoSuchTagSet: bucket has no tags
        info['Tags'] = []

    if include_sizes:
        try:
            info['SizeBytes'] = get_s3_bucket_size_from_cloudwatch(session, name, info.get('Region', 'us-east-1'))
        except ClientError as e:
            logger.debug(f"Could not get CloudWatch size for bucket {name}: {e}")

    return info


@retry_with_backoff()
def collect_s3_buckets(session: boto3.Session, account_id: str, include_sizes: bool = False) -> List[Resource]:
    """
    Collect S3 buckets (global service).

    Bucket sizes come from CloudWatch only when include_sizes is set; without
    them a bucket's size is unknown rather than zero.
    """
    try:
        s3 = session.client('s3')
        buckets = [b for b in s3.list_buckets().get('Buckets', []) if b.get('Name')]
    except Exception as e:
        raise classify_error(e, "collect S3 buckets", PROVIDER_AWS) from e

    if not buckets:
        logger.info("Found 0 S3 buckets")
        return []

    bucket_info = []
    # Cap at 10 to avoid S3 throttling
    with ThreadPoolExecutor(max_workers=min(10, len(buckets))) as executor:
        futures = {
            executor.submit(_describe_bucket, session, s3, bucket, include_sizes): bucket
            for bucket in buckets
        }
        for future in as_completed(futures):
            try:
                bucket_info.append(future.result())
            except Exception as e:
                raise classify_error(e, f"describe S3 bucket {futures[future]['Name']}", PROVIDER_AWS) from e

    resources = normalize_all(normalize_s3_bucket, bucket_info, account_id)
    size_note = "" if include_sizes else " (sizes not collected)"
    logger.info(f"Found {len(resources)} S3 buckets{size_note}")
    return resources


# =============================================================================
# DynamoDB / Lambda / EFS Collectors
# =============================================================================

@retry_with_backoff()
def collect_dynamodb_tables(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """
    Collect DynamoDB tables.

    DynamoDB has no batch describe API, so describe_table calls run in a
    small thread pool.
    """
    try:
        dynamodb = session.client('dynamodb', region_name=region)
        paginator = dynamodb.get_paginator('list_tables')
        table_names = []
        for page in paginator.paginate():
            table_names.extend(page.get('TableNames', []))

        tables = []
        if table_names:
            with ThreadPoolExecutor(max_workers=min(10, len(table_names))) as executor:
                futures = [executor.submit(dynamodb.describe_table, TableName=name) for name in table_names]
                for future in as_completed(futures):
                    tables.append(future.result()['Table'])
    except Exception as e:
        raise classify_error(e, "collect DynamoDB tables", PROVIDER_AWS) from e

    resources = normalize_all(normalize_dynamodb_table, tables, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} DynamoDB tables")
    return resources


@retry_with_backoff()
def collect_lambda_functions(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect Lambda functions."""
    functions = []
    try:
        lambda_client = session.client('lambda', region_name=region)
        paginator = lambda_client.get_paginator('list_functions')
        for page in paginator.paginate():
            functions.extend(page.get('Functions', []))
    except Exception as e:
        raise classify_error(e, "collect Lambda functions", PROVIDER_AWS) from e

    resources = normalize_all(normalize_lambda_function, functions, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} Lambda functions")
    return resources


@retry_with_backoff()
def collect_efs_filesystems(session: boto3.Session, region: str, account_id: str) -> List[Resource]:
    """Collect EFS file systems."""
    filesystems = []
    try:
        efs = session.client('efs', region_name=region)
        paginator = efs.get_paginator('describe_file_systems')
        for page in paginator.paginate():
            filesystems.extend(page.get('FileSystems', []))
    except Exception as e:
        raise classify_error(e, "collect EFS file systems", PROVIDER_AWS) from e

    resources = normalize_all(normalize_efs_filesystem, filesystems, region, account_id)
    logger.info(f"[{region}] Found {len(resources)} EFS file systems")
    return resources


# =============================================================================
# Adapter
# =============================================================================

REGIONAL_COLLECTORS = [
    ("EC2 instances", collect_ec2_instances),
    ("EBS volumes", collect_ebs_volumes),
    ("EBS snapshots", collect_ebs_snapshots),
    ("VPCs", collect_vpcs),
    ("RDS instances", collect_rds_instances),
    ("RDS snapshots", collect_rds_snapshots),
    ("RDS cluster snapshots", collect_rds_cluster_snapshots),
    ("DynamoDB tables", collect_dynamodb_tables),
    ("Lambda functions", collect_lambda_functions),
    ("EFS file systems", collect_efs_filesystems),
]


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """
    Collect every AWS resource type in every configured region.

    A resource type that fails becomes a diagnostic on the result; an
    AuthError or ConfigurationError aborts the whole collection.
    """
    result = CollectionResult(provider=PROVIDER_AWS)
    session = get_session(credentials)
    try:
        account_id = get_account_id(session)
    except Exception as e:
        raise classify_error(e, "identify AWS account", PROVIDER_AWS) from e

    regions = resolve_regions(session, credentials)
    logger.info(f"Collecting AWS account {account_id[-4:].rjust(12, '*')} across {len(regions)} regions")

    tasks = [("S3 buckets", collect_s3_buckets, (session, account_id, bool(credentials.get('includeStorageSizes'))))]
    for region in regions:
        for name, collect_fn in REGIONAL_COLLECTORS:
            tasks.append((f"{name} in {region}", collect_fn, (session, region, account_id)))

    parallel_collect(
        tasks,
        result,
        parallel_workers=int(credentials.get('parallelWorkers') or DEFAULT_PARALLEL_WORKERS),
        cancel=cancel,
    )
    logger.info(f"Collected {len(result.resources)} AWS resources")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_AWS,
    collect=collect,
    check_credentials=check_credentials,
    discover=list_profiles,
)


def main():
    parser = argparse.ArgumentParser(
        description='CloudInv - AWS Adapter',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 aws_collect.py --profile production
  python3 aws_collect.py --regions us-east-1,us-west-2 -o ./aws.json
  python3 aws_collect.py --include-storage-sizes
"""
    )
    add_common_args(parser)
    parser.add_argument('--profile', help='AWS profile name (default: credential chain)')
    parser.add_argument('--access-key-id', default=os.environ.get('CLOUDINV_AWS_ACCESS_KEY_ID'),
                        help='Static access key (env: CLOUDINV_AWS_ACCESS_KEY_ID)')
    parser.add_argument('--secret-access-key', default=os.environ.get('CLOUDINV_AWS_SECRET_ACCESS_KEY'),
                        help='Static secret key (env: CLOUDINV_AWS_SECRET_ACCESS_KEY)')
    parser.add_argument('--regions', help='Comma-separated list of regions (default: all enabled)')
    parser.add_argument('--include-storage-sizes', action='store_true',
                        help='Query CloudWatch for S3 bucket sizes (slower)')
    parser.add_argument('--list-profiles', action='store_true', help='List configured profiles and exit')
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))

    if args.list_profiles:
        for profile in list_profiles():
            print(profile['name'])
        sys.exit(0)

    if args.access_key_id:
        descriptor = {
            'type': 'credentials',
            'accessKeyId': args.access_key_id,
            'secretAccessKey': args.secret_access_key,
        }
    else:
        descriptor = {'type': 'profile', 'profile': args.profile}
    if args.regions:
        descriptor['regions'] = args.regions
    descriptor['includeStorageSizes'] = args.include_storage_sizes

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
