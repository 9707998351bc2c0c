#!/usr/bin/env python3
"""
CloudInv - Terraform State Adapter

Parses a Terraform state file (format version 3 or later) into resources,
outputs and providers. The state can live on local disk, in S3, in Azure
Blob Storage or in Google Cloud Storage. Each refresh re-reads the file.

Usage:
    python3 terraform_collect.py --path ./terraform.tfstate
    python3 terraform_collect.py --s3-bucket tf-state --s3-key prod/terraform.tfstate --region us-east-1
    python3 terraform_collect.py --gcs-bucket tf-state --gcs-object prod/default.tfstate
"""
import argparse
import json
import logging
import os
import sys
import threading
from typing import Any, Dict, List, Optional

import boto3
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient
from google.cloud import storage

from cloudinv.config import add_common_args, load_config
from cloudinv.constants import PROVIDER_TERRAFORM
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.normalize import (
    normalize_terraform_output,
    normalize_terraform_provider,
    normalize_terraform_resource,
)
from cloudinv.scheduler import run_single_source
from cloudinv.utils import ConfigurationError, classify_error, setup_logging

logger = logging.getLogger(__name__)

MIN_STATE_VERSION = 3


# =============================================================================
# State Backends
# =============================================================================

def state_source(credentials: Dict[str, Any]) -> str:
    """Human-readable location of the state file."""
    backend = credentials.get('type', 'local')
    if backend == 's3':
        return f"s3://{credentials['bucket']}/{credentials['key']}"
    if backend == 'azure_blob':
        return f"azblob://{credentials['storageAccount']}/{credentials['container']}/{credentials['blob']}"
    if backend == 'gcs':
        return f"gs://{credentials['bucket']}/{credentials['object']}"
    return os.path.expanduser(credentials['path'])


def _read_local(credentials: Dict[str, Any]) -> bytes:
    with open(os.path.expanduser(credentials['path']), 'rb') as f:
        return f.read()


def _read_s3(credentials: Dict[str, Any]) -> bytes:
    session = boto3.Session(region_name=credentials.get('region'))
    response = session.client('s3').get_object(Bucket=credentials['bucket'], Key=credentials['key'])
    return response['Body'].read()


def _read_azure_blob(credentials: Dict[str, Any]) -> bytes:
    account_url = f"https://{credentials['storageAccount']}.blob.core.windows.net"
    service = BlobServiceClient(account_url=account_url, credential=DefaultAzureCredential())
    blob = service.get_blob_client(container=credentials['container'], blob=credentials['blob'])
    return blob.download_blob().readall()


def _read_gcs(credentials: Dict[str, Any]) -> bytes:
    client = storage.Client()
    return client.bucket(credentials['bucket']).blob(credentials['object']).download_as_bytes()


STATE_READERS = {
    'local': _read_local,
    's3': _read_s3,
    'azure_blob': _read_azure_blob,
    'gcs': _read_gcs,
}


def load_state(credentials: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fetch and decode a state file, checking its format version.

    Raises:
        ConfigurationError: Missing file, invalid JSON or unsupported version
        AuthError, TransientError: Backend access failures
    """
    backend = credentials.get('type', 'local')
    reader = STATE_READERS.get(backend)
    if reader is None:
        raise ConfigurationError(f"Unknown Terraform state backend: {backend}", provider=PROVIDER_TERRAFORM)

    source = state_source(credentials)
    try:
        content = reader(credentials)
    except Exception as e:
        raise classify_error(e, f"read Terraform state {source}", PROVIDER_TERRAFORM) from e

    try:
        state = json.loads(content)
    except (ValueError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Terraform state {source} is not valid JSON: {e}",
                                 provider=PROVIDER_TERRAFORM, original_error=e) from e

    if not isinstance(state, dict) or 'version' not in state:
        raise ConfigurationError(f"Invalid Terraform state file format: missing version ({source})",
                                 provider=PROVIDER_TERRAFORM)
    version = state['version']
    if isinstance(version, bool) or not isinstance(version, (int, float)) or version < MIN_STATE_VERSION:
        raise ConfigurationError(f"Unsupported Terraform state file version: {version} ({source})",
                                 provider=PROVIDER_TERRAFORM)
    return state


# =============================================================================
# Parsing
# =============================================================================

def parse_resources(state: Dict[str, Any], source: str) -> List[Resource]:
    resources = []
    for block in state.get('resources') or []:
        if not isinstance(block, dict):
            continue
        for index, instance in enumerate(block.get('instances') or []):
            resource = normalize_terraform_resource(block, instance, source, index)
            if resource is not None:
                resources.append(resource)
    return resources


def parse_outputs(state: Dict[str, Any], source: str) -> List[Resource]:
    outputs = []
    for name, output in sorted((state.get('outputs') or {}).items()):
        resource = normalize_terraform_output(output, name, source)
        if resource is not None:
            outputs.append(resource)
    return outputs


def parse_providers(state: Dict[str, Any], source: str) -> List[Resource]:
    """Providers from provider_hash (older states) and from resource blocks."""
    versions: Dict[str, Optional[str]] = {}
    for address, version in (state.get('provider_hash') or {}).items():
        versions[address] = version if isinstance(version, str) else None
    for block in state.get('resources') or []:
        if isinstance(block, dict) and block.get('provider'):
            versions.setdefault(block['provider'], None)

    providers: Dict[str, Resource] = {}
    for address, version in versions.items():
        resource = normalize_terraform_provider({'name': address, 'version': version}, source)
        if resource is None:
            continue
        # module-scoped addresses collapse onto the same provider source
        existing = providers.get(resource.id)
        if existing is None or existing.attributes.get('version') == 'unknown':
            providers[resource.id] = resource
    return [providers[key] for key in sorted(providers)]


def check_credentials(credentials: Dict[str, Any]) -> bool:
    """Verify the state file can be fetched and has a supported version."""
    state = load_state(credentials)
    logger.info(f"Terraform state {state_source(credentials)} is version {state['version']}")
    return True


def collect(credentials: Dict[str, Any], cancel: Optional[threading.Event] = None) -> CollectionResult:
    """Parse the state file into resources, outputs and providers."""
    result = CollectionResult(provider=PROVIDER_TERRAFORM)
    source = state_source(credentials)
    state = load_state(credentials)

    result.extend(parse_resources(state, source))
    result.extend(parse_outputs(state, source))
    result.extend(parse_providers(state, source))

    logger.info(f"[{source}] Parsed {len(result.resources)} objects "
                f"(terraform {state.get('terraform_version', 'unknown')}, serial {state.get('serial')})")
    return result


ADAPTER = Adapter(
    provider=PROVIDER_TERRAFORM,
    collect=collect,
    check_credentials=check_credentials,
)


def main():
    parser = argparse.ArgumentParser(description='CloudInv - Terraform State Adapter')
    add_common_args(parser)
    backend = parser.add_mutually_exclusive_group(required=True)
    backend.add_argument('--path', help='Local state file')
    backend.add_argument('--s3-bucket', help='S3 bucket holding the state')
    backend.add_argument('--azure-account', help='Storage account holding the state')
    backend.add_argument('--gcs-bucket', help='GCS bucket holding the state')
    parser.add_argument('--s3-key', help='S3 object key')
    parser.add_argument('--region', help='S3 bucket region')
    parser.add_argument('--azure-container', help='Blob container')
    parser.add_argument('--azure-blob', help='Blob name')
    parser.add_argument('--gcs-object', help='GCS object name')
    args = parser.parse_args()

    config = load_config(args)
    setup_logging(config['log_level'], config.get('log_dir'))

    if args.s3_bucket:
        descriptor: Dict[str, Any] = {'type': 's3', 'bucket': args.s3_bucket, 'key': args.s3_key}
        if args.region:
            descriptor['region'] = args.region
    elif args.azure_account:
        descriptor = {'type': 'azure_blob', 'storageAccount': args.azure_account,
                      'container': args.azure_container, 'blob': args.azure_blob}
    elif args.gcs_bucket:
        descriptor = {'type': 'gcs', 'bucket': args.gcs_bucket, 'object': args.gcs_object}
    else:
        descriptor = {'type': 'local', 'path': args.path}

    sys.exit(run_single_source(ADAPTER, descriptor, config))


if __name__ == '__main__':
    main()
