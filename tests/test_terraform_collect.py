"""
Tests for the Terraform state adapter.

Covers:
- Loading and version checks for local state files
- S3 (moto) and GCS (mocked) backends
- Resource, output and provider parsing
"""
import json
import os
import sys
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import terraform_collect
from terraform_collect import (
    check_credentials,
    collect,
    load_state,
    parse_providers,
    state_source,
)
from cloudinv.utils import CollectionError, ConfigurationError

AWS_PROVIDER = 'provider["registry.terraform.io/hashicorp/aws"]'

STATE_V4 = {
    'version': 4,
    'terraform_version': '1.6.0',
    'serial': 7,
    'outputs': {
        'vpc_id': {'value': 'vpc-123', 'type': 'string'},
        'db_password': {'value': 'hunter2', 'type': 'string', 'sensitive': True},
        'subnets': {'value': ['subnet-a', 'subnet-b'], 'type': ['list', 'string']},
    },
    'resources': [
        {
            'mode': 'managed', 'type': 'aws_instance', 'name': 'web', 'provider': AWS_PROVIDER,
            'instances': [
                {'index_key': 0, 'attributes': {'id': 'i-1', 'instance_type': 't3.micro', 'ebs_optimized': False}},
                {'index_key': 1, 'attributes': {'id': 'i-2', 'instance_type': 't3.micro'}},
            ],
        },
        {
            'mode': 'data', 'type': 'aws_ami', 'name': 'ubuntu', 'provider': AWS_PROVIDER,
            'instances': [{'attributes': {'id': 'ami-1'}}],
        },
        {
            'module': 'module.vpc', 'mode': 'managed', 'type': 'aws_vpc', 'name': 'this',
            'provider': f'module.vpc.{AWS_PROVIDER}',
            'instances': [{
                'index_key': 'main',
                'attributes': {'id': 'vpc-123', 'cidr_block': '10.0.0.0/16', 'tags': {'env': 'prod'}},
                'dependencies': ['data.aws_ami.ubuntu'],
            }],
        },
        {
            'mode': 'managed', 'type': 'random_id', 'name': 'suffix',
            'provider': 'provider["registry.terraform.io/hashicorp/random"]',
            'instances': [{'attributes': {'id': 'abc', 'byte_length': 4}}],
        },
    ],
}


def write_state(tmp_path, state, name="terraform.tfstate"):
    path = tmp_path / name
    path.write_text(state if isinstance(state, str) else json.dumps(state))
    return {'type': 'local', 'path': str(path)}


# =============================================================================
# Loading
# =============================================================================

class TestLoadState:
    """Format and version validation."""

    def test_valid(self, tmp_path):
        assert load_state(write_state(tmp_path, STATE_V4))['serial'] == 7

    @pytest.mark.parametrize('version', [1, 2, '4', True, None])
    def test_unsupported_version(self, tmp_path, version):
        descriptor = write_state(tmp_path, {'version': version, 'resources': []})
        with pytest.raises(ConfigurationError, match="Unsupported Terraform state file version"):
            load_state(descriptor)

    def test_missing_version(self, tmp_path):
        with pytest.raises(ConfigurationError, match="missing version"):
            load_state(write_state(tmp_path, {'resources': []}))

    def test_not_an_object(self, tmp_path):
        with pytest.raises(ConfigurationError, match="missing version"):
            load_state(write_state(tmp_path, [1, 2, 3]))

    def test_invalid_json(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_state(write_state(tmp_path, "{ not json"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_state({'type': 'local', 'path': str(tmp_path / 'absent.tfstate')})

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="Unknown Terraform state backend"):
            load_state({'type': 'consul', 'path': 'x'})

    def test_check_credentials(self, tmp_path):
        assert check_credentials(write_state(tmp_path, STATE_V4)) is True


class TestStateSource:

    def test_labels(self):
        assert state_source({'type': 's3', 'bucket': 'tf', 'key': 'prod.tfstate'}) == 's3://tf/prod.tfstate'
        assert state_source({'type': 'gcs', 'bucket': 'tf', 'object': 'default.tfstate'}) == 'gs://tf/default.tfstate'
        assert state_source({
            'type': 'azure_blob', 'storageAccount': 'acct', 'container': 'tfstate', 'blob': 'prod',
        }) == 'azblob://acct/tfstate/prod'
        assert state_source({'type': 'local', 'path': '/srv/terraform.tfstate'}) == '/srv/terraform.tfstate'


class TestRemoteBackends:

    @mock_aws
    def test_s3(self, monkeypatch):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="tf-state")
        s3.put_object(Bucket="tf-state", Key="prod/terraform.tfstate", Body=json.dumps(STATE_V4).encode())

        result = collect({'type': 's3', 'bucket': 'tf-state', 'key': 'prod/terraform.tfstate',
                          'region': 'us-east-1'})

        assert len(result.resources) == 10
        assert {r.account_id for r in result.resources} == {'s3://tf-state/prod/terraform.tfstate'}

    @mock_aws
    def test_s3_missing_key(self, monkeypatch):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="tf-state")

        with pytest.raises(CollectionError) as exc_info:
            load_state({'type': 's3', 'bucket': 'tf-state', 'key': 'absent', 'region': 'us-east-1'})
        assert exc_info.value.provider == 'terraform'

    @patch('terraform_collect.storage.Client')
    def test_gcs(self, mock_client):
        blob = mock_client.return_value.bucket.return_value.blob.return_value
        blob.download_as_bytes.return_value = json.dumps(STATE_V4).encode()

        state = load_state({'type': 'gcs', 'bucket': 'tf', 'object': 'default.tfstate'})

        mock_client.return_value.bucket.assert_called_once_with('tf')
        assert state['terraform_version'] == '1.6.0'

    def test_readers_cover_every_backend(self):
        assert set(terraform_collect.STATE_READERS) == {'local', 's3', 'azure_blob', 'gcs'}


# =============================================================================
# Parsing
# =============================================================================

class TestCollect:
    """Resources, outputs and providers from one state file."""

    @pytest.fixture
    def result(self, tmp_path):
        return collect(write_state(tmp_path, STATE_V4))

    def by_kind(self, result, kind):
        return {r.id: r for r in result.resources if r.kind == kind}

    def test_resource_addresses(self, result):
        assert sorted(self.by_kind(result, 'TerraformResource')) == [
            'aws_instance.web[0]',
            'aws_instance.web[1]',
            'data.aws_ami.ubuntu',
            'module.vpc.aws_vpc.this["main"]',
            'random_id.suffix',
        ]

    def test_resource_attributes(self, result):
        resources = self.by_kind(result, 'TerraformResource')

        web = resources['aws_instance.web[0]']
        assert web.attributes['type'] == 'aws_instance'
        assert web.attributes['provider'] == 'registry.terraform.io/hashicorp/aws'
        assert web.attributes['resource_id'] == 'i-1'
        assert web.raw['attributes']['ebs_optimized'] == 'false'

        vpc = resources['module.vpc.aws_vpc.this["main"]']
        assert vpc.attributes['module'] == 'module.vpc'
        assert vpc.attributes['dependencies'] == 'data.aws_ami.ubuntu'
        assert vpc.raw['attributes']['tags'] == '[map]'
        assert vpc.tags == {'env': 'prod'}

        assert resources['data.aws_ami.ubuntu'].attributes['mode'] == 'data'
        assert resources['random_id.suffix'].raw['attributes']['byte_length'] == '4'

    def test_outputs(self, result):
        outputs = self.by_kind(result, 'TerraformOutput')

        assert outputs['vpc_id'].attributes['value'] == 'vpc-123'
        assert outputs['db_password'].attributes['value'] == '(sensitive)'
        assert outputs['db_password'].attributes['sensitive'] is True
        assert outputs['subnets'].attributes['value'] == '[list]'
        assert 'hunter2' not in json.dumps([o.to_dict() for o in outputs.values()])

    def test_providers(self, result):
        providers = self.by_kind(result, 'TerraformProvider')

        assert sorted(providers) == [
            'registry.terraform.io/hashicorp/aws',
            'registry.terraform.io/hashicorp/random',
        ]
        assert providers['registry.terraform.io/hashicorp/aws'].name == 'aws'
        assert providers['registry.terraform.io/hashicorp/aws'].attributes['version'] == 'unknown'

    def test_state_reread_each_time(self, tmp_path):
        descriptor = write_state(tmp_path, STATE_V4)
        assert len(collect(descriptor).resources) == 10

        write_state(tmp_path, {'version': 4, 'resources': [], 'outputs': {}})

        assert collect(descriptor).resources == []


class TestParseProviders:

    def test_provider_hash_versions(self):
        state = {
            'version': 3,
            'provider_hash': {'provider.aws': '3.76.1'},
            'resources': [{'type': 'aws_s3_bucket', 'name': 'logs', 'provider': 'provider.aws', 'instances': []}],
        }

        providers = parse_providers(state, 'state')

        assert [(p.id, p.attributes['version']) for p in providers] == [('aws', '3.76.1')]

    def test_module_scoped_addresses_collapse(self):
        state = {
            'version': 4,
            'provider_hash': {AWS_PROVIDER: '5.31.0'},
            'resources': [{'type': 'aws_vpc', 'name': 'this', 'provider': f'module.vpc.{AWS_PROVIDER}'}],
        }

        providers = parse_providers(state, 'state')

        assert len(providers) == 1
        assert providers[0].attributes['version'] == '5.31.0'
