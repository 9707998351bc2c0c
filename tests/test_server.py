"""
Tests for the HTTP API using FastAPI's TestClient and in-process fake adapters.

Covers:
- Source connect/disconnect and credential probing
- Refresh, cancel and the data/snapshot/cost views
- Error-to-status mapping
- Discovery, Docker connection test and kubeconfig upload routes
"""
import os
import sys
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from server import create_app, error_status
from cloudinv.query import QueryService
from cloudinv.scheduler import AggregationScheduler
from cloudinv.utils import (
    AuthError,
    CollectionError,
    ConfigurationError,
    TransientError,
)

KUBECONFIG = """
apiVersion: v1
kind: Config
current-context: dev
clusters:
- name: dev-cluster
  cluster: {server: "https://dev.example.com:6443"}
contexts:
- name: dev
  context: {cluster: dev-cluster, user: dev-user}
- name: prod
  context: {cluster: dev-cluster, user: dev-user, namespace: shop}
users:
- name: dev-user
  user: {token: abc}
"""


@pytest.fixture
def build(registry, store):
    """Build (client, scheduler) over the given adapters."""
    def _build(*adapters):
        by_provider = {adapter.provider: adapter for adapter in adapters}
        scheduler = AggregationScheduler(store, registry, by_provider, adapter_timeout=5, poll_interval=0.01)
        app = create_app(registry, scheduler, QueryService(store), by_provider,
                         {"scheduler": {"refresh_on_connect": False}})
        return TestClient(app), scheduler
    return _build


@pytest.fixture
def aws_resources(make_resource):
    return [
        make_resource(id='i-1', attributes={'instance_type': 't3.micro'}),
        make_resource(kind='EBSSnapshot', id='snap-1', size_gb=100.0),
    ]


# =============================================================================
# Error Mapping Tests
# =============================================================================

class TestErrorStatus:

    def test_mapping(self):
        assert error_status(ConfigurationError("bad")) == 400
        assert error_status(AuthError("expired")) == 401
        assert error_status(AuthError("denied", permission_denied=True)) == 403
        assert error_status(TransientError("throttled")) == 502
        assert error_status(CollectionError("other")) == 502


# =============================================================================
# Source Tests
# =============================================================================

class TestConnect:
    """POST /api/{provider}/connect and /disconnect."""

    def test_connect_registers_source(self, build, fake_adapter, registry, descriptors):
        client, _ = build(fake_adapter('aws'))

        response = client.post('/api/aws/connect', json=descriptors['aws'])

        assert response.status_code == 200
        body = response.json()
        assert body['status'] == 'success'
        assert body['message'] == 'Connected to aws'
        assert body['source']['status'] == 'connected'
        assert registry.get('aws') is not None

    def test_unknown_provider(self, build, fake_adapter):
        client, _ = build(fake_adapter('aws'))

        response = client.post('/api/oracle/connect', json={})

        assert response.status_code == 400
        assert response.json()['error'] == 'ConfigurationError'

    def test_invalid_descriptor(self, build, fake_adapter, registry):
        client, _ = build(fake_adapter('vault'))

        response = client.post('/api/vault/connect', json={'type': 'token', 'server': 'vault:8200'})

        assert response.status_code == 400
        assert 'http(s) URL' in response.json()['message']
        assert registry.get('vault') is None

    def test_rejected_credentials(self, build, fake_adapter, registry, descriptors):
        client, _ = build(fake_adapter('aws', check_error=AuthError("token expired", provider='aws')))

        response = client.post('/api/aws/connect', json=descriptors['aws'])

        assert response.status_code == 401
        assert response.json()['message'] == 'token expired'
        assert registry.get('aws') is None

    def test_insufficient_permissions(self, build, fake_adapter, descriptors):
        error = AuthError("not allowed", provider='gcp', permission_denied=True)
        client, _ = build(fake_adapter('gcp', check_error=error))

        response = client.post('/api/gcp/connect', json=descriptors['gcp'])

        assert response.status_code == 403

    def test_probe_failure_is_classified(self, build, fake_adapter, descriptors):
        client, _ = build(fake_adapter('docker', check_error=RuntimeError("socket closed")))

        response = client.post('/api/docker/connect', json=descriptors['docker'])

        assert response.status_code == 502
        assert 'socket closed' in response.json()['message']

    def test_reconnect_replaces_source(self, build, fake_adapter, registry, descriptors):
        client, _ = build(fake_adapter('aws'))
        client.post('/api/aws/connect', json=descriptors['aws'])
        client.post('/api/aws/connect', json={'type': 'profile', 'profile': 'prod'})

        assert registry.credentials_for(registry.get('aws'))['profile'] == 'prod'
        assert len(registry.credentials) == 1

    def test_disconnect(self, build, fake_adapter, registry, descriptors):
        client, _ = build(fake_adapter('aws'))
        client.post('/api/aws/connect', json=descriptors['aws'])

        first = client.post('/api/aws/disconnect').json()
        second = client.post('/api/aws/disconnect').json()

        assert first['message'] == 'Disconnected aws'
        assert second['message'] == 'aws was not connected'
        assert registry.get('aws') is None


# =============================================================================
# Refresh & View Tests
# =============================================================================

class TestRefresh:

    def test_success(self, build, fake_adapter, registry, descriptors, aws_resources):
        client, _ = build(fake_adapter('aws', resources=aws_resources))
        registry.register('aws', descriptors['aws'])

        body = client.post('/api/refresh').json()

        assert body['status'] == 'success'
        assert body['resourceCount'] == 2
        assert body['sources']['aws']['status'] == 'connected'

    def test_one_source_failing(self, build, fake_adapter, registry, descriptors, aws_resources):
        client, _ = build(
            fake_adapter('aws', resources=aws_resources),
            fake_adapter('vault', error=TransientError("sealed")),
        )
        registry.register('aws', descriptors['aws'])
        registry.register('vault', descriptors['vault'])

        body = client.post('/api/refresh').json()

        assert body['status'] == 'partial'
        assert body['resourceCount'] == 2
        assert body['sources']['vault']['status'] == 'error'
        assert 'sealed' in body['sources']['vault']['lastError']

    def test_cancelled_keeps_previous_snapshot(self, build, fake_adapter, registry, store, descriptors,
                                               aws_resources):
        holder = {}
        client, scheduler = build(fake_adapter(
            'aws', resources=aws_resources,
            on_collect=lambda credentials, cancel: holder['cancel'] and holder['scheduler'].cancel(),
        ))
        holder['scheduler'] = scheduler
        registry.register('aws', descriptors['aws'])

        holder['cancel'] = False
        client.post('/api/refresh')
        generation = store.generation

        holder['cancel'] = True
        response = client.post('/api/refresh')

        assert response.status_code == 409
        assert response.json()['error'] == 'RefreshCancelledError'
        assert store.generation == generation

    def test_cancel_when_idle(self, build, fake_adapter):
        client, _ = build(fake_adapter('aws'))
        assert client.post('/api/refresh/cancel').json() == {'status': 'success', 'cancelled': False}


class TestViews:
    """GET /api/data, /api/snapshots and /api/costs."""

    @pytest.fixture
    def client(self, build, fake_adapter, registry, descriptors, aws_resources):
        client, _ = build(fake_adapter('aws', resources=aws_resources))
        registry.register('aws', descriptors['aws'])
        client.post('/api/refresh')
        return client

    def test_empty_store(self, build, fake_adapter):
        client, _ = build(fake_adapter('aws'))

        response = client.get('/api/data')

        assert response.status_code == 503
        assert response.json()['error'] == 'EmptySnapshotError'

    def test_data(self, client):
        body = client.get('/api/data').json()

        assert [r['id'] for r in body['aws']['EC2Instances']] == ['i-1']
        assert body['status']['aws']['status'] == 'connected'
        assert body['partial'] is False

    def test_data_from_partial_source(self, build, fake_adapter, registry, descriptors, aws_resources):
        client, _ = build(fake_adapter('aws', resources=aws_resources,
                                       diagnostics=["RDS instances in us-east-1: Transient failure"]))
        registry.register('aws', descriptors['aws'])
        client.post('/api/refresh')

        response = client.get('/api/data')

        assert response.status_code == 200
        body = response.json()
        assert body['partial'] is True
        assert [r['id'] for r in body['aws']['EC2Instances']] == ['i-1']
        assert 'RDS' in body['status']['aws']['lastError']

    def test_data_for_platform(self, client):
        body = client.get('/api/data', params={'platform': 'aws'}).json()
        assert 'EBSSnapshots' in body
        assert 'aws' not in body

    def test_unknown_platform(self, client):
        assert client.get('/api/data', params={'platform': 'oracle'}).status_code == 400

    def test_snapshots(self, client):
        body = client.get('/api/snapshots').json()

        assert body['totalSnapshots'] == 1
        assert body['aws']['EBSSnapshots'][0]['size_gb'] == 100.0
        assert 'EC2Instances' not in body['aws']

    def test_costs(self, client):
        body = client.get('/api/costs', params={'platform': 'aws'}).json()

        aws = body['costs']['aws']
        assert aws['EC2Instances'][0]['monthlyCost'] == 21.6
        assert aws['Summary']['TotalComputeCost'] == 21.6
        assert body['mock'] is False
        assert 'disclaimer' in body

    def test_cost_type_filter(self, client):
        aws = client.get('/api/costs', params={'platform': 'aws', 'type': 'snapshots'}).json()['costs']['aws']

        assert 'EC2Instances' not in aws
        assert len(aws['EBSSnapshots']) == 1

    def test_unknown_cost_type(self, client):
        assert client.get('/api/costs', params={'type': 'network'}).status_code == 400

    def test_unpriced_platform(self, client):
        assert client.get('/api/costs', params={'platform': 'docker'}).status_code == 400

    def test_mock_costs_without_data(self, build, fake_adapter):
        client, _ = build(fake_adapter('aws'))

        body = client.get('/api/costs', params={'mock': 'true'}).json()

        assert body['mock'] is True
        assert set(body['costs']) == {'aws', 'azure', 'gcp', 'GlobalSummary'}
        assert body['costs']['aws']['Mock'] is True


# =============================================================================
# Status Tests
# =============================================================================

class TestStatus:

    def test_masks_secrets(self, build, fake_adapter, descriptors):
        client, _ = build(fake_adapter('vault'))
        client.post('/api/vault/connect', json=descriptors['vault'])

        body = client.get('/api/status').json()

        credentials = body['sources']['vault']['credentials']
        assert credentials['token'] == '****'
        assert credentials['server'] == 'https://vault.example.com:8200'
        assert body['refreshing'] is False
        assert body['store'] == 'empty'
        assert 's.secret' not in str(body)

    def test_check_credentials(self, build, fake_adapter, registry, descriptors):
        client, _ = build(fake_adapter('aws'), fake_adapter('gcp', check_error=AuthError("revoked")))
        registry.register('aws', descriptors['aws'])
        registry.register('gcp', descriptors['gcp'])

        body = client.get('/api/check-credentials').json()

        assert body['aws'] is True
        assert body['gcp'] is False
        assert body['vault'] is False

    def test_health(self, build, fake_adapter):
        client, _ = build(fake_adapter('aws'))
        assert client.get('/health').json() == {'status': 'ok', 'store': 'empty'}


# =============================================================================
# Discovery Tests
# =============================================================================

class TestDiscovery:

    def test_aws_profiles(self, build, fake_adapter):
        client, _ = build(fake_adapter('aws', discover=lambda credentials: ['default', 'prod']))
        assert client.get('/api/aws/profiles').json() == {'profiles': ['default', 'prod']}

    def test_uses_registered_credentials(self, build, fake_adapter, registry, descriptors):
        seen = []

        def discover(credentials):
            seen.append(credentials)
            return [{'id': 'proj-1'}]

        client, _ = build(fake_adapter('gcp', discover=discover))
        registry.register('gcp', descriptors['gcp'])

        assert client.get('/api/gcp/projects').json() == {'projects': [{'id': 'proj-1'}]}
        assert seen[0]['projectId'] == 'proj-1'

    def test_without_source(self, build, fake_adapter):
        seen = []
        client, _ = build(fake_adapter('azure', discover=lambda credentials: seen.append(credentials) or []))

        client.get('/api/azure/subscriptions')

        assert seen == [None]

    def test_discovery_auth_failure(self, build, fake_adapter):
        def discover(credentials):
            raise AuthError("login required", provider='kubernetes')

        client, _ = build(fake_adapter('kubernetes', discover=discover))

        assert client.get('/api/kubernetes/contexts').status_code == 401

    def test_no_discovery(self, build, fake_adapter):
        client, _ = build(fake_adapter('openshift'))
        assert client.get('/api/openshift/contexts').status_code == 400


class TestDockerConnection:

    @patch('server.docker_collect.test_connection')
    def test_reachable(self, mock_test, build, fake_adapter):
        mock_test.return_value = {'host': 'tcp://build-01:2375', 'version': '25.0.3', 'apiVersion': '1.44'}
        client, _ = build(fake_adapter('docker'))

        body = client.post('/api/docker/test-connection', json={'host': 'tcp://build-01:2375'}).json()

        assert body['status'] == 'success'
        assert body['message'] == 'Docker 25.0.3 reachable'
        assert body['apiVersion'] == '1.44'

    @patch('server.docker_collect.test_connection', side_effect=TransientError("connection refused"))
    def test_unreachable(self, _mock_test, build, fake_adapter):
        client, _ = build(fake_adapter('docker'))

        response = client.post('/api/docker/test-connection')

        assert response.status_code == 502
        assert response.json()['message'] == 'connection refused'


class TestKubeconfigUpload:

    def test_upload(self, build, fake_adapter):
        client, _ = build(fake_adapter('kubernetes'))

        response = client.post('/api/kubernetes/upload-kubeconfig',
                               files={'kubeconfig': ('config', KUBECONFIG, 'application/x-yaml')})

        body = response.json()
        try:
            assert response.status_code == 200
            assert [c['name'] for c in body['contexts']] == ['dev', 'prod']
            assert body['contexts'][0]['current'] is True
            assert oct(os.stat(body['path']).st_mode & 0o777) == '0o600'
        finally:
            os.unlink(body['path'])

    def test_not_a_kubeconfig(self, build, fake_adapter):
        client, _ = build(fake_adapter('openshift'))

        response = client.post('/api/openshift/upload-kubeconfig',
                               files={'kubeconfig': ('config', 'just: yaml', 'application/x-yaml')})

        assert response.status_code == 400

    def test_binary_upload(self, build, fake_adapter):
        client, _ = build(fake_adapter('kubernetes'))

        response = client.post('/api/kubernetes/upload-kubeconfig',
                               files={'kubeconfig': ('config', b'\xff\xfe\x00', 'application/octet-stream')})

        assert response.status_code == 400
