"""
Tests for the Google Cloud adapter using unittest.mock.

Covers:
- Credential loading and project resolution
- Compute Engine instance, disk and snapshot collection
- Cloud Storage bucket collection
- Cloud SQL paging, Cloud Run and Cloud Functions
"""
import os
import sys
from unittest.mock import Mock, patch

import pytest
from google.api_core.exceptions import PermissionDenied, ServiceUnavailable
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import compute_v1, functions_v2, run_v2

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import gcp_collect
from gcp_collect import (
    collect,
    collect_cloud_functions,
    collect_cloud_run_services,
    collect_cloud_sql_instances,
    collect_compute_instances,
    collect_disk_snapshots,
    collect_persistent_disks,
    collect_storage_buckets,
    get_credentials,
    resolve_projects,
)
from cloudinv.utils import AuthError, ConfigurationError, TransientError

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def project_id():
    """Test project ID."""
    return "my-test-project"


@pytest.fixture
def mock_creds():
    """Create mock GCP credentials."""
    return Mock()


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    """Transient failures are retried; keep the backoff out of test time."""
    monkeypatch.setattr(collect_compute_instances.retry, 'sleep', lambda _seconds: None)


def aggregated(items_by_zone, attr):
    """Shape a list of messages the way aggregated_list pages them."""
    pages = []
    for zone, items in items_by_zone.items():
        page = Mock()
        setattr(page, attr, items)
        pages.append((f"zones/{zone}", page))
    return pages


def paged(collection, pages):
    """Wire a discovery collection so list()/list_next() walk the given pages."""
    requests = [Mock() for _ in pages]
    for request, page in zip(requests, pages):
        request.execute.return_value = page
    collection.list.return_value = requests[0]
    collection.list_next.side_effect = requests[1:] + [None]
    return collection


# =============================================================================
# Credentials & Projects
# =============================================================================

class TestGetCredentials:

    def test_invalid_key_json(self):
        with pytest.raises(ConfigurationError, match="Invalid service account key"):
            get_credentials({'type': 'service_account', 'keyJson': 'not json'})

    def test_key_json_missing_fields(self):
        with pytest.raises(ConfigurationError):
            get_credentials({'type': 'service_account', 'keyJson': {'type': 'service_account'}})

    def test_missing_key_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            get_credentials({'type': 'service_account', 'keyFile': str(tmp_path / 'missing.json')})

    @patch('gcp_collect.google.auth.default')
    def test_application_default(self, mock_default):
        creds = Mock()
        mock_default.return_value = (creds, 'adc-project')

        assert get_credentials({'type': 'gcloud'}) == (creds, 'adc-project')

    @patch('gcp_collect.google.auth.default', side_effect=DefaultCredentialsError("none found"))
    def test_no_application_default(self, _mock_default):
        with pytest.raises(AuthError):
            get_credentials({'type': 'gcloud'})


class TestResolveProjects:
    """Descriptor project, active projects, or the key's own project."""

    def test_descriptor_project_wins(self, mock_creds):
        with patch('gcp_collect.get_projects') as mock_get:
            assert resolve_projects(mock_creds, 'key-project', {'projectId': 'chosen'}) == ['chosen']
        mock_get.assert_not_called()

    def test_active_projects_only(self, mock_creds):
        projects = [
            {'id': 'alpha', 'name': 'Alpha', 'number': '1', 'state': 'ACTIVE'},
            {'id': 'old', 'name': 'Old', 'number': '2', 'state': 'DELETE_REQUESTED'},
        ]
        with patch('gcp_collect.get_projects', return_value=projects):
            assert resolve_projects(mock_creds, None, {}) == ['alpha']

    def test_search_denied_falls_back_to_key_project(self, mock_creds):
        with patch('gcp_collect.get_projects', side_effect=PermissionDenied("projects.list")):
            assert resolve_projects(mock_creds, 'key-project', {}) == ['key-project']

    def test_search_denied_without_fallback(self, mock_creds):
        with patch('gcp_collect.get_projects', side_effect=PermissionDenied("projects.list")):
            with pytest.raises(AuthError):
                resolve_projects(mock_creds, None, {})

    def test_nothing_discoverable(self, mock_creds):
        with patch('gcp_collect.get_projects', return_value=[]):
            with pytest.raises(ConfigurationError):
                resolve_projects(mock_creds, None, {})

    @patch('gcp_collect.resourcemanager_v3.ProjectsClient')
    def test_get_projects_shape(self, mock_client, mock_creds):
        project = Mock()
        project.project_id = 'alpha'
        project.display_name = 'Alpha'
        project.name = 'projects/123456'
        project.state.name = 'ACTIVE'
        mock_client.return_value.search_projects.return_value = [project]

        assert gcp_collect.get_projects(mock_creds) == [
            {'id': 'alpha', 'name': 'Alpha', 'number': '123456', 'state': 'ACTIVE'},
        ]


# =============================================================================
# Compute Engine Collector Tests
# =============================================================================

class TestComputeEngine:
    """Instances, persistent disks and snapshots from real proto messages."""

    @patch('gcp_collect.compute_v1.InstancesClient')
    def test_instances_across_zones(self, mock_client, mock_creds, project_id):
        mock_client.return_value.aggregated_list.return_value = aggregated({
            'us-central1-a': [compute_v1.Instance(
                name='web-1',
                zone=f"projects/{project_id}/zones/us-central1-a",
                machine_type=f"projects/{project_id}/zones/us-central1-a/machineTypes/e2-medium",
                status='RUNNING',
                labels={'env': 'prod'},
                disks=[compute_v1.AttachedDisk(disk_size_gb=10), compute_v1.AttachedDisk(disk_size_gb=50)],
            )],
            'europe-west1-b': [compute_v1.Instance(
                name='batch-1',
                zone=f"projects/{project_id}/zones/europe-west1-b",
                machine_type='n1-standard-4',
            )],
        }, 'instances')

        resources = {r.name: r for r in collect_compute_instances(mock_creds, project_id)}

        assert set(resources) == {'web-1', 'batch-1'}
        web = resources['web-1']
        assert web.kind == "GCPComputeInstance"
        assert web.location == 'us-central1-a'
        assert web.account_id == project_id
        assert web.size_gb == 60.0
        assert web.tags == {'env': 'prod'}
        assert web.attributes['machine_type'] == 'e2-medium'
        assert web.attributes['region'] == 'us-central1'
        assert resources['batch-1'].attributes['region'] == 'europe-west1'

    @patch('gcp_collect.compute_v1.DisksClient')
    def test_persistent_disks(self, mock_client, mock_creds, project_id):
        instance_link = f"projects/{project_id}/zones/us-central1-a/instances/web-1"
        mock_client.return_value.aggregated_list.return_value = aggregated({
            'us-central1-a': [compute_v1.Disk(
                name='web-1', zone=f"projects/{project_id}/zones/us-central1-a",
                size_gb=100, users=[instance_link],
            )],
        }, 'disks')

        disks = collect_persistent_disks(mock_creds, project_id)

        assert len(disks) == 1
        assert disks[0].size_gb == 100.0
        assert disks[0].parent_id == instance_link

    @patch('gcp_collect.compute_v1.SnapshotsClient')
    def test_snapshot_region_from_source_disk(self, mock_client, mock_creds, project_id):
        mock_client.return_value.list.return_value = [compute_v1.Snapshot(
            name='web-1-daily',
            source_disk=f"projects/{project_id}/zones/us-central1-a/disks/web-1",
            disk_size_gb=100,
            storage_bytes=5 * 1024 ** 3,
            storage_locations=['us'],
        )]

        snapshot = collect_disk_snapshots(mock_creds, project_id)[0]

        assert snapshot.location == 'us-central1'
        assert snapshot.attributes['source_disk'] == 'web-1'
        assert snapshot.attributes['storage_gb'] == 5.0

    @patch('gcp_collect.compute_v1.InstancesClient')
    def test_permission_denied(self, mock_client, mock_creds, project_id):
        mock_client.return_value.aggregated_list.side_effect = PermissionDenied("compute.instances.list")
        with pytest.raises(AuthError) as exc_info:
            collect_compute_instances(mock_creds, project_id)
        assert exc_info.value.permission_denied

    @patch('gcp_collect.compute_v1.InstancesClient')
    def test_transient_failure_is_retried(self, mock_client, mock_creds, project_id):
        mock_client.return_value.aggregated_list.side_effect = [
            ServiceUnavailable("try again"),
            aggregated({'us-central1-a': []}, 'instances'),
        ]

        assert collect_compute_instances(mock_creds, project_id) == []
        assert mock_client.return_value.aggregated_list.call_count == 2

    @patch('gcp_collect.compute_v1.InstancesClient')
    def test_transient_failure_exhausts_retries(self, mock_client, mock_creds, project_id):
        mock_client.return_value.aggregated_list.side_effect = ServiceUnavailable("down")
        with pytest.raises(TransientError):
            collect_compute_instances(mock_creds, project_id)


# =============================================================================
# Cloud Storage Collector Tests
# =============================================================================

class TestCloudStorage:

    @patch('gcp_collect.storage.Client')
    def test_buckets(self, mock_client, mock_creds, project_id):
        bucket = Mock()
        bucket.name = 'assets'
        bucket.location = 'US-CENTRAL1'
        bucket.location_type = 'region'
        bucket.storage_class = 'STANDARD'
        bucket.versioning_enabled = True
        bucket.time_created = None
        bucket.labels = {'team': 'web'}
        mock_client.return_value.list_buckets.return_value = [bucket]

        resources = collect_storage_buckets(mock_creds, project_id)

        mock_client.assert_called_once_with(project=project_id, credentials=mock_creds)
        assert len(resources) == 1
        assert resources[0].id == f"projects/{project_id}/buckets/assets"
        assert resources[0].location == 'us-central1'
        assert resources[0].tags == {'team': 'web'}
        assert resources[0].attributes['storage_class'] == 'STANDARD'


# =============================================================================
# Serverless and Cloud SQL Collector Tests
# =============================================================================

class TestCloudSql:
    """Cloud SQL walks every page of the discovery list call."""

    @patch('gcp_collect.discovery.build')
    def test_pages(self, mock_build, mock_creds, project_id):
        collection = paged(mock_build.return_value.instances.return_value, [
            {'items': [{'name': 'orders-db', 'region': 'us-central1', 'databaseVersion': 'POSTGRES_15',
                        'settings': {'tier': 'db-custom-2-7680', 'dataDiskSizeGb': '100'}}]},
            {'items': [{'name': 'users-db', 'region': 'europe-west1', 'settings': {}}]},
        ])

        resources = collect_cloud_sql_instances(mock_creds, project_id)

        collection.list.assert_called_once_with(project=project_id)
        assert [r.name for r in resources] == ['orders-db', 'users-db']
        assert resources[0].size_gb == 100.0
        assert resources[0].attributes['tier'] == 'db-custom-2-7680'

    @patch('gcp_collect.discovery.build')
    def test_empty_response(self, mock_build, mock_creds, project_id):
        paged(mock_build.return_value.instances.return_value, [{}])
        assert collect_cloud_sql_instances(mock_creds, project_id) == []


class TestServerless:
    """Cloud Run and Cloud Functions list every location through the GAPIC clients."""

    @patch('gcp_collect.run_v2.ServicesClient')
    def test_cloud_run_services(self, mock_client, mock_creds, project_id):
        mock_client.return_value.list_services.return_value = [run_v2.Service(
            name=f"projects/{project_id}/locations/us-central1/services/api",
            uri='https://api-xyz.a.run.app',
            latest_ready_revision=f"projects/{project_id}/locations/us-central1/services/api/revisions/api-00042",
            ingress=run_v2.IngressTraffic.INGRESS_TRAFFIC_ALL,
        )]

        resources = collect_cloud_run_services(mock_creds, project_id)

        request = mock_client.return_value.list_services.call_args.kwargs['request']
        assert request.parent == f"projects/{project_id}/locations/-"
        service = resources[0]
        assert service.name == 'api'
        assert service.location == 'us-central1'
        assert service.attributes['latest_revision'] == 'api-00042'
        assert service.attributes['ingress'] == 'INGRESS_TRAFFIC_ALL'

    @patch('gcp_collect.functions_v2.FunctionServiceClient')
    def test_cloud_functions(self, mock_client, mock_creds, project_id):
        mock_client.return_value.list_functions.return_value = [functions_v2.Function(
            name=f"projects/{project_id}/locations/europe-west1/functions/resize",
            build_config=functions_v2.BuildConfig(runtime='python311', entry_point='handler'),
            service_config=functions_v2.ServiceConfig(available_memory='256M'),
            state=functions_v2.Function.State.ACTIVE,
            environment=functions_v2.Environment.GEN_2,
        )]

        function = collect_cloud_functions(mock_creds, project_id)[0]

        assert function.location == 'europe-west1'
        assert function.attributes['runtime'] == 'python311'
        assert function.attributes['entry_point'] == 'handler'
        assert function.attributes['available_memory'] == '256M'
        assert function.attributes['state'] == 'ACTIVE'
        assert function.attributes['environment'] == 'GEN_2'

    @patch('gcp_collect.functions_v2.FunctionServiceClient')
    def test_api_disabled(self, mock_client, mock_creds, project_id):
        mock_client.return_value.list_functions.side_effect = PermissionDenied("Cloud Functions API has not been used")

        with pytest.raises(AuthError) as exc_info:
            collect_cloud_functions(mock_creds, project_id)
        assert exc_info.value.permission_denied


# =============================================================================
# Adapter Tests
# =============================================================================

class TestCollect:

    def test_per_project_tasks(self, monkeypatch, make_resource):
        seen = []

        def fake_collector(creds, project):
            seen.append(project)
            return [make_resource(provider='gcp', kind='GCSBucket', id=f"projects/{project}/buckets/b")]

        monkeypatch.setattr(gcp_collect, 'PROJECT_COLLECTORS', [("Storage buckets", fake_collector)])

        with patch('gcp_collect.get_credentials', return_value=(Mock(), None)), \
                patch('gcp_collect.get_projects', return_value=[
                    {'id': 'alpha', 'name': 'A', 'number': '1', 'state': 'ACTIVE'},
                    {'id': 'beta', 'name': 'B', 'number': '2', 'state': 'ACTIVE'},
                ]):
            result = collect({'type': 'gcloud'})

        assert sorted(seen) == ['alpha', 'beta']
        assert len(result.resources) == 2
