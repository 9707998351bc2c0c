"""
Tests for the aggregation scheduler.

Covers:
- Merging several sources into one snapshot
- Failure isolation (auth errors, unexpected exceptions, partial results)
- Per-adapter timeouts
- Cancellation leaving the previous snapshot in place
- Concurrency limits
- One-shot CLI helpers
"""
import json
import threading
import time

import pytest

from cloudinv.constants import STATUS_CONNECTED, STATUS_ERROR
from cloudinv.query import QueryService
from cloudinv.scheduler import AggregationScheduler, run_once, run_single_source, summary_rows
from cloudinv.utils import AuthError, EmptySnapshotError, PartialCollectionError, RefreshCancelledError


def build(store, registry, descriptors, adapters, **kwargs):
    for adapter in adapters:
        registry.register(adapter.provider, descriptors[adapter.provider])
    kwargs.setdefault('adapter_timeout', 5)
    return AggregationScheduler(store, registry, {a.provider: a for a in adapters}, **kwargs)


# =============================================================================
# Merge
# =============================================================================

class TestRefreshMerge:
    """A refresh merges every source into one published snapshot."""

    def test_all_sources_succeed(self, store, registry, descriptors, fake_adapter, make_resource):
        """Resources from every adapter land in the snapshot, keyed by (provider, kind, id)."""
        aws = fake_adapter('aws', [make_resource('aws', 'EC2Instance', 'i-1'),
                                   make_resource('aws', 'EBSSnapshot', 'snap-1', size_gb=8)])
        docker = fake_adapter('docker', [make_resource('docker', 'DockerContainer', 'c1', location='local')])
        scheduler = build(store, registry, descriptors, [aws, docker])

        snapshot = scheduler.refresh()

        assert len(snapshot.resources) == 3
        assert ('aws', 'EBSSnapshot', 'snap-1') in snapshot.resources
        assert snapshot.per_source_status['aws']['status'] == STATUS_CONNECTED
        assert snapshot.per_source_status['aws']['resourceCount'] == 2
        assert snapshot.per_source_status['docker']['lastSuccess'] == snapshot.generated_at
        assert not snapshot.partial
        assert store.get() is snapshot

    def test_adapter_receives_stored_credentials(self, store, registry, descriptors, fake_adapter):
        """Adapters get the descriptor registered for their source, with type filled in."""
        vault = fake_adapter('vault', [])
        scheduler = build(store, registry, descriptors, [vault])

        scheduler.refresh()

        assert vault.collect.calls[0]['token'] == 's.secret'
        assert vault.collect.calls[0]['type'] == 'token'

    def test_duplicate_keys_later_entry_wins(self, store, registry, descriptors, fake_adapter, make_resource):
        """Two resources with the same key from one collection collapse to the later one."""
        aws = fake_adapter('aws', [make_resource(id='i-1', name='old'), make_resource(id='i-1', name='new')])
        scheduler = build(store, registry, descriptors, [aws])

        snapshot = scheduler.refresh()

        assert len(snapshot.resources) == 1
        assert snapshot.resources[('aws', 'EC2Instance', 'i-1')].name == 'new'
        assert snapshot.per_source_status['aws']['resourceCount'] == 1

    def test_zero_resources_is_success(self, store, registry, descriptors, fake_adapter):
        """A source that returns nothing is connected, not failed."""
        scheduler = build(store, registry, descriptors, [fake_adapter('gcp', [])])

        snapshot = scheduler.refresh()

        assert snapshot.per_source_status['gcp']['status'] == STATUS_CONNECTED
        assert QueryService(store).query() == []

    def test_no_sources_publishes_empty_snapshot(self, store, registry):
        """With nothing registered the snapshot is empty and queries report EmptySnapshotError."""
        scheduler = AggregationScheduler(store, registry, {})

        snapshot = scheduler.refresh()

        assert snapshot.resources == {}
        with pytest.raises(EmptySnapshotError):
            QueryService(store).current()

    def test_generation_increments_per_publish(self, store, registry, descriptors, fake_adapter):
        scheduler = build(store, registry, descriptors, [fake_adapter('docker', [])])

        scheduler.refresh()
        scheduler.refresh()

        assert store.generation == 2


# =============================================================================
# Failure isolation
# =============================================================================

class TestFailureIsolation:
    """One failing source never aborts the refresh."""

    def test_auth_failure_marks_only_that_source(self, store, registry, descriptors, fake_adapter, make_resource):
        aws = fake_adapter('aws', error=AuthError("ExpiredToken", provider='aws'))
        azure = fake_adapter('azure', [make_resource('azure', 'AzureVM', '/subscriptions/s/vm1')])
        scheduler = build(store, registry, descriptors, [aws, azure])

        snapshot = scheduler.refresh()

        assert snapshot.per_source_status['aws']['status'] == STATUS_ERROR
        assert 'ExpiredToken' in snapshot.per_source_status['aws']['lastError']
        assert snapshot.per_source_status['azure']['status'] == STATUS_CONNECTED
        assert len(snapshot.resources) == 1
        assert snapshot.partial
        assert snapshot.failed_providers == ['aws']

    def test_unexpected_exception_is_classified(self, store, registry, descriptors, fake_adapter):
        """An arbitrary exception becomes an error status rather than escaping."""
        scheduler = build(store, registry, descriptors, [fake_adapter('docker', error=RuntimeError("boom"))])

        snapshot = scheduler.refresh()

        assert snapshot.per_source_status['docker']['status'] == STATUS_ERROR
        assert 'boom' in snapshot.per_source_status['docker']['lastError']

    def test_partial_result_keeps_resources(self, store, registry, descriptors, fake_adapter, make_resource):
        """Diagnostics mark the source as errored but its resources are still published."""
        aws = fake_adapter('aws', [make_resource(id='i-1')], diagnostics=["RDS in us-east-1: AccessDenied"])
        scheduler = build(store, registry, descriptors, [aws])

        snapshot = scheduler.refresh()

        assert len(snapshot.resources) == 1
        status = snapshot.per_source_status['aws']
        assert status['status'] == STATUS_ERROR
        assert 'AccessDenied' in status['lastError']
        assert status['lastSuccess'] is None
        assert status['lastCollected'] == snapshot.generated_at

    def test_partial_result_is_queryable(self, store, registry, descriptors, fake_adapter, make_resource):
        """Instances collected before RDS failed are still served."""
        instances = [make_resource(id=f'i-{n}') for n in range(3)]
        aws = fake_adapter('aws', instances, diagnostics=["RDS instances in us-east-1: Transient failure"])
        scheduler = build(store, registry, descriptors, [aws])

        scheduler.refresh()
        resources = QueryService(store).query()

        assert [r.id for r in resources] == ['i-0', 'i-1', 'i-2']

    def test_raise_for_partial(self, store, registry, descriptors, fake_adapter):
        scheduler = build(store, registry, descriptors, [fake_adapter('vault', error=RuntimeError("sealed"))])

        snapshot = scheduler.refresh()

        with pytest.raises(PartialCollectionError) as exc_info:
            snapshot.raise_for_partial()
        assert exc_info.value.failed_providers == ['vault']

    def test_last_success_survives_later_failure(self, store, registry, descriptors, fake_adapter, make_resource):
        """A failed refresh keeps the lastSuccess timestamp of the previous good one."""
        outcomes = [None, RuntimeError("down")]

        def flaky(credentials, cancel):
            error = outcomes.pop(0)
            if error:
                raise error

        docker = fake_adapter('docker', [make_resource('docker', 'DockerImage', 'sha256:1')], on_collect=flaky)
        scheduler = build(store, registry, descriptors, [docker])

        first = scheduler.refresh()
        second = scheduler.refresh()

        assert second.per_source_status['docker']['status'] == STATUS_ERROR
        assert second.per_source_status['docker']['lastSuccess'] == first.generated_at
        assert second.resources == {}

    def test_missing_adapter_is_an_error(self, store, registry, descriptors):
        registry.register('terraform', descriptors['terraform'])
        scheduler = AggregationScheduler(store, registry, {})

        snapshot = scheduler.refresh()

        assert snapshot.per_source_status['terraform']['status'] == STATUS_ERROR
        assert 'No adapter' in snapshot.per_source_status['terraform']['lastError']

    def test_source_disconnected_during_refresh_is_dropped(self, store, registry, descriptors,
                                                            fake_adapter, make_resource):
        docker = fake_adapter(
            'docker', [make_resource('docker', 'DockerVolume', 'data')],
            on_collect=lambda credentials, cancel: registry.disconnect('docker'),
        )
        scheduler = build(store, registry, descriptors, [docker])

        snapshot = scheduler.refresh()

        assert 'docker' not in snapshot.per_source_status
        assert snapshot.resources == {}


# =============================================================================
# Timeouts
# =============================================================================

class TestAdapterTimeout:
    """A slow adapter is cut off at its timeout without delaying the others."""

    def test_slow_adapter_times_out(self, store, registry, descriptors, fake_adapter, make_resource):
        slow = fake_adapter('vault', [make_resource('vault', 'VaultPolicy', 'acl/default')], block=True)
        fast = fake_adapter('aws', [make_resource(id='i-1')])
        scheduler = build(store, registry, descriptors, [slow, fast], adapter_timeout=0.3)

        start = time.monotonic()
        snapshot = scheduler.refresh()
        elapsed = time.monotonic() - start

        assert elapsed < 5
        assert snapshot.per_source_status['vault']['status'] == STATUS_ERROR
        assert 'timed out' in snapshot.per_source_status['vault']['lastError']
        assert snapshot.per_source_status['aws']['status'] == STATUS_CONNECTED
        assert ('vault', 'VaultPolicy', 'acl/default') not in snapshot.resources

    def test_timeout_sets_adapter_stop_event(self, store, registry, descriptors, fake_adapter):
        seen = {}

        def remember(credentials, cancel):
            seen['cancel'] = cancel

        slow = fake_adapter('docker', block=True, on_collect=remember)
        scheduler = build(store, registry, descriptors, [slow], adapter_timeout=0.2)

        scheduler.refresh()

        assert seen['cancel'].is_set()

    def test_every_adapter_times_out(self, store, registry, descriptors, fake_adapter, make_resource):
        """When no adapter finishes, the snapshot is empty and every source is in error."""
        aws = fake_adapter('aws', [make_resource(id='i-1')], block=True)
        docker = fake_adapter('docker', [make_resource('docker', 'DockerImage', 'sha256:1')], block=True)
        scheduler = build(store, registry, descriptors, [aws, docker], adapter_timeout=0.2)

        snapshot = scheduler.refresh()

        assert snapshot.resources == {}
        assert snapshot.failed_providers == ['aws', 'docker']
        assert all(status['status'] == STATUS_ERROR for status in snapshot.per_source_status.values())
        with pytest.raises(EmptySnapshotError):
            QueryService(store).current()


# =============================================================================
# Cancellation
# =============================================================================

class TestCancellation:
    """A cancelled refresh publishes nothing."""

    def test_cancel_keeps_previous_snapshot(self, store, registry, descriptors, fake_adapter, make_resource):
        cancel = threading.Event()
        state = {'run': 0}

        def cancel_on_second_run(credentials, stop):
            state['run'] += 1
            if state['run'] == 2:
                cancel.set()

        aws = fake_adapter('aws', [make_resource(id='i-1')], on_collect=cancel_on_second_run, delay=0.2)
        scheduler = build(store, registry, descriptors, [aws])
        first = scheduler.refresh()

        with pytest.raises(RefreshCancelledError):
            scheduler.refresh(cancel=cancel)

        assert store.get() is first
        assert store.generation == 1

    def test_cancel_before_start(self, store, registry, descriptors, fake_adapter):
        cancel = threading.Event()
        cancel.set()
        scheduler = build(store, registry, descriptors, [fake_adapter('aws', [])])

        with pytest.raises(RefreshCancelledError):
            scheduler.refresh(cancel=cancel)
        assert store.get() is None

    def test_scheduler_cancel_method(self, store, registry, descriptors, fake_adapter):
        """cancel() aborts the in-flight refresh from another thread."""
        scheduler = build(store, registry, descriptors, [fake_adapter('docker', block=True)], adapter_timeout=5)
        errors = []

        def run():
            try:
                scheduler.refresh()
            except RefreshCancelledError as e:
                errors.append(e)

        thread = threading.Thread(target=run)
        thread.start()
        deadline = time.monotonic() + 2
        while not scheduler.refreshing and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.05)

        assert scheduler.cancel() is True
        thread.join(timeout=5)

        assert len(errors) == 1
        assert store.get() is None
        assert scheduler.cancel() is False


# =============================================================================
# Concurrency
# =============================================================================

class TestConcurrency:
    """max_concurrency bounds how many adapters run at once."""

    def test_max_concurrency_respected(self, store, registry, descriptors, fake_adapter):
        lock = threading.Lock()
        state = {'active': 0, 'peak': 0}

        def track(credentials, cancel):
            with lock:
                state['active'] += 1
                state['peak'] = max(state['peak'], state['active'])
            time.sleep(0.1)
            with lock:
                state['active'] -= 1

        adapters = [fake_adapter(p, [], on_collect=track) for p in ('aws', 'azure', 'gcp', 'docker')]
        scheduler = build(store, registry, descriptors, adapters, max_concurrency=2)

        snapshot = scheduler.refresh()

        assert state['peak'] <= 2
        assert len(snapshot.per_source_status) == 4

    def test_sources_run_concurrently(self, store, registry, descriptors, fake_adapter):
        adapters = [fake_adapter(p, [], delay=0.3) for p in ('aws', 'azure', 'gcp')]
        scheduler = build(store, registry, descriptors, adapters, max_concurrency=3)

        start = time.monotonic()
        scheduler.refresh()

        assert time.monotonic() - start < 0.85

    def test_invalid_settings_rejected(self, store, registry):
        with pytest.raises(ValueError):
            AggregationScheduler(store, registry, {}, adapter_timeout=0)
        with pytest.raises(ValueError):
            AggregationScheduler(store, registry, {}, max_concurrency=0)


# =============================================================================
# One-shot helpers
# =============================================================================

class TestOneShot:
    """run_once / run_single_source used by the command-line entry points."""

    def test_summary_rows(self, store, registry, descriptors, fake_adapter, make_resource):
        aws = fake_adapter('aws', [make_resource(id='vol-1', kind='EBSVolume', size_gb=100),
                                   make_resource(id='vol-2', kind='EBSVolume', size_gb=50.5)])
        scheduler = build(store, registry, descriptors, [aws])

        rows = summary_rows(scheduler.refresh())

        assert rows == [{
            'provider': 'aws', 'status': STATUS_CONNECTED, 'resource_count': 2,
            'total_gb': 150.5, 'last_error': None,
        }]

    def test_run_once_writes_json(self, store, registry, descriptors, fake_adapter, make_resource, tmp_path):
        aws = fake_adapter('aws', [make_resource(id='i-2'), make_resource(id='i-1')])
        scheduler = build(store, registry, descriptors, [aws])
        output = tmp_path / "inventory.json"

        run_once(scheduler, str(output))

        data = json.loads(output.read_text())
        assert data['resourceCount'] == 2
        assert [r['id'] for r in data['resources']] == ['i-1', 'i-2']
        assert data['partial'] is False
        assert data['status']['aws']['status'] == STATUS_CONNECTED

    def test_run_single_source_exit_codes(self, fake_adapter, make_resource):
        config = {'scheduler': {'adapter_timeout': 5}}

        assert run_single_source(fake_adapter('docker', [make_resource('docker', 'DockerImage', 'x')]),
                                 {'type': 'host'}, config) == 0
        assert run_single_source(fake_adapter('docker', error=RuntimeError("down")),
                                 {'type': 'host'}, config) == 1
        assert run_single_source(fake_adapter('vault', []), {'type': 'token'}, config) == 2
