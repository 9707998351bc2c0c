"""
Aggregation scheduler.

Runs every enabled source's adapter concurrently, bounds each adapter with
its own timeout, isolates failures per source, merges the results into one
Snapshot and publishes it to the SnapshotStore in a single swap.
"""
import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from .constants import (
    DEFAULT_ADAPTER_TIMEOUT,
    DEFAULT_MAX_CONCURRENCY,
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
    STATUS_ERROR,
)
from .credentials import SourceRegistry
from .models import Adapter, CollectionResult, Resource, ResourceKey, Snapshot, Source, aggregate_sizing
from .store import SnapshotStore
from .utils import (
    ConfigurationError,
    RefreshCancelledError,
    classify_error,
    generate_run_id,
    get_timestamp,
    print_summary_table,
    write_json,
)

logger = logging.getLogger(__name__)


@dataclass
class _Outcome:
    """What one adapter produced during a refresh."""
    result: Optional[CollectionResult] = None
    error: Optional[str] = None
    timed_out: bool = False


class AggregationScheduler:
    """
    Usage:
        scheduler = AggregationScheduler(store, registry, adapters, adapter_timeout=60)
        snapshot = scheduler.refresh()

    The scheduler never retries a source; a later refresh retries everything.
    Only one refresh runs at a time.
    """

    def __init__(
        self,
        store: SnapshotStore,
        registry: SourceRegistry,
        adapters: Mapping[str, Adapter],
        adapter_timeout: float = DEFAULT_ADAPTER_TIMEOUT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        poll_interval: float = 0.05,
    ):
        if adapter_timeout <= 0:
            raise ValueError("adapter_timeout must be positive")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.store = store
        self.registry = registry
        self.adapters = dict(adapters)
        self.adapter_timeout = adapter_timeout
        self.max_concurrency = max_concurrency
        self.poll_interval = poll_interval
        self._refresh_lock = threading.Lock()
        self._active_cancel: Optional[threading.Event] = None

    @property
    def refreshing(self) -> bool:
        return self._refresh_lock.locked()

    def cancel(self) -> bool:
        """Cancel the in-flight refresh, if any. Returns True if one was running."""
        event = self._active_cancel
        if event is None:
            return False
        event.set()
        return True

    def refresh(
        self,
        sources: Optional[Iterable[Source]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Snapshot:
        """
        Collect from every enabled source and publish a new snapshot.

        Failing or timed-out adapters are recorded in the snapshot's
        per-source status and never abort the refresh.

        Args:
            sources: Sources to collect (default: all enabled sources in the registry)
            cancel: Event that aborts the refresh when set

        Returns:
            The published Snapshot

        Raises:
            RefreshCancelledError: cancel was set before the refresh finished.
                Nothing is published and source status is left untouched.
        """
        cancel = cancel or threading.Event()
        with self._refresh_lock:
            self._active_cancel = cancel
            try:
                if sources is None:
                    sources = self.registry.enabled()
                targets = [s for s in sources if s.status != STATUS_DISCONNECTED]

                logger.info(f"Refreshing inventory from {len(targets)} sources")
                outcomes = self._run_adapters(targets, cancel)
                snapshot = self._merge(targets, outcomes)
                self.store.publish(snapshot)
            finally:
                self._active_cancel = None

        failed = snapshot.failed_providers
        if failed:
            logger.warning(
                f"Refresh complete: {len(snapshot.resources)} resources, "
                f"{len(failed)} of {len(targets)} sources failed ({', '.join(failed)})"
            )
        else:
            logger.info(f"Refresh complete: {len(snapshot.resources)} resources from {len(targets)} sources")
        return snapshot

    # =========================================================================
    # Fan-out / fan-in
    # =========================================================================

    def _run_adapters(self, sources: List[Source], cancel: threading.Event) -> Dict[str, _Outcome]:
        if cancel.is_set():
            raise RefreshCancelledError("Refresh cancelled before it started")

        outcomes: Dict[str, _Outcome] = {}
        runnable = []
        for source in sources:
            adapter = self.adapters.get(source.provider)
            if adapter is None:
                outcomes[source.provider] = _Outcome(error=f"No adapter registered for provider {source.provider}")
                continue
            try:
                credentials = self.registry.credentials_for(source)
            except Exception as e:
                outcomes[source.provider] = _Outcome(error=str(e))
                continue
            runnable.append((source.provider, adapter, credentials))

        if not runnable:
            return outcomes

        workers = min(self.max_concurrency, len(runnable))
        # Adapters queued behind a full pool start late; this bounds the
        # whole refresh even if a timed-out adapter never returns its worker.
        waves = math.ceil(len(runnable) / workers)
        refresh_deadline = time.monotonic() + self.adapter_timeout * waves

        started: Dict[str, float] = {}
        stops = {provider: threading.Event() for provider, _, _ in runnable}

        def run(provider: str, adapter: Adapter, credentials: Dict) -> CollectionResult:
            started[provider] = time.monotonic()
            return adapter.collect(credentials, stops[provider])

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cloudinv-adapter")
        futures: Dict[Future, str] = {
            executor.submit(run, provider, adapter, credentials): provider
            for provider, adapter, credentials in runnable
        }
        pending = set(futures)

        try:
            while pending:
                if cancel.is_set():
                    break

                done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for future in done:
                    provider = futures[future]
                    outcomes[provider] = self._outcome_of(provider, future)

                now = time.monotonic()
                for future in list(pending):
                    provider = futures[future]
                    start = started.get(provider)
                    if (start is not None and now - start >= self.adapter_timeout) or now >= refresh_deadline:
                        stops[provider].set()
                        future.cancel()
                        pending.discard(future)
                        outcomes[provider] = _Outcome(
                            error=f"Collection timed out after {self.adapter_timeout:g}s",
                            timed_out=True,
                        )
                        logger.warning(f"Adapter {provider} timed out after {self.adapter_timeout:g}s")

            if cancel.is_set():
                for stop in stops.values():
                    stop.set()
                logger.warning("Refresh cancelled; keeping the previously published snapshot")
                raise RefreshCancelledError("Refresh cancelled; previous snapshot unchanged")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return outcomes

    @staticmethod
    def _outcome_of(provider: str, future: Future) -> _Outcome:
        try:
            result = future.result()
        except Exception as e:
            error = classify_error(e, "collect inventory", provider)
            logger.error(f"Adapter {provider} failed: {error}")
            return _Outcome(error=str(error))

        if result is None:
            return _Outcome(result=CollectionResult(provider=provider))
        if result.diagnostics:
            logger.warning(f"Adapter {provider} returned partial results: {len(result.diagnostics)} resource types failed")
        return _Outcome(result=result)

    # =========================================================================
    # Merge
    # =========================================================================

    def _merge(self, sources: List[Source], outcomes: Dict[str, _Outcome]) -> Snapshot:
        now = get_timestamp()
        merged: Dict[ResourceKey, Resource] = {}
        per_source_status = {}

        for source in sources:
            outcome = outcomes.get(source.provider)
            if outcome is None:
                continue
            # Disconnected while the refresh was running
            if self.registry.get(source.provider) is not source:
                continue

            if outcome.result is not None:
                keys = set()
                for resource in outcome.result.resources:
                    # Duplicates within one collection: later entry wins
                    merged[resource.key] = resource
                    keys.add(resource.key)
                source.resource_count = len(keys)
                source.last_collected = now
                if outcome.result.diagnostics:
                    source.status = STATUS_ERROR
                    source.last_error = "; ".join(outcome.result.diagnostics)
                else:
                    source.status = STATUS_CONNECTED
                    source.last_success = now
                    source.last_error = None
            else:
                source.status = STATUS_ERROR
                source.last_error = outcome.error or "Collection failed"
                source.resource_count = 0

            per_source_status[source.provider] = source.status_dict()

        return Snapshot(resources=merged, per_source_status=per_source_status, generated_at=now)


# =============================================================================
# One-shot collection (CLI)
# =============================================================================

def summary_rows(snapshot: Snapshot) -> List[Dict]:
    """Rows for print_summary_table, one per source in the snapshot."""
    total_gb: Dict[str, float] = {}
    for sizing in aggregate_sizing(snapshot.resource_list()):
        total_gb[sizing.provider] = total_gb.get(sizing.provider, 0.0) + sizing.total_gb

    return [
        {
            'provider': provider,
            'status': status.get('status'),
            'resource_count': status.get('resourceCount', 0),
            'total_gb': total_gb.get(provider, 0.0),
            'last_error': status.get('lastError'),
        }
        for provider, status in sorted(snapshot.per_source_status.items())
    ]


def run_once(scheduler: AggregationScheduler, output: Optional[str] = None) -> Snapshot:
    """
    Refresh once, print a summary table and optionally write the snapshot as JSON.
    """
    snapshot = scheduler.refresh()
    print_summary_table(summary_rows(snapshot))

    if output:
        write_json({
            'run_id': generate_run_id(),
            'generatedAt': snapshot.generated_at,
            'partial': snapshot.partial,
            'status': snapshot.per_source_status,
            'resourceCount': len(snapshot.resources),
            'sizing': [s.to_dict() for s in aggregate_sizing(snapshot.resource_list())],
            'resources': [r.to_dict() for r in sorted(snapshot.resources.values(), key=lambda r: r.key)],
        }, output)
    return snapshot


def run_single_source(adapter: Adapter, descriptor: Dict, config: Dict) -> int:
    """
    Collect one provider from the command line.

    Returns:
        Process exit code: 0 on success, 1 if the source failed, 2 on bad input
    """
    registry = SourceRegistry()
    try:
        registry.register(adapter.provider, descriptor)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    scheduler = AggregationScheduler(
        SnapshotStore(),
        registry,
        {adapter.provider: adapter},
        adapter_timeout=config['scheduler']['adapter_timeout'],
        max_concurrency=1,
    )
    snapshot = run_once(scheduler, config.get('output'))
    return 1 if snapshot.partial else 0
