"""
Read-side views over the published snapshot.

Nothing here triggers a collection; every call reads whatever the
SnapshotStore currently holds.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from .constants import ALL_PROVIDERS, SINGLETON_VIEW_KINDS, SNAPSHOT_KINDS, VIEW_KEYS
from .models import Resource, Snapshot
from .store import SnapshotStore
from .utils import ConfigurationError, EmptySnapshotError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryFilter:
    """
    Resource filter. An empty providers/kinds set means "all".
    """
    providers: FrozenSet[str] = frozenset()
    kinds: FrozenSet[str] = frozenset()
    exclude_kinds: FrozenSet[str] = frozenset()

    @classmethod
    def all(cls) -> "QueryFilter":
        return cls()

    @classmethod
    def snapshots_only(cls, platform: Optional[str] = None) -> "QueryFilter":
        return cls(providers=_platforms(platform), kinds=SNAPSHOT_KINDS)

    @classmethod
    def for_platform(cls, platform: Optional[str] = None) -> "QueryFilter":
        return cls(providers=_platforms(platform))

    def matches(self, resource: Resource) -> bool:
        if self.providers and resource.provider not in self.providers:
            return False
        if self.kinds and resource.kind not in self.kinds:
            return False
        return resource.kind not in self.exclude_kinds


def _platforms(platform: Optional[str]) -> FrozenSet[str]:
    """Parse a ?platform= value; None, "" and "all" select every provider."""
    if not platform or platform == 'all':
        return frozenset()
    if platform not in ALL_PROVIDERS:
        raise ConfigurationError(
            f"Unknown platform '{platform}' (expected one of: all, {', '.join(ALL_PROVIDERS)})"
        )
    return frozenset({platform})


def group_by_view(resources: List[Resource]) -> Dict[str, Any]:
    """Group resources under their kind's view key, e.g. {"EC2Instances": [...]}."""
    view: Dict[str, Any] = {}
    for resource in resources:
        key = VIEW_KEYS.get(resource.kind, resource.kind)
        if resource.kind in SINGLETON_VIEW_KINDS:
            view[key] = resource.to_dict()
        else:
            view.setdefault(key, []).append(resource.to_dict())
    return view


class QueryService:
    """Answers read requests against the SnapshotStore."""

    def __init__(self, store: SnapshotStore):
        self.store = store

    def current(self) -> Snapshot:
        """
        Current snapshot, provided at least one source has returned a result,
        even a partial one.

        Raises:
            EmptySnapshotError: Nothing published yet, or every source failed outright
        """
        snapshot = self.store.get()
        if snapshot is None:
            raise EmptySnapshotError("No inventory has been collected yet")
        if not any(status.get('lastSuccess') or status.get('lastCollected')
                   for status in snapshot.per_source_status.values()):
            raise EmptySnapshotError("No source has completed a successful collection")
        return snapshot

    def query(self, query_filter: Optional[QueryFilter] = None) -> List[Resource]:
        """
        Resources matching the filter, in (provider, kind, id) order.

        A provider that succeeded with zero resources yields an empty list,
        never an EmptySnapshotError.
        """
        query_filter = query_filter or QueryFilter.all()
        snapshot = self.current()
        return [
            snapshot.resources[key]
            for key in sorted(snapshot.resources)
            if query_filter.matches(snapshot.resources[key])
        ]

    def data_view(self, platform: Optional[str] = None) -> Dict[str, Any]:
        """
        Inventory keyed by provider then view key.

        With a platform, that provider's view keys are returned at the top
        level instead.
        """
        query_filter = QueryFilter.for_platform(platform)
        snapshot = self.current()
        resources = self.query(query_filter)

        if query_filter.providers:
            body = group_by_view(resources)
        else:
            body = {}
            for provider in ALL_PROVIDERS:
                provider_resources = [r for r in resources if r.provider == provider]
                if provider_resources or provider in snapshot.per_source_status:
                    body[provider] = group_by_view(provider_resources)

        body['status'] = self._status_block(snapshot, query_filter)
        body['generatedAt'] = snapshot.generated_at
        body['partial'] = snapshot.partial
        return body

    def snapshot_view(self, platform: Optional[str] = None) -> Dict[str, Any]:
        """Snapshot-kind resources grouped per provider, e.g. {"aws": {"EBSSnapshots": [...]}}."""
        query_filter = QueryFilter.snapshots_only(platform)
        snapshot = self.current()
        resources = self.query(query_filter)

        providers = sorted(query_filter.providers) or [
            p for p in ALL_PROVIDERS if p in snapshot.per_source_status
        ]
        body: Dict[str, Any] = {
            provider: group_by_view([r for r in resources if r.provider == provider])
            for provider in providers
        }
        body['status'] = self._status_block(snapshot, query_filter)
        body['generatedAt'] = snapshot.generated_at
        body['totalSnapshots'] = len(resources)
        return body

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Per-source status from the last published snapshot ({} while Empty)."""
        snapshot = self.store.get()
        if snapshot is None:
            return {}
        return dict(snapshot.per_source_status)

    @staticmethod
    def _status_block(snapshot: Snapshot, query_filter: QueryFilter) -> Dict[str, Any]:
        return {
            provider: status
            for provider, status in snapshot.per_source_status.items()
            if not query_filter.providers or provider in query_filter.providers
        }
