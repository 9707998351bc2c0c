"""
Credential descriptors and the source registry.

Raw credential descriptors live only in the CredentialStore. Everything else
(sources, snapshots, logs, API responses) refers to them through an opaque
credentials_ref handle.
"""
import copy
import logging
import secrets
import threading
from typing import Any, Dict, List, Optional

from .constants import (
    CREDENTIAL_TYPES,
    DEFAULT_CREDENTIAL_TYPES,
    PROVIDER_GCP,
    PROVIDER_VAULT,
    SECRET_FIELDS,
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
)
from .models import Source
from .utils import ConfigurationError

logger = logging.getLogger(__name__)


def validate_credentials(provider: str, descriptor: Any) -> Dict[str, Any]:
    """
    Check a credential descriptor has every field its type requires.

    Returns a normalized copy with "type" filled in and "regions" as a list.

    Raises:
        ConfigurationError: Unknown provider or type, or missing fields
    """
    if provider not in CREDENTIAL_TYPES:
        raise ConfigurationError(f"Unsupported provider: {provider}", provider=provider)
    if descriptor is None:
        descriptor = {}
    if not isinstance(descriptor, dict):
        raise ConfigurationError(f"Credential descriptor for {provider} must be an object", provider=provider)

    normalized = dict(descriptor)
    cred_type = normalized.get('type') or DEFAULT_CREDENTIAL_TYPES[provider]
    if cred_type not in CREDENTIAL_TYPES[provider]:
        allowed = ', '.join(sorted(CREDENTIAL_TYPES[provider]))
        raise ConfigurationError(
            f"Unsupported credential type '{cred_type}' for {provider} (expected one of: {allowed})",
            provider=provider,
        )
    normalized['type'] = cred_type

    missing = [name for name in CREDENTIAL_TYPES[provider][cred_type] if not normalized.get(name)]
    if missing:
        raise ConfigurationError(
            f"Missing required field(s) for {provider} {cred_type} credentials: {', '.join(missing)}",
            provider=provider,
        )

    if provider == PROVIDER_GCP and cred_type == 'service_account':
        if not normalized.get('keyFile') and not normalized.get('keyJson'):
            raise ConfigurationError(
                "GCP service_account credentials require keyFile or keyJson",
                provider=provider,
            )

    if provider == PROVIDER_VAULT:
        server = str(normalized['server'])
        if not server.startswith(('http://', 'https://')):
            raise ConfigurationError(f"Vault server must be an http(s) URL, got {server!r}", provider=provider)

    regions = normalized.get('regions')
    if isinstance(regions, str):
        normalized['regions'] = [r.strip() for r in regions.split(',') if r.strip()]
    elif regions is not None and not isinstance(regions, list):
        raise ConfigurationError("regions must be a list or comma-separated string", provider=provider)

    return normalized


def describe_credentials(descriptor: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy of a descriptor with secret fields masked, safe to log or return."""
    if not descriptor:
        return {}
    return {
        key: ('****' if key in SECRET_FIELDS and value else value)
        for key, value in descriptor.items()
    }


class CredentialStore:
    """In-memory credential descriptors keyed by opaque handles."""

    def __init__(self):
        self._lock = threading.Lock()
        self._descriptors: Dict[str, Dict[str, Any]] = {}

    def put(self, descriptor: Dict[str, Any]) -> str:
        ref = f"cred-{secrets.token_urlsafe(12)}"
        with self._lock:
            self._descriptors[ref] = copy.deepcopy(descriptor)
        return ref

    def get(self, ref: str) -> Dict[str, Any]:
        with self._lock:
            descriptor = self._descriptors.get(ref)
        if descriptor is None:
            raise ConfigurationError(f"Unknown credentials reference: {ref}")
        return copy.deepcopy(descriptor)

    def remove(self, ref: str) -> None:
        with self._lock:
            self._descriptors.pop(ref, None)

    def __len__(self) -> int:
        return len(self._descriptors)


class SourceRegistry:
    """
    One Source per provider. Connecting a provider again replaces its
    previous source and drops the old credentials.
    """

    def __init__(self, credential_store: Optional[CredentialStore] = None):
        self.credentials = credential_store or CredentialStore()
        self._lock = threading.Lock()
        self._sources: Dict[str, Source] = {}

    def register(self, provider: str, descriptor: Dict[str, Any],
                 status: str = STATUS_CONNECTED) -> Source:
        """Validate and store a descriptor, then create the provider's Source."""
        normalized = validate_credentials(provider, descriptor)
        ref = self.credentials.put(normalized)
        source = Source(provider=provider, credentials_ref=ref, status=status)

        with self._lock:
            previous = self._sources.get(provider)
            self._sources[provider] = source
        if previous is not None:
            self.credentials.remove(previous.credentials_ref)

        logger.info(f"Registered {provider} source: {describe_credentials(normalized)}")
        return source

    def disconnect(self, provider: str) -> bool:
        """Remove a provider's source and credentials. Returns False if none existed."""
        with self._lock:
            source = self._sources.pop(provider, None)
        if source is None:
            return False
        source.status = STATUS_DISCONNECTED
        self.credentials.remove(source.credentials_ref)
        logger.info(f"Disconnected {provider} source")
        return True

    def get(self, provider: str) -> Optional[Source]:
        with self._lock:
            return self._sources.get(provider)

    def sources(self) -> List[Source]:
        with self._lock:
            return list(self._sources.values())

    def enabled(self) -> List[Source]:
        """Sources a refresh should collect from."""
        return [s for s in self.sources() if s.status != STATUS_DISCONNECTED]

    def credentials_for(self, source: Source) -> Dict[str, Any]:
        return self.credentials.get(source.credentials_ref)

    def describe(self, source: Source) -> Dict[str, Any]:
        try:
            return describe_credentials(self.credentials_for(source))
        except ConfigurationError:
            return {}
