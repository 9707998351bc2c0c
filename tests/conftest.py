"""
Shared fixtures: resource factories and in-process fake adapters.
"""
import os
import sys
import threading
import time

import pytest

# Root-level adapter modules live next to the package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cloudinv.credentials import SourceRegistry
from cloudinv.models import Adapter, CollectionResult, Resource
from cloudinv.store import SnapshotStore


@pytest.fixture
def make_resource():
    """Factory for normalized resources."""
    def _make(provider="aws", kind="EC2Instance", id="i-1", **kwargs):
        kwargs.setdefault('name', id)
        kwargs.setdefault('location', 'us-east-1')
        return Resource(provider=provider, kind=kind, id=id, **kwargs)
    return _make


@pytest.fixture
def fake_adapter():
    """
    Factory for adapters whose collect() returns fixed resources, raises,
    or blocks until its stop event is set.
    """
    def _make(provider, resources=None, error=None, diagnostics=None, block=False,
              delay=0.0, on_collect=None, check_error=None, discover=None):
        calls = []

        def collect(credentials, cancel=None):
            calls.append(credentials)
            if on_collect is not None:
                on_collect(credentials, cancel)
            if delay:
                time.sleep(delay)
            if block:
                # Honors the scheduler's stop event; gives up after 10s
                (cancel or threading.Event()).wait(10)
            if error is not None:
                raise error
            result = CollectionResult(provider=provider)
            result.extend(list(resources or []))
            for message in diagnostics or []:
                result.add_diagnostic(message)
            return result

        def check_credentials(credentials):
            if check_error is not None:
                raise check_error
            return True

        adapter = Adapter(
            provider=provider,
            collect=collect,
            check_credentials=check_credentials,
            discover=discover,
        )
        adapter.collect.calls = calls
        return adapter
    return _make


@pytest.fixture
def registry():
    return SourceRegistry()


@pytest.fixture
def store():
    return SnapshotStore()


# Minimal valid descriptors per provider
DESCRIPTORS = {
    'aws': {'type': 'profile', 'profile': 'default'},
    'azure': {'type': 'cli'},
    'gcp': {'type': 'gcloud', 'projectId': 'proj-1'},
    'kubernetes': {'type': 'kubeconfig', 'context': 'dev'},
    'openshift': {'type': 'kubeconfig', 'context': 'ocp'},
    'docker': {'type': 'host'},
    'vault': {'type': 'token', 'server': 'https://vault.example.com:8200', 'token': 's.secret'},
    'terraform': {'type': 'local', 'path': '/tmp/terraform.tfstate'},
}


@pytest.fixture
def descriptors():
    return {provider: dict(descriptor) for provider, descriptor in DESCRIPTORS.items()}
