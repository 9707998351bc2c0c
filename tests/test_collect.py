"""
Tests for the collect.py command-line entry point.
"""
import io
import json
import os
import sys

import pytest
import yaml
from rich.console import Console

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import collect
from cloudinv.config import DEFAULT_CONFIG, merge_configs
from cloudinv.store import get_default_store
from cloudinv.utils import AuthError, ConfigurationError, TransientError


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Keep default config locations and CLOUDINV_* variables out of the tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('HOME', str(tmp_path))
    for name in list(os.environ):
        if name.startswith('CLOUDINV_'):
            monkeypatch.delenv(name)


def make_config(**overrides):
    return merge_configs(DEFAULT_CONFIG, overrides)


class TestAdapters:

    def test_every_provider_registered(self):
        assert set(collect.ADAPTERS) == {
            'aws', 'azure', 'gcp', 'kubernetes', 'openshift', 'docker', 'vault', 'terraform',
        }
        assert all(provider == adapter.provider for provider, adapter in collect.ADAPTERS.items())


class TestBuildRegistry:

    def test_registers_sources(self, descriptors):
        registry = collect.build_registry(make_config(sources={
            'aws': descriptors['aws'], 'docker': None,
        }))

        assert sorted(s.provider for s in registry.sources()) == ['aws', 'docker']

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="oracle"):
            collect.build_registry(make_config(sources={'oracle': {}}))

    def test_incomplete_descriptor(self):
        with pytest.raises(ConfigurationError, match="server"):
            collect.build_registry(make_config(sources={'vault': {'type': 'token', 'token': 'x'}}))


class TestBuildScheduler:

    def test_uses_process_store(self):
        scheduler = collect.build_scheduler(make_config(), collect.build_registry(make_config()))
        assert scheduler.store is get_default_store()

    def test_explicit_store(self, store):
        scheduler = collect.build_scheduler(make_config(), collect.build_registry(make_config()), store)
        assert scheduler.store is store


class TestMain:

    def test_init_config(self, capsys):
        assert collect.main(['init-config']) == 0
        assert yaml.safe_load(capsys.readouterr().out)['scheduler']['max_concurrency'] == 4

    def test_missing_config_file(self, capsys):
        assert collect.main(['once', '--config', 'absent.yaml']) == 2
        assert 'Config file not found' in capsys.readouterr().err

    def test_once_without_sources(self):
        assert collect.main(['once']) == 2

    def test_unknown_source_in_config(self, tmp_path):
        path = tmp_path / 'cloudinv.yaml'
        path.write_text(yaml.safe_dump({'sources': {'oracle': {}}}))
        path.chmod(0o600)

        assert collect.main(['check', '--config', str(path)]) == 2


class TestOnce:

    def test_writes_snapshot(self, tmp_path, monkeypatch, fake_adapter, make_resource, descriptors):
        monkeypatch.setitem(collect.ADAPTERS, 'aws', fake_adapter('aws', resources=[make_resource()]))
        output = tmp_path / 'inventory.json'

        code = collect.cmd_once(make_config(sources={'aws': descriptors['aws']}, output=str(output)))

        assert code == 0
        written = json.loads(output.read_text())
        assert written['resourceCount'] == 1
        assert written['resources'][0]['id'] == 'i-1'
        assert written['partial'] is False

    def test_failed_source_exit_code(self, monkeypatch, fake_adapter, descriptors):
        monkeypatch.setitem(collect.ADAPTERS, 'vault',
                            fake_adapter('vault', error=TransientError("connection refused")))

        assert collect.cmd_once(make_config(sources={'vault': descriptors['vault']})) == 1


class TestCheck:

    def test_reports_each_source(self, monkeypatch, fake_adapter, descriptors):
        monkeypatch.setitem(collect.ADAPTERS, 'aws', fake_adapter('aws'))
        monkeypatch.setitem(collect.ADAPTERS, 'vault',
                            fake_adapter('vault', check_error=AuthError("permission denied")))
        out = io.StringIO()

        code = collect.cmd_check(
            make_config(sources={'aws': descriptors['aws'], 'vault': descriptors['vault']}),
            console=Console(file=out, width=200),
        )

        assert code == 1
        text = out.getvalue()
        assert 'aws' in text
        assert 'vault: permission denied' in text
        assert 's.secret' not in text

    def test_no_sources(self):
        out = io.StringIO()
        assert collect.cmd_check(make_config(), console=Console(file=out)) == 2
        assert 'No sources configured' in out.getvalue()
