"""
Tests for credential descriptor validation and the source registry.
"""
import pytest

from cloudinv.constants import ALL_PROVIDERS, STATUS_CONNECTED, STATUS_DISCONNECTED
from cloudinv.credentials import CredentialStore, describe_credentials, validate_credentials
from cloudinv.utils import ConfigurationError


# =============================================================================
# Validation
# =============================================================================

class TestValidateCredentials:
    """Descriptor checks per provider and type."""

    def test_minimal_descriptors_pass(self, descriptors):
        for provider in ALL_PROVIDERS:
            assert validate_credentials(provider, descriptors[provider])['type']

    def test_default_type_filled_in(self):
        assert validate_credentials('aws', {})['type'] == 'profile'
        assert validate_credentials('docker', None)['type'] == 'host'

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_credentials('oracle', {})
        assert exc_info.value.provider == 'oracle'

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="expected one of: credentials, profile"):
            validate_credentials('aws', {'type': 'sso'})

    def test_not_an_object(self):
        with pytest.raises(ConfigurationError):
            validate_credentials('aws', ['profile'])

    @pytest.mark.parametrize('provider,descriptor,missing', [
        ('aws', {'type': 'credentials', 'accessKeyId': 'AKIA'}, 'secretAccessKey'),
        ('azure', {'type': 'service_principal', 'tenantId': 't'}, 'clientId, clientSecret'),
        ('vault', {'type': 'userpass', 'server': 'https://v:8200', 'username': 'u'}, 'password'),
        ('terraform', {'type': 's3', 'bucket': 'state'}, 'key'),
        ('terraform', {'type': 'azure_blob', 'storageAccount': 'acct'}, 'container, blob'),
        ('terraform', {'type': 'gcs', 'object': 'prod.tfstate'}, 'bucket'),
        ('terraform', {'type': 'local'}, 'path'),
    ])
    def test_missing_fields(self, provider, descriptor, missing):
        with pytest.raises(ConfigurationError, match=missing):
            validate_credentials(provider, descriptor)

    def test_gcp_service_account_needs_key(self):
        with pytest.raises(ConfigurationError, match="keyFile or keyJson"):
            validate_credentials('gcp', {'type': 'service_account'})
        assert validate_credentials('gcp', {'type': 'service_account', 'keyFile': '/k.json'})

    def test_vault_server_must_be_url(self):
        with pytest.raises(ConfigurationError, match="http"):
            validate_credentials('vault', {'type': 'token', 'server': 'vault:8200', 'token': 't'})

    def test_regions_string_split(self):
        normalized = validate_credentials('aws', {'regions': 'us-east-1, eu-west-1,'})
        assert normalized['regions'] == ['us-east-1', 'eu-west-1']

    def test_regions_bad_type(self):
        with pytest.raises(ConfigurationError):
            validate_credentials('aws', {'regions': 5})

    def test_input_not_mutated(self):
        descriptor = {'regions': 'us-east-1'}
        validate_credentials('aws', descriptor)
        assert descriptor == {'regions': 'us-east-1'}


class TestDescribeCredentials:
    """Secret masking."""

    def test_masks_secret_fields(self):
        described = describe_credentials({
            'type': 'credentials', 'accessKeyId': 'AKIA123', 'secretAccessKey': 'hunter2',
        })
        assert described == {'type': 'credentials', 'accessKeyId': 'AKIA123', 'secretAccessKey': '****'}

    def test_empty_secret_left_alone(self):
        assert describe_credentials({'token': ''}) == {'token': ''}

    def test_none(self):
        assert describe_credentials(None) == {}


# =============================================================================
# Stores
# =============================================================================

class TestCredentialStore:
    """Opaque handles into stored descriptors."""

    def test_put_get_remove(self):
        store = CredentialStore()
        ref = store.put({'token': 's.1'})

        assert ref.startswith('cred-')
        assert 's.1' not in ref
        assert store.get(ref) == {'token': 's.1'}

        store.remove(ref)
        with pytest.raises(ConfigurationError):
            store.get(ref)

    def test_returns_copies(self):
        store = CredentialStore()
        ref = store.put({'regions': ['us-east-1']})

        store.get(ref)['regions'].append('eu-west-1')

        assert store.get(ref) == {'regions': ['us-east-1']}


class TestSourceRegistry:
    """One source per provider."""

    def test_register(self, registry, descriptors):
        source = registry.register('vault', descriptors['vault'])

        assert source.status == STATUS_CONNECTED
        assert source.credentials_ref.startswith('cred-')
        assert 's.secret' not in repr(source)
        assert registry.credentials_for(source)['token'] == 's.secret'

    def test_register_invalid_keeps_registry_unchanged(self, registry):
        with pytest.raises(ConfigurationError):
            registry.register('terraform', {'type': 'local'})
        assert registry.sources() == []

    def test_reconnect_replaces_source(self, registry):
        first = registry.register('aws', {'profile': 'dev'})
        second = registry.register('aws', {'profile': 'prod'})

        assert registry.get('aws') is second
        assert len(registry.sources()) == 1
        assert len(registry.credentials) == 1
        with pytest.raises(ConfigurationError):
            registry.credentials_for(first)

    def test_disconnect(self, registry, descriptors):
        source = registry.register('docker', descriptors['docker'])

        assert registry.disconnect('docker') is True
        assert source.status == STATUS_DISCONNECTED
        assert registry.get('docker') is None
        assert len(registry.credentials) == 0
        assert registry.disconnect('docker') is False

    def test_enabled_skips_disconnected(self, registry, descriptors):
        registry.register('aws', descriptors['aws'])
        registry.register('gcp', descriptors['gcp'], status=STATUS_DISCONNECTED)

        assert [s.provider for s in registry.enabled()] == ['aws']

    def test_describe_masks(self, registry, descriptors):
        source = registry.register('vault', descriptors['vault'])
        assert registry.describe(source)['token'] == '****'

    def test_describe_after_disconnect(self, registry, descriptors):
        source = registry.register('vault', descriptors['vault'])
        registry.disconnect('vault')
        assert registry.describe(source) == {}
