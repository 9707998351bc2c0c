"""
CloudInv - Configuration

Settings are layered: built-in defaults, CLOUDINV_* environment variables,
a YAML file (--config, or ./cloudinv.yaml and friends), then CLI flags.

Config file example:
```yaml
log_level: INFO

server:
  host: 0.0.0.0
  port: 8080

scheduler:
  adapter_timeout: 60
  max_concurrency: 4

sources:
  aws:
    type: profile
    profile: production
    regions: [us-east-1, eu-west-1]
  vault:
    type: token
    server: https://vault.example.com:8200
    token: ${VAULT_TOKEN}   # env var substitution
```
"""
import os
import re
import stat
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from .constants import (
    DEFAULT_ADAPTER_TIMEOUT,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
)
from .utils import ConfigurationError

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './cloudinv.yaml',
    './cloudinv.yml',
    '~/.cloudinv/config.yaml',
    '~/.cloudinv/config.yml',
]

ENV_PREFIX = 'CLOUDINV_'

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'log_level': 'CLOUDINV_LOG_LEVEL',
    'output': 'CLOUDINV_OUTPUT',
    'log_dir': 'CLOUDINV_LOG_DIR',
    'server.host': 'CLOUDINV_HOST',
    'server.port': 'CLOUDINV_PORT',
    'scheduler.adapter_timeout': 'CLOUDINV_ADAPTER_TIMEOUT',
    'scheduler.max_concurrency': 'CLOUDINV_MAX_CONCURRENCY',
    'scheduler.refresh_on_connect': 'CLOUDINV_REFRESH_ON_CONNECT',
}

_INT_KEYS = ('server.port', 'scheduler.max_concurrency')
_FLOAT_KEYS = ('scheduler.adapter_timeout',)
_BOOL_KEYS = ('scheduler.refresh_on_connect',)

DEFAULT_CONFIG: Dict[str, Any] = {
    'log_level': 'INFO',
    'server': {
        'host': DEFAULT_SERVER_HOST,
        'port': DEFAULT_SERVER_PORT,
    },
    'scheduler': {
        'adapter_timeout': DEFAULT_ADAPTER_TIMEOUT,
        'max_concurrency': DEFAULT_MAX_CONCURRENCY,
        'refresh_on_connect': True,
    },
    'sources': {},
}


# ${NAME} or ${NAME:-fallback}
_ENV_REF = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _expand_env(value: Any) -> Any:
    """Replace ${NAME} references in every string of a parsed YAML tree."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ''), value)
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    return value


def _lookup(config: Dict, dotted: str) -> Any:
    """config['a']['b'] for 'a.b', or None when any level is missing."""
    node: Any = config
    for part in dotted.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _assign(config: Dict, dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split('.')
    for part in parents:
        config = config.setdefault(part, {})
    config[leaf] = value


def _coerce(key_path: str, value: Any) -> Any:
    """Convert string values from env/CLI to the type a key expects."""
    if value is None or not isinstance(value, str):
        return value
    try:
        if key_path in _INT_KEYS:
            return int(value)
        if key_path in _FLOAT_KEYS:
            return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {key_path}: {value!r}") from e
    if key_path in _BOOL_KEYS:
        return value.lower() in ('true', '1', 'yes')
    return value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Parse a YAML config file and expand its ${NAME} references.

    Raises:
        ConfigurationError: file missing, not YAML, or not a mapping
    """
    path = Path(config_path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {config_path}")

    # sources: may carry secrets
    if path.stat().st_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"{config_path} is readable by other users; run chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")
    try:
        config = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    return _expand_env(config)


def find_default_config() -> Optional[str]:
    """First of DEFAULT_CONFIG_PATHS that exists, if any."""
    candidates = (Path(p).expanduser() for p in DEFAULT_CONFIG_PATHS)
    return next((str(p) for p in candidates if p.is_file()), None)


def load_env_config() -> Dict[str, Any]:
    """Settings taken from CLOUDINV_* variables, coerced to their key's type."""
    config: Dict[str, Any] = {}
    present = ((key, os.environ[var]) for key, var in ENV_VAR_MAPPING.items() if var in os.environ)
    for key, raw in present:
        _assign(config, key, _coerce(key, raw))
    return config


def merge_configs(*layers: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge config layers left to right.

    Nested mappings merge key by key; a None value never overrides.
    """
    merged: Dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if value is None:
                continue
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = merge_configs(merged[key], value)
            else:
                merged[key] = value
    return merged


# argparse dest -> config key
ARG_MAPPING = {
    'log_level': 'log_level',
    'output': 'output',
    'log_dir': 'log_dir',
    'host': 'server.host',
    'port': 'server.port',
    'adapter_timeout': 'scheduler.adapter_timeout',
    'max_concurrency': 'scheduler.max_concurrency',
}


def args_to_config(args) -> Dict[str, Any]:
    """The subset of config keys set on the command line."""
    config: Dict[str, Any] = {}
    for dest, key in ARG_MAPPING.items():
        value = getattr(args, dest, None)
        if value is not None:
            _assign(config, key, _coerce(key, value))

    if getattr(args, 'no_refresh_on_connect', False):
        _assign(config, 'scheduler.refresh_on_connect', False)

    return config


def add_common_args(parser) -> None:
    """Options shared by collect.py and every provider script."""
    parser.add_argument('--config', '-c', help='Path to YAML config file')
    parser.add_argument('--output', '-o', help='Write the snapshot as JSON (local path, s3:// or gs://)')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--log-dir', help='Also write redacted logs to a file in this directory')
    parser.add_argument('--adapter-timeout', type=float, metavar='SECONDS',
                        help='Seconds each adapter may run (default: 60)')


def load_config(args=None) -> Dict[str, Any]:
    """
    Build the effective config: defaults, then CLOUDINV_* variables, then
    the config file (--config or the first default path found), then CLI
    flags. Later layers win.

    Raises:
        ConfigurationError: unreadable file or out-of-range values
    """
    layers = [DEFAULT_CONFIG, load_env_config()]

    config_path = getattr(args, 'config', None) or find_default_config()
    if config_path:
        layers.append(load_config_file(config_path))
    if args is not None:
        layers.append(args_to_config(args))

    merged = merge_configs(*layers)
    validate_config(merged)
    return merged


def validate_config(config: Dict[str, Any]) -> None:
    """Check scheduler and server values are in range."""
    timeout = _lookup(config, 'scheduler.adapter_timeout')
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigurationError(f"scheduler.adapter_timeout must be a positive number, got {timeout!r}")

    concurrency = _lookup(config, 'scheduler.max_concurrency')
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ConfigurationError(f"scheduler.max_concurrency must be >= 1, got {concurrency!r}")

    port = _lookup(config, 'server.port')
    if not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigurationError(f"server.port must be between 1 and 65535, got {port!r}")

    sources = config.get('sources') or {}
    if not isinstance(sources, dict):
        raise ConfigurationError("sources must be a mapping of provider to credential descriptor")


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# CloudInv Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Where "collect.py once" writes the snapshot (local path, s3:// or gs://)
# output: ./inventory.json

# Directory for redacted log files (account IDs, subscriptions and tokens masked)
# log_dir: ./logs

# =============================================================================
# HTTP Server (collect.py serve)
# =============================================================================
server:
  host: 127.0.0.1
  port: 8080

# =============================================================================
# Aggregation Scheduler
# =============================================================================
scheduler:
  # Seconds each adapter may run before it is marked as timed out
  adapter_timeout: 60

  # Adapters collected at the same time
  max_concurrency: 4

  # Refresh the snapshot in the background after a successful connect
  refresh_on_connect: true

# =============================================================================
# Sources registered at startup (same fields as POST /api/{provider}/connect)
# =============================================================================
sources:
  # aws:
  #   type: profile
  #   profile: default
  #   regions: [us-east-1, us-west-2]

  # azure:
  #   type: service_principal
  #   tenantId: ${AZURE_TENANT_ID}
  #   clientId: ${AZURE_CLIENT_ID}
  #   clientSecret: ${AZURE_CLIENT_SECRET}

  # gcp:
  #   type: gcloud
  #   projectId: my-project

  # kubernetes:
  #   type: kubeconfig
  #   kubeconfigPath: ~/.kube/config
  #   context: prod-cluster

  # docker:
  #   type: host
  #   host: unix:///var/run/docker.sock

  # vault:
  #   type: token
  #   server: https://vault.example.com:8200
  #   token: ${VAULT_TOKEN}

  # terraform:
  #   type: s3
  #   bucket: my-tf-state
  #   key: prod/terraform.tfstate
  #   region: us-east-1
'''
