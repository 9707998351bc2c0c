"""
Utility functions for CloudInv adapters and services.

Logging Level Standards:
------------------------
- ERROR: Failures that stop an entire adapter or resource type
         "Failed to collect RDS instances in us-east-1: {e}"
- WARNING: Partial failures and skipped sources
           "Adapter kubernetes timed out after 60.0s"
- INFO: Progress messages, resource counts
        "Found 42 EC2 instances"
        "Refresh complete: 120 resources from 3 sources"
- DEBUG: Per-item skips that don't affect overall collection
         "Skipping EC2 instance without InstanceId"
"""
import json
import logging
import os
import re
import sys
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from rich.console import Console
from rich.table import Table
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .constants import DEFAULT_RETRY_ATTEMPTS
from .models import CollectionResult

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])


# =============================================================================
# Error Taxonomy
# =============================================================================

class CollectionError(Exception):
    """Base class for errors raised while talking to a provider."""

    def __init__(self, message: str, provider: Optional[str] = None,
                 original_error: Optional[BaseException] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class AuthError(CollectionError):
    """Bad, expired or insufficient credentials. Never retried automatically.

    permission_denied distinguishes "authenticated but not allowed" (403)
    from "not authenticated" (401).
    """

    def __init__(self, message: str, provider: Optional[str] = None,
                 original_error: Optional[BaseException] = None,
                 permission_denied: bool = False):
        self.permission_denied = permission_denied
        super().__init__(message, provider, original_error)


class TransientError(CollectionError):
    """Timeout, throttling or network failure. Eligible for bounded retry."""


class ConfigurationError(CollectionError):
    """Caller input is invalid. Fails immediately without retry."""


class PartialCollectionError(Exception):
    """One or more sources failed during a refresh that still produced a snapshot."""

    def __init__(self, failed_providers: List[str], errors: Dict[str, Optional[str]]):
        self.failed_providers = failed_providers
        self.errors = errors
        super().__init__(f"Collection failed for: {', '.join(failed_providers)}")


class EmptySnapshotError(Exception):
    """No source has ever been collected successfully."""


class RefreshCancelledError(Exception):
    """A refresh was cancelled; the previously published snapshot is unchanged."""


# Error categories used by classify_error
_AUTH = 'auth'
_PERMISSION = 'permission'
_TRANSIENT = 'transient'
_CONFIG = 'config'

# AWS error codes that indicate bad or missing credentials
AWS_AUTH_ERROR_CODES = {
    'InvalidClientTokenId', 'ExpiredToken', 'ExpiredTokenException',
    'AuthFailure', 'InvalidIdentityToken', 'CredentialsNotFound',
    'SignatureDoesNotMatch', 'UnrecognizedClientException',
}

# AWS error codes that indicate valid credentials without permission
AWS_PERMISSION_ERROR_CODES = {
    'AccessDenied', 'AccessDeniedException', 'UnauthorizedAccess',
    'UnauthorizedOperation', 'AllAccessDisabled',
}

# AWS error codes worth retrying
AWS_TRANSIENT_ERROR_CODES = {
    'Throttling', 'ThrottlingException', 'RequestLimitExceeded',
    'TooManyRequestsException', 'ProvisionedThroughputExceededException',
    'ServiceUnavailable', 'RequestTimeout', 'RequestTimeoutException',
    'InternalError', 'SlowDown',
}

# Exception type names, grouped by category. Matching by name keeps this
# module free of SDK imports.
_EXCEPTION_CATEGORIES = {
    # botocore
    'NoCredentialsError': _AUTH,
    'PartialCredentialsError': _AUTH,
    'UnauthorizedSSOTokenError': _AUTH,
    'SSOTokenLoadError': _AUTH,
    'TokenRetrievalError': _AUTH,
    'ProfileNotFound': _CONFIG,
    'NoRegionError': _CONFIG,
    'InvalidRegionError': _CONFIG,
    'ParamValidationError': _CONFIG,
    'EndpointConnectionError': _TRANSIENT,
    'ConnectTimeoutError': _TRANSIENT,
    'ReadTimeoutError': _TRANSIENT,
    'ConnectionClosedError': _TRANSIENT,
    # azure-core / azure-identity
    'ClientAuthenticationError': _AUTH,
    'CredentialUnavailableError': _AUTH,
    'ServiceRequestError': _TRANSIENT,
    'ServiceResponseError': _TRANSIENT,
    'ServiceRequestTimeoutError': _TRANSIENT,
    'ServiceResponseTimeoutError': _TRANSIENT,
    # google-auth / google-api-core
    'DefaultCredentialsError': _AUTH,
    'RefreshError': _AUTH,
    'Unauthenticated': _AUTH,
    'PermissionDenied': _PERMISSION,
    'Forbidden': _PERMISSION,  # also hvac.exceptions.Forbidden
    'TooManyRequests': _TRANSIENT,
    'ResourceExhausted': _TRANSIENT,
    'ServiceUnavailable': _TRANSIENT,
    'DeadlineExceeded': _TRANSIENT,
    'InternalServerError': _TRANSIENT,  # also hvac
    'GatewayTimeout': _TRANSIENT,
    'BadGateway': _TRANSIENT,  # also hvac
    'RetryError': _TRANSIENT,
    # kubernetes
    'ConfigException': _CONFIG,
    # hvac
    'Unauthorized': _AUTH,
    'VaultDown': _TRANSIENT,
    'RateLimitExceeded': _TRANSIENT,
    'InvalidRequest': _CONFIG,
    # docker (daemon unreachable)
    'DockerException': _TRANSIENT,
    # requests / urllib3
    'ConnectTimeout': _TRANSIENT,
    'ReadTimeout': _TRANSIENT,
    'Timeout': _TRANSIENT,
    'MaxRetryError': _TRANSIENT,
    'NewConnectionError': _TRANSIENT,
    'ProtocolError': _TRANSIENT,
}

_HTTP_STATUS_CATEGORIES = {
    401: _AUTH,
    403: _PERMISSION,
    408: _TRANSIENT,
    429: _TRANSIENT,
    500: _TRANSIENT,
    502: _TRANSIENT,
    503: _TRANSIENT,
    504: _TRANSIENT,
}


def _status_code(exc: BaseException) -> Optional[int]:
    """Extract an HTTP status code from an SDK exception, if it carries one."""
    # Azure HttpResponseError, docker APIError
    status = getattr(exc, 'status_code', None)
    if isinstance(status, int):
        return status
    # kubernetes ApiException
    status = getattr(exc, 'status', None)
    if isinstance(status, int):
        return status
    # google-api-core exceptions
    status = getattr(exc, 'code', None)
    if isinstance(status, int):
        return status
    # googleapiclient HttpError
    resp = getattr(exc, 'resp', None)
    status = getattr(resp, 'status', None)
    if isinstance(status, int):
        return status
    return None


def _error_category(exc: BaseException) -> Optional[str]:
    exc_type_name = type(exc).__name__

    # AWS - botocore ClientError carries a structured error code
    if exc_type_name == 'ClientError':
        response = getattr(exc, 'response', {}) or {}
        error_code = response.get('Error', {}).get('Code', '')
        if error_code in AWS_PERMISSION_ERROR_CODES:
            return _PERMISSION
        if error_code in AWS_AUTH_ERROR_CODES:
            return _AUTH
        if error_code in AWS_TRANSIENT_ERROR_CODES:
            return _TRANSIENT
        status = response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        return _HTTP_STATUS_CATEGORIES.get(status)

    if exc_type_name in _EXCEPTION_CATEGORIES:
        return _EXCEPTION_CATEGORIES[exc_type_name]

    status = _status_code(exc)
    if status is not None:
        return _HTTP_STATUS_CATEGORIES.get(status)

    # requests.ConnectionError subclasses IOError, builtins ConnectionError
    # and TimeoutError subclass OSError
    if isinstance(exc, (ConnectionError, TimeoutError)) or exc_type_name == 'ConnectionError':
        return _TRANSIENT
    if isinstance(exc, (FileNotFoundError, IsADirectoryError, json.JSONDecodeError)):
        return _CONFIG

    return None


def classify_error(exc: BaseException, context: str, provider: str) -> CollectionError:
    """
    Map an SDK exception onto the CollectionError taxonomy.

    Classification uses exception types, structured error codes and HTTP
    status codes only, never the human-readable message.

    Args:
        exc: The caught exception
        context: What was being attempted (e.g., "collect VMs")
        provider: Provider name (aws, azure, gcp, ...)

    Returns:
        AuthError, TransientError, ConfigurationError, or a plain
        CollectionError for anything unrecognized. An exception that is
        already a CollectionError is returned unchanged.
    """
    if isinstance(exc, CollectionError):
        return exc

    category = _error_category(exc)
    if category == _AUTH:
        return AuthError(
            f"Authentication failed while trying to {context}: {exc}",
            provider=provider, original_error=exc,
        )
    if category == _PERMISSION:
        return AuthError(
            f"Permission denied while trying to {context}: {exc}",
            provider=provider, original_error=exc, permission_denied=True,
        )
    if category == _TRANSIENT:
        return TransientError(
            f"Transient failure while trying to {context}: {exc}",
            provider=provider, original_error=exc,
        )
    if category == _CONFIG:
        return ConfigurationError(
            f"Invalid configuration while trying to {context}: {exc}",
            provider=provider, original_error=exc,
        )
    return CollectionError(f"Failed to {context}: {exc}", provider=provider, original_error=exc)


# =============================================================================
# Retry
# =============================================================================

def retry_with_backoff(
    max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = (TransientError,)
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Only TransientError is retried by default; auth and configuration
    errors surface immediately.

    Example:
        @retry_with_backoff(max_attempts=3)
        def collect_ec2_instances(session, region, account_id):
            ...
    """
    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)
    return decorator


# =============================================================================
# Collection Helpers
# =============================================================================

def parallel_collect(
    collection_tasks: List[Tuple[str, Callable, tuple]],
    result: CollectionResult,
    parallel_workers: int = 1,
    cancel: Optional[threading.Event] = None,
) -> CollectionResult:
    """
    Run an adapter's per-resource-type collectors, serially or in parallel.

    Each task is a tuple of (name, function, args). A failing task becomes a
    diagnostic on the result and the other tasks keep running. AuthError and
    ConfigurationError abort the whole adapter because every remaining task
    would fail the same way.

    Args:
        collection_tasks: List of (name, collect_fn, args) tuples
        result: CollectionResult that receives resources and diagnostics
        parallel_workers: Number of threads (1 = serial, >1 = parallel)
        cancel: Event checked as each task starts; once set, remaining tasks are skipped

    Raises:
        AuthError, ConfigurationError: If any task hits one
    """
    provider = result.provider

    def run_task(name: str, collect_fn: Callable, args: tuple) -> List[Any]:
        if cancel is not None and cancel.is_set():
            logger.info(f"[{provider}] Cancelled before collecting {name}")
            return []
        try:
            return collect_fn(*args) or []
        except Exception as e:
            error = classify_error(e, f"collect {name}", provider)
            if isinstance(error, (AuthError, ConfigurationError)):
                raise error from e
            logger.warning(f"[{provider}] Error collecting {name}: {error}")
            result.add_diagnostic(f"{name}: {error}")
            return []

    if parallel_workers <= 1:
        for name, collect_fn, args in collection_tasks:
            result.extend(run_task(name, collect_fn, args))
        return result

    with ThreadPoolExecutor(max_workers=parallel_workers) as executor:
        futures = {
            executor.submit(run_task, name, collect_fn, args): name
            for name, collect_fn, args in collection_tasks
        }

        try:
            for future in as_completed(futures):
                resources = future.result()
                if resources:
                    result.extend(resources)
                    logger.debug(f"[{provider}] Collected {len(resources)} {futures[future]}")
        except (AuthError, ConfigurationError):
            for pending in futures:
                pending.cancel()
            raise

    return result


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def to_iso(value: Any) -> Optional[str]:
    """Render a datetime (or anything else) as an ISO string for JSON output."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat().replace('+00:00', 'Z')
    return str(value)


def tags_to_dict(tags: Any) -> Dict[str, str]:
    """
    Convert provider tag/label formats to a flat string dictionary.

    Supports:
    - AWS format: [{"Key": "Name", "Value": "my-instance"}]
    - Azure/GCP/Kubernetes format: {"Name": "my-instance"}
    """
    if not tags:
        return {}

    if isinstance(tags, dict):
        return {str(k): '' if v is None else str(v) for k, v in tags.items()}

    if isinstance(tags, list):
        return {tag.get("Key", ""): tag.get("Value", "") for tag in tags if tag.get("Key")}

    return {}


def get_name_from_tags(tags: Dict[str, str], resource_id: str = "") -> str:
    """Get name from tags, falling back to resource ID."""
    return tags.get("Name", tags.get("name", resource_id))


# =============================================================================
# Logging
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive ID using consistent hashing.

    Example: 123456789012 -> acc-a3f8b2c1
    """
    import hashlib
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}"


_LOG_REDACT_PATTERNS = [
    # AWS ARNs, before the bare account pattern
    (re.compile(r'(arn:aws[-a-z]*):([a-z0-9-]+):([a-z0-9-]*):(\d{12}):'),
     lambda m: f"{m.group(1)}:{m.group(2)}:{m.group(3)}:{hash_sensitive_id(m.group(4), 'acc-')}:"),
    # AWS account IDs
    (re.compile(r'\b(\d{12})\b'), lambda m: hash_sensitive_id(m.group(1), 'acc-')),
    # Azure subscription paths
    (re.compile(r'(/subscriptions/)([0-9a-f-]{36})', re.IGNORECASE),
     lambda m: f"{m.group(1)}{hash_sensitive_id(m.group(2).lower(), 'sub-')}"),
    # GUIDs (tenant IDs, client IDs)
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: hash_sensitive_id(m.group(1).lower(), 'id-')),
    # GCP project paths
    (re.compile(r'(projects/)([a-z][a-z0-9-]{4,28}[a-z0-9])'),
     lambda m: f"{m.group(1)}{hash_sensitive_id(m.group(2), 'prj-')}"),
    # Vault tokens (hvs./s. service tokens, hvb. batch tokens)
    (re.compile(r'\b(hv[sb]\.[A-Za-z0-9_-]{20,}|s\.[A-Za-z0-9]{24})\b'), lambda m: '[REDACTED-TOKEN]'),
]


def redact_log_message(message: str) -> str:
    """Redact account IDs, subscriptions, projects and tokens from a log message."""
    if not message:
        return message
    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)
    return message


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts sensitive data from log messages.

    Uses consistent hashing so the same ID produces the same hash,
    allowing correlation across log lines.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write redacted logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"cloudinv_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger(__name__)


# =============================================================================
# Output
# =============================================================================

def write_json(data: Any, filepath: str) -> None:
    """Write data as JSON to a local file (mode 0600), s3:// or gs:// path."""
    body = json.dumps(data, indent=2, default=str)

    if filepath.startswith("s3://"):
        import boto3
        bucket, _, key = filepath[len("s3://"):].partition("/")
        boto3.client('s3').put_object(
            Bucket=bucket, Key=key or "inventory.json",
            Body=body, ContentType="application/json",
        )
        logger.info(f"Wrote {filepath}")
        return

    if filepath.startswith("gs://"):
        from google.cloud import storage
        bucket, _, key = filepath[len("gs://"):].partition("/")
        blob = storage.Client().bucket(bucket).blob(key or "inventory.json")
        blob.upload_from_string(body, content_type="application/json")
        logger.info(f"Wrote {filepath}")
        return

    # Inventory may contain sensitive resource metadata: owner read/write only
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(body)
    logger.info(f"Wrote {filepath}")


def print_summary_table(rows: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """Print a per-source summary table to the console."""
    console = console or Console()
    if not rows:
        console.print("No sources configured.")
        return

    table = Table(title="Inventory Summary")
    table.add_column("Provider", style="bold")
    table.add_column("Status")
    table.add_column("Resources", justify="right")
    table.add_column("Size (GB)", justify="right")
    table.add_column("Last Error", overflow="fold")

    total_count = 0
    total_gb = 0.0
    for row in rows:
        status = row.get('status', '')
        style = "green" if status == "connected" else "red"
        table.add_row(
            row.get('provider', ''),
            f"[{style}]{status}[/{style}]",
            str(row.get('resource_count', 0)),
            f"{row.get('total_gb', 0):,.1f}",
            row.get('last_error') or '',
        )
        total_count += row.get('resource_count', 0)
        total_gb += row.get('total_gb', 0)

    table.add_section()
    table.add_row("TOTAL", "", str(total_count), f"{total_gb:,.1f}", "")
    console.print(table)
