"""
CloudInv - HTTP API

JSON endpoints over the source registry, aggregation scheduler, query
service and cost engine. Build an app with create_app(); collect.py serve
runs it under uvicorn.
"""
import logging
import threading
from typing import Any, Dict, Mapping, Optional

from fastapi import APIRouter, BackgroundTasks, Body, FastAPI, File, Query, Request, UploadFile
from fastapi.responses import JSONResponse

import docker_collect
from cloudinv.constants import (
    ALL_PROVIDERS,
    PROVIDER_AWS,
    PROVIDER_AZURE,
    PROVIDER_DOCKER,
    PROVIDER_GCP,
    PROVIDER_KUBERNETES,
    PROVIDER_OPENSHIFT,
)
from cloudinv.cost import build_cost_report
from cloudinv.credentials import SourceRegistry, validate_credentials
from cloudinv.k8s import list_contexts, write_private_kubeconfig
from cloudinv.models import Adapter
from cloudinv.query import QueryService
from cloudinv.scheduler import AggregationScheduler
from cloudinv.utils import (
    AuthError,
    CollectionError,
    ConfigurationError,
    EmptySnapshotError,
    RefreshCancelledError,
    classify_error,
)

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def error_status(error: CollectionError) -> int:
    """HTTP status for a CollectionError."""
    if isinstance(error, ConfigurationError):
        return 400
    if isinstance(error, AuthError):
        return 403 if error.permission_denied else 401
    return 502


def error_body(error: BaseException) -> Dict[str, Any]:
    return {"status": "error", "error": type(error).__name__, "message": str(error)}


class InventoryAPI:
    """Route handlers bound to one registry/scheduler/query set."""

    def __init__(
        self,
        registry: SourceRegistry,
        scheduler: AggregationScheduler,
        query: QueryService,
        adapters: Mapping[str, Adapter],
        refresh_on_connect: bool = True,
    ):
        self.registry = registry
        self.scheduler = scheduler
        self.query = query
        self.adapters = dict(adapters)
        self.refresh_on_connect = refresh_on_connect

    def _adapter(self, provider: str) -> Adapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ConfigurationError(f"Unsupported provider: {provider}", provider=provider)
        return adapter

    def _probe(self, adapter: Adapter, credentials: Dict[str, Any]) -> None:
        try:
            adapter.check_credentials(credentials)
        except CollectionError:
            raise
        except Exception as e:
            raise classify_error(e, "verify credentials", adapter.provider) from e

    def background_refresh(self) -> None:
        try:
            self.scheduler.refresh()
        except RefreshCancelledError as e:
            logger.warning(f"Background refresh did not publish: {e}")

    # =========================================================================
    # Sources
    # =========================================================================

    def connect(self, provider: str, descriptor: Optional[Dict[str, Any]],
                background: BackgroundTasks) -> Dict[str, Any]:
        adapter = self._adapter(provider)
        credentials = validate_credentials(provider, descriptor or {})
        self._probe(adapter, credentials)
        source = self.registry.register(provider, credentials)
        if self.refresh_on_connect:
            background.add_task(self.background_refresh)
        return {
            "status": "success",
            "message": f"Connected to {provider}",
            "provider": provider,
            "source": source.status_dict(),
        }

    def disconnect(self, provider: str) -> Dict[str, Any]:
        self._adapter(provider)
        removed = self.registry.disconnect(provider)
        return {
            "status": "success",
            "message": f"Disconnected {provider}" if removed else f"{provider} was not connected",
            "provider": provider,
        }

    def refresh(self) -> Any:
        try:
            snapshot = self.scheduler.refresh()
        except RefreshCancelledError as e:
            return JSONResponse(status_code=409, content=error_body(e))
        return {
            "status": "partial" if snapshot.partial else "success",
            "generatedAt": snapshot.generated_at,
            "resourceCount": len(snapshot.resources),
            "sources": snapshot.per_source_status,
        }

    def cancel_refresh(self) -> Dict[str, Any]:
        return {"status": "success", "cancelled": self.scheduler.cancel()}

    def check_credentials(self) -> Dict[str, bool]:
        """Re-probe every connected source; unconnected providers are False."""
        results = {}
        for provider in ALL_PROVIDERS:
            source = self.registry.get(provider)
            adapter = self.adapters.get(provider)
            if source is None or adapter is None:
                results[provider] = False
                continue
            try:
                self._probe(adapter, self.registry.credentials_for(source))
                results[provider] = True
            except CollectionError as e:
                logger.warning(f"Credential check failed for {provider}: {e}")
                results[provider] = False
        return results

    def status(self) -> Dict[str, Any]:
        sources = {}
        for source in self.registry.sources():
            entry = source.status_dict()
            entry["credentials"] = self.registry.describe(source)
            sources[source.provider] = entry
        return {
            "sources": sources,
            "refreshing": self.scheduler.refreshing,
            "store": self.scheduler.store.state,
            "generation": self.scheduler.store.generation,
        }

    # =========================================================================
    # Discovery
    # =========================================================================

    def discover(self, provider: str) -> Any:
        adapter = self._adapter(provider)
        if adapter.discover is None:
            raise ConfigurationError(f"{provider} has no discovery listing", provider=provider)
        source = self.registry.get(provider)
        credentials = self.registry.credentials_for(source) if source is not None else None
        try:
            return adapter.discover(credentials)
        except CollectionError:
            raise
        except Exception as e:
            raise classify_error(e, f"list {provider} choices", provider) from e


def create_app(
    registry: SourceRegistry,
    scheduler: AggregationScheduler,
    query: QueryService,
    adapters: Mapping[str, Adapter],
    config: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    """Build the FastAPI application."""
    config = config or {}
    refresh_on_connect = (config.get("scheduler") or {}).get("refresh_on_connect", True)
    api = InventoryAPI(registry, scheduler, query, adapters, refresh_on_connect=refresh_on_connect)

    app = FastAPI(
        title="CloudInv API",
        description="Multi-source infrastructure inventory",
        version=API_VERSION,
    )

    @app.exception_handler(EmptySnapshotError)
    async def empty_snapshot_handler(request: Request, exc: EmptySnapshotError):
        return JSONResponse(status_code=503, content=error_body(exc))

    @app.exception_handler(CollectionError)
    async def collection_error_handler(request: Request, exc: CollectionError):
        status_code = error_status(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(status_code=status_code, content=error_body(exc))

    router = APIRouter(prefix="/api")

    # Discovery and upload routes are registered before /{provider}/... ones
    @router.get("/aws/profiles")
    def aws_profiles():
        return {"profiles": api.discover(PROVIDER_AWS)}

    @router.get("/azure/subscriptions")
    def azure_subscriptions():
        return {"subscriptions": api.discover(PROVIDER_AZURE)}

    @router.get("/gcp/projects")
    def gcp_projects():
        return {"projects": api.discover(PROVIDER_GCP)}

    @router.get("/kubernetes/contexts")
    def kubernetes_contexts():
        return {"contexts": api.discover(PROVIDER_KUBERNETES)}

    @router.get("/openshift/contexts")
    def openshift_contexts():
        return {"contexts": api.discover(PROVIDER_OPENSHIFT)}

    @router.post("/docker/test-connection")
    def docker_test_connection(body: Optional[Dict[str, Any]] = Body(default=None)):
        descriptor = validate_credentials(PROVIDER_DOCKER, body or {})
        info = docker_collect.test_connection(descriptor)
        return {"status": "success", "message": f"Docker {info['version']} reachable", **info}

    def upload_kubeconfig(provider: str, kubeconfig: UploadFile) -> Dict[str, Any]:
        content = kubeconfig.file.read()
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConfigurationError("Uploaded kubeconfig is not UTF-8 text", provider=provider,
                                     original_error=e) from e
        path = write_private_kubeconfig(text)
        return {
            "status": "success",
            "path": path,
            "contexts": list_contexts({"kubeconfigPath": path}),
        }

    @router.post("/kubernetes/upload-kubeconfig")
    def kubernetes_upload_kubeconfig(kubeconfig: UploadFile = File(...)):
        return upload_kubeconfig(PROVIDER_KUBERNETES, kubeconfig)

    @router.post("/openshift/upload-kubeconfig")
    def openshift_upload_kubeconfig(kubeconfig: UploadFile = File(...)):
        return upload_kubeconfig(PROVIDER_OPENSHIFT, kubeconfig)

    @router.post("/{provider}/connect")
    def connect(provider: str, background: BackgroundTasks,
                descriptor: Optional[Dict[str, Any]] = Body(default=None)):
        return api.connect(provider, descriptor, background)

    @router.post("/{provider}/disconnect")
    def disconnect(provider: str):
        return api.disconnect(provider)

    @router.post("/refresh")
    def refresh():
        return api.refresh()

    @router.post("/refresh/cancel")
    def cancel_refresh():
        return api.cancel_refresh()

    @router.get("/data")
    def data(platform: Optional[str] = None):
        return query.data_view(platform)

    @router.get("/snapshots")
    def snapshots(platform: Optional[str] = None):
        return query.snapshot_view(platform)

    @router.get("/costs")
    def costs(platform: Optional[str] = None, cost_type: str = Query("all", alias="type"), mock: bool = False):
        return build_cost_report(query, platform, cost_type, mock)

    @router.get("/check-credentials")
    def check_credentials():
        return api.check_credentials()

    @router.get("/status")
    def status():
        return api.status()

    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok", "store": scheduler.store.state}

    return app


def start_background_refresh(scheduler: AggregationScheduler) -> threading.Thread:
    """Run the startup refresh without blocking the server."""
    def run():
        try:
            scheduler.refresh()
        except RefreshCancelledError as e:
            logger.warning(f"Startup refresh did not publish: {e}")

    thread = threading.Thread(target=run, name="cloudinv-startup-refresh", daemon=True)
    thread.start()
    return thread
