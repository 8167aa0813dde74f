"""
FastAPI skeleton shared by the authorization services.

Subclasses add their own routes and override ``start``/``stop`` and
``_check_dependencies``; the skeleton owns request correlation, the
``/health`` and ``/metrics`` routes and the mapping of
``AccessLayerException`` onto HTTP responses.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

SERVICE_VERSION = "1.0.0"
REQUEST_ID_HEADER = "x-request-id"


class BaseService:
    """Base service with correlation, health, metrics and error mapping."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._started_at = time.monotonic()

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description="Repository authorization",
            version=SERVICE_VERSION,
            docs_url="/docs" if self._is_local else None,
            redoc_url=None,
            lifespan=self._lifespan,
        )

        if self.config.enable_tracing:
            from shared.tracing import configure_tracing
            configure_tracing(service_name, self.config.otel_exporter, app=self.app)

        self._install_middleware()
        self._install_error_handlers()
        self._install_operational_routes()

    @property
    def _is_local(self) -> bool:
        return self.config.env == "local"

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.start()
        try:
            yield
        finally:
            await self.stop()

    async def start(self):
        """Acquire resources before serving. Override in subclasses."""

    async def stop(self):
        """Release resources after serving. Override in subclasses."""

    def _install_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self._is_local else [],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def correlate_request(request: Request, call_next):
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            started = time.perf_counter()
            try:
                response = await call_next(request)
            finally:
                clear_context()
            duration = time.perf_counter() - started

            # Route templates keep the endpoint label bounded
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            self.metrics.record_http_request(request.method, endpoint, response.status_code, duration)
            self.logger.debug(
                "Request served",
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id
            )

            response.headers[REQUEST_ID_HEADER] = request_id
            return response

    def _install_error_handlers(self):

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_error(request: Request, exc: AccessLayerException):
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log("Request aborted", code=exc.code, message=exc.message, details=exc.details)
            self.metrics.record_error(exc.code)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def unexpected_error(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}
            )

    def _install_operational_routes(self):

        @self.app.get("/health")
        async def health():
            """Liveness plus the state of each dependency."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)}
                )

            status = "ok" if all(state == "ok" for state in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)
            body = {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": round(time.monotonic() - self._started_at, 3),
                "dependencies": dependencies,
                "store_backend": self.config.store_backend,
                "version": SERVICE_VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }
            return JSONResponse(status_code=200 if status == "ok" else 503, content=body)

        @self.app.get("/metrics")
        async def metrics():
            """Prometheus exposition of this service's private registry."""
            return Response(content=generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Map each dependency name to "ok" or "error". Override in subclasses."""
        return {}

    def run(self):
        """Serve the application with uvicorn."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
