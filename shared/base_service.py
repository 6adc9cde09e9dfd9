"""
Base service class for the product catalog services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.errors import CatalogError, ValidationError


class DrainingServer(uvicorn.Server):
    """uvicorn server that reports termination signals to the service.

    The callback runs before uvicorn stops listening, so the service can start
    refusing work while connections are still being drained.
    """

    def __init__(self, config: uvicorn.Config, on_exit_signal: Callable[[int], None]):
        super().__init__(config)
        self.on_exit_signal = on_exit_signal

    def handle_exit(self, sig: int, frame) -> None:
        self.on_exit_signal(sig)
        super().handle_exit(sig, frame)


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: Optional[ServiceConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.config = config or get_config(service_name)

        # Configure logging
        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)

        self.metrics = metrics or get_metrics_collector(service_name)
        self.tracer_provider = None

        # Create FastAPI app
        self.app = self._create_app()

        # Configure tracing if enabled
        if self.config.enable_tracing:
            self._setup_tracing()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        docs_enabled = self.config.environment == "development"
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Product catalog - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if docs_enabled else None,
            redoc_url="/redoc" if docs_enabled else None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.on_startup()
        try:
            yield
        finally:
            await self.on_shutdown()

    def _setup_tracing(self):
        from shared.tracing import configure_tracing

        try:
            self.tracer_provider = configure_tracing(
                self.service_name,
                self.config.otel_exporter_endpoint,
                environment=self.config.environment,
                app=self.app,
            )
        except Exception as e:
            self.logger.warning("Failed to initialize tracer", error=str(e))

    def _setup_middleware(self):
        """Set up middleware."""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.environment == "development" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/metrics", include_in_schema=False)
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            content, media_type = self.metrics.render()
            return Response(content=content, media_type=media_type)

        # Error handlers
        @self.app.exception_handler(CatalogError)
        async def catalog_exception_handler(request: Request, exc: CatalogError):
            """Handle CatalogError."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.info
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Malformed bodies are client errors, reported as 400."""
            error = ValidationError(
                "Malformed request body",
                details={"errors": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
                    for e in exc.errors()
                ]},
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_ERROR",
                    "message": str(exc),
                    "details": {}
                }
            )

    async def on_startup(self):
        """Start service components. Override in subclasses."""

    async def on_shutdown(self):
        """Stop service components. Override in subclasses."""

    def on_exit_signal(self, sig: int):
        """Called synchronously when SIGINT or SIGTERM arrives. Override in subclasses."""

    def create_server(self) -> DrainingServer:
        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
            timeout_graceful_shutdown=int(self.config.shutdown_grace_period),
        )
        return DrainingServer(config, self.on_exit_signal)

    def run(self):
        """Run the service."""
        self.logger.info("Server starting", port=self.config.port)
        self.create_server().run()
