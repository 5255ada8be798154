from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from apps.api.routers import ws
from apps.api.routers.v1 import cluster, jmx
from cassconsole.config import ConsoleConfig, load_config
from cassconsole.service import MonitoringService, create_monitoring_service
from cassconsole.utils import setup_logging


def create_app(
    service: Optional[MonitoringService] = None,
    config: Optional[ConsoleConfig] = None,
) -> FastAPI:
    """Build the API around one monitoring service.

    Without an explicit service, configuration is loaded and the service is
    constructed from it.
    """
    config = config or (service.config if service is not None else load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        monitoring = app.state.service
        await monitoring.start()
        try:
            yield
        finally:
            await monitoring.stop()

    app = FastAPI(
        title="Cassandra Console API",
        description="Node connection and metrics aggregation backend",
        version="1.0.0",
        lifespan=lifespan,
    )

    if service is None:
        setup_logging(config.logging)
        service = create_monitoring_service(config)
    app.state.service = service

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(jmx.router, prefix="/api/v1")
    app.include_router(cluster.router, prefix="/api/v1")
    app.include_router(ws.router)

    if config.api.prometheus:
        app.mount("/metrics", make_asgi_app(registry=service.telemetry.registry))

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "cassconsole-api"}

    return app
