import logging
from typing import Optional

import httpx
from fastapi import FastAPI
from pydantic import BaseModel
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from src.storefront.analytics import BeaconSender
from src.storefront.config import StorefrontConfig, load_config
from src.storefront.identity import IdentityResolver
from src.storefront.personalization import PersonalizationClient, TargetClient
from src.storefront.routes import router
from src.storefront.services import Services

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str
    service: str
    target: str
    analytics: str


def build_services(conf: StorefrontConfig, http_client: httpx.AsyncClient) -> Services:
    """
    Wire the vendor clients. Without Target credentials the whole service
    runs in demo mode, so identity minting is switched off as well.
    """
    target = TargetClient.create(conf.target, http_client)
    org_id = conf.org_id if target is not None else None

    if not conf.analytics.enabled:
        logger.warning("Adobe Analytics tracking server / RSID not configured. A4T hits disabled.")

    return Services(
        config=conf,
        personalization=PersonalizationClient(target),
        identity=IdentityResolver(org_id, http_client, conf.identity),
        beacons=BeaconSender(conf.analytics, http_client),
    )


def create_app(conf: Optional[StorefrontConfig] = None, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Build the storefront application.

    Args:
        conf: Service configuration. Read from the environment when omitted.
        http_client: Shared client for all vendor calls. Tests inject one
            backed by ``httpx.MockTransport``.
    """
    conf = conf or load_config()
    http_client = http_client or httpx.AsyncClient()

    app = FastAPI(title="Personalized Storefront", version="1.0.0")
    app.state.services = build_services(conf, http_client)
    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        mode = "live" if conf.target.enabled else "demo"
        logger.info(f"Starting up storefront ({mode} mode)...")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down...")
        await http_client.aclose()

    @app.get("/metrics")
    async def metrics():
        """Expose Prometheus metrics."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint for k8s/LB. Demo mode still serves traffic."""
        return HealthResponse(
            status="healthy",
            service="storefront",
            target="configured" if conf.target.enabled else "demo",
            analytics="configured" if conf.analytics.enabled else "disabled",
        )

    return app
