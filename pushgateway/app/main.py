"""
FastAPI application entry point.

Run with:
    uvicorn pushgateway.app.main:app --port 7022

Or from the project root:
    python -m uvicorn pushgateway.app.main:app --reload
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

# ── Core infrastructure ──
from pushgateway.app.core.config import Settings, get_settings
from pushgateway.app.core.logging_config import setup_logging, get_logger
from pushgateway.app.core.errors import register_error_handlers
from pushgateway.app.core.middleware import RequestLoggingMiddleware
from pushgateway.app.core.health import HealthStatus, run_health_check

# ── Push dispatch ──
from pushgateway.app.push.engine import DispatchEngine
from pushgateway.app.push.jitter import JitterEstimator
from pushgateway.app.push.metrics import MetricsRecorder
from pushgateway.app.push.models import ProviderFamily
from pushgateway.app.push.router import ProviderRouter, SenderRegistry
from pushgateway.app.push.senders.base import Sender, SimulatedSender

# ── API routers ──
from pushgateway.app.api.v1.push import router as push_router

logger = get_logger(__name__)


# ── Sender construction ──

def build_senders(app_settings: Settings) -> SenderRegistry:
    """Senders for every provider family the settings make available."""
    if app_settings.is_simulation:
        logger.info("Sender mode: simulation (no push leaves this process)")
        return SenderRegistry({family: SimulatedSender(family) for family in ProviderFamily})

    # Provider SDKs load in live mode only
    from pushgateway.app.push.senders.apns import ApnsSender
    from pushgateway.app.push.senders.fcm import FcmSender

    senders: Dict[ProviderFamily, Sender] = {}
    if app_settings.FCM_SERVICE_ACCOUNT_PATH:
        senders[ProviderFamily.FCM] = FcmSender.from_service_account_file(
            app_settings.FCM_SERVICE_ACCOUNT_PATH,
            endpoint=app_settings.FCM_ENDPOINT,
            timeout_seconds=app_settings.FCM_REQUEST_TIMEOUT,
        )
    else:
        logger.warning("FCM_SERVICE_ACCOUNT_PATH not set; FCM devices will be rejected")

    apns_fields = (
        app_settings.APNS_KEY_PATH, app_settings.APNS_KEY_ID,
        app_settings.APNS_TEAM_ID, app_settings.APNS_TOPIC,
    )
    if all(apns_fields):
        senders[ProviderFamily.APNS] = ApnsSender.from_key_file(
            app_settings.APNS_KEY_PATH,
            key_id=app_settings.APNS_KEY_ID,
            team_id=app_settings.APNS_TEAM_ID,
            topic=app_settings.APNS_TOPIC,
            use_sandbox=app_settings.APNS_SANDBOX,
            timeout_seconds=app_settings.APNS_REQUEST_TIMEOUT,
        )
    else:
        logger.warning("APNs key settings incomplete; APNs devices will be rejected")

    return SenderRegistry(senders)


# ── Application factory ──

def create_app(
    app_settings: Optional[Settings] = None,
    *,
    senders: Optional[SenderRegistry] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    """
    Build the gateway application.

    Parameters
    ----------
    app_settings : Settings | None
        Defaults to the cached environment settings.
    senders : SenderRegistry | None
        Pre-built senders (tests); built from the settings when omitted.
    sleep : callable
        Sleep used for jitter and retry backoff.
    """
    app_settings = app_settings or get_settings()
    senders = senders if senders is not None else build_senders(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown events."""
        logger.info(
            "Starting %s v%s [%s], app id %s",
            app_settings.APP_NAME, app_settings.APP_VERSION,
            app_settings.ENVIRONMENT, app_settings.APP_ID,
        )
        yield
        await app.state.senders.aclose()
        logger.info("Shutting down %s", app_settings.APP_NAME)

    app = FastAPI(
        title=app_settings.APP_NAME,
        description=(
            "Push gateway. Fans notifications out to FCM and APNs with "
            "adaptive timing jitter and bounded retries."
        ),
        version=app_settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Shared dispatch state ──
    metrics = MetricsRecorder()
    jitter = JitterEstimator(app_settings.MAX_JITTER_DELAY)
    router = ProviderRouter(app_settings, senders)

    app.state.settings = app_settings
    app.state.senders = senders
    app.state.metrics = metrics
    app.state.jitter = jitter
    app.state.engine = DispatchEngine(app_settings, router, jitter, metrics, sleep=sleep)

    # ── Middleware & error handlers ──
    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)

    # ── Routers ──
    app.include_router(push_router)

    # ── Operational endpoints ──

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Health probe for every dispatch subsystem."""
        report = await run_health_check(request.app.state)
        if report.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    @app.get("/version", tags=["health"])
    async def version(request: Request):
        return {"version": request.app.state.settings.APP_VERSION}

    @app.get("/metrics", tags=["observability"], include_in_schema=False)
    async def prometheus_metrics(request: Request) -> Response:
        """Prometheus scrape endpoint."""
        return Response(
            content=generate_latest(request.app.state.metrics.registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    return app


# ── Initialise logging ──
setup_logging()

app = create_app()

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(app, host=_settings.HOST, port=_settings.PORT)
