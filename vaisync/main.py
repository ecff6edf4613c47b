"""
vaisync - webhook reliability layer for Vairify status callbacks and
outbound partner notifications.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from vaisync.config import get_settings
from vaisync.api.router import api_router
from vaisync.utils.exceptions import WebhookError
from vaisync.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("vaisync")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("vaisync starting up (env=%s)", settings.app_env)

    if not settings.vairify_webhook_secret:
        logger.warning(
            "VAIRIFY_WEBHOOK_SECRET not set - inbound webhook signatures will NOT be verified. "
            "Set the shared secret for production."
        )
    if not settings.outbound_signing_secret:
        logger.warning("OUTBOUND_SIGNING_SECRET not set - partner webhooks will be sent unsigned")

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []
    if settings.retry_worker_enabled:
        from vaisync.workers.retry_worker import run_retry_worker
        worker_tasks.append(asyncio.create_task(run_retry_worker()))
        logger.info("Retry worker started")
    else:
        logger.info("Retry worker disabled (RETRY_WORKER_ENABLED=false); passes run via manual trigger")

    yield

    logger.info("vaisync shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.gather(*worker_tasks, return_exceptions=True)

    from vaisync.database import dispose_engine
    from vaisync.utils.redis_client import close_redis
    await dispose_engine()
    await close_redis()
    logger.info("vaisync shutdown complete")


async def webhook_error_handler(request: Request, exc: WebhookError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error on %s %s: %s", request.method, request.url.path, str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc)},
    )


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level, settings.log_format)

    application = FastAPI(
        title="vaisync",
        description="Webhook reliability layer: verified intake, status derivation, retried delivery",
        version="1.0.0",
        lifespan=lifespan,
    )

    origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()] or ["*"]
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "apikey", "x-client-info", "x-vairify-signature",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(WebhookError, webhook_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    application.include_router(api_router)

    return application


app = create_app()
