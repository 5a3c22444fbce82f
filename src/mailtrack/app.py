"""Application entry point: FastAPI service plus periodic background sweeps.

Runs the HTTP API (uvicorn) and the batch jobs (stall sweep, daily digest,
email automations, and Gmail inbox polling when Gmail is configured)
concurrently in a single long-running process.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Sentry** error forwarding when ``SENTRY_DSN`` is set
- **Prometheus** ``/metrics`` plus request-id and CORS middleware
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailtrack.api import ROUTERS
from mailtrack.auth.credentials import CredentialStore
from mailtrack.auth.reconnect import ReconnectSupervisor
from mailtrack.config import Settings, get_settings, validate_settings
from mailtrack.digest.aggregator import DigestAggregator
from mailtrack.digest.sources import SqliteDigestSources
from mailtrack.digest.store import DigestStore
from mailtrack.domain.types import CredentialKind
from mailtrack.email.gmail_inbox import GmailInboxPoller, SyncCursorStore
from mailtrack.email.inbound import InboundReceiver
from mailtrack.email.outbound import OutboundSender
from mailtrack.email.tokens import TokenCodec
from mailtrack.email.transport import GmailApiTransport, SmtpTransport, TransportRouter
from mailtrack.health import register_health_routes
from mailtrack.observability.metrics import setup_metrics
from mailtrack.observability.middleware import CorsMiddleware, RequestIdMiddleware
from mailtrack.observability.sentry import get_sentry_processor, init_sentry
from mailtrack.schema import open_database
from mailtrack.threads.activities import ActivityLog
from mailtrack.threads.alerts import AlertStore
from mailtrack.threads.automations import EmailAutomations
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.threads.stall import StallDetector
from mailtrack.threads.tasks import FollowUpTaskStore

logger = structlog.get_logger()


def configure_logging(production: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        get_sentry_processor(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="mailtrack")


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Open the store and build every component of the service.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {"_settings": settings}

    db_path = settings.db_path
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_database(db_path)
    services["db_conn"] = conn

    registry = ThreadRegistry(conn)
    activities = ActivityLog(conn)
    tasks = FollowUpTaskStore(conn)
    credentials = CredentialStore(conn)
    codec = TokenCodec(settings.token_prefix)
    services.update(
        registry=registry,
        activities=activities,
        tasks=tasks,
        credentials=credentials,
        codec=codec,
    )

    transports: dict[CredentialKind, Any] = {
        CredentialKind.SMTP: SmtpTransport(
            default_host=settings.default_smtp_host,
            default_port=settings.default_smtp_port,
            timeout=settings.transport_timeout_seconds,
        ),
    }
    if settings.gmail_client_id:
        transports[CredentialKind.OAUTH] = GmailApiTransport(
            client_id=settings.gmail_client_id,
            client_secret=settings.gmail_client_secret.get_secret_value(),
            timeout=settings.transport_timeout_seconds,
        )
    else:
        logger.info("gmail_transport_disabled", reason="GMAIL_CLIENT_ID not set")

    services["sender"] = OutboundSender(
        credentials, registry, activities, TransportRouter(transports), codec
    )
    receiver = InboundReceiver(registry, activities, tasks, codec)
    services["receiver"] = receiver
    services["stall_detector"] = StallDetector(registry, settings.stall_threshold_days)
    services["digest_aggregator"] = DigestAggregator(
        SqliteDigestSources(conn),
        DigestStore(conn),
        horizon_days=settings.digest_horizon_days,
        urgent_days=settings.digest_urgent_days,
        stale_days=settings.stall_threshold_days,
        top_n=settings.digest_top_n,
    )
    services["reconnect"] = ReconnectSupervisor(credentials)
    services["alerts"] = AlertStore(conn)
    services["automations"] = EmailAutomations(
        registry,
        activities,
        tasks,
        services["alerts"],
        unanswered_days=settings.unanswered_reply_days,
    )
    services["inbox_poller"] = None
    if settings.gmail_client_id:
        services["inbox_poller"] = GmailInboxPoller(
            credentials,
            SyncCursorStore(conn),
            receiver,
            client_id=settings.gmail_client_id,
            client_secret=settings.gmail_client_secret.get_secret_value(),
            timeout=settings.transport_timeout_seconds,
        )

    logger.info("services_initialized", db_path=str(db_path))
    return services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Close the store connection on shutdown."""
    logger.info("fastapi_application_starting")
    yield
    conn = app.state.services.get("db_conn")
    if conn is not None:
        conn.close()
        logger.info("database_connection_closed")


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_request_error", path=request.url.path, exc_info=exc)
    return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with routers, middleware, metrics, and health.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="Mail Correlation Service", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("_settings") or get_settings()

    fastapi_app.add_middleware(CorsMiddleware)
    fastapi_app.add_middleware(RequestIdMiddleware)
    fastapi_app.add_exception_handler(Exception, _unhandled_error)

    for router in ROUTERS:
        fastapi_app.include_router(router)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)

    return fastapi_app


async def run_periodically(
    name: str, interval_seconds: float, job: Callable[[], Any]
) -> None:
    """Run the synchronous *job* every *interval_seconds*, forever.

    A failed run is logged and the loop waits for the next interval.

    Args:
        name: Job name for log events.
        interval_seconds: Delay between runs.
        job: Zero-argument callable executed in a worker thread.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(job)
            logger.info("periodic_job_completed", job=name)
        except Exception:
            logger.exception("periodic_job_failed", job=name)


async def main() -> None:
    """Main entry point: run the API and the periodic sweeps concurrently.

    1. Configure logging and Sentry
    2. Validate settings
    3. Initialize services and create the FastAPI app
    4. Run uvicorn and the periodic jobs with asyncio.gather
    """
    settings = get_settings()
    configure_logging(production=settings.production)
    init_sentry(settings.sentry_dsn, "production" if settings.production else "development")
    logger.info("application_starting")

    validate_settings(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.http_port,
        log_level="info",
    )
    server = uvicorn.Server(config)

    jobs = [
        run_periodically(
            "stall_sweep",
            settings.stall_sweep_interval_seconds,
            services["stall_detector"].sweep,
        ),
        run_periodically(
            "digest_sweep",
            settings.digest_interval_seconds,
            services["digest_aggregator"].generate_for_all,
        ),
        run_periodically(
            "email_automations",
            settings.automation_interval_seconds,
            services["automations"].run,
        ),
    ]
    if services["inbox_poller"] is not None:
        jobs.append(
            run_periodically(
                "gmail_inbox_poll",
                settings.gmail_poll_interval_seconds,
                services["inbox_poller"].poll_all,
            )
        )

    try:
        await asyncio.gather(server.serve(), *jobs)
    finally:
        conn = services.get("db_conn")
        if conn is not None:
            conn.close()


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
