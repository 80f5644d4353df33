"""
SLA Engine - Main Application
==============================

SLA compliance engine for a support-ticket tracker.

Modules:
- SLA: Deadlines, breach detection, SLA CRUD, compliance reports
- Assignment: Suitability scoring, automation rules, (re)assignment

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, scoring and rules
- Infrastructure: Database, notification webhook, scheduler, rule file
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Configuration and Core
from src.config import Settings, get_settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import (
    close_database,
    create_tables,
    get_engine,
    get_session_maker,
    init_database,
)
from src.sla.infrastructure import JobScheduler, WebhookNotificationService, build_task_store
from src.assignment.infrastructure import AutomationRulesManager

# Application services
from src.sla.application import (
    BreachDetector,
    INotificationService,
    ReportGenerator,
    SLAService,
)
from src.assignment.application import (
    AssignmentCoordinator,
    AutomationService,
    IRuleSetProvider,
    RoleResolver,
)

# Module Routers
from src.sla.interfaces import sla_router
from src.assignment.interfaces import assignment_router, automation_router

# Middleware and logging
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
    validation_exception_handler,
)
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_scheduler(app: FastAPI, settings: Settings) -> JobScheduler:
    """Register the engine's periodic jobs (not started)."""
    scheduler = JobScheduler()
    state = app.state

    scheduler.register(
        "breach_detection",
        lambda: state.breach_detector.run(),
        "interval",
        minutes=settings.breach_check_interval_minutes,
    )
    scheduler.register(
        "breach_reassignment",
        lambda: state.assignment_coordinator.reassign_breaching(),
        "interval",
        minutes=settings.reassignment_interval_minutes,
    )
    scheduler.register(
        "automation_sweep",
        lambda: state.automation_service.run_sweep(),
        "interval",
        minutes=settings.automation_interval_minutes,
    )
    scheduler.register(
        "daily_sla_report",
        lambda: state.report_generator.run(),
        "cron",
        hour=settings.report_hour_utc,
        minute=0,
    )
    return scheduler


def wire_services(
    app: FastAPI,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: INotificationService,
    rules_provider: IRuleSetProvider,
) -> None:
    """
    Build every service on one session factory and store them in app state.

    Controllers read their collaborators from ``request.app.state``.
    """
    store = build_task_store(session_factory)
    automation = AutomationService(
        store,
        rules_provider,
        RoleResolver.from_store(store),
        notifier,
        max_concurrency=settings.job_max_concurrency,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.notifier = notifier
    app.state.rules_provider = rules_provider
    app.state.sla_service = SLAService(store)
    app.state.breach_detector = BreachDetector(
        store, notifier, max_concurrency=settings.job_max_concurrency
    )
    app.state.report_generator = ReportGenerator(store, notifier)
    app.state.automation_service = automation
    app.state.assignment_coordinator = AssignmentCoordinator(
        store,
        automation,
        notifier,
        threshold=settings.assignment_score_threshold,
        max_concurrency=settings.job_max_concurrency,
    )
    app.state.scheduler = build_scheduler(app, settings)
    app.state.wired = True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load automation rules and watch the rule file
    4. Wire services (unless already wired)
    5. Start job scheduler

    SHUTDOWN:
    1. Stop job scheduler
    2. Stop rule file watcher
    3. Close notification client and database connections
    """
    settings: Settings = app.state.settings

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    rules_manager = None
    notifier = None
    owns_database = not getattr(app.state, "wired", False)

    if owns_database:
        logger.info("Initializing database")
        init_database(settings)
        # Use Alembic in production
        await create_tables(get_engine())

        rules_manager = AutomationRulesManager(settings.automation_rules_path)
        rules_manager.load()
        rules_manager.start_watching()

        notifier = WebhookNotificationService(
            webhook_url=settings.notification_webhook_url,
            sender=settings.notification_sender,
            timeout_seconds=settings.notification_timeout_seconds,
        )
        wire_services(app, settings, get_session_maker(), notifier, rules_manager)

    scheduler: JobScheduler = app.state.scheduler
    if settings.scheduler_enabled:
        await scheduler.start()
    else:
        logger.info("Job scheduler disabled")

    logger.info("SLA engine started")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")

    await scheduler.stop()

    if rules_manager:
        rules_manager.stop_watching()
    if notifier:
        await notifier.close()
    if owns_database:
        await close_database()

    logger.info("SLA engine shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    notifier: Optional[INotificationService] = None,
    rules_provider: Optional[IRuleSetProvider] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    When ``session_factory`` is given the services are wired immediately
    against it and startup leaves the database alone.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="SLA Engine API",
        description="""
    ## SLA Compliance Engine

    Deadline tracking, breach detection, rule-based automation and
    score-based assignment for a support-ticket tracker.

    ### SLA
    - `GET/POST /slas`, `GET/PUT/DELETE /slas/{id}`
    - `GET /slas/breaching` - tickets past a deadline right now
    - `GET /slas/statistics` - compliance per SLA

    ### Assignment & Automation
    - `POST /assignments/tickets/{id}/auto-assign`
    - `POST /assignments/reassign-breaching`
    - `GET /assignments/tickets/{id}/decisions`
    - `POST /automation/tickets/{id}/run`

    ### Jobs
    - `GET /jobs`, `POST /jobs/{name}/run`
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.settings = settings

    if session_factory is not None:
        wire_services(
            app,
            settings,
            session_factory,
            notifier or WebhookNotificationService(None, settings.notification_sender),
            rules_provider or AutomationRulesManager(),
        )

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(sla_router)
    app.include_router(assignment_router)
    app.include_router(automation_router)

    # === Health Check Endpoints ===

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        scheduler = getattr(request.app.state, "scheduler", None)
        rules = getattr(request.app.state, "rules_provider", None)
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": {
                "services": "wired" if getattr(request.app.state, "wired", False) else "not_wired",
                "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
                "automation_rules": len(rules.get_rules().rules) if rules else 0,
            }
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "sla": {"prefix": "/slas"},
                "assignment": {"prefix": "/assignments"},
                "automation": {"prefix": "/automation"},
                "jobs": {"prefix": "/jobs"},
            }
        }

    # === Job Endpoints ===

    @app.get("/jobs", tags=["Jobs"])
    async def list_jobs(request: Request):
        """Registered jobs and whether each is currently running."""
        return request.app.state.scheduler.describe()

    @app.post("/jobs/{name}/run", tags=["Jobs"])
    async def run_job(name: str, request: Request):
        """Run a job now; skipped if a run of the same job is in flight."""
        ran = await request.app.state.scheduler.run_job(name)
        job = request.app.state.scheduler.get_job(name)
        return {
            "job": name,
            "status": "completed" if ran else "skipped",
            "last_error": job.last_error if ran else None,
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.environment == "development",
        log_level=_settings.log_level.lower()
    )
