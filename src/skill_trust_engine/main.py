"""Skill trust engine service entry point.

Initializes the FastAPI application with:
- Primary database for quarantine entries, approvals, versions, and advisories
- Audit Wall database connection for the append-only audit log
- Preflight checks that refuse startup with a specific remedy
- The edition-specific validation capability, selected once
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import assert_never

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from skill_trust_engine.adapters.audit_wall import close_audit_db, init_audit_db
from skill_trust_engine.adapters.database import close_database, init_database
from skill_trust_engine.api.router import router
from skill_trust_engine.core.services import LoggingReleaseHandler
from skill_trust_engine.core.validation import build_validation_capability
from skill_trust_engine.errors import ErrorCode, TrustEngineError
from skill_trust_engine.observability import configure_logging, get_logger
from skill_trust_engine.preflight import StartupDiagnosis, run_preflight
from skill_trust_engine.settings import Settings

logger = get_logger(__name__)

SERVICE_VERSION = "0.1.0"

HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_REVIEWED: 409,
    ErrorCode.INVALID_INPUT: 422,
}


async def trust_engine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map typed service errors to HTTP responses."""
    assert isinstance(exc, TrustEngineError)
    status_code = HTTP_STATUS_BY_CODE.get(exc.code, 400)
    logger.info("Request rejected", path=request.url.path, code=exc.code.value, status_code=status_code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def _startup_failure(diagnosis: StartupDiagnosis, detail: str, remedy: str) -> RuntimeError:
    logger.error("Startup refused", diagnosis=diagnosis.value, detail=detail, remedy=remedy)
    return RuntimeError(f"{diagnosis.value}: {detail}. {remedy}")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings. Read from the environment when None.

    Returns:
        The configured application.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown lifecycle.

        Initializes the primary and Audit Wall databases, runs preflight,
        and selects the validation capability. Closes all connections on
        shutdown.

        Args:
            app: The FastAPI application instance.

        Yields:
            None
        """
        configure_logging(settings.log_level, settings.log_json)

        # Startup: primary database
        logger.info("Initializing primary database", service=settings.service_name)
        engine = await init_database(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )

        # Startup: Audit Wall (falls back to the primary database URL)
        audit_url = settings.audit_db_url or settings.database_url
        audit_engine = await init_audit_db(
            audit_db_url=audit_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )

        try:
            result = await run_preflight(
                engine,
                audit_engine=audit_engine if settings.audit_db_url else None,
            )
            match result.diagnosis:
                case StartupDiagnosis.OK:
                    pass
                case StartupDiagnosis.DATABASE_UNREACHABLE:
                    raise _startup_failure(
                        result.diagnosis,
                        result.detail,
                        "Check SKILL_TRUST_DATABASE_URL and SKILL_TRUST_AUDIT_DB_URL and that the server is running.",
                    )
                case StartupDiagnosis.SCHEMA_MISSING:
                    raise _startup_failure(
                        result.diagnosis,
                        result.detail,
                        "Run `alembic upgrade head` against the configured database.",
                    )
                case StartupDiagnosis.PATTERN_CATALOGUE_INVALID:
                    raise _startup_failure(
                        result.diagnosis,
                        result.detail,
                        "Fix core/scanner_patterns.yaml; every category must compile with bounded quantifiers.",
                    )
                case _:
                    assert_never(result.diagnosis)

            app.state.settings = settings
            app.state.validation = build_validation_capability(settings)
            app.state.release_handler = getattr(app.state, "release_handler", None) or LoggingReleaseHandler()
        except Exception:
            await close_audit_db()
            await close_database()
            raise

        logger.info("Skill trust engine startup complete", edition=app.state.validation.edition)

        yield

        # Shutdown
        logger.info("Shutting down skill trust engine")
        await close_audit_db()
        await close_database()
        logger.info("Skill trust engine shutdown complete")

    app = FastAPI(title=settings.service_name, version=SERVICE_VERSION, lifespan=lifespan)
    app.add_exception_handler(TrustEngineError, trust_engine_error_handler)
    app.include_router(router, prefix="/api/v1")
    return app


app: FastAPI = create_app()
