"""Startup preflight checks.

`run_preflight` probes the databases, the schema, and the bundled pattern
catalogue, and reports exactly one StartupDiagnosis. The application lifespan
matches on the diagnosis once and refuses to start on anything but OK, with a
remedy that names the failing dependency.
"""

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from skill_trust_engine.core.models import AuditLogEntry, Base
from skill_trust_engine.core.scanner import PatternCatalogueError, load_pattern_catalogue
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)

AUDIT_TABLE = AuditLogEntry.__tablename__


class StartupDiagnosis(StrEnum):
    OK = "ok"
    DATABASE_UNREACHABLE = "database_unreachable"
    SCHEMA_MISSING = "schema_missing"
    PATTERN_CATALOGUE_INVALID = "pattern_catalogue_invalid"


@dataclass(frozen=True)
class PreflightResult:
    """Outcome of the startup checks.

    Attributes:
        diagnosis: The single diagnosis for this startup.
        detail: Human-readable description of the failure, empty when OK.
        missing_tables: Tables absent from their database.
        degraded_categories: Catalogue categories that failed to compile.
    """

    diagnosis: StartupDiagnosis
    detail: str = ""
    missing_tables: tuple[str, ...] = ()
    degraded_categories: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.diagnosis is StartupDiagnosis.OK


async def _table_names(engine: AsyncEngine) -> set[str]:
    async with engine.connect() as connection:
        return set(await connection.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))


async def run_preflight(
    engine: AsyncEngine,
    audit_engine: AsyncEngine | None = None,
    catalogue_path: Path | None = None,
) -> PreflightResult:
    """Run the startup checks in dependency order.

    Args:
        engine: The primary database engine.
        audit_engine: The audit wall engine when it is a separate database.
            When None, the audit table is expected on the primary database.
        catalogue_path: Pattern catalogue to validate. Defaults to the bundled one.

    Returns:
        PreflightResult carrying the first failing diagnosis, or OK.
    """
    expected_primary = set(Base.metadata.tables)
    if audit_engine is not None:
        expected_primary.discard(AUDIT_TABLE)

    try:
        existing = await _table_names(engine)
        audit_existing = await _table_names(audit_engine) if audit_engine is not None else existing
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Preflight: database unreachable", error=str(exc))
        return PreflightResult(StartupDiagnosis.DATABASE_UNREACHABLE, detail=str(exc))

    missing = set(expected_primary - existing)
    if AUDIT_TABLE not in audit_existing:
        missing.add(AUDIT_TABLE)
    if missing:
        ordered = tuple(sorted(missing))
        logger.error("Preflight: schema missing", missing_tables=list(ordered))
        return PreflightResult(
            StartupDiagnosis.SCHEMA_MISSING,
            detail=f"Missing tables: {', '.join(ordered)}",
            missing_tables=ordered,
        )

    try:
        catalogue = load_pattern_catalogue(catalogue_path) if catalogue_path else load_pattern_catalogue()
    except PatternCatalogueError as exc:
        logger.error("Preflight: pattern catalogue invalid", error=str(exc))
        return PreflightResult(StartupDiagnosis.PATTERN_CATALOGUE_INVALID, detail=str(exc))

    if catalogue.degraded_categories:
        logger.error("Preflight: pattern catalogue degraded", degraded_categories=list(catalogue.degraded_categories))
        return PreflightResult(
            StartupDiagnosis.PATTERN_CATALOGUE_INVALID,
            detail=f"Degraded categories: {', '.join(catalogue.degraded_categories)}",
            degraded_categories=tuple(catalogue.degraded_categories),
        )

    logger.info("Preflight passed", rules=len(catalogue.rules))
    return PreflightResult(StartupDiagnosis.OK)
