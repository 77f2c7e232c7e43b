"""API router for skill-trust-engine.

All endpoints are registered here and included in main.py under the /api/v1
prefix. Routes are thin; all business logic lives in the service layer.

Endpoints:
- POST        /scan: Scan skill content
- POST        /evaluate: Run the full trust pipeline
- POST        /changes/classify: Classify a change between versions
- POST        /updates/risk: Score the risk of an update
- GET/POST    /quarantine: List entries, open a manual quarantine
- GET         /quarantine/stats: Counts by status and severity
- GET/DELETE  /quarantine/{id}: Get or delete an entry
- POST        /quarantine/{id}/review: Review an entry
- POST        /quarantine/{id}/review-malicious: Approve toward the malicious quorum
- GET         /quarantine/{id}/approvals: Multi-approval progress
- POST        /quarantine/{id}/approvals/cancel: Cancel the pending approval round
- GET         /audit: Query the audit log
- GET         /audit/export: Export the audit log as JSON
- POST        /audit/cleanup: Purge entries past retention
- GET         /skills/{skill_id}/versions: Version history
- GET         /skills/{skill_id}/advisories: Active advisories for a skill
- GET         /advisories: Active advisories
- PUT         /advisories/{advisory_id}: Publish or replace an advisory
- POST        /advisories/{advisory_id}/withdraw: Withdraw an advisory

The reviewer session comes from `app.state.session_resolver`, supplied by the
deployment's auth layer. Without a resolver every protected route answers
UNAUTHORIZED.
"""

import inspect
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skill_trust_engine.adapters.audit_wall import get_audit_session_factory
from skill_trust_engine.adapters.database import get_db_session
from skill_trust_engine.adapters.repositories import (
    AdvisoryRepository,
    ApprovalRepository,
    QuarantineRepository,
    SkillVersionRepository,
)
from skill_trust_engine.api.schemas import (
    AdvisoryResponse,
    AdvisoryUpsertRequest,
    AuditCleanupRequest,
    AuditCleanupResponse,
    AuditLogEntryResponse,
    CancelResponse,
    ClassifyChangeRequest,
    ClassifyChangeResponse,
    DeleteResponse,
    EvaluateRequest,
    EvaluationResponse,
    MaliciousReviewRequest,
    MultiApprovalStatusResponse,
    QuarantineCreateRequest,
    QuarantineEntryResponse,
    QuarantineStatsResponse,
    ReviewRequest,
    ReviewResultResponse,
    ScanReportResponse,
    ScanRequest,
    SkillVersionResponse,
    UpdateRiskRequest,
    UpdateRiskResponse,
    WithdrawResponse,
)
from skill_trust_engine.core.audit_logger import AuditLogger
from skill_trust_engine.core.authorization import require_permission
from skill_trust_engine.core.change_classifier import classify_change
from skill_trust_engine.core.interfaces import IReleaseHandler, IValidationCapability
from skill_trust_engine.core.services import LoggingReleaseHandler, QuarantineService, TrustPipeline
from skill_trust_engine.core.trust import TrustTierClassifier
from skill_trust_engine.core.types import (
    AuditEvent,
    AuthenticatedSession,
    Permission,
    PreviousVersion,
    QuarantineSeverity,
    QuarantineStatus,
    SkillMetadata,
)
from skill_trust_engine.core.update_risk import compute_update_risk
from skill_trust_engine.observability import get_logger
from skill_trust_engine.settings import Settings

logger = get_logger(__name__)

router = APIRouter(tags=["skill-trust"])


# ---------------------------------------------------------------------------
# Dependency factories: wire repositories, services, and clients together
# ---------------------------------------------------------------------------


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_validation(request: Request) -> IValidationCapability:
    return request.app.state.validation


def get_release_handler(request: Request) -> IReleaseHandler:
    return getattr(request.app.state, "release_handler", None) or LoggingReleaseHandler()


async def get_reviewer_session(request: Request) -> AuthenticatedSession | None:
    """Resolve the caller's session through the configured resolver.

    Returns:
        The session, or None when no resolver is configured or it finds none.
    """
    resolver = getattr(request.app.state, "session_resolver", None)
    if resolver is None:
        return None
    session = resolver(request)
    if inspect.isawaitable(session):
        session = await session
    return session


def get_audit_logger(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_audit_session_factory)],
) -> AuditLogger:
    return AuditLogger(session_factory)


def get_quarantine_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
    settings: Annotated[Settings, Depends(get_settings)],
    release_handler: Annotated[IReleaseHandler, Depends(get_release_handler)],
) -> QuarantineService:
    """Construct QuarantineService with injected repositories.

    Args:
        session: Primary DB session.
        audit_logger: Audit logger on the Audit Wall.
        settings: Service settings.
        release_handler: Handler invoked on release.

    Returns:
        Fully wired QuarantineService instance.
    """
    return QuarantineService(
        quarantine_repo=QuarantineRepository(session),
        approval_repo=ApprovalRepository(session),
        audit_logger=audit_logger,
        release_handler=release_handler,
        required_approvals=settings.malicious_required_approvals,
        approval_timeout_hours=settings.approval_timeout_hours,
    )


def get_trust_pipeline(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
    settings: Annotated[Settings, Depends(get_settings)],
    validation: Annotated[IValidationCapability, Depends(get_validation)],
    quarantine_service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> TrustPipeline:
    """Construct TrustPipeline with injected repositories and services.

    Returns:
        Fully wired TrustPipeline instance.
    """
    classifier = TrustTierClassifier(
        official_namespaces=settings.official_namespaces,
        verified_min_age_days=settings.verified_min_age_days,
        verified_min_stars=settings.verified_min_stars,
        required_documentation_files=settings.required_documentation_files,
    )
    return TrustPipeline(
        validation=validation,
        classifier=classifier,
        quarantine_service=quarantine_service,
        version_repo=SkillVersionRepository(session),
        advisory_repo=AdvisoryRepository(session),
        audit_logger=audit_logger,
        quarantine_risk_threshold=settings.quarantine_risk_threshold,
        version_keep_count=settings.version_keep_count,
    )


ReviewerSession = Annotated[AuthenticatedSession | None, Depends(get_reviewer_session)]


# ---------------------------------------------------------------------------
# Scan and evaluation endpoints
# ---------------------------------------------------------------------------


@router.post("/scan", response_model=ScanReportResponse)
async def scan_content(
    request: ScanRequest,
    validation: Annotated[IValidationCapability, Depends(get_validation)],
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
) -> ScanReportResponse:
    """Scan skill content without recording a version or opening a quarantine.

    Args:
        request: Skill identifier and content.
        validation: Edition-specific validation capability.
        audit_logger: Audit logger.

    Returns:
        The scan report.
    """
    report = validation.scan(request.skill_id, request.content)
    await audit_logger.safe_log(
        AuditEvent(
            event_type="scan.completed",
            actor="scanner",
            resource=request.skill_id,
            action="scan",
            result="success" if report.passed else "blocked",
            metadata={"risk_score": report.risk_score, "finding_count": len(report.findings)},
        )
    )
    return ScanReportResponse.from_report(report)


@router.post("/evaluate", response_model=EvaluationResponse)
async def evaluate_skill(
    request: EvaluateRequest,
    reviewer: ReviewerSession,
    pipeline: Annotated[TrustPipeline, Depends(get_trust_pipeline)],
) -> EvaluationResponse:
    """Run the trust pipeline over skill content.

    Requires quarantine:create, since the pipeline may open a quarantine entry.

    Args:
        request: Content, publisher signals, and optional previous version.
        reviewer: Caller session.
        pipeline: Injected TrustPipeline.

    Returns:
        Every decision the pipeline made.
    """
    require_permission(reviewer, Permission.QUARANTINE_CREATE)
    logger.info("POST /evaluate", skill_id=request.skill_id)

    metadata = SkillMetadata(
        skill_id=request.skill_id,
        namespace=request.metadata.namespace,
        publisher_signature_verified=request.metadata.publisher_signature_verified,
        created_at=request.metadata.created_at,
        stars=request.metadata.stars,
        documentation_files=frozenset(request.metadata.documentation_files),
    )
    previous = (
        PreviousVersion(content=request.previous.content, risk_score=request.previous.risk_score)
        if request.previous
        else None
    )
    evaluation = await pipeline.evaluate(
        skill_id=request.skill_id,
        content=request.content,
        metadata=metadata,
        previous=previous,
        has_local_modifications=request.has_local_modifications,
        has_changelog=request.has_changelog,
    )
    return EvaluationResponse.from_evaluation(evaluation)


@router.post("/changes/classify", response_model=ClassifyChangeResponse)
async def classify_skill_change(request: ClassifyChangeRequest) -> ClassifyChangeResponse:
    change_type = classify_change(request.old_content, request.new_content, request.old_risk, request.new_risk)
    return ClassifyChangeResponse(change_type=change_type)


@router.post("/updates/risk", response_model=UpdateRiskResponse)
async def score_update_risk(request: UpdateRiskRequest) -> UpdateRiskResponse:
    risk = compute_update_risk(
        request.change_type,
        request.risk_delta,
        request.has_local_modifications,
        request.trust_tier,
        request.has_changelog,
    )
    return UpdateRiskResponse(level=risk.level, score=risk.score, recommendation=risk.recommendation)


# ---------------------------------------------------------------------------
# Quarantine endpoints
# ---------------------------------------------------------------------------


@router.get("/quarantine", response_model=list[QuarantineEntryResponse])
async def list_quarantine_entries(
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
    status: QuarantineStatus | None = Query(default=None, description="Filter by status"),
    severity: QuarantineSeverity | None = Query(default=None, description="Filter by severity"),
    skill_id: str | None = Query(default=None, description="Only entries for this skill"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> list[QuarantineEntryResponse]:
    """List quarantine entries, newest first.

    Args:
        reviewer: Caller session.
        service: Injected QuarantineService.
        status: Optional status filter.
        severity: Optional severity filter.
        skill_id: Optional skill filter. Ignores the other filters.
        page: Page number.
        page_size: Records per page.

    Returns:
        Matching quarantine entries.
    """
    if skill_id:
        entries = await service.list_for_skill(reviewer, skill_id)
    else:
        entries = await service.list_entries(reviewer, status, severity, page, page_size)
    return [QuarantineEntryResponse.model_validate(e) for e in entries]


@router.post("/quarantine", response_model=QuarantineEntryResponse, status_code=201)
async def create_quarantine_entry(
    request: QuarantineCreateRequest,
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> QuarantineEntryResponse:
    """Open a manual quarantine. Requires quarantine:create."""
    session = require_permission(reviewer, Permission.QUARANTINE_CREATE)
    entry = await service.create(
        skill_id=request.skill_id,
        severity=request.severity,
        findings=request.findings,
        reason=request.reason,
        session=session,
    )
    return QuarantineEntryResponse.model_validate(entry)


@router.get("/quarantine/stats", response_model=QuarantineStatsResponse)
async def get_quarantine_stats(
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> QuarantineStatsResponse:
    return QuarantineStatsResponse(**await service.get_stats(reviewer))


@router.get("/quarantine/{quarantine_id}", response_model=QuarantineEntryResponse)
async def get_quarantine_entry(
    quarantine_id: uuid.UUID,
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> QuarantineEntryResponse:
    return QuarantineEntryResponse.model_validate(await service.get(reviewer, quarantine_id))


@router.delete("/quarantine/{quarantine_id}", response_model=DeleteResponse)
async def delete_quarantine_entry(
    quarantine_id: uuid.UUID,
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> DeleteResponse:
    return DeleteResponse(deleted=await service.delete(reviewer, quarantine_id))


@router.post("/quarantine/{quarantine_id}/review", response_model=ReviewResultResponse)
async def review_quarantine_entry(
    quarantine_id: uuid.UUID,
    request: ReviewRequest,
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> ReviewResultResponse:
    """Review a pending quarantine entry.

    Approving a malicious-severity entry records one approval toward the
    multi-approval quorum; the entry is released only at quorum.

    Args:
        quarantine_id: The entry UUID.
        request: Decision and notes.
        reviewer: Caller session.
        service: Injected QuarantineService.

    Returns:
        The review outcome.
    """
    logger.info("POST /quarantine/review", quarantine_id=str(quarantine_id), decision=request.decision.value)
    result = await service.review(reviewer, quarantine_id, request.decision, request.notes)
    return ReviewResultResponse.from_result(result)


@router.post("/quarantine/{quarantine_id}/review-malicious", response_model=ReviewResultResponse)
async def review_malicious_entry(
    quarantine_id: uuid.UUID,
    request: MaliciousReviewRequest,
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> ReviewResultResponse:
    result = await service.review_malicious(reviewer, quarantine_id, request.notes)
    return ReviewResultResponse.from_result(result)


@router.get("/quarantine/{quarantine_id}/approvals", response_model=MultiApprovalStatusResponse)
async def get_multi_approval_status(
    quarantine_id: uuid.UUID,
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> MultiApprovalStatusResponse:
    status = await service.get_multi_approval_status(reviewer, quarantine_id)
    return MultiApprovalStatusResponse.from_status(status)


@router.post("/quarantine/{quarantine_id}/approvals/cancel", response_model=CancelResponse)
async def cancel_multi_approval(
    quarantine_id: uuid.UUID,
    reviewer: ReviewerSession,
    service: Annotated[QuarantineService, Depends(get_quarantine_service)],
) -> CancelResponse:
    return CancelResponse(cancelled=await service.cancel_multi_approval(reviewer, quarantine_id))


# ---------------------------------------------------------------------------
# Audit endpoints
# ---------------------------------------------------------------------------


@router.get("/audit", response_model=list[AuditLogEntryResponse])
async def query_audit_log(
    reviewer: ReviewerSession,
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
    event_type: str | None = Query(default=None, description="Filter by exact event type"),
    resource: str | None = Query(default=None, description="Filter by resource"),
    actor: str | None = Query(default=None, description="Filter by actor"),
    since: datetime | None = Query(default=None, description="Start of time range (UTC)"),
    until: datetime | None = Query(default=None, description="End of time range (UTC)"),
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[AuditLogEntryResponse]:
    """Query the audit log, newest first. Requires audit:read."""
    require_permission(reviewer, Permission.AUDIT_READ)
    entries = await audit_logger.query(
        event_type=event_type,
        resource=resource,
        actor=actor,
        since=since,
        until=until,
        limit=limit,
    )
    return [AuditLogEntryResponse.model_validate(e) for e in entries]


@router.get("/audit/export")
async def export_audit_log(
    reviewer: ReviewerSession,
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
) -> Response:
    """Export every audit entry as a JSON array for SIEM ingestion. Requires audit:read."""
    require_permission(reviewer, Permission.AUDIT_READ)
    return Response(content=await audit_logger.export(), media_type="application/json")


@router.post("/audit/cleanup", response_model=AuditCleanupResponse)
async def cleanup_audit_log(
    request: AuditCleanupRequest,
    reviewer: ReviewerSession,
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuditCleanupResponse:
    """Purge audit entries older than the retention window. Requires audit:manage."""
    require_permission(reviewer, Permission.AUDIT_MANAGE)
    retention_days = request.retention_days if request.retention_days is not None else settings.audit_retention_days
    deleted = await audit_logger.cleanup_old_logs(retention_days)
    return AuditCleanupResponse(retention_days=retention_days, deleted_count=deleted)


# ---------------------------------------------------------------------------
# Version and advisory endpoints
# ---------------------------------------------------------------------------


@router.get("/skills/{skill_id:path}/versions", response_model=list[SkillVersionResponse])
async def get_version_history(
    skill_id: str,
    reviewer: ReviewerSession,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    limit: int = Query(default=20, ge=1, le=200),
) -> list[SkillVersionResponse]:
    require_permission(reviewer, Permission.QUARANTINE_READ)
    versions = await SkillVersionRepository(session).get_version_history(skill_id, limit=limit)
    return [SkillVersionResponse.model_validate(v) for v in versions]


@router.get("/skills/{skill_id:path}/advisories", response_model=list[AdvisoryResponse])
async def get_skill_advisories(
    skill_id: str,
    reviewer: ReviewerSession,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> list[AdvisoryResponse]:
    require_permission(reviewer, Permission.QUARANTINE_READ)
    advisories = await AdvisoryRepository(session).get_advisories_for_skill(skill_id)
    return [AdvisoryResponse.model_validate(a) for a in advisories]


@router.get("/advisories", response_model=list[AdvisoryResponse])
async def list_active_advisories(
    reviewer: ReviewerSession,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    severity: str | None = Query(default=None, description="Filter by severity"),
) -> list[AdvisoryResponse]:
    require_permission(reviewer, Permission.QUARANTINE_READ)
    advisories = await AdvisoryRepository(session).get_active_advisories(severity)
    return [AdvisoryResponse.model_validate(a) for a in advisories]


@router.put("/advisories/{advisory_id}", response_model=AdvisoryResponse)
async def upsert_advisory(
    advisory_id: str,
    request: AdvisoryUpsertRequest,
    reviewer: ReviewerSession,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
) -> AdvisoryResponse:
    """Publish or replace an advisory. Requires quarantine:admin."""
    caller = require_permission(reviewer, Permission.QUARANTINE_ADMIN)
    advisory = await AdvisoryRepository(session).upsert_advisory(
        advisory_id=advisory_id,
        skill_id=request.skill_id,
        severity=request.severity,
        title=request.title,
        description=request.description,
        affected_versions=request.affected_versions,
        patched_versions=request.patched_versions,
        cwe_ids=request.cwe_ids,
        references=request.references,
        published_at=request.published_at,
    )
    await audit_logger.safe_log(
        AuditEvent(
            event_type="advisory.published",
            actor=caller.email,
            resource=request.skill_id,
            action="publish",
            metadata={"advisory_id": advisory_id, "severity": request.severity},
        )
    )
    return AdvisoryResponse.model_validate(advisory)


@router.post("/advisories/{advisory_id}/withdraw", response_model=WithdrawResponse)
async def withdraw_advisory(
    advisory_id: str,
    reviewer: ReviewerSession,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
) -> WithdrawResponse:
    """Withdraw an active advisory. Requires quarantine:admin."""
    caller = require_permission(reviewer, Permission.QUARANTINE_ADMIN)
    withdrawn = await AdvisoryRepository(session).withdraw_advisory(advisory_id)
    if withdrawn:
        await audit_logger.safe_log(
            AuditEvent(
                event_type="advisory.withdrawn",
                actor=caller.email,
                resource=advisory_id,
                action="withdraw",
                metadata={"advisory_id": advisory_id},
            )
        )
    return WithdrawResponse(withdrawn=withdrawn)
