from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from services.audit_service.analyzers.findings import SEVERITY_RANK
from services.audit_service.analyzers.issue_analyzer import calculate_health_score, count_by_severity
from services.management_service.db.storage import RESOLVED_ISSUE_STATUSES, Storage
from services.management_service.exceptions import NotFoundError
from services.management_service.optimization_modes import (
    calculate_seo_impact_estimate,
    get_mode_description,
    get_mode_label,
)

TOP_ISSUES_LIMIT = 3


class ReportIssue(BaseModel):
    id: str
    page_url: str
    issue_type: str
    title: str
    severity: str
    risk_level: str
    status: str
    auto_fixable: bool
    suggested_value: Optional[str] = None


class SeverityCounts(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class AuditReport(BaseModel):
    audit_id: str
    website_id: str
    status: str
    optimization_mode: str
    mode_label: str
    mode_description: str
    completed_at: Optional[datetime] = None

    score_before: int
    score_after: int
    previous_score: Optional[int] = None

    total_issues: int
    fixed_count: int
    auto_fixed_count: int
    pending_count: int
    approved_count: int
    rejected_count: int
    severity_counts: SeverityCounts
    estimated_impact: str

    top_issues: List[ReportIssue] = Field(default_factory=list)
    image_report: Optional[dict] = None


def prioritize_issues(issues) -> list:
    """Critical first, then by severity; within a severity auto-fixable issues come first."""
    return sorted(
        issues,
        key=lambda i: (SEVERITY_RANK.get(i.severity, len(SEVERITY_RANK)), not i.auto_fixable, i.page_url, i.issue_type),
    )


async def build_audit_report(storage: Storage, audit_id: str) -> AuditReport:
    """Derived view over persisted issues; nothing here is stored."""
    audit = await storage.get_audit(audit_id)
    if audit is None:
        raise NotFoundError(f"Audit {audit_id} not found")

    issues = await storage.get_issues(audit_id)
    unresolved = [i for i in issues if i.status not in RESOLVED_ISSUE_STATUSES]
    counts = count_by_severity(issues)

    def _count(status: str) -> int:
        return sum(1 for i in issues if i.status == status)

    score_before = audit.score_before if audit.score_before is not None else calculate_health_score(issues)
    score_after = audit.score_after if audit.score_after is not None else calculate_health_score(unresolved)

    top = prioritize_issues(i for i in issues if i.status == "pending")[:TOP_ISSUES_LIMIT]

    return AuditReport(
        audit_id=audit.id,
        website_id=audit.website_id,
        status=audit.status,
        optimization_mode=audit.optimization_mode,
        mode_label=get_mode_label(audit.optimization_mode),
        mode_description=get_mode_description(audit.optimization_mode),
        completed_at=audit.completed_at,
        score_before=score_before,
        score_after=score_after,
        previous_score=audit.previous_score,
        total_issues=len(issues),
        fixed_count=_count("fixed"),
        auto_fixed_count=_count("auto_fixed"),
        pending_count=_count("pending"),
        approved_count=_count("approved"),
        rejected_count=_count("rejected"),
        severity_counts=SeverityCounts(**counts),
        estimated_impact=calculate_seo_impact_estimate(
            audit.optimization_mode, len(unresolved), counts["critical"], counts["high"]
        ),
        top_issues=[
            ReportIssue(
                id=i.id,
                page_url=i.page_url,
                issue_type=i.issue_type,
                title=i.title,
                severity=i.severity,
                risk_level=i.risk_level,
                status=i.status,
                auto_fixable=i.auto_fixable,
                suggested_value=i.suggested_value,
            )
            for i in top
        ],
        image_report=(audit.crawl_data or {}).get("image_report"),
    )
