# services/management_service/db/models.py

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB, "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Website(Base):
    __tablename__ = "websites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    account_id: Mapped[Optional[str]] = mapped_column(String(64))
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    health_score: Mapped[Optional[int]] = mapped_column(Integer)
    last_audit_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_websites_account_id", "account_id"),
    )


class Audit(Base):
    __tablename__ = "audits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    website_id: Mapped[str] = mapped_column(String(36), ForeignKey("websites.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="queued")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_step: Mapped[Optional[str]] = mapped_column(String(255))
    optimization_mode: Mapped[str] = mapped_column(String(32), nullable=False, default="balanced")

    total_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    critical_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    high_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    medium_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    score: Mapped[Optional[int]] = mapped_column(Integer)
    previous_score: Mapped[Optional[int]] = mapped_column(Integer)
    score_before: Mapped[Optional[int]] = mapped_column(Integer)
    score_after: Mapped[Optional[int]] = mapped_column(Integer)
    pages_scanned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    crawl_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    error: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_audits_website_id", "website_id"),
        Index("idx_audits_status", "status"),
    )


class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    audit_id: Mapped[str] = mapped_column(String(36), ForeignKey("audits.id", ondelete="CASCADE"), nullable=False)
    website_id: Mapped[str] = mapped_column(String(36), ForeignKey("websites.id", ondelete="CASCADE"), nullable=False)

    page_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    issue_type: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    current_value: Mapped[Optional[str]] = mapped_column(Text)
    suggested_value: Mapped[Optional[str]] = mapped_column(Text)
    proposal_safe: Mapped[Optional[str]] = mapped_column(Text)
    proposal_balanced: Mapped[Optional[str]] = mapped_column(Text)
    proposal_aggressive: Mapped[Optional[str]] = mapped_column(Text)
    chosen_fix_variant: Mapped[Optional[str]] = mapped_column(String(16))
    reasoning: Mapped[Optional[str]] = mapped_column(Text)
    suggestion_source: Mapped[Optional[str]] = mapped_column(String(32))

    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    auto_fixable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    fixed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_issues_audit_id", "audit_id"),
        Index("idx_issues_audit_status", "audit_id", "status"),
    )


class Draft(Base):
    __tablename__ = "drafts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    audit_id: Mapped[str] = mapped_column(String(36), ForeignKey("audits.id", ondelete="CASCADE"), nullable=False)
    website_id: Mapped[str] = mapped_column(String(36), ForeignKey("websites.id", ondelete="CASCADE"), nullable=False)
    issue_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("issues.id", ondelete="CASCADE"))

    page_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    draft_type: Mapped[str] = mapped_column(String(32), nullable=False)
    optimization_mode: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    current_value: Mapped[Optional[str]] = mapped_column(Text)
    proposed_value_safe: Mapped[str] = mapped_column(Text, nullable=False, default="")
    proposed_value_balanced: Mapped[str] = mapped_column(Text, nullable=False, default="")
    proposed_value_aggressive: Mapped[str] = mapped_column(Text, nullable=False, default="")
    selected_proposal: Mapped[str] = mapped_column(String(16), nullable=False)

    html_diff: Mapped[Optional[str]] = mapped_column(Text)
    reasoning: Mapped[Optional[str]] = mapped_column(Text)
    impact_estimate: Mapped[Optional[str]] = mapped_column(String(32))
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSONType)

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def proposal(self, variant: Optional[str] = None) -> str:
        return getattr(self, f"proposed_value_{variant or self.selected_proposal}")

    __table_args__ = (
        Index("idx_drafts_audit_id", "audit_id"),
        Index("idx_drafts_website_status", "website_id", "status"),
    )


class Change(Base):
    __tablename__ = "changes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    issue_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("issues.id", ondelete="CASCADE"))
    draft_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("drafts.id", ondelete="CASCADE"))
    website_id: Mapped[str] = mapped_column(String(36), ForeignKey("websites.id", ondelete="CASCADE"), nullable=False)

    change_type: Mapped[str] = mapped_column(String(64), nullable=False)
    page_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    before_value: Mapped[Optional[str]] = mapped_column(Text)
    after_value: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="applied")

    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rolled_back_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_changes_website_id", "website_id"),
        Index("idx_changes_issue_id", "issue_id"),
    )


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    website_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("websites.id", ondelete="CASCADE"))
    audit_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("audits.id", ondelete="CASCADE"))
    agent_type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    reasoning: Mapped[Optional[str]] = mapped_column(Text)
    action: Mapped[Optional[str]] = mapped_column(String(64))
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_activity_logs_audit_id", "audit_id"),
    )
