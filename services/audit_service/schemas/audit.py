from datetime import datetime
from typing import Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field


class WebsiteCreateRequest(BaseModel):
    url: AnyHttpUrl
    name: Optional[str] = None
    account_id: Optional[str] = None


class WebsiteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    url: str
    name: str
    account_id: Optional[str] = None
    health_score: Optional[int] = None
    last_audit_at: Optional[datetime] = None


class StartAuditRequest(BaseModel):
    optimization_mode: Optional[str] = Field(default=None, description="safe, balanced or aggressive")


class AuditStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    website_id: str
    status: str
    coarse_status: str
    progress: int
    current_step: Optional[str] = None
    optimization_mode: str
    pages_scanned: int = 0
    total_issues: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    score: Optional[int] = None
    score_after: Optional[int] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class IssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    audit_id: str
    page_url: str
    issue_type: str
    category: str
    title: str
    description: Optional[str] = None
    severity: str
    risk_level: str
    status: str
    current_value: Optional[str] = None
    suggested_value: Optional[str] = None
    proposal_safe: Optional[str] = None
    proposal_balanced: Optional[str] = None
    proposal_aggressive: Optional[str] = None
    confidence: float
    auto_fixable: bool
    suggestion_source: Optional[str] = None


class DraftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    audit_id: str
    issue_id: Optional[str] = None
    page_url: str
    draft_type: str
    status: str
    current_value: Optional[str] = None
    proposed_value_safe: str
    proposed_value_balanced: str
    proposed_value_aggressive: str
    selected_proposal: str
    html_diff: Optional[str] = None
    reasoning: Optional[str] = None
    impact_estimate: Optional[str] = None
    confidence: float


class DraftIdsRequest(BaseModel):
    draft_ids: list[str] = Field(default_factory=list)


class SelectModeRequest(BaseModel):
    mode: str


class CountResponse(BaseModel):
    count: int


class CancelResponse(BaseModel):
    audit_id: str
    cancelled: bool
