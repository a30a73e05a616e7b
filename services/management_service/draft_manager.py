# services/management_service/draft_manager.py

import html
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from prometheus_client import Counter, Histogram

from config.logging_config import get_logger
from services.audit_service.analyzers.meta_checker import DESCRIPTION_MAX, TITLE_MAX, truncate
from services.management_service.db.models import Audit, Draft, Issue, utcnow
from services.management_service.db.storage import Storage
from services.management_service.events.activity import ActivityEvent, ActivitySink
from services.management_service.exceptions import InvalidStateError, NotFoundError
from services.management_service.optimization_modes import (
    TIER_CONFIDENCE,
    TIER_IMPACT,
    OptimizationMode,
    get_mode_label,
    get_mode_settings,
    parse_mode,
)

logger = get_logger(__name__)

draft_transitions_total = Counter(
    'draft_transitions_total',
    'Total draft lifecycle transitions',
    ['status']
)

draft_apply_duration = Histogram(
    'draft_apply_duration_seconds',
    'Duration of applying a draft'
)

draft_errors_total = Counter(
    'draft_errors_total',
    'Total draft lifecycle errors',
    ['error_type']
)

ISSUE_DRAFT_TYPES = {
    "missing_title": "title",
    "short_title": "title",
    "long_title": "title",
    "missing_meta_description": "meta_description",
    "short_meta_description": "meta_description",
    "long_meta_description": "meta_description",
    "missing_h1": "heading",
    "multiple_h1": "heading",
    "thin_content": "content",
    "oversized_images": "image",
    "png_to_webp": "image",
    "oversized_dimensions": "image",
    "poor_compression": "image",
    "missing_alt_text": "image",
    "missing_lazy_loading": "image",
}

DRAFT_STATUSES = ("pending", "approved", "applied", "rejected")


def issue_to_draft_type(issue_type: str) -> Optional[str]:
    return ISSUE_DRAFT_TYPES.get(issue_type)


def generate_html_diff(before: Optional[str], after: Optional[str]) -> str:
    if not before and not after:
        return ""

    before_escaped = html.escape(before or "(empty)")
    after_escaped = html.escape(after or "(empty)")

    return f"""<div class="diff">
  <div class="diff-before">
    <span class="label">Before:</span>
    <span class="removed">{before_escaped}</span>
  </div>
  <div class="diff-after">
    <span class="label">After:</span>
    <span class="added">{after_escaped}</span>
  </div>
</div>"""


def select_auto_apply_candidates(drafts: Iterable[Draft], mode: "OptimizationMode | str") -> List[Draft]:
    threshold = get_mode_settings(mode).auto_apply_threshold
    return [d for d in drafts if d.status == "pending" and (d.confidence or 0.0) >= threshold]


@dataclass
class DraftProposal:
    page_url: str
    draft_type: str
    current_value: str
    safe_proposal: str
    balanced_proposal: str
    aggressive_proposal: str
    reasoning: str
    issue_id: Optional[str] = None
    confidences: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def proposal_for(self, mode: OptimizationMode) -> str:
        return getattr(self, f"{mode.value}_proposal")

    def confidence_for(self, mode: OptimizationMode) -> float:
        return float(self.confidences.get(mode.value, TIER_CONFIDENCE[mode]))


class DraftManager:
    """Owns the approval lifecycle of drafts: pending -> approved -> applied, or pending -> rejected."""

    def __init__(
        self,
        storage: Storage,
        audit_id: Optional[str] = None,
        website_id: Optional[str] = None,
        mode: "OptimizationMode | str | None" = None,
        activity_sink: Optional[ActivitySink] = None,
    ):
        self.storage = storage
        self.audit_id = audit_id
        self.website_id = website_id
        self.mode = parse_mode(mode)
        self.activity_sink = activity_sink

    @classmethod
    def for_audit(cls, storage: Storage, audit: Audit, activity_sink: Optional[ActivitySink] = None) -> "DraftManager":
        return cls(storage, audit.id, audit.website_id, audit.optimization_mode, activity_sink)

    def _require_audit(self) -> str:
        if not self.audit_id or not self.website_id:
            raise ValueError("DraftManager is not bound to an audit")
        return self.audit_id

    async def _emit(self, message: str, action: str, draft: Optional[Draft] = None, **metadata: Any) -> None:
        if self.activity_sink is None:
            return
        await self.activity_sink.emit(ActivityEvent(
            agent_type="fix",
            message=message,
            audit_id=draft.audit_id if draft else self.audit_id,
            website_id=draft.website_id if draft else self.website_id,
            action=action,
            metadata=metadata,
        ))

    async def create_draft(self, proposal: DraftProposal) -> Draft:
        self._require_audit()
        selected = proposal.proposal_for(self.mode)
        confidences = {tier.value: proposal.confidence_for(tier) for tier in OptimizationMode}

        draft = await self.storage.create_draft(
            audit_id=self.audit_id,
            website_id=self.website_id,
            issue_id=proposal.issue_id,
            page_url=proposal.page_url,
            draft_type=proposal.draft_type,
            optimization_mode=self.mode.value,
            status="pending",
            current_value=proposal.current_value,
            proposed_value_safe=proposal.safe_proposal,
            proposed_value_balanced=proposal.balanced_proposal,
            proposed_value_aggressive=proposal.aggressive_proposal,
            selected_proposal=self.mode.value,
            html_diff=generate_html_diff(proposal.current_value, selected),
            reasoning=f"[{get_mode_label(self.mode)}] {proposal.reasoning}",
            impact_estimate=TIER_IMPACT[self.mode],
            confidence=confidences[self.mode.value],
            meta={**proposal.metadata, "confidences": confidences},
        )
        draft_transitions_total.labels(status='created').inc()
        return draft

    async def create_drafts_for_issue(self, issue: Issue, confidences: Optional[Dict[str, float]] = None) -> List[Draft]:
        draft_type = issue_to_draft_type(issue.issue_type)
        if not draft_type:
            return []

        fallback = issue.suggested_value or ""
        proposal = DraftProposal(
            issue_id=issue.id,
            page_url=issue.page_url,
            draft_type=draft_type,
            current_value=issue.current_value or "",
            safe_proposal=issue.proposal_safe or fallback,
            balanced_proposal=issue.proposal_balanced or fallback,
            aggressive_proposal=issue.proposal_aggressive or fallback,
            reasoning=issue.reasoning or issue.description or "",
            confidences=dict(confidences or {}),
            metadata={
                "issue_type": issue.issue_type,
                "severity": issue.severity,
                "category": issue.category,
            },
        )

        if not (proposal.safe_proposal or proposal.balanced_proposal or proposal.aggressive_proposal):
            return []
        return [await self.create_draft(proposal)]

    async def get_drafts(self, status: Optional[str] = None) -> List[Draft]:
        return await self.storage.get_drafts(self._require_audit(), status=status)

    async def _get_or_raise(self, draft_id: str) -> Draft:
        draft = await self.storage.get_draft(draft_id)
        if draft is None:
            draft_errors_total.labels(error_type='draft_not_found').inc()
            raise NotFoundError(f"Draft {draft_id} not found")
        return draft

    async def _transition(self, draft_id: str, from_status: str, to_status: str, **fields: Any) -> Draft:
        if await self.storage.transition_draft(draft_id, [from_status], to_status, **fields):
            draft_transitions_total.labels(status=to_status).inc()
            return await self.storage.get_draft(draft_id)

        draft = await self._get_or_raise(draft_id)
        draft_errors_total.labels(error_type='invalid_state').inc()
        raise InvalidStateError(f"Draft {draft_id} is {draft.status}, expected {from_status}")

    async def approve_draft(self, draft_id: str) -> Draft:
        draft = await self._transition(draft_id, "pending", "approved", approved_at=utcnow())
        logger.info(f"Draft {draft_id} approved", extra={"draft_id": draft_id, "audit_id": draft.audit_id})
        return draft

    async def reject_draft(self, draft_id: str) -> Draft:
        draft = await self._transition(draft_id, "pending", "rejected", rejected_at=utcnow())
        logger.info(f"Draft {draft_id} rejected", extra={"draft_id": draft_id, "audit_id": draft.audit_id})
        return draft

    async def apply_draft(self, draft_id: str) -> Draft:
        with draft_apply_duration.time():
            change = await self.storage.apply_draft(draft_id)

        if change is None:
            draft = await self._get_or_raise(draft_id)
            draft_errors_total.labels(error_type='invalid_state').inc()
            if draft.status == "approved":
                raise InvalidStateError(f"Draft {draft_id} targets issue {draft.issue_id}, which is already resolved")
            raise InvalidStateError(f"Draft {draft_id} is {draft.status}, expected approved")

        draft_transitions_total.labels(status='applied').inc()
        draft = await self.storage.get_draft(draft_id)

        logger.info(
            f"Draft {draft_id} applied",
            extra={
                "draft_id": draft_id,
                "audit_id": draft.audit_id,
                "issue_id": draft.issue_id,
                "change_id": change.id,
            }
        )
        await self._emit(
            f"Applied {draft.draft_type} change on {draft.page_url}",
            "apply_draft",
            draft,
            draft_id=draft_id,
            change_id=change.id,
            variant=draft.selected_proposal,
        )
        return draft

    async def select_mode(self, draft_id: str, variant: "OptimizationMode | str") -> Draft:
        """Repoint which proposal is selected. The three proposal texts are left untouched."""
        mode = parse_mode(variant, default=self.mode)
        draft = await self._get_or_raise(draft_id)
        if draft.status != "pending":
            draft_errors_total.labels(error_type='invalid_state').inc()
            raise InvalidStateError(f"Draft {draft_id} is {draft.status}, expected pending")

        confidences = (draft.meta or {}).get("confidences", {})
        updated = await self.storage.select_draft_proposal(
            draft_id,
            mode.value,
            confidence=float(confidences.get(mode.value, TIER_CONFIDENCE[mode])),
            impact_estimate=TIER_IMPACT[mode],
            html_diff=generate_html_diff(draft.current_value, draft.proposal(mode.value)),
        )
        if not updated:
            draft = await self._get_or_raise(draft_id)
            draft_errors_total.labels(error_type='invalid_state').inc()
            raise InvalidStateError(f"Draft {draft_id} is {draft.status}, expected pending")

        return await self.storage.get_draft(draft_id)

    async def bulk_approve(self, draft_ids: Iterable[str]) -> int:
        approved = 0
        for draft_id in draft_ids:
            if await self.storage.transition_draft(draft_id, ["pending"], "approved", approved_at=utcnow()):
                draft_transitions_total.labels(status='approved').inc()
                approved += 1

        logger.info(f"Bulk approve: {approved} drafts approved", extra={"audit_id": self.audit_id})
        return approved

    async def bulk_apply(self, draft_ids: Iterable[str]) -> int:
        applied = 0
        for draft_id in draft_ids:
            try:
                await self.apply_draft(draft_id)
                applied += 1
            except (InvalidStateError, NotFoundError):
                continue

        logger.info(f"Bulk apply: {applied} drafts applied", extra={"audit_id": self.audit_id})
        return applied

    async def auto_apply_low_risk_drafts(self) -> int:
        """Approve and apply every pending draft at or above the mode's confidence threshold.

        A draft that changes state between selection and application is skipped.
        """
        candidates = select_auto_apply_candidates(await self.get_drafts(status="pending"), self.mode)

        applied = 0
        for draft in candidates:
            try:
                await self.approve_draft(draft.id)
                await self.apply_draft(draft.id)
                applied += 1
            except (InvalidStateError, NotFoundError) as e:
                logger.info(f"Skipping stale draft {draft.id}: {e}", extra={"draft_id": draft.id})

        logger.info(
            f"Auto-applied {applied} of {len(candidates)} eligible drafts",
            extra={"audit_id": self.audit_id, "mode": self.mode.value},
        )
        return applied

    async def get_draft_stats(self) -> Dict[str, int]:
        drafts = await self.get_drafts()
        stats = {"total": len(drafts)}
        for status in DRAFT_STATUSES:
            stats[status] = sum(1 for d in drafts if d.status == status)
        return stats


async def create_title_draft(manager: DraftManager, page_url: str, current_title: str, issue_id: Optional[str] = None) -> Draft:
    if current_title:
        safe = truncate(current_title, TITLE_MAX) if len(current_title) > TITLE_MAX else f"{current_title} - Learn More"
        balanced = f"{current_title[:40].rstrip()} | Quality You Can Trust"
        aggressive = f"{current_title[:30].rstrip()} | Top Rated | Discover Now"
    else:
        safe = "Professional Solutions - Discover More"
        balanced = "Professional Solutions | Quality & Service"
        aggressive = "The Best Solution | Top Rated | Get Started"

    return await manager.create_draft(DraftProposal(
        issue_id=issue_id,
        page_url=page_url,
        draft_type="title",
        current_value=current_title,
        safe_proposal=safe,
        balanced_proposal=balanced,
        aggressive_proposal=aggressive,
        reasoning="Optimize the page title for better search visibility.",
    ))


async def create_meta_description_draft(manager: DraftManager, page_url: str, current_description: str, issue_id: Optional[str] = None) -> Draft:
    if current_description:
        if len(current_description) > DESCRIPTION_MAX:
            safe = truncate(current_description, DESCRIPTION_MAX)
        else:
            safe = f"{current_description} Learn more."
        balanced = f"{current_description[:100].rstrip()} Learn more about our services and get in touch."
        aggressive = f"{current_description[:80].rstrip()} Top rated | Fast delivery | Get started today!"
    else:
        safe = "Discover our solutions. Quality and service come first."
        balanced = "Professional solutions for your needs. Contact us for a free consultation."
        aggressive = "Best quality at the best price. Trusted by 1000+ customers. Order now!"

    return await manager.create_draft(DraftProposal(
        issue_id=issue_id,
        page_url=page_url,
        draft_type="meta_description",
        current_value=current_description,
        safe_proposal=safe,
        balanced_proposal=balanced,
        aggressive_proposal=aggressive,
        reasoning="Optimize the meta description for better click-through rates.",
    ))


async def create_heading_draft(
    manager: DraftManager,
    page_url: str,
    current_heading: str,
    heading_level: str,
    issue_id: Optional[str] = None,
) -> Draft:
    safe = current_heading or "Our Services"
    balanced = f"{current_heading} - Quality & Expertise" if current_heading else "Professional Solutions for Your Success"
    aggressive = f"{current_heading} | The Best Choice" if current_heading else "Your #1 Solution for Maximum Success"

    return await manager.create_draft(DraftProposal(
        issue_id=issue_id,
        page_url=page_url,
        draft_type="heading",
        current_value=current_heading,
        safe_proposal=safe,
        balanced_proposal=balanced,
        aggressive_proposal=aggressive,
        reasoning=f"Optimize the {heading_level} heading for a clearer SEO structure.",
        metadata={"heading_level": heading_level},
    ))


async def create_internal_link_draft(
    manager: DraftManager,
    page_url: str,
    target_url: str,
    anchor_text: str,
    context: str,
    issue_id: Optional[str] = None,
) -> Draft:
    href = html.escape(target_url, quote=True)
    anchor = html.escape(anchor_text)

    return await manager.create_draft(DraftProposal(
        issue_id=issue_id,
        page_url=page_url,
        draft_type="internal_link",
        current_value=context,
        safe_proposal=f'<a href="{href}">{anchor}</a>',
        balanced_proposal=f'<a href="{href}" title="{anchor}">{anchor} - Learn more</a>',
        aggressive_proposal=f'<a href="{href}" title="Discover {anchor}"><strong>{anchor}</strong> - See it now</a>',
        reasoning=f'New internal link to "{target_url}" for better site linking.',
        metadata={"target_url": target_url, "anchor_text": anchor_text},
    ))
