import asyncio
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import httpx
from prometheus_client import Counter, Histogram

from config.logging_config import get_logger
from services.audit_service.analyzers.findings import SEOIssue
from services.audit_service.analyzers.image_checker import generate_image_report
from services.audit_service.analyzers.issue_analyzer import (
    analyze_page,
    calculate_health_score,
    count_by_severity,
)
from services.audit_service.config import settings as audit_settings
from services.audit_service.crawler.cancellation import AuditCancelledError, CancellationToken
from services.audit_service.crawler.image_inspector import inspect_page_images, mark_duplicates
from services.audit_service.crawler.site_crawler import CrawledPage, crawl_site
from services.management_service.config import settings as mgmt_settings
from services.management_service.db.models import Audit, utcnow
from services.management_service.db.storage import RESOLVED_ISSUE_STATUSES, Storage
from services.management_service.draft_manager import DraftManager
from services.management_service.events.activity import ActivityEvent, ActivitySink, StorageActivitySink
from services.management_service.events.audit_progress import AuditProgressEvent, publish_audit_progress
from services.management_service.exceptions import AuditAlreadyRunningError, InvalidStateError, NotFoundError
from services.management_service.optimization_modes import OptimizationMode, get_mode_label, parse_mode
from services.management_service.suggestions.base import ProposalSet, SuggestionProvider
from services.management_service.suggestions.fallback import FallbackSuggestionProvider, build_suggestion_provider
from services.management_service.suggestions.rule_based import RuleBasedSuggestionProvider

logger = get_logger(__name__)

audits_total = Counter(
    'audits_total',
    'Total audit runs by final status',
    ['status']
)

audit_duration = Histogram(
    'audit_duration_seconds',
    'Duration of a full audit run'
)


class AuditState(str, Enum):
    QUEUED = "queued"
    CRAWLING = "crawling"
    ANALYZING = "analyzing"
    SCORING = "scoring"
    FINALIZED = "finalized"
    FAILED = "failed"

    @property
    def coarse(self) -> str:
        return COARSE_STATUS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (AuditState.FINALIZED, AuditState.FAILED)


COARSE_STATUS = {
    AuditState.QUEUED: "pending",
    AuditState.CRAWLING: "running",
    AuditState.ANALYZING: "running",
    AuditState.SCORING: "running",
    AuditState.FINALIZED: "completed",
    AuditState.FAILED: "failed",
}

PROGRESS_CRAWL_START = 10
PROGRESS_CRAWL_END = 30
PROGRESS_IMAGES_END = 45
PROGRESS_PROPOSALS_END = 75
PROGRESS_PERSIST_END = 85
PROGRESS_SCORING = 90
PROGRESS_DONE = 100


def coarse_status(status: str) -> str:
    return AuditState(status).coarse


def _scaled(start: int, end: int, done: int, total: int) -> int:
    if total <= 0:
        return end
    return start + (end - start) * min(done, total) // total


@dataclass
class AuditRun:
    audit_id: str
    website_id: str
    url: str
    mode: OptimizationMode
    token: CancellationToken
    state: AuditState = AuditState.CRAWLING
    progress: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class AuditOrchestrator:
    """Drives one audit through queued -> crawling -> analyzing -> scoring -> finalized.

    Only the orchestrator writes audit status. Any unhandled error moves the
    audit to ``failed``; issues and drafts written before the error are kept.
    """

    def __init__(
        self,
        storage: Storage,
        provider: Optional[SuggestionProvider] = None,
        activity_sink: Optional[ActivitySink] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_pages: Optional[int] = None,
        suggestion_concurrency: Optional[int] = None,
        analyze_images: Optional[bool] = None,
        publish_events: bool = True,
    ):
        self.storage = storage
        provider = provider or build_suggestion_provider()
        if type(provider) is not RuleBasedSuggestionProvider and not isinstance(provider, FallbackSuggestionProvider):
            provider = FallbackSuggestionProvider(provider)
        self.provider = provider
        self.activity_sink = activity_sink or StorageActivitySink(storage)
        self.client = client
        self.max_pages = max_pages or audit_settings.max_pages
        self.suggestion_concurrency = suggestion_concurrency or mgmt_settings.suggestion_concurrency
        self.analyze_images = audit_settings.analyze_images if analyze_images is None else analyze_images
        self.publish_events = publish_events
        self._tokens: Dict[str, CancellationToken] = {}

    async def start_audit(self, website_id: str, mode: "OptimizationMode | str | None" = None) -> Audit:
        """Create a queued audit for the website. The run itself is started with ``run``."""
        website = await self.storage.get_website(website_id)
        if website is None:
            raise NotFoundError(f"Website {website_id} not found")

        mode = parse_mode(mode, default=parse_mode(mgmt_settings.default_optimization_mode))
        audit = await self.storage.create_audit(website_id, optimization_mode=mode.value)
        logger.info(
            f"Audit {audit.id} queued for {website.url} ({mode.value})",
            extra={"audit_id": audit.id, "website_id": website_id},
        )
        return audit

    def is_running(self, audit_id: str) -> bool:
        return audit_id in self._tokens

    async def cancel(self, audit_id: str) -> bool:
        token = self._tokens.get(audit_id)
        if token is not None:
            token.cancel()
            logger.info(f"Cancellation requested for audit {audit_id}", extra={"audit_id": audit_id})
            return True

        cancelled = await self.storage.transition_audit(
            audit_id,
            AuditState.FAILED.value,
            error="cancelled",
            current_step="Cancelled",
            completed_at=utcnow(),
        )
        if cancelled:
            audits_total.labels(status='cancelled').inc()
        return cancelled

    async def run(self, audit_id: str) -> Audit:
        audit = await self.storage.get_audit(audit_id)
        if audit is None:
            raise NotFoundError(f"Audit {audit_id} not found")
        if not await self.storage.claim_audit(audit_id):
            raise AuditAlreadyRunningError(f"Audit {audit_id} is {audit.status}, it can only be started from queued")

        run = AuditRun(
            audit_id=audit_id,
            website_id=audit.website_id,
            url="",
            mode=parse_mode(audit.optimization_mode),
            token=CancellationToken(),
        )
        self._tokens[audit_id] = run.token

        try:
            with audit_duration.time():
                await self._execute(run)
            audits_total.labels(status='finalized').inc()
        except AuditCancelledError:
            logger.info(f"Audit {audit_id} cancelled", extra={"audit_id": audit_id})
            await self._fail(run, "cancelled")
            audits_total.labels(status='cancelled').inc()
        except Exception as e:
            logger.error(
                f"Audit {audit_id} failed: {e}",
                extra={"audit_id": audit_id, "website_id": run.website_id},
                exc_info=True,
            )
            await self._fail(run, str(e) or type(e).__name__)
            audits_total.labels(status='failed').inc()
        finally:
            self._tokens.pop(audit_id, None)

        return await self.storage.get_audit(audit_id)

    async def _execute(self, run: AuditRun) -> None:
        website = await self.storage.get_website(run.website_id)
        if website is None:
            raise NotFoundError(f"Website {run.website_id} not found")
        run.url = website.url

        await self._emit(
            run,
            "strategy",
            f"Starting audit of {website.url} in {get_mode_label(run.mode)} mode",
            action="audit_started",
        )

        pages = await self._crawl(run)
        findings = await self._analyze(run, pages)
        proposals = await self._generate_proposals(run, findings)
        await self._persist(run, findings, proposals)
        await self._score(run, website.health_score, pages)

    async def _crawl(self, run: AuditRun) -> List[CrawledPage]:
        await self._advance(run, AuditState.CRAWLING, PROGRESS_CRAWL_START, f"Crawling {run.url}")

        async def on_page(page: CrawledPage, count: int) -> None:
            await self._advance(
                run,
                AuditState.CRAWLING,
                _scaled(PROGRESS_CRAWL_START, PROGRESS_CRAWL_END, count, self.max_pages),
                f"Crawled {count} of up to {self.max_pages} pages",
            )

        async with self._http_client() as client:
            pages = await crawl_site(
                run.url,
                self.max_pages,
                client=client,
                cancel_token=run.token,
                on_page=on_page,
            )

            await self._advance(run, AuditState.ANALYZING, PROGRESS_CRAWL_END, f"Crawled {len(pages)} pages", pages_scanned=len(pages))
            await self._emit(run, "audit", f"Crawled {len(pages)} pages", action="crawl_completed", pages=len(pages))

            if self.analyze_images:
                fetched = [p for p in pages if p.fetched]
                for i, page in enumerate(fetched, start=1):
                    page.images_detailed = await inspect_page_images(client, page, cancel_token=run.token)
                    await self._advance(
                        run,
                        AuditState.ANALYZING,
                        _scaled(PROGRESS_CRAWL_END, PROGRESS_IMAGES_END, i, len(fetched)),
                        f"Inspected images on {i} of {len(fetched)} pages",
                    )
                mark_duplicates(img for p in pages for img in p.images_detailed)

        return pages

    async def _analyze(self, run: AuditRun, pages: List[CrawledPage]) -> List[Tuple[CrawledPage, SEOIssue]]:
        findings = [(page, issue) for page in pages for issue in analyze_page(page)]
        await self._advance(
            run,
            AuditState.ANALYZING,
            PROGRESS_IMAGES_END,
            f"Found {len(findings)} issues, generating proposals",
        )
        await self._emit(run, "audit", f"Analyzer found {len(findings)} issues", action="analysis_completed", issues=len(findings))
        return findings

    async def _generate_proposals(self, run: AuditRun, findings: List[Tuple[CrawledPage, SEOIssue]]) -> List[ProposalSet]:
        semaphore = asyncio.Semaphore(self.suggestion_concurrency)
        total = len(findings)
        done = 0

        async def propose(page: CrawledPage, issue: SEOIssue) -> ProposalSet:
            nonlocal done
            async with semaphore:
                run.token.raise_if_cancelled()
                proposals = await self.provider.generate_proposals(issue, page)
            async with run.lock:
                done += 1
                completed = done
            await self._advance(
                run,
                AuditState.ANALYZING,
                _scaled(PROGRESS_IMAGES_END, PROGRESS_PROPOSALS_END, completed, total),
                f"Generated proposals for {completed} of {total} issues",
            )
            return proposals

        tasks = [asyncio.ensure_future(propose(page, issue)) for page, issue in findings]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def _persist(self, run: AuditRun, findings: List[Tuple[CrawledPage, SEOIssue]], proposals: List[ProposalSet]) -> None:
        drafts = DraftManager(self.storage, run.audit_id, run.website_id, run.mode, self.activity_sink)
        total = len(findings)
        draft_count = 0

        for i, ((page, finding), proposal_set) in enumerate(zip(findings, proposals), start=1):
            issue = await self.storage.create_issue(
                audit_id=run.audit_id,
                website_id=run.website_id,
                page_url=finding.page_url,
                issue_type=finding.type,
                category=finding.category,
                title=finding.title,
                description=finding.description,
                severity=finding.severity,
                risk_level=finding.risk_level,
                status="pending",
                current_value=finding.current_value,
                suggested_value=proposal_set.proposal_for(run.mode),
                proposal_safe=proposal_set.safe,
                proposal_balanced=proposal_set.balanced,
                proposal_aggressive=proposal_set.aggressive,
                reasoning=proposal_set.reasoning,
                suggestion_source=proposal_set.source,
                confidence=proposal_set.confidence_for(run.mode),
                auto_fixable=finding.auto_fixable,
            )
            draft_count += len(await drafts.create_drafts_for_issue(issue, proposal_set.confidences))
            await self._advance(
                run,
                AuditState.ANALYZING,
                _scaled(PROGRESS_PROPOSALS_END, PROGRESS_PERSIST_END, i, total),
                f"Saved {i} of {total} issues",
            )

        await self._emit(
            run,
            "content",
            f"Created {draft_count} drafts for {total} issues",
            action="drafts_created",
            drafts=draft_count,
        )

    async def _score(self, run: AuditRun, previous_score: Optional[int], pages: List[CrawledPage]) -> None:
        await self._advance(run, AuditState.SCORING, PROGRESS_SCORING, "Calculating health score")

        issues = await self.storage.get_issues(run.audit_id)
        score = calculate_health_score(issues)
        counts = count_by_severity(issues)
        now = utcnow()

        await self.storage.update_website(run.website_id, health_score=score, last_audit_at=now)

        await self._advance(
            run,
            AuditState.FINALIZED,
            PROGRESS_DONE,
            "Audit complete",
            completed_at=now,
            score=score,
            score_before=score,
            previous_score=previous_score,
            total_issues=len(issues),
            critical_count=counts["critical"],
            high_count=counts["high"],
            medium_count=counts["medium"],
            low_count=counts["low"],
            crawl_data={
                "pages": [p.to_snapshot() for p in pages],
                "image_report": generate_image_report(pages),
            },
        )
        await self._emit(
            run,
            "strategy",
            f"Audit finished with health score {score}",
            action="audit_completed",
            score=score,
            previous_score=previous_score,
            total_issues=len(issues),
        )

    async def _advance(self, run: AuditRun, state: AuditState, progress: int, step: str, **fields) -> None:
        async with run.lock:
            progress = max(run.progress, int(progress))
            if not await self.storage.transition_audit(
                run.audit_id,
                state.value,
                progress=progress,
                current_step=step,
                **fields,
            ):
                raise AuditCancelledError(f"audit {run.audit_id} is no longer active")
            run.state = state
            run.progress = progress
            await self._publish(run, step)

    async def _fail(self, run: AuditRun, error: str) -> None:
        async with run.lock:
            await self.storage.transition_audit(
                run.audit_id,
                AuditState.FAILED.value,
                error=error,
                current_step=f"Failed: {error}",
                completed_at=utcnow(),
            )
            run.state = AuditState.FAILED
            await self._publish(run, f"Failed: {error}", error=error)

        await self._emit(run, "strategy", f"Audit failed: {error}", action="audit_failed")

    async def _publish(self, run: AuditRun, step: str, error: Optional[str] = None) -> None:
        if not self.publish_events:
            return
        event = AuditProgressEvent.build(
            audit_id=run.audit_id,
            website_id=run.website_id,
            status=run.state.value,
            coarse_status=run.state.coarse,
            progress=run.progress,
            current_step=step,
            error=error,
        )
        await publish_audit_progress(event)

    async def _emit(self, run: AuditRun, agent_type: str, message: str, action: Optional[str] = None, **metadata) -> None:
        await self.activity_sink.emit(ActivityEvent(
            agent_type=agent_type,
            message=message,
            audit_id=run.audit_id,
            website_id=run.website_id,
            action=action,
            metadata=metadata,
        ))

    def _http_client(self):
        if self.client is not None:
            return nullcontext(self.client)
        return httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": audit_settings.user_agent},
            timeout=audit_settings.page_timeout_s,
        )

    async def _finalized_audit(self, audit_id: str) -> Audit:
        audit = await self.storage.get_audit(audit_id)
        if audit is None:
            raise NotFoundError(f"Audit {audit_id} not found")
        if audit.status != AuditState.FINALIZED.value:
            raise InvalidStateError(f"Audit {audit_id} is {audit.status}, expected finalized")
        return audit

    async def refresh_score_after(self, audit_id: str) -> int:
        """Recompute the post-fix score from the full issue set, counting only unresolved issues."""
        issues = await self.storage.get_issues(audit_id)
        score_after = calculate_health_score(i for i in issues if i.status not in RESOLVED_ISSUE_STATUSES)
        await self.storage.update_audit(audit_id, score_after=score_after)
        return score_after

    async def auto_fix_issues(self, audit_id: str) -> int:
        """Mark every pending, auto-fixable, low-risk issue as auto_fixed with a Change record."""
        audit = await self._finalized_audit(audit_id)
        pending = await self.storage.get_issues(audit_id, status="pending")

        fixed = 0
        for issue in pending:
            if not issue.auto_fixable or issue.risk_level != "low":
                continue
            if await self.storage.auto_fix_issue(issue.id) is not None:
                fixed += 1

        score_after = await self.refresh_score_after(audit_id)
        await self.activity_sink.emit(ActivityEvent(
            agent_type="fix",
            message=f"Auto-fixed {fixed} low-risk issues",
            audit_id=audit_id,
            website_id=audit.website_id,
            action="auto_fix",
            metadata={"fixed": fixed, "score_after": score_after},
        ))
        return fixed

    async def auto_apply_drafts(self, audit_id: str) -> int:
        audit = await self._finalized_audit(audit_id)
        manager = DraftManager.for_audit(self.storage, audit, self.activity_sink)
        applied = await manager.auto_apply_low_risk_drafts()
        await self.refresh_score_after(audit_id)
        return applied

