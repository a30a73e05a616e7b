from typing import Any, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.logging_config import get_logger
from services.management_service.db.models import (
    ActivityLog,
    Audit,
    Change,
    Draft,
    Issue,
    Website,
    utcnow,
)
from services.management_service.db.session import get_sessionmaker

logger = get_logger(__name__)

ACTIVE_AUDIT_STATUSES = ("queued", "crawling", "analyzing", "scoring")
RESOLVED_ISSUE_STATUSES = ("fixed", "auto_fixed")
OPEN_DRAFT_STATUSES = ("pending", "approved")


class _IssueAlreadyResolved(Exception):
    pass


class Storage:
    """Persistence collaborator for websites, audits, issues, drafts, changes and activity logs.

    Every method opens its own short session. Status transitions that must not
    race are written as conditional UPDATEs and decided by the affected row count.
    """

    def __init__(self, sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._sessionmaker = sessionmaker or get_sessionmaker()

    async def _add(self, obj):
        async with self._sessionmaker() as session:
            async with session.begin():
                session.add(obj)
        return obj

    async def _get(self, model, pk: str):
        async with self._sessionmaker() as session:
            return await session.get(model, pk)

    async def _update(self, model, pk: str, fields: dict):
        async with self._sessionmaker() as session:
            async with session.begin():
                obj = await session.get(model, pk)
                if obj is None:
                    return None
                for key, value in fields.items():
                    setattr(obj, key, value)
        return obj

    async def _conditional_update(self, model, pk: str, statuses: Iterable[str], values: dict) -> bool:
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    update(model)
                    .where(model.id == pk, model.status.in_(list(statuses)))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    # websites

    async def create_website(self, url: str, name: Optional[str] = None, account_id: Optional[str] = None) -> Website:
        website = Website(url=url, name=name or url, account_id=account_id)
        return await self._add(website)

    async def get_website(self, website_id: str) -> Optional[Website]:
        return await self._get(Website, website_id)

    async def list_websites(self, account_id: Optional[str] = None) -> List[Website]:
        stmt = select(Website).order_by(Website.created_at)
        if account_id is not None:
            stmt = stmt.where(Website.account_id == account_id)
        async with self._sessionmaker() as session:
            return list((await session.scalars(stmt)).all())

    async def update_website(self, website_id: str, **fields: Any) -> Optional[Website]:
        return await self._update(Website, website_id, fields)

    async def delete_website(self, website_id: str) -> bool:
        async with self._sessionmaker() as session:
            async with session.begin():
                for model in (Change, Draft, Issue, ActivityLog, Audit):
                    await session.execute(delete(model).where(model.website_id == website_id))
                result = await session.execute(delete(Website).where(Website.id == website_id))
                deleted = result.rowcount == 1

        if deleted:
            logger.info(f"Website {website_id} deleted with all audit records", extra={"website_id": website_id})
        return deleted

    # audits

    async def create_audit(self, website_id: str, optimization_mode: str = "balanced") -> Audit:
        audit = Audit(
            website_id=website_id,
            status="queued",
            progress=0,
            current_step="Queued",
            optimization_mode=optimization_mode,
        )
        return await self._add(audit)

    async def get_audit(self, audit_id: str) -> Optional[Audit]:
        return await self._get(Audit, audit_id)

    async def list_audits(self, website_id: str) -> List[Audit]:
        stmt = select(Audit).where(Audit.website_id == website_id).order_by(Audit.created_at.desc())
        async with self._sessionmaker() as session:
            return list((await session.scalars(stmt)).all())

    async def update_audit(self, audit_id: str, **fields: Any) -> Optional[Audit]:
        return await self._update(Audit, audit_id, fields)

    async def claim_audit(self, audit_id: str) -> bool:
        """Compare-and-swap queued -> crawling. Only one caller can win."""
        return await self._conditional_update(
            Audit,
            audit_id,
            ["queued"],
            {
                "status": "crawling",
                "progress": 0,
                "started_at": utcnow(),
                "completed_at": None,
                "error": None,
            },
        )

    async def transition_audit(self, audit_id: str, to_status: str, **fields: Any) -> bool:
        """Write a state entry unless the audit has already reached a terminal state."""
        return await self._conditional_update(Audit, audit_id, ACTIVE_AUDIT_STATUSES, {"status": to_status, **fields})

    # issues

    async def create_issue(self, **fields: Any) -> Issue:
        return await self._add(Issue(**fields))

    async def get_issue(self, issue_id: str) -> Optional[Issue]:
        return await self._get(Issue, issue_id)

    async def get_issues(self, audit_id: str, status: Optional[str] = None) -> List[Issue]:
        stmt = select(Issue).where(Issue.audit_id == audit_id).order_by(Issue.created_at, Issue.id)
        if status is not None:
            stmt = stmt.where(Issue.status == status)
        async with self._sessionmaker() as session:
            return list((await session.scalars(stmt)).all())

    async def auto_fix_issue(self, issue_id: str) -> Optional[Change]:
        """Mark a pending, auto-fixable, low-risk issue as auto_fixed and record the Change atomically."""
        async with self._sessionmaker() as session:
            async with session.begin():
                now = utcnow()
                result = await session.execute(
                    update(Issue)
                    .where(
                        Issue.id == issue_id,
                        Issue.status == "pending",
                        Issue.auto_fixable.is_(True),
                        Issue.risk_level == "low",
                    )
                    .values(status="auto_fixed", fixed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None

                issue = await session.get(Issue, issue_id)
                change = Change(
                    issue_id=issue.id,
                    website_id=issue.website_id,
                    change_type=issue.issue_type,
                    page_url=issue.page_url,
                    before_value=issue.current_value,
                    after_value=issue.suggested_value,
                    status="applied",
                    applied_at=now,
                )
                session.add(change)

                # the issue is resolved; its open drafts can no longer be applied
                await session.execute(
                    update(Draft)
                    .where(Draft.issue_id == issue_id, Draft.status.in_(OPEN_DRAFT_STATUSES))
                    .values(status="rejected", rejected_at=now)
                    .execution_options(synchronize_session=False)
                )
        return change

    # drafts

    async def create_draft(self, **fields: Any) -> Draft:
        return await self._add(Draft(**fields))

    async def get_draft(self, draft_id: str) -> Optional[Draft]:
        return await self._get(Draft, draft_id)

    async def get_drafts(self, audit_id: str, status: Optional[str] = None) -> List[Draft]:
        stmt = select(Draft).where(Draft.audit_id == audit_id).order_by(Draft.created_at, Draft.id)
        if status is not None:
            stmt = stmt.where(Draft.status == status)
        async with self._sessionmaker() as session:
            return list((await session.scalars(stmt)).all())

    async def transition_draft(self, draft_id: str, from_statuses: Iterable[str], to_status: str, **fields: Any) -> bool:
        return await self._conditional_update(Draft, draft_id, from_statuses, {"status": to_status, **fields})

    async def select_draft_proposal(self, draft_id: str, variant: str, **fields: Any) -> bool:
        """Repoint the selected variant of a pending draft. Proposal texts are never written here."""
        return await self._conditional_update(Draft, draft_id, ["pending"], {"selected_proposal": variant, **fields})

    async def apply_draft(self, draft_id: str) -> Optional[Change]:
        """approved -> applied, source Issue -> fixed, and one Change insert, all in one transaction.

        Returns None, writing nothing, when the draft is not approved or its
        issue has already been resolved.
        """
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    now = utcnow()
                    result = await session.execute(
                        update(Draft)
                        .where(Draft.id == draft_id, Draft.status == "approved")
                        .values(status="applied", applied_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        return None

                    draft = await session.get(Draft, draft_id)
                    if draft.issue_id:
                        result = await session.execute(
                            update(Issue)
                            .where(Issue.id == draft.issue_id, Issue.status.not_in(RESOLVED_ISSUE_STATUSES))
                            .values(status="fixed", fixed_at=now, chosen_fix_variant=draft.selected_proposal)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount != 1:
                            raise _IssueAlreadyResolved(draft.issue_id)

                    change = Change(
                        issue_id=draft.issue_id,
                        draft_id=draft.id,
                        website_id=draft.website_id,
                        change_type=draft.draft_type,
                        page_url=draft.page_url,
                        before_value=draft.current_value,
                        after_value=draft.proposal(),
                        status="applied",
                        applied_at=now,
                    )
                    session.add(change)
        except _IssueAlreadyResolved as e:
            logger.info(f"Draft {draft_id} not applied: issue {e} is already resolved", extra={"draft_id": draft_id})
            return None
        return change

    # changes

    async def get_changes(self, website_id: Optional[str] = None, issue_id: Optional[str] = None, draft_id: Optional[str] = None) -> List[Change]:
        stmt = select(Change).order_by(Change.created_at, Change.id)
        if website_id is not None:
            stmt = stmt.where(Change.website_id == website_id)
        if issue_id is not None:
            stmt = stmt.where(Change.issue_id == issue_id)
        if draft_id is not None:
            stmt = stmt.where(Change.draft_id == draft_id)
        async with self._sessionmaker() as session:
            return list((await session.scalars(stmt)).all())

    async def rollback_change(self, change_id: str) -> bool:
        return await self._conditional_update(
            Change, change_id, ["applied"], {"status": "rolled_back", "rolled_back_at": utcnow()}
        )

    # activity

    async def create_activity_log(self, **fields: Any) -> ActivityLog:
        return await self._add(ActivityLog(**fields))

    async def get_activity_logs(self, audit_id: Optional[str] = None, website_id: Optional[str] = None, limit: int = 100) -> List[ActivityLog]:
        stmt = select(ActivityLog).order_by(ActivityLog.created_at.desc()).limit(limit)
        if audit_id is not None:
            stmt = stmt.where(ActivityLog.audit_id == audit_id)
        if website_id is not None:
            stmt = stmt.where(ActivityLog.website_id == website_id)
        async with self._sessionmaker() as session:
            return list((await session.scalars(stmt)).all())
