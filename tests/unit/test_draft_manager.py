import asyncio

import pytest

from services.management_service.draft_manager import (
    DraftManager,
    DraftProposal,
    create_heading_draft,
    create_internal_link_draft,
    create_meta_description_draft,
    create_title_draft,
    generate_html_diff,
    issue_to_draft_type,
    select_auto_apply_candidates,
)
from services.management_service.events.activity import MemoryActivitySink
from services.management_service.exceptions import InvalidStateError, NotFoundError


@pytest.fixture
def sink():
    return MemoryActivitySink()


async def _manager(storage, website, mode="balanced", sink=None) -> DraftManager:
    audit = await storage.create_audit(website.id, mode)
    return DraftManager.for_audit(storage, audit, sink)


async def _issue(storage, manager, **fields):
    values = dict(
        audit_id=manager.audit_id,
        website_id=manager.website_id,
        page_url="https://example.com/",
        issue_type="short_title",
        category="Meta Tags",
        title="Title Too Short",
        description="Title is only 4 characters.",
        severity="medium",
        risk_level="low",
        current_value="Home",
        suggested_value="Example Home",
        proposal_safe="Home | example.com",
        proposal_balanced="Example Home | example.com",
        proposal_aggressive="Widgets: Example Home | example.com",
        auto_fixable=True,
    )
    values.update(fields)
    return await storage.create_issue(**values)


def _proposal(**kw) -> DraftProposal:
    values = dict(
        page_url="https://example.com/",
        draft_type="title",
        current_value="Home",
        safe_proposal="Home | Example",
        balanced_proposal="Example Home | Example",
        aggressive_proposal="Best Example Home | Example",
        reasoning="Title is short.",
    )
    values.update(kw)
    return DraftProposal(**values)


@pytest.mark.asyncio
async def test_draft_lifecycle(storage, website, sink):
    manager = await _manager(storage, website, sink=sink)
    issue = await _issue(storage, manager)
    [draft] = await manager.create_drafts_for_issue(issue, {"safe": 0.95, "balanced": 0.85, "aggressive": 0.75})

    assert draft.status == "pending"
    assert draft.selected_proposal == "balanced"
    assert draft.confidence == 0.85
    assert draft.impact_estimate == "+15-25%"
    assert draft.reasoning.startswith("[Balanced] ")
    assert "Example Home | example.com" in draft.html_diff

    approved = await manager.approve_draft(draft.id)
    assert approved.status == "approved"
    assert approved.approved_at is not None

    applied = await manager.apply_draft(draft.id)
    assert applied.status == "applied"

    [change] = await storage.get_changes(draft_id=draft.id)
    assert change.after_value == "Example Home | example.com"
    assert change.before_value == "Home"

    fixed = await storage.get_issue(issue.id)
    assert fixed.status == "fixed"
    assert fixed.chosen_fix_variant == "balanced"
    assert [e.action for e in sink.events] == ["apply_draft"]


@pytest.mark.asyncio
async def test_apply_requires_approval(storage, website):
    manager = await _manager(storage, website)
    draft = await manager.create_draft(_proposal())

    with pytest.raises(InvalidStateError):
        await manager.apply_draft(draft.id)
    assert await storage.get_changes(draft_id=draft.id) == []

    await manager.approve_draft(draft.id)
    await manager.apply_draft(draft.id)
    with pytest.raises(InvalidStateError):
        await manager.apply_draft(draft.id)
    assert len(await storage.get_changes(draft_id=draft.id)) == 1


@pytest.mark.asyncio
async def test_apply_refuses_already_resolved_issue(storage, website):
    manager = await _manager(storage, website)
    issue = await _issue(storage, manager)
    [draft] = await manager.create_drafts_for_issue(issue)
    await manager.approve_draft(draft.id)
    await storage.auto_fix_issue(issue.id)

    with pytest.raises(InvalidStateError):
        await manager.apply_draft(draft.id)
    assert await storage.get_changes(draft_id=draft.id) == []
    assert (await storage.get_issue(issue.id)).status == "auto_fixed"


@pytest.mark.asyncio
async def test_terminal_states_reject_further_transitions(storage, website):
    manager = await _manager(storage, website)
    draft = await manager.create_draft(_proposal())
    await manager.reject_draft(draft.id)

    with pytest.raises(InvalidStateError):
        await manager.approve_draft(draft.id)
    with pytest.raises(InvalidStateError):
        await manager.reject_draft(draft.id)
    with pytest.raises(NotFoundError):
        await manager.approve_draft("missing")


@pytest.mark.asyncio
async def test_select_mode_keeps_proposal_texts(storage, website):
    manager = await _manager(storage, website)
    draft = await manager.create_draft(_proposal(confidences={"safe": 0.9, "balanced": 0.8, "aggressive": 0.6}))

    updated = await manager.select_mode(draft.id, "aggressive")

    assert updated.selected_proposal == "aggressive"
    assert updated.confidence == 0.6
    assert updated.impact_estimate == "+25-40%"
    assert "Best Example Home" in updated.html_diff
    assert (updated.proposed_value_safe, updated.proposed_value_balanced, updated.proposed_value_aggressive) == (
        draft.proposed_value_safe,
        draft.proposed_value_balanced,
        draft.proposed_value_aggressive,
    )

    await manager.approve_draft(draft.id)
    with pytest.raises(InvalidStateError):
        await manager.select_mode(draft.id, "safe")
    with pytest.raises(ValueError):
        await manager.select_mode(draft.id, "reckless")


@pytest.mark.asyncio
async def test_bulk_approve_skips_non_pending(storage, website):
    manager = await _manager(storage, website)
    drafts = [await manager.create_draft(_proposal()) for _ in range(3)]
    await manager.approve_draft(drafts[0].id)
    await manager.apply_draft(drafts[0].id)

    assert await manager.bulk_approve([d.id for d in drafts]) == 2
    assert await manager.bulk_apply([d.id for d in drafts] + ["missing"]) == 2

    stats = await manager.get_draft_stats()
    assert stats == {"total": 3, "pending": 0, "approved": 0, "applied": 3, "rejected": 0}


@pytest.mark.asyncio
async def test_auto_apply_uses_mode_threshold(storage, website):
    manager = await _manager(storage, website, mode="safe")
    confident = await manager.create_draft(_proposal(confidences={"safe": 0.95}))
    unsure = await manager.create_draft(_proposal(confidences={"safe": 0.85}))

    assert await manager.auto_apply_low_risk_drafts() == 1

    assert (await storage.get_draft(confident.id)).status == "applied"
    assert (await storage.get_draft(unsure.id)).status == "pending"
    assert len(await storage.get_changes(draft_id=confident.id)) == 1
    assert await manager.auto_apply_low_risk_drafts() == 0


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject(storage, website):
    manager = await _manager(storage, website)
    draft = await manager.create_draft(_proposal())

    results = await asyncio.gather(
        manager.approve_draft(draft.id),
        manager.reject_draft(draft.id),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidStateError)
    final = await storage.get_draft(draft.id)
    assert final.status in ("approved", "rejected")


@pytest.mark.asyncio
async def test_bolder_modes_select_more_drafts(storage, website):
    manager = await _manager(storage, website)
    for confidence in (0.65, 0.72, 0.81, 0.88, 0.93):
        await manager.create_draft(_proposal(confidences={"balanced": confidence}))
    drafts = await manager.get_drafts()

    safe = {d.id for d in select_auto_apply_candidates(drafts, "safe")}
    balanced = {d.id for d in select_auto_apply_candidates(drafts, "balanced")}
    aggressive = {d.id for d in select_auto_apply_candidates(drafts, "aggressive")}

    assert safe <= balanced <= aggressive
    assert (len(safe), len(balanced), len(aggressive)) == (1, 3, 4)


@pytest.mark.asyncio
async def test_issue_without_draft_type_gets_no_draft(storage, website):
    manager = await _manager(storage, website)
    issue = await _issue(storage, manager, issue_type="http_error")
    assert await manager.create_drafts_for_issue(issue) == []


@pytest.mark.asyncio
async def test_draft_helpers(storage, website):
    manager = await _manager(storage, website, mode="safe")

    title = await create_title_draft(manager, "https://example.com/", "Home")
    assert title.proposed_value_safe == "Home - Learn More"
    assert title.selected_proposal == "safe"

    description = await create_meta_description_draft(manager, "https://example.com/", "")
    assert description.draft_type == "meta_description"
    assert description.current_value == ""

    heading = await create_heading_draft(manager, "https://example.com/", "Widgets", "h1")
    assert heading.meta["heading_level"] == "h1"

    link = await create_internal_link_draft(manager, "https://example.com/", "https://example.com/b?x=1&y=2", "B & C", "See more")
    assert link.proposed_value_safe == '<a href="https://example.com/b?x=1&amp;y=2">B &amp; C</a>'
    assert link.meta["target_url"] == "https://example.com/b?x=1&y=2"


@pytest.mark.asyncio
async def test_unbound_manager_cannot_create(storage):
    with pytest.raises(ValueError):
        await DraftManager(storage).create_draft(_proposal())


def test_html_diff_escapes():
    diff = generate_html_diff("<b>old</b>", None)
    assert "&lt;b&gt;old&lt;/b&gt;" in diff
    assert "(empty)" in diff
    assert generate_html_diff("", None) == ""


def test_issue_to_draft_type():
    assert issue_to_draft_type("missing_meta_description") == "meta_description"
    assert issue_to_draft_type("poor_compression") == "image"
    assert issue_to_draft_type("slow_page") is None
