import asyncio

import httpx
import pytest
import pytest_asyncio
import respx

from services.audit_service import main
from services.management_service.events.activity import MemoryActivitySink
from services.management_service.orchestrator import AuditOrchestrator
from services.management_service.suggestions.rule_based import RuleBasedSuggestionProvider

from .helpers import html_page, words


@pytest_asyncio.fixture
async def api(storage):
    orchestrator = AuditOrchestrator(
        storage,
        provider=RuleBasedSuggestionProvider(),
        activity_sink=MemoryActivitySink(),
        analyze_images=False,
        publish_events=False,
        max_pages=3,
    )
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    main.app.dependency_overrides[main.get_orchestrator] = lambda: orchestrator

    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    main.app.dependency_overrides.clear()


async def _finished_audit(api) -> dict:
    r = await api.post("/websites", json={"url": "https://example.com", "name": "Example"})
    assert r.status_code == 201
    website = r.json()

    with respx.mock(assert_all_called=False) as mock:
        mock.get("https://example.com/").respond(200, html=html_page(body=f"<p>{words(40)}</p>"))
        r = await api.post(f"/websites/{website['id']}/audits", json={"optimization_mode": "safe"})
        assert r.status_code == 202
        assert r.json()["coarse_status"] == "pending"
        await asyncio.gather(*main._background)

    r = await api.get(f"/audits/{r.json()['id']}")
    assert r.status_code == 200
    return r.json()


@pytest.mark.asyncio
async def test_health(api):
    r = await api.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_audit_flow_over_http(api):
    audit = await _finished_audit(api)
    assert audit["status"] == "finalized"
    assert audit["coarse_status"] == "completed"
    assert audit["progress"] == 100

    issues = (await api.get(f"/audits/{audit['id']}/issues")).json()
    assert "missing_title" in {i["issue_type"] for i in issues}

    drafts = (await api.get(f"/audits/{audit['id']}/drafts", params={"status": "pending"})).json()
    title = next(d for d in drafts if d["draft_type"] == "title")

    r = await api.post(f"/drafts/{title['id']}/select-mode", json={"mode": "balanced"})
    assert r.json()["selected_proposal"] == "balanced"

    assert (await api.post(f"/drafts/{title['id']}/apply")).status_code == 409
    assert (await api.post(f"/drafts/{title['id']}/approve")).json()["status"] == "approved"
    assert (await api.post(f"/drafts/{title['id']}/approve")).status_code == 409
    assert (await api.post(f"/drafts/{title['id']}/apply")).json()["status"] == "applied"

    r = await api.post(f"/drafts/{title['id']}/select-mode", json={"mode": "reckless"})
    assert r.status_code == 400

    report = (await api.get(f"/audits/{audit['id']}/report")).json()
    assert report["fixed_count"] == 1


@pytest.mark.asyncio
async def test_bulk_endpoints_and_sweeps(api):
    audit = await _finished_audit(api)
    drafts = (await api.get(f"/audits/{audit['id']}/drafts")).json()
    ids = [d["id"] for d in drafts]

    assert (await api.post("/drafts/bulk-approve", json={"draft_ids": ids[:1]})).json() == {"count": 1}
    assert (await api.post("/drafts/bulk-apply", json={"draft_ids": ids})).json() == {"count": 1}

    r = await api.post(f"/audits/{audit['id']}/auto-fix")
    assert r.status_code == 200
    assert r.json()["count"] >= 1


@pytest.mark.asyncio
async def test_not_found_responses(api):
    assert (await api.get("/audits/missing")).status_code == 404
    assert (await api.post("/drafts/missing/approve")).status_code == 404
    assert (await api.get("/audits/missing/report")).status_code == 404
    assert (await api.delete("/websites/missing")).status_code == 404
    assert (await api.post("/websites/missing/audits", json={})).status_code == 404


@pytest.mark.asyncio
async def test_cancel_and_delete(api):
    r = await api.post("/websites", json={"url": "https://example.com"})
    website_id = r.json()["id"]

    orchestrator = main.app.dependency_overrides[main.get_orchestrator]()
    audit = await orchestrator.start_audit(website_id)

    r = await api.post(f"/audits/{audit.id}/cancel")
    assert r.json() == {"audit_id": audit.id, "cancelled": True}
    assert (await api.get(f"/audits/{audit.id}")).json()["status"] == "failed"

    assert (await api.delete(f"/websites/{website_id}")).status_code == 204
    assert (await api.get(f"/audits/{audit.id}")).status_code == 404
