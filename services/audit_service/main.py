import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from config.logging_config import get_logger, setup_logging
from services.audit_service.config import settings
from services.audit_service.schemas.audit import (
    AuditStatusResponse,
    CancelResponse,
    CountResponse,
    DraftIdsRequest,
    DraftResponse,
    IssueResponse,
    SelectModeRequest,
    StartAuditRequest,
    WebsiteCreateRequest,
    WebsiteResponse,
)
from services.management_service.db.session import dispose_engine, init_db
from services.management_service.db.storage import Storage
from services.management_service.draft_manager import DraftManager
from services.management_service.events.activity import StorageActivitySink
from services.management_service.exceptions import InvalidStateError, NotFoundError
from services.management_service.orchestrator import AuditOrchestrator, coarse_status
from services.management_service.reporting import AuditReport, build_audit_report

logger = get_logger(__name__)

_storage: Optional[Storage] = None
_orchestrator: Optional[AuditOrchestrator] = None
_background: set[asyncio.Task] = set()


def get_storage() -> Storage:
    global _storage
    if _storage is None:
        _storage = Storage()
    return _storage


def get_orchestrator(storage: Storage = Depends(get_storage)) -> AuditOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AuditOrchestrator(storage)
    return _orchestrator


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging("site_audit")
    await init_db()
    yield
    for task in list(_background):
        task.cancel()
    await dispose_engine()


app = FastAPI(title="Site Audit Service", version="0.1.0", lifespan=lifespan)


def _audit_status(audit) -> AuditStatusResponse:
    return AuditStatusResponse(
        id=audit.id,
        website_id=audit.website_id,
        status=audit.status,
        coarse_status=coarse_status(audit.status),
        progress=audit.progress,
        current_step=audit.current_step,
        optimization_mode=audit.optimization_mode,
        pages_scanned=audit.pages_scanned,
        total_issues=audit.total_issues,
        critical_count=audit.critical_count,
        high_count=audit.high_count,
        medium_count=audit.medium_count,
        low_count=audit.low_count,
        score=audit.score,
        score_after=audit.score_after,
        error=audit.error,
        started_at=audit.started_at,
        completed_at=audit.completed_at,
    )


def _drafts(storage: Storage) -> DraftManager:
    return DraftManager(storage, activity_sink=StorageActivitySink(storage))


async def _require_audit(storage: Storage, audit_id: str):
    audit = await storage.get_audit(audit_id)
    if audit is None:
        raise HTTPException(status_code=404, detail="audit_not_found")
    return audit


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": "site_audit", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/websites", response_model=WebsiteResponse, status_code=201)
async def create_website(payload: WebsiteCreateRequest, storage: Storage = Depends(get_storage)):
    return await storage.create_website(str(payload.url), name=payload.name, account_id=payload.account_id)


@app.delete("/websites/{website_id}", status_code=204)
async def delete_website(website_id: str, storage: Storage = Depends(get_storage)) -> Response:
    if not await storage.delete_website(website_id):
        raise HTTPException(status_code=404, detail="website_not_found")
    return Response(status_code=204)


@app.post("/websites/{website_id}/audits", response_model=AuditStatusResponse, status_code=202)
async def start_audit(
    website_id: str,
    payload: Optional[StartAuditRequest] = None,
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
) -> AuditStatusResponse:
    mode = payload.optimization_mode if payload else None
    audit = await orchestrator.start_audit(website_id, mode)

    task = asyncio.create_task(orchestrator.run(audit.id))
    _background.add(task)
    task.add_done_callback(_background.discard)
    return _audit_status(audit)


@app.get("/audits/{audit_id}", response_model=AuditStatusResponse)
async def get_audit_status(audit_id: str, storage: Storage = Depends(get_storage)) -> AuditStatusResponse:
    return _audit_status(await _require_audit(storage, audit_id))


@app.get("/audits/{audit_id}/issues", response_model=list[IssueResponse])
async def list_issues(audit_id: str, status: Optional[str] = Query(default=None), storage: Storage = Depends(get_storage)):
    await _require_audit(storage, audit_id)
    return await storage.get_issues(audit_id, status=status)


@app.get("/audits/{audit_id}/drafts", response_model=list[DraftResponse])
async def list_drafts(audit_id: str, status: Optional[str] = Query(default=None), storage: Storage = Depends(get_storage)):
    await _require_audit(storage, audit_id)
    return await storage.get_drafts(audit_id, status=status)


@app.get("/audits/{audit_id}/report", response_model=AuditReport)
async def get_report(audit_id: str, storage: Storage = Depends(get_storage)) -> AuditReport:
    return await build_audit_report(storage, audit_id)


@app.post("/audits/{audit_id}/auto-fix", response_model=CountResponse)
async def auto_fix(audit_id: str, orchestrator: AuditOrchestrator = Depends(get_orchestrator)) -> CountResponse:
    return CountResponse(count=await orchestrator.auto_fix_issues(audit_id))


@app.post("/audits/{audit_id}/auto-apply", response_model=CountResponse)
async def auto_apply(audit_id: str, orchestrator: AuditOrchestrator = Depends(get_orchestrator)) -> CountResponse:
    return CountResponse(count=await orchestrator.auto_apply_drafts(audit_id))


@app.post("/audits/{audit_id}/cancel", response_model=CancelResponse)
async def cancel_audit(audit_id: str, orchestrator: AuditOrchestrator = Depends(get_orchestrator)) -> CancelResponse:
    await _require_audit(orchestrator.storage, audit_id)
    return CancelResponse(audit_id=audit_id, cancelled=await orchestrator.cancel(audit_id))


@app.post("/drafts/bulk-approve", response_model=CountResponse)
async def bulk_approve(payload: DraftIdsRequest, storage: Storage = Depends(get_storage)) -> CountResponse:
    return CountResponse(count=await _drafts(storage).bulk_approve(payload.draft_ids))


@app.post("/drafts/bulk-apply", response_model=CountResponse)
async def bulk_apply(payload: DraftIdsRequest, storage: Storage = Depends(get_storage)) -> CountResponse:
    return CountResponse(count=await _drafts(storage).bulk_apply(payload.draft_ids))


@app.post("/drafts/{draft_id}/approve", response_model=DraftResponse)
async def approve_draft(draft_id: str, storage: Storage = Depends(get_storage)):
    return await _drafts(storage).approve_draft(draft_id)


@app.post("/drafts/{draft_id}/reject", response_model=DraftResponse)
async def reject_draft(draft_id: str, storage: Storage = Depends(get_storage)):
    return await _drafts(storage).reject_draft(draft_id)


@app.post("/drafts/{draft_id}/apply", response_model=DraftResponse)
async def apply_draft(draft_id: str, storage: Storage = Depends(get_storage)):
    return await _drafts(storage).apply_draft(draft_id)


@app.post("/drafts/{draft_id}/select-mode", response_model=DraftResponse)
async def select_mode(draft_id: str, payload: SelectModeRequest, storage: Storage = Depends(get_storage)):
    return await _drafts(storage).select_mode(draft_id, payload.mode)


@app.exception_handler(NotFoundError)
async def not_found_handler(_, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidStateError)
async def invalid_state_handler(_, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(_, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("services.audit_service.main:app", host="0.0.0.0", port=settings.port, reload=False)
