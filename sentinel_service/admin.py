from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Query

from sentinel_boundary.errors import AuthorizationError

from .orchestrator import SentinelOrchestrator
from .schemas import DecisionSubmission, ExecutorRotation, JournalQuery

router = APIRouter()
admin_router = APIRouter()

# The orchestrator instance should be created by the application and passed in.
_bound_orchestrator: Optional[SentinelOrchestrator] = None


def bind_orchestrator(o: SentinelOrchestrator):
    global _bound_orchestrator
    _bound_orchestrator = o


def _orchestrator() -> SentinelOrchestrator:
    if not _bound_orchestrator:
        raise HTTPException(status_code=500, detail="orchestrator not bound")
    return _bound_orchestrator


def _check_admin_token(x_admin_token: Optional[str], required: bool = False):
    token = _orchestrator().cfg.ADMIN_TOKEN
    if not token:
        if required:
            raise HTTPException(status_code=403, detail="admin token not configured")
        return
    if x_admin_token != token:
        raise HTTPException(status_code=401, detail="unauthorized")


@router.post("/decisions")
async def submit_decision(
    submission: DecisionSubmission,
    x_submitter: Optional[str] = Header(None, alias="X-Submitter"),
) -> Dict[str, Any]:
    orch = _orchestrator()
    try:
        result = await orch.submit(submission, caller=x_submitter or "")
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=type(e).__name__)
    return result.to_dict()


@router.get("/decisions")
async def list_decisions(
    start: Optional[int] = Query(None, ge=0),
    end: Optional[int] = Query(None, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    source: str = Query("memory", pattern="^(memory|storage)$"),
) -> Dict[str, Any]:
    q = JournalQuery(start=start, end=end, limit=limit)
    try:
        items = await _orchestrator().query_journal(q.start, q.end, q.limit, source=source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"count": len(items), "items": items}


@router.get("/decisions/{decision_id}/bundle")
async def decision_bundle(decision_id: str) -> Dict[str, Any]:
    bundle = await _orchestrator().regenerate_bundle(decision_id)
    if bundle is None:
        raise HTTPException(status_code=404, detail="unknown decision")
    return bundle


@admin_router.get("/target")
async def target_state() -> Dict[str, Any]:
    return _orchestrator().target.get_state()


@admin_router.get("/health")
async def health() -> Dict[str, Any]:
    return _orchestrator().health()


@admin_router.post("/executor")
async def rotate_executor(
    body: ExecutorRotation,
    x_admin_token: str = Header(None, alias="X-Admin-Token"),
) -> Dict[str, Any]:
    # rotation can lock the gate out of the target; never allow it unauthenticated
    _check_admin_token(x_admin_token, required=True)
    try:
        return _orchestrator().rotate_executor(body.caller, body.new_executor)
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=type(e).__name__)


@admin_router.get("/pending")
async def pending_list(max_items: int = 100) -> Dict[str, Any]:
    items = _orchestrator().pending_entries()
    return {"count": len(items), "items": items[:max_items]}


@admin_router.get("/failed")
async def failed_list(max_items: int = 100) -> Dict[str, Any]:
    items = _orchestrator().failed_entries()
    return {"count": len(items), "items": items[:max_items]}


@admin_router.post("/pending/flush")
async def pending_flush(x_admin_token: str = Header(None, alias="X-Admin-Token")) -> Dict[str, Any]:
    _check_admin_token(x_admin_token)
    orch = _orchestrator()
    written = await orch.drain_pending()
    return {"written": written, "remaining": len(orch.pending_entries())}
