"""FastAPI backend for SecureCoda.

Exposes the scan pipeline to the dashboard: alert listing, rescans,
remediation, and document lookups.
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from secure_coda.config import (
    ALLOWED_DOMAINS,
    CORS_ORIGINS,
    LOG_LEVEL,
    ROW_PAGE_LIMIT,
    SCAN_CONCURRENCY,
    SCAN_ON_STARTUP,
    UNUSED_DAYS_THRESHOLD,
)
from secure_coda.coda_client import CodaClient
from secure_coda.output import generate_summary
from secure_coda.remediation import RemediationService
from secure_coda.scanner import Scanner

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

router = APIRouter(prefix="/api")


def _run_background_scan(scanner: Scanner, reason: str) -> threading.Thread:
    def run():
        try:
            if not scanner.trigger_scan():
                logger.info("Skipped %s scan: another scan is running", reason)
        except Exception:
            logger.exception("%s scan failed", reason.capitalize())

    thread = threading.Thread(target=run, name=f"{reason}-scan", daemon=True)
    thread.start()
    return thread


def _scanner(request: Request) -> Scanner:
    return request.app.state.scanner


def _remediation(request: Request) -> RemediationService:
    return request.app.state.remediation


# ---------------------------------------------------------------------------
# GET /api/config: non-secret settings
# ---------------------------------------------------------------------------
@router.get("/config")
def api_config():
    return {
        "unused_days_threshold": UNUSED_DAYS_THRESHOLD,
        "allowed_domains": list(ALLOWED_DOMAINS),
        "scan_concurrency": SCAN_CONCURRENCY,
        "row_page_limit": ROW_PAGE_LIMIT,
    }


# ---------------------------------------------------------------------------
# GET /api/alerts: current scan's alerts, in insertion order
# ---------------------------------------------------------------------------
@router.get("/alerts")
def api_list_alerts(
    request: Request,
    offset: Optional[int] = Query(None, ge=0),
    page: Optional[int] = Query(None, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=1000),
):
    if offset is None:
        offset = ((page or 1) - 1) * limit
    alerts = _scanner(request).store.list(offset, limit)
    return [a.to_dict() for a in alerts]


# ---------------------------------------------------------------------------
# GET /api/alerts/summary: counts by type and severity
# ---------------------------------------------------------------------------
@router.get("/alerts/summary")
def api_alert_summary(request: Request):
    return generate_summary(_scanner(request).store.list())


# ---------------------------------------------------------------------------
# POST /api/rescan: run a full scan cycle
# ---------------------------------------------------------------------------
@router.post("/rescan")
def api_rescan(request: Request):
    scanner = _scanner(request)
    if not scanner.trigger_scan():
        raise HTTPException(status_code=409, detail="A scan is already running")
    report = scanner.last_report
    return {"message": "Scan complete", "report": report.to_dict() if report else None}


# ---------------------------------------------------------------------------
# GET /api/scan/status, POST /api/scan/cancel
# ---------------------------------------------------------------------------
@router.get("/scan/status")
def api_scan_status(request: Request):
    scanner = _scanner(request)
    report = scanner.last_report
    return {"running": scanner.is_running, "lastReport": report.to_dict() if report else None}


@router.post("/scan/cancel")
def api_scan_cancel(request: Request):
    scanner = _scanner(request)
    running = scanner.is_running
    if running:
        scanner.cancel()
    return {"cancelRequested": running}


# ---------------------------------------------------------------------------
# POST /api/remediate/{doc_id}: delete doc or revoke public access
# ---------------------------------------------------------------------------
@router.post("/remediate/{doc_id}")
def api_remediate(
    request: Request,
    doc_id: str,
    action: str = Query("delete"),
    rescan: bool = Query(False),
):
    try:
        result = _remediation(request).remediate(doc_id, action)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if rescan and result.success:
        _run_background_scan(_scanner(request), "post-remediation")
    return result.to_dict()


# ---------------------------------------------------------------------------
# GET /api/documents: workspace documents
# ---------------------------------------------------------------------------
@router.get("/documents")
def api_list_documents(request: Request):
    res = _scanner(request).client.list_documents()
    if not res.ok:
        raise HTTPException(status_code=502, detail="Failed to fetch documents")
    return [
        {"id": d.id, "name": d.name, "createdAt": d.created_at, "updatedAt": d.updated_at}
        for d in res.value
    ]


@router.get("/documents/{doc_id}")
def api_get_document(request: Request, doc_id: str):
    res = _scanner(request).client.get_document(doc_id)
    if not res.ok:
        if res.status_code == 404:
            raise HTTPException(status_code=404, detail="Document not found")
        raise HTTPException(status_code=502, detail="Failed to fetch document")
    d = res.value
    return {"id": d.id, "name": d.name, "createdAt": d.created_at, "updatedAt": d.updated_at}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------
def create_app(
    scanner: Optional[Scanner] = None,
    remediation: Optional[RemediationService] = None,
    scan_on_startup: bool = SCAN_ON_STARTUP,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
        if getattr(app.state, "scanner", None) is None:
            # Exits the process when no API token is configured.
            client = CodaClient()
            app.state.scanner = Scanner(client)
        if getattr(app.state, "remediation", None) is None:
            app.state.remediation = RemediationService(app.state.scanner.client)
        if scan_on_startup:
            logger.info("Running initial scan...")
            _run_background_scan(app.state.scanner, "initial")
        yield
        app.state.scanner.cancel()

    app = FastAPI(title="SecureCoda API", lifespan=lifespan)
    app.state.scanner = scanner
    app.state.remediation = remediation
    if scanner is not None and remediation is None:
        app.state.remediation = RemediationService(scanner.client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
