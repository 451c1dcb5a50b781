"""Scan orchestration: walk the workspace, run detection rules, fill the alert store."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .alert_store import AlertStore
from .config import EMIT_FETCH_FAILED_ALERTS, ROW_PAGE_LIMIT, SCAN_CONCURRENCY
from .detection import RuleEngine, fetch_failed_alert
from .models import Alert, Document, FetchResult

logger = logging.getLogger(__name__)

TOTAL_STEPS = 6


class ScanCancelled(Exception):
    pass


@dataclass
class ScanReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    documents: int = 0
    alerts: int = 0
    fetch_failures: int = 0
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    def to_dict(self) -> dict:
        return {
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationSeconds": self.duration_seconds,
            "documents": self.documents,
            "alerts": self.alerts,
            "fetchFailures": self.fetch_failures,
            "cancelled": self.cancelled,
        }


class Scanner:
    """Runs scan cycles against a workspace client.

    One scan at a time: ``run_scan`` waits for a running scan to finish,
    ``trigger_scan`` refuses to start while one is running. Documents in a
    stage are processed by up to ``concurrency`` workers; each document's
    alerts for a stage are appended to the store as one contiguous group, in
    document order.
    """

    def __init__(
        self,
        client,
        store: Optional[AlertStore] = None,
        engine: Optional[RuleEngine] = None,
        concurrency: int = SCAN_CONCURRENCY,
        emit_fetch_failed: bool = EMIT_FETCH_FAILED_ALERTS,
        row_page_limit: int = ROW_PAGE_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self.store = store if store is not None else AlertStore()
        self.engine = engine or RuleEngine.default()
        self.concurrency = max(1, concurrency)
        self.emit_fetch_failed = emit_fetch_failed
        self.row_page_limit = row_page_limit
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.last_report: Optional[ScanReport] = None

        self._scan_lock = threading.Lock()
        self._cancel = threading.Event()
        self._failures = 0
        self._failures_lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._scan_lock.locked()

    def run_scan(self, progress_callback=None) -> ScanReport:
        """Run one full scan cycle, waiting for any scan already in progress."""
        with self._scan_lock:
            return self._run(progress_callback)

    def trigger_scan(self, progress_callback=None) -> bool:
        """Run a scan unless one is already running. Returns False if it was skipped."""
        if not self._scan_lock.acquire(blocking=False):
            logger.info("Scan already in progress; ignoring trigger")
            return False
        try:
            self._run(progress_callback)
        finally:
            self._scan_lock.release()
        return True

    def cancel(self) -> None:
        """Ask the running scan to stop before its next API request."""
        self._cancel.set()

    # -----------------------------------------------------------------------
    # Scan cycle
    # -----------------------------------------------------------------------

    def _run(self, progress_callback) -> ScanReport:
        def progress(step, msg):
            if progress_callback:
                progress_callback(step, TOTAL_STEPS, msg)
            logger.info(msg)

        self._cancel.clear()
        with self._failures_lock:
            self._failures = 0
        report = ScanReport(started_at=self.clock())
        logger.info("Running SecureCoda scan...")
        self.store.clear()

        try:
            # Step 1: documents
            progress(1, "[Step 1/6] Fetching documents...")
            diagnostics: list[Alert] = []
            docs = self._fetch(self.client.list_documents(), "documents", diagnostics)
            self.store.add(diagnostics)
            report.documents = len(docs)
            logger.info("  Documents: %d", len(docs))

            # Step 2: permissions
            progress(2, "[Step 2/6] Fetching permissions...")
            permissions_map = {}
            for doc, (permissions, diagnostics) in zip(docs, self._map(self._fetch_permissions, docs)):
                permissions_map[doc.id] = permissions
                self.store.add(diagnostics)

            # Step 3: document + permission rules
            progress(3, "[Step 3/6] Checking documents and sharing...")
            self.store.add(self.engine.evaluate_documents(docs, permissions_map, now=self.clock()))

            # Step 4: table rows
            progress(4, "[Step 4/6] Scanning table rows...")
            for alerts in self._map(self._scan_rows, docs):
                self.store.add(alerts)

            # Step 5: exported page HTML
            progress(5, "[Step 5/6] Scanning page HTML...")
            for alerts in self._map(self._scan_html, docs):
                self.store.add(alerts)

            # Step 6: structured page content
            progress(6, "[Step 6/6] Scanning page content...")
            for alerts in self._map(self._scan_content, docs):
                self.store.add(alerts)
        except ScanCancelled:
            report.cancelled = True
            logger.warning("Scan cancelled; results are partial")

        report.finished_at = self.clock()
        report.alerts = len(self.store)
        with self._failures_lock:
            report.fetch_failures = self._failures
        self.last_report = report
        logger.info(
            "Scan complete. Total alerts: %d (%d fetch failures, %.1fs)",
            report.alerts, report.fetch_failures, report.duration_seconds,
        )
        return report

    def _map(self, fn, docs: list[Document]):
        """Apply ``fn`` to each document, yielding results in document order."""
        if self.concurrency == 1 or len(docs) <= 1:
            for doc in docs:
                yield fn(doc)
            return
        workers = min(self.concurrency, len(docs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scan") as pool:
            yield from pool.map(fn, docs)

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise ScanCancelled()

    def _fetch(self, result: FetchResult, resource: str, diagnostics: list, **ids):
        """Unwrap a read; a failure counts as empty data plus an optional FETCH_FAILED alert."""
        if result.ok:
            return result.value
        with self._failures_lock:
            self._failures += 1
        if self.emit_fetch_failed:
            diagnostics.append(fetch_failed_alert(resource, result.error or "unknown error", **ids))
        return result.value if result.value is not None else []

    # -----------------------------------------------------------------------
    # Per-document work (runs in worker threads)
    # -----------------------------------------------------------------------

    def _fetch_permissions(self, doc: Document):
        self._check_cancelled()
        diagnostics: list[Alert] = []
        permissions = self._fetch(
            self.client.list_permissions(doc.id), f"permissions for {doc.id}", diagnostics, doc_id=doc.id,
        )
        return permissions, diagnostics

    def _scan_rows(self, doc: Document) -> list[Alert]:
        alerts: list[Alert] = []
        self._check_cancelled()
        tables = self._fetch(self.client.list_tables(doc.id), f"tables for {doc.id}", alerts, doc_id=doc.id)
        for table in tables:
            page = 1
            while True:
                self._check_cancelled()
                res = self.client.list_rows(doc.id, table.id, page=page, limit=self.row_page_limit)
                rows = self._fetch(res, f"rows for table {table.id}", alerts, doc_id=doc.id, table_id=table.id)
                alerts.extend(self.engine.evaluate_rows(rows, doc_id=doc.id, table_id=table.id))
                if not res.has_more:
                    break
                page += 1
        return alerts

    def _scan_html(self, doc: Document) -> list[Alert]:
        alerts: list[Alert] = []
        self._check_cancelled()
        pages = self._fetch(self.client.list_pages(doc.id), f"pages for {doc.id}", alerts, doc_id=doc.id)
        for page in pages:
            self._check_cancelled()
            html = self._fetch(
                self.client.export_page_html(doc.id, page.id),
                f"HTML for page {page.id}", alerts, doc_id=doc.id, page_id=page.id,
            )
            alerts.extend(self.engine.evaluate_html(html or "", doc_id=doc.id, page_id=page.id))
        return alerts

    def _scan_content(self, doc: Document) -> list[Alert]:
        alerts: list[Alert] = []
        self._check_cancelled()
        pages = self._fetch(self.client.list_pages(doc.id), f"pages for {doc.id}", alerts, doc_id=doc.id)
        for page in pages:
            self._check_cancelled()
            items = self._fetch(
                self.client.get_full_page_content(doc.id, page.id),
                f"content for page {page.id}", alerts, doc_id=doc.id, page_id=page.id,
            )
            alerts.extend(self.engine.evaluate_content(items, doc_id=doc.id, page=page))
        return alerts
