"""Detection rules: classify documents, rows, page HTML and page content into alerts.

Every rule is a pure function of one entity. ``RuleEngine`` groups them by
entity kind so the scanner never needs to know which rules exist.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from . import config
from .models import Alert, ContentItem, Document, Page, Permission, Row

# ---------------------------------------------------------------------------
# Alert types
# ---------------------------------------------------------------------------
UNUSED_DOCUMENT = "UNUSED_DOCUMENT"
PUBLIC_DOCUMENT = "PUBLIC_DOCUMENT"
EXTERNAL_SHARE = "EXTERNAL_SHARE"
SENSITIVE_DATA_IN_ROW = "SENSITIVE_DATA_IN_ROW"
SENSITIVE_TEXT_ON_PAGE = "SENSITIVE_TEXT_ON_PAGE"
SENSITIVE_PAGE_CONTENT = "SENSITIVE_PAGE_CONTENT"
FETCH_FAILED = "FETCH_FAILED"

ANONYMOUS_VIEWER = "anonymousViewer"

ROW_PATTERN = re.compile(r"(password|secret|card|ssn|token|key|credential)", re.IGNORECASE)
HTML_PATTERN = re.compile(r"(password|token|secret|apikey|credential)", re.IGNORECASE)
CONTENT_PATTERN = re.compile(r"(password|secret|token|apikey|card|ssn)", re.IGNORECASE)

_SECONDS_PER_DAY = 24 * 60 * 60


# ---------------------------------------------------------------------------
# Document and permission rules
# ---------------------------------------------------------------------------

def document_age_days(doc: Document, now: datetime) -> Optional[float]:
    updated = doc.updated
    if updated is None:
        return None
    return (now - updated).total_seconds() / _SECONDS_PER_DAY


def detect_unused_document(
    doc: Document,
    now: Optional[datetime] = None,
    threshold_days: Optional[float] = None,
    severity: Optional[int] = None,
) -> list[Alert]:
    now = now or datetime.now(timezone.utc)
    threshold = config.UNUSED_DAYS_THRESHOLD if threshold_days is None else threshold_days
    age = document_age_days(doc, now)
    if age is None or age <= threshold:
        return []
    return [Alert(
        type=UNUSED_DOCUMENT,
        severity=config.UNUSED_DOCUMENT_SEVERITY if severity is None else severity,
        message=f"{doc.name} unused for {age:.3f} days",
        doc_id=doc.id,
        metadata={"updatedAt": doc.updated_at, "createdAt": doc.created_at, "ageDays": round(age, 3)},
    )]


def detect_public_document(doc: Document, permissions: Iterable[Permission]) -> list[Alert]:
    # One alert per document, however many anonymous grants it has.
    public = next((p for p in permissions if p.principal.type == ANONYMOUS_VIEWER), None)
    if public is None:
        return []
    return [Alert(
        type=PUBLIC_DOCUMENT,
        severity=config.PUBLIC_DOCUMENT_SEVERITY,
        message=f"{doc.name} is shared publicly",
        doc_id=doc.id,
        metadata={"permissionId": public.id, "access": public.access},
    )]


def email_domain(email: str) -> str:
    return email.rpartition("@")[2].strip().lower()


def detect_external_share(
    doc: Document,
    permissions: Iterable[Permission],
    allowed_domains: Optional[Iterable[str]] = None,
) -> list[Alert]:
    allowed = {d.lower() for d in (config.ALLOWED_DOMAINS if allowed_domains is None else allowed_domains)}
    # First offending grant only; the alert is per document, not per grantee.
    external = next(
        (p for p in permissions if p.principal.email and email_domain(p.principal.email) not in allowed),
        None,
    )
    if external is None:
        return []
    return [Alert(
        type=EXTERNAL_SHARE,
        severity=config.EXTERNAL_SHARE_SEVERITY,
        message=f"{doc.name} shared with outside domain",
        doc_id=doc.id,
        metadata={"permissionId": external.id, "email": external.principal.email},
    )]


def analyze(
    docs: Iterable[Document],
    permissions_map: dict,
    now: Optional[datetime] = None,
    threshold_days: Optional[float] = None,
    allowed_domains: Optional[Iterable[str]] = None,
) -> list[Alert]:
    """Run the document-level rules over every document."""
    now = now or datetime.now(timezone.utc)
    alerts: list[Alert] = []
    for doc in docs:
        permissions = permissions_map.get(doc.id) or []
        alerts.extend(detect_unused_document(doc, now, threshold_days))
        alerts.extend(detect_public_document(doc, permissions))
        alerts.extend(detect_external_share(doc, permissions, allowed_domains))
    return alerts


# ---------------------------------------------------------------------------
# Content rules
# ---------------------------------------------------------------------------

def serialize_values(values) -> str:
    return json.dumps(values, default=str, ensure_ascii=False)


def detect_sensitive_rows(
    rows: Iterable[Row],
    doc_id: Optional[str] = None,
    table_id: Optional[str] = None,
) -> list[Alert]:
    alerts = []
    for row in rows:
        if ROW_PATTERN.search(serialize_values(row.values)):
            alerts.append(Alert(
                type=SENSITIVE_DATA_IN_ROW,
                severity=config.SENSITIVE_CONTENT_SEVERITY,
                message="Sensitive content found in table row",
                doc_id=doc_id,
                table_id=table_id,
                row_id=row.id,
            ))
    return alerts


def detect_sensitive_html(html: str, doc_id: Optional[str] = None, page_id: Optional[str] = None) -> list[Alert]:
    if not html or not HTML_PATTERN.search(html):
        return []
    return [Alert(
        type=SENSITIVE_TEXT_ON_PAGE,
        severity=config.SENSITIVE_CONTENT_SEVERITY,
        message="Sensitive text found inside page content",
        doc_id=doc_id,
        page_id=page_id,
    )]


def detect_sensitive_page_content(
    content_items: Iterable[ContentItem],
    doc_id: Optional[str],
    page_id: Optional[str],
    page_name: str,
) -> list[Alert]:
    alerts = []
    for item in content_items:
        if item.content and CONTENT_PATTERN.search(item.content):
            alerts.append(Alert(
                type=SENSITIVE_PAGE_CONTENT,
                severity=config.SENSITIVE_CONTENT_SEVERITY,
                message=f"Sensitive content found on page '{page_name}'.",
                doc_id=doc_id,
                page_id=page_id,
                metadata={"itemId": item.id} if item.id else {},
            ))
    return alerts


def fetch_failed_alert(resource: str, error: str, doc_id: Optional[str] = None, **ids) -> Alert:
    """Diagnostic alert: a resource could not be loaded, so it was not scanned."""
    return Alert(
        type=FETCH_FAILED,
        severity=config.FETCH_FAILED_SEVERITY,
        message=f"Could not load {resource}; it was not scanned",
        doc_id=doc_id,
        table_id=ids.get("table_id"),
        page_id=ids.get("page_id"),
        metadata={"resource": resource, "error": error},
    )


# ---------------------------------------------------------------------------
# Rule registry
# ---------------------------------------------------------------------------

@dataclass
class DocumentSubject:
    document: Document
    permissions: list
    now: datetime


@dataclass
class RowSubject:
    row: Row
    doc_id: Optional[str] = None
    table_id: Optional[str] = None


@dataclass
class HtmlSubject:
    html: str
    doc_id: Optional[str] = None
    page_id: Optional[str] = None


@dataclass
class ContentSubject:
    item: ContentItem
    doc_id: Optional[str] = None
    page: Optional[Page] = None


KINDS = ("document", "row", "html", "content")


@dataclass
class DetectionRule:
    name: str
    kind: str               # one of KINDS
    evaluate: Callable      # subject -> list[Alert]

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown rule kind {self.kind!r}; expected one of {KINDS}")


@dataclass
class RuleEngine:
    """Ordered set of detection rules, evaluated per entity kind."""
    rules: list[DetectionRule] = field(default_factory=list)

    @classmethod
    def default(
        cls,
        threshold_days: Optional[float] = None,
        allowed_domains: Optional[Iterable[str]] = None,
    ) -> "RuleEngine":
        domains = None if allowed_domains is None else tuple(allowed_domains)
        return cls(rules=[
            DetectionRule(UNUSED_DOCUMENT, "document",
                          lambda s: detect_unused_document(s.document, s.now, threshold_days)),
            DetectionRule(PUBLIC_DOCUMENT, "document",
                          lambda s: detect_public_document(s.document, s.permissions)),
            DetectionRule(EXTERNAL_SHARE, "document",
                          lambda s: detect_external_share(s.document, s.permissions, domains)),
            DetectionRule(SENSITIVE_DATA_IN_ROW, "row",
                          lambda s: detect_sensitive_rows([s.row], s.doc_id, s.table_id)),
            DetectionRule(SENSITIVE_TEXT_ON_PAGE, "html",
                          lambda s: detect_sensitive_html(s.html, s.doc_id, s.page_id)),
            DetectionRule(SENSITIVE_PAGE_CONTENT, "content",
                          lambda s: detect_sensitive_page_content(
                              [s.item], s.doc_id, s.page.id if s.page else None,
                              s.page.name if s.page else "")),
        ])

    def register(self, rule: DetectionRule) -> None:
        """Add a rule, replacing any existing rule with the same name in place."""
        for i, existing in enumerate(self.rules):
            if existing.name == rule.name:
                self.rules[i] = rule
                return
        self.rules.append(rule)

    def unregister(self, name: str) -> None:
        self.rules = [r for r in self.rules if r.name != name]

    def rules_for(self, kind: str) -> list[DetectionRule]:
        return [r for r in self.rules if r.kind == kind]

    def evaluate(self, kind: str, subject) -> list[Alert]:
        alerts: list[Alert] = []
        for rule in self.rules_for(kind):
            alerts.extend(rule.evaluate(subject))
        return alerts

    # Convenience wrappers used by the scanner ---------------------------

    def evaluate_documents(self, docs: Iterable[Document], permissions_map: dict,
                           now: Optional[datetime] = None) -> list[Alert]:
        now = now or datetime.now(timezone.utc)
        alerts: list[Alert] = []
        for doc in docs:
            subject = DocumentSubject(doc, permissions_map.get(doc.id) or [], now)
            alerts.extend(self.evaluate("document", subject))
        return alerts

    def evaluate_rows(self, rows: Iterable[Row], doc_id=None, table_id=None) -> list[Alert]:
        alerts: list[Alert] = []
        for row in rows:
            alerts.extend(self.evaluate("row", RowSubject(row, doc_id, table_id)))
        return alerts

    def evaluate_html(self, html: str, doc_id=None, page_id=None) -> list[Alert]:
        return self.evaluate("html", HtmlSubject(html or "", doc_id, page_id))

    def evaluate_content(self, items: Iterable[ContentItem], doc_id=None, page: Optional[Page] = None) -> list[Alert]:
        alerts: list[Alert] = []
        for item in items:
            alerts.extend(self.evaluate("content", ContentSubject(item, doc_id, page)))
        return alerts
