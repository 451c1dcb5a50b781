"""Data classes for the scan pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a Coda ISO-8601 timestamp ("2024-01-01T00:00:00.000Z") to an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Workspace resources (read-only projections, fetched fresh each scan)
# ---------------------------------------------------------------------------

@dataclass
class Document:
    id: str
    name: str = ""
    created_at: str = ""   # raw ISO strings as returned by the API
    updated_at: str = ""

    @property
    def updated(self) -> Optional[datetime]:
        return parse_timestamp(self.updated_at)

    @classmethod
    def from_api(cls, item: dict) -> "Document":
        return cls(
            id=item["id"],
            name=item.get("name") or "",
            created_at=item.get("createdAt") or "",
            updated_at=item.get("updatedAt") or "",
        )


@dataclass
class Principal:
    type: str
    email: Optional[str] = None


@dataclass
class Permission:
    id: str
    principal: Principal
    access: str = ""       # "readOnly", "write", "comment", ...

    @classmethod
    def from_api(cls, item: dict) -> "Permission":
        principal = item.get("principal") or {}
        return cls(
            id=item.get("id", ""),
            principal=Principal(type=principal.get("type", ""), email=principal.get("email")),
            access=item.get("access") or "",
        )


@dataclass
class Table:
    id: str
    name: str = ""

    @classmethod
    def from_api(cls, item: dict) -> "Table":
        return cls(id=item["id"], name=item.get("name") or "")


@dataclass
class Row:
    id: str
    values: dict = field(default_factory=dict)
    name: str = ""

    @classmethod
    def from_api(cls, item: dict) -> "Row":
        return cls(id=item["id"], values=item.get("values") or {}, name=item.get("name") or "")


@dataclass
class Page:
    id: str
    name: str = ""

    @classmethod
    def from_api(cls, item: dict) -> "Page":
        return cls(id=item["id"], name=item.get("name") or "")


@dataclass
class ContentItem:
    id: str = ""
    content: str = ""      # itemContent.content

    @classmethod
    def from_api(cls, item: dict) -> "ContentItem":
        item_content = item.get("itemContent") or {}
        return cls(id=item.get("id", ""), content=item_content.get("content") or "")


@dataclass
class ContentPage:
    items: list[ContentItem] = field(default_factory=list)
    next_cursor: Optional[str] = None


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Alert:
    type: str
    severity: int          # 1 (informational) .. 10 (critical)
    message: str
    doc_id: Optional[str] = None
    row_id: Optional[str] = None
    table_id: Optional[str] = None
    page_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.type:
            raise ValueError("Alert type must be non-empty")
        if not isinstance(self.severity, int) or not 1 <= self.severity <= 10:
            raise ValueError(f"Alert severity must be an integer in [1, 10], got {self.severity!r}")

    @property
    def subject_id(self) -> Optional[str]:
        return self.row_id or self.page_id or self.doc_id

    def to_dict(self) -> dict:
        out = {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "subjectId": self.subject_id,
        }
        for key, value in (
            ("docId", self.doc_id), ("tableId", self.table_id),
            ("rowId", self.row_id), ("pageId", self.page_id),
        ):
            if value is not None:
                out[key] = value
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out


# ---------------------------------------------------------------------------
# Call results
# ---------------------------------------------------------------------------

@dataclass
class FetchResult:
    """Outcome of one client read: either a value or the reason it failed."""
    ok: bool
    value: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None   # HTTP status of the failing call, when there was one
    has_more: bool = False              # paged reads: the API reported a following page

    @classmethod
    def success(cls, value, has_more: bool = False) -> "FetchResult":
        return cls(ok=True, value=value, has_more=has_more)

    @classmethod
    def failure(cls, error: str, empty=None, status_code: Optional[int] = None) -> "FetchResult":
        return cls(ok=False, value=empty, error=error, status_code=status_code)


@dataclass
class RemediationResult:
    success: bool
    message: str

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message}
