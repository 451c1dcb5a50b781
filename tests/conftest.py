"""Pytest configuration and shared fixtures for scanner tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from secure_coda.coda_client import CodaAPIError
from secure_coda.models import (
    ContentItem, ContentPage, Document, FetchResult, Page, Permission, Principal, Row, Table,
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def make_doc(doc_id: str, days_ago: float = 0.0, name: Optional[str] = None) -> Document:
    return Document(
        id=doc_id,
        name=name or f"Doc {doc_id}",
        created_at="2023-01-01T00:00:00.000Z",
        updated_at=iso(NOW - timedelta(days=days_ago)),
    )


def perm(perm_id: str, principal_type: str = "user", email: Optional[str] = None,
         access: str = "readOnly") -> Permission:
    return Permission(id=perm_id, principal=Principal(type=principal_type, email=email), access=access)


class FakeCodaClient:
    """In-memory stand-in for CodaClient.

    ``fail`` holds keys like ("permissions", "doc1") or ("html", "doc1", "p1")
    whose reads should come back as failures.
    """

    def __init__(self, docs=None, permissions=None, tables=None, rows=None,
                 pages=None, html=None, content=None, fail=None):
        self.docs = list(docs or [])
        self.permissions = dict(permissions or {})   # doc_id -> [Permission]
        self.tables = dict(tables or {})             # doc_id -> [Table]
        self.rows = dict(rows or {})                 # (doc_id, table_id) -> [Row]
        self.pages = dict(pages or {})               # doc_id -> [Page]
        self.html = dict(html or {})                 # (doc_id, page_id) -> str
        self.content = dict(content or {})           # (doc_id, page_id) -> [[ContentItem], ...]
        self.fail = set(fail or ())
        self.calls: list[tuple] = []
        self.deleted_documents: list[str] = []
        self.deleted_permissions: list[tuple] = []

    def _result(self, key, value, empty, has_more=False):
        self.calls.append(key)
        if key in self.fail:
            return FetchResult.failure(f"simulated failure: {key}", empty=empty, status_code=500)
        return FetchResult.success(value, has_more=has_more)

    def list_documents(self):
        return self._result(("documents",), list(self.docs), [])

    def get_document(self, doc_id):
        doc = next((d for d in self.docs if d.id == doc_id), None)
        self.calls.append(("document", doc_id))
        if doc is None:
            return FetchResult.failure("HTTP 404", status_code=404)
        return FetchResult.success(doc)

    def list_permissions(self, doc_id):
        if not any(d.id == doc_id for d in self.docs):
            self.calls.append(("permissions", doc_id))
            return FetchResult.failure("HTTP 404: doc not found", empty=[], status_code=404)
        return self._result(("permissions", doc_id), list(self.permissions.get(doc_id, [])), [])

    def list_tables(self, doc_id):
        return self._result(("tables", doc_id), list(self.tables.get(doc_id, [])), [])

    def list_rows(self, doc_id, table_id, page=1, limit=50):
        rows = self.rows.get((doc_id, table_id), [])
        start = (page - 1) * limit
        return self._result(
            ("rows", doc_id, table_id, page), rows[start:start + limit], [], has_more=start + limit < len(rows),
        )

    def list_pages(self, doc_id):
        return self._result(("pages", doc_id), list(self.pages.get(doc_id, [])), [])

    def export_page_html(self, doc_id, page_id):
        return self._result(("html", doc_id, page_id), self.html.get((doc_id, page_id), ""), "")

    def get_page_content(self, doc_id, page_id, cursor=None):
        chunks = self.content.get((doc_id, page_id), [[]])
        index = int(cursor) if cursor else 0
        next_cursor = str(index + 1) if index + 1 < len(chunks) else None
        return self._result(
            ("content", doc_id, page_id, index),
            ContentPage(items=list(chunks[index]), next_cursor=next_cursor),
            ContentPage(),
        )

    def get_full_page_content(self, doc_id, page_id):
        chunks = self.content.get((doc_id, page_id), [])
        items = [item for chunk in chunks for item in chunk]
        return self._result(("full_content", doc_id, page_id), items, [])

    def delete_permission(self, doc_id, permission_id):
        perms = self.permissions.get(doc_id, [])
        target = next((p for p in perms if p.id == permission_id), None)
        if target is None:
            raise CodaAPIError("HTTP 404: permission not found", status_code=404)
        perms.remove(target)
        self.deleted_permissions.append((doc_id, permission_id))

    def delete_document(self, doc_id):
        doc = next((d for d in self.docs if d.id == doc_id), None)
        if doc is None:
            raise CodaAPIError("HTTP 404: doc not found", status_code=404)
        self.docs.remove(doc)
        self.deleted_documents.append(doc_id)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def workspace():
    """A small workspace with one finding of every kind on doc1 and a clean doc2."""
    return FakeCodaClient(
        docs=[make_doc("doc1", days_ago=3, name="Old Report"), make_doc("doc2", days_ago=0, name="Fresh")],
        permissions={
            "doc1": [
                perm("p1", "anonymousViewer"),
                perm("p2", "user", "someone@gmail.com", access="write"),
            ],
            "doc2": [perm("p3", "user", "coworker@yourcompany.com", access="write")],
        },
        tables={"doc1": [Table(id="t1", name="Keys")], "doc2": [Table(id="t2", name="People")]},
        rows={
            ("doc1", "t1"): [Row(id="r1", values={"apiKey": "sk_live_123"}), Row(id="r2", values={"name": "John"})],
            ("doc2", "t2"): [Row(id="r3", values={"name": "Jane"})],
        },
        pages={"doc1": [Page(id="pg1", name="Setup")], "doc2": [Page(id="pg2", name="Welcome")]},
        html={
            ("doc1", "pg1"): "<p>The admin password is hunter2</p>",
            ("doc2", "pg2"): "<h1>Welcome</h1>",
        },
        content={
            ("doc1", "pg1"): [[ContentItem(id="c1", content="intro")], [ContentItem(id="c2", content="ssn: 123")]],
            ("doc2", "pg2"): [[ContentItem(id="c3", content="hello")]],
        },
    )
