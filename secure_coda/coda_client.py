"""Coda REST API client: paginated reads, permission and document writes."""

import logging
import threading
import time
from typing import Optional

import requests

from .auth import get_api_token
from .config import (
    CODA_API_BASE, FETCH_RETRIES, REQUEST_TIMEOUT_SECONDS, RETRY_BACKOFF_SECONDS,
    ROW_PAGE_LIMIT,
)
from .models import (
    ContentItem, ContentPage, Document, FetchResult, Page, Permission, Row, Table,
)

logger = logging.getLogger(__name__)

_RETRY_STATUS = {429, 500, 502, 503, 504}


class CodaAPIError(Exception):
    """A Coda API call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


def _error_detail(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:200]
    if isinstance(body, dict):
        return body.get("message") or body.get("statusMessage") or str(body)[:200]
    return str(body)[:200]


class CodaClient:
    """Thin wrapper over the Coda API.

    Reads never raise: each returns a FetchResult so callers can tell an
    empty collection apart from one that failed to load. Writes raise
    CodaAPIError.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = CODA_API_BASE,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        retries: int = FETCH_RETRIES,
        backoff: float = RETRY_BACKOFF_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff = backoff
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token or get_api_token()}",
            "Content-Type": "application/json",
        })
        # (doc_id, table_id, limit) -> pageTokens for pages 2, 3, ...
        self._row_tokens: dict[tuple, list[str]] = {}
        self._row_tokens_lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    def _request(self, method: str, path: str, params: Optional[dict] = None, retry: bool = True):
        url = f"{self.base_url}{path}"
        attempts = 1 + (self.retries if retry else 0)
        last_error = None
        for attempt in range(attempts):
            try:
                resp = self.session.request(method, url, params=params, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = CodaAPIError(f"{method} {path}: {e}")
            except requests.RequestException as e:
                raise CodaAPIError(f"{method} {path}: {e}") from e
            else:
                if resp.status_code < 400:
                    return resp
                last_error = CodaAPIError(
                    f"{method} {path} -> HTTP {resp.status_code}: {_error_detail(resp)}",
                    status_code=resp.status_code,
                )
                if resp.status_code not in _RETRY_STATUS:
                    raise last_error
            if attempt + 1 < attempts:
                delay = self.backoff * (2 ** attempt)
                logger.debug("Retrying %s %s in %.2fs (%s)", method, path, delay, last_error)
                time.sleep(delay)
        raise last_error

    def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        return self._request("GET", path, params=params).json()

    def _list_items(self, path: str, params: Optional[dict] = None) -> list[dict]:
        """GET every page of a list endpoint, following nextPageToken."""
        params = dict(params or {})
        items: list[dict] = []
        seen_tokens = set()
        while True:
            data = self._get_json(path, params=params)
            items.extend(data.get("items", []))
            token = data.get("nextPageToken")
            if not token or token in seen_tokens:
                break
            seen_tokens.add(token)
            params["pageToken"] = token
        return items

    @staticmethod
    def _read(description: str, fetch, empty) -> FetchResult:
        try:
            return FetchResult.success(fetch())
        except (CodaAPIError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Error fetching %s: %s", description, e)
            return FetchResult.failure(str(e), empty=empty, status_code=getattr(e, "status_code", None))

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def list_documents(self) -> FetchResult:
        return self._read(
            "documents",
            lambda: [Document.from_api(i) for i in self._list_items("/docs")],
            [],
        )

    def get_document(self, doc_id: str) -> FetchResult:
        return self._read(
            f"document {doc_id}",
            lambda: Document.from_api(self._get_json(f"/docs/{doc_id}")),
            None,
        )

    def list_permissions(self, doc_id: str) -> FetchResult:
        return self._read(
            f"permissions for {doc_id}",
            lambda: [Permission.from_api(i) for i in self._list_items(f"/docs/{doc_id}/acl/permissions")],
            [],
        )

    def list_tables(self, doc_id: str) -> FetchResult:
        return self._read(
            f"tables for {doc_id}",
            lambda: [Table.from_api(i) for i in self._list_items(f"/docs/{doc_id}/tables")],
            [],
        )

    def list_rows(self, doc_id: str, table_id: str, page: int = 1, limit: int = ROW_PAGE_LIMIT) -> FetchResult:
        """Fetch one page of rows. ``page`` is 1-based; pagination is driven only by these arguments.

        ``limit`` is an upper bound: the API may return a shorter page and
        still have more rows, so callers should page on ``has_more``.
        """
        if page < 1 or limit < 1:
            raise ValueError(f"page and limit must be >= 1 (got page={page}, limit={limit})")
        res = self._read(
            f"rows for table {table_id} (page {page})",
            lambda: self._fetch_row_page(doc_id, table_id, page, limit),
            ([], False),
        )
        rows, has_more = res.value
        if not res.ok:
            return FetchResult.failure(res.error, empty=rows, status_code=res.status_code)
        return FetchResult.success(rows, has_more=has_more)

    def _fetch_row_page(self, doc_id: str, table_id: str, page: int, limit: int) -> tuple[list[Row], bool]:
        path = f"/docs/{doc_id}/tables/{table_id}/rows"
        key = (doc_id, table_id, limit)
        base = {"limit": limit, "useColumnNames": "true"}

        with self._row_tokens_lock:
            tokens = list(self._row_tokens.get(key, []))
        if page == 1:
            tokens = []

        # Walk forward from the furthest known token until we reach the requested page.
        while len(tokens) < page - 1:
            params = dict(base)
            if tokens:
                params["pageToken"] = tokens[-1]
            next_token = self._get_json(path, params=params).get("nextPageToken")
            if not next_token:
                return [], False
            tokens.append(next_token)

        params = dict(base)
        if page > 1:
            params["pageToken"] = tokens[page - 2]
        data = self._get_json(path, params=params)
        next_token = data.get("nextPageToken")
        if next_token and len(tokens) == page - 1:
            tokens.append(next_token)

        with self._row_tokens_lock:
            self._row_tokens[key] = tokens
        return [Row.from_api(i) for i in data.get("items", [])], bool(next_token)

    def list_pages(self, doc_id: str) -> FetchResult:
        return self._read(
            f"pages for {doc_id}",
            lambda: [Page.from_api(i) for i in self._list_items(f"/docs/{doc_id}/pages")],
            [],
        )

    def export_page_html(self, doc_id: str, page_id: str) -> FetchResult:
        return self._read(
            f"HTML for page {page_id}",
            lambda: self._request("GET", f"/docs/{doc_id}/pages/{page_id}/export/html").text or "",
            "",
        )

    def get_page_content(self, doc_id: str, page_id: str, cursor: Optional[str] = None) -> FetchResult:
        def fetch():
            data = self._get_json(
                f"/docs/{doc_id}/pages/{page_id}/content",
                params={"pageToken": cursor} if cursor else None,
            )
            return ContentPage(
                items=[ContentItem.from_api(i) for i in data.get("items", [])],
                next_cursor=data.get("nextPageToken") or None,
            )

        return self._read(f"content for page {page_id}", fetch, ContentPage())

    def get_full_page_content(self, doc_id: str, page_id: str) -> FetchResult:
        """Follow the content cursor to the end.

        On failure the result still carries the blocks fetched before the
        failing request.
        """
        items: list[ContentItem] = []
        cursor = None
        seen = set()
        while True:
            res = self.get_page_content(doc_id, page_id, cursor)
            if not res.ok:
                return FetchResult.failure(res.error, empty=items, status_code=res.status_code)
            items.extend(res.value.items)
            cursor = res.value.next_cursor
            if not cursor or cursor in seen:
                break
            seen.add(cursor)
        return FetchResult.success(items)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def delete_permission(self, doc_id: str, permission_id: str) -> None:
        self._request("DELETE", f"/docs/{doc_id}/acl/permissions/{permission_id}", retry=False)

    def delete_document(self, doc_id: str) -> None:
        self._request("DELETE", f"/docs/{doc_id}", retry=False)
