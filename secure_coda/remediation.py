"""Remediation actions: revoke public access, delete a document."""

import logging

from .coda_client import CodaAPIError
from .detection import ANONYMOUS_VIEWER
from .models import RemediationResult

logger = logging.getLogger(__name__)

READ_ONLY = "readOnly"

ACTIONS = ("delete", "remove_public_access")


class RemediationService:
    """Forwards a corrective action for one document to the workspace API.

    Never starts a scan. Failures come back as ``RemediationResult(False, ...)``
    and are logged; a document that is already gone reports "not found".
    """

    def __init__(self, client):
        self.client = client

    def remove_public_access(self, doc_id: str) -> RemediationResult:
        res = self.client.list_permissions(doc_id)
        if not res.ok:
            logger.error("Could not list permissions for %s: %s", doc_id, res.error)
            if res.status_code == 404:
                return RemediationResult(False, "Document not found")
            return RemediationResult(False, f"Could not load permissions: {res.error}")

        read_only = [p for p in res.value if p.access == READ_ONLY]
        # Prefer the anonymous grant; that is the one that makes the doc public.
        target = next((p for p in read_only if p.principal.type == ANONYMOUS_VIEWER), None)
        if target is None and read_only:
            target = read_only[0]
        if target is None:
            return RemediationResult(False, "No public access found on this document")

        try:
            self.client.delete_permission(doc_id, target.id)
        except CodaAPIError as e:
            logger.error("Error removing public access for %s: %s", doc_id, e)
            if e.not_found:
                return RemediationResult(False, "No public access found on this document")
            return RemediationResult(False, f"Failed to remove public access: {e}")

        logger.info("Removed permission %s from %s", target.id, doc_id)
        return RemediationResult(True, "Public access removed successfully")

    def delete_document(self, doc_id: str) -> RemediationResult:
        try:
            self.client.delete_document(doc_id)
        except CodaAPIError as e:
            logger.error("Error deleting document %s: %s", doc_id, e)
            if e.not_found:
                return RemediationResult(False, "Document not found")
            return RemediationResult(False, f"Failed to delete document: {e}")

        logger.info("Deleted document %s", doc_id)
        return RemediationResult(True, "Document deleted")

    def remediate(self, doc_id: str, action: str = "delete") -> RemediationResult:
        if not doc_id:
            return RemediationResult(False, "Document id is required")
        if action == "delete":
            return self.delete_document(doc_id)
        if action == "remove_public_access":
            return self.remove_public_access(doc_id)
        raise ValueError(f"Unknown remediation action {action!r}; expected one of {ACTIONS}")
