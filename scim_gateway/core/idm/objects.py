"""Query, read and write access to IDM managed objects (users, roles)."""
from __future__ import annotations
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .client import IdmClient
from .exceptions import IdmAPIError, ManagedObjectNotFoundError

logger = logging.getLogger(__name__)

MATCH_ALL = "true"


@dataclass
class QueryResult:
    """One page of managed objects plus the exact total."""
    total: int
    results: List[Dict[str, Any]] = field(default_factory=list)


def _extract_total(payload: Dict[str, Any], fallback: int) -> int:
    # IDM reports -1 when it could not compute the total
    for key in ("totalPagedResults", "resultCount"):
        value = payload.get(key)
        if isinstance(value, int) and value >= 0:
            return value
    return fallback


def _revision_headers(revision: Optional[str]) -> Optional[Dict[str, str]]:
    return {"If-Match": revision} if revision else None


@contextmanager
def _not_found_as_missing(object_name: str, object_id: str):
    try:
        yield
    except IdmAPIError as exc:
        if exc.status_code == 404:
            raise ManagedObjectNotFoundError(object_name, object_id) from exc
        raise


class ManagedObjectService:
    """Thin wrapper over ``/openidm/managed/<object>``.

    Every call takes the caller's bearer token explicitly.
    """

    def __init__(self, client: IdmClient):
        self.client = client

    def _path(self, object_name: str) -> str:
        return f"/openidm/managed/{object_name}"

    def count(self, object_name: str, query_filter: str, token: Optional[str] = None) -> int:
        params = {
            "_queryFilter": query_filter or MATCH_ALL,
            "_countOnly": "true",
            "_totalPagedResultsPolicy": "EXACT",
        }
        resp = self.client.get(self._path(object_name), params=params, token=token)
        return _extract_total(resp.json(), 0)

    def query(
        self,
        object_name: str,
        query_filter: str,
        start_index: int = 1,
        count: int = 100,
        fields: Optional[str] = None,
        token: Optional[str] = None,
    ) -> QueryResult:
        """Run a paged ``_queryFilter`` query.

        Args:
            object_name: Managed object name (e.g. "alpha_user")
            query_filter: Backend filter, "true" for match-all
            start_index: 1-based index of the first result
            count: Page size; 0 returns only the total
            fields: Optional ``_fields`` projection
            token: Caller bearer token

        Returns:
            QueryResult with the exact total and the page of raw objects
        """
        total = self.count(object_name, query_filter, token=token)
        if count == 0:
            return QueryResult(total=total)

        params = {
            "_queryFilter": query_filter or MATCH_ALL,
            "_pagedResultsOffset": max(start_index, 1) - 1,
            "_pageSize": count,
            "_totalPagedResultsPolicy": "EXACT",
        }
        if fields:
            params["_fields"] = fields

        logger.debug("Querying managed/%s: filter=%s offset=%s size=%s",
                     object_name, params["_queryFilter"], params["_pagedResultsOffset"], count)
        resp = self.client.get(self._path(object_name), params=params, token=token)
        payload = resp.json()
        results = payload.get("result") or []
        return QueryResult(total=total or len(results), results=results)

    def get(self, object_name: str, object_id: str, fields: Optional[str] = None,
            token: Optional[str] = None) -> Dict[str, Any]:
        """Fetch one managed object by id.

        Raises:
            ManagedObjectNotFoundError: If the backend returns 404
            IdmAPIError: On other failures
        """
        params = {"_fields": fields} if fields else None
        with _not_found_as_missing(object_name, object_id):
            resp = self.client.get(f"{self._path(object_name)}/{object_id}", params=params, token=token)
        return resp.json()

    # ─────────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────────

    def create(self, object_name: str, body: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
        """Create a managed object with a server-assigned id (``_action=create``)."""
        resp = self.client.post(self._path(object_name), json=body, params={"_action": "create"}, token=token)
        created = resp.json()
        logger.info("Created managed/%s/%s", object_name, created.get("_id"))
        return created

    def replace(self, object_name: str, object_id: str, body: Dict[str, Any],
                revision: Optional[str] = None, token: Optional[str] = None) -> Dict[str, Any]:
        """Replace a managed object.

        Without a revision ``If-Match: *`` is sent so that IDM never creates
        a missing object on PUT.

        Raises:
            ManagedObjectNotFoundError: If the backend returns 404
        """
        headers = {"If-Match": revision or "*"}
        with _not_found_as_missing(object_name, object_id):
            resp = self.client.put(f"{self._path(object_name)}/{object_id}", json=body, headers=headers, token=token)
        return resp.json()

    def patch(self, object_name: str, object_id: str, operations: List[Dict[str, Any]],
              revision: Optional[str] = None, token: Optional[str] = None) -> Dict[str, Any]:
        """Apply IDM patch operations (``operation``/``field``/``value``)."""
        with _not_found_as_missing(object_name, object_id):
            resp = self.client.patch(f"{self._path(object_name)}/{object_id}", json=operations,
                                     headers=_revision_headers(revision), token=token)
        return resp.json()

    def delete(self, object_name: str, object_id: str, revision: Optional[str] = None,
               token: Optional[str] = None) -> None:
        with _not_found_as_missing(object_name, object_id):
            self.client.delete(f"{self._path(object_name)}/{object_id}",
                               headers=_revision_headers(revision), token=token)
        logger.info("Deleted managed/%s/%s", object_name, object_id)
