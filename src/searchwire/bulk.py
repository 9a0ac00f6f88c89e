"""
searchwire Bulk — Streaming Bulk Actions
========================================

Streams any iterable of bulk actions to the cluster's ``_bulk`` endpoint in
pages, without loading the whole input into memory.

Design principles:
    - Stream processing: actions are pulled from the iterable page by page
    - One request per page: each page is one NDJSON ``POST /_bulk``
    - Error collection: failed items are gathered, not raised mid-stream
    - Progress reporting: one log line per page

Typical usage:
    actions = (Index(doc=row, id=row["id"]) for row in rows)
    stats = bulk.perform(cluster, actions, index="books", page_size=2000)
"""

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import BulkError

logger = logging.getLogger(__name__)

NDJSON_MIMETYPE = "application/x-ndjson"


@dataclass
class Action:
    """Base class for bulk actions."""

    index: Optional[str] = None
    id: Optional[str] = None
    routing: Optional[str] = None

    action = ""

    def metadata(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {}
        if self.index is not None:
            meta["_index"] = self.index
        if self.id is not None:
            meta["_id"] = self.id
        if self.routing is not None:
            meta["routing"] = self.routing
        return meta

    def to_lines(self) -> List[Dict[str, Any]]:
        """The NDJSON lines of this action: the action header, then the source."""
        return [{self.action: self.metadata()}]


@dataclass
class Index(Action):
    """Index a document, replacing any existing one with the same id."""

    doc: Dict[str, Any] = field(default_factory=dict)

    action = "index"

    def to_lines(self):
        return [{self.action: self.metadata()}, self.doc]


@dataclass
class Create(Index):
    """Index a document, failing if one with the same id exists."""

    action = "create"


@dataclass
class Update(Action):
    """Partially update a document."""

    doc: Optional[Dict[str, Any]] = None
    doc_as_upsert: Optional[bool] = None
    upsert: Optional[Dict[str, Any]] = None
    script: Optional[Dict[str, Any]] = None

    action = "update"

    def to_lines(self):
        source: Dict[str, Any] = {}
        for key in ("doc", "doc_as_upsert", "upsert", "script"):
            value = getattr(self, key)
            if value is not None:
                source[key] = value
        return [{self.action: self.metadata()}, source]


@dataclass
class Delete(Action):
    """Delete a document."""

    action = "delete"


def perform(
    cluster,
    actions: Iterable[Action],
    index: Optional[str] = None,
    page_size: int = 5000,
    page_wait: float = 0,
    max_errors: Optional[int] = None,
    refresh: Optional[Any] = None
) -> Dict[str, Any]:
    """
    Stream bulk actions to the cluster.

    Args:
        cluster: A started ``searchwire.Cluster``
        actions: Iterable of Action instances (may be a generator)
        index: Default index for actions without one
        page_size: Actions per bulk request
        page_wait: Seconds to sleep between pages
        max_errors: Stop after more than this many failed items
        refresh: Value of the ``refresh`` query parameter

    Returns:
        Stats dict: total_actions, total_errors, pages, elapsed_seconds,
        rate_per_second

    Raises:
        BulkError: If any item failed (carries the failures and the stats)
        SearchwireError: If a bulk request itself failed
    """
    if page_size < 1:
        raise ValueError("page_size must be at least 1")

    path = f"/{index}/_bulk" if index else "/_bulk"
    params = {"refresh": refresh} if refresh is not None else None
    headers = [("Content-Type", NDJSON_MIMETYPE)]

    errors: List[Dict[str, Any]] = []
    total_actions = 0
    pages = 0
    start_time = time.time()
    iterator = iter(actions)

    while True:
        page = list(itertools.islice(iterator, page_size))
        if not page:
            break

        if pages and page_wait:
            time.sleep(page_wait)

        lines = [line for action in page for line in action.to_lines()]
        response = cluster.post(path, lines, params=params, headers=headers)

        pages += 1
        total_actions += len(page)
        errors.extend(failed_items(response.body))

        elapsed = time.time() - start_time
        logger.info(
            "Bulk page %d: %d actions (%.0f actions/sec), %d error(s) so far",
            pages, total_actions, total_actions / elapsed if elapsed > 0 else 0, len(errors)
        )

        if max_errors is not None and len(errors) > max_errors:
            logger.warning("Bulk stopped after %d error(s) (max_errors=%d)", len(errors), max_errors)
            break

    elapsed = time.time() - start_time
    stats = {
        "total_actions": total_actions,
        "total_errors": len(errors),
        "pages": pages,
        "elapsed_seconds": elapsed,
        "rate_per_second": total_actions / elapsed if elapsed > 0 else 0
    }

    if errors:
        raise BulkError(errors, stats)
    return stats


def failed_items(body: Any) -> List[Dict[str, Any]]:
    """
    Extract failed items from a ``_bulk`` response body.

    Each failure is the item result (``_index``, ``_id``, ``status``,
    ``error``, ...) with an extra ``action`` key.
    """
    if not isinstance(body, dict) or not body.get("errors"):
        return []

    failures = []
    for item in body.get("items", []):
        for action, result in item.items():
            if isinstance(result, dict) and "error" in result:
                failures.append({"action": action, **result})
    return failures
