"""
searchwire Indexes — Index Management Helpers
=============================================

Convenience wrappers around the cluster's index APIs, built on the
request functions. Useful for production deployments that rebuild an
index from scratch and swap it in atomically:

    indexes.hotswap(cluster, actions, "books", mapping=BOOKS_MAPPING)

creates ``books-<ms timestamp>``, bulk loads it, refreshes it, points the
``books`` alias at it and deletes older ``books-<n>`` indexes.
"""

import logging
import re
import time
from typing import Any, Dict, Iterable, List, Optional

from . import bulk
from .bulk import Action
from .errors import NotFoundError

logger = logging.getLogger(__name__)


def health(cluster) -> dict:
    """
    Get cluster health status.

    Returns:
        Dict with cluster health information
    """
    return cluster.get("/_cluster/health").body


def create(
    cluster,
    index: str,
    mapping: Optional[dict] = None,
    settings: Optional[dict] = None
) -> dict:
    """
    Create an index.

    Args:
        index: Index name
        mapping: Mappings body (``{"properties": ...}``)
        settings: Index settings (shards, replicas, refresh interval, ...)

    Returns:
        Creation response
    """
    body: Dict[str, Any] = {}
    if settings:
        body["settings"] = settings
    if mapping:
        body["mappings"] = mapping
    return cluster.put(f"/{index}", body or None).body


def delete(cluster, index: str) -> dict:
    """Delete an index."""
    return cluster.delete(f"/{index}").body


def refresh(cluster, index: str) -> dict:
    """Force refresh an index (makes recent changes searchable)."""
    return cluster.post(f"/{index}/_refresh").body


def cat_indexes(cluster) -> List[dict]:
    """
    List all non-system indexes with stats.

    Returns:
        List of index info dicts
    """
    cat = cluster.get("/_cat/indices", params={"format": "json"}).body or []
    return [
        {
            "name": idx["index"],
            "health": idx.get("health", "unknown"),
            "status": idx.get("status", "unknown"),
            "docs_count": int(idx.get("docs.count") or 0),
            "size": idx.get("store.size") or "0b",
            "pri_shards": int(idx.get("pri") or 0),
            "rep_shards": int(idx.get("rep") or 0)
        }
        for idx in cat
        if not idx["index"].startswith(".")  # Skip system indices
    ]


def list_indexes(cluster) -> List[str]:
    """Names of all non-system indexes, sorted."""
    return sorted(idx["name"] for idx in cat_indexes(cluster))


def list_starting_with(cluster, prefix: str) -> List[str]:
    """
    Indexes named ``<prefix>-<integer>``, newest (largest number) first.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    found = []
    for name in list_indexes(cluster):
        match = pattern.match(name)
        if match:
            found.append((int(match.group(1)), name))
    return [name for _, name in sorted(found, reverse=True)]


def get_alias(cluster, name: str) -> List[str]:
    """Names of the indexes carrying alias ``name`` (empty if none)."""
    try:
        body = cluster.get(f"/_alias/{name}").body
    except NotFoundError:
        return []
    return sorted(body or {})


def alias(cluster, index: str, name: str) -> dict:
    """
    Point alias ``name`` at ``index``, atomically removing it from every
    other index.
    """
    actions: List[Dict[str, Any]] = [
        {"remove": {"index": other, "alias": name}}
        for other in get_alias(cluster, name)
        if other != index
    ]
    actions.append({"add": {"index": index, "alias": name}})
    return cluster.post("/_aliases", {"actions": actions}).body


def cleanup(cluster, name: str, preserve: int = 2) -> List[str]:
    """
    Delete old ``<name>-<n>`` indexes.

    The newest ``preserve`` indexes and any index carrying the alias are
    kept.

    Returns:
        Names of the deleted indexes
    """
    aliased = set(get_alias(cluster, name))
    candidates = list_starting_with(cluster, name)

    deleted = []
    for index in candidates[preserve:]:
        if index in aliased:
            continue
        delete(cluster, index)
        deleted.append(index)

    if deleted:
        logger.info("Deleted %d old index(es) of alias %r: %s", len(deleted), name, ", ".join(deleted))
    return deleted


def hotswap(
    cluster,
    actions: Iterable[Action],
    name: str,
    mapping: Optional[dict] = None,
    settings: Optional[dict] = None,
    preserve: int = 2,
    **bulk_opts: Any
) -> dict:
    """
    Build a fresh index and swap alias ``name`` onto it.

    Steps: create ``<name>-<ms timestamp>``, bulk load ``actions`` into it,
    refresh it, move the alias, delete old indexes (``cleanup``). If loading
    fails the new index is deleted and the alias is left untouched.

    Args:
        actions: Bulk actions for the new index
        name: Alias name
        mapping: Mappings for the new index
        settings: Settings for the new index
        preserve: Number of recent indexes ``cleanup`` keeps
        **bulk_opts: Passed to ``bulk.perform`` (page_size, max_errors, ...)

    Returns:
        Dict with the new index name, bulk stats and deleted indexes
    """
    index = f"{name}-{int(time.time() * 1000)}"
    create(cluster, index, mapping=mapping, settings=settings)

    try:
        stats = bulk.perform(cluster, actions, index=index, **bulk_opts)
    except Exception:
        logger.warning("Hotswap of alias %r failed, deleting %s", name, index)
        try:
            delete(cluster, index)
        except Exception:
            logger.exception("Could not delete %s after failed hotswap", index)
        raise

    refresh(cluster, index)
    alias(cluster, index, name)
    deleted = cleanup(cluster, name, preserve=preserve)

    logger.info("Alias %r now points at %s", name, index)
    return {"index": index, "bulk": stats, "deleted": deleted}
