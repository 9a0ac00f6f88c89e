"""
searchwire CLI — Command-Line Interface
=======================================

Command-line interface for searchwire operations.

Usage:
    python -m searchwire cluster health
    python -m searchwire cluster indices
    python -m searchwire create myindex --shards 5
    python -m searchwire delete myindex -f
    python -m searchwire request GET /_cat/aliases --param format=json
    python -m searchwire --timing request POST /books/_search --data '{"query": {"match_all": {}}}'

The cluster URL comes from --url, then SEARCHWIRE_URL, then
http://localhost:9200. SEARCHWIRE_USERNAME and SEARCHWIRE_PASSWORD are
read the same way.
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from .cluster import Cluster
from .errors import EncodeError, SearchwireError
from .telemetry import TelemetryEmitter

ENV_PREFIX = "SEARCHWIRE_"
DEFAULT_URL = "http://localhost:9200"


def open_cluster(args) -> Cluster:
    """Build and start a cluster from the global options."""
    config = {}
    for key in ("url", "username", "password", "pool_size"):
        value = getattr(args, key, None)
        if value is not None:
            config[key] = value
    if "url" not in config and not os.environ.get(f"{ENV_PREFIX}URL"):
        config["url"] = DEFAULT_URL

    emitter = TelemetryEmitter()
    cluster = Cluster(config, name="cli", env_prefix=ENV_PREFIX, emitter=emitter)
    cluster.start()

    if args.timing:
        emitter.attach("cli-timing", cluster.config.telemetry_prefix + ("request",), print_timing)
    return cluster


def print_timing(event) -> None:
    """Telemetry handler printing the timings of one request."""
    m = event.measurements
    print(
        f"{event.metadata['method']} {event.metadata['path']}: "
        f"total {m['total_time'] * 1000:.1f}ms "
        f"(response {m['response_time'] * 1000:.1f}ms, decode {m['decode_time'] * 1000:.1f}ms)",
        file=sys.stderr
    )


def cmd_cluster_health(cluster, args):
    """Show cluster health."""
    from . import indexes

    health = indexes.health(cluster)
    print(f"\nCluster: {health['cluster_name']}")
    print(f"Status: {health['status']}")
    print(f"Nodes: {health['number_of_nodes']}")
    print(f"Data nodes: {health['number_of_data_nodes']}")
    print(f"Active shards: {health['active_shards']}")
    print(f"Relocating shards: {health['relocating_shards']}")
    print(f"Unassigned shards: {health['unassigned_shards']}")


def cmd_cluster_indices(cluster, args):
    """List all indices."""
    from . import indexes

    print(f"\n{'Index':<30} {'Health':<8} {'Docs':>12} {'Size':>10}")
    print("-" * 65)

    for idx in indexes.cat_indexes(cluster):
        print(
            f"{idx['name']:<30} "
            f"{idx['health']:<8} "
            f"{idx['docs_count']:>12,} "
            f"{idx['size']:>10}"
        )


def cmd_create(cluster, args):
    """Create a new index."""
    from . import indexes

    indexes.create(
        cluster,
        args.index,
        settings={"number_of_shards": args.shards, "number_of_replicas": args.replicas}
    )

    print(f"Created index: {args.index}")
    print(f"  Shards: {args.shards}")
    print(f"  Replicas: {args.replicas}")


def cmd_delete(cluster, args):
    """Delete an index."""
    from . import indexes

    if not args.force:
        confirm = input(f"Delete index '{args.index}'? [y/N] ")
        if confirm.lower() != 'y':
            print("Aborted.")
            return

    indexes.delete(cluster, args.index)
    print(f"Deleted index: {args.index}")


def cmd_request(cluster, args):
    """Send a raw request and print the decoded body."""
    params = [tuple(param.split("=", 1)) for param in args.param]
    try:
        body = json.loads(args.data) if args.data else None
    except ValueError as exc:
        raise EncodeError(f"invalid --data JSON: {exc}") from exc

    response = cluster.request(args.method.upper(), args.path, body, params)

    if isinstance(response.body, (dict, list)):
        print(json.dumps(response.body, indent=2))
    elif response.body is not None:
        print(response.body)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="searchwire",
        description="searchwire — Instrumented HTTP Client for Search Clusters"
    )

    # Global options
    parser.add_argument("--url", help=f"Cluster URL (default: ${ENV_PREFIX}URL or {DEFAULT_URL})")
    parser.add_argument("--username", help="Basic auth username")
    parser.add_argument("--password", help="Basic auth password")
    parser.add_argument("--pool-size", dest="pool_size", type=int, help="Connection pool size")
    parser.add_argument("--timing", action="store_true", help="Print request timings to stderr")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # cluster command
    cluster_parser = subparsers.add_parser("cluster", help="Cluster operations")
    cluster_sub = cluster_parser.add_subparsers(dest="cluster_cmd")

    cluster_sub.add_parser("health", help="Show cluster health")
    cluster_sub.add_parser("indices", help="List all indices")

    # create command
    create_parser = subparsers.add_parser("create", help="Create an index")
    create_parser.add_argument("index", help="Index name")
    create_parser.add_argument("--shards", type=int, default=1, help="Primary shards")
    create_parser.add_argument("--replicas", type=int, default=1, help="Replica shards")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete an index")
    delete_parser.add_argument("index", help="Index name")
    delete_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    # request command
    request_parser = subparsers.add_parser("request", help="Send a raw request")
    request_parser.add_argument("method", help="GET, POST, PUT or DELETE")
    request_parser.add_argument("path", help="Request path")
    request_parser.add_argument("--data", help="JSON request body")
    request_parser.add_argument(
        "--param", action="append", default=[], help="Query parameter key=value (repeatable)"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    commands = {
        "create": cmd_create,
        "delete": cmd_delete,
        "request": cmd_request,
    }
    if args.command == "cluster":
        commands["cluster"] = {
            "health": cmd_cluster_health,
            "indices": cmd_cluster_indices,
        }.get(args.cluster_cmd)
        if commands["cluster"] is None:
            cluster_parser.print_help()
            return 1

    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        with open_cluster(args) as cluster:
            command(cluster, args)
    except SearchwireError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
