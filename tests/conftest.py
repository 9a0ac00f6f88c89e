"""Shared fixtures: an in-memory search cluster served through fake transport nodes."""

import json
import threading
import time
from collections import namedtuple
from urllib.parse import parse_qsl, urlsplit

import pytest
from elastic_transport import HttpHeaders

from searchwire import Cluster, TelemetryEmitter

URL = "http://localhost:9200"
EVENT = ("test", "searchwire", "request")

Meta = namedtuple("Meta", "status headers")
Recorded = namedtuple("Recorded", "method target headers body request_timeout node")


def json_response(status, body):
    return status, {"content-type": "application/json; charset=UTF-8"}, json.dumps(body).encode("utf-8")


def error_response(status, error_type, reason):
    error = {"type": error_type, "reason": reason}
    return json_response(status, {"error": {"root_cause": [error], **error}, "status": status})


class DocumentStore:
    """Just enough of the cluster HTTP API for the tests."""

    def __init__(self):
        self.indexes = {}
        self.lock = threading.Lock()
        self.next_id = 0

    def __call__(self, method, target, headers, body):
        parts = urlsplit(target)
        segments = [segment for segment in parts.path.split("/") if segment]
        query = dict(parse_qsl(parts.query))
        with self.lock:
            return self.route(method, segments, query, body)

    def route(self, method, segments, query, body):
        if segments == ["_cluster", "health"]:
            return json_response(200, {
                "cluster_name": "test-cluster",
                "status": "green",
                "number_of_nodes": 1,
                "number_of_data_nodes": 1,
                "active_shards": len(self.indexes),
                "relocating_shards": 0,
                "unassigned_shards": 0,
            })
        if segments == ["_cat", "indices"]:
            return json_response(200, [
                {
                    "index": name,
                    "health": "green",
                    "status": "open",
                    "docs.count": str(len(index["docs"])),
                    "store.size": "1kb",
                    "pri": "1",
                    "rep": "0",
                }
                for name, index in sorted(self.indexes.items())
            ])
        if segments == ["_aliases"] and method == "POST":
            return self.update_aliases(json.loads(body))
        if len(segments) == 2 and segments[0] == "_alias":
            return self.get_alias(segments[1])
        if segments and segments[-1] == "_bulk":
            return self.bulk(segments[0] if len(segments) == 2 else None, body)
        if len(segments) == 1:
            return self.index_api(method, segments[0], body)
        if len(segments) == 2 and segments[1] == "_refresh":
            return self.refresh(segments[0])
        if len(segments) in (2, 3) and segments[1] == "_doc":
            doc_id = segments[2] if len(segments) == 3 else None
            return self.doc_api(method, segments[0], doc_id, body)
        return error_response(400, "illegal_argument_exception", f"no handler for {method} /{'/'.join(segments)}")

    def resolve(self, name):
        if name in self.indexes:
            return name
        for index_name, index in self.indexes.items():
            if name in index["aliases"]:
                return index_name
        return None

    def ensure(self, name):
        concrete = self.resolve(name)
        if concrete is None:
            self.indexes[name] = {"docs": {}, "aliases": set(), "body": {}}
            concrete = name
        return self.indexes[concrete]

    def index_api(self, method, name, body):
        if method == "PUT":
            if name in self.indexes:
                return error_response(400, "resource_already_exists_exception", f"index [{name}] already exists")
            self.indexes[name] = {"docs": {}, "aliases": set(), "body": json.loads(body) if body else {}}
            return json_response(200, {"acknowledged": True, "index": name})
        if name not in self.indexes:
            return error_response(404, "index_not_found_exception", f"no such index [{name}]")
        if method == "DELETE":
            del self.indexes[name]
            return json_response(200, {"acknowledged": True})
        return json_response(200, {name: self.indexes[name]["body"]})

    def refresh(self, name):
        if self.resolve(name) is None:
            return error_response(404, "index_not_found_exception", f"no such index [{name}]")
        return json_response(200, {"_shards": {"total": 1, "successful": 1, "failed": 0}})

    def doc_api(self, method, name, doc_id, body):
        if method in ("PUT", "POST"):
            index = self.ensure(name)
            if doc_id is None:
                self.next_id += 1
                doc_id = f"auto-{self.next_id}"
            created = doc_id not in index["docs"]
            index["docs"][doc_id] = json.loads(body)
            return json_response(201 if created else 200, {
                "_index": self.resolve(name),
                "_id": doc_id,
                "result": "created" if created else "updated",
            })

        concrete = self.resolve(name)
        if concrete is None:
            return error_response(404, "index_not_found_exception", f"no such index [{name}]")
        docs = self.indexes[concrete]["docs"]
        if doc_id not in docs:
            return json_response(404, {"_index": concrete, "_id": doc_id, "found": False})
        if method == "DELETE":
            del docs[doc_id]
            return json_response(200, {"_index": concrete, "_id": doc_id, "result": "deleted"})
        return json_response(200, {"_index": concrete, "_id": doc_id, "found": True, "_source": docs[doc_id]})

    def bulk(self, default_index, body):
        lines = iter(body.decode("utf-8").splitlines())
        items = []
        for line in lines:
            action, meta = next(iter(json.loads(line).items()))
            source = json.loads(next(lines)) if action != "delete" else None
            name = meta.get("_index", default_index)
            index = self.ensure(name)
            doc_id = meta.get("_id")
            if doc_id is None:
                self.next_id += 1
                doc_id = f"auto-{self.next_id}"
            result = {"_index": self.resolve(name), "_id": doc_id}

            if action == "create" and doc_id in index["docs"]:
                result.update(status=409, error={
                    "type": "version_conflict_engine_exception",
                    "reason": f"[{doc_id}]: version conflict, document already exists",
                })
            elif action in ("index", "create"):
                result.update(status=201 if doc_id not in index["docs"] else 200)
                index["docs"][doc_id] = source
            elif action == "update":
                if doc_id in index["docs"]:
                    index["docs"][doc_id] = {**index["docs"][doc_id], **source.get("doc", {})}
                    result.update(status=200)
                elif source.get("doc_as_upsert"):
                    index["docs"][doc_id] = source["doc"]
                    result.update(status=201)
                else:
                    result.update(status=404, error={
                        "type": "document_missing_exception",
                        "reason": f"[{doc_id}]: document missing",
                    })
            elif action == "delete":
                found = index["docs"].pop(doc_id, None) is not None
                result.update(status=200 if found else 404, result="deleted" if found else "not_found")
            items.append({action: result})

        return json_response(200, {
            "took": 1,
            "errors": any("error" in item[action] for item in items for action in item),
            "items": items,
        })

    def get_alias(self, name):
        matches = {
            index_name: {"aliases": {name: {}}}
            for index_name, index in self.indexes.items()
            if name in index["aliases"]
        }
        if not matches:
            return json_response(404, {"error": f"alias [{name}] missing", "status": 404})
        return json_response(200, matches)

    def update_aliases(self, body):
        for action in body["actions"]:
            (kind, target), = action.items()
            if target["index"] not in self.indexes:
                return error_response(404, "index_not_found_exception", f"no such index [{target['index']}]")
            aliases = self.indexes[target["index"]]["aliases"]
            if kind == "add":
                aliases.add(target["alias"])
            else:
                aliases.discard(target["alias"])
        return json_response(200, {"acknowledged": True})


class FakeNode:
    """Stands in for an elastic_transport node; forwards to a FakeServer."""

    def __init__(self, server=None):
        self.server = server
        self.closed = False

    def perform_request(self, method, target, body=None, headers=None, request_timeout=None):
        return self.server.handle(self, method, target, body, headers, request_timeout)

    def close(self):
        self.closed = True


class FakeServer:
    """Records requests, tracks concurrency and injects failures."""

    def __init__(self, handler=None):
        self.handler = handler or DocumentStore()
        self.requests = []
        self.nodes = []
        self.failures = []
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.lock = threading.Lock()

    def node(self, config=None):
        node = FakeNode(self)
        with self.lock:
            self.nodes.append(node)
        return node

    def fail_next(self, exc):
        self.failures.append(exc)

    def handle(self, node, method, target, body, headers, request_timeout):
        with self.lock:
            self.requests.append(Recorded(method, target, headers, body, request_timeout, node))
            failure = self.failures.pop(0) if self.failures else None
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

        try:
            if self.delay:
                time.sleep(self.delay)
            if failure is not None:
                raise failure
            status, headers, raw = self.handler(method, target, headers, body)
            return Meta(status, HttpHeaders(headers)), raw
        finally:
            with self.lock:
                self.in_flight -= 1


def _wait_for(predicate, timeout=2.0, interval=0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def emitter():
    return TelemetryEmitter()


@pytest.fixture
def events(emitter):
    received = []
    emitter.attach("test-events", EVENT, received.append)
    return received


@pytest.fixture
def make_cluster(server, emitter):
    started = []

    def _make(**config):
        cluster = Cluster({"url": URL, **config}, name="test", emitter=emitter, node_factory=server.node)
        started.append(cluster)
        return cluster.start()

    yield _make

    for cluster in started:
        cluster.stop()


@pytest.fixture
def cluster(make_cluster):
    return make_cluster()
