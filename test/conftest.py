"""Shared fakes for the Tooling API."""
import itertools

import pytest

from app.services.deployment import DeploymentPoller, MetadataContainerManager
from app.services.metadata_service import MetadataService


class FakeToolingClient:
    """Records every call and answers from canned data.

    ``query_results`` maps a substring of the SOQL (e.g. "FROM ApexClass")
    to the records returned. ``states`` is the sequence of
    ContainerAsyncRequest states returned by successive status reads; the
    last one repeats.
    """

    def __init__(self, query_results=None, states=("Completed",), status_record=None):
        self.query_results = query_results or {}
        self.states = list(states)
        self.status_record = status_record or {}
        self.calls = []
        self.fail_on = {}
        self._ids = itertools.count(1)
        self._status_reads = 0

    def _maybe_fail(self, key):
        exc = self.fail_on.get(key)
        if exc is not None:
            raise exc

    def query(self, soql):
        self.calls.append(("query", soql))
        for needle, records in self.query_results.items():
            if needle in soql:
                return [dict(r) for r in records]
        return []

    def create(self, sobject, fields):
        self.calls.append(("create", sobject, fields))
        self._maybe_fail(("create", sobject))
        return f"{sobject[:3].lower()}{next(self._ids):03d}"

    def update(self, sobject, record_id, fields):
        self.calls.append(("update", sobject, record_id, fields))
        self._maybe_fail(("update", sobject))

    def delete(self, sobject, record_id):
        self.calls.append(("delete", sobject, record_id))
        self._maybe_fail(("delete", sobject))

    def retrieve(self, sobject, record_id):
        self.calls.append(("retrieve", sobject, record_id))
        self._maybe_fail(("retrieve", sobject))
        index = min(self._status_reads, len(self.states) - 1)
        self._status_reads += 1
        record = {"Id": record_id, "State": self.states[index]}
        record.update(self.status_record)
        return record

    # helpers for assertions

    def created(self, sobject=None):
        return [c for c in self.calls if c[0] == "create" and (sobject is None or c[1] == sobject)]

    def deleted(self, sobject=None):
        return [c for c in self.calls if c[0] == "delete" and (sobject is None or c[1] == sobject)]

    def write_sequence(self):
        """Names of mutating calls in order, e.g. ["create:ApexClass", "delete:MetadataContainer"]."""
        return [f"{c[0]}:{c[1]}" for c in self.calls if c[0] in ("create", "update", "delete")]


@pytest.fixture
def fake_client():
    return FakeToolingClient()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_service(sleeps):
    def _make(client, simple_timeout=30, bundle_timeout=60):
        return MetadataService(
            client,
            containers=MetadataContainerManager(client, clock=lambda: 1700000000.5),
            poller=DeploymentPoller(client, interval_seconds=1.0, sleep=sleeps.append),
            simple_timeout=simple_timeout,
            bundle_timeout=bundle_timeout,
        )
    return _make
