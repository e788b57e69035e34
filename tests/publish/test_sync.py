"""
Tests for reconciliation of a bucket against a local key set.
"""

import re

import pytest
from unittest.mock import Mock

from s3publish import (
    ConfigurationError,
    ExclusionSet,
    InMemoryRemoteStore,
    NotFoundError,
    PublishFailure,
    PublishRecord,
    PublishState,
    RemoteObjectMeta,
    TransportError,
    reconcile,
)


@pytest.fixture
def store():
    """Bucket holding bar, foo, bim and boum."""
    store = InMemoryRemoteStore(bucket="test-bucket", page_size=2)
    for key in ["bar.txt", "foo.txt", "bim.txt", "boum.txt"]:
        store.put(key, key.encode(), {})
    store.calls.clear()
    return store


def run(store, local_keys, **kwargs):
    return list(reconcile(local_keys, store.list_objects(), store, **kwargs))


class TestExclusionSet:
    """Tests for ExclusionSet."""

    def test_exact_match(self):
        exclusions = ExclusionSet(["robots.txt"])
        assert exclusions.matches("robots.txt")
        assert not exclusions.matches("robots.txt.bak")
        assert not exclusions.matches("docs/robots.txt")

    def test_patterns_match_whole_key(self):
        exclusions = ExclusionSet(patterns=[r"legacy/.*"])
        assert exclusions.matches("legacy/a.html")
        assert not exclusions.matches("site/legacy/a.html")

    def test_compiled_pattern_in_keys(self):
        exclusions = ExclusionSet([re.compile(r".*\.map")])
        assert exclusions.matches("app.js.map")
        assert len(exclusions) == 1

    def test_coerce_keeps_instance(self):
        exclusions = ExclusionSet(["a"])
        assert ExclusionSet.coerce(exclusions) is exclusions
        assert len(ExclusionSet.coerce(None)) == 0

    def test_invalid_items_rejected(self):
        with pytest.raises(ConfigurationError):
            ExclusionSet([42])
        with pytest.raises(ConfigurationError, match="Invalid exclusion pattern"):
            ExclusionSet(patterns=["("])


class TestReconcile:
    """Tests for reconcile()."""

    def test_deletes_only_unknown_keys(self, store):
        results = run(store, ["bim.txt", "bar.txt"])

        assert " ".join(r.key for r in results) == "boum.txt foo.txt"
        assert all(isinstance(r, PublishRecord) for r in results)
        assert all(r.state == PublishState.DELETE for r in results)
        assert store.keys() == ["bar.txt", "bim.txt"]

    def test_delete_record_carries_remote_etag(self, store):
        etag = store.head("foo.txt").etag

        results = run(store, ["bar.txt", "bim.txt", "boum.txt"])

        assert results[0].fingerprint == etag

    def test_nothing_to_delete(self, store):
        results = run(store, ["bar.txt", "foo.txt", "bim.txt", "boum.txt", "extra.txt"])

        assert results == []
        assert store.calls["delete_multiple"] == 0

    def test_exclusion_wins(self, store):
        results = run(store, [], exclusions=["foo.txt", re.compile(r"b.m\.txt")])

        assert [r.key for r in results] == ["bar.txt", "boum.txt"]
        assert store.keys() == ["bim.txt", "foo.txt"]

    def test_simulate_deletes_nothing(self, store):
        results = run(store, ["bar.txt"], simulate=True)

        assert [r.key for r in results] == ["bim.txt", "boum.txt", "foo.txt"]
        assert all(r.simulated for r in results)
        assert store.calls["delete_multiple"] == 0
        assert len(store.keys()) == 4

    def test_batches(self, store):
        results = run(store, [], batch_size=3)

        assert len(results) == 4
        assert store.calls["delete_multiple"] == 2
        assert store.keys() == []

    def test_invalid_batch_size(self, store):
        with pytest.raises(ConfigurationError):
            run(store, [], batch_size=0)

    def test_per_key_failure_continues(self, store):
        store.fail_on("delete", "boum.txt")

        results = run(store, ["bar.txt"])

        failures = [r for r in results if isinstance(r, PublishFailure)]
        deleted = [r.key for r in results if isinstance(r, PublishRecord)]
        assert [f.key for f in failures] == ["boum.txt"]
        assert failures[0].operation == "delete"
        assert deleted == ["bim.txt", "foo.txt"]
        assert store.keys() == ["bar.txt", "boum.txt"]

    def test_batch_failure_reported_per_key(self, store):
        failing = Mock(wraps=store)
        failing.delete_multiple = Mock(side_effect=TransportError("Access denied", operation="delete_multiple"))

        results = list(reconcile([], store.list_objects(), failing, batch_size=2))

        assert [r.key for r in results] == ["bar.txt", "bim.txt", "boum.txt", "foo.txt"]
        assert all(isinstance(r, PublishFailure) for r in results)
        assert failing.delete_multiple.call_count == 2

    def test_missing_outcome_is_failure(self, store):
        partial = Mock(wraps=store)
        partial.delete_multiple = Mock(return_value={"bim.txt": None})

        results = list(reconcile(["bar.txt", "foo.txt"], store.list_objects(), partial))

        assert isinstance(results[0], PublishRecord)
        assert isinstance(results[1], PublishFailure)
        assert results[1].key == "boum.txt"

    def test_not_found_counts_as_deleted(self, store):
        gone = Mock(wraps=store)
        gone.delete_multiple = Mock(return_value={"foo.txt": NotFoundError("foo.txt", "delete")})

        results = list(reconcile(["bar.txt", "bim.txt", "boum.txt"], store.list_objects(), gone))

        assert len(results) == 1
        assert results[0].state == PublishState.DELETE

    def test_listing_failure(self, store):
        store.fail_on("list", "")

        results = run(store, [])

        assert len(results) == 1
        assert isinstance(results[0], PublishFailure)
        assert results[0].operation == "list"
        assert len(store.keys()) == 4

    def test_listing_failure_mid_way_flushes_pending(self, store):
        def listing():
            yield RemoteObjectMeta(key="foo.txt", etag=None, size=0)
            raise TransportError("Connection reset", key="", operation="list")

        results = list(reconcile([], listing(), store))

        assert isinstance(results[0], PublishRecord)
        assert results[0].key == "foo.txt"
        assert isinstance(results[1], PublishFailure)
        assert "foo.txt" not in store.keys()

    def test_listing_consumed_lazily(self, store):
        """Deletes of the first batch go out before later pages are read."""
        seen = []

        def listing():
            for meta in store.list_objects():
                seen.append(meta.key)
                yield meta

        results = reconcile([], listing(), store, batch_size=1)
        first = next(results)

        assert first.key == "bar.txt"
        assert seen == ["bar.txt"]
        results.close()
