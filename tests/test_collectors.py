"""Tests for image collectors and the collection aggregator.

Tests cover:
- Source/destination planning per workflow mode
- Deduplication within a collector
- Aggregation order and content type tagging
- Short-circuit and abort hook on collector failure
"""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from imageset_mirror.collectors import (
    AdditionalCollector,
    CollectionAggregator,
    OperatorCollector,
    ReleaseCollector,
    merge_images,
    plan_item,
)
from imageset_mirror.config.imageset import ImageSetConfiguration, OperatorCatalog
from imageset_mirror.domain import ContentType, WorkflowMode, WorkItem
from imageset_mirror.exceptions import CollectionError


def _item(name: str) -> WorkItem:
    return WorkItem(f"docker://q.io/{name}:1", f"docker://localhost:5000/{name}:1")


def _collector(items=None, error=None) -> Mock:
    collector = Mock()
    if error is not None:
        collector.collect.side_effect = error
    else:
        collector.collect.return_value = tuple(items or ())
    return collector


class TestPlanItem:
    """Test planning per mode."""

    def test_mirror_to_disk(self, make_options):
        """Test upstream images are copied into the local cache."""
        item = plan_item("quay.io/ns/img:1.0", make_options(port=5000))

        assert item.source == "docker://quay.io/ns/img:1.0"
        assert item.destination == "docker://localhost:5000/ns/img:1.0"
        assert item.origin == "quay.io/ns/img:1.0"

    def test_prepare(self, make_options):
        """Test prepare plans the same cache destinations as mirror to disk."""
        item = plan_item("quay.io/ns/img:1.0", make_options(mode=WorkflowMode.PREPARE, port=5001))

        assert item.destination == "docker://localhost:5001/ns/img:1.0"

    def test_disk_to_mirror(self, make_options):
        """Test cached images are pushed below the destination registry."""
        opts = make_options(
            mode=WorkflowMode.DISK_TO_MIRROR, destination="docker://mirror.example.com:8443/ocp"
        )

        item = plan_item("quay.io/ns/img@sha256:" + "b" * 64, opts)

        assert item.source == "docker://localhost:5000/ns/img@sha256:" + "b" * 64
        assert item.destination == "docker://mirror.example.com:8443/ocp/ns/img@sha256:" + "b" * 64


class TestCollectors:
    """Test each collector reads its own configuration section."""

    @pytest.fixture
    def config(self):
        return ImageSetConfiguration(
            releases=["quay.io/release:4.15", "quay.io/release:4.15"],
            operators=[OperatorCatalog("registry.io/catalog:v4.15", ["etcd"])],
            additional_images=["registry.io/ubi9/ubi:latest"],
        )

    def test_release_deduplicates(self, config, make_options, ctx):
        items = ReleaseCollector(config, make_options()).collect(ctx)

        assert [item.source for item in items] == ["docker://quay.io/release:4.15"]

    def test_operator(self, config, make_options, ctx):
        items = OperatorCollector(config, make_options()).collect(ctx)

        assert [item.destination for item in items] == ["docker://localhost:5000/catalog:v4.15"]

    def test_additional(self, config, make_options, ctx):
        items = AdditionalCollector(config, make_options()).collect(ctx)

        assert [item.source for item in items] == ["docker://registry.io/ubi9/ubi:latest"]

    def test_cancelled(self, config, make_options, ctx):
        ctx.cancel()

        with pytest.raises(InterruptedError):
            ReleaseCollector(config, make_options()).collect(ctx)


class TestMergeImages:
    """Test the pure merge."""

    def test_appends_and_tags(self):
        base = (_item("a"),)

        merged = merge_images(base, [_item("b")], ContentType.OPERATOR)

        assert merged == (_item("a"), _item("b"))
        assert merged[1].content_type == ContentType.OPERATOR
        assert base == (_item("a"),)


class TestCollectionAggregator:
    """Test aggregation across collectors."""

    def test_order_and_content_types(self, ctx):
        """Test release, operator, additional order is preserved."""
        aggregator = CollectionAggregator(
            _collector([_item("r1"), _item("r2")]),
            _collector([_item("o1")]),
            _collector([_item("a1"), _item("a2")]),
        )

        result = aggregator.collect_all(ctx)

        assert result == [_item(n) for n in ("r1", "r2", "o1", "a1", "a2")]
        assert [item.content_type for item in result] == [
            ContentType.RELEASE,
            ContentType.RELEASE,
            ContentType.OPERATOR,
            ContentType.ADDITIONAL,
            ContentType.ADDITIONAL,
        ]

    def test_short_circuit_on_failure(self, ctx):
        """Test a failing operator collector stops collection and aborts."""
        additional = _collector([_item("a1")])
        on_abort = Mock()
        aggregator = CollectionAggregator(
            _collector([_item("r1")]),
            _collector(error=RuntimeError("catalog unreachable")),
            additional,
            on_abort=on_abort,
        )

        with pytest.raises(CollectionError) as exc_info:
            aggregator.collect_all(ctx)

        assert exc_info.value.phase == "operator"
        assert exc_info.value.partial == [_item("r1")]
        on_abort.assert_called_once()
        additional.collect.assert_not_called()

    def test_empty_collectors(self, ctx):
        aggregator = CollectionAggregator(_collector(), _collector(), _collector())

        assert aggregator.collect_all(ctx) == []
