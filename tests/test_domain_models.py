"""Tests for domain models."""

import dataclasses

import pytest

from imageset_mirror.domain import (
    ContentType,
    RunContext,
    ShutdownKind,
    ShutdownReason,
    WorkflowMode,
    WorkItem,
)


class TestWorkItem:
    """Test WorkItem identity."""

    def test_identity_ignores_content_type(self):
        """Test two items with the same endpoints are equal whatever their phase."""
        a = WorkItem("docker://q.io/a:1", "docker://localhost:5000/a:1", content_type=ContentType.RELEASE)
        b = WorkItem("docker://q.io/a:1", "docker://localhost:5000/a:1", content_type=ContentType.OPERATOR)

        assert a == b
        assert hash(a) == hash(b)
        assert a.key == ("docker://q.io/a:1", "docker://localhost:5000/a:1")

    def test_is_frozen(self):
        """Test items cannot be modified once created."""
        item = WorkItem("docker://q.io/a:1", "docker://localhost:5000/a:1")

        with pytest.raises(dataclasses.FrozenInstanceError):
            item.source = "docker://other"


class TestRunOptions:
    """Test RunOptions helpers."""

    def test_local_storage_fqdn(self, make_options):
        """Test the cache registry address follows the port."""
        assert make_options(port=5555).local_storage_fqdn == "localhost:5555"

    @pytest.mark.parametrize(
        "mode,m2d,d2m,prepare",
        [
            (WorkflowMode.MIRROR_TO_DISK, True, False, False),
            (WorkflowMode.DISK_TO_MIRROR, False, True, False),
            (WorkflowMode.PREPARE, False, False, True),
        ],
    )
    def test_mode_predicates(self, make_options, mode, m2d, d2m, prepare):
        """Test exactly one predicate is true for each mode."""
        opts = make_options(mode=mode)

        assert opts.is_mirror_to_disk() is m2d
        assert opts.is_disk_to_mirror() is d2m
        assert opts.is_prepare() is prepare

    def test_replace_produces_copy(self, make_options):
        """Test deriving the run-time copy leaves the original untouched."""
        opts = make_options()

        forced = dataclasses.replace(opts, multi_arch="all")

        assert opts.multi_arch == "system"
        assert forced.multi_arch == "all"


class TestRunContext:
    """Test cancellation."""

    def test_not_cancelled_by_default(self):
        """Test a new context lets work proceed."""
        RunContext().raise_if_cancelled()

    def test_cancel_raises(self):
        """Test cancelled contexts stop work."""
        ctx = RunContext()
        ctx.cancel()

        assert ctx.cancelled
        with pytest.raises(InterruptedError):
            ctx.raise_if_cancelled()


class TestShutdownReason:
    """Test shutdown signal variants."""

    def test_requested(self):
        """Test requested shutdowns are recognised by kind."""
        reason = ShutdownReason.requested("done")

        assert reason.is_requested
        assert reason.kind == ShutdownKind.REQUESTED

    def test_fault(self):
        """Test faults carry their detail."""
        reason = ShutdownReason.fault("listener died")

        assert not reason.is_requested
        assert reason.detail == "listener died"

    def test_structural_equality(self):
        """Test signals compare by value, not identity."""
        assert ShutdownReason.requested() == ShutdownReason.requested()
