"""
Unit Tests for Trace and TraceAdapter

Spans must be pure (the parent is never modified) and the log prefix must
let a reader rebuild the call tree from log lines alone.
"""

import logging

import pytest

from steward.trace import Trace, TraceAdapter, new_trace


class TestTrace:
    """Tests for span derivation."""

    def test_new_is_root(self) -> None:
        """
        Verify a new trace has no parent and depth 0.
        """
        root = Trace.new()
        assert root.parent == ""
        assert root.depth == 0
        assert len(root.id) == 8

    def test_span_links_parent(self) -> None:
        """
        Verify a child has a fresh id, the parent's id and depth + 1.
        """
        root = new_trace()
        child = root.span()
        grandchild = child.span()

        assert child.id != root.id
        assert child.parent == root.id
        assert child.depth == 1
        assert grandchild.parent == child.id
        assert grandchild.depth == 2

    def test_span_does_not_mutate(self) -> None:
        """
        Verify spanning leaves the original untouched.
        """
        root = Trace.new()
        before = (root.id, root.parent, root.depth)
        root.span()
        root.span()
        assert (root.id, root.parent, root.depth) == before

    def test_frozen(self) -> None:
        """
        Verify traces cannot be modified in place.
        """
        root = Trace.new()
        with pytest.raises(AttributeError):
            root.depth = 5  # type: ignore[misc]

    def test_siblings_differ(self) -> None:
        """
        Verify two spans of the same parent get different ids.
        """
        root = Trace.new()
        assert root.span().id != root.span().id


class TestTraceAdapter:
    """Tests for trace-prefixed logging."""

    def test_prefix_and_extra(self, caplog: pytest.LogCaptureFixture) -> None:
        """
        Verify records carry the id/parent prefix and structured fields.
        """
        root = Trace(id="aaaa1111")
        child = Trace(id="bbbb2222", parent="aaaa1111", depth=1)
        log = TraceAdapter(logging.getLogger("steward.test"), child)

        with caplog.at_level(logging.INFO, logger="steward.test"):
            TraceAdapter(logging.getLogger("steward.test"), root).info("root %s", "msg")
            log.info("apply %s", "x")

        first, second = caplog.records
        assert first.getMessage() == "[aaaa1111 <- -] root msg"
        assert second.getMessage() == " [bbbb2222 <- aaaa1111] apply x"
        assert second.trace_id == "bbbb2222"
        assert second.trace_parent == "aaaa1111"
        assert second.trace_depth == 1

    def test_indent_alternates(self, caplog: pytest.LogCaptureFixture) -> None:
        """
        Verify deeper spans are indented with alternating space and bar.
        """
        deep = Trace(id="cccc3333", parent="bbbb2222", depth=4)
        with caplog.at_level(logging.INFO, logger="steward.test"):
            TraceAdapter(logging.getLogger("steward.test"), deep).info("deep")

        assert caplog.records[0].getMessage().startswith(" │ │[cccc3333")

    def test_caller_extra_merged(self, caplog: pytest.LogCaptureFixture) -> None:
        """
        Verify extra passed at the call site is kept alongside trace fields.
        """
        with caplog.at_level(logging.INFO, logger="steward.test"):
            TraceAdapter(logging.getLogger("steward.test"), Trace.new()).info("x", extra={"host": "web1"})

        record = caplog.records[0]
        assert record.host == "web1"
        assert hasattr(record, "trace_id")


class TestTraceDeadline:
    """Tests for deadlines carried on traces."""

    def test_default_unbounded(self) -> None:
        """
        Verify a new trace has no deadline.
        """
        assert Trace.new().remaining() is None

    def test_span_inherits(self) -> None:
        """
        Verify children keep the parent's absolute deadline.
        """
        root = Trace.new().with_timeout(10)
        assert root.span().span().deadline == root.deadline

    def test_with_timeout_never_extends(self) -> None:
        """
        Verify a longer timeout keeps the earlier deadline.
        """
        short = Trace.new().with_timeout(1)
        assert short.with_timeout(100).deadline == short.deadline
        assert short.with_timeout(0.5).deadline < short.deadline

    def test_with_timeout_keeps_identity(self) -> None:
        """
        Verify bounding a trace does not change its id or position.
        """
        root = Trace.new()
        bounded = root.with_timeout(5)
        assert (bounded.id, bounded.parent, bounded.depth) == (root.id, root.parent, root.depth)
        assert root.deadline is None
