"""Unit tests for stream-aware logging formatters and filters."""

import logging

import pytest

from flotilla.logging import StreamFormatter, StreamRoutingFilter


def make_record(message: str, stream: str | None = None) -> logging.LogRecord:
    record = logging.LogRecord("flotilla.test", logging.INFO, __file__, 1, message, None, None)
    if stream is not None:
        record.stream = stream
    return record


class TestStreamFormatter:
    def test_untagged_by_default(self) -> None:
        formatter = StreamFormatter("%(message)s")

        assert formatter.format(make_record("hello", "stdout")) == "hello"

    @pytest.mark.parametrize(
        ("stream", "expected"),
        [("stdout", "[stdout] hello"), ("stderr", "[stderr] hello"), (None, "hello")],
    )
    def test_tagged_streams(self, stream, expected) -> None:
        formatter = StreamFormatter("%(message)s", tag_streams=True)

        assert formatter.format(make_record("hello", stream)) == expected


class TestStreamRoutingFilter:
    def test_stderr_records_go_to_stderr(self) -> None:
        record = make_record("oops", "stderr")

        assert StreamRoutingFilter("stderr").filter(record)
        assert not StreamRoutingFilter("stdout").filter(record)

    @pytest.mark.parametrize("stream", ["stdout", None])
    def test_everything_else_goes_to_stdout(self, stream) -> None:
        record = make_record("hello", stream)

        assert StreamRoutingFilter("stdout").filter(record)
        assert not StreamRoutingFilter("stderr").filter(record)

    def test_unknown_stream(self) -> None:
        with pytest.raises(ValueError, match="Unknown stream"):
            StreamRoutingFilter("stdlog")
