"""Logging formatters and filters for stream routing."""

import logging


class StreamFormatter(logging.Formatter):
    """Logging formatter that prepends stream tags based on extra parameter.

    Parameters
    ----------
    fmt : str | None
        Format string passed to logging.Formatter
    tag_streams : bool
        Prefix remote output lines with [stdout] or [stderr]
    """

    def __init__(self, fmt: str | None = None, tag_streams: bool = False) -> None:
        super().__init__(fmt)
        self.tag_streams = tag_streams

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with stream prefix if present.

        Parameters
        ----------
        record : logging.LogRecord
            Log record to format

        Returns
        -------
        str
            Formatted log message with optional stream prefix
        """
        msg = super().format(record)
        stream = getattr(record, "stream", None)

        if not self.tag_streams:
            return msg

        if stream == "stdout":
            return f"[stdout] {msg}"
        elif stream == "stderr":
            return f"[stderr] {msg}"

        return msg


class StreamRoutingFilter(logging.Filter):
    """Route records to the handler of one output stream.

    Records tagged with ``extra={"stream": "stderr"}`` belong to stderr,
    every other record belongs to stdout.

    Parameters
    ----------
    stream : str
        Stream served by the handler carrying this filter, "stdout" or "stderr"
    """

    def __init__(self, stream: str) -> None:
        super().__init__()
        if stream not in ("stdout", "stderr"):
            raise ValueError(f"Unknown stream: {stream}")
        self.stream = stream

    def filter(self, record: logging.LogRecord) -> bool:
        target = "stderr" if getattr(record, "stream", None) == "stderr" else "stdout"
        return target == self.stream
