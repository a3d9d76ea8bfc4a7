"""Parsing of server-sent event streams into (event, data) pairs."""

from __future__ import annotations

from typing import Iterable, Iterator, Union


def iter_sse_events(lines: Iterable[Union[str, bytes]]) -> Iterator[tuple[str, str]]:
    """Yield (event, data) for each complete event in a stream of lines.

    An event is emitted on a blank line, or at the end of the stream, once both
    its event name and data are non-empty. A later data line replaces an earlier one.
    """
    event = ""
    data = ""
    for raw in lines:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        line = line.rstrip("\r\n")
        if not line:
            if event and data:
                yield event, data
                event = ""
                data = ""
            continue
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data = line[len("data:"):].strip()
    if event and data:
        yield event, data