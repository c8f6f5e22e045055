"""
Server-sent-event framing used by the LunaCore streaming endpoint.

Frames are separated by a blank line. Each frame carries at most one
``event:`` line (defaults to "message") and any number of ``data:`` lines,
joined with newlines. Exactly one leading space is stripped from each data
line; the rest of the payload is kept verbatim because token deltas rely on
their leading whitespace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Union


@dataclass(frozen=True)
class MessageFrame:
    payload: str
    event: str = "message"


@dataclass(frozen=True)
class ErrorFrame:
    payload: str


@dataclass(frozen=True)
class DoneFrame:
    pass


Frame = Union[MessageFrame, ErrorFrame, DoneFrame]

_LINE_SPLIT = re.compile(r"\r?\n")


def parse_frame(raw: str) -> Frame:
    """Parse the text of one frame (without its trailing blank line)."""
    event = "message"
    datas: List[str] = []
    for line in _LINE_SPLIT.split(raw):
        if line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            payload = line[5:]
            if payload.startswith(" "):
                payload = payload[1:]
            datas.append(payload)

    if event == "error":
        return ErrorFrame("\n".join(datas))
    if event == "done":
        return DoneFrame()
    return MessageFrame("\n".join(datas), event=event or "message")


class FrameDecoder:
    """
    Incremental decoder: feed decoded text as it arrives, get complete frames.

    A frame is only emitted once its terminating blank line has been seen, so
    whatever is left in the buffer when the stream ends is a truncated frame
    and is dropped by the caller.
    """

    def __init__(self) -> None:
        self._buf = ""

    def feed(self, text: str) -> Iterator[Frame]:
        self._buf += text
        while (sep := self._buf.find("\n\n")) != -1:
            raw, self._buf = self._buf[:sep], self._buf[sep + 2:]
            yield parse_frame(raw)

    @property
    def pending(self) -> str:
        return self._buf
