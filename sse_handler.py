"""Server-Sent Events (SSE) parsing for the upstream chat-completion stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Tuple

DONE_SENTINEL = "[DONE]"


@dataclass
class SSEEvent:
    """One blank-line delimited event, reduced to the fields the upstream uses."""

    data_lines: List[str] = field(default_factory=list)
    event: Optional[str] = None
    comments: List[str] = field(default_factory=list)

    @property
    def data(self) -> str:
        # multiple data lines are joined with "\n"
        return "\n".join(self.data_lines)

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL

    @property
    def is_empty(self) -> bool:
        """Keepalive or comment-only event (": OPENROUTER PROCESSING")."""
        return not self.data.strip()


def split_field(line: str) -> Tuple[str, str]:
    """Split `name: value`, dropping the single optional space after the colon."""
    name, sep, value = line.partition(":")
    if not sep:
        return line, ""
    if value.startswith(" "):
        value = value[1:]
    return name, value


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """
    Group an async line iterator into events.

    Blank lines with nothing before them are skipped; a trailing event that
    is not followed by a blank line is still yielded at EOF.
    """
    current = SSEEvent()
    pending = False
    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if pending:
                yield current
            current = SSEEvent()
            pending = False
            continue

        pending = True
        if line.startswith(":"):
            current.comments.append(line[1:].strip())
            continue
        name, value = split_field(line)
        if name == "data":
            current.data_lines.append(value)
        elif name == "event":
            current.event = value

    if pending:
        yield current
