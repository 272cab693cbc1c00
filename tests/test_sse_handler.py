"""
Tests for SSE (Server-Sent Events) handler module.

Tests cover:
- Field splitting
- Event properties ([DONE], comment-only events, multi-line data)
- Grouping a line iterator into events
"""

import pytest

from sse_handler import SSEEvent, iter_sse_events, split_field


async def _events(lines):
    async def _aiter():
        for line in lines:
            yield line

    return [event async for event in iter_sse_events(_aiter())]


# ============================================================================
# Helper Functions Tests
# ============================================================================

class TestSSEHelpers:
    """Test SSE helper functions."""

    def test_split_field(self):
        assert split_field("data: hello") == ("data", "hello")
        assert split_field("data:hello") == ("data", "hello")
        assert split_field("data:  two spaces") == ("data", " two spaces")
        assert split_field("event: message") == ("event", "message")
        assert split_field("data") == ("data", "")

    def test_done_event(self):
        assert SSEEvent(data_lines=["[DONE]"]).is_done is True
        assert SSEEvent(data_lines=[" [DONE] "]).is_done is True
        assert SSEEvent(data_lines=["[DONE] extra"]).is_done is False
        assert SSEEvent(data_lines=['{"choices": []}']).is_done is False

    def test_multi_line_data(self):
        event = SSEEvent(data_lines=["a", "b"])

        assert event.data == "a\nb"
        assert event.is_empty is False

    def test_comment_only_event_is_empty(self):
        assert SSEEvent(comments=["OPENROUTER PROCESSING"]).is_empty is True
        assert SSEEvent(data_lines=[""]).is_empty is True


# ============================================================================
# Event Reader Tests
# ============================================================================

class TestIterSSEEvents:
    """Test grouping lines into events."""

    @pytest.mark.asyncio
    async def test_events_in_order(self):
        events = await _events(["data: one", "", "data: two", "data: more", "", "data: [DONE]", ""])

        assert [e.data for e in events] == ["one", "two\nmore", "[DONE]"]
        assert events[-1].is_done is True

    @pytest.mark.asyncio
    async def test_comments_and_fields(self):
        events = await _events([": OPENROUTER PROCESSING", "", "event: message", "id: 7", "data: payload", ""])

        assert len(events) == 2
        assert events[0].comments == ["OPENROUTER PROCESSING"]
        assert events[0].is_empty is True
        assert events[1].event == "message"
        assert events[1].data == "payload"

    @pytest.mark.asyncio
    async def test_strips_line_endings(self):
        events = await _events(["data: x\r\n", "\r\n"])

        assert [e.data for e in events] == ["x"]

    @pytest.mark.asyncio
    async def test_repeated_blank_lines_skipped(self):
        events = await _events(["", "", "data: x", "", ""])

        assert [e.data for e in events] == ["x"]

    @pytest.mark.asyncio
    async def test_trailing_event_without_blank_line(self):
        events = await _events(["data: a", "", "data: tail"])

        assert [e.data for e in events] == ["a", "tail"]

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        assert await _events([]) == []
