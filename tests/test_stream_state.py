"""
Tests for per-stream state.

Tests cover:
- Tool-call fragment accumulation and finalization
- Reasoning/content sequencing with think delimiters
- Finish reason mapping
- Outbound frame construction
"""

import json

import pytest

from stream_state import (
    THINK_CLOSE,
    THINK_OPEN,
    ReasoningSequencer,
    SequencerMode,
    StreamState,
    ToolCallAccumulator,
    delta_reasoning,
    encode_frame,
    make_chat_frame,
    map_finish_reason,
)


def _chunk(delta=None, finish_reason=None, **extra):
    chunk = {"choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}]}
    chunk.update(extra)
    return chunk


# ============================================================================
# Tool Call Accumulator Tests
# ============================================================================

class TestToolCallAccumulator:
    """Test merging of streamed tool-call fragments."""

    def test_arguments_concatenate_per_index(self):
        acc = ToolCallAccumulator()
        acc.ingest([{"index": 0, "id": "call_1", "type": "function", "function": {"name": "get_weather", "arguments": '{"ci'}}])
        acc.ingest([{"index": 0, "function": {"arguments": 'ty": "Par'}}])
        acc.ingest([{"index": 0, "function": {"arguments": 'is"}'}}])

        assert acc.finalize() == [{"function": {"name": "get_weather", "arguments": {"city": "Paris"}}}]

    def test_first_fragment_fixes_name(self):
        """Later fragments only append arguments, even if they carry a name."""
        acc = ToolCallAccumulator()
        acc.ingest([{"index": 0, "id": "a", "function": {"name": "first", "arguments": "{}"}}])
        acc.ingest([{"index": 0, "id": "b", "function": {"name": "second", "arguments": ""}}])

        result = acc.finalize()
        assert result == [{"function": {"name": "first", "arguments": {}}}]

    def test_multiple_indices_in_index_order(self):
        acc = ToolCallAccumulator()
        acc.ingest(
            [
                {"index": 1, "function": {"name": "b", "arguments": '{"x": 2}'}},
                {"index": 0, "function": {"name": "a", "arguments": '{"x": 1}'}},
            ]
        )

        result = acc.finalize()
        assert [c["function"]["name"] for c in result] == ["a", "b"]
        assert result[1]["function"]["arguments"] == {"x": 2}

    def test_empty_arguments_become_empty_object(self):
        acc = ToolCallAccumulator()
        acc.ingest([{"index": 0, "function": {"name": "list_files"}}])

        assert acc.finalize() == [{"function": {"name": "list_files", "arguments": {}}}]

    def test_missing_name_is_dropped(self):
        acc = ToolCallAccumulator()
        acc.ingest([{"index": 0, "function": {"arguments": '{"a": 1}'}}])
        acc.ingest([{"index": 1, "function": {"name": "kept", "arguments": "{}"}}])

        assert acc.finalize() == [{"function": {"name": "kept", "arguments": {}}}]

    def test_malformed_arguments_are_dropped(self):
        acc = ToolCallAccumulator()
        acc.ingest([{"index": 0, "function": {"name": "broken", "arguments": '{"a": '}}])

        assert acc.finalize() is None

    def test_nothing_ingested(self):
        acc = ToolCallAccumulator()
        acc.ingest(None)
        acc.ingest([])

        assert acc.finalize() is None

    def test_non_dict_fragments_ignored(self):
        acc = ToolCallAccumulator()
        acc.ingest(["junk", None, {"index": 0, "function": {"name": "ok", "arguments": "{}"}}])

        assert acc.finalize() == [{"function": {"name": "ok", "arguments": {}}}]


# ============================================================================
# Reasoning Sequencer Tests
# ============================================================================

class TestReasoningSequencer:
    """Test folding reasoning and content into one stream."""

    def test_content_only(self):
        seq = ReasoningSequencer()
        assert seq.feed(None, "Hello") == ["Hello"]
        assert seq.feed(None, " world") == [" world"]
        assert seq.mode is SequencerMode.IDLE

    def test_reasoning_then_content(self):
        seq = ReasoningSequencer()

        assert seq.feed("Let me", None) == [THINK_OPEN, "Let me"]
        assert seq.mode is SequencerMode.REASONING
        assert seq.feed(" think", None) == [" think"]
        assert seq.feed(None, "Answer") == [THINK_CLOSE, "Answer"]
        assert seq.mode is SequencerMode.IDLE
        assert seq.feed(None, ".") == ["."]

    def test_alternating_runs_are_each_wrapped(self):
        seq = ReasoningSequencer()
        pieces = []
        for reasoning, content in [("r1", None), (None, "c1"), ("r2", None), (None, "c2")]:
            pieces.extend(seq.feed(reasoning, content))

        assert pieces == [THINK_OPEN, "r1", THINK_CLOSE, "c1", THINK_OPEN, "r2", THINK_CLOSE, "c2"]
        assert pieces.count(THINK_OPEN) == pieces.count(THINK_CLOSE) == 2

    def test_stream_ending_in_reasoning_stays_open(self):
        seq = ReasoningSequencer()
        pieces = seq.feed("thinking", None) + seq.feed("more", None)

        assert pieces.count(THINK_OPEN) == 1
        assert THINK_CLOSE not in pieces
        assert seq.mode is SequencerMode.REASONING

    def test_empty_delta_emits_nothing(self):
        seq = ReasoningSequencer()
        assert seq.feed(None, None) == []
        assert seq.feed("", "") == []

    def test_reasoning_wins_when_both_present(self):
        seq = ReasoningSequencer()
        assert seq.feed("why", "what") == [THINK_OPEN, "why"]

    def test_delimiter_texts(self):
        assert THINK_OPEN == "<think>\n"
        assert THINK_CLOSE == "\n</think>\n\n"


# ============================================================================
# Helpers Tests
# ============================================================================

class TestFinishReason:
    """Test mapping of upstream finish reasons."""

    @pytest.mark.parametrize(
        "reason, expected",
        [
            ("stop", "stop"),
            ("tool_calls", "tool_calls"),
            ("length", "stop"),
            ("content_filter", "stop"),
            (None, None),
            ("", None),
        ],
    )
    def test_map_finish_reason(self, reason, expected):
        assert map_finish_reason(reason) == expected


class TestDeltaReasoning:
    def test_reasoning_content_preferred(self):
        assert delta_reasoning({"reasoning_content": "a", "reasoning": "b"}) == "a"

    def test_falls_back_to_reasoning(self):
        assert delta_reasoning({"reasoning_content": None, "reasoning": "b"}) == "b"

    def test_absent_or_non_string(self):
        assert delta_reasoning({}) is None
        assert delta_reasoning({"reasoning": {"text": "x"}}) is None


class TestStreamState:
    """Test applying whole upstream chunks."""

    def test_apply_content_and_finish(self):
        state = StreamState()

        assert state.apply(_chunk({"role": "assistant", "content": "Hi"})) == ["Hi"]
        assert state.apply(_chunk({}, finish_reason="length")) == []
        assert state.finish_reason == "stop"

    def test_apply_reasoning_field(self):
        state = StreamState()

        assert state.apply(_chunk({"reasoning": "hmm"})) == [THINK_OPEN, "hmm"]
        assert state.apply(_chunk({"content": "ok"})) == [THINK_CLOSE, "ok"]

    def test_apply_tool_calls(self):
        state = StreamState()
        state.apply(_chunk({"tool_calls": [{"index": 0, "id": "x", "function": {"name": "run", "arguments": ""}}]}))
        state.apply(_chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"cmd": "ls"}'}}]}))
        state.apply(_chunk({}, finish_reason="tool_calls"))

        assert state.finish_reason == "tool_calls"
        assert state.tool_calls.finalize() == [{"function": {"name": "run", "arguments": {"cmd": "ls"}}}]

    def test_usage_only_chunk(self):
        """The trailing usage chunk has no choices."""
        state = StreamState()
        assert state.apply({"choices": [], "usage": {"total_tokens": 10}}) == []
        assert state.finish_reason is None

    def test_finish_reason_absent_leaves_unset(self):
        state = StreamState()
        state.apply(_chunk({"content": "x"}))
        assert state.finish_reason is None


class TestFrames:
    """Test outbound frame rendering."""

    def test_content_frame(self):
        frame = make_chat_frame("my-model", "Hello", False)

        assert frame["model"] == "my-model"
        assert frame["message"] == {"role": "assistant", "content": "Hello"}
        assert frame["done"] is False
        assert "done_reason" not in frame
        assert frame["created_at"].endswith("Z")

    def test_terminal_frame_with_tool_calls(self):
        calls = [{"function": {"name": "f", "arguments": {}}}]
        frame = make_chat_frame("m", "", True, done_reason="tool_calls", tool_calls=calls)

        assert frame["done"] is True
        assert frame["done_reason"] == "tool_calls"
        assert frame["message"]["tool_calls"] == calls

    def test_encode_frame(self):
        raw = encode_frame({"a": "é"})

        assert raw.endswith(b"\n\n")
        assert json.loads(raw.decode("utf-8")) == {"a": "é"}
