"""Tests for folding stream events into client chat state."""

import pytest

from sourcechat_client.errors import ProtocolViolation
from sourcechat_client.events import EventType, StreamEvent, parse_event
from sourcechat_client.stream_reducer import (
    ChatMessage, ChatState, StreamingState, consume_stream, reduce, stop_streaming,
)

USER_PAYLOAD = {
    "id": "u1", "conversation_id": "c1", "role": "user", "content": "Hi",
    "metadata": {}, "created_at": "2024-01-01 00:00:00",
}
STORED_ASSISTANT = {
    "id": "db-7", "conversation_id": "c1", "role": "assistant", "content": "Hello there [^1]",
    "metadata": {}, "created_at": "2024-01-01 00:00:05",
}


def _turn(deltas=("Hello", " there", " [^1]")):
    events = [
        StreamEvent(EventType.USER_MESSAGE, message=USER_PAYLOAD),
        StreamEvent(EventType.CONTEXT, chunks=1),
        StreamEvent(EventType.START, message_id="m1", model="gpt-4o"),
    ]
    events += [StreamEvent(EventType.DELTA, message_id="m1", content=d) for d in deltas]
    return events


def _complete(content="Hello there [^1]"):
    return StreamEvent(
        EventType.COMPLETE,
        message_id="m1",
        content=content,
        message=STORED_ASSISTANT,
        model="gpt-4o",
        token_count=42,
        citation_map={"^1": {"sourceId": "s1", "chunkId": "k1", "text": "excerpt"}},
    )


class TestReducerHappyPath:
    def test_full_turn(self):
        state = consume_stream(_turn() + [_complete()])

        user, assistant = state.messages
        assert user == ChatMessage(id="u1", role="user", content="Hi", created_at="2024-01-01 00:00:00")
        assert assistant.id == "db-7"
        assert assistant.content == "Hello there [^1]"
        assert assistant.is_streaming is False
        assert assistant.token_count == 42
        assert assistant.citation_map["^1"]["sourceId"] == "s1"
        assert state.streaming.is_streaming is False
        assert state.context_chunks == 1

    def test_placeholder_tracks_deltas(self):
        state = consume_stream(_turn())
        placeholder = state.messages[-1]
        assert placeholder.id == "m1"
        assert placeholder.is_streaming is True
        assert placeholder.model == "gpt-4o"
        assert placeholder.content == state.streaming.accumulated_content == "Hello there [^1]"

    def test_delta_concatenation_equals_final_content(self):
        deltas = ["a", "b", "", "c d", "\n", "é"]
        state = consume_stream(_turn(deltas) + [_complete(content="".join(deltas))])
        assert state.messages[-1].content == "".join(deltas)

    def test_input_state_not_mutated(self):
        before = consume_stream(_turn()[:3])
        after = reduce(before, StreamEvent(EventType.DELTA, message_id="m1", content="x"))
        assert before.messages[-1].content == ""
        assert after.messages[-1].content == "x"

    def test_duplicate_user_message_ignored(self):
        state = consume_stream([
            StreamEvent(EventType.USER_MESSAGE, message=USER_PAYLOAD),
            StreamEvent(EventType.USER_MESSAGE, message=USER_PAYLOAD),
        ])
        assert len(state.messages) == 1

    def test_string_user_message(self):
        state = reduce(ChatState(), StreamEvent(EventType.USER_MESSAGE, message="typed text"))
        assert state.messages[0].content == "typed text"
        assert state.messages[0].role == "user"

    def test_empty_delta_is_noop(self):
        state = consume_stream(_turn()[:3])
        assert reduce(state, StreamEvent(EventType.DELTA, message_id="m1", content="")) is state


class TestReducerErrors:
    def test_error_keeps_partial_content(self):
        state = consume_stream(_turn(["partial"]) + [
            StreamEvent(EventType.ERROR, message_id="m1", message="Response generation was stopped."),
        ])
        assert state.streaming.last_error == "Response generation was stopped."
        assert state.streaming.is_streaming is False
        assert state.messages[-1].content == "partial"
        assert state.messages[-1].is_streaming is False

    def test_error_removes_empty_placeholder(self):
        state = consume_stream(_turn([]) + [StreamEvent(EventType.ERROR, message_id="m1", message="boom")])
        assert [m.id for m in state.messages] == ["u1"]

    def test_error_before_start(self):
        state = reduce(ChatState(), StreamEvent(EventType.ERROR, message="Message content is required"))
        assert state.streaming.last_error == "Message content is required"
        assert state.messages == ()

    def test_error_default_message(self):
        state = reduce(ChatState(), StreamEvent(EventType.ERROR))
        assert state.streaming.last_error

    def test_start_clears_previous_error(self):
        state = reduce(ChatState(streaming=StreamingState(last_error="old")), StreamEvent(EventType.START, message_id="m2"))
        assert state.streaming.last_error is None


class TestProtocolViolations:
    def test_delta_before_start(self):
        state = ChatState()
        assert reduce(state, StreamEvent(EventType.DELTA, message_id="m1", content="x")) is state
        with pytest.raises(ProtocolViolation):
            reduce(state, StreamEvent(EventType.DELTA, message_id="m1", content="x"), strict=True)

    def test_duplicate_complete_is_idempotent(self):
        once = consume_stream(_turn() + [_complete()])
        twice = reduce(once, _complete())
        assert twice is once
        with pytest.raises(ProtocolViolation):
            reduce(once, _complete(), strict=True)

    def test_delta_after_complete(self):
        done = consume_stream(_turn() + [_complete()])
        assert reduce(done, StreamEvent(EventType.DELTA, message_id="m1", content="late")) is done

    def test_start_while_streaming(self):
        streaming = consume_stream(_turn())
        with pytest.raises(ProtocolViolation):
            reduce(streaming, StreamEvent(EventType.START, message_id="m2"), strict=True)

    def test_mismatched_message_id(self):
        streaming = consume_stream(_turn())
        other = StreamEvent(EventType.DELTA, message_id="zzz", content="x")
        assert reduce(streaming, other) is streaming
        with pytest.raises(ProtocolViolation):
            reduce(streaming, other, strict=True)

    def test_start_without_id(self):
        with pytest.raises(ProtocolViolation):
            reduce(ChatState(), StreamEvent(EventType.START), strict=True)

    def test_error_after_complete(self):
        done = consume_stream(_turn() + [_complete()])
        error = StreamEvent(EventType.ERROR, message_id="m1", message="late")
        assert reduce(done, error) is done

    def test_error_for_other_message_leaves_stream_running(self):
        streaming = consume_stream(_turn(["partial"]))
        stray = StreamEvent(EventType.ERROR, message_id="other", message="Response generation was stopped.")
        assert reduce(streaming, stray) is streaming
        with pytest.raises(ProtocolViolation):
            reduce(streaming, stray, strict=True)

        state = reduce(streaming, StreamEvent(EventType.DELTA, message_id="m1", content=" more"))
        assert state.streaming.is_streaming is True
        assert state.streaming.last_error is None
        assert state.messages[-1].content == "partial more"


class TestStopStreaming:
    def test_stop_freezes_placeholder(self):
        stopped = stop_streaming(consume_stream(_turn(["par"])))
        assert stopped.streaming.is_streaming is False
        assert stopped.messages[-1].content == "par"
        assert stopped.messages[-1].is_streaming is False

    def test_late_events_after_stop_ignored(self):
        stopped = stop_streaming(consume_stream(_turn(["par"])))
        assert reduce(stopped, StreamEvent(EventType.DELTA, message_id="m1", content="tial")) is stopped
        assert reduce(stopped, _complete()) is stopped

    def test_stop_when_idle(self):
        state = ChatState()
        assert stop_streaming(state) is state


class TestParseEvent:
    def test_wire_names(self):
        event = parse_event('{"type":"complete","messageId":"m1","tokenCount":3,"citationMap":{}}')
        assert event.type is EventType.COMPLETE
        assert event.message_id == "m1"
        assert event.token_count == 3
        assert event.citation_map == {}

    @pytest.mark.parametrize("data", ["not json", '{"no_type": 1}', '{"type": "bogus"}', "[]"])
    def test_undecodable_skipped(self, data):
        assert parse_event(data) is None
