"""Tests for the chat-transcript decoders."""

from submission_analyzer.conversations import (
    CONVERSATION_LIMIT,
    decode_bare_array,
    decode_dojo,
    decode_turns,
    decode_wrapped,
    extract_conversation,
)


class TestDecoders:

    def test_bare_array(self):
        convo = decode_bare_array([
            {"role": "user", "content": "What is a closure in JavaScript?"},
            {"role": "assistant", "content": "A function bundled with its scope."},
        ])
        assert convo.format == "array"
        assert convo.user_turns == 1
        assert convo.user_words == 6
        assert convo.total_turns == 2
        assert convo.transcript.startswith("[Student] What is a closure")
        assert "[AI] A function bundled" in convo.transcript

    def test_wrapped(self):
        convo = decode_wrapped({"conversation": [{"role": "human", "content": "Hello there"}]})
        assert convo.format == "wrapped"
        assert convo.user_turns == 1

    def test_turns_carries_title_and_takeaways(self):
        convo = decode_turns({
            "conversation_title": "CSS grid",
            "key_takeaways": ["use fr units"],
            "turns": [
                {"speaker": "student", "content": "How do I center with grid?"},
                {"speaker": "ai", "content": "Use place-items: center."},
            ],
        })
        meta = convo.metadata()
        assert meta["format"] == "turns"
        assert meta["title"] == "CSS grid"
        assert meta["keyTakeaways"] == ["use fr units"]

    def test_dojo_requires_all_keys(self):
        assert decode_dojo({"messages": [], "session": {}}) is None

    def test_dojo_session_metadata(self):
        convo = decode_dojo({
            "version": 2,
            "session": {"construct": "recursion", "name": "Recursion dojo", "startTime": "2026-02-01"},
            "messages": [
                {"role": "user", "content": "Explain base cases"},
                {"role": "assistant", "content": "A base case stops recursion."},
            ],
        })
        meta = convo.metadata()
        assert meta["format"] == "dojo"
        assert meta["sessionConstruct"] == "recursion"
        assert meta["messageCount"] == 2
        assert meta["version"] == 2

    def test_skips_short_and_malformed_turns(self):
        convo = decode_bare_array([
            {"role": "user", "content": "k"},
            {"content": "no role"},
            "not a dict",
            {"role": "assistant", "content": "Real answer"},
        ])
        assert convo.total_turns == 1
        assert convo.user_turns == 0

    def test_no_usable_turns(self):
        assert decode_bare_array([{"role": "user", "content": ""}]) is None
        assert decode_bare_array({"role": "user"}) is None

    def test_transcript_is_truncated(self):
        convo = decode_bare_array([{"role": "user", "content": "word " * 5000}])
        assert len(convo.transcript) == CONVERSATION_LIMIT


class TestExtractConversation:

    def test_dojo_wins_over_wrapped(self):
        data = {
            "version": 1, "session": {},
            "messages": [{"role": "user", "content": "from messages"}],
            "conversation": [{"role": "user", "content": "from conversation"}],
        }
        assert extract_conversation(data).format == "dojo"

    def test_unrecognised(self):
        assert extract_conversation({"foo": "bar"}) is None
        assert extract_conversation("text") is None
