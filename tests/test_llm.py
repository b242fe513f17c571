"""Tests for the Anthropic wrapper and JSON extraction."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from submission_analyzer.llm import BULK_MODEL, LlmClient, LlmError, extract_json


def _reply(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def _request():
    return httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _make_client(side_effect=None, reply="ok"):
    sdk = MagicMock()
    if side_effect is not None:
        sdk.messages.create.side_effect = side_effect
    else:
        sdk.messages.create.return_value = _reply(reply)
    sleeps = []
    return LlmClient(client=sdk, sleep=sleeps.append), sdk, sleeps


# ===========================================================================
# extract_json
# ===========================================================================

class TestExtractJson:

    def test_bare_object(self):
        assert extract_json('{"score": 4}') == {"score": 4}

    def test_fenced_block(self):
        assert extract_json('Here you go:\n```json\n{"score": 5, "notes": "x"}\n```') == {"score": 5, "notes": "x"}

    def test_object_inside_prose(self):
        assert extract_json('Sure! {"a": 1} Hope that helps.') == {"a": 1}

    def test_no_json_raises(self):
        with pytest.raises(LlmError):
            extract_json("I cannot grade this.")
        with pytest.raises(LlmError):
            extract_json("")


# ===========================================================================
# LlmClient
# ===========================================================================

class TestLlmClient:

    def test_requires_key_without_client(self):
        with pytest.raises(EnvironmentError, match="ANTHROPIC_API_KEY"):
            LlmClient(api_key="")

    def test_complete_sends_prompt_and_system(self):
        client, sdk, _ = _make_client(reply="  hello  ")
        assert client.complete("prompt", system="sys") == "hello"
        sdk.messages.create.assert_called_once_with(
            model=BULK_MODEL,
            max_tokens=1024,
            messages=[{"role": "user", "content": "prompt"}],
            system="sys",
        )

    def test_images_precede_text(self):
        client, sdk, _ = _make_client()
        client.complete("describe", images=[("image/png", "AAAA")])
        content = sdk.messages.create.call_args.kwargs["messages"][0]["content"]
        assert content[0] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"},
        }
        assert content[1] == {"type": "text", "text": "describe"}

    def test_retries_connection_errors(self):
        err = anthropic.APIConnectionError(request=_request())
        client, sdk, sleeps = _make_client(side_effect=[err, _reply("done")])
        assert client.complete("p") == "done"
        assert sdk.messages.create.call_count == 2
        assert sleeps == [2.0]

    def test_gives_up_after_max_attempts(self):
        err = anthropic.APIConnectionError(request=_request())
        client, sdk, sleeps = _make_client(side_effect=[err, err, err])
        with pytest.raises(LlmError, match="after 3 attempts"):
            client.complete("p")
        assert sleeps == [2.0, 4.0]

    def test_bad_request_is_not_retried(self):
        err = anthropic.BadRequestError(
            "bad", response=httpx.Response(400, request=_request()), body=None,
        )
        client, sdk, _ = _make_client(side_effect=err)
        with pytest.raises(LlmError, match="Anthropic API error"):
            client.complete("p")
        assert sdk.messages.create.call_count == 1
