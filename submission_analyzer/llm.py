"""Thin wrapper around the Anthropic Messages API.

Callers build prompts; this module sends them, retries transient
failures and pulls a JSON object back out of the reply text.
"""

import json
import logging
import re
import time

import anthropic

logger = logging.getLogger(__name__)

# Cheap model for bulk per-submission grading.
BULK_MODEL = "claude-haiku-4-5-20251001"
# More capable model for qualitative analysis and student summaries.
ANALYSIS_MODEL = "claude-sonnet-4-20250514"

GRADING_MAX_TOKENS = 1024
SUMMARY_MAX_TOKENS = 400

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
    anthropic.InternalServerError,
)

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class LlmError(Exception):
    """The model call failed or its reply could not be used."""


def extract_json(text: str) -> dict:
    """Return the first JSON object in *text*.

    Handles replies wrapped in a ```json fence as well as bare objects
    surrounded by prose. Raises LlmError when nothing parses.
    """
    if not text:
        raise LlmError("Empty model response")

    candidates = [m.group(1) for m in _FENCE_RE.finditer(text)]
    match = _OBJECT_RE.search(text)
    if match:
        candidates.append(match.group())

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    raise LlmError(f"No JSON object in response: {text[:200]}")


class LlmClient:
    """Sends one prompt at a time; callers throttle between calls."""

    def __init__(self, api_key: str = None, client=None, max_attempts: int = 3,
                 retry_delay: float = 2.0, sleep=time.sleep):
        if client is None:
            if not api_key:
                raise EnvironmentError(
                    "ANTHROPIC_API_KEY not set. Add it to your .env file."
                )
            client = anthropic.Anthropic(api_key=api_key)
        self.client       = client
        self.max_attempts = max_attempts
        self.retry_delay  = retry_delay
        self._sleep       = sleep

    def complete(self, prompt: str, system: str = None, model: str = BULK_MODEL,
                 max_tokens: int = GRADING_MAX_TOKENS, images=()) -> str:
        """Send *prompt* and return the reply text.

        *images* is a sequence of ``(media_type, base64_data)`` pairs sent
        as vision content ahead of the prompt text.
        """
        if images:
            content = [
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                }
                for media_type, data in images
            ]
            content.append({"type": "text", "text": prompt})
        else:
            content = prompt

        kwargs = {
            "model":      model,
            "max_tokens": max_tokens,
            "messages":   [{"role": "user", "content": content}],
        }
        if system:
            kwargs["system"] = system

        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.client.messages.create(**kwargs)
            except _RETRYABLE as e:
                last_error = e
                logger.warning(
                    "LLM call failed (attempt %d/%d): %s", attempt, self.max_attempts, e
                )
                if attempt < self.max_attempts:
                    self._sleep(self.retry_delay * attempt)
                continue
            except anthropic.APIError as e:
                raise LlmError(f"Anthropic API error: {e}") from e

            blocks = [b.text for b in response.content if getattr(b, "type", "text") == "text"]
            return "".join(blocks).strip()

        raise LlmError(f"Anthropic API unavailable after {self.max_attempts} attempts: {last_error}")
