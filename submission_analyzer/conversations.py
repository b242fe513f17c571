"""Chat-transcript decoders.

Students upload AI conversations in four JSON shapes:

  dojo export      {"messages": [...], "session": {...}, "version": ...}
  wrapped          {"conversation": [{"role", "content"}, ...]}
  turns            {"turns": [{"speaker", "content"}, ...], "conversation_title"?,
                    "key_takeaways"?, "context"?}
  bare array       [{"role", "content"}, ...]

Each decoder returns a ConversationTranscript, or None when the value is
not in its shape (or has no usable turns).
"""

import json
from dataclasses import dataclass, field

CONVERSATION_LIMIT = 15_000
MIN_TURN_LENGTH = 2

USER_ROLES = {"user", "student", "human"}


@dataclass(frozen=True)
class ConversationTranscript:
    transcript: str
    format: str
    user_turns: int
    user_words: int
    total_turns: int
    extra: dict = field(default_factory=dict)

    def metadata(self) -> dict:
        meta = {
            "format":     self.format,
            "userTurns":  self.user_turns,
            "userWords":  self.user_words,
            "totalTurns": self.total_turns,
        }
        meta.update(self.extra)
        return meta


def _content_text(content) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content.strip()
    return json.dumps(content, ensure_ascii=False)


def _build(items, role_key: str, fmt: str, extra=None):
    if not isinstance(items, list):
        return None

    parts = []
    user_turns = user_words = 0
    for item in items:
        if not isinstance(item, dict) or role_key not in item or "content" not in item:
            continue
        text = _content_text(item["content"])
        if len(text) < MIN_TURN_LENGTH:
            continue
        role = str(item[role_key] or "").strip().lower()
        if role in USER_ROLES:
            parts.append(f"[Student] {text}")
            user_turns += 1
            user_words += len(text.split())
        else:
            parts.append(f"[AI] {text}")

    if not parts:
        return None

    return ConversationTranscript(
        transcript="\n\n".join(parts)[:CONVERSATION_LIMIT],
        format=fmt,
        user_turns=user_turns,
        user_words=user_words,
        total_turns=len(parts),
        extra=extra or {},
    )


def decode_bare_array(data):
    if not isinstance(data, list):
        return None
    return _build(data, "role", "array")


def decode_dojo(data):
    if not isinstance(data, dict):
        return None
    if not {"messages", "session", "version"} <= set(data):
        return None
    session = data.get("session") or {}
    if not isinstance(session, dict):
        session = {}
    extra = {
        "sessionConstruct": session.get("construct") or session.get("constructId"),
        "sessionName":      session.get("name") or session.get("constructName"),
        "startedAt":        session.get("startTime") or session.get("startedAt")
                            or session.get("started_at"),
        "messageCount":     len(data["messages"]) if isinstance(data["messages"], list) else 0,
        "version":          data.get("version"),
    }
    return _build(data["messages"], "role", "dojo", extra)


def decode_wrapped(data):
    if not isinstance(data, dict) or "conversation" not in data:
        return None
    return _build(data["conversation"], "role", "wrapped")


def decode_turns(data):
    if not isinstance(data, dict) or "turns" not in data:
        return None
    extra = {}
    for src, dst in (("conversation_title", "title"),
                     ("key_takeaways", "keyTakeaways"),
                     ("context", "context")):
        if data.get(src):
            extra[dst] = data[src]
    return _build(data["turns"], "speaker", "turns", extra)


DECODERS = (decode_dojo, decode_wrapped, decode_turns, decode_bare_array)


def extract_conversation(data):
    """Try every conversation shape in priority order."""
    for decoder in DECODERS:
        result = decoder(data)
        if result is not None:
            return result
    return None
