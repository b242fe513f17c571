"""Submission content extraction.

Turns a Canvas submission (text entry, URL, or uploaded file) into a
typed content payload:

  text           plain text entry, text-like upload, .docx, quiz answers
  conversation   chat transcript JSON (see conversations.py)
  ai-discussion  activity-engine JSON with an ai-discussion question
  image / pdf    placeholder only; the binary is fetched later if needed
  url            the submitted URL
  file           upload that could not be downloaded
  none           nothing submitted
"""

import io
import json
import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import ClassVar

from submission_analyzer.conversations import CONVERSATION_LIMIT, extract_conversation

logger = logging.getLogger(__name__)

TEXT_LIMIT = 5_000
ACTIVITY_LIMIT = 10_000
PLACEHOLDER_LIMIT = CONVERSATION_LIMIT


# ── HTML → plain text ────────────────────────────────────────────────────────

class _HTMLStripper(HTMLParser):
    def __init__(self):
        super().__init__()
        self.parts = []

    def handle_data(self, data):
        self.parts.append(data)

    def get_text(self) -> str:
        return re.sub(r"\s+", " ", " ".join(self.parts)).strip()


def strip_html(html: str) -> str:
    if not html:
        return ""
    s = _HTMLStripper()
    s.feed(html)
    s.close()
    return s.get_text()


# ── Payload variants ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ContentPayload:
    content_type: ClassVar[str] = "none"
    limit: ClassVar[int] = None

    @property
    def content(self):
        return None

    def metadata(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {
            "contentType": self.content_type,
            "content":     self.content,
            "metadata":    self.metadata(),
        }


@dataclass(frozen=True)
class NonePayload(ContentPayload):
    content_type: ClassVar[str] = "none"


@dataclass(frozen=True)
class TextPayload(ContentPayload):
    content_type: ClassVar[str] = "text"
    limit: ClassVar[int] = TEXT_LIMIT

    text: str = ""
    source: str = "body"
    filename: str = None

    def __post_init__(self):
        object.__setattr__(self, "text", (self.text or "")[:self.limit])

    @property
    def content(self):
        return self.text

    def metadata(self) -> dict:
        meta = {"source": self.source}
        if self.filename:
            meta["filename"] = self.filename
        return meta


@dataclass(frozen=True)
class ConversationPayload(ContentPayload):
    content_type: ClassVar[str] = "conversation"
    limit: ClassVar[int] = CONVERSATION_LIMIT

    transcript: str = ""
    conversation: dict = field(default_factory=dict)
    filename: str = None

    def __post_init__(self):
        object.__setattr__(self, "transcript", (self.transcript or "")[:self.limit])

    @property
    def content(self):
        return self.transcript

    def metadata(self) -> dict:
        meta = dict(self.conversation)
        if self.filename:
            meta["filename"] = self.filename
        return meta


@dataclass(frozen=True)
class ActivityPayload(ContentPayload):
    content_type: ClassVar[str] = "ai-discussion"
    limit: ClassVar[int] = ACTIVITY_LIMIT

    raw: str = ""
    activity_data: dict = field(default_factory=dict)
    filename: str = None

    def __post_init__(self):
        object.__setattr__(self, "raw", (self.raw or "")[:self.limit])

    @property
    def content(self):
        return self.raw

    def metadata(self) -> dict:
        responses = self.activity_data.get("responses") or []
        meta = {
            "activityId": self.activity_data.get("activityId"),
            "responseCount": len(responses),
            "discussionCount": sum(
                1 for r in responses
                if isinstance(r, dict) and r.get("questionType") == "ai-discussion"
            ),
        }
        if self.filename:
            meta["filename"] = self.filename
        return meta

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["activityData"] = self.activity_data
        return data


@dataclass(frozen=True)
class _AttachmentPlaceholder(ContentPayload):
    label: ClassVar[str] = "File"
    limit: ClassVar[int] = PLACEHOLDER_LIMIT

    filename: str = "unknown"
    mime: str = ""
    url: str = ""
    size: int = 0

    @property
    def content(self):
        return f"[{self.label}: {self.filename}]"[:self.limit]

    def metadata(self) -> dict:
        return {
            "filename": self.filename,
            "mime":     self.mime,
            "url":      self.url,
            "size":     self.size,
        }


@dataclass(frozen=True)
class ImagePayload(_AttachmentPlaceholder):
    content_type: ClassVar[str] = "image"
    label: ClassVar[str] = "Image"


@dataclass(frozen=True)
class PdfPayload(_AttachmentPlaceholder):
    content_type: ClassVar[str] = "pdf"
    label: ClassVar[str] = "PDF"


@dataclass(frozen=True)
class FilePayload(_AttachmentPlaceholder):
    content_type: ClassVar[str] = "file"
    label: ClassVar[str] = "File"

    error: str = ""

    def metadata(self) -> dict:
        meta = super().metadata()
        if self.error:
            meta["error"] = self.error
        return meta


@dataclass(frozen=True)
class UrlPayload(ContentPayload):
    content_type: ClassVar[str] = "url"
    limit: ClassVar[int] = PLACEHOLDER_LIMIT

    url: str = ""

    def __post_init__(self):
        object.__setattr__(self, "url", (self.url or "")[:self.limit])

    @property
    def content(self):
        return self.url

    def metadata(self) -> dict:
        return {}


# ── JSON decoders ────────────────────────────────────────────────────────────

def decode_bare_conversation(data, filename=None):
    """A bare ``[{role, content}, ...]`` array, or None."""
    if not isinstance(data, list):
        return None
    convo = extract_conversation(data)
    if convo is None:
        return None
    return ConversationPayload(convo.transcript, convo.metadata(), filename)


def decode_activity(data, raw_text, filename=None):
    """Activity-engine export, or None when *data* is not one.

    An export without an ai-discussion response is plain text.
    """
    if not isinstance(data, dict) or "activityId" not in data or "responses" not in data:
        return None
    responses = data.get("responses") or []
    has_discussion = any(
        isinstance(r, dict) and r.get("questionType") == "ai-discussion"
        for r in responses
    )
    if not has_discussion:
        return TextPayload(raw_text, source="activity", filename=filename)

    activity_data = {
        "activityId":  data.get("activityId"),
        "studentName": data.get("studentName") or "",
        "authorName":  data.get("authorName") or "",
        "submittedAt": data.get("submittedAt"),
        "responses":   responses,
    }
    return ActivityPayload(raw_text, activity_data, filename)


def decode_conversation_object(data, filename=None):
    if not isinstance(data, dict):
        return None
    convo = extract_conversation(data)
    if convo is None:
        return None
    return ConversationPayload(convo.transcript, convo.metadata(), filename)


def classify_json(raw_text: str, filename=None) -> ContentPayload:
    """Classify an uploaded ``.json`` file; anything unrecognised is text."""
    try:
        data = json.loads(raw_text)
    except ValueError:
        return TextPayload(raw_text, source="attachment", filename=filename)

    if isinstance(data, list):
        decoders = (lambda: decode_bare_conversation(data, filename),)
    else:
        decoders = (
            lambda: decode_activity(data, raw_text, filename),
            lambda: decode_conversation_object(data, filename),
        )
    for decode in decoders:
        payload = decode()
        if payload is not None:
            return payload
    return TextPayload(raw_text, source="attachment", filename=filename)


# ── .docx ────────────────────────────────────────────────────────────────────

def extract_docx_text(data: bytes) -> str:
    """Paragraph and table text of a Word document."""
    import docx as docxlib

    doc   = docxlib.Document(io.BytesIO(data))
    parts = []

    for p in doc.paragraphs:
        t = p.text.strip()
        if t:
            parts.append(t)

    for tbl in doc.tables:
        rows = []
        for row in tbl.rows:
            cells = [c.text.strip() for c in row.cells if c.text.strip()]
            if cells:
                rows.append(" | ".join(cells))
        if rows:
            parts.append("\n".join(rows))

    return "\n".join(parts)


# ── Main entry points ────────────────────────────────────────────────────────

def _is_docx(mime: str, filename: str) -> bool:
    return "wordprocessingml" in mime or filename.lower().endswith(".docx")


def extract_attachment(att: dict, lms) -> ContentPayload:
    """Payload for an uploaded file; downloads text-like files via *lms*."""
    filename = att.get("filename") or "unknown"
    mime     = (att.get("content-type") or att.get("content_type") or "").lower()
    url      = att.get("url") or ""
    size     = att.get("size") or 0

    if mime.startswith("image/"):
        return ImagePayload(filename, mime, url, size)
    if mime == "application/pdf":
        return PdfPayload(filename, mime, url, size)

    try:
        data = lms.download_file_bytes(url)
    except Exception as e:
        logger.warning("Could not download %s: %s", filename, e)
        return FilePayload(filename, mime, url, size, error=f"Download failed: {e}")

    if _is_docx(mime, filename):
        try:
            text = extract_docx_text(data)
        except Exception as e:
            logger.warning("Could not parse %s: %s", filename, e)
            return FilePayload(filename, mime, url, size, error=f"Parse error: {e}")
        return TextPayload(text, source="docx", filename=filename)

    raw_text = data.decode("utf-8", errors="replace")

    if filename.lower().endswith(".json"):
        return classify_json(raw_text, filename)
    return TextPayload(raw_text, source="attachment", filename=filename)


def extract_submission(sub: dict, lms) -> ContentPayload:
    """Payload for one submission dict as returned by list_submissions()."""
    stype = sub.get("submission_type")

    if stype == "online_text_entry" and sub.get("body"):
        return TextPayload(strip_html(sub["body"]), source="body")

    if stype == "online_url":
        return UrlPayload(sub.get("url") or "")

    if stype == "online_upload":
        attachments = sub.get("attachments") or []
        if attachments:
            return extract_attachment(attachments[0], lms)

    return NonePayload()
