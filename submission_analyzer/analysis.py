"""Quality analysis and student summaries.

Quality pass: every text or conversation submission of at least 20
characters is scored 1-5 against the assignment's rubric by the bulk
model. When a Canvas client is supplied, image uploads are fetched and
sent to the same model as vision input. Everything else keeps its
participation score and gets a null quality with a short reason.

Summary pass: each student's per-assignment rows are condensed into a
3-4 sentence narrative for the instructor by the analysis model.

Results go to ``<data>/<course>/analysis.json``; the ``discussions``
section written by the grade action is carried over untouched.
"""

import logging
import time
from datetime import datetime, timezone

import requests

from submission_analyzer.identity import IdentityMap
from submission_analyzer.indexer import initial_participation
from submission_analyzer.llm import (
    ANALYSIS_MODEL,
    BULK_MODEL,
    GRADING_MAX_TOKENS,
    SUMMARY_MAX_TOKENS,
    LlmError,
    extract_json,
)
from submission_analyzer.lms import LmsError
from submission_analyzer.rubrics import load_rubric
from submission_analyzer.storage import load_json, save_json

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 20
PROMPT_CONTENT_LIMIT = 4000
NOTES_LIMIT = 500
SUMMARY_LIMIT = 400
LLM_DELAY = 0.5

SUMMARY_FALLBACK = "Summary not available."

VISION_MEDIA_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
MAX_IMAGE_BYTES = 5 * 1024 * 1024

_SKIP_REASONS = {
    "pdf":           "PDF submission - participation only",
    "url":           "URL submission - participation only",
    "file":          "File could not be downloaded - participation only",
    "ai-discussion": "AI-discussion submission - graded separately",
}

_PARTICIPATION_LABELS = {
    1: "missing", 2: "low", 3: "late", 4: "on-time", 5: "on-time+substantive",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Prompts ──────────────────────────────────────────────────────────────────

def conversation_header(metadata: dict) -> str:
    return (
        f"[AI conversation transcript: {metadata.get('userTurns', 0)} student turns, "
        f"{metadata.get('userWords', 0)} student words, "
        f"{metadata.get('totalTurns', 0)} total turns]"
    )


def quality_prompt(title: str, course_name: str, rubric: str, content: str) -> str:
    return f"""You are evaluating a student submission for quality. Rate on a scale of 1-5 and give brief notes.

Assignment: "{title}" ({course_name})
Quality criteria: {rubric}

Student submission:
---
{content}
---

Rate the quality of this submission from 1-5:
1 = Minimal effort, generic/copied, no real engagement
2 = Below expectations, vague, lacks specifics
3 = Meets basic expectations, some specifics but surface-level
4 = Good, specific examples, genuine reflection/analysis
5 = Excellent, deep insight, specific actionable content

Respond in exactly this JSON format, nothing else:
{{"quality": <1-5>, "notes": "<one sentence summary of why>"}}"""


def summary_prompt(course_name: str, anon_id: str, snapshot: str) -> str:
    return f"""You are helping an instructor understand a student in {course_name}. Based on the assignment data below, write 3-4 sentences about this student's engagement pattern, whether their work shows depth or mere compliance, and how strong the signal is given the data available. Be specific and actionable, not generic. If data is limited, say so briefly.

Student: {anon_id}
Assignment data:
{snapshot}

Write the summary as plain text (no quotes, no label, no markdown)."""


# ── Quality pass ─────────────────────────────────────────────────────────────

def clamp_quality(value) -> int:
    try:
        quality = int(float(value))
    except (TypeError, ValueError):
        return 3
    return max(1, min(5, quality))


def image_skip_reason(record: dict, vision: bool):
    if not vision:
        return "Image submission - participation only"
    meta = record.get("metadata") or {}
    if meta.get("mime") not in VISION_MEDIA_TYPES:
        return f"Unsupported image type {meta.get('mime') or 'unknown'} - participation only"
    if (meta.get("size") or 0) > MAX_IMAGE_BYTES:
        return "Image too large for vision - participation only"
    if not meta.get("url"):
        return "Image has no download URL - participation only"
    return None


def skip_reason(record: dict, vision: bool = False):
    """Why *record* is not sent to the model, or None if it is eligible.

    Images are eligible only with *vision* and a supported, reasonably
    sized upload.
    """
    if record.get("missing"):
        return "Missing submission"
    ctype   = record.get("contentType")
    content = record.get("content")
    if ctype == "image":
        return image_skip_reason(record, vision)
    if ctype in _SKIP_REASONS:
        return _SKIP_REASONS[ctype]
    if ctype not in ("text", "conversation") or not content:
        return "No text content to analyze"
    if len(content) < MIN_CONTENT_LENGTH:
        return "Too little text to analyze"
    return None


def score_submission(llm, record: dict, title: str, course_name: str, rubric: str,
                     lms=None) -> dict:
    content = record["content"]
    images  = ()
    if record["contentType"] == "conversation":
        content = conversation_header(record.get("metadata") or {}) + "\n" + content
    elif record["contentType"] == "image":
        meta    = record.get("metadata") or {}
        images  = [(meta["mime"], lms.download_file_as_base64(meta["url"]))]
        content = f"{content} (the attached image is the student's submission)"

    reply = llm.complete(
        quality_prompt(title, course_name, rubric, content[:PROMPT_CONTENT_LIMIT]),
        model=BULK_MODEL,
        max_tokens=GRADING_MAX_TOKENS,
        images=images,
    )
    data = extract_json(reply)
    return {
        "quality": clamp_quality(data.get("quality")),
        "notes":   str(data.get("notes") or "")[:NOTES_LIMIT],
    }


def analyze_assignment(llm, course, key: str, entry: dict, records: dict,
                       rubric: str, sleep=time.sleep, lms=None) -> dict:
    """Score one assignment's shard; returns its AssignmentAnalysis dict.

    With *lms*, image uploads are downloaded and scored through vision.
    """
    students = {}
    calls = 0
    for anon_id, record in records.items():
        participation = record.get("participation") or initial_participation(record)
        row = {
            "participation": participation,
            "quality":       None,
            "qualityNotes":  "",
            "contentType":   record.get("contentType", "none"),
            "analyzedAt":    _now(),
        }

        reason = skip_reason(record, vision=lms is not None)
        if reason:
            row["qualityNotes"] = reason
            students[anon_id] = row
            continue

        if calls:
            sleep(LLM_DELAY)
        calls += 1
        try:
            result = score_submission(llm, record, entry["title"], course.name, rubric, lms=lms)
            row["quality"]      = result["quality"]
            row["qualityNotes"] = result["notes"]
        except LlmError as e:
            logger.error("  LLM error for %s/%s: %s", key, anon_id, e)
            row["qualityNotes"] = f"Analysis error: {e}"
        except (LmsError, requests.RequestException) as e:
            logger.error("  Image download failed for %s/%s: %s", key, anon_id, e)
            row["qualityNotes"] = f"Image download failed: {e}"
        row["analyzedAt"] = _now()
        students[anon_id] = row

    scored = sum(1 for r in students.values() if r["quality"] is not None)
    logger.info("  -> %d students, %d scored by LLM", len(students), scored)
    return {
        "title":      entry["title"],
        "type":       entry.get("type"),
        "points":     entry.get("points"),
        "sprint":     entry.get("sprint"),
        "week":       entry.get("week"),
        "dueDate":    entry.get("dueDate"),
        "students":   students,
        "analyzedAt": _now(),
    }


# ── Summary pass ─────────────────────────────────────────────────────────────

def student_rows(assignments: dict, anon_id: str) -> list:
    rows = []
    for a in assignments.values():
        sd = (a.get("students") or {}).get(anon_id)
        if sd:
            rows.append({
                "title":         a.get("title"),
                "sprint":        a.get("sprint"),
                "week":          a.get("week"),
                "participation": sd.get("participation"),
                "quality":       sd.get("quality"),
                "qualityNotes":  sd.get("qualityNotes"),
            })
    return rows


def student_snapshot(rows: list) -> str:
    lines = []
    for r in rows:
        part = _PARTICIPATION_LABELS.get(r["participation"], r["participation"])
        qual = f"quality {r['quality']}/5" if r["quality"] else "no text"
        note = f" - {r['qualityNotes']}" if r.get("qualityNotes") else ""
        lines.append(
            f"- {r['title']} (S{r['sprint']} W{r['week']}): participation={part}, {qual}{note}"
        )
    return "\n".join(lines)


def summarize_student(llm, course_name: str, anon_id: str, rows: list) -> str:
    try:
        text = llm.complete(
            summary_prompt(course_name, anon_id, student_snapshot(rows)),
            model=ANALYSIS_MODEL,
            max_tokens=SUMMARY_MAX_TOKENS,
        )
    except LlmError as e:
        logger.error("  Summary error for %s: %s", anon_id, e)
        return SUMMARY_FALLBACK
    return text.strip()[:SUMMARY_LIMIT] or SUMMARY_FALLBACK


# ── Whole course ─────────────────────────────────────────────────────────────

def analyze_course(llm, course, data, rubrics_dir, assignment_key=None,
                   sleep=time.sleep, lms=None) -> dict:
    """Run the analyze action for one course.

    Image submissions are scored only when *lms* is given.

    Returns counts ``{"assignments", "scored", "summaries"}``.
    """
    index    = load_json(data.submission_index(course.code))
    identity = IdentityMap.load(data.id_mapping(course.code), course.prefix)
    if not index or not len(identity):
        raise RuntimeError(
            f"No submission data found. Run download first: "
            f"--action=download --course={course.code}"
        )

    analysis_path = data.analysis(course.code)
    analysis = load_json(analysis_path) or {}
    analysis.setdefault("assignments", {})
    analysis.setdefault("discussions", {})
    analysis.setdefault("studentSummaries", {})

    if assignment_key:
        keys = [assignment_key]
    else:
        keys = [k for k, v in index.items() if not v.get("error")]

    counts = {"assignments": 0, "scored": 0, "summaries": 0}
    for key in keys:
        entry = index.get(key)
        if not entry or entry.get("error"):
            logger.warning("Skip %s: not downloaded", key)
            continue
        if entry.get("hasAiDiscussion"):
            logger.info("Skip %s: AI-discussion, use --action=grade", key)
            continue
        records = load_json(data.submissions(course.code, key))
        if records is None:
            logger.warning("Skip %s: no submissions shard", key)
            continue

        try:
            atype = course.assignment(key).type
        except ValueError:
            atype = entry.get("type") or "assignment"
        rubric = load_rubric(rubrics_dir, course.code, key, atype)

        logger.info("%s (%s)", entry["title"], key)
        result = analyze_assignment(llm, course, key, entry, records, rubric, sleep=sleep, lms=lms)
        analysis["assignments"][key] = result
        counts["assignments"] += 1
        counts["scored"] += sum(1 for r in result["students"].values() if r["quality"] is not None)

    logger.info("Generating student summaries...")
    first = True
    for anon_id in identity.anon_ids():
        rows = student_rows(analysis["assignments"], anon_id)
        if not rows:
            continue
        if not first:
            sleep(LLM_DELAY)
        first = False
        summary = summarize_student(llm, course.name, anon_id, rows)
        analysis["studentSummaries"][anon_id] = summary
        if summary != SUMMARY_FALLBACK:
            counts["summaries"] += 1

    analysis["lastUpdated"] = _now()
    save_json(analysis_path, analysis)
    return counts
