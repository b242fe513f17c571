"""Submission download.

For one course: refresh the identity map from the Canvas roster, then
for each configured assignment fetch the submissions, extract their
content, score initial participation and write one shard per
assignment plus the course-level submission index.
"""

import logging
from datetime import datetime, timezone

from submission_analyzer.content import NonePayload, TextPayload, extract_submission
from submission_analyzer.identity import IdentityMap
from submission_analyzer.lms import LmsError, ReportFailed, ReportTimeout
from submission_analyzer.quiz_reports import QuizReportFormatError, parse_quiz_report
from submission_analyzer.storage import load_json, save_json

logger = logging.getLogger(__name__)

SUBMITTED_STATES = {"submitted", "graded", "pending_review"}
SUBSTANTIVE_TEXT_LENGTH = 100
SUBSTANTIVE_USER_WORDS = 50


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Participation ────────────────────────────────────────────────────────────

def is_substantive(record: dict) -> bool:
    ctype   = record.get("contentType")
    content = record.get("content") or ""
    if ctype in ("text", "ai-discussion"):
        return len(content) >= SUBSTANTIVE_TEXT_LENGTH
    if ctype == "conversation":
        words = (record.get("metadata") or {}).get("userWords") or 0
        return words > SUBSTANTIVE_USER_WORDS
    return False


def is_submitted(record: dict) -> bool:
    return record.get("status") in SUBMITTED_STATES or record.get("content") is not None


def initial_participation(record: dict) -> int:
    """1..5 participation from submission state alone (no LLM).

    missing or unsubmitted -> 1, late -> 3, on time -> 4,
    on time with substantive content -> 5.
    """
    if record.get("missing"):
        return 1
    if not is_submitted(record):
        return 1
    if record.get("late"):
        return 3
    if is_substantive(record):
        return 5
    return 4


# ── Roster ───────────────────────────────────────────────────────────────────

def sync_identity(lms, course, data) -> IdentityMap:
    """Append newly enrolled students to the course's identity map."""
    path     = data.id_mapping(course.code)
    identity = IdentityMap.load(path, course.prefix)
    roster   = lms.list_enrollments(course.course_id)
    added    = identity.sync_roster(roster)
    identity.save(path)
    logger.info(
        "%s roster: %d students (%d new)", course.code, len(identity), len(added)
    )
    return identity


# ── One assignment ───────────────────────────────────────────────────────────

def _submission_record(anon_id: str, sub: dict, payload) -> dict:
    record = {
        "anonId":         anon_id,
        "status":         sub.get("workflow_state") or "unsubmitted",
        "submittedAt":    sub.get("submitted_at"),
        "late":           bool(sub.get("late")),
        "missing":        bool(sub.get("missing")),
        "score":          sub.get("score"),
        "submissionType": sub.get("submission_type"),
    }
    record.update(payload.to_dict())
    return record


def apply_quiz_fallback(lms, course_id, quiz_id, records: dict, identity) -> int:
    """Fill empty quiz submissions from the student-analysis report.

    Returns the number of students whose content was filled. A report
    that fails, times out or cannot be parsed leaves *records* as is.
    """
    pending = [
        r for r in records.values()
        if r["contentType"] == NonePayload.content_type and r["status"] != "unsubmitted"
    ]
    if not pending:
        return 0

    logger.info("  Fetching quiz report for %d empty submissions", len(pending))
    try:
        rows = parse_quiz_report(lms.generate_quiz_report(course_id, quiz_id))
    except (LmsError, ReportFailed, ReportTimeout, QuizReportFormatError) as e:
        logger.warning("  Quiz report unavailable for quiz %s: %s", quiz_id, e)
        return 0

    filled = 0
    for row in rows:
        anon_id = identity.anon_id_for(row.user_id)
        record  = records.get(anon_id)
        if not record or record["contentType"] != NonePayload.content_type:
            continue
        if record["status"] == "unsubmitted":
            continue
        text = row.answer_text()
        if not text:
            continue
        payload = TextPayload(text, source="quiz-report")
        record.update(payload.to_dict())
        filled += 1
    logger.info("  Quiz report: %d rows, content filled for %d students", len(rows), filled)
    return filled


def download_assignment(lms, course, assignment, identity) -> dict:
    """Fetch and normalise one assignment's submissions.

    Returns ``{anonId: Submission}``; raises on Canvas failures.
    """
    course_id = course.course_id
    if assignment.is_quiz:
        assignment_id = lms.get_quiz_assignment_id(course_id, assignment.canvas_id)
        logger.info("  quiz %s -> assignment %s", assignment.canvas_id, assignment_id)
    else:
        assignment_id = assignment.canvas_id

    records = {}
    for sub in lms.list_submissions(course_id, assignment_id):
        anon_id = identity.anon_id_for(sub.get("user_id"))
        if not anon_id:
            continue
        payload = extract_submission(sub, lms)
        records[anon_id] = _submission_record(anon_id, sub, payload)

    if assignment.is_quiz:
        apply_quiz_fallback(lms, course_id, assignment.canvas_id, records, identity)

    for record in records.values():
        record["participation"] = initial_participation(record)
    return records


def _index_entry(assignment, records: dict) -> dict:
    return {
        "title":            assignment.title,
        "type":             assignment.type,
        "canvasType":       assignment.canvas_type,
        "points":           assignment.points,
        "dueDate":          assignment.due_date.isoformat() if assignment.due_date else None,
        "sprint":           assignment.sprint,
        "week":             assignment.week,
        "hasAiDiscussion":  any(r["contentType"] == "ai-discussion" for r in records.values()),
        "totalSubmissions": len(records),
        "withContent":      sum(1 for r in records.values() if r["content"] is not None),
        "downloadedAt":     _now(),
    }


# ── Whole course ─────────────────────────────────────────────────────────────

def download_course(lms, course, data, assignment_key=None) -> dict:
    """Run the download action for one course.

    Returns counts ``{"students", "downloaded", "skipped", "errors"}``.
    A failing assignment is recorded in the index and the loop goes on.
    """
    identity = sync_identity(lms, course, data)

    if assignment_key:
        targets = [course.assignment(assignment_key)]
    else:
        targets = course.assignments

    index_path = data.submission_index(course.code)
    index = load_json(index_path) or {}
    counts = {"students": len(identity), "downloaded": 0, "skipped": 0, "errors": 0}

    for assignment in targets:
        if not assignment.downloadable:
            logger.info("Skip %s: no Canvas id", assignment.key)
            counts["skipped"] += 1
            continue

        logger.info("%s (%s)", assignment.title, assignment.key)
        try:
            records = download_assignment(lms, course, assignment, identity)
        except Exception as e:
            logger.error("  %s failed: %s", assignment.key, e)
            index[assignment.key] = {
                "title":        assignment.title,
                "error":        str(e),
                "downloadedAt": _now(),
            }
            counts["errors"] += 1
            continue

        save_json(data.submissions(course.code, assignment.key), records)
        index[assignment.key] = _index_entry(assignment, records)
        counts["downloaded"] += 1
        logger.info(
            "  -> %d submissions (%d with content)",
            len(records), index[assignment.key]["withContent"],
        )

    save_json(index_path, index)
    return counts
