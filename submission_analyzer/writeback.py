"""Posting reviewed grades back to Canvas.

Input is the grade-decision JSON downloaded from a discussion dashboard:

    [{"anonId", "studentName", "lmsUserId", "writingScore",
      "discussionScore", "writingFeedback", "discussionFeedback",
      "overallNote", "totalScore"}, ...]

Current Canvas scores are read once up front; a decision whose total
already matches is left alone, so re-running with the same file writes
nothing.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

WRITE_DELAY = 0.2

# Older dashboards exported the Canvas user id under these names.
_LEGACY_USER_ID_KEYS = ("canvasUserId", "canvasId")


@dataclass
class WritebackReport:
    posted: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)
    would_post: list = field(default_factory=list)
    dry_run: bool = True

    def summary(self) -> str:
        parts = [
            f"Posted: {self.posted}",
            f"Unchanged: {self.unchanged}",
            f"Skipped: {self.skipped}",
            f"Errors: {len(self.errors)}",
        ]
        if self.dry_run:
            parts.append(f"Would post: {len(self.would_post)}")
        return ", ".join(parts)


def load_decisions(path) -> list:
    """Read a grade-decision file; ``lmsUserId`` is filled from legacy keys."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("grades") or list(data.values())
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of grade decisions")

    decisions = []
    for d in data:
        if not isinstance(d, dict):
            continue
        d = dict(d)
        if d.get("lmsUserId") is None:
            for key in _LEGACY_USER_ID_KEYS:
                if d.get(key) is not None:
                    d["lmsUserId"] = d[key]
                    break
        decisions.append(d)
    return decisions


def build_comment(decision: dict) -> str:
    lines = [
        f"Writing: {decision.get('writingScore')}/5 — {decision.get('writingFeedback') or ''}".rstrip(),
        f"Discussion: {decision.get('discussionScore')}/5 — {decision.get('discussionFeedback') or ''}".rstrip(),
    ]
    if decision.get("overallNote"):
        lines.append(f"\n{decision['overallNote']}")
    return "\n".join(lines)


def _same_score(current, total) -> bool:
    if current is None:
        return False
    try:
        return float(current) == float(total)
    except (TypeError, ValueError):
        return False


def post_grades(lms, course_id, assignment_id, decisions: list, dry_run: bool = True,
                limit: int = None, sleep=time.sleep, progress_cb=None) -> WritebackReport:
    """Post each decision's total and comment unless Canvas already has it.

    progress_cb(i, total, name) is called before each decision.
    """
    report = WritebackReport(dry_run=dry_run)
    current = {
        str(s["user_id"]): s.get("score")
        for s in lms.list_submissions(course_id, assignment_id)
    }

    writes = 0
    for i, d in enumerate(decisions):
        label = d.get("anonId") or d.get("studentName") or "?"
        if progress_cb:
            progress_cb(i + 1, len(decisions), label)

        user_id = d.get("lmsUserId")
        total   = d.get("totalScore")
        if user_id is None:
            logger.warning("Skip %s: no Canvas user id", label)
            report.skipped += 1
            continue
        if total is None:
            logger.warning("Skip %s: no score", label)
            report.skipped += 1
            continue
        if _same_score(current.get(str(user_id)), total):
            logger.info("Unchanged %s: %s", label, total)
            report.unchanged += 1
            continue
        if limit is not None and writes >= limit:
            logger.info("Skip %s: limit of %d reached", label, limit)
            report.skipped += 1
            continue

        writes += 1
        comment = build_comment(d)
        if dry_run:
            logger.info("Would post %s: %s/10", label, total)
            report.would_post.append({"anonId": d.get("anonId"), "lmsUserId": user_id, "totalScore": total})
            continue

        if report.posted or report.errors:
            sleep(WRITE_DELAY)
        try:
            lms.grade_submission(course_id, assignment_id, user_id, total, comment)
        except Exception as e:
            logger.error("Failed %s: %s", label, e)
            report.errors.append(f"{label}: {e}")
            continue
        logger.info("Posted %s: %s/10", label, total)
        report.posted += 1

    logger.info(report.summary())
    return report
