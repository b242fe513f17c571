"""Submission reads and grade posting.

Fetches every submission of an assignment as plain dicts in Canvas's
own field names, and posts a score and comment to one student's
submission.
"""

from canvasapi import Canvas


def _field(obj, name, default=None):
    """Read *name* from a canvasapi object or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _attachment_dict(att) -> dict:
    return {
        "id":           _field(att, "id"),
        "filename":     _field(att, "filename", "unknown") or "unknown",
        "content-type": _field(att, "content-type", "") or _field(att, "content_type", "") or "",
        "url":          _field(att, "url", "") or "",
        "size":         _field(att, "size", 0) or 0,
    }


def _comment_dicts(raw_comments) -> list:
    comments = []
    for c in raw_comments or []:
        text = _field(c, "comment", "")
        if text:
            comments.append({
                "author": _field(c, "author_name", "?"),
                "text":   text,
                "date":   (_field(c, "created_at", "") or "")[:10],
            })
    return comments


def list_submissions(canvas: Canvas, course_id: int,
                     assignment_id: int) -> list:
    """Fetch all submissions for an assignment.

    Returns a list of dicts with keys:
        id, user_id, user_name, body, url, submitted_at, graded_at,
        attempt, workflow_state, score, late, missing,
        submission_type, attachments, submission_comments.

    ``attachments`` entries carry filename, content-type, url and size.

    Raises RuntimeError on API failure.
    """
    try:
        course = canvas.get_course(course_id)
        assignment = course.get_assignment(assignment_id)
        submissions = list(assignment.get_submissions(
            include=["user", "submission_comments"],
        ))
    except Exception as e:
        raise RuntimeError(
            f"Failed to fetch submissions for assignment {assignment_id} "
            f"in course {course_id}: {e}"
        ) from e

    result = []
    for sub in submissions:
        user_info = getattr(sub, "user", None) or {}
        raw_atts  = getattr(sub, "attachments", None) or []

        result.append({
            "id":              sub.id,
            "user_id":         sub.user_id,
            "user_name":       user_info.get("name", "Unknown"),
            "body":            getattr(sub, "body", None) or "",
            "url":             getattr(sub, "url", None) or "",
            "submitted_at":    getattr(sub, "submitted_at", None),
            "graded_at":       getattr(sub, "graded_at", None),
            "attempt":         getattr(sub, "attempt", None) or 1,
            "workflow_state":  getattr(sub, "workflow_state", "unsubmitted"),
            "score":           getattr(sub, "score", None),
            "late":            bool(getattr(sub, "late", False)),
            "missing":         bool(getattr(sub, "missing", False)),
            "submission_type": getattr(sub, "submission_type", None),
            "attachments":     [_attachment_dict(a) for a in raw_atts],
            "submission_comments": _comment_dicts(
                getattr(sub, "submission_comments", None)
            ),
        })

    return result


def grade_submission(canvas: Canvas, course_id: int, assignment_id: int,
                     user_id: int, grade, comment: str = None):
    """Post a score, and an optional comment, to one student's submission.

    Returns the edited submission object.
    Raises RuntimeError on API failure.
    """
    try:
        course     = canvas.get_course(course_id)
        assignment = course.get_assignment(assignment_id)
        sub        = assignment.get_submission(user_id)
        return sub.edit(
            submission={"posted_grade": grade},
            comment={"text_comment": comment} if comment else {},
        )
    except Exception as e:
        raise RuntimeError(
            f"Failed to post grade for user {user_id} on assignment "
            f"{assignment_id}: {e}"
        ) from e
