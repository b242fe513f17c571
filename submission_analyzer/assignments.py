"""Assignments & quizzes.

Lists assignments and quizzes for a course and resolves a classic quiz
to the shadow assignment that holds its submissions.
"""

from canvasapi import Canvas
from canvasapi.exceptions import ResourceDoesNotExist


def list_assignments(canvas: Canvas, course_id: int) -> list:
    """Fetch all assignments for a course.

    Returns a list of dicts with keys:
        id, name, points_possible, due_at, submission_types,
        published, quiz_id.

    Raises RuntimeError on API failure.
    """
    try:
        course = canvas.get_course(course_id)
        assignments = list(course.get_assignments())
    except Exception as e:
        raise RuntimeError(
            f"Failed to fetch assignments for course {course_id}: {e}"
        ) from e

    result = []
    for a in assignments:
        result.append({
            "id": a.id,
            "name": a.name,
            "points_possible": getattr(a, "points_possible", None) or 0,
            "due_at": getattr(a, "due_at", None),
            "submission_types": getattr(a, "submission_types", []),
            "published": getattr(a, "published", False),
            "quiz_id": getattr(a, "quiz_id", None),
        })

    return result


def list_quizzes(canvas: Canvas, course_id: int) -> list:
    """Fetch all classic quizzes for a course.

    Returns a list of dicts with keys:
        id, title, assignment_id, quiz_type, points_possible, due_at.

    Raises RuntimeError on API failure.
    """
    try:
        course = canvas.get_course(course_id)
        quizzes = list(course.get_quizzes())
    except Exception as e:
        raise RuntimeError(
            f"Failed to fetch quizzes for course {course_id}: {e}"
        ) from e

    return [
        {
            "id": q.id,
            "title": getattr(q, "title", ""),
            "assignment_id": getattr(q, "assignment_id", None),
            "quiz_type": getattr(q, "quiz_type", None),
            "points_possible": getattr(q, "points_possible", None) or 0,
            "due_at": getattr(q, "due_at", None),
        }
        for q in quizzes
    ]


def get_quiz_assignment_id(canvas: Canvas, course_id: int, quiz_id) -> int:
    """Return the assignment id that holds a quiz's submissions.

    Classic quizzes are linked to a shadow assignment through
    ``assignment_id``. New-style quizzes are not found by the classic
    quiz endpoint; for them the caller's id already is the assignment id.

    Raises RuntimeError on API failure or if a classic quiz has no
    linked assignment.
    """
    try:
        course = canvas.get_course(course_id)
        quiz = course.get_quiz(quiz_id)
    except ResourceDoesNotExist:
        return int(quiz_id)
    except Exception as e:
        raise RuntimeError(
            f"Failed to fetch quiz {quiz_id} in course {course_id}: {e}"
        ) from e

    shadow_id = getattr(quiz, "assignment_id", None)
    if not shadow_id:
        raise RuntimeError(
            f"Quiz {quiz_id} has no linked assignment; cannot fetch submissions"
        )
    return int(shadow_id)
