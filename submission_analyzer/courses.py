"""Course listing.

Fetches the courses the token's user teaches, used by the diagnostics
action to confirm that a configured course id is reachable.
"""

from canvasapi import Canvas


def get_courses(canvas: Canvas) -> list:
    """Fetch all courses where the user is enrolled as a teacher.

    Returns a list of dicts with keys: id, name, course_code, term.
    Raises RuntimeError on API failure.
    """
    try:
        courses = list(canvas.get_courses(
            enrollment_type="teacher",
            include=["term"],
        ))
    except Exception as e:
        raise RuntimeError(f"Failed to fetch courses: {e}") from e

    result = []
    for course in courses:
        term = getattr(course, "term", None)
        if term and isinstance(term, dict):
            term_name = term.get("name", "N/A")
        else:
            term_name = "N/A"
        result.append({
            "id":          course.id,
            "name":        getattr(course, "name", ""),
            "course_code": getattr(course, "course_code", ""),
            "term":        term_name,
        })
    return result
