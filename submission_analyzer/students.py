"""Student roster.

Fetches active student enrollments for a course and reduces them to the
roster entries the identity store consumes.
"""

from canvasapi import Canvas


def get_students(canvas: Canvas, course_id: int,
                 enrollment_type: str = "StudentEnrollment") -> list:
    """Fetch active enrollments of *enrollment_type* in a course.

    Returns a list of dicts with keys:
        lmsUserId, name, displayName, enrollmentType

    ``name`` is Canvas's sortable name ("Last, First") when available,
    which is what dashboards sort on.

    Raises RuntimeError on API failure.
    """
    try:
        course = canvas.get_course(course_id)
        enrollments = list(course.get_enrollments(
            type=[enrollment_type],
            state=["active"],
            include=["user"],
        ))
    except Exception as e:
        raise RuntimeError(f"Failed to fetch students for course {course_id}: {e}") from e

    students = []
    seen = set()
    for enrollment in enrollments:
        user_info = getattr(enrollment, "user", None) or {}
        if not user_info:
            continue
        if getattr(enrollment, "type", enrollment_type) != enrollment_type:
            continue

        user_id = user_info.get("id") or getattr(enrollment, "user_id", None)
        # A student enrolled in two sections shows up twice
        if user_id is None or user_id in seen:
            continue
        seen.add(user_id)

        students.append({
            "lmsUserId":      user_id,
            "name":           user_info.get("sortable_name") or user_info.get("name", ""),
            "displayName":    user_info.get("name", ""),
            "enrollmentType": enrollment_type,
        })

    return students
