"""Download diagnostics.

check_course() confirms the token can see the configured course and that
every configured Canvas id exists there. diagnose_assignment() re-fetches
one assignment's uploaded files through the two-hop client and checks
that what comes back is usable: byte count, and for images and PDFs
whether the bytes actually decode.
"""

import io
import logging

from submission_analyzer.auth import verify_connection
from submission_analyzer.content import extract_docx_text

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    elif size < 1_048_576:
        return f"{size / 1024:.1f} KB"
    else:
        return f"{size / 1_048_576:.1f} MB"


def check_image(data: bytes) -> str:
    from PIL import Image

    img = Image.open(io.BytesIO(data))
    img.verify()
    return f"image {img.width}x{img.height} {img.mode}"


def check_pdf(data: bytes) -> str:
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    chars  = sum(len(page.extract_text() or "") for page in reader.pages)
    return f"pdf {len(reader.pages)} pages, {chars} chars of text"


def check_docx(data: bytes) -> str:
    return f"docx {len(extract_docx_text(data))} chars of text"


def check_course(lms, course) -> list:
    """Return keys of configured assignments Canvas does not know about.

    Raises RuntimeError when the course is not among the user's courses.
    """
    user = verify_connection(lms.canvas)
    logger.info("Connected as %s", getattr(user, "name", "?"))

    course_id = course.course_id
    if not any(str(c["id"]) == course_id for c in lms.list_courses()):
        raise RuntimeError(f"Course {course_id} is not among your teaching courses")

    assignment_ids = {str(a["id"]) for a in lms.list_assignments(course_id)}
    quiz_ids       = {str(q["id"]) for q in lms.list_quizzes(course_id)}
    unknown = []
    for a in course.assignments:
        if not a.canvas_id:
            continue
        known = assignment_ids | quiz_ids if a.is_quiz else assignment_ids
        if a.canvas_id not in known:
            logger.warning("%s: Canvas id %s not found in course %s", a.key, a.canvas_id, course_id)
            unknown.append(a.key)
    return unknown


def check_bytes(data: bytes, mime: str, filename: str) -> str:
    """Describe *data*; raises if an image/PDF/docx does not decode."""
    lname = filename.lower()
    if mime.startswith("image/"):
        return check_image(data)
    if mime == "application/pdf" or lname.endswith(".pdf"):
        return check_pdf(data)
    if "wordprocessingml" in mime or lname.endswith(".docx"):
        return check_docx(data)
    return f"text {len(data.decode('utf-8', errors='replace'))} chars"


def diagnose_assignment(lms, course, assignment, identity, limit=None) -> list:
    """Re-download up to *limit* attachments; one result dict per file.

    Each result: ``{anonId, filename, mime, ok, size, detail}``.
    """
    limit = DEFAULT_LIMIT if limit is None else limit
    course_id = course.course_id
    assignment_id = assignment.canvas_id
    if assignment.is_quiz:
        assignment_id = lms.get_quiz_assignment_id(course_id, assignment.canvas_id)

    results = []
    for sub in lms.list_submissions(course_id, assignment_id):
        anon_id = identity.anon_id_for(sub.get("user_id"))
        if not anon_id:
            continue
        for att in sub.get("attachments") or []:
            if len(results) >= limit:
                return results
            filename = att.get("filename") or "unknown"
            mime     = (att.get("content-type") or "").lower()
            result   = {
                "anonId":   anon_id,
                "filename": filename,
                "mime":     mime,
                "ok":       False,
                "size":     0,
                "detail":   "",
            }
            try:
                data = lms.download_file_bytes(att.get("url") or "")
            except Exception as e:
                result["detail"] = f"Download failed: {e}"
                logger.error("  %s %s: %s", anon_id, filename, result["detail"])
                results.append(result)
                continue

            result["size"] = len(data)
            try:
                result["detail"] = check_bytes(data, mime, filename)
                result["ok"] = True
            except Exception as e:
                result["detail"] = f"Decode failed: {e}"
            log = logger.info if result["ok"] else logger.error
            log("  %s %s (%s): %s", anon_id, filename, format_size(len(data)), result["detail"])
            results.append(result)
    return results
