"""Tests for download diagnostics."""

import io
from unittest.mock import MagicMock

import pytest
from PIL import Image

from submission_analyzer.config import AssignmentConfig, CourseConfig
from submission_analyzer.diagnostics import (
    check_bytes,
    check_course,
    diagnose_assignment,
    format_size,
)
from submission_analyzer.identity import IdentityMap


def _png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (4, 3), "red").save(buf, format="PNG")
    return buf.getvalue()


def _att(name, mime):
    return {"filename": name, "content-type": mime, "url": f"https://school/files/{name}", "size": 1}


def _course_and_assignment(canvas_type="assignment"):
    a = AssignmentConfig(key="lab", canvas_id="88102", title="Lab", due_date=None, type="assignment",
                         canvas_type=canvas_type, points=10, sprint=1, week=3)
    course = CourseConfig(code="cst349", name="CST349", prefix="CST349", semester="",
                          canvas_base_url="https://school.instructure.com/courses/31001", assignments=[a])
    return course, a


def _identity():
    return IdentityMap("CST349", {"CST349-01": {"lmsUserId": 101, "name": "Lee, Ana"}})


class TestFormatSize:

    def test_units(self):
        assert format_size(512) == "512 B"
        assert format_size(2048) == "2.0 KB"
        assert format_size(3 * 1_048_576) == "3.0 MB"


class TestCheckBytes:

    def test_image(self):
        assert check_bytes(_png_bytes(), "image/png", "a.png") == "image 4x3 RGB"

    def test_text(self):
        assert check_bytes(b"hello", "text/plain", "a.txt") == "text 5 chars"


class TestDiagnoseAssignment:

    def test_reports_ok_and_broken_files(self):
        course, assignment = _course_and_assignment()
        lms = MagicMock()
        lms.list_submissions.return_value = [
            {"user_id": 101, "attachments": [_att("shot.png", "image/png"), _att("bad.png", "image/png")]},
            {"user_id": 999, "attachments": [_att("stranger.txt", "text/plain")]},
        ]
        lms.download_file_bytes.side_effect = [_png_bytes(), b"not an image"]

        results = diagnose_assignment(lms, course, assignment, _identity())
        assert [r["filename"] for r in results] == ["shot.png", "bad.png"]
        assert results[0]["ok"] is True
        assert results[0]["anonId"] == "CST349-01"
        assert results[1]["ok"] is False
        assert results[1]["detail"].startswith("Decode failed")

    def test_download_failure_and_limit(self):
        course, assignment = _course_and_assignment()
        lms = MagicMock()
        lms.list_submissions.return_value = [
            {"user_id": 101, "attachments": [_att("a.txt", "text/plain"), _att("b.txt", "text/plain")]},
        ]
        lms.download_file_bytes.side_effect = RuntimeError("403")
        results = diagnose_assignment(lms, course, assignment, _identity(), limit=1)
        assert len(results) == 1
        assert results[0]["detail"] == "Download failed: 403"

    def test_quiz_uses_shadow_assignment(self):
        course, assignment = _course_and_assignment("quiz")
        lms = MagicMock()
        lms.get_quiz_assignment_id.return_value = 5501
        lms.list_submissions.return_value = []
        diagnose_assignment(lms, course, assignment, _identity())
        lms.list_submissions.assert_called_once_with("31001", 5501)


class TestCheckCourse:

    def _lms(self, course_ids=(31001,), assignment_ids=(88102,), quiz_ids=()):
        lms = MagicMock()
        lms.canvas.get_current_user.return_value.name = "Dr. Test"
        lms.list_courses.return_value = [{"id": i} for i in course_ids]
        lms.list_assignments.return_value = [{"id": i} for i in assignment_ids]
        lms.list_quizzes.return_value = [{"id": i} for i in quiz_ids]
        return lms

    def test_all_ids_known(self):
        course, _ = _course_and_assignment()
        assert check_course(self._lms(), course) == []

    def test_unknown_assignment_id(self):
        course, _ = _course_and_assignment()
        assert check_course(self._lms(assignment_ids=(1,)), course) == ["lab"]

    def test_quiz_id_checked_against_quizzes(self):
        course, _ = _course_and_assignment("quiz")
        assert check_course(self._lms(assignment_ids=(), quiz_ids=(88102,)), course) == []

    def test_course_not_visible(self):
        course, _ = _course_and_assignment()
        with pytest.raises(RuntimeError, match="not among your teaching courses"):
            check_course(self._lms(course_ids=(1,)), course)
