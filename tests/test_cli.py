"""Tests for the command-line entry point."""

import os
from unittest.mock import MagicMock, patch

import pytest

import app
from submission_analyzer.config import load_course_config
from submission_analyzer.storage import DataDir


def _fake_steps(calls, fail_on=None):
    def make(name):
        def step(ctx):
            calls.append((ctx.course.code, name))
            if fail_on == (ctx.course.code, name):
                raise RuntimeError("boom")
            return {"ok": 1}
        return step
    return {name: make(name) for name in app.STEPS}


class TestArguments:

    def test_action_is_required(self):
        with pytest.raises(SystemExit) as exc:
            app.main([])
        assert exc.value.code == 2

    def test_unknown_course(self):
        with pytest.raises(SystemExit) as exc:
            app.main(["--action=download", "--course=cst999"])
        assert exc.value.code == 2

    def test_post_grades_needs_assignment(self):
        with pytest.raises(SystemExit) as exc:
            app.main(["--action=post-grades", "--course=cst349"])
        assert exc.value.code == 2

    def test_dry_run_parsing(self):
        args = app.build_parser().parse_args(["--action=post-grades", "--dry-run=false"])
        assert args.dry_run is False
        assert app.build_parser().parse_args(["--action=grade"]).dry_run is True


class TestDispatch:

    def test_missing_credentials_is_fatal(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            assert app.main(["--action=download", f"--data-dir={tmp_path}"]) == 2

    def test_missing_anthropic_key_is_fatal(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            assert app.main(["--action=analyze", f"--data-dir={tmp_path}"]) == 2

    def test_full_runs_steps_in_order_for_both_courses(self, tmp_path):
        calls = []
        with patch.object(app, "STEPS", _fake_steps(calls)), \
             patch.object(app, "build_clients", return_value=(MagicMock(), MagicMock())):
            assert app.main(["--action=full", f"--data-dir={tmp_path}"]) == 0
        assert calls == [
            ("cst349", "download"), ("cst349", "analyze"), ("cst349", "grade"), ("cst349", "dashboard"),
            ("cst395", "download"), ("cst395", "analyze"), ("cst395", "grade"), ("cst395", "dashboard"),
        ]

    def test_course_failure_continues_with_next_course(self, tmp_path):
        calls = []
        steps = _fake_steps(calls, fail_on=("cst349", "analyze"))
        with patch.object(app, "STEPS", steps), \
             patch.object(app, "build_clients", return_value=(MagicMock(), MagicMock())):
            assert app.main(["--action=full", f"--data-dir={tmp_path}"]) == 1
        assert ("cst349", "grade") not in calls
        assert ("cst395", "dashboard") in calls

    def test_dashboard_without_canvas_credentials(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            lms, llm = app.build_clients("dashboard")
        assert lms is None
        assert llm is None

    def test_analyze_runs_without_canvas_credentials(self):
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-test"}, clear=True):
            lms, llm = app.build_clients("analyze")
        assert lms is None
        assert llm is not None


class TestPostGrades:

    def test_resolves_quiz_and_reads_default_grades_file(self, tmp_path):
        course = load_course_config("cst349")
        data = DataDir(tmp_path)
        grades = data.default_grades_file("cst349", "s1-intro-quiz")
        grades.parent.mkdir(parents=True)
        grades.write_text('[{"anonId": "CST349-01", "lmsUserId": 42, "totalScore": 8}]')

        lms = MagicMock()
        lms.get_quiz_assignment_id.return_value = 5501
        lms.list_submissions.return_value = [{"user_id": 42, "score": 8}]
        ctx = app.PipelineContext(
            lms=lms, llm=None, course=course, data=data,
            rubrics_dir=tmp_path, activities_dir=tmp_path,
            assignment="s1-intro-quiz", dry_run=False, sleep=lambda s: None,
        )

        counts = app.run_post_grades(ctx)
        assert counts["unchanged"] == 1
        assert counts["posted"] == 0
        lms.list_submissions.assert_called_once_with("31001", 5501)
        lms.grade_submission.assert_not_called()
