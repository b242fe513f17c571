"""Tests for the quality-analysis and summary passes."""

from unittest.mock import MagicMock

import pytest

from submission_analyzer.analysis import (
    SUMMARY_FALLBACK,
    analyze_assignment,
    analyze_course,
    clamp_quality,
    skip_reason,
)
from submission_analyzer.config import CourseConfig
from submission_analyzer.identity import IdentityMap
from submission_analyzer.llm import ANALYSIS_MODEL, BULK_MODEL, LlmError
from submission_analyzer.lms import LmsError
from submission_analyzer.rubrics import DEFAULT_RUBRICS, load_rubric
from submission_analyzer.storage import DataDir, load_json, save_json


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _course():
    return CourseConfig(
        code="cst349", name="CST349", prefix="CST349", semester="Spring 2026",
        canvas_base_url="https://school.instructure.com/courses/31001",
    )


def _record(ctype="text", content="A thoughtful answer about closures and scope.", **extra):
    record = {"contentType": ctype, "content": content, "metadata": {},
              "status": "submitted", "participation": 4}
    record.update(extra)
    return record


def _entry(title="Lab 1"):
    return {"title": title, "type": "assignment", "points": 10, "sprint": 1, "week": 3, "dueDate": "2026-02-03"}


def _mock_llm(*replies):
    llm = MagicMock()
    llm.complete.side_effect = list(replies)
    return llm


# ===========================================================================
# helpers
# ===========================================================================

class TestSkipReason:

    @pytest.mark.parametrize("ctype", ["image", "pdf", "url", "file", "ai-discussion"])
    def test_non_text_types(self, ctype):
        assert skip_reason(_record(ctype, "[x]")) is not None

    def test_missing(self):
        assert skip_reason(_record(missing=True)) == "Missing submission"

    def test_short_text(self):
        assert skip_reason(_record(content="too short")) == "Too little text to analyze"

    def test_no_content(self):
        assert skip_reason(_record("none", None)) == "No text content to analyze"

    def test_eligible(self):
        assert skip_reason(_record()) is None
        assert skip_reason(_record("conversation", "[Student] hello there model")) is None


class TestClampQuality:

    def test_clamps(self):
        assert clamp_quality(9) == 5
        assert clamp_quality(0) == 1
        assert clamp_quality("4") == 4

    def test_non_numeric_defaults_to_3(self):
        assert clamp_quality("great") == 3
        assert clamp_quality(None) == 3


class TestRubrics:

    def test_course_file_wins(self, tmp_path):
        (tmp_path / "cst349").mkdir()
        (tmp_path / "cst349" / "lab.txt").write_text("Course rubric\n")
        (tmp_path / "lab.txt").write_text("Shared rubric")
        assert load_rubric(tmp_path, "cst349", "lab", "assignment") == "Course rubric"

    def test_default_by_type(self, tmp_path):
        assert load_rubric(tmp_path, "cst349", "x", "reflection") == DEFAULT_RUBRICS["reflection"]
        assert load_rubric(tmp_path, "cst349", "x", "bridge") == DEFAULT_RUBRICS["assignment"]


# ===========================================================================
# analyze_assignment
# ===========================================================================

class TestAnalyzeAssignment:

    def test_scores_text_and_skips_others(self):
        llm = _mock_llm('{"quality": 4, "notes": "Specific examples."}')
        records = {
            "CST349-01": _record(),
            "CST349-02": _record("image", "[Image: a.png]"),
            "CST349-03": _record("none", None, participation=1),
        }
        result = analyze_assignment(llm, _course(), "lab", _entry(), records, "rubric", sleep=lambda s: None)

        students = result["students"]
        assert students["CST349-01"]["quality"] == 4
        assert students["CST349-01"]["qualityNotes"] == "Specific examples."
        assert students["CST349-02"]["quality"] is None
        assert students["CST349-02"]["participation"] == 4
        assert students["CST349-03"]["participation"] == 1
        assert llm.complete.call_count == 1
        assert llm.complete.call_args.kwargs["model"] == BULK_MODEL

    def test_prompt_contains_rubric_and_content(self):
        llm = _mock_llm('{"quality": 3, "notes": "ok"}')
        analyze_assignment(llm, _course(), "lab", _entry("Lab 1"), {"CST349-01": _record()},
                           "Mention closures", sleep=lambda s: None)
        prompt = llm.complete.call_args.args[0]
        assert 'Assignment: "Lab 1" (CST349)' in prompt
        assert "Mention closures" in prompt
        assert "thoughtful answer about closures" in prompt

    def test_conversation_gets_header(self):
        llm = _mock_llm('{"quality": 3, "notes": "ok"}')
        record = _record("conversation", "[Student] what is a promise?",
                         metadata={"userTurns": 1, "userWords": 4, "totalTurns": 1})
        analyze_assignment(llm, _course(), "lab", _entry(), {"CST349-01": record}, "r", sleep=lambda s: None)
        assert "[AI conversation transcript: 1 student turns, 4 student words" in llm.complete.call_args.args[0]

    def test_llm_error_is_recorded(self):
        llm = _mock_llm(LlmError("overloaded"))
        result = analyze_assignment(llm, _course(), "lab", _entry(), {"CST349-01": _record()}, "r",
                                    sleep=lambda s: None)
        row = result["students"]["CST349-01"]
        assert row["quality"] is None
        assert "overloaded" in row["qualityNotes"]

    def test_sleeps_between_calls(self):
        sleeps = []
        llm = _mock_llm('{"quality": 3}', '{"quality": 5}')
        records = {"CST349-01": _record(), "CST349-02": _record()}
        analyze_assignment(llm, _course(), "lab", _entry(), records, "r", sleep=sleeps.append)
        assert sleeps == [0.5]


class TestImageVision:

    def _image(self, mime="image/png", size=2048, url="https://canvas/files/9/download"):
        return _record("image", "[Image: diagram.png]", metadata={
            "filename": "diagram.png", "mime": mime, "url": url, "size": size,
        })

    def test_image_is_skipped_without_canvas(self):
        llm = _mock_llm()
        result = analyze_assignment(llm, _course(), "lab", _entry(), {"CST349-01": self._image()},
                                    "r", sleep=lambda s: None)
        row = result["students"]["CST349-01"]
        assert row["quality"] is None
        assert row["qualityNotes"] == "Image submission - participation only"
        llm.complete.assert_not_called()

    def test_image_is_sent_as_vision_input(self):
        llm = _mock_llm('{"quality": 4, "notes": "Clear diagram."}')
        lms = MagicMock()
        lms.download_file_as_base64.return_value = "iVBORw0KGgo="
        result = analyze_assignment(llm, _course(), "lab", _entry(), {"CST349-01": self._image()},
                                    "r", sleep=lambda s: None, lms=lms)

        assert result["students"]["CST349-01"]["quality"] == 4
        lms.download_file_as_base64.assert_called_once_with("https://canvas/files/9/download")
        assert llm.complete.call_args.kwargs["images"] == [("image/png", "iVBORw0KGgo=")]
        assert "[Image: diagram.png]" in llm.complete.call_args.args[0]

    def test_unsupported_or_oversized_images_are_skipped(self):
        assert skip_reason(self._image(mime="image/heic"), vision=True).startswith("Unsupported image type")
        assert skip_reason(self._image(size=6 * 1024 * 1024), vision=True).startswith("Image too large")
        assert skip_reason(self._image(url=""), vision=True).startswith("Image has no download URL")
        assert skip_reason(self._image(), vision=True) is None

    def test_download_failure_is_recorded(self):
        llm = _mock_llm()
        lms = MagicMock()
        lms.download_file_as_base64.side_effect = LmsError(403, "Download failed")
        result = analyze_assignment(llm, _course(), "lab", _entry(), {"CST349-01": self._image()},
                                    "r", sleep=lambda s: None, lms=lms)
        row = result["students"]["CST349-01"]
        assert row["quality"] is None
        assert row["qualityNotes"].startswith("Image download failed")
        llm.complete.assert_not_called()


# ===========================================================================
# analyze_course
# ===========================================================================

class TestAnalyzeCourse:

    def _seed(self, tmp_path):
        data = DataDir(tmp_path)
        identity = IdentityMap("CST349")
        identity.sync_roster([{"lmsUserId": 1, "name": "Lee, Ana"}, {"lmsUserId": 2, "name": "Kim, Bo"}])
        identity.save(data.id_mapping("cst349"))
        save_json(data.submission_index("cst349"), {
            "lab": _entry(),
            "demo": dict(_entry("Demo"), hasAiDiscussion=True),
            "broken": {"title": "Broken", "error": "403"},
        })
        save_json(data.submissions("cst349", "lab"), {
            "CST349-01": _record(),
            "CST349-02": _record("pdf", "[PDF: a.pdf]"),
        })
        save_json(data.analysis("cst349"), {"discussions": {"demo": {"results": {"kept": True}}}})
        return data

    def test_writes_analysis_and_keeps_discussions(self, tmp_path):
        data = self._seed(tmp_path)
        llm = _mock_llm('{"quality": 5, "notes": "Deep."}', "Engaged student.", "Limited data.")

        counts = analyze_course(llm, _course(), data, tmp_path / "rubrics", sleep=lambda s: None)
        assert counts == {"assignments": 1, "scored": 1, "summaries": 2}

        analysis = load_json(data.analysis("cst349"))
        assert list(analysis["assignments"]) == ["lab"]
        assert analysis["assignments"]["lab"]["students"]["CST349-01"]["quality"] == 5
        assert analysis["discussions"] == {"demo": {"results": {"kept": True}}}
        assert analysis["studentSummaries"] == {"CST349-01": "Engaged student.", "CST349-02": "Limited data."}
        assert "lastUpdated" in analysis
        assert llm.complete.call_args.kwargs["model"] == ANALYSIS_MODEL

    def test_summary_failure_uses_placeholder(self, tmp_path):
        data = self._seed(tmp_path)
        llm = _mock_llm('{"quality": 5}', LlmError("x"), "ok")
        counts = analyze_course(llm, _course(), data, tmp_path, sleep=lambda s: None)
        assert counts["summaries"] == 1
        assert load_json(data.analysis("cst349"))["studentSummaries"]["CST349-01"] == SUMMARY_FALLBACK

    def test_requires_download_first(self, tmp_path):
        with pytest.raises(RuntimeError, match="Run download first"):
            analyze_course(MagicMock(), _course(), DataDir(tmp_path), tmp_path)
