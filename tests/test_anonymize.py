"""Tests for the PII-stripped export."""

from submission_analyzer.anonymize import build_name_pattern, export_course, scrub
from submission_analyzer.config import CourseConfig
from submission_analyzer.identity import IdentityMap
from submission_analyzer.storage import DataDir, load_json, save_json


def _course():
    return CourseConfig(
        code="cst349", name="CST349", prefix="CST349", semester="",
        canvas_base_url="https://school.instructure.com/courses/31001",
    )


def _identity():
    return IdentityMap("CST349", {
        "CST349-01": {"lmsUserId": 101, "name": "Lee, Ana"},
        "CST349-02": {"lmsUserId": 102, "name": "Kim, Bo"},
    })


class TestScrub:

    def test_drops_pii_fields_and_replaces_names(self):
        pattern, lookup = build_name_pattern(_identity())
        value = {
            "anonId": "CST349-01",
            "studentName": "Lee, Ana",
            "lmsUserId": 101,
            "notes": ["Ana Lee worked with kim, bo on this."],
        }
        assert scrub(value, pattern, lookup) == {
            "anonId": "CST349-01",
            "notes": ["CST349-01 worked with CST349-02 on this."],
        }

    def test_empty_roster(self):
        pattern, lookup = build_name_pattern(IdentityMap("CST349"))
        assert pattern is None
        assert scrub({"a": "Lee, Ana"}, pattern, lookup) == {"a": "Lee, Ana"}


class TestExportCourse:

    def test_no_display_names_remain(self, tmp_path):
        data = DataDir(tmp_path)
        _identity().save(data.id_mapping("cst349"))
        save_json(data.submission_index("cst349"), {"lab": {"title": "Lab"}})
        save_json(data.submissions("cst349", "lab"), {
            "CST349-01": {"content": "I'm Ana Lee and this is my lab.",
                          "activityData": {"authorName": "Kim, Bo", "studentName": "Lee, Ana"}},
        })
        save_json(data.analysis("cst349"), {"studentSummaries": {"CST349-02": "Kim, Bo is engaged."}})
        save_json(data.grading("cst349", "demo"), {"results": {"CST349-01": {"partnerName": "Kim, Bo"}}})

        assert export_course(_course(), data) == {"files": 4}

        out = data.anonymous_dir("cst349")
        assert not (out / "id-mapping.json").exists()
        for path in out.rglob("*.json"):
            text = path.read_text()
            for name in ("Lee, Ana", "Kim, Bo", "Ana Lee", "Bo Kim"):
                assert name not in text
        shard = load_json(out / "submissions" / "lab.json")
        assert shard["CST349-01"]["content"] == "I'm CST349-01 and this is my lab."
