"""Tests for the identity store and data-directory helpers."""

import json

from submission_analyzer.identity import IdentityMap, normalize_name
from submission_analyzer.storage import DataDir, load_json, save_json


# ===========================================================================
# storage
# ===========================================================================

class TestStorage:
    """Tests for JSON persistence and path layout."""

    def test_load_missing_returns_none(self, tmp_path):
        assert load_json(tmp_path / "nope.json") is None

    def test_save_creates_parents_and_round_trips(self, tmp_path):
        path = tmp_path / "a" / "b" / "data.json"
        save_json(path, {"name": "Ana Núñez"})
        assert load_json(path) == {"name": "Ana Núñez"}
        assert "Núñez" in path.read_text(encoding="utf-8")

    def test_save_leaves_no_temp_files(self, tmp_path):
        save_json(tmp_path / "x.json", [1, 2, 3])
        assert [p.name for p in tmp_path.iterdir()] == ["x.json"]

    def test_data_dir_layout(self, tmp_path):
        data = DataDir(tmp_path)
        assert data.id_mapping("cst349") == tmp_path / "cst349" / "id-mapping.json"
        assert data.submissions("cst349", "s1-lab") == tmp_path / "cst349" / "submissions" / "s1-lab.json"
        assert data.grading("cst349", "s1-lab") == tmp_path / "cst349" / "grading" / "s1-lab.json"
        assert data.course_dashboard("cst349") == tmp_path / "dashboard" / "cst349-dashboard.html"
        assert data.default_grades_file("cst349", "k").name == "cst349-k-grades.json"
        assert data.anonymous_dir("cst349") == tmp_path / "anonymous" / "cst349"


# ===========================================================================
# normalize_name
# ===========================================================================

class TestNormalizeName:

    def test_lowercases_and_strips_punctuation(self):
        assert normalize_name("Perez, Adrian") == "perez adrian"

    def test_collapses_whitespace(self):
        assert normalize_name("  Ana   Lopez ") == "ana lopez"

    def test_empty_and_none(self):
        assert normalize_name("") == ""
        assert normalize_name(None) == ""


# ===========================================================================
# IdentityMap
# ===========================================================================

def _roster(*pairs):
    return [{"lmsUserId": uid, "name": name} for uid, name in pairs]


class TestSyncRoster:
    """Tests for assigning and preserving anonymous ids."""

    def test_assigns_sequential_ids(self):
        identity = IdentityMap("CST349")
        added = identity.sync_roster(_roster((101, "Lee, Ana"), (102, "Kim, Bo")))
        assert added == ["CST349-01", "CST349-02"]
        assert identity.lms_user_id("CST349-02") == 102

    def test_existing_ids_never_change(self):
        identity = IdentityMap("CST349", {
            "CST349-01": {"lmsUserId": 101, "name": "Lee, Ana"},
            "CST349-02": {"lmsUserId": 102, "name": "Kim, Bo"},
        })
        added = identity.sync_roster(_roster((102, "Kim, Bo"), (103, "Diaz, Cy"), (101, "Lee, Ana")))
        assert added == ["CST349-03"]
        assert identity.anon_id_for(101) == "CST349-01"
        assert identity.anon_id_for(102) == "CST349-02"
        assert identity.anon_id_for(103) == "CST349-03"

    def test_dropped_student_keeps_id_and_is_not_reused(self):
        identity = IdentityMap("CST349", {
            "CST349-01": {"lmsUserId": 101, "name": "Lee, Ana"},
            "CST349-02": {"lmsUserId": 102, "name": "Kim, Bo"},
        })
        added = identity.sync_roster(_roster((101, "Lee, Ana"), (104, "New, Stu")))
        assert added == ["CST349-03"]
        assert "CST349-02" in identity

    def test_name_change_updates_display_name_only(self):
        identity = IdentityMap("CST349", {"CST349-01": {"lmsUserId": 101, "name": "Lee, Ana"}})
        assert identity.sync_roster(_roster((101, "Lee-Park, Ana"))) == []
        assert identity.name("CST349-01") == "Lee-Park, Ana"

    def test_anon_id_for_accepts_string_or_int(self):
        identity = IdentityMap("CST349")
        identity.sync_roster(_roster((101, "Lee, Ana")))
        assert identity.anon_id_for("101") == "CST349-01"
        assert identity.anon_id_for(101) == "CST349-01"
        assert identity.anon_id_for(None) is None

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "id-mapping.json"
        identity = IdentityMap("CST349")
        identity.sync_roster(_roster((101, "Lee, Ana")))
        identity.save(path)

        raw = json.loads(path.read_text())
        assert raw == {"CST349-01": {"lmsUserId": 101, "name": "Lee, Ana"}}
        reloaded = IdentityMap.load(path, "CST349")
        assert reloaded.anon_id_for(101) == "CST349-01"
        assert len(reloaded) == 1


class TestLookups:

    def _identity(self):
        return IdentityMap("CST349", {
            "CST349-01": {"lmsUserId": 1, "name": "Zed, Amy"},
            "CST349-02": {"lmsUserId": 2, "name": "Perez, Adrian"},
            "CST349-03": {"lmsUserId": 3, "name": "Alonso Perez, Adrian"},
        })

    def test_name_defaults_to_anon_id(self):
        assert self._identity().name("CST349-99") == "CST349-99"
        assert self._identity().name("CST349-99", default="") == ""

    def test_sorted_by_name(self):
        assert self._identity().sorted_by_name() == ["CST349-03", "CST349-02", "CST349-01"]

    def test_find_by_name_exact_wins_over_substring(self):
        assert self._identity().find_by_name("alonso perez adrian") == "CST349-03"

    def test_find_by_name_substring_first_hit(self):
        assert self._identity().find_by_name("Perez, Adrian") == "CST349-02"
        assert self._identity().find_by_name("Zed") == "CST349-01"

    def test_find_by_name_unknown(self):
        assert self._identity().find_by_name("Nobody Here") is None
        assert self._identity().find_by_name("") is None
