"""Course configuration.

Each course has a ``config/<code>.yaml`` file naming its Canvas course
URL, anonymous-id prefix and semester, plus an assignment CSV that is the
source of truth for keys, Canvas ids, due dates and pacing.

    code: cst349
    name: CST349
    prefix: CST349
    semester: Spring 2026
    canvas_base_url: https://school.instructure.com/courses/12345
    assignments_csv: cst349-assignments.csv
    color: "#2563eb"
"""

import csv
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

ASSIGNMENT_TYPES = {"assignment", "quiz", "reflection", "bridge", "engagement"}
CANVAS_TYPES = {"assignment", "quiz"}

DEFAULT_COLORS = {"cst349": "#2563eb", "cst395": "#0d9488"}

_COURSE_ID_RE = re.compile(r"/courses/(\d+)")


class ConfigError(ValueError):
    """Course configuration is missing, unparseable or inconsistent."""


@dataclass
class AssignmentConfig:
    key: str
    canvas_id: str
    title: str
    due_date: date
    type: str
    canvas_type: str
    points: int
    sprint: int
    week: int
    html_file: str = ""
    questions: list = field(default_factory=list)

    @property
    def is_quiz(self) -> bool:
        return self.canvas_type == "quiz"

    @property
    def downloadable(self) -> bool:
        return bool(self.canvas_id)


@dataclass
class CourseConfig:
    code: str
    name: str
    prefix: str
    semester: str
    canvas_base_url: str
    assignments: list = field(default_factory=list)
    color: str = "#2563eb"

    @property
    def course_id(self) -> str:
        return extract_course_id(self.canvas_base_url)

    def assignment(self, key: str) -> AssignmentConfig:
        for a in self.assignments:
            if a.key == key:
                return a
        raise ConfigError(f"Unknown assignment '{key}' for {self.code}")


def extract_course_id(canvas_base_url: str) -> str:
    match = _COURSE_ID_RE.search(canvas_base_url or "")
    if not match:
        raise ConfigError(f"Could not extract course ID from URL: {canvas_base_url}")
    return match.group(1)


# ── CSV ──────────────────────────────────────────────────────────────────────

def _parse_int(value, field_name, key, lo=None, hi=None, default=None):
    value = (value or "").strip()
    if not value:
        if default is not None:
            return default
        raise ConfigError(f"{key}: '{field_name}' is required")
    try:
        number = int(float(value))
    except ValueError as e:
        raise ConfigError(f"{key}: '{field_name}' is not a number: {value!r}") from e
    if lo is not None and not lo <= number <= hi:
        raise ConfigError(f"{key}: '{field_name}' must be {lo}..{hi}, got {number}")
    return number


def _parse_date(value, key):
    value = (value or "").strip()
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError as e:
        raise ConfigError(f"{key}: bad dueDate {value!r}") from e


def parse_assignment_row(row: dict) -> AssignmentConfig:
    key = (row.get("key") or "").strip()
    if not key:
        raise ConfigError(f"Assignment row without a key: {row}")

    atype = (row.get("type") or "assignment").strip()
    if atype not in ASSIGNMENT_TYPES:
        raise ConfigError(f"{key}: unknown type '{atype}'")
    canvas_type = (row.get("canvasType") or "assignment").strip()
    if canvas_type not in CANVAS_TYPES:
        raise ConfigError(f"{key}: unknown canvasType '{canvas_type}'")

    canvas_id = (row.get("canvasId") or "").strip()
    if canvas_id.lower() == "null":
        canvas_id = ""

    return AssignmentConfig(
        key         = key,
        canvas_id   = canvas_id or None,
        title       = (row.get("title") or key).strip(),
        due_date    = _parse_date(row.get("dueDate"), key),
        type        = atype,
        canvas_type = canvas_type,
        points      = _parse_int(row.get("points"), "points", key, default=0),
        sprint      = _parse_int(row.get("sprint"), "sprint", key, 1, 4),
        week        = _parse_int(row.get("week"), "week", key, 1, 16),
        html_file   = (row.get("htmlFile") or "").strip(),
    )


def load_assignments_csv(path) -> list:
    """Parse the assignment CSV into AssignmentConfig objects, in file order."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Assignment CSV not found: {path}")

    with path.open(newline="", encoding="utf-8") as fh:
        rows = [r for r in csv.DictReader(fh) if any((v or "").strip() for v in r.values())]

    assignments = [parse_assignment_row(r) for r in rows]
    seen = set()
    for a in assignments:
        if a.key in seen:
            raise ConfigError(f"Duplicate assignment key '{a.key}' in {path.name}")
        seen.add(a.key)
    _check_sprint_order(assignments, path.name)
    return assignments


def _check_sprint_order(assignments, source):
    last_due = {}
    for a in assignments:
        if a.due_date is None:
            continue
        previous = last_due.get(a.sprint)
        if previous and a.due_date < previous:
            logger.warning(
                "%s: %s is due before the previous sprint %d assignment",
                source, a.key, a.sprint,
            )
        last_due[a.sprint] = a.due_date


# ── YAML ─────────────────────────────────────────────────────────────────────

def load_course_config(code: str, config_dir=None) -> CourseConfig:
    """Load ``<config_dir>/<code>.yaml`` and its assignment CSV.

    Raises ConfigError for an unknown course or invalid content.
    """
    config_dir = Path(config_dir or DEFAULT_CONFIG_DIR)
    path = config_dir / f"{code}.yaml"
    if not path.exists():
        raise ConfigError(f"Unknown course '{code}' (no {path})")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")

    base_url = raw.get("canvas_base_url") or ""
    extract_course_id(base_url)

    csv_name = raw.get("assignments_csv") or f"{code}-assignments.csv"
    assignments = load_assignments_csv(config_dir / csv_name)

    questions = raw.get("questions") or {}
    for a in assignments:
        a.questions = list(questions.get(a.key) or [])

    return CourseConfig(
        code            = code,
        name            = raw.get("name") or code.upper(),
        prefix          = raw.get("prefix") or code.upper(),
        semester        = str(raw.get("semester") or ""),
        canvas_base_url = base_url,
        assignments     = assignments,
        color           = raw.get("color") or DEFAULT_COLORS.get(code, "#2563eb"),
    )


def available_courses(config_dir=None) -> list:
    config_dir = Path(config_dir or DEFAULT_CONFIG_DIR)
    return sorted(p.stem for p in config_dir.glob("*.yaml"))
