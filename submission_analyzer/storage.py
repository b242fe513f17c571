"""On-disk layout of the private data directory.

<data>/<course>/
  id-mapping.json
  submission-index.json
  submissions/<assignmentKey>.json
  analysis.json
  grading/<assignmentKey>.json
<data>/dashboard/
<data>/anonymous/<course>/
"""

import json
import os
import tempfile
from pathlib import Path


def load_json(path):
    """Return parsed JSON from *path*, or None if the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    with path.open(encoding="utf-8") as fh:
        return json.load(fh)


def save_json(path, data) -> None:
    """Write *data* as indented JSON.

    The file is written next to its target and moved into place, so an
    interrupted run leaves either the old file or the new one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
            fh.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def save_text(path, text: str) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class DataDir:
    """Path helper for one data directory root."""

    def __init__(self, root):
        self.root = Path(root)

    def course_dir(self, course: str) -> Path:
        return self.root / course

    def id_mapping(self, course: str) -> Path:
        return self.course_dir(course) / "id-mapping.json"

    def submission_index(self, course: str) -> Path:
        return self.course_dir(course) / "submission-index.json"

    def submissions_dir(self, course: str) -> Path:
        return self.course_dir(course) / "submissions"

    def submissions(self, course: str, assignment_key: str) -> Path:
        return self.submissions_dir(course) / f"{assignment_key}.json"

    def analysis(self, course: str) -> Path:
        return self.course_dir(course) / "analysis.json"

    def grading_dir(self, course: str) -> Path:
        return self.course_dir(course) / "grading"

    def grading(self, course: str, assignment_key: str) -> Path:
        return self.grading_dir(course) / f"{assignment_key}.json"

    def dashboard_dir(self) -> Path:
        return self.root / "dashboard"

    def course_dashboard(self, course: str) -> Path:
        return self.dashboard_dir() / f"{course}-dashboard.html"

    def discussion_dashboard(self, course: str, assignment_key: str) -> Path:
        return self.dashboard_dir() / f"{course}-{assignment_key}-discussion.html"

    def default_grades_file(self, course: str, assignment_key: str) -> Path:
        return self.dashboard_dir() / f"{course}-{assignment_key}-grades.json"

    def anonymous_dir(self, course: str) -> Path:
        return self.root / "anonymous" / course
