"""Quality rubrics for the analysis pass.

Lookup order for an assignment:
  <rubrics>/<course>/<key>.txt
  <rubrics>/<key>.txt
  built-in default for the assignment type
"""

from pathlib import Path

DEFAULT_RUBRICS = {
    "reflection": (
        "This is a productive reflection. Quality criteria: honest self-assessment, "
        "specific examples from their experience, evidence of genuine thinking rather "
        "than surface-level responses, connection to course concepts."
    ),
    "quiz": (
        "This is a graded survey/quiz. Quality criteria: thoughtful responses that show "
        "engagement with the material, specific rather than vague answers, evidence of "
        "reflection."
    ),
    "assignment": (
        "This is an assignment submission. Quality criteria: completeness, depth of "
        "analysis, specificity of examples, actionable insights, evidence of genuine effort."
    ),
}


def default_rubric(assignment_type: str) -> str:
    # bridge and engagement share the assignment default
    return DEFAULT_RUBRICS.get(assignment_type, DEFAULT_RUBRICS["assignment"])


def load_rubric(rubrics_dir, course_code: str, assignment_key: str,
                assignment_type: str) -> str:
    rubrics_dir = Path(rubrics_dir)
    for path in (rubrics_dir / course_code / f"{assignment_key}.txt",
                 rubrics_dir / f"{assignment_key}.txt"):
        if path.exists():
            text = path.read_text(encoding="utf-8").strip()
            if text:
                return text
    return default_rubric(assignment_type)
