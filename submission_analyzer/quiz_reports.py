"""Canvas quiz "student analysis" report parsing.

Column layout:
  name, id, sis_id, root_account, section, section_id, section_sis_id,
  submitted, attempt, <one column per question...>, n correct, n incorrect, score
"""

import csv
import io
import logging
from dataclasses import dataclass

from submission_analyzer.content import TEXT_LIMIT, strip_html

logger = logging.getLogger(__name__)

# Position of the first question column when the header has no "attempt".
DEFAULT_QUESTION_START = 9


class QuizReportFormatError(ValueError):
    """The report header does not look like a student-analysis export."""


@dataclass(frozen=True)
class QuizReportRow:
    user_id: str
    answers: list

    def answer_text(self) -> str:
        """Non-empty answers, HTML-stripped, joined by blank lines."""
        texts = [strip_html(a) for a in self.answers if a]
        return "\n\n".join(t for t in texts if t)[:TEXT_LIMIT]


def parse_quiz_report(csv_text: str) -> list:
    """Parse report CSV text into QuizReportRow objects.

    Raises QuizReportFormatError when the header has no ``id`` column.
    """
    reader = csv.reader(io.StringIO(csv_text))
    rows = [[value.strip() for value in row] for row in reader if any(v.strip() for v in row)]
    if len(rows) < 2:
        return []

    headers = rows[0]
    if "id" not in headers:
        raise QuizReportFormatError(f"Quiz report has no 'id' column: {headers[:10]}")
    id_idx = headers.index("id")

    if "attempt" in headers:
        start = headers.index("attempt") + 1
    else:
        start = DEFAULT_QUESTION_START
        logger.warning("Quiz report has no 'attempt' column; assuming questions start at %d", start)

    end = headers.index("n correct") if "n correct" in headers else None
    if end is None:
        logger.warning("Quiz report has no 'n correct' column; reading questions to end of row")

    parsed = []
    for values in rows[1:]:
        if id_idx >= len(values):
            continue
        user_id = values[id_idx]
        if not user_id or user_id == "id":
            continue
        stop = end if end is not None else len(values)
        parsed.append(QuizReportRow(user_id=user_id, answers=values[start:stop]))
    return parsed
