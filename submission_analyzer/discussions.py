"""AI-discussion grading.

In an AI-discussion activity each student types a classmate's written
reflection into the activity, discusses it with the author using
AI-generated probing questions, and submits a summary. A submission
therefore carries two people's work:

  * the author's writing (``enteredResponse``), credited to the author
    named in ``authorName``;
  * the submitter's discussion leadership (summary, AI questions,
    iteration count).

Grading first resolves every submission's author to an anonymous id
(the partner graph), then assembles each student's writing from the
partner's submission and their discussion from their own, and asks the
model for a writing score and a discussion score out of 5 each.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from submission_analyzer.identity import IdentityMap
from submission_analyzer.llm import BULK_MODEL, GRADING_MAX_TOKENS, LlmError, extract_json
from submission_analyzer.storage import load_json, save_json

logger = logging.getLogger(__name__)

FEEDBACK_LIMIT = 300
LLM_DELAY = 0.5
MISSING_SCORE = 3
FAILED_SCORE = 5
FAILED_FEEDBACK = "Auto-grading failed — manual review needed."
NO_WRITING_FEEDBACK = "No writing found (no data: partner may not have submitted)."
NO_DISCUSSION_FEEDBACK = "No discussion summaries found (no data: student may not have submitted)."


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Partner graph ────────────────────────────────────────────────────────────

@dataclass
class PartnerGraph:
    """submitter -> author edges resolved to anonymous ids."""

    partner_map: dict = field(default_factory=dict)
    reverse: dict = field(default_factory=dict)
    unresolved: list = field(default_factory=list)

    def partner_of(self, anon_id):
        if anon_id in self.partner_map:
            return self.partner_map[anon_id]
        return self.reverse.get(anon_id)

    def students(self, submitters) -> set:
        return set(submitters) | set(self.partner_map.values())


def build_partner_graph(subs: dict, identity: IdentityMap) -> PartnerGraph:
    """Resolve each ai-discussion submission's ``authorName``.

    An unmatched name is logged and left out of the graph. A name that
    resolves to the submitter is kept but logged. When two submitters
    claim the same author, the first one keeps the reverse edge.
    """
    graph = PartnerGraph()
    for submitter, sub in subs.items():
        author_name = ((sub.get("activityData") or {}).get("authorName") or "").strip()
        author = identity.find_by_name(author_name)
        if not author:
            logger.warning("  Could not match author %r for %s", author_name, submitter)
            graph.unresolved.append(submitter)
            continue
        if author == submitter:
            logger.warning("  %s names themselves as author (%r)", submitter, author_name)
        graph.partner_map[submitter] = author
        if author in graph.reverse:
            logger.warning(
                "  %s is claimed as author by both %s and %s",
                author, graph.reverse[author], submitter,
            )
            continue
        graph.reverse[author] = submitter
    return graph


# ── Student records ──────────────────────────────────────────────────────────

def load_activity_config(activities_dir, course_code: str, assignment_key: str):
    """Activity definition JSON for an assignment, or None."""
    base = Path(activities_dir) / course_code
    names = [assignment_key.replace("demo-discussion", "demo-ai-discussion"), assignment_key]
    for name in dict.fromkeys(names):
        path = base / f"{name}.json"
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    return None


def _question(questions, i) -> dict:
    if i < len(questions) and isinstance(questions[i], dict):
        return questions[i]
    return {}


def _responses(sub):
    if not sub:
        return []
    return (sub.get("activityData") or {}).get("responses") or []


def _writing(partner_sub, questions) -> list:
    writing = []
    for i, r in enumerate(_responses(partner_sub)):
        if not isinstance(r, dict):
            continue
        q = _question(questions, i)
        answer = r.get("answer")
        if (q.get("type") or r.get("questionType")) != "ai-discussion" or not isinstance(answer, dict):
            continue
        writing.append({
            "questionId": q.get("id") or r.get("questionId") or f"q{i}",
            "prompt":     answer.get("selectedPrompt") or q.get("prompt") or "",
            "response":   answer.get("enteredResponse") or "",
            "aiContext":  q.get("aiContext") or "",
        })
    return writing


def _discussions_and_takeaway(own_sub, questions):
    discussions = []
    takeaway = None
    for i, r in enumerate(_responses(own_sub)):
        if not isinstance(r, dict):
            continue
        q = _question(questions, i)
        qtype = q.get("type") or r.get("questionType")
        answer = r.get("answer")
        if qtype == "ai-discussion" and isinstance(answer, dict):
            discussions.append({
                "questionId":     q.get("id") or r.get("questionId") or f"q{i}",
                "prompt":         answer.get("selectedPrompt") or q.get("prompt") or "",
                "summary":        answer.get("discussionSummary") or "",
                "aiQuestions":    list(answer.get("aiQuestions") or []),
                "observation":    answer.get("observation") or "",
                "iterations":     int(answer.get("iterations") or 0),
                "partnerWriting": answer.get("enteredResponse") or "",
            })
        elif qtype == "open-ended" and answer:
            takeaway = answer if isinstance(answer, str) else ""
    return discussions, takeaway


def build_student_data(anon_id, identity, graph, subs, questions) -> dict:
    own_sub = subs.get(anon_id)
    partner_submitter = graph.reverse.get(anon_id)
    partner_sub = subs.get(partner_submitter) if partner_submitter else None

    partner_id = graph.partner_map.get(anon_id) if own_sub else partner_submitter
    discussions, takeaway = _discussions_and_takeaway(own_sub, questions)
    return {
        "studentName":   identity.name(anon_id),
        "anonId":        anon_id,
        "partnerAnonId": partner_id,
        "partnerName":   identity.name(partner_id) if partner_id else "Unknown",
        "writing":       _writing(partner_sub, questions),
        "discussions":   discussions,
        "takeaway":      takeaway,
    }


# ── Grading ──────────────────────────────────────────────────────────────────

def grading_system_prompt(course_name: str) -> str:
    return f"""You are an encouraging instructor grading student reflections in {course_name}.
Grade generously — most students should earn 5/5 for genuine effort. Only give 4 if there's a clearly identifiable area for improvement, and 3 only if the response is notably shallow or off-topic.

Assess two dimensions:
1. WRITING QUALITY (5 points) — the student's written reflection responses
2. DISCUSSION QUALITY (5 points) — the student's discussion summary after leading a conversation

Respond ONLY with valid JSON:
{{"writingScore": <3|4|5>, "writingFeedback": "<one actionable sentence for future reflections>", "discussionScore": <3|4|5>, "discussionFeedback": "<one actionable sentence for future conversations>", "overallNote": "<one sentence highlighting something positive>"}}"""


def grading_prompt(data: dict) -> str:
    parts = [f"# Student: {data['anonId']}\n"]

    parts.append("## WRITING (grade this student's reflection quality)\n")
    if not data["writing"]:
        parts.append("No writing found. Ignore this dimension and return writingScore 3.\n")
    for w in data["writing"]:
        parts.append(f"### Question: {w['prompt']}")
        if w["aiContext"]:
            parts.append(f"Context: {w['aiContext']}")
        parts.append(f"Response:\n> {w['response']}\n")

    parts.append("## DISCUSSION SUMMARIES (grade this student's quality as discussion leader)\n")
    if not data["discussions"]:
        parts.append("No discussion summaries found. Ignore this dimension and return discussionScore 3.\n")
    for d in data["discussions"]:
        questions = "\n".join(f"  - {q}" for q in d["aiQuestions"])
        parts.append(f"### Question: {d['prompt']}")
        parts.append(f"Partner's writing discussed:\n> {d['partnerWriting']}")
        parts.append(f"AI discussion questions:\n{questions}")
        parts.append(f"Iterations (dig deeper): {d['iterations']}")
        if d["observation"]:
            parts.append(f"Observation: {d['observation']}")
        parts.append(f"Summary:\n> {d['summary']}\n")

    if data.get("takeaway"):
        parts.append(
            "## OVERALL TAKEAWAY (boost scores if insightful, up to 5 max)\n"
            f"> {data['takeaway']}"
        )
    return "\n".join(parts)


def _score(value, name) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError) as e:
        raise LlmError(f"Grading response has no numeric {name}: {value!r}") from e
    return max(0, min(5, score))


def parse_grade(data: dict) -> dict:
    return {
        "writingScore":       _score(data.get("writingScore"), "writingScore"),
        "writingFeedback":    str(data.get("writingFeedback") or "")[:FEEDBACK_LIMIT],
        "discussionScore":    _score(data.get("discussionScore"), "discussionScore"),
        "discussionFeedback": str(data.get("discussionFeedback") or "")[:FEEDBACK_LIMIT],
        "overallNote":        str(data.get("overallNote") or "")[:FEEDBACK_LIMIT],
    }


def _missing_side_grade() -> dict:
    return {
        "writingScore":       MISSING_SCORE,
        "writingFeedback":    NO_WRITING_FEEDBACK,
        "discussionScore":    MISSING_SCORE,
        "discussionFeedback": NO_DISCUSSION_FEEDBACK,
        "overallNote":        "",
    }


def grade_student(llm, data: dict, course_name: str) -> dict:
    """Return a DiscussionResult for one student record.

    A side with no data is fixed at 3/5; with neither side there is no
    model call. A failed call yields 5/5 on the graded sides and an
    ``error`` entry for manual review.
    """
    has_writing    = bool(data["writing"])
    has_discussion = bool(data["discussions"])
    grade = _missing_side_grade()

    if has_writing or has_discussion:
        try:
            reply = llm.complete(
                grading_prompt(data),
                system=grading_system_prompt(course_name),
                model=BULK_MODEL,
                max_tokens=GRADING_MAX_TOKENS,
            )
            parsed = parse_grade(extract_json(reply))
        except LlmError as e:
            logger.error("  Grading failed for %s: %s", data["anonId"], e)
            parsed = {
                "writingScore":       FAILED_SCORE,
                "writingFeedback":    FAILED_FEEDBACK,
                "discussionScore":    FAILED_SCORE,
                "discussionFeedback": FAILED_FEEDBACK,
                "overallNote":        "",
            }
            grade["error"] = str(e)

        if has_writing:
            grade["writingScore"]    = parsed["writingScore"]
            grade["writingFeedback"] = parsed["writingFeedback"]
        if has_discussion:
            grade["discussionScore"]    = parsed["discussionScore"]
            grade["discussionFeedback"] = parsed["discussionFeedback"]
        grade["overallNote"] = parsed["overallNote"]

    grade.update({
        "totalScore":    min(10, grade["writingScore"] + grade["discussionScore"]),
        "partnerAnonId": data["partnerAnonId"],
        "partnerName":   data["partnerName"],
        "hasWriting":    has_writing,
        "hasDiscussion": has_discussion,
        "iterations":    sum(d["iterations"] for d in data["discussions"]),
        "takeaway":      data["takeaway"],
        "status":        "suggested",
    })
    return grade


def grade_assignment(llm, course, key: str, records: dict, identity: IdentityMap,
                     questions=(), sleep=time.sleep):
    """Grade one AI-discussion assignment.

    Returns ``(results, student_data, graph)``, or None when the shard
    has no AI-discussion submissions.
    """
    subs = {
        anon_id: r for anon_id, r in records.items()
        if r.get("contentType") == "ai-discussion" and r.get("activityData")
    }
    logger.info("  %d AI-discussion submissions", len(subs))
    if not subs:
        return None

    questions = list(questions or [])
    graph = build_partner_graph(subs, identity)
    members = graph.students(subs)
    ordered = [a for a in identity.sorted_by_name() if a in members]
    ordered += sorted(members - set(ordered))

    results, student_data = {}, {}
    calls = 0
    for anon_id in ordered:
        data = build_student_data(anon_id, identity, graph, subs, questions)
        student_data[anon_id] = data
        needs_call = bool(data["writing"] or data["discussions"])
        if needs_call and calls:
            sleep(LLM_DELAY)
        calls += needs_call
        results[anon_id] = grade_student(llm, data, course.name)
        logger.info("    %s: %d/10", anon_id, results[anon_id]["totalScore"])
    return results, student_data, graph


def _overview_row(grade: dict, record) -> dict:
    if record and record.get("participation"):
        participation = record["participation"]
    else:
        participation = 5 if grade["hasWriting"] or grade["hasDiscussion"] else 1
    quality = int((grade["writingScore"] + grade["discussionScore"]) / 2 + 0.5)
    return {
        "participation": participation,
        "quality":       max(1, min(5, quality)),
        "qualityNotes":  f"Writing: {grade['writingScore']}/5, Discussion: {grade['discussionScore']}/5",
        "contentType":   "ai-discussion",
        "analyzedAt":    _now(),
    }


def grade_course(llm, course, data, activities_dir, assignment_key=None,
                 sleep=time.sleep) -> dict:
    """Run the grade action for one course.

    Returns counts ``{"assignments", "students", "errors"}``.
    """
    index    = load_json(data.submission_index(course.code)) or {}
    identity = IdentityMap.load(data.id_mapping(course.code), course.prefix)

    if assignment_key:
        keys = [assignment_key]
    else:
        keys = [k for k, v in index.items() if v.get("hasAiDiscussion") and not v.get("error")]

    analysis_path = data.analysis(course.code)
    analysis = load_json(analysis_path) or {}
    analysis.setdefault("assignments", {})
    analysis.setdefault("discussions", {})
    analysis.setdefault("studentSummaries", {})

    counts = {"assignments": 0, "students": 0, "errors": 0}
    for key in keys:
        entry = index.get(key)
        if not entry or entry.get("error"):
            logger.warning("Skip %s: not downloaded", key)
            continue
        records = load_json(data.submissions(course.code, key)) or {}

        activity = load_activity_config(activities_dir, course.code, key) or {}
        questions = activity.get("questions")
        if not questions:
            try:
                questions = course.assignment(key).questions
            except ValueError:
                questions = []

        logger.info("%s (%s)", entry["title"], key)
        graded = grade_assignment(llm, course, key, records, identity, questions, sleep=sleep)
        if graded is None:
            continue
        results, student_data, graph = graded
        graded_at = _now()

        save_json(data.grading(course.code, key), {
            "assignmentKey": key,
            "title":         entry["title"],
            "gradedAt":      graded_at,
            "results":       results,
            "studentData":   student_data,
        })
        analysis["discussions"][key] = {
            "title":       entry["title"],
            "points":      entry.get("points"),
            "sprint":      entry.get("sprint"),
            "week":        entry.get("week"),
            "results":     results,
            "studentData": student_data,
            "unresolved":  graph.unresolved,
            "analyzedAt":  graded_at,
        }
        analysis["assignments"][key] = {
            "title":      entry["title"],
            "type":       entry.get("type"),
            "points":     entry.get("points"),
            "sprint":     entry.get("sprint"),
            "week":       entry.get("week"),
            "dueDate":    entry.get("dueDate"),
            "students":   {a: _overview_row(g, records.get(a)) for a, g in results.items()},
            "analyzedAt": graded_at,
        }
        counts["assignments"] += 1
        counts["students"] += len(results)
        counts["errors"] += sum(1 for g in results.values() if g.get("error"))

    analysis["lastUpdated"] = _now()
    save_json(analysis_path, analysis)
    return counts
