"""Submission Analyzer: batch pipeline CLI.

    python app.py --action=download --course=cst349
    python app.py --action=full
    python app.py --action=post-grades --course=cst349 \\
        --assignment=s1-demo-discussion --dry-run=false

Actions run per course, in the order given by --course.
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

from submission_analyzer.auth import load_env_file

# Auto-load .env
load_env_file(Path(__file__).parent / ".env")

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from submission_analyzer import (
    analysis,
    anonymize,
    dashboard,
    diagnostics,
    discussions,
    indexer,
    writeback,
)
from submission_analyzer.auth import (
    get_anthropic_key,
    get_api_token,
    get_base_url,
    get_data_dir,
)
from submission_analyzer.config import DEFAULT_CONFIG_DIR, ConfigError, load_course_config
from submission_analyzer.identity import IdentityMap
from submission_analyzer.llm import LlmClient
from submission_analyzer.lms import LmsClient
from submission_analyzer.storage import DataDir

logger = logging.getLogger("submission_analyzer")

ROOT = Path(__file__).resolve().parent
COURSES = ("cst349", "cst395")
ACTIONS = (
    "download", "analyze", "grade", "dashboard", "full",
    "post-grades", "diagnose-downloads",
)
FULL_STEPS = ("download", "analyze", "grade", "dashboard")

NEEDS_LMS = {"download", "full", "post-grades", "diagnose-downloads"}
NEEDS_LLM = {"analyze", "grade", "full"}
# Canvas is used when credentials are present
OPTIONAL_LMS = {
    "analyze":   "images will not be scored",
    "dashboard": "Grade Changes tab will start empty",
}

EXIT_OK = 0
EXIT_COURSE_ERROR = 1
EXIT_FATAL = 2


@dataclass
class PipelineContext:
    """Everything one course's steps need, resolved once at dispatch."""

    lms: object
    llm: object
    course: object
    data: DataDir
    rubrics_dir: Path
    activities_dir: Path
    assignment: str = None
    grades: Path = None
    dry_run: bool = True
    limit: int = None
    sleep: object = field(default=time.sleep, repr=False)


# ── Steps ────────────────────────────────────────────────────────────────────

def run_download(ctx: PipelineContext) -> dict:
    return indexer.download_course(ctx.lms, ctx.course, ctx.data, ctx.assignment)


def run_analyze(ctx: PipelineContext) -> dict:
    return analysis.analyze_course(
        ctx.llm, ctx.course, ctx.data, ctx.rubrics_dir,
        assignment_key=ctx.assignment, sleep=ctx.sleep, lms=ctx.lms,
    )


def run_grade(ctx: PipelineContext) -> dict:
    return discussions.grade_course(
        ctx.llm, ctx.course, ctx.data, ctx.activities_dir,
        assignment_key=ctx.assignment, sleep=ctx.sleep,
    )


def run_dashboard(ctx: PipelineContext) -> dict:
    return dashboard.generate_dashboards(ctx.course, ctx.data, lms=ctx.lms)


def run_post_grades(ctx: PipelineContext) -> dict:
    course = ctx.course
    assignment = course.assignment(ctx.assignment)
    if not assignment.canvas_id:
        raise ConfigError(f"No Canvas id for {assignment.key}")

    grades_path = ctx.grades or ctx.data.default_grades_file(course.code, assignment.key)
    decisions = writeback.load_decisions(grades_path)
    logger.info(
        "%s %d grades from %s to %s/%s",
        "Checking" if ctx.dry_run else "Posting",
        len(decisions), grades_path, course.code, assignment.key,
    )

    assignment_id = assignment.canvas_id
    if assignment.is_quiz:
        assignment_id = ctx.lms.get_quiz_assignment_id(course.course_id, assignment.canvas_id)

    report = writeback.post_grades(
        ctx.lms, course.course_id, assignment_id, decisions,
        dry_run=ctx.dry_run, limit=ctx.limit, sleep=ctx.sleep,
    )
    return {
        "posted":    report.posted,
        "unchanged": report.unchanged,
        "skipped":   report.skipped,
        "errors":    len(report.errors),
        "wouldPost": len(report.would_post),
    }


def run_diagnose(ctx: PipelineContext) -> dict:
    course = ctx.course
    keys = [ctx.assignment] if ctx.assignment else [
        a.key for a in course.assignments if a.downloadable
    ]
    identity = IdentityMap.load(ctx.data.id_mapping(course.code), course.prefix)
    if not len(identity):
        identity = indexer.sync_identity(ctx.lms, course, ctx.data)

    unknown = diagnostics.check_course(ctx.lms, course)

    checked, failed = 0, 0
    remaining = ctx.limit if ctx.limit is not None else diagnostics.DEFAULT_LIMIT
    for key in keys:
        if remaining <= 0:
            break
        logger.info("Diagnosing %s", key)
        results = diagnostics.diagnose_assignment(
            ctx.lms, course, course.assignment(key), identity, limit=remaining,
        )
        remaining -= len(results)
        checked += len(results)
        failed += sum(1 for r in results if not r["ok"])
    return {"unknownIds": len(unknown), "checked": checked, "failed": failed}


STEPS = {
    "download":           run_download,
    "analyze":            run_analyze,
    "grade":              run_grade,
    "dashboard":          run_dashboard,
    "post-grades":        run_post_grades,
    "diagnose-downloads": run_diagnose,
}


def steps_for(action: str) -> tuple:
    if action == "full":
        return FULL_STEPS
    return (action,)


# ── CLI ──────────────────────────────────────────────────────────────────────

def _parse_bool(value: str) -> bool:
    value = value.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="submission-analyzer",
        description="Download, analyze, grade and report on Canvas course submissions.",
    )
    parser.add_argument("--action", required=True, choices=ACTIONS)
    parser.add_argument("--course", default="both", choices=COURSES + ("both",))
    parser.add_argument("--data-dir", help="data directory (default: $SUBMISSION_DATA_DIR or ../Common-Curriculum-Data)")
    parser.add_argument("--assignment", help="limit to one assignment key (required for post-grades)")
    parser.add_argument("--grades", type=Path, help="grade-decision JSON for post-grades")
    parser.add_argument("--dry-run", type=_parse_bool, default=True, metavar="true|false",
                        help="report writes without posting (default: true)")
    parser.add_argument("--limit", type=int, help="cap on grade writes or files diagnosed")
    parser.add_argument("--anonymize", action="store_true",
                        help="also write the PII-stripped mirror under <data>/anonymous/")
    parser.add_argument("--config-dir", type=Path, default=DEFAULT_CONFIG_DIR, help=argparse.SUPPRESS)
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    for noisy in ("urllib3", "httpx", "anthropic", "canvasapi"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_clients(action: str):
    """Create the Canvas and Anthropic clients the action needs.

    Raises EnvironmentError for missing credentials. The analyze and
    dashboard actions use Canvas only when credentials happen to be present.
    """
    lms = llm = None
    if action in NEEDS_LMS:
        lms = LmsClient(get_base_url(), get_api_token())
    elif action in OPTIONAL_LMS:
        try:
            lms = LmsClient(get_base_url(), get_api_token())
        except EnvironmentError:
            logger.info("No Canvas credentials; %s", OPTIONAL_LMS[action])
    if action in NEEDS_LLM:
        llm = LlmClient(api_key=get_anthropic_key())
    return lms, llm


def _format_counts(counts) -> str:
    if not isinstance(counts, dict):
        return ""
    return ", ".join(f"{k}={v}" for k, v in counts.items())


def print_summary(rows: list, console: Console = None) -> None:
    table = Table(title="Summary")
    table.add_column("Course", style="cyan")
    table.add_column("Step")
    table.add_column("Result")
    table.add_column("Status")
    for course, step, result, ok in rows:
        table.add_row(course, step, result, "[green]ok[/green]" if ok else "[red]error[/red]")
    (console or Console()).print(table)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.action == "post-grades" and not args.assignment:
        parser.error("--assignment is required for post-grades")

    codes = COURSES if args.course == "both" else (args.course,)
    try:
        courses = [load_course_config(code, args.config_dir) for code in codes]
        lms, llm = build_clients(args.action)
    except (ConfigError, EnvironmentError) as e:
        logger.error("%s", e)
        return EXIT_FATAL

    data = DataDir(get_data_dir(args.data_dir))
    status = EXIT_OK
    rows = []

    for course in courses:
        ctx = PipelineContext(
            lms            = lms,
            llm            = llm,
            course         = course,
            data           = data,
            rubrics_dir    = args.config_dir / "rubrics",
            activities_dir = ROOT / "activities",
            assignment     = args.assignment,
            grades         = args.grades,
            dry_run        = args.dry_run,
            limit          = args.limit,
        )
        logger.info("[bold]%s: %s[/bold]", course.name, args.action, extra={"markup": True})
        for step in steps_for(args.action):
            try:
                counts = STEPS[step](ctx)
            except Exception as e:
                logger.error("%s %s failed: %s", course.code, step, e)
                logger.debug("Traceback", exc_info=True)
                rows.append((course.code, step, str(e), False))
                status = EXIT_COURSE_ERROR
                break
            rows.append((course.code, step, _format_counts(counts), True))

        if args.anonymize:
            try:
                counts = anonymize.export_course(course, data)
                rows.append((course.code, "anonymize", _format_counts(counts), True))
            except Exception as e:
                logger.error("%s anonymize failed: %s", course.code, e)
                rows.append((course.code, "anonymize", str(e), False))
                status = EXIT_COURSE_ERROR

    print_summary(rows)
    return status


if __name__ == "__main__":
    sys.exit(main())
