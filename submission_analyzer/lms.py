"""Canvas client.

Authenticated access to the Canvas REST API for the pipeline:

  * raw requests with Link-header pagination (``request`` /
    ``request_all_pages``),
  * domain reads and grade posting through canvasapi,
  * the asynchronous quiz-report export, modelled as a small polling
    state machine,
  * the two-hop file download. Canvas answers a file URL with a 302 to a
    pre-signed CDN URL that rejects requests carrying the Authorization
    header, so the redirect is followed by hand without it.
"""

import base64
import logging
import time
from urllib.parse import urljoin

import requests

from submission_analyzer import assignments, courses, students, submissions
from submission_analyzer.auth import create_canvas_connection

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 60


class LmsError(Exception):
    """Non-2xx response from Canvas."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body or ""
        super().__init__(f"Canvas API error ({status}): {self.body[:300]}")


class ReportFailed(Exception):
    """Canvas reported the quiz report job as failed."""


class ReportTimeout(Exception):
    """The quiz report was not ready within the maximum wait."""


# ── Quiz report state machine ────────────────────────────────────────────────

class QuizReportJob:
    """Request a student-analysis quiz report and wait for its CSV.

    States: requested -> polling -> ready | failed | timed_out.
    """

    REQUESTED = "requested"
    POLLING   = "polling"
    READY     = "ready"
    FAILED    = "failed"
    TIMED_OUT = "timed_out"

    def __init__(self, client, course_id, quiz_id, poll_interval=2.0,
                 max_wait=60.0, sleep=time.sleep, clock=time.monotonic):
        self.client        = client
        self.course_id     = course_id
        self.quiz_id       = quiz_id
        self.poll_interval = poll_interval
        self.max_wait      = max_wait
        self._sleep        = sleep
        self._clock        = clock
        self.state         = None
        self.polls         = 0

    @property
    def _reports_path(self) -> str:
        return f"/courses/{self.course_id}/quizzes/{self.quiz_id}/reports"

    @staticmethod
    def _file_url(report):
        file_info = (report or {}).get("file") or {}
        return file_info.get("url")

    def run(self) -> str:
        """Drive the job to a terminal state and return the CSV text.

        Raises ReportFailed or ReportTimeout on the failing exits.
        """
        report = self.client.request(
            self._reports_path,
            method="POST",
            body={"quiz_report": {
                "report_type": "student_analysis",
                "includes_all_versions": False,
            }},
        )
        self.state = self.REQUESTED

        url = self._file_url(report)
        if not url:
            self.state = self.POLLING
            url = self._poll(report.get("id"))

        self.state = self.READY
        return self.client.download_file_content(url)

    def _poll(self, report_id) -> str:
        started = self._clock()
        while self._clock() - started < self.max_wait:
            self._sleep(self.poll_interval)
            self.polls += 1
            status = self.client.request(
                f"{self._reports_path}/{report_id}?include[]=file&include[]=progress"
            )
            url = self._file_url(status)
            if url:
                return url
            progress = status.get("progress") or {}
            if progress.get("workflow_state") == "failed":
                self.state = self.FAILED
                raise ReportFailed(
                    f"Quiz report generation failed for quiz {self.quiz_id}"
                )
            logger.debug("Quiz report %s not ready (poll %d)", report_id, self.polls)

        self.state = self.TIMED_OUT
        raise ReportTimeout(
            f"Quiz report for quiz {self.quiz_id} not ready after {self.max_wait:g}s"
        )


# ── Client ───────────────────────────────────────────────────────────────────

class LmsClient:
    """One Canvas instance, one token, one request in flight."""

    def __init__(self, base_url: str, token: str, canvas=None, session=None,
                 report_poll_interval=2.0, report_max_wait=60.0,
                 sleep=time.sleep):
        if not base_url or not token:
            raise EnvironmentError(
                "Canvas client requires CANVAS_BASE_URL and CANVAS_API_TOKEN"
            )
        self.base_url = base_url.rstrip("/")
        self.token    = token
        self.session  = session or requests.Session()
        self._canvas  = canvas
        self.report_poll_interval = report_poll_interval
        self.report_max_wait      = report_max_wait
        self._sleep   = sleep

    @property
    def canvas(self):
        if self._canvas is None:
            self._canvas = create_canvas_connection(self.base_url, self.token)
        return self._canvas

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/api/v1{path}"

    # ── raw HTTP ──────────────────────────────────────────────────────────

    def request(self, path: str, method: str = "GET", body=None):
        """Make one authenticated request and return the decoded JSON.

        Raises LmsError on a non-2xx response.
        """
        resp = self.session.request(
            method,
            self._url(path),
            headers=self._auth_headers(),
            json=body,
            timeout=REQUEST_TIMEOUT,
        )
        if not resp.ok:
            raise LmsError(resp.status_code, resp.text)
        if not resp.content:
            return None
        return resp.json()

    def request_all_pages(self, path: str) -> list:
        """GET every page of a paginated endpoint and concatenate them."""
        results = []
        url = self._url(path)
        while url:
            resp = self.session.get(
                url, headers=self._auth_headers(), timeout=REQUEST_TIMEOUT,
            )
            if not resp.ok:
                raise LmsError(resp.status_code, resp.text)
            results.extend(resp.json())
            url = (resp.links.get("next") or {}).get("url")
        return results

    # ── domain reads (canvasapi) ──────────────────────────────────────────

    def list_courses(self) -> list:
        return courses.get_courses(self.canvas)

    def list_assignments(self, course_id) -> list:
        return assignments.list_assignments(self.canvas, course_id)

    def list_quizzes(self, course_id) -> list:
        return assignments.list_quizzes(self.canvas, course_id)

    def get_quiz_assignment_id(self, course_id, quiz_id) -> int:
        return assignments.get_quiz_assignment_id(self.canvas, course_id, quiz_id)

    def list_submissions(self, course_id, assignment_id) -> list:
        return submissions.list_submissions(self.canvas, course_id, assignment_id)

    def list_enrollments(self, course_id, type="StudentEnrollment") -> list:
        return students.get_students(self.canvas, course_id, enrollment_type=type)

    def grade_submission(self, course_id, assignment_id, user_id, grade,
                         comment=None):
        return submissions.grade_submission(
            self.canvas, course_id, assignment_id, user_id, grade, comment,
        )

    # ── quiz reports ──────────────────────────────────────────────────────

    def generate_quiz_report(self, course_id, quiz_id) -> str:
        """Return the student-analysis CSV for a classic quiz."""
        job = QuizReportJob(
            self, course_id, quiz_id,
            poll_interval=self.report_poll_interval,
            max_wait=self.report_max_wait,
            sleep=self._sleep,
        )
        return job.run()

    # ── file downloads ────────────────────────────────────────────────────

    def download_file_bytes(self, url: str) -> bytes:
        """Download a Canvas file, following a CDN redirect without auth."""
        resp = self.session.get(
            url,
            headers=self._auth_headers(),
            allow_redirects=False,
            timeout=DOWNLOAD_TIMEOUT,
        )
        if resp.is_redirect:
            location = urljoin(url, resp.headers.get("location", ""))
            resp = self.session.get(location, timeout=DOWNLOAD_TIMEOUT)
        if not resp.ok:
            raise LmsError(resp.status_code, f"Download failed: {url}")
        return resp.content

    def download_file_content(self, url: str) -> str:
        return self.download_file_bytes(url).decode("utf-8", errors="replace")

    def download_file_as_base64(self, url: str) -> str:
        return base64.b64encode(self.download_file_bytes(url)).decode("ascii")
