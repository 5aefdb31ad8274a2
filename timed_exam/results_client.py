# timed_exam/results_client.py
import logging
from urllib.parse import quote

import requests

from .questions import Question

log = logging.getLogger(__name__)


class SubmissionError(Exception):
    """Raised when the results server cannot be reached or rejects a request."""


class ResultsClient:
    """Talks to the results server's JSON API.

    An instance is callable with a submission payload, so it can be passed
    straight to ``ExamSessionController(results_sink=...)``.
    """

    def __init__(self, base_url, session=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self, payload):
        return self.submit(payload)

    def submit(self, payload):
        """Posts a finished exam and returns the server's exam session id."""
        data = self._request('POST', '/api/submit-exam', json=payload)
        log.info(f"Exam results stored: session {data.get('examSessionId')}")
        return data['examSessionId']

    def fetch_questions(self):
        """Returns (questions, timing block) as served by the server."""
        data = self._request('GET', '/api/questions')
        return [Question.from_dict(q) for q in data.get('questions', [])], data

    def student_results(self, school_id):
        return self._request('GET', f"/api/student-results/{quote(str(school_id), safe='')}")

    def all_results(self):
        return self._request('GET', '/api/all-results')

    def exam_details(self, exam_session_id):
        return self._request('GET', f"/api/exam-details/{int(exam_session_id)}")

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            log.error(f"{method} {url} failed: {e}")
            raise SubmissionError(f"Could not reach results server: {e}") from e

        if not response.ok:
            try:
                body = response.json()
            except ValueError:
                body = None
            error = body.get('error', response.reason) if isinstance(body, dict) else response.reason
            log.error(f"{method} {url} returned {response.status_code}: {error}")
            raise SubmissionError(f"Results server error ({response.status_code}): {error}")

        try:
            return response.json()
        except ValueError as e:
            raise SubmissionError(f"Results server sent invalid JSON for {path}") from e
