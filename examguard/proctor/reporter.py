"""
Result Reporter - Builds the session result and hands it to the result service

Submission is fire-and-forget: a failed submission is logged and the result
kept in a local fallback file. It never holds up session teardown.
"""

import asyncio
import json
import logging
import os
import threading
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set

import httpx

from .events import ReasonCode
from .exceptions import SubmissionError
from .state import (
    AssessmentInfo,
    GradingPayload,
    Outcome,
    SessionPhase,
    SessionResult,
)
from .utils.logging import log_session_end, log_submission_failed

logger = logging.getLogger(__name__)


class SubmissionClient:
    """HTTP client for the assessment result service"""

    SAVE_RESULT_PATH = "/assessments/save-result"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            base_url: Result service root, e.g. http://localhost:5000/api
            token: Optional bearer token
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def submit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a result record.

        Raises:
            SubmissionError: On transport errors or non-2xx responses
        """
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport
            ) as client:
                response = await client.post(self.SAVE_RESULT_PATH, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise SubmissionError(f"Result submission failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            # Accepted, but the service answered with something other than JSON
            logger.warning(f"Result service returned a non-JSON body ({response.status_code})")
            return {}


class LocalResultStore:
    """Append-only JSON-lines file holding results the service never got"""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: Dict[str, Any]):
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


class ResultReporter:
    """
    Turns the end of a session into a SessionResult and submits it.

    Terminated sessions always report a score of 0 and no badge.
    """

    def __init__(
        self,
        client: Optional[SubmissionClient] = None,
        fallback: Optional[LocalResultStore] = None,
        pass_score: int = 70,
        history: int = 100
    ):
        """
        Args:
            client: Result service client; None keeps every result locally
            fallback: Where results go when the service cannot take them
            pass_score: Score at or above which the badge is awarded
            history: How many successfully submitted results to remember
        """
        self.client = client
        self.fallback = fallback
        self.pass_score = pass_score
        self.submitted: Deque[SessionResult] = deque(maxlen=history)
        self._pending: Set[asyncio.Task] = set()

    def build_result(
        self,
        session_id: str,
        final_phase: SessionPhase,
        reason: Optional[ReasonCode],
        elapsed_seconds: int,
        assessment: AssessmentInfo,
        grading: Optional[GradingPayload] = None
    ) -> SessionResult:
        """Assemble the outcome record for a terminal phase"""
        if not final_phase.is_terminal:
            raise ValueError(f"Cannot report a session in phase {final_phase.value}")

        grading = grading or GradingPayload()

        if final_phase is SessionPhase.TERMINATED:
            return SessionResult(
                session_id=session_id,
                title=assessment.title,
                outcome=Outcome.TERMINATED,
                reason=reason,
                elapsed_seconds=elapsed_seconds,
                score=0,
                correct_answers=0,
                total_questions=grading.total_questions,
                badge=None,
                status="terminated"
            )

        passed = grading.score >= self.pass_score
        return SessionResult(
            session_id=session_id,
            title=assessment.title,
            outcome=Outcome.PASS if passed else Outcome.FAIL,
            reason=None,
            elapsed_seconds=elapsed_seconds,
            score=grading.score,
            correct_answers=grading.correct_answers,
            total_questions=grading.total_questions,
            badge=assessment.badge if passed else None,
            status="completed"
        )

    def report(
        self,
        session_id: str,
        final_phase: SessionPhase,
        reason: Optional[ReasonCode],
        elapsed_seconds: int,
        assessment: AssessmentInfo,
        grading: Optional[GradingPayload] = None
    ) -> SessionResult:
        """
        Build the result and schedule its submission.

        Returns immediately; submission runs in the background.
        """
        result = self.build_result(
            session_id, final_phase, reason, elapsed_seconds, assessment, grading
        )
        log_session_end(
            session_id,
            result.status,
            result.score,
            result.elapsed_seconds,
            reason.value if reason else None
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            # No event loop to submit from: keep the result locally
            self._store_locally(result)
        else:
            task = loop.create_task(self._submit(result), name=f"submit-{session_id}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return result

    async def drain(self):
        """Wait for all outstanding submissions"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _submit(self, result: SessionResult):
        payload = result.to_payload()

        if self.client is None:
            logger.info("No result service configured, storing result locally")
            self._store_locally(result)
            return

        try:
            await self.client.submit(payload)
            self.submitted.append(result)
            logger.info(f"Result submitted for session {result.session_id}")
        except SubmissionError as e:
            log_submission_failed(result.session_id, str(e))
            self._store_locally(result)

    def _store_locally(self, result: SessionResult):
        if self.fallback is None:
            return
        record = result.to_payload()
        record["sessionId"] = result.session_id
        record["completedAt"] = result.completed_at
        try:
            self.fallback.append(record)
        except OSError as e:
            logger.error(f"Could not write local result for {result.session_id}: {e}")


def create_default_reporter(settings) -> ResultReporter:
    """Reporter configured from Settings"""
    client = None
    if settings.RESULTS_API_URL:
        client = SubmissionClient(
            base_url=settings.RESULTS_API_URL,
            token=settings.RESULTS_API_TOKEN,
            timeout=settings.RESULTS_API_TIMEOUT
        )
    fallback = LocalResultStore(os.path.expanduser(settings.RESULTS_FALLBACK_PATH))
    return ResultReporter(client=client, fallback=fallback, pass_score=settings.PASS_SCORE)
