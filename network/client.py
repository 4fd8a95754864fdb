"""
NIBBLEPOW Coordinator Client
HTTP access to the job coordinator: fetch the current job, submit solutions.
"""

import time
from typing import Any, Dict, Optional
import logging

import requests

import config
from core.errors import TransientNetworkError

logger = logging.getLogger(__name__)


class CoordinatorClient:
    """HTTP client for one coordinator endpoint."""

    def __init__(
        self,
        base_url: str = config.COORDINATOR_URL,
        timeout: float = config.HTTP_TIMEOUT,
        max_retries: int = config.SUBMIT_MAX_RETRIES,
        backoff_base: float = config.BACKOFF_BASE,
        backoff_max: float = config.BACKOFF_MAX,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ):
        """
        Initialize the client.

        Args:
            base_url: Job endpoint; solutions are posted to base_url + /submit
            timeout: Per-request timeout in seconds
            max_retries: Submission retries after the first attempt
            backoff_base: First retry delay in seconds
            backoff_max: Maximum retry delay in seconds
            session: requests.Session to reuse (created if omitted)
            sleep: Sleep function used between retries
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', config.USER_AGENT)
        self._sleep = sleep

    @property
    def submit_url(self) -> str:
        return f"{self.base_url}{config.SUBMIT_PATH}"

    def _request(self, method: str, url: str, data: Dict = None) -> requests.Response:
        """Make one HTTP request, mapping every failure to TransientNetworkError."""
        try:
            if method == 'POST':
                resp = self.session.post(url, json=data, timeout=self.timeout)
            else:
                resp = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransientNetworkError(f"{method} {url} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TransientNetworkError(f"{method} {url} failed: {e}") from e

        if resp.status_code != 200:
            raise TransientNetworkError(
                f"{method} {url} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp

    def fetch_job(self) -> str:
        """
        Fetch the current job descriptor text.

        Single attempt; the coordinator loop backs off between polls.
        """
        return self._request('GET', self.base_url).text

    def submit_solution(self, result) -> Dict[str, Any]:
        """
        Submit a winning result, retrying with exponential backoff.

        Args:
            result: CandidateResult to submit

        Returns:
            Decoded JSON reply ({} if the reply is not JSON)
        """
        body = result.to_submission()
        attempt = 0

        while True:
            try:
                resp = self._request('POST', self.submit_url, body)
                break
            except TransientNetworkError as e:
                if attempt >= self.max_retries:
                    raise TransientNetworkError(
                        f"Submission failed after {attempt + 1} attempt(s): {e}",
                        status_code=e.status_code,
                    ) from e
                delay = config.backoff_delay(attempt, base=self.backoff_base, maximum=self.backoff_max)
                logger.warning(f"Submit attempt {attempt + 1} failed ({e}); retrying in {delay:.1f}s")
                self._sleep(delay)
                attempt += 1

        try:
            return resp.json()
        except ValueError:
            return {}

    def get_status(self) -> Optional[str]:
        """Current job text, or None if the coordinator is unreachable."""
        try:
            return self.fetch_job()
        except TransientNetworkError as e:
            logger.warning(f"Coordinator unreachable: {e}")
            return None

    def close(self):
        self.session.close()
