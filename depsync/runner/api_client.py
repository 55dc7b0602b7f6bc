"""Client for the control-plane API as seen from the runner side.

The runner fetches the job descriptor and credentials through the same routes
the updater container uses, so what the container gets is exactly what was
registered.
"""

import logging
from typing import Any, Dict, List

import requests
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from depsync.logging import Redactor
from depsync.schemas.job import JobConfig

LOG = logging.getLogger("depsync.runner.api_client")

MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 2.0
REQUEST_TIMEOUT = 30

# Credential fields whose values must never be logged
SECRET_CREDENTIAL_FIELDS = ("password", "token", "auth-key")


class JobDetailsFetchingError(Exception):
    """Job descriptor could not be fetched."""

    pass


class CredentialFetchingError(Exception):
    """Job credentials could not be fetched."""

    pass


class _RetryableStatus(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(f"unexpected status code: {status}")
        self.status = status


class ApiClient:
    """Runner-side client of one job's control-plane routes."""

    def __init__(
        self,
        base_url: str,
        job_id: int,
        job_token: str,
        credentials_token: str,
        redactor: Redactor | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.job_id = job_id
        self.job_token = job_token
        self.credentials_token = credentials_token
        self.redactor = redactor
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def _url(self, operation: str) -> str:
        return f"{self.base_url}/update_jobs/{self.job_id}/{operation}"

    @retry(
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=RETRY_BASE_DELAY),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, _RetryableStatus)),
        before_sleep=before_sleep_log(LOG, logging.WARNING),
        reraise=True,
    )
    def _get_with_retry(self, operation: str, token: str) -> requests.Response:
        """GET with up to MAX_ATTEMPTS tries on connection errors and 5xx."""
        resp = self._session.request(
            "GET", self._url(operation), headers={"Authorization": token}, timeout=REQUEST_TIMEOUT
        )
        if resp.status_code >= 500:
            raise _RetryableStatus(resp.status_code)
        return resp

    def get_job_details(self) -> JobConfig:
        """Registered job descriptor.

        Raises:
            JobDetailsFetchingError: On any failure or an empty response.
        """
        try:
            resp = self._get_with_retry("details", self.job_token)
        except (requests.RequestException, _RetryableStatus) as e:
            raise JobDetailsFetchingError(f"fetching job details: {e}") from e
        if resp.status_code != 200:
            raise JobDetailsFetchingError(f"fetching job details: unexpected status code: {resp.status_code}")
        if not resp.content:
            raise JobDetailsFetchingError("fetching job details: missing response")
        try:
            return JobConfig.model_validate(resp.json())
        except ValueError as e:
            raise JobDetailsFetchingError(f"fetching job details: {e}") from e

    def get_credentials(self) -> List[Dict[str, Any]]:
        """Registered credentials; secret fields are masked before returning.

        Raises:
            CredentialFetchingError: On any failure or an empty response.
        """
        try:
            resp = self._get_with_retry("credentials", self.credentials_token)
        except (requests.RequestException, _RetryableStatus) as e:
            raise CredentialFetchingError(f"fetching credentials: {e}") from e
        if resp.status_code != 200:
            raise CredentialFetchingError(f"fetching credentials: unexpected status code: {resp.status_code}")
        if not resp.content:
            raise CredentialFetchingError("fetching credentials: missing response")
        try:
            credentials = resp.json()
        except ValueError as e:
            raise CredentialFetchingError(f"fetching credentials: {e}") from e
        if not isinstance(credentials, list):
            raise CredentialFetchingError("fetching credentials: expected a list")

        if self.redactor is not None:
            for credential in credentials:
                for field in SECRET_CREDENTIAL_FIELDS:
                    value = credential.get(field)
                    if value:
                        self.redactor.mask(value)
        return credentials

    def _send(self, method: str, operation: str, payload: Any) -> None:
        resp = self._session.request(
            method,
            self._url(operation),
            json=payload,
            headers={"Authorization": self.job_token},
            timeout=REQUEST_TIMEOUT,
        )
        if resp.status_code != 204:
            raise RuntimeError(f"Unexpected status code: {resp.status_code}")

    def send_metrics(self, name: str, metric_type: str, value: float, tags: Dict[str, str] | None = None) -> None:
        """Report one metric; failures are logged, never raised."""
        metric = {"metric": f"dependabot.action.{name}", "type": metric_type, "value": value, "tags": tags or {}}
        try:
            self._send("POST", "record_metrics", {"data": [metric]})
            LOG.info("Successfully sent metric (dependabot.action.%s) to remote API endpoint", name)
        except Exception as e:
            LOG.warning("Metrics reporting failed: %s", e)
