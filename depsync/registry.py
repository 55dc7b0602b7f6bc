"""Registry of jobs currently known to the control-plane API.

The scheduler owns one JobRegistry per run and hands it to the API server and
the output processor. All access goes through the methods below.
"""

import hmac
import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Tuple

from depsync.jobs.builder import make_random_job_id
from depsync.models import AffectedPullRequests
from depsync.schemas.config import DependabotUpdate
from depsync.schemas.job import JobConfig

LOG = logging.getLogger("depsync.registry")


class TokenType(str, Enum):
    JOB = "job"
    CREDENTIALS = "credentials"


class RegisteredJob:
    """One registered job with its tokens, credentials and outcome."""

    def __init__(
        self,
        id: int,
        update: DependabotUpdate,
        job: JobConfig,
        job_token: str,
        credentials_token: str,
        credentials: List[Dict[str, Any]],
    ) -> None:
        self.id = id
        self.update = update
        self.job = job
        self.job_token = job_token
        self.credentials_token = credentials_token
        self.credentials = credentials
        self.requests: List[Tuple[str, Any]] = []
        self.affected = AffectedPullRequests()
        self.errors: List[Dict[str, Any]] = []

    @property
    def package_manager(self) -> str:
        return self.job.package_manager


class JobRegistry:
    """Thread-safe map of job id to RegisteredJob."""

    def __init__(self) -> None:
        self._jobs: Dict[int, RegisteredJob] = {}
        self._lock = threading.Lock()

    def new_job_id(self) -> int:
        """Random job id not used by any registered job."""
        with self._lock:
            while True:
                job_id = make_random_job_id()
                if job_id not in self._jobs:
                    return job_id

    def register(
        self,
        id: int,
        update: DependabotUpdate,
        job: JobConfig,
        job_token: str,
        credentials_token: str,
        credentials: List[Dict[str, Any]],
    ) -> RegisteredJob:
        """Add a job.

        Raises:
            ValueError: If a job with the same id is already registered.
        """
        entry = RegisteredJob(id, update, job, job_token, credentials_token, credentials)
        with self._lock:
            if id in self._jobs:
                raise ValueError(f"job {id} is already registered")
            self._jobs[id] = entry
        LOG.debug("Registered job %s (%s)", id, job.package_manager)
        return entry

    def lookup(self, id: int) -> RegisteredJob | None:
        with self._lock:
            return self._jobs.get(id)

    def job(self, id: int) -> JobConfig | None:
        entry = self.lookup(id)
        return entry.job if entry else None

    def credentials(self, id: int) -> List[Dict[str, Any]] | None:
        entry = self.lookup(id)
        return entry.credentials if entry else None

    def token(self, id: int, token_type: TokenType) -> str | None:
        entry = self.lookup(id)
        if entry is None:
            return None
        return entry.job_token if token_type == TokenType.JOB else entry.credentials_token

    def authenticate(self, token_type: TokenType, id: int, value: str) -> bool:
        token = self.token(id, token_type)
        if not token:
            LOG.debug("Authentication failed: %s token %s not found", token_type.value, id)
            return False
        if not hmac.compare_digest(token.encode("utf-8"), value.encode("utf-8")):
            LOG.debug("Authentication failed: invalid token for %s token %s", token_type.value, id)
            return False
        return True

    def add_request(self, id: int, kind: str, data: Any) -> None:
        with self._lock:
            entry = self._jobs.get(id)
            if entry is not None:
                entry.requests.append((kind, data))

    def requests(self, id: int) -> List[Tuple[str, Any]] | None:
        with self._lock:
            entry = self._jobs.get(id)
            return list(entry.requests) if entry else None

    def affected_pull_requests(self, id: int) -> AffectedPullRequests | None:
        entry = self.lookup(id)
        return entry.affected if entry else None

    def record_error(self, id: int, error_type: str, details: Any = None) -> None:
        with self._lock:
            entry = self._jobs.get(id)
            if entry is not None:
                entry.errors.append({"error-type": error_type, "error-details": details})

    def errors(self, id: int) -> List[Dict[str, Any]]:
        with self._lock:
            entry = self._jobs.get(id)
            return list(entry.errors) if entry else []

    def clear(self, id: int) -> None:
        """Forget the job, its tokens and its ledger."""
        with self._lock:
            self._jobs.pop(id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
