"""Turns updater outputs into pull request operations on the host.

Every output kind has one payload schema and one handler; handlers share the
signature (job, payload) -> HandleResult. There is no stored state machine:
the open pull request snapshot and each job's ledger are the state.
"""

import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Type

from pydantic import BaseModel

from depsync.adapters.base import HostPlatformError, PullRequestHost
from depsync.jobs.branch_name import get_branch_name_for_update
from depsync.jobs.pull_requests import (
    build_pull_request_properties,
    get_close_reason,
    get_persisted_pr,
    get_pull_request_changed_files,
    get_pull_request_description,
    get_pull_request_for_dependency_names,
    parse_pull_request_properties,
)
from depsync.models import PullRequestProperties
from depsync.registry import JobRegistry, RegisteredJob
from depsync.schemas.updates import (
    ClosePullRequest,
    CreatePullRequest,
    IncrementMetric,
    MarkAsProcessed,
    RecordEcosystemMeta,
    RecordEcosystemVersions,
    RecordMetrics,
    RecordUpdateJobError,
    UpdateDependencyList,
    UpdatePullRequest,
)

LOG = logging.getLogger("depsync.processor")


class OutputKind(str, Enum):
    CREATE_PULL_REQUEST = "create_pull_request"
    UPDATE_PULL_REQUEST = "update_pull_request"
    CLOSE_PULL_REQUEST = "close_pull_request"
    RECORD_UPDATE_JOB_ERROR = "record_update_job_error"
    RECORD_UPDATE_JOB_UNKNOWN_ERROR = "record_update_job_unknown_error"
    MARK_AS_PROCESSED = "mark_as_processed"
    UPDATE_DEPENDENCY_LIST = "update_dependency_list"
    RECORD_ECOSYSTEM_VERSIONS = "record_ecosystem_versions"
    RECORD_ECOSYSTEM_META = "record_ecosystem_meta"
    INCREMENT_METRIC = "increment_metric"
    RECORD_METRICS = "record_metrics"


OUTPUT_SCHEMAS: Dict[OutputKind, Type[BaseModel]] = {
    OutputKind.CREATE_PULL_REQUEST: CreatePullRequest,
    OutputKind.UPDATE_PULL_REQUEST: UpdatePullRequest,
    OutputKind.CLOSE_PULL_REQUEST: ClosePullRequest,
    OutputKind.RECORD_UPDATE_JOB_ERROR: RecordUpdateJobError,
    OutputKind.RECORD_UPDATE_JOB_UNKNOWN_ERROR: RecordUpdateJobError,
    OutputKind.MARK_AS_PROCESSED: MarkAsProcessed,
    OutputKind.UPDATE_DEPENDENCY_LIST: UpdateDependencyList,
    OutputKind.RECORD_ECOSYSTEM_VERSIONS: RecordEcosystemVersions,
    OutputKind.RECORD_ECOSYSTEM_META: RecordEcosystemMeta,
    OutputKind.INCREMENT_METRIC: IncrementMetric,
    OutputKind.RECORD_METRICS: RecordMetrics,
}

# Every kind is POSTed except this one
PATCH_KINDS = frozenset({OutputKind.MARK_AS_PROCESSED})


class HandleResult:
    """Outcome of one output event and the pull request it touched, if any."""

    def __init__(self, success: bool, pr: int | None = None) -> None:
        self.success = success
        self.pr = pr

    def __repr__(self) -> str:
        return f"HandleResult(success={self.success!r}, pr={self.pr!r})"


def parse_output(kind: OutputKind, data: Any) -> BaseModel:
    """Validate a raw payload for kind.

    Raises:
        pydantic.ValidationError: If data does not match the kind's schema.
    """
    return OUTPUT_SCHEMAS[kind].model_validate(data)


class OutputProcessor:
    """Applies updater outputs for the jobs of one scheduler run.

    existing_pull_requests is the run's snapshot of open pull requests; it is
    shared with the scheduler and closed pull requests are removed from it.
    """

    def __init__(
        self,
        registry: JobRegistry,
        host: PullRequestHost,
        existing_pull_requests: List[PullRequestProperties],
        existing_branch_names: List[str] | None = None,
        approver: PullRequestHost | None = None,
        author_name: str = "dependabot[bot]",
        author_email: str = "noreply@github.com",
        auto_approve: bool = False,
        dry_run: bool = False,
        default_labels: List[str] | None = None,
        debug: bool = False,
    ) -> None:
        self.registry = registry
        self.host = host
        self.approver = approver
        self.existing_pull_requests = existing_pull_requests
        self.existing_branch_names = existing_branch_names
        self.author_name = author_name
        self.author_email = author_email
        self.auto_approve = auto_approve
        self.dry_run = dry_run
        self.default_labels = default_labels or []
        self.debug = debug
        # Pull requests created during this run, per package manager
        self.created_pull_request_ids: Dict[str, List[int]] = {}
        self._default_branch: str | None = None
        self._handlers: Dict[OutputKind, Callable[[RegisteredJob, Any], HandleResult]] = {
            OutputKind.CREATE_PULL_REQUEST: self._create_pull_request,
            OutputKind.UPDATE_PULL_REQUEST: self._update_pull_request,
            OutputKind.CLOSE_PULL_REQUEST: self._close_pull_request,
            OutputKind.RECORD_UPDATE_JOB_ERROR: self._record_update_job_error,
            OutputKind.RECORD_UPDATE_JOB_UNKNOWN_ERROR: self._record_update_job_unknown_error,
            OutputKind.MARK_AS_PROCESSED: self._acknowledge,
            OutputKind.UPDATE_DEPENDENCY_LIST: self._acknowledge,
            OutputKind.RECORD_ECOSYSTEM_VERSIONS: self._acknowledge,
            OutputKind.RECORD_ECOSYSTEM_META: self._acknowledge,
            OutputKind.INCREMENT_METRIC: self._acknowledge,
            OutputKind.RECORD_METRICS: self._acknowledge,
        }

    def handle(self, job_id: int, kind: str, data: Any) -> bool:
        """Process one output of job_id; True on success.

        Raw payloads are validated first. Unknown kinds succeed.
        """
        entry = self.registry.lookup(job_id)
        if entry is None:
            LOG.error("No job found for ID '%s', cannot process request of type '%s'", job_id, kind)
            return False
        try:
            output_kind = OutputKind(kind)
        except ValueError:
            LOG.warning("Unknown dependabot output type '%s', ignoring...", kind)
            return True
        if not isinstance(data, BaseModel):
            data = parse_output(output_kind, data)

        self.registry.add_request(job_id, output_kind.value, data)
        LOG.info("Processing '%s' for job ID '%s'", output_kind.value, job_id)
        if self.debug:
            LOG.debug("%s", data.model_dump_json(by_alias=True))
        result = self._handlers[output_kind](entry, data)
        return result.success

    def _acknowledge(self, job: RegisteredJob, data: Any) -> HandleResult:
        return HandleResult(True)

    def _get_default_branch(self) -> str | None:
        if self._default_branch is None:
            self._default_branch = self.host.get_default_branch()
        return self._default_branch

    def open_pull_requests_count(self, package_manager: str) -> int:
        existing = parse_pull_request_properties(self.existing_pull_requests, package_manager)
        return len(existing) + len(self.created_pull_request_ids.get(package_manager, []))

    def _conflicting_branches(self, source_branch: str) -> List[str]:
        # Prefix match in both directions; unrelated names like foo and foobar also conflict
        return [
            branch
            for branch in self.existing_branch_names or []
            if branch != source_branch and (source_branch.startswith(branch) or branch.startswith(source_branch))
        ]

    def _create_pull_request(self, job: RegisteredJob, data: CreatePullRequest) -> HandleResult:
        title = data.pr_title
        if self.dry_run:
            LOG.warning("Skipping pull request creation of '%s' as 'dry_run' is set to 'true'", title)
            return HandleResult(True)

        package_manager = job.package_manager
        update = job.update
        limit = update.open_pull_requests_limit
        if limit > 0 and self.open_pull_requests_count(package_manager) >= limit:
            LOG.warning(
                "Skipping pull request creation of '%s' as the open pull requests limit (%s) has been reached",
                title,
                limit,
            )
            return HandleResult(True)

        changes = get_pull_request_changed_files(data)
        persisted = get_persisted_pr(data)
        try:
            target_branch = update.target_branch or self._get_default_branch()
        except HostPlatformError as e:
            LOG.error("Unable to create pull request '%s' as the default branch could not be read: %s", title, e)
            return HandleResult(False)
        directory = update.directory
        if not directory and update.directories and changes:
            directory = next((d for d in update.directories if changes[0].path.startswith(d)), None)
        branch_separator = update.pull_request_branch_name.separator if update.pull_request_branch_name else None
        source_branch = get_branch_name_for_update(
            package_manager,
            update.target_branch,
            directory,
            persisted.dependency_group_name,
            persisted.dependencies,
            branch_separator,
        )

        if source_branch in (self.existing_branch_names or []):
            LOG.error(
                "Unable to create pull request '%s' as source branch '%s' already exists; "
                "Delete the existing branch and try again.",
                title,
                source_branch,
            )
            return HandleResult(False)
        conflicting = self._conflicting_branches(source_branch)
        if conflicting:
            LOG.error(
                "Unable to create pull request '%s' as source branch '%s' would conflict with existing "
                "branch(es) '%s'; Delete the conflicting branch(es) and try again.",
                title,
                source_branch,
                ", ".join(conflicting),
            )
            return HandleResult(False)

        labels = [label.strip() for label in update.labels or []] or list(self.default_labels)
        pr_id = self.host.create_pull_request(
            source_branch=source_branch,
            source_commit=data.base_commit_sha or job.job.source.commit or "",
            target_branch=target_branch or "",
            author_name=self.author_name,
            author_email=self.author_email,
            title=title,
            description=get_pull_request_description(data.pr_body),
            commit_message=data.commit_message,
            changes=changes,
            properties=build_pull_request_properties(package_manager, persisted),
            labels=labels,
        )
        if pr_id and self.auto_approve and self.approver is not None:
            self.approver.approve_pull_request(pr_id)

        if not pr_id or pr_id <= 0:
            return HandleResult(False)
        self.created_pull_request_ids.setdefault(package_manager, []).append(pr_id)
        if self.existing_branch_names is not None:
            self.existing_branch_names.append(source_branch)
        job.affected.created.append(pr_id)
        return HandleResult(True, pr_id)

    def _update_pull_request(self, job: RegisteredJob, data: UpdatePullRequest) -> HandleResult:
        if self.dry_run:
            LOG.warning("Skipping pull request update as 'dry_run' is set to 'true'")
            return HandleResult(True)

        package_manager = job.package_manager
        pr = get_pull_request_for_dependency_names(
            self.existing_pull_requests, package_manager, data.dependency_names
        )
        if pr is None:
            LOG.error(
                "Could not find pull request to update for package manager '%s' with dependencies '%s'",
                package_manager,
                ", ".join(data.dependency_names),
            )
            return HandleResult(False)

        updated = self.host.update_pull_request(
            pull_request_id=pr.id,
            commit=data.base_commit_sha or job.job.source.commit or "",
            author_name=self.author_name,
            author_email=self.author_email,
            changes=get_pull_request_changed_files(data),
        )
        if updated and self.auto_approve and self.approver is not None:
            self.approver.approve_pull_request(pr.id)
        if updated:
            job.affected.updated.append(pr.id)
        return HandleResult(updated, pr.id)

    def _close_pull_request(self, job: RegisteredJob, data: ClosePullRequest) -> HandleResult:
        if self.dry_run:
            LOG.warning("Skipping pull request closure as 'dry_run' is set to 'true'")
            return HandleResult(True)

        package_manager = job.package_manager
        pr = get_pull_request_for_dependency_names(
            self.existing_pull_requests, package_manager, data.dependency_names
        )
        if pr is None:
            LOG.error(
                "Could not find pull request to close for package manager '%s' with dependencies '%s'",
                package_manager,
                ", ".join(data.dependency_names),
            )
            return HandleResult(False)

        closed = self.host.abandon_pull_request(
            pr.id,
            comment=get_close_reason(data),
            delete_source_branch=True,
        )
        if closed:
            job.affected.closed.append(pr.id)
            self.existing_pull_requests[:] = [p for p in self.existing_pull_requests if p.id != pr.id]
        return HandleResult(closed, pr.id)

    def _record_update_job_error(self, job: RegisteredJob, data: RecordUpdateJobError) -> HandleResult:
        LOG.error("Update job error: %s %s", data.error_type, json.dumps(data.error_details))
        self.registry.record_error(job.id, data.error_type, data.error_details)
        return HandleResult(False)

    def _record_update_job_unknown_error(self, job: RegisteredJob, data: RecordUpdateJobError) -> HandleResult:
        LOG.error("Update job unknown error: %s, %s", data.error_type, json.dumps(data.error_details))
        self.registry.record_error(job.id, data.error_type, data.error_details)
        return HandleResult(False)
