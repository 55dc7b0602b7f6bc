"""Scheduler: runs the jobs of every update block, one at a time.

For each update block, in declared order:

1. Security-only blocks (open-pull-requests-limit: 0) first run a discovery
   job that only lists dependencies; those are checked against the private
   advisories file and GitHub, and the block ends there when nothing is
   vulnerable.
2. Unless the open pull request limit is reached, one job updates all
   dependencies (or just the vulnerable ones).
3. Unless dry-run, one job per open pull request of the package manager
   rebases or closes it.

The control-plane API runs for the whole scheduler run; each job is
registered before its container starts and cleared once it finishes.
"""

import logging
from typing import Any, Callable, Dict, List, Sequence, Tuple

from depsync.adapters.base import PullRequestHost
from depsync.config import AppConfig
from depsync.jobs.builder import JobBuilder, SourceInfo, make_random_job_token
from depsync.jobs.pull_requests import (
    PR_PROPERTY_SOURCE_REF_NAME,
    normalize_branch_name,
    parse_pull_request_properties,
)
from depsync.logging import Redactor
from depsync.models import PullRequestProperties, RunJobResult, UpdateResult
from depsync.processor import OutputKind, OutputProcessor
from depsync.registry import JobRegistry
from depsync.runner.job_runner import JobRunner, run_job
from depsync.schemas.config import DependabotConfig, DependabotUpdate
from depsync.schemas.job import JobConfig
from depsync.schemas.updates import UpdateDependencyList
from depsync.security.advisories import (
    GitHubSecurityAdvisoryClient,
    Package,
    SecurityVulnerability,
    filter_vulnerabilities,
    get_ghsa_ecosystem,
    load_advisories_file,
)
from depsync.server.api import ControlPlaneServer

LOG = logging.getLogger("depsync.scheduler")

DELETED_BRANCH_COMMENT = (
    "It might be a good idea to add an "
    "[`ignore` condition](https://docs.github.com/en/code-security/dependabot/working-with-dependabot/"
    "dependabot-options-reference#ignore--) "
    "with the desired `update-types` to your config file."
)

# (job id, job token, credentials token, api url) -> runner with .job_id and .run()
RunnerFactory = Callable[[int, str, str, str], Any]


class _JobOutcome:
    """What one finished job left behind before it was cleared."""

    def __init__(self, result: RunJobResult, requests: List[Tuple[str, Any]], affected: List[int]) -> None:
        self.result = result
        self.requests = requests
        self.affected = affected


class Scheduler:
    """Runs all (or the targeted) update blocks of a dependabot.yml against one repository."""

    def __init__(
        self,
        config: AppConfig,
        dependabot_config: DependabotConfig,
        host: PullRequestHost,
        source: SourceInfo,
        approver: PullRequestHost | None = None,
        redactor: Redactor | None = None,
        experiments: Dict[str, Any] | None = None,
        target_update_ids: Sequence[int] | None = None,
        dry_run: bool | None = None,
        runner_factory: RunnerFactory | None = None,
        advisory_client: GitHubSecurityAdvisoryClient | None = None,
    ) -> None:
        self.config = config
        self.dependabot_config = dependabot_config
        self.host = host
        self.source = source
        self.approver = approver
        self.redactor = redactor
        self.experiments = experiments or {}
        self.target_update_ids = list(target_update_ids or [])
        self.dry_run = config.pull_requests.dry_run if dry_run is None else dry_run
        self.runner_factory = runner_factory or self._make_runner
        github_token = config.github_token_resolved
        if advisory_client is None and github_token:
            advisory_client = GitHubSecurityAdvisoryClient(github_token, config.github.api_url)
        self.advisory_client = advisory_client

        self.registry = JobRegistry()
        self.existing_pull_requests: List[PullRequestProperties] = []
        self.existing_branch_names: List[str] | None = None
        self.processor: OutputProcessor | None = None
        self.api_url = ""

    def _make_runner(self, job_id: int, job_token: str, credentials_token: str, api_url: str) -> JobRunner:
        runner = self.config.runner
        return JobRunner(
            api_url,
            job_id,
            job_token,
            credentials_token,
            redactor=self.redactor,
            updater_image=runner.updater_image,
            updater_image_tag=runner.updater_image_tag,
            proxy_image=runner.proxy_image,
            memory_bytes=runner.memory_bytes,
            enable_connectivity_check=runner.enable_connectivity_check,
        )

    def selected_updates(self) -> List[Tuple[int, DependabotUpdate]]:
        """(index, update) pairs to run; unknown target ids are logged and skipped."""
        updates = self.dependabot_config.updates
        if not self.target_update_ids:
            return list(enumerate(updates))
        selected = []
        for index in self.target_update_ids:
            if 0 <= index < len(updates):
                selected.append((index, updates[index]))
            else:
                LOG.warning(
                    "Unable to find target update id '%s'. This value should be a zero based index of the "
                    "update in your config file. Expected range: 0-%s",
                    index,
                    len(updates) - 1,
                )
        return selected

    def run(self) -> List[UpdateResult]:
        """Run every selected update block.

        Raises:
            OSError: If the control-plane API cannot bind its port.
        """
        self.existing_branch_names = self.host.get_branch_names()
        self.existing_pull_requests = self.host.get_active_pull_request_properties(self.host.get_user_id())
        pr_config = self.config.pull_requests
        self.processor = OutputProcessor(
            self.registry,
            self.host,
            self.existing_pull_requests,
            existing_branch_names=self.existing_branch_names,
            approver=self.approver,
            author_name=pr_config.author_name,
            author_email=pr_config.author_email,
            auto_approve=pr_config.auto_approve,
            dry_run=self.dry_run,
            default_labels=pr_config.labels,
        )

        server_config = self.config.server
        server = ControlPlaneServer(
            self.registry,
            self.processor,
            host=server_config.host,
            port=server_config.port,
            base_path=server_config.base_path,
        )
        server.start()
        try:
            self.api_url = self.config.runner.api_url_template.format(port=server.port)
            self.abandon_pull_requests_with_deleted_source_branch()
            results = []
            for index, update in self.selected_updates():
                results.append(self.perform_update(index, update))
            return results
        finally:
            server.stop()

    def abandon_pull_requests_with_deleted_source_branch(self) -> None:
        """Abandon open PRs whose source branch is gone and drop them from the snapshot."""
        if self.existing_branch_names is None:
            return
        for pr in list(self.existing_pull_requests):
            source_branch = normalize_branch_name(pr.properties.get(PR_PROPERTY_SOURCE_REF_NAME))
            if not source_branch or source_branch in self.existing_branch_names:
                continue
            if self.dry_run:
                LOG.warning(
                    "Detected source branch for PR #%s has been deleted; skipping abandon as 'dry_run' is set",
                    pr.id,
                )
            else:
                LOG.warning(
                    "Detected source branch for PR #%s has been deleted; The pull request will be abandoned",
                    pr.id,
                )
                self.host.abandon_pull_request(pr.id, comment=DELETED_BRANCH_COMMENT)
            self.existing_pull_requests.remove(pr)

    def _run_job(
        self, update: DependabotUpdate, built: Tuple[int, JobConfig, List[Dict[str, Any]]]
    ) -> _JobOutcome:
        job_id, job, credentials = built
        job_token = make_random_job_token()
        credentials_token = make_random_job_token()
        self.registry.register(job_id, update, job, job_token, credentials_token, credentials)
        try:
            runner = self.runner_factory(job_id, job_token, credentials_token, self.api_url)
            result = run_job(runner)
            errors = self.registry.errors(job_id)
            if result.success and errors:
                types = ", ".join(e["error-type"] for e in errors)
                result = RunJobResult(False, f"Update job {job_id} reported errors: {types}")
            affected = self.registry.affected_pull_requests(job_id)
            return _JobOutcome(result, self.registry.requests(job_id) or [], affected.all() if affected else [])
        finally:
            self.registry.clear(job_id)

    def _find_vulnerabilities(self, package_manager: str, packages: List[Package]) -> List[SecurityVulnerability]:
        vulnerabilities: List[SecurityVulnerability] = []
        advisories_file = self.config.security.advisories_file
        if advisories_file is not None:
            vulnerabilities.extend(load_advisories_file(advisories_file))
        if self.advisory_client is not None:
            vulnerabilities.extend(
                self.advisory_client.get_security_vulnerabilities(get_ghsa_ecosystem(package_manager), packages)
            )
        else:
            LOG.info(
                "GitHub access token is not provided; Checking for vulnerabilities from GitHub is skipped. "
                "This is not an issue if you are using private security advisories file."
            )
        discovered = {p.name: p.version for p in packages}
        # Private advisories may list packages that are not in use
        vulnerabilities = [v for v in vulnerabilities if v.package.name in discovered]
        for vuln in vulnerabilities:
            vuln.package.version = discovered[vuln.package.name]
        return filter_vulnerabilities(vulnerabilities)

    def perform_update(self, index: int, update: DependabotUpdate) -> UpdateResult:
        """Run the jobs of one update block; never raises for job failures."""
        ecosystem = update.package_ecosystem
        try:
            return self._perform_update(index, update)
        except ValueError as e:
            LOG.error("Invalid update block %s (%s): %s", index, ecosystem, e)
            return UpdateResult(index, False, str(e))

    def _perform_update(self, index: int, update: DependabotUpdate) -> UpdateResult:
        if self.processor is None:
            raise RuntimeError("Update blocks can only be performed from Scheduler.run")
        builder = JobBuilder(
            self.source,
            self.dependabot_config,
            update,
            experiments=self.experiments,
            system_access_token=self.config.azure_token_resolved,
            github_token=self.config.github_token_resolved,
        )
        package_manager = builder.package_manager
        existing_for_pm = parse_pull_request_properties(self.existing_pull_requests, package_manager)
        existing_dependencies = list(existing_for_pm.values())

        affected: List[int] = []
        failures: List[str] = []

        def record(outcome: _JobOutcome) -> bool:
            affected.extend(outcome.affected)
            if not outcome.result.success:
                failures.append(outcome.result.message or "Update job failed")
            return outcome.result.success

        vulnerabilities: List[SecurityVulnerability] = []
        names_to_update: List[str] = []
        security_only = update.security_only
        if security_only:
            LOG.info("Discovering dependencies of %s in %s", update.package_ecosystem, update.directory)
            outcome = self._run_job(update, builder.for_dependencies_list(id=self.registry.new_job_id()))
            if not record(outcome):
                return UpdateResult(index, False, failures[0], affected)
            packages = _discovered_packages(outcome.requests)
            if not packages:
                LOG.info("No vulnerabilities detected for update %s in %s", update.package_ecosystem, update.directory)
                return UpdateResult(index, True, None, affected)
            LOG.info("Detected %s dependencies; Checking for vulnerabilities...", len(packages))
            vulnerabilities = self._find_vulnerabilities(package_manager, packages)
            names_to_update = list(dict.fromkeys(v.package.name for v in vulnerabilities))
            LOG.info(
                "Detected %s vulnerabilities affecting %s dependencies",
                len(vulnerabilities),
                len(names_to_update),
            )

        limit = update.open_pull_requests_limit
        if limit > 0 and self.processor.open_pull_requests_count(package_manager) >= limit:
            LOG.warning(
                "Skipping update for %s packages as the open pull requests limit (%s) has already been reached",
                update.package_ecosystem,
                limit,
            )
        elif security_only and not names_to_update:
            LOG.info("Nothing to update; dependencies are not affected by any known vulnerability")
        else:
            built = builder.for_update(
                id=self.registry.new_job_id(),
                dependency_names_to_update=names_to_update,
                existing_pull_requests=existing_dependencies,
                security_vulnerabilities=vulnerabilities,
            )
            record(self._run_job(update, built))

        if existing_for_pm:
            if self.dry_run:
                LOG.warning(
                    "Skipping update of %s existing %s package pull request(s) as 'dry_run' is set to 'true'",
                    len(existing_for_pm),
                    update.package_ecosystem,
                )
            else:
                for pr_id, persisted in existing_for_pm.items():
                    LOG.info("Refreshing pull request #%s", pr_id)
                    built = builder.for_update(
                        id=self.registry.new_job_id(),
                        existing_pull_requests=existing_dependencies,
                        pull_request_to_update=persisted,
                        security_vulnerabilities=vulnerabilities,
                    )
                    record(self._run_job(update, built))

        if failures:
            return UpdateResult(index, False, failures[0], affected)
        return UpdateResult(index, True, None, affected)


def _discovered_packages(requests: List[Tuple[str, Any]]) -> List[Package]:
    for kind, data in requests:
        if kind == OutputKind.UPDATE_DEPENDENCY_LIST.value and isinstance(data, UpdateDependencyList):
            return [Package(name=d.name, version=d.version) for d in data.dependencies]
    return []
