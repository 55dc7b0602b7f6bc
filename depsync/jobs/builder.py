"""Builds updater job descriptors and credentials from an update block."""

import secrets
import string
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from depsync.schemas.config import (
    AllowCondition,
    DependabotConfig,
    DependabotUpdate,
    DependencyGroup,
    IgnoreCondition,
)
from depsync.schemas.job import (
    AllowedUpdate,
    CommitMessageOptions,
    Condition,
    ExistingDependency,
    ExistingGroupPullRequest,
    GroupJob,
    JobConfig,
    JobSource,
    SecurityAdvisory,
)
from depsync.schemas.updates import PersistedPullRequest
from depsync.security.advisories import SecurityVulnerability

JOB_ID_LIMIT = 10_000_000_000
JOB_TOKEN_LENGTH = 30
_BASE36 = string.digits + string.ascii_lowercase

# Config ecosystem -> updater package manager; anything else passes through
PACKAGE_MANAGERS = {
    "docker-compose": "docker_compose",
    "dotnet-sdk": "dotnet_sdk",
    "github-actions": "github_actions",
    "gitsubmodule": "submodules",
    "gomod": "go_modules",
    "mix": "hex",
    "npm": "npm_and_yarn",
    "pnpm": "npm_and_yarn",
    "yarn": "npm_and_yarn",
    "pipenv": "pip",
    "pip-compile": "pip",
    "poetry": "pip",
}

REQUIREMENTS_UPDATE_STRATEGIES = {
    "auto": None,
    "increase": "bump_versions",
    "increase-if-necessary": "bump_versions_if_necessary",
    "lockfile-only": "lockfile_only",
    "widen": "widen_ranges",
}


class JobBuildError(ValueError):
    """Raised when an update block cannot be turned into a job."""

    pass


class SourceInfo:
    """Where the repository lives on the host."""

    def __init__(self, hostname: str, api_endpoint: str, repository_slug: str, provider: str = "azure") -> None:
        self.provider = provider
        self.hostname = hostname
        self.api_endpoint = api_endpoint
        self.repository_slug = repository_slug


def make_random_job_id() -> int:
    return secrets.randbelow(JOB_ID_LIMIT)


def make_random_job_token() -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(JOB_TOKEN_LENGTH))


def map_package_ecosystem_to_package_manager(ecosystem: str) -> str:
    return PACKAGE_MANAGERS.get(ecosystem, ecosystem)


def map_source(source: SourceInfo, update: DependabotUpdate) -> JobSource:
    return JobSource(
        provider=source.provider,
        api_endpoint=source.api_endpoint,
        hostname=source.hostname,
        repo=source.repository_slug,
        branch=update.target_branch,
        commit=None,
        directory=update.directory,
        directories=update.directories,
    )


def map_version_strategy(strategy: str | None) -> str | None:
    """Requirements update strategy for a versioning-strategy value.

    Raises:
        JobBuildError: If the strategy is not a known option.
    """
    if not strategy:
        return None
    if strategy not in REQUIREMENTS_UPDATE_STRATEGIES:
        raise JobBuildError(f"Invalid dependabot.yaml versioning strategy option '{strategy}'")
    return REQUIREMENTS_UPDATE_STRATEGIES[strategy]


def map_groups(groups: Dict[str, Optional[DependencyGroup]] | None) -> List[GroupJob]:
    """Job groups; null entries are skipped and missing patterns match everything."""
    result = []
    for name, group in (groups or {}).items():
        if group is None:
            continue
        result.append(
            GroupJob(
                name=name,
                applies_to=group.applies_to,
                rules={
                    "patterns": group.patterns or ["*"],
                    "exclude-patterns": group.exclude_patterns,
                    "dependency-type": group.dependency_type,
                    "update-types": group.update_types,
                },
            )
        )
    return result


def map_allowed_updates(allow: List[AllowCondition] | None, security_only: bool = False) -> List[AllowedUpdate]:
    # Without allow conditions only direct dependencies are updated
    if allow is None:
        return [AllowedUpdate(dependency_type="direct", update_type="security" if security_only else "all")]
    return [
        AllowedUpdate(
            dependency_name=a.dependency_name,
            dependency_type=a.dependency_type,
            update_type=a.update_type,
        )
        for a in allow
    ]


def map_ignore_conditions(ignore: List[IgnoreCondition] | None) -> List[Condition]:
    result = []
    for cond in ignore or []:
        versions = cond.versions
        if isinstance(versions, list):
            versions = ", ".join(versions)
        result.append(
            Condition(
                dependency_name=cond.dependency_name or "*",
                source=cond.source,
                updated_at=cond.updated_at,
                update_types=cond.update_types,
                version_requirement=versions,
            )
        )
    return result


def map_experiments(experiments: Dict[str, Any] | None) -> Dict[str, Any]:
    """Experiments with "true"/"false" strings turned into booleans.

    Values that are neither strings nor booleans are dropped.
    """
    result: Dict[str, Any] = {}
    for key, value in (experiments or {}).items():
        if isinstance(value, str) and value.lower() in ("true", "false"):
            result[key] = value.lower() == "true"
        elif isinstance(value, (str, bool)):
            result[key] = value
    return result


def map_security_advisories(vulnerabilities: Sequence[SecurityVulnerability] | None) -> List[SecurityAdvisory]:
    """One advisory per package and advisory identifier set."""
    grouped: Dict[str, List[SecurityVulnerability]] = {}
    for vuln in vulnerabilities or []:
        ids = "/".join(f"{i.type}:{i.value}" for i in vuln.advisory.identifiers)
        grouped.setdefault(f"{vuln.package.name}/{ids}", []).append(vuln)
    return [
        SecurityAdvisory(
            dependency_name=vulns[0].package.name,
            affected_versions=[v.vulnerable_version_range for v in vulns if v.vulnerable_version_range],
            patched_versions=[
                v.first_patched_version.identifier
                for v in vulns
                if v.first_patched_version and v.first_patched_version.identifier
            ],
            unaffected_versions=[],
        )
        for vulns in grouped.values()
    ]


def map_registry(name: str, registry: Dict[str, Any]) -> Dict[str, Any]:
    """Updater credential for one dependabot.yml registry entry.

    Raises:
        JobBuildError: If type, url or a type-specific field is missing.
    """
    raw_type = registry.get("type")
    if not raw_type:
        raise JobBuildError(f"The value for 'type' in dependency registry config '{name}' is missing")
    reg_type = str(raw_type).replace("-", "_")
    credential: Dict[str, Any] = {"type": reg_type}

    if reg_type == "hex_organization":
        if not registry.get("organization"):
            raise JobBuildError(f"The value 'organization' in dependency registry config '{name}' is missing")
        credential["organization"] = registry["organization"]
    if reg_type == "hex_repository":
        if not registry.get("repo"):
            raise JobBuildError(f"The value 'repo' in dependency registry config '{name}' is missing")
        credential["repo"] = registry["repo"]
        credential["auth-key"] = registry.get("auth-key")
        credential["public-key-fingerprint"] = registry.get("public-key-fingerprint")

    for key in ("username", "password", "key", "token"):
        if registry.get(key) is not None:
            credential[key] = registry[key]
    if "replaces-base" in registry:
        credential["replaces-base"] = registry["replaces-base"]

    url = registry.get("url")
    if not url and reg_type != "hex_organization":
        raise JobBuildError(f"The value 'url' in dependency registry config '{name}' is missing")
    if url:
        parsed = urlparse(url)
        if parsed.scheme and parsed.hostname:
            if reg_type in ("docker_registry", "npm_registry"):
                credential["registry"] = url.replace("https://", "").replace("http://", "")
            if reg_type in ("terraform_registry", "composer_repository"):
                credential["host"] = parsed.hostname
        if reg_type == "python_index":
            credential["index-url"] = url
        if reg_type not in ("docker_registry", "npm_registry", "terraform_registry", "python_index"):
            credential["url"] = url
    return credential


def map_credentials(
    source_hostname: str,
    system_access_user: str | None = None,
    system_access_token: str | None = None,
    github_token: str | None = None,
    registries: Dict[str, Dict[str, Any]] | None = None,
) -> List[Dict[str, Any]]:
    """Credentials for cloning the source, GitHub lookups and private registries."""
    credentials: List[Dict[str, Any]] = []
    if system_access_token:
        credentials.append(
            {
                "type": "git_source",
                "host": source_hostname,
                "username": (system_access_user or "").strip() or "x-access-token",
                "password": system_access_token,
            }
        )
    # Avoids rate limits when fetching release notes
    if github_token:
        credentials.append(
            {
                "type": "git_source",
                "host": "github.com",
                "username": "x-access-token",
                "password": github_token,
            }
        )
    for name, registry in (registries or {}).items():
        credentials.append(map_registry(name, registry))
    return credentials


def split_existing_pull_requests(
    existing: Sequence[PersistedPullRequest],
) -> Tuple[List[List[ExistingDependency]], List[ExistingGroupPullRequest]]:
    """Ungrouped PRs as dependency lists, grouped PRs with their group name."""
    ungrouped: List[List[ExistingDependency]] = []
    grouped: List[ExistingGroupPullRequest] = []
    for pr in existing:
        if pr.dependency_group_name:
            grouped.append(
                ExistingGroupPullRequest(
                    dependency_group_name=pr.dependency_group_name,
                    dependencies=list(pr.dependencies),
                )
            )
        else:
            ungrouped.append(list(pr.dependencies))
    return ungrouped, grouped


class JobBuilder:
    """Creates jobs for one update block of a dependabot.yml."""

    def __init__(
        self,
        source: SourceInfo,
        config: DependabotConfig,
        update: DependabotUpdate,
        experiments: Dict[str, Any] | None = None,
        system_access_user: str | None = None,
        system_access_token: str | None = None,
        github_token: str | None = None,
        debug: bool = False,
    ) -> None:
        self.config = config
        self.update = update
        self.experiments = experiments or {}
        self.debug = debug
        self.package_manager = map_package_ecosystem_to_package_manager(update.package_ecosystem)
        self.source = map_source(source, update)
        self.credentials = map_credentials(
            source_hostname=source.hostname,
            system_access_user=system_access_user,
            system_access_token=system_access_token,
            github_token=github_token,
            registries=config.registries,
        )

    def for_dependencies_list(self, id: int | None = None) -> Tuple[int, JobConfig, List[Dict[str, Any]]]:
        """Job that updates nothing but reports the dependency list."""
        job_id = make_random_job_id() if id is None else id
        job = JobConfig(
            id=job_id,
            package_manager=self.package_manager,
            updating_a_pull_request=False,
            dependencies=None,
            allowed_updates=[AllowedUpdate(dependency_type="direct", update_type="all")],
            ignore_conditions=[Condition(dependency_name="*")],
            security_updates_only=False,
            security_advisories=[],
            source=self.source,
            update_subdependencies=False,
            existing_pull_requests=[],
            existing_group_pull_requests=[],
            experiments=self.experiments,
            requirements_update_strategy=None,
            lockfile_only=False,
            debug=self.debug,
        )
        return job_id, job, self.credentials

    def for_update(
        self,
        id: int | None = None,
        dependency_names_to_update: Sequence[str] | None = None,
        existing_pull_requests: Sequence[PersistedPullRequest] = (),
        pull_request_to_update: PersistedPullRequest | None = None,
        security_vulnerabilities: Sequence[SecurityVulnerability] | None = None,
    ) -> Tuple[int, JobConfig, List[Dict[str, Any]]]:
        """Job that opens new PRs, or refreshes pull_request_to_update when given.

        Raises:
            JobBuildError: If the versioning strategy is invalid.
        """
        job_id = make_random_job_id() if id is None else id
        security_only = self.update.security_only

        group_to_refresh: str | None = None
        vulnerabilities: Sequence[SecurityVulnerability] | None = None
        if pull_request_to_update is not None:
            updating = True
            group_to_refresh = pull_request_to_update.dependency_group_name
            names: List[str] | None = [d.dependency_name for d in pull_request_to_update.dependencies]
            if security_vulnerabilities is not None:
                vulnerabilities = [v for v in security_vulnerabilities if v.package.name in names]
        else:
            updating = False
            names = list(dependency_names_to_update) if dependency_names_to_update else None
            if security_only and names:
                vulnerable = {v.package.name for v in security_vulnerabilities or []}
                names = [n for n in names if n in vulnerable]

        ungrouped, grouped = split_existing_pull_requests(existing_pull_requests)

        commit_message = self.update.commit_message
        commit_message_options = None
        if commit_message is not None:
            include = (commit_message.include or "").strip().lower()
            commit_message_options = CommitMessageOptions(
                prefix=commit_message.prefix,
                prefix_development=commit_message.prefix_development,
                include_scope=True if include == "scope" else None,
            )

        insecure = (self.update.insecure_external_code_execution or "").strip().lower()
        job = JobConfig(
            id=job_id,
            package_manager=self.package_manager,
            updating_a_pull_request=updating,
            dependency_group_to_refresh=group_to_refresh,
            dependency_groups=map_groups(self.update.groups),
            dependencies=names,
            allowed_updates=map_allowed_updates(self.update.allow, security_only),
            ignore_conditions=map_ignore_conditions(self.update.ignore),
            security_updates_only=security_only,
            security_advisories=map_security_advisories(vulnerabilities),
            source=self.source,
            update_subdependencies=False,
            existing_pull_requests=ungrouped,
            existing_group_pull_requests=grouped,
            commit_message_options=commit_message_options,
            cooldown=self.update.cooldown,
            experiments=map_experiments(self.experiments),
            reject_external_code=insecure == "allow",
            requirements_update_strategy=map_version_strategy(self.update.versioning_strategy),
            lockfile_only=self.update.versioning_strategy == "lockfile-only",
            vendor_dependencies=self.update.vendor,
            debug=self.debug,
            proxy_log_response_body_on_auth_failure=True,
            max_updater_run_time=2700,
            enable_beta_ecosystems=self.config.enable_beta_ecosystems,
            multi_ecosystem_update=False,
        )
        return job_id, job, self.credentials
