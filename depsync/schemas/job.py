"""Job descriptor handed to the updater, as served by the details endpoint."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class JobSource(BaseModel):
    """Repository coordinates of the job."""

    provider: str = Field(default="azure")
    api_endpoint: Optional[str] = Field(default=None, alias="api-endpoint")
    hostname: Optional[str] = Field(default=None)
    repo: str = Field(..., description="Repository slug, e.g. contoso/prj1/_git/repo1")
    branch: Optional[str] = Field(default=None)
    commit: Optional[str] = Field(default=None)
    directory: Optional[str] = Field(default=None)
    directories: Optional[list[str]] = Field(default=None)

    model_config = {"extra": "forbid", "populate_by_name": True}


class AllowedUpdate(BaseModel):
    dependency_name: Optional[str] = Field(default=None, alias="dependency-name")
    dependency_type: Optional[str] = Field(default=None, alias="dependency-type")
    update_type: Optional[str] = Field(default=None, alias="update-type")

    model_config = {"extra": "forbid", "populate_by_name": True}


class Condition(BaseModel):
    """Ignore condition in updater format."""

    dependency_name: str = Field(default="*", alias="dependency-name")
    source: Optional[str] = Field(default=None)
    updated_at: Optional[str] = Field(default=None, alias="updated-at")
    update_types: Optional[list[str]] = Field(default=None, alias="update-types")
    version_requirement: Optional[str] = Field(default=None, alias="version-requirement")

    model_config = {"extra": "forbid", "populate_by_name": True}


class GroupJob(BaseModel):
    name: str
    applies_to: Optional[str] = Field(default=None, alias="applies-to")
    rules: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid", "populate_by_name": True}


class SecurityAdvisory(BaseModel):
    dependency_name: str = Field(..., alias="dependency-name")
    affected_versions: list[str] = Field(default_factory=list, alias="affected-versions")
    patched_versions: list[str] = Field(default_factory=list, alias="patched-versions")
    unaffected_versions: list[str] = Field(default_factory=list, alias="unaffected-versions")

    model_config = {"extra": "forbid", "populate_by_name": True}


class ExistingDependency(BaseModel):
    """Dependency recorded on an open pull request."""

    dependency_name: str = Field(..., alias="dependency-name")
    dependency_version: Optional[str] = Field(default=None, alias="dependency-version")
    directory: Optional[str] = Field(default=None)
    removed: Optional[bool] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class ExistingGroupPullRequest(BaseModel):
    dependency_group_name: str = Field(..., alias="dependency-group-name")
    dependencies: list[ExistingDependency] = Field(default_factory=list)

    model_config = {"extra": "ignore", "populate_by_name": True}


class CommitMessageOptions(BaseModel):
    prefix: Optional[str] = Field(default=None)
    prefix_development: Optional[str] = Field(default=None, alias="prefix-development")
    include_scope: Optional[bool] = Field(default=None, alias="include-scope")

    model_config = {"extra": "forbid", "populate_by_name": True}


class JobConfig(BaseModel):
    """Full specification of one update job."""

    id: int
    package_manager: str = Field(..., alias="package-manager")
    updating_a_pull_request: bool = Field(default=False, alias="updating-a-pull-request")
    dependency_group_to_refresh: Optional[str] = Field(default=None, alias="dependency-group-to-refresh")
    dependency_groups: list[GroupJob] = Field(default_factory=list, alias="dependency-groups")
    dependencies: Optional[list[str]] = Field(default=None)
    allowed_updates: list[AllowedUpdate] = Field(default_factory=list, alias="allowed-updates")
    ignore_conditions: list[Condition] = Field(default_factory=list, alias="ignore-conditions")
    security_updates_only: bool = Field(default=False, alias="security-updates-only")
    security_advisories: list[SecurityAdvisory] = Field(default_factory=list, alias="security-advisories")
    source: JobSource
    update_subdependencies: bool = Field(default=False, alias="update-subdependencies")
    existing_pull_requests: list[list[ExistingDependency]] = Field(
        default_factory=list, alias="existing-pull-requests"
    )
    existing_group_pull_requests: list[ExistingGroupPullRequest] = Field(
        default_factory=list, alias="existing-group-pull-requests"
    )
    commit_message_options: Optional[CommitMessageOptions] = Field(default=None, alias="commit-message-options")
    cooldown: Optional[dict[str, Any]] = Field(default=None)
    experiments: dict[str, Any] = Field(default_factory=dict)
    reject_external_code: bool = Field(default=False, alias="reject-external-code")
    requirements_update_strategy: Optional[str] = Field(default=None, alias="requirements-update-strategy")
    lockfile_only: bool = Field(default=False, alias="lockfile-only")
    vendor_dependencies: Optional[bool] = Field(default=None, alias="vendor-dependencies")
    debug: bool = Field(default=False)
    proxy_log_response_body_on_auth_failure: bool = Field(
        default=True, alias="proxy-log-response-body-on-auth-failure"
    )
    max_updater_run_time: int = Field(default=2700, alias="max-updater-run-time")
    enable_beta_ecosystems: bool = Field(default=False, alias="enable-beta-ecosystems")
    multi_ecosystem_update: bool = Field(default=False, alias="multi-ecosystem-update")

    model_config = {"extra": "forbid", "populate_by_name": True, "frozen": True}

    def to_api(self) -> dict[str, Any]:
        """JSON-ready dict with the updater's hyphenated keys."""
        return self.model_dump(mode="json", by_alias=True)
