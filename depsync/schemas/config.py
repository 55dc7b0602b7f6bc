"""Dependency-update configuration (dependabot.yml) as consumed by the job builder."""

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class AllowCondition(BaseModel):
    """Entry of an update block's allow list."""

    dependency_name: Optional[str] = Field(default=None, alias="dependency-name")
    dependency_type: Optional[str] = Field(default=None, alias="dependency-type")
    update_type: Optional[str] = Field(default=None, alias="update-type")

    model_config = {"extra": "ignore", "populate_by_name": True}


class IgnoreCondition(BaseModel):
    """Entry of an update block's ignore list."""

    dependency_name: Optional[str] = Field(default=None, alias="dependency-name")
    versions: Optional[list[str] | str] = Field(default=None)
    update_types: Optional[list[str]] = Field(default=None, alias="update-types")
    source: Optional[str] = Field(default=None)
    updated_at: Optional[str] = Field(default=None, alias="updated-at")

    model_config = {"extra": "ignore", "populate_by_name": True}


class DependencyGroup(BaseModel):
    """Named group of dependencies updated together."""

    applies_to: Optional[str] = Field(default=None, alias="applies-to")
    dependency_type: Optional[str] = Field(default=None, alias="dependency-type")
    patterns: Optional[list[str]] = Field(default=None)
    exclude_patterns: Optional[list[str]] = Field(default=None, alias="exclude-patterns")
    update_types: Optional[list[str]] = Field(default=None, alias="update-types")

    model_config = {"extra": "ignore", "populate_by_name": True}


class CommitMessage(BaseModel):
    """Commit message options."""

    prefix: Optional[str] = Field(default=None)
    prefix_development: Optional[str] = Field(default=None, alias="prefix-development")
    include: Optional[str] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class PullRequestBranchName(BaseModel):
    """Branch naming options."""

    separator: Optional[str] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class DependabotUpdate(BaseModel):
    """One update block: a package ecosystem in one or more directories."""

    package_ecosystem: str = Field(..., alias="package-ecosystem")
    directory: Optional[str] = Field(default=None)
    directories: Optional[list[str]] = Field(default=None)
    allow: Optional[list[AllowCondition]] = Field(default=None)
    ignore: Optional[list[IgnoreCondition]] = Field(default=None)
    groups: Optional[dict[str, Optional[DependencyGroup]]] = Field(default=None)
    commit_message: Optional[CommitMessage] = Field(default=None, alias="commit-message")
    cooldown: Optional[dict[str, Any]] = Field(default=None)
    open_pull_requests_limit: int = Field(default=5, ge=0, alias="open-pull-requests-limit")
    target_branch: Optional[str] = Field(default=None, alias="target-branch")
    versioning_strategy: Optional[str] = Field(default=None, alias="versioning-strategy")
    insecure_external_code_execution: Optional[str] = Field(
        default=None, alias="insecure-external-code-execution"
    )
    vendor: Optional[bool] = Field(default=None)
    pull_request_branch_name: Optional[PullRequestBranchName] = Field(
        default=None, alias="pull-request-branch-name"
    )
    labels: Optional[list[str]] = Field(default=None)
    assignees: Optional[list[str]] = Field(default=None)
    milestone: Optional[str | int] = Field(default=None)
    registries: Optional[list[str] | str] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def _require_directory(self) -> "DependabotUpdate":
        if not self.directory and not self.directories:
            raise ValueError(f"update for '{self.package_ecosystem}' needs 'directory' or 'directories'")
        return self

    @property
    def security_only(self) -> bool:
        """An open pull requests limit of 0 means security updates only."""
        return self.open_pull_requests_limit == 0


class DependabotConfig(BaseModel):
    """Parsed dependabot.yml."""

    version: int = Field(default=2)
    updates: list[DependabotUpdate] = Field(default_factory=list)
    registries: dict[str, dict[str, Any]] = Field(default_factory=dict)
    enable_beta_ecosystems: bool = Field(default=False, alias="enable-beta-ecosystems")

    model_config = {"extra": "ignore", "populate_by_name": True}
