"""Payloads the updater reports to the control-plane API, one schema per output kind.

Unknown keys are ignored so newer updater releases can add fields.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, RootModel

from depsync.schemas.job import ExistingDependency


class Dependency(BaseModel):
    """Dependency as reported by the updater."""

    name: str
    version: Optional[str] = Field(default=None)
    previous_version: Optional[str] = Field(default=None, alias="previous-version")
    requirements: Optional[list[Any]] = Field(default=None)
    previous_requirements: Optional[list[Any]] = Field(default=None, alias="previous-requirements")
    removed: Optional[bool] = Field(default=None)
    directory: Optional[str] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class DependencyFile(BaseModel):
    """Changed file content reported with create/update pull request."""

    name: str
    directory: str
    operation: Literal["update", "create", "delete"]
    content: Optional[str] = Field(default=None)
    content_encoding: Optional[Literal["utf-8", "base64", ""]] = Field(default=None)
    deleted: Optional[bool] = Field(default=None)
    support_file: Optional[bool] = Field(default=None)
    vendored_file: Optional[bool] = Field(default=None)
    symlink_target: Optional[str] = Field(default=None)
    type: Optional[str] = Field(default=None)
    mode: Optional[str] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class CreatePullRequest(BaseModel):
    base_commit_sha: str = Field(..., alias="base-commit-sha")
    dependencies: list[Dependency]
    updated_dependency_files: list[DependencyFile] = Field(..., alias="updated-dependency-files")
    pr_title: str = Field(..., alias="pr-title")
    pr_body: Optional[str] = Field(default=None, alias="pr-body")
    commit_message: str = Field(..., alias="commit-message")
    dependency_group: Optional[dict[str, Any]] = Field(default=None, alias="dependency-group")

    model_config = {"extra": "ignore", "populate_by_name": True}


class UpdatePullRequest(BaseModel):
    base_commit_sha: str = Field(..., alias="base-commit-sha")
    dependency_names: list[str] = Field(..., alias="dependency-names")
    updated_dependency_files: list[DependencyFile] = Field(..., alias="updated-dependency-files")
    pr_title: Optional[str] = Field(default=None, alias="pr-title")
    pr_body: Optional[str] = Field(default=None, alias="pr-body")
    commit_message: Optional[str] = Field(default=None, alias="commit-message")
    dependency_group: Optional[dict[str, Any]] = Field(default=None, alias="dependency-group")

    model_config = {"extra": "ignore", "populate_by_name": True}


class ClosePullRequestReason(str, Enum):
    DEPENDENCIES_CHANGED = "dependencies_changed"
    DEPENDENCY_GROUP_EMPTY = "dependency_group_empty"
    DEPENDENCY_REMOVED = "dependency_removed"
    UP_TO_DATE = "up_to_date"
    UPDATE_NO_LONGER_POSSIBLE = "update_no_longer_possible"


class ClosePullRequest(BaseModel):
    dependency_names: list[str] = Field(..., alias="dependency-names")
    reason: Optional[ClosePullRequestReason] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class MarkAsProcessed(BaseModel):
    base_commit_sha: Optional[str] = Field(default=None, alias="base-commit-sha")

    model_config = {"extra": "ignore", "populate_by_name": True}


class RecordUpdateJobError(BaseModel):
    error_type: str = Field(..., alias="error-type")
    error_details: Optional[dict[str, Any]] = Field(default=None, alias="error-details")
    unknown: Optional[bool] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class UpdateDependencyList(BaseModel):
    dependencies: list[Dependency]
    dependency_files: Optional[list[str]] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class RecordEcosystemVersions(BaseModel):
    ecosystem_versions: Optional[dict[str, Any]] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class EcosystemVersionManager(BaseModel):
    name: str
    version: str
    raw_version: str
    requirement: Optional[dict[str, Any]] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class EcosystemMeta(BaseModel):
    name: str
    package_manager: Optional[EcosystemVersionManager] = Field(default=None)
    language: Optional[EcosystemVersionManager] = Field(default=None)
    version: Optional[EcosystemVersionManager] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class RecordEcosystemMetaEntry(BaseModel):
    ecosystem: EcosystemMeta

    model_config = {"extra": "ignore", "populate_by_name": True}


class RecordEcosystemMeta(RootModel[list[RecordEcosystemMetaEntry]]):
    pass


class IncrementMetric(BaseModel):
    metric: str
    tags: Optional[dict[str, Any]] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class Metric(BaseModel):
    metric: str
    type: Literal["increment", "gauge", "distribution", "histogram"]
    value: Optional[float] = Field(default=None)
    values: Optional[list[float]] = Field(default=None)
    tags: Optional[dict[str, str]] = Field(default=None)

    model_config = {"extra": "ignore", "populate_by_name": True}


class RecordMetrics(RootModel[list[Metric]]):
    pass


class PersistedPullRequest(BaseModel):
    """Dependency metadata stored as a pull request property.

    This is the only record of which dependencies an open pull request
    represents; it never carries the pull request number.
    """

    dependency_group_name: Optional[str] = Field(default=None, alias="dependency-group-name")
    dependencies: list[ExistingDependency] = Field(default_factory=list)

    model_config = {"extra": "ignore", "populate_by_name": True}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
