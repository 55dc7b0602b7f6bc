"""Schemas for the update config, job descriptors and updater outputs."""

from depsync.schemas.config import DependabotConfig, DependabotUpdate
from depsync.schemas.job import ExistingDependency, ExistingGroupPullRequest, JobConfig, JobSource
from depsync.schemas.updates import (
    ClosePullRequest,
    CreatePullRequest,
    Dependency,
    DependencyFile,
    PersistedPullRequest,
    UpdatePullRequest,
)

__all__ = [
    "ClosePullRequest",
    "CreatePullRequest",
    "DependabotConfig",
    "DependabotUpdate",
    "Dependency",
    "DependencyFile",
    "ExistingDependency",
    "ExistingGroupPullRequest",
    "JobConfig",
    "JobSource",
    "PersistedPullRequest",
    "UpdatePullRequest",
]
