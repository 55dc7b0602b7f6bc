"""Dependency metadata of pull requests: persistence, lookup and superseding."""

import json
import logging
import posixpath
import re
from typing import Dict, List, Sequence

from pydantic import ValidationError

from depsync.models import FileChange, PullRequestProperties
from depsync.schemas.updates import (
    ClosePullRequest,
    ClosePullRequestReason,
    CreatePullRequest,
    PersistedPullRequest,
    UpdatePullRequest,
)

LOG = logging.getLogger("depsync.jobs.pull_requests")

# Pull request properties holding the dependency metadata
PR_PROPERTY_PACKAGE_MANAGER = "Dependabot.PackageManager"
PR_PROPERTY_DEPENDENCIES = "Dependabot.Dependencies"
# Set by the host on every pull request
PR_PROPERTY_SOURCE_REF_NAME = "Microsoft.Git.PullRequest.SourceRefName"

PR_DESCRIPTION_MAX_LENGTH = 4_000

_REFS_HEADS_RE = re.compile(r"^refs/heads/", re.IGNORECASE)


def normalize_branch_name(branch: str | None) -> str | None:
    """Strip a leading refs/heads/."""
    if branch is None:
        return None
    return _REFS_HEADS_RE.sub("", branch)


def normalize_file_path(path: str) -> str:
    """Forward slashes, "./x" as "/x", always rooted."""
    path = path.replace("\\", "/")
    if path.startswith("./"):
        path = path[1:]
    if not path.startswith("/"):
        path = "/" + path
    return path


def get_persisted_pr(data: CreatePullRequest) -> PersistedPullRequest:
    """Dependency metadata to store on a pull request created from data."""
    group_name = (data.dependency_group or {}).get("name") or None
    return PersistedPullRequest.model_validate(
        {
            "dependency-group-name": group_name,
            "dependencies": [
                {
                    "dependency-name": dep.name,
                    "dependency-version": dep.version,
                    "directory": dep.directory,
                    "removed": dep.removed,
                }
                for dep in data.dependencies
            ],
        }
    )


def get_dependency_names(pr: PersistedPullRequest) -> List[str]:
    return [str(dep.dependency_name) for dep in pr.dependencies]


def are_equal(a: Sequence[str], b: Sequence[str]) -> bool:
    """Order-independent equality of two name lists."""
    if len(a) != len(b):
        return False
    return all(name in b for name in a)


def should_supersede(old: PersistedPullRequest, new: PersistedPullRequest) -> bool:
    """Whether new is a refreshed version of the same logical update as old.

    Group names must match exactly (both absent counts as a match). Ungrouped
    pull requests must also cover the same dependency names. Among the shared
    dependencies, any version difference means new supersedes old.
    """
    if old.dependency_group_name != new.dependency_group_name:
        return False

    old_versions = {d.dependency_name: d.dependency_version for d in old.dependencies}
    new_versions = {d.dependency_name: d.dependency_version for d in new.dependencies}
    if old.dependency_group_name is None and set(old_versions) != set(new_versions):
        return False

    shared = set(old_versions) & set(new_versions)
    return any(old_versions[name] != new_versions[name] for name in shared)


def get_close_reason(data: ClosePullRequest) -> str | None:
    """Human readable abandon comment for a close_pull_request reason."""
    # First dependency leads a multi-dependency update
    lead = data.dependency_names[0] if data.dependency_names else ""
    reasons = {
        ClosePullRequestReason.DEPENDENCIES_CHANGED: "Looks like the dependencies have changed",
        ClosePullRequestReason.DEPENDENCY_GROUP_EMPTY: "Looks like the dependencies in this group are now empty",
        ClosePullRequestReason.DEPENDENCY_REMOVED: f"Looks like {lead} is no longer a dependency",
        ClosePullRequestReason.UP_TO_DATE: f"Looks like {lead} is up-to-date now",
        ClosePullRequestReason.UPDATE_NO_LONGER_POSSIBLE: f"Looks like {lead} can no longer be updated",
    }
    reason = reasons.get(data.reason) if data.reason else None
    if not reason:
        return None
    return reason + ", so this is no longer needed."


def build_pull_request_properties(package_manager: str, persisted: PersistedPullRequest) -> Dict[str, str]:
    return {
        PR_PROPERTY_PACKAGE_MANAGER: package_manager,
        PR_PROPERTY_DEPENDENCIES: persisted.to_json(),
    }


def _load_persisted(pr: PullRequestProperties) -> PersistedPullRequest | None:
    raw = pr.properties.get(PR_PROPERTY_DEPENDENCIES)
    if not raw:
        return None
    try:
        return PersistedPullRequest.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        LOG.warning("Ignoring PR #%s with unreadable dependency metadata: %s", pr.id, e)
        return None


def parse_pull_request_properties(
    pull_requests: Sequence[PullRequestProperties],
    package_manager: str | None,
) -> Dict[int, PersistedPullRequest]:
    """Persisted metadata by PR id, for PRs of package_manager (None: any)."""
    result: Dict[int, PersistedPullRequest] = {}
    for pr in pull_requests:
        pm = pr.properties.get(PR_PROPERTY_PACKAGE_MANAGER)
        if pm is None or (package_manager is not None and pm != package_manager):
            continue
        persisted = _load_persisted(pr)
        if persisted is not None:
            result[pr.id] = persisted
    return result


def get_pull_request_for_dependency_names(
    pull_requests: Sequence[PullRequestProperties],
    package_manager: str,
    dependency_names: Sequence[str],
) -> PullRequestProperties | None:
    """Open PR of package_manager whose dependency-name set equals dependency_names."""
    for pr in pull_requests:
        if pr.properties.get(PR_PROPERTY_PACKAGE_MANAGER) != package_manager:
            continue
        persisted = _load_persisted(pr)
        if persisted is not None and are_equal(get_dependency_names(persisted), dependency_names):
            return pr
    return None


def get_pull_request_changed_files(data: CreatePullRequest | UpdatePullRequest) -> List[FileChange]:
    """Host file changes for the reported dependency files (plain files only)."""
    changes: List[FileChange] = []
    for file in data.updated_dependency_files:
        if file.type is not None and file.type != "file":
            continue
        if file.deleted or file.operation == "delete":
            change_type = "delete"
        elif file.operation == "update":
            change_type = "edit"
        else:
            change_type = "add"
        changes.append(
            FileChange(
                change_type=change_type,
                path=normalize_file_path(posixpath.join(file.directory, file.name)),
                content=file.content,
                encoding=file.content_encoding or "utf-8",
            )
        )
    return changes


def get_pull_request_description(body: str | None) -> str:
    """PR body with broken mention sequences removed, cut to the host limit."""
    description = (body or "").replace("���", "")
    return description[:PR_DESCRIPTION_MAX_LENGTH]
