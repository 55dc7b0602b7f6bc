"""Abstract base for source-control host adapters."""

from abc import ABC, abstractmethod
from typing import Dict, List

from depsync.models import FileChange, PullRequestProperties


class HostPlatformError(Exception):
    """Raised when a host API call fails."""

    pass


class PullRequestHost(ABC):
    """Pull request operations the orchestrator needs from a host.

    Mutating operations report failure through their return value (None or
    False) after logging; they do not raise.
    """

    @abstractmethod
    def get_user_id(self) -> str:
        """Id of the authenticated identity."""
        ...

    @abstractmethod
    def get_default_branch(self) -> str | None:
        """Default branch name without refs/heads/."""
        ...

    @abstractmethod
    def get_branch_names(self) -> List[str] | None:
        """All branch names without refs/heads/."""
        ...

    @abstractmethod
    def get_active_pull_request_properties(self, creator_id: str) -> List[PullRequestProperties]:
        """Active PRs created by creator_id with their properties."""
        ...

    @abstractmethod
    def create_pull_request(
        self,
        source_branch: str,
        source_commit: str,
        target_branch: str,
        author_name: str,
        author_email: str,
        title: str,
        description: str,
        commit_message: str,
        changes: List[FileChange],
        properties: Dict[str, str] | None = None,
        labels: List[str] | None = None,
    ) -> int | None:
        """Push changes to a new branch and open a PR; return its id or None."""
        ...

    @abstractmethod
    def update_pull_request(
        self,
        pull_request_id: int,
        commit: str,
        author_name: str,
        author_email: str,
        changes: List[FileChange],
    ) -> bool:
        """Rebase the PR's source branch and push changes."""
        ...

    @abstractmethod
    def approve_pull_request(self, pull_request_id: int) -> bool:
        ...

    @abstractmethod
    def abandon_pull_request(
        self,
        pull_request_id: int,
        comment: str | None = None,
        delete_source_branch: bool = False,
    ) -> bool:
        """Abandon the PR, optionally commenting and deleting its branch."""
        ...
