"""Runtime models: open pull requests, per-job ledgers and run results."""

from typing import Dict, List


class PullRequestProperties:
    """Open pull request with its host-side key/value properties."""

    def __init__(self, id: int, properties: Dict[str, str] | None = None) -> None:
        self.id = id
        self.properties = properties or {}

    def __repr__(self) -> str:
        return f"PullRequestProperties(id={self.id!r}, properties={self.properties!r})"


class FileChange:
    """One file change pushed with a pull request commit."""

    def __init__(
        self,
        change_type: str,
        path: str,
        content: str | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self.change_type = change_type  # add, edit, delete
        self.path = path
        self.content = content
        self.encoding = encoding

    def __repr__(self) -> str:
        return f"FileChange(change_type={self.change_type!r}, path={self.path!r})"


class AffectedPullRequests:
    """Ledger of pull request ids touched by one job, in processing order."""

    def __init__(self) -> None:
        self.created: List[int] = []
        self.updated: List[int] = []
        self.closed: List[int] = []

    def all(self) -> List[int]:
        return [*self.created, *self.updated, *self.closed]


class RunJobResult:
    """Outcome of running one job's container."""

    def __init__(self, success: bool, message: str | None = None) -> None:
        self.success = success
        self.message = message

    def __repr__(self) -> str:
        return f"RunJobResult(success={self.success!r}, message={self.message!r})"


class UpdateResult:
    """Outcome of one update block: success flag, message and affected PR ids."""

    def __init__(
        self,
        id: int,
        success: bool,
        message: str | None = None,
        affected_prs: List[int] | None = None,
    ) -> None:
        self.id = id
        self.success = success
        self.message = message
        self.affected_prs = affected_prs or []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "success": self.success,
            "message": self.message,
            "affectedPrs": list(self.affected_prs),
        }

    def __repr__(self) -> str:
        return (
            f"UpdateResult(id={self.id!r}, success={self.success!r}, "
            f"message={self.message!r}, affected_prs={self.affected_prs!r})"
        )
