"""Source branch names for update pull requests.

Names are deterministic for a given package manager, target branch,
directory, group and dependency set, so a later run derives the same branch
for the same update.
"""

import hashlib
import re
from typing import Iterable, Sequence

from depsync.schemas.job import ExistingDependency

DEFAULT_SEPARATOR = "/"

# Git ref rules (stricter than git, for cosmetic reasons)
_FORBIDDEN_CHARS_RE = re.compile(r"[^A-Za-z0-9/\-_.(){}]")
_SLASH_DOT_RE = re.compile(r"/\.")
_MULTI_PERIOD_RE = re.compile(r"\.{2,}")
_MULTI_SLASH_RE = re.compile(r"/{2,}")


def sanitize_ref(parts: Iterable[str | None], separator: str = DEFAULT_SEPARATOR) -> str:
    """Join non-empty parts with "/" and make the result a valid ref.

    Forbidden characters are removed, a period right after a slash becomes
    "dot-", runs of periods and slashes are squeezed, a trailing period is
    dropped, and finally every "/" is replaced with separator.
    """
    ref = "/".join(p.strip() for p in parts if p and p.strip())
    ref = _FORBIDDEN_CHARS_RE.sub("", ref)
    ref = _SLASH_DOT_RE.sub("/dot-", ref)
    ref = _MULTI_PERIOD_RE.sub(".", ref)
    ref = _MULTI_SLASH_RE.sub("/", ref)
    if ref.endswith("."):
        ref = ref[:-1]
    return ref.replace("/", separator)


def _dependency_label(dependency: ExistingDependency) -> str:
    version = "removed" if dependency.removed else dependency.dependency_version
    return f"{dependency.dependency_name}-{version}"


def _dependency_digest(dependencies: Sequence[ExistingDependency]) -> str:
    if not dependencies:
        return ""
    joined = ",".join(sorted(_dependency_label(d) for d in dependencies))
    return hashlib.md5(joined.encode("utf-8")).hexdigest()[:10]


def get_branch_name_for_update(
    package_manager: str,
    target_branch: str | None,
    directory: str | None,
    dependency_group_name: str | None,
    dependencies: Sequence[ExistingDependency],
    separator: str | None = None,
) -> str:
    """Derive the source branch for an update.

    Single dependency: dependabot/<pm>/<target>/<dir>/<name>-<version>
    ("removed" replaces the version of a removed dependency). Groups and
    multi-dependency updates use "<group or multi>-<10 hex digest>" as the
    last part so the name stays short.

    Raises:
        ValueError: If no dependencies are given for an ungrouped update.
    """
    if dependency_group_name or len(dependencies) > 1:
        leaf = f"{dependency_group_name or 'multi'}-{_dependency_digest(dependencies)}"
    elif dependencies:
        leaf = _dependency_label(dependencies[0])
    else:
        raise ValueError("cannot derive a branch name without dependencies")

    directory_part = directory.replace(" ", "-") if directory else None
    return sanitize_ref(
        ["dependabot", package_manager, target_branch, directory_part, leaf],
        separator or DEFAULT_SEPARATOR,
    )
