"""Source-control host adapters."""

from depsync.adapters.azure import AzureDevOpsAdapter
from depsync.adapters.base import HostPlatformError, PullRequestHost

__all__ = ["AzureDevOpsAdapter", "HostPlatformError", "PullRequestHost"]
