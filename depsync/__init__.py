"""depsync: runs containerized dependency-update jobs and applies their results as pull requests."""

__version__ = "0.1.0"
