"""Shared fixtures."""

from unittest.mock import MagicMock

import pytest

from depsync.adapters.base import PullRequestHost


@pytest.fixture
def host() -> MagicMock:
    """PullRequestHost mock that succeeds at everything."""
    mock = MagicMock(spec=PullRequestHost)
    mock.get_user_id.return_value = "user-123"
    mock.get_default_branch.return_value = "main"
    mock.get_branch_names.return_value = []
    mock.get_active_pull_request_properties.return_value = []
    mock.create_pull_request.return_value = 101
    mock.update_pull_request.return_value = True
    mock.abandon_pull_request.return_value = True
    mock.approve_pull_request.return_value = True
    return mock
