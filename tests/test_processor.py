"""Tests for updater output processing."""

from typing import Any, List
from unittest.mock import MagicMock

import pytest
from factories import create_pull_request_payload, existing_pull_request, make_update
from pydantic import ValidationError

from depsync.adapters.base import HostPlatformError, PullRequestHost
from depsync.jobs.builder import JobBuilder, SourceInfo
from depsync.jobs.pull_requests import PR_PROPERTY_DEPENDENCIES, PR_PROPERTY_PACKAGE_MANAGER
from depsync.models import PullRequestProperties
from depsync.processor import OutputKind, OutputProcessor, parse_output
from depsync.registry import JobRegistry
from depsync.schemas.config import DependabotConfig
from depsync.schemas.updates import CreatePullRequest

JOB_ID = 1001
BRANCH = "dependabot/npm_and_yarn/lodash-4.17.21"


def make_processor(
    host: MagicMock,
    existing: List[PullRequestProperties] | None = None,
    branches: List[str] | None = None,
    **kwargs: Any,
) -> OutputProcessor:
    return OutputProcessor(
        JobRegistry(),
        host,
        existing if existing is not None else [],
        branches if branches is not None else [],
        **kwargs,
    )


def register(processor: OutputProcessor, job_id: int = JOB_ID, **update_overrides: Any) -> None:
    update = make_update(**update_overrides)
    source = SourceInfo("dev.azure.com", "https://dev.azure.com/", "contoso/prj1/_git/repo1")
    _, job, credentials = JobBuilder(source, DependabotConfig(updates=[update]), update).for_update(id=job_id)
    processor.registry.register(job_id, update, job, "jt", "ct", credentials)


def lodash_pr(pr_id: int = 7) -> PullRequestProperties:
    return existing_pull_request(
        pr_id, "npm_and_yarn", [{"dependency-name": "lodash", "dependency-version": "4.17.20"}]
    )


class TestHandle:
    def test_unknown_job_fails(self, host: MagicMock) -> None:
        processor = make_processor(host)
        assert processor.handle(999, "create_pull_request", create_pull_request_payload()) is False
        host.create_pull_request.assert_not_called()

    def test_unknown_kind_is_ignored(self, host: MagicMock) -> None:
        processor = make_processor(host)
        register(processor)
        assert processor.handle(JOB_ID, "something_new", {}) is True
        assert processor.registry.requests(JOB_ID) == []

    def test_invalid_payload_raises(self, host: MagicMock) -> None:
        processor = make_processor(host)
        register(processor)
        with pytest.raises(ValidationError):
            processor.handle(JOB_ID, "create_pull_request", {"pr-title": "x"})

    @pytest.mark.parametrize(
        "kind,data",
        [
            ("mark_as_processed", {"base-commit-sha": "abc"}),
            ("update_dependency_list", {"dependencies": [{"name": "lodash", "version": "1.0.0"}]}),
            ("record_ecosystem_versions", {"ecosystem_versions": {}}),
            ("increment_metric", {"metric": "updater.started"}),
            ("record_metrics", [{"metric": "m", "type": "gauge", "value": 1}]),
        ],
    )
    def test_acknowledged_kinds(self, host: MagicMock, kind: str, data: Any) -> None:
        processor = make_processor(host)
        register(processor)
        assert processor.handle(JOB_ID, kind, data) is True
        requests = processor.registry.requests(JOB_ID)
        assert len(requests) == 1
        assert requests[0][0] == kind

    def test_record_update_job_error(self, host: MagicMock) -> None:
        processor = make_processor(host)
        register(processor)
        ok = processor.handle(JOB_ID, "record_update_job_error", {"error-type": "dependency_file_not_found"})
        assert ok is False
        assert processor.registry.errors(JOB_ID)[0]["error-type"] == "dependency_file_not_found"

    def test_parse_output_accepts_models(self, host: MagicMock) -> None:
        processor = make_processor(host)
        register(processor)
        data = parse_output(OutputKind.CREATE_PULL_REQUEST, create_pull_request_payload())
        assert isinstance(data, CreatePullRequest)
        assert processor.handle(JOB_ID, "create_pull_request", data) is True


class TestCreatePullRequest:
    def test_creates_pull_request(self, host: MagicMock) -> None:
        branches: List[str] = []
        processor = make_processor(host, branches=branches)
        register(processor)

        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is True

        kwargs = host.create_pull_request.call_args.kwargs
        assert kwargs["source_branch"] == BRANCH
        assert kwargs["target_branch"] == "main"
        assert kwargs["source_commit"] == "abc123"
        assert kwargs["title"] == "Bump lodash from 4.17.20 to 4.17.21"
        assert kwargs["author_name"] == "dependabot[bot]"
        assert kwargs["properties"][PR_PROPERTY_PACKAGE_MANAGER] == "npm_and_yarn"
        assert "lodash" in kwargs["properties"][PR_PROPERTY_DEPENDENCIES]
        assert [c.path for c in kwargs["changes"]] == ["/package.json"]

        assert processor.created_pull_request_ids == {"npm_and_yarn": [101]}
        assert processor.registry.affected_pull_requests(JOB_ID).created == [101]
        assert branches == [BRANCH]
        assert processor.open_pull_requests_count("npm_and_yarn") == 1

    def test_target_branch_from_update(self, host: MagicMock) -> None:
        processor = make_processor(host)
        register(processor, **{"target-branch": "develop"})
        processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload())
        kwargs = host.create_pull_request.call_args.kwargs
        assert kwargs["target_branch"] == "develop"
        assert kwargs["source_branch"] == "dependabot/npm_and_yarn/develop/lodash-4.17.21"
        host.get_default_branch.assert_not_called()

    def test_limit_reached_skips(self, host: MagicMock) -> None:
        processor = make_processor(host, existing=[lodash_pr()])
        register(processor, **{"open-pull-requests-limit": 1})
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload(name="express")) is True
        host.create_pull_request.assert_not_called()

    def test_limit_zero_does_not_block(self, host: MagicMock) -> None:
        processor = make_processor(host, existing=[lodash_pr()])
        register(processor, **{"open-pull-requests-limit": 0})
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload(name="express")) is True
        host.create_pull_request.assert_called_once()

    def test_existing_branch_fails(self, host: MagicMock) -> None:
        processor = make_processor(host, branches=[BRANCH])
        register(processor)
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is False
        host.create_pull_request.assert_not_called()

    def test_conflicting_branch_fails(self, host: MagicMock) -> None:
        processor = make_processor(host, branches=["dependabot/npm_and_yarn"])
        register(processor)
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is False
        host.create_pull_request.assert_not_called()

    def test_branch_prefixed_by_new_branch_fails(self, host: MagicMock) -> None:
        processor = make_processor(host, branches=[f"{BRANCH}-legacy"])
        register(processor)
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is False
        host.create_pull_request.assert_not_called()

    def test_unrelated_branch_does_not_conflict(self, host: MagicMock) -> None:
        processor = make_processor(host, branches=["dependabot/npm_and_yarn/express-4.0.0"])
        register(processor)
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is True
        host.create_pull_request.assert_called_once()

    def test_dry_run_skips(self, host: MagicMock) -> None:
        processor = make_processor(host, dry_run=True)
        register(processor)
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is True
        host.create_pull_request.assert_not_called()

    def test_host_failure(self, host: MagicMock) -> None:
        host.create_pull_request.return_value = None
        processor = make_processor(host)
        register(processor)
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is False
        assert processor.created_pull_request_ids == {}

    def test_default_branch_lookup_failure(self, host: MagicMock) -> None:
        host.get_default_branch.side_effect = HostPlatformError("Azure DevOps API error 503: down")
        processor = make_processor(host)
        register(processor)
        assert processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload()) is False
        host.create_pull_request.assert_not_called()

    def test_auto_approve(self, host: MagicMock) -> None:
        approver = MagicMock(spec=PullRequestHost)
        processor = make_processor(host, approver=approver, auto_approve=True)
        register(processor)
        processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload())
        approver.approve_pull_request.assert_called_once_with(101)

    def test_labels(self, host: MagicMock) -> None:
        processor = make_processor(host, default_labels=["dependencies"])
        register(processor)
        processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload())
        assert host.create_pull_request.call_args.kwargs["labels"] == ["dependencies"]

        host.reset_mock()
        processor = make_processor(host, default_labels=["dependencies"])
        register(processor, labels=[" npm "])
        processor.handle(JOB_ID, "create_pull_request", create_pull_request_payload())
        assert host.create_pull_request.call_args.kwargs["labels"] == ["npm"]


class TestUpdatePullRequest:
    def payload(self, names: List[str]) -> dict:
        return {
            "base-commit-sha": "def456",
            "dependency-names": names,
            "updated-dependency-files": [
                {"name": "package.json", "directory": "/", "operation": "update", "content": "{}"}
            ],
        }

    def test_updates_matching_pull_request(self, host: MagicMock) -> None:
        processor = make_processor(host, existing=[lodash_pr()])
        register(processor)
        assert processor.handle(JOB_ID, "update_pull_request", self.payload(["lodash"])) is True
        kwargs = host.update_pull_request.call_args.kwargs
        assert kwargs["pull_request_id"] == 7
        assert kwargs["commit"] == "def456"
        assert processor.registry.affected_pull_requests(JOB_ID).updated == [7]

    def test_missing_pull_request_fails(self, host: MagicMock) -> None:
        processor = make_processor(host, existing=[lodash_pr()])
        register(processor)
        assert processor.handle(JOB_ID, "update_pull_request", self.payload(["express"])) is False
        host.update_pull_request.assert_not_called()

    def test_dry_run_skips(self, host: MagicMock) -> None:
        processor = make_processor(host, existing=[lodash_pr()], dry_run=True)
        register(processor)
        assert processor.handle(JOB_ID, "update_pull_request", self.payload(["lodash"])) is True
        host.update_pull_request.assert_not_called()


class TestClosePullRequest:
    def test_closes_and_forgets_pull_request(self, host: MagicMock) -> None:
        existing = [lodash_pr(), lodash_pr(8)]
        processor = make_processor(host, existing=existing)
        register(processor)
        ok = processor.handle(
            JOB_ID, "close_pull_request", {"dependency-names": ["lodash"], "reason": "up_to_date"}
        )
        assert ok is True
        host.abandon_pull_request.assert_called_once_with(
            7,
            comment="Looks like lodash is up-to-date now, so this is no longer needed.",
            delete_source_branch=True,
        )
        assert [pr.id for pr in existing] == [8]
        assert processor.registry.affected_pull_requests(JOB_ID).closed == [7]

    def test_host_failure_keeps_pull_request(self, host: MagicMock) -> None:
        host.abandon_pull_request.return_value = False
        existing = [lodash_pr()]
        processor = make_processor(host, existing=existing)
        register(processor)
        assert processor.handle(JOB_ID, "close_pull_request", {"dependency-names": ["lodash"]}) is False
        assert [pr.id for pr in existing] == [7]

    def test_missing_pull_request_fails(self, host: MagicMock) -> None:
        processor = make_processor(host)
        register(processor)
        assert processor.handle(JOB_ID, "close_pull_request", {"dependency-names": ["lodash"]}) is False
        host.abandon_pull_request.assert_not_called()
