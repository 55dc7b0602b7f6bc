"""Tests for the job builder and its mapping helpers."""

import pytest
from factories import make_update

from depsync.jobs.builder import (
    JOB_ID_LIMIT,
    JOB_TOKEN_LENGTH,
    JobBuilder,
    JobBuildError,
    SourceInfo,
    make_random_job_id,
    make_random_job_token,
    map_allowed_updates,
    map_credentials,
    map_experiments,
    map_groups,
    map_package_ecosystem_to_package_manager,
    map_registry,
    map_security_advisories,
    map_version_strategy,
)
from depsync.schemas.config import DependabotConfig, DependencyGroup
from depsync.schemas.updates import PersistedPullRequest
from depsync.security.advisories import SecurityVulnerability

SOURCE = SourceInfo("dev.azure.com", "https://dev.azure.com/", "contoso/prj1/_git/repo1")


def vulnerability(name: str = "lodash", version: str = "4.17.20", ghsa: str = "GHSA-1") -> SecurityVulnerability:
    return SecurityVulnerability.model_validate(
        {
            "package": {"name": name, "version": version},
            "advisory": {"identifiers": [{"type": "GHSA", "value": ghsa}], "summary": "Prototype pollution"},
            "vulnerableVersionRange": "< 4.17.21",
            "firstPatchedVersion": {"identifier": "4.17.21"},
        }
    )


def builder(**update_overrides) -> JobBuilder:
    update = make_update(**update_overrides)
    return JobBuilder(SOURCE, DependabotConfig(updates=[update]), update, experiments={"a": "true"})


class TestRandomValues:
    def test_job_id_range(self) -> None:
        for _ in range(50):
            assert 0 <= make_random_job_id() < JOB_ID_LIMIT

    def test_job_token(self) -> None:
        token = make_random_job_token()
        assert len(token) == JOB_TOKEN_LENGTH
        assert token.isalnum() and token == token.lower()


class TestMappings:
    @pytest.mark.parametrize(
        "ecosystem,expected",
        [
            ("npm", "npm_and_yarn"),
            ("yarn", "npm_and_yarn"),
            ("gomod", "go_modules"),
            ("github-actions", "github_actions"),
            ("poetry", "pip"),
            ("nuget", "nuget"),
        ],
    )
    def test_package_manager(self, ecosystem: str, expected: str) -> None:
        assert map_package_ecosystem_to_package_manager(ecosystem) == expected

    def test_version_strategy(self) -> None:
        assert map_version_strategy(None) is None
        assert map_version_strategy("auto") is None
        assert map_version_strategy("increase") == "bump_versions"
        assert map_version_strategy("lockfile-only") == "lockfile_only"
        with pytest.raises(JobBuildError):
            map_version_strategy("sideways")

    def test_groups_default_pattern(self) -> None:
        groups = map_groups({"all": DependencyGroup(), "skipped": None})
        assert len(groups) == 1
        assert groups[0].name == "all"
        assert groups[0].rules["patterns"] == ["*"]

    def test_allowed_updates_default(self) -> None:
        assert [a.model_dump(by_alias=True, exclude_none=True) for a in map_allowed_updates(None)] == [
            {"dependency-type": "direct", "update-type": "all"}
        ]
        security = map_allowed_updates(None, security_only=True)
        assert security[0].update_type == "security"

    def test_experiments_coerced(self) -> None:
        assert map_experiments({"a": "true", "b": "FALSE", "c": "value", "d": True}) == {
            "a": True,
            "b": False,
            "c": "value",
            "d": True,
        }

    def test_security_advisories_grouped(self) -> None:
        advisories = map_security_advisories([vulnerability(), vulnerability(), vulnerability(ghsa="GHSA-2")])
        assert len(advisories) == 2
        assert advisories[0].dependency_name == "lodash"
        assert advisories[0].affected_versions == ["< 4.17.21", "< 4.17.21"]
        assert advisories[0].patched_versions == ["4.17.21", "4.17.21"]
        assert advisories[0].unaffected_versions == []


class TestRegistries:
    def test_npm_registry(self) -> None:
        credential = map_registry("feed", {"type": "npm-registry", "url": "https://pkgs.example.com/npm/", "token": "t"})
        assert credential == {"type": "npm_registry", "token": "t", "registry": "pkgs.example.com/npm/"}

    def test_python_index(self) -> None:
        credential = map_registry(
            "pypi", {"type": "python-index", "url": "https://pkgs.example.com/simple", "replaces-base": True}
        )
        assert credential == {
            "type": "python_index",
            "replaces-base": True,
            "index-url": "https://pkgs.example.com/simple",
        }

    def test_terraform_host(self) -> None:
        credential = map_registry("tf", {"type": "terraform-registry", "url": "https://tf.example.com", "token": "t"})
        assert credential["host"] == "tf.example.com"
        assert "url" not in credential

    def test_maven_keeps_url(self) -> None:
        credential = map_registry("m", {"type": "maven-repository", "url": "https://m.example.com", "username": "u"})
        assert credential == {"type": "maven_repository", "username": "u", "url": "https://m.example.com"}

    def test_hex_organization_without_url(self) -> None:
        credential = map_registry("hex", {"type": "hex-organization", "organization": "acme", "key": "k"})
        assert credential == {"type": "hex_organization", "organization": "acme", "key": "k"}

    @pytest.mark.parametrize(
        "registry",
        [
            {"url": "https://x.example.com"},
            {"type": "npm-registry"},
            {"type": "hex-organization"},
            {"type": "hex-repository", "url": "https://x.example.com"},
        ],
    )
    def test_missing_fields_rejected(self, registry: dict) -> None:
        with pytest.raises(JobBuildError):
            map_registry("bad", registry)

    def test_credentials_order(self) -> None:
        credentials = map_credentials(
            "dev.azure.com",
            system_access_token="pat",
            github_token="ghp",
            registries={"feed": {"type": "npm-registry", "url": "https://pkgs.example.com/npm/"}},
        )
        assert [c["type"] for c in credentials] == ["git_source", "git_source", "npm_registry"]
        assert credentials[0] == {
            "type": "git_source",
            "host": "dev.azure.com",
            "username": "x-access-token",
            "password": "pat",
        }
        assert credentials[1]["host"] == "github.com"


class TestJobBuilder:
    def test_for_dependencies_list(self) -> None:
        job_id, job, credentials = builder().for_dependencies_list(id=123)
        assert job_id == 123
        assert job.package_manager == "npm_and_yarn"
        assert job.ignore_conditions[0].dependency_name == "*"
        assert job.dependencies is None
        assert job.security_updates_only is False
        assert job.source.repo == "contoso/prj1/_git/repo1"
        assert job.source.directory == "/"
        assert credentials == []

    def test_for_update_all_dependencies(self) -> None:
        job_id, job, _ = builder(**{"versioning-strategy": "lockfile-only"}).for_update(id=7)
        assert job_id == 7
        assert job.updating_a_pull_request is False
        assert job.dependencies is None
        assert job.lockfile_only is True
        assert job.requirements_update_strategy == "lockfile_only"
        assert job.experiments == {"a": True}
        assert len(job.allowed_updates) == 1
        assert job.allowed_updates[0].update_type == "all"

    def test_for_update_generates_id(self) -> None:
        job_id, job, _ = builder().for_update()
        assert job.id == job_id

    def test_for_update_security_only_restricts_names(self) -> None:
        _, job, _ = builder(**{"open-pull-requests-limit": 0}).for_update(
            dependency_names_to_update=["lodash", "express"],
            security_vulnerabilities=[vulnerability()],
        )
        assert job.security_updates_only is True
        assert job.dependencies == ["lodash"]
        assert job.allowed_updates[0].update_type == "security"
        assert job.security_advisories == []

    def test_for_update_existing_pull_request(self) -> None:
        grouped = PersistedPullRequest.model_validate(
            {
                "dependency-group-name": "dev",
                "dependencies": [{"dependency-name": "lodash", "dependency-version": "4.17.21"}],
            }
        )
        single = PersistedPullRequest.model_validate(
            {"dependencies": [{"dependency-name": "express", "dependency-version": "5.0.0"}]}
        )
        _, job, _ = builder().for_update(
            existing_pull_requests=[grouped, single],
            pull_request_to_update=grouped,
            security_vulnerabilities=[vulnerability(), vulnerability(name="express")],
        )
        assert job.updating_a_pull_request is True
        assert job.dependency_group_to_refresh == "dev"
        assert job.dependencies == ["lodash"]
        assert [a.dependency_name for a in job.security_advisories] == ["lodash"]
        assert job.existing_group_pull_requests[0].dependency_group_name == "dev"
        assert job.existing_pull_requests[0][0].dependency_name == "express"

    def test_invalid_versioning_strategy(self) -> None:
        with pytest.raises(JobBuildError):
            builder(**{"versioning-strategy": "sideways"}).for_update()

    def test_descriptor_uses_hyphenated_keys(self) -> None:
        _, job, _ = builder().for_update(id=1)
        data = job.to_api()
        assert data["package-manager"] == "npm_and_yarn"
        assert data["source"]["api-endpoint"] == "https://dev.azure.com/"
        assert "allowed-updates" in data
