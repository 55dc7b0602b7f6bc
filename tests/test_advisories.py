"""Tests for advisory sources and vulnerability filtering."""

import json
from pathlib import Path
from typing import Any
from unittest.mock import Mock, patch

import pytest

from depsync.security.advisories import (
    GitHubSecurityAdvisoryClient,
    Package,
    SecurityVulnerability,
    filter_vulnerabilities,
    get_ghsa_ecosystem,
    load_advisories_file,
)


def vuln(version: str | None, vulnerable_range: str, withdrawn: str | None = None) -> SecurityVulnerability:
    return SecurityVulnerability.model_validate(
        {
            "package": {"name": "lodash", "version": version},
            "advisory": {
                "identifiers": [{"type": "GHSA", "value": "GHSA-1"}],
                "summary": "Prototype pollution",
                "withdrawnAt": withdrawn,
            },
            "vulnerableVersionRange": vulnerable_range,
            "firstPatchedVersion": {"identifier": "4.17.21"},
        }
    )


def graphql_response(body: Any, status: int = 200) -> Mock:
    mock_resp = Mock()
    mock_resp.status_code = status
    mock_resp.json.return_value = body
    mock_resp.text = json.dumps(body)
    return mock_resp


GHSA_NODE = {
    "advisory": {
        "identifiers": [{"type": "GHSA", "value": "GHSA-35jh-r3h4-6jhm"}],
        "severity": "HIGH",
        "summary": "Command injection in lodash",
        "cvssSeverities": {"cvssV3": {"score": 7.2, "vectorString": "CVSS:3.1/AV:N"}, "cvssV4": {"score": 0}},
        "cwes": {"nodes": [{"cweId": "CWE-94", "name": "Code Injection", "description": "x"}]},
        "withdrawnAt": None,
    },
    "vulnerableVersionRange": "< 4.17.21",
    "firstPatchedVersion": {"identifier": "4.17.21"},
}


class TestEcosystem:
    def test_known(self) -> None:
        assert get_ghsa_ecosystem("npm_and_yarn") == "NPM"
        assert get_ghsa_ecosystem("bundler") == "RUBYGEMS"

    def test_unknown(self) -> None:
        with pytest.raises(ValueError):
            get_ghsa_ecosystem("docker")


class TestFilterVulnerabilities:
    def test_version_in_range(self) -> None:
        assert len(filter_vulnerabilities([vuln("4.17.20", "< 4.17.21")])) == 1

    def test_version_out_of_range(self) -> None:
        assert filter_vulnerabilities([vuln("4.17.21", "< 4.17.21")]) == []

    def test_compound_range(self) -> None:
        assert len(filter_vulnerabilities([vuln("4.3.2", ">= 4.3.0, < 4.3.5")])) == 1
        assert filter_vulnerabilities([vuln("4.2.9", ">= 4.3.0, < 4.3.5")]) == []

    def test_exact_version(self) -> None:
        assert len(filter_vulnerabilities([vuln("1.0.0", "= 1.0.0")])) == 1

    def test_withdrawn_dropped(self) -> None:
        assert filter_vulnerabilities([vuln("4.17.20", "< 4.17.21", withdrawn="2024-01-01T00:00:00Z")]) == []

    def test_missing_or_invalid_version(self) -> None:
        assert filter_vulnerabilities([vuln(None, "< 4.17.21")]) == []
        assert filter_vulnerabilities([vuln("not-a-version", "< 4.17.21")]) == []


class TestAdvisoriesFile:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_advisories_file(tmp_path / "absent.json") == []

    def test_loads_array(self, tmp_path: Path) -> None:
        path = tmp_path / "advisories.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "package": {"name": "lodash"},
                        "advisory": {"identifiers": [{"type": "GHSA", "value": "GHSA-1"}], "summary": "s"},
                        "vulnerableVersionRange": "< 4.17.21",
                    }
                ]
            )
        )
        loaded = load_advisories_file(path)
        assert len(loaded) == 1
        assert loaded[0].package.name == "lodash"
        assert loaded[0].first_patched_version is None


class TestGitHubSecurityAdvisoryClient:
    def test_queries_each_package(self) -> None:
        client = GitHubSecurityAdvisoryClient("ghp", api_url="https://api.github.com/")
        body = {"data": {"securityVulnerabilities": {"nodes": [GHSA_NODE]}}}
        with patch.object(client._session, "request", return_value=graphql_response(body)) as req:
            result = client.get_security_vulnerabilities(
                "NPM", [Package(name="lodash", version="4.17.20"), Package(name="express", version="4.0.0")]
            )
        assert req.call_count == 2
        assert req.call_args_list[0][0] == ("POST", "https://api.github.com/graphql")
        assert req.call_args_list[0].kwargs["json"]["variables"] == {"ecosystem": "NPM", "package": "lodash"}
        assert client._session.headers["Authorization"] == "bearer ghp"

        assert len(result) == 2
        first = result[0]
        assert first.package.name == "lodash"
        assert first.package.version == "4.17.20"
        assert first.advisory.cvss.score == 7.2
        assert first.advisory.cwes[0]["cweId"] == "CWE-94"
        assert result[1].package.name == "express"

    def test_failed_package_is_skipped(self) -> None:
        client = GitHubSecurityAdvisoryClient("ghp")
        responses = [
            graphql_response({"errors": [{"message": "rate limited"}]}),
            graphql_response({"data": {"securityVulnerabilities": {"nodes": [GHSA_NODE]}}}),
        ]
        with patch.object(client._session, "request", side_effect=responses):
            result = client.get_security_vulnerabilities(
                "NPM", [Package(name="a", version="1.0.0"), Package(name="b", version="1.0.0")]
            )
        assert [v.package.name for v in result] == ["b"]

    def test_http_error_is_skipped(self) -> None:
        client = GitHubSecurityAdvisoryClient("ghp")
        with patch.object(client._session, "request", return_value=graphql_response({}, status=502)):
            assert client.get_security_vulnerabilities("NPM", [Package(name="a")]) == []
