"""Security advisories from a private file and the GitHub advisory database.

Both sources are optional and additive. filter_vulnerabilities keeps only
advisories that are not withdrawn and whose vulnerable range covers the
discovered package version.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import requests
from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, Field, TypeAdapter

LOG = logging.getLogger("depsync.security.advisories")

T = TypeVar("T")
R = TypeVar("R")

GHSA_BATCH_SIZE = 100

GHSA_SECURITY_VULNERABILITIES_QUERY = """
query($ecosystem: SecurityAdvisoryEcosystem, $package: String) {
  securityVulnerabilities(first: 100, ecosystem: $ecosystem, package: $package) {
    nodes {
      advisory {
        identifiers { type, value },
        severity,
        summary,
        description,
        references { url }
        cvssSeverities {
          cvssV3 { score vectorString }
          cvssV4 { score vectorString }
        }
        epss { percentage percentile }
        cwes (first: 100) { nodes { cweId name description } }
        publishedAt
        updatedAt
        withdrawnAt
        permalink
      }
      vulnerableVersionRange
      firstPatchedVersion { identifier }
    }
  }
}
"""

# Package manager -> GHSA ecosystem
GHSA_ECOSYSTEMS = {
    "composer": "COMPOSER",
    "elm": "ERLANG",
    "github_actions": "ACTIONS",
    "go_modules": "GO",
    "maven": "MAVEN",
    "npm_and_yarn": "NPM",
    "nuget": "NUGET",
    "pip": "PIP",
    "pub": "PUB",
    "bundler": "RUBYGEMS",
    "cargo": "RUST",
    "swift": "SWIFT",
}


class Package(BaseModel):
    name: str
    version: Optional[str] = None

    model_config = {"extra": "ignore", "populate_by_name": True}


class AdvisoryIdentifier(BaseModel):
    type: str
    value: str


class Cvss(BaseModel):
    score: float
    vector_string: Optional[str] = Field(default=None, alias="vectorString")

    model_config = {"extra": "ignore", "populate_by_name": True}


class SecurityAdvisory(BaseModel):
    identifiers: List[AdvisoryIdentifier]
    severity: Optional[str] = None
    summary: str
    description: Optional[str] = None
    references: Optional[List[Dict[str, str]]] = None
    cvss: Optional[Cvss] = None
    epss: Optional[Dict[str, Optional[float]]] = None
    cwes: Optional[List[Dict[str, str]]] = None
    published_at: Optional[str] = Field(default=None, alias="publishedAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    withdrawn_at: Optional[str] = Field(default=None, alias="withdrawnAt")
    permalink: Optional[str] = None

    model_config = {"extra": "ignore", "populate_by_name": True}


class FirstPatchedVersion(BaseModel):
    identifier: str


class SecurityVulnerability(BaseModel):
    package: Package
    advisory: SecurityAdvisory
    vulnerable_version_range: str = Field(..., alias="vulnerableVersionRange")
    first_patched_version: Optional[FirstPatchedVersion] = Field(default=None, alias="firstPatchedVersion")

    model_config = {"extra": "ignore", "populate_by_name": True}


_VULNERABILITY_LIST = TypeAdapter(List[SecurityVulnerability])


def get_ghsa_ecosystem(package_manager: str) -> str:
    """GHSA ecosystem for a package manager.

    Raises:
        ValueError: If the package manager has no GHSA ecosystem.
    """
    try:
        return GHSA_ECOSYSTEMS[package_manager]
    except KeyError:
        raise ValueError(f"Unknown dependabot package manager: {package_manager}") from None


def load_advisories_file(path: Path) -> List[SecurityVulnerability]:
    """Private advisories from a JSON array; missing file yields []."""
    if not path.is_file():
        LOG.info("Private security advisories file '%s' does not exist", path)
        return []
    return _VULNERABILITY_LIST.validate_python(json.loads(path.read_text(encoding="utf-8")))


def _pick_cvss(severities: Dict[str, Any] | None) -> Dict[str, Any] | None:
    severities = severities or {}
    for key in ("cvssV4", "cvssV3"):
        value = severities.get(key)
        if value and (value.get("score") or 0) > 0:
            return value
    return None


class GitHubSecurityAdvisoryClient:
    """Queries the GitHub advisory database over GraphQL, one package per query."""

    def __init__(self, token: str, api_url: str = "https://api.github.com") -> None:
        self._graphql_url = f"{api_url.rstrip('/')}/graphql"
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"bearer {token}"
        self._session.headers["Accept"] = "application/vnd.github+json"

    def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._session.request(
            "POST", self._graphql_url, json={"query": query, "variables": variables}, timeout=30
        )
        if resp.status_code >= 400:
            raise RuntimeError(f"{resp.status_code}: {resp.text or resp.reason}")
        body = resp.json() or {}
        if body.get("errors"):
            raise RuntimeError("; ".join(str(e.get("message", e)) for e in body["errors"]))
        return body.get("data") or {}

    def _vulnerabilities_for(self, ecosystem: str, package: Package) -> List[SecurityVulnerability]:
        try:
            data = self._query(
                GHSA_SECURITY_VULNERABILITIES_QUERY,
                {"ecosystem": ecosystem, "package": package.name},
            )
            nodes = (data.get("securityVulnerabilities") or {}).get("nodes") or []
            result = []
            for node in nodes:
                advisory = node.get("advisory")
                if advisory is None:
                    continue
                advisory = {
                    **advisory,
                    "cwes": (advisory.get("cwes") or {}).get("nodes"),
                    "cvss": _pick_cvss(advisory.get("cvssSeverities")),
                }
                result.append(
                    SecurityVulnerability.model_validate(
                        {**node, "advisory": advisory, "package": package.model_dump()}
                    )
                )
            return result
        except Exception as e:
            LOG.warning(
                "GHSA GraphQL request failed for package %s: %s. Continuing with other packages.",
                package.name,
                e,
            )
            return []

    def get_security_vulnerabilities(
        self, ecosystem: str, packages: Sequence[Package]
    ) -> List[SecurityVulnerability]:
        return _batch(GHSA_BATCH_SIZE, packages, lambda p: self._vulnerabilities_for(ecosystem, p))


def _batch(size: int, items: Sequence[T], action: Callable[[T], List[R]]) -> List[R]:
    results: List[R] = []
    for start in range(0, len(items), size):
        chunk = items[start : start + size]
        try:
            for item in chunk:
                results.extend(action(item))
        except Exception as e:
            LOG.warning("Request batch [%s-%s] failed; The data may be incomplete. %s", start, start + size, e)
    return results


_REQUIREMENT_RE = re.compile(r"^(<=|>=|<|>|=)?\s*(\S+)$")


def _satisfies(version: str, requirement: str) -> bool:
    """version against one "<op> <version>" requirement; invalid input never matches."""
    match = _REQUIREMENT_RE.match(requirement.strip())
    if not match:
        return False
    op, bound = match.group(1) or "=", match.group(2)
    try:
        v, b = Version(version), Version(bound)
    except InvalidVersion:
        return False
    return {
        "=": v == b,
        "<": v < b,
        "<=": v <= b,
        ">": v > b,
        ">=": v >= b,
    }[op]


def filter_vulnerabilities(vulnerabilities: Sequence[SecurityVulnerability]) -> List[SecurityVulnerability]:
    """Drop withdrawn advisories and those not covering the package version.

    A range is a comma-separated list of requirements, e.g. ">= 4.3.0, < 4.3.5";
    all of them must hold.
    """
    result = []
    for vuln in vulnerabilities:
        if vuln.advisory.withdrawn_at:
            continue
        version = vuln.package.version
        if not version or not vuln.vulnerable_version_range:
            continue
        requirements = [r.strip() for r in vuln.vulnerable_version_range.split(",")]
        if all(_satisfies(version, r) for r in requirements):
            result.append(vuln)
    return result
