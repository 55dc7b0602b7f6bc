"""Security advisory sources and vulnerability filtering."""

from depsync.security.advisories import (
    GitHubSecurityAdvisoryClient,
    Package,
    SecurityVulnerability,
    filter_vulnerabilities,
    get_ghsa_ecosystem,
    load_advisories_file,
)

__all__ = [
    "GitHubSecurityAdvisoryClient",
    "Package",
    "SecurityVulnerability",
    "filter_vulnerabilities",
    "get_ghsa_ecosystem",
    "load_advisories_file",
]
