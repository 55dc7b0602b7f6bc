"""Configuration loading from YAML and environment.

Secrets (host and GitHub tokens) are taken from environment variables or
from files (Docker secrets). Never put real tokens in config files committed
to the repo.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from depsync.schemas.config import DependabotConfig


def _read_secret(env_key: str, file_env_key: str) -> str | None:
    """Read secret from env var or from file path in env (e.g. Docker
    secrets)."""
    value = _current_env.get(env_key)
    if value:
        return value.strip()
    file_path = _current_env.get(file_env_key)
    if file_path:
        return Path(file_path).read_text().strip()
    return None


# Injected by load_config so resolvers can read env/file
_current_env: dict[str, str] = {}


class AzureConfig(BaseSettings):
    """Azure DevOps organization, project and repository to update."""

    model_config = SettingsConfigDict(env_prefix="AZURE_", extra="ignore")

    organization_url: str = Field(
        default="https://dev.azure.com/contoso",
        description="Organization URL, e.g. https://dev.azure.com/contoso",
    )
    project: str = Field(default="", description="Project name or id")
    repository: str = Field(default="", description="Repository name or id")
    token: str | None = Field(default=None, description="PAT with Code (Read & Write); use env or secret file")


class GitHubConfig(BaseSettings):
    """GitHub token used for advisories and to avoid rate limits in the updater."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")

    token: str | None = Field(default=None, description="PAT; use env or secret file")
    api_url: str = Field(default="https://api.github.com", description="API base URL")


class ServerConfig(BaseSettings):
    """Control-plane API listener."""

    model_config = SettingsConfigDict(env_prefix="SERVER_", extra="ignore")

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=0, le=65535, description="Bind port (0 picks a free port)")
    base_path: str = Field(default="/api/update_jobs", description="Prefix of all job routes")


class RunnerConfig(BaseSettings):
    """Container images and limits for the updater and proxy."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_", extra="ignore")

    updater_image: str | None = Field(
        default=None, description="Force one updater image for every package manager"
    )
    updater_image_tag: str = Field(default="latest", description="Tag for per-ecosystem updater images")
    proxy_image: str = Field(default="ghcr.io/dependabot/proxy:latest", description="Proxy image")
    memory_bytes: int = Field(default=8 * 1024 * 1024 * 1024, ge=1, description="Updater memory limit")
    api_url_template: str = Field(
        default="http://host.docker.internal:{port}/api",
        description="API URL handed to containers; {port} is the control-plane port",
    )
    enable_connectivity_check: bool = Field(default=True, description="ENABLE_CONNECTIVITY_CHECK in updater")


class PullRequestConfig(BaseSettings):
    """Pull request authoring options."""

    model_config = SettingsConfigDict(env_prefix="PR_", extra="ignore")

    author_name: str = Field(default="dependabot[bot]", description="Commit author name")
    author_email: str = Field(default="noreply@github.com", description="Commit author email")
    auto_approve: bool = Field(default=False, description="Approve created PRs with the approver identity")
    approver_token: str | None = Field(default=None, description="Token of the approver; defaults to host token")
    dry_run: bool = Field(default=False, description="Skip every mutating pull request operation")
    labels: list[str] = Field(default_factory=list, description="Labels for update blocks that set none")


class SecurityConfig(BaseSettings):
    """Security advisory sources."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_", extra="ignore")

    advisories_file: Path | None = Field(default=None, description="Private advisories JSON file")


class ExperimentsConfig(BaseSettings):
    """Experiment overrides merged over the defaults."""

    model_config = SettingsConfigDict(env_prefix="EXPERIMENTS_", extra="ignore")

    raw: str = Field(default="", description="Comma-separated key=value pairs")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore")

    azure: AzureConfig = Field(default_factory=AzureConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    pull_requests: PullRequestConfig = Field(default_factory=PullRequestConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    experiments: ExperimentsConfig = Field(default_factory=ExperimentsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    dependabot_config: Path = Field(
        default=Path(".github/dependabot.yml"), description="Path to the dependency-update config"
    )

    @property
    def azure_token_resolved(self) -> str | None:
        """Resolve host token from env or Docker secret file."""
        t = self.azure.token
        if t and not t.startswith("$"):
            return t
        return _read_secret("AZURE_TOKEN", "AZURE_TOKEN_FILE")

    @property
    def github_token_resolved(self) -> str | None:
        """Resolve GitHub token from env or Docker secret file."""
        t = self.github.token
        if t and not t.startswith("$"):
            return t
        return _read_secret("GITHUB_TOKEN", "GITHUB_TOKEN_FILE")

    @property
    def approver_token_resolved(self) -> str | None:
        """Approver token, falling back to the host token."""
        t = self.pull_requests.approver_token
        if t and not t.startswith("$"):
            return t
        return _read_secret("PR_APPROVER_TOKEN", "PR_APPROVER_TOKEN_FILE") or self.azure_token_resolved


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}") and not value.startswith("${{"):
            key = value[2:-1].strip()
            return _current_env.get(key, value)
        # Simple $VAR
        if value.startswith("$") and not value.startswith("${"):
            key = value[1:].strip()
            return _current_env.get(key, value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load config from YAML file and environment.

    Secrets: AZURE_TOKEN or AZURE_TOKEN_FILE, GITHUB_TOKEN or GITHUB_TOKEN_FILE.
    """
    global _current_env
    import os

    _current_env = dict(os.environ)

    path = config_path or Path("config.yaml")
    if not path.is_file():
        return AppConfig()

    raw = yaml.safe_load(path.read_text()) or {}
    raw = _substitute_env(raw)

    kwargs: dict[str, Any] = {
        "azure": AzureConfig(**(raw.get("azure") or {})),
        "github": GitHubConfig(**(raw.get("github") or {})),
        "server": ServerConfig(**(raw.get("server") or {})),
        "runner": RunnerConfig(**(raw.get("runner") or {})),
        "pull_requests": PullRequestConfig(**(raw.get("pull_requests") or {})),
        "security": SecurityConfig(**(raw.get("security") or {})),
        "experiments": ExperimentsConfig(**(raw.get("experiments") or {})),
        "logging": LoggingConfig(**(raw.get("logging") or {})),
    }
    if raw.get("dependabot_config"):
        kwargs["dependabot_config"] = Path(raw["dependabot_config"])
    return AppConfig(**kwargs)


# ${{ NAME }} placeholders, as used for registry secrets in dependabot.yml
_PLACEHOLDER_RE = re.compile(r"\$\{\{\s{0,10}([a-zA-Z_][a-zA-Z0-9._-]{0,99})\s{0,10}\}\}")


def convert_placeholders(value: str | None, variables: dict[str, str]) -> str | None:
    """Replace ${{ NAME }} with variables[NAME]; unknown names stay as-is."""
    if not value:
        return value
    return _PLACEHOLDER_RE.sub(lambda m: variables.get(m.group(1), m.group(0)), value)


def load_dependabot_config(path: Path, variables: dict[str, str] | None = None) -> DependabotConfig:
    """Parse a dependabot.yml into a validated DependabotConfig.

    Registry string values may reference secrets as ${{ NAME }}; they are
    looked up in variables (defaults to the process environment).
    """
    if variables is None:
        import os

        variables = dict(os.environ)
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    registries = raw.get("registries") or {}
    for registry in registries.values():
        if not isinstance(registry, dict):
            continue
        for key, val in list(registry.items()):
            if isinstance(val, str):
                registry[key] = convert_placeholders(val, variables)
    return DependabotConfig.model_validate(raw)
