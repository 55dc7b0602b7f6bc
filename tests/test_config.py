"""Tests for config loading (YAML + env) and dependabot.yml parsing."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from depsync.config import (
    AppConfig,
    convert_placeholders,
    load_config,
    load_dependabot_config,
)


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "absent.yaml")
        assert isinstance(config, AppConfig)
        assert config.server.port == 3000
        assert config.server.base_path == "/api/update_jobs"
        assert config.runner.memory_bytes == 8 * 1024 * 1024 * 1024
        assert config.pull_requests.dry_run is False

    def test_sections_are_read(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "azure:\n"
            "  organization_url: https://dev.azure.com/contoso\n"
            "  project: prj1\n"
            "  repository: repo1\n"
            "server:\n"
            "  port: 0\n"
            "pull_requests:\n"
            "  dry_run: true\n"
            "  labels: [dependencies]\n"
            "dependabot_config: ci/dependabot.yml\n"
        )
        config = load_config(path)
        assert config.azure.project == "prj1"
        assert config.server.port == 0
        assert config.pull_requests.dry_run is True
        assert config.pull_requests.labels == ["dependencies"]
        assert config.dependabot_config == Path("ci/dependabot.yml")

    def test_env_substitution_in_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_PROJECT", "from-env")
        path = tmp_path / "config.yaml"
        path.write_text("azure:\n  project: ${MY_PROJECT}\n  repository: $MY_PROJECT\n")
        config = load_config(path)
        assert config.azure.project == "from-env"
        assert config.azure.repository == "from-env"

    def test_token_resolved_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AZURE_TOKEN", "pat-value")
        monkeypatch.delenv("AZURE_TOKEN_FILE", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("azure:\n  project: p\n")
        config = load_config(path)
        assert config.azure_token_resolved == "pat-value"

    def test_token_resolved_from_secret_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        secret = tmp_path / "token"
        secret.write_text("file-pat\n")
        monkeypatch.delenv("AZURE_TOKEN", raising=False)
        monkeypatch.setenv("AZURE_TOKEN_FILE", str(secret))
        path = tmp_path / "config.yaml"
        path.write_text("azure:\n  project: p\n")
        config = load_config(path)
        assert config.azure_token_resolved == "file-pat"

    def test_approver_token_falls_back_to_host_token(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AZURE_TOKEN", "host-pat")
        monkeypatch.delenv("PR_APPROVER_TOKEN", raising=False)
        monkeypatch.delenv("PR_APPROVER_TOKEN_FILE", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("pull_requests:\n  auto_approve: true\n")
        config = load_config(path)
        assert config.approver_token_resolved == "host-pat"

    def test_invalid_port_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: 70000\n")
        with pytest.raises(ValidationError):
            load_config(path)


class TestConvertPlaceholders:
    def test_known_names_replaced(self) -> None:
        assert convert_placeholders("${{ TOKEN }}", {"TOKEN": "t"}) == "t"
        assert convert_placeholders("Bearer ${{TOKEN}}!", {"TOKEN": "t"}) == "Bearer t!"

    def test_unknown_names_kept(self) -> None:
        assert convert_placeholders("${{ MISSING }}", {}) == "${{ MISSING }}"

    def test_empty_passthrough(self) -> None:
        assert convert_placeholders(None, {}) is None
        assert convert_placeholders("", {}) == ""


class TestLoadDependabotConfig:
    def test_updates_and_registries(self, tmp_path: Path) -> None:
        path = tmp_path / "dependabot.yml"
        path.write_text(
            "version: 2\n"
            "enable-beta-ecosystems: true\n"
            "registries:\n"
            "  npm-feed:\n"
            "    type: npm-registry\n"
            "    url: https://pkgs.example.com/npm/\n"
            "    token: \"${{ FEED_TOKEN }}\"\n"
            "updates:\n"
            "  - package-ecosystem: npm\n"
            "    directory: /\n"
            "    open-pull-requests-limit: 0\n"
        )
        config = load_dependabot_config(path, {"FEED_TOKEN": "secret"})
        assert config.enable_beta_ecosystems is True
        assert config.registries["npm-feed"]["token"] == "secret"
        assert len(config.updates) == 1
        update = config.updates[0]
        assert update.package_ecosystem == "npm"
        assert update.security_only is True

    def test_default_open_pull_requests_limit(self, tmp_path: Path) -> None:
        path = tmp_path / "dependabot.yml"
        path.write_text("version: 2\nupdates:\n  - package-ecosystem: pip\n    directories: [/a, /b]\n")
        update = load_dependabot_config(path, {}).updates[0]
        assert update.open_pull_requests_limit == 5
        assert update.security_only is False

    def test_update_without_directory_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "dependabot.yml"
        path.write_text("version: 2\nupdates:\n  - package-ecosystem: pip\n")
        with pytest.raises(ValidationError):
            load_dependabot_config(path, {})
