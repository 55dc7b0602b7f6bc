"""Experiment flags passed through to the updater."""

from typing import Any, Dict

# Experiments enabled by the hosted service; refresh from a recent job log when they drift.
DEFAULT_EXPERIMENTS: Dict[str, Any] = {
    "record-ecosystem-versions": True,
    "record-update-job-unknown-error": True,
    "proxy-cached": True,
    "enable-record-ecosystem-meta": True,
    "enable-corepack-for-npm-and-yarn": True,
    "enable-private-registry-for-corepack": True,
    "enable-shared-helpers-command-timeout": True,
    "enable-dependabot-setting-up-cronjob": True,
    "enable-engine-version-detection": True,
    "avoid-duplicate-updates-package-json": True,
    "allow-refresh-for-existing-pr-dependencies": True,
    "allow-refresh-group-with-all-dependencies": True,
    "enable-enhanced-error-details-for-updater": True,
    "gradle-lockfile-updater": True,
    "gradle-wrapper-updater": True,
    "enable-exclude-paths-subdirectory-manifest-files": True,
    "group-membership-enforcement": True,
    "deprecate-close-command": True,
    "deprecate-reopen-command": True,
    "deprecate-merge-command": True,
    "deprecate-cancel-merge-command": True,
    "deprecate-squash-merge-command": True,
}


def parse_experiments(raw: str | None) -> Dict[str, Any]:
    """Parse "a=b,c" into {"a": "b", "c": True}.

    Empty entries are skipped; an entry without a value is enabled.
    """
    experiments: Dict[str, Any] = {}
    if not raw:
        return experiments
    for entry in raw.split(","):
        if not entry.strip():
            continue
        key, _, value = entry.partition("=")
        experiments[key.strip()] = value.strip() or True
    return experiments


def merge_experiments(raw: str | None) -> Dict[str, Any]:
    """Defaults overridden by the raw key=value list."""
    return {**DEFAULT_EXPERIMENTS, **parse_experiments(raw)}
