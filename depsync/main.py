"""depsync entry point.

Usage: depsync run [--config PATH] [--dry-run] [--target-update-id N ...]
       depsync --check [--config PATH]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from depsync.adapters.azure import AzureDevOpsAdapter
from depsync.config import AppConfig, load_config, load_dependabot_config
from depsync.jobs.builder import SourceInfo
from depsync.jobs.experiments import merge_experiments
from depsync.logging import DepsyncLogging
from depsync.scheduler import Scheduler

LOG = logging.getLogger("depsync.main")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI with optional subcommand (run)."""
    argv = argv if argv is not None else sys.argv[1:]
    rest = list(argv)
    if rest and rest[0] == "run":
        rest = rest[1:]

    parser = argparse.ArgumentParser(
        prog="depsync",
        description="Run dependency-update jobs and raise pull requests for them",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only load and validate config, then exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Run jobs without creating, updating or closing pull requests",
    )
    parser.add_argument(
        "--target-update-id",
        type=int,
        action="append",
        default=[],
        metavar="N",
        help="Zero-based index of an update block to run; repeat for several (default: all)",
    )
    return parser.parse_args(rest)


def _check(config: AppConfig) -> int:
    try:
        dependabot_config = load_dependabot_config(config.dependabot_config)
    except (OSError, ValueError) as e:
        LOG.error("Invalid dependency-update config '%s': %s", config.dependabot_config, e)
        return 1
    print(
        "Config OK:",
        f"{config.azure.organization_url}/{config.azure.project}/_git/{config.azure.repository}",
        f"{len(dependabot_config.updates)} update(s)",
    )
    return 0


def run(config: AppConfig, logs: DepsyncLogging, dry_run: bool | None, target_update_ids: list[int]) -> int:
    token = config.azure_token_resolved
    if not token:
        LOG.error("No Azure DevOps token; set AZURE_TOKEN or AZURE_TOKEN_FILE")
        return 1
    for secret in (token, config.github_token_resolved, config.approver_token_resolved):
        if secret:
            logs.redactor.mask(secret)

    dependabot_config = load_dependabot_config(config.dependabot_config)
    LOG.info(
        "Configuration file valid: %s update(s) and %s registries.",
        len(dependabot_config.updates),
        len(dependabot_config.registries) or "no",
    )

    azure = config.azure
    host = AzureDevOpsAdapter(azure.organization_url, azure.project, azure.repository, token)
    approver = None
    if config.pull_requests.auto_approve:
        approver = AzureDevOpsAdapter(
            azure.organization_url, azure.project, azure.repository, config.approver_token_resolved
        )
    source = SourceInfo(host.hostname, host.api_endpoint, host.repository_slug)

    scheduler = Scheduler(
        config,
        dependabot_config,
        host,
        source,
        approver=approver,
        redactor=logs.redactor,
        experiments=merge_experiments(config.experiments.raw),
        target_update_ids=target_update_ids,
        dry_run=dry_run,
    )
    results = scheduler.run()
    for result in results:
        level = logging.INFO if result.success else logging.ERROR
        LOG.log(level, "Update %s: %s", result.id, json.dumps(result.to_dict()))
    return 0 if all(r.success for r in results) else 1


def main(argv: list[str] | None = None) -> int:
    """Entry point: load config, set up logging and run the scheduler."""
    args = parse_args(argv)

    config_path = args.config
    if not config_path.is_file() and config_path == Path("config.yaml"):
        if Path("config.example.yaml").is_file():
            config_path = Path("config.example.yaml")
            logging.basicConfig(level=logging.INFO)
            LOG.warning("config.yaml not found, using config.example.yaml")

    config = load_config(config_path)
    logs = DepsyncLogging(config.logging)
    logs.setup()

    if args.check:
        return _check(config)

    try:
        return run(config, logs, args.dry_run, args.target_update_id)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        LOG.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
