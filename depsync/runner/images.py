"""Updater and proxy image names, and pulling them."""

import logging
from typing import Callable, Dict

import docker
from docker.errors import ImageNotFound

LOG = logging.getLogger("depsync.runner.images")

UPDATER_IMAGE_REPOSITORY = "ghcr.io/dependabot/dependabot-updater"
PROXY_IMAGE_NAME = "ghcr.io/dependabot/proxy:latest"

# Package manager -> updater image suffix, where they differ
UPDATER_IMAGE_SUFFIXES = {
    "docker_compose": "docker-compose",
    "dotnet_sdk": "dotnet-sdk",
    "github_actions": "github-actions",
    "go_modules": "gomod",
    "hex": "mix",
    "npm_and_yarn": "npm",
    "rust_toolchain": "rust-toolchain",
    "submodules": "gitsubmodule",
}

MetricReporter = Callable[[str, str, float, Dict[str, str]], None]


def updater_image_name(package_manager: str, tag: str = "latest") -> str:
    suffix = UPDATER_IMAGE_SUFFIXES.get(package_manager, package_manager)
    return f"{UPDATER_IMAGE_REPOSITORY}-{suffix}:{tag}"


class ImageService:
    """Pulls images that are not present locally."""

    def __init__(self, client: docker.DockerClient) -> None:
        self.client = client

    def pull(self, image: str, send_metric: MetricReporter | None = None) -> None:
        """Pull image unless it is already present.

        Raises:
            docker.errors.APIError: If the pull fails.
        """
        try:
            self.client.images.get(image)
            LOG.info("Image %s already present, skipping pull", image)
            return
        except ImageNotFound:
            pass

        LOG.info("Pulling image %s...", image)
        try:
            self.client.images.pull(image)
        except Exception:
            if send_metric is not None:
                send_metric("image_pull_failed", "increment", 1, {"image": image})
            raise
        LOG.info("Pulled image %s", image)
        if send_metric is not None:
            send_metric("image_pull", "increment", 1, {"image": image})
