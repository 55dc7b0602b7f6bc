"""Updater container for one job, wired to its proxy."""

import logging
from typing import Any, Dict, List

import docker
from docker.models.containers import Container

from depsync.runner.container import run_container, store_cert, store_input
from depsync.runner.proxy import Proxy, ProxyBuilder
from depsync.schemas.job import JobConfig

LOG = logging.getLogger("depsync.runner.updater")

JOB_OUTPUT_PATH = "/home/dependabot/dependabot-updater/output"
JOB_OUTPUT_FILENAME = "output.json"
JOB_INPUT_PATH = "/home/dependabot/dependabot-updater"
JOB_INPUT_FILENAME = "job.json"
REPO_CONTENTS_PATH = "/home/dependabot/dependabot-updater/repo"
CA_CERT_INPUT_PATH = "/usr/local/share/ca-certificates"
CA_CERT_FILENAME = "dbot-ca.crt"
SYSTEM_CA_BUNDLE = "/etc/ssl/certs/ca-certificates.crt"
DEFAULT_MEMORY_BYTES = 8 * 1024 * 1024 * 1024


class UpdaterBuilder:
    """Creates and seeds the updater container."""

    def __init__(
        self,
        client: docker.DockerClient,
        image: str,
        job_id: int,
        job: JobConfig,
        api_url: str,
        proxy: Proxy,
        memory_bytes: int = DEFAULT_MEMORY_BYTES,
        enable_connectivity_check: bool = True,
    ) -> None:
        self.client = client
        self.image = image
        self.job_id = job_id
        self.job = job
        self.api_url = api_url
        self.proxy = proxy
        self.memory_bytes = memory_bytes
        self.enable_connectivity_check = enable_connectivity_check

    def environment(self) -> Dict[str, str]:
        # No job token: the updater talks to the API over plain HTTP
        env = {
            "DEPENDABOT_JOB_ID": str(self.job_id),
            "DEPENDABOT_JOB_TOKEN": "",
            "DEPENDABOT_JOB_PATH": f"{JOB_INPUT_PATH}/{JOB_INPUT_FILENAME}",
            "DEPENDABOT_OPEN_TIMEOUT_IN_SECONDS": "15",
            "DEPENDABOT_OUTPUT_PATH": f"{JOB_OUTPUT_PATH}/{JOB_OUTPUT_FILENAME}",
            "DEPENDABOT_REPO_CONTENTS_PATH": REPO_CONTENTS_PATH,
            "DEPENDABOT_API_URL": self.api_url,
            "SSL_CERT_FILE": SYSTEM_CA_BUNDLE,
            "UPDATER_ONE_CONTAINER": "1",
            "ENABLE_CONNECTIVITY_CHECK": "1" if self.enable_connectivity_check else "0",
        }
        for key in ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY"):
            env[key] = self.proxy.url
        return env

    def run(self) -> Container:
        """Create the container and write the CA and job descriptor into it."""
        container = self.client.containers.create(
            self.image,
            name=f"dependabot-job-{self.job_id}-updater",
            user="dependabot",
            command=["/bin/sh"],
            tty=True,
            environment=self.environment(),
            mem_limit=self.memory_bytes,
            network=self.proxy.network_name,
        )
        store_cert(CA_CERT_FILENAME, CA_CERT_INPUT_PATH, container, self.proxy.ca.cert)
        store_input(JOB_INPUT_FILENAME, JOB_INPUT_PATH, container, {"job": self.job.to_api()})
        LOG.info("Created updater container %s", container.name)
        return container


class Updater:
    """Runs one job: proxy up, updater through its phases, everything removed."""

    def __init__(
        self,
        client: docker.DockerClient,
        updater_image: str,
        proxy_image: str,
        job_id: int,
        job_token: str,
        job: JobConfig,
        credentials: List[Dict[str, Any]],
        api_url: str,
        memory_bytes: int = DEFAULT_MEMORY_BYTES,
        enable_connectivity_check: bool = True,
    ) -> None:
        self.client = client
        self.updater_image = updater_image
        self.proxy_image = proxy_image
        self.job_id = job_id
        self.job_token = job_token
        self.job = job
        self.credentials = credentials
        self.api_url = api_url
        self.memory_bytes = memory_bytes
        self.enable_connectivity_check = enable_connectivity_check

    def run_updater(self) -> bool:
        """Raises ProxyError or ContainerRuntimeError on failure."""
        proxy = ProxyBuilder(self.client, self.proxy_image).run(
            self.job_id, self.job_token, self.api_url, self.credentials
        )
        try:
            container = UpdaterBuilder(
                self.client,
                self.updater_image,
                self.job_id,
                self.job,
                self.api_url,
                proxy,
                self.memory_bytes,
                self.enable_connectivity_check,
            ).run()
            return run_container(container)
        finally:
            proxy.shutdown()
