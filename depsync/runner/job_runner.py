"""Run one registered job end to end and turn failures into a RunJobResult."""

import logging
from typing import Dict

import docker

from depsync.logging import Redactor
from depsync.models import RunJobResult
from depsync.runner.api_client import ApiClient, CredentialFetchingError
from depsync.runner.images import PROXY_IMAGE_NAME, ImageService, updater_image_name
from depsync.runner.proxy import ProxyError
from depsync.runner.updater import DEFAULT_MEMORY_BYTES, Updater

LOG = logging.getLogger("depsync.runner.job_runner")


class JobRunnerImagingError(Exception):
    """Images could not be pulled or the proxy could not be started."""

    pass


class JobRunnerUpdaterError(Exception):
    """Updater container failed."""

    pass


class JobRunner:
    """Fetches a job back from the control plane and runs its containers."""

    def __init__(
        self,
        api_url: str,
        job_id: int,
        job_token: str,
        credentials_token: str,
        redactor: Redactor | None = None,
        docker_client: docker.DockerClient | None = None,
        updater_image: str | None = None,
        updater_image_tag: str = "latest",
        proxy_image: str = PROXY_IMAGE_NAME,
        memory_bytes: int = DEFAULT_MEMORY_BYTES,
        enable_connectivity_check: bool = True,
    ) -> None:
        self.api_url = api_url
        self.job_id = job_id
        self.job_token = job_token
        self.credentials_token = credentials_token
        self.redactor = redactor
        self.docker_client = docker_client
        self.updater_image = updater_image
        self.updater_image_tag = updater_image_tag
        self.proxy_image = proxy_image
        self.memory_bytes = memory_bytes
        self.enable_connectivity_check = enable_connectivity_check

    def run(self) -> None:
        # Containers reach the host through host.docker.internal; this process uses localhost
        base_url = self.api_url.replace("host.docker.internal", "localhost")
        api_client = ApiClient(base_url, self.job_id, self.job_token, self.credentials_token, self.redactor)

        job = api_client.get_job_details()
        package_manager = job.package_manager
        updater_image = self.updater_image or updater_image_name(package_manager, self.updater_image_tag)

        def send_metric(name: str, metric_type: str, value: float, tags: Dict[str, str]) -> None:
            api_client.send_metrics(name, metric_type, value, {"package_manager": package_manager, **tags})

        credentials = api_client.get_credentials() or []
        client = self.docker_client or docker.from_env()

        try:
            images = ImageService(client)
            images.pull(updater_image, send_metric)
            images.pull(self.proxy_image, send_metric)
        except Exception as e:
            raise JobRunnerImagingError(str(e)) from e

        updater = Updater(
            client,
            updater_image,
            self.proxy_image,
            self.job_id,
            self.job_token,
            job,
            credentials,
            self.api_url,
            self.memory_bytes,
            self.enable_connectivity_check,
        )
        try:
            updater.run_updater()
        except ProxyError as e:
            raise JobRunnerImagingError(str(e)) from e
        except Exception as e:
            raise JobRunnerUpdaterError(str(e)) from e


def run_job(runner: JobRunner) -> RunJobResult:
    """Run the job; every failure becomes an unsuccessful result with a message."""
    success = False
    message = None
    try:
        runner.run()
        success = True
    except JobRunnerImagingError as e:
        message = f"Error fetching updater images: {e}"
    except JobRunnerUpdaterError as e:
        message = f"Error running updater: {e}"
    except CredentialFetchingError as e:
        message = f"Dependabot was unable to retrieve job credentials: {e}"
    except Exception as e:
        message = f"Unknown error: {e}"

    if message:
        LOG.error("Update job %s failed: %s", runner.job_id, message)
    LOG.info("Update job %s completed", runner.job_id)
    return RunJobResult(success, message)
