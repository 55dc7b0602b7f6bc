"""Seeding, running and removing containers."""

import io
import json
import logging
import tarfile
import time
from typing import Any, Iterable, List

from docker.models.containers import Container

LOG = logging.getLogger("depsync.runner.container")
UPDATER_LOG = logging.getLogger("depsync.updater")

RWX_ALL = 0o777

UPDATER_COMMANDS = [
    "mkdir -p /home/dependabot/dependabot-updater/output",
    "$DEPENDABOT_HOME/dependabot-updater/bin/run fetch_files",
    "$DEPENDABOT_HOME/dependabot-updater/bin/run update_files",
]


class ContainerRuntimeError(Exception):
    """Raised when a container or one of its commands fails."""

    pass


def make_tar(name: str, content: bytes, mode: int = 0o644) -> bytes:
    """Single-file tar archive as put_archive expects it."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(name=name)
        info.size = len(content)
        info.mode = mode
        info.mtime = int(time.time())
        tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def store_input(name: str, path: str, container: Container, payload: Any) -> None:
    """Write payload as JSON to path/name inside the container."""
    data = json.dumps(payload).encode("utf-8")
    container.put_archive(path, make_tar(name, data, mode=RWX_ALL))


def store_cert(name: str, path: str, container: Container, cert: str) -> None:
    container.put_archive(path, make_tar(name, cert.encode("utf-8")))


def _log_stream(chunks: Iterable[Any]) -> None:
    for chunk in chunks:
        # demux=True yields (stdout, stderr) tuples
        stdout, stderr = chunk if isinstance(chunk, tuple) else (chunk, None)
        for data, level in ((stdout, logging.INFO), (stderr, logging.ERROR)):
            if not data:
                continue
            for line in data.decode("utf-8", errors="replace").splitlines():
                if line.strip():
                    UPDATER_LOG.log(level, "%s", line)


def exec_command(container: Container, cmd: List[str], user: str) -> None:
    """Run cmd in the running container as user, streaming its output.

    Raises:
        ContainerRuntimeError: If the command exits non-zero.
    """
    api = container.client.api
    exec_id = api.exec_create(container.id, cmd, user=user, stdout=True, stderr=True)["Id"]
    _log_stream(api.exec_start(exec_id, stream=True, demux=True))
    exit_code = api.exec_inspect(exec_id).get("ExitCode")
    if exit_code != 0:
        raise ContainerRuntimeError(f"Command failed with exit code {exit_code}: {' '.join(cmd)}")


def run_container(container: Container) -> bool:
    """Start the updater container and run its phases, then remove it.

    CA certificates are refreshed as root first; the phases run as the
    dependabot user. The container and its volumes are removed even on
    failure, and a failing removal is only logged.

    Raises:
        ContainerRuntimeError: If starting or any phase fails.
    """
    try:
        container.start()
        LOG.info("Started container %s", container.id)
        exec_command(container, ["/usr/sbin/update-ca-certificates"], "root")
        for cmd in UPDATER_COMMANDS:
            exec_command(container, ["/bin/sh", "-c", cmd], "dependabot")
        return True
    except Exception as e:
        LOG.info("Failure running container %s: %s", container.id, e)
        raise ContainerRuntimeError("The updater encountered one or more errors.") from e
    finally:
        try:
            container.remove(v=True, force=True)
            LOG.info("Cleaned up container %s", container.id)
        except Exception as e:
            LOG.info("Failed to clean up container %s: %s", container.id, e)
