"""Per-job credentials proxy.

The updater container has no route to the outside world: it sits on an
internal network whose only other member is the proxy. The proxy holds every
credential and re-signs TLS with a CA generated for the job, so the updater
only needs to trust that CA.
"""

import datetime
import logging
from typing import Any, Dict, List

import docker
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from docker.models.containers import Container
from docker.models.networks import Network

from depsync.runner.container import store_input

LOG = logging.getLogger("depsync.runner.proxy")

PROXY_PORT = 1080
CA_COMMON_NAME = "Dependabot Internal CA"
CA_KEY_SIZE = 2048
CA_VALIDITY_DAYS = 2 * 365
CONFIG_FILE_PATH = "/"
CONFIG_FILE_NAME = "config.json"


class ProxyError(Exception):
    """Proxy container or its networks could not be set up."""

    pass


class CertificateAuthority:
    """PEM-encoded CA certificate and private key."""

    def __init__(self, cert: str, key: str) -> None:
        self.cert = cert
        self.key = key


def generate_ca() -> CertificateAuthority:
    """Self-signed CA for the proxy's TLS interception."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=CA_KEY_SIZE)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=CA_VALIDITY_DAYS))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return CertificateAuthority(
        cert=cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        key=key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ).decode("ascii"),
    )


class Proxy:
    """Running proxy container and its two networks."""

    def __init__(
        self,
        container: Container,
        network: Network,
        external_network: Network,
        ca: CertificateAuthority,
    ) -> None:
        self.container = container
        self.network = network
        self.external_network = external_network
        self.ca = ca
        self.network_name = network.name
        self.url = f"http://{container.name}:{PROXY_PORT}"

    def shutdown(self) -> None:
        """Remove the container and both networks; failures are only logged."""
        try:
            self.container.remove(v=True, force=True)
        except Exception as e:
            LOG.info("Failed to clean up proxy container %s: %s", self.container.name, e)
        for network in (self.network, self.external_network):
            try:
                network.remove()
            except Exception as e:
                LOG.info("Failed to remove network %s: %s", network.name, e)


class ProxyBuilder:
    """Creates the networks and proxy container of one job."""

    def __init__(self, client: docker.DockerClient, image: str) -> None:
        self.client = client
        self.image = image

    def _ensure_network(self, name: str, internal: bool) -> Network:
        existing = self.client.networks.list(names=[name])
        if existing:
            return existing[0]
        return self.client.networks.create(name, driver="bridge", internal=internal)

    def run(
        self,
        job_id: int,
        job_token: str,
        api_url: str,
        credentials: List[Dict[str, Any]],
    ) -> Proxy:
        """Create and start the proxy for job_id.

        Raises:
            ProxyError: If any network or container step fails.
        """
        name = f"dependabot-job-{job_id}"
        ca = generate_ca()
        try:
            network = self._ensure_network(f"{name}-internal-network", internal=True)
            external_network = self._ensure_network(f"{name}-external-network", internal=False)
            container = self.client.containers.create(
                self.image,
                name=f"{name}-proxy",
                environment={
                    "JOB_ID": str(job_id),
                    "JOB_TOKEN": job_token,
                    "DEPENDABOT_API_URL": api_url,
                },
                entrypoint=["sh", "-c", "/usr/sbin/update-ca-certificates && /dependabot-proxy"],
                extra_hosts={"host.docker.internal": "host-gateway"},
                network=network.name,
            )
            config = {"all_credentials": credentials, "ca": {"cert": ca.cert, "key": ca.key}}
            store_input(CONFIG_FILE_NAME, CONFIG_FILE_PATH, container, config)
            external_network.connect(container)
            container.start()
        except Exception as e:
            raise ProxyError(f"Failed to start proxy for job {job_id}: {e}") from e
        LOG.info("Started proxy container %s", container.name)
        return Proxy(container, network, external_network, ca)
