"""Control-plane HTTP API called back by the updater container.

Routes live under base_path (default /api/update_jobs):

- GET   /:id/details       job descriptor (job token)
- GET   /:id/credentials   credentials (credentials token)
- POST  /:id/<kind>        one updater output, body {"data": ...}
- PATCH /:id/mark_as_processed

Output routes only check the job token on secure requests. The updater does
not send its token over plain HTTP, so requests arriving over loopback or the
container bridge are accepted as is. A request is secure when a TLS front end
marks it with X-Forwarded-Proto: https.
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from pydantic import ValidationError

from depsync.processor import PATCH_KINDS, OutputKind, OutputProcessor, parse_output
from depsync.registry import JobRegistry, TokenType

LOG = logging.getLogger("depsync.server.api")

DEFAULT_BASE_PATH = "/api/update_jobs"


class ApiHTTPServer(ThreadingHTTPServer):
    """HTTP server carrying the registry and processor for its handlers."""

    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        registry: JobRegistry,
        processor: OutputProcessor,
        base_path: str = DEFAULT_BASE_PATH,
    ) -> None:
        super().__init__(address, ApiRequestHandler)
        self.registry = registry
        self.processor = processor
        self.base_path = "/" + base_path.strip("/")


class ApiRequestHandler(BaseHTTPRequestHandler):
    """Routes control-plane requests to the registry and output processor."""

    server: ApiHTTPServer

    def do_GET(self) -> None:
        path = self.path.split("?", 1)[0]
        if path in ("/", "/health"):
            self._send_json(200, {"status": "ok", "service": "depsync"})
            return
        route = self._route(path)
        if route is None:
            self._send_empty(404)
            return
        job_id, operation = route
        if operation == "details":
            self._handle_details(job_id)
        elif operation == "credentials":
            self._handle_credentials(job_id)
        else:
            self._send_empty(404)

    def do_POST(self) -> None:
        self._handle_output("POST")

    def do_PATCH(self) -> None:
        self._handle_output("PATCH")

    def _route(self, path: str) -> tuple[int, str] | None:
        """(job id, operation) for base_path/<id>/<operation>, else None."""
        prefix = self.server.base_path + "/"
        if not path.startswith(prefix):
            return None
        parts = path[len(prefix) :].strip("/").split("/")
        if len(parts) != 2:
            return None
        try:
            return int(parts[0]), parts[1]
        except ValueError:
            return None

    def _is_secure(self) -> bool:
        return self.headers.get("X-Forwarded-Proto", "").strip().lower() == "https"

    def _check_token(self, token_type: TokenType, job_id: int) -> bool:
        """Send 401/403 and return False unless the Authorization header matches."""
        value = self.headers.get("Authorization")
        if not value:
            self._send_empty(401)
            return False
        if not self.server.registry.authenticate(token_type, job_id, value):
            self._send_empty(403)
            return False
        return True

    def _handle_details(self, job_id: int) -> None:
        if not self._check_token(TokenType.JOB, job_id):
            return
        job = self.server.registry.job(job_id)
        if job is None:
            self._send_empty(204)
            return
        self._send_json(200, job.to_api())

    def _handle_credentials(self, job_id: int) -> None:
        if not self._check_token(TokenType.CREDENTIALS, job_id):
            return
        credentials = self.server.registry.credentials(job_id)
        if credentials is None:
            self._send_empty(204)
            return
        self._send_json(200, credentials)

    def _handle_output(self, method: str) -> None:
        # Drain the body before any early response so the client sees the status
        try:
            length = int(self.headers.get("Content-Length", 0))
            if length < 0:
                raise ValueError(length)
        except ValueError:
            LOG.warning("Rejected %s %s: invalid Content-Length", method, self.path)
            # Body length is unknown, so the connection cannot be reused
            self.close_connection = True
            self._send_empty(400)
            return
        body = self.rfile.read(length) if length else b""
        route = self._route(self.path.split("?", 1)[0])
        if route is None:
            self._send_empty(404)
            return
        job_id, operation = route
        try:
            kind = OutputKind(operation)
        except ValueError:
            self._send_empty(404)
            return
        expected = "PATCH" if kind in PATCH_KINDS else "POST"
        if method != expected:
            self._send_empty(404)
            return

        if self._is_secure():
            if not self._check_token(TokenType.JOB, job_id):
                return
        else:
            LOG.debug("Skipping authentication because it is not secure %s", self.path)

        try:
            payload = json.loads(body.decode("utf-8")) if body else {}
            if not isinstance(payload, dict) or "data" not in payload:
                raise ValueError("body must be an object with a 'data' member")
            data = parse_output(kind, payload["data"])
        except (ValueError, ValidationError) as e:
            LOG.warning("Rejected '%s' for job %s: %s", kind.value, job_id, e)
            self._send_empty(400)
            return

        try:
            success = self.server.processor.handle(job_id, kind.value, data)
        except Exception:
            LOG.exception("Failed processing '%s' for job %s", kind.value, job_id)
            self._send_empty(500)
            return
        self._send_empty(204 if success else 400)

    def _send_empty(self, status: int) -> None:
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_json(self, status: int, payload: Any) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        LOG.debug(format, *args)


class ControlPlaneServer:
    """Runs ApiHTTPServer on a daemon thread for the length of a scheduler run."""

    def __init__(
        self,
        registry: JobRegistry,
        processor: OutputProcessor,
        host: str = "0.0.0.0",
        port: int = 0,
        base_path: str = DEFAULT_BASE_PATH,
    ) -> None:
        self.registry = registry
        self.processor = processor
        self.host = host
        self.requested_port = port
        self.base_path = base_path
        self._httpd: ApiHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Bind and serve in the background.

        Raises:
            OSError: If the listener cannot be bound.
        """
        self._httpd = ApiHTTPServer((self.host, self.requested_port), self.registry, self.processor, self.base_path)
        self._thread = threading.Thread(target=self._httpd.serve_forever, name="depsync-api", daemon=True)
        self._thread.start()
        LOG.info("API server listening on http://localhost:%s", self.port)

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._httpd = None
        self._thread = None
        LOG.info("API server closed")

    @property
    def port(self) -> int:
        if self._httpd is None:
            raise RuntimeError("API server is not running")
        return self._httpd.server_address[1]

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"
