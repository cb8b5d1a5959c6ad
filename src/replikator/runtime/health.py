"""Liveness, readiness and metrics endpoints.

Each endpoint set is a small WSGI app served by werkzeug on its own
daemon thread, so the probes keep answering while workers are busy.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from prometheus_client import make_wsgi_app
from werkzeug.serving import BaseWSGIServer, make_server
from werkzeug.wrappers import Request, Response

from replikator.console import highlight
from replikator.runtime.metrics import REGISTRY

logger = logging.getLogger(__name__)


class HealthApp:
    """WSGI app serving /healthz and /readyz.

    Attributes:
        ready_check: Callable returning True once the operator is ready.

    """

    def __init__(self, ready_check: Callable[[], bool]) -> None:
        self.ready_check = ready_check

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Any:
        request = Request(environ)
        match request.path:
            case "/healthz":
                response = Response("ok", mimetype="text/plain")
            case "/readyz":
                if self.ready_check():
                    response = Response("ok", mimetype="text/plain")
                else:
                    response = Response("not ready", status=503, mimetype="text/plain")
            case _:
                response = Response("not found", status=404, mimetype="text/plain")
        return response(environ, start_response)


def create_metrics_app() -> Callable[..., Any]:
    """Return the WSGI app exposing the operator's metrics registry."""
    return make_wsgi_app(REGISTRY)


def parse_bind_address(address: str) -> tuple[str, int] | None:
    """Parse a bind address such as ':8080' or '127.0.0.1:8081'.

    Args:
        address: The address; '0' or an empty string disables serving.

    Returns:
        (host, port), or None when disabled.

    Raises:
        ValueError: If the address has no valid port.

    """
    if address in ("", "0"):
        return None
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid bind address: {address!r}")
    return host.strip("[]") or "0.0.0.0", int(port)


class EndpointServer:
    """Serves a WSGI app from a background thread.

    Attributes:
        name: Name used in log messages.
        host: Bind host.
        port: Bind port.

    """

    def __init__(self, name: str, host: str, port: int, app: Callable[..., Any]) -> None:
        self.name = name
        self.host = host
        self.port = port
        self.app = app
        self._server: BaseWSGIServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self._thread = threading.Thread(target=self._server.serve_forever, name=f"{self.name}-server", daemon=True)
        self._thread.start()
        logger.info("Serving %s on %s", self.name, highlight(f"{self.host}:{self._server.port}"))

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server = None

    def __repr__(self) -> str:
        return f"EndpointServer(name={self.name!r}, host={self.host!r}, port={self.port!r})"


def start_endpoints(
    *, metrics_address: str, probe_address: str, ready_check: Callable[[], bool]
) -> list[EndpointServer]:
    """Start the metrics and probe servers that are not disabled.

    Returns:
        The started servers; stop() each one on shutdown.

    """
    servers: list[EndpointServer] = []
    metrics_bind = parse_bind_address(metrics_address)
    if metrics_bind is not None:
        servers.append(EndpointServer("metrics", *metrics_bind, create_metrics_app()))
    probe_bind = parse_bind_address(probe_address)
    if probe_bind is not None:
        servers.append(EndpointServer("health probes", *probe_bind, HealthApp(ready_check)))
    for server in servers:
        server.start()
    return servers
