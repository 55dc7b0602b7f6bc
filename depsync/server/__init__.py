"""Control-plane API server."""

from depsync.server.api import ControlPlaneServer

__all__ = ["ControlPlaneServer"]
