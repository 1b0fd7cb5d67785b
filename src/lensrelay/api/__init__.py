"""API module: FastAPI relay server."""

from .server import create_app, set_components, start_server

__all__ = ["create_app", "set_components", "start_server"]
