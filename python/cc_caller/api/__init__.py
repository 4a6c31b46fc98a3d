"""HTTP and WebSocket surface."""
from .server import CallerServer

__all__ = ["CallerServer"]
