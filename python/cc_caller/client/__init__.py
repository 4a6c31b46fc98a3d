"""Agent-side caller client."""
from .caller import CallerClient, get_caller_client, reset_caller_client

__all__ = ["CallerClient", "get_caller_client", "reset_caller_client"]
