"""Core call coordination components."""
from .call_store import Call, CallStateError, CallStore
from .coordinator import CallCoordinator
from .registry import Connection, Role, SessionRegistry
from .task_registry import TaskRegistry

__all__ = [
    "Call",
    "CallStateError",
    "CallStore",
    "CallCoordinator",
    "Connection",
    "Role",
    "SessionRegistry",
    "TaskRegistry",
]
