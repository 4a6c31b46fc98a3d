"""Web Push module."""
from .notifier import (
    PushNotifier,
    incoming_call_payload,
    tts_message_payload,
    validate_subscription,
)

__all__ = [
    "PushNotifier",
    "incoming_call_payload",
    "tts_message_payload",
    "validate_subscription",
]
