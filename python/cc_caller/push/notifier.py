"""
Web Push wake-up channel.

Delivers a titled notification to every stored subscription when a call
rings or a follow-up is spoken, so an operator whose page is asleep still
gets alerted. Delivery is best-effort: failures are logged, the failing
subscription is discarded, and call state is never touched.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

from pywebpush import WebPushException, webpush

if TYPE_CHECKING:
    from ..config import CallerConfig
    from ..core.call_store import Call
    from ..metrics import MetricsCollector

logger = logging.getLogger("cc_caller.push")

NOTIFICATION_TITLE = "cc-caller"
BODY_MAX_CHARS = 160


def _truncate(text: str, limit: int = BODY_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def incoming_call_payload(call: "Call") -> Dict[str, Any]:
    """Push payload announcing a ringing call."""
    return {
        "type": "incoming_call",
        "title": f"{NOTIFICATION_TITLE}: incoming call",
        "body": _truncate(call.message),
        "callId": call.call_id,
        "urgency": call.urgency.value,
        "url": "/",
    }


def tts_message_payload(call_id: str, message: str) -> Dict[str, Any]:
    """Push payload for a follow-up message in a connected call."""
    return {
        "type": "tts_message",
        "title": f"{NOTIFICATION_TITLE}: new message",
        "body": _truncate(message),
        "callId": call_id,
        "url": "/",
    }


def validate_subscription(subscription: Any) -> Dict[str, Any]:
    """
    Check a browser PushSubscription JSON.

    Raises:
        ValueError: if endpoint or keys are missing
    """
    if not isinstance(subscription, dict):
        raise ValueError("subscription must be an object")
    endpoint = subscription.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint.startswith("https://"):
        raise ValueError("subscription endpoint must be an https URL")
    keys = subscription.get("keys")
    if not isinstance(keys, dict):
        raise ValueError("subscription keys are required")
    for key in ("p256dh", "auth"):
        if not isinstance(keys.get(key), str) or not keys[key]:
            raise ValueError(f"subscription key '{key}' is required")
    return {"endpoint": endpoint, "keys": {"p256dh": keys["p256dh"], "auth": keys["auth"]}}


class PushNotifier:
    """
    Web Push sender with VAPID credentials.

    Without all three VAPID settings the notifier is disabled and every
    notify call is skipped.
    """

    def __init__(
        self,
        public_key: Optional[str] = None,
        private_key: Optional[str] = None,
        subject: Optional[str] = None,
        metrics: Optional["MetricsCollector"] = None,
        ttl: int = 60,
    ):
        self._public_key = public_key
        self._private_key = private_key
        self._subject = subject
        self._metrics = metrics
        self.ttl = ttl
        self._subscriptions: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def from_config(
        cls, config: "CallerConfig", metrics: Optional["MetricsCollector"] = None
    ) -> "PushNotifier":
        return cls(
            public_key=config.vapid_public_key,
            private_key=config.vapid_private_key,
            subject=config.vapid_subject,
            metrics=metrics,
        )

    @property
    def configured(self) -> bool:
        return bool(self._public_key and self._private_key and self._subject)

    @property
    def public_key(self) -> Optional[str]:
        return self._public_key

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def can_deliver(self) -> bool:
        """True when a notify call would attempt at least one delivery."""
        return self.configured and bool(self._subscriptions)

    def subscribe(self, subscription: Any) -> None:
        """Store a subscription, replacing any with the same endpoint."""
        clean = validate_subscription(subscription)
        self._subscriptions[clean["endpoint"]] = clean
        logger.info(f"Push subscription stored ({len(self._subscriptions)} total)")

    def unsubscribe(self, endpoint: str) -> bool:
        return self._subscriptions.pop(endpoint, None) is not None

    async def notify(self, payload: Dict[str, Any]) -> int:
        """
        Deliver a payload to every subscription.

        Returns:
            Number of successful deliveries
        """
        if not self.can_deliver:
            return 0

        data = json.dumps(payload, ensure_ascii=False)
        loop = asyncio.get_running_loop()
        delivered = 0

        for endpoint, subscription in list(self._subscriptions.items()):
            ok = await loop.run_in_executor(None, self._deliver, subscription, data)
            if ok:
                delivered += 1
            else:
                self._subscriptions.pop(endpoint, None)
                logger.warning(f"Discarded push subscription after failed delivery: {endpoint[:40]}")
            if self._metrics:
                self._metrics.push_delivery(ok)

        return delivered

    def _deliver(self, subscription: Dict[str, Any], data: str) -> bool:
        """Blocking send of one notification (runs in the default executor)."""
        try:
            webpush(
                subscription_info=subscription,
                data=data,
                vapid_private_key=self._private_key,
                # webpush adds aud/exp to the claims dict, so pass a fresh one
                vapid_claims={"sub": self._subject},
                ttl=self.ttl,
            )
            return True
        except WebPushException as e:
            logger.error(f"Push delivery rejected: {e}")
        except Exception as e:
            logger.error(f"Push delivery failed: {e}")
        return False
