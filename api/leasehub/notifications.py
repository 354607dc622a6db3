"""Fan-out of workflow events to the realtime broadcast channel.

Delivery is fire-and-forget: a failing channel is logged and never
propagates into the transition that triggered it. Inside a request the
publish is queued as a background task, so it runs after the response is sent.
"""

import logging
from typing import Optional, Protocol
import redis
from fastapi import BackgroundTasks, Depends
from .config import REDIS_URL, NOTIFY_CHANNEL_PREFIX
from .models import Contract
from .utils import canonical_json

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def publish(self, topic: str, payload: dict) -> None: ...


class NullNotifier:
    def publish(self, topic: str, payload: dict) -> None:
        return None


class RedisNotifier:
    """Publishes JSON payloads on ``<prefix>:<topic>`` for the socket gateway."""

    def __init__(self, url: str = REDIS_URL, prefix: str = NOTIFY_CHANNEL_PREFIX, timeout: float = 2.0):
        self.url = url
        self.prefix = prefix
        self.timeout = timeout
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self.url,
                socket_timeout=self.timeout,
                socket_connect_timeout=self.timeout,
            )
        return self._client

    def publish(self, topic: str, payload: dict) -> None:
        self.client.publish(f"{self.prefix}:{topic}", canonical_json(payload))


def tenant_topic(account_id: int) -> str:
    return f"user:{account_id}"


def landlord_topic(account_id: int) -> str:
    return f"landlord:{account_id}"


class NotificationEmitter:
    def __init__(self, notifier: Notifier, background: Optional[BackgroundTasks] = None):
        self.notifier = notifier
        self.background = background

    def emit(self, topic: str, event: str, contract: Contract, **data) -> bool:
        payload = {"event": event, "contractId": contract.id, "status": contract.status, **data}
        if self.background is not None:
            self.background.add_task(self.deliver, topic, payload)
            return True
        return self.deliver(topic, payload)

    def deliver(self, topic: str, payload: dict) -> bool:
        event = payload.get("event")
        try:
            self.notifier.publish(topic, payload)
        except Exception:
            logger.warning("Dropped notification %s for %s", event, topic, exc_info=True)
            return False
        return True

    def sent_to_tenant(self, contract: Contract) -> bool:
        return self.emit(tenant_topic(contract.tenant_id), "contract.sent_to_tenant", contract)

    def signed_by_tenant(self, contract: Contract) -> bool:
        return self.emit(landlord_topic(contract.landlord_id), "contract.signed_by_tenant", contract)

    def identity_checked(self, contract: Contract) -> bool:
        verification = contract.identity_verification or {}
        return self.emit(
            landlord_topic(contract.landlord_id),
            "contract.identity_checked",
            contract,
            identityStatus=verification.get("status"),
        )

    def renewal_requested(self, contract: Contract) -> bool:
        renewal = contract.renewal_request or {}
        return self.emit(
            landlord_topic(contract.landlord_id),
            "contract.renewal_requested",
            contract,
            months=renewal.get("months"),
            requestedEndDate=renewal.get("requestedEndDate"),
        )

    def renewal_answered(self, contract: Contract) -> bool:
        renewal = contract.renewal_request or {}
        return self.emit(
            tenant_topic(contract.tenant_id),
            "contract.renewal_answered",
            contract,
            renewalStatus=renewal.get("status"),
        )

    def expiry_reminder(self, contract: Contract, end_date: str) -> bool:
        return self.emit(
            tenant_topic(contract.tenant_id),
            "contract.expiry_reminder",
            contract,
            endDate=end_date,
        )


_default_notifier: Notifier = RedisNotifier()


def get_notifier() -> Notifier:
    return _default_notifier


def get_emitter(
    background_tasks: BackgroundTasks,
    notifier: Notifier = Depends(get_notifier),
) -> NotificationEmitter:
    return NotificationEmitter(notifier, background_tasks)
