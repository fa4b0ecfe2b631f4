"""
Domain events emitted by the inventory engine.

Events are plain data. Publishing is deferred with transaction.on_commit so
work that is rolled back never emits anything. Delivery goes through the
in-process LocalEventBus; transports (webhook, websocket bridge, ...) are
subscribers.
"""
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Callable, List, Optional

import requests
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction
from django.utils import timezone

logger = logging.getLogger(__name__)


class EventName:
    RESERVATION_CREATED = "ReservationCreated"
    RESERVATION_COMPLETED = "ReservationCompleted"
    RESERVATION_RELEASED = "ReservationReleased"
    RESERVATION_EXPIRED = "ReservationExpired"
    BATCH_DISPOSED = "BatchDisposed"
    STOCK_ALERT_RAISED = "StockAlertRaised"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=timezone.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), cls=DjangoJSONEncoder)


Subscriber = Callable[[DomainEvent], None]


class LocalEventBus:
    _lock = threading.Lock()
    _subscribers: List[Subscriber] = []

    @classmethod
    def subscribe(cls, subscriber: Subscriber) -> None:
        with cls._lock:
            if subscriber not in cls._subscribers:
                cls._subscribers.append(subscriber)

    @classmethod
    def unsubscribe(cls, subscriber: Subscriber) -> None:
        with cls._lock:
            if subscriber in cls._subscribers:
                cls._subscribers.remove(subscriber)

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._subscribers = []

    @classmethod
    def subscribers(cls) -> List[Subscriber]:
        with cls._lock:
            return list(cls._subscribers)

    @classmethod
    def dispatch(cls, event: DomainEvent) -> int:
        """Deliver immediately. Returns the number of subscribers that accepted it."""
        delivered = 0
        for subscriber in cls.subscribers():
            try:
                subscriber(event)
                delivered += 1
            except Exception:
                logger.exception(f"Event subscriber {subscriber!r} failed on {event.name}")
        return delivered


def publish(name: str, payload: Dict[str, Any], occurred_at: datetime = None) -> DomainEvent:
    """Queue an event for delivery once the current transaction commits."""
    event = DomainEvent(name=name, payload=payload, occurred_at=occurred_at or timezone.now())
    transaction.on_commit(lambda: LocalEventBus.dispatch(event))
    logger.debug(f"Event queued: {name}")
    return event


@dataclass
class WebhookConfig:
    url: str
    timeout: int = 5
    max_retries: int = 3


class WebhookEventSubscriber:
    """POSTs every event as JSON to an external real-time transport."""

    def __init__(self, config: WebhookConfig):
        self.config = config

    def __call__(self, event: DomainEvent) -> None:
        self.send(event)

    def send(self, event: DomainEvent) -> tuple[bool, Optional[str]]:
        error_msg = None

        for attempt in range(1, self.config.max_retries + 1):
            try:
                response = requests.post(
                    self.config.url,
                    data=event.to_json(),
                    headers={"Content-Type": "application/json"},
                    timeout=self.config.timeout
                )

                if 200 <= response.status_code < 300:
                    logger.info(f"Event {event.name} delivered to webhook")
                    return True, None

                error_msg = f"Webhook error: {response.status_code} - {response.text}"
                logger.warning(f"Attempt {attempt}/{self.config.max_retries}: {error_msg}")

            except requests.exceptions.ConnectionError:
                error_msg = "Webhook unreachable"
                logger.warning(f"Attempt {attempt}/{self.config.max_retries}: {error_msg}")

            except requests.exceptions.Timeout:
                error_msg = "Request timed out"
                logger.warning(f"Attempt {attempt}/{self.config.max_retries}: {error_msg}")

            except requests.exceptions.RequestException as e:
                error_msg = f"Request failed: {str(e)}"
                logger.warning(f"Attempt {attempt}/{self.config.max_retries}: {error_msg}")

        logger.error(f"Failed to deliver {event.name} after {self.config.max_retries} attempts")
        return False, error_msg


def get_webhook_subscriber() -> Optional[WebhookEventSubscriber]:
    url = getattr(settings, "INVENTORY_EVENT_WEBHOOK_URL", "")
    if not url:
        return None
    return WebhookEventSubscriber(WebhookConfig(
        url=url,
        timeout=getattr(settings, "INVENTORY_EVENT_WEBHOOK_TIMEOUT", 5),
    ))
