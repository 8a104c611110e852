from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Protocol
from urllib import request as urlrequest

from ridefleet.core.config import Settings
from ridefleet.core.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class Recipient:
    identifier: str
    email: str | None = None
    phone_number: str | None = None

    def as_dict(self) -> dict:
        out = {"identifier": self.identifier}
        if self.email:
            out["email"] = self.email
        if self.phone_number:
            out["phoneNumber"] = self.phone_number
        return out


class NotificationDispatcher(Protocol):
    def send(self, template_id: str, recipients: list[Recipient], variables: dict) -> None:
        ...


class LogNotificationDispatcher:
    """Used when no delivery webhook is configured."""

    def send(self, template_id: str, recipients: list[Recipient], variables: dict) -> None:
        log.info("notification_logged", template_id=template_id, recipients=len(recipients))


class WebhookNotificationDispatcher:
    def __init__(self, url: str, timeout_seconds: int = 5):
        self.url = url
        self.timeout_seconds = timeout_seconds

    def send(self, template_id: str, recipients: list[Recipient], variables: dict) -> None:
        body = json.dumps(
            {
                "template": template_id,
                "recipients": [r.as_dict() for r in recipients],
                "variables": variables,
            }
        ).encode("utf-8")
        req = urlrequest.Request(
            url=self.url,
            method="POST",
            data=body,
            headers={"Content-Type": "application/json"},
        )
        with urlrequest.urlopen(req, timeout=self.timeout_seconds) as resp:
            resp.read()


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.NOTIFY_WEBHOOK_URL:
        return WebhookNotificationDispatcher(settings.NOTIFY_WEBHOOK_URL, settings.NOTIFY_TIMEOUT_SECONDS)
    return LogNotificationDispatcher()


def dispatch_safely(
    dispatcher: NotificationDispatcher, template_id: str, recipients: list[Recipient], variables: dict
) -> bool:
    """Fire and forget. Delivery failures are logged, never raised."""
    try:
        dispatcher.send(template_id, recipients, variables)
        return True
    except Exception:
        log.warning("notification_failed", template_id=template_id, exc_info=True)
        return False
