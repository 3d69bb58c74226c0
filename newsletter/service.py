"""
Subscription workflows.

Each request runs one workflow to completion, step by step:

    subscribe:   insert -> (conflict | store failure | welcome email)
    unsubscribe: delete -> (removed | not found)
    list:        read all emails

Persistence is the source of truth. Once the row is committed the subscriber
is subscribed, whether or not the welcome email goes out.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from newsletter.errors import ConflictError, MailError, NotFoundError, StoreUnavailable
from newsletter.metrics import record_subscription_event
from newsletter.notifier import Notifier, OutboundMessage
from newsletter.storage import SubscriberStore

if TYPE_CHECKING:
    from newsletter.models import Subscriber

logger = logging.getLogger(__name__)


class SubscribeState(str, Enum):
    NOTIFIED = "subscribed"
    NOTIFY_FAILED = "notify_failed"


@dataclass
class SubscribeResult:
    subscriber: "Subscriber"
    state: SubscribeState

    @property
    def notified(self) -> bool:
        return self.state is SubscribeState.NOTIFIED


def subscribe(
    store: SubscriberStore,
    notifier: Notifier,
    email: str,
    name: Optional[str] = None,
) -> SubscribeResult:
    """
    Persist a subscriber, then send the welcome email.

    Raises:
        ConflictError: email already subscribed, nothing written
        StoreUnavailable: insert failed, nothing written
    """
    try:
        subscriber = store.insert(email)
    except ConflictError:
        record_subscription_event("subscribe", "duplicate")
        raise
    except StoreUnavailable:
        record_subscription_event("subscribe", "store_error")
        raise

    try:
        notifier.send(notifier.welcome_message(email, name))
    except MailError as e:
        # The row is committed and stays
        logger.warning(f"Subscribed {email} but welcome email failed: {e}")
        record_subscription_event("subscribe", SubscribeState.NOTIFY_FAILED.value)
        return SubscribeResult(subscriber=subscriber, state=SubscribeState.NOTIFY_FAILED)

    record_subscription_event("subscribe", SubscribeState.NOTIFIED.value)
    return SubscribeResult(subscriber=subscriber, state=SubscribeState.NOTIFIED)


def unsubscribe(store: SubscriberStore, email: str) -> None:
    """
    Raises:
        NotFoundError: no subscriber with this email
        StoreUnavailable: delete failed
    """
    try:
        removed = store.delete_by_email(email)
    except StoreUnavailable:
        record_subscription_event("unsubscribe", "store_error")
        raise

    if not removed:
        record_subscription_event("unsubscribe", "not_found")
        raise NotFoundError(f"No subscriber with email {email}")

    record_subscription_event("unsubscribe", "removed")


def list_subscribers(store: SubscriberStore) -> List[str]:
    return store.list_emails()


def send_email(notifier: Notifier, to: str, subject: str, body: str) -> None:
    try:
        notifier.send(OutboundMessage(to=to, subject=subject, body=body))
    except MailError:
        record_subscription_event("send_email", "mail_error")
        raise
    record_subscription_event("send_email", "sent")
