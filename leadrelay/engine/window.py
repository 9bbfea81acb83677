"""
Conversation Window & Retry Engine

Decides whether a contact may be messaged now, whether a session opener is
needed first, and what to do once a lead's retry budget is spent. Every
decision here is a pure read over the objects passed in; the only write is
record_delivery_outcome, which persists a send result on the lead.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from leadrelay.config import config
from leadrelay.engine import store
from leadrelay.models import (
    Contact, Lead, LeadEvent, EventTag, SendResult,
    KEY_DEAD_LEAD, KEY_FAILURE_NOTIFIED, KEY_SESSION_STARTED,
    STATUS_FAILED, STATUS_SENT,
)

logger = logging.getLogger(__name__)

SESSION_WINDOW_HOURS = 24


class RetryAction(str, Enum):
    NONE = 'none'
    NOTIFY_FAILURE = 'notify_failure'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hours_since(moment: datetime, now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    return (now - moment).total_seconds() / 3600


def has_replied(contact: Contact) -> bool:
    """True if the contact's last inbound message is not older than the last outbound one."""
    sent = contact.last_message_sent_at
    received = contact.last_message_received_at
    if received is None:
        return False
    if sent is None:
        return True
    return received >= sent


def is_eligible_for_reminder(
    contact: Contact,
    remainder_hours: float,
    now: Optional[datetime] = None,
    window_hours: Optional[float] = None,
) -> bool:
    """
    A reminder is due when the contact has been messaged, has not replied
    since, and the last send lies within remainder_hours ± window_hours
    (bounds inclusive).
    """
    if contact.last_message_sent_at is None:
        return False
    if has_replied(contact):
        logger.debug(f"is_eligible_for_reminder: {contact.phone} replied after last send")
        return False

    half_width = config.REMINDER_WINDOW_HOURS if window_hours is None else window_hours
    elapsed = hours_since(contact.last_message_sent_at, now)
    return remainder_hours - half_width <= elapsed <= remainder_hours + half_width


def is_session_window_open(contact: Contact, now: Optional[datetime] = None) -> bool:
    """Free-form messages are only accepted within 24h of the contact's last inbound message."""
    if contact.last_message_received_at is None:
        return False
    return hours_since(contact.last_message_received_at, now) < SESSION_WINDOW_HOURS


def already_processed(lead: Lead, event_key: str) -> bool:
    return any(event.key == event_key for event in lead.events)


def handle_retry_exhaustion(lead: Lead) -> RetryAction:
    """NOTIFY_FAILURE exactly when the budget is spent and nobody has been told yet."""
    if (
        lead.delivery_status == STATUS_FAILED
        and lead.retry_count <= 0
        and not already_processed(lead, KEY_FAILURE_NOTIFIED)
    ):
        return RetryAction.NOTIFY_FAILURE
    return RetryAction.NONE


def is_dead_lead(
    contact: Contact,
    lead: Lead,
    max_remainder_hours: float,
    now: Optional[datetime] = None,
) -> bool:
    """
    A lead is dead once the last send is older than the longest reminder
    delay, the contact never answered, and nobody has been told yet, either
    as a dead lead or through retry exhaustion.
    """
    if contact.last_message_sent_at is None or has_replied(contact):
        return False
    if already_processed(lead, KEY_DEAD_LEAD) or already_processed(lead, KEY_FAILURE_NOTIFIED):
        return False
    return hours_since(contact.last_message_sent_at, now) > max_remainder_hours


def record_delivery_outcome(lead: Lead, outcome: SendResult) -> None:
    """
    Persist the result of a session-opener send and mirror it on `lead`.

    Success marks the lead sent and appends a session_started event.
    Failure marks it failed and spends one retry; failures are never logged
    as events so the next scheduled pass can try again.
    """
    if outcome.success:
        store.record_delivery_success(lead.id, outcome.message_id)
        lead.delivery_status = STATUS_SENT
        lead.template_sent = True
        lead.last_message_id = outcome.message_id

        event = LeadEvent(
            tag=EventTag.SESSION_STARTED,
            key=KEY_SESSION_STARTED,
            payload={'messageId': outcome.message_id, 'sentAt': utcnow().isoformat()},
        )
        if store.append_event_if_absent(lead.id, event):
            lead.events.append(event)
        return

    retry_count = store.record_delivery_failure(lead.id, config.RETRY_COUNT_FLOOR)
    lead.delivery_status = STATUS_FAILED
    if retry_count is not None:
        lead.retry_count = retry_count
    else:
        lead.retry_count = max(lead.retry_count - 1, config.RETRY_COUNT_FLOOR)


def validate_reminder_cadence(interval_minutes: int, jitter_minutes: int, window_hours: float) -> None:
    """
    Reminders are only eligible for 2 × window_hours around each delay, so
    the slowest scheduled run must come around more often than that.
    Raises ValueError otherwise.
    """
    if window_hours <= 0:
        raise ValueError(f"REMINDER_WINDOW_HOURS must be positive, got {window_hours}")
    if interval_minutes <= 0 or jitter_minutes < 0:
        raise ValueError("Reminder interval must be positive and jitter non-negative")

    slowest = interval_minutes + jitter_minutes
    window_minutes = 2 * window_hours * 60
    if slowest >= window_minutes:
        raise ValueError(
            f"Reminder runs up to every {slowest} minutes but the eligibility window is only "
            f"{window_minutes:g} minutes wide; contacts would be skipped. Lower "
            f"REMINDER_INTERVAL_MINUTES/SCHEDULER_JITTER_MINUTES or raise REMINDER_WINDOW_HOURS."
        )
