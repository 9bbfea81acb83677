"""
Inbound channel webhooks: incoming messages and delivery status updates.
An incoming message is what opens a contact's session window and stops
its reminders, so it is recorded on the contact as well as stored.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from leadrelay.config import config
from leadrelay.engine import store, window
from leadrelay.models import Message, DIRECTION_INBOUND, MESSAGE_STATUSES
from leadrelay.bus.events import bus, EVENT_MESSAGE_RECEIVED, EVENT_MESSAGE_STATUS_UPDATED

logger = logging.getLogger(__name__)

WEBHOOK_OBJECT = 'whatsapp_business_account'


def verify_webhook(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
    """Subscription handshake: echo the challenge only for our verify token."""
    if mode == 'subscribe' and token and token == config.WHATSAPP_VERIFY_TOKEN:
        logger.info("Webhook verified")
        return challenge
    logger.warning("Webhook verification failed")
    return None


def _message_body(message: Dict[str, Any]) -> str:
    kind = message.get('type', 'unknown')
    if kind == 'text':
        return (message.get('text') or {}).get('body') or '[text]'
    media = message.get(kind)
    caption = media.get('caption') if isinstance(media, dict) else None
    return caption or f"[{kind}]"


def _message_time(message: Dict[str, Any]) -> datetime:
    try:
        return datetime.fromtimestamp(int(message['timestamp']), tz=timezone.utc)
    except (KeyError, TypeError, ValueError):
        return window.utcnow()


def handle_incoming_message(message: Dict[str, Any], to_address: str, profile_name: Optional[str] = None) -> bool:
    """
    Store one inbound message and mark the sender's contact as having replied.
    A redelivered message id changes nothing.
    """
    contact = store.record_inbound_message(Message(
        message_id=message['id'],
        direction=DIRECTION_INBOUND,
        from_address=message['from'],
        to_address=to_address,
        body=_message_body(message),
        timestamp=_message_time(message),
        metadata=message,
    ), name=profile_name)
    if contact is None:
        return False
    bus.emit(EVENT_MESSAGE_RECEIVED, {'contact_id': contact.id, 'message_id': message['id']})
    return True


def handle_status_update(status: Dict[str, Any]) -> bool:
    """Apply a delivery status. Unknown message ids and statuses are ignored."""
    value = status.get('status')
    if value not in MESSAGE_STATUSES:
        logger.debug(f"Ignoring status {value!r} for {status.get('id')}")
        return False

    errors = status.get('errors') or []
    updated = store.update_message_status(status.get('id'), value, errors[0] if errors else None)
    if updated:
        bus.emit(EVENT_MESSAGE_STATUS_UPDATED, {'message_id': status.get('id'), 'status': value})
    return updated


def handle_webhook(payload: Dict[str, Any]) -> Dict[str, int]:
    """
    Process a webhook body. Each message or status is handled on its own;
    one bad item is logged and does not stop the rest.
    Returns: counts of messages stored, statuses applied and errors
    """
    summary = {'messages': 0, 'statuses': 0, 'errors': 0}
    if payload.get('object') != WEBHOOK_OBJECT:
        logger.info(f"Ignoring webhook for object {payload.get('object')!r}")
        return summary

    for entry in payload.get('entry') or []:
        for change in entry.get('changes') or []:
            value = change.get('value') or {}
            to_address = (value.get('metadata') or {}).get('phone_number_id', config.WHATSAPP_PHONE_NUMBER_ID)
            profiles = {c.get('wa_id'): (c.get('profile') or {}).get('name') for c in value.get('contacts') or []}

            for message in value.get('messages') or []:
                try:
                    if handle_incoming_message(message, to_address, profiles.get(message.get('from'))):
                        summary['messages'] += 1
                except Exception as e:
                    summary['errors'] += 1
                    logger.error(f"Inbound message {message.get('id')}: {type(e).__name__}: {e}")

            for status in value.get('statuses') or []:
                try:
                    if handle_status_update(status):
                        summary['statuses'] += 1
                except Exception as e:
                    summary['errors'] += 1
                    logger.error(f"Status update {status.get('id')}: {type(e).__name__}: {e}")

    return summary
