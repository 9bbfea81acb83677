"""
Scheduled Reminder Engine

Each run evaluates every contact against every enabled Reminder template
and sends at most one reminder per (contact, template) pair, ever. The
lead's event log is the ledger: a reminder_sent event keyed by template id
is appended right after a successful send and checked right before the next.
Afterwards, contacts silent for longer than the longest reminder delay are
reported once as dead leads.
"""

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from leadrelay.config import config
from leadrelay.logging_config import log_call
from leadrelay.engine import store, channel, notifier, window
from leadrelay.engine.templates import render_template, html_to_text
from leadrelay.models import (
    Contact, Lead, LeadEvent, EventTag, Message, Template,
    DIRECTION_OUTBOUND, KEY_DEAD_LEAD, TEMPLATE_REMINDER,
)
from leadrelay.bus.events import bus, EVENT_REMINDER_SENT, EVENT_DEAD_LEAD_MARKED

logger = logging.getLogger(__name__)

OUTCOMES = ('sent', 'failed', 'opener_failed', 'already_sent', 'not_eligible', 'no_lead', 'error')


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def active_templates(templates: List[Template]) -> List[Template]:
    """Reminder templates with a non-zero delay; zero means disabled."""
    return [
        t for t in templates
        if t.template_type == TEMPLATE_REMINDER and (t.remainder_hours or 0) > 0
    ]


def render_reminder(template: Template, contact: Contact) -> str:
    name = contact.name or config.REMINDER_NAME_FALLBACK
    rendered = render_template(template.content, {'first_name': name, 'name': name})
    return html_to_text(rendered)


def send_reminder(template: Template, contact: Contact, lead: Lead, now: Optional[datetime] = None) -> str:
    """
    Evaluate and, if due, deliver one template to one contact.
    Returns one of OUTCOMES (never 'no_lead' or 'error').
    """
    template_key = str(template.id)
    if window.already_processed(lead, template_key):
        return 'already_sent'

    now = now or window.utcnow()
    if not window.is_eligible_for_reminder(contact, template.remainder_hours, now=now):
        return 'not_eligible'

    if not window.is_session_window_open(contact, now=now):
        logger.info(f"Session window closed for {contact.phone}, sending opener first")
        opener = channel.send_session_opener(contact.phone, contact.name)
        if not opener.success:
            logger.warning(f"Opener to {contact.phone} failed, skipping '{template.title}': {opener.error}")
            return 'opener_failed'
        # Give the channel a moment to register the new session
        time.sleep(config.SESSION_OPENER_DELAY_SECONDS)

    body = render_reminder(template, contact)
    result = channel.send_text(contact.phone, body)
    if not result.success:
        logger.warning(f"Reminder '{template.title}' to {contact.phone} failed: {result.error}")
        return 'failed'

    elapsed = round(window.hours_since(contact.last_message_sent_at, now), 2)
    sent_at = window.utcnow().isoformat()

    store.create_message(Message(
        message_id=result.message_id or uuid.uuid4().hex,
        conversation_id=f"reminder-{contact.id}-{template.id}",
        contact_id=contact.id,
        direction=DIRECTION_OUTBOUND,
        from_address=config.WHATSAPP_PHONE_NUMBER_ID,
        to_address=contact.phone,
        body=body,
        timestamp=now,
        metadata={
            'type': TEMPLATE_REMINDER,
            'templateId': template_key,
            'templateTitle': template.title,
            'remainderHours': template.remainder_hours,
            'elapsedHours': elapsed,
            'sentAt': sent_at,
            'contactId': contact.id,
        },
    ))

    event = LeadEvent(
        tag=EventTag.REMINDER_SENT,
        key=template_key,
        payload={
            'templateId': template_key,
            'templateTitle': template.title,
            'remainderHours': template.remainder_hours,
            'sentAt': sent_at,
        },
    )
    if store.append_event_if_absent(lead.id, event):
        lead.events.append(event)
    else:
        logger.warning(f"Reminder '{template.title}' for lead {lead.id} was recorded by a concurrent run")

    logger.info(f"Reminder '{template.title}' sent to {contact.phone} after {elapsed}h")
    bus.emit(EVENT_REMINDER_SENT, {
        'lead_id': lead.id, 'contact_id': contact.id,
        'template_id': template_key, 'message_id': result.message_id,
    })
    return 'sent'


def check_dead_lead(contact: Contact, max_remainder_hours: float, now: Optional[datetime] = None) -> bool:
    """
    Send the one-time unreachable notification for a contact that went
    silent for longer than every reminder delay.
    Returns: True if the lead was marked dead by this call
    """
    lead = store.get_lead_by_phone(contact.phone)
    if lead is None or not window.is_dead_lead(contact, lead, max_remainder_hours, now=now):
        return False

    result = notifier.notify_unreachable(lead.email, contact.phone, contact.name or lead.display_name)
    if not result.success:
        logger.error(f"Dead-lead notification for {contact.phone} failed: {result.error}")
        return False

    event = LeadEvent(
        tag=EventTag.DEAD_LEAD_MARKED,
        key=KEY_DEAD_LEAD,
        payload={
            'email': lead.email,
            'maxRemainderHours': max_remainder_hours,
            'markedAt': window.utcnow().isoformat(),
        },
    )
    if not store.append_event_if_absent(lead.id, event):
        logger.warning(f"Lead {lead.id} was already marked dead by a concurrent run")
        return False

    lead.events.append(event)
    logger.info(f"Dead lead {lead.id} ({lead.email}) notified")
    bus.emit(EVENT_DEAD_LEAD_MARKED, {'lead_id': lead.id, 'contact_id': contact.id})
    return True


@log_call
def run_reminders(cancel_event: Optional[threading.Event] = None, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    One reminder pass over all (template, contact) pairs, then dead-lead
    detection. Errors on a single pair are logged and counted, never fatal.
    Returns: count per outcome plus 'dead_leads'
    """
    summary = {outcome: 0 for outcome in OUTCOMES}
    summary['dead_leads'] = 0

    templates = active_templates(store.list_reminder_templates())
    if not templates:
        logger.info("run_reminders: no active reminder templates")
        return summary

    contacts = store.list_contacts()
    logger.info(f"run_reminders: {len(templates)} templates × {len(contacts)} contacts")

    for template in templates:
        for contact in contacts:
            if _cancelled(cancel_event):
                logger.info("run_reminders: cancelled, stopping before next pair")
                return summary
            try:
                # Fresh read so events appended earlier in this run are seen
                lead = store.get_lead_by_phone(contact.phone)
                outcome = 'no_lead' if lead is None else send_reminder(template, contact, lead, now=now)
            except Exception as e:
                outcome = 'error'
                logger.error(f"Reminder '{template.title}' for {contact.phone}: {type(e).__name__}: {e}")
            summary[outcome] += 1

    max_remainder = max(t.remainder_hours for t in templates)
    for contact in contacts:
        if _cancelled(cancel_event):
            logger.info("run_reminders: cancelled during dead-lead detection")
            break
        try:
            if check_dead_lead(contact, max_remainder, now=now):
                summary['dead_leads'] += 1
        except Exception as e:
            summary['error'] += 1
            logger.error(f"Dead-lead check for {contact.phone}: {type(e).__name__}: {e}")

    logger.info(f"run_reminders: {summary}")
    return summary
