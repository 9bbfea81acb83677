"""
Ingestion - turns form submissions into leads and opens a WhatsApp session
with each one, exactly once per submission.

Flow per poll:
  feed cursor -> one page of submissions -> validate -> upsert Lead
  -> process_lead (opener send / retry / one-time failure notification)
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Set, Tuple

from leadrelay.config import config
from leadrelay.logging_config import log_call
from leadrelay.engine import store, lead_source, channel, notifier, window
from leadrelay.engine.phone import normalize_phone, is_valid_phone, region_from_phone
from leadrelay.models import (
    Lead, LeadEvent, EventTag, Message, Submission,
    DIRECTION_OUTBOUND, KEY_FAILURE_NOTIFIED, SOURCE_HUBSPOT, STATUS_FAILED, STATUS_SENT,
)
from leadrelay.bus.events import (
    bus, EVENT_LEAD_INGESTED, EVENT_SESSION_OPENED, EVENT_DELIVERY_FAILED, EVENT_LEAD_UNREACHABLE,
)

logger = logging.getLogger(__name__)


class InvalidSubmission(ValueError):
    """A submission is missing identity fields or carries an unusable phone number."""


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def extract_identity(submission: Submission) -> Dict[str, Any]:
    """
    Pull the lead's identity out of a submission.
    Raises InvalidSubmission if email or phone is missing or the phone is invalid.
    """
    values = submission.values
    email = (values.get('email') or '').strip().lower()
    raw_phone = (values.get('phone') or '').strip()

    if not email or not raw_phone:
        raise InvalidSubmission("missing email or phone")

    phone = normalize_phone(raw_phone)
    if not is_valid_phone(phone):
        raise InvalidSubmission(f"invalid phone number {raw_phone!r}")

    return {
        'email': email,
        'phone': phone,
        'first_name': (values.get('firstname') or '').strip() or None,
        'last_name': (values.get('lastname') or '').strip() or None,
        'company': (values.get('company') or '').strip() or None,
        'region': region_from_phone(phone),
    }


def process_submission(submission: Submission, feed_id: str) -> Tuple[Lead, bool]:
    """
    Upsert the submission's lead and hand it to process_lead.
    Returns: (lead, created)
    """
    identity = extract_identity(submission)
    lead, created = store.upsert_lead(Lead(
        identifier=uuid.uuid4().hex,
        form_id=feed_id,
        source=SOURCE_HUBSPOT,
        retry_count=config.INITIAL_RETRY_COUNT,
        **identity,
    ))

    event = LeadEvent(
        tag=EventTag.SUBMISSION_RECEIVED,
        key=f"submission:{feed_id}:{submission.submitted_at}",
        payload={'submittedAt': submission.submitted_at, 'pageUrl': submission.page_url, 'formId': feed_id},
    )
    if store.append_event_if_absent(lead.id, event):
        lead.events.append(event)

    if created:
        bus.emit(EVENT_LEAD_INGESTED, {'lead_id': lead.id, 'email': lead.email, 'feed_id': feed_id})

    process_lead(lead)
    return lead, created


@log_call
def process_lead(lead: Lead, now: Optional[datetime] = None) -> str:
    """
    Drive one lead through its delivery state machine.

      sent                      -> nothing to do
      failed, budget spent      -> one failure notification, then nothing
      pending / failed w/ budget -> stamp contact, send opener, record outcome

    Returns: 'already_sent', 'notified', 'exhausted', 'sent' or 'failed'
    """
    if lead.delivery_status == STATUS_SENT:
        logger.debug(f"process_lead: lead {lead.id} already sent")
        return 'already_sent'

    if lead.delivery_status == STATUS_FAILED and lead.retry_count <= 0:
        if window.handle_retry_exhaustion(lead) != window.RetryAction.NOTIFY_FAILURE:
            return 'exhausted'
        return _notify_unreachable(lead)

    now = now or window.utcnow()
    contact = store.upsert_contact_sent(
        lead.phone, now, name=lead.display_name, lead_id=lead.id, region=lead.region,
    )

    result = channel.send_session_opener(lead.phone, lead.display_name)
    window.record_delivery_outcome(lead, result)

    if not result.success:
        logger.warning(f"Opener to lead {lead.id} ({lead.phone}) failed, retries left: {lead.retry_count}")
        bus.emit(EVENT_DELIVERY_FAILED, {'lead_id': lead.id, 'retry_count': lead.retry_count, 'error': result.error})
        return 'failed'

    store.create_message(Message(
        message_id=result.message_id or uuid.uuid4().hex,
        conversation_id=f"session-{lead.id}",
        contact_id=contact.id,
        direction=DIRECTION_OUTBOUND,
        from_address=config.WHATSAPP_PHONE_NUMBER_ID,
        to_address=lead.phone,
        body=f"[template:{config.OPENER_TEMPLATE_NAME}]",
        timestamp=now,
        metadata={'type': 'Opener', 'templateName': config.OPENER_TEMPLATE_NAME, 'leadId': lead.id},
    ))
    logger.info(f"Session opened with lead {lead.id} ({lead.email})")
    bus.emit(EVENT_SESSION_OPENED, {'lead_id': lead.id, 'message_id': result.message_id})
    return 'sent'


def _notify_unreachable(lead: Lead) -> str:
    result = notifier.notify_unreachable(lead.email, lead.phone, lead.display_name)
    if not result.success:
        logger.error(f"Could not notify unreachable lead {lead.id}: {result.error}")
        return 'exhausted'

    event = LeadEvent(
        tag=EventTag.FAILURE_NOTIFIED,
        key=KEY_FAILURE_NOTIFIED,
        payload={'email': lead.email, 'emailSent': result.email_sent, 'smsSent': result.sms_sent,
                 'notifiedAt': window.utcnow().isoformat()},
    )
    if store.append_event_if_absent(lead.id, event):
        lead.events.append(event)
    else:
        logger.warning(f"Lead {lead.id} was already marked notified by a concurrent run")

    bus.emit(EVENT_LEAD_UNREACHABLE, {'lead_id': lead.id, 'email': lead.email})
    return 'notified'


@log_call
def poll(feed_id: str, cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
    """
    Process one page of a feed. A bad or failing submission is logged and
    skipped; the cursor only advances when the feed reports more pages.
    lead_ids lists every lead handed to process_lead on this page.

    Raises: LeadSourceError if the page itself cannot be fetched
    """
    summary = {
        'feed_id': feed_id, 'fetched': 0, 'created': 0, 'existing': 0,
        'skipped': 0, 'errors': 0, 'cursor_advanced': False, 'lead_ids': [],
    }

    cursor = store.get_feed_cursor(feed_id)
    page = lead_source.list_submissions(feed_id, cursor, config.LEAD_SOURCE_PAGE_SIZE)
    summary['fetched'] = len(page.items)

    for submission in page.items:
        if _cancelled(cancel_event):
            logger.info(f"poll {feed_id}: cancelled, stopping before next submission")
            break
        try:
            lead, created = process_submission(submission, feed_id)
            summary['lead_ids'].append(lead.id)
            summary['created' if created else 'existing'] += 1
        except InvalidSubmission as e:
            summary['skipped'] += 1
            logger.warning(f"Skipping submission {submission.submitted_at} on {feed_id}: {e}")
        except Exception as e:
            summary['errors'] += 1
            logger.error(f"Error processing submission {submission.submitted_at} on {feed_id}: {type(e).__name__}: {e}")
    else:
        # Only reached when the whole page was handled (no cancellation)
        if page.has_more and page.next_cursor is not None:
            store.save_feed_cursor(feed_id, page.next_cursor)
            summary['cursor_advanced'] = True

    logger.info(
        f"poll {feed_id}: fetched={summary['fetched']} created={summary['created']} "
        f"existing={summary['existing']} skipped={summary['skipped']} errors={summary['errors']}"
    )
    return summary


def poll_now(feed_id: str) -> Dict[str, Any]:
    """Manual trigger for a single feed."""
    return poll(feed_id)


@log_call
def retry_failed_leads(
    cancel_event: Optional[threading.Event] = None,
    skip_ids: Optional[Set[int]] = None,
) -> Dict[str, int]:
    """
    Re-run process_lead over every failed lead: retries while budget is left,
    one notification once it is spent. Leads in skip_ids were already handled
    by a poll in the same pass and wait for the next one.
    Returns: count per process_lead outcome (plus 'error')
    """
    summary: Dict[str, int] = {}
    # Snapshot first: leads that succeed leave the failed set mid-loop
    leads = store.list_leads(delivery_status=STATUS_FAILED, limit=None, sort='updated_at')

    for lead in leads:
        if skip_ids and lead.id in skip_ids:
            continue
        if _cancelled(cancel_event):
            logger.info("retry_failed_leads: cancelled, stopping before next lead")
            break
        try:
            outcome = process_lead(lead)
        except Exception as e:
            outcome = 'error'
            logger.error(f"retry_failed_leads: lead {lead.id}: {type(e).__name__}: {e}")
        summary[outcome] = summary.get(outcome, 0) + 1

    return summary
