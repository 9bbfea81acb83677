"""
Shared fixtures for engine tests.

fake_store: an in-memory stand-in for leadrelay.engine.store with the same
function names and the same atomic guarantees (upsert never overwrites,
events are append-if-absent, contact timestamps only move forward). It is
patched in as `store` in every engine module that uses it, so scenario tests
can run ingestion or reminders several times and inspect the end state.
Returned objects are copies, like rows read from a database.
"""

import copy
from datetime import datetime, timezone
from itertools import count

import pytest
from unittest.mock import patch

from leadrelay.models import Contact, Lead, STATUS_FAILED, STATUS_SENT


class FakeStore:

    def __init__(self):
        self.leads = {}
        self.contacts = {}
        self.messages = {}
        self.templates = []
        self.cursors = {}
        self._ids = count(1)

    # -- leads ---------------------------------------------------------------

    def upsert_lead(self, lead):
        for stored in self.leads.values():
            if stored.phone == lead.phone:
                return copy.deepcopy(stored), False
        stored = copy.deepcopy(lead)
        stored.id = next(self._ids)
        stored.events = []
        self.leads[stored.id] = stored
        return copy.deepcopy(stored), True

    def get_lead(self, lead_id):
        lead = self.leads.get(lead_id)
        return copy.deepcopy(lead) if lead else None

    def get_lead_by_phone(self, phone):
        for lead in self.leads.values():
            if lead.phone == phone:
                return copy.deepcopy(lead)
        return None

    def list_leads(self, delivery_status=None, search=None, limit=50, offset=0, sort='-created_at'):
        leads = [l for l in self.leads.values() if not delivery_status or l.delivery_status == delivery_status]
        leads = leads[offset:] if limit is None else leads[offset:offset + limit]
        return copy.deepcopy(leads)

    def record_delivery_success(self, lead_id, message_id):
        lead = self.leads[lead_id]
        lead.delivery_status = STATUS_SENT
        lead.template_sent = True
        lead.last_message_id = message_id
        return True

    def record_delivery_failure(self, lead_id, floor):
        lead = self.leads.get(lead_id)
        if lead is None:
            return None
        lead.delivery_status = STATUS_FAILED
        lead.retry_count = max(lead.retry_count - 1, floor)
        return lead.retry_count

    def append_event_if_absent(self, lead_id, event):
        lead = self.leads[lead_id]
        if any(e.key == event.key for e in lead.events):
            return False
        event.id = next(self._ids)
        event.lead_id = lead_id
        event.created_at = datetime.now(timezone.utc)
        lead.events.append(copy.deepcopy(event))
        return True

    def events(self, lead_id, tag=None):
        return [e for e in self.leads[lead_id].events if tag is None or e.tag == tag]

    # -- contacts ------------------------------------------------------------

    def _contact(self, phone):
        if phone not in self.contacts:
            self.contacts[phone] = Contact(id=next(self._ids), phone=phone)
        return self.contacts[phone]

    def upsert_contact_sent(self, phone, sent_at, name=None, lead_id=None, region=None):
        contact = self._contact(phone)
        contact.name = name or contact.name
        contact.lead_id = lead_id or contact.lead_id
        contact.region = region or contact.region
        contact.last_message_sent_at = max(filter(None, [contact.last_message_sent_at, sent_at]))
        contact.last_message_at = max(filter(None, [contact.last_message_at, sent_at]))
        return copy.deepcopy(contact)

    def record_inbound_message(self, message, name=None):
        if not self.create_message(message):
            return None
        received_at = message.timestamp
        contact = self._contact(message.from_address)
        contact.name = contact.name or name
        contact.last_message_received_at = max(filter(None, [contact.last_message_received_at, received_at]))
        contact.last_message_at = max(filter(None, [contact.last_message_at, received_at]))
        contact.unread_count += 1
        self.messages[message.message_id].contact_id = contact.id
        return copy.deepcopy(contact)

    def mark_contact_read(self, phone):
        contact = self.contacts.get(phone)
        if contact is None:
            return None
        contact.unread_count = 0
        return copy.deepcopy(contact)

    def get_contact_by_phone(self, phone):
        contact = self.contacts.get(phone)
        return copy.deepcopy(contact) if contact else None

    def list_contacts(self, limit=None, offset=0, sort='created_at'):
        return copy.deepcopy(list(self.contacts.values()))

    # -- messages, templates, cursors -----------------------------------------

    def create_message(self, message):
        if message.message_id in self.messages:
            return False
        message.id = next(self._ids)
        self.messages[message.message_id] = copy.deepcopy(message)
        return True

    def update_message_status(self, message_id, status, error=None):
        message = self.messages.get(message_id)
        if message is None:
            return False
        message.status = status
        message.error = error if error is not None else message.error
        return True

    def list_reminder_templates(self):
        return copy.deepcopy(self.templates)

    def get_feed_cursor(self, feed_id):
        return self.cursors.get(feed_id)

    def save_feed_cursor(self, feed_id, cursor):
        self.cursors[feed_id] = cursor

    # -- helpers for tests ---------------------------------------------------

    def add_lead(self, **fields):
        lead = Lead(id=next(self._ids), **fields)
        self.leads[lead.id] = lead
        return copy.deepcopy(lead)

    def add_contact(self, **fields):
        contact = Contact(id=next(self._ids), **fields)
        self.contacts[contact.phone] = contact
        return copy.deepcopy(contact)

    def outbound(self, to=None):
        return [
            m for m in self.messages.values()
            if m.direction == 'outbound' and (to is None or m.to_address == to)
        ]


_STORE_USERS = (
    'leadrelay.engine.ingestion.store',
    'leadrelay.engine.window.store',
    'leadrelay.engine.reminders.store',
    'leadrelay.engine.inbound.store',
)


@pytest.fixture
def fake_store():
    store = FakeStore()
    patches = [patch(target, store) for target in _STORE_USERS]
    for p in patches:
        p.start()
    try:
        yield store
    finally:
        for p in patches:
            p.stop()


@pytest.fixture
def emitted():
    """Capture bus events as (name, data) pairs without real handlers."""
    events = []
    with patch('leadrelay.bus.events.bus.emit', side_effect=lambda name, data=None: events.append((name, data))):
        yield events
