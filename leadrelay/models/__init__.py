"""
Data Models
Dataclasses for all entities. These are pure Python objects, no database logic.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# Lead sources
SOURCE_HUBSPOT = 'hubspot'
SOURCE_MANUAL = 'manual'
SOURCE_API = 'api'

# Lead delivery states
STATUS_PENDING = 'pending'
STATUS_SENT = 'sent'
STATUS_DELIVERED = 'delivered'
STATUS_FAILED = 'failed'
DELIVERY_STATUSES = (STATUS_PENDING, STATUS_SENT, STATUS_DELIVERED, STATUS_FAILED)

# Message directions and states
DIRECTION_INBOUND = 'inbound'
DIRECTION_OUTBOUND = 'outbound'
MESSAGE_STATUSES = ('sent', 'delivered', 'read', 'failed')

# Template kinds
TEMPLATE_REMINDER = 'Reminder'
TEMPLATE_WELCOME = 'Welcome'

# Fixed event-log keys (reminder events are keyed by template id)
KEY_SESSION_STARTED = 'session-started'
KEY_FAILURE_NOTIFIED = 'failure-notified'
KEY_DEAD_LEAD = 'dead-lead'


class EventTag(str, Enum):
    """Kinds of entries in a lead's append-only event log."""
    SUBMISSION_RECEIVED = 'submission_received'
    SESSION_STARTED = 'session_started'
    REMINDER_SENT = 'reminder_sent'
    FAILURE_NOTIFIED = 'failure_notified'
    DEAD_LEAD_MARKED = 'dead_lead_marked'


@dataclass
class LeadEvent:
    """One entry of a lead's event log. `key` is unique per lead."""
    tag: EventTag
    key: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    lead_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class Lead:
    """One external submission plus its delivery/retry state."""
    id: Optional[int] = None
    identifier: Optional[str] = None
    email: str = ''
    phone: str = ''
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    region: Optional[str] = None
    form_id: Optional[str] = None
    source: str = SOURCE_HUBSPOT
    delivery_status: str = STATUS_PENDING
    template_sent: bool = False
    last_message_id: Optional[str] = None
    retry_count: int = 3
    events: List[LeadEvent] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass
class Contact:
    """Conversation activity for one channel address."""
    id: Optional[int] = None
    phone: str = ''
    name: Optional[str] = None
    lead_id: Optional[int] = None
    last_message_sent_at: Optional[datetime] = None
    last_message_received_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    status: str = 'active'
    region: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Message:
    """A delivered or received message. Only `status` changes after creation."""
    message_id: str = ''
    direction: str = DIRECTION_OUTBOUND
    from_address: str = ''
    to_address: str = ''
    body: str = ''
    id: Optional[int] = None
    conversation_id: Optional[str] = None
    contact_id: Optional[int] = None
    timestamp: Optional[datetime] = None
    status: str = 'sent'
    error: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Template:
    """Reminder / welcome message template (read-only for the engine)."""
    id: Optional[int] = None
    identifier: Optional[str] = None
    title: str = ''
    template_type: str = TEMPLATE_REMINDER
    used_for: str = 'Whatsapp'
    content: str = ''
    remainder_hours: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SendResult:
    """Outcome of a messaging channel call."""
    success: bool
    message_id: Optional[str] = None
    error: Any = None
    data: Optional[Dict[str, Any]] = None


@dataclass
class NotifyResult:
    """Outcome of an unreachable-lead notification."""
    success: bool
    email_sent: bool = False
    sms_sent: bool = False
    error: Optional[str] = None


@dataclass
class Submission:
    """One form submission from the lead source."""
    submitted_at: str = ''
    values: Dict[str, str] = field(default_factory=dict)
    page_url: Optional[str] = None


@dataclass
class SubmissionPage:
    """One page of the lead source feed."""
    items: List[Submission] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
