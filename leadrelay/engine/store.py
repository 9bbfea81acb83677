"""
Store - Persistent state for leads, their event logs, contacts, messages,
reminder templates and feed cursors.

Pure SQL over psycopg2; no network and no decisions. Every write that the
orchestrator relies on for idempotency is atomic: lead upserts never
overwrite, event appends are append-if-absent, contact timestamps only move
forward, and an inbound message touches its contact only when it is new.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from psycopg2.extras import Json

from leadrelay.db.connection import get_db_cursor
from leadrelay.models import (
    Contact, Lead, LeadEvent, EventTag, Message, Template,
    DELIVERY_STATUSES, STATUS_FAILED, STATUS_SENT, TEMPLATE_REMINDER,
)

logger = logging.getLogger(__name__)

# Allowlists for dynamic ORDER BY — column names never come from user input directly
_LEAD_SORT_COLUMNS = {'created_at', 'updated_at', 'email', 'delivery_status', 'retry_count'}
_CONTACT_SORT_COLUMNS = {'created_at', 'last_message_at', 'last_message_sent_at', 'phone'}


def _validate_sort(sort: str, allowed: set, entity: str) -> str:
    """Raise ValueError if sort is not an allowed column; return the ORDER BY fragment."""
    column = sort.lstrip('-')
    if column not in allowed:
        raise ValueError(f"Invalid {entity} sort column: {column!r}")
    return f"{column} {'DESC' if sort.startswith('-') else 'ASC'}"


def _event_from_row(row: Dict[str, Any]) -> LeadEvent:
    return LeadEvent(
        id=row['id'],
        lead_id=row['lead_id'],
        tag=EventTag(row['tag']),
        key=row['event_key'],
        payload=row.get('payload') or {},
        created_at=row.get('created_at'),
    )


def _fetch_events(cur, lead_ids: List[int]) -> Dict[int, List[LeadEvent]]:
    """Load event logs for several leads at once, oldest first."""
    events: Dict[int, List[LeadEvent]] = {lead_id: [] for lead_id in lead_ids}
    if not lead_ids:
        return events
    cur.execute("""
        SELECT * FROM lead_events
        WHERE lead_id = ANY(%s)
        ORDER BY id ASC
    """, (list(lead_ids),))
    for row in cur.fetchall():
        events.setdefault(row['lead_id'], []).append(_event_from_row(row))
    return events


def _leads_with_events(cur, rows) -> List[Lead]:
    events = _fetch_events(cur, [row['id'] for row in rows])
    return [Lead(**row, events=events.get(row['id'], [])) for row in rows]


def _lead_filters(delivery_status: Optional[str], search: Optional[str]) -> Tuple[str, Dict[str, Any]]:
    conditions = ["TRUE"]
    params: Dict[str, Any] = {}

    if delivery_status:
        if delivery_status not in DELIVERY_STATUSES:
            raise ValueError(f"Invalid delivery status: {delivery_status!r}")
        conditions.append("delivery_status = %(delivery_status)s")
        params['delivery_status'] = delivery_status

    if search:
        conditions.append(
            "(email ILIKE %(search)s OR first_name ILIKE %(search)s OR last_name ILIKE %(search)s)"
        )
        params['search'] = f"%{search}%"

    return " AND ".join(conditions), params


# =============================================================================
# LEAD OPERATIONS
# =============================================================================

def upsert_lead(lead: Lead) -> Tuple[Lead, bool]:
    """
    Insert a lead keyed on phone. An existing lead is never overwritten.
    Returns: (stored lead with its event log, created flag)
    """
    params = {
        'identifier': lead.identifier,
        'email': lead.email,
        'phone': lead.phone,
        'first_name': lead.first_name,
        'last_name': lead.last_name,
        'company': lead.company,
        'region': lead.region,
        'form_id': lead.form_id,
        'source': lead.source,
        'delivery_status': lead.delivery_status,
        'template_sent': lead.template_sent,
        'retry_count': lead.retry_count,
    }

    with get_db_cursor() as cur:
        cur.execute("""
            INSERT INTO leads (
                identifier, email, phone, first_name, last_name, company, region,
                form_id, source, delivery_status, template_sent, retry_count,
                created_at, updated_at
            ) VALUES (
                %(identifier)s, %(email)s, %(phone)s, %(first_name)s, %(last_name)s,
                %(company)s, %(region)s, %(form_id)s, %(source)s, %(delivery_status)s,
                %(template_sent)s, %(retry_count)s, NOW(), NOW()
            )
            ON CONFLICT (phone) DO NOTHING
            RETURNING *
        """, params)

        row = cur.fetchone()
        created = row is not None
        if not created:
            cur.execute("SELECT * FROM leads WHERE phone = %s", (lead.phone,))
            row = cur.fetchone()

        stored = _leads_with_events(cur, [row])[0]

    if created:
        logger.info(f"Created lead ID {stored.id}: {stored.email} / {stored.phone}")
    else:
        logger.debug(f"upsert_lead: phone={lead.phone} already stored as lead ID {stored.id}")
    return stored, created


def get_lead(lead_id: int) -> Optional[Lead]:
    """Get lead by ID, including its event log."""
    with get_db_cursor() as cur:
        cur.execute("SELECT * FROM leads WHERE id = %s", (lead_id,))
        row = cur.fetchone()
        if row:
            return _leads_with_events(cur, [row])[0]
    logger.debug(f"get_lead: lead_id={lead_id} not found")
    return None


def get_lead_by_phone(phone: str) -> Optional[Lead]:
    """Get lead by channel address, including its event log."""
    with get_db_cursor() as cur:
        cur.execute("SELECT * FROM leads WHERE phone = %s", (phone,))
        row = cur.fetchone()
        if row:
            return _leads_with_events(cur, [row])[0]
    return None


def list_leads(
    delivery_status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    sort: str = '-created_at',
) -> List[Lead]:
    """List leads with optional filters, newest first by default."""
    where_clause, params = _lead_filters(delivery_status, search)
    order_by = _validate_sort(sort, _LEAD_SORT_COLUMNS, 'lead')
    params.update(limit=limit, offset=offset)

    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM leads
            WHERE {where_clause}
            ORDER BY {order_by}, id ASC
            LIMIT %(limit)s OFFSET %(offset)s
        """, params)
        rows = cur.fetchall()
        leads = _leads_with_events(cur, rows)

    logger.debug(f"list_leads: {len(leads)} results (status={delivery_status}, search={search})")
    return leads


def count_leads(delivery_status: Optional[str] = None, search: Optional[str] = None) -> int:
    where_clause, params = _lead_filters(delivery_status, search)
    with get_db_cursor() as cur:
        cur.execute(f"SELECT COUNT(*) AS total FROM leads WHERE {where_clause}", params)
        return cur.fetchone()['total']


def count_leads_by_status() -> Dict[str, int]:
    """Counts per delivery status (every status present, zero when empty) plus total."""
    counts = {status: 0 for status in DELIVERY_STATUSES}
    with get_db_cursor() as cur:
        cur.execute("""
            SELECT delivery_status, COUNT(*) AS total
            FROM leads
            GROUP BY delivery_status
        """)
        for row in cur.fetchall():
            counts[row['delivery_status']] = row['total']
    counts['total'] = sum(counts[status] for status in DELIVERY_STATUSES)
    return counts


def get_delivery_stats() -> Dict[str, Any]:
    """Delivery counts plus a success rate string, e.g. '66.67%'."""
    counts = count_leads_by_status()
    total = counts['total']
    rate = f"{counts[STATUS_SENT] / total * 100:.2f}%" if total else '0%'
    return {**counts, 'success_rate': rate}


def record_delivery_success(lead_id: int, message_id: Optional[str]) -> bool:
    with get_db_cursor() as cur:
        cur.execute("""
            UPDATE leads
            SET delivery_status = %s, template_sent = TRUE,
                last_message_id = %s, updated_at = NOW()
            WHERE id = %s
        """, (STATUS_SENT, message_id, lead_id))
        updated = cur.rowcount > 0

    if updated:
        logger.info(f"Lead ID {lead_id} marked sent (message {message_id})")
    return updated


def record_delivery_failure(lead_id: int, floor: int) -> Optional[int]:
    """
    Mark a lead failed and spend one retry, never going below floor.
    Returns: the new retry_count, or None if the lead does not exist
    """
    with get_db_cursor() as cur:
        cur.execute("""
            UPDATE leads
            SET delivery_status = %s,
                retry_count = GREATEST(retry_count - 1, %s),
                updated_at = NOW()
            WHERE id = %s
            RETURNING retry_count
        """, (STATUS_FAILED, floor, lead_id))
        row = cur.fetchone()

    if row is None:
        return None
    logger.warning(f"Lead ID {lead_id} marked failed, retry_count={row['retry_count']}")
    return row['retry_count']


def append_event_if_absent(lead_id: int, event: LeadEvent) -> bool:
    """
    Append an event to a lead's log unless an event with the same key exists.
    Returns: True if this call appended it, False if it was already there
    """
    with get_db_cursor() as cur:
        cur.execute("""
            INSERT INTO lead_events (lead_id, tag, event_key, payload, created_at)
            VALUES (%s, %s, %s, %s, NOW())
            ON CONFLICT (lead_id, event_key) DO NOTHING
            RETURNING id, created_at
        """, (lead_id, EventTag(event.tag).value, event.key, Json(event.payload or {})))
        row = cur.fetchone()

    if row is None:
        logger.debug(f"append_event_if_absent: lead {lead_id} already has event {event.key!r}")
        return False

    event.id = row['id']
    event.lead_id = lead_id
    event.created_at = row['created_at']
    logger.info(f"Lead ID {lead_id}: appended {EventTag(event.tag).value} event {event.key!r}")
    return True


# =============================================================================
# CONTACT OPERATIONS
# =============================================================================

def upsert_contact_sent(
    phone: str,
    sent_at: datetime,
    name: Optional[str] = None,
    lead_id: Optional[int] = None,
    region: Optional[str] = None,
) -> Contact:
    """Create or update a contact after an outbound send. Timestamps never move backwards."""
    with get_db_cursor() as cur:
        cur.execute("""
            INSERT INTO contacts (
                phone, name, lead_id, region, last_message_sent_at, last_message_at,
                created_at, updated_at
            ) VALUES (
                %(phone)s, %(name)s, %(lead_id)s, %(region)s, %(sent_at)s, %(sent_at)s,
                NOW(), NOW()
            )
            ON CONFLICT (phone) DO UPDATE SET
                name = COALESCE(NULLIF(EXCLUDED.name, ''), contacts.name),
                lead_id = COALESCE(EXCLUDED.lead_id, contacts.lead_id),
                region = COALESCE(EXCLUDED.region, contacts.region),
                last_message_sent_at = GREATEST(contacts.last_message_sent_at, EXCLUDED.last_message_sent_at),
                last_message_at = GREATEST(contacts.last_message_at, EXCLUDED.last_message_at),
                updated_at = NOW()
            RETURNING *
        """, {'phone': phone, 'name': name, 'lead_id': lead_id, 'region': region, 'sent_at': sent_at})
        row = cur.fetchone()

    logger.debug(f"upsert_contact_sent: phone={phone} sent_at={sent_at.isoformat()}")
    return Contact(**row)


def get_contact_by_phone(phone: str) -> Optional[Contact]:
    with get_db_cursor() as cur:
        cur.execute("SELECT * FROM contacts WHERE phone = %s", (phone,))
        row = cur.fetchone()
        return Contact(**row) if row else None


def mark_contact_read(phone: str) -> Optional[Contact]:
    """Reset a contact's unread count. Returns None for an unknown phone."""
    with get_db_cursor() as cur:
        cur.execute("""
            UPDATE contacts SET unread_count = 0, updated_at = NOW()
            WHERE phone = %s
            RETURNING *
        """, (phone,))
        row = cur.fetchone()

    if row is None:
        return None
    logger.info(f"Contact {phone} marked as read")
    return Contact(**row)


def list_contacts(limit: Optional[int] = None, offset: int = 0, sort: str = 'created_at') -> List[Contact]:
    """List contacts; no limit returns every contact (used by the reminder scan)."""
    order_by = _validate_sort(sort, _CONTACT_SORT_COLUMNS, 'contact')
    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM contacts
            ORDER BY {order_by} NULLS LAST, id ASC
            LIMIT %(limit)s OFFSET %(offset)s
        """, {'limit': limit, 'offset': offset})
        rows = cur.fetchall()

    logger.debug(f"list_contacts: {len(rows)} contacts")
    return [Contact(**row) for row in rows]


# =============================================================================
# MESSAGE OPERATIONS
# =============================================================================

def _insert_message(cur, message: Message) -> bool:
    """Insert on an open cursor; an existing message id is left untouched."""
    cur.execute("""
        INSERT INTO messages (
            message_id, conversation_id, contact_id, direction, from_address,
            to_address, body, timestamp, status, error, metadata
        ) VALUES (
            %(message_id)s, %(conversation_id)s, %(contact_id)s, %(direction)s,
            %(from_address)s, %(to_address)s, %(body)s,
            COALESCE(%(timestamp)s, NOW()), %(status)s, %(error)s, %(metadata)s
        )
        ON CONFLICT (message_id) DO NOTHING
        RETURNING id
    """, {
        'message_id': message.message_id,
        'conversation_id': message.conversation_id,
        'contact_id': message.contact_id,
        'direction': message.direction,
        'from_address': message.from_address,
        'to_address': message.to_address,
        'body': message.body,
        'timestamp': message.timestamp,
        'status': message.status,
        'error': Json(message.error) if message.error is not None else None,
        'metadata': Json(message.metadata or {}),
    })
    row = cur.fetchone()
    if row is None:
        return False
    message.id = row['id']
    return True


def create_message(message: Message) -> bool:
    """
    Store a message. A message id that already exists is left untouched.
    Returns: True if inserted
    """
    with get_db_cursor() as cur:
        inserted = _insert_message(cur, message)

    if not inserted:
        logger.debug(f"create_message: message_id={message.message_id} already stored")
        return False
    logger.info(f"Stored {message.direction} message {message.message_id} ({message.to_address})")
    return True


def record_inbound_message(message: Message, name: Optional[str] = None) -> Optional[Contact]:
    """
    Store an inbound message and, only if it is new, stamp the sender's
    contact (received time, unread +1) and link the two. One transaction.
    Returns: the updated contact, or None if the message id was already stored
    """
    received_at = message.timestamp
    with get_db_cursor() as cur:
        if not _insert_message(cur, message):
            logger.debug(f"record_inbound_message: message_id={message.message_id} already stored")
            return None

        cur.execute("""
            INSERT INTO contacts (
                phone, name, last_message_received_at, last_message_at, unread_count,
                created_at, updated_at
            ) VALUES (
                %(phone)s, %(name)s, %(received_at)s, %(received_at)s, 1, NOW(), NOW()
            )
            ON CONFLICT (phone) DO UPDATE SET
                name = COALESCE(contacts.name, EXCLUDED.name),
                last_message_received_at = GREATEST(contacts.last_message_received_at, EXCLUDED.last_message_received_at),
                last_message_at = GREATEST(contacts.last_message_at, EXCLUDED.last_message_at),
                unread_count = contacts.unread_count + 1,
                updated_at = NOW()
            RETURNING *
        """, {'phone': message.from_address, 'name': name, 'received_at': received_at})
        row = cur.fetchone()

        cur.execute("UPDATE messages SET contact_id = %s WHERE id = %s", (row['id'], message.id))

    message.contact_id = row['id']
    logger.info(f"Stored inbound message {message.message_id} from {message.from_address}")
    return Contact(**row)


def update_message_status(message_id: str, status: str, error: Optional[Dict[str, Any]] = None) -> bool:
    """Set a message's delivery status. Unknown message ids are a no-op (returns False)."""
    with get_db_cursor() as cur:
        cur.execute("""
            UPDATE messages
            SET status = %s, error = COALESCE(%s, error)
            WHERE message_id = %s
        """, (status, Json(error) if error is not None else None, message_id))
        updated = cur.rowcount > 0

    if not updated:
        logger.debug(f"update_message_status: message_id={message_id} not found")
    return updated


def list_messages(phone: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Message]:
    """Messages to or from a channel address (all messages when phone is None), newest first."""
    conditions = ["TRUE"]
    params: Dict[str, Any] = {'limit': limit, 'offset': offset}
    if phone:
        conditions.append("(from_address = %(phone)s OR to_address = %(phone)s)")
        params['phone'] = phone

    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM messages
            WHERE {' AND '.join(conditions)}
            ORDER BY timestamp DESC, id DESC
            LIMIT %(limit)s OFFSET %(offset)s
        """, params)
        rows = cur.fetchall()
    return [Message(**row) for row in rows]


# =============================================================================
# TEMPLATES AND FEED CURSORS
# =============================================================================

def list_reminder_templates() -> List[Template]:
    with get_db_cursor() as cur:
        cur.execute("""
            SELECT * FROM message_templates
            WHERE template_type = %s
            ORDER BY remainder_hours ASC, id ASC
        """, (TEMPLATE_REMINDER,))
        rows = cur.fetchall()
    return [Template(**row) for row in rows]


def get_feed_cursor(feed_id: str) -> Optional[str]:
    with get_db_cursor() as cur:
        cur.execute("SELECT cursor FROM feed_cursors WHERE feed_id = %s", (feed_id,))
        row = cur.fetchone()
    return row['cursor'] if row else None


def save_feed_cursor(feed_id: str, cursor: str) -> None:
    with get_db_cursor() as cur:
        cur.execute("""
            INSERT INTO feed_cursors (feed_id, cursor, updated_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (feed_id) DO UPDATE SET cursor = EXCLUDED.cursor, updated_at = NOW()
        """, (feed_id, cursor))
    logger.info(f"Feed {feed_id}: cursor advanced to {cursor}")
