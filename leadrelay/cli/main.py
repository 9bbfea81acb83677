#!/usr/bin/env python3
"""
leadrelay Terminal CLI
Manual triggers and read access for the re-engagement orchestrator.
"""

import json
import logging
import signal
import uuid

import click

from leadrelay.config import config
from leadrelay.db.connection import init_db
from leadrelay.engine import store, ingestion, reminders, channel, inbound
from leadrelay.engine.lead_source import LeadSourceError
from leadrelay.engine.phone import normalize_phone, is_valid_phone, display_phone
from leadrelay.engine.scheduler import OrchestratorScheduler
from leadrelay.engine.window import utcnow
from leadrelay.models import Message, DELIVERY_STATUSES, DIRECTION_OUTBOUND
from leadrelay.logging_config import configure_logging, log_call


def _fmt(ts) -> str:
    return ts.strftime('%Y-%m-%d %H:%M') if ts else '—'


@click.group()
def cli():
    """leadrelay - WhatsApp lead re-engagement"""
    configure_logging()


@cli.command('init-db')
@log_call
def init_db_cmd():
    """Create tables (safe to re-run)"""
    init_db()
    click.echo("✓ Schema applied")


# =============================================================================
# ORCHESTRATOR TRIGGERS
# =============================================================================

@cli.command('poll')
@click.argument('feed_ids', nargs=-1)
@log_call
def poll(feed_ids):
    """Poll form feeds now (defaults to HUBSPOT_FORM_GUIDS)"""
    logger = logging.getLogger("leadrelay")
    feed_ids = feed_ids or config.HUBSPOT_FORM_GUIDS
    if not feed_ids:
        click.echo("No feed given and HUBSPOT_FORM_GUIDS is empty.", err=True)
        return

    for feed_id in feed_ids:
        try:
            s = ingestion.poll_now(feed_id)
        except LeadSourceError as e:
            logger.warning(f"poll | feed={feed_id} failed: {e}")
            click.echo(f"✗ {feed_id}: {e}", err=True)
            continue
        click.echo(
            f"✓ {feed_id}: fetched {s['fetched']}, new {s['created']}, existing {s['existing']}, "
            f"skipped {s['skipped']}, errors {s['errors']}"
            + (" (cursor advanced)" if s['cursor_advanced'] else "")
        )


@cli.command('retry')
@log_call
def retry():
    """Retry failed leads and notify exhausted ones"""
    summary = ingestion.retry_failed_leads()
    if not summary:
        click.echo("No failed leads.")
        return
    click.echo("  ".join(f"{k}: {v}" for k, v in sorted(summary.items())))


@cli.command('reminders')
@log_call
def reminders_cmd():
    """Run one reminder pass now"""
    summary = reminders.run_reminders()
    click.echo(
        f"Reminders sent: {summary['sent']}  failed: {summary['failed'] + summary['opener_failed']}  "
        f"dead leads: {summary['dead_leads']}  errors: {summary['error']}"
    )


@cli.command('serve')
@log_call
def serve():
    """Run ingestion and reminders on schedule until interrupted"""
    configure_logging(console=True)
    try:
        scheduler = OrchestratorScheduler()
    except ValueError as e:
        click.echo(f"Invalid schedule: {e}", err=True)
        raise SystemExit(2)

    def _stop(signum, frame):
        click.echo("\nStopping after the current item...")
        scheduler.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    scheduler.run_forever()


@cli.command('stats')
@log_call
def stats():
    """Lead delivery counts by status"""
    s = store.get_delivery_stats()
    click.echo(f"\n{'Status':<12} {'Leads':>8}")
    click.echo("-" * 21)
    for status in DELIVERY_STATUSES:
        click.echo(f"{status:<12} {s[status]:>8}")
    click.echo("-" * 21)
    click.echo(f"{'total':<12} {s['total']:>8}")
    click.echo(f"\nSuccess rate: {s['success_rate']}")


# =============================================================================
# LEADS / CONTACTS / MESSAGES
# =============================================================================

@cli.group()
def leads():
    """Inspect leads"""
    pass


@leads.command('list')
@click.option('--status', type=click.Choice(DELIVERY_STATUSES), help='Filter by delivery status')
@click.option('--search', help='Match email or name')
@click.option('--page', default=1, help='Page number (default: 1)')
@click.option('--limit', default=50, help='Page size (default: 50)')
@log_call
def leads_list(status, search, page, limit):
    """List leads, newest first"""
    results = store.list_leads(delivery_status=status, search=search, limit=limit, offset=(page - 1) * limit)
    if not results:
        click.echo("No leads found.")
        return

    total = store.count_leads(delivery_status=status, search=search)
    pages = (total + limit - 1) // limit
    click.echo(f"\nPage {page}/{pages} — {total} leads:\n")
    click.echo(f"{'ID':<6} {'Email':<30} {'Phone':<16} {'Status':<10} {'Retries':<8}")
    click.echo("-" * 74)
    for l in results:
        click.echo(f"{l.id:<6} {l.email[:28]:<30} {l.phone:<16} {l.delivery_status:<10} {l.retry_count:<8}")


@leads.command('show')
@click.argument('lead_id', type=int)
@log_call
def leads_show(lead_id):
    """Show a lead and its event log"""
    logger = logging.getLogger("leadrelay")
    lead = store.get_lead(lead_id)
    if not lead:
        logger.warning(f"leads_show | lead_id={lead_id} not found")
        click.echo(f"Lead ID {lead_id} not found.", err=True)
        return

    click.echo(f"\n{'='*70}")
    click.echo(f"LEAD #{lead.id}: {lead.display_name or '(no name)'}")
    click.echo(f"{'='*70}")
    click.echo(f"Email:       {lead.email}")
    click.echo(f"Phone:       {display_phone(lead.phone)}")
    click.echo(f"Company:     {lead.company or '(not set)'}")
    click.echo(f"Region:      {lead.region or '(unknown)'}")
    click.echo(f"Source:      {lead.source} ({lead.form_id or 'no form'})")
    click.echo(f"Delivery:    {lead.delivery_status}")
    click.echo(f"Retries:     {lead.retry_count}")
    click.echo(f"Last msg id: {lead.last_message_id or '—'}")
    click.echo(f"Created:     {_fmt(lead.created_at)}")

    click.echo(f"\n{'='*70}")
    click.echo("EVENT LOG")
    click.echo(f"{'='*70}")
    if not lead.events:
        click.echo("No events yet.")
    for e in lead.events:
        click.echo(f"[{_fmt(e.created_at)}] {e.tag.value:<20} {e.key}")
    click.echo()


@cli.group()
def contacts():
    """Inspect contacts"""
    pass


@contacts.command('list')
@click.option('--page', default=1, help='Page number (default: 1)')
@click.option('--limit', default=50, help='Page size (default: 50)')
@log_call
def contacts_list(page, limit):
    """List contacts by latest activity"""
    results = store.list_contacts(limit=limit, offset=(page - 1) * limit, sort='-last_message_at')
    if not results:
        click.echo("No contacts found.")
        return

    click.echo(f"\n{'Phone':<16} {'Name':<22} {'Last sent':<17} {'Last received':<17} {'Unread':<6}")
    click.echo("-" * 82)
    for c in results:
        click.echo(
            f"{c.phone:<16} {(c.name or '')[:20]:<22} {_fmt(c.last_message_sent_at):<17} "
            f"{_fmt(c.last_message_received_at):<17} {c.unread_count:<6}"
        )


@contacts.command('read')
@click.argument('phone')
@log_call
def contacts_read(phone):
    """Mark a contact's messages as read"""
    logger = logging.getLogger("leadrelay")
    contact = store.mark_contact_read(normalize_phone(phone))
    if contact is None:
        logger.warning(f"contacts_read | phone={phone} not found")
        click.echo(f"Contact {phone} not found.", err=True)
        return
    click.echo(f"✓ {contact.phone} marked as read")


@cli.group()
def messages():
    """Inspect messages"""
    pass


@messages.command('list')
@click.option('--phone', help='Only messages to/from this number')
@click.option('--limit', default=50, help='Max results (default: 50)')
@log_call
def messages_list(phone, limit):
    """List messages, newest first"""
    results = store.list_messages(phone=normalize_phone(phone) if phone else None, limit=limit)
    if not results:
        click.echo("No messages found.")
        return
    for m in results:
        arrow = '→' if m.direction == DIRECTION_OUTBOUND else '←'
        peer = m.to_address if m.direction == DIRECTION_OUTBOUND else m.from_address
        click.echo(f"[{_fmt(m.timestamp)}] {arrow} {peer:<15} {m.status:<9} {m.body[:60]}")


@cli.command('send')
@click.argument('to')
@click.argument('body')
@log_call
def send(to, body):
    """Send a free-form WhatsApp text (session window must be open)"""
    logger = logging.getLogger("leadrelay")
    phone = normalize_phone(to)
    if not is_valid_phone(phone):
        logger.warning(f"send | rejected number={to!r}")
        click.echo("Invalid phone number. Use international format, e.g. 919729360795.", err=True)
        return

    result = channel.send_text(phone, body)
    if not result.success:
        click.echo(f"✗ Send failed: {result.error}", err=True)
        return

    now = utcnow()
    contact = store.upsert_contact_sent(phone, now)
    store.create_message(Message(
        message_id=result.message_id or uuid.uuid4().hex,
        contact_id=contact.id,
        direction=DIRECTION_OUTBOUND,
        from_address=config.WHATSAPP_PHONE_NUMBER_ID,
        to_address=phone,
        body=body,
        timestamp=now,
    ))
    click.echo(f"✓ Sent to {display_phone(phone)} ({result.message_id})")


@cli.command('webhook')
@click.argument('payload_file', type=click.File('r'))
@log_call
def webhook(payload_file):
    """Process a saved channel webhook payload (JSON)"""
    try:
        payload = json.load(payload_file)
    except json.JSONDecodeError as e:
        click.echo(f"Invalid JSON: {e}", err=True)
        return
    s = inbound.handle_webhook(payload)
    click.echo(f"Messages stored: {s['messages']}  statuses applied: {s['statuses']}  errors: {s['errors']}")


if __name__ == '__main__':
    cli()
