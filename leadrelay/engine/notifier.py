"""
Notifier - tells a lead we could not reach them on WhatsApp.
Email over SMTP first; an SMS through Twilio as an optional fallback.
"""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from leadrelay.config import config
from leadrelay.logging_config import log_call
from leadrelay.models import NotifyResult

logger = logging.getLogger(__name__)

SUBJECT = "We couldn't reach you on WhatsApp"


def build_email_body(name: Optional[str], phone: Optional[str]) -> str:
    return f"""Hello {name or 'there'},

Thank you for submitting your form. We tried to reach you on your WhatsApp number {phone or 'provided'}, but we were unable to contact you. This could be due to an incorrect number or network issues.

To ensure we can assist you, please resubmit your form with a valid WhatsApp number.

We appreciate your prompt attention and look forward to connecting with you!

— {config.NOTIFY_BRAND_NAME}
"""


def build_sms_body(name: Optional[str], phone: Optional[str]) -> str:
    return (
        f"Hi {name or 'there'},\n\n"
        f"We tried contacting you on WhatsApp at {phone or 'your number'}, but couldn't reach you.\n\n"
        "This may be due to an incorrect number or network issue. Please resubmit your form "
        "with a valid WhatsApp number so we can assist you.\n\n"
        f"— {config.NOTIFY_BRAND_NAME}"
    )


def send_email(to_email: str, subject: str, body: str) -> Optional[str]:
    """
    Send a plain-text email.
    Returns: None on success, otherwise an error string
    """
    if not config.SMTP_HOST or not config.SMTP_USERNAME or not config.SMTP_PASSWORD:
        return "SMTP credentials not configured"

    msg = MIMEText(body, 'plain', 'utf-8')
    msg['From'] = config.SMTP_SENDER
    msg['To'] = to_email
    msg['Subject'] = subject

    try:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=config.SMTP_TIMEOUT) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
            server.sendmail(config.SMTP_SENDER, [to_email], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP error sending to {to_email}: {e}")
        return str(e)

    logger.info(f"Email sent to {to_email}")
    return None


def send_sms(to_phone: str, body: str) -> Optional[str]:
    """
    Send an SMS through Twilio.
    Returns: None on success, otherwise an error string
    """
    if not config.TWILIO_ACCOUNT_SID or not config.TWILIO_AUTH_TOKEN or not config.TWILIO_FROM_NUMBER:
        return "Twilio credentials not configured"

    to = to_phone if to_phone.startswith('+') else f"+{to_phone}"
    try:
        client = TwilioClient(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN)
        message = client.messages.create(to=to, from_=config.TWILIO_FROM_NUMBER, body=body)
    except TwilioException as e:
        logger.error(f"Twilio SMS to {to} failed: {e}")
        return str(e)

    logger.info(f"SMS sent to {to} (sid {message.sid})")
    return None


@log_call
def notify_unreachable(contact_email: Optional[str], phone: Optional[str], name: Optional[str]) -> NotifyResult:
    """
    Notify a lead that they could not be reached.
    Succeeds if at least one channel delivered the notification.
    """
    errors = []

    email_sent = False
    if contact_email:
        error = send_email(contact_email, SUBJECT, build_email_body(name, phone))
        email_sent = error is None
        if error:
            errors.append(f"email: {error}")
    else:
        errors.append("email: no address")

    sms_sent = False
    if config.NOTIFY_SMS_ENABLED and phone:
        error = send_sms(phone, build_sms_body(name, phone))
        sms_sent = error is None
        if error:
            errors.append(f"sms: {error}")

    success = email_sent or sms_sent
    if not success:
        logger.warning(f"Unreachable notification for {contact_email or phone} not delivered: {'; '.join(errors)}")

    return NotifyResult(
        success=success,
        email_sent=email_sent,
        sms_sent=sms_sent,
        error='; '.join(errors) or None,
    )
