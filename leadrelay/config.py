"""
leadrelay Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _as_list(value: str) -> list:
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Application configuration."""

    # Database — must be set in .env; never hardcode credentials here
    DATABASE_URL = os.getenv('DATABASE_URL')
    if not DATABASE_URL:
        _logger.critical("DATABASE_URL is not set — cannot start. Copy .env.example to .env and configure it.")
        raise ValueError("DATABASE_URL environment variable is not set. Copy .env.example to .env and configure it.")

    # Timezone used for display only; all stored timestamps are UTC
    TIMEZONE = os.getenv('TIMEZONE', 'Asia/Kolkata')

    # WhatsApp Cloud API (single sender identity)
    WHATSAPP_API_URL = os.getenv('WHATSAPP_API_URL', 'https://graph.facebook.com/v18.0')
    WHATSAPP_PHONE_NUMBER_ID = os.getenv('WHATSAPP_PHONE_NUMBER_ID', '')
    WHATSAPP_ACCESS_TOKEN = os.getenv('WHATSAPP_ACCESS_TOKEN', '')
    WHATSAPP_VERIFY_TOKEN = os.getenv('WHATSAPP_VERIFY_TOKEN', '')

    # Session-opener template (approved template that opens the 24h window)
    OPENER_TEMPLATE_NAME = os.getenv('OPENER_TEMPLATE_NAME', 'welcome_template')
    OPENER_TEMPLATE_LANGUAGE = os.getenv('OPENER_TEMPLATE_LANGUAGE', 'en')
    SESSION_OPENER_DELAY_SECONDS = float(os.getenv('SESSION_OPENER_DELAY_SECONDS', '1.0'))

    # HubSpot form submissions feed
    HUBSPOT_API_KEY = os.getenv('HUBSPOT_API_KEY', '')
    HUBSPOT_API_URL = os.getenv('HUBSPOT_API_URL', 'https://api.hubapi.com')
    HUBSPOT_FORM_GUIDS = _as_list(os.getenv('HUBSPOT_FORM_GUIDS', ''))
    LEAD_SOURCE_PAGE_SIZE = int(os.getenv('LEAD_SOURCE_PAGE_SIZE', '50'))

    # Phone normalisation: 11-digit numbers with a leading zero get this prefix
    DEFAULT_COUNTRY_CODE = os.getenv('DEFAULT_COUNTRY_CODE', '91')

    # Retry budget
    INITIAL_RETRY_COUNT = int(os.getenv('INITIAL_RETRY_COUNT', '3'))
    RETRY_COUNT_FLOOR = int(os.getenv('RETRY_COUNT_FLOOR', '0'))

    # Reminders: eligibility is remainder_hours ± REMINDER_WINDOW_HOURS
    REMINDER_WINDOW_HOURS = float(os.getenv('REMINDER_WINDOW_HOURS', '1.0'))
    REMINDER_NAME_FALLBACK = os.getenv('REMINDER_NAME_FALLBACK', 'there')

    # Scheduler (minutes). Reminder interval + jitter must stay below the
    # full eligibility window or contacts can be skipped.
    POLL_INTERVAL_MINUTES = int(os.getenv('POLL_INTERVAL_MINUTES', '1'))
    REMINDER_INTERVAL_MINUTES = int(os.getenv('REMINDER_INTERVAL_MINUTES', '60'))
    SCHEDULER_JITTER_MINUTES = int(os.getenv('SCHEDULER_JITTER_MINUTES', '1'))

    # Outbound HTTP timeouts (seconds)
    HTTP_CONNECT_TIMEOUT = float(os.getenv('HTTP_CONNECT_TIMEOUT', '10'))
    HTTP_READ_TIMEOUT = float(os.getenv('HTTP_READ_TIMEOUT', '30'))

    # Unreachable-lead notifications: email first, SMS as optional fallback
    SMTP_HOST = os.getenv('SMTP_HOST', '')
    SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
    SMTP_USERNAME = os.getenv('SMTP_USERNAME', '')
    SMTP_PASSWORD = os.getenv('SMTP_PASSWORD', '')
    SMTP_SENDER = os.getenv('SMTP_SENDER', '') or SMTP_USERNAME
    SMTP_TIMEOUT = float(os.getenv('SMTP_TIMEOUT', '30'))
    NOTIFY_BRAND_NAME = os.getenv('NOTIFY_BRAND_NAME', 'our team')

    NOTIFY_SMS_ENABLED = _as_bool(os.getenv('NOTIFY_SMS_ENABLED', 'false'))
    TWILIO_ACCOUNT_SID = os.getenv('TWILIO_ACCOUNT_SID', '')
    TWILIO_AUTH_TOKEN = os.getenv('TWILIO_AUTH_TOKEN', '')
    TWILIO_FROM_NUMBER = os.getenv('TWILIO_FROM_NUMBER', '')


# Singleton instance
config = Config()
