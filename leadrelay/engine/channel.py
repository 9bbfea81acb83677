"""
Messaging Channel Client - WhatsApp Cloud API.
Sends text, template and media messages from the single configured sender.

Every call returns a SendResult; HTTP, auth, rate-limit and network errors
come back as SendResult(success=False, error=...) instead of raising.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from leadrelay.config import config
from leadrelay.models import SendResult

logger = logging.getLogger(__name__)

MEDIA_TYPES = ('image', 'video', 'document', 'audio')
_CAPTIONED_MEDIA = ('image', 'video', 'document')


def _messages_url() -> str:
    return f"{config.WHATSAPP_API_URL}/{config.WHATSAPP_PHONE_NUMBER_ID}/messages"


def _error_detail(exc: requests.exceptions.RequestException) -> Any:
    """Prefer the provider's JSON error body over the exception text."""
    response = getattr(exc, 'response', None)
    if response is not None:
        try:
            return response.json()
        except ValueError:
            return response.text or str(exc)
    return str(exc)


def _post(payload: Dict[str, Any], action: str) -> SendResult:
    if not config.WHATSAPP_ACCESS_TOKEN or not config.WHATSAPP_PHONE_NUMBER_ID:
        logger.error(f"{action}: WhatsApp credentials not configured")
        return SendResult(success=False, error='WhatsApp credentials not configured')

    headers = {
        "Authorization": f"Bearer {config.WHATSAPP_ACCESS_TOKEN}",
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(
            _messages_url(),
            json=payload,
            headers=headers,
            timeout=(config.HTTP_CONNECT_TIMEOUT, config.HTTP_READ_TIMEOUT),
        )
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        error = _error_detail(e)
        logger.error(f"{action} to {payload.get('to')} failed: {error}")
        return SendResult(success=False, error=error)
    except ValueError as e:
        logger.error(f"{action} to {payload.get('to')}: unreadable response: {e}")
        return SendResult(success=False, error=f"Unexpected WhatsApp response format: {e}")

    if not isinstance(data, dict):
        logger.error(f"{action} to {payload.get('to')}: unexpected response body {data!r}")
        return SendResult(success=False, error=f"Unexpected WhatsApp response format: {type(data).__name__}")

    messages = data.get('messages')
    first = messages[0] if isinstance(messages, list) and messages and isinstance(messages[0], dict) else {}
    message_id = first.get('id')
    logger.info(f"{action} sent to {payload.get('to')} (message {message_id})")
    return SendResult(success=True, message_id=message_id, data=data)


def send_text(to: str, body: str) -> SendResult:
    """Send a free-form text message. Only accepted inside an open session window."""
    preview = body[:50] + ('...' if len(body) > 50 else '')
    logger.debug(f"send_text to={to} body={preview!r}")
    return _post({
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "text",
        "text": {"preview_url": False, "body": body},
    }, 'Text message')


def send_template(
    to: str,
    template_name: str,
    language_code: str = 'en',
    params: Optional[List[str]] = None,
) -> SendResult:
    """
    Send an approved template message.

    Args:
        to: Recipient channel address (digits only)
        template_name: Name of the approved template
        language_code: Template language, e.g. 'en' or 'en_US'
        params: Body parameters substituted into the template, in order
    """
    template: Dict[str, Any] = {
        "name": template_name,
        "language": {"code": language_code},
    }
    if params:
        template["components"] = [{
            "type": "body",
            "parameters": [{"type": "text", "text": p} for p in params],
        }]

    return _post({
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": template,
    }, f"Template '{template_name}'")


def send_media(to: str, media_type: str, url: str, caption: Optional[str] = None) -> SendResult:
    """Send an image, video, document or audio message by public URL."""
    if media_type not in MEDIA_TYPES:
        return SendResult(success=False, error=f"Unsupported media type '{media_type}'")

    media: Dict[str, Any] = {"link": url}
    if caption and media_type in _CAPTIONED_MEDIA:
        media["caption"] = caption

    return _post({
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": media_type,
        media_type: media,
    }, f"Media ({media_type})")


def mark_as_read(message_id: str) -> SendResult:
    return _post({
        "messaging_product": "whatsapp",
        "status": "read",
        "message_id": message_id,
    }, 'Read receipt')


def send_session_opener(to: str, display_name: Optional[str] = None) -> SendResult:
    """Send the configured opener template, which opens a new session window."""
    return send_template(
        to,
        config.OPENER_TEMPLATE_NAME,
        config.OPENER_TEMPLATE_LANGUAGE,
        [display_name or config.REMINDER_NAME_FALLBACK],
    )
