"""
Unit tests for the unreachable-lead notifier (leadrelay/engine/notifier.py).
smtplib.SMTP and the Twilio client are patched where notifier imports them.
"""

import smtplib

import pytest
from unittest.mock import MagicMock, patch

from twilio.base.exceptions import TwilioException

from leadrelay.engine import notifier
from leadrelay.engine.notifier import (
    SUBJECT, build_email_body, build_sms_body, send_email, send_sms, notify_unreachable,
)


@pytest.fixture(autouse=True)
def settings(monkeypatch):
    for key, value in {
        'SMTP_HOST': 'smtp.example.com', 'SMTP_PORT': 587,
        'SMTP_USERNAME': 'ops@example.com', 'SMTP_PASSWORD': 'secret',
        'SMTP_SENDER': 'ops@example.com', 'NOTIFY_BRAND_NAME': 'Acme',
        'NOTIFY_SMS_ENABLED': False,
        'TWILIO_ACCOUNT_SID': 'AC1', 'TWILIO_AUTH_TOKEN': 'tok', 'TWILIO_FROM_NUMBER': '+15550001111',
    }.items():
        monkeypatch.setattr(notifier.config, key, value)


# ---------------------------------------------------------------------------
# Message bodies
# ---------------------------------------------------------------------------

def test_email_body_mentions_number_and_brand():
    body = build_email_body('Asha', '919729360795')
    assert 'Hello Asha' in body
    assert '919729360795' in body
    assert 'resubmit your form' in body
    assert 'Acme' in body


def test_bodies_fall_back_to_generic_name():
    assert 'Hello there' in build_email_body(None, None)
    assert 'Hi there' in build_sms_body(None, None)


# ---------------------------------------------------------------------------
# send_email
# ---------------------------------------------------------------------------

def test_send_email_success():
    with patch('leadrelay.engine.notifier.smtplib.SMTP') as mock_smtp:
        server = mock_smtp.return_value.__enter__.return_value
        assert send_email('asha@example.com', SUBJECT, 'body') is None
    server.starttls.assert_called_once()
    server.login.assert_called_once_with('ops@example.com', 'secret')
    assert server.sendmail.call_args[0][1] == ['asha@example.com']


def test_send_email_smtp_error_returns_message():
    with patch('leadrelay.engine.notifier.smtplib.SMTP') as mock_smtp:
        mock_smtp.return_value.__enter__.return_value.login.side_effect = \
            smtplib.SMTPAuthenticationError(535, b'bad credentials')
        error = send_email('asha@example.com', SUBJECT, 'body')
    assert error and 'bad credentials' in error


def test_send_email_unconfigured(monkeypatch):
    monkeypatch.setattr(notifier.config, 'SMTP_HOST', '')
    with patch('leadrelay.engine.notifier.smtplib.SMTP') as mock_smtp:
        assert send_email('asha@example.com', SUBJECT, 'body') == 'SMTP credentials not configured'
    mock_smtp.assert_not_called()


# ---------------------------------------------------------------------------
# send_sms
# ---------------------------------------------------------------------------

def test_send_sms_adds_plus_prefix():
    with patch('leadrelay.engine.notifier.TwilioClient') as mock_client:
        mock_client.return_value.messages.create.return_value = MagicMock(sid='SM1')
        assert send_sms('919729360795', 'hi') is None
    kwargs = mock_client.return_value.messages.create.call_args[1]
    assert kwargs['to'] == '+919729360795'
    assert kwargs['from_'] == '+15550001111'


def test_send_sms_twilio_error():
    with patch('leadrelay.engine.notifier.TwilioClient') as mock_client:
        mock_client.return_value.messages.create.side_effect = TwilioException('invalid number')
        assert 'invalid number' in send_sms('919729360795', 'hi')


# ---------------------------------------------------------------------------
# notify_unreachable
# ---------------------------------------------------------------------------

def test_notify_email_only_by_default():
    with patch('leadrelay.engine.notifier.send_email', return_value=None) as mock_email, \
         patch('leadrelay.engine.notifier.send_sms') as mock_sms:
        result = notify_unreachable('asha@example.com', '919729360795', 'Asha')
    assert result.success is True
    assert result.email_sent is True
    assert result.sms_sent is False
    mock_email.assert_called_once()
    mock_sms.assert_not_called()


def test_notify_sms_rescues_failed_email(monkeypatch):
    monkeypatch.setattr(notifier.config, 'NOTIFY_SMS_ENABLED', True)
    with patch('leadrelay.engine.notifier.send_email', return_value='connection refused'), \
         patch('leadrelay.engine.notifier.send_sms', return_value=None):
        result = notify_unreachable('asha@example.com', '919729360795', 'Asha')
    assert result.success is True
    assert result.sms_sent is True
    assert 'connection refused' in result.error


def test_notify_all_channels_fail():
    with patch('leadrelay.engine.notifier.send_email', return_value='connection refused'):
        result = notify_unreachable('asha@example.com', '919729360795', 'Asha')
    assert result.success is False
    assert result.error == 'email: connection refused'


def test_notify_without_email_address():
    with patch('leadrelay.engine.notifier.send_email') as mock_email:
        result = notify_unreachable(None, '919729360795', 'Asha')
    assert result.success is False
    mock_email.assert_not_called()
