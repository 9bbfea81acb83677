"""
Unit tests for the HubSpot lead source client (leadrelay/engine/lead_source.py).
requests.get is patched; no network access.
"""

import pytest
import requests
from unittest.mock import MagicMock, patch

from leadrelay.engine import lead_source
from leadrelay.engine.lead_source import LeadSourceError, list_submissions


RAW_PAGE = {
    'results': [
        {
            'submittedAt': 1709280000000,
            'pageUrl': 'https://example.com/contact',
            'values': [
                {'name': 'email', 'value': 'asha@example.com'},
                {'name': 'phone', 'value': '+91 97293 60795'},
                {'name': 'firstname', 'value': 'Asha'},
                {'name': 'email', 'value': 'second@example.com'},
            ],
        },
    ],
    'offset': 50,
    'hasMore': True,
}


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setattr(lead_source.config, 'HUBSPOT_API_KEY', 'pat-123')


def _response(data):
    response = MagicMock()
    response.json.return_value = data
    response.raise_for_status.return_value = None
    return response


def test_parses_page():
    with patch('leadrelay.engine.lead_source.requests.get', return_value=_response(RAW_PAGE)):
        page = list_submissions('form-1')

    assert page.has_more is True
    assert page.next_cursor == '50'
    assert len(page.items) == 1
    submission = page.items[0]
    assert submission.submitted_at == '1709280000000'
    assert submission.page_url == 'https://example.com/contact'
    assert submission.values['phone'] == '+91 97293 60795'


def test_first_value_per_field_wins():
    with patch('leadrelay.engine.lead_source.requests.get', return_value=_response(RAW_PAGE)):
        page = list_submissions('form-1')
    assert page.items[0].values['email'] == 'asha@example.com'


def test_request_shape():
    with patch('leadrelay.engine.lead_source.requests.get', return_value=_response(RAW_PAGE)) as mock_get:
        list_submissions('form-1', cursor='50', page_size=10)

    url = mock_get.call_args[0][0]
    kwargs = mock_get.call_args[1]
    assert url.endswith('/form-integrations/v1/submissions/forms/form-1')
    assert kwargs['params'] == {'limit': 10, 'offset': '50'}
    assert kwargs['headers']['Authorization'] == 'Bearer pat-123'


def test_first_page_sends_no_offset():
    with patch('leadrelay.engine.lead_source.requests.get', return_value=_response(RAW_PAGE)) as mock_get:
        list_submissions('form-1')
    assert 'offset' not in mock_get.call_args[1]['params']


def test_last_page():
    data = {'results': [], 'hasMore': False}
    with patch('leadrelay.engine.lead_source.requests.get', return_value=_response(data)):
        page = list_submissions('form-1')
    assert page.items == []
    assert page.has_more is False
    assert page.next_cursor is None


def test_http_error_raises_lead_source_error():
    with patch('leadrelay.engine.lead_source.requests.get',
               side_effect=requests.exceptions.HTTPError('401 Unauthorized')):
        with pytest.raises(LeadSourceError, match='form-1'):
            list_submissions('form-1')


def test_bad_json_raises_lead_source_error():
    response = _response(None)
    response.json.side_effect = ValueError('Expecting value')
    with patch('leadrelay.engine.lead_source.requests.get', return_value=response):
        with pytest.raises(LeadSourceError, match='format'):
            list_submissions('form-1')


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(lead_source.config, 'HUBSPOT_API_KEY', '')
    with pytest.raises(LeadSourceError, match='HUBSPOT_API_KEY'):
        list_submissions('form-1')
