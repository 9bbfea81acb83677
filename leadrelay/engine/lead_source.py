"""
Lead Source Client - HubSpot form submissions feed.
Paginated, read-only access keyed by form GUID and an opaque offset cursor.
"""

import logging
from typing import Optional

import requests

from leadrelay.config import config
from leadrelay.models import Submission, SubmissionPage

logger = logging.getLogger(__name__)


class LeadSourceError(RuntimeError):
    """The submissions feed could not be read."""


def _parse_submission(raw: dict) -> Submission:
    values = {}
    for item in raw.get('values') or []:
        name = item.get('name')
        if name and name not in values:
            values[name] = item.get('value')
    return Submission(
        submitted_at=str(raw.get('submittedAt', '')),
        values=values,
        page_url=raw.get('pageUrl'),
    )


def list_submissions(feed_id: str, cursor: Optional[str] = None, page_size: Optional[int] = None) -> SubmissionPage:
    """
    Fetch one page of form submissions.

    Args:
        feed_id: HubSpot form GUID
        cursor: Offset returned by the previous page (None on first call)
        page_size: Max submissions per page (defaults to LEAD_SOURCE_PAGE_SIZE)

    Returns: SubmissionPage
    Raises: LeadSourceError on transport or response-format problems
    """
    if not config.HUBSPOT_API_KEY:
        raise LeadSourceError("HUBSPOT_API_KEY not set in environment")

    url = f"{config.HUBSPOT_API_URL}/form-integrations/v1/submissions/forms/{feed_id}"
    params = {'limit': page_size or config.LEAD_SOURCE_PAGE_SIZE}
    if cursor is not None:
        params['offset'] = cursor

    headers = {"Authorization": f"Bearer {config.HUBSPOT_API_KEY}"}

    try:
        logger.debug(f"Fetching submissions for feed {feed_id} (cursor={cursor})")
        response = requests.get(
            url,
            headers=headers,
            params=params,
            timeout=(config.HTTP_CONNECT_TIMEOUT, config.HTTP_READ_TIMEOUT),
        )
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error(f"HubSpot API error for feed {feed_id}: {e}")
        raise LeadSourceError(f"Failed to list submissions for {feed_id}: {e}")
    except ValueError as e:
        logger.error(f"HubSpot response parse error for feed {feed_id}: {e}")
        raise LeadSourceError(f"Unexpected HubSpot response format: {e}")

    items = [_parse_submission(raw) for raw in data.get('results') or []]
    next_cursor = data.get('offset')
    page = SubmissionPage(
        items=items,
        next_cursor=str(next_cursor) if next_cursor is not None else None,
        has_more=bool(data.get('hasMore')),
    )
    logger.info(f"Feed {feed_id}: fetched {len(items)} submissions (has_more={page.has_more})")
    return page
