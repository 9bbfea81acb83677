"""
Phone number helpers for WhatsApp channel addresses.
Addresses are stored digits-only with the country code, e.g. 919729360795.
"""

import re
from typing import Optional

from leadrelay.config import config

_NON_DIGITS = re.compile(r'\D')

# Longest prefix first so two-digit codes never shadow longer ones
COUNTRY_CODES = {
    '44': 'UK',
    '33': 'France',
    '34': 'Spain',
    '31': 'Netherlands',
    '32': 'Belgium',
    '91': 'India',
}

UNKNOWN_REGION = 'Unknown'


def normalize_phone(phone: Optional[str], default_country_code: Optional[str] = None) -> str:
    """
    Strip everything but digits. An 11-digit number with a leading zero is a
    national number: the zero is replaced by the default country code.

    >>> normalize_phone('+91 97293-60795')
    '919729360795'
    >>> normalize_phone('09729360795', '91')
    '919729360795'
    """
    cleaned = _NON_DIGITS.sub('', phone or '')
    if cleaned.startswith('0') and len(cleaned) == 11:
        code = default_country_code if default_country_code is not None else config.DEFAULT_COUNTRY_CODE
        return f"{code}{cleaned[1:]}"
    return cleaned


def is_valid_phone(phone: Optional[str]) -> bool:
    """Valid international numbers are 10-15 digits after normalisation."""
    formatted = normalize_phone(phone)
    return formatted.isdigit() and 10 <= len(formatted) <= 15


def region_from_phone(phone: Optional[str]) -> str:
    digits = _NON_DIGITS.sub('', phone or '')
    for code in sorted(COUNTRY_CODES, key=len, reverse=True):
        if digits.startswith(code):
            return COUNTRY_CODES[code]
    return UNKNOWN_REGION


def display_phone(phone: Optional[str]) -> str:
    """Readable form: +91 97293 60795 for 12+ digits, otherwise +<digits>."""
    cleaned = _NON_DIGITS.sub('', phone or '')
    if len(cleaned) >= 12:
        return f"+{cleaned[:2]} {cleaned[2:7]} {cleaned[7:]}"
    return f"+{cleaned}"
