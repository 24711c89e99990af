"""
msisdn.py
---------
HealthCloud Clinical Backend: Phone Number Normalisation
--------------------------------------------------------
Normalises an MSISDN to E.164. Numbers without a country code are taken to
be Kenyan (``+254``).

    normalize_msisdn("0712 345 678")  -> "+254712345678"
    normalize_msisdn("254712345678")  -> "+254712345678"
    normalize_msisdn("+15551234567")  -> "+15551234567"

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import re

from errors import InvalidInputError

DEFAULT_COUNTRY_CODE = "254"

_SEPARATORS = re.compile(r"[\s\-().]")
_LOCAL_KENYAN = re.compile(r"^0?([17]\d{8})$")
_KENYAN = re.compile(r"^(?:\+|00)?254([17]\d{8})$")
_INTERNATIONAL = re.compile(r"^(?:\+|00)([1-9]\d{7,14})$")


def normalize_msisdn(msisdn: str) -> str:
    """
    Return *msisdn* in E.164 form.

    Raises:
        InvalidInputError: if the number cannot be interpreted.
    """
    if not isinstance(msisdn, str) or not msisdn.strip():
        raise InvalidInputError("a phone number is required")

    compact = _SEPARATORS.sub("", msisdn.strip())

    match = _KENYAN.match(compact) or _LOCAL_KENYAN.match(compact)
    if match:
        return f"+{DEFAULT_COUNTRY_CODE}{match.group(1)}"

    match = _INTERNATIONAL.match(compact)
    if match:
        return f"+{match.group(1)}"

    raise InvalidInputError(f"invalid phone format: {msisdn!r}")
