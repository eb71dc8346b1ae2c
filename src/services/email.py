"""
Email header utilities used by the DSN parser.

This module provides reusable functions for decoding header values, parsing
header dates and isolating the header block of a raw message.
"""

import base64
import binascii
import logging
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

ENCODED_WORD_PREFIX = '=?'
BASE64_UTF8_PREFIX = '=?utf-8?B?'

_RE_BASE64_UTF8_PREFIX = re.compile(re.escape(BASE64_UTF8_PREFIX), re.IGNORECASE)


def decode_header_value(value: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Decode a header value encoded with the "=?utf-8?B?...?=" scheme.

    Several encoded words may follow each other, with or without separators.
    Quoted-printable encoded words ("=?utf-8?Q?...?=") are not supported.

    Args:
        value: Raw header value

    Returns:
        (success, decoded): success is True with the decoded text, or with the
        value unchanged when it is not encoded. On failure the decoded value
        is None and the caller should keep the raw value.

    Example:
        >>> decode_header_value("=?utf-8?B?SGVsbG8=?=")
        (True, 'Hello')
        >>> decode_header_value("=?utf-8?Q?Hello?=")
        (False, None)
    """
    if not value:
        return True, value

    if not value.startswith(ENCODED_WORD_PREFIX):
        return True, value

    if not _RE_BASE64_UTF8_PREFIX.match(value):
        # Quoted-printable and other charsets are not supported
        logger.debug(f"Unsupported header encoding: {value}")
        return False, None

    decoded = ''
    for segment in _RE_BASE64_UTF8_PREFIX.split(value):
        if not segment:
            continue
        encoded = segment.split('?', 1)[0]
        try:
            decoded += base64.b64decode(encoded, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.debug(f"Failed to decode string '{encoded}' (value: '{value}'): {e}")
            return False, None

    return True, decoded


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a header date like "Mon, 23 Apr 2012 22:26:32 +0100".

    Args:
        value: Date header value

    Returns:
        datetime, or None if the value cannot be parsed
    """
    if not value:
        return None
    try:
        return parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError) as e:
        logger.debug(f"Date specified can not be parsed (unexpected format): '{value}': {e}")
        return None


def extract_header_block(raw_message: str) -> str:
    """
    Return the header section of a raw message (everything before the first
    empty line).

    Args:
        raw_message: Raw email content as a string (RFC 822 format)

    Returns:
        str: Header lines, or the whole message if it has no body
    """
    match = re.search(r'\r?\n\r?\n', raw_message)
    if match is None:
        return raw_message
    return raw_message[:match.start()]
