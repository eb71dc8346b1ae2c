"""
Delivery Status Notification (RFC 3464) parsing.

This module detects DSN messages and extracts their report without a general
MIME parser: the message is scanned line by line, which tolerates the many
slightly malformed reports MTAs produce.

Usage:
    from services import dsn

    if dsn.is_dsn(header_text):
        report = dsn.try_create(raw_message)
        if report is not None:
            for address, status in report.status.items():
                print(address, status.most_significant_status_code)
"""

import io
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from domain.errors import DsnParseError, StatusError
from domain.models import DeliveryReport, Status
from services.email import parse_date

logger = logging.getLogger(__name__)

RETURN_PATH_NULL = 'return-path: <>'
FIELD_CONTENT_TYPE = 'content-type:'
REPORT_MARKER = 'report-type=delivery-status'
FIELD_BOUNDARY = 'boundary='
FIELD_DATE = 'Date:'
CONTENT_TYPE_DELIVERY_STATUS = 'content-type: message/delivery-status'
CONTENT_TYPES_ORIGINAL_MESSAGE = (
    'content-type: text/rfc822-headers',
    'content-type: message/rfc822',
)
RECIPIENT_PREFIX = 'rfc822;'

# Quote and space end a boundary value
BOUNDARY_SEPARATORS = '" '

# First character of a continuation line
LINE_CONTINUE_CHARS = ' \t'

# Boundary-delimited parts searched for the original message
MAX_PARTS_TO_ORIGINAL_MESSAGE = 2


class LineReader:
    """
    Positioned line reader over an in-memory message.

    CRLF, LF and CR line endings are all accepted. Lines are returned without
    their line terminator; None marks the end of input.
    """

    def __init__(self, text: str):
        self._stream = io.StringIO(text, newline=None)
        self._next: Optional[str] = None

    def read_line(self) -> Optional[str]:
        """Read one physical line."""
        if self._next is not None:
            line, self._next = self._next, None
            return line
        line = self._stream.readline()
        if not line:
            return None
        return line[:-1] if line.endswith('\n') else line

    def peek_line(self) -> Optional[str]:
        """Return the next physical line without consuming it."""
        if self._next is None:
            self._next = self.read_line()
        return self._next

    def fold(self, line: Optional[str]) -> Optional[str]:
        """
        Append the continuation lines following a header line.

        Each continuation line is joined with a single space once its leading
        spaces and tabs are removed.
        """
        if line is None:
            return None
        while True:
            following = self.peek_line()
            if not following or following[0] not in LINE_CONTINUE_CHARS:
                return line
            self.read_line()
            line += ' ' + following.lstrip(LINE_CONTINUE_CHARS)

    def read_logical_line(self) -> Optional[str]:
        """Read a line with its continuation lines folded in."""
        return self.fold(self.read_line())

    def close(self) -> None:
        self._next = None
        self._stream.close()

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def __enter__(self) -> 'LineReader':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


@dataclass
class _RecipientBlock:
    """Fields collected for one Final-Recipient block."""
    recipient: str
    action: Optional[str] = None
    status: Optional[str] = None
    diagnostic_code: Optional[str] = None
    will_retry_until: Optional[str] = None

    def to_status(self) -> Status:
        return Status.create(
            self.action,
            self.status,
            self.diagnostic_code,
            will_retry_until=parse_date(self.will_retry_until)
        )


def detect(raw_headers: str) -> Tuple[bool, Optional[LineReader], Optional[str]]:
    """
    Identify the headers of a Delivery Status Notification.

    The message must start with a null return path ("Return-path: <>") and
    declare a "multipart/report" content type with
    "report-type=delivery-status" and a boundary.

    Args:
        raw_headers: Raw message, or only its headers

    Returns:
        (is_dsn, reader, boundary): when is_dsn is True, reader is positioned
        after the Content-Type header and the caller must close it. Otherwise
        reader and boundary are None.
    """
    if not raw_headers.lower().startswith(RETURN_PATH_NULL):
        return False, None, None

    reader = LineReader(raw_headers)
    try:
        while True:
            line = reader.read_logical_line()
            if line is None:
                break
            boundary = _find_report_boundary(line)
            if boundary:
                return True, reader, boundary
    except Exception:
        reader.close()
        raise

    reader.close()
    return False, None, None


def _find_report_boundary(line: str) -> Optional[str]:
    """Get the boundary of a "Content-Type: ...; report-type=delivery-status" line."""
    lowered = line.lower()
    if not lowered.startswith(FIELD_CONTENT_TYPE):
        return None

    marker = lowered.find(REPORT_MARKER, len(FIELD_CONTENT_TYPE))
    if marker == -1:
        return None

    # The boundary parameter may come before or after the report type
    start = lowered.find(FIELD_BOUNDARY, len(FIELD_CONTENT_TYPE))
    if start == -1:
        return None

    value = line[start + len(FIELD_BOUNDARY):]
    end = len(value)
    # The first character may be the opening quote
    for index, char in enumerate(value[1:], start=1):
        if char in BOUNDARY_SEPARATORS:
            end = index
            break

    boundary = value[:end].lstrip(BOUNDARY_SEPARATORS).rstrip(';')
    return boundary or None


def is_dsn(raw_headers: str) -> bool:
    """
    Check whether a message is a Delivery Status Notification.

    Only the headers are needed, so this can run before downloading the
    whole message.

    Args:
        raw_headers: Raw message, or only its headers

    Returns:
        bool: True if a report has been identified

    Raises:
        ValueError: If raw_headers is None
    """
    if raw_headers is None:
        raise ValueError("raw_headers cannot be None")

    found, reader, _ = detect(raw_headers)
    if reader is not None:
        reader.close()
    return found


def try_create(raw_message: str) -> Optional[DeliveryReport]:
    """
    Parse a raw message and return its DSN report.

    Args:
        raw_message: Raw email content as a string (RFC 822 format)

    Returns:
        DeliveryReport, or None if the message is not a DSN or the DSN is
        malformed

    Raises:
        ValueError: If raw_message is None
        DsnParseError: If parsing fails for an unexpected reason
    """
    if raw_message is None:
        raise ValueError("raw_message cannot be None")

    found, reader, boundary = detect(raw_message)
    if not found:
        return None

    with reader:
        try:
            return _parse_report(reader, boundary, raw_message)
        except StatusError as e:
            logger.warning(f"Failed to parse this message: {e}")
            logger.debug(f"Unparseable report:\n{raw_message}")
            return None
        except Exception as e:
            logger.error(f"Failed to parse this message: {e}", exc_info=True)
            raise DsnParseError(
                f"Failed to parse this message: {e}\n{raw_message}",
                raw_message=raw_message
            ) from e


def _parse_report(reader: LineReader, boundary: str, raw_message: str) -> Optional[DeliveryReport]:
    """Parse the body of a detected DSN, starting after its Content-Type header."""
    boundary_line = f"--{boundary}"

    def is_boundary(line: str) -> bool:
        line = line.rstrip()
        return line == boundary_line or line == boundary_line + '--'

    # Skip the content preceding the delivery-status part
    line = reader.read_line()
    while line is not None and not is_boundary(line):
        line = reader.read_line()
    line = reader.read_line()
    while (line is not None
           and not is_boundary(line)
           and not line.lower().startswith(CONTENT_TYPE_DELIVERY_STATUS)):
        line = reader.read_line()
    if line is None:
        logger.debug("Delivery status part not found")
        return None

    report_date = parse_date(_find_report_date(raw_message))

    report_fields: Dict[str, Optional[str]] = {
        'reporting-mta': None,
        'received-from-mta': None,
        'arrival-date': None,
    }
    statuses: Dict[str, Status] = {}
    raw_report: List[str] = []

    while True:
        line = reader.read_logical_line()
        if line is None or is_boundary(line):
            break
        raw_report.append(line)
        parsed = _split_field(line)
        if parsed is None:
            continue
        name, value = parsed
        key = name.lower()
        if key in report_fields:
            report_fields[key] = value
        elif key == 'final-recipient':
            line = _parse_recipients(reader, is_boundary, value, statuses, raw_report)
            break
        else:
            logger.debug(f"Unknown field: {name}={value}")

    original_headers = _parse_original_headers(reader, is_boundary, line)

    return DeliveryReport(
        date=report_date,
        reporting_mta=report_fields['reporting-mta'],
        received_from_mta=report_fields['received-from-mta'],
        arrival_date=parse_date(report_fields['arrival-date']),
        status=statuses,
        raw_report=''.join(f"{raw_line}\n" for raw_line in raw_report),
        original_message_headers=original_headers
    )


def _parse_recipients(
    reader: LineReader,
    is_boundary: Callable[[str], bool],
    first_recipient: str,
    statuses: Dict[str, Status],
    raw_report: List[str]
) -> Optional[str]:
    """
    Parse the recipient blocks of the report.

    Every block starts with a Final-Recipient field and ends at the next one,
    at the end of the part or at the end of input.

    Returns:
        The line that ended the last block (boundary line or None)
    """
    block = _RecipientBlock(recipient=_strip_recipient_prefix(first_recipient))
    while True:
        line = reader.read_logical_line()
        if line is None or is_boundary(line):
            break
        raw_report.append(line)
        parsed = _split_field(line)
        if parsed is None:
            continue
        name, value = parsed
        key = name.lower()
        if key == 'action':
            block.action = value
        elif key == 'status':
            block.status = value
        elif key == 'diagnostic-code':
            block.diagnostic_code = value
        elif key == 'will-retry-until':
            block.will_retry_until = value
        elif key == 'final-recipient':
            statuses[block.recipient] = block.to_status()
            block = _RecipientBlock(recipient=_strip_recipient_prefix(value))
        else:
            logger.debug(f"Unknown field: {name}={value}")

    statuses[block.recipient] = block.to_status()
    return line


def _parse_original_headers(
    reader: LineReader,
    is_boundary: Callable[[str], bool],
    line: Optional[str]
) -> List[Tuple[str, str]]:
    """
    Find the original message part and read its headers.

    The line that ended the report may already be the Content-Type of the
    original message. The search stops after two boundary-delimited parts.
    """
    for _ in range(MAX_PARTS_TO_ORIGINAL_MESSAGE):
        if line is None:
            line = ''
        while not _is_original_content_type(line):
            line = reader.read_line()
            if line is None or is_boundary(line):
                break
        if line is not None and _is_original_content_type(line):
            break

    if line is None or not _is_original_content_type(line):
        logger.debug("Original message not identified!")
        return []

    headers: List[Tuple[str, str]] = []
    header_seen = False
    while True:
        line = reader.read_line()
        if line is None or is_boundary(line):
            break
        if line == '':
            # Empty lines may precede the headers, the first one after a
            # header separates the headers from the body
            if header_seen:
                break
            continue
        line = reader.fold(line)
        header_seen = True
        parsed = _split_field(line)
        if parsed is not None:
            headers.append(parsed)
    return headers


def _is_original_content_type(line: str) -> bool:
    return line.lower().startswith(CONTENT_TYPES_ORIGINAL_MESSAGE)


def _split_field(line: str) -> Optional[Tuple[str, str]]:
    """Split a "Name: value" line, or return None if it has no colon."""
    name, sep, value = line.partition(':')
    if not sep:
        return None
    return name.strip(), value.strip()


def _strip_recipient_prefix(value: str) -> str:
    """Remove the address type, e.g. "rfc822; name@domain.com" -> "name@domain.com"."""
    if value.lower().startswith(RECIPIENT_PREFIX):
        return value[len(RECIPIENT_PREFIX):].lstrip()
    return value


def _find_report_date(raw_message: str) -> Optional[str]:
    """
    Get the Date header of the report straight from the raw message.

    A value folded on a second line is supported.
    """
    start = raw_message.find(f"\n{FIELD_DATE}")
    if start == -1:
        return None
    start += 1 + len(FIELD_DATE)

    end = raw_message.find('\n', start)
    if end == -1:
        return raw_message[start:].strip()
    date = raw_message[start:end].strip()

    following = end + 1
    if following < len(raw_message) and raw_message[following] in LINE_CONTINUE_CHARS:
        following_end = raw_message.find('\n', following)
        if following_end != -1:
            date += ' ' + raw_message[following:following_end].strip()
    return date
