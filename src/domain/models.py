"""
Data models for DSN processing domain.

These type-safe data structures define clear contracts between components.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Dict, Any, Tuple

from services.email import decode_header_value
from .diagnostics import resolve_inner_code
from .errors import MissingStatusFieldError, UnknownActionError, UnknownStatusError
from .status_codes import (
    StatusClass,
    StatusCodeClassification,
    StatusDetail,
    classification_to_string,
    classify,
)

_RE_MAILBOX_IS_FULL = re.compile(r'Mailbox .*?is full', re.IGNORECASE)

# Descriptions of a non-existent address (commonly sent with a generic 5.5.0)
_RE_MAILBOX_NOT_FOUND = re.compile(
    r'(Invalid recipient'
    r'|(User account is|Mailbox|Account|Address) (unavailable|rejected|not available|does not exist)'
    r'|No such user'
    r'|Not our customer)',
    re.IGNORECASE
)


class ActionStatus(Enum):
    """
    Values of the "Action" field of a recipient block (RFC 3464, 2.3.3).

    - FAILED: delivery abandoned, no further notifications
    - DELAYED: not delivered yet, the MTA keeps trying
    - DELIVERED: delivered to the recipient (terminal state)
    - RELAYED: relayed into an environment that does not send DSNs
    - EXPANDED: delivered and forwarded to multiple additional recipients
    """
    FAILED = 'failed'
    DELAYED = 'delayed'
    DELIVERED = 'delivered'
    RELAYED = 'relayed'
    EXPANDED = 'expanded'

    @classmethod
    def parse(cls, value: str) -> 'ActionStatus':
        """Parse an Action field value, ignoring case and trailing comments."""
        # Some MTAs put comments after the action word
        words = value.split()
        try:
            return cls(words[0].lower())
        except (IndexError, ValueError):
            raise UnknownActionError(f"Action '{value}' is not a valid RFC 3464 action") from None

    def __str__(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class Status:
    """
    Delivery status of one recipient.

    Attributes:
        action: Action performed by the reporting MTA
        status_code: Status field value (e.g. "5.1.1")
        classification: Classification of status_code
        diagnostic_code: Response of the final MTA, if reported
        inner_code: Code found in diagnostic_code and more specific than
            status_code, with its classification
        will_retry_until: Date up to which the MTA keeps retrying (delayed only)
    """
    action: ActionStatus
    status_code: str
    classification: StatusCodeClassification
    diagnostic_code: Optional[str] = None
    inner_code: Optional[Tuple[str, StatusCodeClassification]] = None
    will_retry_until: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        action: Optional[str],
        status_code: Optional[str],
        diagnostic_code: Optional[str] = None,
        will_retry_until: Optional[datetime] = None
    ) -> 'Status':
        """
        Build a Status from the fields of a recipient block.

        Args:
            action: Action field, e.g. "failed"
            status_code: Status field, e.g. "5.1.1"
            diagnostic_code: Diagnostic-Code field (optional)
            will_retry_until: Parsed Will-Retry-Until field (optional)

        Returns:
            Status

        Raises:
            MissingStatusFieldError: If action or status_code is empty
            UnknownStatusError: If status_code does not start with a digit
            UnknownActionError: If action is not an RFC 3464 action
            MalformedCodeError: If status_code is not in the X.X.X format
            UnsupportedClassError: If the class of status_code is not 2, 4 or 5
        """
        if not action:
            raise MissingStatusFieldError("action is required")
        if not status_code:
            raise MissingStatusFieldError("status_code is required")
        if not status_code[0].isdigit():
            raise UnknownStatusError(status_code)

        classification = classify(status_code)
        return cls(
            action=ActionStatus.parse(action),
            status_code=status_code,
            classification=classification,
            diagnostic_code=diagnostic_code,
            inner_code=resolve_inner_code(diagnostic_code, classification),
            will_retry_until=will_retry_until
        )

    @property
    def most_significant_status_code(self) -> str:
        """Code from diagnostic_code if more precise, else status_code."""
        return self.inner_code[0] if self.inner_code else self.status_code

    @property
    def most_significant_classification(self) -> StatusCodeClassification:
        return self.inner_code[1] if self.inner_code else self.classification

    @property
    def is_permanent_failure(self) -> bool:
        return self.classification.status_class is StatusClass.PERMANENT_FAILURE

    @property
    def is_temporary_failure(self) -> bool:
        """
        Check if status_code is a temporary error.

        A delayed message (typically 4.4.7) is excluded: its final state is
        not known yet.
        """
        return (
            self.action is not ActionStatus.DELAYED
            and self.classification.status_class is StatusClass.PERSISTENT_TRANSIENT_FAILURE
        )

    @property
    def is_delayed(self) -> bool:
        return self.action is ActionStatus.DELAYED

    @property
    def is_mail_address_unknown(self) -> bool:
        """Check if the recipient address does not exist."""
        if self.most_significant_classification.detail is StatusDetail.BAD_DESTINATION_MAILBOX_ADDRESS:
            return True
        return bool(self.diagnostic_code and _RE_MAILBOX_NOT_FOUND.search(self.diagnostic_code))

    @property
    def is_mailbox_full(self) -> bool:
        """
        Check if the recipient mailbox is full.

        MailSystemFull (X.3.1) means the whole system is out of storage and
        is not treated as a full mailbox.
        """
        if self.most_significant_classification.detail is StatusDetail.MAILBOX_FULL:
            return True
        return bool(self.diagnostic_code and _RE_MAILBOX_IS_FULL.search(self.diagnostic_code))

    def most_significant_classification_string(self) -> str:
        return classification_to_string(self.most_significant_classification)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            'action': self.action.value,
            'status_code': self.status_code,
            'most_significant_status_code': self.most_significant_status_code,
            'classification': self.most_significant_classification_string(),
            'diagnostic_code': self.diagnostic_code,
            'will_retry_until': self.will_retry_until.isoformat() if self.will_retry_until else None,
            'is_permanent_failure': self.is_permanent_failure,
            'is_temporary_failure': self.is_temporary_failure,
            'is_mail_address_unknown': self.is_mail_address_unknown,
            'is_mailbox_full': self.is_mailbox_full,
        }

    def __str__(self) -> str:
        return (
            f"{self.action} ({self.most_significant_status_code}: "
            f"{self.most_significant_classification_string()})"
        )


@dataclass
class DeliveryReport:
    """
    Delivery status notification of a message that could not be delivered
    to one or more recipients.

    Attributes:
        uid: Arbitrary identifier set by the caller, never filled by parsing
        date: Date header of the report
        reporting_mta: Reporting-MTA field (mandatory in RFC 3464)
        received_from_mta: Received-From-MTA field
        arrival_date: Arrival-Date field
        status: Status by recipient address
        raw_report: Text of the message/delivery-status part
        original_message_headers: (name, value) headers of the undelivered
            message, in order, duplicates included

    Only uid is meant to be assigned after construction. status is exposed
    as a read-only mapping and original_message_headers as a tuple.
    """
    uid: Optional[str] = None
    date: Optional[datetime] = None
    reporting_mta: Optional[str] = None
    received_from_mta: Optional[str] = None
    arrival_date: Optional[datetime] = None
    status: Mapping[str, Status] = field(default_factory=dict)
    raw_report: str = ''
    original_message_headers: Tuple[Tuple[str, str], ...] = ()

    def __post_init__(self):
        self.status = MappingProxyType(dict(self.status))
        self.original_message_headers = tuple(self.original_message_headers)

    @property
    def failed_recipients(self) -> List[str]:
        """Recipients whose status is a permanent failure."""
        return [address for address, status in self.status.items() if status.is_permanent_failure]

    def get_original_message_headers(self, decode: bool = False) -> List[Tuple[str, str]]:
        """
        Get the headers of the original message.

        Args:
            decode: Decode values encoded with the "=?utf-8?B?" scheme, keeping
                the raw value when decoding fails

        Returns:
            List of (name, value) pairs
        """
        if not decode:
            return list(self.original_message_headers)
        return [(name, _decoded(value)) for name, value in self.original_message_headers]

    def get_original_message_header(self, name: str, decode: bool = False) -> List[str]:
        """
        Get every value of one header of the original message.

        Args:
            name: Header name (e.g. "To"), matched case-insensitively
            decode: Decode base64 encoded values (see get_original_message_headers)

        Returns:
            List of values (duplicates allowed), empty if the header is absent
        """
        wanted = name.lower()
        values = [value for key, value in self.original_message_headers if key.lower() == wanted]
        if decode:
            return [_decoded(value) for value in values]
        return values

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            'uid': self.uid,
            'date': self.date.isoformat() if self.date else None,
            'reporting_mta': self.reporting_mta,
            'received_from_mta': self.received_from_mta,
            'arrival_date': self.arrival_date.isoformat() if self.arrival_date else None,
            'status': {address: status.to_dict() for address, status in self.status.items()},
            'original_message_headers': [
                {'name': name, 'value': value}
                for name, value in self.get_original_message_headers(decode=True)
            ],
        }


def _decoded(value: str) -> str:
    success, decoded = decode_header_value(value)
    return decoded if success else value


@dataclass
class BounceMetadata:
    """
    Structured metadata of a bounce message extracted from SES notification.

    Attributes:
        message_id: Unique SQS message identifier
        from_address: Sender of the bounce (usually the MAILER-DAEMON)
        subject: Subject line of the bounce
        timestamp: ISO 8601 timestamp when the bounce was received
        bucket_name: S3 bucket containing the raw message
        object_key: S3 object key for the raw message
    """
    message_id: str
    from_address: str
    subject: str
    timestamp: str
    bucket_name: str
    object_key: str


@dataclass
class ProcessingResult:
    """
    Result of bounce processing operation.

    Attributes:
        success: Whether processing succeeded
        message_id: SQS message identifier
        metadata: Bounce metadata (if parsing the notification succeeded)
        report: Parsed DSN (None if the message is not a parseable DSN)
        error_message: Error description (if processing failed)
    """
    success: bool
    message_id: str
    metadata: Optional[BounceMetadata] = None
    report: Optional[DeliveryReport] = None
    error_message: Optional[str] = None

    @property
    def is_dsn(self) -> bool:
        return self.report is not None

    @property
    def should_delete_message(self) -> bool:
        """Always True - delete all messages to prevent infinite retries."""
        return True

    def __repr__(self) -> str:
        """Human-readable representation for logging."""
        if self.success:
            return f"ProcessingResult(success=True, message_id={self.message_id}, is_dsn={self.is_dsn})"
        else:
            return f"ProcessingResult(success=False, message_id={self.message_id}, error={self.error_message})"
