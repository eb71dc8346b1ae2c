"""
Enhanced mail system status codes (RFC 3463).

A status code has the form "class.subject.detail" (e.g. "5.1.1"). This module
maps such a code onto a three-tier classification:

- StatusClass: success, persistent transient failure or permanent failure
- StatusSubject: which part of the mail system the status refers to
- StatusDetail: the precise condition, when the subject/detail pair is known

Unknown subjects and details are valid extension points, so classification
only fails when the code is malformed or its class is not 2, 4 or 5.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

from .errors import MalformedCodeError, UnsupportedClassError

logger = logging.getLogger(__name__)


class _Facet(Enum):
    """Enum whose members are ranked by declaration order."""

    @property
    def label(self) -> str:
        return self.value

    @property
    def ordinal(self) -> int:
        return list(type(self)).index(self)


class StatusClass(_Facet):
    """First digit of a status code (#.X.X)."""
    SUCCESS = 'Success'
    PERSISTENT_TRANSIENT_FAILURE = 'PersistentTransientFailure'
    PERMANENT_FAILURE = 'PermanentFailure'


class StatusSubject(_Facet):
    """Second digit of a status code (X.#.X)."""
    OTHER_OR_UNDEFINED = 'OtherOrUndefinedStatus'
    ADDRESSING = 'AddressingStatus'
    MAILBOX = 'MailboxStatus'
    MAIL_SYSTEM = 'MailSystemStatus'
    NETWORK_AND_ROUTING = 'NetworkAndRoutingStatus'
    MAIL_DELIVERY_PROTOCOL = 'MailDeliveryProtocolStatus'
    MESSAGE_CONTENT_OR_MEDIA = 'MessageContentOrMediaStatus'
    SECURITY_OR_POLICY = 'SecurityOrPolicyStatus'


class StatusDetail(_Facet):
    """Subject/detail pair of a status code (X.#.#)."""
    # X.0.0, also the default when the pair is not in the catalogue
    OTHER_UNDEFINED = 'OtherUndefinedStatus'

    # X.1.X
    OTHER_ADDRESS = 'OtherAddressStatus'
    BAD_DESTINATION_MAILBOX_ADDRESS = 'BadDestinationMailboxAddress'
    BAD_DESTINATION_SYSTEM_ADDRESS = 'BadDestinationSystemAddress'
    BAD_DESTINATION_MAILBOX_ADDRESS_SYNTAX = 'BadDestinationMailboxAddressSyntax'
    DESTINATION_MAILBOX_ADDRESS_AMBIGUOUS = 'DestinationMailboxAddressAmbiguous'
    DESTINATION_ADDRESS_VALID = 'DestinationAddressValid'
    DESTINATION_MAILBOX_HAS_MOVED = 'DestinationMailboxHasMoved_NoForwardingAddress'
    BAD_SENDERS_MAILBOX_ADDRESS_SYNTAX = 'BadSendersMailboxAddressSyntax'
    BAD_SENDERS_SYSTEM_ADDRESS = 'BadSendersSystemAddress'

    # X.2.X
    OTHER_OR_UNDEFINED_MAILBOX = 'OtherOrUndefinedMailboxStatus'
    MAILBOX_DISABLED = 'MailboxDisabled_NotAcceptingMessages'
    MAILBOX_FULL = 'MailboxFull'
    MESSAGE_LENGTH_EXCEEDS_ADMINISTRATIVE_LIMIT = 'MessageLengthExceedsAdministrativeLimit'
    OTHER_MAILING_LIST_EXPANSION_PROBLEM = 'OtherMailingListExpansionProblem'

    # X.3.X
    OTHER_OR_UNDEFINED_MAIL_SYSTEM = 'OtherOrUndefinedMailSystemStatus'
    MAIL_SYSTEM_FULL = 'MailSystemFull'
    SYSTEM_NOT_ACCEPTING_NETWORK_MESSAGES = 'SystemNotAcceptingNetworkMessages'
    SYSTEM_NOT_CAPABLE_OF_SELECTED_FEATURES = 'SystemNotCapableOfSelectedFeatures'
    MESSAGE_TOO_BIG_FOR_SYSTEM = 'MessageTooBigForSystem'
    SYSTEM_INCORRECTLY_CONFIGURED = 'SystemIncorrectlyConfigured'

    # X.4.X
    OTHER_OR_UNDEFINED_NETWORK_OR_ROUTING = 'OtherOrUndefinedNetworkOrRoutingStatus'
    NO_ANSWER_FROM_HOST = 'NoAnswerFromHost'
    BAD_CONNECTION = 'BadConnection'
    DIRECTORY_SERVER_FAILURE = 'DirectoryServerFailure'
    UNABLE_TO_ROUTE = 'UnableToRoute'
    MAIL_SYSTEM_CONGESTION = 'MailSystemCongestion'
    ROUTING_LOOP_DETECTED = 'RoutingLoopDetected'
    DELIVERY_TIME_EXPIRED = 'DeliveryTimeExpired'

    # X.5.X
    OTHER_OR_UNDEFINED_PROTOCOL = 'OtherOrUndefinedProtocolStatus'
    INVALID_COMMAND = 'InvalidCommand'
    SYNTAX_ERROR = 'SyntaxError'
    TOO_MANY_RECIPIENTS = 'TooManyRecipients'
    INVALID_COMMAND_ARGUMENTS = 'InvalidCommandArguments'
    WRONG_PROTOCOL_VERSION = 'WrongProtocolVersion'

    # X.6.X
    OTHER_OR_UNDEFINED_MEDIA_ERROR = 'OtherOrUndefinedMediaError'
    MEDIA_NOT_SUPPORTED = 'MediaNotSupported'
    CONVERSION_REQUIRED_AND_PROHIBITED = 'ConversionRequiredAndProhibited'
    CONVERSION_REQUIRED_BUT_NOT_SUPPORTED = 'ConversionRequiredButNotSupported'
    CONVERSION_WITH_LOSS_PERFORMED = 'ConversionWithLossPerformed'
    CONVERSION_FAILED = 'ConversionFailed'

    # X.7.X
    OTHER_OR_UNDEFINED_SECURITY = 'OtherOrUndefinedSecurityStatus'
    DELIVERY_NOT_AUTHORIZED = 'DeliveryNotAuthorized_MessageRefused'
    MAILING_LIST_EXPANSION_PROHIBITED = 'MailingListExpansionProhibited'
    SECURITY_CONVERSION_REQUIRED_BUT_NOT_POSSIBLE = 'SecurityConversionRequiredButNotPossible'
    SECURITY_FEATURES_NOT_SUPPORTED = 'SecurityFeaturesNotSupported'
    CRYPTOGRAPHIC_FAILURE = 'CryptographicFailure'
    CRYPTOGRAPHIC_ALGORITHM_NOT_SUPPORTED = 'CryptographicAlgorithmNotSupported'
    MESSAGE_INTEGRITY_FAILURE = 'MessageIntegrityFailure'


@dataclass(frozen=True)
class StatusCodeClassification:
    """
    Classification of a status code.

    Attributes:
        status_class: Tier 1, always set
        subject: Tier 2, always set
        detail: Tier 3, OTHER_UNDEFINED unless the subject/detail pair is known
    """
    status_class: StatusClass
    subject: StatusSubject = StatusSubject.OTHER_OR_UNDEFINED
    detail: StatusDetail = StatusDetail.OTHER_UNDEFINED

    @property
    def has_detail(self) -> bool:
        """Check if a catalogued detail other than the default was resolved."""
        return self.detail is not StatusDetail.OTHER_UNDEFINED

    @property
    def facets(self) -> List[_Facet]:
        """Facets ordered from the least to the most specific tier."""
        return [self.status_class, self.subject, self.detail]

    def rank(self) -> Tuple[int, int, int]:
        """
        Sort key of the classification.

        Details outrank subjects, which outrank classes, so a classification
        that resolved a catalogued detail always compares greater than one
        that only resolved a subject.
        """
        return (self.detail.ordinal, self.subject.ordinal, self.status_class.ordinal)

    def is_more_specific_than(self, other: 'StatusCodeClassification') -> bool:
        return self.rank() > other.rank()

    def __str__(self) -> str:
        return classification_to_string(self)


_CLASSES: Dict[str, StatusClass] = {
    '2': StatusClass.SUCCESS,
    '4': StatusClass.PERSISTENT_TRANSIENT_FAILURE,
    '5': StatusClass.PERMANENT_FAILURE,
}

_SUBJECTS: Dict[str, StatusSubject] = {
    '0': StatusSubject.OTHER_OR_UNDEFINED,
    '1': StatusSubject.ADDRESSING,
    '2': StatusSubject.MAILBOX,
    '3': StatusSubject.MAIL_SYSTEM,
    '4': StatusSubject.NETWORK_AND_ROUTING,
    '5': StatusSubject.MAIL_DELIVERY_PROTOCOL,
    '6': StatusSubject.MESSAGE_CONTENT_OR_MEDIA,
    '7': StatusSubject.SECURITY_OR_POLICY,
}

_DETAILS: Dict[str, StatusDetail] = {
    '0.0': StatusDetail.OTHER_UNDEFINED,

    '1.0': StatusDetail.OTHER_ADDRESS,
    '1.1': StatusDetail.BAD_DESTINATION_MAILBOX_ADDRESS,
    '1.2': StatusDetail.BAD_DESTINATION_SYSTEM_ADDRESS,
    '1.3': StatusDetail.BAD_DESTINATION_MAILBOX_ADDRESS_SYNTAX,
    '1.4': StatusDetail.DESTINATION_MAILBOX_ADDRESS_AMBIGUOUS,
    '1.5': StatusDetail.DESTINATION_ADDRESS_VALID,
    '1.6': StatusDetail.DESTINATION_MAILBOX_HAS_MOVED,
    '1.7': StatusDetail.BAD_SENDERS_MAILBOX_ADDRESS_SYNTAX,
    '1.8': StatusDetail.BAD_SENDERS_SYSTEM_ADDRESS,

    '2.0': StatusDetail.OTHER_OR_UNDEFINED_MAILBOX,
    '2.1': StatusDetail.MAILBOX_DISABLED,
    '2.2': StatusDetail.MAILBOX_FULL,
    '2.3': StatusDetail.MESSAGE_LENGTH_EXCEEDS_ADMINISTRATIVE_LIMIT,
    '2.4': StatusDetail.OTHER_MAILING_LIST_EXPANSION_PROBLEM,

    '3.0': StatusDetail.OTHER_OR_UNDEFINED_MAIL_SYSTEM,
    '3.1': StatusDetail.MAIL_SYSTEM_FULL,
    '3.2': StatusDetail.SYSTEM_NOT_ACCEPTING_NETWORK_MESSAGES,
    '3.3': StatusDetail.SYSTEM_NOT_CAPABLE_OF_SELECTED_FEATURES,
    '3.4': StatusDetail.MESSAGE_TOO_BIG_FOR_SYSTEM,
    '3.5': StatusDetail.SYSTEM_INCORRECTLY_CONFIGURED,

    '4.0': StatusDetail.OTHER_OR_UNDEFINED_NETWORK_OR_ROUTING,
    '4.1': StatusDetail.NO_ANSWER_FROM_HOST,
    '4.2': StatusDetail.BAD_CONNECTION,
    '4.3': StatusDetail.DIRECTORY_SERVER_FAILURE,
    '4.4': StatusDetail.UNABLE_TO_ROUTE,
    '4.5': StatusDetail.MAIL_SYSTEM_CONGESTION,
    '4.6': StatusDetail.ROUTING_LOOP_DETECTED,
    '4.7': StatusDetail.DELIVERY_TIME_EXPIRED,

    '5.0': StatusDetail.OTHER_OR_UNDEFINED_PROTOCOL,
    '5.1': StatusDetail.INVALID_COMMAND,
    '5.2': StatusDetail.SYNTAX_ERROR,
    '5.3': StatusDetail.TOO_MANY_RECIPIENTS,
    '5.4': StatusDetail.INVALID_COMMAND_ARGUMENTS,
    '5.5': StatusDetail.WRONG_PROTOCOL_VERSION,

    '6.0': StatusDetail.OTHER_OR_UNDEFINED_MEDIA_ERROR,
    '6.1': StatusDetail.MEDIA_NOT_SUPPORTED,
    '6.2': StatusDetail.CONVERSION_REQUIRED_AND_PROHIBITED,
    '6.3': StatusDetail.CONVERSION_REQUIRED_BUT_NOT_SUPPORTED,
    '6.4': StatusDetail.CONVERSION_WITH_LOSS_PERFORMED,
    '6.5': StatusDetail.CONVERSION_FAILED,

    '7.0': StatusDetail.OTHER_OR_UNDEFINED_SECURITY,
    '7.1': StatusDetail.DELIVERY_NOT_AUTHORIZED,
    '7.2': StatusDetail.MAILING_LIST_EXPANSION_PROHIBITED,
    '7.3': StatusDetail.SECURITY_CONVERSION_REQUIRED_BUT_NOT_POSSIBLE,
    '7.4': StatusDetail.SECURITY_FEATURES_NOT_SUPPORTED,
    '7.5': StatusDetail.CRYPTOGRAPHIC_FAILURE,
    '7.6': StatusDetail.CRYPTOGRAPHIC_ALGORITHM_NOT_SUPPORTED,
    '7.7': StatusDetail.MESSAGE_INTEGRITY_FAILURE,
}


def classify(status_code: str) -> StatusCodeClassification:
    """
    Classify a status code like "5.2.2".

    Args:
        status_code: Code in the "class.subject.detail" format

    Returns:
        StatusCodeClassification: Class and subject are always set, the detail
        only when the subject/detail pair is catalogued by RFC 3463

    Raises:
        MalformedCodeError: If the code does not contain two '.' separators
        UnsupportedClassError: If the class is not 2, 4 or 5

    Example:
        >>> classify("5.2.2").detail
        <StatusDetail.MAILBOX_FULL: 'MailboxFull'>
    """
    first_dot = status_code.find('.')
    last_dot = status_code.rfind('.')
    if first_dot == -1 or last_dot == first_dot:
        raise MalformedCodeError(
            f"Invalid format: statusCode={status_code}. Expected format: X.X.X."
        )

    code_class = status_code[:first_dot]
    code_subject = status_code[first_dot + 1:last_dot]
    subject_detail = status_code[first_dot + 1:]

    status_class = _CLASSES.get(code_class)
    if status_class is None:
        raise UnsupportedClassError(
            f"Status class for {status_code} is unexpected. "
            f"Expected classes are specified by RFC 3463 (2, 4 or 5)."
        )

    detail = _DETAILS.get(subject_detail)
    if detail is not None:
        return StatusCodeClassification(
            status_class=status_class,
            subject=_SUBJECTS[subject_detail[0]],
            detail=detail
        )

    logger.debug(f"Level 3 category unknown: X.{subject_detail}")
    subject = _SUBJECTS.get(code_subject)
    if subject is None:
        logger.debug(f"Level 2 category unknown: X.{code_subject}.X")
        subject = StatusSubject.OTHER_OR_UNDEFINED

    return StatusCodeClassification(status_class=status_class, subject=subject)


def classification_to_string(classification: StatusCodeClassification) -> str:
    """
    Render a classification as "class/subject/detail" labels.

    Example:
        "PermanentFailure/AddressingStatus/BadDestinationMailboxAddress"
    """
    return '/'.join(facet.label for facet in classification.facets)


def classification_string(status_code: str) -> str:
    """Classify a code like "X.X.X" and return its "class/subject/detail" description."""
    return classification_to_string(classify(status_code))
