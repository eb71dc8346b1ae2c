"""
Extraction of status codes embedded in a Diagnostic-Code field.

The Status field of a DSN often carries a generic code (e.g. "5.0.0") while
the remote MTA's answer, copied into Diagnostic-Code, contains a more precise
one ("550 5.1.1 User unknown"). This module finds that more precise code.
"""

import logging
import re
from typing import Optional, Tuple

from .errors import StatusError
from .status_codes import StatusCodeClassification, classify

logger = logging.getLogger(__name__)

# Matches a code like "5.5.2"
_RE_DIAG_CODE = re.compile(r'\b[245]\.[0-7]\.\d{1,3}\b')

# Matches a code like "552" (only used when no dotted code is present)
_RE_DIAG_CODE_SECONDARY = re.compile(r'\b[245][0-7]\d{1,3}\b')


def resolve_inner_code(
    diagnostic_code: Optional[str],
    declared: StatusCodeClassification
) -> Optional[Tuple[str, StatusCodeClassification]]:
    """
    Find a code in diagnostic text that is more specific than the declared one.

    Dotted codes ("5.1.1") are searched first. Only if the text contains none,
    SMTP reply codes ("552") are reinterpreted as "5.5.2": the first digit is
    the class, the second the subject and all remaining digits the detail.

    Args:
        diagnostic_code: Diagnostic-Code field value (may be None)
        declared: Classification of the Status field

    Returns:
        (code, classification) of the most specific code found, or None if no
        code in the text is more specific than the declared one

    Example:
        >>> declared = classify("5.0.0")
        >>> resolve_inner_code("smtp; 550 5.1.1 User unknown", declared)[0]
        '5.1.1'
    """
    if not diagnostic_code:
        return None

    best: Optional[Tuple[str, StatusCodeClassification]] = None

    dotted = _RE_DIAG_CODE.findall(diagnostic_code)
    for code in dotted:
        best = _pick(best, code, classify(code), declared)

    if dotted:
        return best

    for value in _RE_DIAG_CODE_SECONDARY.findall(diagnostic_code):
        code = f"{value[0]}.{value[1]}.{value[2:]}"
        try:
            classification = classify(code)
        except StatusError as e:
            logger.debug(f"Skipping diagnostic code candidate {value}: {e}")
            continue
        best = _pick(best, code, classification, declared)

    return best


def _pick(
    best: Optional[Tuple[str, StatusCodeClassification]],
    code: str,
    classification: StatusCodeClassification,
    declared: StatusCodeClassification
) -> Optional[Tuple[str, StatusCodeClassification]]:
    """Keep the candidate if it beats both the declared code and the current best."""
    if not classification.is_more_specific_than(declared):
        return best
    if best is not None and not classification.is_more_specific_than(best[1]):
        return best
    return code, classification
