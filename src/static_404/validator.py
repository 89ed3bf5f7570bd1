"""
Validation of fetched not-found responses
"""
from typing import Optional

from .exceptions import TransportError, ValidationFailure
from .models import FetchResult

NOT_FOUND_STATUS = 404


def check_not_found(result: Optional[FetchResult]) -> None:
    """
    Verify that a fetch result is the site's genuine not-found page.

    Intent:
    The probed path cannot match any real resource, so the status code plus
    a non-empty body is enough evidence. Content type and markup are not
    inspected; anything finer belongs in the ``response_contents`` filter.

    Raises:
        TransportError: If no response was received
        ValidationFailure: If the status is not exactly 404 or the body is empty
    """
    if result is None or result.is_transport_error:
        reason = result.error if result is not None else "no response"
        raise TransportError(f"No response from probe request: {reason}")

    if result.status_code != NOT_FOUND_STATUS:
        raise ValidationFailure(
            f"Expected status {NOT_FOUND_STATUS}, got {result.status_code}"
        )

    if not result.body:
        raise ValidationFailure("Not-found response has an empty body")


def is_valid_not_found(result: Optional[FetchResult]) -> bool:
    """Boolean form of ``check_not_found``."""
    try:
        check_not_found(result)
    except (TransportError, ValidationFailure):
        return False
    return True
