"""
Utility functions for the GuestDesk API.
"""

import hmac
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def verify_password(candidate: Optional[str], expected: str) -> bool:
    """
    Check the shared dashboard password.

    Args:
        candidate: Value of the `password` query parameter, if any
        expected: AUTH_PASSWORD

    Returns:
        True if both are non-empty and equal, False otherwise
    """
    if not candidate or not expected:
        logger.info("Password check: missing")
        return False

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))
    logger.info(f"Password check: {'valid' if is_valid else 'invalid'}")
    return is_valid


def is_valid_object_id(value: str) -> bool:
    """True for 24-character hex strings, the escalation id format."""
    return bool(OBJECT_ID_PATTERN.match(value))
