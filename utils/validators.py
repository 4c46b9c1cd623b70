"""Validation utilities for coach requests"""
from typing import Optional, Tuple


class Validators:
    """Data validation utilities"""

    def __init__(self, config=None):
        self.config = config
        self.message_max_length = getattr(config, 'COACH_REQUEST_MESSAGE_MAX_LENGTH', 500)

    # ============= IDENTIFIER VALIDATION =============

    def validate_identifier(self, value: Optional[str], field_name: str = "ID") -> Tuple[bool, Optional[str]]:
        """
        Validate an opaque identifier (coach id, request id)

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value is None or not str(value).strip():
            return False, f"{field_name} is required"

        return True, None

    # ============= MESSAGE VALIDATION =============

    def validate_request_message(self, message: Optional[str]) -> Tuple[bool, Optional[str], Optional[str]]:
        """
        Validate the optional note a client attaches to a coach request

        Length is checked on the raw text, before trimming.

        Returns:
            Tuple of (is_valid, cleaned_message, error_message)
        """
        if message is None:
            return True, None, None

        if len(message) > self.message_max_length:
            return False, None, f"Message must be {self.message_max_length} characters or less"

        cleaned = message.strip()
        return True, cleaned or None, None
