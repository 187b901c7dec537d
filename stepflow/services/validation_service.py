# stepflow/services/validation_service.py
"""
Input format validation for stepflow.

Local checks that run before any network call: email format, one-time code
format and the optional full name. The ValidationGate decides whether a
step is answered at all; this service decides whether an answer is
well-formed.
"""

from typing import Optional, Dict, Any
from dataclasses import dataclass
import logging
import re

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
FULL_NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]+$")


@dataclass
class ValidationResult:
    """Result of input validation"""
    valid: bool
    error_type: Optional[str] = None
    message: Optional[str] = None
    value: Optional[str] = None  # normalized value when valid
    details: Optional[Dict[str, Any]] = None


class ValidationService:
    """
    Format validation for auth inputs.

    Validation strategy:
    1. Presence first (empty input gets its own message)
    2. Shape second (regex / digit count)
    3. Normalize on success (trim, lowercase email)
    """

    MIN_NAME_LENGTH = 2
    MAX_NAME_LENGTH = 50

    def __init__(self, code_length: int = 6):
        self.code_length = code_length
        self.logger = logger

    def validate_email(self, email: str) -> ValidationResult:
        normalized = (email or "").strip().lower()

        if not normalized:
            return ValidationResult(
                valid=False,
                error_type="email_required",
                message="Email is required",
            )

        if not EMAIL_PATTERN.match(normalized):
            return ValidationResult(
                valid=False,
                error_type="invalid_email",
                message="Invalid email address",
                details={"input_preview": normalized[:50]},
            )

        return ValidationResult(valid=True, value=normalized)

    def validate_verification_code(self, code: str) -> ValidationResult:
        code = (code or "").strip()
        length_message = f"Verification code must be {self.code_length} digits"

        if len(code) != self.code_length:
            return ValidationResult(
                valid=False,
                error_type="invalid_code_length",
                message=length_message,
                details={"expected_length": self.code_length, "actual_length": len(code)},
            )

        if not code.isascii() or not code.isdigit():
            return ValidationResult(
                valid=False,
                error_type="invalid_code_characters",
                message="Verification code must contain only numbers",
            )

        return ValidationResult(valid=True, value=code)

    def validate_full_name(self, full_name: str) -> ValidationResult:
        """Full name is optional: empty is valid"""
        full_name = (full_name or "").strip()

        if not full_name:
            return ValidationResult(valid=True, value="")

        if not (self.MIN_NAME_LENGTH <= len(full_name) <= self.MAX_NAME_LENGTH) \
                or not FULL_NAME_PATTERN.match(full_name):
            return ValidationResult(
                valid=False,
                error_type="invalid_full_name",
                message=(
                    "Full name must be empty or 2-50 characters with only letters, "
                    "spaces, hyphens, and apostrophes"
                ),
                details={"min_length": self.MIN_NAME_LENGTH, "max_length": self.MAX_NAME_LENGTH},
            )

        return ValidationResult(valid=True, value=full_name)
