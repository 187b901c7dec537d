# stepflow/core/exceptions.py
"""
Core Exceptions - standardized error handling for stepflow.

User-facing validation problems (empty required field, malformed email,
rejected code) are NOT raised: they are reported as UserFacingError values
on the controller. The exceptions below signal programming or infrastructure
errors (unknown step ids, broken configuration, unreachable services).
"""

from typing import Optional, Dict, Any


class StepflowBaseException(Exception):
    """Base exception for all stepflow errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class FlowError(StepflowBaseException):
    """Errors in flow control and step transitions"""

    def __init__(
        self,
        message: str,
        current_step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize flow error.

        Args:
            message: Error description
            current_step: Step the controller was on when the error occurred
            details: Additional error context
        """
        super().__init__(message, details)
        self.current_step = current_step

        if current_step:
            self.details['current_step'] = current_step

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.current_step:
            return f"{base_msg} [Step: {self.current_step}]"
        return base_msg


class ValidationError(StepflowBaseException):
    """Errors in input validation and data integrity"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize validation error.

        Args:
            message: Error description
            field: Field that failed validation
            value: Invalid value
            details: Additional validation context
        """
        super().__init__(message, details)
        self.field = field
        self.value = value

        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = str(value)


class ServiceError(StepflowBaseException):
    """Errors in external service interactions"""

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize service error.

        Args:
            message: Error description
            service_name: Name of the failing service
            operation: Operation that failed
            details: Additional service context
        """
        super().__init__(message, details)
        self.service_name = service_name
        self.operation = operation

        if service_name:
            self.details['service'] = service_name
        if operation:
            self.details['operation'] = operation


class ConfigurationError(StepflowBaseException):
    """Errors in system configuration and initialization"""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


class ProfileStoreError(ServiceError):
    """Specific errors for the Redis-backed profile store"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="Redis", operation=operation, details=details)
        self.key = key

        if key:
            self.details['key'] = key


class SessionError(StepflowBaseException):
    """Errors in flow session lookup and lifecycle"""

    def __init__(
        self,
        message: str,
        flow_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.flow_id = flow_id

        if flow_id:
            self.details['flow_id'] = flow_id


class SecurityError(StepflowBaseException):
    """Errors in security validation and authentication"""

    def __init__(
        self,
        message: str,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize security error.

        Args:
            message: Error description
            error_type: Type of security error (auth, token, expiration)
            details: Additional security context
        """
        super().__init__(message, details)
        self.error_type = error_type

        if error_type:
            self.details['error_type'] = error_type
