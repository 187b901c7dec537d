# stepflow/core/verification.py
"""
Verification coordinator - the only place provider errors are classified.

send_code / verify_code / resend each run local format validation first
(no network call for malformed input), then talk to the IdentityProvider
and translate its answer into an AuthResult carrying a UserFacingError.

At most one provider call is in flight per coordinator; a second call made
meanwhile is ignored. After close() every late provider answer is
discarded and no session is handed off.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union
import inspect
import logging

from stepflow.core.cooldown import ResendCooldownTimer
from stepflow.core.exceptions import StepflowBaseException
from stepflow.models.flow_models import FlowMode
from stepflow.models.flow_state import ErrorKind, UserFacingError
from stepflow.services.identity_provider import IdentityProvider, ProviderError, VerifiedIdentity
from stepflow.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

SessionHandler = Callable[[VerifiedIdentity], Union[None, Awaitable[None]]]

USER_EXISTS_MESSAGE = "User already exists"
NO_ACCOUNT_MESSAGE = "No account found with this email address"
NO_SESSION_MESSAGE = "Verification failed - no user or session returned"
SERVICE_UNAVAILABLE_MESSAGE = "Authentication service is unavailable. Please try again later."


@dataclass
class AuthResult:
    """Outcome of one coordinator operation"""
    success: bool
    error: Optional[UserFacingError] = None
    identity: Optional[VerifiedIdentity] = None
    ignored: bool = False
    email: Optional[str] = None  # normalized address the code was sent to

    @classmethod
    def ok(cls, email: Optional[str] = None, identity: Optional[VerifiedIdentity] = None) -> "AuthResult":
        return cls(success=True, email=email, identity=identity)

    @classmethod
    def failed(cls, error: UserFacingError) -> "AuthResult":
        return cls(success=False, error=error)

    @classmethod
    def skipped(cls) -> "AuthResult":
        return cls(success=False, ignored=True)


def classify_send_error(error: ProviderError, mode: FlowMode) -> UserFacingError:
    """Map a send_one_time_code failure to a user-facing error"""
    message = (error.message or "").lower()
    extra: Dict[str, Any] = {"status_code": error.status_code, "code": error.kind}

    if error.is_network_error:
        return UserFacingError.for_flow(error.message, kind=ErrorKind.PROVIDER, **extra)

    if mode is FlowMode.SIGNUP and (
        "already" in message or "exist" in message or error.status_code == 422
    ):
        return UserFacingError.for_field(
            "email",
            USER_EXISTS_MESSAGE,
            kind=ErrorKind.ACCOUNT_CONFLICT,
            continue_anyway=True,
            status_code=422,
            code="user_already_exists",
        )

    if mode is FlowMode.LOGIN and (
        "not found" in message or "invalid" in message or "user" in message
        or error.status_code == 400
    ):
        return UserFacingError.for_field(
            "email", NO_ACCOUNT_MESSAGE, kind=ErrorKind.ACCOUNT_NOT_FOUND, **extra
        )

    if "email" in message or "invalid" in message or error.status_code == 422:
        return UserFacingError.for_field("email", error.message, kind=ErrorKind.PROVIDER, **extra)

    return UserFacingError.for_flow(error.message, kind=ErrorKind.PROVIDER, **extra)


def classify_verify_error(error: ProviderError) -> UserFacingError:
    """Wrong or expired codes stay on the code input; connectivity is flow-wide"""
    extra: Dict[str, Any] = {"status_code": error.status_code, "code": error.kind}
    if error.is_network_error:
        return UserFacingError.for_flow(error.message, kind=ErrorKind.PROVIDER, **extra)
    return UserFacingError.for_field("verification_code", error.message, kind=ErrorKind.PROVIDER, **extra)


class VerificationCoordinator:
    """Sequences send/verify/resend against the identity provider"""

    def __init__(
        self,
        provider: IdentityProvider,
        cooldown: Optional[ResendCooldownTimer] = None,
        validation_service: Optional[ValidationService] = None,
        on_session: Optional[SessionHandler] = None,
    ):
        self.provider = provider
        self.cooldown = cooldown
        self.validation = validation_service or ValidationService()
        self.on_session = on_session
        self._in_flight = False
        self._closed = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _should_skip(self, operation: str) -> bool:
        if self._closed:
            logger.debug(f"{operation} ignored: coordinator closed")
            return True
        if self._in_flight:
            logger.info(f"{operation} ignored: another provider call is in flight")
            return True
        return False

    async def send_code(
        self,
        email: str,
        mode: FlowMode,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        if self._should_skip("send_code"):
            return AuthResult.skipped()

        check = self.validation.validate_email(email)
        if not check.valid:
            return AuthResult.failed(
                UserFacingError.for_field("email", check.message, kind=ErrorKind.FORMAT)
            )

        self._in_flight = True
        try:
            response = await self.provider.send_one_time_code(
                check.value,
                create_user_if_absent=mode is FlowMode.SIGNUP,
                metadata=metadata,
            )
        except StepflowBaseException as e:
            logger.error(f"send_code failed before reaching the provider: {e}")
            return self._unavailable()
        finally:
            self._in_flight = False

        if self._closed:
            logger.debug("send_code result discarded: coordinator closed")
            return AuthResult.skipped()

        if response.error is not None:
            error = classify_send_error(response.error, mode)
            logger.info(f"send_code ({mode.value}) rejected: {error.kind.value}")
            return AuthResult.failed(error)

        logger.info(f"Verification code sent ({mode.value})")
        return AuthResult.ok(email=check.value)

    async def verify_code(self, email: str, code: str) -> AuthResult:
        if self._should_skip("verify_code"):
            return AuthResult.skipped()

        check = self.validation.validate_verification_code(code)
        if not check.valid:
            return AuthResult.failed(
                UserFacingError.for_field("verification_code", check.message, kind=ErrorKind.FORMAT)
            )

        self._in_flight = True
        try:
            response = await self.provider.verify_one_time_code(email, check.value)
        except StepflowBaseException as e:
            logger.error(f"verify_code failed before reaching the provider: {e}")
            return self._unavailable()
        finally:
            self._in_flight = False

        if self._closed:
            logger.debug("verify_code result discarded: coordinator closed")
            return AuthResult.skipped()

        if response.error is not None:
            error = classify_verify_error(response.error)
            logger.info(f"verify_code rejected: {error.scope.value} error")
            return AuthResult.failed(error)

        if response.identity is None:
            return AuthResult.failed(
                UserFacingError.for_flow(NO_SESSION_MESSAGE, kind=ErrorKind.PROVIDER, status_code=401)
            )

        if self.on_session is not None:
            handoff = self.on_session(response.identity)
            if inspect.isawaitable(handoff):
                await handoff

        logger.info(f"Verification succeeded for user {response.identity.user.id[:8]}...")
        return AuthResult.ok(email=email, identity=response.identity)

    async def resend(
        self,
        email: str,
        mode: FlowMode,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        """send_code gated by the cooldown; success restarts the countdown"""
        if self.cooldown is not None and not self.cooldown.can_trigger:
            logger.debug(f"Resend ignored: {self.cooldown.remaining_seconds}s cooldown remaining")
            return AuthResult.skipped()

        result = await self.send_code(email, mode, metadata)
        if result.success and self.cooldown is not None:
            self.cooldown.start()
        return result

    def close(self) -> None:
        self._closed = True

    @staticmethod
    def _unavailable() -> AuthResult:
        return AuthResult.failed(
            UserFacingError.for_flow(SERVICE_UNAVAILABLE_MESSAGE, kind=ErrorKind.PROVIDER)
        )
