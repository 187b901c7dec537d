# stepflow/core/auth_flow.py
"""
Sign-up / login flow: welcome -> email -> verification.

Both modes share the topology. Advancing from the email step sends a
one-time code and only moves on when the provider accepted it; advancing
from the verification step verifies the code and completes the flow with
the verified identity.
"""

from typing import Any, Callable, Dict, Optional, Tuple
import logging

from stepflow.content.auth_texts import auth_copy, build_auth_registry, success_copy
from stepflow.core.config import settings
from stepflow.core.cooldown import ResendCooldownTimer
from stepflow.core.flow_controller import Callback, FlowController
from stepflow.core.step_registry import StepRegistry
from stepflow.core.transition_animator import TransitionAnimator
from stepflow.core.verification import AuthResult, VerificationCoordinator
from stepflow.models.flow_models import AuthStep, FlowMode, StepBase
from stepflow.models.flow_state import AuthFlowState, ErrorKind, UserFacingError
from stepflow.services.identity_provider import VerifiedIdentity

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[FlowMode], StepRegistry]

NO_CODE_SENT_MESSAGE = "Enter your email first so we can send you a code"


class AuthFlowController(FlowController):
    """Controller of the auth sheet"""

    state: AuthFlowState

    def __init__(
        self,
        coordinator: VerificationCoordinator,
        mode: FlowMode = FlowMode.SIGNUP,
        registry_factory: RegistryFactory = build_auth_registry,
        animator: Optional[TransitionAnimator] = None,
        cooldown: Optional[ResendCooldownTimer] = None,
        on_complete: Optional[Callback] = None,
        on_exit: Optional[Callback] = None,
        full_name: str = "",
    ):
        if animator is None:
            animator = TransitionAnimator(
                fade_out_ms=settings.AUTH_TRANSITION_MS,
                fade_in_ms=settings.AUTH_TRANSITION_MS,
            )
        registry = registry_factory(mode)
        state = AuthFlowState.initial(registry)
        if full_name:
            state.set_text("full_name", full_name)

        super().__init__(registry, state, animator, on_complete, on_exit)

        self.coordinator = coordinator
        self.cooldown = cooldown or coordinator.cooldown or ResendCooldownTimer(settings.RESEND_COOLDOWN_SECONDS)
        if coordinator.cooldown is None:
            coordinator.cooldown = self.cooldown
        self._registry_factory = registry_factory
        self._mode = mode
        self.identity: Optional[VerifiedIdentity] = None

    @property
    def mode(self) -> FlowMode:
        return self._mode

    def switch_mode(self, mode: FlowMode) -> bool:
        """Swap sign-up/login copy and provider behaviour, keeping the current step"""
        self._ensure_open()
        if mode is self._mode:
            return False
        if self.is_busy:
            return False
        self._mode = mode
        self.registry = self._registry_factory(mode)
        self._clear_errors()
        logger.info(f"Auth flow switched to {mode.value}")
        return True

    def _metadata(self) -> Dict[str, Any]:
        full_name = self.state.full_name.strip()
        return {"full_name": full_name} if full_name else {}

    # ------------------------------------------------------------------
    # Navigation hooks
    # ------------------------------------------------------------------

    async def _advance_from(self, step: StepBase) -> bool:
        if step.id == AuthStep.EMAIL.value:
            return await self._send_and_enter_verification()
        return await super()._advance_from(step)

    async def _send_and_enter_verification(self) -> bool:
        result = await self.coordinator.send_code(self.state.email, self._mode, self._metadata())
        if result.ignored or self._closed:
            return False
        if not result.success:
            self.set_error(result.error)
            return False

        def enter_verification() -> None:
            self.state.set_text("email", result.email)
            self.state.code_sent_to = result.email
            self.state.clear("verification_code")
            self.cooldown.start()

        return await self._move_to(self._index + 1, before=enter_verification)

    def _on_leave_backward(self, step: StepBase) -> None:
        if step.id == AuthStep.VERIFICATION.value:
            self.state.clear("verification_code")
            self.state.code_sent_to = None
            self.cooldown.cancel()
        elif step.id == AuthStep.EMAIL.value:
            self.state.clear("email")

    async def _finish(self) -> Tuple[bool, Any]:
        if not self.state.code_sent_to:
            self.set_error(UserFacingError.for_flow(NO_CODE_SENT_MESSAGE, kind=ErrorKind.LOCAL_VALIDATION))
            logger.debug("Verification blocked: no code has been sent")
            return False, None

        result = await self.coordinator.verify_code(self.state.code_sent_to, self.state.verification_code)
        if result.ignored:
            return False, None
        if not result.success:
            self.set_error(result.error)
            return False, None

        self.cooldown.cancel()
        self.identity = result.identity
        return True, result.identity

    # ------------------------------------------------------------------
    # Auth actions
    # ------------------------------------------------------------------

    async def resend(self) -> AuthResult:
        """Re-send the code from the verification step (cooldown gated)"""
        self._ensure_open()
        if self.current_step.id != AuthStep.VERIFICATION.value or not self.state.code_sent_to:
            return AuthResult.skipped()

        result = await self.coordinator.resend(self.state.code_sent_to, self._mode, self._metadata())
        if result.ignored or self._closed:
            return result
        if result.error is not None:
            error = result.error
            if error.is_field_error and error.field != self.current_step.field_key:
                error = UserFacingError.for_flow(
                    error.message, kind=error.kind, status_code=error.status_code, code=error.code
                )
            self.set_error(error)
        else:
            self.dismiss_error()
        return result

    async def continue_anyway(self) -> bool:
        """
        Account-conflict escape hatch: switch sign-up to login and send the
        code again for the existing account.
        """
        self._ensure_open()
        error = self._field_errors.get("email")
        if error is None or not error.continue_anyway:
            return False

        logger.info("Continuing with existing account: switching to login")
        self.switch_mode(FlowMode.LOGIN)
        return await self.advance()

    # ------------------------------------------------------------------
    # Teardown / view
    # ------------------------------------------------------------------

    def _on_close(self) -> None:
        self.cooldown.cancel()
        self.coordinator.close()

    def snapshot(self) -> Dict[str, Any]:
        data = super().snapshot()
        cooldown = self.cooldown.state
        data.update({
            "mode": self._mode.value,
            "code_sent_to": self.state.code_sent_to,
            "cooldown": cooldown.model_dump(),
            "copy": auth_copy(self.current_step.id, cooldown),
            "success": success_copy(self._mode) if self._completed else None,
        })
        return data
