# stepflow/core/orchestrator.py
"""
Flow orchestrator - opens, drives and closes flows for the HTTP layer.

Wires controllers to their collaborators (identity provider, cooldown,
profile store), keeps them in the token-guarded FlowSessionStore and hands
a completed onboarding record over to the profile store once the auth flow
has verified the user.
"""

from typing import Any, Callable, Dict, Optional, Tuple
import logging

from stepflow.content.onboarding_steps import build_onboarding_registry
from stepflow.core.auth_flow import AuthFlowController
from stepflow.core.config import settings
from stepflow.core.cooldown import ResendCooldownTimer
from stepflow.core.exceptions import FlowError, ProfileStoreError, SessionError, ValidationError
from stepflow.core.flow_controller import OnboardingFlowController
from stepflow.core.security.session_security import FlowSession, FlowSessionStore
from stepflow.core.transition_animator import Sleep, TransitionAnimator
from stepflow.core.verification import VerificationCoordinator
from stepflow.models.flow_models import FlowMode
from stepflow.services.identity_provider import IdentityProvider, SupabaseIdentityProvider, VerifiedIdentity
from stepflow.services.profile_service import ProfileService
from stepflow.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

ONBOARDING = "onboarding"
AUTH = "auth"


class FlowOrchestrator:
    """
    Main interface of the HTTP layer.

    1. Opens onboarding and auth flows
    2. Resolves flows by id + token
    3. Runs controller actions and returns snapshots
    4. Hands verified users and their onboarding answers to the profile store
    """

    def __init__(
        self,
        session_store: Optional[FlowSessionStore] = None,
        identity_provider: Optional[IdentityProvider] = None,
        profile_service: Optional[ProfileService] = None,
        validation_service: Optional[ValidationService] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.session_store = session_store or FlowSessionStore()
        self.identity_provider = identity_provider
        self.profile_service = profile_service
        self.validation_service = validation_service or ValidationService(settings.VERIFICATION_CODE_LENGTH)
        self._sleep = sleep
        self._services_initialized = identity_provider is not None and profile_service is not None

        logger.info("Flow orchestrator created (services will be lazy-loaded)")

    def _ensure_services_initialized(self) -> None:
        """Create the external collaborators on first use"""
        if self._services_initialized:
            return

        logger.info("Creating flow services (lazy loading)...")
        if self.identity_provider is None:
            self.identity_provider = SupabaseIdentityProvider()
        if self.profile_service is None:
            self.profile_service = ProfileService()
        self._services_initialized = True

    # ------------------------------------------------------------------
    # Opening flows
    # ------------------------------------------------------------------

    def open_onboarding(self) -> Tuple[FlowSession, str]:
        context: Dict[str, Any] = {"exit_requested": False}
        controller = OnboardingFlowController(
            build_onboarding_registry(),
            animator=TransitionAnimator(
                fade_out_ms=settings.ONBOARDING_FADE_OUT_MS,
                fade_in_ms=settings.ONBOARDING_FADE_IN_MS,
                sleep=self._sleep,
            ),
            on_exit=self._exit_handler(context),
        )
        return self.session_store.create_flow(ONBOARDING, controller, context)

    def open_auth(
        self,
        mode: FlowMode,
        onboarding_flow_id: Optional[str] = None,
        onboarding_token: Optional[str] = None,
        full_name: str = "",
    ) -> Tuple[FlowSession, str]:
        """
        Open a sign-up or login flow.

        Sign-up needs a completed onboarding flow: its answers are stored
        on the new profile once the code is verified.

        Raises:
            ValidationError: Invalid full name
            SessionError: Onboarding flow missing or token mismatch
            FlowError: Onboarding flow not completed
        """
        self._ensure_services_initialized()

        name_check = self.validation_service.validate_full_name(full_name)
        if not name_check.valid:
            raise ValidationError(name_check.message, field="full_name", value=full_name)

        record = None
        if onboarding_flow_id:
            record = self._completed_onboarding_record(onboarding_flow_id, onboarding_token or "")
        elif mode is FlowMode.SIGNUP:
            raise FlowError("Please complete all onboarding steps before continuing")

        context: Dict[str, Any] = {
            "exit_requested": False,
            "onboarding_flow_id": onboarding_flow_id,
            "onboarding_record": record,
            "full_name": name_check.value,
            "profile_saved": None,
        }

        cooldown = ResendCooldownTimer(settings.RESEND_COOLDOWN_SECONDS, sleep=self._sleep)
        coordinator = VerificationCoordinator(
            self.identity_provider,
            cooldown=cooldown,
            validation_service=self.validation_service,
            on_session=self._session_handler(context),
        )
        controller = AuthFlowController(
            coordinator,
            mode=mode,
            animator=TransitionAnimator(
                fade_out_ms=settings.AUTH_TRANSITION_MS,
                fade_in_ms=settings.AUTH_TRANSITION_MS,
                sleep=self._sleep,
            ),
            cooldown=cooldown,
            on_exit=self._exit_handler(context),
            full_name=name_check.value,
        )
        return self.session_store.create_flow(AUTH, controller, context)

    def _completed_onboarding_record(self, flow_id: str, token: str) -> Dict[str, Any]:
        flow = self.session_store.validate_and_get_flow(flow_id, token)
        if flow is None or flow.kind != ONBOARDING:
            raise SessionError("Onboarding flow not found or token invalid", flow_id=flow_id)

        controller: OnboardingFlowController = flow.controller
        if not controller.is_completed or controller.record is None:
            raise FlowError(
                "Please complete all onboarding steps before continuing",
                current_step=controller.current_step.id,
            )
        return dict(controller.record)

    @staticmethod
    def _exit_handler(context: Dict[str, Any]) -> Callable[[], None]:
        def on_exit() -> None:
            context["exit_requested"] = True
        return on_exit

    def _session_handler(self, context: Dict[str, Any]):
        async def on_session(identity: VerifiedIdentity) -> None:
            context["identity"] = identity
            record = context.get("onboarding_record")
            if record is None:
                return
            try:
                context["profile_saved"] = await self.profile_service.save_profile(
                    identity.user.id,
                    identity.user.email or "",
                    record,
                    full_name=context.get("full_name") or None,
                )
            except ProfileStoreError as e:
                logger.error(f"Profile hand-off failed for user {identity.user.id[:8]}...: {e}")
                context["profile_saved"] = False
        return on_session

    # ------------------------------------------------------------------
    # Driving flows
    # ------------------------------------------------------------------

    def get_flow(self, flow_id: str, token: str) -> FlowSession:
        flow = self.session_store.validate_and_get_flow(flow_id, token)
        if flow is None:
            raise SessionError("Invalid or expired flow", flow_id=flow_id)
        return flow

    def describe(self, flow: FlowSession) -> Dict[str, Any]:
        """Snapshot of a flow for API responses"""
        controller = flow.controller
        data = {"flow_id": flow.flow_id, "kind": flow.kind, **controller.snapshot()}
        data["exit_requested"] = flow.context.get("exit_requested", False)

        if flow.kind == ONBOARDING and controller.is_completed:
            data["record"] = {
                key: sorted(value) if isinstance(value, frozenset) else value
                for key, value in controller.record.items()
            }
        if flow.kind == AUTH and controller.is_completed:
            identity: VerifiedIdentity = controller.identity
            data["identity"] = identity.model_dump(mode="json") if identity else None
            data["profile_saved"] = flow.context.get("profile_saved")
        return data

    def update_field(self, flow: FlowSession, field: str, value: Any) -> Dict[str, Any]:
        flow.controller.update_field(field, value)
        return self.describe(flow)

    def select_option(self, flow: FlowSession, option_id: str) -> Dict[str, Any]:
        accepted = flow.controller.select_option(option_id)
        return {**self.describe(flow), "accepted": accepted}

    async def advance(self, flow: FlowSession) -> Dict[str, Any]:
        moved = await flow.controller.advance()
        if moved and flow.kind == AUTH and flow.controller.is_completed:
            self._consume_onboarding(flow)
        return {**self.describe(flow), "moved": moved}

    async def back(self, flow: FlowSession) -> Dict[str, Any]:
        moved = await flow.controller.back()
        return {**self.describe(flow), "moved": moved}

    async def jump_to(self, flow: FlowSession, step_id: str) -> Dict[str, Any]:
        moved = await flow.controller.jump_to(step_id)
        return {**self.describe(flow), "moved": moved}

    async def resend(self, flow: FlowSession) -> Dict[str, Any]:
        controller = self._auth_controller(flow)
        result = await controller.resend()
        return {**self.describe(flow), "resent": result.success, "ignored": result.ignored}

    async def continue_anyway(self, flow: FlowSession) -> Dict[str, Any]:
        controller = self._auth_controller(flow)
        moved = await controller.continue_anyway()
        return {**self.describe(flow), "moved": moved}

    def dismiss_error(self, flow: FlowSession) -> Dict[str, Any]:
        flow.controller.dismiss_error()
        return self.describe(flow)

    def close_flow(self, flow: FlowSession) -> None:
        self.session_store.delete_flow(flow.flow_id)

    @staticmethod
    def _auth_controller(flow: FlowSession) -> AuthFlowController:
        if flow.kind != AUTH:
            raise FlowError(
                "Action only available in auth flows",
                current_step=flow.controller.current_step.id,
            )
        return flow.controller

    def _consume_onboarding(self, flow: FlowSession) -> None:
        onboarding_id = flow.context.get("onboarding_flow_id")
        if onboarding_id:
            self.session_store.delete_flow(onboarding_id)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health_check(self) -> Dict[str, Any]:
        health_status: Dict[str, Any] = {
            "orchestrator": "healthy",
            "services": {},
            "overall": "healthy",
            "summary": self.session_store.get_metrics(),
        }

        if not self._services_initialized:
            health_status["services"]["status"] = "lazy_loading_enabled"
            health_status["overall"] = "ready"
            return health_status

        for name, service in (("identity_provider", self.identity_provider), ("profile_store", self.profile_service)):
            check = getattr(service, "health_check", None)
            if check is None:
                health_status["services"][name] = "external"
                continue
            try:
                status = await check()
                health_status["services"][name] = status.get("status", "unknown")
                if not status.get("healthy"):
                    health_status["overall"] = "warning"
            except Exception as e:
                health_status["services"][name] = f"error: {str(e)[:50]}"
                health_status["overall"] = "warning"

        return health_status

    async def shutdown(self) -> None:
        self.session_store.close_all()
        for service in (self.identity_provider, self.profile_service):
            shutdown = getattr(service, "shutdown", None)
            if shutdown is not None:
                await shutdown()


_orchestrator: Optional[FlowOrchestrator] = None


def get_orchestrator(session_store: Optional[FlowSessionStore] = None) -> FlowOrchestrator:
    global _orchestrator

    if _orchestrator is None:
        logger.info("Creating new flow orchestrator instance")
        _orchestrator = FlowOrchestrator(session_store=session_store)

    return _orchestrator


def init_orchestrator(session_store: FlowSessionStore) -> FlowOrchestrator:
    global _orchestrator
    _orchestrator = FlowOrchestrator(session_store=session_store)
    return _orchestrator
