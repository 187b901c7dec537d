# stepflow/content/auth_texts.py
"""
Auth flow copy and step catalogue.

Sign-up and login share one step order (welcome -> email -> verification);
only the titles and the success message differ per mode.
"""

from typing import Any, Dict

from stepflow.core.step_registry import StepRegistry
from stepflow.models.flow_models import AuthStep, FlowMode, FreeTextStep, InfoStep
from stepflow.models.flow_state import CooldownState

# ============================================================================
# WELCOME
# ============================================================================

WELCOME = {
    FlowMode.SIGNUP: {
        "title": "Almost there!",
        "subtitle": "You're ready to go. Let's create your account",
    },
    FlowMode.LOGIN: {
        "title": "Welcome back",
        "subtitle": "Sign in to continue to your account",
    },
}

CONTINUE_WITH_EMAIL = "Continue with Email"
TERMS_TEXT = "By continuing, you agree to our"
TERMS_LINK = "Terms of Use"

# ============================================================================
# EMAIL / VERIFICATION
# ============================================================================

EMAIL_TITLE = "Enter your email"
EMAIL_SUBTITLE = "We'll send you a verification code"
EMAIL_PLACEHOLDER = "Enter your email"

VERIFICATION_TITLE = "Check your email"
VERIFICATION_SUBTITLE = "We sent a verification code to"
RESEND_TEXT = "Didn't receive the code?"
RESEND_LINK = "Resend"


def resend_countdown(remaining_seconds: int) -> str:
    return f"Resend in {remaining_seconds}s"


# ============================================================================
# SUCCESS
# ============================================================================

SUCCESS = {
    FlowMode.SIGNUP: {
        "title": "Welcome",
        "subtitle": "Your account has been created successfully",
    },
    FlowMode.LOGIN: {
        "title": "Welcome back",
        "subtitle": "You're successfully signed in",
    },
}

# Snap points of the auth sheet
WELCOME_SIZE = "55%"
DEFAULT_SIZE = "90%"


def build_auth_registry(mode: FlowMode) -> StepRegistry:
    """Auth step order with the copy of the given mode"""
    welcome = WELCOME[mode]
    steps = [
        InfoStep(
            id=AuthStep.WELCOME.value,
            title=welcome["title"],
            description=welcome["subtitle"],
            size_hint=WELCOME_SIZE,
            show_back_button=False,
        ),
        FreeTextStep(
            id=AuthStep.EMAIL.value,
            title=EMAIL_TITLE,
            description=EMAIL_SUBTITLE,
            placeholder=EMAIL_PLACEHOLDER,
            size_hint=DEFAULT_SIZE,
            error_message="Email is required",
        ),
        FreeTextStep(
            id=AuthStep.VERIFICATION.value,
            field_key="verification_code",
            title=VERIFICATION_TITLE,
            description=VERIFICATION_SUBTITLE,
            size_hint=DEFAULT_SIZE,
            error_message="Verification code is required",
        ),
    ]
    return StepRegistry(steps, name=f"auth:{mode.value}")


def success_copy(mode: FlowMode) -> Dict[str, str]:
    return SUCCESS[mode]


def auth_copy(step_id: str, cooldown: CooldownState) -> Dict[str, Any]:
    """Per-step button, terms and resend copy"""
    if step_id == AuthStep.WELCOME.value:
        return {
            "primary_button": CONTINUE_WITH_EMAIL,
            "terms": TERMS_TEXT,
            "terms_link": TERMS_LINK,
        }
    if step_id == AuthStep.VERIFICATION.value:
        return {
            "resend_prompt": RESEND_TEXT,
            "resend_action": RESEND_LINK if cooldown.can_trigger else resend_countdown(cooldown.remaining_seconds),
        }
    return {}
