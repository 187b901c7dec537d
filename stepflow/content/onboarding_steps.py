# stepflow/content/onboarding_steps.py
"""
Onboarding questionnaire.

Three required questions asked before sign-up. Answers are flattened and
stored on the user profile once the account is verified.
"""

from typing import Dict, List

from stepflow.core.step_registry import StepRegistry
from stepflow.models.flow_models import MultiSelectStep, SingleSelectStep, StepBase

# ============================================================================
# BUTTON / PROGRESS COPY
# ============================================================================

CONTINUE_BUTTON = "Continue"
COMPLETE_BUTTON = "Complete Setup"
BACK_BUTTON = "Back"

INCOMPLETE_MESSAGE = "Please complete all onboarding steps before continuing"


def progress_label(step_number: int, total_steps: int) -> str:
    return f"Step {step_number} of {total_steps}"


# ============================================================================
# STEPS
# ============================================================================

FITNESS_LEVEL = SingleSelectStep(
    id="fitness_level",
    title="What's your fitness level?",
    description="Help us personalize your workout experience",
    options=[
        {"id": "beginner", "label": "Beginner",
         "description": "New to fitness or getting back into it"},
        {"id": "intermediate", "label": "Intermediate",
         "description": "Regular exercise routine, familiar with basics"},
        {"id": "advanced", "label": "Advanced",
         "description": "Experienced with complex movements and training"},
    ],
)

GOALS = MultiSelectStep(
    id="goals",
    title="What are your fitness goals?",
    description="Select all that apply to customize your experience",
    options=[
        {"id": "weight_loss", "label": "Weight Loss", "description": "Burn calories and lose weight"},
        {"id": "muscle_gain", "label": "Muscle Gain", "description": "Build strength and muscle mass"},
        {"id": "endurance", "label": "Endurance", "description": "Improve cardiovascular health"},
        {"id": "flexibility", "label": "Flexibility", "description": "Increase mobility and flexibility"},
        {"id": "general_fitness", "label": "General Fitness", "description": "Overall health and wellness"},
    ],
)

WORKOUT_FREQUENCY = SingleSelectStep(
    id="workout_frequency",
    title="How often do you want to work out?",
    description="We'll suggest a routine that fits your schedule",
    options=[
        {"id": "2-3_times", "label": "2-3 times per week",
         "description": "Perfect for beginners or busy schedules"},
        {"id": "4-5_times", "label": "4-5 times per week",
         "description": "Great for building consistent habits"},
        {"id": "6-7_times", "label": "6-7 times per week",
         "description": "For dedicated fitness enthusiasts"},
    ],
)

ONBOARDING_STEPS: List[StepBase] = [FITNESS_LEVEL, GOALS, WORKOUT_FREQUENCY]


def build_onboarding_registry() -> StepRegistry:
    return StepRegistry(ONBOARDING_STEPS, name="onboarding")


def onboarding_copy(index: int, total_steps: int) -> Dict[str, str]:
    """Button and progress copy for the step at index"""
    is_last = index == total_steps - 1
    return {
        "progress": progress_label(index + 1, total_steps),
        "primary_button": COMPLETE_BUTTON if is_last else CONTINUE_BUTTON,
        "back_button": BACK_BUTTON,
    }
