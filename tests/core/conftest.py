# tests/core/conftest.py
"""
Shared fixtures for core flow tests.

Provides step registries, a mocked identity provider and controllable
sleep functions so animator and cooldown timing can be driven by hand.
"""

import asyncio
from typing import List, Tuple

import pytest
from unittest.mock import AsyncMock

from stepflow.core.cooldown import ResendCooldownTimer
from stepflow.core.step_registry import StepRegistry
from stepflow.core.transition_animator import TransitionAnimator
from stepflow.core.verification import VerificationCoordinator
from stepflow.models.flow_models import FreeTextStep, MultiSelectStep, SingleSelectStep
from stepflow.services.identity_provider import (
    IdentityProvider,
    IdentitySession,
    IdentityUser,
    ProviderResponse,
    VerifiedIdentity,
)


class ManualSleep:
    """Sleep replacement that only returns when released by the test"""

    def __init__(self):
        self.pending: List[Tuple[float, asyncio.Future]] = []

    async def __call__(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self.pending.append((seconds, future))
        await future

    @property
    def durations(self) -> List[float]:
        return [seconds for seconds, _ in self.pending]

    async def release_next(self) -> None:
        _, future = self.pending.pop(0)
        if not future.done():
            future.set_result(None)
        # Let the woken coroutine run up to its next suspension point
        for _ in range(3):
            await asyncio.sleep(0)


async def immediate_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


async def wait_forever(seconds: float) -> None:
    await asyncio.Event().wait()


@pytest.fixture
def manual_sleep():
    return ManualSleep()


@pytest.fixture
def fast_animator():
    return TransitionAnimator(fade_out_ms=150, fade_in_ms=200, sleep=immediate_sleep)


@pytest.fixture
def scenario_registry():
    """gender (single-select, required) -> vision (free-text, required)"""
    return StepRegistry([
        SingleSelectStep(
            id="gender",
            options=[
                {"id": "female", "label": "Female"},
                {"id": "male", "label": "Male"},
                {"id": "other", "label": "Other", "disabled": True},
            ],
        ),
        FreeTextStep(id="vision"),
    ], name="scenario")


@pytest.fixture
def three_step_registry():
    return StepRegistry([
        SingleSelectStep(id="level", options=[{"id": "a", "label": "A"}, {"id": "b", "label": "B"}]),
        MultiSelectStep(id="goals", options=[{"id": "x", "label": "X"}, {"id": "y", "label": "Y"}]),
        FreeTextStep(id="notes", required=False),
    ], name="three")


@pytest.fixture
def identity():
    return VerifiedIdentity(
        user=IdentityUser(id="user-1234567890", email="a@b.com"),
        session=IdentitySession(access_token="access", refresh_token="refresh"),
    )


@pytest.fixture
def mock_provider(identity):
    """IdentityProvider that accepts every email and code"""
    provider = AsyncMock(spec=IdentityProvider)
    provider.send_one_time_code.return_value = ProviderResponse.success()
    provider.verify_one_time_code.return_value = ProviderResponse.success(identity)
    return provider


@pytest.fixture
async def cooldown():
    timer = ResendCooldownTimer(60, sleep=wait_forever)
    yield timer
    timer.cancel()


@pytest.fixture
def coordinator(mock_provider, cooldown):
    return VerificationCoordinator(mock_provider, cooldown=cooldown)
