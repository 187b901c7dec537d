# tests/core/test_verification.py
"""Unit tests for the VerificationCoordinator"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from stepflow.core.exceptions import ConfigurationError
from stepflow.core.verification import (
    NO_ACCOUNT_MESSAGE,
    NO_SESSION_MESSAGE,
    USER_EXISTS_MESSAGE,
    VerificationCoordinator,
    classify_send_error,
)
from stepflow.models.flow_models import FlowMode
from stepflow.models.flow_state import ErrorKind, ErrorScope
from stepflow.services.identity_provider import ProviderError, ProviderResponse


@pytest.mark.unit
class TestSendCode:

    @pytest.mark.asyncio
    async def test_malformed_email_never_reaches_provider(self, coordinator, mock_provider):
        result = await coordinator.send_code("bad-email", FlowMode.SIGNUP)

        assert not result.success
        assert result.error.scope is ErrorScope.FIELD
        assert result.error.field == "email"
        assert result.error.kind is ErrorKind.FORMAT
        mock_provider.send_one_time_code.assert_not_called()

    @pytest.mark.asyncio
    async def test_signup_creates_user_and_normalizes_email(self, coordinator, mock_provider):
        result = await coordinator.send_code("  A@B.com ", FlowMode.SIGNUP)

        assert result.success
        assert result.email == "a@b.com"
        mock_provider.send_one_time_code.assert_awaited_once_with(
            "a@b.com", create_user_if_absent=True, metadata=None
        )

    @pytest.mark.asyncio
    async def test_login_never_creates_user(self, coordinator, mock_provider):
        await coordinator.send_code("a@b.com", FlowMode.LOGIN)
        assert mock_provider.send_one_time_code.await_args.kwargs["create_user_if_absent"] is False

    @pytest.mark.asyncio
    async def test_signup_conflict_offers_continue_anyway(self, coordinator, mock_provider):
        mock_provider.send_one_time_code.return_value = ProviderResponse.failure(
            "User already registered", status_code=400
        )

        result = await coordinator.send_code("a@b.com", FlowMode.SIGNUP)

        assert not result.success
        assert result.error.field == "email"
        assert result.error.message == USER_EXISTS_MESSAGE
        assert result.error.continue_anyway is True
        assert result.error.kind is ErrorKind.ACCOUNT_CONFLICT
        assert result.error.code == "user_already_exists"

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_flow_error(self, coordinator, mock_provider):
        mock_provider.send_one_time_code.side_effect = ConfigurationError("Supabase URL missing")

        result = await coordinator.send_code("a@b.com", FlowMode.SIGNUP)

        assert result.error.scope is ErrorScope.FLOW
        assert not coordinator.in_flight


@pytest.mark.unit
class TestClassifySendError:

    @pytest.mark.parametrize("message, status", [
        ("User already exists", None),
        ("Email exists", None),
        ("Unprocessable", 422),
    ])
    def test_signup_conflict_detection(self, message, status):
        error = classify_send_error(ProviderError(message=message, status_code=status), FlowMode.SIGNUP)
        assert error.kind is ErrorKind.ACCOUNT_CONFLICT
        assert error.continue_anyway

    @pytest.mark.parametrize("message, status", [
        ("Signups not allowed for otp: user not found", 400),
        ("Invalid login", None),
        ("Something odd", 400),
    ])
    def test_login_account_not_found(self, message, status):
        error = classify_send_error(ProviderError(message=message, status_code=status), FlowMode.LOGIN)
        assert error.kind is ErrorKind.ACCOUNT_NOT_FOUND
        assert error.message == NO_ACCOUNT_MESSAGE
        assert error.field == "email"

    def test_email_related_error_is_field_scoped(self):
        error = classify_send_error(ProviderError(message="Email rate limit exceeded", status_code=429), FlowMode.SIGNUP)
        assert error.scope is ErrorScope.FIELD
        assert error.field == "email"
        assert error.message == "Email rate limit exceeded"

    def test_other_errors_are_flow_scoped(self):
        error = classify_send_error(ProviderError(message="Too many requests", status_code=429), FlowMode.SIGNUP)
        assert error.scope is ErrorScope.FLOW
        assert error.field is None

    def test_network_errors_are_flow_scoped(self):
        error = classify_send_error(ProviderError(message="Network error", kind="network"), FlowMode.LOGIN)
        assert error.scope is ErrorScope.FLOW


@pytest.mark.unit
class TestVerifyCode:

    @pytest.mark.asyncio
    async def test_short_code_never_reaches_provider(self, coordinator, mock_provider):
        result = await coordinator.verify_code("a@b.com", "12345")

        assert not result.success
        assert result.error.field == "verification_code"
        assert result.error.kind is ErrorKind.FORMAT
        assert result.error.message == "Verification code must be 6 digits"
        mock_provider.verify_one_time_code.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_numeric_code_rejected(self, coordinator, mock_provider):
        result = await coordinator.verify_code("a@b.com", "12a456")

        assert result.error.message == "Verification code must contain only numbers"
        mock_provider.verify_one_time_code.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_hands_identity_to_session_handler(self, mock_provider, identity):
        on_session = AsyncMock()
        coordinator = VerificationCoordinator(mock_provider, on_session=on_session)

        result = await coordinator.verify_code("a@b.com", "123456")

        assert result.success
        assert result.identity == identity
        on_session.assert_awaited_once_with(identity)

    @pytest.mark.asyncio
    async def test_sync_session_handler_is_accepted(self, mock_provider, identity):
        on_session = Mock(return_value=None)
        coordinator = VerificationCoordinator(mock_provider, on_session=on_session)

        await coordinator.verify_code("a@b.com", "123456")

        on_session.assert_called_once_with(identity)

    @pytest.mark.asyncio
    async def test_wrong_code_is_field_error(self, coordinator, mock_provider):
        mock_provider.verify_one_time_code.return_value = ProviderResponse.failure(
            "Token has expired or is invalid", status_code=403, kind="otp_expired"
        )

        result = await coordinator.verify_code("a@b.com", "123456")

        assert result.error.scope is ErrorScope.FIELD
        assert result.error.field == "verification_code"
        assert result.error.kind is ErrorKind.PROVIDER

    @pytest.mark.asyncio
    async def test_server_error_is_flow_error(self, coordinator, mock_provider):
        mock_provider.verify_one_time_code.return_value = ProviderResponse.failure("Bad gateway", status_code=502)

        result = await coordinator.verify_code("a@b.com", "123456")

        assert result.error.scope is ErrorScope.FLOW

    @pytest.mark.asyncio
    async def test_success_without_session_is_flow_error(self, coordinator, mock_provider):
        mock_provider.verify_one_time_code.return_value = ProviderResponse.success()

        result = await coordinator.verify_code("a@b.com", "123456")

        assert not result.success
        assert result.error.scope is ErrorScope.FLOW
        assert result.error.message == NO_SESSION_MESSAGE


@pytest.mark.unit
class TestConcurrencyAndClose:

    @pytest.mark.asyncio
    async def test_second_call_while_in_flight_is_ignored(self, mock_provider, identity):
        release = asyncio.Event()

        async def slow_verify(email, code):
            await release.wait()
            return ProviderResponse.success(identity)

        mock_provider.verify_one_time_code.side_effect = slow_verify
        coordinator = VerificationCoordinator(mock_provider)

        first = asyncio.create_task(coordinator.verify_code("a@b.com", "123456"))
        await asyncio.sleep(0)
        assert coordinator.in_flight

        second = await coordinator.verify_code("a@b.com", "123456")
        assert second.ignored
        assert mock_provider.verify_one_time_code.await_count == 1

        release.set()
        assert (await first).success
        assert not coordinator.in_flight

    @pytest.mark.asyncio
    async def test_late_result_after_close_is_discarded(self, mock_provider, identity):
        release = asyncio.Event()
        on_session = AsyncMock()

        async def slow_verify(email, code):
            await release.wait()
            return ProviderResponse.success(identity)

        mock_provider.verify_one_time_code.side_effect = slow_verify
        coordinator = VerificationCoordinator(mock_provider, on_session=on_session)

        pending = asyncio.create_task(coordinator.verify_code("a@b.com", "123456"))
        await asyncio.sleep(0)
        coordinator.close()
        release.set()

        result = await pending
        assert result.ignored
        assert not result.success
        on_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_closed_coordinator_ignores_new_calls(self, coordinator, mock_provider):
        coordinator.close()
        result = await coordinator.send_code("a@b.com", FlowMode.SIGNUP)
        assert result.ignored
        mock_provider.send_one_time_code.assert_not_called()


@pytest.mark.unit
class TestResend:

    @pytest.mark.asyncio
    async def test_resend_rejected_while_cooling_down(self, mock_provider, cooldown):
        coordinator = VerificationCoordinator(mock_provider, cooldown=cooldown)
        cooldown.start()

        result = await coordinator.resend("a@b.com", FlowMode.SIGNUP)

        assert result.ignored
        mock_provider.send_one_time_code.assert_not_called()

    @pytest.mark.asyncio
    async def test_resend_after_expiry_starts_exactly_one_new_countdown(self, mock_provider, cooldown):
        coordinator = VerificationCoordinator(mock_provider, cooldown=cooldown)
        cooldown.start()
        for _ in range(60):
            cooldown.tick()
        assert cooldown.can_trigger

        first = await coordinator.resend("a@b.com", FlowMode.SIGNUP)
        assert first.success
        assert cooldown.remaining_seconds == 60

        second = await coordinator.resend("a@b.com", FlowMode.SIGNUP)
        assert second.ignored
        assert mock_provider.send_one_time_code.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_resend_leaves_cooldown_untouched(self, mock_provider, cooldown):
        coordinator = VerificationCoordinator(mock_provider, cooldown=cooldown)
        mock_provider.send_one_time_code.return_value = ProviderResponse.failure("Too many requests", status_code=429)

        result = await coordinator.resend("a@b.com", FlowMode.LOGIN)

        assert not result.success
        assert cooldown.can_trigger
        assert cooldown.remaining_seconds == 0
