# stepflow/services/identity_provider.py
"""
Identity provider boundary.

The verification coordinator depends only on the IdentityProvider shape:

    send_one_time_code(email, create_user_if_absent, metadata) -> {ok} | {error}
    verify_one_time_code(email, code) -> {identity} | {error}

Provider failures are returned as ProviderError values, never raised, so
the coordinator can classify them once. SupabaseIdentityProvider talks to
the Supabase (GoTrue) REST API over httpx; any other provider can be
swapped in by implementing the two coroutines.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import httpx
from pydantic import BaseModel, ConfigDict

from stepflow.core.config import settings
from stepflow.core.exceptions import ConfigurationError
from stepflow.core.service_base import BaseService, ServiceConfig

logger = logging.getLogger(__name__)

NETWORK_ERROR_KIND = "network"


class ProviderError(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    status_code: Optional[int] = None
    kind: Optional[str] = None

    @property
    def is_network_error(self) -> bool:
        return self.kind == NETWORK_ERROR_KIND or (self.status_code is not None and self.status_code >= 500)


class IdentityUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    email_confirmed_at: Optional[str] = None
    created_at: Optional[str] = None


class IdentitySession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None
    token_type: str = "bearer"


class VerifiedIdentity(BaseModel):
    user: IdentityUser
    session: IdentitySession


class ProviderResponse(BaseModel):
    """Either ok (optionally with an identity) or an error, never both"""
    error: Optional[ProviderError] = None
    identity: Optional[VerifiedIdentity] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, identity: Optional[VerifiedIdentity] = None) -> "ProviderResponse":
        return cls(identity=identity)

    @classmethod
    def failure(cls, message: str, status_code: Optional[int] = None, kind: Optional[str] = None) -> "ProviderResponse":
        return cls(error=ProviderError(message=message, status_code=status_code, kind=kind))


class IdentityProvider(ABC):
    """One-time-code identity provider"""

    @abstractmethod
    async def send_one_time_code(
        self,
        email: str,
        create_user_if_absent: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProviderResponse:
        """Email a one-time code to the address"""

    @abstractmethod
    async def verify_one_time_code(self, email: str, code: str) -> ProviderResponse:
        """Exchange email + code for a user and session"""


@dataclass
class SupabaseConfig(ServiceConfig):
    """Configuration for the Supabase identity provider"""
    url: Optional[str] = None
    anon_key: Optional[str] = None
    timeout: float = 10.0


class SupabaseIdentityProvider(BaseService[SupabaseConfig], IdentityProvider):
    """
    Supabase / GoTrue one-time-code provider.

    Endpoints:
    - POST /auth/v1/otp     {email, create_user, data}
    - POST /auth/v1/verify  {type: "email", email, token}
    """

    OTP_PATH = "/auth/v1/otp"
    VERIFY_PATH = "/auth/v1/verify"

    def __init__(
        self,
        config: Optional[SupabaseConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if config is None:
            config = SupabaseConfig(
                url=settings.SUPABASE_URL,
                anon_key=settings.SUPABASE_ANON_KEY,
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            )
        super().__init__(config, logger)
        self._transport = transport

    def _validate_config(self) -> None:
        super()._validate_config()
        if not self.config.url or not self.config.anon_key:
            raise ConfigurationError(
                "Supabase URL and anon key are required",
                component=self.service_name,
            )

    async def _initialize_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.url.rstrip("/"),
            timeout=self.config.timeout,
            transport=self._transport,
            headers={
                "apikey": self.config.anon_key,
                "Authorization": f"Bearer {self.config.anon_key}",
                "Content-Type": "application/json",
            },
        )

    async def _cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def health_check(self) -> Dict[str, Any]:
        if not self._initialized:
            return {"healthy": False, "status": "not_initialized"}
        try:
            response = await self.client.get("/auth/v1/health")
            return {
                "healthy": response.status_code == 200,
                "status": "connected" if response.status_code == 200 else "degraded",
                "details": {"status_code": response.status_code},
            }
        except httpx.HTTPError as e:
            return {"healthy": False, "status": "unreachable", "details": {"error": str(e)}}

    async def send_one_time_code(
        self,
        email: str,
        create_user_if_absent: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProviderResponse:
        await self.ensure_initialized()
        payload = {
            "email": email,
            "create_user": create_user_if_absent,
            "data": metadata or {},
        }
        response = await self._post(self.OTP_PATH, payload, operation="send_one_time_code")
        if isinstance(response, ProviderResponse):
            return response
        return ProviderResponse.success()

    async def verify_one_time_code(self, email: str, code: str) -> ProviderResponse:
        await self.ensure_initialized()
        payload = {"type": "email", "email": email, "token": code}
        response = await self._post(self.VERIFY_PATH, payload, operation="verify_one_time_code")
        if isinstance(response, ProviderResponse):
            return response

        body = _json_or_empty(response)
        user = body.get("user")
        if not user or not body.get("access_token"):
            # Caller treats a missing user/session as a failed verification
            return ProviderResponse.success()

        return ProviderResponse.success(
            VerifiedIdentity(
                user=IdentityUser.model_validate(user),
                session=IdentitySession.model_validate(body),
            )
        )

    async def _post(self, path: str, payload: Dict[str, Any], operation: str):
        """POST and return the httpx response, or a failure ProviderResponse"""
        try:
            response = await self.client.post(path, json=payload)
        except httpx.HTTPError as e:
            self.logger.warning(f"{operation} transport error: {type(e).__name__}: {e}")
            return ProviderResponse.failure(
                "Network error. Please check your connection and try again.",
                kind=NETWORK_ERROR_KIND,
            )

        if response.is_success:
            return response

        body = _json_or_empty(response)
        message = (
            body.get("msg")
            or body.get("message")
            or body.get("error_description")
            or body.get("error")
            or f"Request failed with status {response.status_code}"
        )
        kind = body.get("error_code") or body.get("code") or "http_error"
        self.logger.info(f"{operation} rejected by provider: {response.status_code} {kind}")
        return ProviderResponse.failure(str(message), status_code=response.status_code, kind=str(kind))


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
