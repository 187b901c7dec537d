# stepflow/services/profile_service.py
"""
Profile hand-off for completed onboarding flows.

Two parts:
- flatten_onboarding_record(): the interface contract. Single-select
  fields are unwrapped from their set representation, multi-select fields
  stay sets, text fields stay strings.
- ProfileService: async Redis store that upserts the flattened record
  together with the verified identity, serialized as JSON.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union
import json
import logging

import redis.asyncio as redis

from stepflow.core.config import settings
from stepflow.core.exceptions import ProfileStoreError
from stepflow.core.service_base import BaseService, ServiceConfig
from stepflow.models.flow_models import InputKind, StepBase
from stepflow.models.flow_state import FlowState

logger = logging.getLogger(__name__)

FlatValue = Union[str, None, FrozenSet[str]]


def flatten_onboarding_record(state: FlowState, steps: Iterable[StepBase]) -> Dict[str, FlatValue]:
    """Flatten an onboarding FlowState for storage"""
    record: Dict[str, FlatValue] = {}
    for step in steps:
        if not step.has_input:
            continue
        key = step.field_key
        if step.kind is InputKind.SINGLE_SELECT:
            selection = state.selection(key)
            record[key] = next(iter(selection)) if selection else None
        elif step.kind is InputKind.MULTI_SELECT:
            record[key] = frozenset(state.selection(key))
        else:
            record[key] = state.text(key).strip()
    return record


def _to_json_value(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return value


@dataclass
class ProfileStoreConfig(ServiceConfig):
    """Configuration for the profile store"""
    url: Optional[str] = None
    key_prefix: str = "profile"
    decode_responses: bool = True
    socket_timeout: float = 5.0


class ProfileService(BaseService[ProfileStoreConfig]):
    """Upserts user profiles built from completed onboarding flows"""

    def __init__(self, config: Optional[ProfileStoreConfig] = None):
        if config is None:
            config = ProfileStoreConfig(
                url=settings.REDIS_URL,
                key_prefix=settings.PROFILE_KEY_PREFIX,
            )
        super().__init__(config, logger)

    def _validate_config(self) -> None:
        super()._validate_config()
        if not self.config.url:
            self.logger.warning("No REDIS_URL configured. Profile hand-off is disabled.")

    async def _initialize_client(self) -> Optional[redis.Redis]:
        if not self.config.url:
            return None

        client = redis.from_url(
            self.config.url,
            decode_responses=self.config.decode_responses,
            socket_timeout=self.config.socket_timeout,
        )
        await client.ping()
        self.logger.info("Redis connection successful")
        return client

    def _key(self, user_id: str) -> str:
        return f"{self.config.key_prefix}:{user_id}"

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def save_profile(
        self,
        user_id: str,
        email: str,
        record: Dict[str, FlatValue],
        full_name: Optional[str] = None,
    ) -> bool:
        """
        Upsert the profile of a verified user.

        Returns:
            True if stored, False if the store is disabled

        Raises:
            ProfileStoreError: If Redis rejects the write
        """
        await self.ensure_initialized()
        if not self.enabled:
            self.logger.warning(f"Profile for user {user_id[:8]}... not stored (store disabled)")
            return False

        key = self._key(user_id)
        profile = {
            "id": user_id,
            "email": email,
            "full_name": full_name or None,
            **{field: _to_json_value(value) for field, value in record.items()},
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            await self._client.set(key, json.dumps(profile))
        except Exception as e:
            self.logger.error(f"Saving profile failed for key '{key}': {e}")
            raise ProfileStoreError("Failed to save user profile", key=key, operation="set") from e

        self.logger.info(f"User profile saved for {user_id[:8]}...")
        return True

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        await self.ensure_initialized()
        if not self.enabled:
            return None

        key = self._key(user_id)
        try:
            value = await self._client.get(key)
        except Exception as e:
            raise ProfileStoreError("Failed to load user profile", key=key, operation="get") from e

        return json.loads(value) if value else None

    async def health_check(self) -> Dict[str, Any]:
        if not self.config.url:
            return {"healthy": True, "status": "disabled", "details": {"message": "Redis not configured"}}

        if not self._client:
            return {"healthy": False, "status": "not_connected"}

        try:
            await self._client.ping()
            return {"healthy": True, "status": "connected"}
        except Exception as e:
            return {"healthy": False, "status": "error", "details": {"error": str(e)}}

    async def _cleanup(self) -> None:
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")
