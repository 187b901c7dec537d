"""
Flow session security.

Each open flow is held in memory together with a secret flow token. The
API only hands a controller back to callers that present both the flow id
and the matching token, and expired flows are torn down automatically.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from datetime import datetime, timedelta, timezone
import logging
import secrets
import uuid

from pydantic import BaseModel, Field

from stepflow.core.config import settings
from stepflow.core.exceptions import SecurityError
from stepflow.core.flow_controller import FlowController

logger = logging.getLogger(__name__)


def _ttl() -> timedelta:
    return timedelta(minutes=settings.FLOW_TOKEN_TTL_MINUTES)


class FlowToken(BaseModel):
    """
    Secret token guarding one flow.

    Kept apart from the controller: the controller owns flow state, the
    token owns access.
    """
    token: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc) + _ttl())
    last_activity: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at

    def validate(self, provided_token: str) -> bool:
        """Constant-time comparison"""
        return secrets.compare_digest(self.token, provided_token)

    def refresh(self) -> None:
        now = datetime.now(timezone.utc)
        self.last_activity = now
        self.expires_at = now + _ttl()


@dataclass
class FlowSession:
    """An open flow: its controller plus hand-off context"""
    kind: str  # "onboarding" or "auth"
    controller: FlowController
    flow_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    context: Dict[str, Any] = field(default_factory=dict)


class FlowSessionStore:
    """
    Token-guarded in-memory store of open flows.

    Lookups return None instead of raising, so the request layer decides
    how to respond. Removing a flow always closes its controller.
    """

    def __init__(self):
        self._flows: Dict[str, FlowSession] = {}
        self._tokens: Dict[str, FlowToken] = {}

        self._cleanup_interval = timedelta(minutes=5)
        self._last_cleanup = datetime.now(timezone.utc)

        self._creation_count = 0
        self._validation_failures = 0

    def create_flow(
        self,
        kind: str,
        controller: FlowController,
        context: Optional[Dict[str, Any]] = None,
    ) -> Tuple[FlowSession, str]:
        """
        Register a new flow.

        Returns:
            Tuple of (FlowSession, token_string)
        """
        flow = FlowSession(kind=kind, controller=controller, context=context if context is not None else {})
        token = FlowToken()

        self._flows[flow.flow_id] = flow
        self._tokens[flow.flow_id] = token
        self._creation_count += 1

        self._cleanup_expired()

        logger.info(f"🔐 Opened {kind} flow {flow.flow_id[:8]}...")
        return flow, token.token

    def validate_and_get_flow(self, flow_id: str, token: str) -> Optional[FlowSession]:
        """
        Returns:
            FlowSession if the token matches and has not expired, else None
        """
        flow = self._flows.get(flow_id)
        if not flow:
            logger.debug(f"Flow {flow_id[:8]}... not found")
            return None

        flow_token = self._tokens.get(flow_id)
        if not flow_token:
            logger.warning(f"🚫 No token for flow {flow_id[:8]}...")
            self._validation_failures += 1
            return None

        if flow_token.is_expired():
            logger.info(f"⏰ Flow {flow_id[:8]}... expired")
            self.delete_flow(flow_id)
            return None

        if not flow_token.validate(token):
            logger.warning(f"🔒 Invalid token for flow {flow_id[:8]}...")
            self._validation_failures += 1
            return None

        flow_token.refresh()
        return flow

    def delete_flow(self, flow_id: str) -> None:
        """Close the flow's controller and forget it"""
        flow = self._flows.pop(flow_id, None)
        if flow is not None:
            flow.controller.close()
        if self._tokens.pop(flow_id, None) is not None:
            logger.debug(f"🗑️ Deleted flow {flow_id[:8]}...")

    def close_all(self) -> None:
        for flow_id in list(self._flows):
            self.delete_flow(flow_id)

    def _cleanup_expired(self) -> None:
        now = datetime.now(timezone.utc)
        if now - self._last_cleanup < self._cleanup_interval:
            return

        expired_ids = [fid for fid, token in self._tokens.items() if token.is_expired()]
        for fid in expired_ids:
            self.delete_flow(fid)

        self._last_cleanup = now

        if expired_ids:
            logger.info(f"🧹 Cleaned up {len(expired_ids)} expired flows")

    def get_metrics(self) -> Dict[str, int]:
        return {
            "active_flows": len(self._flows),
            "total_created": self._creation_count,
            "validation_failures": self._validation_failures,
            "closed": self._creation_count - len(self._flows),
        }

    def get_flow_info(self, flow_id: str) -> Optional[Dict[str, Any]]:
        """Flow information for debugging (no token exposed)"""
        flow = self._flows.get(flow_id)
        token = self._tokens.get(flow_id)

        if not flow or not token:
            return None

        return {
            "flow_id": flow_id,
            "kind": flow.kind,
            "created_at": token.created_at.isoformat(),
            "expires_at": token.expires_at.isoformat(),
            "last_activity": token.last_activity.isoformat(),
            "is_expired": token.is_expired(),
            "current_step": flow.controller.current_step.id,
        }


# Global instance - initialized in main.py
flow_session_store: Optional[FlowSessionStore] = None


def get_flow_session_store() -> FlowSessionStore:
    """FastAPI dependency"""
    global flow_session_store
    if flow_session_store is None:
        raise SecurityError("FlowSessionStore not initialized", error_type="not_initialized")
    return flow_session_store


def init_flow_session_store() -> FlowSessionStore:
    global flow_session_store
    flow_session_store = FlowSessionStore()
    logger.info("🔐 Initialized FlowSessionStore")
    return flow_session_store
