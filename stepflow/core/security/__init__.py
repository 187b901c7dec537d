"""
Security layer for stepflow.

Token-guarded flow sessions, kept on top of the flow controllers rather
than inside them.
"""

from .session_security import (
    FlowSession,
    FlowSessionStore,
    FlowToken,
    get_flow_session_store,
    init_flow_session_store
)

__all__ = [
    'FlowSession',
    'FlowSessionStore',
    'FlowToken',
    'get_flow_session_store',
    'init_flow_session_store'
]
