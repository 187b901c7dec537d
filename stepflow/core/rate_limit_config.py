"""
Rate limiting configuration for the stepflow API
"""

from typing import Callable
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
import os


def get_real_ip(request: Request) -> str:
    """
    Get the real IP address, considering proxy headers.
    Needed when running behind a load balancer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def create_custom_key_func(prefix: str = "") -> Callable:
    """
    Key function combining IP and, in development, the API key.
    """
    def key_func(request: Request) -> str:
        ip = get_real_ip(request)
        api_key = request.headers.get("X-API-Key", "no-key")

        # In development, also consider API key to avoid limiting yourself
        if os.getenv("ENV") == "development":
            return f"{prefix}:{api_key}:{ip}"

        return f"{prefix}:{ip}"

    return key_func


RATE_LIMIT_TIERS = {
    "default": {
        "flow_open": "10/minute",       # New onboarding/auth flows
        "flow_step": "60/minute",       # Field updates and navigation
        "code_send": "5/minute",        # Anything that emails a one-time code
        "global": "100/minute"
    },
    "trusted": {
        "flow_open": "50/minute",
        "flow_step": "300/minute",
        "code_send": "20/minute",
        "global": "500/minute"
    }
}

RATE_LIMIT_MESSAGES = {
    "default": "Too many requests. Please wait a moment and try again.",
    "flow_open": "Too many flows started. Please wait a minute.",
    "flow_step": "Too many actions. Please slow down a little.",
    "code_send": "Too many verification codes requested. Please wait before trying again.",
}


def get_rate_limit(endpoint: str, tier: str = "default") -> str:
    limits = RATE_LIMIT_TIERS.get(tier, RATE_LIMIT_TIERS["default"])
    return limits.get(endpoint, limits["global"])


def get_rate_limit_message(endpoint: str) -> str:
    """Get custom error message for rate limited endpoint"""
    return RATE_LIMIT_MESSAGES.get(endpoint, RATE_LIMIT_MESSAGES["default"])


def create_limiter() -> Limiter:
    return Limiter(key_func=create_custom_key_func("stepflow"))
