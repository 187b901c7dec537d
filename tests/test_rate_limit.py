# tests/test_rate_limit.py
"""Tests for the rate limit tiers and key function"""

from starlette.requests import Request

from stepflow.core.rate_limit_config import (
    RATE_LIMIT_MESSAGES,
    create_custom_key_func,
    get_rate_limit,
    get_rate_limit_message,
    get_real_ip,
)


def make_request(headers=None, client_host="10.0.0.1") -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/flows/onboarding",
        "headers": raw_headers,
        "client": (client_host, 12345),
    })


def test_tiers():
    assert get_rate_limit("flow_open") == "10/minute"
    assert get_rate_limit("code_send") == "5/minute"
    assert get_rate_limit("code_send", tier="trusted") == "20/minute"


def test_unknown_endpoint_falls_back_to_global():
    assert get_rate_limit("something_else") == "100/minute"
    assert get_rate_limit("flow_step", tier="nonexistent") == "60/minute"


def test_messages():
    assert get_rate_limit_message("code_send") == RATE_LIMIT_MESSAGES["code_send"]
    assert get_rate_limit_message("unknown") == RATE_LIMIT_MESSAGES["default"]


def test_real_ip_prefers_forwarded_for():
    request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2", "X-Real-IP": "198.51.100.1"})
    assert get_real_ip(request) == "203.0.113.7"


def test_real_ip_header_then_client():
    assert get_real_ip(make_request({"X-Real-IP": "198.51.100.1"})) == "198.51.100.1"
    assert get_real_ip(make_request()) == "10.0.0.1"


def test_key_func_production(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    key_func = create_custom_key_func("stepflow")

    assert key_func(make_request({"X-API-Key": "abc"})) == "stepflow:10.0.0.1"


def test_key_func_development_includes_api_key(monkeypatch):
    monkeypatch.setenv("ENV", "development")
    key_func = create_custom_key_func("stepflow")

    assert key_func(make_request({"X-API-Key": "abc"})) == "stepflow:abc:10.0.0.1"
