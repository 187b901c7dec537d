# stepflow/main.py
"""
stepflow FastAPI application.

Exposes the onboarding and auth flows over HTTP. Every flow is addressed by
its id and guarded by the flow token returned when it was opened
(X-Flow-Token header); all flow endpoints additionally require the API key.
"""

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.security import APIKeyHeader
from slowapi.errors import RateLimitExceeded
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union
from contextlib import asynccontextmanager
from datetime import datetime
import os
import secrets

from stepflow.core.config import settings, validate_required_settings
from stepflow.core.exceptions import (
    FlowError,
    SecurityError,
    SessionError,
    StepflowBaseException,
    ValidationError,
)
from stepflow.core.logging_config import setup_logging
from stepflow.core.orchestrator import FlowOrchestrator, init_orchestrator
from stepflow.core.rate_limit_config import create_limiter, get_rate_limit, get_rate_limit_message
from stepflow.core.security import init_flow_session_store
from stepflow.core.security.session_security import FlowSession
from stepflow.models.flow_models import FlowMode

# Setup logging
logger = setup_logging()

orchestrator: Optional[FlowOrchestrator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan event handler for startup/shutdown"""
    global orchestrator

    logger.info("=" * 60)
    logger.info(f"🚀 {settings.APP_NAME} API Starting...")
    logger.info("=" * 60)

    # Warn but don't fail
    if not validate_required_settings():
        logger.warning("⚠️ Some environment variables are missing - services may fail on first use")

    try:
        store = init_flow_session_store()
        orchestrator = init_orchestrator(store)

        logger.info("📋 Configuration:")
        logger.info(f"  - Resend cooldown: {settings.RESEND_COOLDOWN_SECONDS}s")
        logger.info(f"  - Flow token TTL: {settings.FLOW_TOKEN_TTL_MINUTES} min")
        logger.info("  - Services: Will initialize on first use")
        logger.info("✅ API Ready!")
    except Exception as e:
        logger.error(f"❌ Failed to initialize orchestrator: {e}")
        raise

    yield

    logger.info("🛑 API shutting down...")
    if orchestrator is not None:
        await orchestrator.shutdown()
    logger.info("👋 Goodbye!")


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Stepped onboarding and one-time-code authentication flows",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None
)

# =============================================================================
# API KEY AUTHENTICATION
# =============================================================================

API_KEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


def get_api_key() -> str:
    """Get API key from settings or generate one for development"""
    api_key = settings.STEPFLOW_API_KEY
    if not api_key:
        api_key = secrets.token_urlsafe(32)
        logger.warning("⚠️ No STEPFLOW_API_KEY set. Generated temporary key.")
        logger.warning("⚠️ Set STEPFLOW_API_KEY environment variable for production!")
    else:
        logger.info("✅ API Key configured from environment")
    return api_key


VALID_API_KEY = get_api_key()


def get_safe_error_message(error: Exception, context: str = "") -> str:
    """Return a safe error message that doesn't expose internal details"""
    logger.error(f"Error in {context}: {type(error).__name__}: {str(error)}")

    if isinstance(error, HTTPException):
        return error.detail

    error_messages = {
        "ConnectionError": "Connection error. Please try again later.",
        "TimeoutError": "The request took too long. Please try again.",
        "ServiceError": "A required service is unavailable. Please try again later.",
        "ConfigurationError": "The service is not configured correctly.",
    }

    error_type = type(error).__name__
    return error_messages.get(error_type, "An error occurred. Please try again later.")


async def verify_api_key(api_key: Optional[str] = Depends(api_key_header)):
    """Verify API key for protected endpoints"""
    if api_key is None:
        logger.warning("❌ Request without API key")
        raise HTTPException(
            status_code=401,
            detail="Missing API Key. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if not secrets.compare_digest(api_key, VALID_API_KEY):
        logger.warning("❌ Invalid API key attempt detected")
        raise HTTPException(
            status_code=401,
            detail="Invalid API Key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key


def to_http_exception(error: Exception, context: str) -> HTTPException:
    """Map stepflow exceptions to HTTP errors"""
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, (SessionError, SecurityError)):
        return HTTPException(status_code=401, detail="Invalid or expired flow. Please start again.")
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=error.message)
    if isinstance(error, FlowError):
        return HTTPException(status_code=409, detail=error.message)
    return HTTPException(status_code=500, detail=get_safe_error_message(error, context))


# =============================================================================
# RATE LIMITING
# =============================================================================

limiter = create_limiter()


def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Rate limit response with a helpful message"""
    response = PlainTextResponse(
        content=get_rate_limit_message("default"),
        status_code=429,
    )
    response.headers["Retry-After"] = "60"
    response.headers["X-RateLimit-Limit"] = str(getattr(exc, "limit", "N/A"))
    return response


app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)

# Required by slowapi
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    path = request.url.path
    if path not in ("/", "/health", "/healthz", "/ready", "/alive"):
        logger.info(f"📥 Request: {request.method} {path}")
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"

    if "Server" in response.headers:
        del response.headers["Server"]

    return response


allowed_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
if not allowed_origins and settings.DEBUG:
    allowed_origins = ["http://localhost:8081", "http://127.0.0.1:8081"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# =============================================================================
# API MODELS
# =============================================================================

class OpenFlowResponse(BaseModel):
    flow_id: str
    flow_token: str
    flow: Dict[str, Any]


class OpenAuthRequest(BaseModel):
    mode: FlowMode = FlowMode.SIGNUP
    onboarding_flow_id: Optional[str] = None
    onboarding_flow_token: Optional[str] = None
    full_name: str = ""


class FieldUpdateRequest(BaseModel):
    field: str
    value: Union[str, List[str]]


class SelectRequest(BaseModel):
    option_id: str = Field(min_length=1)


class JumpRequest(BaseModel):
    step_id: str = Field(min_length=1)


def get_orchestrator_or_503() -> FlowOrchestrator:
    if orchestrator is None:
        logger.error("Orchestrator not initialized!")
        raise HTTPException(status_code=503, detail="Service not ready")
    return orchestrator


def resolve_flow(
    flow_id: str,
    x_flow_token: str = Header(..., alias="X-Flow-Token"),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
) -> FlowSession:
    try:
        return orch.get_flow(flow_id, x_flow_token)
    except SessionError as e:
        logger.warning(f"Invalid flow or token: {flow_id[:8]}...")
        raise to_http_exception(e, "resolve_flow")


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/", status_code=200)
def read_root():
    return {"status": "ok", "version": "1.0.0", "service": "stepflow"}


@app.get("/health", status_code=200)
def health():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.get("/healthz", response_class=PlainTextResponse, status_code=200)
def healthz():
    return "OK"


@app.get("/ready", status_code=200)
def ready():
    return {"ready": orchestrator is not None}


@app.get("/alive", status_code=200)
def alive():
    return {"alive": True}


@app.get("/health/services", dependencies=[Depends(verify_api_key)])
async def services_health(orch: FlowOrchestrator = Depends(get_orchestrator_or_503)):
    try:
        return await orch.health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"overall": "unhealthy", "error": get_safe_error_message(e, "services_health")}


# =============================================================================
# FLOWS
# =============================================================================

@app.post("/flows/onboarding", response_model=OpenFlowResponse, dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_open"))
async def open_onboarding(request: Request, orch: FlowOrchestrator = Depends(get_orchestrator_or_503)):
    flow, token = orch.open_onboarding()
    return {"flow_id": flow.flow_id, "flow_token": token, "flow": orch.describe(flow)}


@app.post("/flows/auth", response_model=OpenFlowResponse, dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_open"))
async def open_auth(
    request: Request,
    req: OpenAuthRequest,
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        flow, token = orch.open_auth(
            req.mode,
            onboarding_flow_id=req.onboarding_flow_id,
            onboarding_token=req.onboarding_flow_token,
            full_name=req.full_name,
        )
    except StepflowBaseException as e:
        raise to_http_exception(e, "open_auth")
    return {"flow_id": flow.flow_id, "flow_token": token, "flow": orch.describe(flow)}


@app.get("/flows/{flow_id}", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def get_flow(
    request: Request,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    return orch.describe(flow)


@app.post("/flows/{flow_id}/fields", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def update_field(
    request: Request,
    req: FieldUpdateRequest,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        return orch.update_field(flow, req.field, req.value)
    except StepflowBaseException as e:
        raise to_http_exception(e, "update_field")


@app.post("/flows/{flow_id}/select", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def select_option(
    request: Request,
    req: SelectRequest,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        return orch.select_option(flow, req.option_id)
    except StepflowBaseException as e:
        raise to_http_exception(e, "select_option")


@app.post("/flows/{flow_id}/advance", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def advance(
    request: Request,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        return await orch.advance(flow)
    except Exception as e:
        raise to_http_exception(e, "advance")


@app.post("/flows/{flow_id}/back", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def back(
    request: Request,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        return await orch.back(flow)
    except StepflowBaseException as e:
        raise to_http_exception(e, "back")


@app.post("/flows/{flow_id}/jump", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def jump(
    request: Request,
    req: JumpRequest,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        return await orch.jump_to(flow, req.step_id)
    except StepflowBaseException as e:
        raise to_http_exception(e, "jump")


@app.post("/flows/{flow_id}/resend", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("code_send"))
async def resend(
    request: Request,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        return await orch.resend(flow)
    except Exception as e:
        raise to_http_exception(e, "resend")


@app.post("/flows/{flow_id}/continue-anyway", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("code_send"))
async def continue_anyway(
    request: Request,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    try:
        return await orch.continue_anyway(flow)
    except Exception as e:
        raise to_http_exception(e, "continue_anyway")


@app.post("/flows/{flow_id}/dismiss-error", dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def dismiss_error(
    request: Request,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    return orch.dismiss_error(flow)


@app.delete("/flows/{flow_id}", status_code=204, dependencies=[Depends(verify_api_key)])
@limiter.limit(get_rate_limit("flow_step"))
async def close_flow(
    request: Request,
    flow: FlowSession = Depends(resolve_flow),
    orch: FlowOrchestrator = Depends(get_orchestrator_or_503),
):
    orch.close_flow(flow)
    return None


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"🚀 Starting server on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
