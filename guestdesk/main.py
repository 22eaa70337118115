import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from guestdesk.completions import CompletionClient, get_completion_client, relay_chunks
from guestdesk.config import settings
from guestdesk.logging_utils import RequestLoggingMiddleware, log_request_data, setup_logging
from guestdesk.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_ai_stream,
    record_escalation_resolution,
    record_outbound_message,
)
from guestdesk.models import EscalationStatus
from guestdesk.relay import RelayError, WhatsAppRelay, get_relay
from guestdesk.schemas import (
    AnalyticsResponse,
    ErrorResponse,
    EscalationDocument,
    EscalationResponse,
    HealthResponse,
    MessageResponse,
    ResolveEscalationRequest,
    ResolveEscalationResponse,
    SendMessageRequest,
    SendMessageResponse,
    UserSummary,
)
from guestdesk.storage import (
    check_db_health,
    get_analytics,
    get_db,
    get_escalation,
    get_messages_for_user,
    init_db,
    list_escalations_with_users,
    list_users_with_last_message,
    resolve_escalation,
)
from guestdesk.utils import is_valid_object_id, verify_password


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="GuestDesk API",
    description="Guest messaging, escalations and analytics for the property dashboard",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed input as 400 with a readable message."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg", "invalid input"))
    detail = "; ".join(messages) or "Invalid request"
    logger.warning(f"Validation error: {detail}")
    log_request_data(request, result="validation_error")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Log database failures in full, answer with a generic 500."""
    logger.exception("Database error", exc_info=exc)
    log_request_data(request, result="database_error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# =============================================================================
# Authorization
# =============================================================================

async def require_password(
    password: Annotated[Optional[str], Query(description="Shared dashboard password")] = None,
) -> None:
    """
    Reject the request unless `password` matches AUTH_PASSWORD.

    Declared as a router dependency so it runs before the database
    session dependency of any route.
    """
    if not verify_password(password, settings.AUTH_PASSWORD):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


api = APIRouter(
    prefix="/api/v1",
    dependencies=[Depends(require_password)],
    responses={401: {"model": ErrorResponse, "description": "Wrong or missing password"}},
)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. AUTH_PASSWORD is set (non-empty)
    2. DB is reachable and every table exists

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.AUTH_PASSWORD:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="AUTH_PASSWORD not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Users & Messages Routes
# =============================================================================

@api.get("/users", response_model=list[UserSummary])
async def list_users(db: Session = Depends(get_db)) -> list[UserSummary]:
    """
    List every guest with their most recent message.

    lastMessage / lastTimestamp are null for guests with no messages.
    No pagination.
    """
    users = list_users_with_last_message(db)
    logger.info(f"GET /users: returned {len(users)} users")
    return [UserSummary.model_validate(user) for user in users]


@api.get("/messages", response_model=list[MessageResponse])
async def list_messages(
    request: Request,
    wa_id: Annotated[str, Query(alias="id", min_length=1, description="wa_id of the conversation")],
    db: Session = Depends(get_db),
) -> list[MessageResponse]:
    """
    All messages of one guest.

    Order is whatever the store returns; clients sort by timestamp.
    """
    messages = get_messages_for_user(db, wa_id)
    log_request_data(request, wa_id=wa_id)
    logger.info(f"GET /messages: returned {len(messages)} messages for {wa_id}")
    return [MessageResponse.model_validate(message) for message in messages]


@api.post(
    "/send",
    response_model=SendMessageResponse,
    responses={502: {"model": ErrorResponse, "description": "Relay call failed"}},
)
async def send_message(
    request: Request,
    payload: SendMessageRequest,
    relay: WhatsAppRelay = Depends(get_relay),
) -> SendMessageResponse:
    """
    Forward an outbound message to the WhatsApp relay.

    Success only means the relay accepted the HTTP call. There is no
    delivery confirmation and no retry; a client retry can send twice.
    A relay failure answers 502 Bad Gateway rather than a generic 500, so
    clients can tell an upstream problem from a fault in this service.
    """
    try:
        await relay.send(payload.to, payload.text)
    except RelayError as e:
        logger.error(f"Relay send failed for {payload.to}: {e}")
        record_outbound_message("relay_error")
        log_request_data(request, to=payload.to, result="relay_error")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send message",
        )

    record_outbound_message("sent")
    log_request_data(request, to=payload.to, result="sent")
    return SendMessageResponse(message="Message sent successfully")


# =============================================================================
# Analytics Route
# =============================================================================

@api.get("/analytics", response_model=AnalyticsResponse)
async def analytics(db: Session = Depends(get_db)) -> AnalyticsResponse:
    """Message, guest and escalation totals plus mean resolution minutes."""
    stats = get_analytics(db)
    logger.info(f"GET /analytics: {stats['totalMessages']} messages, {stats['totalEscalations']} escalations")
    return AnalyticsResponse(**stats)


# =============================================================================
# Escalation Routes
# =============================================================================

@api.get("/escalations", response_model=list[EscalationResponse])
async def list_escalations(db: Session = Depends(get_db)) -> list[EscalationResponse]:
    """Escalations newest first, with the guest name when the guest is known."""
    escalations = list_escalations_with_users(db)
    logger.info(f"GET /escalations: returned {len(escalations)} escalations")
    return [EscalationResponse.model_validate(escalation) for escalation in escalations]


def _escalation_document(escalation) -> EscalationDocument:
    return EscalationDocument(
        id=escalation.id,
        user_id=escalation.user_id,
        message=escalation.message,
        status=escalation.status,
        created_at=escalation.created_at,
        updated_at=escalation.updated_at,
    )


@api.post(
    "/escalations/resolve",
    response_model=ResolveEscalationResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing/invalid id or status not pending"},
        404: {"model": ErrorResponse, "description": "Escalation not found"},
    },
)
async def resolve(
    request: Request,
    payload: Optional[ResolveEscalationRequest] = None,
    db: Session = Depends(get_db),
) -> ResolveEscalationResponse:
    """
    Move an escalation from pending to resolved.

    Resolving an already resolved escalation is a no-op that still
    answers 200. Any other status is rejected and left untouched.
    """
    escalation_id = payload.id if payload else None

    if not escalation_id:
        record_escalation_resolution("invalid_id")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Escalation ID is required")

    log_request_data(request, escalation_id=escalation_id)

    if not is_valid_object_id(escalation_id):
        record_escalation_resolution("invalid_id")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid escalation ID format")

    escalation = get_escalation(db, escalation_id)
    if escalation is None:
        record_escalation_resolution("not_found")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Escalation not found")

    if escalation.status == EscalationStatus.RESOLVED.value:
        record_escalation_resolution("already_resolved")
        log_request_data(request, result="already_resolved")
        return ResolveEscalationResponse(
            message="Escalation already resolved",
            escalation=_escalation_document(escalation),
        )

    if escalation.status != EscalationStatus.PENDING.value:
        logger.warning(f"Escalation {escalation_id} has unexpected status {escalation.status!r}")
        record_escalation_resolution("invalid_status")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Escalation status is not pending")

    escalation = resolve_escalation(db, escalation)
    record_escalation_resolution("resolved")
    log_request_data(request, result="resolved")
    return ResolveEscalationResponse(
        message="Escalation resolved successfully",
        escalation=_escalation_document(escalation),
    )


app.include_router(api)


# =============================================================================
# Completion Streaming Route
# =============================================================================

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


@app.post(
    "/api/v1/ai/stream",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/plain": {}}, "description": "Completion text, streamed"},
        400: {"model": ErrorResponse, "description": "Missing prompt"},
        500: {"model": ErrorResponse, "description": "Upstream failed before streaming"},
    },
)
async def ai_stream(
    request: Request,
    completion: CompletionClient = Depends(get_completion_client),
):
    """
    Relay a streamed chat completion for `prompt` as plain text.

    Not password protected. An upstream failure before the first chunk
    answers 500; after it, the body ends with the in-band error marker.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None
    prompt = body.get("prompt") if isinstance(body, dict) else None
    if not isinstance(prompt, str) or not prompt:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing 'prompt' string in body",
        )

    log_request_data(request, prompt_length=len(prompt), model=completion.model)
    chunks = completion.stream_text(prompt)

    # Pull the first chunk before committing to a 200 status line
    try:
        first_chunk = await chunks.__anext__()
    except StopAsyncIteration:
        first_chunk = ""
    except Exception:
        logger.exception("Completion stream failed before first chunk")
        record_ai_stream("upstream_error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Failed to stream response"},
        )

    return StreamingResponse(
        relay_chunks(first_chunk, chunks),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
