import json
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from twilio.twiml.messaging_response import MessagingResponse

from pharmacy_sms.config import settings
from pharmacy_sms.delivery import apply_status_update
from pharmacy_sms.dispatcher import dispatch_message
from pharmacy_sms.errors import (
    BadRequestError,
    ConfigurationError,
    NoActiveNumbersError,
    NumberNotFoundError,
    PipelineError,
    ProviderError,
)
from pharmacy_sms.inbound import ingest_inbound_message, send_auto_response
from pharmacy_sms.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from pharmacy_sms.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_dispatch_outcome,
    record_inbound_outcome,
    record_status_outcome,
)
from pharmacy_sms.provider import SmsProvider, get_sms_provider
from pharmacy_sms.schemas import (
    DeliveryStatusForm,
    ErrorResponse,
    HealthResponse,
    InboundSmsForm,
    SendSmsRequest,
    SendSmsResponse,
)
from pharmacy_sms.storage import check_db_health, get_db, init_db


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables when a database is configured
    """
    if settings.DATABASE_URL:
        init_db()
    else:
        logger.critical("DATABASE_URL not configured; requests needing the datastore will fail")
    yield


app = FastAPI(
    title="Pharmacy SMS Pipeline",
    description="Outbound dispatch and carrier webhooks for pharmacy-patient SMS",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def twiml_ack() -> Response:
    """Empty carrier acknowledgment: no automatic reply."""
    return Response(content=str(MessagingResponse()), media_type="application/xml")


async def read_form(request: Request) -> dict:
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.critical(f"Configuration error on {request.url.path}: {exc.message}")
    elif exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    body = ErrorResponse(error=exc.message, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


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
    Readiness probe - returns 200 only if the DB is reachable and the
    pipeline tables exist. Otherwise returns 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not configured, not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Outbound Send Route
# =============================================================================

def _dispatch_outcome(exc: PipelineError) -> str:
    if isinstance(exc, BadRequestError):
        return "bad_request"
    if isinstance(exc, (NumberNotFoundError, NoActiveNumbersError)):
        return "no_number"
    if isinstance(exc, ProviderError):
        return "provider_error"
    if isinstance(exc, ConfigurationError):
        return "config_error"
    return "error"


@app.post(
    "/send-sms",
    response_model=SendSmsResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing fields, unusable number or provider rejection"},
        404: {"model": ErrorResponse, "description": "Unknown messageId"},
        500: {"model": ErrorResponse, "description": "Configuration, transport or datastore failure"},
    },
)
async def send_sms(
    request: Request,
    db: Session = Depends(get_db),
    provider: SmsProvider = Depends(get_sms_provider),
) -> SendSmsResponse:
    """
    Send an SMS from the selected outbound number.

    Body: {to, message, patientId?, phoneNumberId?, messageId?}

    - messageId: existing outbound message to attach the tracking id to
    - patientId: without messageId, an outbound message is recorded for the patient
    - phoneNumberId: explicit sending number, else primary/oldest active one
    """
    raw_body = await request.body()

    try:
        send_request = SendSmsRequest.model_validate(json.loads(raw_body or b"{}"))
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        record_dispatch_outcome("bad_request")
        log_webhook_data(request=request, result="bad_request")
        raise BadRequestError(f"Invalid request body: {e}")

    try:
        # The carrier round trip blocks; keep it off the event loop
        result = await run_in_threadpool(dispatch_message, db, provider, send_request)
    except PipelineError as e:
        outcome = _dispatch_outcome(e)
        record_dispatch_outcome(outcome)
        log_webhook_data(request=request, result=outcome)
        raise

    record_dispatch_outcome("sent")
    log_webhook_data(request=request, message_sid=result.send.sid, result="sent")

    return SendSmsResponse(
        success=True,
        message_id=result.send.sid,
        status=result.send.status,
        phone_number_used=result.number.phone_number,
        phone_number_display_name=result.number.display_name,
        record_id=result.message.id if result.message is not None else None,
    )


# =============================================================================
# Carrier Webhook Routes
# =============================================================================

@app.post("/sms-webhook")
async def sms_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    provider: SmsProvider = Depends(get_sms_provider),
) -> Response:
    """
    Inbound message webhook (form-encoded: From, To, Body, MessageSid).

    Stores the message against the matched or newly created patient and
    answers with empty TwiML. Redelivered MessageSids are acknowledged
    without storing twice. A configured auto-response is sent afterwards as
    a separate outbound dispatch.
    """
    form = InboundSmsForm.model_validate(await read_form(request))
    logger.info(f"Inbound SMS webhook received, MessageSid={form.message_sid}")

    try:
        result = await run_in_threadpool(ingest_inbound_message, db, form)
    except PipelineError as e:
        outcome = "validation_error" if isinstance(e, BadRequestError) else "error"
        record_inbound_outcome(outcome)
        log_webhook_data(request=request, message_sid=form.message_sid, result=outcome)
        raise

    outcome = "duplicate" if result.duplicate else "created"
    record_inbound_outcome(outcome)
    log_webhook_data(request=request, message_sid=form.message_sid, dup=result.duplicate, result=outcome)

    if result.auto_response is not None:
        background_tasks.add_task(send_auto_response, result.auto_response, provider)

    return twiml_ack()


@app.post("/sms-delivery-webhook")
async def sms_delivery_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> Response:
    """
    Delivery status webhook (form-encoded: MessageStatus, MessageSid,
    ErrorCode?, ErrorMessage?, To, From).

    Answers empty TwiML when a message was updated and 404 when no message
    carries the tracking id. The 404 is a soft outcome: the callback may
    belong to a message this deployment never recorded.
    """
    callback = DeliveryStatusForm.model_validate(await read_form(request))
    logger.info(
        "Delivery status update",
        extra={
            "message_sid": callback.message_sid,
            "message_status": callback.status,
            "error_code": callback.error_code,
        },
    )

    try:
        result = await run_in_threadpool(apply_status_update, db, callback)
    except PipelineError as e:
        outcome = "validation_error" if isinstance(e, BadRequestError) else "error"
        record_status_outcome(outcome)
        log_webhook_data(request=request, message_sid=callback.message_sid, result=outcome)
        raise

    if not result.found:
        record_status_outcome("not_found")
        log_webhook_data(request=request, message_sid=result.message_sid, result="not_found")
        return Response(content="Message not found", status_code=status.HTTP_404_NOT_FOUND, media_type="text/plain")

    record_status_outcome("updated")
    log_webhook_data(request=request, message_sid=result.message_sid, result="updated")
    return twiml_ack()


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
