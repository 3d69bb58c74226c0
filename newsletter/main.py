import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from newsletter import service
from newsletter.config import Settings, get_settings
from newsletter.errors import ConfigError, NewsletterError, StoreUnavailable
from newsletter.logging_utils import setup_logging, RequestLoggingMiddleware, log_subscription_data
from newsletter.metrics import get_metrics, get_metrics_content_type
from newsletter.notifier import Notifier
from newsletter.schemas import (
    ApiResponse,
    EmailData,
    EmailList,
    HealthResponse,
    SendEmailRequest,
    SubscribeRequest,
    SubscribeResponse,
    SubscribersResponse,
    UnsubscribeRequest,
    UnsubscribeResponse,
)
from newsletter.storage import SubscriberStore


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request) -> SubscriberStore:
    return request.app.state.store


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health")
async def health() -> Response:
    """Liveness probe - 200 with an empty body once the app is running."""
    return Response(status_code=status.HTTP_200_OK)


@router.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response, store: SubscriberStore = Depends(get_store)) -> HealthResponse:
    """
    Readiness probe - 200 only if the DB is reachable and the schema is applied,
    otherwise 503 (Service Unavailable).
    """
    if not store.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# Subscription Routes
# =============================================================================

# Store- and mail-bound handlers are plain functions: FastAPI runs them in its
# threadpool, so a blocked pool checkout or a slow relay holds only that request.

@router.post(
    "/subscribe",
    response_model=SubscribeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ApiResponse, "description": "Email already subscribed"},
        500: {"model": ApiResponse, "description": "Store failure"},
    }
)
def subscribe(
    payload: SubscribeRequest,
    request: Request,
    store: SubscriberStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> SubscribeResponse:
    """
    Subscribe an email address.

    The subscriber is stored first. The welcome email is best effort: if it
    fails the subscription still stands and the message says so.
    """
    logger.info(f"POST /subscribe: {payload.email}")
    log_subscription_data(request, email=payload.email)

    result = service.subscribe(store, notifier, payload.email, payload.name)
    log_subscription_data(request, email=payload.email, result=result.state.value)

    if result.notified:
        message = "Subscription successful"
    else:
        message = "Subscription successful, but the welcome email could not be sent"

    return SubscribeResponse(
        success=True,
        message=message,
        data=EmailData(email=result.subscriber.email),
    )


@router.get(
    "/subscribers",
    response_model=SubscribersResponse,
    responses={500: {"model": SubscribersResponse, "description": "Store failure"}},
)
def list_subscribers(store: SubscriberStore = Depends(get_store)):
    """List every subscribed email."""
    try:
        emails = service.list_subscribers(store)
    except StoreUnavailable as e:
        logger.error(f"GET /subscribers failed: {e}")
        body = SubscribersResponse(
            success=False,
            message="Failed to fetch subscribers",
            data=EmailList(emails=[]),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(),
        )

    logger.info(f"GET /subscribers: returned {len(emails)} emails")
    return SubscribersResponse(
        success=True,
        message="Subscribers retrieved successfully",
        data=EmailList(emails=emails),
    )


@router.delete(
    "/unsubscribe",
    response_model=UnsubscribeResponse,
    responses={
        404: {"model": ApiResponse, "description": "Email not subscribed"},
        500: {"model": ApiResponse, "description": "Store failure"},
    }
)
def unsubscribe(
    payload: UnsubscribeRequest,
    request: Request,
    store: SubscriberStore = Depends(get_store),
) -> UnsubscribeResponse:
    """Remove a subscriber by exact email match."""
    logger.info(f"DELETE /unsubscribe: {payload.email}")
    log_subscription_data(request, email=payload.email)

    service.unsubscribe(store, payload.email)
    log_subscription_data(request, email=payload.email, result="removed")

    return UnsubscribeResponse(
        success=True,
        message="Unsubscribed successfully",
        data=EmailData(email=payload.email),
    )


@router.post(
    "/send-email",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    responses={502: {"model": ApiResponse, "description": "Relay failure"}},
)
def send_email(
    payload: SendEmailRequest,
    notifier: Notifier = Depends(get_notifier),
) -> ApiResponse:
    """Send a single plain-text email through the configured relay."""
    logger.info(f"POST /send-email: to={payload.to}")
    service.send_email(notifier, payload.to, payload.subject, payload.body)
    return ApiResponse(success=True, message="Email sent successfully")


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Error Mapping
# =============================================================================

_RESULT_BY_ERROR = {
    "ConflictError": "duplicate",
    "NotFoundError": "not_found",
    "StoreUnavailable": "store_error",
    "MailError": "mail_error",
}


async def newsletter_error_handler(request: Request, exc: NewsletterError) -> JSONResponse:
    """Render an error kind as its status code and client-facing message."""
    result = _RESULT_BY_ERROR.get(type(exc).__name__, "error")
    log_data = dict(getattr(request.state, "subscription_log_data", {}))
    log_data["result"] = result
    request.state.subscription_log_data = log_data

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")

    body = ApiResponse(success=False, message=exc.client_message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    logger.info(f"{request.method} {request.url.path} validation error: {problems}")
    body = ApiResponse(success=False, message=f"Invalid request: {problems}")
    return JSONResponse(
        status_code=422,
        content=body.model_dump(exclude_none=True),
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SubscriberStore] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    """
    Build the application.

    The store and notifier are created once in the lifespan startup and
    released at shutdown. Instances passed in are used as they are and left
    open for the caller to release.

    Raises:
        ConfigError: settings not given and the environment is incomplete
    """
    if settings is None:
        settings = get_settings()

    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        - Startup: build the store and notifier, create tables
        - Shutdown: dispose the pool after in-flight requests finish
        """
        app_store = store if store is not None else SubscriberStore.from_settings(settings)
        try:
            app_store.ensure_schema()
            app_notifier = notifier if notifier is not None else Notifier.from_settings(settings)
        except NewsletterError:
            if store is None:
                app_store.dispose()
            raise

        app.state.settings = settings
        app.state.store = app_store
        app.state.notifier = app_notifier
        logger.info("Newsletter service started")
        try:
            yield
        finally:
            if notifier is None:
                app_notifier.close()
            if store is None:
                app_store.dispose()
            logger.info("Newsletter service stopped")

    app = FastAPI(
        title="Newsletter API",
        description="Newsletter subscription service with SMTP welcome emails",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(NewsletterError, newsletter_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)

    return app


def run() -> None:
    """Entry point: load settings, then serve until SIGINT/SIGTERM."""
    try:
        settings = get_settings()
    except ConfigError as e:
        setup_logging("INFO")
        logger.critical(f"Startup aborted: {e}")
        sys.exit(1)

    app = create_app(settings)
    # Lifespan startup runs before the socket is bound; a ConfigError there
    # exits without serving. On shutdown uvicorn drains in-flight requests.
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        lifespan="on",
        log_config=None,
        timeout_graceful_shutdown=settings.SHUTDOWN_GRACE_SECONDS,
    )
