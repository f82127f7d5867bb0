"""
FastAPI application: rate-limited tutor chat plus interaction and telemetry logging.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tracking_api.agents import AzureTutorAgent, ChatModel
from tracking_api.config import Settings, get_settings
from tracking_api.errors import GatewayError
from tracking_api.gateway import ChatGateway
from tracking_api.schemas import (
    CheckUserRequest,
    CheckUserResponse,
    SubmitRequest,
    SubmitResponse,
    ResetRequest,
    ResetResponse,
    LogEventRequest,
    LogEventResponse,
    HealthResponse,
)
from tracking_api.session_store import ConversationSessionStore
from tracking_api.storage import StorageAdapter, build_storage

# --- Basic Setup ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _http_error(error: GatewayError, endpoint: str) -> JSONResponse:
    """Map a gateway error to its HTTP status with a generic, client-safe message."""
    if error.status_code >= 500:
        logger.error(f"Error in {endpoint}: {error!r}")
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.public_message, **error.details()},
    )


def _internal_error(error: Exception, endpoint: str) -> JSONResponse:
    logger.error(f"Unexpected error in {endpoint}: {error}", exc_info=True)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal server error"})


def get_gateway(request: Request) -> ChatGateway:
    return request.app.state.gateway


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[StorageAdapter] = None,
    model: Optional[ChatModel] = None,
) -> FastAPI:
    """Build the application. `storage` and `model` default to the configured backends."""
    settings = settings or get_settings()

    # --- Application Lifespan (Startup/Shutdown) ---
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup...")
        app_storage = storage or build_storage(settings)
        await app_storage.initialize()
        app_model = model or AzureTutorAgent(settings)
        sessions = ConversationSessionStore(
            max_turns=settings.context_window_size,
            expire_after=settings.context_expire_seconds,
        )
        app.state.gateway = ChatGateway(settings, app_storage, sessions, app_model)
        logger.info(f"CORS enabled for: {settings.cors_origins()}")

        yield

        logger.info("Application shutdown...")
        await app_storage.close()
        close_model = getattr(app_model, "close", None)
        if close_model is not None:
            await close_model()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="AI Usage Tracking Backend",
        description="Tutor chat gateway with interaction and UI telemetry logging for research.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"{request.method} {request.url.path}")
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Invalid request body"})

    # --- API Endpoints ---
    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(status="ok")

    @app.post("/api/check-user", response_model=CheckUserResponse)
    async def check_user(body: CheckUserRequest, gateway: ChatGateway = Depends(get_gateway)):
        """Authorize a user id and report their request count against the ceiling."""
        try:
            user = await gateway.check_user(body.user_id)
        except GatewayError as e:
            return _http_error(e, "/api/check-user")
        except Exception as e:
            return _internal_error(e, "/api/check-user")
        return CheckUserResponse(request_count=user.request_count, max_cap=user.max_requests)

    @app.post("/api/submit", response_model=SubmitResponse, response_model_exclude_none=True)
    async def submit(body: SubmitRequest, gateway: ChatGateway = Depends(get_gateway)):
        """Send a prompt to the tutor and record the interaction."""
        try:
            result = await gateway.submit(body.user_id, body.prompt, body.session_id)
        except GatewayError as e:
            return _http_error(e, "/api/submit")
        except Exception as e:
            return _internal_error(e, "/api/submit")
        return SubmitResponse(
            response=result.response,
            new_request_count=result.new_request_count,
            max_cap=result.max_cap,
            token_count=result.token_count,
        )

    @app.post("/api/reset", response_model=ResetResponse)
    async def reset(body: ResetRequest, gateway: ChatGateway = Depends(get_gateway)):
        """Clear the user's conversation context."""
        try:
            await gateway.reset(body.user_id, body.session_id)
        except GatewayError as e:
            return _http_error(e, "/api/reset")
        except Exception as e:
            return _internal_error(e, "/api/reset")
        return ResetResponse(message="Conversation context reset")

    @app.post("/api/log-event", response_model=LogEventResponse)
    async def log_event(body: LogEventRequest, gateway: ChatGateway = Depends(get_gateway)):
        """Record a UI telemetry event."""
        try:
            await gateway.log_event(body.user_id, body.event_type, body.data, body.session_id)
        except GatewayError as e:
            return _http_error(e, "/api/log-event")
        except Exception as e:
            return _internal_error(e, "/api/log-event")
        return LogEventResponse()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tracking_api.main:app", host="0.0.0.0", port=get_settings().port)
