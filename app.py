"""
Learning Progress API v1.0
Session tracking, progress ingestion, lesson gating and learning analytics
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from routes import progress, courses, analytics, ai, gamification, certificates, social
from config import settings
from utils import clock
from utils.auth_middleware import add_auth_context_to_request
from utils.error_handling import format_validation_errors

# Configure structured logging
from utils.structured_logging import (
    configure_logging,
    get_logger,
    get_correlation_id,
    log_request_middleware,
    LogCategory,
)

configure_logging(level=settings.LOG_LEVEL, json_output=True)
logger = get_logger("app")

from schemas.api_models import ErrorResponse
from schemas.openapi_models import COMMON_RESPONSES, OpenAPIMetadata, OpenAPITags

app = FastAPI(
    title=OpenAPIMetadata.TITLE,
    description=OpenAPIMetadata.DESCRIPTION,
    version=OpenAPIMetadata.VERSION,
    license_info=OpenAPIMetadata.LICENSE_INFO,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    servers=OpenAPIMetadata.SERVERS,
    openapi_tags=[
        OpenAPITags.PROGRESS,
        OpenAPITags.COURSES,
        OpenAPITags.ANALYTICS,
        OpenAPITags.SUGGESTIONS,
        OpenAPITags.GAMIFICATION,
        OpenAPITags.CERTIFICATES,
        OpenAPITags.SOCIAL,
        OpenAPITags.SYSTEM,
    ],
)

# CORS configuration - Load from environment
origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID", "X-Request-ID"],
)


# Authentication middleware - adds auth context to all requests
@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    return await add_auth_context_to_request(request, call_next)


# Registered last so it wraps the auth middleware and sees the resolved user id
@app.middleware("http")
async def structured_logging_middleware(request: Request, call_next):
    """Add correlation IDs and structured logging to all requests"""
    return await log_request_middleware(request, call_next)


def _error_body(request: Request, status_code: int, error: str, detail=None) -> dict:
    return ErrorResponse(
        error=error,
        detail=detail if detail is not None else error,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", None),
        correlation_id=get_correlation_id(),
    ).model_dump()


# Global exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are rejected with 400 before any handler runs"""
    errors = format_validation_errors(exc.errors())

    logger.warning(
        "Validation error",
        category=LogCategory.ERROR,
        request_method=request.method,
        request_path=request.url.path,
        error_type="ValidationError",
        error_message=f"{len(errors)} validation errors",
        extra={"errors": errors},
    )

    message = "; ".join(f"{err['field']}: {err['message']}" for err in errors) or "Invalid request"
    return JSONResponse(status_code=400, content=_error_body(request, 400, f"Invalid payload - {message}", errors))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code} error",
            category=LogCategory.ERROR,
            request_method=request.method,
            request_path=request.url.path,
            response_status=exc.status_code,
            error_message=str(exc.detail),
        )
    elif exc.status_code >= 400:
        logger.warning(
            f"HTTP {exc.status_code} client error",
            category=LogCategory.ERROR,
            request_method=request.method,
            request_path=request.url.path,
            response_status=exc.status_code,
            error_message=str(exc.detail),
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, str(exc.detail), exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unexpected server error",
        category=LogCategory.ERROR,
        exception=exc,
        request_method=request.method,
        request_path=request.url.path,
        user_id=getattr(request.state, "user_id", None),
    )

    return JSONResponse(
        status_code=500,
        content=_error_body(
            request, 500, "Internal Server Error", "An unexpected error occurred. Please try again later."
        ),
    )


app.include_router(progress.router, prefix="/progress", tags=[OpenAPITags.PROGRESS["name"]], responses=COMMON_RESPONSES)
app.include_router(courses.router, prefix="/courses", tags=[OpenAPITags.COURSES["name"]], responses=COMMON_RESPONSES)
app.include_router(analytics.router, prefix="/analytics", tags=[OpenAPITags.ANALYTICS["name"]], responses=COMMON_RESPONSES)
app.include_router(ai.router, prefix="/ai", tags=[OpenAPITags.SUGGESTIONS["name"]], responses=COMMON_RESPONSES)
app.include_router(gamification.router, tags=[OpenAPITags.GAMIFICATION["name"]], responses=COMMON_RESPONSES)
app.include_router(
    certificates.router, prefix="/certificates", tags=[OpenAPITags.CERTIFICATES["name"]], responses=COMMON_RESPONSES
)
app.include_router(social.router, prefix="/social", tags=[OpenAPITags.SOCIAL["name"]], responses=COMMON_RESPONSES)


@app.get(
    "/",
    tags=[OpenAPITags.SYSTEM["name"]],
    summary="API Information",
    response_description="API information and service endpoints",
)
async def root():
    return {
        "name": "Learning Progress API",
        "version": OpenAPIMetadata.VERSION,
        "status": "operational",
        "documentation": {"swagger": "/docs", "redoc": "/redoc", "openapi_spec": "/openapi.json"},
        "timestamp": clock.utcnow().isoformat(),
        "services": {
            "progress": {"endpoint": "/progress", "description": "Session lifecycle ingestion"},
            "courses": {"endpoint": "/courses", "description": "Enrollment and lesson access"},
            "analytics": {"endpoint": "/analytics", "description": "Per-course learning analytics"},
            "ai": {"endpoint": "/ai", "description": "Adaptive and spaced-review suggestions"},
            "certificates": {"endpoint": "/certificates", "description": "Course completion certificates"},
            "social": {"endpoint": "/social", "description": "Friends and the activity feed"},
        },
    }


@app.get("/health", tags=[OpenAPITags.SYSTEM["name"]], summary="Health Check")
async def health_check():
    """
    ## Service Health Check

    Use this endpoint for load balancer health checks and uptime monitoring.
    """
    return {
        "status": "healthy",
        "timestamp": clock.utcnow().isoformat(),
        "version": OpenAPIMetadata.VERSION,
        "environment": settings.NODE_ENV,
    }


@app.get("/api/v1", tags=[OpenAPITags.SYSTEM["name"]], summary="API v1 Information")
async def api_v1_info():
    """Directory of the available endpoints"""
    return {
        "version": OpenAPIMetadata.VERSION,
        "endpoints": {
            "progress": {"path": "/progress", "methods": ["GET", "POST"]},
            "access": {"path": "/courses/{courseId}/access", "methods": ["GET"]},
            "enrollment": {"path": "/courses/{courseId}/enroll", "methods": ["POST", "DELETE"]},
            "analytics": {"path": "/analytics/course/{courseId}", "methods": ["GET"]},
            "progressSeries": {"path": "/analytics/progress", "methods": ["GET"]},
            "adaptive": {"path": "/ai/adaptive", "methods": ["GET"]},
            "spaced": {"path": "/ai/spaced", "methods": ["GET"]},
            "recommendations": {"path": "/ai/recommendations", "methods": ["GET"]},
            "achievements": {"path": "/achievements", "methods": ["GET", "POST"]},
            "quizAttempts": {"path": "/quizzes/attempts", "methods": ["POST"]},
            "stats": {"path": "/users/stats", "methods": ["GET"]},
            "leaderboard": {"path": "/gamification/leaderboard", "methods": ["GET"]},
            "certificates": {"path": "/certificates", "methods": ["GET", "POST"]},
            "friends": {"path": "/social/friends", "methods": ["GET", "POST", "PATCH"]},
            "activity": {"path": "/social/activity", "methods": ["GET"]},
        },
        "documentation": {"interactive": "/docs", "redoc": "/redoc", "openapi": "/openapi.json"},
        "authentication": "Bearer session tokens",
    }
