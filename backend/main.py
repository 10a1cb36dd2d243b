"""
Gradebook Engine - grade scales, GPA and grade-entry derivation.
FastAPI backend entry point.
"""

import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment before core modules read their defaults
load_dotenv()

from core.app_logger import get_logger  # noqa: E402
from core.errors import (  # noqa: E402
    ConfigurationError,
    DeletionBlocked,
    ExclusivityViolation,
    GradingError,
    InvalidGradeEntry,
    RecordNotFound,
)
from core.grade_scales import (  # noqa: E402
    DEFAULT_DECIMAL_PLACES,
    DEFAULT_GPA_SCALE_MAX,
    DEFAULT_PASSING_THRESHOLD,
)
from routes.grading import router as grading_router  # noqa: E402
from routes.systems import router as systems_router  # noqa: E402

log = get_logger("api")

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

ERROR_STATUS = {
    RecordNotFound: 404,
    DeletionBlocked: 409,
    ExclusivityViolation: 409,
    ConfigurationError: 422,
    InvalidGradeEntry: 422,
}

app = FastAPI(
    title="Gradebook Engine API",
    description=(
        "Grade scales, percentage-to-grade lookup, weighted GPA and "
        "grade-entry derivation for school grading systems."
    ),
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GradingError)
async def grading_error_handler(request: Request, exc: GradingError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    body = {"detail": str(exc)}
    if isinstance(exc, ConfigurationError) and exc.errors:
        body["errors"] = exc.errors
    log.info("%s %s -> %s: %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content=body)


# Register route modules
app.include_router(grading_router, prefix="/api/grading", tags=["Grading"])
app.include_router(systems_router, prefix="/api/schools/{school_id}", tags=["Grading Systems"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
    }


@app.get("/api/config")
async def get_config():
    """Return grading defaults to the frontend."""
    return {
        "school_name": SCHOOL_NAME,
        "passing_threshold": DEFAULT_PASSING_THRESHOLD,
        "gpa_scale_max": DEFAULT_GPA_SCALE_MAX,
        "decimal_places": DEFAULT_DECIMAL_PLACES,
    }
