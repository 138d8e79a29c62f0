"""
Exam Session Engine - FastAPI Application Entry Point.

This is the main application module that:
1. Initializes the FastAPI app with CORS middleware
2. Sets up structured JSON logging
3. Implements request ID middleware (X-Request-ID header)
4. Registers all API route handlers
5. Provides health check endpoint

The application follows a modular architecture:
- routes/: API endpoint handlers
- models/: SQLAlchemy ORM models
- services/: Session engine (eligibility, questions, timer, scoring, stores)
- runtime.py: Wiring of the shared SessionEngine
- logging_config.py: Structured logging configuration
- database.py: Database connection management
"""

import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from exam_session.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from exam_session.routes import sessions, results
from exam_session.database import DATABASE_URL, create_tables
from exam_session.runtime import get_engine

# ──────────────────────────────────────────────────────────────
# Initialize structured logging BEFORE anything else
# ──────────────────────────────────────────────────────────────
setup_logging()
logger = get_logger("http")

# Auto-create tables for SQLite local development
if DATABASE_URL.startswith("sqlite"):
    logger.info("Using SQLite, creating tables directly")
    create_tables()

# ──────────────────────────────────────────────────────────────
# Create FastAPI application
# ──────────────────────────────────────────────────────────────
app = FastAPI(
    title="Exam Session Engine",
    description=(
        "Runs timed, single-attempt scholarship tests: verifies candidate eligibility, "
        "resolves the question paper, keeps the countdown, resumes interrupted sessions "
        "and scores submissions exactly once."
    ),
    version="1.0.0",
    docs_url="/docs",        # Swagger UI at /docs
    redoc_url="/redoc"       # ReDoc at /redoc
)

# ──────────────────────────────────────────────────────────────
# CORS Middleware
#
# Allows the test player frontend to call the backend.
# In production, restrict origins to the actual frontend domain.
# ──────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],                # Allow all origins for development
    allow_credentials=True,
    allow_methods=["*"],                # Allow all HTTP methods
    allow_headers=["*"],                # Allow all headers
    expose_headers=["X-Request-ID"]     # Expose request ID header to frontend
)


# ──────────────────────────────────────────────────────────────
# Request ID Middleware
#
# Generates a unique UUID per incoming request and:
# 1. Stores it in a context variable (available to all log entries)
# 2. Returns it in the X-Request-ID response header
# 3. Logs request start/end with latency measurement
# ──────────────────────────────────────────────────────────────
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Middleware that generates a unique request ID for every HTTP request.

    The request ID is stored in a context variable, so every log entry made
    while handling the request carries it, and is returned in the
    X-Request-ID response header.
    """
    req_id = generate_request_id()
    request_id_var.set(req_id)

    start_time = time.time()

    log_with_context(logger, "INFO",
        f"Request started: {request.method} {request.url.path}",
        context={"request_id": req_id},
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "session_context": request.headers.get("x-session-context")
        })

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id

    log_with_context(logger, "INFO",
        f"Request completed: {request.method} {request.url.path} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "status_code": response.status_code
        })

    return response


# ──────────────────────────────────────────────────────────────
# Register API routes
# ──────────────────────────────────────────────────────────────
app.include_router(sessions.router, tags=["Sessions"])
app.include_router(results.router, tags=["Results"])


@app.on_event("shutdown")
def stop_engine():
    """Stop session timers and write final snapshots so sessions resume after a restart."""
    if get_engine.cache_info().currsize:
        get_engine().shutdown()


# ──────────────────────────────────────────────────────────────
# Health check endpoint
# ──────────────────────────────────────────────────────────────
@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint for Docker health checks and monitoring.

    Returns a simple status response to verify the application is running.
    """
    return {"status": "healthy", "service": "exam-session-backend", "version": "1.0.0"}


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "service": "Exam Session Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "begin": "POST /api/tests/{test_id}/sessions",
            "current": "GET /api/tests/{test_id}/sessions/current",
            "answer": "PUT /api/tests/{test_id}/sessions/current/answers/{index}",
            "navigate": "POST /api/tests/{test_id}/sessions/current/navigate",
            "clock": "GET /api/tests/{test_id}/sessions/current/clock",
            "submit": "POST /api/tests/{test_id}/sessions/current/submit",
            "result": "GET /api/results/{application_id}",
            "leaderboard": "GET /api/leaderboard"
        }
    }
