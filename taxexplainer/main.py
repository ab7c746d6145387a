"""
main.py — Tax Regime Explainer FastAPI application entry point.

Start with: uvicorn taxexplainer.main:app --reload --port 3000
(run from the project root)
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from taxexplainer.config import settings

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Load the FAISS retriever (missing index → run without excerpts)
      2. Create the Mistral client if a key is configured
      3. Wire the orchestrator and webhook notifier onto app.state
    """
    # --- 1. Retriever — loaded once (slow: embedding model + FAISS) ---
    from taxexplainer.agents.matcher_agent.retriever import TaxRetriever

    try:
        app.state.retriever = TaxRetriever(Path(settings.index_dir), settings.embed_model)
        logger.info("TaxRetriever loaded successfully")
    except FileNotFoundError as exc:
        logger.warning(
            "RAG indexes missing — explanations will run without excerpts until ingestion is run: %s", exc
        )
        app.state.retriever = None

    # --- 2. Mistral client — singleton for HTTP connection pool reuse ---
    from taxexplainer.agents.matcher_agent.llm_service import MistralGenerator

    generator = None
    if settings.generation_configured:
        from mistralai import Mistral

        generator = MistralGenerator(
            Mistral(api_key=settings.mistral_api_key),
            temperature=settings.mistral_temperature,
            max_tokens=settings.mistral_max_tokens,
        )
        logger.info("Mistral client initialized, candidates=%s", settings.candidate_models)
    else:
        logger.warning("MISTRAL_API_KEY not set — AI summaries disabled")

    # --- 3. Orchestrator + notifier ---
    from taxexplainer.agents.explain_agent.notifier import WebhookNotifier
    from taxexplainer.agents.explain_agent.orchestrator import ExplanationOrchestrator
    from taxexplainer.agents.matcher_agent.fallback import FallbackPolicy

    app.state.orchestrator = ExplanationOrchestrator(
        retriever=app.state.retriever,
        generator=generator,
        policy=FallbackPolicy.from_settings(settings),
        top_k=settings.retrieval_top_k,
    )
    app.state.notifier = WebhookNotifier(
        settings.webhook_url if settings.webhook_configured else None,
        timeout_s=settings.webhook_timeout_s,
    )

    logger.info("Tax Regime Explainer v%s starting up", settings.app_version)
    yield
    logger.info("Tax Regime Explainer shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Tax Regime Explainer API",
    version=settings.app_version,
    description=(
        "Compares the Old and New Indian income tax regimes deterministically and "
        "explains the result with excerpts retrieved from an indexed tax corpus."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware — restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        # Build dot-notation field path, excluding the top-level 'body' loc
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        413: "FILE_TOO_LARGE",
        415: "INVALID_MIME_TYPE",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors. Never carries partial tax numbers.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    """
    Returns service health plus which collaborators are configured.
    No tax logic involved.
    """
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "env": {
            "mistral": settings.generation_configured,
            "index": settings.index_dir,
            "retrieverLoaded": getattr(request.app.state, "retriever", None) is not None,
            "webhook": settings.webhook_configured,
        },
    }


# ---------------------------------------------------------------------------
# Agent routers
# ---------------------------------------------------------------------------
from taxexplainer.agents.explain_agent.routes import router as explain_agent_router
from taxexplainer.agents.input_agent.routes import router as input_agent_router

app.include_router(explain_agent_router)
app.include_router(input_agent_router)
