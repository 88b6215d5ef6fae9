import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables early so downstream modules see them
load_dotenv()
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env.local"), override=False)

from notegraph.api import entities as entities_router  # noqa: E402
from notegraph.api import graph as graph_router  # noqa: E402
from notegraph.api import notes as notes_router  # noqa: E402
from notegraph.api import profile as profile_router  # noqa: E402
from notegraph.api import relationships as relationships_router  # noqa: E402
from notegraph.api import suggestions as suggestions_router  # noqa: E402
from notegraph.database import database  # noqa: E402
from notegraph.errors import DomainError  # noqa: E402
from notegraph.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)


# --- App Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # On startup: configure logging and make sure the tables exist
    setup_logging()
    await database.init_models()
    logger.info("notegraph started")
    yield
    # On shutdown: release pooled connections
    await database.engine.dispose()


# --- Main App Setup ---
app = FastAPI(title="notegraph", lifespan=lifespan)

# CORS for local dev (Vite at 5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error rendering: {"error": {"code", "message", "details"?}} ---
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.http_status, content={"error": jsonable_encoder(exc.to_dict())})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    body = {
        "code": "VALIDATION_ERROR",
        "message": "Invalid request data",
        "details": {"errors": jsonable_encoder(exc.errors(), custom_encoder={Exception: str})},
    }
    return JSONResponse(status_code=400, content={"error": body})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}
    return JSONResponse(status_code=500, content={"error": body})


app.include_router(entities_router.router)
app.include_router(relationships_router.router)
app.include_router(notes_router.router)
app.include_router(suggestions_router.router)
app.include_router(graph_router.router)
app.include_router(profile_router.router)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "llmConfigured": bool(os.getenv("LLM_GATEWAY_URL") and os.getenv("LLM_GATEWAY_TOKEN")),
    }
