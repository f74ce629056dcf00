import logging
import os
import subprocess
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bracket_engine import __version__
from bracket_engine.config import CORS_ORIGINS, configure_logging
from bracket_engine.database import init_db
from bracket_engine.exceptions import EngineError
from bracket_engine.routes import courts, divisions, draws, runtime, tournaments

logger = logging.getLogger(__name__)

app = FastAPI(title="Bracket Engine API", version=__version__)


# Get build info
def get_build_info():
    """Get git commit hash or build timestamp"""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=os.path.dirname(os.path.dirname(__file__)),
            capture_output=True,
            text=True,
            timeout=2,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass

    # Fallback to build timestamp
    return datetime.now().strftime("%Y%m%d-%H%M%S")


BUILD_HASH = get_build_info()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError):
    """Engine failures -> {"detail", "error"} with the status the error class carries"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({type(exc).__name__}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": type(exc).__name__})


# Include routers
app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(divisions.router, prefix="/api", tags=["divisions"])
app.include_router(draws.router, prefix="/api", tags=["draws"])
# Match runtime (status, results, sign-off)
app.include_router(runtime.router, prefix="/api", tags=["runtime"])
# Court desk (ready queue, conflicts, assignment)
app.include_router(courts.router, prefix="/api", tags=["courts"])


@app.on_event("startup")
def on_startup():
    configure_logging()
    init_db()  # Use centralized init_db() which imports models and creates tables
    logger.info(f"Bracket Engine API {__version__} started (build {BUILD_HASH})")


@app.get("/api/health")
def health_check():
    """Diagnostic endpoint to verify which code is running"""
    return {"app_name": "Bracket Engine API", "version": __version__, "build_hash": BUILD_HASH, "status": "healthy"}
