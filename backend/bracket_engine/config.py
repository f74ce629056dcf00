"""
Runtime configuration.

All values come from the environment (optionally a .env file). Per-tournament
and per-division settings live on their rows; these are only defaults and
global limits.
"""
import logging
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bracket.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")

DEFAULT_REST_WINDOW_MINUTES = int(os.getenv("DEFAULT_REST_WINDOW_MINUTES", "15"))
SWISS_MIN_ROUNDS = int(os.getenv("SWISS_MIN_ROUNDS", "3"))
SWISS_MAX_ROUNDS = int(os.getenv("SWISS_MAX_ROUNDS", "10"))

CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    CORS_ORIGINS.extend(o.strip() for o in _extra.split(",") if o.strip())

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    """Set up root logging once for the serving process."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
