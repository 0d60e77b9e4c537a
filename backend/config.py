"""Centralized configuration: every env var in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Gemini (AI helper) ---
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/models")
AI_TIMEOUT = int(os.getenv("AI_TIMEOUT", "30"))
AI_TEMPERATURE = 0.2
AI_MAX_OUTPUT_TOKENS = 200

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Game loop (seconds) ---
QUESTION_DURATION = float(os.getenv("QUESTION_DURATION", "10"))
REVEAL_DURATION = float(os.getenv("REVEAL_DURATION", "3"))
IDLE_GAP = float(os.getenv("IDLE_GAP", "1.5"))
STARTUP_DELAY = float(os.getenv("STARTUP_DELAY", "1"))

# --- Game ---
QUESTIONS_FILE = os.getenv("QUESTIONS_FILE", "")  # empty = built-in catalog
HUMOR_MODE = os.getenv("HUMOR_MODE", "").strip().lower() == "true"
MAX_NAME_LENGTH = 20
DEFAULT_PLAYER_NAME = "Player"
LEADERBOARD_LIMIT = 100
POINTS_PER_PLAYER = 10

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
