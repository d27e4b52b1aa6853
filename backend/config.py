"""Centralized configuration — all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")
# nosniff, frame-deny and XSS-filter headers; on by default in production
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
SECURITY_HEADERS = os.getenv("SECURITY_HEADERS", str(ENVIRONMENT == "production")).lower() == "true"

# --- Moderator credentials ---
MODERATOR_USERNAME = os.getenv("MODERATOR_USERNAME", "admin")
MODERATOR_PASSWORD = os.getenv("MODERATOR_PASSWORD", "trivia123")
MAX_MODERATOR_TOKENS = 20

# --- Rate Limiting ---
RATE_LIMIT_WINDOW = 5  # seconds
RATE_LIMIT_MAX_SUBMISSIONS = 3  # max answer submissions per window per player
RATE_LIMIT_MAX_TRACKED = int(os.getenv("RATE_LIMIT_MAX_TRACKED", "10000"))

# --- Storage Limits ---
MAX_PLAYERS = int(os.getenv("MAX_PLAYERS", "10000"))
MAX_QUESTIONS = 200

# --- Question validation ---
MAX_QUESTION_TEXT_LENGTH = 500
MAX_OPTION_LENGTH = 200
MAX_PLAYER_ID_LENGTH = 64
OPTION_KEYS = ("A", "B", "C", "D")

# --- Client polling ---
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "2.0"))  # seconds
CLIENT_TIMEOUT = float(os.getenv("CLIENT_TIMEOUT", "5.0"))

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
