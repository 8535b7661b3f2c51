"""
Release gate configuration.
All settings come from the environment; defaults are safe for local development.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/release_gate.db")

# Debug flag is now a function to be dynamic
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Access code verification
ACCESS_CODE_LENGTH = int(os.getenv("ACCESS_CODE_LENGTH", "6"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

# Access grants (executor sessions) - renewable by re-verification only
GRANT_TTL_SEC = int(os.getenv("GRANT_TTL_SEC", str(24 * 60 * 60)))

# Letter delivery
SEND_TIMEOUT_SEC = float(os.getenv("SEND_TIMEOUT_SEC", "15"))
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "") or SMTP_USER

# Scheduled letter sweep (default disabled)
LETTER_SWEEP_ENABLED = os.getenv("LETTER_SWEEP_ENABLED", "false").lower() == "true"
LETTER_SWEEP_INTERVAL_SEC = int(os.getenv("LETTER_SWEEP_INTERVAL_SEC", "3600"))
GRANT_PURGE_INTERVAL_SEC = int(os.getenv("GRANT_PURGE_INTERVAL_SEC", "3600"))

# Version string
VERSION = "0.3.0"

# Values copied from sample env files rather than real SMTP settings
SMTP_PLACEHOLDER_PATTERNS = [
    'your-smtp-host',
    'your-email',
    'your-app-password',
    'your-smtp',
    'example.com',
    'placeholder',
]


def get_db_path() -> str:
    """Database path, re-read from the environment so tests can point at a temp file."""
    return os.getenv("DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def is_sweep_enabled():
    """Check if the scheduled letter sweep is enabled."""
    return os.getenv("LETTER_SWEEP_ENABLED", str(LETTER_SWEEP_ENABLED)).lower() == "true"


def get_sweep_interval():
    """Get letter sweep interval in seconds."""
    return LETTER_SWEEP_INTERVAL_SEC


def smtp_config_issues():
    """Return reasons SMTP delivery cannot be used. Empty list means configured."""
    issues = []

    if not SMTP_HOST or not SMTP_USER or not SMTP_PASSWORD:
        issues.append("SMTP_HOST, SMTP_USER and SMTP_PASSWORD must all be set")
        return issues

    def _is_placeholder(value: str) -> bool:
        return any(pattern in value.lower() for pattern in SMTP_PLACEHOLDER_PATTERNS)

    for name, value in (("SMTP_HOST", SMTP_HOST), ("SMTP_USER", SMTP_USER), ("SMTP_PASSWORD", SMTP_PASSWORD)):
        if _is_placeholder(value):
            issues.append(f"{name} contains a placeholder value")

    if not (0 < SMTP_PORT < 65536):
        issues.append(f"Invalid SMTP_PORT: {SMTP_PORT}")

    return issues


def validate_sweep_config():
    """Validate sweep and delivery configuration and return any issues."""
    issues = []

    if LETTER_SWEEP_INTERVAL_SEC < 1:
        issues.append("LETTER_SWEEP_INTERVAL_SEC must be >= 1")

    if GRANT_PURGE_INTERVAL_SEC < 1:
        issues.append("GRANT_PURGE_INTERVAL_SEC must be >= 1")

    if SEND_TIMEOUT_SEC <= 0:
        issues.append("SEND_TIMEOUT_SEC must be > 0")

    if ACCESS_CODE_LENGTH < 4:
        issues.append("ACCESS_CODE_LENGTH must be >= 4")

    if not (4 <= BCRYPT_ROUNDS <= 31):
        issues.append(f"Invalid BCRYPT_ROUNDS: {BCRYPT_ROUNDS}")

    return issues
