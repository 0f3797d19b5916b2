"""
RTSP Gateway Configuration Settings

Loaded from the project's .env file (if present) and the environment.
"""

import os
import warnings
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).parent.parent
PROJECT_ROOT = BASE_DIR.parent

# Load environment variables from the project's .env file
env_file = PROJECT_ROOT / ".env"
if env_file.exists():
    load_dotenv(env_file)


def get_env(key: str, default=None, cast_type=str, fallback_key: str = None):
    """Get environment variable with type casting and default values"""
    value = os.getenv(key)
    if value is None and fallback_key:
        value = os.getenv(fallback_key)
    if value is None:
        value = default
    if value is None:
        return None

    if cast_type == bool:
        if isinstance(value, bool):
            return value
        return str(value).lower() in ('true', '1', 'yes', 'on')
    elif cast_type == int:
        return int(value)
    elif cast_type == float:
        return float(value)
    else:
        return str(value)

# ============================================================================
# RTSP Server Configuration
# ============================================================================

RTSP_SERVER_HOST = get_env("RTSP_SERVER_HOST", "0.0.0.0")
RTSP_SERVER_PORT = get_env("RTSP_SERVER_PORT", 554, int, fallback_key="PORT")

# Deadline for the media plane to answer SETUP/PLAY/TEARDOWN (0 disables)
MEDIA_NEGOTIATION_TIMEOUT = get_env("MEDIA_NEGOTIATION_TIMEOUT", 30.0, float)

# Reject PLAY/TEARDOWN before SETUP, repeated SETUP, etc. with 455
ENFORCE_SESSION_STATE = get_env("ENFORCE_SESSION_STATE", True, bool)

# ============================================================================
# Kurento Media Server Configuration
# ============================================================================

KURENTO_WS_URL = get_env("KURENTO_WS_URL", "ws://localhost:8888/kurento", fallback_key="KMS_WS_URL")
KURENTO_REQUEST_TIMEOUT = get_env("KURENTO_REQUEST_TIMEOUT", 30, int)

# Media locator played to every client (file://, rtsp://, http://)
SRC_STREAM = get_env("SRC_STREAM")

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL = get_env("LOG_LEVEL", "INFO")
LOG_DIR = Path(get_env("LOG_DIR", str(BASE_DIR / "logs")))
LOG_FILE = LOG_DIR / "rtsp_gateway.log"

# Log rotation
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ============================================================================
# Development/Debug Settings
# ============================================================================

DEBUG = get_env("DEBUG", False, bool)

# Log full SDP offers/answers
VERBOSE_SDP_LOGGING = DEBUG

# ============================================================================
# Validation
# ============================================================================

def validate_config():
    """Validate configuration settings, returning a list of problems"""
    errors = []

    if not SRC_STREAM:
        errors.append("SRC_STREAM must be set to the media locator to serve")

    if not KURENTO_WS_URL.startswith("ws://") and not KURENTO_WS_URL.startswith("wss://"):
        errors.append("KURENTO_WS_URL must start with ws:// or wss://")

    if not 0 <= RTSP_SERVER_PORT <= 65535:
        errors.append(f"RTSP_SERVER_PORT out of range: {RTSP_SERVER_PORT}")

    if MEDIA_NEGOTIATION_TIMEOUT < 0:
        errors.append("MEDIA_NEGOTIATION_TIMEOUT must not be negative")

    return errors

# Run validation on import
for error in validate_config():
    warnings.warn(f"Configuration warning: {error}")

__all__ = [
    # RTSP server
    "RTSP_SERVER_HOST",
    "RTSP_SERVER_PORT",
    "MEDIA_NEGOTIATION_TIMEOUT",
    "ENFORCE_SESSION_STATE",

    # Kurento
    "KURENTO_WS_URL",
    "KURENTO_REQUEST_TIMEOUT",
    "SRC_STREAM",

    # Logging
    "LOG_LEVEL",
    "LOG_DIR",
    "LOG_FILE",
    "LOG_MAX_BYTES",
    "LOG_BACKUP_COUNT",
    "LOG_FORMAT",
    "LOG_DATE_FORMAT",
    "DEBUG",
    "VERBOSE_SDP_LOGGING",

    # Helpers
    "get_env",
    "validate_config",
]
