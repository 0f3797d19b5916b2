"""
RTSP Gateway Configuration Package
"""

from .settings import *

__all__ = [
    "RTSP_SERVER_HOST",
    "RTSP_SERVER_PORT",
    "KURENTO_WS_URL",
    "SRC_STREAM",
    "LOG_LEVEL",
]
