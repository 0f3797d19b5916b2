"""
RTSP Gateway

Serves a source stream to RTSP clients through Kurento Media Server.
"""

__version__ = "1.0.0"
