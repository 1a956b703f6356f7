"""
Web service configuration.
"""
import os

from core.config import VERSION, config

# Web server settings
WEB_HOST = config.web.host
WEB_PORT = config.web.port

# Logging
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# CORS (the browser dashboard calls the functions cross-origin)
CORS_ORIGINS = config.web.cors_origins

# Rate limits
DATA_RATE_LIMIT = config.web.rate_limit
HEALTH_RATE_LIMIT = "60/minute"

# Fail fast on missing OAuth credentials at startup
REQUIRE_OAUTH = os.getenv("REQUIRE_OAUTH", "true").lower() == "true"

__all__ = [
    "VERSION",
    "WEB_HOST",
    "WEB_PORT",
    "LOG_FORMAT",
    "LOG_LEVEL",
    "CORS_ORIGINS",
    "DATA_RATE_LIMIT",
    "HEALTH_RATE_LIMIT",
    "REQUIRE_OAUTH",
]
