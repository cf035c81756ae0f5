"""Clients for the remote APIs and local tools cwkit talks to."""
from __future__ import annotations

from .cloudways import AuthenticationError, CloudwaysClient, UploadReply
from .http import HttpClient, HttpResponse, NetworkError
from .perfmatters import (
    GeneratedConfig,
    GeneratorClient,
    GeneratorError,
    GeneratorUnavailable,
    HealthStatus,
)
from .wpcli import WPCLI, PluginInfo, ThemeSelection, WPCLIError

__all__ = [
    "AuthenticationError",
    "CloudwaysClient",
    "GeneratedConfig",
    "GeneratorClient",
    "GeneratorError",
    "GeneratorUnavailable",
    "HealthStatus",
    "HttpClient",
    "HttpResponse",
    "NetworkError",
    "PluginInfo",
    "ThemeSelection",
    "UploadReply",
    "WPCLI",
    "WPCLIError",
]
