"""Middleware components for the Portlio API."""

from __future__ import annotations

from portlio_api.middleware.auth import AuthenticationMiddleware
from portlio_api.middleware.logging import RequestLoggingMiddleware
from portlio_api.middleware.prometheus import PrometheusMiddleware

__all__ = [
    "AuthenticationMiddleware",
    "PrometheusMiddleware",
    "RequestLoggingMiddleware",
]
