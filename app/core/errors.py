"""业务异常定义"""
from __future__ import annotations


class VaultMonitorError(Exception):
    """Base error for the vault monitor."""


class UpstreamFailure(VaultMonitorError):
    """Raised when a Hyperliquid request fails or returns a malformed payload."""


class ValidationFailure(VaultMonitorError):
    """Raised when a query parameter is outside its allowed values."""


class AuthFailure(VaultMonitorError):
    """Raised when the collect trigger carries the wrong bearer token."""
