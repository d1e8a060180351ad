"""Server error types."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Raised when a settings file fails parsing or validation."""
