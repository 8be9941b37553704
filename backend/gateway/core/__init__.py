"""
Core application modules.
Contains configuration, error taxonomy, logging, metrics and tracing.
"""
from .config import Settings, get_settings
from .errors import ConfigurationError, GatewayError, RetriesExhaustedError, ValidationError

__all__ = ["Settings", "get_settings", "ConfigurationError", "GatewayError", "RetriesExhaustedError", "ValidationError"]
