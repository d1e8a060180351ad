"""Settings, configuration loading and composition of the gateway."""

from filebridge.server.compose import Gateway, build_gateway
from filebridge.server.config import GatewaySettings, SettingsLoader, ToolOverride
from filebridge.server.errors import ConfigurationError

__all__ = [
    "ConfigurationError",
    "Gateway",
    "GatewaySettings",
    "SettingsLoader",
    "ToolOverride",
    "build_gateway",
]
