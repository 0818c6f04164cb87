"""Configuration package for the STK push gateway."""
from .settings import GatewayConfig, Settings, get_settings

__all__ = ["GatewayConfig", "Settings", "get_settings"]
