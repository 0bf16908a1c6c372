"""Configuration for tradeguard."""

from __future__ import annotations

from .settings import SecurityConfig, get_config, set_config

__all__ = ["SecurityConfig", "get_config", "set_config"]
