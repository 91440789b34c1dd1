"""
Configuration Module

Centralized, type-safe configuration management for the chat-room engine.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enumerations, job types, priorities and cache TTLs
"""

from chat_engine.core.config.settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
