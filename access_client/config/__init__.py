"""Configuration module for the access client."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
