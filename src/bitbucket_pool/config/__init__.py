"""Configuration module for the Bitbucket pool."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
