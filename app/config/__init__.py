"""Configuration package for the portfolio equity service."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
