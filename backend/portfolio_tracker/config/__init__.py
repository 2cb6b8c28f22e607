"""Configuration package for the portfolio performance service."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
