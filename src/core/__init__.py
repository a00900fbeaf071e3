"""
Core Module - Shared infrastructure used by the API and the CLI.

Components:
- logging: loguru sink configuration
"""

from src.core.logging import configure_logging

__all__ = ["configure_logging"]
