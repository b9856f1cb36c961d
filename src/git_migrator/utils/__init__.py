"""Shared helpers: logging, listener registries and JSON storage."""

from .logging import get_logger, setup_logging

__all__ = ['get_logger', 'setup_logging']
