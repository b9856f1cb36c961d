"""Configuration models."""

from .config import Config, QueueConfig, ProgressConfig, LoggingConfig

__all__ = ['Config', 'QueueConfig', 'ProgressConfig', 'LoggingConfig']
