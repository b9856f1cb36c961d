"""Data models for queued migrations and their progress."""

from .status import QueueItemStatus, MigrationStatus, MigrationStep, FrameworkType
from .repository import RepositoryInfo
from .configuration import MigrationConfiguration
from .queue import MigrationQueueItem, MigrationRequest, MigrationResult, QueueStatus
from .progress import MigrationProgress, RepositoryProgress

__all__ = [
    'QueueItemStatus',
    'MigrationStatus',
    'MigrationStep',
    'FrameworkType',
    'RepositoryInfo',
    'MigrationConfiguration',
    'MigrationQueueItem',
    'MigrationRequest',
    'MigrationResult',
    'QueueStatus',
    'MigrationProgress',
    'RepositoryProgress',
]
