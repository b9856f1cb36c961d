"""Migration queue management."""

from .events import QueueEventListener
from .manager import MigrationQueueManager
from .state import QueueStateStore

__all__ = ['QueueEventListener', 'MigrationQueueManager', 'QueueStateStore']
