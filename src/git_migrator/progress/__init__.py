"""Progress tracking for migration operations."""

from .store import ProgressStore
from .tracker import ProgressTracker, ProgressListener

__all__ = ['ProgressStore', 'ProgressTracker', 'ProgressListener']
