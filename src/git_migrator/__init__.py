"""Git Migrator

Queue repository migrations, run them through a pluggable orchestrator with
bounded concurrency, and track per-repository progress durably.
"""

__version__ = '0.1.0'
__author__ = 'Git Migrator Team'
__email__ = 'team@example.com'

from .config.config import Config
from .migration.engine import MigrationEngine, MigrationSummary
from .migration.orchestrator import CallableOrchestrator, MigrationOrchestrator
from .progress.tracker import ProgressTracker
from .queue.manager import MigrationQueueManager

__all__ = [
    'Config',
    'MigrationEngine',
    'MigrationSummary',
    'CallableOrchestrator',
    'MigrationOrchestrator',
    'ProgressTracker',
    'MigrationQueueManager',
]
