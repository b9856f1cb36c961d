"""Orchestrator contract and the migration engine."""

from .orchestrator import (
    CallableOrchestrator,
    MigrationOrchestrator,
    failure_from_exception,
)

__all__ = [
    'CallableOrchestrator',
    'MigrationOrchestrator',
    'failure_from_exception',
]
