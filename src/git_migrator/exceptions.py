"""Git Migrator exceptions."""

from typing import Optional


class GitMigratorError(Exception):
    """Base exception for Git Migrator errors."""

    pass


class QueueConfigurationError(GitMigratorError, ValueError):
    """Invalid queue setting supplied by the caller."""

    def __init__(self, message: str, setting: Optional[str] = None, value=None):
        """Initialize queue configuration error.

        Args:
            message: Error message
            setting: Name of the rejected setting
            value: Rejected value
        """
        super().__init__(message)
        self.setting = setting
        self.value = value


class OrchestratorNotConfiguredError(GitMigratorError):
    """Queue processing requested without an orchestrator."""

    pass


class PersistenceError(GitMigratorError):
    """Reading or writing durable state failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        """Initialize persistence error.

        Args:
            message: Error message
            path: File that could not be read or written
        """
        super().__init__(message)
        self.path = path
