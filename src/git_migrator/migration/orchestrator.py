"""Orchestrator collaborator contract."""

import traceback
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List

from ..models.queue import MigrationRequest, MigrationResult


class MigrationOrchestrator(ABC):
    """Performs the actual migration work for the queue.

    Implementations clone, analyze and generate artifacts behind this
    boundary; the queue only sees the returned results.
    """

    @abstractmethod
    async def migrate_repositories(
        self, request: MigrationRequest
    ) -> List[MigrationResult]:
        """Migrate every repository in the request.

        Args:
            request: Repositories and migration configuration

        Returns:
            One result per requested repository
        """
        pass

    async def cancel_migration(self, request: MigrationRequest) -> None:
        """Best-effort signal that a running request should stop early.

        Args:
            request: Request previously passed to ``migrate_repositories``
        """
        return None


MigrateCallable = Callable[[MigrationRequest], Awaitable[List[MigrationResult]]]


class CallableOrchestrator(MigrationOrchestrator):
    """Adapts a coroutine function to the orchestrator contract."""

    def __init__(self, migrate: MigrateCallable):
        self._migrate = migrate

    async def migrate_repositories(
        self, request: MigrationRequest
    ) -> List[MigrationResult]:
        return await self._migrate(request)


def failure_from_exception(repository_name: str, error: BaseException) -> MigrationResult:
    """Convert an exception raised at the dispatch boundary into a failed result."""
    details = ''.join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    return MigrationResult.failure(
        repository_name,
        f'Queue processing failed: {error}',
        error_details=details,
    )
