"""Hierarchical progress tracking for migration operations."""

import threading
from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..config.config import ProgressConfig
from ..exceptions import PersistenceError
from ..models.progress import MigrationProgress, RepositoryProgress
from ..models.status import MigrationStatus, MigrationStep
from ..utils.events import ListenerRegistry
from .store import ProgressStore

ProgressListener = Callable[[MigrationProgress], None]


class _TrackedOperation:
    """A tracked operation plus the locks guarding it.

    ``lock`` guards operation-level fields (counters, global logs, status);
    each repository has its own lock so different repositories can be
    updated concurrently. Lock order is always operation then repository.
    ``persist_lock`` serializes snapshot plus write so an older snapshot
    never replaces a newer document.
    """

    def __init__(self, progress: MigrationProgress):
        self.progress = progress
        self.lock = threading.RLock()
        self.repository_locks: Dict[str, threading.Lock] = {
            repository_id: threading.Lock()
            for repository_id in progress.repository_progress
        }
        self.persist_lock = threading.Lock()


class ProgressTracker:
    """Live status tree per operation: operation -> repositories -> steps and logs.

    All mutators are synchronous and safe to call from any thread. After a
    mutation is applied, every listener registered for the operation is
    called with a consistent copy of the updated ``MigrationProgress``; a
    failing listener is logged and skipped.

    Terminal repositories (completed or failed) reject further step and
    status changes; their logs stay appendable.
    """

    def __init__(
        self,
        config: Optional[ProgressConfig] = None,
        store: Optional[ProgressStore] = None,
    ):
        """Initialize progress tracker.

        Args:
            config: Progress tracking configuration
            store: Durable storage (built from config.storage_dir if omitted)
        """
        self.config = config or ProgressConfig()
        self.store = store or ProgressStore(self.config.storage_dir)
        self.logger = logger.bind(component='ProgressTracker')

        self._operations: Dict[str, _TrackedOperation] = {}
        self._operations_lock = threading.Lock()
        self._listeners: Dict[str, ListenerRegistry[ProgressListener]] = {}
        self._listeners_lock = threading.Lock()

    # Operation lifecycle

    def start_operation(
        self,
        operation_id: str,
        repository_ids: List[str],
        repository_names: Optional[Dict[str, str]] = None,
    ) -> MigrationProgress:
        """Begin tracking an operation.

        Args:
            operation_id: Operation ID
            repository_ids: Repositories covered by the operation
            repository_names: Optional display names keyed by repository ID

        Returns:
            The new operation progress
        """
        repository_names = repository_names or {}
        progress = MigrationProgress(operation_id=operation_id)

        for repository_id in repository_ids:
            if repository_id in progress.repository_progress:
                continue
            progress.repository_progress[repository_id] = RepositoryProgress(
                repository_id=repository_id,
                repository_name=repository_names.get(repository_id, repository_id),
            )
        progress.total_repositories = len(progress.repository_progress)
        progress.add_global_log(
            f'Starting migration operation with '
            f'{progress.total_repositories} repositories'
        )

        with self._operations_lock:
            if operation_id in self._operations:
                self.logger.warning(f'Replacing tracked operation {operation_id}')
            self._operations[operation_id] = _TrackedOperation(progress)

        self.logger.info(
            f'Started operation {operation_id} with '
            f'{progress.total_repositories} repositories'
        )
        self._after_mutation(operation_id, persist=True)
        return progress

    def complete_operation(self, operation_id: str) -> bool:
        """Mark the operation completed.

        Returns:
            False if the operation is unknown or already finished
        """
        tracked = self._get(operation_id)
        if tracked is None:
            return False

        with tracked.lock:
            progress = tracked.progress
            if progress.is_terminal():
                return False
            progress.overall_status = MigrationStatus.COMPLETED
            progress.end_time = datetime.now()
            progress.add_global_log('Migration operation completed')

        self.logger.info(
            f'Completed operation {operation_id}: '
            f'{progress.completed_repositories} completed, '
            f'{progress.failed_repositories} failed'
        )
        self._after_mutation(operation_id, persist=True)
        return True

    # Repository updates

    def update_repository_progress(
        self, operation_id: str, repository_id: str, step: MigrationStep
    ) -> bool:
        """Record step as the repository's current step; it is not marked complete."""
        found = self._get_repository(operation_id, repository_id)
        if found is None:
            return False
        repository, repository_lock = found

        with repository_lock:
            if self._rejects_terminal(repository, 'update step'):
                return False
            repository.set_current_step(step)

        self._after_mutation(operation_id, persist=True)
        return True

    def complete_repository_step(
        self, operation_id: str, repository_id: str, step: MigrationStep
    ) -> bool:
        """Add step to the repository's completed steps.

        Returns:
            True if the step was newly completed; completing a step twice
            changes nothing
        """
        found = self._get_repository(operation_id, repository_id)
        if found is None:
            return False
        repository, repository_lock = found

        with repository_lock:
            if self._rejects_terminal(repository, 'complete step'):
                return False
            added = repository.complete_step(step)

        if added:
            self._after_mutation(operation_id, persist=True)
        return added

    def complete_repository(self, operation_id: str, repository_id: str) -> bool:
        """Mark a repository completed and count it on the operation."""
        return self._finish_repository(operation_id, repository_id, error_message=None)

    def fail_repository(
        self, operation_id: str, repository_id: str, error_message: str
    ) -> bool:
        """Mark a repository failed with error_message and count it on the operation."""
        return self._finish_repository(
            operation_id, repository_id, error_message=error_message
        )

    def _finish_repository(
        self, operation_id: str, repository_id: str, error_message: Optional[str]
    ) -> bool:
        tracked = self._get(operation_id)
        if tracked is None:
            return False
        repository = tracked.progress.get_repository_progress(repository_id)
        if repository is None:
            return False

        with tracked.lock:
            with tracked.repository_locks[repository_id]:
                action = 'complete' if error_message is None else 'fail'
                if self._rejects_terminal(repository, action):
                    return False
                if error_message is None:
                    repository.mark_completed()
                else:
                    repository.mark_failed(error_message)

            progress = tracked.progress
            if error_message is None:
                progress.completed_repositories += 1
                progress.add_global_log(
                    f'Completed migration for repository: {repository_id}'
                )
            else:
                progress.failed_repositories += 1
                progress.add_global_log(
                    f'Failed migration for repository: {repository_id} - {error_message}'
                )

        self._after_mutation(operation_id, persist=True)
        return True

    # Logs

    def add_repository_log(
        self, operation_id: str, repository_id: str, message: str
    ) -> bool:
        found = self._get_repository(operation_id, repository_id)
        if found is None:
            return False
        repository, repository_lock = found

        with repository_lock:
            repository.add_log(message)

        self._after_mutation(operation_id, persist=False)
        return True

    def add_global_log(self, operation_id: str, message: str) -> bool:
        tracked = self._get(operation_id)
        if tracked is None:
            return False

        with tracked.lock:
            tracked.progress.add_global_log(message)

        self._after_mutation(operation_id, persist=False)
        return True

    # Queries

    def get_progress(self, operation_id: str) -> Optional[MigrationProgress]:
        """Live progress for the operation.

        The returned object keeps changing while reporters run; iterate its
        collections only once the operation is finished.
        """
        tracked = self._get(operation_id)
        return tracked.progress if tracked else None

    def get_active_operations(self) -> List[str]:
        """IDs of tracked operations that have not been completed."""
        with self._operations_lock:
            tracked = list(self._operations.items())
        return [
            operation_id
            for operation_id, operation in tracked
            if not operation.progress.is_terminal()
        ]

    def get_all_operations(self) -> List[str]:
        with self._operations_lock:
            return list(self._operations)

    # Listeners

    def add_progress_listener(
        self, operation_id: str, listener: ProgressListener
    ) -> None:
        with self._listeners_lock:
            registry = self._listeners.get(operation_id)
            if registry is None:
                registry = ListenerRegistry(f'ProgressListeners[{operation_id}]')
                self._listeners[operation_id] = registry
            registry.subscribe(listener)

    def remove_progress_listener(
        self, operation_id: str, listener: ProgressListener
    ) -> bool:
        with self._listeners_lock:
            registry = self._listeners.get(operation_id)
            if registry is None:
                return False
            removed = registry.unsubscribe(listener)
            if not registry:
                del self._listeners[operation_id]
            return removed

    # Persistence

    def persist_progress(self, operation_id: str) -> Optional[Path]:
        """Write the operation to durable storage.

        Returns:
            Path of the written document, or None if the operation is unknown

        Raises:
            PersistenceError: If the document cannot be written
        """
        tracked = self._get(operation_id)
        if tracked is None:
            return None
        return self._save(tracked)

    def load_persisted_progress(self, operation_id: str) -> Optional[MigrationProgress]:
        """Load a persisted operation and track it, replacing any in-memory copy.

        Returns:
            The loaded progress, or None if nothing was persisted

        Raises:
            PersistenceError: If the document cannot be read
        """
        progress = self.store.load(operation_id)
        if progress is None:
            return None

        with self._operations_lock:
            self._operations[operation_id] = _TrackedOperation(progress)

        self.logger.info(f'Loaded persisted progress for operation {operation_id}')
        return progress

    def cleanup_old_operations(self, max_age_hours: Optional[float] = None) -> int:
        """Drop finished operations whose end time is older than max_age_hours.

        Active operations are never removed. Listeners and persisted
        documents of removed operations are dropped as well.

        Args:
            max_age_hours: Age threshold; 0 removes every finished operation.
                Defaults to ``config.cleanup_after_hours``.

        Returns:
            Number of removed operations
        """
        if max_age_hours is None:
            max_age_hours = self.config.cleanup_after_hours
        if max_age_hours < 0:
            raise ValueError('max_age_hours must not be negative')

        cutoff = datetime.now() - timedelta(hours=max_age_hours)

        with self._operations_lock:
            expired = [
                operation_id
                for operation_id, tracked in self._operations.items()
                if tracked.progress.is_terminal()
                and tracked.progress.end_time is not None
                and tracked.progress.end_time <= cutoff
            ]
            for operation_id in expired:
                del self._operations[operation_id]

        for operation_id in expired:
            with self._listeners_lock:
                self._listeners.pop(operation_id, None)
            try:
                self.store.delete(operation_id)
            except PersistenceError as e:
                self.logger.warning(f'Failed to delete persisted progress: {e}')

        if expired:
            self.logger.info(f'Cleaned up {len(expired)} finished operations')
        return len(expired)

    def remove_operation(self, operation_id: str) -> bool:
        """Stop tracking an operation without touching its persisted document."""
        with self._operations_lock:
            removed = self._operations.pop(operation_id, None) is not None
        with self._listeners_lock:
            self._listeners.pop(operation_id, None)
        return removed

    # Helpers

    def _get(self, operation_id: str) -> Optional[_TrackedOperation]:
        with self._operations_lock:
            return self._operations.get(operation_id)

    def _get_repository(
        self, operation_id: str, repository_id: str
    ) -> Optional[Tuple[RepositoryProgress, threading.Lock]]:
        tracked = self._get(operation_id)
        if tracked is None:
            return None
        repository = tracked.progress.get_repository_progress(repository_id)
        if repository is None:
            return None
        return repository, tracked.repository_locks[repository_id]

    def _rejects_terminal(self, repository: RepositoryProgress, action: str) -> bool:
        if repository.is_completed():
            self.logger.debug(
                f'Ignoring {action} for repository {repository.repository_id}: '
                f'already {repository.status.value}'
            )
            return True
        return False

    @staticmethod
    @contextmanager
    def _all_locks(tracked: _TrackedOperation):
        with tracked.lock, ExitStack() as stack:
            for repository_id in sorted(tracked.repository_locks):
                stack.enter_context(tracked.repository_locks[repository_id])
            yield tracked.progress

    def _save(self, tracked: _TrackedOperation) -> Path:
        with tracked.persist_lock:
            with self._all_locks(tracked) as progress:
                document = progress.to_document()
            return self.store.save(document)

    def _after_mutation(self, operation_id: str, persist: bool) -> None:
        tracked = self._get(operation_id)
        if tracked is None:
            return

        if persist and self.config.auto_persist:
            try:
                self._save(tracked)
            except PersistenceError as e:
                self.logger.warning(
                    f'Failed to persist progress for operation {operation_id}: {e}'
                )

        with self._listeners_lock:
            registry = self._listeners.get(operation_id)
        if registry:
            with self._all_locks(tracked) as progress:
                snapshot = progress.copy(deep=True)
            registry.notify(lambda listener: listener(snapshot))
