"""Migration queue manager: priority ordering, bounded concurrency, pause and cancel."""

import asyncio
import itertools
import threading
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from ..config.config import QueueConfig, validate_concurrency
from ..exceptions import (
    OrchestratorNotConfiguredError,
    PersistenceError,
    QueueConfigurationError,
)
from ..migration.orchestrator import MigrationOrchestrator, failure_from_exception
from ..models.configuration import MigrationConfiguration
from ..models.queue import (
    MigrationQueueItem,
    MigrationRequest,
    MigrationResult,
    QueueStatus,
)
from ..models.repository import RepositoryInfo
from ..models.status import QueueItemStatus
from ..utils.events import ListenerRegistry
from .events import QueueEventListener
from .state import QueueStateStore


class MigrationQueueManager:
    """Owns the queue and dispatches pending items to the orchestrator.

    Queue mutations are synchronous, thread-safe and never wait on
    in-flight migrations. ``process_queue`` runs the dispatch loop as a
    background task owned by the manager; at most ``max_concurrent``
    orchestrator calls are outstanding at any time.
    """

    def __init__(
        self,
        orchestrator: Optional[MigrationOrchestrator] = None,
        config: Optional[QueueConfig] = None,
        state_store: Optional[QueueStateStore] = None,
    ):
        """Initialize migration queue manager.

        Args:
            orchestrator: Collaborator that performs migrations
            config: Queue configuration
            state_store: Durable queue state (built from config.state_file if omitted)
        """
        self.config = config or QueueConfig()
        self.orchestrator = orchestrator
        self.logger = logger.bind(component='MigrationQueueManager')

        self._items: List[MigrationQueueItem] = []
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)
        self._listeners: ListenerRegistry[QueueEventListener] = ListenerRegistry(
            'QueueEventListeners'
        )

        self._max_concurrent = self.config.max_concurrent
        self._paused = False
        self._processing = False

        # Dispatch loop state, bound to the event loop that runs process_queue
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._dispatch_tasks: Dict[str, asyncio.Task] = {}
        self._requests: Dict[str, MigrationRequest] = {}
        self._signal_tasks: Set[asyncio.Task] = set()
        self._abandon_requested: Set[str] = set()

        if state_store is None and self.config.state_file:
            state_store = QueueStateStore(self.config.state_file)
        self.state_store = state_store

        if self.state_store is not None:
            try:
                self.load_queue_state()
            except PersistenceError as e:
                self.logger.error(f'Failed to load queue state: {e}')

    # Queue mutation

    def add_to_queue(
        self,
        repository: RepositoryInfo,
        configuration: Optional[MigrationConfiguration] = None,
        priority: int = 0,
    ) -> str:
        """Add a repository to the queue.

        Args:
            repository: Repository to migrate
            configuration: Migration settings (defaults if omitted)
            priority: Higher values are dispatched sooner

        Returns:
            ID of the new queue item
        """
        queue_item = MigrationQueueItem(
            repository=repository,
            configuration=configuration or MigrationConfiguration(),
            priority=priority,
        )

        with self._lock:
            queue_item.sequence = next(self._sequence)
            self._items.append(queue_item)

        self.logger.info(
            f'Added repository to queue: {queue_item.repository_name} '
            f'(priority: {priority})'
        )

        self._notify(lambda listener: listener.on_item_added(queue_item))
        self._notify_status_changed()
        self._auto_save()
        self._wake()

        return queue_item.id

    def remove_from_queue(self, queue_item_id: str) -> bool:
        """Remove an item regardless of its status.

        Returns:
            True if the item existed and was removed
        """
        with self._lock:
            queue_item = self._find(queue_item_id)
            if queue_item is None:
                return False
            self._items.remove(queue_item)

        if queue_item.status == QueueItemStatus.PROCESSING:
            self.logger.warning(
                f'Removed queue item while it is processing: {queue_item.repository_name}'
            )
        else:
            self.logger.info(f'Removed repository from queue: {queue_item.repository_name}')

        self._notify(lambda listener: listener.on_item_removed(queue_item))
        self._notify_status_changed()
        self._auto_save()
        return True

    def reorder_queue(self, ordered_ids: List[str]) -> None:
        """Re-sequence pending items to follow ordered_ids.

        Listed pending items come first in the given order, followed by the
        remaining pending items in their previous order. Priority remains the
        primary ordering key. Unknown and non-pending IDs are ignored.
        """
        with self._lock:
            pending = {
                item.id: item
                for item in self._items
                if item.status == QueueItemStatus.PENDING
            }

            reordered = []
            for item_id in ordered_ids:
                item = pending.pop(item_id, None)
                if item is not None:
                    reordered.append(item)
            reordered.extend(sorted(pending.values(), key=lambda i: i.sequence))

            for item in reordered:
                item.sequence = next(self._sequence)

        self.logger.info(f'Reordered queue with {len(ordered_ids)} items')
        self._notify_status_changed()
        self._auto_save()

    def cancel_queue_item(self, queue_item_id: str, abandon: bool = False) -> bool:
        """Cancel a queue item.

        A pending item is cancelled immediately. For a processing item the
        cancellation request is forwarded to the orchestrator and the final
        status is recorded when its call returns; with ``abandon`` the call is
        abandoned right away and the item is cancelled.

        Returns:
            False if the item is unknown, already finished, or already
            signalled for cancellation
        """
        with self._lock:
            queue_item = self._find(queue_item_id)
            if queue_item is None or queue_item.status.is_finished():
                return False

            if queue_item.status == QueueItemStatus.PENDING:
                queue_item.mark_as_cancelled()
                cancelled_now = True
            else:
                if queue_item.cancel_requested and not abandon:
                    return False
                queue_item.cancel_requested = True
                cancelled_now = False
                request = self._requests.get(queue_item.id)
                task = self._dispatch_tasks.get(queue_item.id)
                if abandon and task is None:
                    self._abandon_requested.add(queue_item.id)

        if cancelled_now:
            self.logger.info(f'Cancelled queue item: {queue_item.repository_name}')
            self._notify(lambda listener: listener.on_item_cancelled(queue_item))
            self._notify_status_changed()
            self._auto_save()
            return True

        self.logger.info(
            f'Requested cancellation of processing item: {queue_item.repository_name}'
        )
        if request is not None:
            self._call_in_loop(lambda: self._start_signal(request))
        if abandon and task is not None:
            self._call_in_loop(task.cancel)
        return True

    def cancel_all_pending(self) -> int:
        """Cancel every pending item; processing items are unaffected.

        Returns:
            Number of cancelled items
        """
        with self._lock:
            cancelled = [
                item
                for item in self._items
                if item.status == QueueItemStatus.PENDING and item.mark_as_cancelled()
            ]

        for queue_item in cancelled:
            self._notify(lambda listener, item=queue_item: listener.on_item_cancelled(item))

        if cancelled:
            self.logger.info(f'Cancelled {len(cancelled)} pending queue items')
            self._notify_status_changed()
            self._auto_save()
        return len(cancelled)

    def clear_completed_items(self, include_cancelled: bool = False) -> int:
        """Remove completed and failed items, and cancelled ones if requested.

        Returns:
            Number of removed items
        """
        cleared_statuses = {QueueItemStatus.COMPLETED, QueueItemStatus.FAILED}
        if include_cancelled:
            cleared_statuses.add(QueueItemStatus.CANCELLED)

        with self._lock:
            cleared = [item for item in self._items if item.status in cleared_statuses]
            self._items = [
                item for item in self._items if item.status not in cleared_statuses
            ]

        if cleared:
            self.logger.info(f'Cleared {len(cleared)} completed queue items')
            self._notify_status_changed()
            self._auto_save()
        return len(cleared)

    # Processing control

    def pause_processing(self) -> None:
        """Stop dispatching new items; in-flight items run to completion."""
        with self._lock:
            if self._paused:
                return
            self._paused = True

        self.logger.info('Queue processing paused')
        self._notify(lambda listener: listener.on_queue_processing_paused())
        self._notify_status_changed()

    def resume_processing(self) -> None:
        with self._lock:
            if not self._paused:
                return
            self._paused = False

        self.logger.info('Queue processing resumed')
        self._notify(lambda listener: listener.on_queue_processing_resumed())
        self._notify_status_changed()
        self._wake()

    def is_paused(self) -> bool:
        return self._paused

    def is_processing(self) -> bool:
        return self._processing

    def set_max_concurrent_migrations(self, max_concurrent: int) -> None:
        """Set the concurrency bound.

        Raises:
            QueueConfigurationError: If max_concurrent is outside 1..10
        """
        if isinstance(max_concurrent, bool) or not isinstance(max_concurrent, int):
            raise QueueConfigurationError(
                'Max concurrent migrations must be an integer',
                setting='max_concurrent',
                value=max_concurrent,
            )
        try:
            validate_concurrency(max_concurrent)
        except ValueError as e:
            raise QueueConfigurationError(
                str(e), setting='max_concurrent', value=max_concurrent
            ) from e

        self._max_concurrent = max_concurrent
        self.logger.info(f'Set max concurrent migrations to: {max_concurrent}')
        self._notify_status_changed()
        self._wake()

    def get_max_concurrent_migrations(self) -> int:
        return self._max_concurrent

    # Queries

    def get_queue_item(self, queue_item_id: str) -> Optional[MigrationQueueItem]:
        with self._lock:
            return self._find(queue_item_id)

    def get_all_queue_items(self) -> List[MigrationQueueItem]:
        with self._lock:
            return list(self._items)

    def get_pending_queue_items(self) -> List[MigrationQueueItem]:
        """Pending items by descending priority, then insertion order."""
        with self._lock:
            return self._pending_sorted()

    def get_completed_queue_items(self) -> List[MigrationQueueItem]:
        with self._lock:
            return [item for item in self._items if item.is_completed()]

    def get_queue_size(self) -> int:
        with self._lock:
            return len(self._items)

    def get_queue_status(self) -> QueueStatus:
        with self._lock:
            counts = {status: 0 for status in QueueItemStatus}
            for item in self._items:
                counts[item.status] += 1

            processed_dates = [
                item.processed_date for item in self._items if item.processed_date
            ]

            return QueueStatus(
                total_items=len(self._items),
                pending_items=counts[QueueItemStatus.PENDING],
                processing_items=counts[QueueItemStatus.PROCESSING],
                completed_items=counts[QueueItemStatus.COMPLETED],
                failed_items=counts[QueueItemStatus.FAILED],
                cancelled_items=counts[QueueItemStatus.CANCELLED],
                is_processing=self._processing,
                is_paused=self._paused,
                max_concurrent=self._max_concurrent,
                last_processed_time=max(processed_dates) if processed_dates else None,
            )

    # Listeners

    def add_queue_event_listener(self, listener: QueueEventListener) -> None:
        self._listeners.subscribe(listener)

    def remove_queue_event_listener(self, listener: QueueEventListener) -> bool:
        return self._listeners.unsubscribe(listener)

    # Dispatch loop

    async def process_queue(
        self, max_items: Optional[int] = None
    ) -> List[MigrationResult]:
        """Dispatch pending items until none are eligible.

        Items added while the loop runs are picked up. The call returns once
        every item it dispatched has reached a terminal status; while paused
        no new item is dispatched. Calling this while the loop is already
        running joins the running loop.

        Args:
            max_items: Maximum number of items this call dispatches

        Returns:
            Results of the dispatched items, in dispatch order

        Raises:
            OrchestratorNotConfiguredError: If no orchestrator is set
        """
        if self.orchestrator is None:
            raise OrchestratorNotConfiguredError('Migration orchestrator not set')

        if self._loop_task is not None and not self._loop_task.done():
            self.logger.warning('Queue is already processing')
            return await asyncio.shield(self._loop_task)

        if max_items is not None and max_items < 1:
            return []

        with self._lock:
            has_pending = any(
                item.status == QueueItemStatus.PENDING for item in self._items
            )
        if not has_pending:
            self.logger.info('No pending items to process')
            return []

        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._loop_task = self._loop.create_task(self._run_loop(max_items))
        return await asyncio.shield(self._loop_task)

    async def shutdown(self) -> None:
        """Stop the dispatch loop, abandoning in-flight migrations, and save state."""
        self.logger.info('Shutting down migration queue manager')

        task = self._loop_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._loop_task = None

        self._auto_save()

    async def _run_loop(self, max_items: Optional[int]) -> List[MigrationResult]:
        self._processing = True
        self.logger.info(
            f'Starting queue processing (max concurrent: {self._max_concurrent})'
        )
        self._notify(lambda listener: listener.on_queue_processing_started())
        self._notify_status_changed()

        dispatch_order: List[MigrationQueueItem] = []
        in_flight: Set[asyncio.Task] = set()
        task_items: Dict[asyncio.Task, MigrationQueueItem] = {}
        waiter: Optional[asyncio.Task] = None

        try:
            while True:
                while (
                    not self._paused
                    and len(in_flight) < self._max_concurrent
                    and (max_items is None or len(dispatch_order) < max_items)
                ):
                    queue_item = self._dequeue_next()
                    if queue_item is None:
                        break
                    task = self._loop.create_task(self._dispatch(queue_item))
                    with self._lock:
                        self._dispatch_tasks[queue_item.id] = task
                        abandon = queue_item.id in self._abandon_requested
                    if abandon:
                        task.cancel()
                    in_flight.add(task)
                    task_items[task] = queue_item
                    dispatch_order.append(queue_item)

                if not in_flight:
                    break

                self._wakeup.clear()
                waiter = self._loop.create_task(self._wakeup.wait())
                done, _ = await asyncio.wait(
                    in_flight | {waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                waiter.cancel()
                in_flight -= done
                for task in done:
                    queue_item = task_items.pop(task, None)
                    if queue_item is not None and task.cancelled():
                        self._finalize_abandoned(queue_item)
        except asyncio.CancelledError:
            if waiter is not None:
                waiter.cancel()
            for task in in_flight:
                task.cancel()
            await asyncio.gather(*in_flight, return_exceptions=True)
            for queue_item in task_items.values():
                self._finalize_abandoned(queue_item)
            raise
        finally:
            self._processing = False
            with self._lock:
                for queue_item in dispatch_order:
                    self._dispatch_tasks.pop(queue_item.id, None)
                    self._requests.pop(queue_item.id, None)
                    self._abandon_requested.discard(queue_item.id)
            results = [item.result for item in dispatch_order if item.result is not None]
            successful = sum(1 for result in results if result.success)
            failed = len(results) - successful

            self.logger.info(
                f'Queue processing completed: {successful} successful, {failed} failed'
            )
            self._notify(
                lambda listener: listener.on_queue_processing_completed(
                    len(results), successful, failed
                )
            )
            self._notify_status_changed()
            self._auto_save()

        return results

    def _dequeue_next(self) -> Optional[MigrationQueueItem]:
        with self._lock:
            pending = self._pending_sorted()
            if not pending:
                return None
            queue_item = pending[0]
            queue_item.mark_as_processing()
            # cancel_queue_item may run from on_item_started below
            self._requests[queue_item.id] = queue_item.to_request()

        self.logger.info(f'Processing queue item: {queue_item.repository_name}')
        self._notify(lambda listener: listener.on_item_started(queue_item))
        self._notify_status_changed()
        return queue_item

    async def _dispatch(self, queue_item: MigrationQueueItem) -> MigrationResult:
        """Run one orchestrator call; every failure becomes a failed result."""
        with self._lock:
            request = self._requests.get(queue_item.id) or queue_item.to_request()

        error: Optional[BaseException] = None
        try:
            call = self.orchestrator.migrate_repositories(request)
            if self.config.dispatch_timeout is not None:
                results = await asyncio.wait_for(call, self.config.dispatch_timeout)
            else:
                results = await call
            result = self._first_result(queue_item, results)
        except asyncio.CancelledError:
            self._finalize_abandoned(queue_item)
            raise
        except asyncio.TimeoutError as e:
            error = e
            result = MigrationResult.failure(
                queue_item.repository_name,
                f'Queue processing failed: timed out after '
                f'{self.config.dispatch_timeout} seconds',
            )
        except Exception as e:
            self.logger.error(
                f'Failed to process queue item {queue_item.repository_name}: {e}'
            )
            error = e
            result = failure_from_exception(queue_item.repository_name, e)
        finally:
            with self._lock:
                self._requests.pop(queue_item.id, None)
                self._dispatch_tasks.pop(queue_item.id, None)
                self._abandon_requested.discard(queue_item.id)

        self._finalize(queue_item, result, error)
        return result

    @staticmethod
    def _first_result(queue_item: MigrationQueueItem, results) -> MigrationResult:
        if not results:
            return MigrationResult.failure(
                queue_item.repository_name, 'Queue processing failed: No results returned'
            )
        result = results[0]
        if isinstance(result, dict):
            result = MigrationResult(**result)
        return result

    def _finalize(
        self,
        queue_item: MigrationQueueItem,
        result: MigrationResult,
        error: Optional[BaseException],
    ) -> None:
        with self._lock:
            applied = queue_item.mark_as_completed(result)
            status = queue_item.status

        if not applied:
            self.logger.warning(
                f'Ignoring result for {queue_item.repository_name}: '
                f'item is already {status.value}'
            )
            return

        self.logger.info(
            f'Completed queue item: {queue_item.repository_name} - {status.value.upper()}'
        )

        if status == QueueItemStatus.COMPLETED:
            self._notify(lambda listener: listener.on_item_completed(queue_item, result))
        elif status == QueueItemStatus.FAILED:
            self._notify(
                lambda listener: listener.on_item_failed(queue_item, result, error)
            )
        else:
            self._notify(lambda listener: listener.on_item_cancelled(queue_item))

        self._notify_status_changed()
        self._auto_save()

    def _finalize_abandoned(self, queue_item: MigrationQueueItem) -> None:
        with self._lock:
            applied = queue_item.mark_as_cancelled(
                MigrationResult.failure(
                    queue_item.repository_name, 'Migration abandoned before completion'
                )
            )
        if not applied:
            return

        self.logger.warning(f'Abandoned queue item: {queue_item.repository_name}')
        self._notify(lambda listener: listener.on_item_cancelled(queue_item))
        self._notify_status_changed()

    def _start_signal(self, request: MigrationRequest) -> None:
        task = self._loop.create_task(self._signal_cancellation(request))
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)

    async def _signal_cancellation(self, request: MigrationRequest) -> None:
        try:
            await self.orchestrator.cancel_migration(request)
        except Exception as e:
            self.logger.warning(
                f'Orchestrator failed to handle cancellation of {request.request_id}: {e}'
            )

    # Persistence

    def save_queue_state(self) -> None:
        """Write the queue to the state store.

        Raises:
            PersistenceError: If the state cannot be written
        """
        if self.state_store is None:
            return
        with self._lock:
            items = list(self._items)
            self.state_store.save(items)

    def load_queue_state(self) -> int:
        """Replace the queue with the stored state.

        Items stored as processing belong to an interrupted run and are
        marked failed.

        Returns:
            Number of loaded items

        Raises:
            PersistenceError: If the state cannot be read
        """
        if self.state_store is None:
            return 0

        loaded = self.state_store.load()
        with self._lock:
            for item in loaded:
                if item.status == QueueItemStatus.PROCESSING:
                    item.mark_as_completed(
                        MigrationResult.failure(
                            item.repository_name,
                            'Interrupted before completion; resubmit to retry',
                        )
                    )
            self._items = loaded
            next_sequence = max((item.sequence for item in loaded), default=0) + 1
            self._sequence = itertools.count(next_sequence)

        self.logger.info(f'Loaded queue state with {len(loaded)} items')
        self._notify_status_changed()
        return len(loaded)

    def _auto_save(self) -> None:
        if self.state_store is None:
            return
        try:
            self.save_queue_state()
        except PersistenceError as e:
            self.logger.error(f'Failed to save queue state: {e}')

    # Helpers

    def _find(self, queue_item_id: str) -> Optional[MigrationQueueItem]:
        for item in self._items:
            if item.id == queue_item_id:
                return item
        return None

    def _pending_sorted(self) -> List[MigrationQueueItem]:
        pending = [item for item in self._items if item.status == QueueItemStatus.PENDING]
        return sorted(pending, key=lambda item: (-item.priority, item.sequence))

    def _notify(self, action: Callable[[QueueEventListener], None]) -> None:
        self._listeners.notify(action)

    def _notify_status_changed(self) -> None:
        if not self._listeners:
            return
        status = self.get_queue_status()
        self._notify(lambda listener: listener.on_queue_status_changed(status))

    def _call_in_loop(self, callback: Callable[[], object]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback)
        except RuntimeError as e:
            self.logger.debug(f'Dispatch loop unavailable: {e}')

    def _wake(self) -> None:
        wakeup = self._wakeup
        if wakeup is not None:
            self._call_in_loop(wakeup.set)
