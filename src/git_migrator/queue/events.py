"""Queue event listener interface."""

from typing import Optional

from ..models.queue import MigrationQueueItem, MigrationResult, QueueStatus


class QueueEventListener:
    """Receives queue events.

    Every callback is a no-op; subclasses override the ones they care
    about. Callbacks run synchronously after the queue state they describe
    has been applied.
    """

    def on_item_added(self, queue_item: MigrationQueueItem) -> None:
        pass

    def on_item_removed(self, queue_item: MigrationQueueItem) -> None:
        pass

    def on_item_started(self, queue_item: MigrationQueueItem) -> None:
        pass

    def on_item_completed(
        self, queue_item: MigrationQueueItem, result: MigrationResult
    ) -> None:
        pass

    def on_item_failed(
        self,
        queue_item: MigrationQueueItem,
        result: MigrationResult,
        error: Optional[BaseException] = None,
    ) -> None:
        pass

    def on_item_cancelled(self, queue_item: MigrationQueueItem) -> None:
        pass

    def on_queue_processing_started(self) -> None:
        pass

    def on_queue_processing_completed(
        self, total_processed: int, successful: int, failed: int
    ) -> None:
        pass

    def on_queue_processing_paused(self) -> None:
        pass

    def on_queue_processing_resumed(self) -> None:
        pass

    def on_queue_status_changed(self, status: QueueStatus) -> None:
        pass
