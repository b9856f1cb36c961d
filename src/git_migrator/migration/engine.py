"""Migration engine - main entry point for migration operations."""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..config.config import Config
from ..models.configuration import MigrationConfiguration
from ..models.queue import MigrationQueueItem, MigrationRequest, MigrationResult
from ..models.repository import RepositoryInfo
from ..models.status import MigrationStep, QueueItemStatus
from ..progress.tracker import ProgressTracker
from ..queue.manager import MigrationQueueManager
from .orchestrator import MigrationOrchestrator


class MigrationSummary(BaseModel):
    """Summary of one engine run."""

    operation_id: str = Field(..., description='Progress operation ID')
    total_repositories: int = Field(..., description='Repositories in the run')
    successful_migrations: int = Field(..., description='Successful migrations')
    failed_migrations: int = Field(..., description='Failed migrations')
    cancelled_migrations: int = Field(default=0, description='Cancelled migrations')
    unprocessed: int = Field(
        default=0, description='Repositories left pending (paused or interrupted)'
    )

    # Timing
    started_at: datetime = Field(..., description='Run start time')
    completed_at: Optional[datetime] = Field(
        default=None, description='Run completion time'
    )

    results: List[MigrationResult] = Field(
        default_factory=list, description='Results in dispatch order'
    )

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}

    @property
    def success_rate(self) -> float:
        finished = self.successful_migrations + self.failed_migrations
        if finished == 0:
            return 0.0
        return self.successful_migrations / finished * 100

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class ReportingOrchestrator(MigrationOrchestrator):
    """Wraps an orchestrator and reports each dispatch into a progress tracker.

    Every request is reported as the INITIALIZING step before the wrapped
    orchestrator runs and FINALIZING once it returns. Tracker repository IDs
    are queue item IDs.
    """

    def __init__(self, orchestrator: MigrationOrchestrator, tracker: ProgressTracker):
        self.orchestrator = orchestrator
        self.tracker = tracker
        self.operation_id: Optional[str] = None

    async def migrate_repositories(
        self, request: MigrationRequest
    ) -> List[MigrationResult]:
        operation_id = self.operation_id
        repository_id = request.queue_item_id

        if operation_id and repository_id:
            self._report(operation_id, repository_id, MigrationStep.INITIALIZING)

        results = await self.orchestrator.migrate_repositories(request)

        if operation_id and repository_id:
            self._report(operation_id, repository_id, MigrationStep.FINALIZING)
        return results

    async def cancel_migration(self, request: MigrationRequest) -> None:
        await self.orchestrator.cancel_migration(request)

    def _report(self, operation_id: str, repository_id: str, step: MigrationStep) -> None:
        self.tracker.update_repository_progress(operation_id, repository_id, step)
        self.tracker.complete_repository_step(operation_id, repository_id, step)


class MigrationEngine:
    """Main migration engine that ties the queue, the tracker and an orchestrator together."""

    def __init__(
        self,
        config: Config,
        orchestrator: MigrationOrchestrator,
        tracker: Optional[ProgressTracker] = None,
    ):
        """Initialize migration engine.

        Args:
            config: Application configuration
            orchestrator: Collaborator that performs migrations
            tracker: Progress tracker (built from config.progress if omitted)
        """
        self.config = config
        self.logger = logger.bind(component='MigrationEngine')

        self.tracker = tracker or ProgressTracker(config.progress)
        self.orchestrator = ReportingOrchestrator(orchestrator, self.tracker)
        self.queue = MigrationQueueManager(self.orchestrator, config.queue)

    def submit(
        self,
        repositories: List[RepositoryInfo],
        configuration: Optional[MigrationConfiguration] = None,
        priority: int = 0,
    ) -> List[str]:
        """Queue repositories for the next run.

        Returns:
            Queue item IDs, in submission order
        """
        return [
            self.queue.add_to_queue(repository, configuration, priority)
            for repository in repositories
        ]

    async def run(self, operation_id: Optional[str] = None) -> MigrationSummary:
        """Process every pending repository as one tracked operation.

        Args:
            operation_id: Progress operation ID (generated if omitted)

        Returns:
            Migration summary
        """
        operation_id = operation_id or str(uuid.uuid4())
        pending = self.queue.get_pending_queue_items()
        started_at = datetime.now()

        self.tracker.start_operation(
            operation_id,
            [item.id for item in pending],
            {item.id: item.repository_name for item in pending},
        )
        self.logger.info(
            f'Starting migration run {operation_id} with {len(pending)} repositories'
        )

        self.orchestrator.operation_id = operation_id
        try:
            await self.queue.process_queue()
        except Exception as e:
            self.logger.error(f'Migration run failed: {e}')
            raise
        finally:
            self.orchestrator.operation_id = None
            items = self._record_outcomes(operation_id, pending)

        summary = self._summarize(operation_id, items, started_at)
        self.logger.info(
            f'Migration run {operation_id} finished: '
            f'{summary.successful_migrations} successful, '
            f'{summary.failed_migrations} failed, '
            f'{summary.cancelled_migrations} cancelled'
        )
        return summary

    async def shutdown(self) -> None:
        await self.queue.shutdown()

    def _record_outcomes(
        self, operation_id: str, dispatched: List[MigrationQueueItem]
    ) -> List[MigrationQueueItem]:
        items = []
        for queued in dispatched:
            item = self.queue.get_queue_item(queued.id) or queued
            items.append(item)

            if item.status == QueueItemStatus.COMPLETED:
                self.tracker.complete_repository(operation_id, item.id)
            elif item.status.is_finished():
                message = item.result.message if item.result else item.status.display_name
                self.tracker.fail_repository(operation_id, item.id, message)

        if any(item.status.is_active() for item in items):
            self.logger.warning(
                f'Operation {operation_id} left active: some repositories were not processed'
            )
        else:
            self.tracker.complete_operation(operation_id)
        return items

    @staticmethod
    def _summarize(
        operation_id: str, items: List[MigrationQueueItem], started_at: datetime
    ) -> MigrationSummary:
        counts: Dict[QueueItemStatus, int] = {status: 0 for status in QueueItemStatus}
        for item in items:
            counts[item.status] += 1

        dispatched = sorted(
            (item for item in items if item.processed_date is not None),
            key=lambda item: item.processed_date,
        )

        return MigrationSummary(
            operation_id=operation_id,
            total_repositories=len(items),
            successful_migrations=counts[QueueItemStatus.COMPLETED],
            failed_migrations=counts[QueueItemStatus.FAILED],
            cancelled_migrations=counts[QueueItemStatus.CANCELLED],
            unprocessed=counts[QueueItemStatus.PENDING] + counts[QueueItemStatus.PROCESSING],
            started_at=started_at,
            completed_at=datetime.now(),
            results=[item.result for item in dispatched if item.result is not None],
        )
