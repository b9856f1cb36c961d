"""Queue item, orchestrator request/result and queue status models."""

import uuid
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, validator

from .configuration import MigrationConfiguration
from .repository import RepositoryInfo
from .status import FrameworkType, QueueItemStatus


class MigrationResult(BaseModel):
    """Outcome the orchestrator reports for one repository."""

    repository_name: str = Field(default='unknown', description='Repository name')
    identified_framework: FrameworkType = Field(
        default=FrameworkType.UNKNOWN, description='Detected framework'
    )
    success: bool = Field(..., description='Migration was successful')
    message: str = Field(default='', description='Human-readable outcome')
    error_details: Optional[str] = Field(
        default=None, description='Structured error detail or traceback'
    )

    @classmethod
    def failure(
        cls, repository_name: str, message: str, error_details: Optional[str] = None
    ) -> 'MigrationResult':
        return cls(
            repository_name=repository_name,
            success=False,
            message=message,
            error_details=error_details,
        )


class MigrationRequest(BaseModel):
    """Request handed to the orchestrator for one dispatch."""

    request_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()), description='Request ID'
    )
    repository_urls: List[str] = Field(..., description='Repositories to migrate')
    configuration: MigrationConfiguration = Field(
        default_factory=MigrationConfiguration, description='Migration settings'
    )
    queue_item_id: Optional[str] = Field(
        default=None, description='Queue item that produced this request'
    )

    @validator('repository_urls')
    def validate_repository_urls(cls, v):
        """Validate at least one repository is requested."""
        if not v:
            raise ValueError('At least one repository URL is required')
        return v


class MigrationQueueItem(BaseModel):
    """One repository and configuration pair waiting for, or undergoing, migration."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description='Item ID')
    repository: RepositoryInfo = Field(..., description='Repository to migrate')
    configuration: MigrationConfiguration = Field(
        default_factory=MigrationConfiguration, description='Migration settings'
    )
    status: QueueItemStatus = Field(
        default=QueueItemStatus.PENDING, description='Queue status'
    )
    priority: int = Field(default=0, description='Higher values are processed first')
    sequence: int = Field(default=0, description='Tie-break order within a priority')

    added_date: datetime = Field(default_factory=datetime.now, description='Added at')
    processed_date: Optional[datetime] = Field(
        default=None, description='Dispatch start time'
    )
    result: Optional[MigrationResult] = Field(
        default=None, description='Orchestrator result'
    )
    cancel_requested: bool = Field(
        default=False, description='Cancellation was signalled while processing'
    )

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}

    @property
    def repository_name(self) -> str:
        return self.repository.name if self.repository else 'Unknown'

    @property
    def repository_url(self) -> str:
        return (
            self.repository.clone_url
            or self.repository.ssh_url
            or self.repository.url
            or self.repository.name
        )

    def is_completed(self) -> bool:
        return self.status in (QueueItemStatus.COMPLETED, QueueItemStatus.FAILED)

    def is_in_progress(self) -> bool:
        return self.status == QueueItemStatus.PROCESSING

    def _transition(self, target: QueueItemStatus) -> bool:
        if not self.status.can_transition_to(target):
            return False
        self.status = target
        return True

    def mark_as_processing(self) -> bool:
        if not self._transition(QueueItemStatus.PROCESSING):
            return False
        self.processed_date = datetime.now()
        return True

    def mark_as_completed(self, result: MigrationResult) -> bool:
        """Record the orchestrator result; success decides Completed or Failed."""
        target = QueueItemStatus.COMPLETED if result.success else QueueItemStatus.FAILED
        if self.cancel_requested and not result.success:
            target = QueueItemStatus.CANCELLED
        if not self._transition(target):
            return False
        self.result = result
        return True

    def mark_as_cancelled(self, result: Optional[MigrationResult] = None) -> bool:
        if not self._transition(QueueItemStatus.CANCELLED):
            return False
        if result is not None:
            self.result = result
        return True

    def to_request(self) -> MigrationRequest:
        return MigrationRequest(
            repository_urls=[self.repository_url],
            configuration=self.configuration,
            queue_item_id=self.id,
        )


class QueueStatus(BaseModel):
    """Point-in-time snapshot of the queue."""

    total_items: int = 0
    pending_items: int = 0
    processing_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    cancelled_items: int = 0
    is_processing: bool = False
    is_paused: bool = False
    max_concurrent: int = 0
    last_processed_time: Optional[datetime] = None

    @property
    def active_items(self) -> int:
        return self.pending_items + self.processing_items

    @property
    def finished_items(self) -> int:
        return self.completed_items + self.failed_items

    @property
    def completion_percentage(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.finished_items / self.total_items * 100.0

    @property
    def success_rate(self) -> float:
        if self.finished_items == 0:
            return 0.0
        return self.completed_items / self.finished_items * 100.0
