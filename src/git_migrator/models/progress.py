"""Hierarchical progress models: operation -> repository -> steps and logs."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from .status import MigrationStatus, MigrationStep


def format_log_line(message: str, timestamp: Optional[datetime] = None) -> str:
    """Prefix a log message with its timestamp."""
    timestamp = timestamp or datetime.now()
    return f'[{timestamp.isoformat(timespec="milliseconds")}] {message}'


class RepositoryProgress(BaseModel):
    """Progress of a single repository within an operation.

    Mutators here do no locking; ``ProgressTracker`` serializes access
    per repository.
    """

    repository_id: str = Field(..., description='Repository ID')
    repository_name: str = Field(..., description='Repository display name')
    start_time: datetime = Field(default_factory=datetime.now, description='Start')
    end_time: Optional[datetime] = Field(default=None, description='Terminal time')
    status: MigrationStatus = Field(
        default=MigrationStatus.QUEUED, description='Repository status'
    )
    current_step: Optional[MigrationStep] = Field(
        default=None, description='Most recently reported step'
    )
    completed_steps: Set[MigrationStep] = Field(
        default_factory=set, description='Steps finished so far'
    )
    logs: List[str] = Field(default_factory=list, description='Timestamped log lines')
    error_message: Optional[str] = Field(default=None, description='Failure reason')
    total_steps: int = Field(
        default_factory=lambda: len(MigrationStep),
        description='Step count captured when tracking started',
    )

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}

    @property
    def progress_percentage(self) -> float:
        if self.total_steps <= 0:
            return 0.0
        return min(len(self.completed_steps) / self.total_steps * 100.0, 100.0)

    def is_completed(self) -> bool:
        return self.status in (MigrationStatus.COMPLETED, MigrationStatus.FAILED)

    @property
    def status_display_text(self) -> str:
        if self.status.is_in_progress() and self.current_step is not None:
            return self.current_step.display_name
        return self.status.display_name

    def add_log(self, message: str) -> None:
        self.logs.append(format_log_line(message))

    def set_current_step(self, step: MigrationStep) -> None:
        self.current_step = step
        if step.migration_status is not MigrationStatus.QUEUED:
            self.status = step.migration_status
        self.add_log(f'Starting step: {step.display_name}')

    def complete_step(self, step: MigrationStep) -> bool:
        """Add step to the completed set. Returns False if it was already there."""
        if step in self.completed_steps:
            return False
        self.completed_steps.add(step)
        self.add_log(f'Completed step: {step.display_name}')
        return True

    def mark_completed(self) -> None:
        self.status = MigrationStatus.COMPLETED
        self.end_time = datetime.now()

    def mark_failed(self, error_message: str) -> None:
        self.error_message = error_message
        self.status = MigrationStatus.FAILED
        self.end_time = datetime.now()
        self.add_log(f'Error: {error_message}')

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready representation; completed steps are listed in step order."""
        return {
            'repository_id': self.repository_id,
            'repository_name': self.repository_name,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'status': self.status.value,
            'current_step': self.current_step.value if self.current_step else None,
            'completed_steps': [
                step.value
                for step in sorted(self.completed_steps, key=lambda s: s.step_number)
            ],
            'logs': list(self.logs),
            'error_message': self.error_message,
            'total_steps': self.total_steps,
            'progress_percentage': round(self.progress_percentage, 2),
        }


class MigrationProgress(BaseModel):
    """Progress of one tracked migration operation."""

    operation_id: str = Field(..., description='Operation ID')
    start_time: datetime = Field(default_factory=datetime.now, description='Start')
    end_time: Optional[datetime] = Field(default=None, description='End time')
    overall_status: MigrationStatus = Field(
        default=MigrationStatus.QUEUED, description='Operation status'
    )
    repository_progress: Dict[str, RepositoryProgress] = Field(
        default_factory=dict, description='Progress keyed by repository ID'
    )
    global_logs: List[str] = Field(
        default_factory=list, description='Operation-wide log lines'
    )
    total_repositories: int = Field(default=0, description='Tracked repositories')
    completed_repositories: int = Field(default=0, description='Completed count')
    failed_repositories: int = Field(default=0, description='Failed count')

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}

    @property
    def overall_progress_percentage(self) -> float:
        if self.total_repositories == 0:
            return 0.0
        finished = self.completed_repositories + self.failed_repositories
        return finished / self.total_repositories * 100.0

    def is_terminal(self) -> bool:
        return self.overall_status.is_terminal()

    def get_repository_progress(self, repository_id: str) -> Optional[RepositoryProgress]:
        return self.repository_progress.get(repository_id)

    def add_global_log(self, message: str) -> None:
        self.global_logs.append(format_log_line(message))

    def to_document(self) -> Dict[str, Any]:
        return {
            'operation_id': self.operation_id,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'overall_status': self.overall_status.value,
            'total_repositories': self.total_repositories,
            'completed_repositories': self.completed_repositories,
            'failed_repositories': self.failed_repositories,
            'overall_progress_percentage': round(self.overall_progress_percentage, 2),
            'global_logs': list(self.global_logs),
            'repository_progress': {
                repo_id: repo.to_document()
                for repo_id, repo in self.repository_progress.items()
            },
        }
