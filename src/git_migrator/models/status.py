"""Status and step enumerations shared by the queue and the progress tracker."""

from enum import Enum
from typing import List


class QueueItemStatus(str, Enum):
    """Queue item status enumeration."""

    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def display_name(self) -> str:
        return self.value.title()

    def is_active(self) -> bool:
        return self in (QueueItemStatus.PENDING, QueueItemStatus.PROCESSING)

    def is_finished(self) -> bool:
        return self in (
            QueueItemStatus.COMPLETED,
            QueueItemStatus.FAILED,
            QueueItemStatus.CANCELLED,
        )

    def can_transition_to(self, target: 'QueueItemStatus') -> bool:
        """Check whether moving from this status to target keeps the lifecycle monotonic."""
        allowed = {
            QueueItemStatus.PENDING: {
                QueueItemStatus.PROCESSING,
                QueueItemStatus.CANCELLED,
            },
            QueueItemStatus.PROCESSING: {
                QueueItemStatus.COMPLETED,
                QueueItemStatus.FAILED,
                QueueItemStatus.CANCELLED,
            },
        }
        return target in allowed.get(self, set())


class MigrationStatus(str, Enum):
    """Migration status enumeration for repositories and operations."""

    NOT_STARTED = 'not_started'
    QUEUED = 'queued'
    CLONING = 'cloning'
    ANALYZING = 'analyzing'
    GENERATING = 'generating'
    VALIDATING = 'validating'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def display_name(self) -> str:
        return self.value.replace('_', ' ').title()

    def is_in_progress(self) -> bool:
        return self in (
            MigrationStatus.QUEUED,
            MigrationStatus.CLONING,
            MigrationStatus.ANALYZING,
            MigrationStatus.GENERATING,
            MigrationStatus.VALIDATING,
        )

    def is_completed(self) -> bool:
        return self is MigrationStatus.COMPLETED

    def is_failed(self) -> bool:
        return self in (MigrationStatus.FAILED, MigrationStatus.CANCELLED)

    def is_terminal(self) -> bool:
        return self.is_completed() or self.is_failed()


_STEP_DISPLAY_NAMES = {
    'initializing': 'Initializing',
    'cloning': 'Cloning repository',
    'analyzing': 'Analyzing project structure',
    'detecting_framework': 'Detecting framework',
    'extracting_metadata': 'Extracting metadata',
    'generating_dockerfile': 'Generating Dockerfile',
    'generating_helm_chart': 'Generating Helm chart',
    'generating_kubernetes_manifests': 'Generating Kubernetes manifests',
    'generating_ci_cd': 'Generating CI/CD pipeline',
    'validating_artifacts': 'Validating generated artifacts',
    'writing_files': 'Writing files to repository',
    'finalizing': 'Finalizing migration',
}


class MigrationStep(str, Enum):
    """Ordered phases of a single repository migration.

    Declaration order is the execution order; ``step_number`` is the
    1-based position and ``total_steps`` the number of members.
    """

    INITIALIZING = 'initializing'
    CLONING = 'cloning'
    ANALYZING = 'analyzing'
    DETECTING_FRAMEWORK = 'detecting_framework'
    EXTRACTING_METADATA = 'extracting_metadata'
    GENERATING_DOCKERFILE = 'generating_dockerfile'
    GENERATING_HELM_CHART = 'generating_helm_chart'
    GENERATING_KUBERNETES_MANIFESTS = 'generating_kubernetes_manifests'
    GENERATING_CI_CD = 'generating_ci_cd'
    VALIDATING_ARTIFACTS = 'validating_artifacts'
    WRITING_FILES = 'writing_files'
    FINALIZING = 'finalizing'

    @property
    def display_name(self) -> str:
        return _STEP_DISPLAY_NAMES[self.value]

    @property
    def step_number(self) -> int:
        return list(MigrationStep).index(self) + 1

    @property
    def total_steps(self) -> int:
        return len(MigrationStep)

    @property
    def migration_status(self) -> MigrationStatus:
        """In-progress repository status matching this step."""
        if self is MigrationStep.CLONING:
            return MigrationStatus.CLONING
        if self in (
            MigrationStep.ANALYZING,
            MigrationStep.DETECTING_FRAMEWORK,
            MigrationStep.EXTRACTING_METADATA,
        ):
            return MigrationStatus.ANALYZING
        if self in (
            MigrationStep.GENERATING_DOCKERFILE,
            MigrationStep.GENERATING_HELM_CHART,
            MigrationStep.GENERATING_KUBERNETES_MANIFESTS,
            MigrationStep.GENERATING_CI_CD,
            MigrationStep.WRITING_FILES,
        ):
            return MigrationStatus.GENERATING
        if self is MigrationStep.VALIDATING_ARTIFACTS:
            return MigrationStatus.VALIDATING
        return MigrationStatus.QUEUED

    @classmethod
    def ordered_steps(cls) -> List['MigrationStep']:
        return list(cls)


class FrameworkType(str, Enum):
    """Frameworks the orchestrator can report for a migrated repository."""

    SPRING_BOOT = 'spring_boot'
    SPRING_CLASSIC = 'spring_classic'
    MAVEN_JAVA = 'maven_java'
    GRADLE_JAVA = 'gradle_java'
    REACT = 'react'
    ANGULAR = 'angular'
    ANGULAR_JS = 'angular_js'
    NODE_JS = 'node_js'
    FLASK = 'flask'
    FASTAPI = 'fastapi'
    PYTHON = 'python'
    MULTI_STACK = 'multi_stack'
    MONOREPO = 'monorepo'
    UNKNOWN = 'unknown'
