"""Tests for the migration queue manager."""

import asyncio
import os
import tempfile
from typing import List

import pytest

from git_migrator.config.config import QueueConfig
from git_migrator.exceptions import (
    OrchestratorNotConfiguredError,
    QueueConfigurationError,
)
from git_migrator.migration.orchestrator import CallableOrchestrator, MigrationOrchestrator
from git_migrator.models import (
    MigrationQueueItem,
    MigrationRequest,
    MigrationResult,
    QueueItemStatus,
    RepositoryInfo,
)
from git_migrator.queue import MigrationQueueManager, QueueEventListener, QueueStateStore


def make_repository(name: str) -> RepositoryInfo:
    return RepositoryInfo(name=name, clone_url=f'https://git.example.com/acme/{name}.git')


def repo_name(request: MigrationRequest) -> str:
    return request.repository_urls[0].rsplit('/', 1)[-1][: -len('.git')]


class RecordingOrchestrator(MigrationOrchestrator):
    """Orchestrator that records calls and tracks how many run at once."""

    def __init__(self, delay: float = 0.01, fail=(), explode=()):
        self.delay = delay
        self.fail = set(fail)
        self.explode = set(explode)
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def migrate_repositories(self, request):
        name = repo_name(request)
        self.calls.append(name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if name in self.explode:
                raise RuntimeError('orchestrator exploded')
            return [
                MigrationResult(
                    repository_name=name,
                    success=name not in self.fail,
                    message='done' if name not in self.fail else 'build failed',
                )
            ]
        finally:
            self.active -= 1


class BlockingOrchestrator(MigrationOrchestrator):
    """Orchestrator that blocks until released and honours cancellation."""

    def __init__(self):
        self.started = None
        self.release = None
        self.cancelled: List[str] = []

    def bind(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def migrate_repositories(self, request):
        self.started.set()
        await self.release.wait()
        if request.request_id in self.cancelled:
            return [MigrationResult.failure(repo_name(request), 'stopped on request')]
        return [MigrationResult(repository_name=repo_name(request), success=True)]

    async def cancel_migration(self, request):
        self.cancelled.append(request.request_id)
        self.release.set()


class RecordingListener(QueueEventListener):
    def __init__(self):
        self.events = []

    def on_item_added(self, item):
        self.events.append(('added', item.repository_name))

    def on_item_started(self, item):
        self.events.append(('started', item.repository_name))

    def on_item_completed(self, item, result):
        self.events.append(('completed', item.repository_name))

    def on_item_failed(self, item, result, error=None):
        self.events.append(('failed', item.repository_name))

    def on_item_cancelled(self, item):
        self.events.append(('cancelled', item.repository_name))

    def on_queue_processing_started(self):
        self.events.append(('processing_started',))

    def on_queue_processing_completed(self, total, successful, failed):
        self.events.append(('processing_completed', total, successful, failed))


class ExplodingListener(QueueEventListener):
    def on_item_added(self, item):
        raise RuntimeError('listener bug')

    def on_item_completed(self, item, result):
        raise RuntimeError('listener bug')


class TestQueueOrdering:
    """Test queue ordering and mutation."""

    def setup_method(self):
        self.manager = MigrationQueueManager()

    def test_priority_then_insertion_order(self):
        a = self.manager.add_to_queue(make_repository('a'), priority=1)
        b = self.manager.add_to_queue(make_repository('b'), priority=5)
        c = self.manager.add_to_queue(make_repository('c'), priority=1)

        pending = [item.id for item in self.manager.get_pending_queue_items()]
        assert pending == [b, a, c]

    def test_add_uses_default_configuration(self):
        item_id = self.manager.add_to_queue(make_repository('a'))
        item = self.manager.get_queue_item(item_id)

        assert item.status == QueueItemStatus.PENDING
        assert item.configuration.target_platform == 'kubernetes'
        assert item.priority == 0

    def test_remove_from_queue(self):
        item_id = self.manager.add_to_queue(make_repository('a'))

        assert self.manager.remove_from_queue(item_id)
        assert not self.manager.remove_from_queue(item_id)
        assert self.manager.get_queue_size() == 0

    def test_reorder_within_priority(self):
        a = self.manager.add_to_queue(make_repository('a'))
        b = self.manager.add_to_queue(make_repository('b'))
        c = self.manager.add_to_queue(make_repository('c'))
        urgent = self.manager.add_to_queue(make_repository('urgent'), priority=9)

        self.manager.reorder_queue([c, a, 'unknown-id'])

        pending = [item.id for item in self.manager.get_pending_queue_items()]
        assert pending == [urgent, c, a, b]

    def test_cancel_pending_item(self):
        item_id = self.manager.add_to_queue(make_repository('a'))

        assert self.manager.cancel_queue_item(item_id)
        assert self.manager.get_queue_item(item_id).status == QueueItemStatus.CANCELLED
        assert not self.manager.cancel_queue_item(item_id)
        assert not self.manager.cancel_queue_item('missing')
        assert self.manager.get_pending_queue_items() == []

    def test_cancel_all_pending(self):
        for name in ('a', 'b', 'c'):
            self.manager.add_to_queue(make_repository(name))

        assert self.manager.cancel_all_pending() == 3
        assert self.manager.cancel_all_pending() == 0
        assert self.manager.get_queue_status().cancelled_items == 3

    def test_clear_completed_items(self):
        orchestrator = RecordingOrchestrator(fail={'b'})
        manager = MigrationQueueManager(orchestrator)
        manager.add_to_queue(make_repository('a'))
        manager.add_to_queue(make_repository('b'))
        cancelled = manager.add_to_queue(make_repository('c'))
        manager.cancel_queue_item(cancelled)
        asyncio.run(manager.process_queue())

        assert manager.clear_completed_items() == 2
        assert [item.id for item in manager.get_all_queue_items()] == [cancelled]
        assert manager.clear_completed_items(include_cancelled=True) == 1
        assert manager.get_queue_size() == 0

    def test_queue_status_counts(self):
        first = self.manager.add_to_queue(make_repository('a'))
        self.manager.add_to_queue(make_repository('b'))
        self.manager.cancel_queue_item(first)

        status = self.manager.get_queue_status()
        assert status.total_items == 2
        assert status.pending_items == 1
        assert status.cancelled_items == 1
        assert status.max_concurrent == 3
        assert not status.is_processing


class TestConcurrencySettings:
    """Test the concurrency bound."""

    def test_default_bound(self):
        assert MigrationQueueManager().get_max_concurrent_migrations() == 3

    def test_valid_bounds(self):
        manager = MigrationQueueManager()
        for value in (1, 10):
            manager.set_max_concurrent_migrations(value)
            assert manager.get_max_concurrent_migrations() == value

    def test_invalid_bounds(self):
        manager = MigrationQueueManager()
        for value in (0, 11, -3, True, '4'):
            with pytest.raises(QueueConfigurationError):
                manager.set_max_concurrent_migrations(value)
        assert manager.get_max_concurrent_migrations() == 3

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            MigrationQueueManager().set_max_concurrent_migrations(0)


class TestQueueProcessing:
    """Test dispatch through the orchestrator."""

    def test_requires_orchestrator(self):
        manager = MigrationQueueManager()
        manager.add_to_queue(make_repository('a'))

        with pytest.raises(OrchestratorNotConfiguredError):
            asyncio.run(manager.process_queue())

    def test_empty_queue_returns_immediately(self):
        manager = MigrationQueueManager(RecordingOrchestrator())
        assert asyncio.run(manager.process_queue()) == []

    def test_dispatch_follows_priority(self):
        orchestrator = RecordingOrchestrator()
        manager = MigrationQueueManager(orchestrator)
        manager.set_max_concurrent_migrations(1)
        manager.add_to_queue(make_repository('a'), priority=1)
        manager.add_to_queue(make_repository('b'), priority=5)
        manager.add_to_queue(make_repository('c'), priority=1)

        results = asyncio.run(manager.process_queue())

        assert orchestrator.calls == ['b', 'a', 'c']
        assert [r.repository_name for r in results] == ['b', 'a', 'c']
        assert all(item.status == QueueItemStatus.COMPLETED
                   for item in manager.get_all_queue_items())

    def test_concurrency_bound_is_respected(self):
        orchestrator = RecordingOrchestrator(delay=0.05)
        manager = MigrationQueueManager(orchestrator, QueueConfig(max_concurrent=2))
        for index in range(6):
            manager.add_to_queue(make_repository(f'repo{index}'))

        results = asyncio.run(manager.process_queue())

        assert len(results) == 6
        assert orchestrator.max_active == 2

    def test_orchestrator_exception_fails_only_that_item(self):
        orchestrator = RecordingOrchestrator(explode={'b'})
        manager = MigrationQueueManager(orchestrator)
        a = manager.add_to_queue(make_repository('a'))
        b = manager.add_to_queue(make_repository('b'))
        c = manager.add_to_queue(make_repository('c'))

        asyncio.run(manager.process_queue())

        failed = manager.get_queue_item(b)
        assert failed.status == QueueItemStatus.FAILED
        assert failed.result.message == 'Queue processing failed: orchestrator exploded'
        assert 'RuntimeError' in failed.result.error_details
        assert manager.get_queue_item(a).status == QueueItemStatus.COMPLETED
        assert manager.get_queue_item(c).status == QueueItemStatus.COMPLETED

    def test_unsuccessful_result_marks_failed(self):
        manager = MigrationQueueManager(RecordingOrchestrator(fail={'a'}))
        item_id = manager.add_to_queue(make_repository('a'))

        asyncio.run(manager.process_queue())

        item = manager.get_queue_item(item_id)
        assert item.status == QueueItemStatus.FAILED
        assert item.result.message == 'build failed'

    def test_empty_result_list_marks_failed(self):
        async def migrate(request):
            return []

        manager = MigrationQueueManager(CallableOrchestrator(migrate))
        item_id = manager.add_to_queue(make_repository('a'))

        asyncio.run(manager.process_queue())

        item = manager.get_queue_item(item_id)
        assert item.status == QueueItemStatus.FAILED
        assert 'No results returned' in item.result.message

    def test_dispatch_timeout(self):
        orchestrator = RecordingOrchestrator(delay=1.0)
        manager = MigrationQueueManager(
            orchestrator, QueueConfig(dispatch_timeout=0.05)
        )
        item_id = manager.add_to_queue(make_repository('slow'))

        asyncio.run(manager.process_queue())

        item = manager.get_queue_item(item_id)
        assert item.status == QueueItemStatus.FAILED
        assert 'timed out' in item.result.message

    def test_max_items_limits_dispatch(self):
        orchestrator = RecordingOrchestrator()
        manager = MigrationQueueManager(orchestrator)
        for name in ('a', 'b', 'c'):
            manager.add_to_queue(make_repository(name))

        results = asyncio.run(manager.process_queue(max_items=2))

        assert len(results) == 2
        assert len(manager.get_pending_queue_items()) == 1

    def test_paused_queue_dispatches_nothing(self):
        orchestrator = RecordingOrchestrator()
        manager = MigrationQueueManager(orchestrator)
        manager.add_to_queue(make_repository('a'))
        manager.pause_processing()

        assert manager.is_paused()
        assert asyncio.run(manager.process_queue()) == []
        assert orchestrator.calls == []

        manager.resume_processing()
        assert not manager.is_paused()
        assert len(asyncio.run(manager.process_queue())) == 1

    def test_items_added_while_processing_are_picked_up(self):
        orchestrator = RecordingOrchestrator()
        manager = MigrationQueueManager(orchestrator)

        class AddOnStart(QueueEventListener):
            def __init__(self):
                self.added = False

            def on_item_started(self, item):
                if not self.added:
                    self.added = True
                    manager.add_to_queue(make_repository('late'))

        manager.add_queue_event_listener(AddOnStart())
        manager.add_to_queue(make_repository('early'))

        results = asyncio.run(manager.process_queue())

        assert [r.repository_name for r in results] == ['early', 'late']

    def test_cancel_processing_item_signals_orchestrator(self):
        orchestrator = BlockingOrchestrator()
        manager = MigrationQueueManager(orchestrator)
        item_id = manager.add_to_queue(make_repository('a'))

        async def scenario():
            orchestrator.bind()
            processing = asyncio.ensure_future(manager.process_queue())
            await orchestrator.started.wait()

            assert manager.get_queue_item(item_id).status == QueueItemStatus.PROCESSING
            assert manager.cancel_queue_item(item_id)
            await processing

        asyncio.run(scenario())

        assert len(orchestrator.cancelled) == 1
        assert manager.get_queue_item(item_id).status == QueueItemStatus.CANCELLED

    def test_cancel_from_started_listener_signals_orchestrator(self):
        orchestrator = BlockingOrchestrator()
        manager = MigrationQueueManager(orchestrator)
        item_id = manager.add_to_queue(make_repository('a'))
        outcomes = []

        class CancelOnStart(QueueEventListener):
            def on_item_started(self, item):
                outcomes.append(manager.cancel_queue_item(item.id))

        manager.add_queue_event_listener(CancelOnStart())

        async def scenario():
            orchestrator.bind()
            await manager.process_queue()

        asyncio.run(scenario())

        assert outcomes == [True]
        assert len(orchestrator.cancelled) == 1
        assert manager.get_queue_item(item_id).status == QueueItemStatus.CANCELLED

    def test_abandon_from_started_listener_cancels_dispatch(self):
        orchestrator = RecordingOrchestrator(delay=5)
        manager = MigrationQueueManager(orchestrator)
        item_id = manager.add_to_queue(make_repository('a'))

        class AbandonOnStart(QueueEventListener):
            def on_item_started(self, item):
                manager.cancel_queue_item(item.id, abandon=True)

        manager.add_queue_event_listener(AbandonOnStart())

        results = asyncio.run(manager.process_queue())

        assert orchestrator.calls == []
        assert manager.get_queue_item(item_id).status == QueueItemStatus.CANCELLED
        assert not results[0].success

    def test_abandon_processing_item(self):
        orchestrator = BlockingOrchestrator()
        manager = MigrationQueueManager(orchestrator)
        item_id = manager.add_to_queue(make_repository('a'))
        other_id = manager.add_to_queue(make_repository('b'))
        manager.set_max_concurrent_migrations(1)

        async def scenario():
            orchestrator.bind()
            processing = asyncio.ensure_future(manager.process_queue(max_items=1))
            await orchestrator.started.wait()
            assert manager.cancel_queue_item(item_id, abandon=True)
            return await processing

        results = asyncio.run(scenario())

        assert manager.get_queue_item(item_id).status == QueueItemStatus.CANCELLED
        assert manager.get_queue_item(other_id).status == QueueItemStatus.PENDING
        assert not results[0].success


class TestQueueEvents:
    """Test listener notification."""

    def test_events_for_a_processing_run(self):
        listener = RecordingListener()
        manager = MigrationQueueManager(RecordingOrchestrator(fail={'b'}))
        manager.add_queue_event_listener(listener)
        manager.set_max_concurrent_migrations(1)
        manager.add_to_queue(make_repository('a'))
        manager.add_to_queue(make_repository('b'))

        asyncio.run(manager.process_queue())

        assert listener.events == [
            ('added', 'a'),
            ('added', 'b'),
            ('processing_started',),
            ('started', 'a'),
            ('completed', 'a'),
            ('started', 'b'),
            ('failed', 'b'),
            ('processing_completed', 2, 1, 1),
        ]

    def test_failing_listener_is_isolated(self):
        recording = RecordingListener()
        manager = MigrationQueueManager(RecordingOrchestrator())
        manager.add_queue_event_listener(ExplodingListener())
        manager.add_queue_event_listener(recording)

        item_id = manager.add_to_queue(make_repository('a'))
        asyncio.run(manager.process_queue())

        assert ('added', 'a') in recording.events
        assert ('completed', 'a') in recording.events
        assert manager.get_queue_item(item_id).status == QueueItemStatus.COMPLETED

    def test_removed_listener_is_not_called(self):
        listener = RecordingListener()
        manager = MigrationQueueManager()
        manager.add_queue_event_listener(listener)

        assert manager.remove_queue_event_listener(listener)
        assert not manager.remove_queue_event_listener(listener)
        manager.add_to_queue(make_repository('a'))
        assert listener.events == []


class TestQueueState:
    """Test queue state persistence."""

    def test_state_survives_restart(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            state_file = os.path.join(temp_dir, 'queue-state.json')

            manager = MigrationQueueManager(state_store=QueueStateStore(state_file))
            low = manager.add_to_queue(make_repository('low'), priority=1)
            high = manager.add_to_queue(make_repository('high'), priority=7)
            assert os.path.exists(state_file)

            restored = MigrationQueueManager(state_store=QueueStateStore(state_file))
            pending = [item.id for item in restored.get_pending_queue_items()]
            assert pending == [high, low]

            # New items still sort after the restored ones
            later = restored.add_to_queue(make_repository('later'), priority=1)
            pending = [item.id for item in restored.get_pending_queue_items()]
            assert pending == [high, low, later]

    def test_interrupted_items_load_as_failed(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = QueueStateStore(os.path.join(temp_dir, 'queue-state.json'))
            item = MigrationQueueItem(repository=make_repository('a'), sequence=1)
            item.mark_as_processing()
            store.save([item])

            manager = MigrationQueueManager(state_store=store)
            loaded = manager.get_queue_item(item.id)

            assert loaded.status == QueueItemStatus.FAILED
            assert 'Interrupted' in loaded.result.message

    def test_state_file_from_config(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            state_file = os.path.join(temp_dir, 'state', 'queue.json')
            manager = MigrationQueueManager(config=QueueConfig(state_file=state_file))
            manager.add_to_queue(make_repository('a'))

            assert os.path.exists(state_file)
