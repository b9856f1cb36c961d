"""Tests for listener registries and JSON storage helpers."""

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path

import pytest

from git_migrator.exceptions import PersistenceError
from git_migrator.models import MigrationStatus
from git_migrator.utils.events import ListenerRegistry
from git_migrator.utils.storage import read_json, write_json_atomic


class TestListenerRegistry:
    """Test listener registration and delivery."""

    def test_subscribe_is_idempotent(self):
        registry = ListenerRegistry('test')
        calls = []

        registry.subscribe(calls.append)
        registry.subscribe(calls.append)
        registry.notify(lambda listener: listener('event'))

        assert len(registry) == 1
        assert calls == ['event']

    def test_failures_are_counted_not_raised(self):
        registry = ListenerRegistry('test')
        calls = []

        def broken(event):
            raise RuntimeError('boom')

        registry.subscribe(broken)
        registry.subscribe(calls.append)

        assert registry.notify(lambda listener: listener('event')) == 1
        assert calls == ['event']

    def test_unsubscribe_during_delivery(self):
        registry = ListenerRegistry('test')
        calls = []

        def once(event):
            calls.append(event)
            registry.unsubscribe(once)

        registry.subscribe(once)
        registry.notify(lambda listener: listener('first'))
        registry.notify(lambda listener: listener('second'))

        assert calls == ['first']
        assert not registry

    def test_clear(self):
        registry = ListenerRegistry('test')
        registry.subscribe(print)
        registry.clear()

        assert len(registry) == 0
        assert not registry.unsubscribe(print)


class TestJsonStorage:
    """Test atomic JSON writes."""

    def test_write_and_read(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / 'nested' / 'doc.json'
            timestamp = datetime(2024, 5, 1, 12, 30)

            write_json_atomic(
                path,
                {
                    'when': timestamp,
                    'status': MigrationStatus.CLONING,
                    'tags': {'b', 'a'},
                },
            )

            assert read_json(path) == {
                'when': '2024-05-01T12:30:00',
                'status': 'cloning',
                'tags': ['a', 'b'],
            }
            assert os.listdir(path.parent) == ['doc.json']

    def test_unserializable_value_leaves_previous_document(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / 'doc.json'
            write_json_atomic(path, {'version': 1})

            with pytest.raises(PersistenceError):
                write_json_atomic(path, {'version': object()})

            with open(path, 'r', encoding='utf-8') as f:
                assert json.load(f) == {'version': 1}
            assert os.listdir(temp_dir) == ['doc.json']

    def test_read_missing_file(self):
        with pytest.raises(PersistenceError):
            read_json(Path('/nonexistent/doc.json'))

    def test_concurrent_writers_leave_one_complete_document(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / 'doc.json'
            errors = []

            def write(version):
                try:
                    for _ in range(20):
                        write_json_atomic(path, {'version': version})
                except PersistenceError as e:
                    errors.append(e)

            threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert errors == []
            assert read_json(path)['version'] in range(8)
            assert os.listdir(temp_dir) == ['doc.json']
