"""JSON document storage helpers."""

import json
import os
import tempfile
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from ..exceptions import PersistenceError


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f'Object of type {type(value).__name__} is not JSON serializable')


def write_json_atomic(path: Path, data: Any) -> None:
    """Write data as indented JSON, replacing the target only after a full write.

    Each call writes through its own temporary file in the target directory,
    so concurrent writers never share a partial document.

    Raises:
        PersistenceError: If the document cannot be written
    """
    temp_file = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            'w',
            encoding='utf-8',
            dir=path.parent,
            prefix=f'.{path.name}.',
            suffix='.tmp',
            delete=False,
        ) as f:
            temp_file = Path(f.name)
            json.dump(data, f, indent=2, default=_json_default)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_file, path)
    except (OSError, TypeError, ValueError) as e:
        if temp_file is not None and temp_file.exists():
            try:
                temp_file.unlink()
            except OSError:
                pass
        raise PersistenceError(f'Failed to write {path}: {e}', path=str(path)) from e


def read_json(path: Path) -> Any:
    """Read a JSON document.

    Raises:
        PersistenceError: If the document cannot be read or parsed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise PersistenceError(f'Failed to read {path}: {e}', path=str(path)) from e
