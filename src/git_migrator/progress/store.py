"""Per-operation progress documents on disk."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from ..exceptions import PersistenceError
from ..models.progress import MigrationProgress
from ..utils.storage import read_json, write_json_atomic


class ProgressStore:
    """Stores each operation as ``<storage_dir>/<operation_id>.json``."""

    SUFFIX = '.json'

    def __init__(self, storage_dir: Union[str, Path]):
        """Initialize progress store.

        Args:
            storage_dir: Directory for progress documents
        """
        self.storage_dir = Path(storage_dir).expanduser()
        self.logger = logger.bind(component='ProgressStore')

    def path_for(self, operation_id: str) -> Path:
        if not operation_id or '/' in operation_id or '\\' in operation_id:
            raise PersistenceError(f'Invalid operation ID: {operation_id!r}')
        if operation_id in ('.', '..'):
            raise PersistenceError(f'Invalid operation ID: {operation_id!r}')
        return self.storage_dir / f'{operation_id}{self.SUFFIX}'

    def save(self, document: Dict[str, Any]) -> Path:
        """Write an operation document produced by ``MigrationProgress.to_document``.

        Raises:
            PersistenceError: If the document cannot be written
        """
        path = self.path_for(document['operation_id'])
        write_json_atomic(path, document)
        self.logger.debug(f'Persisted progress for operation {document["operation_id"]}')
        return path

    def load(self, operation_id: str) -> Optional[MigrationProgress]:
        """Read an operation; returns None when nothing was persisted for it.

        Raises:
            PersistenceError: If the document is unreadable or malformed
        """
        path = self.path_for(operation_id)
        if not path.exists():
            return None

        document = read_json(path)
        try:
            return MigrationProgress(**document)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f'Malformed progress document {path}: {e}', path=str(path)
            ) from e

    def delete(self, operation_id: str) -> bool:
        path = self.path_for(operation_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f'Failed to delete {path}: {e}', path=str(path)) from e

    def list_operations(self) -> List[str]:
        """IDs of all persisted operations, sorted."""
        if not self.storage_dir.is_dir():
            return []
        return sorted(path.stem for path in self.storage_dir.glob(f'*{self.SUFFIX}'))
