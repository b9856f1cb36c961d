"""Durable queue state."""

from pathlib import Path
from typing import List, Union

from loguru import logger

from ..exceptions import PersistenceError
from ..models.queue import MigrationQueueItem
from ..utils.storage import read_json, write_json_atomic


class QueueStateStore:
    """Stores the queue as a single JSON document."""

    def __init__(self, state_file: Union[str, Path]):
        """Initialize queue state store.

        Args:
            state_file: Path of the JSON document
        """
        self.state_file = Path(state_file).expanduser()
        self.logger = logger.bind(component='QueueStateStore')

    def save(self, items: List[MigrationQueueItem]) -> None:
        """Write all queue items.

        Raises:
            PersistenceError: If the state file cannot be written
        """
        document = {'items': [item.dict() for item in items]}
        write_json_atomic(self.state_file, document)
        self.logger.debug(f'Saved queue state with {len(items)} items')

    def load(self) -> List[MigrationQueueItem]:
        """Read queue items; a missing state file yields an empty queue.

        Raises:
            PersistenceError: If the state file is unreadable or malformed
        """
        if not self.state_file.exists():
            self.logger.debug('No existing queue state file found')
            return []

        document = read_json(self.state_file)
        try:
            return [MigrationQueueItem(**data) for data in document.get('items', [])]
        except (AttributeError, TypeError, ValueError) as e:
            raise PersistenceError(
                f'Malformed queue state in {self.state_file}: {e}',
                path=str(self.state_file),
            ) from e
