"""
Persistence backends used to submit queued measurements.
"""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Type, Union

import requests

from . import config
from .exceptions import ServerError, UnknownPersistenceBackend

logger = logging.getLogger(__name__)


class PersistenceBackend(Enum):
    """Known persistence backends, keyed by their configuration identifier."""

    DIRECT = 'direct'
    FILE = 'file'
    TEST = 'test'

    @classmethod
    def from_identifier(cls, identifier: Union[str, 'PersistenceBackend']) -> 'PersistenceBackend':
        """
        Map a configured identifier such as ``"Direct"`` or ``" file "`` to a backend.

        Raises:
            UnknownPersistenceBackend: If the identifier matches no backend
        """
        if isinstance(identifier, cls):
            return identifier
        try:
            return cls(str(identifier).strip().lower())
        except ValueError:
            raise UnknownPersistenceBackend(identifier) from None


def chunked(items: Sequence[Any], size: int) -> Iterator[List[Any]]:
    """Yield successive lists of at most ``size`` items."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    items = list(items)
    for start in range(0, len(items), size):
        yield items[start:start + size]


class Persister(ABC):
    """
    Abstract base class for persistence backends.

    Implementations receive the full set of queued measurements and are
    responsible for splitting it into requests of at most
    ``options['per_request']`` measurements.
    """

    @abstractmethod
    def persist(self, client: Any, measurements: Sequence[Dict[str, Any]],
                options: Optional[Dict[str, Any]] = None) -> bool:
        """
        Persist measurements.

        Args:
            client: The connecting client
            measurements (list): Queued measurements
            options (dict, optional): Submission hints, currently ``per_request``

        Returns:
            bool: True if every measurement was persisted

        Raises:
            ClientError: If the remote side rejected the measurements
        """
        pass

    @staticmethod
    def _per_request(options: Optional[Dict[str, Any]]) -> int:
        return (options or {}).get('per_request') or config.MEASUREMENTS_PER_REQUEST


class DirectPersister(Persister):
    """Posts measurements straight to the server through the client."""

    def persist(self, client, measurements, options=None):
        try:
            for chunk in chunked(measurements, self._per_request(options)):
                client.post_measurements(chunk)
        except (requests.exceptions.RequestException, ServerError) as e:
            logger.error("Failed to persist %d measurements: %s", len(measurements), str(e))
            return False
        return True


class FilePersister(Persister):
    """Appends request payloads to a local JSON file instead of sending them."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or config.PERSISTENCE_FILE

    def persist(self, client, measurements, options=None):
        batches = self._load()
        batches.extend(chunked(measurements, self._per_request(options)))
        try:
            payload = json.dumps(batches)
        except (TypeError, ValueError) as e:
            logger.error("Measurements for %s are not JSON serializable: %s", self.path, str(e))
            return False

        # The target is only ever replaced by a fully written file.
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=os.path.dirname(os.path.abspath(self.path)), suffix='.tmp'
            )
            with os.fdopen(fd, 'w') as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Failed to write measurements to %s: %s", self.path, str(e))
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)
            return False
        return True

    def _load(self) -> List[List[Dict[str, Any]]]:
        """Load previously written batches if the file exists."""
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read %s, starting a new file: %s", self.path, str(e))
            return []


class TestPersister(Persister):
    """
    Records submissions in memory.

    ``return_value`` controls what ``persist`` reports and ``error``, when set,
    is raised instead.
    """

    __test__ = False

    def __init__(self, return_value: bool = True, error: Optional[Exception] = None):
        self.return_value = return_value
        self.error = error
        self.persisted: List[List[Dict[str, Any]]] = []

    def persist(self, client, measurements, options=None):
        if self.error is not None:
            raise self.error
        self.persisted.extend(chunked(measurements, self._per_request(options)))
        return self.return_value


PERSISTERS: Dict[PersistenceBackend, Type[Persister]] = {
    PersistenceBackend.DIRECT: DirectPersister,
    PersistenceBackend.FILE: FilePersister,
    PersistenceBackend.TEST: TestPersister,
}


def resolve_persister(identifier: Union[str, PersistenceBackend]) -> Persister:
    """
    Create the persister registered for a backend identifier.

    Args:
        identifier: Backend name as configured on the client, or a PersistenceBackend

    Returns:
        Persister: A new persister instance

    Raises:
        UnknownPersistenceBackend: If the identifier matches no backend
    """
    backend = PersistenceBackend.from_identifier(identifier)
    logger.debug("Resolved persistence backend %s", backend.value)
    return PERSISTERS[backend]()
