"""
Submission engine shared by MetricsQueue and Aggregator.

The engine owns option validation, persistence backend resolution, batch
submission with the clear-on-failure policy, block timing and interval based
autosubmit. The measurement store it submits from is a collaborator that
exposes ``queued``, ``clear()`` and ``add(measurements)``.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from time import perf_counter
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence

import pytz

from . import config
from .exceptions import ClientError, InvalidConfiguration
from .persistence import Persister, resolve_persister

logger = logging.getLogger(__name__)

MEASUREMENTS_PER_REQUEST = config.MEASUREMENTS_PER_REQUEST

INCOMPATIBLE_OPTIONS = (
    ('source', 'tags'),
    ('measure_time', 'time'),
    ('source', 'time'),
    ('measure_time', 'tags'),
)


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def epoch_seconds(value: Any) -> Optional[int]:
    """Truncate a datetime or numeric timestamp to whole epoch seconds."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def check_compatibility(options: Mapping[str, Any], incompatible_options: Sequence[str]) -> None:
    """Raise InvalidConfiguration if every key in ``incompatible_options`` is present."""
    if set(incompatible_options).issubset(options.keys()):
        raise InvalidConfiguration(
            f"{list(incompatible_options)} cannot be simultaneously set",
            options=incompatible_options
        )


def validate_options(options: Any) -> None:
    """
    Check an options mapping for conflicting keys.

    Only key presence is checked, so ``{'source': None, 'tags': {}}`` is
    rejected just like ``{'source': 'app1', 'tags': {'region': 'us'}}``.

    Raises:
        InvalidConfiguration: If options is not a mapping or holds a conflicting pair
    """
    if not isinstance(options, Mapping):
        raise InvalidConfiguration(":options must be a mapping")
    for incompatible_options in INCOMPATIBLE_OPTIONS:
        check_compatibility(options, incompatible_options)


@dataclass(frozen=True)
class ProcessorOptions:
    """Resolved options for one SubmissionEngine."""

    client: Any
    created_at: datetime
    per_request: int = MEASUREMENTS_PER_REQUEST
    autosubmit_interval: Optional[int] = None
    source: Optional[str] = None
    tags: Optional[Dict[str, str]] = None
    measure_time: Optional[int] = None
    time: Optional[int] = None
    clear_on_failure: bool = False
    prefix: Optional[str] = None
    multidimensional: bool = False

    @classmethod
    def from_options(cls, options: Mapping[str, Any], client: Any = None,
                     now: Optional[datetime] = None) -> 'ProcessorOptions':
        """
        Validate ``options`` and build the resolved bundle.

        Args:
            options (Mapping): Raw options
            client: Client used when ``options`` does not name one
            now (datetime, optional): Creation time. Defaults to the current UTC time.

        Raises:
            InvalidConfiguration: If options conflict or no client is available
        """
        validate_options(options)

        client = options.get('client') or client
        if client is None:
            raise InvalidConfiguration("A client is required", options=('client',))

        per_request = options.get('per_request')
        if per_request is None:
            per_request = MEASUREMENTS_PER_REQUEST
        elif isinstance(per_request, bool) or not isinstance(per_request, int) or per_request < 1:
            raise InvalidConfiguration(
                f"per_request must be a positive integer, got {per_request!r}", options=('per_request',)
            )

        tags = options.get('tags')
        explicit_time = epoch_seconds(options.get('time'))
        return cls(
            client=client,
            created_at=now or utcnow(),
            per_request=per_request,
            autosubmit_interval=options.get('autosubmit_interval'),
            source=options.get('source'),
            tags=dict(tags) if tags is not None else None,
            measure_time=epoch_seconds(options.get('measure_time')),
            time=explicit_time,
            clear_on_failure=bool(options.get('clear_failures', False)),
            prefix=options.get('prefix'),
            multidimensional=bool(
                getattr(client, 'has_tags', False) or tags or explicit_time is not None
            ),
        )


class SubmissionEngine:
    """
    Flushes a measurement store to the configured persistence backend.
    """

    def __init__(
        self,
        store: Any,
        client: Any = None,
        options: Optional[Mapping[str, Any]] = None,
        persister: Optional[Persister] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the engine.

        Args:
            store: Measurement store exposing ``queued``, ``clear()`` and ``add()``
            client: Connecting client, used unless ``options['client']`` is set
            options (Mapping, optional): Processor options
            persister (Persister, optional): Persister to use instead of resolving one from the client
            clock (callable, optional): Returns the current aware datetime. Defaults to UTC now.

        Raises:
            InvalidConfiguration: If the options are invalid
        """
        clock = clock or utcnow
        resolved = ProcessorOptions.from_options(
            {} if options is None else options, client=client, now=clock()
        )

        self.options = resolved
        self.store = store
        self.clock = clock
        self.prefix = resolved.prefix
        self.last_submit_time: Optional[datetime] = None
        self.lock = threading.RLock()
        self._persister = persister

    @property
    def client(self) -> Any:
        return self.options.client

    @property
    def per_request(self) -> int:
        return self.options.per_request

    @property
    def persister(self) -> Persister:
        """The persister for this engine, resolved from the client on first use."""
        if self._persister is None:
            self._persister = resolve_persister(self.client.persistence)
        return self._persister

    def epoch_time(self) -> int:
        return int(self.clock().timestamp())

    def submit(self) -> bool:
        """
        Persist currently queued measurements.

        Returns:
            bool: True if the store was empty or everything was persisted,
                False if the backend declined without raising

        Raises:
            ClientError: If the backend reports a client-side failure. The store
                is cleared first when ``clear_failures`` was set.
        """
        with self.lock:
            queued = self.store.queued
            if not queued:
                return True

            try:
                persisted = self.persister.persist(
                    self.client, queued, {'per_request': self.per_request}
                )
            except ClientError as e:
                if self.options.clear_on_failure:
                    logger.warning("Discarding %d queued measurements after client error: %s",
                                   len(queued), str(e))
                    self.store.clear()
                raise

            if persisted:
                self.last_submit_time = self.clock()
                self.store.clear()
                logger.debug("Submitted %d measurements", len(queued))
                return True

            logger.info("Persister declined %d measurements, keeping them queued", len(queued))
            return False

    @contextmanager
    def timer(self, name: str, options: Optional[Mapping[str, Any]] = None) -> Iterator[None]:
        """
        Time the enclosed block and queue the duration in milliseconds.

        Nothing is queued if the block raises.

        Example:
            with queue.timer('api_request_time', {'source': 'app1'}):
                call_api()
        """
        options = {} if options is None else options
        validate_options(options)
        start = perf_counter()
        yield
        duration = (perf_counter() - start) * 1000.0
        self.store.add({name: dict(options, value=duration)})

    def time(self, name: str, work: Callable[[], Any],
             options: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Run ``work`` and queue how long it took in milliseconds.

        Args:
            name (str): Metric name
            work (callable): Zero-argument callable to run
            options (Mapping, optional): Measurement options, same as for ``add``

        Returns:
            The value returned by ``work``
        """
        with self.timer(name, options):
            return work()

    benchmark = time

    def check_autosubmit(self) -> None:
        """Submit if at least ``autosubmit_interval`` seconds passed since the last submit."""
        interval = self.options.autosubmit_interval
        if interval is None:
            return

        with self.lock:
            # A clock that moves backwards gives a negative elapsed time and
            # holds autosubmit off until it catches up.
            last = max(t for t in (self.last_submit_time, self.options.created_at) if t is not None)
            elapsed = int((self.clock() - last).total_seconds())
            if elapsed >= interval:
                logger.debug("Autosubmitting after %d seconds", elapsed)
                self.submit()
