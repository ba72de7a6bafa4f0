"""
Queue for holding measurements until they are submitted.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .exceptions import InvalidConfiguration, InvalidMeasureTime
from .persistence import Persister
from .processor import SubmissionEngine, epoch_seconds, validate_options

logger = logging.getLogger(__name__)

MEASUREMENT_TYPES = ('gauge', 'counter')

# Oldest timestamp accepted for a measurement, relative to now.
MAX_MEASURE_TIME_AGE = 365 * 24 * 60 * 60  # seconds


class MetricsQueue:
    """
    Unordered collection of measurements, submitted together.

    Example:
        queue = MetricsQueue({'source': 'app1', 'autosubmit_interval': 60}, client=client)
        queue.add({'cpu': 12.5, 'requests': {'value': 3, 'type': 'counter'}})
        queue.submit()
    """

    def __init__(
        self,
        options: Optional[Mapping[str, Any]] = None,
        client: Any = None,
        persister: Optional[Persister] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the queue.

        Args:
            options (Mapping, optional): Processor options plus ``autosubmit_count``
                and ``skip_measurement_times``
            client: The connecting client
            persister (Persister, optional): Persister to use instead of the client's backend
            clock (callable, optional): Returns the current aware datetime
        """
        options = {} if options is None else options
        self.engine = SubmissionEngine(
            self, client=client, options=options, persister=persister, clock=clock
        )
        self.autosubmit_count = options.get('autosubmit_count')
        self.skip_measurement_times = bool(options.get('skip_measurement_times', False))
        self._queued: List[Dict[str, Any]] = []

    def add(self, measurements: Mapping[str, Any]) -> 'MetricsQueue':
        """
        Add measurements to the queue.

        Args:
            measurements (Mapping): Metric names mapped to a value, or to a dict
                with ``value`` and optional ``type``, ``source``, ``tags``,
                ``measure_time`` or ``time``

        Returns:
            MetricsQueue: self, for chaining
        """
        if not isinstance(measurements, Mapping):
            raise InvalidConfiguration("measurements must be a mapping")

        built = [self._build_measurement(name, value) for name, value in measurements.items()]
        with self.engine.lock:
            self._queued.extend(built)

        self._check_count()
        self.engine.check_autosubmit()
        return self

    def _build_measurement(self, name: str, value: Any) -> Dict[str, Any]:
        if isinstance(value, Mapping):
            validate_options(value)
            if 'value' not in value:
                raise InvalidConfiguration(f"Measurement {name!r} has no value", options=('value',))
            metric = dict(value)
            metric_type = metric.pop('type', 'gauge')
        else:
            metric = {'value': value}
            metric_type = 'gauge'

        if metric_type not in MEASUREMENT_TYPES:
            raise InvalidConfiguration(f"Unknown measurement type: {metric_type!r}", options=('type',))

        prefix = self.engine.prefix
        metric['name'] = f"{prefix}.{name}" if prefix else str(name)

        options = self.engine.options
        multidimensional = options.multidimensional or 'tags' in metric or 'time' in metric
        if multidimensional and 'source' in metric:
            raise InvalidConfiguration(
                f"Measurement {name!r} cannot set a source when tags or time are in use",
                options=('source', 'tags')
            )
        if multidimensional and 'measure_time' in metric:
            metric['time'] = metric.pop('measure_time')

        time_key = 'time' if multidimensional else 'measure_time'
        if metric.get(time_key) is not None:
            metric[time_key] = epoch_seconds(metric[time_key])
            self._check_measure_time(metric[time_key])
        else:
            default_time = options.time if options.time is not None else options.measure_time
            if default_time is not None:
                metric[time_key] = default_time
            elif not self.skip_measurement_times:
                metric[time_key] = self.engine.epoch_time()
            else:
                metric.pop(time_key, None)

        if 'source' not in metric and 'tags' not in metric:
            if multidimensional and options.tags:
                metric['tags'] = dict(options.tags)
            elif not multidimensional and options.source is not None:
                metric['source'] = options.source

        metric['type'] = metric_type
        return metric

    def _check_measure_time(self, measure_time: int) -> None:
        if measure_time < self.engine.epoch_time() - MAX_MEASURE_TIME_AGE:
            raise InvalidMeasureTime(f"Measure time {measure_time} is more than a year old")

    def _check_count(self) -> None:
        if self.autosubmit_count and self.size >= self.autosubmit_count:
            logger.debug("Queue reached %d measurements, submitting", self.size)
            self.engine.submit()

    @property
    def queued(self) -> List[Dict[str, Any]]:
        """All queued measurements."""
        with self.engine.lock:
            return list(self._queued)

    @property
    def size(self) -> int:
        return len(self._queued)

    def __len__(self) -> int:
        return self.size

    def empty(self) -> bool:
        return not self._queued

    def clear(self) -> None:
        """Remove all queued measurements."""
        with self.engine.lock:
            self._queued.clear()

    # Submission is handled by the engine
    def submit(self) -> bool:
        return self.engine.submit()

    def time(self, name: str, work: Callable[[], Any], options: Optional[Mapping[str, Any]] = None) -> Any:
        return self.engine.time(name, work, options)

    benchmark = time

    def timer(self, name: str, options: Optional[Mapping[str, Any]] = None):
        return self.engine.timer(name, options)

    def check_autosubmit(self) -> None:
        self.engine.check_autosubmit()

    @property
    def last_submit_time(self) -> Optional[datetime]:
        return self.engine.last_submit_time

    @property
    def persister(self) -> Persister:
        return self.engine.persister

    @property
    def client(self) -> Any:
        return self.engine.client

    @property
    def per_request(self) -> int:
        return self.engine.per_request

    @property
    def prefix(self) -> Optional[str]:
        return self.engine.prefix

    @prefix.setter
    def prefix(self, value: Optional[str]) -> None:
        self.engine.prefix = value
