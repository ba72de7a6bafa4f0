"""
Aggregates repeated measurements into per-series summaries.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .exceptions import InvalidConfiguration
from .persistence import Persister
from .processor import SubmissionEngine, validate_options

logger = logging.getLogger(__name__)

SeriesKey = Tuple[str, Optional[str], Optional[Tuple[Tuple[str, str], ...]]]


@dataclass
class Summary:
    """Running summary of the values seen for one series."""
    count: int = 0
    sum: float = 0.0
    min: Optional[float] = None
    max: Optional[float] = None
    sum_squares: float = 0.0

    def add(self, value: float) -> None:
        self.count += 1
        self.sum += value
        self.sum_squares += value * value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'sum': self.sum,
            'min': self.min,
            'max': self.max,
            'sum_squares': self.sum_squares,
        }


class Aggregator:
    """
    Folds every value added for the same name and source (or tags) into a
    single summary gauge until the next submit.
    """

    def __init__(
        self,
        options: Optional[Mapping[str, Any]] = None,
        client: Any = None,
        persister: Optional[Persister] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.engine = SubmissionEngine(
            self, client=client, options=options, persister=persister, clock=clock
        )
        self._aggregated: Dict[SeriesKey, Summary] = {}

    def add(self, measurements: Mapping[str, Any]) -> 'Aggregator':
        """
        Add values to their series.

        Args:
            measurements (Mapping): Metric names mapped to a value, or to a dict
                with ``value`` and optional ``source`` or ``tags``

        Returns:
            Aggregator: self, for chaining
        """
        if not isinstance(measurements, Mapping):
            raise InvalidConfiguration("measurements must be a mapping")

        entries = [self._series_entry(name, value) for name, value in measurements.items()]
        with self.engine.lock:
            for key, value in entries:
                self._aggregated.setdefault(key, Summary()).add(value)

        self.engine.check_autosubmit()
        return self

    def _series_entry(self, name: str, value: Any) -> Tuple[SeriesKey, float]:
        source = tags = None
        if isinstance(value, Mapping):
            validate_options(value)
            if 'value' not in value:
                raise InvalidConfiguration(f"Measurement {name!r} has no value", options=('value',))
            for key in ('measure_time', 'time'):
                if key in value:
                    raise InvalidConfiguration(
                        f"Aggregated measurement {name!r} cannot set its own {key}", options=(key,)
                    )
            if value.get('type', 'gauge') != 'gauge':
                raise InvalidConfiguration(
                    f"Aggregated measurement {name!r} must be a gauge", options=('type',)
                )
            if 'source' in value and self.engine.options.multidimensional:
                raise InvalidConfiguration(
                    f"Measurement {name!r} cannot set a source when tags or time are in use",
                    options=('source', 'tags')
                )
            source = value.get('source')
            tags = value.get('tags')
            value = value['value']

        prefix = self.engine.prefix
        full_name = f"{prefix}.{name}" if prefix else str(name)
        tag_key = tuple(sorted(tags.items())) if tags else None
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise InvalidConfiguration(
                f"Measurement {name!r} has a non-numeric value: {value!r}", options=('value',)
            ) from None
        return (full_name, source, tag_key), value

    @property
    def queued(self) -> List[Dict[str, Any]]:
        """One summary gauge per series."""
        options = self.engine.options
        default_time = options.time if options.time is not None else options.measure_time

        gauges = []
        with self.engine.lock:
            items = list(self._aggregated.items())
        for (name, source, tag_key), summary in items:
            gauge = {'name': name, **summary.to_dict()}
            if tag_key:
                gauge['tags'] = dict(tag_key)
            elif source is not None:
                gauge['source'] = source
            elif options.multidimensional and options.tags:
                gauge['tags'] = dict(options.tags)
            elif not options.multidimensional and options.source is not None:
                gauge['source'] = options.source

            if default_time is not None:
                tagged = options.multidimensional or 'tags' in gauge
                gauge['time' if tagged else 'measure_time'] = default_time
            gauge['type'] = 'gauge'
            gauges.append(gauge)
        return gauges

    @property
    def size(self) -> int:
        return len(self._aggregated)

    def __len__(self) -> int:
        return self.size

    def empty(self) -> bool:
        return not self._aggregated

    def clear(self) -> None:
        """Drop all aggregated series."""
        with self.engine.lock:
            self._aggregated.clear()

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
    def prefix(self) -> Optional[str]:
        return self.engine.prefix

    @prefix.setter
    def prefix(self, value: Optional[str]) -> None:
        self.engine.prefix = value
