"""
Client-side measurement buffering and submission for a time-series server.
"""
from .aggregator import Aggregator
from .client import MetricsClient
from .config import setup_logging
from .exceptions import (
    ClientError,
    InvalidConfiguration,
    InvalidMeasureTime,
    MetricsError,
    ServerError,
    UnknownPersistenceBackend,
)
from .persistence import PersistenceBackend, resolve_persister
from .processor import SubmissionEngine, validate_options
from .queue import MetricsQueue

__all__ = [
    'Aggregator',
    'ClientError',
    'InvalidConfiguration',
    'InvalidMeasureTime',
    'MetricsClient',
    'MetricsError',
    'MetricsQueue',
    'PersistenceBackend',
    'ServerError',
    'SubmissionEngine',
    'UnknownPersistenceBackend',
    'resolve_persister',
    'setup_logging',
    'validate_options',
]
