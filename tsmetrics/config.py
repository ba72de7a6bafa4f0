"""
Configuration settings for the tsmetrics client.
"""
import logging
import os

# Server configuration
SERVER_URL = os.getenv('METRICS_SERVER_URL', 'https://metrics-api.example.com/')
API_KEY = os.getenv('METRICS_API_KEY', '')

# Persistence configuration
PERSISTENCE = os.getenv('METRICS_PERSISTENCE', 'direct')
PERSISTENCE_FILE = os.getenv('METRICS_PERSISTENCE_FILE', 'metrics_submissions.json')
MEASUREMENTS_PER_REQUEST = int(os.getenv('METRICS_PER_REQUEST', '500'))

# HTTP client configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
RETRY_DELAY = 5  # seconds

# Logging configuration
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


def setup_logging(log_level: str = LOG_LEVEL) -> None:
    """
    Setup logging with the specified log level.

    Args:
        log_level (str): Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
