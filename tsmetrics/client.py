"""
HTTP client for submitting measurements to the time-series server.
"""
import logging
from typing import Any, Dict, List, Optional

import requests
from retrying import retry

from . import config
from .exceptions import (
    BadRequest,
    ClientError,
    CredentialsMissing,
    Forbidden,
    NoMetricsProvided,
    NotFound,
    RateLimited,
    ServerError,
    Unauthorized,
)

logger = logging.getLogger(__name__)

CLIENT_ERRORS = {
    400: BadRequest,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    429: RateLimited,
}


def build_payload(measurements: List[Dict[str, Any]], tagged: bool = False) -> Dict[str, Any]:
    """
    Build the request body for a chunk of queued measurements.

    Tagged measurements are sent as a flat ``measurements`` list. Legacy
    measurements are grouped by their ``type`` into ``gauges`` and
    ``counters``.

    Args:
        measurements (list): Queued measurement dicts
        tagged (bool): Whether to use the tagged (multidimensional) format

    Returns:
        dict: The request body
    """
    if tagged:
        return {
            'measurements': [
                {k: v for k, v in m.items() if k != 'type'} for m in measurements
            ]
        }

    payload: Dict[str, List[Dict[str, Any]]] = {}
    for m in measurements:
        key = f"{m.get('type', 'gauge')}s"
        payload.setdefault(key, []).append({k: v for k, v in m.items() if k != 'type'})
    return payload


class MetricsClient:
    """Connecting client used by queues and aggregators to reach the server."""

    def __init__(
        self,
        server_url: Optional[str] = None,
        api_key: Optional[str] = None,
        persistence: Optional[str] = None,
        tagging: bool = False,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        request_timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the metrics client.

        Args:
            server_url (str, optional): URL of the metrics server. Defaults to config.SERVER_URL.
            api_key (str, optional): API key for authentication. Defaults to config.API_KEY.
            persistence (str, optional): Persistence backend identifier. Defaults to config.PERSISTENCE.
            tagging (bool): Whether the account accepts tagged measurements.
            max_retries (int, optional): Maximum number of attempts. Defaults to config.MAX_RETRIES.
            retry_delay (float, optional): Delay between retries in seconds. Defaults to config.RETRY_DELAY.
            request_timeout (float, optional): Request timeout in seconds. Defaults to config.REQUEST_TIMEOUT.
            session (requests.Session, optional): Session used for every request. Defaults to a new session.
        """
        self.server_url = server_url or config.SERVER_URL
        self.api_key = api_key if api_key is not None else config.API_KEY
        self.persistence = persistence or config.PERSISTENCE
        self.tagging = tagging
        self.max_retries = max_retries if max_retries is not None else config.MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else config.RETRY_DELAY
        self.request_timeout = request_timeout if request_timeout is not None else config.REQUEST_TIMEOUT
        self.session = session if session is not None else requests.Session()

    @property
    def has_tags(self) -> bool:
        return bool(self.tagging)

    def _retry_if_connection_error(self, exception: Exception) -> bool:
        """Return True if we should retry (in this case when it's a connection error)."""
        return isinstance(exception, (requests.ConnectionError, requests.Timeout))

    def _error_for(self, response: requests.Response) -> Exception:
        try:
            body = response.json()
        except ValueError:
            body = response.text

        status = response.status_code
        message = f"{status} from {response.url}: {body}"
        if status >= 500:
            return ServerError(message, status_code=status, body=body)
        error_class = CLIENT_ERRORS.get(status, ClientError)
        return error_class(message, status_code=status, body=body)

    def _make_request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Make a request to the server.

        Args:
            method (str): HTTP method
            endpoint (str): API endpoint below /v1/
            **kwargs: Additional request arguments

        Returns:
            Any: Decoded response body, or None if the response is empty

        Raises:
            CredentialsMissing: If no API key is configured
            ClientError: If the server rejects the request
            ServerError: If the server fails to handle the request
            requests.RequestException: If the connection fails after all retries
        """
        if not self.api_key:
            raise CredentialsMissing("An API key is required to reach the metrics server")

        url = f"{self.server_url.rstrip('/')}/v1/{endpoint}"
        headers = {'X-API-Key': self.api_key}
        kwargs['headers'] = {**kwargs.get('headers', {}), **headers}
        kwargs['timeout'] = self.request_timeout

        @retry(
            retry_on_exception=self._retry_if_connection_error,
            stop_max_attempt_number=self.max_retries,
            wait_fixed=self.retry_delay * 1000  # milliseconds
        )
        def _send_request():
            return self.session.request(method, url, **kwargs)

        response = _send_request()
        if response.status_code >= 400:
            raise self._error_for(response)
        if not response.content:
            return None
        return response.json()

    def post_measurements(self, measurements: List[Dict[str, Any]]) -> bool:
        """
        Post one chunk of measurements.

        Args:
            measurements (list): The measurements to send

        Returns:
            bool: True once the server has accepted the chunk
        """
        if not measurements:
            raise NoMetricsProvided("Nothing to post")

        tagged = self.has_tags or any('tags' in m or 'time' in m for m in measurements)
        endpoint = 'measurements' if tagged else 'metrics'
        self._make_request('post', endpoint, json=build_payload(measurements, tagged))
        logger.debug("Posted %d measurements to /v1/%s", len(measurements), endpoint)
        return True

    def health_check(self) -> bool:
        """
        Check if the metrics server is accessible.

        Returns:
            bool: True if server is accessible, False otherwise
        """
        try:
            response = self.session.get(
                f"{self.server_url.rstrip('/')}/v1/health",
                headers={'X-API-Key': self.api_key},
                timeout=self.request_timeout
            )
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False
