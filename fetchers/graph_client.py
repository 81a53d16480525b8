"""Microsoft Graph client with refresh, rate-limit backoff, bounded retries and a stall guard."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import requests
import urllib3

from models import FetchKind
from .errors import (
    ApiError,
    ConsecutiveFailureError,
    ImportCancelledError,
    OtherApiError,
    RateLimitedError,
    StallTimeoutError,
    TransientNetworkError,
    UnauthorizedError,
)

GRAPH_BASE_URL = 'https://graph.microsoft.com/v1.0'

# Provider error codes that mean the same as the HTTP status
RATE_LIMIT_ERROR_CODES = {'20166'}
UNAUTHORIZED_ERROR_CODES = {'InvalidAuthenticationToken', '40001'}


@dataclass
class RetryPolicy:
    """Retry settings for a single request."""

    max_retries: int = 5
    backoff_factor: float = 1.0
    rate_limit_default_wait: float = 5.0
    # None retries throttled requests until the stall guard trips
    max_rate_limit_retries: Optional[int] = None

    @classmethod
    def from_config(cls, advanced: Dict[str, Any]) -> 'RetryPolicy':
        rate_limit_retries = advanced.get('max_rate_limit_retries')
        return cls(
            max_retries=int(advanced.get('max_retries', 5)),
            backoff_factor=float(advanced.get('retry_backoff_factor', 1.0)),
            rate_limit_default_wait=float(advanced.get('rate_limit_default_wait', 5.0)),
            max_rate_limit_retries=None if rate_limit_retries is None else int(rate_limit_retries),
        )

    def backoff_delay(self, retry_count: int) -> float:
        return self.backoff_factor * (2 ** retry_count)


class SessionHealth:
    """
    Session-wide counters shared by every fetch and page of one import.

    Tracks when a fetch last succeeded (for the stall guard) and how many
    pages have failed back to back (for the consecutive-failure breaker).
    """

    def __init__(
        self,
        stall_timeout: float = 600.0,
        failure_threshold: int = 5,
        clock: Callable[[], float] = time.monotonic
    ):
        self.stall_timeout = stall_timeout
        self.failure_threshold = failure_threshold
        self.clock = clock
        self.last_success = clock()
        self.consecutive_failures = 0

    def record_success(self) -> None:
        self.last_success = self.clock()

    def seconds_since_success(self) -> float:
        return self.clock() - self.last_success

    def check_stall(self) -> None:
        """Raise StallTimeoutError if nothing has succeeded for too long."""
        elapsed = self.seconds_since_success()
        if elapsed > self.stall_timeout:
            raise StallTimeoutError(elapsed, self.stall_timeout)

    def record_page_success(self) -> None:
        self.consecutive_failures = 0

    def record_page_failure(self) -> None:
        """Count a failed page; raise once the threshold is reached."""
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.failure_threshold:
            raise ConsecutiveFailureError(self.consecutive_failures)


class GraphClient:
    """Authenticated accessor for Graph endpoints, used by every other component."""

    def __init__(
        self,
        auth,
        health: Optional[SessionHealth] = None,
        policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        verify_ssl: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        is_cancelled: Optional[Callable[[], bool]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize Graph client.

        Args:
            auth: AuthSession providing current_token() and refresh()
            health: Shared session health (stall clock, failure counter)
            policy: Retry policy
            session: Optional requests session (for tests)
            timeout: HTTP request timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            sleep: Sleep function used for backoff
            is_cancelled: Callable checked before every request
            logger: Logger instance
        """
        self.auth = auth
        self.health = health or SessionHealth()
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.sleep = sleep
        self.is_cancelled = is_cancelled or (lambda: False)
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.fetcher.graph')

        self.session = session or requests.Session()
        self.session.verify = verify_ssl
        if not verify_ssl:
            self.logger.warning("SSL verification disabled - this is insecure!")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self.stats = {
            'requests': 0,
            'rate_limited': 0,
            'refreshes': 0,
            'retries': 0,
        }

    @staticmethod
    def url(path: str) -> str:
        """Absolute Graph URL for an API path such as '/me/onenote/notebooks'."""
        if path.startswith('http'):
            return path
        return f"{GRAPH_BASE_URL}/{path.lstrip('/')}"

    def fetch(
        self,
        url: str,
        kind: FetchKind = FetchKind.JSON,
        retry_count: int = 0,
        params: Optional[Dict[str, str]] = None
    ) -> Union[str, bytes, Dict[str, Any], List[Dict[str, Any]]]:
        """
        Fetch a Graph resource and parse it according to kind.

        Args:
            url: Absolute URL
            kind: Response parsing strategy
            retry_count: Retries already spent on this request
            params: Query parameters for the first request

        Returns:
            str for TEXT, bytes for BINARY, dict for JSON, and the combined
            'value' list of every page for PAGINATED_JSON

        Raises:
            ImportCancelledError: If cancellation was requested
            StallTimeoutError: If nothing succeeded within the stall timeout
            UnauthenticatedError: If the token cannot be refreshed
            ApiError / TransientNetworkError: Once the retry budget is spent
        """
        if kind == FetchKind.PAGINATED_JSON:
            return self._fetch_all_pages(url, retry_count, params)
        return self._fetch_one(url, kind, retry_count, params)

    def _fetch_all_pages(
        self,
        url: str,
        retry_count: int,
        params: Optional[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        results = []
        next_url = url
        page_params = params

        while next_url:
            data = self._fetch_one(next_url, FetchKind.JSON, retry_count, page_params)
            results.extend(data.get('value', []))
            next_url = data.get('@odata.nextLink')
            # nextLink already carries the query
            page_params = None
            if next_url:
                self.logger.debug(f"Following nextLink ({len(results)} items so far)")

        return results

    def _fetch_one(
        self,
        url: str,
        kind: FetchKind,
        retry_count: int,
        params: Optional[Dict[str, str]]
    ) -> Union[str, bytes, Dict[str, Any]]:
        rate_limited_count = 0

        while True:
            if self.is_cancelled():
                raise ImportCancelledError()
            self.health.check_stall()

            try:
                response = self._send(url, params)
            except requests.exceptions.RequestException as e:
                self.logger.warning(f"Network error for {url}: {e}")
                if retry_count >= self.policy.max_retries:
                    raise TransientNetworkError(url, e)
                self._back_off(retry_count)
                retry_count += 1
                continue

            error = self._classify(url, response)
            if error is None:
                try:
                    result = self._parse(response, kind)
                except ValueError as e:
                    error = OtherApiError(url, response.status_code, message=f"Invalid response body: {e}")
                else:
                    self.health.record_success()
                    return result

            if isinstance(error, RateLimitedError):
                rate_limited_count += 1
                self.stats['rate_limited'] += 1
                limit = self.policy.max_rate_limit_retries
                if limit is not None and rate_limited_count > limit:
                    raise error
                wait_time = self._retry_after(response)
                self.logger.warning(f"Rate limited, waiting {wait_time}s before retrying {url}")
                self.sleep(wait_time)
                continue

            if retry_count >= self.policy.max_retries:
                self.logger.error(f"Giving up after {retry_count} retries: {error}")
                raise error

            if isinstance(error, UnauthorizedError):
                self.logger.info("Access token rejected, refreshing")
                self.stats['refreshes'] += 1
                self.auth.refresh()
            else:
                self.logger.warning(f"{error} (retry {retry_count + 1}/{self.policy.max_retries})")
                self._back_off(retry_count)

            retry_count += 1

    def _send(self, url: str, params: Optional[Dict[str, str]]) -> requests.Response:
        headers = {'Authorization': f'Bearer {self.auth.current_token()}'}
        self.stats['requests'] += 1

        start_time = time.time()
        self.logger.debug(f"API Request: GET {url}")
        response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        self.logger.debug(f"API Response: {response.status_code} {url} ({time.time() - start_time:.3f}s)")
        return response

    def _back_off(self, retry_count: int) -> None:
        self.stats['retries'] += 1
        delay = self.policy.backoff_delay(retry_count)
        if delay > 0:
            self.sleep(delay)

    def _retry_after(self, response: requests.Response) -> float:
        retry_after = response.headers.get('Retry-After')
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                self.logger.debug(f"Unparseable Retry-After header: {retry_after}")
        return self.policy.rate_limit_default_wait

    @staticmethod
    def _classify(url: str, response: requests.Response) -> Optional[ApiError]:
        """Map a response to an ApiError subclass, or None when it is a success."""
        if response.ok:
            return None

        error_code = None
        message = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get('error'), dict):
            error_code = body['error'].get('code')
            message = body['error'].get('message')

        if response.status_code == 429 or error_code in RATE_LIMIT_ERROR_CODES:
            return RateLimitedError(url, response.status_code, error_code, message)
        if response.status_code == 401 or error_code in UNAUTHORIZED_ERROR_CODES:
            return UnauthorizedError(url, response.status_code, error_code, message)
        return OtherApiError(url, response.status_code, error_code, message)

    @staticmethod
    def _parse(response: requests.Response, kind: FetchKind) -> Union[str, bytes, Dict[str, Any]]:
        if kind == FetchKind.BINARY:
            return response.content
        if kind == FetchKind.TEXT:
            # Multipart bodies carry no charset; requests would fall back to latin-1
            return response.content.decode('utf-8', errors='replace')
        return response.json()
