"""HTTP fetcher for remote iCal feeds."""
import logging
import time
from typing import Optional

import requests
from urllib3.exceptions import HTTPError, ReadTimeoutError

from sync.exceptions import FetchError

logger = logging.getLogger(__name__)

CALENDAR_MARKER = 'BEGIN:VCALENDAR'
CHUNK_SIZE = 8192

# Some providers reject requests that do not look like a browser
DEFAULT_HEADERS = {
    'Accept': 'text/calendar, application/ics, */*',
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/124.0 Safari/537.36'
    )
}


class CalendarFetcher:
    """Retrieves raw calendar text with retries and exponential backoff."""

    def __init__(
        self,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1,
        max_delay: float = 5,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the calendar fetcher.

        Args:
            timeout: Overall deadline for one attempt, in seconds (default: 30)
            max_retries: Total number of attempts (default: 3)
            base_delay: Backoff delay before the second attempt, in seconds
            max_delay: Upper bound for any single backoff delay
            session: Optional requests session to issue requests with
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.session = session or requests.Session()

    def fetch_calendar_text(self, url: str) -> str:
        """
        Fetch calendar text from a URL.

        Args:
            url: iCal feed URL

        Returns:
            Raw iCal document text

        Raises:
            FetchError: If every attempt fails
        """
        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching calendar (attempt {attempt + 1}/{self.max_retries})"
                )
                content = self._fetch_once(url)
                logger.info(f"Fetched calendar, size: {len(content)}")
                return content

            except FetchError as e:
                if attempt < self.max_retries - 1:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        f"Calendar fetch failed (attempt {attempt + 1}/"
                        f"{self.max_retries}): {e}. Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} fetch attempts failed. Last error: {e}"
                    )
                    raise

        raise FetchError('No fetch attempts were made')

    def backoff_delay(self, attempt: int) -> float:
        """Delay after a failed attempt: doubles each time, capped."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _fetch_once(self, url: str) -> str:
        """
        Perform a single fetch attempt.

        The whole attempt, body included, must finish within the timeout.
        The body is streamed so a server that trickles bytes is cut off.

        Raises:
            FetchError: On network failure, timeout, non-2xx status or
                content that is not an iCal document
        """
        deadline = time.monotonic() + self.timeout

        try:
            with self.session.get(
                url,
                headers=DEFAULT_HEADERS,
                timeout=self.timeout,
                stream=True
            ) as response:
                if not 200 <= response.status_code < 300:
                    raise FetchError(
                        f"Failed to fetch calendar: {response.status_code} "
                        f"{response.reason}",
                        status_code=response.status_code
                    )

                body = self._read_body(response, deadline)
                encoding = response.encoding or 'utf-8'
        except requests.Timeout as e:
            raise FetchError(
                f"Request timeout after {self.timeout} seconds"
            ) from e
        except requests.RequestException as e:
            raise FetchError(f"Request failed: {e}") from e

        content = body.decode(encoding, errors='replace')
        if not content or CALENDAR_MARKER not in content:
            raise FetchError('Invalid calendar content', invalid_content=True)

        return content

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        """Read the streamed body, giving up once the deadline passes."""
        chunks = []

        try:
            while True:
                if time.monotonic() >= deadline:
                    raise FetchError(
                        f"Request timeout after {self.timeout} seconds"
                    )

                # read1 returns whatever one socket read yields
                chunk = response.raw.read1(CHUNK_SIZE, decode_content=True)
                if not chunk:
                    break
                chunks.append(chunk)
        except ReadTimeoutError as e:
            raise FetchError(
                f"Request timeout after {self.timeout} seconds"
            ) from e
        except (HTTPError, OSError) as e:
            raise FetchError(f"Request failed: {e}") from e

        return b''.join(chunks)
