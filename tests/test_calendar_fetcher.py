"""Unit tests for CalendarFetcher."""
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import patch

import pytest
import requests
import responses
from requests.exceptions import ConnectionError, Timeout

from fetcher.calendar_fetcher import CalendarFetcher
from sync.exceptions import FetchError

FEED_URL = "https://www.airbnb.com/calendar/ical/123.ics"
FEED_BODY = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nEND:VCALENDAR\r\n"


class SlowDripHandler(BaseHTTPRequestHandler):
    """Serves a calendar a few bytes at a time."""

    drip_interval = 0.3

    def do_GET(self):
        self.send_response(200)
        self.send_header('Content-Type', 'text/calendar')
        self.end_headers()

        pause = threading.Event()
        try:
            for _ in range(40):
                self.wfile.write(b'BEGIN')
                self.wfile.flush()
                pause.wait(self.drip_interval)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def slow_drip_url():
    """Local server that never finishes sending its body in time."""
    server = ThreadingHTTPServer(('127.0.0.1', 0), SlowDripHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}/calendar.ics"
    server.shutdown()
    server.server_close()


@pytest.fixture(autouse=True)
def no_sleep():
    """Skip real backoff delays."""
    with patch('fetcher.calendar_fetcher.time.sleep') as mock_sleep:
        yield mock_sleep


class TestCalendarFetcher:
    """Test cases for CalendarFetcher class."""

    @responses.activate
    def test_fetch_success(self):
        responses.add(responses.GET, FEED_URL, body=FEED_BODY, status=200)

        content = CalendarFetcher(timeout=30).fetch_calendar_text(FEED_URL)

        assert content == FEED_BODY
        assert len(responses.calls) == 1

    @responses.activate
    def test_request_headers(self):
        responses.add(responses.GET, FEED_URL, body=FEED_BODY, status=200)

        CalendarFetcher().fetch_calendar_text(FEED_URL)

        headers = responses.calls[0].request.headers
        assert headers['Accept'] == 'text/calendar, application/ics, */*'
        assert headers['User-Agent'].startswith('Mozilla/5.0')

    @responses.activate
    def test_retry_succeeds_after_failures(self, no_sleep):
        responses.add(responses.GET, FEED_URL, body="Server Error", status=500)
        responses.add(responses.GET, FEED_URL, body="Server Error", status=503)
        responses.add(responses.GET, FEED_URL, body=FEED_BODY, status=200)

        content = CalendarFetcher().fetch_calendar_text(FEED_URL)

        assert content == FEED_BODY
        assert len(responses.calls) == 3
        assert [c.args[0] for c in no_sleep.call_args_list] == [1, 2]

    @responses.activate
    def test_all_retries_fail_with_status(self):
        for _ in range(3):
            responses.add(responses.GET, FEED_URL, body="Not Found", status=404)

        with pytest.raises(FetchError) as exc_info:
            CalendarFetcher().fetch_calendar_text(FEED_URL)

        assert exc_info.value.status_code == 404
        assert not exc_info.value.invalid_content
        assert len(responses.calls) == 3

    @responses.activate
    def test_timeout_is_retried_then_raised(self):
        for _ in range(3):
            responses.add(
                responses.GET, FEED_URL, body=Timeout("Request timed out")
            )

        with pytest.raises(FetchError) as exc_info:
            CalendarFetcher().fetch_calendar_text(FEED_URL)

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, Timeout)
        assert len(responses.calls) == 3

    @responses.activate
    def test_connection_error_is_wrapped(self):
        responses.add(
            responses.GET, FEED_URL, body=ConnectionError("refused")
        )

        with pytest.raises(FetchError):
            CalendarFetcher(max_retries=1).fetch_calendar_text(FEED_URL)

    @responses.activate
    def test_non_calendar_content(self):
        for _ in range(3):
            responses.add(
                responses.GET, FEED_URL, body="<html>login</html>", status=200
            )

        with pytest.raises(FetchError) as exc_info:
            CalendarFetcher().fetch_calendar_text(FEED_URL)

        assert exc_info.value.invalid_content
        assert len(responses.calls) == 3

    def test_backoff_doubles_and_caps(self):
        fetcher = CalendarFetcher(base_delay=1, max_delay=5)

        delays = [fetcher.backoff_delay(attempt) for attempt in range(5)]

        assert delays == [1, 2, 4, 5, 5]

    @responses.activate
    def test_redirect_status_is_not_success(self):
        responses.add(responses.GET, FEED_URL, body='', status=304)

        with pytest.raises(FetchError) as exc_info:
            CalendarFetcher(max_retries=1).fetch_calendar_text(FEED_URL)

        assert exc_info.value.status_code == 304

    def test_slow_body_is_cut_off_at_deadline(self, slow_drip_url):
        session = requests.Session()
        session.trust_env = False
        fetcher = CalendarFetcher(timeout=1, max_retries=1, session=session)

        started = time.monotonic()
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch_calendar_text(slow_drip_url)
        elapsed = time.monotonic() - started

        assert elapsed < 2.5
        assert 'timeout' in str(exc_info.value).lower()
        assert exc_info.value.status_code is None
