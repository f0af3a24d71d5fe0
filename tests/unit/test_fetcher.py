"""
Unit tests for the offline download fetcher.

Responses are served by httpx.MockTransport, so these tests never touch
the network. Backoff is zero to keep retries instant.
"""

import asyncio
import logging

import httpx
import pytest

from clist.infrastructure.http.fetcher import (
    DEFAULT_FILENAME,
    FetchError,
    FetcherConfig,
    FetchTooLargeError,
    InvalidURLError,
    RemoteFetcher,
    filename_from_content_disposition,
    is_retryable,
    resolve_content_type,
    resolve_filename,
    sanitize_filename,
    validate_url,
)


def make_fetcher(handler, **config) -> RemoteFetcher:
    config.setdefault("backoff_seconds", 0)
    return RemoteFetcher(FetcherConfig(**config), transport=httpx.MockTransport(handler))


def fetch(fetcher: RemoteFetcher, url: str, filename=None):
    return asyncio.run(fetcher.fetch(url, filename))


# ---------------------------------------------------------------------------
# Filename and content type resolution
# ---------------------------------------------------------------------------

class TestFilenames:

    @pytest.mark.parametrize("header, expected", [
        ('attachment; filename="report.pdf"', "report.pdf"),
        ("attachment; filename=plain.txt", "plain.txt"),
        ("attachment; filename=\"a.txt\"; filename*=UTF-8''%E6%8A%A5%E5%91%8A.pdf", "报告.pdf"),
        ("inline", None),
        (None, None),
    ])
    def test_content_disposition(self, header, expected):
        assert filename_from_content_disposition(header) == expected

    @pytest.mark.parametrize("name, expected", [
        ("ok.txt", "ok.txt"),
        ("../../etc/passwd", "passwd"),
        ("dir\\evil.exe", "evil.exe"),
        ("bad\x00name", "badname"),
        ("..", DEFAULT_FILENAME),
        ("", DEFAULT_FILENAME),
    ])
    def test_sanitize(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_resolution_order(self):
        url = "https://example.com/files/from%20url.zip?x=1"
        assert resolve_filename("explicit.zip", 'attachment; filename="cd.zip"', url) == "explicit.zip"
        assert resolve_filename(None, 'attachment; filename="cd.zip"', url) == "cd.zip"
        assert resolve_filename(None, None, url) == "from url.zip"
        assert resolve_filename(None, None, "https://example.com/") == DEFAULT_FILENAME

    def test_content_type(self):
        assert resolve_content_type("text/html; charset=utf-8", "x.bin") == "text/html"
        assert resolve_content_type("application/octet-stream", "movie.mp4") == "video/mp4"
        assert resolve_content_type(None, "photo.png") == "image/png"

    @pytest.mark.parametrize("url", [
        "ftp://example.com/a", "file:///etc/passwd", "example.com/a", "", "http://[::1",
    ])
    def test_only_http_urls(self, url):
        with pytest.raises(InvalidURLError):
            validate_url(url)

    @pytest.mark.parametrize("error, expected", [
        (FetchError("Download failed: timeout"), True),
        (FetchError("Remote server answered 503", status_code=503), True),
        (FetchError("Remote server answered 403", status_code=403), False),
        (FetchTooLargeError("too big"), False),
        (InvalidURLError("bad"), False),
        (ValueError("unrelated"), False),
    ])
    def test_retryable_errors(self, error, expected):
        assert is_retryable(error) is expected


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

class TestRemoteFetcher:

    def test_downloads_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["User-Agent"] == "test-agent"
            return httpx.Response(200, content=b"hello world", headers={"Content-Type": "text/plain"})

        fetched = fetch(make_fetcher(handler, user_agent="test-agent"), "https://example.com/greeting.txt")
        with fetched:
            assert fetched.filename == "greeting.txt"
            assert fetched.size == 11
            assert fetched.content_type == "text/plain"
            assert fetched.file.read() == b"hello world"

    def test_requested_filename_wins(self):
        def handler(request):
            return httpx.Response(
                200,
                content=b"x",
                headers={"Content-Disposition": 'attachment; filename="server.bin"'},
            )

        with fetch(make_fetcher(handler), "https://example.com/a", "mine.bin") as fetched:
            assert fetched.filename == "mine.bin"

    def test_follows_redirects_and_names_from_final_url(self):
        def handler(request):
            if request.url.path == "/short":
                return httpx.Response(302, headers={"Location": "https://cdn.example.com/real-name.iso"})
            return httpx.Response(200, content=b"iso")

        with fetch(make_fetcher(handler), "https://example.com/short") as fetched:
            assert fetched.filename == "real-name.iso"

    def test_retries_server_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, content=b"ok")

        with fetch(make_fetcher(handler, max_retries=2), "https://example.com/f") as fetched:
            assert fetched.size == 2
        assert len(calls) == 3

    def test_gives_up_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(FetchError) as exc_info:
            fetch(make_fetcher(handler, max_retries=1), "https://example.com/f")
        assert exc_info.value.status_code == 500
        assert len(calls) == 2

    def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(FetchError, match="404"):
            fetch(make_fetcher(handler, max_retries=3), "https://example.com/missing")
        assert len(calls) == 1

    def test_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError, match="Download failed"):
            fetch(make_fetcher(handler, max_retries=2), "https://example.com/f")
        assert len(calls) == 3

    def test_rejects_declared_size_over_limit(self):
        def handler(request):
            return httpx.Response(200, content=b"x" * 20)

        with pytest.raises(FetchTooLargeError):
            fetch(make_fetcher(handler, max_size_bytes=10), "https://example.com/big")

    def test_rejects_streamed_size_over_limit(self):
        async def chunks():
            yield b"x" * 6
            yield b"x" * 6

        def handler(request):
            return httpx.Response(200, content=chunks())

        with pytest.raises(FetchTooLargeError):
            fetch(make_fetcher(handler, max_size_bytes=10, max_retries=3), "https://example.com/big")

    def test_invalid_url_fails_without_request(self):
        def handler(request):
            raise AssertionError("should not be called")

        with pytest.raises(InvalidURLError):
            fetch(make_fetcher(handler), "ftp://example.com/a")

    def test_malformed_url_is_invalid(self):
        def handler(request):
            raise AssertionError("should not be called")

        with pytest.raises(InvalidURLError):
            fetch(make_fetcher(handler), "http://[::1")

    def test_url_rejected_by_httpx_is_invalid_and_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

        with pytest.raises(InvalidURLError):
            fetch(make_fetcher(handler, max_retries=3), "https://example.com/a")
        assert len(calls) == 1

    def test_downloads_with_info_logging_enabled(self, caplog):
        caplog.set_level(logging.INFO, logger="clist")

        def handler(request):
            return httpx.Response(200, content=b"logged")

        with fetch(make_fetcher(handler), "https://example.com/a.txt") as fetched:
            assert fetched.file.read() == b"logged"

        record = next(r for r in caplog.records if r.getMessage() == "Fetched remote file")
        assert record.fetched_name == "a.txt"
        assert record.size_bytes == 6

    def test_failed_attempts_are_logged(self, caplog):
        caplog.set_level(logging.WARNING, logger="clist")
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502 if len(calls) == 1 else 200, content=b"ok")

        with fetch(make_fetcher(handler, max_retries=1), "https://example.com/f"):
            pass
        attempts = [r for r in caplog.records if r.getMessage() == "Offline download attempt failed"]
        assert [r.attempt for r in attempts] == [1]
