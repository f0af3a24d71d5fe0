"""
Remote URL fetching for offline downloads.

An offline download asks the server to pull a URL and store the result
in a storage, so the browser never has to relay the bytes. The fetcher
streams the response into a spooled temporary file (memory first, disk
once it grows) which is then uploaded by the file browser.

Retries with exponential backoff (tenacity) cover transport failures
and 5xx answers; client errors (4xx) fail immediately because
repeating them won't help.
"""

import logging
import re
import tempfile
from dataclasses import dataclass
from typing import BinaryIO, Optional
from urllib.parse import unquote, urlparse

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ...core.files.filetypes import DEFAULT_MIME_TYPE, get_mime_type

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "download"
# Kept in memory up to this size, then rolled over to disk
SPOOL_MAX_MEMORY = 8 * 1024 * 1024
MAX_REDIRECTS = 10
# Waits grow from backoff_seconds up to this multiple of it
MAX_BACKOFF_FACTOR = 8

_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*([^']*)'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^;]+))', re.IGNORECASE)
_UNSAFE_CHARS_RE = re.compile(r'[\x00-\x1f\x7f]')


class FetchError(Exception):
    """Raised when a remote URL cannot be downloaded."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidURLError(FetchError):
    """Raised for URLs that are not plain http(s)."""
    pass


class FetchTooLargeError(FetchError):
    """Raised when the remote file exceeds the configured size limit."""
    pass


@dataclass
class FetcherConfig:
    timeout_seconds: float = 60.0
    max_size_bytes: int = 2 * 1024 * 1024 * 1024
    max_retries: int = 2
    backoff_seconds: float = 1.0
    user_agent: str = "CList-OfflineDownload/0.1"


@dataclass
class FetchedFile:
    """
    A downloaded body waiting to be stored.

    `file` is positioned at the start. Call close() (or use as a context
    manager) once it has been uploaded.
    """
    file: BinaryIO
    filename: str
    size: int
    content_type: str
    source_url: str

    def close(self) -> None:
        self.file.close()

    def __enter__(self) -> "FetchedFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def sanitize_filename(name: str) -> str:
    """Reduce a candidate name to a single safe path segment."""
    name = _UNSAFE_CHARS_RE.sub("", name.replace("\\", "/")).rsplit("/", 1)[-1].strip()
    if name in ("", ".", ".."):
        return DEFAULT_FILENAME
    return name


def filename_from_content_disposition(header: Optional[str]) -> Optional[str]:
    """
    Filename from a Content-Disposition header.

    The RFC 5987 `filename*` form wins over plain `filename` since it
    carries the original (often non-ASCII) name.
    """
    if not header:
        return None

    match = _FILENAME_STAR_RE.search(header)
    if match:
        charset = match.group(1) or "utf-8"
        try:
            return unquote(match.group(2).strip().strip('"'), encoding=charset)
        except LookupError:
            return unquote(match.group(2).strip().strip('"'))

    match = _FILENAME_RE.search(header)
    if match:
        value = match.group(1) if match.group(1) is not None else match.group(2)
        return value.strip() or None
    return None


def filename_from_url(url: str) -> Optional[str]:
    path = urlparse(url).path
    segment = unquote(path.rstrip("/").rsplit("/", 1)[-1]) if path else ""
    return segment or None


def resolve_filename(
    requested: Optional[str],
    content_disposition: Optional[str],
    url: str,
) -> str:
    """Explicit name, then Content-Disposition, then the URL path, then a default."""
    for candidate in (
        requested,
        filename_from_content_disposition(content_disposition),
        filename_from_url(url),
    ):
        if candidate and candidate.strip():
            return sanitize_filename(candidate)
    return DEFAULT_FILENAME


def resolve_content_type(header: Optional[str], filename: str) -> str:
    """Response Content-Type without parameters, or a guess from the name."""
    content_type = (header or "").split(";", 1)[0].strip().lower()
    if not content_type or content_type == DEFAULT_MIME_TYPE:
        return get_mime_type(filename)
    return content_type


def validate_url(url: str) -> str:
    url = (url or "").strip()
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidURLError(f"Invalid URL: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidURLError("Only http and https URLs can be downloaded")
    return url


def is_retryable(error: BaseException) -> bool:
    """Transport failures and 5xx answers; everything else fails at once."""
    if isinstance(error, (FetchTooLargeError, InvalidURLError)):
        return False
    if isinstance(error, FetchError):
        return error.status_code is None or error.status_code >= 500
    return False


class RemoteFetcher:
    """
    Downloads remote URLs into temporary files.

    The httpx transport can be injected, which is how tests serve
    responses without network access.
    """

    def __init__(
        self,
        config: Optional[FetcherConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or FetcherConfig()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self._config.timeout_seconds,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            headers={"User-Agent": self._config.user_agent},
        )

    def _retrying(self, url: str) -> AsyncRetrying:
        backoff = self._config.backoff_seconds

        def log_failed_attempt(retry_state: RetryCallState) -> None:
            logger.warning(
                "Offline download attempt failed",
                extra={
                    "url": url,
                    "attempt": retry_state.attempt_number,
                    "error": str(retry_state.outcome.exception()),
                }
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * MAX_BACKOFF_FACTOR),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_failed_attempt,
            reraise=True,
        )

    async def fetch(self, url: str, filename: Optional[str] = None) -> FetchedFile:
        """
        Download url, retrying transient failures.

        Raises:
            InvalidURLError: url is not a valid http(s) URL
            FetchTooLargeError: body exceeds max_size_bytes
            FetchError: remote error or retries exhausted
        """
        url = validate_url(url)

        async with self._client() as client:
            async for attempt in self._retrying(url):
                with attempt:
                    return await self._fetch_once(client, url, filename)

    async def _fetch_once(
        self,
        client: httpx.AsyncClient,
        url: str,
        filename: Optional[str],
    ) -> FetchedFile:
        spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
        try:
            name, size, content_type = await self._download(client, url, filename, spool)
            spool.seek(0)
            logger.info(
                "Fetched remote file",
                extra={"url": url, "fetched_name": name, "size_bytes": size, "content_type": content_type}
            )
        except httpx.InvalidURL as e:
            spool.close()
            raise InvalidURLError(f"Invalid URL: {e}") from e
        except httpx.HTTPError as e:
            spool.close()
            raise FetchError(f"Download failed: {e}") from e
        except Exception:
            spool.close()
            raise

        return FetchedFile(
            file=spool,
            filename=name,
            size=size,
            content_type=content_type,
            source_url=url,
        )

    async def _download(
        self,
        client: httpx.AsyncClient,
        url: str,
        filename: Optional[str],
        spool: BinaryIO,
    ) -> tuple[str, int, str]:
        """Stream url into spool. Returns (name, size, content type)."""
        limit = self._config.max_size_bytes

        async with client.stream("GET", url) as response:
            if response.status_code >= 400:
                raise FetchError(
                    f"Remote server answered {response.status_code}",
                    status_code=response.status_code,
                )

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > limit:
                raise FetchTooLargeError(f"Remote file is larger than {limit} bytes")

            name = resolve_filename(
                filename,
                response.headers.get("Content-Disposition"),
                str(response.url),
            )
            content_type = resolve_content_type(response.headers.get("Content-Type"), name)

            size = 0
            async for chunk in response.aiter_bytes():
                size += len(chunk)
                if size > limit:
                    raise FetchTooLargeError(f"Remote file is larger than {limit} bytes")
                spool.write(chunk)

        return name, size, content_type
