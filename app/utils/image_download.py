import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout

import requests

from app.core.config import WorkerSettings
from app.domain.exceptions import DownloadError, DownloadTimeout

logger = logging.getLogger(__name__)

CHUNK_SIZE = 16 * 1024
RETRYABLE_STATUSES = {408, 425, 429}


class ImageDownloader:
    """Fetches source images over plain, unauthenticated HTTP(S).

    ``connect_timeout`` and ``read_timeout`` bound each socket operation;
    ``total_timeout`` bounds the whole download, so a server trickling bytes
    just inside the read timeout still ends the item with ``DownloadTimeout``.
    """

    def __init__(
        self,
        connect_timeout: float,
        read_timeout: float,
        max_bytes: int,
        total_timeout: float = 60.0,
        session: requests.Session | None = None,
    ):
        self._timeout = (connect_timeout, read_timeout)
        self._total_timeout = total_timeout
        self._max_bytes = max_bytes
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: WorkerSettings) -> "ImageDownloader":
        return cls(
            settings.download_connect_timeout,
            settings.download_read_timeout,
            settings.max_download_bytes,
            total_timeout=settings.download_total_timeout,
        )

    def download(self, url: str) -> bytes:
        deadline = time.monotonic() + self._total_timeout
        future: Future = Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._fetch(url, deadline))
            except Exception as e:
                future.set_exception(e)

        # a blocked socket read cannot be interrupted, so the caller waits on
        # the future and an abandoned fetch stops at its next chunk
        threading.Thread(target=run, name="image-download", daemon=True).start()
        try:
            return future.result(timeout=self._total_timeout)
        except FutureTimeout:
            logger.warning(f"Download of {url} exceeded {self._total_timeout}s, abandoning it")
            raise DownloadTimeout(url, self._total_timeout)

    def _fetch(self, url: str, deadline: float) -> bytes:
        try:
            with self._session.get(url, timeout=self._timeout, stream=True) as resp:
                if not 200 <= resp.status_code < 300:
                    retryable = resp.status_code >= 500 or resp.status_code in RETRYABLE_STATUSES
                    raise DownloadError(
                        url, f"received non-2xx response: {resp.status_code}", retryable=retryable
                    )
                return self._read_limited(url, resp, deadline)
        except requests.Timeout:
            raise DownloadTimeout(url, self._timeout[1])
        except requests.RequestException as e:
            raise DownloadError(url, str(e), retryable=True)

    def _read_limited(self, url: str, resp: requests.Response, deadline: float) -> bytes:
        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self._max_bytes:
            raise DownloadError(url, f"image is {declared} bytes, limit is {self._max_bytes}", retryable=False)

        chunks = []
        size = 0
        for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise DownloadTimeout(url, self._total_timeout)
            size += len(chunk)
            if size > self._max_bytes:
                raise DownloadError(url, f"image exceeds {self._max_bytes} bytes", retryable=False)
            chunks.append(chunk)
        logger.debug(f"Downloaded {size} bytes from {url}")
        return b"".join(chunks)

    def close(self) -> None:
        self._session.close()
