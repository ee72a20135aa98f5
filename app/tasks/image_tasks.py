"""Image ingestion worker.

Consumes work items from the image queue and, for each one, downloads the
original image, re-encodes it as a compressed JPEG, uploads the result to
object storage and links the public URL to the product row. Delivery is
at-least-once: a message is acked only after it has been persisted,
re-published for another attempt, or moved to the dead-letter queue.
"""

import signal
import sys
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from app.core.config import AppSettings, get_settings
from app.core.container import Container
from app.domain.exceptions import (
    ConfigurationError,
    InvalidWorkItem,
    PersistError,
    PipelineException,
)
from app.domain.unit_of_work import UnitOfWork
from app.schemas.work_item_schema import WorkItem
from app.utils.cache import Cache, product_cache_key
from app.utils.external_storage import MinioClient, compressed_object_key
from app.utils.image_compression import compress_image
from app.utils.image_download import ImageDownloader
from app.utils.logger import configure_logging, get_logger
from app.utils.rabbitmq_client import Delivery, Disposition, RabbitMQWorker

logger = get_logger("image_tasks")


def _is_retryable_persist_error(exc: BaseException) -> bool:
    return isinstance(exc, PersistError) and exc.retryable


class ImageIngestionWorker:
    def __init__(
        self,
        downloader: ImageDownloader,
        storage: MinioClient,
        session_factory: Callable[[], Session],
        cache: Cache,
        quality: int = 50,
        max_attempts: int = 3,
        persist_attempts: int = 3,
        persist_backoff_seconds: float = 0.5,
    ):
        self._downloader = downloader
        self._storage = storage
        self._session_factory = session_factory
        self._cache = cache
        self._quality = quality
        self._max_attempts = max_attempts
        self._persist_attempts = persist_attempts
        self._persist_backoff = persist_backoff_seconds

    @classmethod
    def from_container(cls, container: Container, settings: AppSettings) -> "ImageIngestionWorker":
        worker = settings.worker
        return cls(
            downloader=container.downloader,
            storage=container.storage,
            session_factory=container.db.SessionLocal,
            cache=container.cache,
            quality=worker.image_quality,
            max_attempts=worker.max_attempts,
            persist_attempts=worker.persist_attempts,
            persist_backoff_seconds=worker.persist_backoff_seconds,
        )

    # ---- pipeline stages -----------------------------------------------
    def compress_and_upload(self, item: WorkItem) -> str:
        """Steps 1-3: download, compress, upload. Returns the public URL."""
        if item.compressed_url:
            logger.info(
                f"Reusing uploaded object {item.compressed_url} for product ID: {item.product_id}"
            )
            return item.compressed_url

        data = self._downloader.download(item.image_url)
        compressed = compress_image(data, self._quality)
        key = compressed_object_key(item.image_url)
        url = self._storage.upload(key, compressed)
        logger.info(
            f"Image for product ID {item.product_id} uploaded: {url} "
            f"({len(data)} -> {len(compressed)} bytes)"
        )
        return url

    def persist(self, product_id: int, url: str) -> None:
        """Step 4: link ``url`` to the product, retrying transient DB errors."""
        retrying = Retrying(
            stop=stop_after_attempt(self._persist_attempts),
            wait=wait_exponential(multiplier=self._persist_backoff, max=10),
            retry=retry_if_exception(_is_retryable_persist_error),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                self._append(product_id, url)

        logger.info(f"Database updated for product ID {product_id} with URL: {url}")
        # the cached copy no longer lists every compressed image
        self._cache.delete(product_cache_key(product_id))

    def _append(self, product_id: int, url: str) -> None:
        session = self._session_factory()
        try:
            with UnitOfWork(session) as uow:
                found = uow.products.append_compressed_image(product_id, url)
        except SQLAlchemyError as e:
            logger.warning(f"Database error updating product ID {product_id}: {e}")
            raise PersistError(product_id, str(e))
        finally:
            session.close()

        if not found:
            raise PersistError(product_id, "product does not exist", retryable=False)

    def process(self, item: WorkItem) -> str:
        """Run the whole pipeline for one item and return the linked URL."""
        url = self.compress_and_upload(item)
        self.persist(item.product_id, url)
        return url

    # ---- queue integration ---------------------------------------------
    def handle_delivery(self, body: bytes, attempt: int) -> Delivery:
        try:
            item = WorkItem.from_body(body)
        except InvalidWorkItem as e:
            logger.error(f"Invalid message format: {e.message}")
            return Delivery(Disposition.DEAD_LETTER, reason=e.error_code)

        logger.info(
            f"Processing image: {item.image_url} for product ID: {item.product_id} (attempt {attempt})"
        )
        try:
            url = self.compress_and_upload(item)
        except PipelineException as e:
            return self._reschedule(item, e, attempt)
        except Exception as e:
            logger.exception(f"Unexpected error processing image {item.image_url}")
            return self._reschedule(item, PipelineException(str(e), "UNEXPECTED_ERROR"), attempt)

        try:
            self.persist(item.product_id, url)
        except PersistError as e:
            # the object exists; later attempts only need to link it
            pending = item.model_copy(update={"compressed_url": url})
            return self._reschedule(pending, e, attempt)

        return Delivery(Disposition.ACK)

    def _reschedule(self, item: WorkItem, error: PipelineException, attempt: int) -> Delivery:
        if error.retryable and attempt < self._max_attempts:
            logger.warning(
                f"Error processing image {item.image_url} for product ID {item.product_id}: "
                f"{error.message}; retrying (attempt {attempt + 1}/{self._max_attempts})"
            )
            return Delivery(Disposition.REQUEUE, body=item.to_body(), reason=error.error_code)

        logger.error(
            f"Error processing image {item.image_url} for product ID {item.product_id}: "
            f"{error.message}; giving up after {attempt} attempt(s)"
        )
        return Delivery(Disposition.DEAD_LETTER, body=item.to_body(), reason=error.error_code)


def main() -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    container = None
    try:
        container = Container.for_worker(settings)
        worker = ImageIngestionWorker.from_container(container, settings)
        consumer = RabbitMQWorker(
            settings.messaging,
            worker.handle_delivery,
            concurrency=settings.worker.concurrency,
        )
    except ConfigurationError as e:
        logger.critical(f"Failed to start image worker: {e.message}")
        if container is not None:
            container.close()
        return 1

    def _shutdown(signum, _frame):
        logger.info(f"Received signal {signum}, finishing in-flight images")
        consumer.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    logger.info("Image processing worker is running...")
    try:
        consumer.start()
    finally:
        container.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
