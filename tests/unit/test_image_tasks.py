"""Unit tests for the image ingestion worker."""

import json
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.domain.exceptions import DownloadError, UploadError
from app.domain.repositories.product_repository import ProductRepository
from app.models.product_model import Product
from app.schemas.work_item_schema import WorkItem
from app.tasks.image_tasks import ImageIngestionWorker
from app.utils.rabbitmq_client import Disposition


class FakeDownloader:
    def __init__(self, images):
        self.images = images
        self.requested = []

    def download(self, url):
        self.requested.append(url)
        result = self.images[url]
        if isinstance(result, Exception):
            raise result
        return result


class FakeStorage:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = {}

    def upload(self, key, data, content_type="image/jpeg"):
        if self.fail:
            raise UploadError(key, "bucket unreachable")
        self.uploads[key] = data
        return f"https://cdn.test/compressed/{key}"


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def make_worker(db_manager, cache, storage):
    def _make(images, **kwargs):
        options = dict(quality=50, max_attempts=3, persist_attempts=2, persist_backoff_seconds=0)
        options.update(kwargs)
        return ImageIngestionWorker(
            downloader=FakeDownloader(images),
            storage=storage,
            session_factory=db_manager.SessionLocal,
            cache=cache,
            **options,
        )

    return _make


def compressed_of(db_manager, product_id):
    session = db_manager.SessionLocal()
    try:
        return session.get(Product, product_id).compressed_product_images
    finally:
        session.close()


def body(product_id, url, **extra):
    return json.dumps({"product_id": product_id, "image_url": url, **extra}).encode()


class TestProcess:
    def test_full_pipeline_links_compressed_url(self, make_worker, storage, db_manager, add_product, image_factory):
        add_product(product_id=7, product_images=["https://img.test/a.jpg"])
        worker = make_worker({"https://img.test/a.jpg": image_factory("PNG")})

        url = worker.process(WorkItem(product_id=7, image_url="https://img.test/a.jpg"))

        assert url == "https://cdn.test/compressed/a.jpg_compressed.jpg"
        assert storage.uploads["a.jpg_compressed.jpg"][:2] == b"\xff\xd8"  # JPEG SOI
        assert compressed_of(db_manager, 7) == [url]

    def test_upload_key_is_sanitized(self, make_worker, storage, add_product, image_factory):
        add_product(product_id=1)
        src = "https://img.test/foo bar?x=1&y=2%3"
        make_worker({src: image_factory("PNG")}).process(WorkItem(product_id=1, image_url=src))

        (key,) = storage.uploads
        assert not any(ch in key for ch in "?&=% ")
        assert key.endswith("_compressed.jpg")

    def test_persist_invalidates_cached_product(self, make_worker, fake_redis, add_product, image_factory):
        add_product(product_id=3)
        fake_redis.set("product:3", "{}", ex=600)

        make_worker({"https://img.test/a.jpg": image_factory("PNG")}).process(
            WorkItem(product_id=3, image_url="https://img.test/a.jpg")
        )

        assert fake_redis.get("product:3") is None

    def test_reprocessing_same_item_does_not_duplicate(self, make_worker, db_manager, add_product, image_factory):
        add_product(product_id=2)
        worker = make_worker({"https://img.test/a.jpg": image_factory("PNG")})
        item = WorkItem(product_id=2, image_url="https://img.test/a.jpg")

        worker.process(item)
        worker.process(item)

        assert len(compressed_of(db_manager, 2)) == 1


class TestHandleDelivery:
    def test_success_is_acked(self, make_worker, add_product, image_factory):
        add_product(product_id=1)
        worker = make_worker({"https://img.test/a.jpg": image_factory("JPEG")})

        delivery = worker.handle_delivery(body(1, "https://img.test/a.jpg"), attempt=1)

        assert delivery.disposition is Disposition.ACK

    def test_malformed_json_is_dead_lettered(self, make_worker):
        delivery = make_worker({}).handle_delivery(b"{oops", attempt=1)
        assert delivery.disposition is Disposition.DEAD_LETTER
        assert delivery.reason == "INVALID_WORK_ITEM"
        assert delivery.body is None  # original bytes are forwarded

    def test_transient_download_failure_is_requeued(self, make_worker):
        url = "https://img.test/a.jpg"
        worker = make_worker({url: DownloadError(url, "connection reset", retryable=True)})

        delivery = worker.handle_delivery(body(1, url), attempt=1)

        assert delivery.disposition is Disposition.REQUEUE
        assert json.loads(delivery.body) == {"product_id": 1, "image_url": url}

    def test_retries_stop_at_max_attempts(self, make_worker):
        url = "https://img.test/a.jpg"
        worker = make_worker({url: DownloadError(url, "connection reset", retryable=True)})

        delivery = worker.handle_delivery(body(1, url), attempt=3)

        assert delivery.disposition is Disposition.DEAD_LETTER
        assert delivery.reason == "DOWNLOAD_FAILED"

    def test_permanent_failures_skip_retries(self, make_worker):
        url = "https://img.test/not-an-image.jpg"
        worker = make_worker({url: b"<html>nope</html>"})

        delivery = worker.handle_delivery(body(1, url), attempt=1)

        assert delivery.disposition is Disposition.DEAD_LETTER
        assert delivery.reason == "IMAGE_DECODE_FAILED"

    def test_upload_failure_is_retryable(self, make_worker, storage, image_factory):
        storage.fail = True
        url = "https://img.test/a.jpg"

        delivery = make_worker({url: image_factory("PNG")}).handle_delivery(body(1, url), attempt=1)

        assert delivery.disposition is Disposition.REQUEUE
        assert delivery.reason == "UPLOAD_FAILED"

    def test_one_failing_item_does_not_affect_another(self, make_worker, db_manager, add_product, image_factory):
        add_product(product_id=4)
        bad, good = "https://img.test/bad.jpg", "https://img.test/good.jpg"
        worker = make_worker({bad: DownloadError(bad, "boom", retryable=True), good: image_factory("PNG")})

        first = worker.handle_delivery(body(4, bad), attempt=1)
        second = worker.handle_delivery(body(4, good), attempt=1)

        assert first.disposition is Disposition.REQUEUE
        assert second.disposition is Disposition.ACK
        assert compressed_of(db_manager, 4) == ["https://cdn.test/compressed/good.jpg_compressed.jpg"]

    def test_missing_product_is_dead_lettered_with_url(self, make_worker, image_factory):
        url = "https://img.test/a.jpg"

        delivery = make_worker({url: image_factory("PNG")}).handle_delivery(body(404, url), attempt=1)

        assert delivery.disposition is Disposition.DEAD_LETTER
        assert delivery.reason == "PERSIST_FAILED"
        assert json.loads(delivery.body)["compressed_url"].endswith("a.jpg_compressed.jpg")

    def test_persist_failure_requeues_without_reupload(self, make_worker, storage, db_manager, add_product, image_factory):
        add_product(product_id=6)
        url = "https://img.test/a.jpg"
        worker = make_worker({url: image_factory("PNG")})
        db_down = OperationalError("UPDATE products", {}, Exception("server closed the connection"))

        with patch.object(ProductRepository, "append_compressed_image", side_effect=db_down) as append:
            delivery = worker.handle_delivery(body(6, url), attempt=1)
        assert append.call_count == 2  # persist_attempts

        assert delivery.disposition is Disposition.REQUEUE
        pending = json.loads(delivery.body)
        assert pending["compressed_url"] == "https://cdn.test/compressed/a.jpg_compressed.jpg"

        # next attempt only links the existing object
        storage.uploads.clear()
        worker._downloader.images.clear()
        redelivered = worker.handle_delivery(delivery.body, attempt=2)

        assert redelivered.disposition is Disposition.ACK
        assert storage.uploads == {}
        assert compressed_of(db_manager, 6) == [pending["compressed_url"]]

    def test_unexpected_errors_are_retried(self, make_worker):
        url = "https://img.test/a.jpg"
        worker = make_worker({url: RuntimeError("surprise")})

        delivery = worker.handle_delivery(body(1, url), attempt=1)

        assert delivery.disposition is Disposition.REQUEUE
        assert delivery.reason == "UNEXPECTED_ERROR"
