import io
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.core.config import AppSettings
from app.core.container import Container
from app.db.base import Base
from app.db.session import DBSessionManager
from app.main import create_app
from app.models.product_model import Product
from app.utils.cache import Cache


class FakeRedis:
    """Just enough of redis.Redis for the cache wrapper, with a manual clock."""

    def __init__(self):
        self.now = 0.0
        self._data = {}
        self._expires = {}
        self.calls = []

    def _alive(self, key):
        exp = self._expires.get(key)
        if exp is not None and exp <= self.now:
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return key in self._data

    def get(self, key):
        self.calls.append(("get", key))
        return self._data[key] if self._alive(key) else None

    def set(self, key, value, ex=None):
        self.calls.append(("set", key, ex))
        self._data[key] = value
        self._expires[key] = self.now + ex if ex else None
        return True

    def expire(self, key, ttl):
        self.calls.append(("expire", key, ttl))
        if not self._alive(key):
            return False
        self._expires[key] = self.now + ttl
        return True

    def delete(self, *keys):
        self.calls.append(("delete",) + keys)
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            self._expires.pop(key, None)
        return removed

    def ttl(self, key):
        if not self._alive(key):
            return -2
        return int(self._expires[key] - self.now)

    def ping(self):
        return True

    def close(self):
        pass


class FakePublisher:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    def publish_raw(self, queue_name, body, headers=None):
        if self.fail:
            return False
        self.messages.append((queue_name, body))
        return True

    def close(self):
        pass


def make_image_bytes(fmt="PNG", mode="RGB", size=(48, 32), color=(200, 30, 60)):
    if mode == "RGBA":
        color = color + (128,)
    elif mode == "L":
        color = color[0]
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_manager(engine) -> DBSessionManager:
    return DBSessionManager.from_engine(engine)


@pytest.fixture
def db_session(db_manager) -> Generator[Session, None, None]:
    session = db_manager.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis) -> Cache:
    return Cache(fake_redis, ttl_seconds=600)


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def container(db_manager, cache, publisher) -> Container:
    return Container(db=db_manager, cache=cache, publisher=publisher)


@pytest.fixture
def client(container) -> Generator[TestClient, None, None]:
    app = create_app(container=container, settings=AppSettings())
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def add_product(db_manager):
    def _add(**overrides) -> Product:
        values = dict(
            user_id=1,
            product_name="Test Product",
            product_description="A sample product for testing",
            product_images=["https://img.test/image1.jpg", "https://img.test/image2.jpg"],
            compressed_product_images=[],
            product_price=Decimal("99.99"),
        )
        values.update(overrides)
        session = db_manager.SessionLocal()
        try:
            product = Product(**values)
            session.add(product)
            session.commit()
            session.refresh(product)
            return product
        finally:
            session.close()

    return _add


@pytest.fixture
def image_factory():
    return make_image_bytes
