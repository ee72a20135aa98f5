from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import AppSettings
from app.db.base import Base
from app.db.session import DBSessionManager
from app.domain.exceptions import ConfigurationError
from app.utils.cache import Cache
from app.utils.external_storage import MinioClient
from app.utils.image_download import ImageDownloader
from app.utils.logger import get_logger
from app.utils.rabbitmq_client import RabbitMQPublisherWrapper

logger = get_logger("container")


@dataclass
class Container:
    """Process-wide client handles, built once by an entry point and injected."""

    db: DBSessionManager
    cache: Cache
    publisher: Optional[RabbitMQPublisherWrapper] = None
    storage: Optional[MinioClient] = None
    downloader: Optional[ImageDownloader] = None

    @staticmethod
    def _open_database(settings: AppSettings) -> DBSessionManager:
        db = DBSessionManager(settings.database)
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            if settings.database.create_tables:
                Base.metadata.create_all(bind=db.engine)
        except SQLAlchemyError as e:
            db.dispose()
            raise ConfigurationError("database", str(e))
        logger.info("Connected to the database")
        return db

    @classmethod
    def for_api(cls, settings: AppSettings) -> "Container":
        db = cls._open_database(settings)
        return cls(
            db=db,
            cache=Cache.from_settings(settings.cache),
            publisher=RabbitMQPublisherWrapper(settings.messaging),
        )

    @classmethod
    def for_worker(cls, settings: AppSettings) -> "Container":
        db = cls._open_database(settings)
        container = cls(
            db=db,
            cache=Cache.from_settings(settings.cache),
            storage=MinioClient(settings.storage),
            downloader=ImageDownloader.from_settings(settings.worker),
        )
        try:
            container.storage.ensure_bucket()
        except ConfigurationError:
            container.close()
            raise
        return container

    def close(self) -> None:
        if self.publisher is not None:
            self.publisher.close()
        if self.downloader is not None:
            self.downloader.close()
        self.cache.close()
        self.db.dispose()
