from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import DatabaseSettings


class DBSessionManager:

    def __init__(self, settings: DatabaseSettings) -> None:
        self.engine = create_engine(
            settings.database_url,
            future=True,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.pool_recycle,
            pool_pre_ping=settings.pool_pre_ping,
            connect_args=self._connect_args(settings),
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            expire_on_commit=False,
        )

    @classmethod
    def from_engine(cls, engine: Engine) -> "DBSessionManager":
        manager = cls.__new__(cls)
        manager.engine = engine
        manager.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=engine,
            expire_on_commit=False,
        )
        return manager

    @staticmethod
    def _connect_args(settings: DatabaseSettings) -> dict:
        if not settings.database_url.startswith("postgresql"):
            return {}
        return {
            "connect_timeout": settings.connect_timeout,
            "options": f"-c statement_timeout={settings.statement_timeout_ms}",
        }

    def get_session(self) -> Session:
        session: Session = self.SessionLocal()
        try:
            yield session
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
