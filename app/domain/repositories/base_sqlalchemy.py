from __future__ import annotations

from typing import Generic, Type, TypeVar

from sqlalchemy.orm import Session


T = TypeVar("T")  # SQLAlchemy model type
ID = TypeVar("ID")  # primary‑key type


class SQLAlchemyRepository(Generic[T, ID]):
    """Generic SQLAlchemy repository with the CRUD subset this service needs."""

    def __init__(self, model: Type[T], db: Session):
        self.model = model
        self.db = db

    # ----- CRUD --------------------------------------------------------
    def add(self, obj: T) -> T:
        self.db.add(obj)
        return obj

    def get(self, id_: ID) -> T | None:
        return self.db.get(self.model, id_)

    def flush(self) -> None:
        self.db.flush()

    @property
    def dialect_name(self) -> str:
        return self.db.get_bind().dialect.name
