from typing import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.container import Container
from app.domain.unit_of_work import UnitOfWork
from app.services.product_service import ProductService


__all__ = ["get_container", "get_db", "get_uow", "get_product_service"]


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_db(container: Container = Depends(get_container)) -> Generator[Session, None, None]:
    yield from container.db.get_session()


def get_uow(db: Session = Depends(get_db)) -> UnitOfWork:
    """Get a Unit of Work instance for dependency injection."""
    return UnitOfWork(db)


def get_product_service(
    request: Request,
    uow: UnitOfWork = Depends(get_uow),
    container: Container = Depends(get_container),
) -> ProductService:
    return ProductService(
        uow,
        container.cache,
        container.publisher,
        image_queue=request.app.state.settings.messaging.image_queue,
    )
