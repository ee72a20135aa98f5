"""Exception handlers to translate domain exceptions to HTTP responses."""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.domain.exceptions import (
    DomainException,
    ProductException,
    ProductNotFound,
)
from app.utils.logger import get_logger

logger = get_logger("exception_handlers")


class DomainExceptionHandler:
    """Centralized handler for domain exceptions."""

    # Mapping of domain exceptions to HTTP status codes
    EXCEPTION_STATUS_MAP = {
        ProductNotFound: status.HTTP_404_NOT_FOUND,
    }

    # Base exception type status codes
    BASE_EXCEPTION_STATUS_MAP = {
        ProductException: status.HTTP_400_BAD_REQUEST,
    }

    @classmethod
    def status_for(cls, exc: DomainException) -> int:
        status_code = cls.EXCEPTION_STATUS_MAP.get(type(exc))

        if status_code is None:
            for base_type, base_status in cls.BASE_EXCEPTION_STATUS_MAP.items():
                if isinstance(exc, base_type):
                    return base_status
            return status.HTTP_500_INTERNAL_SERVER_ERROR
        return status_code

    @classmethod
    def to_response(cls, exc: DomainException) -> JSONResponse:
        return JSONResponse(
            status_code=cls.status_for(exc),
            content={
                "detail": exc.message,
                "error_code": exc.error_code,
                "type": exc.__class__.__name__,
            },
        )


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    response = DomainExceptionHandler.to_response(exc)
    logger.warning(f"{request.method} {request.url.path} → {response.status_code}: {exc.message}")
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "type": "UnexpectedError"},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
