"""Domain exceptions that represent business rule violations and pipeline failures."""

from typing import Optional


class DomainException(Exception):
    """Base exception for all domain-related errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


# Product Domain Exceptions
class ProductException(DomainException):
    """Base exception for product-related errors."""


class ProductNotFound(ProductException):
    """Product not found in the system."""

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}", "PRODUCT_NOT_FOUND")


# Image pipeline exceptions
class PipelineException(DomainException):
    """Failure while processing one work item.

    ``retryable`` tells the worker whether another delivery of the same item
    has a chance of succeeding.
    """

    retryable = True

    def __init__(self, message: str, error_code: str, retryable: Optional[bool] = None):
        super().__init__(message, error_code)
        if retryable is not None:
            self.retryable = retryable


class InvalidWorkItem(PipelineException):
    """Message body is not a valid work item."""

    retryable = False

    def __init__(self, reason: str):
        super().__init__(f"Invalid work item: {reason}", "INVALID_WORK_ITEM")


class DownloadError(PipelineException):
    """Source image could not be fetched."""

    def __init__(self, url: str, reason: str, retryable: Optional[bool] = None):
        self.url = url
        super().__init__(f"Failed to download {url}: {reason}", "DOWNLOAD_FAILED", retryable)


class DownloadTimeout(DownloadError):
    """Source image fetch exceeded its timeout."""

    def __init__(self, url: str, timeout):
        super().__init__(url, f"timed out after {timeout}s", retryable=True)
        self.error_code = "DOWNLOAD_TIMEOUT"


class ImageTransformError(PipelineException):
    """Base for decode/encode failures; retrying the same bytes cannot help."""

    retryable = False


class ImageDecodeError(ImageTransformError):
    def __init__(self, reason: str):
        super().__init__(f"Failed to decode image: {reason}", "IMAGE_DECODE_FAILED")


class ImageEncodeError(ImageTransformError):
    def __init__(self, reason: str):
        super().__init__(f"Failed to encode image: {reason}", "IMAGE_ENCODE_FAILED")


class UploadError(PipelineException):
    """Object storage rejected or could not receive the upload."""

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Failed to upload {key}: {reason}", "UPLOAD_FAILED")


class PersistError(PipelineException):
    """Compressed URL could not be linked to its product."""

    def __init__(self, product_id: int, reason: str, retryable: Optional[bool] = None):
        self.product_id = product_id
        super().__init__(
            f"Failed to update product {product_id}: {reason}",
            "PERSIST_FAILED",
            retryable,
        )


# Infrastructure
class ConfigurationError(DomainException):
    """A required external dependency could not be set up at startup."""

    def __init__(self, component: str, reason: str):
        super().__init__(f"{component} unavailable: {reason}", "CONFIGURATION_ERROR")
