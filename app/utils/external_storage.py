import io
import logging

import urllib3
from minio import Minio
from minio.error import MinioException

from app.core.config import StorageSettings
from app.core.constants import COMPRESSED_CONTENT_TYPE, COMPRESSED_SUFFIX, UNSAFE_KEY_CHARS
from app.domain.exceptions import ConfigurationError, UploadError

logger = logging.getLogger(__name__)


def sanitize_object_key(name: str) -> str:
    """Replace characters that are unsafe in object keys with ``_``."""
    for ch in UNSAFE_KEY_CHARS:
        name = name.replace(ch, "_")
    return name


def compressed_object_key(image_url: str) -> str:
    """Object key for the compressed copy of ``image_url``.

    Uses the last path segment of the URL as-is (query string included),
    which is why the result has to be sanitized.
    """
    base_name = image_url.rstrip("/").rsplit("/", 1)[-1] or "image"
    return sanitize_object_key(base_name) + COMPRESSED_SUFFIX


class MinioClient:
    """Uploads compressed images to one bucket and builds their public URLs."""

    def __init__(self, settings: StorageSettings, client: Minio | None = None):
        secure = settings.minio_use_ssl
        endpoint = settings.minio_endpoint

        # Remove protocol prefix if present
        if endpoint.startswith("http://"):
            endpoint = endpoint[7:]
            secure = False
        elif endpoint.startswith("https://"):
            endpoint = endpoint[8:]
            secure = True

        self._endpoint = endpoint
        self._secure = secure
        self._bucket = settings.minio_bucket
        self._public_base_url = settings.public_base_url
        self._client = client or Minio(
            endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=secure,
            region=settings.minio_region,
            http_client=urllib3.PoolManager(
                timeout=urllib3.Timeout(
                    connect=settings.connect_timeout,
                    read=settings.read_timeout,
                ),
                retries=urllib3.Retry(
                    total=2,
                    backoff_factor=0.2,
                    status_forcelist=[500, 502, 503, 504],
                ),
            ),
        )

    # ------------------------------------------------------------------
    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet. Called once at startup."""
        try:
            if not self._client.bucket_exists(self._bucket):
                self._client.make_bucket(self._bucket)
                logger.info(f"Created bucket {self._bucket}")
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise ConfigurationError("object storage", str(e))

    def get_public_url(self, object_name: str) -> str:
        """Direct public URL for an object in the (public) bucket."""
        if self._public_base_url:
            base_url = self._public_base_url.rstrip("/")
        else:
            endpoint = self._endpoint
            if self._secure and endpoint.endswith(":443"):
                endpoint = endpoint[: -len(":443")]
            scheme = "https" if self._secure else "http"
            base_url = f"{scheme}://{endpoint}"

        return f"{base_url}/{self._bucket}/{object_name}"

    def upload(
        self,
        object_name: str,
        data: bytes,
        content_type: str = COMPRESSED_CONTENT_TYPE,
    ) -> str:
        """Create or overwrite ``object_name`` and return its public URL."""
        try:
            self._client.put_object(
                bucket_name=self._bucket,
                object_name=object_name,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except (MinioException, urllib3.exceptions.HTTPError, OSError) as e:
            raise UploadError(object_name, str(e))

        return self.get_public_url(object_name)
