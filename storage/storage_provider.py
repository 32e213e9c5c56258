"""
Abstract base class for durable object stores.

The artifact cache writes converted audio through this interface, so the
service can run against Cloudflare R2, AWS S3, MinIO or a local directory.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional


@dataclass
class StoredObject:
    """An opened object ready to be streamed to a client."""
    key: str
    body: Iterator[bytes]
    content_length: Optional[int]
    content_type: str
    close: Optional[Callable[[], None]] = None

    def release(self) -> None:
        if self.close is not None:
            self.close()


class ObjectStore(ABC):
    """
    Abstract base class for object storage backends.

    Implementations report expected failures (missing object, rejected
    upload) through their return values and log the cause.
    """

    bucket_name: Optional[str] = None

    @abstractmethod
    def authenticate(self, credentials: Dict[str, Any]) -> bool:
        """
        Connect to the backend.

        Args:
            credentials: Backend-specific settings (endpoint, keys, bucket, base_path)

        Returns:
            True if the backend is reachable and usable, False otherwise
        """
        pass

    @abstractmethod
    def upload_bytes(self, data: bytes, remote_key: str, content_type: str,
                     metadata: Optional[Dict[str, str]] = None) -> bool:
        """
        Write an object, replacing any existing object under the same key.

        Returns:
            True if upload successful, False otherwise
        """
        pass

    @abstractmethod
    def open(self, remote_key: str, chunk_size: int = 64 * 1024) -> Optional[StoredObject]:
        """
        Open an object for streaming.

        Returns:
            StoredObject, or None if the object is missing or unreadable
        """
        pass

    @abstractmethod
    def delete_file(self, remote_key: str) -> bool:
        pass

    @abstractmethod
    def file_exists(self, remote_key: str) -> bool:
        pass

    @abstractmethod
    def get_file_url(self, remote_key: str, expires_in: int = 3600) -> str:
        """
        URL for reading the object: public URL when the bucket is public,
        otherwise a presigned URL valid for `expires_in` seconds.
        """
        pass
