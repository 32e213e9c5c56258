"""
Local filesystem object store.
Implements the ObjectStore interface on a directory, for development and
single-host deployments.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .storage_provider import ObjectStore, StoredObject

logger = logging.getLogger(__name__)


class LocalStorageProvider(ObjectStore):
    """Stores objects as files under `<base_path>/<bucket>/<key>`."""

    def __init__(self):
        self.base_path: Optional[Path] = None
        self.bucket_name: Optional[str] = None

    def authenticate(self, credentials: Dict[str, Any]) -> bool:
        path = credentials.get('base_path') or credentials.get('endpoint')
        if not path:
            return False

        self.base_path = Path(path).expanduser().absolute()
        self.bucket_name = credentials.get('bucket') or "."
        self._bucket_root().mkdir(parents=True, exist_ok=True)
        return True

    def _bucket_root(self) -> Path:
        if self.bucket_name in [".", "", "default"]:
            return self.base_path
        return self.base_path / self.bucket_name

    def _get_path(self, remote_key: str) -> Path:
        """Absolute local path for a key; keys may not escape the bucket."""
        if self.base_path is None:
            raise ValueError("Storage not initialized")
        root = self._bucket_root().resolve()
        path = (root / remote_key).resolve()
        if root not in path.parents:
            raise ValueError(f"Invalid key: {remote_key}")
        return path

    def upload_bytes(self, data: bytes, remote_key: str, content_type: str,
                     metadata: Optional[Dict[str, str]] = None) -> bool:
        try:
            dest_path = self._get_path(remote_key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so readers never see a partial file
            tmp_path = dest_path.with_name(f".{dest_path.name}.{os.getpid()}.tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, dest_path)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Local upload error for {remote_key}: {e}")
            return False

    def open(self, remote_key: str, chunk_size: int = 64 * 1024) -> Optional[StoredObject]:
        try:
            path = self._get_path(remote_key)
            handle = open(path, 'rb')
            size = os.fstat(handle.fileno()).st_size
        except (OSError, ValueError) as e:
            logger.warning(f"Could not open {remote_key}: {e}")
            return None

        def chunks() -> Iterator[bytes]:
            try:
                while True:
                    chunk = handle.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk
            finally:
                handle.close()

        return StoredObject(
            key=remote_key,
            body=chunks(),
            content_length=size,
            content_type='audio/mpeg' if path.suffix == '.mp3' else 'application/octet-stream',
            close=handle.close,
        )

    def delete_file(self, remote_key: str) -> bool:
        try:
            path = self._get_path(remote_key)
            if path.exists():
                os.remove(path)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Local delete error for {remote_key}: {e}")
            return False

    def file_exists(self, remote_key: str) -> bool:
        try:
            return self._get_path(remote_key).exists()
        except ValueError:
            return False

    def get_file_url(self, remote_key: str, expires_in: int = 3600) -> str:
        """Return a file:// URL."""
        return self._get_path(remote_key).as_uri()
