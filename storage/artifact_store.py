"""
Artifact cache: converted audio keyed by external media id.

Each external id maps to at most one durable object and one metadata record.
The object key is derived from the id so concurrent writers in different
processes converge on the same object, and the record insert is
first-writer-wins on the primary key.
"""

import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, Optional

import requests

from shared.constants import (
    AUDIO_BUCKET_PREFIX,
    AUDIO_CONTENT_TYPE,
    AUDIO_EXTENSION,
    AUDIO_FILENAME_PREFIX,
    DEFAULT_DOWNLOAD_CHUNK_SIZE,
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_MAX_DOWNLOAD_MB,
    FILENAME_COMPONENT_MAX,
)
from shared.database import DatabaseManager
from shared.deadline import Deadline
from shared.errors import ConversionError, StorageError
from shared.models import ArtifactRecord, MediaRequest, PersistResult
from .storage_provider import ObjectStore, StoredObject

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\s\-_]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_component(value: str, max_length: int = FILENAME_COMPONENT_MAX) -> str:
    """Keep letters, digits, spaces, dashes and underscores; spaces become underscores."""
    cleaned = _UNSAFE_CHARS.sub("", value or "")
    return _WHITESPACE.sub("_", cleaned)[:max_length]


def generate_audio_filename(external_id: str, artist: str, title: str) -> str:
    """e.g. youtube_dQw4w9WgXcQ_Rick_Astley_Never_Gonna_Give_You_Up.mp3"""
    return (
        f"{AUDIO_FILENAME_PREFIX}_{sanitize_component(external_id, 64)}_"
        f"{sanitize_component(artist)}_{sanitize_component(title)}{AUDIO_EXTENSION}"
    )


def generate_storage_key(external_id: str, artist: str, title: str) -> str:
    return f"{AUDIO_BUCKET_PREFIX}/{generate_audio_filename(external_id, artist, title)}"


class _KeyLock:
    """Per-id lock plus the number of threads holding or waiting on it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class ArtifactStore:
    """Looks up, persists and opens cached audio artifacts."""

    def __init__(self, database: DatabaseManager, object_store: ObjectStore,
                 session: Optional[requests.Session] = None,
                 download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
                 max_download_mb: int = DEFAULT_MAX_DOWNLOAD_MB,
                 chunk_size: int = DEFAULT_DOWNLOAD_CHUNK_SIZE):
        self.db = database
        self.objects = object_store
        self._session = session or requests.Session()
        self._download_timeout = download_timeout
        self._max_bytes = max_download_mb * 1024 * 1024
        self._chunk_size = chunk_size
        self._locks: Dict[str, _KeyLock] = {}
        self._locks_lock = threading.Lock()

    @contextmanager
    def _locked(self, external_id: str) -> Iterator[None]:
        """Hold the per-id lock; the entry is dropped once no thread holds or waits on it."""
        with self._locks_lock:
            key_lock = self._locks.get(external_id)
            if key_lock is None:
                key_lock = self._locks[external_id] = _KeyLock()
            key_lock.holders += 1
        try:
            with key_lock.lock:
                yield
        finally:
            with self._locks_lock:
                key_lock.holders -= 1
                if key_lock.holders == 0:
                    self._locks.pop(external_id, None)

    def lookup(self, external_id: str) -> Optional[ArtifactRecord]:
        """Stored record with a storage URL that is valid at read time."""
        record = self.db.get_artifact(external_id)
        if record is None:
            return None
        return self._with_current_url(record)

    def _with_current_url(self, record: ArtifactRecord) -> ArtifactRecord:
        # Presigned URLs expire; the persisted one is only a fallback
        try:
            url = self.objects.get_file_url(record.storage_key)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not build URL for {record.storage_key}: {e}")
            return record
        if not url or url == record.storage_url:
            return record
        return replace(record, storage_url=url)

    def persist(self, external_id: str, metadata: MediaRequest, remote_link: str,
                source: str, deadline: Optional[Deadline] = None) -> PersistResult:
        """
        Download `remote_link` and store it as the artifact for `external_id`.

        An existing record is returned untouched without any download. On
        download or upload failure nothing is recorded and the caller can
        still serve `remote_link` directly.
        """
        with self._locked(external_id):
            existing = self.lookup(external_id)
            if existing is not None:
                logger.info(f"Artifact for {external_id} already stored, skipping persist")
                return PersistResult(success=True, record=existing, created=False)

            key = generate_storage_key(external_id, metadata.safe_artist, metadata.safe_title)
            try:
                size = self._transfer(remote_link, key, deadline)
            except ConversionError as e:
                logger.error(f"Failed to store artifact for {external_id}: {e.message}")
                return PersistResult(success=False, error=e.message)

            record = ArtifactRecord(
                external_id=external_id,
                title=metadata.safe_title,
                artist=metadata.safe_artist,
                album=metadata.album,
                duration=metadata.duration,
                cover_url=metadata.thumbnail_url,
                storage_key=key,
                storage_url=self.objects.get_file_url(key),
                source=source,
                size_bytes=size,
                content_type=AUDIO_CONTENT_TYPE,
            )
            try:
                stored, created = self.db.insert_artifact(record)
            except sqlite3.Error as e:
                logger.error(f"Failed to record artifact for {external_id}: {e}")
                return PersistResult(success=False, error=f"metadata write failed: {e}")
            if created:
                logger.info(f"Stored artifact {key} ({size} bytes) from {source}")
            else:
                logger.info(f"Artifact for {external_id} was stored concurrently, using existing record")
            return PersistResult(success=True, record=self._with_current_url(stored), created=created)

    def refresh(self, record: ArtifactRecord, remote_link: str,
                deadline: Optional[Deadline] = None) -> PersistResult:
        """Re-upload the object behind an existing record whose object went missing."""
        with self._locked(record.external_id):
            try:
                size = self._transfer(remote_link, record.storage_key, deadline)
            except ConversionError as e:
                logger.error(f"Failed to restore object {record.storage_key}: {e.message}")
                return PersistResult(success=False, record=record, error=e.message)
            logger.info(f"Restored object {record.storage_key} ({size} bytes)")
            return PersistResult(success=True, record=record, created=False)

    def open(self, record: ArtifactRecord) -> Optional[StoredObject]:
        stored = self.objects.open(record.storage_key, chunk_size=self._chunk_size)
        if stored is None:
            logger.warning(f"Stored object {record.storage_key} for {record.external_id} is not readable")
        return stored

    def delete(self, external_id: str) -> bool:
        """Remove both the object and the record. Returns False if nothing was stored."""
        with self._locked(external_id):
            record = self.lookup(external_id)
            if record is None:
                return False
            if not self.objects.delete_file(record.storage_key):
                raise StorageError(f"could not delete object {record.storage_key}")
            self.db.delete_artifact(external_id)
            logger.info(f"Deleted artifact {record.storage_key}")
            return True

    def _transfer(self, remote_link: str, key: str, deadline: Optional[Deadline]) -> int:
        """Download fully into memory, then upload. Returns the size in bytes."""
        data = self._download(remote_link, deadline or Deadline.never())
        if not self.objects.upload_bytes(data, key, AUDIO_CONTENT_TYPE,
                                         metadata={"source-link": remote_link[:512]}):
            raise StorageError(f"upload of {key} failed")
        return len(data)

    def _download(self, url: str, deadline: Deadline) -> bytes:
        try:
            with self._session.get(url, stream=True,
                                   timeout=deadline.timeout(self._download_timeout)) as response:
                if not response.ok:
                    raise StorageError(
                        f"Failed to download MP3: {response.status_code} {response.reason}"
                    )
                length = response.headers.get("Content-Length")
                if length and length.isdigit() and int(length) > self._max_bytes:
                    raise StorageError(f"remote file too large ({length} bytes)")

                buffer = bytearray()
                for chunk in response.iter_content(chunk_size=self._chunk_size):
                    buffer.extend(chunk)
                    if len(buffer) > self._max_bytes:
                        raise StorageError(f"remote file exceeds {self._max_bytes} bytes")
        except requests.RequestException as e:
            raise StorageError(f"download failed: {e}") from e

        if not buffer:
            raise StorageError("downloaded file is empty")
        return bytes(buffer)
