"""
Data models for the conversion pool, conversion results and stored artifacts.

This module defines the core data structures shared by the provider pool,
the fallback pipeline and the artifact cache.
"""

from dataclasses import dataclass, asdict, field
from typing import Dict, Optional, Any
from datetime import datetime, timezone
import hashlib

from shared.constants import UNKNOWN_TITLE, UNKNOWN_ARTIST


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def hash_credential(credential: str) -> str:
    """SHA-256 hex digest of a credential; the only form ever persisted."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class EndpointSpec:
    """
    A conversion endpoint reachable with any pool credential.

    Attributes:
        host: Provider host, also sent as the x-rapidapi-host header
        endpoint: Base URL of the endpoint
        method: HTTP method (GET or POST)
        shape: Name of the request/response shape handling this endpoint
        max_requests: Request cap per credential, None for unlimited
    """
    host: str
    endpoint: str
    method: str
    shape: str
    max_requests: Optional[int] = None

    @property
    def is_unlimited(self) -> bool:
        return self.max_requests is None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EndpointSpec':
        return cls(
            host=data["host"],
            endpoint=data["endpoint"],
            method=data.get("method", "GET").upper(),
            shape=data["shape"],
            max_requests=data.get("max_requests"),
        )


@dataclass
class PoolEntry:
    """
    One (credential, endpoint) pair of the quota pool.

    Attributes:
        credential: Secret API key (never persisted in clear)
        host: Endpoint host
        endpoint: Endpoint URL
        method: HTTP method
        shape: Response shape name
        requests_used: Successful requests counted against the cap
        max_requests: Cap, None when the endpoint is unlimited
        is_active: False once the cap is reached or the entry is disabled
        key_index: Position of the credential in configuration
        endpoint_index: Position of the endpoint in configuration
    """
    credential: str
    host: str
    endpoint: str
    method: str
    shape: str
    requests_used: int = 0
    max_requests: Optional[int] = None
    is_active: bool = True
    key_index: int = 0
    endpoint_index: int = 0

    @property
    def is_unlimited(self) -> bool:
        return self.max_requests is None

    @property
    def key_hash(self) -> str:
        return hash_credential(self.credential)

    @property
    def masked_key(self) -> str:
        return f"{self.credential[:8]}***"

    @property
    def remaining(self) -> Optional[int]:
        if self.is_unlimited:
            return None
        return max(0, self.max_requests - self.requests_used)

    @property
    def is_exhausted(self) -> bool:
        return not self.is_unlimited and self.requests_used >= self.max_requests

    @property
    def is_usable(self) -> bool:
        return self.is_active and not self.is_exhausted

    def to_status(self) -> Dict[str, Any]:
        """Public snapshot of the entry; excludes the credential."""
        return {
            "host": self.host,
            "endpoint": self.endpoint,
            "key_index": self.key_index,
            "endpoint_index": self.endpoint_index,
            "requests_used": self.requests_used,
            "max_requests": self.max_requests,
            "remaining": self.remaining,
            "is_active": self.is_active,
            "is_unlimited": self.is_unlimited,
        }


class JobStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    FINISHED = "finished"
    ERROR = "error"


@dataclass
class ConversionJob:
    """Transient provider-side job; lives only for one orchestration attempt."""
    id: str
    status: str = JobStatus.QUEUED
    result_link: Optional[str] = None
    filename: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.FINISHED, JobStatus.ERROR)


@dataclass
class ConversionResult:
    """
    Canonical output of every provider adapter.

    Attributes:
        result_link: URL where the converted audio can be fetched
        title: Title reported by the provider
        size_bytes: File size if reported
        duration_seconds: Duration if reported
        filename: Provider-side filename if reported
        ready_to_play: The link is directly playable and needs no further processing
        provider: Tag of the provider/endpoint that produced the result
    """
    result_link: str
    title: str
    size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None
    filename: Optional[str] = None
    ready_to_play: bool = False
    provider: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MediaRequest:
    """
    A stream request: the opaque media id plus descriptive labels.

    Labels are used for filenames and headers only, never as a cache key.
    """
    media_id: str
    title: str = ""
    artist: str = ""
    album: Optional[str] = None
    duration: Optional[int] = None
    thumbnail_url: Optional[str] = None

    @property
    def safe_title(self) -> str:
        return (self.title or "").strip() or UNKNOWN_TITLE

    @property
    def safe_artist(self) -> str:
        return (self.artist or "").strip() or UNKNOWN_ARTIST

    @classmethod
    def from_params(cls, media_id: str, params: Dict[str, Any]) -> 'MediaRequest':
        """Build from query-string style parameters, tolerating junk durations."""
        raw_duration = params.get("duration")
        try:
            duration = int(float(raw_duration)) if raw_duration not in (None, "") else None
        except (TypeError, ValueError):
            duration = None
        return cls(
            media_id=media_id,
            title=(params.get("title") or "").strip(),
            artist=(params.get("artist") or "").strip(),
            album=(params.get("album") or "").strip() or None,
            duration=duration,
            thumbnail_url=(params.get("thumbnail") or params.get("thumbnail_url") or "").strip() or None,
        )


@dataclass
class ArtifactRecord:
    """
    A converted, durably stored audio file and its metadata.

    Created at most once per external id and never mutated afterwards.
    """
    external_id: str
    title: str
    artist: str
    storage_key: str
    storage_url: str
    source: str
    album: Optional[str] = None
    duration: Optional[int] = None
    cover_url: Optional[str] = None
    size_bytes: Optional[int] = None
    content_type: str = "audio/mpeg"
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ArtifactRecord':
        """Create ArtifactRecord from a dict or DB row, filtering unknown keys."""
        import dataclasses
        field_names = {f.name for f in dataclasses.fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in field_names}
        return cls(**filtered_data)


@dataclass
class PersistResult:
    """Outcome of ArtifactStore.persist; success False means serve the remote link uncached."""
    success: bool
    record: Optional[ArtifactRecord] = None
    error: Optional[str] = None
    created: bool = False
