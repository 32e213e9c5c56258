"""RapidAPI converter provider backed by the quota pool."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from shared.constants import DEFAULT_PROVIDER_TIMEOUT, DEFAULT_PROVIDER_TITLE, STRATEGY_RAPIDAPI
from shared.deadline import Deadline
from shared.errors import ConversionError, FailureReason, ProviderError, QuotaExhausted
from shared.models import ConversionResult, MediaRequest, PoolEntry
from ..quota_pool import QuotaPool
from .base import (
    AdapterOutcome,
    ConversionFailure,
    ConversionSuccess,
    ProviderAdapter,
    first_present,
    request_json,
    to_float,
    to_int,
)

logger = logging.getLogger(__name__)


class ResponseShape:
    """Request layout and response field mapping of one converter endpoint."""

    name = ""
    link_fields: Tuple[str, ...] = ("link",)
    title_fields: Tuple[str, ...] = ("title",)
    size_fields: Tuple[str, ...] = ("filesize",)
    duration_fields: Tuple[str, ...] = ("duration",)

    def build_request(self, entry: PoolEntry, media_id: str) -> Tuple[str, Dict[str, Any]]:
        """Return (url, extra request kwargs)."""
        return f"{entry.endpoint}?id={media_id}", {}

    def check(self, data: Dict[str, Any]) -> None:
        """Raise ProviderError if the body reports a failure."""
        pass

    def normalize(self, data: Dict[str, Any], provider: str) -> ConversionResult:
        self.check(data)
        link = first_present(data, *self.link_fields)
        if not link:
            raise ProviderError("response carries no download link", provider=provider)
        return ConversionResult(
            result_link=link,
            title=first_present(data, *self.title_fields) or DEFAULT_PROVIDER_TITLE,
            size_bytes=to_int(first_present(data, *self.size_fields)),
            duration_seconds=to_float(first_present(data, *self.duration_fields)),
            provider=provider,
        )


class Mp36Shape(ResponseShape):
    name = "mp36"

    def check(self, data: Dict[str, Any]) -> None:
        status = (data.get("status") or "").lower()
        if status in ("fail", "processing"):
            raise ProviderError(data.get("msg") or f"conversion status: {status}")


class Mp3V2025Shape(ResponseShape):
    name = "mp3_2025"
    link_fields = ("linkDownload", "linkStream", "url", "link", "download_url")
    title_fields = ("title", "video_title")
    size_fields = ("filesize", "size", "file_size")
    duration_fields = ("lengthSeconds", "duration", "video_duration")

    def build_request(self, entry: PoolEntry, media_id: str) -> Tuple[str, Dict[str, Any]]:
        return entry.endpoint, {"json": {"id": media_id}}


class Mp315Shape(ResponseShape):
    name = "mp315"
    link_fields = ("url", "link", "download_url", "mp3_url")
    title_fields = ("title", "filename", "video_title")
    size_fields = ("filesize", "size", "file_size")
    duration_fields = ("duration", "video_duration")

    def build_request(self, entry: PoolEntry, media_id: str) -> Tuple[str, Dict[str, Any]]:
        return f"{entry.endpoint}/{media_id}", {}


SHAPES: Dict[str, ResponseShape] = {
    shape.name: shape for shape in (Mp36Shape(), Mp3V2025Shape(), Mp315Shape())
}


class RapidApiProvider(ProviderAdapter):
    """
    Synchronous converter: one HTTP call per attempt returns the audio link.

    Entries come from the quota pool; every attempt is reported back to the
    pool exactly once so usage and failure bookkeeping stay in step.
    """

    name = STRATEGY_RAPIDAPI

    def __init__(self, pool: QuotaPool, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_PROVIDER_TIMEOUT, max_attempts: int = 1):
        self._pool = pool
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)

    @property
    def is_available(self) -> bool:
        return bool(self._pool.entries)

    def invoke(self, request: MediaRequest, deadline: Optional[Deadline] = None) -> AdapterOutcome:
        deadline = deadline or Deadline.never()
        tried: List[PoolEntry] = []
        last_failure: Optional[ConversionFailure] = None

        for _ in range(self._max_attempts):
            entry = self._pool.select_entry(exclude=tried)
            if entry is None:
                if last_failure is not None:
                    return last_failure
                if not self._pool.entries:
                    message = "No API keys configured. Please set RAPIDAPI_KEY environment variable."
                else:
                    message = "All API keys have exceeded their limits"
                return ConversionFailure.from_error(QuotaExhausted(message), self.name)

            tried.append(entry)
            try:
                result = self._attempt(entry, request, deadline)
            except ConversionError as e:
                logger.error(f"{entry.host}: {e.message}")
                last_failure = ConversionFailure.from_error(e, entry.host)
                if e.reason == FailureReason.DEADLINE_EXCEEDED:
                    break
                continue
            return ConversionSuccess(result)

        return last_failure

    def _attempt(self, entry: PoolEntry, request: MediaRequest, deadline: Deadline) -> ConversionResult:
        """One pool attempt; reports the outcome to the pool on every path."""
        success = False
        try:
            shape = SHAPES.get(entry.shape)
            if shape is None:
                raise ProviderError(f"unknown response shape '{entry.shape}'", provider=entry.host)

            url, extra = shape.build_request(entry, request.media_id)
            headers = {
                "x-rapidapi-key": entry.credential,
                "x-rapidapi-host": entry.host,
            }
            limit = "unlimited" if entry.is_unlimited else entry.max_requests
            logger.info(
                f"Using API: {entry.host} ({entry.requests_used + 1}/{limit}) "
                f"- Key {entry.key_index + 1}: {entry.masked_key}"
            )
            data = request_json(
                self._session, entry.method, url,
                timeout=deadline.timeout(self._timeout),
                provider=entry.host,
                headers=headers,
                **extra,
            )
            try:
                result = shape.normalize(data, entry.host)
            except ProviderError as e:
                e.provider = entry.host
                raise
            success = True
            return result
        except ConversionError:
            raise
        except Exception as e:
            logger.exception(f"{entry.host}: unexpected error")
            raise ProviderError(str(e) or type(e).__name__, provider=entry.host) from e
        finally:
            self._pool.record_outcome(entry, success)
