"""
Streaming gateway: serve audio for a media id from the artifact cache,
converting and caching it on a miss.

Flow per request:
    cache hit  -> stream the stored object
    cache miss -> run the fallback cascade (once per id at a time), then
                  persist and stream, or redirect to the provider link
    failure    -> structured error, never an empty audio body
"""

import logging
import re
import threading
import urllib.parse
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from conversion.service import ConversionOutcome, FallbackOrchestrator, TerminalFailure
from shared.constants import (
    DEFAULT_PERSIST_WORKERS,
    DEFAULT_REQUEST_DEADLINE,
    MEDIA_ID_PATTERN,
    STREAM_CACHE_CONTROL,
)
from shared.deadline import Deadline
from shared.errors import DeadlineExceeded, FailureReason
from shared.models import ArtifactRecord, MediaRequest
from storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

_MEDIA_ID_RE = re.compile(rf"^{MEDIA_ID_PATTERN}$")

ERROR_STATUS = {
    FailureReason.INVALID_MEDIA_ID: 400,
    FailureReason.ALL_PROVIDERS_FAILED: 502,
    FailureReason.STORAGE_ERROR: 502,
    FailureReason.DEADLINE_EXCEEDED: 504,
    FailureReason.INTERNAL_ERROR: 500,
}


def is_valid_media_id(media_id: str) -> bool:
    return bool(media_id) and bool(_MEDIA_ID_RE.match(media_id))


@dataclass
class StreamResponse:
    body: Iterator[bytes]
    headers: Dict[str, str]
    status: int = 200
    close: Optional[Callable[[], None]] = None


@dataclass
class RedirectResponse:
    location: str
    status: int = 302


@dataclass
class ErrorResponse:
    code: str
    message: str
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def status(self) -> int:
        return ERROR_STATUS.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": {"code": self.code, "message": self.message, "attempts": self.attempts},
        }

    @classmethod
    def from_failure(cls, failure: TerminalFailure) -> 'ErrorResponse':
        return cls(failure.reason, failure.message, [a.to_dict() for a in failure.attempts])


GatewayResponse = Union[StreamResponse, RedirectResponse, ErrorResponse]


@dataclass
class _Resolution:
    """Outcome of a conversion flight; shareable between waiting callers."""
    record: Optional[ArtifactRecord] = None
    link: Optional[str] = None
    error: Optional[ErrorResponse] = None


class _Call:
    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None


class SingleFlight:
    """Collapses concurrent calls for the same key into one execution."""

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[str, _Call] = {}

    def do(self, key: str, fn: Callable[[], Any], timeout: Optional[float] = None) -> Any:
        """
        Run `fn` for `key`, or wait for the call already running for it.

        A waiting caller gives up after `timeout` seconds with DeadlineExceeded;
        the running call is unaffected.
        """
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            if not call.done.wait(timeout):
                raise DeadlineExceeded(f"gave up waiting for in-flight conversion of {key}")
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()
        return call.result

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)


class StreamingGateway:
    """Serves audio for media ids, converting and caching on first request."""

    def __init__(self, artifact_store: ArtifactStore, orchestrator: FallbackOrchestrator,
                 redirect_first: bool = True,
                 persist_workers: int = DEFAULT_PERSIST_WORKERS,
                 request_deadline: float = DEFAULT_REQUEST_DEADLINE):
        self.store = artifact_store
        self.orchestrator = orchestrator
        self.redirect_first = redirect_first
        self.request_deadline = request_deadline
        self._flight = SingleFlight()
        self._executor = ThreadPoolExecutor(max_workers=max(1, persist_workers),
                                            thread_name_prefix="persist")
        self._pending: Dict[str, Future] = {}
        self._pending_lock = threading.Lock()

    def handle(self, request: MediaRequest, deadline: Optional[Deadline] = None) -> GatewayResponse:
        if not is_valid_media_id(request.media_id):
            return ErrorResponse(FailureReason.INVALID_MEDIA_ID, "Invalid media id")
        deadline = deadline or Deadline(self.request_deadline)
        try:
            return self._serve(request, deadline)
        except DeadlineExceeded as e:
            logger.warning(f"Request for {request.media_id} ran out of time: {e.message}")
            return ErrorResponse(FailureReason.DEADLINE_EXCEEDED, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error serving {request.media_id}")
            return ErrorResponse(FailureReason.INTERNAL_ERROR, f"Internal error: {e}")

    def _serve(self, request: MediaRequest, deadline: Deadline) -> GatewayResponse:
        record = self.store.lookup(request.media_id)
        if record is not None:
            response = self._stream(record)
            if response is not None:
                logger.info(f"Serving cached artifact for {request.media_id}")
                return response
            logger.warning(f"Cached object for {request.media_id} is unreadable, regenerating")

        resolution = self._flight.do(
            request.media_id, lambda: self._resolve(request, deadline, record),
            timeout=deadline.remaining(),
        )
        return self._respond(resolution)

    def _respond(self, resolution: _Resolution) -> GatewayResponse:
        if resolution.error is not None:
            return resolution.error
        if resolution.record is not None:
            response = self._stream(resolution.record)
            if response is not None:
                return response
        if resolution.link:
            return RedirectResponse(resolution.link)
        return ErrorResponse(FailureReason.STORAGE_ERROR, "Stored audio is not readable")

    def _resolve(self, request: MediaRequest, deadline: Deadline,
                 broken: Optional[ArtifactRecord]) -> _Resolution:
        """Runs once per media id at a time; concurrent callers share the result."""
        current = self.store.lookup(request.media_id)
        if current is not None:
            if broken is None:
                return _Resolution(record=current)
            # Healed by an earlier flight only if the object opens now
            readable = self.store.open(current)
            if readable is not None:
                readable.release()
                return _Resolution(record=current)
            broken = current

        outcome = self.orchestrator.convert(request, deadline)
        if isinstance(outcome, TerminalFailure):
            logger.error(f"Conversion failed for {request.media_id}: {outcome.reason}")
            return _Resolution(error=ErrorResponse.from_failure(outcome))

        link = outcome.result.result_link
        if broken is not None:
            healed = self.store.refresh(broken, link, deadline)
            return _Resolution(record=broken if healed.success else None, link=link)

        if outcome.result.ready_to_play and self.redirect_first:
            self._persist_in_background(request, outcome)
            return _Resolution(link=link)

        persisted = self.store.persist(request.media_id, request, link, outcome.strategy_name, deadline)
        if not persisted.success:
            logger.warning(f"Storage failed for {request.media_id}, redirecting to provider link")
        return _Resolution(record=persisted.record if persisted.success else None, link=link)

    def _persist_in_background(self, request: MediaRequest, outcome: ConversionOutcome) -> None:
        with self._pending_lock:
            if request.media_id in self._pending:
                return
            future = self._executor.submit(
                self.store.persist, request.media_id, request,
                outcome.result.result_link, outcome.strategy_name,
            )
            self._pending[request.media_id] = future
        future.add_done_callback(lambda f, media_id=request.media_id: self._persist_done(media_id, f))

    def _persist_done(self, media_id: str, future: Future) -> None:
        with self._pending_lock:
            self._pending.pop(media_id, None)
        error = future.exception()
        if error is not None:
            logger.error(f"Background persist for {media_id} raised: {error}")
            return
        result = future.result()
        if not result.success:
            logger.warning(f"Background persist for {media_id} failed: {result.error}")

    def _stream(self, record: ArtifactRecord) -> Optional[StreamResponse]:
        stored = self.store.open(record)
        if stored is None:
            return None
        headers = {
            "Content-Type": stored.content_type if stored.content_type.startswith("audio/") else record.content_type,
            "Cache-Control": STREAM_CACHE_CONTROL,
            "Content-Disposition": (
                f'inline; filename="{urllib.parse.quote(record.title or record.external_id, safe="")}.mp3"'
            ),
            "Accept-Ranges": "none",
        }
        length = stored.content_length if stored.content_length is not None else record.size_bytes
        if length is not None:
            headers["Content-Length"] = str(length)
        return StreamResponse(body=stored.body, headers=headers, close=stored.close)

    def wait_for_background(self, timeout: Optional[float] = None) -> None:
        """Block until queued background persists finish."""
        with self._pending_lock:
            futures = list(self._pending.values())
        for future in futures:
            future.exception(timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
