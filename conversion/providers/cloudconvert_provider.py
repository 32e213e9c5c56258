"""CloudConvert job-based provider: submit an import/convert/export job and poll it."""

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from shared.constants import (
    CLOUDCONVERT_API_BASE,
    CLOUDCONVERT_AUDIO_BITRATE,
    DEFAULT_JOB_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PROVIDER_TIMEOUT,
    SOURCE_URL_TEMPLATE,
    STRATEGY_CLOUDCONVERT_PRODUCTION,
)
from shared.deadline import Deadline
from shared.errors import ConversionError, JobTimeout, ProviderError, ProviderNotConfigured
from shared.models import ConversionJob, ConversionResult, JobStatus, MediaRequest
from .base import AdapterOutcome, ConversionFailure, ConversionSuccess, ProviderAdapter, request_json

logger = logging.getLogger(__name__)

# CloudConvert job states mapped onto ours
_STATUS_MAP = {
    "waiting": JobStatus.QUEUED,
    "processing": JobStatus.PROCESSING,
    "finished": JobStatus.FINISHED,
    "error": JobStatus.ERROR,
}


class CloudConvertProvider(ProviderAdapter):
    """
    Converts by letting CloudConvert import the source URL.

    One instance per API base; production and sandbox are separate strategies
    with separate keys.
    """

    def __init__(self, api_key: Optional[str], name: str = STRATEGY_CLOUDCONVERT_PRODUCTION,
                 api_base: str = CLOUDCONVERT_API_BASE,
                 session: Optional[requests.Session] = None,
                 source_url_template: str = SOURCE_URL_TEMPLATE,
                 timeout: float = DEFAULT_PROVIDER_TIMEOUT,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 job_timeout: float = DEFAULT_JOB_TIMEOUT,
                 bitrate: int = CLOUDCONVERT_AUDIO_BITRATE,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self._api_key = (api_key or "").strip()
        self.name = name
        self._api_base = api_base.rstrip("/")
        self._session = session or requests.Session()
        self._source_url_template = source_url_template
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._job_timeout = job_timeout
        self._bitrate = bitrate
        self._clock = clock
        self._sleep = sleep

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _job_payload(self, request: MediaRequest) -> Dict[str, Any]:
        return {
            "tasks": {
                "import-audio": {
                    "operation": "import/url",
                    "url": self._source_url_template.format(media_id=request.media_id),
                },
                "convert-audio": {
                    "operation": "convert",
                    "input": "import-audio",
                    "output_format": "mp3",
                    "audio_codec": "mp3",
                    "audio_bitrate": self._bitrate,
                },
                "export-audio": {
                    "operation": "export/url",
                    "input": "convert-audio",
                },
            },
            "tag": "audio-conversion",
        }

    def submit(self, request: MediaRequest, deadline: Optional[Deadline] = None) -> str:
        """Create a conversion job. Returns the job id."""
        if not self.is_available:
            raise ProviderNotConfigured(f"{self.name} API key not configured", provider=self.name)
        deadline = deadline or Deadline.never()
        data = request_json(
            self._session, "POST", f"{self._api_base}/v2/jobs",
            timeout=deadline.timeout(self._timeout),
            provider=self.name,
            headers=self._headers(),
            json=self._job_payload(request),
        )
        job_id = (data.get("data") or {}).get("id")
        if not job_id:
            raise ProviderError("job creation returned no id", provider=self.name)
        logger.info(f"{self.name} job created: {job_id}")
        return job_id

    def poll(self, job_id: str, deadline: Optional[Deadline] = None) -> ConversionJob:
        """Fetch the current state of a job."""
        deadline = deadline or Deadline.never()
        data = request_json(
            self._session, "GET", f"{self._api_base}/v2/jobs/{job_id}",
            timeout=deadline.timeout(self._timeout),
            provider=self.name,
            headers=self._headers(),
        )
        job_data = data.get("data") or {}
        status = _STATUS_MAP.get(job_data.get("status"), JobStatus.PROCESSING)
        job = ConversionJob(id=job_id, status=status)

        if status == JobStatus.FINISHED:
            for task in job_data.get("tasks") or []:
                if task.get("operation") != "export/url":
                    continue
                files = (task.get("result") or {}).get("files") or []
                if files and files[0].get("url"):
                    job.result_link = files[0]["url"]
                    job.filename = files[0].get("filename")
                    break
        elif status == JobStatus.ERROR:
            job.message = job_data.get("message") or "job failed"
        return job

    def wait(self, job_id: str, deadline: Optional[Deadline] = None) -> ConversionJob:
        """
        Poll until the job is terminal.

        Raises:
            JobTimeout: the job did not finish within the job timeout
            DeadlineExceeded: the request deadline ran out first
        """
        deadline = deadline or Deadline.never()
        bound = self._job_timeout
        remaining = deadline.remaining()
        if remaining is not None:
            bound = min(bound, remaining)

        started = self._clock()
        while True:
            job = self.poll(job_id, deadline)
            logger.debug(f"{self.name} job {job_id} status: {job.status}")
            if job.is_terminal:
                return job

            elapsed = self._clock() - started
            if elapsed + self._poll_interval > bound:
                raise JobTimeout(
                    f"job {job_id} not finished after {elapsed:.0f}s", provider=self.name
                )
            self._sleep(self._poll_interval)

    def invoke(self, request: MediaRequest, deadline: Optional[Deadline] = None) -> AdapterOutcome:
        try:
            job_id = self.submit(request, deadline)
            job = self.wait(job_id, deadline)
            if job.status == JobStatus.ERROR:
                raise ProviderError(job.message or "job failed", provider=self.name)
            if not job.result_link:
                raise ProviderError(f"job {job_id} finished without an export url", provider=self.name)
        except ConversionError as e:
            logger.warning(f"{self.name} conversion failed: {e.message}")
            return ConversionFailure.from_error(e, self.name)
        except Exception as e:
            logger.exception(f"{self.name}: unexpected error")
            return ConversionFailure.from_error(ProviderError(str(e) or type(e).__name__), self.name)

        logger.info(f"{self.name} job {job_id} completed")
        return ConversionSuccess(ConversionResult(
            result_link=job.result_link,
            title=request.safe_title,
            filename=job.filename,
            provider=self.name,
        ))
