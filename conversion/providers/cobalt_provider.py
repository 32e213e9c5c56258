"""Cobalt provider: unrestricted last resort returning a directly playable link."""

import logging
from typing import Optional

import requests

from shared.constants import (
    COBALT_API_URL,
    DEFAULT_PROVIDER_TIMEOUT,
    SOURCE_URL_TEMPLATE,
    STRATEGY_COBALT,
)
from shared.deadline import Deadline
from shared.errors import ConversionError, ProviderError
from shared.models import ConversionResult, MediaRequest
from .base import AdapterOutcome, ConversionFailure, ConversionSuccess, ProviderAdapter, request_json

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {"success", "stream", "redirect", "tunnel"}


class CobaltProvider(ProviderAdapter):
    name = STRATEGY_COBALT

    def __init__(self, api_url: str = COBALT_API_URL, session: Optional[requests.Session] = None,
                 source_url_template: str = SOURCE_URL_TEMPLATE,
                 timeout: float = DEFAULT_PROVIDER_TIMEOUT):
        self._api_url = api_url
        self._session = session or requests.Session()
        self._source_url_template = source_url_template
        self._timeout = timeout

    @property
    def is_available(self) -> bool:
        return bool(self._api_url)

    def invoke(self, request: MediaRequest, deadline: Optional[Deadline] = None) -> AdapterOutcome:
        deadline = deadline or Deadline.never()
        payload = {
            "url": self._source_url_template.format(media_id=request.media_id),
            "aFormat": "mp3",
            "aQuality": "320",
            "isAudioOnly": True,
            "disableMetadata": False,
        }
        try:
            data = request_json(
                self._session, "POST", self._api_url,
                timeout=deadline.timeout(self._timeout),
                provider=self.name,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                json=payload,
            )
            status = data.get("status")
            if status not in SUCCESS_STATUSES or not data.get("url"):
                raise ProviderError(
                    data.get("text") or f"unexpected status '{status}'", provider=self.name
                )
        except ConversionError as e:
            logger.warning(f"Cobalt conversion failed: {e.message}")
            return ConversionFailure.from_error(e, self.name)
        except Exception as e:
            logger.exception("Cobalt: unexpected error")
            return ConversionFailure.from_error(ProviderError(str(e) or type(e).__name__), self.name)

        logger.info("Cobalt conversion successful")
        return ConversionSuccess(ConversionResult(
            result_link=data["url"],
            title=request.safe_title,
            filename=data.get("filename"),
            ready_to_play=True,
            provider=self.name,
        ))
