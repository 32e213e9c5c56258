"""Abstract conversion provider interface and the result variants it returns."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import requests

from shared.deadline import Deadline
from shared.errors import ConversionError, ProviderError
from shared.models import ConversionResult, MediaRequest


@dataclass
class ConversionSuccess:
    result: ConversionResult
    ok: bool = True


@dataclass
class ConversionFailure:
    """An expected, recoverable failure of one provider attempt."""
    reason: str
    message: str
    provider: Optional[str] = None
    ok: bool = False

    @classmethod
    def from_error(cls, error: ConversionError, provider: Optional[str] = None) -> 'ConversionFailure':
        return cls(reason=error.reason, message=error.message, provider=error.provider or provider)


AdapterOutcome = Union[ConversionSuccess, ConversionFailure]


class ProviderAdapter(ABC):
    """Interface for conversion providers (RapidAPI pool, CloudConvert, Cobalt, ...)."""

    name: str = "provider"

    @abstractmethod
    def invoke(self, request: MediaRequest, deadline: Optional[Deadline] = None) -> AdapterOutcome:
        """Convert the media item. Expected failures are returned, not raised."""
        pass

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider is configured and usable."""
        pass


def first_present(data: Dict[str, Any], *names: str) -> Any:
    """Value of the first field in `names` that is present and truthy."""
    for name in names:
        value = data.get(name)
        if value not in (None, "", 0):
            return value
    return None


def to_int(value: Any) -> Optional[int]:
    try:
        return int(float(value)) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def to_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def request_json(session: requests.Session, method: str, url: str, *, timeout: float,
                 provider: str, **kwargs: Any) -> Dict[str, Any]:
    """
    Send a request and decode a JSON object body.

    Raises:
        ProviderError: on transport errors, non-2xx status or a non-object body
    """
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as e:
        raise ProviderError(f"request failed: {e}", provider=provider) from e

    if not response.ok:
        raise ProviderError(
            f"API request failed: {response.status_code} {response.reason}",
            provider=provider,
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError("response is not valid JSON", provider=provider) from e
    if not isinstance(data, dict):
        raise ProviderError("unexpected response shape", provider=provider)
    return data
