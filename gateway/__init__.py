from .streaming import (
    ErrorResponse,
    RedirectResponse,
    SingleFlight,
    StreamResponse,
    StreamingGateway,
)
from .bootstrap import Services, build_services

__all__ = [
    "ErrorResponse",
    "RedirectResponse",
    "SingleFlight",
    "StreamResponse",
    "StreamingGateway",
    "Services",
    "build_services",
]
