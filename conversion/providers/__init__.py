from .base import ProviderAdapter, ConversionSuccess, ConversionFailure
from .rapidapi_provider import RapidApiProvider, ResponseShape, SHAPES
from .cloudconvert_provider import CloudConvertProvider
from .cobalt_provider import CobaltProvider

__all__ = [
    "ProviderAdapter",
    "ConversionSuccess",
    "ConversionFailure",
    "RapidApiProvider",
    "ResponseShape",
    "SHAPES",
    "CloudConvertProvider",
    "CobaltProvider",
]
