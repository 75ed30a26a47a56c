from .loader import load_config, resolve_converter_path
from .models import (
    CacheConfig,
    ConversionConfig,
    DocbridgeConfig,
    ExternalConverterConfig,
    NegotiationConfig,
    PipelineConfig,
)

__all__ = [
    "CacheConfig",
    "ConversionConfig",
    "DocbridgeConfig",
    "ExternalConverterConfig",
    "NegotiationConfig",
    "PipelineConfig",
    "load_config",
    "resolve_converter_path",
]
