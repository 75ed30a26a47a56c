"""docbridge - converter registry, weighted fallback and multi-hop document conversion."""

from docbridge.config import DocbridgeConfig, load_config
from docbridge.converter import (
    CapabilityDescriptor,
    ConversionFailure,
    ConversionResult,
    Converter,
    DocbridgeError,
    ExternalConverter,
    InvalidInput,
    PipelineStepFailure,
    QualityMode,
    UnsupportedConversion,
)
from docbridge.pipeline import ConversionService, PipelineResolver, WeightedFallbackExecutor
from docbridge.registry import CapabilityCache, ConverterRegistry

__version__ = "0.1.0"

__all__ = [
    "CapabilityCache",
    "CapabilityDescriptor",
    "ConversionFailure",
    "ConversionResult",
    "ConversionService",
    "Converter",
    "ConverterRegistry",
    "DocbridgeConfig",
    "DocbridgeError",
    "ExternalConverter",
    "InvalidInput",
    "PipelineResolver",
    "PipelineStepFailure",
    "QualityMode",
    "UnsupportedConversion",
    "WeightedFallbackExecutor",
    "load_config",
]
