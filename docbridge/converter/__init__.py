"""Converter interface, capability models and the two adapter kinds."""

from docbridge.converter.base import Converter
from docbridge.converter.builtin import (
    BUILTIN_CONVERTERS,
    MarkItDownConverter,
    PlainTextConverter,
    create_builtin,
)
from docbridge.converter.errors import (
    CacheError,
    ConversionCancelled,
    ConversionFailure,
    ConverterError,
    DocbridgeError,
    InvalidInput,
    NegotiationFailure,
    PipelineStepFailure,
    UnsupportedConversion,
)
from docbridge.converter.external import ExternalConverter
from docbridge.converter.models import (
    CacheEntry,
    CapabilityDescriptor,
    ConversionOptions,
    ConversionResult,
    PipelineStep,
    QualityMode,
    StepResult,
    detect_format,
    normalize_format,
    parse_mode,
)

__all__ = [
    "BUILTIN_CONVERTERS",
    "CacheEntry",
    "CacheError",
    "CapabilityDescriptor",
    "ConversionCancelled",
    "ConversionFailure",
    "ConversionOptions",
    "ConversionResult",
    "Converter",
    "ConverterError",
    "DocbridgeError",
    "ExternalConverter",
    "InvalidInput",
    "MarkItDownConverter",
    "NegotiationFailure",
    "PipelineStep",
    "PipelineStepFailure",
    "PlainTextConverter",
    "QualityMode",
    "StepResult",
    "UnsupportedConversion",
    "create_builtin",
    "detect_format",
    "normalize_format",
    "parse_mode",
]
