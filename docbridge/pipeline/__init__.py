"""Direct fallback execution, pipeline resolution and the conversion service."""

from docbridge.pipeline.executor import PipelineExecutor
from docbridge.pipeline.fallback import WeightedFallbackExecutor
from docbridge.pipeline.resolver import PipelineResolver
from docbridge.pipeline.service import ConversionService, build_registry

__all__ = [
    "ConversionService",
    "PipelineExecutor",
    "PipelineResolver",
    "WeightedFallbackExecutor",
    "build_registry",
]
