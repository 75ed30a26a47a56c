"""Converter registry and the capability cache derived from it."""

from docbridge.registry.cache import CACHE_VERSION, CapabilityCache, rank
from docbridge.registry.registry import ConverterRegistry, RegistryEntry

__all__ = [
    "CACHE_VERSION",
    "CapabilityCache",
    "ConverterRegistry",
    "RegistryEntry",
    "rank",
]
