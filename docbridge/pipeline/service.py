"""Top-level conversion entry point: direct lookup, then pipeline, else fail."""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path

from docbridge.config.loader import resolve_converter_path
from docbridge.config.models import DocbridgeConfig
from docbridge.converter.builtin import BUILTIN_CONVERTERS, BUILTIN_PREFIX, create_builtin
from docbridge.converter.errors import CacheError, InvalidInput
from docbridge.converter.external import ExternalConverter
from docbridge.converter.models import (
    ConversionOptions,
    ConversionResult,
    QualityMode,
    detect_format,
    normalize_format,
    parse_mode,
)
from docbridge.pipeline.executor import PipelineExecutor
from docbridge.pipeline.fallback import WeightedFallbackExecutor
from docbridge.pipeline.resolver import PipelineResolver
from docbridge.registry.cache import CapabilityCache
from docbridge.registry.registry import ConverterRegistry

logger = logging.getLogger(__name__)


def build_registry(config: DocbridgeConfig) -> ConverterRegistry:
    """Register every configured external and builtin converter (not negotiated)."""
    registry = ConverterRegistry()
    for conv in config.converters:
        registry.register(
            ExternalConverter(
                resolve_converter_path(conv.path),
                control_timeout=config.negotiation.timeout,
                convert_timeout=config.conversion.timeout,
                describe_verb=conv.describe_verb,
            ),
            conv.weight,
        )
    for name, weight in sorted(config.builtins.items()):
        registry.register(create_builtin(name), weight)
    return registry


def _resolve_format(explicit: str | None, path: Path, role: str) -> str:
    if explicit:
        try:
            return normalize_format(explicit)
        except ValueError as e:
            raise InvalidInput(str(path), str(e)) from e
    detected = detect_format(path)
    if detected is None:
        raise InvalidInput(str(path), f"cannot detect {role} format, specify it explicitly")
    return detected


def _resolve_via(via: str, registry: ConverterRegistry) -> str:
    """Map a user-supplied converter reference onto a registered id.

    Accepts the exact id, a builtin short name (``plaintext``) or an
    unresolved helper path. Unknown references are returned unchanged.
    """
    if via in registry:
        return via
    if via in BUILTIN_CONVERTERS:
        return BUILTIN_PREFIX + via
    if not via.startswith(BUILTIN_PREFIX):
        return resolve_converter_path(via)
    return via


class ConversionService:
    """Wires registry, cache, fallback executor, resolver and pipeline executor.

    The cache is shared by every request handled by this service; failure
    exclusions recorded by one request are visible to the next.
    """

    def __init__(
        self,
        registry: ConverterRegistry,
        cache: CapabilityCache,
        config: DocbridgeConfig | None = None,
    ) -> None:
        self._config = config or DocbridgeConfig()
        self._registry = registry
        self._cache = cache
        self._fallback = WeightedFallbackExecutor(registry, cache)
        self._resolver = PipelineResolver(
            cache,
            preferred=self._config.pipeline.preferred_intermediates,
            lossy=self._config.pipeline.lossy_intermediates,
            max_hops=self._config.pipeline.max_hops,
        )
        self._pipeline = PipelineExecutor(self._fallback, temp_dir=self._config.pipeline.temp_dir)

    @property
    def registry(self) -> ConverterRegistry:
        return self._registry

    @property
    def cache(self) -> CapabilityCache:
        return self._cache

    @property
    def resolver(self) -> PipelineResolver:
        return self._resolver

    @classmethod
    def from_config(cls, config: DocbridgeConfig) -> ConversionService:
        """Load the persisted cache (pinging its converters) or negotiate afresh."""
        registry = build_registry(config)
        cache_path = Path(config.cache.file)
        workers = config.negotiation.max_workers

        cache: CapabilityCache | None = None
        if cache_path.is_file():
            try:
                cache = CapabilityCache.load(cache_path)
            except CacheError as e:
                logger.warning("Ignoring unusable capability cache: %s", e)

        if cache is not None:
            registry.check_availability(cache, max_workers=workers)
        else:
            logger.info("No capability cache at %s, negotiating with converters", cache_path)
            registry.initialize(max_workers=workers)
            cache = registry.build_cache()
            if config.cache.auto_rebuild:
                cache.save(cache_path)

        return cls(registry, cache, config)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def rebuild_cache(self, path: str | Path | None = None) -> CapabilityCache:
        """Renegotiate with every converter and persist a fresh cache.

        The live cache of this service is left untouched; use the returned
        cache (or a new service) for subsequent conversions.
        """
        self._registry.initialize(max_workers=self._config.negotiation.max_workers)
        cache = self._registry.build_cache()
        cache.save(path or self._config.cache.file)
        return cache

    def convert(
        self,
        input_path: str | Path,
        output_path: str | Path,
        from_format: str | None = None,
        to_format: str | None = None,
        mode: str | QualityMode | None = None,
        timeout: float | None = None,
        extra: dict[str, str] | None = None,
        cancel_event: threading.Event | None = None,
        via: str | None = None,
    ) -> ConversionResult:
        """Convert one file, forcing converter ``via`` on every hop when given."""
        src = Path(input_path)
        dst = Path(output_path)

        if not src.exists():
            raise InvalidInput(str(src), "file does not exist")
        if not src.is_file():
            raise InvalidInput(str(src), "not a regular file")
        if not os.access(src, os.R_OK):
            raise InvalidInput(str(src), "file is not readable")
        if src.resolve() == dst.resolve():
            raise InvalidInput(str(src), "output path is the input path")

        src_fmt = _resolve_format(from_format, src, "input")
        dst_fmt = _resolve_format(to_format, dst, "output")
        if src_fmt == dst_fmt:
            raise InvalidInput(str(src), f"source and target format are both {src_fmt}")

        try:
            quality = parse_mode(mode or self._config.conversion.default_mode)
        except ValueError as e:
            raise InvalidInput(str(src), str(e)) from e

        options = ConversionOptions(
            mode=quality,
            timeout=timeout or self._config.conversion.timeout,
            extra=dict(extra or {}),
            via=_resolve_via(via, self._registry) if via else None,
            cancel_event=cancel_event,
        )
        dst.parent.mkdir(parents=True, exist_ok=True)

        logger.info(
            "Starting conversion %s (%s) -> %s (%s), mode %s",
            src, src_fmt, dst, dst_fmt, quality.value,
        )
        started = time.monotonic()

        if options.via is None:
            direct = self._cache.has_pair(src_fmt, dst_fmt)
        else:
            logger.info("Restricting conversion to converter %s", options.via)
            direct = self._cache.contains(src_fmt, dst_fmt, options.via)

        if direct:
            steps = [self._fallback.execute(src_fmt, dst_fmt, src, dst, options)]
        else:
            logger.debug("No direct converter for %s -> %s, searching for a pipeline", src_fmt, dst_fmt)
            chain = self._resolver.resolve(src_fmt, dst_fmt, via=options.via)
            steps = self._pipeline.run(chain, src, dst, options)

        duration = time.monotonic() - started
        size = dst.stat().st_size if dst.exists() else 0
        logger.info("Conversion completed: %s (%d bytes) in %.2fs", dst, size, duration)

        return ConversionResult(
            input_path=str(src),
            output_path=str(dst),
            from_format=src_fmt,
            to_format=dst_fmt,
            mode=quality,
            steps=steps,
            duration_s=duration,
            output_size=size,
        )
