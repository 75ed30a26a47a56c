"""Weighted fallback across the ranked candidates of one direct pair."""

from __future__ import annotations

import logging
from pathlib import Path

from docbridge.converter.errors import (
    ConversionCancelled,
    ConversionFailure,
    ConverterError,
    UnsupportedConversion,
)
from docbridge.converter.models import CacheEntry, ConversionOptions, QualityMode, StepResult
from docbridge.registry.cache import CapabilityCache
from docbridge.registry.registry import ConverterRegistry

logger = logging.getLogger(__name__)


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove partial output %s", path, exc_info=True)


class WeightedFallbackExecutor:
    """Tries candidates for a pair in ranked order until one succeeds.

    A candidate that fails is removed from every mode bucket of that exact
    pair in the shared cache, so later requests skip it; it stays eligible
    for other pairs.
    """

    def __init__(self, registry: ConverterRegistry, cache: CapabilityCache) -> None:
        self._registry = registry
        self._cache = cache

    @property
    def cache(self) -> CapabilityCache:
        return self._cache

    def find_candidates(
        self,
        from_format: str,
        to_format: str,
        mode: QualityMode,
        via: str | None = None,
    ) -> list[CacheEntry]:
        """Ranked candidates, restricted to ``via`` when a converter is forced."""
        if via is not None:
            found = self._forced(from_format, to_format, mode, via)
            if not found:
                raise UnsupportedConversion(
                    from_format, to_format, f"converter {via} cannot serve this pair"
                )
            return found

        found = self._cache.find_candidates(from_format, to_format, mode)
        if not found:
            raise UnsupportedConversion(from_format, to_format, "no converter for this pair")
        return found

    def _forced(
        self, from_format: str, to_format: str, mode: QualityMode, via: str
    ) -> list[CacheEntry]:
        for m in (mode, QualityMode.normal):
            found = [
                c for c in self._cache.candidates(from_format, to_format, m)
                if c.converter_id == via
            ]
            if found:
                return found
        return []

    def execute(
        self,
        from_format: str,
        to_format: str,
        from_path: Path,
        to_path: Path,
        options: ConversionOptions,
    ) -> StepResult:
        candidates = self.find_candidates(from_format, to_format, options.mode, options.via)
        logger.debug(
            "Found %d candidate(s) for %s -> %s (%s)",
            len(candidates), from_format, to_format, options.mode.value,
        )

        last_error: Exception | None = None
        attempts = 0
        for candidate in candidates:
            if options.cancelled:
                raise ConversionCancelled(from_format, to_format)

            cid = candidate.converter_id
            # Another request may have excluded it since we took the snapshot
            if not self._cache.contains(from_format, to_format, cid):
                continue

            converter = self._registry.get(cid)
            if converter is None:
                logger.warning("Converter %s is in the cache but not registered", cid)
                self._cache.exclude_globally(cid)
                continue

            attempts += 1
            logger.info(
                "Converting %s -> %s with %s (attempt %d/%d)",
                from_format, to_format, cid, attempts, len(candidates),
            )
            try:
                converter.convert(from_path, to_path, from_format, to_format, options)
            except ConverterError as e:
                last_error = e
            except ConversionCancelled:
                _remove_partial(to_path)
                raise
            except Exception as e:
                # In-process converters may raise anything; treat like a failed exit
                last_error = ConverterError(cid, "convert", repr(e))
                last_error.__cause__ = e
            except BaseException:
                _remove_partial(to_path)
                raise
            else:
                logger.info("Converted %s -> %s with %s", from_format, to_format, cid)
                return StepResult(
                    from_format=from_format,
                    to_format=to_format,
                    converter_id=cid,
                    attempts=attempts,
                )

            logger.warning("Converter %s failed, trying next candidate: %s", cid, last_error)
            self._cache.exclude_for_pair(from_format, to_format, cid)
            _remove_partial(to_path)

        logger.error(
            "All converters failed for %s -> %s (%d tried)", from_format, to_format, attempts
        )
        if attempts == 0:
            raise UnsupportedConversion(
                from_format, to_format, "every candidate was excluded"
            )
        raise ConversionFailure(from_format, to_format, last_error, attempts)
