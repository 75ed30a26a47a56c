"""Capability cache: ranked converter candidates per (from, to, mode)."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

import yaml
from pydantic import ValidationError

from docbridge.converter.errors import CacheError
from docbridge.converter.models import ALL_MODES, CacheEntry, QualityMode, normalize_format

logger = logging.getLogger(__name__)

CACHE_VERSION = 1

BucketKey = tuple[str, str, QualityMode]


def rank(entries: Iterable[CacheEntry]) -> list[CacheEntry]:
    """Order candidates: weight descending, converter id ascending on ties."""
    return sorted(entries, key=lambda e: (-e.weight, e.converter_id))


class CapabilityCache:
    """Live, lockable view of which converters can handle which pair.

    Every bucket is kept in rank() order. At runtime the cache only ever
    loses entries (failure exclusion); capabilities are added solely by
    building it from a registry or loading a persisted snapshot. All
    read-then-mutate sequences run under one re-entrant lock so concurrent
    requests cannot lose each other's exclusions.
    """

    def __init__(self, buckets: dict[BucketKey, list[CacheEntry]] | None = None) -> None:
        self._lock = threading.RLock()
        self._buckets: dict[BucketKey, list[CacheEntry]] = {
            key: rank(entries) for key, entries in (buckets or {}).items() if entries
        }

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def candidates(self, from_format: str, to_format: str, mode: QualityMode) -> list[CacheEntry]:
        """Exact bucket contents (a copy), no mode fallback."""
        with self._lock:
            return list(self._buckets.get((from_format, to_format, mode), []))

    def find_candidates(
        self, from_format: str, to_format: str, mode: QualityMode
    ) -> list[CacheEntry]:
        """Bucket for the requested mode, degrading to ``normal`` when empty."""
        with self._lock:
            found = self.candidates(from_format, to_format, mode)
            if not found and mode != QualityMode.normal:
                found = self.candidates(from_format, to_format, QualityMode.normal)
                if found:
                    logger.debug(
                        "No converters for %s -> %s in %s mode, falling back to normal",
                        from_format, to_format, mode.value,
                    )
            return found

    def has_pair(self, from_format: str, to_format: str) -> bool:
        """True if any mode bucket for the pair is non-empty."""
        with self._lock:
            return any(self._buckets.get((from_format, to_format, m)) for m in ALL_MODES)

    def contains(self, from_format: str, to_format: str, converter_id: str) -> bool:
        with self._lock:
            return any(
                e.converter_id == converter_id
                for m in ALL_MODES
                for e in self._buckets.get((from_format, to_format, m), [])
            )

    def edges(
        self, mode: QualityMode = QualityMode.normal, converter_id: str | None = None
    ) -> dict[str, set[str]]:
        """Adjacency snapshot: source format -> target formats with a converter.

        With ``converter_id`` only the pairs that converter serves are included.
        """
        with self._lock:
            adjacency: dict[str, set[str]] = {}
            for (src, dst, m), entries in self._buckets.items():
                if m != mode:
                    continue
                if converter_id is not None:
                    entries = [e for e in entries if e.converter_id == converter_id]
                if entries:
                    adjacency.setdefault(src, set()).add(dst)
            return adjacency

    def formats(self) -> list[str]:
        with self._lock:
            found = set()
            for (src, dst, _), entries in self._buckets.items():
                if entries:
                    found.update((src, dst))
            return sorted(found)

    def converter_ids(self) -> set[str]:
        with self._lock:
            return {e.converter_id for entries in self._buckets.values() for e in entries}

    def conversion_count(self) -> int:
        """Number of non-empty (from, to, mode) buckets."""
        with self._lock:
            return sum(1 for entries in self._buckets.values() if entries)

    def matrix_formats(self) -> list[str]:
        """Formats that appear both as a source and as a target."""
        adjacency = self.edges()
        sources = {src for src, dsts in adjacency.items() if dsts}
        targets = {dst for dsts in adjacency.values() for dst in dsts}
        return sorted(sources & targets)

    # ------------------------------------------------------------------
    # Failure exclusion
    # ------------------------------------------------------------------

    def exclude_for_pair(self, from_format: str, to_format: str, converter_id: str) -> bool:
        """Drop a converter from every mode bucket of this pair only."""
        removed = False
        with self._lock:
            for m in ALL_MODES:
                key = (from_format, to_format, m)
                entries = self._buckets.get(key)
                if not entries:
                    continue
                kept = [e for e in entries if e.converter_id != converter_id]
                if len(kept) != len(entries):
                    removed = True
                    self._buckets[key] = kept
        if removed:
            logger.debug(
                "Excluded %s from %s -> %s", converter_id, from_format, to_format
            )
        return removed

    def exclude_globally(self, converter_id: str) -> int:
        """Drop a converter from every bucket. Returns how many buckets changed."""
        changed = 0
        with self._lock:
            for key, entries in self._buckets.items():
                kept = [e for e in entries if e.converter_id != converter_id]
                if len(kept) != len(entries):
                    self._buckets[key] = kept
                    changed += 1
        if changed:
            logger.debug("Excluded %s from %d bucket(s)", converter_id, changed)
        return changed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_document(self) -> dict:
        """Nested ``from -> to -> mode -> [entries]`` mapping, empty buckets dropped."""
        with self._lock:
            conversions: dict[str, dict[str, dict[str, list[dict]]]] = {}
            for (src, dst, mode), entries in self._buckets.items():
                if not entries:
                    continue
                conversions.setdefault(src, {}).setdefault(dst, {})[mode.value] = [
                    e.model_dump() for e in entries
                ]
        return {"version": CACHE_VERSION, "conversions": conversions}

    def dumps(self) -> str:
        return yaml.safe_dump(self.to_document(), sort_keys=True, default_flow_style=False)

    def save(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.dumps())
        logger.info("Saved capability cache to %s", p)
        return p

    @classmethod
    def from_document(cls, doc: object) -> CapabilityCache:
        if not isinstance(doc, dict):
            raise CacheError("capability cache must be a mapping")
        version = doc.get("version", CACHE_VERSION)
        if version != CACHE_VERSION:
            raise CacheError(f"unsupported capability cache version {version!r}")
        conversions = doc.get("conversions") or {}
        if not isinstance(conversions, dict):
            raise CacheError("'conversions' must be a mapping")

        buckets: dict[BucketKey, list[CacheEntry]] = {}
        try:
            for src, targets in conversions.items():
                for dst, modes in (targets or {}).items():
                    for mode_name, entries in (modes or {}).items():
                        key = (normalize_format(str(src)), normalize_format(str(dst)), QualityMode(mode_name))
                        if key in buckets:
                            raise CacheError(
                                f"duplicate bucket {key[0]} -> {key[1]} ({key[2].value})"
                            )
                        buckets[key] = [CacheEntry.model_validate(e) for e in entries or []]
        except (AttributeError, TypeError, ValueError, ValidationError) as e:
            raise CacheError(f"invalid capability cache entry: {e}") from e

        cache = cls()
        # Persisted order is authoritative; keep it as written.
        cache._buckets = {k: v for k, v in buckets.items() if v}
        return cache

    @classmethod
    def load(cls, path: str | Path) -> CapabilityCache:
        p = Path(path)
        try:
            raw = yaml.safe_load(p.read_text())
        except OSError as e:
            raise CacheError(f"cannot read capability cache {p}: {e}") from e
        except yaml.YAMLError as e:
            raise CacheError(f"invalid YAML in capability cache {p}: {e}") from e
        cache = cls.from_document(raw if raw is not None else {})
        logger.info("Loaded capability cache from %s (%d conversions)", p, cache.conversion_count())
        return cache
