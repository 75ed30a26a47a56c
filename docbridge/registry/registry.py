"""Converter registry: weights, negotiation and cache building."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from docbridge.converter.base import Converter
from docbridge.converter.errors import NegotiationFailure
from docbridge.converter.models import ALL_MODES, CacheEntry, CapabilityDescriptor
from docbridge.registry.cache import BucketKey, CapabilityCache

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    """A converter plus what negotiation learned about it.

    Mutable: ``available``, ``descriptor`` and ``failure`` are written by
    ``initialize()`` while holding ``lock``.
    """

    converter: Converter
    weight: float
    available: bool = False
    descriptor: CapabilityDescriptor | None = None
    failure: NegotiationFailure | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def converter_id(self) -> str:
        return self.converter.converter_id


def _safe_ping(entry: RegistryEntry) -> bool:
    try:
        return entry.converter.ping()
    except Exception as e:
        logger.warning("Converter %s raised during ping: %r", entry.converter_id, e, exc_info=True)
        return False


class ConverterRegistry:
    """Holds every known converter, in-process or external, with its weight."""

    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}

    def register(self, converter: Converter, weight: float) -> RegistryEntry:
        """Add (or replace) a converter. It stays unavailable until initialize()."""
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"weight must be within [0, 1], got {weight}")
        entry = RegistryEntry(converter=converter, weight=float(weight))
        self._entries[converter.converter_id] = entry
        logger.debug("Registered converter %s (weight %.2f)", converter.converter_id, weight)
        return entry

    def get(self, converter_id: str) -> Converter | None:
        entry = self._entries.get(converter_id)
        return entry.converter if entry else None

    def entry(self, converter_id: str) -> RegistryEntry | None:
        return self._entries.get(converter_id)

    def entries(self) -> list[RegistryEntry]:
        """All entries ordered by converter id."""
        return [self._entries[k] for k in sorted(self._entries)]

    def available(self) -> list[RegistryEntry]:
        return [e for e in self.entries() if e.available]

    def __contains__(self, converter_id: object) -> bool:
        return converter_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    def initialize(self, max_workers: int = 4) -> list[RegistryEntry]:
        """Ping and describe every converter. Failures only exclude that entry.

        Entries are independent, so negotiation runs on a thread pool.
        Safe to call again; every entry is renegotiated from scratch.
        """
        entries = self.entries()
        if not entries:
            return []
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            list(pool.map(self._negotiate, entries))

        ready = self.available()
        logger.info(
            "Negotiated %d converter(s): %d available, %d unavailable",
            len(entries), len(ready), len(entries) - len(ready),
        )
        return ready

    def _negotiate(self, entry: RegistryEntry) -> None:
        cid = entry.converter_id
        available = False
        descriptor: CapabilityDescriptor | None = None
        failure: NegotiationFailure | None = None

        try:
            if not entry.converter.ping():
                raise NegotiationFailure(cid, "error", "ping failed")
            descriptor = entry.converter.describe()
            available = True
        except NegotiationFailure as e:
            failure = e
            if e.kind == "unavailable":
                logger.warning("Converter %s cannot serve right now: %s", cid, e.detail)
            else:
                logger.warning("Failed to get capabilities from %s: %s", cid, e.detail)
        except Exception as e:
            # In-process converters may raise anything during negotiation
            failure = NegotiationFailure(cid, "error", repr(e))
            failure.__cause__ = e
            logger.warning("Converter %s raised during negotiation: %r", cid, e, exc_info=True)

        with entry.lock:
            entry.available = available
            entry.descriptor = descriptor
            entry.failure = failure

        if descriptor is not None:
            logger.info(
                "Registered converter %s (%s, %d pair(s), weight %.2f)",
                cid, descriptor.name, len(descriptor.pairs()), entry.weight,
            )

    def check_availability(self, cache: CapabilityCache, max_workers: int = 4) -> list[str]:
        """Ping every converter a loaded cache refers to.

        Converters that fail ping, or are no longer registered, are removed
        from all buckets. Returns the excluded converter ids.
        """
        ids = sorted(cache.converter_ids())
        unknown = [cid for cid in ids if cid not in self._entries]
        known = [self._entries[cid] for cid in ids if cid in self._entries]

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(_safe_ping, known))

        excluded = list(unknown)
        for cid in unknown:
            logger.warning("Cached converter %s is not configured, excluding it", cid)
        for entry, ok in zip(known, results):
            with entry.lock:
                entry.available = ok
            if not ok:
                logger.warning("Converter %s failed ping, excluding it everywhere", entry.converter_id)
                excluded.append(entry.converter_id)

        for cid in excluded:
            cache.exclude_globally(cid)

        logger.info(
            "Ping check complete: %d available, %d excluded",
            len(ids) - len(excluded), len(excluded),
        )
        return sorted(excluded)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def build_cache(self) -> CapabilityCache:
        """Derive ranked (from, to, mode) buckets from every available entry."""
        buckets: dict[BucketKey, list[CacheEntry]] = {}
        for entry in self.available():
            if entry.descriptor is None:
                continue
            for src, dst, pair in entry.descriptor.pairs():
                for mode in ALL_MODES:
                    if not pair.modes.metrics(mode).supported:
                        continue
                    buckets.setdefault((src, dst, mode), []).append(
                        CacheEntry(converter_id=entry.converter_id, weight=entry.weight)
                    )
        # CapabilityCache ranks every bucket on construction
        return CapabilityCache(buckets)
