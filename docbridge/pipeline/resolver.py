"""Multi-hop pipeline search over the format graph."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from docbridge.converter.errors import UnsupportedConversion
from docbridge.converter.models import PipelineStep, QualityMode
from docbridge.registry.cache import CapabilityCache

logger = logging.getLogger(__name__)

DEFAULT_PREFERRED_INTERMEDIATES = ("pdf", "ps", "html")
DEFAULT_LOSSY_INTERMEDIATES = ("txt",)
DEFAULT_MAX_HOPS = 4


class PipelineResolver:
    """Finds the shortest chain of direct conversions between two formats.

    Breadth-first over an adjacency map built once per call from the
    cache's ``normal`` buckets. Within one depth, nodes are expanded in
    preference order: structure-preserving intermediates first, then
    everything else alphabetically, then lossy formats last.
    """

    def __init__(
        self,
        cache: CapabilityCache,
        preferred: Sequence[str] = DEFAULT_PREFERRED_INTERMEDIATES,
        lossy: Sequence[str] = DEFAULT_LOSSY_INTERMEDIATES,
        max_hops: int = DEFAULT_MAX_HOPS,
    ) -> None:
        if max_hops < 1:
            raise ValueError(f"max_hops must be >= 1, got {max_hops}")
        self._cache = cache
        self._preferred = [f.lower() for f in preferred]
        self._lossy = [f.lower() for f in lossy if f.lower() not in self._preferred]
        self._max_hops = max_hops

    def _rank(self, fmt: str) -> tuple[int, int, str]:
        if fmt in self._preferred:
            return (0, self._preferred.index(fmt), fmt)
        if fmt in self._lossy:
            return (2, self._lossy.index(fmt), fmt)
        return (1, 0, fmt)

    def resolve(
        self, from_format: str, to_format: str, via: str | None = None
    ) -> list[PipelineStep]:
        """Shortest chain from ``from_format`` to ``to_format``.

        With ``via`` the search only walks pairs that converter serves.
        """
        adjacency = self._cache.edges(QualityMode.normal, converter_id=via)
        path = self._search(adjacency, from_format, to_format)
        if path is None:
            detail = f"no pipeline found within {self._max_hops} step(s)"
            if via is not None:
                detail += f" using converter {via}"
            raise UnsupportedConversion(from_format, to_format, detail)

        steps = []
        for src, dst in zip(path, path[1:]):
            ranked = self._cache.candidates(src, dst, QualityMode.normal)
            if via is not None:
                ranked = [c for c in ranked if c.converter_id == via]
            steps.append(PipelineStep(from_format=src, to_format=dst, candidates=tuple(ranked)))

        logger.info(
            "Built %d-step pipeline %s", len(steps), " -> ".join(path)
        )
        return steps

    def _search(
        self, adjacency: dict[str, set[str]], start: str, goal: str
    ) -> list[str] | None:
        parents: dict[str, str | None] = {start: None}
        level = [start]
        for _ in range(self._max_hops):
            next_level: list[str] = []
            for node in level:
                for neighbor in sorted(adjacency.get(node, ()), key=self._rank):
                    if neighbor in parents:
                        continue
                    parents[neighbor] = node
                    if neighbor == goal:
                        return self._unwind(parents, goal)
                    next_level.append(neighbor)
            if not next_level:
                break
            level = sorted(next_level, key=self._rank)
        return None

    @staticmethod
    def _unwind(parents: dict[str, str | None], goal: str) -> list[str]:
        path = [goal]
        while (parent := parents[path[-1]]) is not None:
            path.append(parent)
        return list(reversed(path))
