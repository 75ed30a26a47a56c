"""Data models for converters, capabilities and conversion results."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QualityMode(str, Enum):
    """Speed/quality tradeoff tier requested for a conversion."""

    normal = "normal"
    fast = "fast"
    quality = "quality"


ALL_MODES: tuple[QualityMode, ...] = (QualityMode.normal, QualityMode.fast, QualityMode.quality)

_MODE_ALIASES = {"high": QualityMode.quality}


def parse_mode(value: str | QualityMode | None) -> QualityMode:
    """Parse a user-supplied mode name. ``None`` and ``""`` mean normal."""
    if isinstance(value, QualityMode):
        return value
    if not value:
        return QualityMode.normal
    key = value.strip().lower()
    if key in _MODE_ALIASES:
        return _MODE_ALIASES[key]
    try:
        return QualityMode(key)
    except ValueError:
        raise ValueError(
            f"Unknown conversion mode {value!r}: expected one of "
            f"{', '.join(m.value for m in ALL_MODES)}"
        ) from None


def normalize_format(value: str) -> str:
    """Normalize a format token: trimmed, lower-case, no leading dot."""
    token = value.strip().lower().lstrip(".")
    if not token:
        raise ValueError(f"Invalid format token: {value!r}")
    return token


def detect_format(path: str | Path) -> str | None:
    """Derive a format from a file extension, or None if there is none."""
    suffix = Path(path).suffix
    if not suffix:
        return None
    return normalize_format(suffix)


class ModeMetrics(BaseModel):
    """Placeholder benchmark values; a mode is supported iff both are > 0."""

    speed: float = 0.0
    quality: float = 0.0

    @property
    def supported(self) -> bool:
        return self.speed > 0 and self.quality > 0


class ModeSet(BaseModel):
    normal: ModeMetrics = Field(default_factory=ModeMetrics)
    fast: ModeMetrics = Field(default_factory=ModeMetrics)
    quality: ModeMetrics = Field(default_factory=ModeMetrics)

    def metrics(self, mode: QualityMode) -> ModeMetrics:
        return getattr(self, mode.value)


class PairCapability(BaseModel):
    """Modes a converter offers for one (from, to) pair."""

    modes: ModeSet = Field(default_factory=ModeSet)

    def supported_modes(self) -> list[QualityMode]:
        return [m for m in ALL_MODES if self.modes.metrics(m).supported]


class CapabilityDescriptor(BaseModel):
    """What a converter reports about itself via ``describe``.

    Immutable once negotiated. Format keys are normalized on load, every pair
    must support ``normal`` and at least one pair must be present.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    version: str | None = None
    description: str | None = None
    capabilities: dict[str, dict[str, PairCapability]]

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: object) -> object:
        # YAML turns `version: 1.0` into a float
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("capabilities")
    @classmethod
    def validate_capabilities(
        cls, v: dict[str, dict[str, PairCapability]]
    ) -> dict[str, dict[str, PairCapability]]:
        normalized: dict[str, dict[str, PairCapability]] = {}
        for from_fmt, targets in v.items():
            src = normalize_format(str(from_fmt))
            for to_fmt, pair in (targets or {}).items():
                dst = normalize_format(str(to_fmt))
                if not pair.modes.normal.supported:
                    raise ValueError(
                        f"{src} -> {dst} does not support mandatory 'normal' mode"
                    )
                targets_for_src = normalized.setdefault(src, {})
                if dst in targets_for_src:
                    raise ValueError(f"{src} -> {dst} is declared more than once")
                targets_for_src[dst] = pair
        if not any(normalized.values()):
            raise ValueError("descriptor declares no format pairs")
        return normalized

    def pairs(self) -> list[tuple[str, str, PairCapability]]:
        """All (from, to, capability) triples, sorted by format names."""
        return [
            (src, dst, self.capabilities[src][dst])
            for src in sorted(self.capabilities)
            for dst in sorted(self.capabilities[src])
        ]


class CacheEntry(BaseModel):
    """One ranked candidate inside a capability cache bucket."""

    model_config = ConfigDict(frozen=True)

    converter_id: str = Field(min_length=1)
    weight: float = Field(ge=0.0, le=1.0)


class PipelineStep(BaseModel):
    """One hop in a resolved conversion chain.

    ``candidates`` is the ranked bucket as it stood when the chain was
    resolved. Execution re-reads the live cache, so exclusions made since
    then still apply.
    """

    model_config = ConfigDict(frozen=True)

    from_format: str
    to_format: str
    candidates: tuple[CacheEntry, ...] = ()

    @property
    def converter_id(self) -> str:
        """Lead candidate at resolution time, or "" for an empty snapshot."""
        return self.candidates[0].converter_id if self.candidates else ""


@dataclass
class ConversionOptions:
    """Per-request options handed down to every hop."""

    mode: QualityMode = QualityMode.normal
    timeout: float = 300.0
    extra: dict[str, str] = field(default_factory=dict)
    via: str | None = None
    cancel_event: threading.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class StepResult(BaseModel):
    """Outcome of one successfully executed hop."""

    from_format: str
    to_format: str
    converter_id: str
    attempts: int = 1


class ConversionResult(BaseModel):
    """Result of a complete conversion request."""

    input_path: str
    output_path: str
    from_format: str
    to_format: str
    mode: QualityMode
    steps: list[StepResult]
    duration_s: float = 0.0
    output_size: int = 0

    @property
    def piped(self) -> bool:
        return len(self.steps) > 1
