from pydantic import BaseModel, Field, field_validator
from typing import Literal

from docbridge.converter.builtin import BUILTIN_CONVERTERS


class ExternalConverterConfig(BaseModel):
    path: str
    weight: float = Field(default=0.5, ge=0.0, le=1.0)
    describe_verb: Literal["describe", "info"] = "describe"

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("converter path cannot be empty")
        return v


class CacheConfig(BaseModel):
    file: str = "docbridge-cache.yaml"
    auto_rebuild: bool = True


class NegotiationConfig(BaseModel):
    timeout: float = Field(default=10.0, gt=0)
    max_workers: int = Field(default=4, gt=0)


class ConversionConfig(BaseModel):
    timeout: float = Field(default=300.0, gt=0)
    default_mode: Literal["normal", "fast", "quality"] = "normal"


class PipelineConfig(BaseModel):
    max_hops: int = Field(default=4, ge=1)
    preferred_intermediates: list[str] = Field(default_factory=lambda: ["pdf", "ps", "html"])
    lossy_intermediates: list[str] = Field(default_factory=lambda: ["txt"])
    temp_dir: str | None = None


class DocbridgeConfig(BaseModel):
    converters: list[ExternalConverterConfig] = Field(default_factory=list)
    builtins: dict[str, float] = Field(default_factory=lambda: {"plaintext": 0.3})
    cache: CacheConfig = Field(default_factory=CacheConfig)
    negotiation: NegotiationConfig = Field(default_factory=NegotiationConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"

    @field_validator("builtins")
    @classmethod
    def validate_builtin_weights(cls, v: dict[str, float]) -> dict[str, float]:
        for name, weight in v.items():
            if name not in BUILTIN_CONVERTERS:
                raise ValueError(
                    f"unknown builtin converter {name!r}, expected one of: "
                    f"{', '.join(sorted(BUILTIN_CONVERTERS))}"
                )
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"builtin {name!r} weight must be within [0, 1], got {weight}")
        return v
