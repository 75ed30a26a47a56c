"""Tests for converter data models: modes, formats, descriptors."""

import threading

import pytest
from pydantic import ValidationError

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


class TestParseMode:
    def test_none_is_normal(self):
        assert parse_mode(None) is QualityMode.normal

    def test_empty_is_normal(self):
        assert parse_mode("") is QualityMode.normal

    def test_case_insensitive(self):
        assert parse_mode("FAST") is QualityMode.fast

    def test_high_alias(self):
        assert parse_mode("high") is QualityMode.quality

    def test_enum_passthrough(self):
        assert parse_mode(QualityMode.quality) is QualityMode.quality

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown conversion mode"):
            parse_mode("turbo")


class TestFormats:
    def test_normalize_strips_dot_and_case(self):
        assert normalize_format(" .DOCX ") == "docx"

    def test_normalize_empty_raises(self):
        with pytest.raises(ValueError):
            normalize_format(" . ")

    def test_detect_from_extension(self):
        assert detect_format("/tmp/Report.PDF") == "pdf"

    def test_detect_without_extension(self):
        assert detect_format("/tmp/README") is None


class TestCapabilityDescriptor:
    def _raw(self, **overrides):
        raw = {
            "name": "Pandoc Helper",
            "version": 1.0,
            "capabilities": {
                "MD": {
                    ".html": {"modes": {"normal": {"speed": 1, "quality": 1}}},
                    "pdf": {
                        "modes": {
                            "normal": {"speed": 1, "quality": 1},
                            "fast": {"speed": 3, "quality": 1},
                            "quality": {"speed": 0, "quality": 5},
                        }
                    },
                }
            },
        }
        raw.update(overrides)
        return raw

    def test_keys_normalized(self):
        desc = CapabilityDescriptor.model_validate(self._raw())
        assert set(desc.capabilities) == {"md"}
        assert set(desc.capabilities["md"]) == {"html", "pdf"}

    def test_version_coerced_to_string(self):
        desc = CapabilityDescriptor.model_validate(self._raw())
        assert desc.version == "1.0"

    def test_supported_modes_require_positive_metrics(self):
        desc = CapabilityDescriptor.model_validate(self._raw())
        pair = desc.capabilities["md"]["pdf"]
        assert pair.supported_modes() == [QualityMode.normal, QualityMode.fast]

    def test_pairs_sorted(self):
        desc = CapabilityDescriptor.model_validate(self._raw())
        assert [(s, d) for s, d, _ in desc.pairs()] == [("md", "html"), ("md", "pdf")]

    def test_missing_normal_rejected(self):
        raw = self._raw(capabilities={"md": {"pdf": {"modes": {"fast": {"speed": 1, "quality": 1}}}}})
        with pytest.raises(ValidationError, match="normal"):
            CapabilityDescriptor.model_validate(raw)

    def test_no_pairs_rejected(self):
        with pytest.raises(ValidationError, match="no format pairs"):
            CapabilityDescriptor.model_validate(self._raw(capabilities={"md": {}}))

    def test_duplicate_pair_after_normalizing_rejected(self):
        normal = {"modes": {"normal": {"speed": 1, "quality": 1}}}
        raw = self._raw(capabilities={"md": {"PDF": normal, "pdf": normal}})
        with pytest.raises(ValidationError, match="more than once"):
            CapabilityDescriptor.model_validate(raw)

    def test_source_keys_differing_in_case_merge(self):
        normal = {"modes": {"normal": {"speed": 1, "quality": 1}}}
        raw = self._raw(capabilities={"MD": {"pdf": normal}, "md": {"html": normal}})
        desc = CapabilityDescriptor.model_validate(raw)
        assert set(desc.capabilities["md"]) == {"html", "pdf"}

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            CapabilityDescriptor.model_validate(self._raw(name=""))

    def test_frozen(self):
        desc = CapabilityDescriptor.model_validate(self._raw())
        with pytest.raises(ValidationError):
            desc.name = "other"


class TestSmallModels:
    def test_cache_entry_weight_bounds(self):
        with pytest.raises(ValidationError):
            CacheEntry(converter_id="a", weight=1.5)

    def test_pipeline_step_frozen(self):
        step = PipelineStep(
            from_format="md", to_format="pdf", candidates=(CacheEntry(converter_id="a", weight=0.5),)
        )
        with pytest.raises(ValidationError):
            step.to_format = "docx"

    def test_pipeline_step_lead_candidate(self):
        step = PipelineStep(
            from_format="md",
            to_format="pdf",
            candidates=[CacheEntry(converter_id="a", weight=0.9), CacheEntry(converter_id="b", weight=0.1)],
        )
        assert step.converter_id == "a"
        assert PipelineStep(from_format="md", to_format="pdf").converter_id == ""

    def test_options_cancelled(self):
        event = threading.Event()
        opts = ConversionOptions(cancel_event=event)
        assert opts.cancelled is False
        event.set()
        assert opts.cancelled is True

    def test_options_without_event_never_cancelled(self):
        assert ConversionOptions().cancelled is False

    def test_result_piped(self):
        steps = [
            StepResult(from_format="md", to_format="pdf", converter_id="a"),
            StepResult(from_format="pdf", to_format="docx", converter_id="b"),
        ]
        result = ConversionResult(
            input_path="in.md",
            output_path="out.docx",
            from_format="md",
            to_format="docx",
            mode=QualityMode.normal,
            steps=steps,
        )
        assert result.piped is True
        assert ConversionResult(**{**result.model_dump(), "steps": steps[:1]}).piped is False
