"""Tests for WeightedFallbackExecutor."""

import threading

import pytest

from docbridge.converter.errors import (
    ConversionCancelled,
    ConversionFailure,
    ConverterError,
    UnsupportedConversion,
)
from docbridge.converter.models import ConversionOptions, QualityMode
from docbridge.pipeline.fallback import WeightedFallbackExecutor
from docbridge.registry.registry import ConverterRegistry

from tests.conftest import FakeConverter, make_registry

N, F, Q = QualityMode.normal, QualityMode.fast, QualityMode.quality


def _executor(*specs):
    registry = make_registry(*specs)
    return WeightedFallbackExecutor(registry, registry.build_cache())


class TestExecute:
    def test_highest_weight_wins(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        out = tmp_path / "out.pdf"

        result = executor.execute("md", "pdf", source_file, out, ConversionOptions())

        assert result.converter_id == "/a"
        assert result.attempts == 1
        assert out.read_text() == "/a:md->pdf"
        assert b.calls == []

    def test_tie_broken_by_id(self, source_file, tmp_path):
        z = FakeConverter("/z", [("md", "pdf")])
        a = FakeConverter("/a", [("md", "pdf")])
        executor = _executor((z, 0.5), (a, 0.5))
        result = executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())
        assert result.converter_id == "/a"

    def test_fallback_to_next(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")], fail_all=True)
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))

        result = executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())

        assert result.converter_id == "/b"
        assert result.attempts == 2
        assert len(a.calls) == 1

    def test_failure_excludes_for_pair_only(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf"), ("md", "html")], fail_pairs=[("md", "pdf")])
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))

        executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())
        executor.execute("md", "pdf", source_file, tmp_path / "o2.pdf", ConversionOptions())

        # second request goes straight to /b
        assert len(a.calls) == 1
        assert not executor.cache.contains("md", "pdf", "/a")
        assert executor.cache.contains("md", "html", "/a")
        result = executor.execute("md", "html", source_file, tmp_path / "o.html", ConversionOptions())
        assert result.converter_id == "/a"

    def test_exclusion_covers_all_modes(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")], fast=[("md", "pdf")], fail_all=True)
        b = FakeConverter("/b", [("md", "pdf")], fast=[("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())
        assert [e.converter_id for e in executor.cache.candidates("md", "pdf", F)] == ["/b"]

    def test_all_fail(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")], fail_all=True)
        b = FakeConverter("/b", [("md", "pdf")], fail_all=True)
        executor = _executor((a, 0.9), (b, 0.5))

        with pytest.raises(ConversionFailure) as exc_info:
            executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, ConverterError)
        assert exc_info.value.last_error.converter_id == "/b"
        assert exc_info.value.__cause__ is exc_info.value.last_error
        assert not executor.cache.has_pair("md", "pdf")

    def test_partial_output_removed(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")], fail_all=True, partial_output=True)
        executor = _executor((a, 0.9))
        out = tmp_path / "o.pdf"
        with pytest.raises(ConversionFailure):
            executor.execute("md", "pdf", source_file, out, ConversionOptions())
        assert not out.exists()

    def test_unexpected_exception_treated_as_failure(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")], raise_exc=RuntimeError("kaboom"))
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        result = executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())
        assert result.converter_id == "/b"
        assert not executor.cache.contains("md", "pdf", "/a")

    def test_no_candidates(self, source_file, tmp_path):
        executor = _executor((FakeConverter("/a", [("md", "pdf")]), 0.5))
        with pytest.raises(UnsupportedConversion):
            executor.execute("pdf", "md", source_file, tmp_path / "o.md", ConversionOptions())


class TestModeFallback:
    def test_quality_uses_quality_bucket(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        b = FakeConverter("/b", [("md", "pdf")], quality=[("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.1))
        opts = ConversionOptions(mode=Q)
        assert executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", opts).converter_id == "/b"
        assert b.calls[0][4] is Q

    def test_missing_mode_degrades_to_normal(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        executor = _executor((a, 0.9))
        opts = ConversionOptions(mode=F)
        assert executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", opts).converter_id == "/a"


class TestStaleCandidates:
    def test_excluded_since_snapshot_skipped(self, source_file, tmp_path):
        b = FakeConverter("/b", [("md", "pdf")])
        executor = None

        def exclude_b(conv, *_):
            executor.cache.exclude_for_pair("md", "pdf", "/b")

        a = FakeConverter("/a", [("md", "pdf")], fail_all=True, on_convert=exclude_b)
        c = FakeConverter("/c", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5), (c, 0.1))

        result = executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())

        assert result.converter_id == "/c"
        assert b.calls == []

    def test_everything_excluded_is_unsupported(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        snapshot = executor.find_candidates("md", "pdf", QualityMode.normal)
        executor.cache.exclude_for_pair("md", "pdf", "/a")
        executor.cache.exclude_for_pair("md", "pdf", "/b")
        executor.find_candidates = lambda *args: snapshot

        with pytest.raises(UnsupportedConversion, match="excluded"):
            executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())
        assert a.calls == []

    def test_unregistered_id_excluded_globally(self, source_file, tmp_path):
        source = make_registry((FakeConverter("/ghost", [("md", "pdf"), ("md", "html")]), 0.9))
        cache = source.build_cache()
        registry = ConverterRegistry()
        registry.register(FakeConverter("/real", [("md", "pdf")]), 0.5)
        executor = WeightedFallbackExecutor(registry, cache)

        with pytest.raises(UnsupportedConversion):
            executor.execute("md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions())
        assert "/ghost" not in cache.converter_ids()


class TestCancellation:
    def test_cancel_before_first_attempt(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        executor = _executor((a, 0.9))
        event = threading.Event()
        event.set()
        with pytest.raises(ConversionCancelled):
            executor.execute(
                "md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions(cancel_event=event)
            )
        assert a.calls == []

    def test_cancel_between_candidates(self, source_file, tmp_path):
        event = threading.Event()
        a = FakeConverter("/a", [("md", "pdf")], fail_all=True, on_convert=lambda *_: event.set())
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        with pytest.raises(ConversionCancelled):
            executor.execute(
                "md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions(cancel_event=event)
            )
        assert b.calls == []

    def test_cancel_during_convert_removes_partial(self, source_file, tmp_path):
        def cancelled_midway(conv, src, dst):
            dst.write_text("partial")
            raise ConversionCancelled("md", "pdf")

        a = FakeConverter("/a", [("md", "pdf")], on_convert=cancelled_midway)
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        out = tmp_path / "o.pdf"
        with pytest.raises(ConversionCancelled):
            executor.execute("md", "pdf", source_file, out, ConversionOptions())
        assert not out.exists()
        assert b.calls == []
        # cancellation is not a converter failure
        assert executor.cache.contains("md", "pdf", "/a")

    def test_interrupt_during_convert_removes_partial(self, source_file, tmp_path):
        def interrupted(conv, src, dst):
            dst.write_text("partial")
            raise KeyboardInterrupt

        a = FakeConverter("/a", [("md", "pdf")], on_convert=interrupted)
        executor = _executor((a, 0.9))
        out = tmp_path / "o.pdf"
        with pytest.raises(KeyboardInterrupt):
            executor.execute("md", "pdf", source_file, out, ConversionOptions())
        assert not out.exists()


class TestForcedConverter:
    def test_via_skips_higher_weight(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        result = executor.execute(
            "md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions(via="/b")
        )
        assert result.converter_id == "/b"
        assert a.calls == []

    def test_via_failure_does_not_fall_back(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        b = FakeConverter("/b", [("md", "pdf")], fail_all=True)
        executor = _executor((a, 0.9), (b, 0.5))
        with pytest.raises(ConversionFailure):
            executor.execute(
                "md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions(via="/b")
            )
        assert a.calls == []

    def test_via_cannot_serve_pair(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")])
        b = FakeConverter("/b", [("md", "html")])
        executor = _executor((a, 0.9), (b, 0.5))
        with pytest.raises(UnsupportedConversion, match="/b cannot serve"):
            executor.execute(
                "md", "pdf", source_file, tmp_path / "o.pdf", ConversionOptions(via="/b")
            )

    def test_via_degrades_to_normal_mode(self, source_file, tmp_path):
        a = FakeConverter("/a", [("md", "pdf")], fast=[("md", "pdf")])
        b = FakeConverter("/b", [("md", "pdf")])
        executor = _executor((a, 0.9), (b, 0.5))
        result = executor.execute(
            "md", "pdf", source_file, tmp_path / "o.pdf",
            ConversionOptions(mode=F, via="/b"),
        )
        assert result.converter_id == "/b"
        assert b.calls[0][4] == F
