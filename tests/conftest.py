"""Shared test fixtures for docbridge."""

from __future__ import annotations

from pathlib import Path

import pytest

from docbridge.config.models import DocbridgeConfig
from docbridge.converter.errors import ConverterError, NegotiationFailure
from docbridge.converter.models import CapabilityDescriptor, ConversionOptions
from docbridge.registry.registry import ConverterRegistry


def descriptor_for(pairs, name="fake", fast=(), quality=()):
    """Build a CapabilityDescriptor from [(from, to), ...].

    ``fast`` / ``quality`` list the pairs that additionally support those modes.
    """
    caps: dict = {}
    for src, dst in pairs:
        modes = {"normal": {"speed": 1, "quality": 1}}
        if (src, dst) in fast:
            modes["fast"] = {"speed": 2, "quality": 1}
        if (src, dst) in quality:
            modes["quality"] = {"speed": 1, "quality": 2}
        caps.setdefault(src, {})[dst] = {"modes": modes}
    return CapabilityDescriptor.model_validate({"name": name, "capabilities": caps})


class FakeConverter:
    """In-memory converter with scripted outcomes.

    ``fail_pairs`` lists (from, to) pairs whose convert raises ConverterError.
    Every convert call is recorded in ``calls``; successful calls write
    ``<id>:<from>-><to>`` to the output path.
    """

    def __init__(
        self,
        converter_id,
        pairs=(),
        *,
        fast=(),
        quality=(),
        ping_ok=True,
        describe_error=None,
        fail_pairs=(),
        fail_all=False,
        partial_output=False,
        raise_exc=None,
        on_convert=None,
    ):
        self._id = converter_id
        self.pairs = list(pairs)
        self.fast = list(fast)
        self.quality = list(quality)
        self.ping_ok = ping_ok
        self.describe_error = describe_error
        self.fail_pairs = set(fail_pairs)
        self.fail_all = fail_all
        self.partial_output = partial_output
        self.raise_exc = raise_exc
        self.on_convert = on_convert
        self.calls: list[tuple] = []
        self.ping_calls = 0
        self.describe_calls = 0

    @property
    def converter_id(self) -> str:
        return self._id

    def ping(self) -> bool:
        self.ping_calls += 1
        return self.ping_ok

    def describe(self) -> CapabilityDescriptor:
        self.describe_calls += 1
        if self.describe_error is not None:
            raise NegotiationFailure(self._id, self.describe_error, "scripted failure")
        return descriptor_for(self.pairs, name=self._id, fast=self.fast, quality=self.quality)

    def convert(
        self,
        from_path: Path,
        to_path: Path,
        from_format: str,
        to_format: str,
        options: ConversionOptions,
    ) -> None:
        self.calls.append((Path(from_path), Path(to_path), from_format, to_format, options.mode))
        if self.on_convert is not None:
            self.on_convert(self, from_path, to_path)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail_all or (from_format, to_format) in self.fail_pairs:
            if self.partial_output:
                Path(to_path).write_text("partial")
            raise ConverterError(self._id, "convert", "exit status 1: scripted failure")
        Path(to_path).write_text(f"{self._id}:{from_format}->{to_format}")


def make_registry(*specs):
    """Register and negotiate ``(converter, weight)`` pairs."""
    registry = ConverterRegistry()
    for converter, weight in specs:
        registry.register(converter, weight)
    registry.initialize(max_workers=2)
    return registry


@pytest.fixture
def sample_config():
    return DocbridgeConfig()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Config with no builtins and the cache file under tmp_path."""
    monkeypatch.chdir(tmp_path)
    return DocbridgeConfig(
        builtins={},
        cache={"file": str(tmp_path / "cache.yaml")},
        pipeline={"temp_dir": str(tmp_path / "staging")},
    )


@pytest.fixture
def staging_dir(tmp_path):
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "input.doc"
    path.write_text("source document")
    return path
