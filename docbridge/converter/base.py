"""Converter interface shared by in-process and external converters."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from docbridge.converter.models import CapabilityDescriptor, ConversionOptions


@runtime_checkable
class Converter(Protocol):
    """ping / describe / convert.

    ``describe`` raises NegotiationFailure; ``convert`` raises ConverterError.
    Callers never need to know whether the work happens in this process.
    """

    @property
    def converter_id(self) -> str: ...

    def ping(self) -> bool: ...

    def describe(self) -> CapabilityDescriptor: ...

    def convert(
        self,
        from_path: Path,
        to_path: Path,
        from_format: str,
        to_format: str,
        options: ConversionOptions,
    ) -> None: ...
