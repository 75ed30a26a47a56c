"""Exception taxonomy for negotiation and conversion."""

from __future__ import annotations

from typing import Literal

NegotiationKind = Literal["error", "unavailable", "invalid"]


class DocbridgeError(Exception):
    """Base class for all docbridge errors."""


class InvalidInput(DocbridgeError):
    """The source path (or the requested formats) cannot be used."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid input {path}: {reason}")


class UnsupportedConversion(DocbridgeError):
    """No direct converter and no pipeline exists for the pair."""

    def __init__(self, from_format: str, to_format: str, detail: str | None = None) -> None:
        self.from_format = from_format
        self.to_format = to_format
        msg = f"Unsupported conversion {from_format} -> {to_format}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class NegotiationFailure(DocbridgeError):
    """A converter failed ping/describe. Recorded at initialization only.

    ``kind`` is ``error`` for a hard failure (non-zero exit, timeout, spawn
    failure), ``unavailable`` when the converter answered with an empty
    descriptor, and ``invalid`` when the descriptor could not be parsed.
    """

    def __init__(self, converter_id: str, kind: NegotiationKind, detail: str) -> None:
        self.converter_id = converter_id
        self.kind = kind
        self.detail = detail
        super().__init__(f"{converter_id} negotiation failed ({kind}): {detail}")


class ConverterError(DocbridgeError):
    """A single converter invocation failed. Recovered by trying the next candidate."""

    def __init__(self, converter_id: str, operation: str, detail: str) -> None:
        self.converter_id = converter_id
        self.operation = operation
        self.detail = detail
        super().__init__(f"{converter_id} {operation} failed: {detail}")


class ConversionFailure(DocbridgeError):
    """Every viable candidate for a pair failed."""

    def __init__(
        self,
        from_format: str,
        to_format: str,
        last_error: Exception | None,
        attempts: int = 0,
    ) -> None:
        self.from_format = from_format
        self.to_format = to_format
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(self._message())
        self.__cause__ = last_error

    def _message(self) -> str:
        return (
            f"Conversion {self.from_format} -> {self.to_format} failed after "
            f"{self.attempts} attempt(s): {self.last_error}"
        )


class PipelineStepFailure(ConversionFailure):
    """A hop inside a multi-step chain exhausted its candidates."""

    def __init__(
        self,
        from_format: str,
        to_format: str,
        hop_index: int,
        hop_from: str,
        hop_to: str,
        last_error: Exception | None,
        attempts: int = 0,
    ) -> None:
        self.hop_index = hop_index
        self.hop_from = hop_from
        self.hop_to = hop_to
        super().__init__(from_format, to_format, last_error, attempts)

    def _message(self) -> str:
        return (
            f"Conversion {self.from_format} -> {self.to_format} failed at step "
            f"{self.hop_index + 1} ({self.hop_from} -> {self.hop_to}): {self.last_error}"
        )


class ConversionCancelled(DocbridgeError):
    """The caller cancelled the request before it completed."""

    def __init__(self, from_format: str, to_format: str) -> None:
        self.from_format = from_format
        self.to_format = to_format
        super().__init__(f"Conversion {from_format} -> {to_format} cancelled")


class CacheError(DocbridgeError):
    """The persisted capability cache could not be read or validated."""
