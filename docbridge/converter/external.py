"""Subprocess adapter for converters speaking the ping / describe / convert protocol."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path

import yaml
from pydantic import ValidationError

from docbridge.converter.errors import ConversionCancelled, ConverterError, NegotiationFailure
from docbridge.converter.models import CapabilityDescriptor, ConversionOptions

logger = logging.getLogger(__name__)

DEFAULT_CONTROL_TIMEOUT = 10.0
DEFAULT_CONVERT_TIMEOUT = 300.0

_STDERR_LIMIT = 500
_POLL_INTERVAL = 0.1


class _Cancelled(Exception):
    pass


def _clip(text: str | None) -> str:
    return (text or "").strip()[:_STDERR_LIMIT]


class ExternalConverter:
    """Out-of-process converter invoked as ``<path> <verb> [args...]``.

    The converter id is the executable path. ``ping`` never raises;
    ``describe`` raises NegotiationFailure; ``convert`` raises ConverterError
    on non-zero exit or timeout and ConversionCancelled when the request is
    cancelled while the converter runs.
    """

    def __init__(
        self,
        path: str | Path,
        control_timeout: float = DEFAULT_CONTROL_TIMEOUT,
        convert_timeout: float = DEFAULT_CONVERT_TIMEOUT,
        describe_verb: str = "describe",
    ) -> None:
        self._path = str(path)
        self._control_timeout = control_timeout
        self._convert_timeout = convert_timeout
        self._describe_verb = describe_verb

    @property
    def converter_id(self) -> str:
        return self._path

    def __repr__(self) -> str:
        return f"ExternalConverter({self._path!r})"

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """True iff the converter exits 0 and prints exactly ``pong``."""
        try:
            result = self._run(["ping"], self._control_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Converter %s ping timed out", self._path)
            return False
        except OSError as e:
            logger.warning("Converter %s could not be started: %s", self._path, e)
            return False

        if result.returncode != 0:
            logger.debug("Converter %s ping exited %d", self._path, result.returncode)
            return False

        response = result.stdout.strip()
        if response != "pong":
            logger.debug(
                "Converter %s ping returned unexpected response %r", self._path, response[:50]
            )
            return False
        return True

    def describe(self) -> CapabilityDescriptor:
        """Ask the converter for its capabilities."""
        try:
            result = self._run([self._describe_verb], self._control_timeout)
        except subprocess.TimeoutExpired:
            raise NegotiationFailure(
                self._path, "error", f"{self._describe_verb} timed out"
            ) from None
        except OSError as e:
            raise NegotiationFailure(self._path, "error", str(e)) from e

        if result.returncode != 0:
            raise NegotiationFailure(
                self._path,
                "error",
                f"exit status {result.returncode}: {_clip(result.stderr)}",
            )

        body = result.stdout.strip()
        if not body:
            raise NegotiationFailure(self._path, "unavailable", "empty descriptor")

        return self.parse_descriptor(body)

    def parse_descriptor(self, body: str) -> CapabilityDescriptor:
        """Parse a YAML descriptor body, raising NegotiationFailure('invalid')."""
        try:
            raw = yaml.safe_load(body)
        except yaml.YAMLError as e:
            raise NegotiationFailure(self._path, "invalid", f"invalid YAML: {e}") from e

        if not isinstance(raw, dict):
            raise NegotiationFailure(
                self._path, "invalid", f"expected a mapping, got {type(raw).__name__}"
            )

        try:
            return CapabilityDescriptor.model_validate(raw)
        except ValidationError as e:
            raise NegotiationFailure(self._path, "invalid", str(e)) from e

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert(
        self,
        from_path: Path,
        to_path: Path,
        from_format: str,
        to_format: str,
        options: ConversionOptions,
    ) -> None:
        args = [
            "convert",
            options.mode.value,
            from_format,
            str(from_path),
            to_format,
            str(to_path),
        ]
        timeout = options.timeout or self._convert_timeout
        try:
            result = self._run(args, timeout, options.cancel_event)
        except _Cancelled:
            logger.info("Converter %s cancelled, process killed", self._path)
            raise ConversionCancelled(from_format, to_format) from None
        except subprocess.TimeoutExpired:
            raise ConverterError(
                self._path, "convert", f"timed out after {timeout:g}s"
            ) from None
        except OSError as e:
            raise ConverterError(self._path, "convert", str(e)) from e

        if result.returncode != 0:
            raise ConverterError(
                self._path,
                "convert",
                f"exit status {result.returncode}: {_clip(result.stderr)}",
            )

        logger.debug(
            "Converter %s converted %s (%s) -> %s (%s)",
            self._path, from_path, from_format, to_path, to_format,
        )

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _run(
        self,
        args: list[str],
        timeout: float,
        cancel_event: threading.Event | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run the converter, polling ``cancel_event`` while it is alive.

        On timeout, cancellation or interrupt the whole process group is
        killed and reaped before the exception propagates.
        """
        cmd = [self._path, *args]
        deadline = time.monotonic() + timeout
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise _Cancelled()
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise subprocess.TimeoutExpired(cmd, timeout)
                try:
                    stdout, stderr = proc.communicate(timeout=min(_POLL_INTERVAL, remaining))
                    break
                except subprocess.TimeoutExpired:
                    continue
        except BaseException:
            _kill(proc)
            raise
        return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)


def _kill(proc: subprocess.Popen) -> None:
    # the group also holds any children the helper forked
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (AttributeError, OSError):
        proc.kill()
    proc.communicate()
