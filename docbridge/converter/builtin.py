"""In-process converters exposed through the same interface as external ones."""

from __future__ import annotations

import html
import logging
import re
from functools import cached_property
from pathlib import Path
from typing import Any

from docbridge.converter.errors import ConverterError, NegotiationFailure
from docbridge.converter.models import CapabilityDescriptor, ConversionOptions

logger = logging.getLogger(__name__)

try:
    from markitdown import MarkItDown
except ImportError:
    MarkItDown = None  # type: ignore[assignment,misc]
    logger.debug("markitdown not installed, builtin:markitdown disabled")


BUILTIN_PREFIX = "builtin:"

_FULL_MODES = {
    "normal": {"speed": 1, "quality": 1},
    "fast": {"speed": 1, "quality": 1},
}
_NORMAL_ONLY = {"normal": {"speed": 1, "quality": 1}}


def _read_text(path: Path, converter_id: str) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ConverterError(converter_id, "convert", f"cannot read {path}: {e}") from e


def _write_text(path: Path, content: str, converter_id: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ConverterError(converter_id, "convert", f"cannot write {path}: {e}") from e


def _paragraphs(text: str) -> list[str]:
    """Split on blank lines, dropping empty paragraphs."""
    return [p.strip("\n") for p in re.split(r"\n\s*\n", text) if p.strip()]


def text_to_html(text: str, title: str = "Converted from Plain Text") -> str:
    """Wrap plain text in a minimal HTML document."""
    body = []
    for p in _paragraphs(html.escape(text.replace("\r\n", "\n"))):
        body.append("<p>" + p.replace("\n", "<br>\n") + "</p>")
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '<meta charset="UTF-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        "</head>\n"
        "<body>\n"
        + "\n".join(body)
        + "\n</body>\n</html>\n"
    )


def text_to_markdown(text: str) -> str:
    """Normalize plain text into markdown paragraphs.

    Trailing whitespace is stripped and single line breaks inside a
    paragraph become hard breaks (two trailing spaces).
    """
    out = []
    for p in _paragraphs(text.replace("\r\n", "\n")):
        lines = [line.rstrip() for line in p.split("\n")]
        out.append("  \n".join(lines))
    return "\n\n".join(out) + "\n"


class PlainTextConverter:
    """txt -> html and txt -> md, pure Python."""

    name = "plaintext"

    @property
    def converter_id(self) -> str:
        return BUILTIN_PREFIX + self.name

    def ping(self) -> bool:
        return True

    def describe(self) -> CapabilityDescriptor:
        return CapabilityDescriptor.model_validate({
            "name": "Plain Text Converter",
            "version": "1.0.0",
            "description": "Wraps plain text as HTML or Markdown",
            "capabilities": {
                "txt": {
                    "html": {"modes": _FULL_MODES},
                    "md": {"modes": _FULL_MODES},
                },
            },
        })

    def convert(
        self,
        from_path: Path,
        to_path: Path,
        from_format: str,
        to_format: str,
        options: ConversionOptions,
    ) -> None:
        if from_format != "txt":
            raise ConverterError(
                self.converter_id, "convert", f"unsupported source format {from_format}"
            )
        text = _read_text(from_path, self.converter_id)
        if to_format == "html":
            title = options.extra.get("title", "Converted from Plain Text")
            result = text_to_html(text, title=title)
        elif to_format == "md":
            result = text_to_markdown(text)
        else:
            raise ConverterError(
                self.converter_id, "convert", f"unsupported target format {to_format}"
            )
        _write_text(to_path, result, self.converter_id)


class MarkItDownConverter:
    """Office documents, PDF and HTML to markdown via MarkItDown."""

    name = "markitdown"
    SOURCE_FORMATS = ("docx", "html", "pdf", "pptx", "xlsx")

    @property
    def converter_id(self) -> str:
        return BUILTIN_PREFIX + self.name

    @cached_property
    def _md(self) -> Any:
        if MarkItDown is None:
            return None
        return MarkItDown(enable_plugins=False)

    def ping(self) -> bool:
        return self._md is not None

    def describe(self) -> CapabilityDescriptor:
        if self._md is None:
            raise NegotiationFailure(self.converter_id, "unavailable", "markitdown not installed")
        return CapabilityDescriptor.model_validate({
            "name": "MarkItDown",
            "description": "Converts documents to Markdown with the markitdown library",
            "capabilities": {
                fmt: {"md": {"modes": _NORMAL_ONLY}} for fmt in self.SOURCE_FORMATS
            },
        })

    def convert(
        self,
        from_path: Path,
        to_path: Path,
        from_format: str,
        to_format: str,
        options: ConversionOptions,
    ) -> None:
        if self._md is None:
            raise ConverterError(self.converter_id, "convert", "markitdown not installed")
        if to_format != "md" or from_format not in self.SOURCE_FORMATS:
            raise ConverterError(
                self.converter_id, "convert", f"unsupported pair {from_format} -> {to_format}"
            )
        try:
            markdown = self._md.convert(str(from_path)).markdown
        except Exception as e:
            raise ConverterError(self.converter_id, "convert", str(e)) from e
        _write_text(to_path, markdown, self.converter_id)


BUILTIN_CONVERTERS: dict[str, type] = {
    PlainTextConverter.name: PlainTextConverter,
    MarkItDownConverter.name: MarkItDownConverter,
}


def create_builtin(name: str):
    """Instantiate a builtin converter by short name."""
    cls = BUILTIN_CONVERTERS.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown builtin converter: {name!r}. "
            f"Supported: {', '.join(BUILTIN_CONVERTERS)}"
        )
    return cls()
