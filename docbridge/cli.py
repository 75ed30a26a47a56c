"""CLI entry point for docbridge."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table

from docbridge.config import DocbridgeConfig, load_config
from docbridge.config.loader import DEFAULT_CONFIG_TEMPLATE
from docbridge.converter.errors import DocbridgeError, UnsupportedConversion
from docbridge.converter.models import normalize_format, parse_mode
from docbridge.pipeline.service import ConversionService, build_registry
from docbridge.registry.cache import CapabilityCache

app = typer.Typer(
    name="docbridge",
    help="Convert documents between formats through pluggable converters.",
)

config_app = typer.Typer(help="Manage docbridge configuration.")
app.add_typer(config_app, name="config")

# Global state
_config: DocbridgeConfig | None = None

_HANDLER_NAME = "docbridge-cli"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class _JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": self.formatTime(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["error"] = self.formatException(record.exc_info)
        return json.dumps(data)


def _setup_logging(level: str, fmt: str) -> None:
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(_JsonFormatter())
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))

    handler.set_name(_HANDLER_NAME)
    root.addHandler(handler)
    root.setLevel(_LEVELS.get(level, logging.INFO))


def _get_config() -> DocbridgeConfig:
    if _config is None:
        return load_config()
    return _config


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to docbridge.yaml")
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="debug | info | warn | error")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Same as --log-level debug")
    ] = False,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    level = "debug" if verbose else (log_level or _config.log_level)
    if level not in _LEVELS:
        rprint(f"[red]Error:[/red] invalid log level: {level}")
        raise typer.Exit(1)
    _setup_logging(level, _config.log_format)


def _display_format_matrix(cache: CapabilityCache) -> None:
    """Show which (from, to) pairs have at least one converter."""
    formats = cache.matrix_formats()
    if not formats:
        rprint("No formats available")
        return

    table = Table(title="Format Conversion Matrix", caption="✓ = conversion supported")
    table.add_column("FROM\\TO", style="cyan")
    for fmt in formats:
        table.add_column(fmt, justify="center")
    for src in formats:
        row = ["✓" if src != dst and cache.has_pair(src, dst) else "" for dst in formats]
        table.add_row(src, *row)
    rprint(table)


@app.command(name="rebuild-cache")
def rebuild_cache(
    output: Annotated[
        str | None, typer.Option("--output", "-o", help="Cache file (default from config)")
    ] = None,
    formats: bool = typer.Option(False, "--formats", help="Display format conversion matrix"),
) -> None:
    """Negotiate with every configured converter and write the capability cache."""
    cfg = _get_config()
    registry = build_registry(cfg)
    if len(registry) == 0:
        rprint("[red]Error:[/red] no converters configured (check 'converters' in config)")
        raise typer.Exit(1)

    registry.initialize(max_workers=cfg.negotiation.max_workers)
    cache = registry.build_cache()
    path = cache.save(output or cfg.cache.file)

    table = Table(title=f"Converters ({len(registry)})")
    table.add_column("Converter", style="cyan")
    table.add_column("Weight", justify="right")
    table.add_column("Status")
    table.add_column("Name / reason")
    for entry in registry.entries():
        if entry.available and entry.descriptor is not None:
            status, detail = "[green]available[/green]", entry.descriptor.name
        else:
            status = "[red]excluded[/red]"
            detail = str(entry.failure.detail) if entry.failure else "-"
        table.add_row(entry.converter_id, f"{entry.weight:.2f}", status, detail)
    rprint(table)

    rprint(f"[green]Generated capability cache:[/green] {path}")
    rprint(f"  {cache.conversion_count()} conversion paths available")

    if formats:
        rprint()
        _display_format_matrix(cache)


@app.command()
def convert(
    input_path: Path = typer.Argument(..., help="Source document"),
    output_path: Path = typer.Argument(..., help="Destination path"),
    from_format: Annotated[
        str | None, typer.Option("--from", "-f", help="Input format (default: extension)")
    ] = None,
    to_format: Annotated[
        str | None, typer.Option("--to", "-t", help="Output format (default: extension)")
    ] = None,
    mode: Annotated[
        str | None, typer.Option("--mode", "-m", help="normal | fast | quality")
    ] = None,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Per-converter timeout in seconds")
    ] = None,
    via: Annotated[
        str | None,
        typer.Option("--via", help="Force a converter (id, helper path or builtin name)"),
    ] = None,
) -> None:
    """Convert one document, piping through intermediate formats if needed."""
    cfg = _get_config()
    try:
        service = ConversionService.from_config(cfg)
        result = service.convert(
            input_path,
            output_path,
            from_format=from_format,
            to_format=to_format,
            mode=mode,
            timeout=timeout,
            via=via,
        )
    except DocbridgeError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    route = " -> ".join([result.steps[0].from_format] + [s.to_format for s in result.steps])
    rprint(
        f"[green]✓[/green] Converted {result.input_path} -> {result.output_path} "
        f"({result.output_size} bytes) in {result.duration_s:.2f}s"
    )
    if result.piped:
        rprint(f"  [dim]via {route}[/dim]")


@app.command()
def candidates(
    from_format: str = typer.Argument(..., help="Source format"),
    to_format: str = typer.Argument(..., help="Target format"),
    mode: Annotated[
        str | None, typer.Option("--mode", "-m", help="normal | fast | quality")
    ] = None,
) -> None:
    """Show the ranked converters, or the resolved pipeline, for a pair."""
    cfg = _get_config()
    try:
        src = normalize_format(from_format)
        dst = normalize_format(to_format)
        quality = parse_mode(mode or cfg.conversion.default_mode)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    service = ConversionService.from_config(cfg)
    cache = service.cache

    if cache.has_pair(src, dst):
        table = Table(title=f"{src} -> {dst} ({quality.value})")
        table.add_column("#", justify="right")
        table.add_column("Converter", style="cyan")
        table.add_column("Weight", justify="right")
        for i, entry in enumerate(cache.find_candidates(src, dst, quality), 1):
            table.add_row(str(i), entry.converter_id, f"{entry.weight:.2f}")
        rprint(table)
        return

    try:
        steps = service.resolver.resolve(src, dst)
    except UnsupportedConversion as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"{src} -> {dst} (pipeline, {len(steps)} steps)")
    table.add_column("Step", justify="right")
    table.add_column("From")
    table.add_column("To")
    table.add_column("First candidate", style="cyan")
    for i, step in enumerate(steps, 1):
        table.add_row(str(i), step.from_format, step.to_format, step.converter_id)
    rprint(table)


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration."""
    cfg = _get_config()
    text = yaml.safe_dump(cfg.model_dump(), sort_keys=False, default_flow_style=False)
    rprint(Syntax(text, "yaml"))


@config_app.command("init")
def config_init(
    path: str = typer.Option("docbridge.yaml", "--path", help="Where to write the config"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a starter docbridge.yaml."""
    target = Path(path)
    if target.exists() and not force:
        rprint(f"[yellow]{target} already exists[/yellow] (use --force to overwrite)")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")


if __name__ == "__main__":
    app()
