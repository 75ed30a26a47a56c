"""YAML config loading with env var expansion."""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import DocbridgeConfig

_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _search_paths(cli_path: str | None) -> list[Path]:
    if cli_path:
        path = Path(cli_path)
        if not path.exists():
            raise ValueError(f"Config file not found: {cli_path}")
        return [path]
    return [Path("./docbridge.yaml"), Path.home() / ".docbridge" / "config.yaml"]


def load_config(cli_path: str | None = None) -> DocbridgeConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults.

    An explicit path must exist. Empty files are skipped.
    """
    for path in _search_paths(cli_path):
        if not path.is_file():
            continue
        try:
            raw = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid config in {path}: top level must be a mapping")
        try:
            return DocbridgeConfig.model_validate(_expand_env_vars(raw))
        except ValidationError as e:
            raise ValueError(f"Invalid config in {path}: {e}") from e

    return DocbridgeConfig()


def resolve_converter_path(path: str) -> str:
    """Expand ``~`` and make relative converter paths absolute against the cwd."""
    expanded = Path(path).expanduser()
    if not expanded.is_absolute():
        expanded = Path.cwd() / expanded
    return str(expanded)


def _expand_env_vars(obj: object) -> object:
    """Recursively expand ${VAR} and ${VAR:-default} references in strings."""
    if isinstance(obj, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), obj)
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Default YAML template for `docbridge config init`
DEFAULT_CONFIG_TEMPLATE = """\
# docbridge.yaml

# External converters speaking the ping / describe / convert protocol.
# Higher weight = tried first. Ties are broken by path.
converters: []
#  - path: "helpers/pandoc-helper.sh"
#    weight: 0.9
#  - path: "${HOME}/bin/libreoffice-helper.sh"
#    weight: 0.6
#    describe_verb: "info"       # describe | info (legacy helpers)

# In-process converters: name -> weight
builtins:
  plaintext: 0.3                 # txt -> html, txt -> md
#  markitdown: 0.5               # pdf/docx/pptx/xlsx/html -> md (pip install markitdown)

# Capability cache
cache:
  file: "docbridge-cache.yaml"
  auto_rebuild: true             # negotiate and write the cache if it is missing

# Negotiation (ping / describe)
negotiation:
  timeout: 10                    # seconds
  max_workers: 4

# Conversion
conversion:
  timeout: 300                   # seconds, per converter invocation
  default_mode: "normal"         # normal | fast | quality

# Multi-hop pipelines
pipeline:
  max_hops: 4
  preferred_intermediates: [pdf, ps, html]
  lossy_intermediates: [txt]     # explored last
  # temp_dir: "/tmp"

# Logging
log_level: "info"                # debug | info | warn | error
log_format: "text"               # text | json
"""
