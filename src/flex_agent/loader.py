"""Config discovery and YAML loading."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from .config import AgentSettings, Config
from .errors import ConfigError
from .templates import LOOKUP_FILE

logger = logging.getLogger(__name__)

CONFIG_SUFFIXES = (".yml", ".yaml")


def discover_files(settings: AgentSettings) -> list[Path]:
    """The single config file, or every YAML file in the config directory."""
    if settings.config_file:
        return [Path(settings.config_file)]
    directory = Path(settings.config_dir)
    if not directory.is_dir():
        logger.debug(f"Config directory {directory} not found")
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix in CONFIG_SUFFIXES)


def parse_yaml(text: str, file_name: str = "") -> Any:
    """``yaml.safe_load`` with YAMLError turned into ConfigError."""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML: {e}", source=file_name) from e


def read_lookup_file(path: str, base_dir: Optional[Path] = None) -> list[dict[str, Any]]:
    """Rows of a lookup file: a JSON list of objects."""
    lookup_path = Path(path)
    if not lookup_path.is_absolute() and base_dir is not None and not lookup_path.exists():
        lookup_path = base_dir / lookup_path
    try:
        data = json.loads(lookup_path.read_text())
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read lookup file {lookup_path}: {e}", directive="lookup_file") from e
    if not isinstance(data, list):
        raise ConfigError(f"lookup file {lookup_path} is not a list", directive="lookup_file")
    return [row for row in data if isinstance(row, dict)]


def expand_lookup_file(text: str, rows: list[dict[str, Any]]) -> list[str]:
    """One copy of ``text`` per row with ``${lf:key}`` replaced."""
    rendered = []
    for row in rows:
        rendered.append(LOOKUP_FILE.sub(lambda m: str(row.get(m.group(1), m.group(0))), text))
    return rendered


def load_text(text: str, file_name: str = "", base_dir: Optional[Path] = None) -> list[Config]:
    """
    Parse one YAML document into configs.

    A document naming a ``lookup_file`` yields one config per row of that
    file.

    Raises:
        ConfigError: The YAML (or its lookup file) cannot be read
    """
    data = parse_yaml(text, file_name)
    config = Config.from_dict(data, file_name)
    if not config.lookup_file:
        return [config]

    rows = read_lookup_file(config.lookup_file, base_dir)
    logger.debug(f"{file_name}: expanding {len(rows)} lookup file rows")
    return [Config.from_dict(parse_yaml(t, file_name), file_name) for t in expand_lookup_file(text, rows)]


def load_file(path: Path) -> list[Config]:
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"cannot read config: {e}", source=str(path)) from e
    return load_text(text, path.name, path.parent)


def load_configs(settings: AgentSettings) -> list[Config]:
    """
    Load every config the settings point at.

    A file that cannot be read or parsed is logged and skipped; the
    others still load.
    """
    configs: list[Config] = []
    for path in discover_files(settings):
        try:
            loaded = load_file(path)
        except ConfigError as e:
            logger.error(f"Skipping config {path}: {e}")
            continue
        configs.extend(loaded)
        logger.info(f"Loaded config {path} ({sum(len(c.apis) for c in loaded)} apis)")
    return configs
