"""YAML configuration for the proxy, with ``${VAR}`` expansion.

Placeholders take three forms:

    ${NAME}            value of NAME; left in place (with a warning) if unset
    ${NAME:-fallback}  value of NAME, or ``fallback`` if unset
    $NAME              same as ${NAME}

Variables come from the ``.env`` file next to the config first, then from
the process environment. ``os.environ`` is never modified.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

logger = logging.getLogger("playground-proxy")

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = "configs/config_default.yaml"
CONFIG_PATH_ENV = "PLAYGROUND_PROXY_CONFIG"

PLACEHOLDER_RE = re.compile(
    r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}"
    r"|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)"
)


class EnvLookup:
    """Variable source for placeholder expansion: dotenv values over ``os.environ``."""

    def __init__(self, overrides: Optional[Mapping[str, str]] = None) -> None:
        self.overrides = dict(overrides or {})

    @classmethod
    def from_env_file(cls, env_file: Path) -> "EnvLookup":
        if not env_file.is_file():
            return cls()
        logger.info(f"Loading environment variables from {env_file}")
        values = dotenv_values(env_file)
        return cls({name: value for name, value in values.items() if value is not None})

    def get(self, name: str) -> Optional[str]:
        if name in self.overrides:
            return self.overrides[name]
        return os.environ.get(name)

    def expand(self, text: str) -> str:
        return PLACEHOLDER_RE.sub(self._replace, text)

    def _replace(self, match: re.Match) -> str:
        name = match.group("braced") or match.group("bare")
        value = self.get(name)
        if value is not None:
            return value
        fallback = match.group("fallback")
        if fallback is not None:
            return fallback
        logger.warning(f"CONFIG ERROR: environment variable '{name}' is not set; keeping {match.group(0)}")
        return match.group(0)


def resolve_config_path(path: str | os.PathLike) -> Path:
    """Anchor relative config paths at the project root."""
    candidate = Path(path)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def resolve_env_path(config_path: Path, env_path: str | None = None) -> Path:
    """The ``.env`` file used for ``config_path``: an explicit override or its sibling."""
    return resolve_config_path(env_path) if env_path else config_path.with_name(".env")


def expand_env_placeholders(obj: Any, lookup: Optional[EnvLookup] = None) -> Any:
    """Expand placeholders in every string inside ``obj``, recursing into dicts and lists."""
    lookup = lookup or EnvLookup()
    if isinstance(obj, str):
        return lookup.expand(obj)
    if isinstance(obj, dict):
        return {key: expand_env_placeholders(value, lookup) for key, value in obj.items()}
    if isinstance(obj, list):
        return [expand_env_placeholders(item, lookup) for item in obj]
    return obj


def _read_mapping(config_path: Path) -> dict:
    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RuntimeError(f"Config file must contain a mapping: {config_path}")
    return data


def load_config(
    path: str | None = None,
    env_path: str | None = None,
    substitute_env: bool = True,
) -> dict:
    """Read the proxy config.

    Args:
        path: Config file. Defaults to $PLAYGROUND_PROXY_CONFIG, then
              configs/config_default.yaml under the project root.
        env_path: ``.env`` file override; defaults to the config's sibling.
        substitute_env: Expand ``${VAR}`` placeholders when true.

    Raises:
        RuntimeError: The file is missing or its top level is not a mapping.
    """
    config_path = resolve_config_path(path or os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    logger.info(f"Loading configuration from {config_path}")
    if not config_path.is_file():
        logger.error(f"Config file not found: {config_path}")
        raise RuntimeError(f"Config file not found: {config_path}")

    data = _read_mapping(config_path)
    if substitute_env:
        lookup = EnvLookup.from_env_file(resolve_env_path(config_path, env_path))
        data = expand_env_placeholders(data, lookup)
    return data
