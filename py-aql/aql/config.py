"""
Configuration and logging setup for AQL.

Settings live in a dataclass that can be built from a dict, a YAML file, or
``AQL_*`` environment variables. The active settings are module-level and read
by the builder (nesting depth) and the execution layer (batch and queue sizes).
"""

import logging
import os
import sys
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_PREFIX = "AQL_"


@dataclass(frozen=True)
class Settings:
    """
    Library-wide settings.

    Attributes:
        max_nesting_depth: Deepest literal/proxy nesting the shape folder accepts
        batch_size: Number of elements a cursor pulls per batch
        changefeed_queue_size: Default pending-change allowance of a feed
        default_primary_key: Primary key used by table_create() when none given
        log_level: Level applied by setup_logger()
    """

    max_nesting_depth: int = 100
    batch_size: int = 1000
    changefeed_queue_size: int = 100_000
    default_primary_key: str = "id"
    log_level: str = "WARNING"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create Settings from a dictionary, ignoring unknown keys."""
        known = {f.name: f.type for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            logging.getLogger(__name__).warning(
                "Ignoring unknown settings: %s", sorted(unknown)
            )
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        """Convert Settings to dictionary."""
        return asdict(self)


def _from_env(base: Settings) -> Settings:
    """Apply AQL_* environment overrides on top of base settings."""
    overrides: Dict[str, Any] = {}
    for f in fields(Settings):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        default = getattr(base, f.name)
        overrides[f.name] = int(raw) if isinstance(default, int) else raw
    return replace(base, **overrides) if overrides else base


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load settings from a YAML file and the environment.

    Args:
        path: YAML file with a top-level mapping. Falls back to the AQL_CONFIG
              environment variable, then to the built-in defaults.

    Returns:
        Settings with environment overrides applied
    """
    path = path or os.environ.get(ENV_PREFIX + "CONFIG")
    settings = Settings()
    if path:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        settings = Settings.from_dict(data)
    return _from_env(settings)


_settings: Settings = _from_env(Settings())


def get_settings() -> Settings:
    """Return the active settings."""
    return _settings


def configure(settings: Optional[Settings] = None, **overrides: Any) -> Settings:
    """
    Replace the active settings.

    Example:
        >>> configure(max_nesting_depth=20)
    """
    global _settings
    _settings = replace(settings or _settings, **overrides)
    return _settings


def setup_logger(
    name: str = "aql",
    level: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Attach a console handler to the AQL logger.

    The library itself only ever calls ``logging.getLogger(__name__)``; this
    helper is for applications and examples that want to see its output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or _settings.log_level).upper()))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(format_string or DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
    )
    logger.addHandler(handler)
    return logger
