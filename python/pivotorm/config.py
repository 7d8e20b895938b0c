"""Engine configuration parsing."""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_URL = "sqlite::memory:"
DEFAULT_STREAM_BATCH_SIZE = 100

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


@dataclass
class EngineConfig:
    """Connection and loader settings.

    Example pivotorm.ini:
        [pivotorm]
        url = sqlite:///app.db
        stream_batch_size = 500
        foreign_keys = true
        echo = false
    """

    url: str = DEFAULT_URL
    """Database URL (``sqlite::memory:`` or ``sqlite:///path``)."""

    stream_batch_size: int = DEFAULT_STREAM_BATCH_SIZE
    """Rows pulled from the cursor per window when streaming."""

    foreign_keys: bool = True
    """Whether to enforce foreign keys (``PRAGMA foreign_keys``)."""

    echo: bool = False
    """Log every statement at DEBUG level."""

    def __post_init__(self) -> None:
        if self.stream_batch_size < 1:
            raise ValueError(
                f"stream_batch_size must be positive, got {self.stream_batch_size}"
            )

    @classmethod
    def from_ini(cls, path: Path | str, section: str = "pivotorm") -> EngineConfig:
        """Load configuration from an ini file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the section is missing or a value is malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        parser = configparser.ConfigParser()
        parser.read(path)

        if section not in parser:
            raise ValueError(f"No [{section}] section in {path}")

        values = parser[section]
        return cls(
            url=values.get("url", DEFAULT_URL),
            stream_batch_size=values.getint("stream_batch_size", DEFAULT_STREAM_BATCH_SIZE),
            foreign_keys=values.getboolean("foreign_keys", True),
            echo=values.getboolean("echo", False),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Load configuration from ``PIVOTORM_*`` environment variables."""
        env = os.environ if environ is None else environ

        batch_size = env.get("PIVOTORM_STREAM_BATCH_SIZE")
        try:
            stream_batch_size = int(batch_size) if batch_size else DEFAULT_STREAM_BATCH_SIZE
        except ValueError:
            raise ValueError(
                f"PIVOTORM_STREAM_BATCH_SIZE must be an integer, got {batch_size!r}"
            ) from None

        return cls(
            url=env.get("PIVOTORM_DATABASE_URL", DEFAULT_URL),
            stream_batch_size=stream_batch_size,
            foreign_keys=_parse_bool("PIVOTORM_FOREIGN_KEYS", env.get("PIVOTORM_FOREIGN_KEYS"), True),
            echo=_parse_bool("PIVOTORM_ECHO", env.get("PIVOTORM_ECHO"), False),
        )


def _parse_bool(name: str, raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")
