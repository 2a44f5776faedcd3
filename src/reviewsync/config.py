"""Settings for reviewsync, read from ``.reviewsync.toml``.

The file is optional: every setting has a default. It is looked up from the
working directory upwards, and the search never leaves the enclosing git
checkout.
"""

from __future__ import annotations

import logging
import tomllib
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".reviewsync.toml"


class ResolveMode(StrEnum):
    """When a GitHub thread is resolved after local task completion."""

    IMMEDIATE = "immediate"  # as soon as any task under the comment completes
    COMPLETE = "complete"  # once every task under the comment is done
    DISABLED = "disabled"  # never

    @classmethod
    def parse(cls, value: str | ResolveMode) -> ResolveMode:
        """Parse a mode case-insensitively.

        Raises:
            ValueError: For anything but immediate, complete or disabled.
        """
        normalized = str(value).strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            msg = f"Unknown auto-resolve mode {value!r}. Expected one of: {allowed}"
            raise ValueError(msg) from None


class CacheConfig(BaseModel):
    """GitHub API response cache settings."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=True, description="Whether REST responses are cached on disk")
    ttl_seconds: int = Field(default=300, ge=0, description="How long a cached response stays valid")
    directory: str | None = Field(default=None, description="Cache root (defaults to ~/.cache/reviewsync/github-api)")


class DoneWorkflowConfig(BaseModel):
    """Behaviour when a local task is marked done."""

    model_config = ConfigDict(extra="ignore")

    enable_auto_resolve: ResolveMode = Field(
        default=ResolveMode.COMPLETE,
        description="Thread resolution policy: immediate, complete or disabled",
    )

    @field_validator("enable_auto_resolve", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> ResolveMode:
        return ResolveMode.parse(value)


class StorageConfig(BaseModel):
    """Local task storage settings."""

    model_config = ConfigDict(extra="ignore")

    directory: str = Field(default=".pr-review", description="Root of the per-PR task and review files")


class Config(BaseModel):
    """Top-level reviewsync configuration."""

    model_config = ConfigDict(extra="ignore")

    cache: CacheConfig = Field(default_factory=CacheConfig, description="Response cache settings")
    done_workflow: DoneWorkflowConfig = Field(default_factory=DoneWorkflowConfig, description="Task completion settings")
    storage: StorageConfig = Field(default_factory=StorageConfig, description="Local storage settings")


def _unknown_keys(data: dict[str, Any], model_cls: type[BaseModel], prefix: str = "") -> Iterator[str]:
    """Yield dotted paths (``cache.ttl``) of keys *model_cls* does not define."""
    fields = model_cls.model_fields
    for key, value in data.items():
        path = f"{prefix}{key}"
        field = fields.get(key)
        if field is None:
            yield path
        elif isinstance(value, dict) and isinstance(field.annotation, type) and issubclass(field.annotation, BaseModel):
            yield from _unknown_keys(value, field.annotation, f"{path}.")


def _search_dirs(start: Path) -> Iterator[Path]:
    """*start* and its parents, up to and including the git root."""
    for directory in (start, *start.parents):
        yield directory
        if (directory / ".git").exists():
            return


def find_config_file(start: Path) -> Path | None:
    """Nearest ``.reviewsync.toml`` at or above *start*, or None."""
    for directory in _search_dirs(start.resolve()):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(cwd: str | Path | None = None) -> tuple[Config, Path | None]:
    """Read the configuration that applies to *cwd* (default: the current directory).

    Returns the parsed config and the file it came from; with no file the
    defaults are returned together with None.

    Raises:
        ValueError: If the file is not valid TOML or fails validation.
    """
    path = find_config_file(Path(cwd) if cwd else Path.cwd())
    if path is None:
        logger.info("No %s found, using defaults", CONFIG_FILENAME)
        return Config(), None

    logger.info("Loading config from %s", path)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        config = Config.model_validate(data)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ValueError(msg) from exc
    except ValidationError as exc:
        msg = f"Invalid config in {path}: {exc}"
        raise ValueError(msg) from exc

    for key in _unknown_keys(data, Config):
        logger.warning("Ignoring unknown config key '%s' in %s", key, path)
    return config, path


class _ActiveConfig:
    """The configuration in effect for this process."""

    __slots__ = ("config", "path")

    def __init__(self) -> None:
        self.config = Config()
        self.path: Path | None = None


_active = _ActiveConfig()


def get_config() -> Config:
    return _active.config


def set_config(config: Config, *, config_path: Path | None = None) -> None:
    """Install *config* as the active configuration (CLI startup, tests)."""
    _active.config = config
    _active.path = config_path


def get_config_path() -> Path | None:
    """File the active configuration was read from, or None for defaults."""
    return _active.path
