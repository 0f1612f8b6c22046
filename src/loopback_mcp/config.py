"""Settings for loopback-mcp, built on pydantic-settings.

Three layers are merged, the first one that sets a value wins:

1. ``LOOPBACK_MCP_<SECTION>__<FIELD>`` environment variables,
   e.g. ``LOOPBACK_MCP_SERVER__PORT=9876``
2. an optional JSON config file
3. the defaults declared below

Keys in the JSON file starting with ``_`` or ``$`` are treated as comments.
"""

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


APP_NAME = "loopback-mcp"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9876

COMMENT_PREFIXES = ("_", "$")


def _strip_comment_fields(data: Any) -> Any:
    """Drop comment keys from a JSON object, at every nesting level.

    Non-dict values are returned unchanged.
    """
    if not isinstance(data, dict):
        return data
    cleaned = {}
    for key, value in data.items():
        if key.startswith(COMMENT_PREFIXES):
            continue
        cleaned[key] = _strip_comment_fields(value)
    return cleaned


def _read_json_config(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    return _strip_comment_fields(json.loads(path.read_text(encoding="utf-8")))


class JsonFileSource(PydanticBaseSettingsSource):
    """Settings source backed by a single JSON config file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path):
        super().__init__(settings_cls)
        self.path = path

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Unused: __call__ returns the whole document at once
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return _read_json_config(self.path)


class ServerConfig(BaseModel):
    """Where and how one lifecycle start serves MCP.

    Instances are immutable, so a config queued for the lifecycle worker is
    exactly the config that worker binds.
    """

    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    transport: Literal["sse", "http"] = "sse"

    @field_validator("host")
    @classmethod
    def host_must_not_be_empty(cls, v: str) -> str:
        host = v.strip()
        if not host:
            raise ValueError("host must be a non-empty string")
        return host


class LifecycleConfig(BaseModel):
    """Lifecycle timeouts in seconds."""

    grace_period: float = Field(default=1.0, gt=0)
    hard_deadline: float = Field(default=5.0, gt=0)
    shutdown_timeout: float = Field(default=10.0, gt=0)
    startup_timeout: float = Field(default=5.0, gt=0)

    @field_validator("hard_deadline")
    @classmethod
    def deadline_after_grace(cls, v: float, info: ValidationInfo) -> float:
        grace = info.data.get("grace_period")
        if grace is not None and v < grace:
            raise ValueError("hard_deadline must be >= grace_period")
        return v


class LoggingConfig(BaseModel):
    log_level: str = "INFO"
    console: bool = True
    file: bool = False
    log_dir: str | None = None  # None: platform logs directory


# JSON file consulted by the next Settings() call; set only inside get_settings
_json_config_file: Path | None = None
_settings_cache: "Settings | None" = None


class Settings(BaseSettings):
    """All configuration sections of loopback-mcp."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="LOOPBACK_MCP_",
        env_nested_delimiter="__",
    )

    @classmethod
    def from_file(cls, config_path: Path | str) -> "Settings":
        """Build settings from a JSON file; environment variables still win.

        A missing file yields the defaults.
        """
        return cls(**_read_json_config(Path(config_path)))

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [env_settings]
        if _json_config_file is not None:
            sources.append(JsonFileSource(settings_cls, _json_config_file))
        sources.append(init_settings)
        return tuple(sources)


def get_settings(config_path: Path | str | None = None, *, _force_reload: bool = False) -> Settings:
    """Return the effective settings.

    Without ``config_path`` the result is cached process-wide until
    ``_force_reload`` is passed. With ``config_path`` the file is layered
    between the environment and the defaults, and the cache is left alone.
    """
    global _json_config_file, _settings_cache

    if config_path is not None:
        _json_config_file = Path(config_path)
        try:
            return Settings()
        finally:
            _json_config_file = None

    if _settings_cache is None or _force_reload:
        _settings_cache = Settings()
    return _settings_cache
