from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# .env in the project root first, then the working directory
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path, override=False)
else:
    load_dotenv(override=False)

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_OUTPUT_DIR = "."
DEFAULT_TASK_COUNT = 4
DEFAULT_TIMEOUT_SECONDS = 20
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/119.0 Safari/537.36"
)
MIN_TASK_COUNT = 1
MIN_TIMEOUT_SECONDS = 1
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _int_from_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


class Config(BaseModel):
    """Configuration model for the podcast download pipeline.

    Configuration can be created programmatically or loaded from JSON/YAML
    files using `load_config_file()`. The model is frozen after creation.

    Attributes:
        rss_url: RSS feed URL to download. Required unless loading from config file.
        output_dir: Directory receiving ``rss.xml`` and the episode files.
        task_count: Maximum number of episode downloads in flight at once.
        replace_existing: Download and overwrite episodes whose file already exists.
        syslog: Prefix log lines with a numeric syslog priority.
        timeout: Per-request connect/read timeout in seconds (minimum: 1).
        user_agent: HTTP User-Agent header for requests.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional log file path, in addition to the console.

    Environment variables ``OUTPUT_DIR``, ``TASK_COUNT``, ``TIMEOUT`` and
    ``LOG_FILE`` fill in values that were not given explicitly. ``LOG_LEVEL``
    always wins so that a deployment can turn on DEBUG without editing files.

    Example:
        >>> from podcast_downloader import Config
        >>> cfg = Config(
        ...     rss_url="https://example.com/feed.xml",
        ...     output_dir="./episodes",
        ...     task_count=8,
        ... )
    """

    rss_url: Optional[str] = Field(default=None, alias="rss")
    output_dir: str = Field(default=DEFAULT_OUTPUT_DIR, alias="output_dir")
    task_count: int = Field(default=DEFAULT_TASK_COUNT, alias="task_count")
    replace_existing: bool = Field(default=False, alias="replace_existing")
    syslog: bool = Field(default=False, alias="syslog")
    timeout: int = Field(default=DEFAULT_TIMEOUT_SECONDS, alias="timeout")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="user_agent")
    log_level: str = Field(default=DEFAULT_LOG_LEVEL, alias="log_level")
    log_file: Optional[str] = Field(
        default=None,
        alias="log_file",
        description="Path to log file (logs will be written to both console and file). "
        "Can be set via LOG_FILE environment variable.",
    )

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _apply_environment(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        env_log_level = os.getenv("LOG_LEVEL")
        if env_log_level:
            env_value = env_log_level.strip().upper()
            if env_value in VALID_LOG_LEVELS:
                data["log_level"] = env_value

        env_output_dir = os.getenv("OUTPUT_DIR")
        if env_output_dir and env_output_dir.strip() and "output_dir" not in data:
            data["output_dir"] = env_output_dir.strip()

        env_log_file = os.getenv("LOG_FILE")
        if env_log_file and env_log_file.strip() and data.get("log_file") is None:
            data["log_file"] = env_log_file.strip()

        for env_name, key in (("TASK_COUNT", "task_count"), ("TIMEOUT", "timeout")):
            env_int = _int_from_env(env_name)
            if env_int is not None and key not in data:
                data[key] = env_int

        return data

    @field_validator("rss_url", mode="before")
    @classmethod
    def _strip_rss(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("output_dir", mode="before")
    @classmethod
    def _coerce_output_dir(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_OUTPUT_DIR
        return str(value).strip() or DEFAULT_OUTPUT_DIR

    @field_validator("task_count", mode="after")
    @classmethod
    def _validate_task_count(cls, value: int) -> int:
        if value < MIN_TASK_COUNT:
            raise ValueError(f"task_count must be at least {MIN_TASK_COUNT}, got: {value}")
        return value

    @field_validator("timeout", mode="after")
    @classmethod
    def _validate_timeout(cls, value: int) -> int:
        if value < MIN_TIMEOUT_SECONDS:
            raise ValueError(f"timeout must be at least {MIN_TIMEOUT_SECONDS}, got: {value}")
        return value

    @field_validator("user_agent", mode="before")
    @classmethod
    def _coerce_user_agent(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_USER_AGENT
        return str(value).strip() or DEFAULT_USER_AGENT

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_LOG_LEVEL
        return str(value).strip().upper() or DEFAULT_LOG_LEVEL

    @field_validator("log_level", mode="after")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        if value not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got: {value}")
        return value

    @field_validator("log_file", mode="before")
    @classmethod
    def _strip_log_file(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value).strip() or None


def load_config_file(path: str) -> Dict[str, Any]:
    """Load configuration from a JSON or YAML file.

    The file format is auto-detected from the extension (`.json`, `.yaml` or
    `.yml`). The returned dictionary can be unpacked into `Config`.

    Args:
        path: Path to configuration file. Supports tilde expansion.

    Returns:
        Dict[str, Any]: Configuration values keyed by `Config` field name or alias.

    Raises:
        ValueError: If the path is empty, the file is missing, the format is
            unsupported, or the content does not parse to a mapping

    Example:
        >>> config_dict = load_config_file("config.yaml")
        >>> cfg = Config(**config_dict)

    Supported Formats:
        **YAML** (`.yaml`, `.yml`):

            rss: https://example.com/feed.xml
            output_dir: ./episodes
            task_count: 8
    """
    if not path:
        raise ValueError("Config path cannot be empty")

    cfg_path = Path(path).expanduser()
    try:
        resolved = cfg_path.resolve()
    except (OSError, RuntimeError) as exc:
        raise ValueError(f"Invalid config path: {path} ({exc})") from exc

    if not resolved.exists():
        raise ValueError(f"Config file not found: {resolved}")

    suffix = resolved.suffix.lower()
    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Failed to read config file {resolved}: {exc}") from exc

    if suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON config file {resolved}: {exc}") from exc
    elif suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:  # type: ignore[attr-defined]
            raise ValueError(f"Invalid YAML config file {resolved}: {exc}") from exc
    else:
        raise ValueError(f"Unsupported config file type: {resolved.suffix}")

    if not isinstance(data, dict):
        raise ValueError("Config file must contain a mapping/object at the top level")

    return data
