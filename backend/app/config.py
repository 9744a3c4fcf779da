"""Configuration loader for the flow diagram backend."""
from __future__ import annotations

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

API_KEY_ENV_VARS = (
    "FLOWVIEW_API_KEY",
    "NEW_RELIC_API_KEY",
)
ACCOUNT_ID_ENV_VAR = "FLOWVIEW_ACCOUNT_ID"

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class _FrozenModel(BaseModel):
    """Base model enforcing immutability for config sections."""

    model_config = ConfigDict(frozen=True)


class PipelineConfig(_FrozenModel):
    """Pipeline-level configuration."""

    version: str = Field(..., min_length=1)


class TelemetryConfig(_FrozenModel):
    """Settings for the flow query sent to the telemetry backend."""

    endpoint: str = Field(..., min_length=1)
    api_key: Optional[str] = Field(default=None)
    account_id: Optional[int] = Field(default=None, ge=1)
    timeout_seconds: float = Field(..., gt=0)
    event_type: str = Field(..., min_length=1)
    measure: str = Field(..., min_length=1)
    where_clause: str = Field(default="")
    device_facet: str = Field(..., min_length=1)
    destination_facet: str = Field(..., min_length=1)
    interval_seconds: int = Field(..., ge=1)
    limit: int = Field(..., ge=1, le=2000)


class SankeyConfig(_FrozenModel):
    """Aggregation and highlight settings for the flow diagram."""

    palette: List[str] = Field(..., min_length=1)
    focused_link_opacity: float = Field(..., ge=0.0, le=1.0)
    blurred_link_opacity: float = Field(..., ge=0.0, le=1.0)
    unknown_label: str = Field("(Unknown)", min_length=1)
    default_peer_by: Literal["peerName", "bgpSourceAsNumber"] = Field("peerName")

    @field_validator("palette")
    @classmethod
    def _validate_palette(cls, values: List[str]) -> List[str]:
        normalized = [value.strip().lower() for value in values]
        for value in normalized:
            if not _HEX_COLOR.match(value):
                msg = f"palette entries must be #rrggbb colors, got '{value}'"
                raise ValueError(msg)
        return normalized

    @model_validator(mode="after")
    def _validate_opacities(self) -> "SankeyConfig":
        if self.focused_link_opacity <= self.blurred_link_opacity:
            msg = "sankey.focused_link_opacity must exceed sankey.blurred_link_opacity"
            raise ValueError(msg)
        return self


class UIPollingConfig(_FrozenModel):
    """Polling cadence suggested to the rendering client."""

    refresh_interval_seconds: int = Field(..., ge=1)


class UIConfig(_FrozenModel):
    """UI-specific configuration values."""

    height: int = Field(650, ge=100)
    width: int = Field(700, ge=100)
    allowed_origins: List[str] = Field(default_factory=list)
    polling: UIPollingConfig


class AppConfig(_FrozenModel):
    """Top-level application configuration composed from config.yaml."""

    pipeline: PipelineConfig
    telemetry: TelemetryConfig
    sankey: SankeyConfig
    ui: UIConfig

    @staticmethod
    def default_path() -> Path:
        """Return the default location of the configuration file.

        Returns:
            Path: Absolute path to config.yaml at the repository root.
        """
        return Path(__file__).resolve().parents[2] / "config.yaml"


def _determine_env_file_path() -> Optional[Path]:
    """Return the path to the environment file if one should be loaded."""

    override = os.getenv("FLOWVIEW_ENV_FILE")
    if override:
        candidate = Path(override).expanduser()
        if candidate.exists():
            return candidate
        LOGGER.warning("Configured environment file override does not exist: %s", candidate)
        return None
    if DEFAULT_ENV_FILE.exists():
        return DEFAULT_ENV_FILE
    return None


def _strip_inline_comment(value: str) -> str:
    """Remove inline comments from an environment value when unquoted."""

    comment_index = value.find("#")
    if comment_index == -1:
        return value
    return value[:comment_index].rstrip()


def _load_env_file(path: Path) -> None:
    """Populate ``os.environ`` with values read from a ``.env`` file."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.lower().startswith("export "):
                    line = line[7:].lstrip()
                if "=" not in line:
                    continue
                key, raw_value = line.split("=", 1)
                key = key.strip()
                if not key:
                    continue
                existing_value = os.environ.get(key)
                if existing_value is not None and existing_value.strip() != "":
                    continue
                value = raw_value.strip()
                if not value:
                    os.environ[key] = ""
                    continue
                if value[0] in {'"', "'"} and value[-1] == value[0]:
                    os.environ[key] = value[1:-1]
                    continue
                os.environ[key] = _strip_inline_comment(value)
    except OSError:
        LOGGER.warning("Unable to read environment file at %s", path)


def _api_key_from_env() -> Optional[str]:
    """Return the first non-empty API key found in supported variables."""

    for key in API_KEY_ENV_VARS:
        raw = os.getenv(key)
        if raw and raw.strip():
            return raw.strip()
    return None


def _account_id_from_env() -> Optional[int]:
    raw = os.getenv(ACCOUNT_ID_ENV_VAR)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s value: %s", ACCOUNT_ID_ENV_VAR, raw)
        return None


def _apply_environment_overrides(raw_content: Dict[str, Any]) -> Dict[str, Any]:
    """Merge environment-based overrides into the raw configuration mapping.

    Args:
        raw_content: Parsed YAML configuration prior to Pydantic validation.

    Returns:
        Dict[str, Any]: Configuration mapping with environment overrides applied.
    """

    env_file_path = _determine_env_file_path()
    if env_file_path is not None:
        _load_env_file(env_file_path)

    api_key = _api_key_from_env()
    if api_key:
        telemetry_section = raw_content.setdefault("telemetry", {})
        telemetry_section["api_key"] = api_key
        LOGGER.info("Telemetry API key overridden from environment")
    account_id = _account_id_from_env()
    if account_id is not None:
        telemetry_section = raw_content.setdefault("telemetry", {})
        telemetry_section["account_id"] = account_id
        LOGGER.info("Telemetry account overridden from environment (account_id=%d)", account_id)
    return raw_content


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Read YAML content from disk.

    Args:
        path: Location of the YAML file.

    Returns:
        Dict[str, Any]: Parsed YAML content.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        LOGGER.error("Configuration file missing at %s", path)
        raise ConfigError("Configuration file not found") from exc
    except yaml.YAMLError as exc:
        LOGGER.error("Invalid YAML syntax in %s", path)
        raise ConfigError("Invalid YAML syntax") from exc
    if not isinstance(data, dict):
        LOGGER.error("Configuration root must be a mapping: %s", path)
        raise ConfigError("Configuration root must be a mapping")
    return data


@lru_cache(maxsize=1)
def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from YAML.

    Args:
        path: Optional override path to the YAML file.

    Returns:
        AppConfig: Parsed configuration object.

    Raises:
        ConfigError: If the configuration cannot be loaded or validated.
    """
    config_path = path or AppConfig.default_path()
    raw_content = _read_yaml(config_path)
    raw_content = _apply_environment_overrides(raw_content)
    try:
        return AppConfig(**raw_content)
    except ValidationError as exc:
        LOGGER.error("Invalid configuration values: %s", exc)
        raise ConfigError("Configuration validation failed") from exc
