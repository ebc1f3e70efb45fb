"""Session configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import Field, NonNegativeInt, PositiveInt
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/wsession/session.yaml"),
    Path("/etc/wsession/session.yml"),
    Path("./config/session.yaml"),
    Path("./config/session.yml"),
)

BACKPRESSURE_HIGH_WATER_BYTES = 1024 * 1024


class SessionSettings(BaseSettings):
    """Validated, immutable options for one resilient session."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="WSESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    url: str = Field(
        default="ws://localhost:8080/ws",
        description="Default endpoint used by the launcher.",
    )

    # Reconnection
    reconnect: bool = Field(
        default=True,
        description="Reconnect automatically after a failed or closed connection.",
    )
    max_retries: NonNegativeInt | None = Field(
        default=None,
        description="Cap on consecutive reconnection attempts; None means unbounded.",
    )
    reconnect_delay_ms: PositiveInt = Field(
        default=1000,
        description="Base delay for reconnection backoff.",
    )
    max_reconnect_delay_ms: PositiveInt = Field(
        default=30_000,
        description="Maximum backoff delay before jitter is added.",
    )
    reconnect_backoff_factor: float = Field(
        default=1.5,
        ge=1.0,
        description="Multiplicative growth applied to the delay on every attempt.",
    )
    reconnect_jitter: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Jitter factor; up to delay * factor is added to each delay.",
    )

    # Liveness
    heartbeat_interval_ms: NonNegativeInt = Field(
        default=15_000,
        description="Keep-alive cadence while open; 0 disables the heartbeat.",
    )
    heartbeat_message: str = Field(
        default="ping",
        description="Keep-alive payload; empty disables the heartbeat.",
    )
    heartbeat_reply: str = Field(
        default="pong",
        description="Reply to a peer heartbeat; receiving it is logged only.",
    )
    connection_timeout_ms: PositiveInt = Field(
        default=5000,
        description="Maximum time to wait for the transport to open.",
    )
    inactivity_timeout_ms: NonNegativeInt = Field(
        default=60_000,
        description="Close the transport after this long without inbound traffic; 0 disables.",
    )
    send_timeout_ms: NonNegativeInt = Field(
        default=5000,
        description="Warn when no inbound traffic follows a send within this window; 0 disables.",
    )

    # Outbound
    max_queue_size: NonNegativeInt = Field(
        default=100,
        description="Capacity of each outbound priority lane.",
    )
    rate_limit_interval_ms: NonNegativeInt = Field(
        default=50,
        description="Minimum spacing between two caller sends.",
    )
    adaptive_backpressure: bool = Field(
        default=True,
        description="Pause sending while the transport buffers more than the threshold.",
    )
    backpressure_threshold_bytes: PositiveInt = Field(
        default=BACKPRESSURE_HIGH_WATER_BYTES,
        description="Buffered byte count at which sending pauses.",
    )

    # Inbound + codec
    batch_interval_ms: NonNegativeInt = Field(
        default=50,
        description="Window for coalescing inbound messages into one batch.",
    )
    disable_auto_json: bool = Field(
        default=False,
        description="Send and deliver payloads without automatic JSON handling.",
    )
    protocols: list[str] | None = Field(
        default=None,
        description="Sub-protocols offered when opening the transport.",
    )

    # Optional throttling
    throttle_message_ms: NonNegativeInt = Field(
        default=0,
        description="Minimum spacing between message batch deliveries; 0 disables.",
    )
    throttle_reconnect_ms: NonNegativeInt = Field(
        default=0,
        description="Minimum spacing between reconnection schedulings; 0 disables.",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the launcher process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("protocols", mode="before")
    @classmethod
    def _split_protocols(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[SessionSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[SessionSettings] | None = None) -> Dict[str, Any]:
        for path in SessionSettings._resolve_candidate_paths():
            data = SessionSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("WSESSION_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read session config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid session config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Session config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> SessionSettings:
    """Return memoized session settings."""

    return SessionSettings()
