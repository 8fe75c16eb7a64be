"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into strongly-typed Pydantic models.
- Validating required fields and providing actionable error messages.
"""

import os
import re
from typing import Literal, TypeVar

import dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

_T = TypeVar("_T", int, float)

LevelName = Literal["trace", "debug", "info", "warn", "error"]
LayoutName = Literal["plain", "blocks"]

_LEVEL_ALIASES = {"warning": "warn", "critical": "error", "fatal": "error"}

# Loggers whose records are never captured, so the sink cannot feed on its own output.
DEFAULT_IGNORED_TARGETS = ("tracing_sink", "slack_delivery", "urllib3", "requests")


def _get_required_env(name: str) -> str:
    """Read a required env var or raise a helpful error."""
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"{name} is required. Please set it in your .env file.")
    if value.startswith("your_") and value.endswith("_here"):
        raise ValueError(f"{name} is required. Please replace the placeholder value in your .env file.")
    return value


def _get_optional_env(name: str) -> str | None:
    """Read an optional env var; blank values count as unset."""
    value = os.getenv(name, "").strip()
    return value or None


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


def _get_env_list(name: str) -> list[str]:
    """Read a comma-separated env var into a list (empty entries dropped)."""
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class SlackConfig(BaseModel):
    """Connection settings for a Slack incoming webhook."""

    webhook_url: str = Field(..., description="Slack incoming webhook URL")
    channel_name: str | None = Field(default=None, description="Override the webhook's default channel")
    username: str | None = Field(default=None, description="Override the webhook's display name")
    icon_emoji: str | None = Field(default=None, description="Override the webhook's icon, e.g. ':ghost:'")

    timeout: float = Field(default=10.0, description="HTTP timeout per request (seconds)")
    gzip: bool = Field(default=False, description="Gzip request bodies and send Content-Encoding: gzip")

    @field_validator("webhook_url")
    def validate_webhook_url(cls, v: str) -> str:
        """Validate the webhook URL is set and looks like an http(s) URL."""
        if not v or v == "your_slack_webhook_url_here":
            raise ValueError("SLACK_WEBHOOK_URL is required. Please set it in your .env file.")
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"SLACK_WEBHOOK_URL must be an http(s) URL. Got: {v!r}")
        return v

    @field_validator("timeout")
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout must be > 0. Got: {v}")
        return v


class SinkConfig(BaseModel):
    """Filtering, batching and retry settings for the event sink."""

    # Filtering.
    min_level: LevelName = Field(default="warn", description="Minimum severity forwarded to Slack")
    pattern: str | None = Field(default=None, description="Regex matched against event target or message")
    exclude_fields: list[str] = Field(default_factory=list, description="Regexes of field names to strip")
    exclude_target: str | None = Field(default=None, description="Regex; events whose target matches are dropped")
    exclude_message: str | None = Field(default=None, description="Regex; events whose message matches are dropped")
    drop_event_fields: list[str] = Field(
        default_factory=list, description="Regexes of field names; events carrying a matching field are dropped"
    )
    ignored_targets: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORED_TARGETS),
        description="Logger namespaces that are never captured",
    )

    # Payload layout.
    layout: LayoutName = Field(default="blocks", description="Payload layout: 'plain' text or Slack 'blocks'")
    max_blocks: int = Field(default=50, description="Max blocks per Slack message (platform limit)")

    # Batching + backpressure.
    batch_max_count: int = Field(default=20, description="Flush a batch once it holds this many events")
    batch_max_age: float = Field(default=2.0, description="Flush a batch once its oldest event is this old (seconds)")
    channel_capacity: int = Field(default=1024, description="Bound on queued events before dropping")
    max_in_flight: int = Field(default=4, description="Max concurrent deliveries")

    # Retry/backoff.
    retry_ceiling: int = Field(default=5, description="Max send attempts per payload")
    base_delay: float = Field(default=0.5, description="Initial retry delay (seconds)")
    max_backoff: float = Field(default=30.0, description="Cap on a single retry delay (seconds)")
    jitter_fraction: float = Field(default=0.1, description="Random extra delay as a fraction of the delay")

    shutdown_grace: float = Field(default=5.0, description="Time allowed for the final flush on shutdown (seconds)")

    @field_validator("min_level", mode="before")
    def normalize_min_level(cls, v: object) -> object:
        """Accept any case and the common aliases (warning, critical, fatal)."""
        if isinstance(v, str):
            lowered = v.strip().lower()
            return _LEVEL_ALIASES.get(lowered, lowered)
        return v

    @field_validator("pattern", "exclude_target", "exclude_message")
    def validate_pattern(cls, v: str | None) -> str | None:
        """Fail early on a regex that does not compile."""
        if v is None or v == "":
            return None
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"not a valid regular expression: {exc}") from exc
        return v

    @field_validator("exclude_fields", "drop_event_fields")
    def validate_pattern_list(cls, v: list[str]) -> list[str]:
        for item in v:
            try:
                re.compile(item)
            except re.error as exc:
                raise ValueError(f"entry {item!r} is not a valid regular expression: {exc}") from exc
        return v

    @field_validator("max_blocks", "batch_max_count", "channel_capacity", "max_in_flight", "retry_ceiling")
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"must be > 0. Got: {v}")
        return v

    @field_validator("batch_max_age", "base_delay", "max_backoff")
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be > 0. Got: {v}")
        return v

    @field_validator("jitter_fraction")
    def validate_jitter_fraction(cls, v: float) -> float:
        # Above 1.0 a jittered delay could exceed the next attempt's delay.
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"jitter_fraction must be within [0, 1]. Got: {v}")
        return v

    @field_validator("shutdown_grace")
    def validate_shutdown_grace(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"shutdown_grace must be >= 0. Got: {v}")
        return v

    @model_validator(mode="after")
    def validate_backoff_bounds(self) -> "SinkConfig":
        if self.max_backoff < self.base_delay:
            raise ValueError(
                f"max_backoff ({self.max_backoff}) must be >= base_delay ({self.base_delay})"
            )
        return self


class Config(BaseModel):
    """Top-level application configuration."""

    slack: SlackConfig = Field(..., description="Slack webhook configuration")
    sink: SinkConfig = Field(default_factory=SinkConfig, description="Event sink configuration")


def load_config() -> Config:
    """Load application configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` with actionable messages when required configuration is
      missing or still contains placeholder values.
    """
    # Load variables from `.env` into the process environment (without overriding
    # already-set env vars).
    dotenv.load_dotenv()

    slack = SlackConfig(
        webhook_url=_get_required_env("SLACK_WEBHOOK_URL"),
        channel_name=_get_optional_env("SLACK_CHANNEL_NAME"),
        username=_get_optional_env("SLACK_USERNAME"),
        icon_emoji=_get_optional_env("SLACK_EMOJI"),
        timeout=_get_env_number("SLACK_TIMEOUT", 10.0, float),
        gzip=_get_env_bool("SLACK_GZIP", False),
    )

    ignored_targets = _get_env_list("SLACK_SINK_IGNORED_TARGETS") or list(DEFAULT_IGNORED_TARGETS)
    sink = SinkConfig(
        min_level=os.getenv("SLACK_SINK_MIN_LEVEL", "warn"),
        pattern=_get_optional_env("SLACK_SINK_PATTERN"),
        exclude_fields=_get_env_list("SLACK_SINK_EXCLUDE_FIELDS"),
        exclude_target=_get_optional_env("SLACK_SINK_EXCLUDE_TARGET"),
        exclude_message=_get_optional_env("SLACK_SINK_EXCLUDE_MESSAGE"),
        drop_event_fields=_get_env_list("SLACK_SINK_DROP_EVENT_FIELDS"),
        ignored_targets=ignored_targets,
        layout=os.getenv("SLACK_SINK_LAYOUT", "blocks").strip().lower(),
        max_blocks=_get_env_number("SLACK_SINK_MAX_BLOCKS", 50, int),
        batch_max_count=_get_env_number("SLACK_SINK_BATCH_MAX_COUNT", 20, int),
        batch_max_age=_get_env_number("SLACK_SINK_BATCH_MAX_AGE", 2.0, float),
        channel_capacity=_get_env_number("SLACK_SINK_CHANNEL_CAPACITY", 1024, int),
        max_in_flight=_get_env_number("SLACK_SINK_MAX_IN_FLIGHT", 4, int),
        retry_ceiling=_get_env_number("SLACK_SINK_RETRY_CEILING", 5, int),
        base_delay=_get_env_number("SLACK_SINK_BASE_DELAY", 0.5, float),
        max_backoff=_get_env_number("SLACK_SINK_MAX_BACKOFF", 30.0, float),
        jitter_fraction=_get_env_number("SLACK_SINK_JITTER", 0.1, float),
        shutdown_grace=_get_env_number("SLACK_SINK_SHUTDOWN_GRACE", 5.0, float),
    )
    return Config(slack=slack, sink=sink)
