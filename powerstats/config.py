"""
Service configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Invalid values are reported as ConfigurationError by load_settings(), which
is only called during application startup.

CHANGELOG:
- 2026-03-12: Parse and validate LOCATION_TOKENS here; malformed entries
  abort startup instead of being skipped (STORY-113)
- 2026-03-06: Add fold retry and store deadline settings (STORY-108)
- 2026-02-28: Initial creation (STORY-103)

TODO:
- None
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings

from powerstats.domain import normalize_location
from powerstats.errors import ConfigurationError

_LOG_FORMATS = frozenset({"json", "console"})


def parse_location_tokens(raw: str) -> dict[str, str]:
    """Parse ``token:LOCATION`` pairs into a token -> location map.

    Blank entries (e.g. a trailing comma) are ignored. Every other entry must
    carry a non-empty token and a valid location key; a token may appear only
    once. A location may have several tokens, which allows rotation.

    Errors name the entry position, never the token itself.

    Raises:
        ValueError: If an entry is malformed, a token repeats, or no entry
            is left.
    """
    token_map: dict[str, str] = {}
    for position, entry in enumerate(raw.split(",")):
        entry = entry.strip()
        if not entry:
            continue
        token, sep, location = entry.partition(":")
        token = token.strip()
        if not sep or not token:
            raise ValueError(
                f"LOCATION_TOKENS entry {position} is not of the form token:LOCATION"
            )
        try:
            location = normalize_location(location)
        except ValueError as exc:
            raise ValueError(f"LOCATION_TOKENS entry {position}: {exc}") from exc
        if token in token_map:
            raise ValueError(f"LOCATION_TOKENS entry {position} repeats a token")
        token_map[token] = location

    if not token_map:
        raise ValueError("LOCATION_TOKENS contains no token:LOCATION entries")
    return token_map


class Settings(BaseSettings):
    """powerstats service configuration.

    Attributes:
        database_url: SQLAlchemy async URL (postgresql+asyncpg://...).
        redis_url: Redis URL for the instant-view cache. Empty disables it.
        location_tokens: Comma separated ``token:LOCATION`` pairs.
        serving_timezone: IANA zone all served timestamps are converted to.
        store_timeout_s: Deadline for a single store operation.
        fold_max_attempts: Attempts per fold before a transient error is
            surfaced to the caller.
        fold_retry_delay_ms: Initial backoff between fold attempts.
        connect_max_attempts: Startup connection attempts before giving up.
        connect_retry_delay_s: Delay between startup connection attempts.
        cache_ttl_s: TTL of cached instant views.
        daily_history_limit: Default number of daily buckets served.
        max_readings_per_request: Max readings in one ingest batch.
        max_request_bytes: Max ingest request body size.
        log_level: Root log level name.
        log_format: ``json`` (default) or ``console``.
        auto_create_schema: Create tables at startup (development only).
    """

    database_url: str
    redis_url: str = ""
    location_tokens: str
    serving_timezone: str = "UTC"
    store_timeout_s: float = 5.0
    fold_max_attempts: int = 3
    fold_retry_delay_ms: int = 50
    connect_max_attempts: int = 5
    connect_retry_delay_s: float = 2.0
    cache_ttl_s: int = 5
    daily_history_limit: int = 30
    max_readings_per_request: int = 1000
    max_request_bytes: int = 1_048_576
    log_level: str = "INFO"
    log_format: str = "json"
    auto_create_schema: bool = False

    @field_validator("serving_timezone")
    @classmethod
    def serving_timezone_must_exist(cls, v: str) -> str:
        """Validate that the serving time zone is a known IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown SERVING_TIMEZONE '{v}'") from exc
        return v

    @field_validator("location_tokens")
    @classmethod
    def location_tokens_must_parse(cls, v: str) -> str:
        """Validate every LOCATION_TOKENS entry."""
        parse_location_tokens(v)
        return v

    @field_validator("store_timeout_s", "connect_retry_delay_s")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        """Validate that a duration is strictly positive."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator(
        "fold_max_attempts",
        "connect_max_attempts",
        "daily_history_limit",
        "max_readings_per_request",
        "max_request_bytes",
    )
    @classmethod
    def must_be_at_least_one(cls, v: int) -> int:
        """Validate that a count or size is at least 1."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("log_format")
    @classmethod
    def log_format_must_be_known(cls, v: str) -> str:
        """Validate LOG_FORMAT is json or console."""
        v = v.lower()
        if v not in _LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {sorted(_LOG_FORMATS)}")
        return v

    @property
    def zone(self) -> ZoneInfo:
        """The serving time zone."""
        return ZoneInfo(self.serving_timezone)

    @property
    def token_map(self) -> dict[str, str]:
        """Parsed token -> location mapping."""
        return parse_location_tokens(self.location_tokens)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def load_settings() -> Settings:
    """Load settings from the environment.

    Returns:
        Settings: Validated configuration.

    Raises:
        ConfigurationError: If a required variable is missing or invalid.
            The message leaves out input values, which may hold secrets.
    """
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors(include_url=False, include_input=False)
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from None
