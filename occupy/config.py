"""Configuration loading from YAML and environment.

Every section can be set in config.yaml (``${VAR}`` and ``$VAR`` values are
substituted from the environment) and overridden per field by env vars with
the section prefix, e.g. CLAIM_MAX_RETRIES or SWEEPER_INTERVAL_SECONDS.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Injected by load_config so substitution reads a stable copy of the env
_current_env: dict[str, str] = {}


class ContestConfig(BaseSettings):
    """Contest rules: teams, quota and per-difficulty tables."""

    model_config = SettingsConfigDict(env_prefix="CONTEST_", extra="ignore")

    teams: list[str] = Field(
        default_factory=lambda: ["TeamAlpha", "TeamBravo", "TeamCharlie", "TeamDelta"],
        description="Team roster; names are also team ids",
    )
    team_quota: int = Field(default=3, ge=1, description="Max concurrently occupied issues per team")
    default_difficulty: str = Field(default="medium", description="Time limit used for unknown tags")
    time_limits_minutes: dict[str, int] = Field(
        default_factory=lambda: {"easy": 20, "medium": 40, "hard": 60},
        description="Minutes a team may hold an issue, by difficulty tag",
    )
    penalties: dict[str, int] = Field(
        default_factory=lambda: {"easy": 5, "medium": 10, "hard": 15},
        description="Points deducted when a claim expires, by difficulty tag",
    )
    merge_points: dict[str, int] = Field(
        default_factory=lambda: {"easy": 10, "medium": 20, "hard": 30},
        description="Points awarded when the PR is merged, by difficulty tag",
    )


class ClaimConfig(BaseSettings):
    """Claim coordinator retry and timeout settings."""

    model_config = SettingsConfigDict(env_prefix="CLAIM_", extra="ignore")

    max_retries: int = Field(default=3, ge=1, description="Attempts per claim, first one included")
    backoff_step_ms: int = Field(default=1000, ge=0, description="Linear backoff step between attempts")
    backoff_cap_ms: int = Field(default=3000, ge=0, description="Upper bound of a single backoff")
    attempt_timeout_seconds: float = Field(default=10.0, gt=0, description="Wall-clock limit of one attempt")
    store_timeout_seconds: float = Field(default=5.0, gt=0, description="Limit of a single store query/transaction")


class QuotaCacheConfig(BaseSettings):
    """Team quota cache settings."""

    model_config = SettingsConfigDict(env_prefix="QUOTA_CACHE_", extra="ignore")

    ttl_ms: int = Field(default=5000, ge=0, description="Entry lifetime in milliseconds")
    sweep_probability: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Chance that a get() also drops expired entries"
    )


class SweeperConfig(BaseSettings):
    """Expiry sweeper settings."""

    model_config = SettingsConfigDict(env_prefix="SWEEPER_", extra="ignore")

    enabled: bool = Field(default=True, description="Run the expiry sweeper")
    interval_seconds: float = Field(default=10.0, gt=0, description="Seconds between sweep passes")


class FeedConfig(BaseSettings):
    """Change feed subscription settings."""

    model_config = SettingsConfigDict(env_prefix="FEED_", extra="ignore")

    resubscribe_seconds: float = Field(default=5.0, ge=0, description="Delay before re-subscribing after an error")


class StoreConfig(BaseSettings):
    """Document store backend."""

    model_config = SettingsConfigDict(env_prefix="STORE_", extra="ignore")

    backend: str = Field(default="yaml", description="yaml or memory")
    data_dir: str = Field(default=".occupy", description="Root directory of the yaml backend")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    loggers: dict[str, str] = Field(
        default_factory=dict,
        description="Per-logger levels, e.g. {'occupy.store': 'WARNING'}",
    )


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore")

    contest: ContestConfig = Field(default_factory=ContestConfig)
    claim: ClaimConfig = Field(default_factory=ClaimConfig)
    quota_cache: QuotaCacheConfig = Field(default_factory=QuotaCacheConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def data_path(self) -> Path:
        """Data directory of the yaml store, resolved against cwd."""
        return Path(self.store.data_dir).expanduser().resolve()


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            key = value[2:-1].strip()
            return _current_env.get(key, value)
        if value.startswith("$") and not value.startswith("${"):
            key = value[1:].strip()
            return _current_env.get(key, value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load config from YAML file and environment.

    Returns defaults (still overridable by env) when the file is missing.
    """
    global _current_env
    import os

    _current_env = dict(os.environ)

    path = config_path or Path("config.yaml")
    if not path.is_file():
        return AppConfig()

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    raw = _substitute_env(raw)

    return AppConfig(
        contest=ContestConfig(**(raw.get("contest") or {})),
        claim=ClaimConfig(**(raw.get("claim") or {})),
        quota_cache=QuotaCacheConfig(**(raw.get("quota_cache") or {})),
        sweeper=SweeperConfig(**(raw.get("sweeper") or {})),
        feed=FeedConfig(**(raw.get("feed") or {})),
        store=StoreConfig(**(raw.get("store") or {})),
        logging=LoggingConfig(**(raw.get("logging") or {})),
    )
