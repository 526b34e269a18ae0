from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from sentinel_boundary.errors import ConfigurationError
from sentinel_boundary.models import ExecutionMode, Policy, RiskMode


class Settings(BaseSettings):
    # Policy
    POLICY_ID: str = Field("SENTINELFLOW_POLICY_V0")
    SIGNAL_TYPE: str = Field("PRICE_DEVIATION_BPS")
    RISK_THRESHOLD_BPS: int = Field(250)
    PAUSE_THRESHOLD_BPS: int = Field(700)
    COOLDOWN_SECONDS: int = Field(60)
    RISK_MODE_LEVEL: int = Field(2)
    # EXECUTE | SHADOW (DRY_RUN is accepted as an alias of SHADOW)
    EXECUTION_MODE: str = Field("EXECUTE")
    # Target and identities
    TARGET_ID: str = Field("ops-target")
    TARGET_OWNER: str = Field("owner")
    AUTHORIZED_SUBMITTER: str = Field("forwarder")
    GATE_IDENTITY: str = Field("sentinel-gate")
    # Signal source: HTTP (value in request) | PRICE_FEED (injected reader)
    SIGNAL_MODE: str = Field("HTTP")
    # None disables the feed; 0.0 is a configured (degenerate) baseline
    BASELINE_PRICE: Optional[float] = Field(None)
    PRICE_FEED_ID: str = Field("")
    # Journal / persistence
    JOURNAL_FILE: str = Field("")
    DATABASE_URL: str = Field("")
    RECONCILE_ON_STARTUP: bool = Field(True)
    # failed inserts per entry before it is parked in the failed list
    PERSIST_MAX_ATTEMPTS: int = Field(3)
    # Incident bundles
    INCIDENT_DIR: str = Field("incidents")
    INCIDENT_REDIS_ENABLED: bool = Field(False)
    REDIS_URL: str = Field("redis://localhost:6379/0")
    INCIDENT_REDIS_PREFIX: str = Field("incident:")
    INCIDENT_REDIS_TTL_SECONDS: int = Field(7 * 24 * 3600)
    REDIS_OP_RETRIES: int = Field(1)
    REDIS_RECONNECT_BASE_DELAY: float = Field(0.5)
    REDIS_RECONNECT_JITTER_MS: int = Field(250)
    # Advisor
    ADVISOR_ENABLED: bool = Field(True)
    ADVISOR_TIMEOUT_SECONDS: float = Field(2.0)
    # Admin / observability
    ADMIN_TOKEN: str = Field("")
    METRICS_PORT: int = Field(0)
    LOG_DIR: str = Field("")
    LOG_LEVEL: str = Field("INFO")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def policy_from_settings(cfg: Settings) -> Policy:
    """Build the evaluation policy. Raises ConfigurationError if invalid."""
    if cfg.RISK_MODE_LEVEL not in {int(m) for m in RiskMode}:
        raise ConfigurationError(f"RISK_MODE_LEVEL {cfg.RISK_MODE_LEVEL} is not a defined level")
    return Policy(
        policy_id=cfg.POLICY_ID,
        risk_threshold=int(cfg.RISK_THRESHOLD_BPS),
        pause_threshold=int(cfg.PAUSE_THRESHOLD_BPS),
        cooldown_seconds=int(cfg.COOLDOWN_SECONDS),
    )


def execution_mode_from_settings(cfg: Settings) -> ExecutionMode:
    return ExecutionMode.normalize(cfg.EXECUTION_MODE)
