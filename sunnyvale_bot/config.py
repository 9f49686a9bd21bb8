import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    token: str
    data_path: str = "sunnyvale_templates.json"
    # Seconds a single guild mutation may take before it is recorded as failed
    step_timeout: float = 30.0
    # Finished import operations older than this are swept from memory
    operation_max_age_ms: int = 24 * 60 * 60 * 1000
    sweep_interval: float = 3600.0


def _env_number(name: str, default, cast):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    token = os.getenv("DISCORD_BOT_TOKEN", "").strip()
    return Settings(
        token=token or "",
        data_path=os.getenv("SUNNYVALE_DATA_PATH", "").strip()
        or Settings.data_path,
        step_timeout=_env_number("SUNNYVALE_STEP_TIMEOUT", Settings.step_timeout, float),
        operation_max_age_ms=_env_number(
            "SUNNYVALE_OPERATION_MAX_AGE_MS", Settings.operation_max_age_ms, int
        ),
        sweep_interval=_env_number(
            "SUNNYVALE_SWEEP_INTERVAL", Settings.sweep_interval, float
        ),
    )
